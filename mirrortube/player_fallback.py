"""
Player fallback state machine

One instance per watch session. Players are tried in a fixed order; each
has a small retry budget before it is marked failed and the session moves
to the next player that has not failed yet. When every player has failed
the session is in the terminal "all failed" state until reset.

Usage:
    fallback = PlayerFallback()
    fallback.handle_error("edu", "iframe blocked")   # retry 1/2
    fallback.handle_success("edu")
    snapshot = fallback.state()                      # PlayerFallbackState
"""

import asyncio
import logging
from typing import Dict, List, Optional, Set

from . import config
from .models import PlayerFallbackState

logger = logging.getLogger(__name__)

PLAYER_ORDER: List[str] = ["edu", "ytdlp", "invidious", "nocookie"]


class PlayerFallback:
    def __init__(
        self,
        initial_player: str = PLAYER_ORDER[0],
        order: Optional[List[str]] = None,
        max_retries: int = config.PLAYER_MAX_RETRIES,
    ):
        self.order = list(order or PLAYER_ORDER)
        if initial_player not in self.order:
            raise ValueError(f"unknown player: {initial_player}")
        self.initial_player = initial_player
        self.max_retries = max_retries

        self.current_player = initial_player
        self.failed_players: Set[str] = set()
        self.retry_count: Dict[str, int] = {}
        self.is_auto_fallback = False
        self.last_error: Optional[str] = None
        self._debounce_handle: Optional[asyncio.TimerHandle] = None

    def _next_player(self) -> Optional[str]:
        for player in self.order:
            if player not in self.failed_players:
                return player
        return None

    def _check_player(self, player: str) -> None:
        if player not in self.order:
            raise ValueError(f"unknown player: {player}")

    @property
    def all_failed(self) -> bool:
        return set(self.order) <= self.failed_players

    def handle_error(self, player: str, message: Optional[str] = None) -> str:
        """
        Record one error for `player`.

        Below the retry budget the session stays on the same player and the
        caller should re-attempt. Past it the player is marked failed and the
        session moves to the first non-failed player in order.

        Returns:
            The player the caller should use next.
        """
        self._check_player(player)
        logger.warning(f"⚠️ [PlayerFallback] {player} failed: {message}")
        self.last_error = message

        retries = self.retry_count.get(player, 0)
        if retries < self.max_retries:
            self.retry_count[player] = retries + 1
            logger.info(f"🔄 [PlayerFallback] {player} retry {retries + 1}/{self.max_retries}")
            return self.current_player

        self.failed_players.add(player)
        next_player = self._next_player()
        if next_player is None:
            logger.error("❌ [PlayerFallback] All players failed")
            return self.current_player

        logger.info(f"🎯 [PlayerFallback] Switching from {player} to {next_player}")
        self.current_player = next_player
        self.is_auto_fallback = True
        return next_player

    def handle_success(self, player: str) -> None:
        self.retry_count.pop(player, None)
        self.is_auto_fallback = False

    def switch_player(self, player: str) -> None:
        """Manual override; failed status of `player` is left untouched."""
        self._check_player(player)
        self.current_player = player
        self.is_auto_fallback = False

    def reset_all(self) -> None:
        self.cancel_pending()
        self.current_player = self.initial_player
        self.failed_players = set()
        self.retry_count = {}
        self.is_auto_fallback = False
        self.last_error = None

    def reset_player(self, player: str) -> None:
        self.failed_players.discard(player)
        self.retry_count.pop(player, None)

    def debounced_error(self, player: str, message: Optional[str] = None, delay: float = 0.5) -> None:
        """Collapse a burst of errors into one handle_error after `delay` seconds."""
        self._check_player(player)
        self.cancel_pending()
        loop = asyncio.get_running_loop()
        self._debounce_handle = loop.call_later(delay, self.handle_error, player, message)

    def cancel_pending(self) -> None:
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None

    def state(self) -> PlayerFallbackState:
        return PlayerFallbackState(
            current_player=self.current_player,
            failed_players=[p for p in self.order if p in self.failed_players],
            retry_count=dict(self.retry_count),
            is_auto_fallback=self.is_auto_fallback,
            all_players_failed=self.all_failed,
            last_error=self.last_error,
        )
