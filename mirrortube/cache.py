"""
Resolution cache with single-flight de-duplication.

One instance per category (streams, metadata), each with its own TTL.
Concurrent callers asking for the same key share one in-flight fetch: the
pending task is registered before anything is awaited and removed as soon
as it settles, success or failure, before any caller sees the result.
"""

import asyncio
import copy
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Generic, Iterable, Optional, Set, Tuple, TypeVar

from . import config

logger = logging.getLogger(__name__)

V = TypeVar("V")


class ResolutionCache(Generic[V]):
    """TTL + size-bounded memo with single-flight get_or_fetch"""

    def __init__(
        self,
        name: str,
        ttl: float,
        max_entries: int = config.CACHE_MAX_ENTRIES,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.name = name
        self.ttl = ttl
        self.max_entries = max_entries
        self.clock = clock
        self._entries: Dict[str, Tuple[float, V]] = {}
        self._pending: Dict[str, "asyncio.Future[Optional[V]]"] = {}
        self._background: Set["asyncio.Task[Any]"] = set()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def is_pending(self, key: str) -> bool:
        return key in self._pending

    def get(self, key: str) -> Optional[V]:
        """Copy of the cached value, or None when missing or expired."""
        hit = self._entries.get(key)
        if hit is None:
            return None
        stored_at, value = hit
        if self.clock() - stored_at >= self.ttl:
            self._entries.pop(key, None)
            return None
        logger.debug(f"[{self.name}] cache hit: {key}")
        return copy.deepcopy(value)

    def set(self, key: str, value: V) -> None:
        self._entries.pop(key, None)
        self._entries[key] = (self.clock(), copy.deepcopy(value))
        self._evict_if_needed()

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()
        logger.info(f"[{self.name}] cache cleared")

    def _evict_if_needed(self) -> None:
        """Past the cap, drop the oldest half by insertion timestamp."""
        if len(self._entries) <= self.max_entries:
            return
        oldest = sorted(self._entries.items(), key=lambda item: item[1][0])
        for key, _ in oldest[: self.max_entries // 2]:
            del self._entries[key]
        logger.info(f"[{self.name}] evicted {self.max_entries // 2} oldest entries ({len(self._entries)} left)")

    async def _run_fetch(self, key: str, fetcher: Callable[[], Awaitable[Optional[V]]]) -> Optional[V]:
        try:
            result = await fetcher()
        finally:
            self._pending.pop(key, None)
        if result is not None:
            self.set(key, result)
        return result

    async def get_or_fetch(self, key: str, fetcher: Callable[[], Awaitable[Optional[V]]]) -> Optional[V]:
        """
        Cached value, else join the pending fetch for `key`, else start one.

        Errors raised by the fetcher propagate to every waiting caller.
        """
        cached = self.get(key)
        if cached is not None:
            return cached

        pending = self._pending.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._run_fetch(key, fetcher))
            self._pending[key] = pending
        else:
            logger.debug(f"[{self.name}] joining pending request: {key}")

        # shield: one caller giving up must not cancel the shared fetch
        result = await asyncio.shield(pending)
        return copy.deepcopy(result)

    def prefetch(
        self,
        keys: Iterable[str],
        fetcher: Callable[[str], Awaitable[Optional[V]]],
        limit: int = config.PREFETCH_LIMIT,
    ) -> None:
        """Best-effort warming of the first `limit` keys; failures are dropped."""
        for key in list(keys)[:limit]:
            if not key or key in self._pending or self.get(key) is not None:
                continue
            task = asyncio.ensure_future(self._prefetch_one(key, fetcher))
            self._background.add(task)
            task.add_done_callback(self._background.discard)

    async def _prefetch_one(self, key: str, fetcher: Callable[[str], Awaitable[Optional[V]]]) -> None:
        try:
            await self.get_or_fetch(key, lambda: fetcher(key))
        except Exception as e:
            logger.debug(f"[{self.name}] prefetch of {key} failed: {e}")

    async def aclose(self) -> None:
        """Cancel outstanding prefetch tasks."""
        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
