"""
User library: auth flag, language, watch history, favorites and display
preferences, all kept in the StateStore under the tube_* keys.
"""

import logging
import time
from typing import List, Optional

from pydantic import ValidationError

from . import config
from .models import HistoryItem
from .normalize import DEFAULT_THUMBNAIL_HOST, THUMBNAIL_HOSTS
from .storage import (
    AUTH_KEY,
    FAVORITES_KEY,
    HISTORY_KEY,
    LANGUAGE_KEY,
    QUALITY_KEY,
    THUMBNAIL_SOURCE_KEY,
    StateStore,
)

logger = logging.getLogger(__name__)


class UserLibrary:
    """Per-device user state on top of the string key-value store"""

    def __init__(self, store: StateStore, history_limit: int = config.HISTORY_MAX_ITEMS):
        self.store = store
        self.history_limit = history_limit

    # ─── Auth & language ─────────────────────────────────────────────────────

    def is_authenticated(self) -> bool:
        return self.store.get_item(AUTH_KEY) == "true"

    def set_authenticated(self, value: bool):
        self.store.set_item(AUTH_KEY, "true" if value else "false")

    def logout(self):
        self.store.remove_item(AUTH_KEY)

    def get_language(self) -> Optional[str]:
        return self.store.get_item(LANGUAGE_KEY)

    def set_language(self, language: str):
        self.store.set_item(LANGUAGE_KEY, language)

    # ─── History & favorites ─────────────────────────────────────────────────

    def _load_items(self, key: str) -> List[HistoryItem]:
        raw = self.store.get_json(key, [])
        if not isinstance(raw, list):
            return []
        items = []
        for entry in raw:
            try:
                items.append(HistoryItem.model_validate(entry))
            except ValidationError:
                logger.warning(f"⚠️ Dropping malformed entry under '{key}'")
        return items

    def _save_items(self, key: str, items: List[HistoryItem]):
        self.store.set_json(key, [item.model_dump() for item in items])

    def get_history(self) -> List[HistoryItem]:
        return self._load_items(HISTORY_KEY)

    def add_to_history(self, item: HistoryItem) -> List[HistoryItem]:
        """Most-recent-first, one entry per video id, capped."""
        if not item.timestamp:
            item = item.model_copy(update={"timestamp": time.time()})
        history = [h for h in self.get_history() if h.video_id != item.video_id]
        history.insert(0, item)
        history = history[: self.history_limit]
        self._save_items(HISTORY_KEY, history)
        return history

    def clear_history(self):
        self.store.remove_item(HISTORY_KEY)

    def get_favorites(self) -> List[HistoryItem]:
        return self._load_items(FAVORITES_KEY)

    def add_to_favorites(self, item: HistoryItem) -> List[HistoryItem]:
        if not item.timestamp:
            item = item.model_copy(update={"timestamp": time.time()})
        favorites = [f for f in self.get_favorites() if f.video_id != item.video_id]
        favorites.insert(0, item)
        self._save_items(FAVORITES_KEY, favorites)
        return favorites

    def remove_from_favorites(self, video_id: str) -> List[HistoryItem]:
        favorites = [f for f in self.get_favorites() if f.video_id != video_id]
        self._save_items(FAVORITES_KEY, favorites)
        return favorites

    def is_favorite(self, video_id: str) -> bool:
        return any(f.video_id == video_id for f in self.get_favorites())

    # ─── Preferences ─────────────────────────────────────────────────────────

    def get_preferred_quality(self) -> str:
        return self.store.get_item(QUALITY_KEY) or config.DEFAULT_QUALITY

    def set_preferred_quality(self, quality: str):
        self.store.set_item(QUALITY_KEY, quality)

    def get_thumbnail_source(self) -> str:
        stored = self.store.get_item(THUMBNAIL_SOURCE_KEY)
        return stored if stored in THUMBNAIL_HOSTS else DEFAULT_THUMBNAIL_HOST

    def set_thumbnail_source(self, source: str):
        if source not in THUMBNAIL_HOSTS:
            raise ValueError(f"thumbnail source must be one of {', '.join(THUMBNAIL_HOSTS)}")
        self.store.set_item(THUMBNAIL_SOURCE_KEY, source)
