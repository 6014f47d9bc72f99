"""
Backend priority policies and success statistics.

Two policies share one interface, `order() -> list[str]`:
  - StaticPriorityPolicy: user-ordered list persisted in the state store
  - AdaptivePriorityPolicy: ranked by rolling success statistics
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from . import config
from .models import ApiStats
from .storage import API_PRIORITY_KEY, StateStore

logger = logging.getLogger(__name__)

# Stream backends, default order
STREAM_BACKENDS: List[str] = [
    "choco_video",
    "choco_stream",
    "min_tube",
    "edge_function",
    "piped",
    "invidious",
    "cobalt",
    "ytdlp",
]

STREAM_BACKEND_LABELS: Dict[str, Dict[str, str]] = {
    "choco_video": {"name": "Choco Video", "description": "Fast, stable direct API"},
    "choco_stream": {"name": "Choco Stream", "description": "Direct stream relay"},
    "min_tube": {"name": "MIN-Tube", "description": "Parallel multi-server lookup"},
    "edge_function": {"name": "Edge Function", "description": "Server-side resolution"},
    "piped": {"name": "Piped", "description": "Privacy-focused frontend"},
    "invidious": {"name": "Invidious", "description": "Open-source frontend"},
    "cobalt": {"name": "Cobalt", "description": "Last-resort relay"},
    "ytdlp": {"name": "yt-dlp", "description": "Local extraction"},
}

# Metadata backends, enumeration order (adaptive tie-break)
METADATA_BACKENDS: List[str] = ["youtube", "siawase", "edu", "invidious", "piped"]

# Search / trending walk, fixed
LISTING_BACKENDS: List[str] = ["youtube", "invidious", "piped"]


def merge_with_defaults(stored: Any, defaults: Sequence[str]) -> List[str]:
    """
    Reconcile a persisted order with the current known backend set.

    Unknown or duplicate entries are dropped and any known backend missing
    from the stored order is appended in default order. Anything that is
    not a list (or a {"order": [...]} object) yields the defaults.
    """
    if isinstance(stored, dict):
        stored = stored.get("order")
    if not isinstance(stored, list):
        return list(defaults)

    known = set(defaults)
    valid = [b for b in dict.fromkeys(stored) if isinstance(b, str) and b in known]
    missing = [b for b in defaults if b not in valid]
    return valid + missing


class StaticPriorityPolicy:
    """User-configurable backend order persisted as a JSON array."""

    def __init__(self, store: StateStore, defaults: Sequence[str] = STREAM_BACKENDS) -> None:
        self.store = store
        self.defaults = list(defaults)

    def order(self) -> List[str]:
        return merge_with_defaults(self.store.get_json(API_PRIORITY_KEY), self.defaults)

    def set_order(self, order: Sequence[str]) -> List[str]:
        merged = merge_with_defaults(list(order), self.defaults)
        self.store.set_json(API_PRIORITY_KEY, merged)
        logger.info(f"Backend priority set: {' → '.join(merged)}")
        return merged

    def move(self, backend: str, direction: str) -> List[str]:
        """Swap `backend` with its neighbour; no-op at the ends."""
        current = self.order()
        if backend not in current:
            raise ValueError(f"unknown backend: {backend}")
        if direction not in ("up", "down"):
            raise ValueError(f"direction must be 'up' or 'down', got {direction!r}")
        idx = current.index(backend)
        target = idx - 1 if direction == "up" else idx + 1
        if 0 <= target < len(current):
            current[idx], current[target] = current[target], current[idx]
        return self.set_order(current)

    def reorder(self, from_index: int, to_index: int) -> List[str]:
        """Drag-and-drop style: move the entry at from_index to to_index."""
        current = self.order()
        if not (0 <= from_index < len(current)):
            raise ValueError(f"index out of range: {from_index}")
        item = current.pop(from_index)
        to_index = max(0, min(to_index, len(current)))
        current.insert(to_index, item)
        return self.set_order(current)

    def reset(self) -> List[str]:
        self.store.remove_item(API_PRIORITY_KEY)
        return list(self.defaults)


class ApiStatsTracker:
    """
    Process-wide success/failure counters per backend.

    Volatile by choice: counters start empty on every process start and
    are cleared only by reset().
    """

    def __init__(self, backends: Sequence[str], clock: Callable[[], float] = time.time) -> None:
        self.clock = clock
        self._stats: Dict[str, ApiStats] = {name: ApiStats() for name in dict.fromkeys(backends)}

    def _entry(self, backend: str) -> ApiStats:
        if backend not in self._stats:
            self._stats[backend] = ApiStats()
        return self._stats[backend]

    def record(self, backend: str, success: bool) -> None:
        entry = self._entry(backend)
        if success:
            entry.successes += 1
            entry.last_success = self.clock()
        else:
            entry.failures += 1

    def get(self, backend: str) -> ApiStats:
        return self._entry(backend).model_copy()

    def snapshot(self) -> Dict[str, ApiStats]:
        return {name: stats.model_copy() for name, stats in self._stats.items()}

    def reset(self) -> None:
        for name in self._stats:
            self._stats[name] = ApiStats()
        logger.info("API statistics reset")

    def score(self, backend: str, recency_window: float = config.STATS_RECENCY_SECONDS) -> float:
        """successRate (0.5 when unobserved) + 0.5 if a success landed inside the window"""
        stats = self._entry(backend)
        total = stats.successes + stats.failures
        success_rate = stats.successes / total if total > 0 else 0.5
        recent = stats.last_success > 0 and self.clock() - stats.last_success < recency_window
        return success_rate + (0.5 if recent else 0.0)


class AdaptivePriorityPolicy:
    """Backends sorted by descending score; ties keep enumeration order."""

    def __init__(
        self,
        stats: ApiStatsTracker,
        backends: Sequence[str] = METADATA_BACKENDS,
        recency_window: float = config.STATS_RECENCY_SECONDS,
    ) -> None:
        self.stats = stats
        self.backends = list(backends)
        self.recency_window = recency_window

    def order(self) -> List[str]:
        return sorted(self.backends, key=lambda b: -self.stats.score(b, self.recency_window))

    def scores(self) -> Dict[str, float]:
        return {b: self.stats.score(b, self.recency_window) for b in self.backends}


def describe_order(order: Optional[Sequence[str]]) -> str:
    return " → ".join(order or [])
