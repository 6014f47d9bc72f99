"""
Mirror host registries, working-instance memory and the API key pool.

A registry holds the candidate hosts of one backend family. The working
memory remembers which of them answered recently so the next request tries
them first; it forgets everything once its TTL passes without a promotion,
forcing a full re-scan rather than trusting stale "working" status.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional

import httpx

from .storage import StateStore, working_instances_key, working_instances_ts_key

logger = logging.getLogger(__name__)


class WorkingInstanceMemory:
    """Bounded move-to-front list of recently successful hosts for one backend"""

    def __init__(
        self,
        backend: str,
        store: StateStore,
        ttl: float,
        cap: int = 8,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.backend = backend
        self.store = store
        self.ttl = ttl
        self.cap = cap
        self.clock = clock
        self._key = working_instances_key(backend)
        self._ts_key = working_instances_ts_key(backend)

    def _load(self) -> List[str]:
        hosts = self.store.get_json(self._key, [])
        if not isinstance(hosts, list):
            return []
        return [h for h in hosts if isinstance(h, str)]

    def _save(self, hosts: List[str]) -> None:
        self.store.set_json(self._key, hosts)
        self.store.set_timestamp(self._ts_key, self.clock())

    def current(self) -> List[str]:
        """Promoted hosts, most recent first; resets when the TTL has lapsed."""
        hosts = self._load()
        if not hosts:
            return []
        last_update = self.store.get_timestamp(self._ts_key)
        if self.clock() - last_update > self.ttl:
            logger.info(f"🔄 {self.backend}: working instances expired, rescanning all hosts")
            self.reset()
            return []
        return hosts

    def promote(self, host: str) -> None:
        hosts = [h for h in self.current() if h != host]
        self._save([host, *hosts][: self.cap])

    def reset(self) -> None:
        self.store.set_json(self._key, [])
        self.store.set_timestamp(self._ts_key, self.clock())

    def ordered_hosts(self, candidates: List[str]) -> List[str]:
        """Promoted hosts first, then remaining candidates in registry order."""
        working = self.current()
        return [*working, *(c for c in candidates if c not in working)]


class SourceRegistry:
    """Candidate hosts for one backend family plus its working memory."""

    def __init__(self, backend: str, hosts: List[str], memory: WorkingInstanceMemory) -> None:
        self.backend = backend
        self._hosts = list(dict.fromkeys(hosts))
        self.memory = memory

    @property
    def hosts(self) -> List[str]:
        return list(self._hosts)

    def replace_hosts(self, hosts: List[str]) -> None:
        """Swap in a refreshed host list (e.g. from a remote server list)."""
        cleaned = [h.rstrip("/") for h in hosts if isinstance(h, str) and h.startswith(("http://", "https://"))]
        if cleaned:
            self._hosts = list(dict.fromkeys(cleaned))
            logger.info(f"✅ {self.backend}: host list updated ({len(self._hosts)} servers)")

    def ordered_hosts(self) -> List[str]:
        return self.memory.ordered_hosts(self._hosts)

    def working_hosts(self) -> List[str]:
        return self.memory.current()

    def promote(self, host: str) -> None:
        self.memory.promote(host)


async def fetch_remote_host_list(client: httpx.AsyncClient, url: str, timeout: float) -> Optional[List[str]]:
    """Fetch a remote JSON array of server base URLs; None when unusable."""
    try:
        resp = await client.get(url, timeout=timeout)
    except httpx.HTTPError as e:
        logger.debug(f"Remote host list unavailable ({url}): {e}")
        return None
    if not resp.is_success:
        return None
    try:
        data: Any = resp.json()
    except ValueError:
        return None
    if not isinstance(data, list) or not data:
        return None
    return [h for h in data if isinstance(h, str)]


class ApiKeyPool:
    """
    Ordered credential list with a rotating cursor.

    Keys are injected configuration; the cursor lives on the instance so two
    resolvers never share rotation state.
    """

    def __init__(self, keys: List[str]) -> None:
        self._keys = [k for k in keys if k]
        self._index: int = 0

    def __len__(self) -> int:
        return len(self._keys)

    @property
    def cursor(self) -> int:
        return self._index

    def next_key(self) -> Optional[str]:
        if not self._keys:
            return None
        key = self._keys[self._index % len(self._keys)]
        self._index = (self._index + 1) % len(self._keys)
        return key


def build_registry(
    backend: str,
    hosts: List[str],
    store: StateStore,
    ttl: float,
    cap: int,
    clock: Callable[[], float] = time.time,
) -> SourceRegistry:
    memory = WorkingInstanceMemory(backend, store, ttl=ttl, cap=cap, clock=clock)
    return SourceRegistry(backend, hosts, memory)


def registries_snapshot(registries: Dict[str, SourceRegistry]) -> Dict[str, Dict[str, List[str]]]:
    return {
        name: {"hosts": reg.hosts, "working": reg.working_hosts()}
        for name, reg in registries.items()
    }
