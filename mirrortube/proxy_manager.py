"""
CORS Relay Proxy Directory

Keeps the list of relay prefixes that bypass cross-origin restrictions:
  1. A static baseline fixed in configuration (always tried first)
  2. A dynamic list fetched from a remote text file, cached in the state
     store with a timestamp and expired after PROXY_CACHE_TTL_SECONDS

Remote fetches are rate-limited by a cooldown that is independent of the
cache TTL: inside the cooldown the in-memory list is returned unchanged,
even when it is stale or empty.

Usage:
    directory = ProxyDirectory(client, store)

    data = await directory.fetch_with_fallback("https://example.org/api.json")
    # -> parsed JSON or None
"""

import asyncio
import logging
import time
from typing import Any, Callable, List, Optional

import httpx

from . import config
from .race import proxied_url
from .storage import PROXY_LIST_KEY, PROXY_LIST_TS_KEY, StateStore
from .validation import parse_json_payload

logger = logging.getLogger(__name__)


def parse_proxy_list(text: str) -> List[str]:
    """
    Parse a remote proxy list.

    Accepts one entry per line in plain, JSON-array ("url",) or YAML-list
    (- url) form. Blank lines and '#' or '//' comments are skipped. Only
    http(s) URLs are kept; entries without a query delimiter get a
    trailing '/'.
    """
    proxies: List[str] = []
    for line in text.splitlines():
        entry = line.strip()
        if not entry or entry.startswith("#") or entry.startswith("//"):
            continue

        if entry[0] in ("\"", "'"):
            entry = entry[1:]
            if entry.endswith(","):
                entry = entry[:-1]
            if entry and entry[-1] in ("\"", "'"):
                entry = entry[:-1]

        if entry.startswith("-"):
            entry = entry[1:].strip()

        if not (entry.startswith("http://") or entry.startswith("https://")):
            continue
        if "?" not in entry and not entry.endswith("/"):
            entry += "/"
        proxies.append(entry)
    return proxies


class ProxyDirectory:
    """
    Static + dynamic CORS relay prefixes with a shared fallback fetcher.

    All state (dynamic list, last fetch attempt) belongs to the instance.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        store: StateStore,
        static_proxies: Optional[List[str]] = None,
        list_url: str = config.PROXY_LIST_URL,
        cache_ttl: float = config.PROXY_CACHE_TTL_SECONDS,
        cooldown: float = config.PROXY_FETCH_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.store = store
        self._static: List[str] = list(static_proxies if static_proxies is not None else config.STATIC_CORS_PROXIES)
        self.list_url = list_url
        self.cache_ttl = cache_ttl
        self.cooldown = cooldown
        self.clock = clock
        self._last_fetch_attempt: float = 0.0
        self._cooldown_armed = False
        self._dynamic: List[str] = self._load_cached()

    # ─────────────────────────────────────────────────────────────────────────
    # Persistence helpers
    # ─────────────────────────────────────────────────────────────────────────

    def _load_cached(self) -> List[str]:
        cached = self.store.get_json(PROXY_LIST_KEY)
        ts = self.store.get_timestamp(PROXY_LIST_TS_KEY)
        if not isinstance(cached, list) or not ts:
            return []
        if self.clock() - ts >= self.cache_ttl:
            return []
        return [p for p in cached if isinstance(p, str)]

    def _save_cached(self, proxies: List[str]) -> None:
        self.store.set_json(PROXY_LIST_KEY, proxies)
        self.store.set_timestamp(PROXY_LIST_TS_KEY, self.clock())

    def _in_cooldown(self) -> bool:
        return self._cooldown_armed and self.clock() - self._last_fetch_attempt < self.cooldown

    async def _fetch_remote(self) -> List[str]:
        """Fetch and parse the remote list; honours the cooldown window."""
        if self._in_cooldown():
            return self._dynamic

        self._last_fetch_attempt = self.clock()
        self._cooldown_armed = True

        logger.info(f"🔄 Fetching proxy list from {self.list_url}")
        try:
            resp = await self.client.get(self.list_url, timeout=config.PROXY_LIST_TIMEOUT)
        except httpx.HTTPError as e:
            logger.warning(f"⚠️ Proxy list fetch failed: {e}")
            return self._dynamic

        if not resp.is_success:
            logger.warning(f"⚠️ Proxy list returned HTTP {resp.status_code}")
            return self._dynamic

        static = set(self._static)
        proxies = [p for p in dict.fromkeys(parse_proxy_list(resp.text)) if p not in static]
        if not proxies:
            logger.warning("⚠️ Proxy list contained no usable entries")
            return self._dynamic

        logger.info(f"✅ Loaded {len(proxies)} dynamic proxies")
        self._dynamic = proxies
        self._save_cached(proxies)
        return proxies

    # ─────────────────────────────────────────────────────────────────────────
    # Public interface
    # ─────────────────────────────────────────────────────────────────────────

    def get_static_proxies(self) -> List[str]:
        return list(self._static)

    async def get_dynamic_proxies(self) -> List[str]:
        """
        Cached dynamic list; fetched on first use or once the cache TTL passes.

        A stale list stays in use until a refetch succeeds.
        """
        expired = self.clock() - self.store.get_timestamp(PROXY_LIST_TS_KEY) >= self.cache_ttl
        if not self._dynamic or expired:
            await self._fetch_remote()
        return list(self._dynamic)

    async def refresh(self) -> List[str]:
        """Force a remote fetch, bypassing the cooldown."""
        self._cooldown_armed = False
        return list(await self._fetch_remote())

    def get_all_proxies(self) -> List[str]:
        """Static list followed by dynamic entries not already present."""
        combined = list(self._static)
        for proxy in self._dynamic:
            if proxy not in combined:
                combined.append(proxy)
        return combined

    async def _try_proxy(self, proxy: str, target_url: str, timeout: float) -> Optional[Any]:
        url = proxied_url(proxy, target_url)
        try:
            resp = await asyncio.wait_for(self.client.get(url), timeout=timeout)
        except (asyncio.TimeoutError, httpx.HTTPError):
            return None
        if not resp.is_success:
            return None
        return parse_json_payload(resp.text)

    async def fetch_with_fallback(
        self,
        target_url: str,
        timeout: float = config.PROXY_FETCH_TIMEOUT,
        max_retries: int = config.PROXY_FETCH_MAX_RETRIES,
    ) -> Optional[Any]:
        """
        GET target_url through relays until one yields valid JSON.

        Every static proxy is tried `max_retries` passes, then each dynamic
        proxy once. Individual failures are silent; None on exhaustion.
        """
        for _ in range(max_retries):
            for proxy in self._static:
                data = await self._try_proxy(proxy, target_url, timeout)
                if data is not None:
                    return data

        logger.info("Static proxies failed, trying dynamic proxy list...")
        for proxy in await self.get_dynamic_proxies():
            data = await self._try_proxy(proxy, target_url, timeout)
            if data is not None:
                logger.info(f"✅ Success with dynamic proxy: {proxy}")
                return data

        return None

    async def auto_refresh_loop(self, interval: float = config.PROXY_REFRESH_INTERVAL_SECONDS) -> None:
        """
        Background task: refresh the dynamic list every `interval` seconds.
        Call once at startup and cancel on shutdown.
        """
        while True:
            await asyncio.sleep(interval)
            logger.info("🔄 Proxy directory: periodic refresh...")
            try:
                await self.refresh()
            except Exception as e:
                logger.error(f"Proxy refresh loop error: {e}")
