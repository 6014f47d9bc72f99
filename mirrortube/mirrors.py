"""
Clients for the mirror API families shared by stream and metadata adapters.

  - InvidiousClient: phased search over Invidious instances (working
    instances first, then every instance in batches through each route,
    then through the dynamic proxy list)
  - PipedClient: one direct race over Piped API servers
  - YouTubeDataClient: YouTube Data API v3 with a rotating key pool

Each client returns parsed JSON or None; transport problems never escape.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import urlencode

import httpx

from . import config
from .instances import ApiKeyPool, SourceRegistry
from .proxy_manager import ProxyDirectory
from .race import RaceFetcher, RaceResult

logger = logging.getLogger(__name__)


async def request_json(
    client: httpx.AsyncClient,
    url: str,
    timeout: float,
    method: str = "GET",
    headers: Optional[Dict[str, str]] = None,
    json_body: Optional[Dict[str, Any]] = None,
) -> Tuple[Optional[Any], Optional[str]]:
    """
    Single JSON request for fixed-endpoint backends.

    Returns (data, None) on success or (None, reason) on any failure.
    """
    try:
        resp = await asyncio.wait_for(
            client.request(method, url, headers=headers, json=json_body),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        return None, f"timed out after {timeout}s"
    except httpx.HTTPError as e:
        return None, f"request failed: {e}"

    if not resp.is_success:
        return None, f"HTTP {resp.status_code}"

    try:
        data = resp.json()
    except ValueError:
        return None, "invalid JSON response"

    if isinstance(data, dict) and data.get("error"):
        return None, f"error: {str(data['error'])[:120]}"
    return data, None


def _batches(hosts: Sequence[str], size: int) -> List[List[str]]:
    return [list(hosts[i:i + size]) for i in range(0, len(hosts), size)]


class InvidiousClient:
    """Invidious `/api/v1` fetcher with working-instance memory."""

    def __init__(
        self,
        race: RaceFetcher,
        proxies: ProxyDirectory,
        registry: SourceRegistry,
        timeout: float = config.INVIDIOUS_TIMEOUT,
        max_retries: int = config.INVIDIOUS_MAX_RETRIES,
        batch_size: int = config.INVIDIOUS_BATCH_SIZE,
        direct_first: bool = True,
    ):
        self.race = race
        self.proxies = proxies
        self.registry = registry
        self.timeout = timeout
        self.max_retries = max_retries
        self.batch_size = batch_size
        self.direct_first = direct_first

    def _won(self, result: RaceResult[Any]) -> Any:
        self.registry.promote(result.host)
        return result.data

    async def fetch(self, endpoint: str, accept: Optional[Callable[[Any], bool]] = None) -> Optional[Any]:
        """
        GET `/api/v1{endpoint}` from the first instance that answers.

        Phase 1 races the remembered working instances through the first
        route. Phase 2 walks every route (direct, then each static proxy)
        `max_retries` times, racing instances in batches. Phase 3 repeats
        the batches once through each dynamic proxy.
        """
        def build(host: str) -> str:
            return f"{host}/api/v1{endpoint}"

        static = self.proxies.get_static_proxies()
        routes = ([""] if self.direct_first else []) + static
        working = self.registry.working_hosts()
        ordered = self.registry.ordered_hosts()
        batches = _batches(ordered, self.batch_size)

        # Phase 1: fast path
        if working and routes:
            result = await self.race.race(build, working, proxy=routes[0], timeout=self.timeout, accept=accept)
            if result is not None:
                return self._won(result)
            logger.info("[Invidious] Fast path failed, trying full search...")

        # Phase 2: every instance through every route
        for attempt in range(self.max_retries):
            for proxy in routes:
                for idx, batch in enumerate(batches, 1):
                    result = await self.race.race(build, batch, proxy=proxy, timeout=self.timeout, accept=accept)
                    if result is not None:
                        return self._won(result)
                    logger.debug(f"[Invidious] Retry {attempt + 1}, batch {idx} via '{proxy}' failed")

        # Phase 3: remote proxy list
        logger.info("[Invidious] Static routes exhausted, trying dynamic proxy list...")
        for proxy in await self.proxies.get_dynamic_proxies():
            for batch in batches:
                result = await self.race.race(build, batch, proxy=proxy, timeout=self.timeout, accept=accept)
                if result is not None:
                    logger.info(f"✅ [Invidious] Success with dynamic proxy: {proxy}")
                    return self._won(result)

        logger.warning(f"⚠️ [Invidious] All instances failed for {endpoint}")
        return None


class PipedClient:
    """Direct race over Piped API servers, working servers first."""

    def __init__(self, race: RaceFetcher, registry: SourceRegistry, timeout: float = config.PIPED_TIMEOUT):
        self.race = race
        self.registry = registry
        self.timeout = timeout

    async def fetch(self, endpoint: str, accept: Optional[Callable[[Any], bool]] = None) -> Optional[Any]:
        result = await self.race.race(
            lambda host: f"{host}{endpoint}",
            self.registry.ordered_hosts(),
            timeout=self.timeout,
            accept=accept,
        )
        if result is None:
            logger.warning(f"⚠️ [Piped] All servers failed for {endpoint}")
            return None
        self.registry.promote(result.host)
        return result.data


class YouTubeDataClient:
    """
    YouTube Data API v3 over a rotating key pool.

    Each call tries up to `key_attempts` keys; each key is tried directly
    and then through the proxy directory's fallback chain.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        proxies: ProxyDirectory,
        keys: ApiKeyPool,
        base_url: str = config.YOUTUBE_API_BASE,
        timeout: float = config.YOUTUBE_API_TIMEOUT,
        key_attempts: int = config.YOUTUBE_API_KEY_ATTEMPTS,
        proxy_retries: int = config.YOUTUBE_API_PROXY_RETRIES,
    ):
        self.client = client
        self.proxies = proxies
        self.keys = keys
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.key_attempts = key_attempts
        self.proxy_retries = proxy_retries

    def _url(self, resource: str, params: Dict[str, Any], key: str) -> str:
        return f"{self.base_url}/{resource}?{urlencode({**params, 'key': key})}"

    async def _get(self, url: str) -> Optional[Any]:
        data, _ = await request_json(self.client, url, self.timeout)
        if data is not None:
            return data
        return await self.proxies.fetch_with_fallback(url, timeout=self.timeout, max_retries=self.proxy_retries)

    async def call(
        self, resource: str, params: Dict[str, Any], non_empty: bool = False
    ) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
        """
        Returns:
            (payload, key) where payload carries an `items` list and key is
            the credential that produced it, or (None, None).
        """
        if not len(self.keys):
            logger.debug("[YouTube API] No API keys configured")
            return None, None

        for attempt in range(self.key_attempts):
            key = self.keys.next_key()
            data = await self._get(self._url(resource, params, key))
            items = data.get("items") if isinstance(data, dict) else None
            if isinstance(items, list) and (items or not non_empty):
                logger.info(f"✅ [YouTube API] {resource} succeeded (key cursor {self.keys.cursor})")
                return data, key
            logger.debug(f"[YouTube API] {resource} attempt {attempt + 1}/{self.key_attempts} failed")
        return None, None

    async def search(self, query: str, max_results: int = 20) -> Optional[List[Dict[str, Any]]]:
        """search.list joined with videos.list for duration and view counts."""
        data, key = await self.call("search", {
            "part": "snippet",
            "q": query,
            "type": "video",
            "maxResults": max_results,
        })
        if data is None:
            return None

        items = [i for i in data["items"] if isinstance(i.get("id"), dict) and i["id"].get("videoId")]
        ids = ",".join(i["id"]["videoId"] for i in items)
        details: Dict[str, Dict[str, Any]] = {}
        if ids:
            detail_data = await self._get(self._url("videos", {"part": "contentDetails,statistics", "id": ids}, key))
            if isinstance(detail_data, dict):
                details = {d.get("id"): d for d in detail_data.get("items") or []}

        joined = []
        for item in items:
            video_id = item["id"]["videoId"]
            extra = details.get(video_id, {})
            joined.append({
                "id": video_id,
                "snippet": item.get("snippet") or {},
                "contentDetails": extra.get("contentDetails") or {},
                "statistics": extra.get("statistics") or {},
            })
        return joined

    async def trending(self, region: str = "JP", max_results: int = 25) -> Optional[List[Dict[str, Any]]]:
        data, _ = await self.call("videos", {
            "part": "snippet,contentDetails,statistics",
            "chart": "mostPopular",
            "regionCode": region,
            "maxResults": max_results,
        })
        return data["items"] if data is not None else None

    async def video(self, video_id: str) -> Optional[Dict[str, Any]]:
        data, _ = await self.call(
            "videos", {"part": "snippet,contentDetails,statistics", "id": video_id}, non_empty=True
        )
        if data is None:
            return None
        return data["items"][0]
