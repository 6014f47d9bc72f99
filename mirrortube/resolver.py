"""
Unified resolver

Owns every piece of per-session state (HTTP client, state store, proxy
directory, mirror registries, API key pool, caches, statistics and priority
policies) and walks backends in priority order until one produces a result.

Flow for resolve_video():
  1. Stream cache hit -> return it tagged source="cache"
  2. Join a pending resolution for the same id, if any (single-flight)
  3. Walk the static priority order; each adapter gets its own deadline
  4. First success is written through to the cache; every attempt updates stats
  5. Exhaustion returns None (callers fall back to an embedded player)
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import httpx

from . import config
from .cache import ResolutionCache
from .embeds import build_edu_embed_url, build_nocookie_embed_url, fetch_default_edu_parameter
from .instances import ApiKeyPool, SourceRegistry, build_registry
from .library import UserLibrary
from .metadata_backends import ListingAdapter, MetadataAdapter, MetadataBackends
from .mirrors import InvidiousClient, PipedClient, YouTubeDataClient
from .models import CommentsPage, QuickMetadata, StreamDescriptor, VideoMetadata, VideoStub
from .priority import (
    LISTING_BACKENDS,
    AdaptivePriorityPolicy,
    ApiStatsTracker,
    StaticPriorityPolicy,
    describe_order,
)
from .proxy_manager import ProxyDirectory
from .race import RaceFetcher
from .storage import StateStore
from .stream_backends import StreamAdapter, StreamBackends

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)


def _usable(result: Any) -> bool:
    """None and empty listings both count as a backend failure."""
    if result is None:
        return False
    if isinstance(result, list) and not result:
        return False
    return True


class UnifiedResolver:
    """
    Session context shared by all adapters.

    Adapter tables (`stream_adapters`, `metadata_adapters`, `search_adapters`,
    `trending_adapters`) are plain dicts of backend id -> coroutine function
    and can be replaced, e.g. in tests.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        store: Optional[StateStore] = None,
        api_keys: Optional[List[str]] = None,
        stream_adapters: Optional[Dict[str, StreamAdapter]] = None,
        metadata_adapters: Optional[Dict[str, MetadataAdapter]] = None,
        backend_timeouts: Optional[Dict[str, float]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        )
        self.store = store or StateStore()
        self.clock = clock

        self.library = UserLibrary(self.store)
        self.proxies = ProxyDirectory(self.client, self.store, clock=clock)
        self.race = RaceFetcher(self.client)
        self.keys = ApiKeyPool(config.YOUTUBE_API_KEYS if api_keys is None else api_keys)

        self.registries: Dict[str, SourceRegistry] = {
            "invidious": build_registry(
                "invidious", config.INVIDIOUS_INSTANCES, self.store,
                ttl=config.INVIDIOUS_WORKING_TTL_SECONDS, cap=config.INVIDIOUS_WORKING_CAP, clock=clock,
            ),
            "piped": build_registry(
                "piped", config.PIPED_SERVERS, self.store,
                ttl=config.PIPED_WORKING_TTL_SECONDS, cap=config.PIPED_WORKING_CAP, clock=clock,
            ),
        }

        self.invidious = InvidiousClient(self.race, self.proxies, self.registries["invidious"])
        self.piped = PipedClient(self.race, self.registries["piped"])
        self.youtube = YouTubeDataClient(self.client, self.proxies, self.keys)

        self.stream_backends = StreamBackends(
            self.client, self.race, self.registries["invidious"], self.piped
        )
        self.metadata_backends = MetadataBackends(
            self.client, self.invidious, self.piped, self.youtube,
            thumbnail_host=self.library.get_thumbnail_source,
        )

        self.stream_adapters: Dict[str, StreamAdapter] = stream_adapters or self.stream_backends.adapters()
        self.metadata_adapters: Dict[str, MetadataAdapter] = metadata_adapters or self.metadata_backends.adapters()
        self.search_adapters: Dict[str, ListingAdapter] = self.metadata_backends.search_adapters()
        self.trending_adapters: Dict[str, ListingAdapter] = self.metadata_backends.trending_adapters()
        self.backend_timeouts: Dict[str, float] = dict(config.BACKEND_TIMEOUTS)
        if backend_timeouts:
            self.backend_timeouts.update(backend_timeouts)

        self.stream_cache: ResolutionCache[StreamDescriptor] = ResolutionCache(
            "streams", config.STREAM_CACHE_TTL_SECONDS, clock=clock
        )
        self.metadata_cache: ResolutionCache[VideoMetadata] = ResolutionCache(
            "metadata", config.METADATA_CACHE_TTL_SECONDS, clock=clock
        )

        # stream and metadata backends share names (invidious, piped)
        self.stream_stats = ApiStatsTracker(self.stream_adapters, clock=clock)
        self.metadata_stats = ApiStatsTracker([*self.metadata_adapters, *LISTING_BACKENDS], clock=clock)

        self.stream_policy = StaticPriorityPolicy(self.store, defaults=list(self.stream_adapters))
        self.metadata_policy = AdaptivePriorityPolicy(self.metadata_stats, backends=list(self.metadata_adapters))

        self.prefetch_related = config.PREFETCH_RELATED
        self._edu_params: Optional[str] = None

    # =========================================================================
    # BACKEND WALK
    # =========================================================================

    def _timeout_for(self, backend: str) -> float:
        return self.backend_timeouts.get(backend, config.DEFAULT_BACKEND_TIMEOUT)

    async def _call_adapter(
        self, backend: str, adapter: Callable[[str], Awaitable[Tuple[Any, Optional[str]]]], arg: str
    ) -> Tuple[Any, Optional[str]]:
        timeout = self._timeout_for(backend)
        try:
            return await asyncio.wait_for(adapter(arg), timeout=timeout)
        except asyncio.TimeoutError:
            return None, f"timed out after {timeout}s"
        except Exception as e:
            logger.exception(f"💥 [{backend}] Unexpected adapter error: {e}")
            return None, f"unexpected error: {e!r}"

    async def _walk(
        self,
        label: str,
        order: Sequence[str],
        adapters: Dict[str, Callable[[str], Awaitable[Tuple[Any, Optional[str]]]]],
        stats: ApiStatsTracker,
        arg: str,
    ) -> Optional[Tuple[str, Any]]:
        """
        Try each backend in `order` until one returns a usable result.

        Returns (backend, result) or None when every backend failed. Each
        attempt records exactly one success or failure in `stats`.
        """
        for backend in order:
            adapter = adapters.get(backend)
            if adapter is None:
                continue

            logger.info(f"🎯 [{label}] Trying {backend} for {arg}")
            result, error = await self._call_adapter(backend, adapter, arg)

            if _usable(result):
                stats.record(backend, True)
                logger.info(f"✅ [{label}] {backend} succeeded for {arg}")
                return backend, result

            stats.record(backend, False)
            logger.warning(f"⚠️ [{label}] {backend} failed for {arg}: {error or 'empty result'}")

        logger.error(f"❌ [{label}] All backends failed for {arg} ({describe_order(order)})")
        return None

    # =========================================================================
    # STREAMS
    # =========================================================================

    def stream_order(self) -> List[str]:
        return [b for b in self.stream_policy.order() if b in self.stream_adapters]

    async def _resolve_streams(self, video_id: str) -> Optional[StreamDescriptor]:
        hit = await self._walk("streams", self.stream_order(), self.stream_adapters, self.stream_stats, video_id)
        if hit is None:
            return None
        backend, descriptor = hit
        return descriptor.model_copy(update={"source": backend})

    async def resolve_video(self, video_id: str) -> Optional[StreamDescriptor]:
        """Playable streams for `video_id`, or None when every backend failed."""
        cached = self.stream_cache.get(video_id)
        if cached is not None:
            return cached.model_copy(update={"source": "cache"})
        return await self.stream_cache.get_or_fetch(video_id, lambda: self._resolve_streams(video_id))

    # =========================================================================
    # METADATA
    # =========================================================================

    async def _prefetch_with(self, backend: str, video_id: str) -> Optional[VideoMetadata]:
        """Warm one related video through the backend that just succeeded; stats untouched."""
        adapter = self.metadata_adapters.get(backend)
        if adapter is None:
            return None
        result, _ = await self._call_adapter(backend, adapter, video_id)
        return result

    async def _resolve_metadata(self, video_id: str) -> Optional[VideoMetadata]:
        order = self.metadata_policy.order()
        hit = await self._walk("metadata", order, self.metadata_adapters, self.metadata_stats, video_id)
        if hit is None:
            return None
        backend, metadata = hit
        metadata = metadata.model_copy(update={"source": backend})

        if self.prefetch_related and metadata.recommended:
            self.metadata_cache.prefetch(
                [r.video_id for r in metadata.recommended if r.video_id != video_id],
                lambda related_id: self._prefetch_with(backend, related_id),
            )
        return metadata

    async def resolve_metadata(self, video_id: str) -> Optional[VideoMetadata]:
        """Descriptive metadata for `video_id`, or None when every backend failed."""
        cached = self.metadata_cache.get(video_id)
        if cached is not None:
            return cached.model_copy(update={"source": "cache"})
        return await self.metadata_cache.get_or_fetch(video_id, lambda: self._resolve_metadata(video_id))

    async def quick_metadata(self, video_id: str) -> Optional[QuickMetadata]:
        """Title/author/thumbnail only: cache, then siawase (with oEmbed fallback)."""
        cached = self.metadata_cache.get(video_id)
        if cached is None:
            cached, error = await self._call_adapter("siawase", self.metadata_backends.fetch_siawase, video_id)
            if cached is None:
                logger.warning(f"⚠️ Quick metadata unavailable for {video_id}: {error}")
                return None
        return QuickMetadata(
            title=cached.title,
            author=cached.author,
            thumbnail=cached.thumbnail,
            length_seconds=cached.length_seconds,
        )

    async def comments(self, video_id: str, continuation: Optional[str] = None) -> Optional[CommentsPage]:
        return await self.metadata_backends.fetch_comments(video_id, continuation)

    # =========================================================================
    # LISTINGS
    # =========================================================================

    async def search(self, query: str) -> List[VideoStub]:
        hit = await self._walk("search", LISTING_BACKENDS, self.search_adapters, self.metadata_stats, query)
        return hit[1] if hit else []

    async def trending(self, region: str = "JP") -> List[VideoStub]:
        hit = await self._walk("trending", LISTING_BACKENDS, self.trending_adapters, self.metadata_stats, region)
        return hit[1] if hit else []

    # =========================================================================
    # EMBED FALLBACKS
    # =========================================================================

    async def edu_parameter(self) -> str:
        """Education embed parameters, fetched once per session when available."""
        if self._edu_params is None:
            params = await fetch_default_edu_parameter(self.client)
            if not params:
                return ""
            self._edu_params = params
        return self._edu_params

    async def embed_fallbacks(
        self, video_id: str, start: Optional[str] = None, end: Optional[str] = None
    ) -> Dict[str, str]:
        """Embed URLs; start/end accept seconds or h:mm:ss text."""
        return {
            "edu": build_edu_embed_url(video_id, await self.edu_parameter(), start=start, end=end),
            "nocookie": build_nocookie_embed_url(video_id, start=start, end=end),
        }

    # =========================================================================
    # STATS & LIFECYCLE
    # =========================================================================

    def get_api_stats(self) -> Dict[str, Any]:
        return self.metadata_stats.snapshot()

    def get_stream_stats(self) -> Dict[str, Any]:
        return self.stream_stats.snapshot()

    def reset_api_stats(self) -> None:
        self.metadata_stats.reset()
        self.stream_stats.reset()

    async def aclose(self) -> None:
        await self.stream_cache.aclose()
        await self.metadata_cache.aclose()
        if self._owns_client:
            await self.client.aclose()


def build_resolver() -> UnifiedResolver:
    """Resolver over the configured data directory (memory only when unset)."""
    return UnifiedResolver(store=StateStore(config.DATA_DIR))
