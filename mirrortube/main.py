"""
FastAPI Mirror Resolution Service
Resolves YouTube video ids to playable streams and metadata across public mirrors
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import yt_dlp

from . import __version__, config
from .instances import registries_snapshot
from .models import (
    CommentsPage,
    ErrorCode,
    ErrorDetail,
    ErrorResponse,
    HealthResponse,
    HistoryItem,
    PreferencesUpdate,
    PriorityMove,
    PriorityUpdate,
    ProxyListResponse,
    QuickMetadata,
    StreamResponse,
    VideoMetadata,
    VideoStub,
)
from .normalize import extract_video_id, pick_stream
from .priority import STREAM_BACKEND_LABELS
from .resolver import UnifiedResolver, build_resolver

# Logging configuration
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# App metadata
VERSION = __version__
start_time = time.time()


def error_response(
    status_code: int,
    code: ErrorCode,
    message: str,
    is_transient: bool,
    retry_after_seconds: Optional[int] = None,
    details: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    error = ErrorDetail(
        code=code,
        message=message,
        is_transient=is_transient,
        retry_after_seconds=retry_after_seconds,
        details=details,
    )
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=error).model_dump(mode="json"))


def get_resolver(request: Request) -> UnifiedResolver:
    return request.app.state.resolver


class InvalidVideoId(Exception):
    def __init__(self, value: str):
        super().__init__(value)
        self.value = value


def require_video_id(video_id: str) -> str:
    """Path value -> canonical 11-character id; 400 when unusable."""
    parsed = extract_video_id(video_id)
    if parsed is None:
        raise InvalidVideoId(video_id)
    return parsed


async def all_backends_failed(resolver: UnifiedResolver, video_id: str, what: str) -> JSONResponse:
    embeds = await resolver.embed_fallbacks(video_id)
    return error_response(
        502,
        ErrorCode.ALL_BACKENDS_FAILED,
        f"All {what} backends failed for {video_id}",
        is_transient=True,
        retry_after_seconds=30,
        details={"video_id": video_id, "embeds": embeds},
    )


router = APIRouter(prefix="/api/v1")


# ============================================================================
# RESOLUTION ENDPOINTS
# ============================================================================


@router.get("/streams/{video_id}", response_model=StreamResponse)
async def get_streams(video_id: str, resolver: UnifiedResolver = Depends(get_resolver)):
    """
    Resolve playable streams for a video

    **Flow:**
    1. Return the cached descriptor when fresh (source="cache")
    2. Otherwise walk the stream backends in priority order
    3. On total failure respond 502 with embedded-player fallback URLs
    """
    video_id = require_video_id(video_id)
    logger.info(f"📥 Stream request: {video_id}")

    descriptor = await resolver.resolve_video(video_id)
    if descriptor is None:
        return await all_backends_failed(resolver, video_id, "stream")

    selected = pick_stream(descriptor, resolver.library.get_preferred_quality())
    return StreamResponse(stream=descriptor, selected=selected)


@router.get("/videos/{video_id}", response_model=VideoMetadata)
async def get_video(video_id: str, resolver: UnifiedResolver = Depends(get_resolver)):
    video_id = require_video_id(video_id)
    metadata = await resolver.resolve_metadata(video_id)
    if metadata is None:
        return await all_backends_failed(resolver, video_id, "metadata")
    return metadata


@router.get("/videos/{video_id}/quick", response_model=QuickMetadata)
async def get_quick_metadata(video_id: str, resolver: UnifiedResolver = Depends(get_resolver)):
    video_id = require_video_id(video_id)
    quick = await resolver.quick_metadata(video_id)
    if quick is None:
        return error_response(404, ErrorCode.NOT_FOUND, f"No metadata found for {video_id}", is_transient=True)
    return quick


@router.get("/videos/{video_id}/comments", response_model=CommentsPage)
async def get_comments(
    video_id: str,
    continuation: Optional[str] = None,
    resolver: UnifiedResolver = Depends(get_resolver),
):
    video_id = require_video_id(video_id)
    page = await resolver.comments(video_id, continuation)
    if page is None:
        return error_response(
            502, ErrorCode.ALL_BACKENDS_FAILED, f"Comments unavailable for {video_id}",
            is_transient=True, retry_after_seconds=30,
        )
    return page


@router.get("/search", response_model=List[VideoStub])
async def search(q: str = Query(..., min_length=1), resolver: UnifiedResolver = Depends(get_resolver)):
    logger.info(f"🔍 Search request: {q}")
    return await resolver.search(q)


@router.get("/trending", response_model=List[VideoStub])
async def trending(region: str = "JP", resolver: UnifiedResolver = Depends(get_resolver)):
    return await resolver.trending(region)


@router.get("/embeds/{video_id}")
async def get_embeds(
    video_id: str,
    start: Optional[str] = None,
    end: Optional[str] = None,
    resolver: UnifiedResolver = Depends(get_resolver),
):
    """Embedded-player URLs for when no stream can be resolved; start/end as seconds or h:mm:ss"""
    video_id = require_video_id(video_id)
    return {"video_id": video_id, **(await resolver.embed_fallbacks(video_id, start, end))}


# ============================================================================
# DIAGNOSTICS & PRIORITY
# ============================================================================


@router.get("/stats")
async def get_stats(resolver: UnifiedResolver = Depends(get_resolver)):
    return {
        "metadata": {k: v.model_dump() for k, v in resolver.get_api_stats().items()},
        "streams": {k: v.model_dump() for k, v in resolver.get_stream_stats().items()},
        "metadata_scores": resolver.metadata_policy.scores(),
        "stream_order": resolver.stream_order(),
        "instances": registries_snapshot(resolver.registries),
    }


@router.post("/stats/reset")
async def reset_stats(resolver: UnifiedResolver = Depends(get_resolver)):
    resolver.reset_api_stats()
    return {"success": True}


def _priority_payload(order: List[str]) -> Dict[str, Any]:
    return {
        "order": order,
        "backends": [
            {"id": b, **STREAM_BACKEND_LABELS.get(b, {"name": b, "description": ""})}
            for b in order
        ],
    }


@router.get("/priority")
async def get_priority(resolver: UnifiedResolver = Depends(get_resolver)):
    return _priority_payload(resolver.stream_policy.order())


@router.put("/priority")
async def set_priority(request: PriorityUpdate, resolver: UnifiedResolver = Depends(get_resolver)):
    unknown = [b for b in request.order if b not in resolver.stream_policy.defaults]
    if unknown:
        return error_response(
            400, ErrorCode.INVALID_PRIORITY, f"Unknown backends: {', '.join(unknown)}",
            is_transient=False, details={"known": resolver.stream_policy.defaults},
        )
    return _priority_payload(resolver.stream_policy.set_order(request.order))


@router.post("/priority/move")
async def move_priority(request: PriorityMove, resolver: UnifiedResolver = Depends(get_resolver)):
    try:
        order = resolver.stream_policy.move(request.backend, request.direction)
    except ValueError as e:
        return error_response(400, ErrorCode.INVALID_PRIORITY, str(e), is_transient=False)
    return _priority_payload(order)


@router.delete("/priority")
async def reset_priority(resolver: UnifiedResolver = Depends(get_resolver)):
    return _priority_payload(resolver.stream_policy.reset())


@router.get("/proxies", response_model=ProxyListResponse)
async def get_proxies(resolver: UnifiedResolver = Depends(get_resolver)):
    return ProxyListResponse(
        static=resolver.proxies.get_static_proxies(),
        dynamic=await resolver.proxies.get_dynamic_proxies(),
    )


@router.post("/proxies/refresh", response_model=ProxyListResponse)
async def refresh_proxies(resolver: UnifiedResolver = Depends(get_resolver)):
    dynamic = await resolver.proxies.refresh()
    return ProxyListResponse(static=resolver.proxies.get_static_proxies(), dynamic=dynamic)


# ============================================================================
# USER LIBRARY
# ============================================================================


@router.get("/history", response_model=List[HistoryItem])
async def get_history(resolver: UnifiedResolver = Depends(get_resolver)):
    return resolver.library.get_history()


@router.post("/history", response_model=List[HistoryItem])
async def add_history(item: HistoryItem, resolver: UnifiedResolver = Depends(get_resolver)):
    return resolver.library.add_to_history(item)


@router.delete("/history")
async def clear_history(resolver: UnifiedResolver = Depends(get_resolver)):
    resolver.library.clear_history()
    return {"success": True}


@router.get("/favorites", response_model=List[HistoryItem])
async def get_favorites(resolver: UnifiedResolver = Depends(get_resolver)):
    return resolver.library.get_favorites()


@router.post("/favorites", response_model=List[HistoryItem])
async def add_favorite(item: HistoryItem, resolver: UnifiedResolver = Depends(get_resolver)):
    return resolver.library.add_to_favorites(item)


@router.delete("/favorites/{video_id}", response_model=List[HistoryItem])
async def remove_favorite(video_id: str, resolver: UnifiedResolver = Depends(get_resolver)):
    return resolver.library.remove_from_favorites(video_id)


def _preferences(resolver: UnifiedResolver) -> Dict[str, Optional[str]]:
    library = resolver.library
    return {
        "quality": library.get_preferred_quality(),
        "thumbnail_source": library.get_thumbnail_source(),
        "language": library.get_language(),
    }


@router.get("/preferences")
async def get_preferences(resolver: UnifiedResolver = Depends(get_resolver)):
    return _preferences(resolver)


@router.put("/preferences")
async def update_preferences(request: PreferencesUpdate, resolver: UnifiedResolver = Depends(get_resolver)):
    library = resolver.library
    if request.thumbnail_source is not None:
        try:
            library.set_thumbnail_source(request.thumbnail_source)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
    if request.quality is not None:
        library.set_preferred_quality(request.quality)
    if request.language is not None:
        library.set_language(request.language)
    return _preferences(resolver)


@router.get("/health", response_model=HealthResponse)
async def health_check(resolver: UnifiedResolver = Depends(get_resolver)):
    """
    Health check endpoint for monitoring

    **Metrics:**
    - Service status and uptime
    - Cache sizes
    - Dynamic proxy count
    """
    proxies = resolver.proxies
    return HealthResponse(
        status="healthy",
        version=VERSION,
        uptime_seconds=time.time() - start_time,
        stream_cache_entries=len(resolver.stream_cache),
        metadata_cache_entries=len(resolver.metadata_cache),
        dynamic_proxies=len(proxies.get_all_proxies()) - len(proxies.get_static_proxies()),
    )


# ============================================================================
# APP
# ============================================================================


def create_app(resolver: Optional[UnifiedResolver] = None) -> FastAPI:
    """Build the service; a resolver passed in is used instead of building one."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifecycle manager for startup/shutdown tasks"""
        # Startup
        logger.info("🚀 Starting mirror resolution service...")
        logger.info(f"Version: {VERSION}")
        logger.info(f"yt-dlp version: {yt_dlp.version.__version__}")

        current = resolver or build_resolver()
        app.state.resolver = current
        logger.info(f"🔑 YouTube Data API keys: {len(current.keys)} configured")
        logger.info(f"📂 State: {current.store.path or 'memory only'}")

        # Warm the dynamic proxy list, then refresh it hourly
        await current.proxies.refresh()
        refresh_task = asyncio.create_task(current.proxies.auto_refresh_loop())

        yield

        # Shutdown
        logger.info("Shutting down mirror resolution service...")
        refresh_task.cancel()
        try:
            await refresh_task
        except asyncio.CancelledError:
            pass
        await current.aclose()

    app = FastAPI(
        title="MirrorTube Resolution Service",
        description="Multi-source YouTube stream and metadata resolution across public mirrors",
        version=VERSION,
        lifespan=lifespan,
    )

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)

    @app.get("/")
    async def root():
        """Root endpoint with service info"""
        return {
            "service": "MirrorTube Resolution Service",
            "version": VERSION,
            "status": "running",
            "endpoints": {
                "streams": "/api/v1/streams/{video_id}",
                "videos": "/api/v1/videos/{video_id}",
                "search": "/api/v1/search?q=",
                "trending": "/api/v1/trending",
                "health": "/api/v1/health",
            },
            "docs": "/docs",
        }

    @app.exception_handler(InvalidVideoId)
    async def invalid_video_id_handler(request, exc: InvalidVideoId):
        return error_response(400, ErrorCode.INVALID_VIDEO_ID, f"Invalid video id: {exc.value}", is_transient=False)

    @app.exception_handler(500)
    async def server_error_handler(request, exc):
        """Custom 500 handler"""
        logger.exception("Internal server error")
        return error_response(
            500, ErrorCode.SERVER_ERROR, "Internal server error. Please try again later.",
            is_transient=True, retry_after_seconds=120,
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
