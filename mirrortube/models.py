"""
Pydantic models for resolved streams, metadata and service payloads
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator


class ErrorCode(str, Enum):
    """Error code classifications"""
    ALL_BACKENDS_FAILED = "ALL_BACKENDS_FAILED"
    INVALID_VIDEO_ID = "INVALID_VIDEO_ID"
    INVALID_PRIORITY = "INVALID_PRIORITY"
    NOT_FOUND = "NOT_FOUND"
    SERVER_ERROR = "SERVER_ERROR"


class StreamVariant(BaseModel):
    """One playable rendition of a video"""
    url: str
    quality: str = "Unknown"
    container: str = "mp4"
    mime_type: Optional[str] = None
    has_audio: bool = True
    has_video: bool = True
    is_adaptive: bool = False
    is_live: bool = False
    is_hls: bool = False
    is_dash: bool = False
    bitrate: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    filesize: Optional[int] = None

    @property
    def is_audio_only(self) -> bool:
        return self.has_audio and not self.has_video

    @property
    def is_video_only(self) -> bool:
        return self.has_video and not self.has_audio


class StreamDescriptor(BaseModel):
    """Normalized result of a stream resolution"""
    video_id: str
    source: str = Field(..., description="Backend that produced the result, or 'cache'")
    streams: List[StreamVariant] = Field(default_factory=list, description="Combined audio+video streams and manifests")
    adaptive_streams: List[StreamVariant] = Field(default_factory=list, description="Video-only / audio-only streams")
    hls_url: Optional[str] = None
    dash_url: Optional[str] = None
    is_live: bool = False
    title: Optional[str] = None
    author: Optional[str] = None

    @model_validator(mode="after")
    def _require_playable(self) -> "StreamDescriptor":
        if not self.streams and not self.hls_url and not self.dash_url:
            raise ValueError("stream descriptor needs streams, an HLS manifest or a DASH manifest")
        return self


class VideoStub(BaseModel):
    """Compact video record used for related videos, search and trending"""
    video_id: str
    title: str = ""
    author: str = ""
    author_id: str = ""
    description: str = ""
    view_count: int = 0
    length_seconds: int = 0
    published: int = 0
    published_text: str = ""
    thumbnail: str = ""
    is_live: bool = False


class VideoMetadata(BaseModel):
    """Normalized descriptive record for a single video"""
    video_id: str
    title: str
    author: str = ""
    author_id: str = ""
    description: str = ""
    view_count: int = 0
    length_seconds: int = 0
    published_text: str = ""
    thumbnail: str = ""
    author_thumbnail: Optional[str] = None
    like_count: Optional[int] = None
    is_live: bool = False
    recommended: List[VideoStub] = Field(default_factory=list)
    source: str = ""


class QuickMetadata(BaseModel):
    title: str
    author: str
    thumbnail: str
    length_seconds: int = 0


class Comment(BaseModel):
    author: str = ""
    author_thumbnail: str = ""
    content: str = ""
    published: int = 0
    published_text: str = ""
    like_count: int = 0
    reply_count: int = 0


class CommentsPage(BaseModel):
    comments: List[Comment] = Field(default_factory=list)
    continuation: Optional[str] = None


class ApiStats(BaseModel):
    """Per-backend counters; last_success is a unix timestamp (0 = never)"""
    successes: int = 0
    failures: int = 0
    last_success: float = 0.0


class HistoryItem(BaseModel):
    video_id: str
    title: str = ""
    author: str = ""
    thumbnail: str = ""
    timestamp: float = 0.0
    duration: int = 0


class PlayerFallbackState(BaseModel):
    """Snapshot of a watch session's player fallback state"""
    current_player: str
    failed_players: List[str] = Field(default_factory=list)
    retry_count: Dict[str, int] = Field(default_factory=dict)
    is_auto_fallback: bool = False
    all_players_failed: bool = False
    last_error: Optional[str] = None


# ─── Service payloads ────────────────────────────────────────────────────────


class ErrorDetail(BaseModel):
    """Error details"""
    code: ErrorCode
    message: str
    is_transient: bool = Field(..., description="True if retry might succeed, False if permanent")
    retry_after_seconds: Optional[int] = None
    details: Optional[Dict[str, Any]] = None


class ErrorResponse(BaseModel):
    """Error response for failed resolutions"""
    success: bool = False
    error: ErrorDetail


class StreamResponse(BaseModel):
    """Response schema for GET /api/v1/streams/{video_id}"""
    success: bool = True
    stream: StreamDescriptor
    selected: Optional[StreamVariant] = Field(None, description="Best match for the preferred quality")


class PriorityUpdate(BaseModel):
    """Request schema for PUT /api/v1/priority"""
    order: List[str] = Field(..., description="Ordered stream backend identifiers")

    class Config:
        json_schema_extra = {
            "example": {
                "order": ["piped", "invidious", "choco_video"],
            }
        }


class PriorityMove(BaseModel):
    """Request schema for POST /api/v1/priority/move"""
    backend: str
    direction: str = Field(..., description="'up' or 'down'")


class PreferencesUpdate(BaseModel):
    quality: Optional[str] = None
    thumbnail_source: Optional[str] = None
    language: Optional[str] = None


class ProxyListResponse(BaseModel):
    static: List[str]
    dynamic: List[str]


class HealthResponse(BaseModel):
    """Response schema for /api/v1/health"""
    status: str
    version: str
    uptime_seconds: float
    stream_cache_entries: int
    metadata_cache_entries: int
    dynamic_proxies: int
