"""
Normalization helpers shared by the backend adapters.
"""

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .models import StreamDescriptor, StreamVariant

THUMBNAIL_HOSTS = ("i.ytimg.com", "img.youtube.com")
DEFAULT_THUMBNAIL_HOST = "i.ytimg.com"

VIDEO_ID_RE = re.compile(r"^[A-Za-z0-9_-]{11}$")
_VIDEO_ID_IN_URL_RE = re.compile(r"(?:v=|youtu\.be/|shorts/|embed/|live/)([A-Za-z0-9_-]{11})")
_THUMB_VIDEO_ID_RE = re.compile(r"/vi/([A-Za-z0-9_-]+)/")
_ISO_DURATION_RE = re.compile(r"PT(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?")

# Quality label -> max pixel height
QUALITY_TO_HEIGHT = {
    "144p": 144,
    "240p": 240,
    "360p": 360,
    "480p": 480,
    "720p": 720,
    "1080p": 1080,
    "1440p": 1440,
    "2160p": 2160,
    "best": 99999,
}


def extract_video_id(value: str) -> Optional[str]:
    """Bare 11-character id or any common YouTube URL form."""
    value = (value or "").strip()
    if VIDEO_ID_RE.match(value):
        return value
    match = _VIDEO_ID_IN_URL_RE.search(value)
    return match.group(1) if match else None


def iso8601_duration_to_seconds(duration: str) -> int:
    match = _ISO_DURATION_RE.match(duration or "")
    if not match:
        return 0
    hours = int(match.group(1) or 0)
    minutes = int(match.group(2) or 0)
    seconds = int(match.group(3) or 0)
    return hours * 3600 + minutes * 60 + seconds


def parse_timestamp(value: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_published(value: str, now: Optional[datetime] = None) -> str:
    """ISO timestamp -> 'Today', 'N days ago', weeks, months or years."""
    published = parse_timestamp(value)
    if published is None:
        return ""
    now = now or datetime.now(timezone.utc)
    days = (now - published).days
    if days < 1:
        return "Today"
    if days < 7:
        return f"{days} days ago"
    if days < 30:
        return f"{days // 7} weeks ago"
    if days < 365:
        return f"{days // 30} months ago"
    return f"{days // 365} years ago"


def to_int(value: Any, default: int = 0) -> int:
    if value is None or value == "":
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def last_path_segment(url: Optional[str]) -> str:
    if not url:
        return ""
    return url.rstrip("/").split("/")[-1]


def video_id_from_watch_url(url: Optional[str]) -> str:
    """Piped-style '/watch?v=<id>' -> '<id>'"""
    if not url:
        return ""
    return url.split("=")[-1]


def stream_kind(url: str) -> Dict[str, Any]:
    """Detect HLS / DASH manifests from a URL and pick a matching container."""
    lowered = url.lower()
    is_dash = ".mpd" in lowered
    is_hls = ".m3u8" in lowered or ("manifest" in lowered and not is_dash)
    if is_hls:
        return {"is_hls": True, "is_dash": False, "container": "m3u8"}
    if is_dash:
        return {"is_hls": False, "is_dash": True, "container": "mpd"}
    return {"is_hls": False, "is_dash": False, "container": "mp4"}


def manifest_variant(url: str, quality: str = "Best", is_live: bool = False) -> StreamVariant:
    return StreamVariant(url=url, quality=quality, is_live=is_live, **stream_kind(url))


def hls_variant(url: str, is_live: bool = False) -> StreamVariant:
    return StreamVariant(url=url, quality="Auto (HLS)", container="m3u8", is_hls=True, is_live=is_live)


def height_from_label(label: Optional[str]) -> int:
    """'720p', '1280x720' or '720p60' -> 720; unknown -> 0"""
    if not label:
        return 0
    if "x" in label:
        return to_int(label.split("x")[-1])
    match = re.match(r"(\d+)", label)
    return int(match.group(1)) if match else 0


def thumbnail_url(video_id: str, quality: str = "mqdefault", host: str = DEFAULT_THUMBNAIL_HOST) -> str:
    if host not in THUMBNAIL_HOSTS:
        host = DEFAULT_THUMBNAIL_HOST
    return f"https://{host}/vi/{video_id}/{quality}.jpg"


def best_thumbnail(thumbnails: Optional[List[Dict[str, Any]]], host: str = DEFAULT_THUMBNAIL_HOST) -> str:
    """
    Pick a medium/high thumbnail from an Invidious list and rewrite it to the
    preferred image host when the URL carries a /vi/<id>/ segment.
    """
    thumbnails = thumbnails or []
    preferred = next((t for t in thumbnails if t.get("quality") in ("medium", "high")), None)
    url = (preferred or (thumbnails[0] if thumbnails else {})).get("url", "")
    if url:
        match = _THUMB_VIDEO_ID_RE.search(url)
        if match:
            return thumbnail_url(match.group(1), host=host)
    return url


def pick_stream(descriptor: StreamDescriptor, preferred_quality: str = "720p") -> Optional[StreamVariant]:
    """
    Highest combined stream at or below the preferred quality; else the last
    combined stream; else the HLS, then DASH, manifest.
    """
    max_height = QUALITY_TO_HEIGHT.get(preferred_quality, 720)
    best: Optional[StreamVariant] = None
    best_height = 0
    for stream in descriptor.streams:
        if stream.is_hls or stream.is_dash:
            continue
        h = stream.height or height_from_label(stream.quality)
        if best_height < h <= max_height:
            best_height = h
            best = stream
    if best is not None:
        return best

    progressive = [s for s in descriptor.streams if not s.is_hls and not s.is_dash]
    if progressive:
        return progressive[-1]
    if descriptor.hls_url:
        return hls_variant(descriptor.hls_url, is_live=descriptor.is_live)
    if descriptor.dash_url:
        return StreamVariant(url=descriptor.dash_url, quality="Auto (DASH)", container="mpd", is_dash=True)
    return descriptor.streams[0] if descriptor.streams else None
