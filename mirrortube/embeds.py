"""
Embedded-player fallbacks.

When every stream backend fails, the caller degrades to an iframe player.
This module builds those embed URLs and fetches the education-embed
parameter strings published by third parties.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Union

import httpx

from .race import proxied_url

logger = logging.getLogger(__name__)

EDU_EMBED_BASE = "https://www.youtubeeducation.com/embed/"
NOCOOKIE_EMBED_BASE = "https://www.youtube-nocookie.com/embed/"

PARAM_FETCH_TIMEOUT = 3.0
PARAM_PROXIES = [
    "https://api.allorigins.win/raw?url=",
    "https://corsproxy.io/?",
    "https://api.codetabs.com/v1/proxy?quest=",
]


@dataclass(frozen=True)
class EduSource:
    id: str
    name: str
    url: Optional[str]
    category: str  # "education" | "nocookie"
    parse_type: str  # "text" | "json-params" | "json-result"


EDU_SOURCES: List[EduSource] = [
    EduSource("nocookie", "Nocookie", None, "nocookie", "text"),
    EduSource(
        "wakame", "Education - wakame",
        "https://raw.githubusercontent.com/wakame02/wktopu/refs/heads/main/edu.text",
        "education", "text",
    ),
    EduSource(
        "siawaseok", "Education - siawaseok",
        "https://raw.githubusercontent.com/siawaseok3/wakame/master/video_config.json",
        "education", "json-params",
    ),
    EduSource(
        "woolisbest4520-1", "Education - woolisbest4520-1",
        "https://raw.githubusercontent.com/woolisbest-4520/about-youtube/refs/heads/main/edu/edu.txt",
        "education", "text",
    ),
    EduSource(
        "woolisbest4520-2", "Education - woolisbest4520-2",
        "https://raw.githubusercontent.com/woolisbest-4520/about-youtube/refs/heads/main/edu/parameter.txt",
        "education", "text",
    ),
    EduSource(
        "woolisbest4520-3", "Education - woolisbest4520-3",
        "https://raw.githubusercontent.com/woolisbest-4520/about-youtube/refs/heads/main/edu/ep.txt",
        "education", "text",
    ),
    EduSource(
        "toka-kun-1", "Education - Toka_Kun_-1",
        "https://raw.githubusercontent.com/toka-kun/Education/refs/heads/main/keys/key1.json",
        "education", "json-result",
    ),
    EduSource(
        "toka-kun-2", "Education - Toka_Kun_-2",
        "https://raw.githubusercontent.com/toka-kun/Education/refs/heads/main/keys/key2.json",
        "education", "json-result",
    ),
]


async def _fetch_text(client: httpx.AsyncClient, url: str) -> Optional[str]:
    """Direct first, then through each relay; None when all fail."""
    for proxy in ["", *PARAM_PROXIES]:
        try:
            resp = await client.get(proxied_url(proxy, url), timeout=PARAM_FETCH_TIMEOUT)
        except httpx.HTTPError:
            continue
        if resp.is_success:
            return resp.text
    return None


async def fetch_edu_parameter(client: httpx.AsyncClient, source: EduSource) -> str:
    """Parameter string for one source; '' when unavailable."""
    if not source.url:
        return ""
    text = await _fetch_text(client, source.url)
    if text is None:
        logger.warning(f"⚠️ Failed to fetch parameter from {source.name}")
        return ""

    if source.parse_type == "text":
        return text.strip()
    try:
        data = json.loads(text)
    except ValueError:
        logger.warning(f"⚠️ {source.name} returned malformed JSON")
        return ""
    if not isinstance(data, dict):
        return ""
    field = "params" if source.parse_type == "json-params" else "result"
    value = data.get(field) or ""
    return value if isinstance(value, str) else ""


async def fetch_default_edu_parameter(client: httpx.AsyncClient) -> str:
    source = next((s for s in EDU_SOURCES if s.id == "siawaseok"), None)
    return await fetch_edu_parameter(client, source) if source else ""


def _as_seconds(value: Union[int, str, None]) -> Optional[int]:
    if isinstance(value, str):
        return convert_to_seconds(value)
    return value


def _player_options(
    video_id: str,
    autoplay: bool = True,
    loop: bool = False,
    start: Union[int, str, None] = None,
    end: Union[int, str, None] = None,
    list_id: Optional[str] = None,
) -> List[str]:
    start, end = _as_seconds(start), _as_seconds(end)
    params: List[str] = []
    if autoplay:
        params.append("autoplay=1")
    if loop:
        params.append("loop=1")
        params.append(f"playlist={video_id}")
    if start is not None and start > 0:
        params.append(f"start={start}")
    if end is not None and end > 0:
        params.append(f"end={end}")
    if list_id:
        if list_id == video_id:
            params.append(f"playlist={list_id}")
        else:
            params.append(f"list={list_id}")
    return params


def build_edu_embed_url(
    video_id: str,
    params: str = "",
    autoplay: bool = True,
    loop: bool = False,
    start: Union[int, str, None] = None,
    end: Union[int, str, None] = None,
    list_id: Optional[str] = None,
) -> str:
    extra = "&".join(_player_options(video_id, autoplay, loop, start, end, list_id))
    query = params or ""
    if extra:
        if query:
            query = f"{query}&{extra}" if query.startswith("?") else f"?{query}&{extra}"
        else:
            query = f"?{extra}"
    elif query and not query.startswith("?"):
        query = f"?{query}"
    return f"{EDU_EMBED_BASE}{video_id}{query}"


def build_nocookie_embed_url(
    video_id: str,
    autoplay: bool = True,
    loop: bool = False,
    start: Union[int, str, None] = None,
    end: Union[int, str, None] = None,
    list_id: Optional[str] = None,
) -> str:
    params = _player_options(video_id, autoplay, loop, start, end, list_id)
    # mute=0 sits right after autoplay
    params.insert(1 if autoplay else 0, "mute=0")
    return f"{NOCOOKIE_EMBED_BASE}{video_id}?{'&'.join(params)}"


def convert_to_seconds(value: str) -> Optional[int]:
    """'1:30', '1:02:03', '90' (full-width digits and colons allowed) -> seconds"""
    if not value:
        return None
    text = "".join(
        chr(ord(ch) - 0xFEE0) if "０" <= ch <= "９" else ch
        for ch in value
    ).replace("：", ":").strip()
    if not text:
        return None

    if ":" in text:
        try:
            parts = [int(p) for p in text.split(":")]
        except ValueError:
            return None
        if len(parts) == 3:
            return parts[0] * 3600 + parts[1] * 60 + parts[2]
        if len(parts) == 2:
            return parts[0] * 60 + parts[1]

    match = re.match(r"\d+", text)
    return int(match.group(0)) if match else None
