"""
Runtime configuration

Every tunable is read once from the environment at import time.
List-valued settings are comma-separated. Mirror host lists are plain data
and can be overridden the same way.
"""

import os
from pathlib import Path
from typing import List, Optional


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def _load_api_keys() -> List[str]:
    """YouTube Data API keys from YOUTUBE_API_KEYS or YOUTUBE_API_KEYS_FILE (one per line)."""
    keys = _env_list("YOUTUBE_API_KEYS", [])
    keys_file = os.getenv("YOUTUBE_API_KEYS_FILE")
    if keys_file and Path(keys_file).exists():
        for line in Path(keys_file).read_text().splitlines():
            line = line.strip()
            if line and not line.startswith("#") and line not in keys:
                keys.append(line)
    return keys


# ─── Persisted state ─────────────────────────────────────────────────────────

_data_dir = os.getenv("MIRRORTUBE_DATA_DIR")
DATA_DIR: Optional[Path] = Path(_data_dir) if _data_dir else None
STATE_FILENAME = "state.json"

# ─── CORS proxies ────────────────────────────────────────────────────────────

STATIC_CORS_PROXIES = _env_list("STATIC_CORS_PROXIES", [
    "https://api.allorigins.win/raw?url=",
    "https://api.codetabs.com/v1/proxy?quest=",
    "https://thingproxy.freeboard.io/fetch/",
    "https://corsproxy.io/?url=",
    "https://cors.lol/?url=",
    "https://yacdn.org/proxy/",
    "https://proxy.cors.sh/",
    "https://cors.wtf/?url=",
    "https://corsproxy.rocks/?url=",
    "https://cors.hyoo.ru/?url=",
    "https://cors.miaouf.com/?url=",
    "https://crossorigin.me/",
    "https://cors.x2u.in/",
    "https://jsonp.afeld.me/?url=",
    "https://cors-proxy.htmldriven.com/?url=",
    "https://corsproxy.our.buildo.io/?url=",
    "https://cors.now.sh/",
    "https://api.allorigins.win/get?url=",
])
PROXY_LIST_URL = os.getenv(
    "PROXY_LIST_URL",
    "https://raw.githubusercontent.com/woolisbest/crosproxy-list/refs/heads/main/main.txt",
)
PROXY_LIST_TIMEOUT = float(os.getenv("PROXY_LIST_TIMEOUT", "5"))
PROXY_CACHE_TTL_SECONDS = int(os.getenv("PROXY_CACHE_TTL_SECONDS", str(30 * 60)))
PROXY_FETCH_COOLDOWN_SECONDS = int(os.getenv("PROXY_FETCH_COOLDOWN_SECONDS", str(5 * 60)))
PROXY_REFRESH_INTERVAL_SECONDS = int(os.getenv("PROXY_REFRESH_INTERVAL_SECONDS", "3600"))
PROXY_FETCH_TIMEOUT = float(os.getenv("PROXY_FETCH_TIMEOUT", "3"))
PROXY_FETCH_MAX_RETRIES = int(os.getenv("PROXY_FETCH_MAX_RETRIES", "2"))

# ─── Race fetcher ────────────────────────────────────────────────────────────

RACE_GRACE_SECONDS = float(os.getenv("RACE_GRACE_SECONDS", "0.5"))

# ─── Mirror host lists ───────────────────────────────────────────────────────

INVIDIOUS_INSTANCES = _env_list("INVIDIOUS_INSTANCES", [
    "https://inv.nadeko.net",
    "https://yewtu.be",
    "https://invidious.nerdvpn.de",
    "https://inv.vern.cc",
    "https://invidious.f5.si",
    "https://invidious.lunivers.trade",
    "https://invidious.nietzospannend.nl",
    "https://invidious.projectsegfau.lt",
    "https://invidious.protokolla.fi",
    "https://invidious.tiekoetter.com",
    "https://nyc1.iv.ggtyler.dev",
    "https://rust.oskamp.nl",
    "https://y.com.sb",
    "https://yt.thechangebook.org",
    "https://yt.vern.cc",
    "https://yt.artemislena.eu",
    "https://invidious.privacydev.net",
    "https://invidious.flokinet.to",
])
INVIDIOUS_TIMEOUT = float(os.getenv("INVIDIOUS_TIMEOUT", "2"))
INVIDIOUS_MAX_RETRIES = int(os.getenv("INVIDIOUS_MAX_RETRIES", "3"))
INVIDIOUS_BATCH_SIZE = int(os.getenv("INVIDIOUS_BATCH_SIZE", "6"))
INVIDIOUS_WORKING_TTL_SECONDS = int(os.getenv("INVIDIOUS_WORKING_TTL_SECONDS", str(10 * 60)))
INVIDIOUS_WORKING_CAP = int(os.getenv("INVIDIOUS_WORKING_CAP", "8"))
INVIDIOUS_STREAM_TIMEOUT = float(os.getenv("INVIDIOUS_STREAM_TIMEOUT", "5"))
INVIDIOUS_STREAM_DEADLINE = float(os.getenv("INVIDIOUS_STREAM_DEADLINE", "8"))

PIPED_SERVERS = _env_list("PIPED_SERVERS", [
    "https://pipedapi.kavin.rocks",
    "https://pipedapi.adminforge.de",
    "https://pipedapi.in.projectsegfau.lt",
    "https://pipedapi.r4fo.com",
    "https://api.piped.yt",
    "https://pipedapi.moomoo.me",
    "https://piped-api.garudalinux.org",
])
PIPED_TIMEOUT = float(os.getenv("PIPED_TIMEOUT", "5"))
PIPED_WORKING_TTL_SECONDS = int(os.getenv("PIPED_WORKING_TTL_SECONDS", str(5 * 60)))
PIPED_WORKING_CAP = int(os.getenv("PIPED_WORKING_CAP", "3"))

MIN_TUBE_SERVERS = _env_list("MIN_TUBE_SERVERS", [
    "https://min-tube2-api.vercel.app",
    "https://min-tube-api-3.vercel.app",
    "https://min-tube-api4.vercel.app",
    "https://server-minp.vercel.app",
    "https://min-tube-api5.vercel.app",
])
MIN_TUBE_SERVER_LIST_URL = os.getenv(
    "MIN_TUBE_SERVER_LIST_URL",
    "https://raw.githubusercontent.com/Minotaur-ZAOU/test/refs/heads/main/min-tube-api.json",
)
MIN_TUBE_LIST_TIMEOUT = float(os.getenv("MIN_TUBE_LIST_TIMEOUT", "2"))
MIN_TUBE_TIMEOUT = float(os.getenv("MIN_TUBE_TIMEOUT", "6"))

COBALT_APIS = _env_list("COBALT_APIS", [
    "https://api.cobalt.tools",
    "https://co.wuk.sh",
])
# Relays used by single-endpoint stream backends (Invidious streams, Cobalt)
STREAM_PROXIES = _env_list("STREAM_PROXIES", [
    "https://corsproxy.io/?",
    "https://api.allorigins.win/raw?url=",
    "https://api.codetabs.com/v1/proxy?quest=",
])
COBALT_TIMEOUT = float(os.getenv("COBALT_TIMEOUT", "6"))

CHOCO_VIDEO_API = os.getenv("CHOCO_VIDEO_API", "https://siawaseok.duckdns.org/api/video2/")
CHOCO_STREAM_API = os.getenv("CHOCO_STREAM_API", "https://ytdl-0et1.onrender.com/stream/")
CHOCO_M3U8_API = os.getenv("CHOCO_M3U8_API", "https://ytdl-0et1.onrender.com/m3u8/")
CHOCO_VIDEO_TIMEOUT = float(os.getenv("CHOCO_VIDEO_TIMEOUT", "5"))
CHOCO_STREAM_TIMEOUT = float(os.getenv("CHOCO_STREAM_TIMEOUT", "4"))

EDGE_FUNCTION_URL: Optional[str] = os.getenv("EDGE_FUNCTION_URL")
EDGE_FUNCTION_KEY: Optional[str] = os.getenv("EDGE_FUNCTION_KEY")
EDGE_FUNCTION_TIMEOUT = float(os.getenv("EDGE_FUNCTION_TIMEOUT", "8"))

EDU_VIDEO_API = os.getenv("EDU_VIDEO_API", "https://vid.puffyan.us/api/v1/videos/")
EDU_TIMEOUT = float(os.getenv("EDU_TIMEOUT", "4"))

SIAWASE_API_BASE = os.getenv("SIAWASE_API_BASE", "https://siawaseok.duckdns.org/api/video2")
SIAWASE_PROXIES = _env_list("SIAWASE_PROXIES", [
    "https://corsproxy.io/?",
    "https://api.allorigins.win/raw?url=",
])
OEMBED_URLS = _env_list("OEMBED_URLS", [
    "https://noembed.com/embed?url=https://www.youtube.com/watch?v=",
    "https://www.youtube.com/oembed?url=https://www.youtube.com/watch?v=",
])
SIAWASE_TIMEOUT = float(os.getenv("SIAWASE_TIMEOUT", "3"))

YOUTUBE_API_BASE = os.getenv("YOUTUBE_API_BASE", "https://www.googleapis.com/youtube/v3")
YOUTUBE_API_KEYS = _load_api_keys()
YOUTUBE_API_TIMEOUT = float(os.getenv("YOUTUBE_API_TIMEOUT", "2"))
YOUTUBE_API_KEY_ATTEMPTS = int(os.getenv("YOUTUBE_API_KEY_ATTEMPTS", "5"))
YOUTUBE_API_PROXY_RETRIES = int(os.getenv("YOUTUBE_API_PROXY_RETRIES", "3"))

YTDLP_TIMEOUT = float(os.getenv("YTDLP_TIMEOUT", "30"))
YTDLP_PROXY: Optional[str] = os.getenv("YTDLP_PROXY")
YTDLP_PLAYER_CLIENTS = _env_list("YTDLP_PLAYER_CLIENTS", ["ios", "tv_embedded", "mweb"])

# ─── Resolver ────────────────────────────────────────────────────────────────

# Outer deadline per backend attempt (seconds). Backends that race host pools
# get longer budgets than single fixed endpoints.
BACKEND_TIMEOUTS = {
    "choco_video": float(os.getenv("CHOCO_VIDEO_BUDGET", "6")),
    "choco_stream": float(os.getenv("CHOCO_STREAM_BUDGET", "5")),
    "min_tube": float(os.getenv("MIN_TUBE_BUDGET", "8")),
    "edge_function": float(os.getenv("EDGE_FUNCTION_BUDGET", "9")),
    "piped": float(os.getenv("PIPED_BUDGET", "7")),
    "invidious": float(os.getenv("INVIDIOUS_BUDGET", "20")),
    "cobalt": float(os.getenv("COBALT_BUDGET", "20")),
    "ytdlp": float(os.getenv("YTDLP_BUDGET", "35")),
    "youtube": float(os.getenv("YOUTUBE_BUDGET", "20")),
    "siawase": float(os.getenv("SIAWASE_BUDGET", "15")),
    "edu": float(os.getenv("EDU_BUDGET", "5")),
}
DEFAULT_BACKEND_TIMEOUT = float(os.getenv("DEFAULT_BACKEND_TIMEOUT", "10"))

STREAM_CACHE_TTL_SECONDS = int(os.getenv("STREAM_CACHE_TTL_SECONDS", str(30 * 60)))
METADATA_CACHE_TTL_SECONDS = int(os.getenv("METADATA_CACHE_TTL_SECONDS", str(60 * 60)))
CACHE_MAX_ENTRIES = int(os.getenv("CACHE_MAX_ENTRIES", "100"))
PREFETCH_LIMIT = int(os.getenv("PREFETCH_LIMIT", "5"))
PREFETCH_RELATED = os.getenv("PREFETCH_RELATED", "true").lower() in ("1", "true", "yes")

STATS_RECENCY_SECONDS = int(os.getenv("STATS_RECENCY_SECONDS", str(5 * 60)))

# ─── User library ────────────────────────────────────────────────────────────

HISTORY_MAX_ITEMS = int(os.getenv("HISTORY_MAX_ITEMS", "100"))
DEFAULT_QUALITY = os.getenv("DEFAULT_QUALITY", "720p")

# ─── Player fallback ─────────────────────────────────────────────────────────

PLAYER_MAX_RETRIES = int(os.getenv("PLAYER_MAX_RETRIES", "2"))

# ─── Service ─────────────────────────────────────────────────────────────────

ALLOWED_ORIGINS = _env_list("ALLOWED_ORIGINS", ["*"])
