"""
Stream backend adapters.

Each adapter takes a video id and returns a tuple:
    (StreamDescriptor, None)  on success
    (None, "reason")          on failure

Adapters never raise for transport problems. Backends that front a pool of
hosts race the pool internally; the resolver only sees try, normalize or
fail.

Backends:
  choco_video   : direct JSON API with formats and a main stream URL
  choco_stream  : direct stream relay, availability checked with HEAD
  min_tube      : parallel race over MIN-Tube servers (list refreshed remotely)
  edge_function : server-side resolver behind a bearer key (optional)
  piped         : Piped `/streams/{id}` race
  invidious     : Invidious `/api/v1/videos/{id}`, each instance direct then via relays
  cobalt        : Cobalt JSON API via relays, quality modes max → 1080 → 720
  ytdlp         : local yt-dlp extraction, no download
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx
import yt_dlp

from . import config
from .instances import SourceRegistry, fetch_remote_host_list
from .mirrors import PipedClient, request_json
from .models import StreamDescriptor, StreamVariant
from .normalize import height_from_label, hls_variant, manifest_variant, stream_kind, to_int
from .race import RaceFetcher, first_success, proxied_url

logger = logging.getLogger(__name__)

StreamResult = Tuple[Optional[StreamDescriptor], Optional[str]]
StreamAdapter = Callable[[str], Awaitable[StreamResult]]

COBALT_MODES = ["max", "1080", "720"]


def _add_unique(streams: List[StreamVariant], variant: StreamVariant) -> None:
    if not any(s.url == variant.url for s in streams):
        streams.append(variant)


def _format_variants(formats: Any) -> List[StreamVariant]:
    """Generic `formats: [{url, quality|qualityLabel, container}]` lists"""
    variants: List[StreamVariant] = []
    if not isinstance(formats, list):
        return variants
    for fmt in formats:
        if not isinstance(fmt, dict) or not fmt.get("url"):
            continue
        quality = fmt.get("quality") or fmt.get("qualityLabel") or "Unknown"
        variants.append(StreamVariant(
            url=fmt["url"],
            quality=quality,
            container=fmt.get("container") or "mp4",
            height=height_from_label(fmt.get("qualityLabel") or quality) or None,
        ))
    return variants


class StreamBackends:
    """Adapters for every stream backend, sharing one HTTP client and race fetcher."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        race: RaceFetcher,
        invidious_registry: SourceRegistry,
        piped: PipedClient,
        min_tube_servers: Optional[List[str]] = None,
        edge_function_url: Optional[str] = config.EDGE_FUNCTION_URL,
        edge_function_key: Optional[str] = config.EDGE_FUNCTION_KEY,
    ):
        self.client = client
        self.race = race
        self.invidious_registry = invidious_registry
        self.piped = piped
        self.min_tube_servers = list(min_tube_servers or config.MIN_TUBE_SERVERS)
        self.edge_function_url = edge_function_url
        self.edge_function_key = edge_function_key

    def adapters(self) -> Dict[str, StreamAdapter]:
        """Backend id -> adapter, in default priority order."""
        return {
            "choco_video": self.fetch_choco_video,
            "choco_stream": self.fetch_choco_stream,
            "min_tube": self.fetch_min_tube,
            "edge_function": self.fetch_edge_function,
            "piped": self.fetch_piped,
            "invidious": self.fetch_invidious,
            "cobalt": self.fetch_cobalt,
            "ytdlp": self.fetch_ytdlp,
        }

    # =========================================================================
    # DIRECT ENDPOINTS
    # =========================================================================

    async def fetch_choco_video(self, video_id: str) -> StreamResult:
        data, error = await request_json(
            self.client,
            f"{config.CHOCO_VIDEO_API}?id={video_id}",
            config.CHOCO_VIDEO_TIMEOUT,
            headers={"Accept": "application/json"},
        )
        if not isinstance(data, dict):
            return None, error or "invalid response"

        is_live = bool(data.get("isLive") or data.get("liveNow"))
        streams = _format_variants(data.get("formats"))

        main_url = data.get("url") or data.get("stream_url")
        if main_url:
            streams.insert(0, manifest_variant(main_url, is_live=is_live))

        hls_url = data.get("hlsUrl") or data.get("hls_url")
        if hls_url:
            _add_unique(streams, hls_variant(hls_url, is_live=is_live))

        if not streams:
            return None, "no streams found"

        logger.info(f"✅ [choco_video] {len(streams)} streams")
        return StreamDescriptor(
            video_id=video_id,
            source="choco_video",
            streams=streams,
            hls_url=hls_url,
            is_live=is_live,
            title=data.get("title"),
            author=data.get("author") or data.get("uploader"),
        ), None

    async def fetch_choco_stream(self, video_id: str) -> StreamResult:
        stream_url = f"{config.CHOCO_STREAM_API}?id={video_id}"
        m3u8_url = f"{config.CHOCO_M3U8_API}?id={video_id}"
        try:
            resp = await asyncio.wait_for(self.client.head(stream_url), timeout=config.CHOCO_STREAM_TIMEOUT)
        except asyncio.TimeoutError:
            return None, f"timed out after {config.CHOCO_STREAM_TIMEOUT}s"
        except httpx.HTTPError as e:
            return None, f"request failed: {e}"
        if not resp.is_success:
            return None, f"HTTP {resp.status_code}"

        return StreamDescriptor(
            video_id=video_id,
            source="choco_stream",
            streams=[
                StreamVariant(url=stream_url, quality="Best"),
                hls_variant(m3u8_url),
            ],
            hls_url=m3u8_url,
        ), None

    async def fetch_edge_function(self, video_id: str) -> StreamResult:
        if not self.edge_function_url or not self.edge_function_key:
            return None, "edge function not configured"

        data, error = await request_json(
            self.client,
            f"{self.edge_function_url.rstrip('/')}/functions/v1/get-youtube-stream?video_id={video_id}",
            config.EDGE_FUNCTION_TIMEOUT,
            headers={
                "Authorization": f"Bearer {self.edge_function_key}",
                "Content-Type": "application/json",
            },
        )
        if not isinstance(data, dict):
            return None, error or "invalid response"

        is_live = bool(data.get("is_live"))
        streams: List[StreamVariant] = []
        stream_url = data.get("stream_url")
        if stream_url:
            streams.append(manifest_variant(stream_url, is_live=is_live))
        hls_url = data.get("hls_url")
        if hls_url and hls_url != stream_url:
            streams.append(hls_variant(hls_url, is_live=is_live))
        for variant in _format_variants(data.get("formats")):
            _add_unique(streams, variant)

        if not streams:
            return None, "no streams found"

        return StreamDescriptor(
            video_id=video_id,
            source="edge_function",
            streams=streams,
            hls_url=hls_url,
            is_live=is_live,
            title=data.get("title"),
            author=data.get("author"),
        ), None

    # =========================================================================
    # HOST POOLS
    # =========================================================================

    async def _refresh_min_tube_servers(self) -> List[str]:
        hosts = await fetch_remote_host_list(self.client, config.MIN_TUBE_SERVER_LIST_URL, config.MIN_TUBE_LIST_TIMEOUT)
        if hosts:
            cleaned = [h.rstrip("/") for h in hosts if h.startswith(("http://", "https://"))]
            if cleaned:
                logger.info(f"🔄 [min_tube] Server list updated: {len(cleaned)} servers")
                self.min_tube_servers = cleaned
        return self.min_tube_servers

    async def fetch_min_tube(self, video_id: str) -> StreamResult:
        servers = await self._refresh_min_tube_servers()
        result = await self.race.race(
            lambda host: f"{host}/api/video/{video_id}",
            servers,
            timeout=config.MIN_TUBE_TIMEOUT,
            accept=lambda d: isinstance(d, dict) and bool(d.get("stream_url")),
            headers={"Accept": "application/json"},
        )
        if result is None:
            return None, "all MIN-Tube servers failed"

        data = result.data
        is_live = bool(data.get("is_live") or data.get("isLive"))
        stream_url = data["stream_url"]
        streams = [manifest_variant(stream_url, is_live=is_live)]
        hls_url = data.get("hls_url")
        if hls_url and hls_url != stream_url:
            streams.append(hls_variant(hls_url, is_live=is_live))
        for variant in _format_variants(data.get("formats")):
            _add_unique(streams, variant)

        return StreamDescriptor(
            video_id=video_id,
            source="min_tube",
            streams=streams,
            hls_url=hls_url,
            is_live=is_live,
            title=data.get("videoTitle") or data.get("title"),
            author=data.get("author"),
        ), None

    async def fetch_piped(self, video_id: str) -> StreamResult:
        data = await self.piped.fetch(
            f"/streams/{video_id}",
            accept=lambda d: isinstance(d, dict) and bool(d.get("title")),
        )
        if data is None:
            return None, "all Piped servers failed"

        is_live = bool(data.get("livestream"))
        streams: List[StreamVariant] = []
        if data.get("hls"):
            streams.append(hls_variant(data["hls"], is_live=is_live))

        combined = [
            s for s in data.get("videoStreams") or []
            if isinstance(s, dict) and s.get("url") and not s.get("videoOnly")
        ]
        combined.sort(key=lambda s: s.get("height") or 0, reverse=True)
        for s in combined[:5]:
            streams.append(StreamVariant(
                url=s["url"],
                quality=s.get("quality") or f"{s.get('height')}p",
                container=s.get("format") or "webm",
                mime_type=s.get("mimeType"),
                bitrate=s.get("bitrate"),
                width=s.get("width"),
                height=s.get("height"),
            ))

        adaptive = [
            StreamVariant(
                url=s["url"],
                quality=s.get("quality") or "Unknown",
                container=s.get("format") or "webm",
                mime_type=s.get("mimeType"),
                has_audio=False,
                is_adaptive=True,
                bitrate=s.get("bitrate"),
                width=s.get("width"),
                height=s.get("height"),
            )
            for s in data.get("videoStreams") or []
            if isinstance(s, dict) and s.get("url") and s.get("videoOnly")
        ]
        adaptive += [
            StreamVariant(
                url=s["url"],
                quality=s.get("quality") or "Unknown",
                container=s.get("format") or "m4a",
                mime_type=s.get("mimeType"),
                has_video=False,
                is_adaptive=True,
                bitrate=s.get("bitrate"),
            )
            for s in data.get("audioStreams") or []
            if isinstance(s, dict) and s.get("url")
        ]

        if not streams:
            return None, "Piped returned no playable streams"

        return StreamDescriptor(
            video_id=video_id,
            source="piped",
            streams=streams,
            adaptive_streams=adaptive,
            hls_url=data.get("hls"),
            dash_url=data.get("dash"),
            is_live=is_live,
            title=data.get("title"),
            author=data.get("uploader"),
        ), None

    async def _invidious_instance(self, instance: str, video_id: str) -> Optional[Dict[str, Any]]:
        """One instance: direct first, then through each relay."""
        api_url = f"{instance}/api/v1/videos/{video_id}"
        for proxy in ["", *config.STREAM_PROXIES]:
            data = await self.race.fetch_json(
                proxied_url(proxy, api_url),
                config.INVIDIOUS_STREAM_TIMEOUT,
                accept=lambda d: isinstance(d, dict) and bool(d.get("title")),
            )
            if data is None:
                continue
            if data.get("hlsUrl") or any(f.get("url") for f in data.get("formatStreams") or []):
                return data
        return None

    async def fetch_invidious(self, video_id: str) -> StreamResult:
        branches = {
            host: self._invidious_instance(host, video_id)
            for host in self.invidious_registry.ordered_hosts()
        }
        result = await first_success(branches, config.INVIDIOUS_STREAM_DEADLINE)
        if result is None:
            return None, "all Invidious instances failed"

        self.invidious_registry.promote(result.host)
        data = result.data
        is_live = bool(data.get("liveNow"))
        streams: List[StreamVariant] = []
        if data.get("hlsUrl"):
            streams.append(hls_variant(data["hlsUrl"], is_live=is_live))
        for fmt in data.get("formatStreams") or []:
            if fmt.get("url"):
                label = fmt.get("qualityLabel") or fmt.get("quality") or "Unknown"
                streams.append(StreamVariant(
                    url=fmt["url"],
                    quality=label,
                    container=fmt.get("container") or "mp4",
                    mime_type=fmt.get("type"),
                    height=height_from_label(fmt.get("resolution") or label) or None,
                ))

        adaptive = []
        for fmt in data.get("adaptiveFormats") or []:
            if not fmt.get("url"):
                continue
            mime = fmt.get("type") or ""
            is_audio = mime.startswith("audio")
            adaptive.append(StreamVariant(
                url=fmt["url"],
                quality=fmt.get("qualityLabel") or fmt.get("quality") or "Unknown",
                container=fmt.get("container") or "mp4",
                mime_type=mime or None,
                has_audio=is_audio,
                has_video=not is_audio,
                is_adaptive=True,
                bitrate=to_int(fmt.get("bitrate")) or None,
                height=height_from_label(fmt.get("resolution")) or None,
            ))

        return StreamDescriptor(
            video_id=video_id,
            source="invidious",
            streams=streams,
            adaptive_streams=adaptive,
            hls_url=data.get("hlsUrl"),
            dash_url=data.get("dashUrl"),
            is_live=is_live,
            title=data.get("title"),
            author=data.get("author"),
        ), None

    async def fetch_cobalt(self, video_id: str) -> StreamResult:
        video_url = f"https://www.youtube.com/watch?v={video_id}"
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        last_error = "all Cobalt APIs failed"

        for api_base in config.COBALT_APIS:
            for proxy in config.STREAM_PROXIES:
                for mode in COBALT_MODES:
                    data, error = await request_json(
                        self.client,
                        proxied_url(proxy, f"{api_base}/api/json"),
                        config.COBALT_TIMEOUT,
                        method="POST",
                        headers=headers,
                        json_body={
                            "url": video_url,
                            "vQuality": mode,
                            "filenamePattern": "basic",
                            "isAudioOnly": False,
                        },
                    )
                    if not isinstance(data, dict) or not data.get("url"):
                        last_error = error or "no stream URL in response"
                        continue

                    url = data["url"]
                    kind = stream_kind(url)
                    is_live = bool(data.get("isLive"))
                    return StreamDescriptor(
                        video_id=video_id,
                        source="cobalt",
                        streams=[StreamVariant(
                            url=url,
                            quality="Best" if mode == "max" else f"{mode}p",
                            is_live=is_live,
                            **kind,
                        )],
                        hls_url=url if kind["is_hls"] else None,
                        dash_url=url if kind["is_dash"] else None,
                        is_live=is_live,
                        title=data.get("filename"),
                    ), None
        return None, last_error

    # =========================================================================
    # LOCAL EXTRACTION
    # =========================================================================

    def _build_ytdlp_opts(self) -> Dict[str, Any]:
        opts: Dict[str, Any] = {
            "user_agent": (
                "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
                "AppleWebKit/537.36 (KHTML, like Gecko) "
                "Chrome/120.0.0.0 Safari/537.36"
            ),
            "extractor_args": {"youtube": {
                "player_client": config.YTDLP_PLAYER_CLIENTS,
                "player_skip": ["webpage"],
            }},
            "quiet": True,
            "no_warnings": True,
            "skip_download": True,
            "retries": 2,
        }
        if config.YTDLP_PROXY:
            opts["proxy"] = config.YTDLP_PROXY
        return opts

    @staticmethod
    def _descriptor_from_ytdlp(video_id: str, info: Dict[str, Any]) -> Optional[StreamDescriptor]:
        """Split a yt-dlp info dict into combined, adaptive and manifest streams."""
        is_live = bool(info.get("is_live"))
        streams: List[StreamVariant] = []
        adaptive: List[StreamVariant] = []
        hls_url: Optional[str] = None

        for fmt in info.get("formats") or []:
            url = fmt.get("url")
            if not url:
                continue
            protocol = fmt.get("protocol") or ""
            has_video = fmt.get("vcodec") not in (None, "none")
            has_audio = fmt.get("acodec") not in (None, "none")
            height = fmt.get("height")

            if "m3u8" in protocol:
                if hls_url is None:
                    hls_url = fmt.get("manifest_url") or url
                continue
            variant = StreamVariant(
                url=url,
                quality=fmt.get("format_note") or (f"{height}p" if height else "Unknown"),
                container=fmt.get("ext") or "mp4",
                has_audio=has_audio,
                has_video=has_video,
                is_adaptive=not (has_audio and has_video),
                is_live=is_live,
                bitrate=int(fmt["tbr"] * 1000) if fmt.get("tbr") else None,
                width=fmt.get("width"),
                height=height,
                filesize=fmt.get("filesize") or fmt.get("filesize_approx"),
            )
            if has_audio and has_video:
                streams.append(variant)
            elif has_audio or has_video:
                adaptive.append(variant)

        streams.sort(key=lambda s: s.height or 0, reverse=True)
        if hls_url:
            streams.append(hls_variant(hls_url, is_live=is_live))
        if not streams:
            return None

        return StreamDescriptor(
            video_id=video_id,
            source="ytdlp",
            streams=streams,
            adaptive_streams=adaptive,
            hls_url=hls_url,
            is_live=is_live,
            title=info.get("title"),
            author=info.get("channel") or info.get("uploader"),
        )

    async def fetch_ytdlp(self, video_id: str) -> StreamResult:
        opts = self._build_ytdlp_opts()
        video_url = f"https://www.youtube.com/watch?v={video_id}"

        def _extract():
            with yt_dlp.YoutubeDL(opts) as ydl:
                return ydl.extract_info(video_url, download=False)

        loop = asyncio.get_running_loop()
        try:
            info = await asyncio.wait_for(loop.run_in_executor(None, _extract), timeout=config.YTDLP_TIMEOUT)
        except asyncio.TimeoutError:
            return None, f"yt-dlp timed out after {config.YTDLP_TIMEOUT}s"
        except yt_dlp.utils.DownloadError as e:
            return None, str(e)

        if not info:
            return None, "yt-dlp returned no info"
        descriptor = self._descriptor_from_ytdlp(video_id, info)
        if descriptor is None:
            return None, "yt-dlp found no playable formats"
        return descriptor, None
