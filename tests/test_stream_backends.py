"""
Tests for the stream backend adapters.

Each adapter is exercised against a mocked mirror API and must return
either (StreamDescriptor, None) or (None, reason) without raising.
"""

import httpx
import pytest
import yt_dlp

from conftest import TEST_VIDEO_ID, mock_client
from mirrortube import config
from mirrortube.instances import build_registry
from mirrortube.mirrors import PipedClient
from mirrortube.race import RaceFetcher
from mirrortube.stream_backends import StreamBackends

INVIDIOUS = ["https://inv-a.test", "https://inv-b.test"]
PIPED = ["https://piped-a.test"]
MIN_TUBE = ["https://mt-a.test", "https://mt-b.test"]


def make_backends(client, store, clock, **kwargs):
    race = RaceFetcher(client)
    piped = PipedClient(race, build_registry("piped", PIPED, store, ttl=300, cap=3, clock=clock), timeout=1)
    return StreamBackends(
        client,
        race,
        build_registry("invidious", INVIDIOUS, store, ttl=600, cap=8, clock=clock),
        piped,
        min_tube_servers=MIN_TUBE,
        **kwargs,
    )


# ─── Direct endpoints ────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_choco_video_main_url_first(store, clock):
    def handler(request):
        assert request.url.params["id"] == TEST_VIDEO_ID
        return httpx.Response(200, json={
            "title": "Song",
            "author": "Artist",
            "url": "https://cdn.test/main.mp4",
            "hlsUrl": "https://cdn.test/master.m3u8",
            "formats": [
                {"url": "https://cdn.test/360.mp4", "qualityLabel": "360p", "container": "mp4"},
                {"quality": "720p"},
            ],
        })

    async with mock_client(handler) as client:
        descriptor, error = await make_backends(client, store, clock).fetch_choco_video(TEST_VIDEO_ID)

    assert error is None
    assert descriptor.source == "choco_video"
    assert [s.url for s in descriptor.streams] == [
        "https://cdn.test/main.mp4",
        "https://cdn.test/360.mp4",
        "https://cdn.test/master.m3u8",
    ]
    assert descriptor.streams[1].height == 360
    assert descriptor.streams[2].is_hls
    assert descriptor.hls_url == "https://cdn.test/master.m3u8"
    assert descriptor.title == "Song"


@pytest.mark.asyncio
async def test_choco_video_error_field(store, clock):
    async with mock_client(lambda r: httpx.Response(200, json={"error": "not available"})) as client:
        descriptor, error = await make_backends(client, store, clock).fetch_choco_video(TEST_VIDEO_ID)
    assert descriptor is None
    assert "not available" in error


@pytest.mark.asyncio
async def test_choco_stream_head_check(store, clock):
    def handler(request):
        assert request.method == "HEAD"
        return httpx.Response(200)

    async with mock_client(handler) as client:
        descriptor, error = await make_backends(client, store, clock).fetch_choco_stream(TEST_VIDEO_ID)

    assert error is None
    assert descriptor.streams[0].quality == "Best"
    assert descriptor.hls_url == f"{config.CHOCO_M3U8_API}?id={TEST_VIDEO_ID}"


@pytest.mark.asyncio
async def test_choco_stream_unavailable(store, clock):
    async with mock_client(lambda r: httpx.Response(404)) as client:
        descriptor, error = await make_backends(client, store, clock).fetch_choco_stream(TEST_VIDEO_ID)
    assert descriptor is None
    assert error == "HTTP 404"


@pytest.mark.asyncio
async def test_edge_function_not_configured(store, clock):
    async with mock_client(lambda r: httpx.Response(200, json={})) as client:
        backends = make_backends(client, store, clock, edge_function_url=None, edge_function_key=None)
        assert await backends.fetch_edge_function(TEST_VIDEO_ID) == (None, "edge function not configured")


@pytest.mark.asyncio
async def test_edge_function_sends_bearer_key(store, clock):
    def handler(request):
        assert request.headers["Authorization"] == "Bearer secret"
        assert request.url.params["video_id"] == TEST_VIDEO_ID
        return httpx.Response(200, json={
            "stream_url": "https://cdn.test/v.mp4",
            "hls_url": "https://cdn.test/v.m3u8",
            "title": "Edge",
        })

    async with mock_client(handler) as client:
        backends = make_backends(
            client, store, clock, edge_function_url="https://edge.test/", edge_function_key="secret"
        )
        descriptor, error = await backends.fetch_edge_function(TEST_VIDEO_ID)

    assert error is None
    assert [s.url for s in descriptor.streams] == ["https://cdn.test/v.mp4", "https://cdn.test/v.m3u8"]


# ─── Host pools ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_min_tube_uses_remote_server_list(store, clock):
    def handler(request):
        if str(request.url) == config.MIN_TUBE_SERVER_LIST_URL:
            return httpx.Response(200, json=["https://mt-remote.test/"])
        if request.url.host == "mt-remote.test":
            return httpx.Response(200, json={"stream_url": "https://cdn.test/mt.mp4", "videoTitle": "MT"})
        return httpx.Response(503)

    async with mock_client(handler) as client:
        backends = make_backends(client, store, clock)
        descriptor, error = await backends.fetch_min_tube(TEST_VIDEO_ID)

    assert error is None
    assert backends.min_tube_servers == ["https://mt-remote.test"]
    assert descriptor.streams[0].url == "https://cdn.test/mt.mp4"
    assert descriptor.title == "MT"


@pytest.mark.asyncio
async def test_min_tube_static_servers_when_list_unreachable(store, clock):
    def handler(request):
        if request.url.host == "mt-b.test":
            return httpx.Response(200, json={"stream_url": "https://cdn.test/b.m3u8", "is_live": True})
        return httpx.Response(503)

    async with mock_client(handler) as client:
        descriptor, error = await make_backends(client, store, clock).fetch_min_tube(TEST_VIDEO_ID)

    assert error is None
    assert descriptor.is_live
    assert descriptor.streams[0].is_hls


@pytest.mark.asyncio
async def test_piped_streams(store, clock):
    payload = {
        "title": "Piped video",
        "uploader": "Uploader",
        "hls": "https://piped.test/hls.m3u8",
        "videoStreams": [
            {"url": "https://piped.test/360", "quality": "360p", "height": 360, "videoOnly": False},
            {"url": "https://piped.test/720", "quality": "720p", "height": 720, "videoOnly": False},
            {"url": "https://piped.test/1080v", "quality": "1080p", "height": 1080, "videoOnly": True},
        ],
        "audioStreams": [{"url": "https://piped.test/audio", "quality": "128 kbps", "format": "M4A"}],
    }

    async with mock_client(lambda r: httpx.Response(200, json=payload)) as client:
        descriptor, error = await make_backends(client, store, clock).fetch_piped(TEST_VIDEO_ID)

    assert error is None
    assert [s.url for s in descriptor.streams] == [
        "https://piped.test/hls.m3u8", "https://piped.test/720", "https://piped.test/360",
    ]
    adaptive = {s.url: s for s in descriptor.adaptive_streams}
    assert adaptive["https://piped.test/1080v"].is_video_only
    assert adaptive["https://piped.test/audio"].is_audio_only


@pytest.mark.asyncio
async def test_invidious_streams_promote_instance(store, clock):
    def handler(request):
        if request.url.host == "inv-b.test":
            return httpx.Response(200, json={
                "title": "Inv",
                "author": "Someone",
                "formatStreams": [
                    {"url": "https://inv.test/18", "qualityLabel": "360p", "container": "mp4", "resolution": "640x360"},
                ],
                "adaptiveFormats": [
                    {"url": "https://inv.test/140", "type": "audio/mp4; codecs=\"mp4a\"", "bitrate": "130000"},
                    {"url": "https://inv.test/137", "type": "video/mp4", "qualityLabel": "1080p", "resolution": "1920x1080"},
                ],
            })
        return httpx.Response(503)

    async with mock_client(handler) as client:
        backends = make_backends(client, store, clock)
        descriptor, error = await backends.fetch_invidious(TEST_VIDEO_ID)

    assert error is None
    assert descriptor.streams[0].height == 360
    assert backends.invidious_registry.working_hosts() == ["https://inv-b.test"]
    audio, video = descriptor.adaptive_streams
    assert audio.is_audio_only and audio.bitrate == 130000
    assert video.is_video_only and video.height == 1080


@pytest.mark.asyncio
async def test_invidious_requires_playable_payload(store, clock):
    async with mock_client(lambda r: httpx.Response(200, json={"title": "No streams"})) as client:
        descriptor, error = await make_backends(client, store, clock).fetch_invidious(TEST_VIDEO_ID)
    assert descriptor is None
    assert error == "all Invidious instances failed"


@pytest.mark.asyncio
async def test_cobalt_through_relay(store, clock):
    bodies = []

    def handler(request):
        bodies.append(request.read())
        if request.url.host == "corsproxy.io":
            return httpx.Response(200, json={"status": "stream", "url": "https://cobalt.test/file.mp4"})
        return httpx.Response(503)

    async with mock_client(handler) as client:
        descriptor, error = await make_backends(client, store, clock).fetch_cobalt(TEST_VIDEO_ID)

    assert error is None
    assert descriptor.streams[0].url == "https://cobalt.test/file.mp4"
    assert descriptor.streams[0].quality == "Best"
    assert b'"vQuality": "max"' in bodies[0] or b'"vQuality":"max"' in bodies[0]


@pytest.mark.asyncio
async def test_cobalt_all_fail(store, clock):
    async with mock_client(lambda r: httpx.Response(400, json={"status": "error"})) as client:
        descriptor, error = await make_backends(client, store, clock).fetch_cobalt(TEST_VIDEO_ID)
    assert descriptor is None
    assert error == "HTTP 400"


# ─── yt-dlp ──────────────────────────────────────────────────────────────────

YTDLP_INFO = {
    "title": "Local",
    "channel": "Chan",
    "formats": [
        {"url": "https://gv.test/18", "protocol": "https", "vcodec": "avc1", "acodec": "mp4a", "height": 360, "ext": "mp4"},
        {"url": "https://gv.test/22", "protocol": "https", "vcodec": "avc1", "acodec": "mp4a", "height": 720, "ext": "mp4", "tbr": 1500.5},
        {"url": "https://gv.test/140", "protocol": "https", "vcodec": "none", "acodec": "mp4a", "ext": "m4a"},
        {"url": "https://gv.test/96", "protocol": "m3u8_native", "manifest_url": "https://gv.test/master.m3u8"},
        {"url": "https://gv.test/sb", "protocol": "mhtml", "vcodec": "none", "acodec": "none"},
    ],
}


class FakeYoutubeDL:
    info = YTDLP_INFO
    error = None

    def __init__(self, opts):
        self.opts = opts

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def extract_info(self, url, download=True):
        assert download is False
        if self.error is not None:
            raise self.error
        return self.info


def test_descriptor_from_ytdlp():
    descriptor = StreamBackends._descriptor_from_ytdlp(TEST_VIDEO_ID, YTDLP_INFO)
    assert [s.url for s in descriptor.streams] == [
        "https://gv.test/22", "https://gv.test/18", "https://gv.test/master.m3u8",
    ]
    assert descriptor.streams[0].bitrate == 1500500
    assert [s.url for s in descriptor.adaptive_streams] == ["https://gv.test/140"]
    assert descriptor.hls_url == "https://gv.test/master.m3u8"
    assert descriptor.author == "Chan"


def test_descriptor_from_ytdlp_without_formats():
    assert StreamBackends._descriptor_from_ytdlp(TEST_VIDEO_ID, {"formats": []}) is None


@pytest.mark.asyncio
async def test_fetch_ytdlp(monkeypatch, store, clock):
    monkeypatch.setattr(yt_dlp, "YoutubeDL", FakeYoutubeDL)
    async with mock_client(lambda r: httpx.Response(503)) as client:
        descriptor, error = await make_backends(client, store, clock).fetch_ytdlp(TEST_VIDEO_ID)
    assert error is None
    assert descriptor.source == "ytdlp"


@pytest.mark.asyncio
async def test_fetch_ytdlp_download_error(monkeypatch, store, clock):
    class Failing(FakeYoutubeDL):
        error = yt_dlp.utils.DownloadError("Sign in to confirm you're not a bot")

    monkeypatch.setattr(yt_dlp, "YoutubeDL", Failing)
    async with mock_client(lambda r: httpx.Response(503)) as client:
        descriptor, error = await make_backends(client, store, clock).fetch_ytdlp(TEST_VIDEO_ID)
    assert descriptor is None
    assert "not a bot" in error


def test_ytdlp_options(store, clock, monkeypatch):
    monkeypatch.setattr(config, "YTDLP_PROXY", "http://proxy.test:8080")
    backends = make_backends(httpx.AsyncClient(), store, clock)
    opts = backends._build_ytdlp_opts()
    assert opts["skip_download"] is True
    assert opts["proxy"] == "http://proxy.test:8080"
    assert opts["extractor_args"]["youtube"]["player_client"] == config.YTDLP_PLAYER_CLIENTS
