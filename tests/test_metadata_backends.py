"""
Tests for metadata, listing and comment adapters.
"""

import httpx
import pytest

from conftest import TEST_VIDEO_ID, mock_client
from mirrortube import config
from mirrortube.instances import ApiKeyPool, build_registry
from mirrortube.metadata_backends import EDU_RELATED_LIMIT, MetadataBackends
from mirrortube.mirrors import InvidiousClient, PipedClient, YouTubeDataClient
from mirrortube.proxy_manager import ProxyDirectory
from mirrortube.race import RaceFetcher

INVIDIOUS = ["https://inv-a.test"]
PIPED = ["https://piped-a.test"]


def make_backends(client, store, clock, keys=None, thumbnail_host="i.ytimg.com"):
    race = RaceFetcher(client)
    proxies = ProxyDirectory(client, store, static_proxies=[], list_url="https://lists.test/p.txt", clock=clock)
    invidious = InvidiousClient(
        race, proxies, build_registry("invidious", INVIDIOUS, store, ttl=600, cap=8, clock=clock),
        timeout=1, max_retries=1,
    )
    piped = PipedClient(race, build_registry("piped", PIPED, store, ttl=300, cap=3, clock=clock), timeout=1)
    youtube = YouTubeDataClient(client, proxies, ApiKeyPool(keys or []), proxy_retries=1)
    return MetadataBackends(client, invidious, piped, youtube, thumbnail_host=lambda: thumbnail_host)


# ─── Video metadata ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_youtube_metadata_mapping(store, clock):
    def handler(request):
        return httpx.Response(200, json={"items": [{
            "id": TEST_VIDEO_ID,
            "snippet": {
                "title": "Never Gonna Give You Up",
                "channelTitle": "Rick Astley",
                "channelId": "UCuAXFkgsw1L7xaCfnd5JJOw",
                "publishedAt": "2009-10-25T06:57:33Z",
                "thumbnails": {"medium": {"url": "https://i.ytimg.com/vi/x/mqdefault.jpg"}},
            },
            "contentDetails": {"duration": "PT3M33S"},
            "statistics": {"viewCount": "1500000000"},
        }]})

    async with mock_client(handler) as client:
        metadata, error = await make_backends(client, store, clock, keys=["k1"]).fetch_youtube(TEST_VIDEO_ID)

    assert error is None
    assert metadata.source == "youtube"
    assert metadata.length_seconds == 213
    assert metadata.view_count == 1_500_000_000
    assert metadata.author_id == "UCuAXFkgsw1L7xaCfnd5JJOw"
    assert metadata.published_text.endswith("years ago")


@pytest.mark.asyncio
async def test_youtube_without_keys_fails_fast(store, clock):
    async with mock_client(lambda r: httpx.Response(500)) as client:
        metadata, error = await make_backends(client, store, clock).fetch_youtube(TEST_VIDEO_ID)
    assert metadata is None
    assert "no YouTube Data API keys" in error


@pytest.mark.asyncio
async def test_siawase_field_fallbacks(store, clock):
    def handler(request):
        return httpx.Response(200, json={
            "videoId": TEST_VIDEO_ID,
            "title": "Siawase",
            "channelTitle": "Channel",
            "views": "42",
            "duration": 100,
            "likes": 7,
        })

    async with mock_client(handler) as client:
        metadata, error = await make_backends(client, store, clock).fetch_siawase(TEST_VIDEO_ID)

    assert error is None
    assert metadata.author == "Channel"
    assert metadata.view_count == 42
    assert metadata.length_seconds == 100
    assert metadata.like_count == 7
    assert metadata.thumbnail == f"https://i.ytimg.com/vi/{TEST_VIDEO_ID}/maxresdefault.jpg"


@pytest.mark.asyncio
async def test_siawase_falls_back_to_oembed(store, clock):
    def handler(request):
        if request.url.host == "noembed.com":
            return httpx.Response(200, json={
                "title": "From oEmbed",
                "author_name": "Embed Author",
                "author_url": "https://www.youtube.com/@embed",
                "thumbnail_url": "https://i.ytimg.com/vi/x/hqdefault.jpg",
            })
        return httpx.Response(500)

    async with mock_client(handler) as client:
        metadata, error = await make_backends(client, store, clock).fetch_siawase(TEST_VIDEO_ID)

    assert error is None
    assert metadata.title == "From oEmbed"
    assert metadata.author == "Embed Author"
    assert metadata.author_id == "@embed"


@pytest.mark.asyncio
async def test_siawase_and_oembed_exhausted(store, clock):
    async with mock_client(lambda r: httpx.Response(500)) as client:
        metadata, error = await make_backends(client, store, clock).fetch_siawase(TEST_VIDEO_ID)
    assert metadata is None
    assert error == "oEmbed lookups failed"


@pytest.mark.asyncio
async def test_edu_rejects_html(store, clock):
    async with mock_client(lambda r: httpx.Response(200, text="<!DOCTYPE html><html></html>")) as client:
        metadata, error = await make_backends(client, store, clock).fetch_edu(TEST_VIDEO_ID)
    assert metadata is None
    assert error == "HTML page instead of JSON"


@pytest.mark.asyncio
async def test_edu_limits_related_videos(store, clock):
    related = [
        {"videoId": f"rel{i:08d}", "title": f"Related {i}", "videoThumbnails": [{"url": f"https://t.test/{i}.jpg"}]}
        for i in range(30)
    ]

    def handler(request):
        assert str(request.url) == f"{config.EDU_VIDEO_API}{TEST_VIDEO_ID}"
        return httpx.Response(200, json={"title": "Edu", "author": "A", "recommendedVideos": related})

    async with mock_client(handler) as client:
        metadata, error = await make_backends(
            client, store, clock, thumbnail_host="img.youtube.com"
        ).fetch_edu(TEST_VIDEO_ID)

    assert error is None
    assert len(metadata.recommended) == EDU_RELATED_LIMIT
    assert metadata.recommended[0].thumbnail == "https://t.test/0.jpg"
    assert metadata.thumbnail == f"https://img.youtube.com/vi/{TEST_VIDEO_ID}/maxresdefault.jpg"


@pytest.mark.asyncio
async def test_invidious_metadata(store, clock):
    def handler(request):
        return httpx.Response(200, json={
            "videoId": TEST_VIDEO_ID,
            "title": "Inv",
            "author": "Author",
            "authorId": "UC1",
            "viewCount": 10,
            "lengthSeconds": 61,
            "likeCount": 3,
            "videoThumbnails": [
                {"quality": "maxres", "url": "https://inv-a.test/vi/abc/maxres.jpg"},
                {"quality": "medium", "url": "https://inv-a.test/vi/abc/mqdefault.jpg"},
            ],
            "authorThumbnails": [{"url": "https://yt3.test/a.jpg"}],
            "recommendedVideos": [
                {"videoId": "rel00000001", "title": "R1", "lengthSeconds": 30},
                {"title": "missing id"},
            ],
        })

    async with mock_client(handler) as client:
        metadata, error = await make_backends(client, store, clock).fetch_invidious(TEST_VIDEO_ID)

    assert error is None
    assert metadata.thumbnail == "https://i.ytimg.com/vi/abc/mqdefault.jpg"
    assert metadata.author_thumbnail == "https://yt3.test/a.jpg"
    assert [r.video_id for r in metadata.recommended] == ["rel00000001"]
    assert metadata.recommended[0].thumbnail == "https://i.ytimg.com/vi/rel00000001/mqdefault.jpg"


@pytest.mark.asyncio
async def test_piped_metadata(store, clock):
    def handler(request):
        if request.url.host != "piped-a.test":
            return httpx.Response(503)
        return httpx.Response(200, json={
            "title": "Piped",
            "uploader": "Uploader",
            "uploaderUrl": "/channel/UC9",
            "views": 99,
            "duration": 12,
            "likes": 4,
            "relatedStreams": [{"url": "/watch?v=rel00000002", "title": "R2", "uploaderName": "U"}],
        })

    async with mock_client(handler) as client:
        metadata, error = await make_backends(client, store, clock).fetch_piped(TEST_VIDEO_ID)

    assert error is None
    assert metadata.author_id == "UC9"
    assert metadata.like_count == 4
    assert metadata.recommended[0].video_id == "rel00000002"


# ─── Listings ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_search_invidious(store, clock):
    def handler(request):
        assert request.url.params["q"] == "lofi hip hop"
        assert request.url.params["type"] == "video"
        return httpx.Response(200, json=[
            {"type": "video", "videoId": "vid00000001", "title": "One", "lengthSeconds": 60},
            {"type": "channel", "author": "Not a video"},
        ])

    async with mock_client(handler) as client:
        results, error = await make_backends(client, store, clock).search_invidious("lofi hip hop")

    assert error is None
    assert [r.video_id for r in results] == ["vid00000001"]


@pytest.mark.asyncio
async def test_search_piped(store, clock):
    def handler(request):
        assert request.url.params["filter"] == "videos"
        return httpx.Response(200, json={"items": [
            {"url": "/watch?v=vid00000002", "title": "Two", "duration": 30, "views": 5},
        ]})

    async with mock_client(handler) as client:
        results, error = await make_backends(client, store, clock).search_piped("lofi")

    assert results[0].video_id == "vid00000002"
    assert results[0].view_count == 5


@pytest.mark.asyncio
async def test_trending_youtube(store, clock):
    def handler(request):
        assert request.url.params["chart"] == "mostPopular"
        assert request.url.params["regionCode"] == "US"
        return httpx.Response(200, json={"items": [
            {"id": "vid00000003", "snippet": {"title": "Hot"}, "contentDetails": {"duration": "PT1H"}},
        ]})

    async with mock_client(handler) as client:
        results, error = await make_backends(client, store, clock, keys=["k"]).trending_youtube("US")

    assert results[0].length_seconds == 3600


@pytest.mark.asyncio
async def test_trending_region_is_query_encoded(store, clock):
    regions = []

    def handler(request):
        if request.url.path.endswith("/trending"):
            regions.append(request.url.params.get("region"))
            return httpx.Response(200, json=[
                {"type": "video", "videoId": "vid00000004", "title": "Four"},
            ])
        return httpx.Response(503)

    async with mock_client(handler) as client:
        backends = make_backends(client, store, clock)
        invidious, _ = await backends.trending_invidious("US&type=music")
        piped, _ = await backends.trending_piped("US&type=music")

    assert [r.video_id for r in invidious] == ["vid00000004"]
    assert piped is not None
    assert regions and set(regions) == {"US&type=music"}


@pytest.mark.asyncio
async def test_trending_piped_failure(store, clock):
    async with mock_client(lambda r: httpx.Response(503)) as client:
        results, error = await make_backends(client, store, clock).trending_piped("JP")
    assert results is None
    assert error == "all Piped servers failed"


# ─── Comments ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_comments(store, clock):
    def handler(request):
        assert request.url.path == f"/api/v1/comments/{TEST_VIDEO_ID}"
        assert request.url.params["continuation"] == "abc"
        return httpx.Response(200, json={
            "comments": [{
                "author": "Commenter",
                "authorThumbnails": [{"url": "https://yt3.test/c.jpg"}],
                "content": "Great",
                "likeCount": 12,
                "replies": {"replyCount": 2},
            }],
            "continuation": "def",
        })

    async with mock_client(handler) as client:
        page = await make_backends(client, store, clock).fetch_comments(TEST_VIDEO_ID, continuation="abc")

    assert page.continuation == "def"
    assert page.comments[0].reply_count == 2
    assert page.comments[0].author_thumbnail == "https://yt3.test/c.jpg"


@pytest.mark.asyncio
async def test_comments_unavailable(store, clock):
    async with mock_client(lambda r: httpx.Response(503)) as client:
        assert await make_backends(client, store, clock).fetch_comments(TEST_VIDEO_ID) is None
