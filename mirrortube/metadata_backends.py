"""
Metadata, listing and comment adapters.

Video metadata adapters (`youtube`, `siawase`, `edu`, `invidious`, `piped`)
return `(VideoMetadata | None, error | None)`. Listing adapters for search
and trending return `(List[VideoStub] | None, error | None)`.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx

from . import config
from .mirrors import InvidiousClient, PipedClient, YouTubeDataClient, request_json
from .models import Comment, CommentsPage, VideoMetadata, VideoStub
from .normalize import (
    DEFAULT_THUMBNAIL_HOST,
    best_thumbnail,
    format_published,
    iso8601_duration_to_seconds,
    last_path_segment,
    parse_timestamp,
    thumbnail_url,
    to_int,
    video_id_from_watch_url,
)
from .race import proxied_url

logger = logging.getLogger(__name__)

MetadataResult = Tuple[Optional[VideoMetadata], Optional[str]]
MetadataAdapter = Callable[[str], Awaitable[MetadataResult]]
ListingResult = Tuple[Optional[List[VideoStub]], Optional[str]]
ListingAdapter = Callable[[str], Awaitable[ListingResult]]

EDU_RELATED_LIMIT = 20


def _has_title(data: Any) -> bool:
    return isinstance(data, dict) and bool(data.get("title"))


class MetadataBackends:
    """Adapters over the metadata-capable mirrors, sharing one context."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        invidious: InvidiousClient,
        piped: PipedClient,
        youtube: YouTubeDataClient,
        thumbnail_host: Callable[[], str] = lambda: DEFAULT_THUMBNAIL_HOST,
    ):
        self.client = client
        self.invidious = invidious
        self.piped = piped
        self.youtube = youtube
        self.thumbnail_host = thumbnail_host

    def adapters(self) -> Dict[str, MetadataAdapter]:
        return {
            "youtube": self.fetch_youtube,
            "siawase": self.fetch_siawase,
            "edu": self.fetch_edu,
            "invidious": self.fetch_invidious,
            "piped": self.fetch_piped,
        }

    def search_adapters(self) -> Dict[str, ListingAdapter]:
        return {
            "youtube": self.search_youtube,
            "invidious": self.search_invidious,
            "piped": self.search_piped,
        }

    def trending_adapters(self) -> Dict[str, ListingAdapter]:
        return {
            "youtube": self.trending_youtube,
            "invidious": self.trending_invidious,
            "piped": self.trending_piped,
        }

    # ─── Normalizers ─────────────────────────────────────────────────────────

    def _youtube_stub(self, item: Dict[str, Any]) -> VideoStub:
        snippet = item.get("snippet") or {}
        thumbs = snippet.get("thumbnails") or {}
        published_at = snippet.get("publishedAt") or ""
        published = parse_timestamp(published_at)
        return VideoStub(
            video_id=item.get("id") or "",
            title=snippet.get("title") or "",
            author=snippet.get("channelTitle") or "",
            author_id=snippet.get("channelId") or "",
            description=snippet.get("description") or "",
            view_count=to_int((item.get("statistics") or {}).get("viewCount")),
            length_seconds=iso8601_duration_to_seconds((item.get("contentDetails") or {}).get("duration") or "PT0S"),
            published=int(published.timestamp()) if published else 0,
            published_text=format_published(published_at),
            thumbnail=(thumbs.get("medium") or thumbs.get("default") or {}).get("url", ""),
        )

    def _invidious_stub(self, item: Dict[str, Any]) -> VideoStub:
        video_id = item.get("videoId") or ""
        thumbnails = item.get("videoThumbnails")
        return VideoStub(
            video_id=video_id,
            title=item.get("title") or "",
            author=item.get("author") or "",
            author_id=item.get("authorId") or "",
            description=item.get("description") or "",
            view_count=to_int(item.get("viewCount")),
            length_seconds=to_int(item.get("lengthSeconds")),
            published=to_int(item.get("published")),
            published_text=item.get("publishedText") or "",
            thumbnail=(
                best_thumbnail(thumbnails, self.thumbnail_host()) if thumbnails
                else thumbnail_url(video_id, host=self.thumbnail_host())
            ),
            is_live=bool(item.get("liveNow")),
        )

    def _piped_stub(self, item: Dict[str, Any]) -> VideoStub:
        return VideoStub(
            video_id=video_id_from_watch_url(item.get("url")),
            title=item.get("title") or "",
            author=item.get("uploaderName") or "",
            author_id=last_path_segment(item.get("uploaderUrl")),
            view_count=to_int(item.get("views")),
            length_seconds=to_int(item.get("duration")),
            published=to_int(item.get("uploaded")),
            published_text=item.get("uploadedDate") or "",
            thumbnail=item.get("thumbnail") or "",
        )

    # =========================================================================
    # VIDEO METADATA
    # =========================================================================

    async def fetch_youtube(self, video_id: str) -> MetadataResult:
        if not len(self.youtube.keys):
            return None, "no YouTube Data API keys configured"
        item = await self.youtube.video(video_id)
        if item is None:
            return None, "YouTube Data API returned no item"
        stub = self._youtube_stub(item)
        return VideoMetadata(source="youtube", **stub.model_dump(exclude={"published"})), None

    async def _fetch_siawase_api(self, video_id: str) -> Optional[Dict[str, Any]]:
        target = f"{config.SIAWASE_API_BASE}/{video_id}"
        for proxy in ["", *config.SIAWASE_PROXIES]:
            data, error = await request_json(self.client, proxied_url(proxy, target), config.SIAWASE_TIMEOUT)
            if isinstance(data, dict) and (data.get("title") or data.get("videoId")):
                return data
            logger.debug(f"[siawase] {target[:60]} via '{proxy}' failed: {error}")
        return None

    async def fetch_oembed(self, video_id: str) -> MetadataResult:
        """noembed / YouTube oEmbed: title, author and thumbnail only."""
        for base in config.OEMBED_URLS:
            for proxy in ["", *config.SIAWASE_PROXIES]:
                data, _ = await request_json(self.client, proxied_url(proxy, f"{base}{video_id}"), config.SIAWASE_TIMEOUT)
                if _has_title(data):
                    return VideoMetadata(
                        video_id=video_id,
                        title=data["title"],
                        author=data.get("author_name") or "Unknown",
                        author_id=last_path_segment(data.get("author_url")),
                        thumbnail=data.get("thumbnail_url") or thumbnail_url(video_id, "maxresdefault", self.thumbnail_host()),
                        source="siawase",
                    ), None
        return None, "oEmbed lookups failed"

    async def fetch_siawase(self, video_id: str) -> MetadataResult:
        data = await self._fetch_siawase_api(video_id)
        if data is None:
            logger.info(f"🔄 [siawase] API failed for {video_id}, falling back to oEmbed")
            return await self.fetch_oembed(video_id)

        like_count = data.get("likeCount") or data.get("likes")
        return VideoMetadata(
            video_id=data.get("videoId") or video_id,
            title=data.get("title") or "Unknown",
            author=data.get("author") or data.get("channelTitle") or data.get("uploader") or "Unknown",
            author_id=data.get("authorId") or data.get("channelId") or "",
            description=data.get("description") or "",
            view_count=to_int(data.get("viewCount") or data.get("views")),
            length_seconds=to_int(data.get("lengthSeconds") or data.get("duration")),
            published_text=data.get("publishedText") or data.get("uploadDate") or "",
            thumbnail=(
                data.get("thumbnail") or data.get("thumbnailUrl")
                or thumbnail_url(video_id, "maxresdefault", self.thumbnail_host())
            ),
            author_thumbnail=data.get("authorThumbnail") or data.get("uploaderAvatar"),
            like_count=to_int(like_count) if like_count is not None else None,
            source="siawase",
        ), None

    async def fetch_edu(self, video_id: str) -> MetadataResult:
        try:
            resp = await self.client.get(
                f"{config.EDU_VIDEO_API}{video_id}",
                headers={"Accept": "application/json"},
                timeout=config.EDU_TIMEOUT,
            )
        except httpx.HTTPError as e:
            return None, f"request failed: {e}"
        if not resp.is_success:
            return None, f"HTTP {resp.status_code}"

        text = resp.text
        if "<!DOCTYPE" in text or "<html" in text:
            return None, "HTML page instead of JSON"
        try:
            data = resp.json()
        except ValueError:
            return None, "invalid JSON response"
        if not _has_title(data):
            return None, "response has no title"

        related = []
        for r in (data.get("recommendedVideos") or [])[:EDU_RELATED_LIMIT]:
            if not isinstance(r, dict) or not r.get("videoId"):
                continue
            thumbs = r.get("videoThumbnails") or []
            related.append(VideoStub(
                video_id=r["videoId"],
                title=r.get("title") or "",
                author=r.get("author") or "",
                author_id=r.get("authorId") or "",
                view_count=to_int(r.get("viewCount")),
                length_seconds=to_int(r.get("lengthSeconds")),
                thumbnail=(thumbs[0].get("url") if thumbs else None) or thumbnail_url(r["videoId"]),
            ))

        author_thumbs = data.get("authorThumbnails") or []
        return VideoMetadata(
            video_id=video_id,
            title=data["title"],
            author=data.get("author") or "",
            author_id=data.get("authorId") or "",
            description=data.get("description") or "",
            view_count=to_int(data.get("viewCount")),
            length_seconds=to_int(data.get("lengthSeconds")),
            published_text=data.get("publishedText") or "",
            thumbnail=thumbnail_url(video_id, "maxresdefault", self.thumbnail_host()),
            author_thumbnail=author_thumbs[0].get("url") if author_thumbs else None,
            like_count=to_int(data.get("likeCount")),
            recommended=related,
            source="edu",
        ), None

    async def fetch_invidious(self, video_id: str) -> MetadataResult:
        data = await self.invidious.fetch(f"/videos/{video_id}", accept=_has_title)
        if data is None:
            return None, "all Invidious instances failed"

        author_thumbs = data.get("authorThumbnails") or []
        return VideoMetadata(
            video_id=data.get("videoId") or video_id,
            title=data["title"],
            author=data.get("author") or "",
            author_id=data.get("authorId") or "",
            description=data.get("description") or "",
            view_count=to_int(data.get("viewCount")),
            length_seconds=to_int(data.get("lengthSeconds")),
            published_text=data.get("publishedText") or "",
            thumbnail=best_thumbnail(data.get("videoThumbnails"), self.thumbnail_host()),
            author_thumbnail=author_thumbs[0].get("url") if author_thumbs else None,
            like_count=to_int(data["likeCount"]) if data.get("likeCount") is not None else None,
            is_live=bool(data.get("liveNow")),
            recommended=[
                self._invidious_stub(r) for r in data.get("recommendedVideos") or []
                if isinstance(r, dict) and r.get("videoId")
            ],
            source="invidious",
        ), None

    async def fetch_piped(self, video_id: str) -> MetadataResult:
        data = await self.piped.fetch(f"/streams/{video_id}", accept=_has_title)
        if data is None:
            return None, "all Piped servers failed"

        return VideoMetadata(
            video_id=video_id,
            title=data["title"],
            author=data.get("uploader") or "",
            author_id=last_path_segment(data.get("uploaderUrl")),
            description=data.get("description") or "",
            view_count=to_int(data.get("views")),
            length_seconds=to_int(data.get("duration")),
            published_text=data.get("uploadDate") or "",
            thumbnail=data.get("thumbnailUrl") or thumbnail_url(video_id, host=self.thumbnail_host()),
            author_thumbnail=data.get("uploaderAvatar"),
            like_count=to_int(data["likes"]) if data.get("likes") is not None else None,
            is_live=bool(data.get("livestream")),
            recommended=[
                self._piped_stub(r) for r in data.get("relatedStreams") or []
                if isinstance(r, dict) and r.get("url")
            ],
            source="piped",
        ), None

    # =========================================================================
    # SEARCH / TRENDING
    # =========================================================================

    async def search_youtube(self, query: str) -> ListingResult:
        if not len(self.youtube.keys):
            return None, "no YouTube Data API keys configured"
        items = await self.youtube.search(query)
        if items is None:
            return None, "YouTube Data API search failed"
        return [self._youtube_stub(i) for i in items], None

    async def trending_youtube(self, region: str) -> ListingResult:
        if not len(self.youtube.keys):
            return None, "no YouTube Data API keys configured"
        items = await self.youtube.trending(region)
        if items is None:
            return None, "YouTube Data API trending failed"
        return [self._youtube_stub(i) for i in items if isinstance(i.get("id"), str)], None

    async def _invidious_listing(self, endpoint: str) -> ListingResult:
        data = await self.invidious.fetch(endpoint, accept=lambda d: isinstance(d, list))
        if data is None:
            return None, "all Invidious instances failed"
        return [
            self._invidious_stub(item) for item in data
            if isinstance(item, dict) and item.get("videoId")
        ], None

    async def search_invidious(self, query: str) -> ListingResult:
        return await self._invidious_listing(f"/search?{httpx.QueryParams({'q': query, 'type': 'video'})}")

    async def trending_invidious(self, region: str) -> ListingResult:
        return await self._invidious_listing(f"/trending?{httpx.QueryParams({'region': region})}")

    async def search_piped(self, query: str) -> ListingResult:
        data = await self.piped.fetch(
            f"/search?{httpx.QueryParams({'q': query, 'filter': 'videos'})}",
            accept=lambda d: isinstance(d, dict) and isinstance(d.get("items"), list),
        )
        if data is None:
            return None, "all Piped servers failed"
        return [self._piped_stub(i) for i in data["items"] if isinstance(i, dict) and i.get("url")], None

    async def trending_piped(self, region: str) -> ListingResult:
        data = await self.piped.fetch(
            f"/trending?{httpx.QueryParams({'region': region})}",
            accept=lambda d: isinstance(d, list),
        )
        if data is None:
            return None, "all Piped servers failed"
        return [self._piped_stub(i) for i in data if isinstance(i, dict) and i.get("url")], None

    # =========================================================================
    # COMMENTS
    # =========================================================================

    async def fetch_comments(self, video_id: str, continuation: Optional[str] = None) -> Optional[CommentsPage]:
        endpoint = f"/comments/{video_id}"
        if continuation:
            endpoint += f"?{httpx.QueryParams({'continuation': continuation})}"
        data = await self.invidious.fetch(
            endpoint,
            accept=lambda d: isinstance(d, dict) and isinstance(d.get("comments"), list),
        )
        if data is None:
            return None

        comments = []
        for c in data["comments"]:
            if not isinstance(c, dict):
                continue
            thumbs = c.get("authorThumbnails") or []
            comments.append(Comment(
                author=c.get("author") or "",
                author_thumbnail=thumbs[0].get("url", "") if thumbs else "",
                content=c.get("content") or "",
                published=to_int(c.get("published")),
                published_text=c.get("publishedText") or "",
                like_count=to_int(c.get("likeCount")),
                reply_count=to_int((c.get("replies") or {}).get("replyCount")),
            ))
        return CommentsPage(comments=comments, continuation=data.get("continuation"))
