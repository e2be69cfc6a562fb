"""Quota-aware client for the YouTube Data API v3."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Optional

import httpx

from videoshop.config import settings
from videoshop.videos.quota import QuotaTracker
from videoshop.videos.scoring import parse_iso_duration

logger = logging.getLogger(__name__)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def best_thumbnail(thumbnails: dict[str, Any]) -> Optional[str]:
    for size in ("high", "medium", "default"):
        url = (thumbnails or {}).get(size, {}).get("url")
        if url:
            return url
    return None


@dataclass
class VideoHit:
    """One search result, optionally hydrated with statistics."""

    video_id: str
    title: str
    description: str = ""
    thumbnail_url: Optional[str] = None
    channel_title: Optional[str] = None
    channel_id: Optional[str] = None
    published_at: Optional[datetime] = None
    view_count: int = 0
    like_count: int = 0
    comment_count: int = 0
    duration_seconds: int = 0
    hydrated: bool = False
    relevance_score: int = 0

    @property
    def embed_url(self) -> str:
        return f"https://www.youtube.com/embed/{self.video_id}"

    @property
    def watch_url(self) -> str:
        return f"https://www.youtube.com/watch?v={self.video_id}"


@dataclass
class VideoResult:
    """``ok``, ``quota_skipped`` (no call made) or ``error``."""

    status: Literal["ok", "quota_skipped", "error"]
    videos: list[VideoHit] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"


class YouTubeClient:
    """Wraps search, videos, channels and commentThreads with cost accounting."""

    def __init__(
        self,
        quota: Optional[QuotaTracker] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.quota = quota or QuotaTracker()
        self.api_key = api_key if api_key is not None else settings.youtube_api_key
        self.base_url = (base_url or settings.youtube_base_url).rstrip("/")
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self.requests_made = 0

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=settings.youtube_timeout_seconds,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def _get(self, path: str, params: dict[str, Any], cost: int) -> dict[str, Any]:
        """
        Make one accounted request.

        The cost is charged once the request is sent, whether or not it succeeds.

        Raises:
            RuntimeError: on transport errors, error statuses or bad payloads
        """
        client = await self._get_client()
        self.requests_made += 1
        self.quota.spend(cost)
        try:
            response = await client.get(path, params={**params, "key": self.api_key})
            payload = response.json()
        except httpx.HTTPError as e:
            raise RuntimeError(f"{type(e).__name__}: {e}") from e
        except ValueError as e:
            raise RuntimeError(f"Invalid JSON from {path}") from e

        if response.status_code >= 400:
            error = payload.get("error", {}) if isinstance(payload, dict) else {}
            reasons = [e.get("reason") for e in error.get("errors", []) if isinstance(e, dict)]
            if "quotaExceeded" in reasons or "dailyLimitExceeded" in reasons:
                logger.error("Video provider reports daily quota exceeded")
                self.quota.exhaust()
            raise RuntimeError(error.get("message") or f"HTTP {response.status_code} from {path}")
        return payload

    def _precheck(self, cost: int, operation: str) -> Optional[VideoResult]:
        if not self.configured:
            return VideoResult(status="error", error="YouTube API key not configured")
        if not self.quota.can_spend(cost):
            logger.info(
                f"Skipping video {operation}: cost {cost} exceeds remaining quota "
                f"{self.quota.remaining}"
            )
            return VideoResult(status="quota_skipped")
        return None

    async def search(self, query: str, max_results: int) -> VideoResult:
        cost = settings.youtube_search_cost
        skipped = self._precheck(cost, "search")
        if skipped:
            return skipped

        try:
            payload = await self._get(
                "/search",
                {
                    "q": query,
                    "type": "video",
                    "part": "snippet",
                    "maxResults": max_results,
                    "order": "relevance",
                    "safeSearch": "moderate",
                },
                cost,
            )
        except RuntimeError as e:
            logger.warning(f"Video search failed for {query!r}: {e}")
            return VideoResult(status="error", error=str(e))

        hits = []
        seen: set[str] = set()
        for item in payload.get("items", []):
            video_id = (item.get("id") or {}).get("videoId")
            if not video_id or video_id in seen:
                continue
            seen.add(video_id)
            snippet = item.get("snippet") or {}
            hits.append(
                VideoHit(
                    video_id=video_id,
                    title=snippet.get("title") or "",
                    description=snippet.get("description") or "",
                    thumbnail_url=best_thumbnail(snippet.get("thumbnails")),
                    channel_title=snippet.get("channelTitle"),
                    channel_id=snippet.get("channelId"),
                    published_at=parse_timestamp(snippet.get("publishedAt")),
                )
            )
        return VideoResult(status="ok", videos=hits)

    async def video_details(self, video_ids: list[str]) -> VideoResult:
        """Batched statistics/contentDetails lookup, charged per id."""
        if not video_ids:
            return VideoResult(status="ok")
        cost = settings.youtube_detail_cost_per_video * len(video_ids)
        skipped = self._precheck(cost, "details")
        if skipped:
            return skipped

        try:
            payload = await self._get(
                "/videos",
                {"id": ",".join(video_ids), "part": "snippet,statistics,contentDetails"},
                cost,
            )
        except RuntimeError as e:
            logger.warning(f"Video detail lookup failed: {e}")
            return VideoResult(status="error", error=str(e))

        videos = []
        for item in payload.get("items", []):
            snippet = item.get("snippet") or {}
            stats = item.get("statistics") or {}
            videos.append(
                VideoHit(
                    video_id=item.get("id"),
                    title=snippet.get("title") or "",
                    description=snippet.get("description") or "",
                    thumbnail_url=best_thumbnail(snippet.get("thumbnails")),
                    channel_title=snippet.get("channelTitle"),
                    channel_id=snippet.get("channelId"),
                    published_at=parse_timestamp(snippet.get("publishedAt")),
                    view_count=int(stats.get("viewCount") or 0),
                    like_count=int(stats.get("likeCount") or 0),
                    comment_count=int(stats.get("commentCount") or 0),
                    duration_seconds=parse_iso_duration(
                        (item.get("contentDetails") or {}).get("duration")
                    ),
                    hydrated=True,
                )
            )
        return VideoResult(status="ok", videos=[v for v in videos if v.video_id])

    async def channel_info(self, channel_id: str) -> Optional[dict[str, Any]]:
        cost = settings.youtube_channel_cost
        if self._precheck(cost, "channel lookup"):
            return None
        try:
            payload = await self._get(
                "/channels", {"id": channel_id, "part": "snippet,statistics"}, cost
            )
        except RuntimeError as e:
            logger.warning(f"Channel lookup failed for {channel_id}: {e}")
            return None

        items = payload.get("items") or []
        if not items:
            return None
        snippet = items[0].get("snippet") or {}
        stats = items[0].get("statistics") or {}
        return {
            "channel_id": channel_id,
            "title": snippet.get("title"),
            "description": snippet.get("description"),
            "thumbnail_url": best_thumbnail(snippet.get("thumbnails")),
            "subscriber_count": int(stats.get("subscriberCount") or 0),
            "video_count": int(stats.get("videoCount") or 0),
        }

    async def top_comments(self, video_id: str, max_results: int = 10) -> list[str]:
        """Plain-text top-level comments, used as review snippets."""
        cost = settings.youtube_comment_cost
        if self._precheck(cost, "comment lookup"):
            return []
        try:
            payload = await self._get(
                "/commentThreads",
                {
                    "videoId": video_id,
                    "part": "snippet",
                    "maxResults": max_results,
                    "order": "relevance",
                    "textFormat": "plainText",
                },
                cost,
            )
        except RuntimeError as e:
            logger.debug(f"Comment lookup failed for {video_id}: {e}")
            return []

        comments = []
        for item in payload.get("items", []):
            top = ((item.get("snippet") or {}).get("topLevelComment") or {}).get("snippet") or {}
            text = top.get("textDisplay") or top.get("textOriginal")
            if text:
                comments.append(text)
        return comments
