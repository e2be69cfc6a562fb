"""Read-only client for the discussion platform's public JSON listings."""

import logging
from typing import Any, Optional

import httpx

from videoshop.config import settings
from videoshop.discovery.base import Comment, Post

logger = logging.getLogger(__name__)

VALID_TIME_WINDOWS = ("hour", "day", "week", "month", "year", "all")


class DiscussionFetchError(RuntimeError):
    """Raised when a listing cannot be fetched or parsed."""
    pass


def parse_post(raw: dict[str, Any], channel: str) -> Optional[Post]:
    """Convert one listing child into a Post, or None when the shape is wrong."""
    data = raw.get("data") if isinstance(raw, dict) else None
    if not isinstance(data, dict) or not data.get("id"):
        return None
    return Post(
        post_id=str(data["id"]),
        channel=str(data.get("subreddit") or channel),
        title=str(data.get("title") or ""),
        body=str(data.get("selftext") or ""),
        url=str(data.get("url") or ""),
        permalink=str(data.get("permalink") or ""),
        author=data.get("author"),
        upvotes=int(data.get("ups") or 0),
        comment_count=int(data.get("num_comments") or 0),
        created_utc=float(data.get("created_utc") or 0.0),
        removed=bool(data.get("removed_by_category")),
    )


class DiscussionClient:
    """httpx wrapper around ``/r/{channel}/top.json`` and comment threads."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.reddit_base_url).rstrip("/")
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=settings.reddit_timeout_seconds,
                headers={"User-Agent": settings.reddit_user_agent},
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _get_json(self, path: str, params: dict, timeout: Optional[float] = None) -> Any:
        client = await self._get_client()
        try:
            response = await client.get(
                path,
                params=params,
                timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
            )
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise DiscussionFetchError(f"HTTP {e.response.status_code} for {path}") from e
        except httpx.HTTPError as e:
            raise DiscussionFetchError(f"{type(e).__name__} for {path}") from e
        except ValueError as e:
            raise DiscussionFetchError(f"Invalid JSON for {path}") from e

    async def fetch_top(self, channel: str, time_window: str = "day", limit: int = 25) -> list[Post]:
        """
        Fetch the platform-ranked top posts of one channel.

        Args:
            channel: Channel (subreddit) name without prefix
            time_window: One of hour/day/week/month/year/all
            limit: Maximum posts to return

        Returns:
            Parsed posts in platform ranking order

        Raises:
            DiscussionFetchError: on transport, status or payload errors
        """
        if time_window not in VALID_TIME_WINDOWS:
            time_window = "day"
        payload = await self._get_json(
            f"/r/{channel}/top.json", {"t": time_window, "limit": limit}
        )
        children = (payload or {}).get("data", {}).get("children") if isinstance(payload, dict) else None
        if not isinstance(children, list):
            raise DiscussionFetchError(f"Unexpected listing shape for r/{channel}")

        posts = []
        for child in children:
            post = parse_post(child, channel)
            if post is not None:
                posts.append(post)
        return posts

    async def fetch_top_comments(self, permalink: str, limit: int = 3) -> list[Comment]:
        """Top-level comments of a thread, sorted by platform vote ranking."""
        path = permalink.rstrip("/") + ".json"
        payload = await self._get_json(
            path,
            {"limit": limit, "sort": "top"},
            timeout=settings.comment_timeout_seconds,
        )
        if not isinstance(payload, list) or len(payload) < 2:
            return []

        comments = []
        for child in payload[1].get("data", {}).get("children", []):
            if child.get("kind") != "t1":
                continue
            data = child.get("data", {})
            body = data.get("body")
            if not body:
                continue
            comments.append(
                Comment(
                    author=str(data.get("author") or "[deleted]"),
                    body=str(body),
                    upvotes=int(data.get("ups") or 0),
                )
            )
        return comments[:limit]

    async def search(self, query: str, limit: int = 10) -> list[Post]:
        """Site-wide search, used by the review scraper."""
        payload = await self._get_json(
            "/search.json", {"q": query, "limit": limit, "sort": "relevance"}
        )
        children = payload.get("data", {}).get("children", []) if isinstance(payload, dict) else []
        return [post for post in (parse_post(c, "") for c in children) if post is not None]

    async def ping(self) -> bool:
        """Return True when the public listing endpoint answers."""
        try:
            await self._get_json("/r/popular.json", {"limit": 1})
            return True
        except DiscussionFetchError as e:
            logger.warning(f"Discussion platform ping failed: {e}")
            return False
