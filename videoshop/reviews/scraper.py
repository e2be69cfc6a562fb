"""Third-party review snippets from an ordered list of fallback sources."""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Literal, Optional
from urllib.parse import urljoin

import httpx
from selectolax.parser import HTMLParser

from videoshop.config import settings
from videoshop.discovery.reddit import DiscussionClient, DiscussionFetchError
from videoshop.suppliers.amazon import BROWSER_HEADERS
from videoshop.videos.youtube import YouTubeClient

logger = logging.getLogger(__name__)

# Inline script and style leftovers that survive text extraction
_ARTIFACT_PATTERNS = (
    re.compile(r"\(function\(\)\s*\{.*?\}\)\(\);?", re.DOTALL),
    re.compile(r"P\.when\([^)]*\)\.execute\([^)]*\)\s*\{.*?\}\s*\);?", re.DOTALL),
    re.compile(r"A\.toggleExpander[^;]*;?"),
    re.compile(r"\.review-text-read-more[^{]*\{[^}]*\}"),
    re.compile(r"focus-visible[^{]*\{[^}]*\}"),
    re.compile(r"outline[^;]*;"),
    re.compile(r"<[^>]+>"),
)
_SPACES_RE = re.compile(r"\s+")
_STAR_RE = re.compile(r"(\d(?:\.\d)?)\s*out of\s*5", re.IGNORECASE)

VERY_NEGATIVE = ("worst", "garbage", "scam", "avoid", "never again")
NEGATIVE = ("bad", "terrible", "awful", "horrible", "hate", "waste", "broken", "useless")
VERY_POSITIVE = ("amazing", "perfect", "excellent", "outstanding", "incredible", "fantastic", "love it", "best ever")
POSITIVE = ("good", "great", "nice", "solid", "recommend", "happy", "satisfied", "works well")


def clean_review_text(text: Optional[str]) -> str:
    """Strip markup and script/style artefacts and collapse whitespace."""
    if not text:
        return ""
    for pattern in _ARTIFACT_PATTERNS:
        text = pattern.sub(" ", text)
    return _SPACES_RE.sub(" ", text).strip()


def sentiment_rating(text: str) -> int:
    """Keyword sentiment on a 1-5 scale; negative keywords win over positive ones."""
    lowered = text.lower()
    if any(word in lowered for word in VERY_NEGATIVE):
        return 1
    if any(word in lowered for word in NEGATIVE):
        return 2
    if any(word in lowered for word in VERY_POSITIVE):
        return 5
    if any(word in lowered for word in POSITIVE):
        return 4
    return 3


def usable(text: str) -> bool:
    return settings.review_min_length <= len(text) <= settings.review_max_length


@dataclass
class Review:
    author: str
    rating: int
    comment: str
    source: str
    verified: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "author": self.author,
            "rating": self.rating,
            "comment": self.comment,
            "source": self.source,
            "verified": self.verified,
        }


@dataclass
class ReviewResult:
    """Reviews from the first source that produced any, or the last error."""

    status: Literal["ok", "error"]
    source: Optional[str] = None
    reviews: list[Review] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def overall_rating(self) -> float:
        if not self.reviews:
            return 0.0
        return round(sum(r.rating for r in self.reviews) / len(self.reviews), 1)

    def as_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "overall_rating": self.overall_rating,
            "total_reviews": len(self.reviews),
            "reviews": [review.as_dict() for review in self.reviews],
        }


class ReviewSourceError(RuntimeError):
    """Raised when a source is blocked, redirected or unreachable."""
    pass


def parse_marketplace_reviews(html: str) -> list[tuple[str, Optional[int], str]]:
    """(author, stars, text) triples from a marketplace product page."""
    parser = HTMLParser(html)
    found = []
    for node in parser.css('[data-hook="review"]'):
        body = node.css_first('[data-hook="review-body"]')
        if body is None:
            continue
        author_node = node.css_first(".a-profile-name")
        star_node = node.css_first(".a-icon-alt")
        stars = None
        if star_node is not None:
            match = _STAR_RE.search(star_node.text())
            if match:
                stars = max(1, min(5, round(float(match.group(1)))))
        found.append(
            (
                author_node.text(strip=True) if author_node else "Verified buyer",
                stars,
                body.text(separator=" "),
            )
        )
    return found


def parse_aggregator_snippets(html: str) -> list[str]:
    parser = HTMLParser(html)
    return [node.text(separator=" ") for node in parser.css(".result__snippet, .snippet, .review-text")]


class ReviewScraper:
    """
    Best-effort review collection.

    Sources are tried in order (marketplace, discussion platform, video
    comments, aggregator) and the first that yields at least one usable
    review wins. A failing source is logged and the next one is tried.
    """

    def __init__(
        self,
        discussion: Optional[DiscussionClient] = None,
        videos: Optional[YouTubeClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        marketplace_url: Optional[str] = None,
        aggregator_url: Optional[str] = None,
    ):
        self.discussion = discussion or DiscussionClient()
        self.videos = videos
        self.marketplace_url = (marketplace_url or settings.amazon_base_url).rstrip("/")
        self.aggregator_url = aggregator_url or settings.review_aggregator_url
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=settings.review_timeout_seconds,
                headers=BROWSER_HEADERS,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get_product_reviews(
        self,
        product_name: str,
        video_ids: Optional[list[str]] = None,
    ) -> ReviewResult:
        """
        Collect reviews for a product.

        Args:
            product_name: Product display name used for every source query
            video_ids: Already-resolved videos whose comments may be mined;
                the video source is skipped without them so no search quota
                is spent here

        Returns:
            ReviewResult with the winning source, or an error when all failed
        """
        sources: list[tuple[str, Callable[[], Awaitable[list[Review]]]]] = [
            ("marketplace", lambda: self._marketplace(product_name)),
            ("discussion", lambda: self._discussion(product_name)),
            ("video", lambda: self._video_comments(video_ids or [])),
            ("aggregator", lambda: self._aggregator(product_name)),
        ]

        last_error = "No reviews found from any source"
        for name, fetch in sources:
            try:
                reviews = await fetch()
            except (ReviewSourceError, DiscussionFetchError, httpx.HTTPError) as e:
                logger.info(f"Review source {name} failed for {product_name!r}: {e}")
                last_error = f"{name}: {e}"
                continue
            if reviews:
                reviews = reviews[: settings.reviews_per_product]
                logger.info(f"Found {len(reviews)} {name} reviews for {product_name!r}")
                return ReviewResult(status="ok", source=name, reviews=reviews)
            logger.debug(f"Review source {name} had nothing for {product_name!r}")

        return ReviewResult(status="error", error=last_error)

    async def _fetch_html(self, url: str, params: Optional[dict] = None) -> str:
        client = await self._get_client()
        response = await client.get(url, params=params)
        final_url = str(response.url)
        if "/ap/signin" in final_url or "/errors/validateCaptcha" in final_url:
            raise ReviewSourceError(f"Redirected to {final_url.split('?')[0]}")
        if response.status_code != 200:
            raise ReviewSourceError(f"HTTP {response.status_code}")
        return response.text

    async def _marketplace(self, product_name: str) -> list[Review]:
        search_html = await self._fetch_html(f"{self.marketplace_url}/s", {"k": product_name})
        link = HTMLParser(search_html).css_first(
            '[data-component-type="s-search-result"] h2 a, [data-asin] h2 a'
        )
        href = link.attributes.get("href") if link else None
        if not href:
            return []

        product_html = await self._fetch_html(urljoin(self.marketplace_url, href))
        reviews = []
        for author, stars, raw_text in parse_marketplace_reviews(product_html):
            text = clean_review_text(raw_text)
            if not usable(text):
                continue
            reviews.append(
                Review(
                    author=author,
                    rating=stars or sentiment_rating(text),
                    comment=text,
                    source="marketplace",
                    verified=True,
                )
            )
        return reviews

    async def _discussion(self, product_name: str) -> list[Review]:
        posts = await self.discussion.search(f"{product_name} review", limit=15)
        reviews = []
        for post in posts:
            if post.removed:
                continue
            text = clean_review_text(post.body or post.title)
            if not usable(text):
                continue
            reviews.append(
                Review(
                    author=post.author or "community member",
                    rating=sentiment_rating(text),
                    comment=text,
                    source="discussion",
                )
            )
        return reviews

    async def _video_comments(self, video_ids: list[str]) -> list[Review]:
        if self.videos is None or not video_ids:
            return []
        reviews = []
        for video_id in video_ids:
            for raw in await self.videos.top_comments(video_id, max_results=10):
                text = clean_review_text(raw)
                if usable(text):
                    reviews.append(
                        Review(
                            author="viewer",
                            rating=sentiment_rating(text),
                            comment=text,
                            source="video",
                        )
                    )
            if reviews:
                break
        return reviews

    async def _aggregator(self, product_name: str) -> list[Review]:
        html = await self._fetch_html(self.aggregator_url, {"q": f"{product_name} review"})
        reviews = []
        for raw in parse_aggregator_snippets(html):
            text = clean_review_text(raw)
            if usable(text):
                reviews.append(
                    Review(
                        author="review site",
                        rating=sentiment_rating(text),
                        comment=text,
                        source="aggregator",
                    )
                )
        return reviews
