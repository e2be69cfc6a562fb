"""Data shapes shared by the trend scanner and its classifier."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Protocol


@dataclass
class Comment:
    """Top-level comment on a discussion post."""

    author: str
    body: str
    upvotes: int


@dataclass
class Post:
    """Discussion thread as returned by the platform listing."""

    post_id: str
    channel: str
    title: str
    body: str = ""
    url: str = ""
    permalink: str = ""
    author: Optional[str] = None
    upvotes: int = 0
    comment_count: int = 0
    created_utc: float = 0.0
    removed: bool = False

    def age_hours(self, now: datetime) -> float:
        created = datetime.fromtimestamp(self.created_utc, tz=timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return max(0.0, (now - created).total_seconds() / 3600.0)

    @property
    def has_text(self) -> bool:
        return bool(self.title.strip() or self.body.strip())


@dataclass
class Classification:
    """Outcome of running the product heuristics over one post."""

    is_real_product: bool
    engagement_score: float
    product_name: str
    category: str
    prices: list[str] = field(default_factory=list)
    signals: list[str] = field(default_factory=list)
    negative_signals: list[str] = field(default_factory=list)


@dataclass
class Candidate:
    """Unpersisted, scored signal that a post concerns a purchasable product."""

    post: Post
    classification: Classification
    top_comments: list[Comment] = field(default_factory=list)
    discovered_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def platform(self) -> str:
        return "reddit"

    @property
    def channel(self) -> str:
        return self.post.channel

    @property
    def engagement_score(self) -> float:
        return self.classification.engagement_score

    @property
    def product_name(self) -> str:
        return self.classification.product_name

    @property
    def category(self) -> str:
        return self.classification.category

    @property
    def is_real_product(self) -> bool:
        return self.classification.is_real_product

    def discovery_metadata(self) -> dict:
        """Discovery-source bag stored alongside the persisted product."""
        return {
            "platform": self.platform,
            "channel": self.post.channel,
            "post_id": self.post.post_id,
            "post_title": self.post.title,
            "permalink": self.post.permalink,
            "upvotes": self.post.upvotes,
            "comments": self.post.comment_count,
            "engagement_score": round(self.engagement_score, 2),
            "prices_mentioned": list(self.classification.prices),
            "top_comments": [c.body for c in self.top_comments],
            "discovered_at": self.discovered_at.isoformat(),
        }


class ProductClassifier(Protocol):
    """Strategy interface for deciding whether a post is about a real product."""

    def classify(self, post: Post, now: datetime) -> Classification:
        ...
