"""Trend scanner: pulls ranked posts from topical channels and keeps product signals."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from videoshop import metrics
from videoshop.config import settings
from videoshop.discovery.base import Candidate, ProductClassifier
from videoshop.discovery.classifier import HeuristicClassifier, normalize_name_key
from videoshop.discovery.reddit import DiscussionClient, DiscussionFetchError

logger = logging.getLogger(__name__)


@dataclass
class ScanSummary:
    """Bookkeeping for one discover_candidates call."""

    channels_scanned: int = 0
    channels_failed: int = 0
    posts_seen: int = 0
    posts_skipped: int = 0
    accepted: int = 0
    duplicates: int = 0
    errors: list[str] = field(default_factory=list)


class TrendScanner:
    """Runs the classifier over every configured channel and ranks the survivors."""

    def __init__(
        self,
        client: Optional[DiscussionClient] = None,
        classifier: Optional[ProductClassifier] = None,
        channels: Optional[list[str]] = None,
        max_results: Optional[int] = None,
        enrich_comments: Optional[bool] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.client = client or DiscussionClient()
        self.classifier = classifier or HeuristicClassifier()
        self.channels = list(channels or settings.discovery_channels)
        self.max_results = max_results or settings.max_candidates
        self.enrich_comments = (
            settings.enrich_with_comments if enrich_comments is None else enrich_comments
        )
        self.clock = clock
        self.last_summary = ScanSummary()

    async def discover_candidates(
        self,
        time_window: str = "day",
        per_channel_limit: int = 25,
    ) -> list[Candidate]:
        """
        Discover product candidates across all channels.

        A failing channel is logged and skipped. If every channel fails the
        result is simply empty; deciding whether that is fatal belongs to the
        caller.

        Args:
            time_window: Platform ranking window (hour/day/week/...)
            per_channel_limit: Posts to request per channel

        Returns:
            Candidates deduplicated by product name, best engagement first
        """
        summary = ScanSummary()
        self.last_summary = summary
        now = self.clock()
        accepted: list[Candidate] = []

        for channel in self.channels:
            try:
                posts = await self.client.fetch_top(channel, time_window, per_channel_limit)
                metrics.discussion_fetches_total.labels(channel=channel, status="success").inc()
            except DiscussionFetchError as e:
                summary.channels_failed += 1
                summary.errors.append(f"r/{channel}: {e}")
                metrics.discussion_fetches_total.labels(channel=channel, status="error").inc()
                logger.warning(f"Skipping r/{channel}: {e}")
                continue

            summary.channels_scanned += 1
            for post in posts:
                summary.posts_seen += 1
                if post.removed or not post.has_text:
                    summary.posts_skipped += 1
                    continue

                classification = self.classifier.classify(post, now)
                if not classification.is_real_product:
                    metrics.candidates_classified_total.labels(result="rejected").inc()
                    continue

                metrics.candidates_classified_total.labels(result="accepted").inc()
                candidate = Candidate(post=post, classification=classification, discovered_at=now)
                if self.enrich_comments and post.permalink:
                    candidate.top_comments = await self._top_comments(post.permalink)
                accepted.append(candidate)

            logger.debug(f"r/{channel}: {len(posts)} posts scanned")

        candidates = self.deduplicate(accepted)
        summary.accepted = len(candidates)
        summary.duplicates = len(accepted) - len(candidates)
        logger.info(
            f"Trend scan complete: {summary.channels_scanned}/{len(self.channels)} channels, "
            f"{summary.posts_seen} posts, {len(candidates)} candidates"
        )
        return candidates

    def deduplicate(self, candidates: list[Candidate]) -> list[Candidate]:
        """Keep the first candidate per name key, then rank and cap."""
        seen: set[str] = set()
        unique = []
        for candidate in candidates:
            key = normalize_name_key(candidate.product_name)
            if len(key) <= 3 or key in seen:
                continue
            seen.add(key)
            unique.append(candidate)

        unique.sort(key=lambda c: c.engagement_score, reverse=True)
        return unique[: self.max_results]

    async def _top_comments(self, permalink: str):
        try:
            comments = await self.client.fetch_top_comments(
                permalink, limit=settings.comments_per_candidate
            )
        except DiscussionFetchError as e:
            logger.debug(f"Comment enrichment skipped for {permalink}: {e}")
            return []

        kept = []
        for comment in comments:
            if comment.upvotes < settings.comment_min_upvotes:
                continue
            comment.body = comment.body[: settings.comment_char_budget]
            kept.append(comment)
        return kept

    async def health(self) -> bool:
        return await self.client.ping()

    async def close(self):
        await self.client.close()
