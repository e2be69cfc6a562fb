"""Cache-first video resolution for products."""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError

from videoshop import metrics
from videoshop.config import settings
from videoshop.db.models import VideoCacheEntry, VideoProductLink, utcnow
from videoshop.db.session import AsyncSessionLocal
from videoshop.videos.scoring import format_duration, relevance_score
from videoshop.videos.youtube import VideoHit, YouTubeClient

logger = logging.getLogger(__name__)


class VideoCacheResolver:
    """
    Resolve videos for a product, spending provider quota only on a cache miss.

    Per call:
      1. cache check by product id and/or name (active, API-sourced entries)
      2. on a miss, one ``"<name> review"`` search if the projected cost fits
      3. one batched detail lookup for the distinct ids
      4. relevance scoring
      5. persist the best ``max_results``; an existing video id is linked to
         the product instead of being stored again
    """

    def __init__(
        self,
        client: Optional[YouTubeClient] = None,
        session_factory=None,
    ):
        self.client = client or YouTubeClient()
        self.session_factory = session_factory or AsyncSessionLocal
        # Entries written to the cache, as opposed to existing ones only linked
        self.stored_count = 0

    @property
    def quota(self):
        return self.client.quota

    async def resolve_videos(
        self,
        product_name: str,
        product_id: Optional[int] = None,
        category: str = "",
        max_results: Optional[int] = None,
    ) -> list[VideoCacheEntry]:
        max_results = max_results or settings.videos_per_product

        cached = await self.cached_for_product(product_name, product_id, max_results)
        if cached:
            metrics.video_cache_lookups_total.labels(result="hit").inc()
            logger.debug(f"Video cache hit for {product_name!r}: {len(cached)} entries")
            return cached
        metrics.video_cache_lookups_total.labels(result="miss").inc()

        query = f"{product_name} review"
        wanted = max_results + settings.video_result_buffer
        hits = await self._search_and_hydrate(query, wanted)
        if not hits:
            return cached

        entries = await self._persist(
            hits[:max_results], product_id, product_name, category or "product-video"
        )
        logger.info(f"Cached {len(entries)} videos for {product_name!r}")
        return entries

    async def cached_for_product(
        self,
        product_name: Optional[str],
        product_id: Optional[int],
        limit: int,
    ) -> list[VideoCacheEntry]:
        conditions = []
        if product_id is not None:
            conditions.append(VideoProductLink.product_id == product_id)
        if product_name:
            conditions.append(VideoProductLink.product_name == product_name)
        if not conditions:
            logger.warning("Video cache lookup without product name or id")
            return []

        linked = select(VideoProductLink.video_entry_id).where(or_(*conditions))
        query = (
            select(VideoCacheEntry)
            .where(
                VideoCacheEntry.id.in_(linked),
                VideoCacheEntry.api_call_made.is_(True),
                VideoCacheEntry.is_active.is_(True),
            )
            .order_by(VideoCacheEntry.relevance_score.desc(), VideoCacheEntry.view_count.desc())
            .limit(limit)
        )
        async with self.session_factory() as db:
            result = await db.execute(query)
            return list(result.scalars().all())

    def _projected_cost(self, wanted: int) -> int:
        return settings.youtube_search_cost + settings.youtube_detail_cost_per_video * wanted

    async def _search_and_hydrate(self, query: str, wanted: int) -> list[VideoHit]:
        """Search then hydrate; empty when the quota cannot cover both calls."""
        if not self.client.configured:
            logger.debug("Video provider not configured; cache-only mode")
            return []
        projected = self._projected_cost(wanted)
        if not self.quota.can_spend(projected):
            logger.info(
                f"Video quota too low for {query!r} (needs {projected}, "
                f"{self.quota.remaining} left); serving cache only"
            )
            return []

        search = await self.client.search(query, wanted)
        if not search.ok or not search.videos:
            return []

        details = await self.client.video_details([hit.video_id for hit in search.videos[:wanted]])
        if not details.ok:
            return []

        now = datetime.now(timezone.utc)
        scored = []
        for hit in details.videos:
            score = relevance_score(
                views=hit.view_count,
                likes=hit.like_count,
                comments=hit.comment_count,
                published_at=hit.published_at,
                title=hit.title,
                description=hit.description,
                duration_seconds=hit.duration_seconds,
                query=query,
                now=now,
            )
            scored.append((score, hit))
        scored.sort(key=lambda pair: (pair[0], pair[1].view_count), reverse=True)
        for score, hit in scored:
            hit.relevance_score = score
        return [hit for _, hit in scored]

    async def _persist(
        self,
        hits: list[VideoHit],
        product_id: Optional[int],
        product_name: Optional[str],
        category: str,
    ) -> list[VideoCacheEntry]:
        try:
            return await self._persist_once(hits, product_id, product_name, category)
        except IntegrityError:
            # A concurrent resolution stored one of these ids first; link instead.
            logger.info("Video id stored concurrently, retrying as links")
            return await self._persist_once(hits, product_id, product_name, category)

    async def _persist_once(
        self,
        hits: list[VideoHit],
        product_id: Optional[int],
        product_name: Optional[str],
        category: str,
    ) -> list[VideoCacheEntry]:
        entries = []
        created = 0
        async with self.session_factory() as db:
            for hit in hits:
                result = await db.execute(
                    select(VideoCacheEntry).where(VideoCacheEntry.video_id == hit.video_id)
                )
                entry = result.scalar_one_or_none()
                if entry is None:
                    entry = self._new_entry(hit, category)
                    db.add(entry)
                    created += 1
                self._link(entry, product_id, product_name)
                entries.append(entry)
            await db.commit()
        self.stored_count += created
        return entries

    @staticmethod
    def _new_entry(hit: VideoHit, category: str) -> VideoCacheEntry:
        now = utcnow()
        published = hit.published_at
        if published is not None and published.tzinfo is not None:
            published = published.astimezone(timezone.utc).replace(tzinfo=None)
        return VideoCacheEntry(
            video_id=hit.video_id,
            title=hit.title,
            description=hit.description,
            thumbnail_url=hit.thumbnail_url,
            channel_title=hit.channel_title,
            channel_id=hit.channel_id,
            published_at=published,
            view_count=hit.view_count,
            like_count=hit.like_count,
            comment_count=hit.comment_count,
            duration=format_duration(hit.duration_seconds),
            duration_seconds=hit.duration_seconds,
            embed_url=hit.embed_url,
            watch_url=hit.watch_url,
            category=category,
            relevance_score=float(hit.relevance_score),
            api_call_made=True,
            last_fetched=now,
            is_active=True,
            product_links=[],
        )

    @staticmethod
    def _link(entry: VideoCacheEntry, product_id: Optional[int], product_name: Optional[str]):
        if product_id is None and not product_name:
            return
        for link in entry.product_links:
            if product_id is not None and link.product_id == product_id:
                return
            if product_id is None and link.product_id is None and link.product_name == product_name:
                return
        entry.product_links.append(
            VideoProductLink(product_id=product_id, product_name=product_name)
        )

    async def search_trending(
        self,
        queries: Optional[list[str]] = None,
        max_per_query: int = 3,
        total_max: int = 9,
    ) -> list[VideoCacheEntry]:
        """Generic trending queries used to top up a thin pipeline run."""
        entries: list[VideoCacheEntry] = []
        seen: set[str] = set()
        for query in queries or settings.trending_video_queries:
            if len(entries) >= total_max:
                break
            hits = await self._search_and_hydrate(query, max_per_query)
            fresh = [hit for hit in hits if hit.video_id not in seen][:max_per_query]
            if not fresh:
                continue
            seen.update(hit.video_id for hit in fresh)
            entries.extend(await self._persist(fresh, None, None, "trending"))
        return entries[:total_max]

    async def cached_feed(self, limit: int = 10, category: Optional[str] = None) -> list[VideoCacheEntry]:
        """Newest active entries for the video feed. Makes no provider calls."""
        query = select(VideoCacheEntry).where(VideoCacheEntry.is_active.is_(True))
        if category:
            query = query.where(VideoCacheEntry.category == category)
        query = query.order_by(
            VideoCacheEntry.created_at.desc(),
            VideoCacheEntry.relevance_score.desc(),
            VideoCacheEntry.view_count.desc(),
        ).limit(limit)
        async with self.session_factory() as db:
            result = await db.execute(query)
            return list(result.scalars().all())

    async def deactivate(self, video_id: str) -> bool:
        async with self.session_factory() as db:
            result = await db.execute(
                select(VideoCacheEntry).where(VideoCacheEntry.video_id == video_id)
            )
            entry = result.scalar_one_or_none()
            if entry is None:
                return False
            entry.is_active = False
            await db.commit()
            return True

    async def close(self):
        await self.client.close()
