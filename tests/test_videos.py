"""Tests for video relevance scoring, quota accounting and the cache-first resolver."""

from datetime import date, datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy import func, select

from videoshop.db.models import VideoCacheEntry
from videoshop.videos.quota import QuotaTracker
from videoshop.videos.resolver import VideoCacheResolver
from videoshop.videos.scoring import format_duration, parse_iso_duration, recency_bonus, relevance_score
from videoshop.videos.youtube import YouTubeClient

NOW = datetime(2024, 5, 1, tzinfo=timezone.utc)

VIEWS = {"v1": 100_000, "v2": 50_000, "v3": 20_000, "v4": 100, "v5": 10}


def test_relevance_score_components():
    score = relevance_score(
        views=999,
        likes=100,
        comments=10,
        published_at=None,
        title="Sony review",
        description="",
        duration_seconds=300,
        query="sony review",
        now=NOW,
    )
    # 30 (views) + 50 (likes, capped) + 10 (comments) + 10 (title terms) + 10 (duration)
    assert score == 110


def test_relevance_score_penalizes_short_clips_and_floors_at_zero():
    assert relevance_score(0, 0, 0, None, "", "", 30, "anything", now=NOW) == 0


def test_recency_bands():
    assert recency_bonus(NOW - timedelta(days=3), NOW) == 50
    assert recency_bonus(NOW - timedelta(days=100), NOW) == 20
    assert recency_bonus(NOW - timedelta(days=400), NOW) == 0
    assert recency_bonus(None, NOW) == 0


def test_duration_helpers():
    assert parse_iso_duration("PT1H2M3S") == 3723
    assert parse_iso_duration("PT45S") == 45
    assert parse_iso_duration("garbage") == 0
    assert format_duration(3723) == "1:02:03"
    assert format_duration(75) == "1:15"


def test_quota_rolls_over_with_the_date():
    today = {"value": date(2024, 5, 1)}
    quota = QuotaTracker(daily_limit=200, today=lambda: today["value"])

    quota.spend(150)
    assert quota.remaining == 50
    assert not quota.can_spend(100)

    today["value"] = date(2024, 5, 2)
    assert quota.can_spend(100)
    assert quota.status()["used"] == 0


def _youtube_transport(calls):
    published = (NOW - timedelta(days=10)).isoformat().replace("+00:00", "Z")

    def snippet(video_id):
        return {
            "title": f"{video_id} review",
            "description": "Full hands-on",
            "channelTitle": "Reviews Inc",
            "channelId": "chan-1",
            "publishedAt": published,
            "thumbnails": {"high": {"url": f"https://i.test/{video_id}.jpg"}},
        }

    def handle(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        if request.url.path.endswith("/search"):
            return httpx.Response(
                200,
                json={"items": [{"id": {"videoId": vid}, "snippet": snippet(vid)} for vid in VIEWS]},
            )
        if request.url.path.endswith("/videos"):
            ids = request.url.params["id"].split(",")
            return httpx.Response(
                200,
                json={
                    "items": [
                        {
                            "id": vid,
                            "snippet": snippet(vid),
                            "statistics": {"viewCount": str(VIEWS[vid]), "likeCount": "0"},
                            "contentDetails": {"duration": "PT8M"},
                        }
                        for vid in ids
                    ]
                },
            )
        return httpx.Response(404, json={"error": {"message": "unknown"}})

    return httpx.MockTransport(handle)


def _resolver(session_factory, calls, daily_limit=10_000):
    client = YouTubeClient(
        quota=QuotaTracker(daily_limit=daily_limit),
        api_key="test-key",
        base_url="https://yt.test/v3",
        transport=_youtube_transport(calls),
    )
    return VideoCacheResolver(client=client, session_factory=session_factory)


@pytest.mark.asyncio
async def test_resolver_reuses_stored_videos_across_products(session_factory, make_product):
    lamp = await make_product("Desk Lamp")
    lamp_pro = await make_product("Desk Lamp Pro")
    calls = []
    resolver = _resolver(session_factory, calls)

    first = await resolver.resolve_videos(lamp.name, product_id=lamp.id, category="home", max_results=3)
    second = await resolver.resolve_videos(lamp_pro.name, product_id=lamp_pro.id, category="home", max_results=3)

    assert [entry.video_id for entry in first] == ["v1", "v2", "v3"]
    assert [entry.video_id for entry in second] == ["v1", "v2", "v3"]
    assert resolver.quota.used == 2 * (100 + 5)

    async with session_factory() as db:
        total = await db.scalar(select(func.count(VideoCacheEntry.id)))
        result = await db.execute(select(VideoCacheEntry).where(VideoCacheEntry.video_id == "v1"))
        entry = result.scalar_one()

    assert total == 3
    assert resolver.stored_count == 3
    assert sorted(entry.product_ids) == sorted([lamp.id, lamp_pro.id])
    await resolver.close()


@pytest.mark.asyncio
async def test_cache_hit_makes_no_provider_calls(session_factory, make_product):
    lamp = await make_product("Desk Lamp")
    calls = []
    resolver = _resolver(session_factory, calls)
    await resolver.resolve_videos(lamp.name, product_id=lamp.id, max_results=3)
    made = resolver.client.requests_made

    cached = await resolver.resolve_videos(lamp.name, product_id=lamp.id, max_results=3)

    assert len(cached) == 3
    assert resolver.client.requests_made == made
    assert resolver.stored_count == 3
    assert len(calls) == made


@pytest.mark.asyncio
async def test_quota_ceiling_degrades_to_cache_only(session_factory):
    calls = []
    resolver = _resolver(session_factory, calls, daily_limit=50)

    assert await resolver.resolve_videos("Desk Lamp", max_results=3) == []
    assert calls == []
    assert resolver.quota.used == 0


@pytest.mark.asyncio
async def test_unconfigured_provider_is_cache_only(session_factory):
    client = YouTubeClient(quota=QuotaTracker(daily_limit=10_000), api_key="", base_url="https://yt.test/v3")
    resolver = VideoCacheResolver(client=client, session_factory=session_factory)

    assert await resolver.resolve_videos("Desk Lamp") == []
    assert client.requests_made == 0


@pytest.mark.asyncio
async def test_quota_exceeded_response_exhausts_tracker(session_factory):
    def handle(request):
        return httpx.Response(
            403, json={"error": {"message": "quota", "errors": [{"reason": "quotaExceeded"}]}}
        )

    quota = QuotaTracker(daily_limit=10_000)
    client = YouTubeClient(quota=quota, api_key="k", base_url="https://yt.test/v3", transport=httpx.MockTransport(handle))

    result = await client.search("lamp", 5)

    assert result.status == "error"
    assert quota.remaining == 0


@pytest.mark.asyncio
async def test_trending_feed_and_deactivate(session_factory):
    calls = []
    resolver = _resolver(session_factory, calls)

    trending = await resolver.search_trending(["gadget unboxing", "viral tech"], max_per_query=2, total_max=3)
    assert [entry.video_id for entry in trending] == ["v1", "v2"]
    assert all(entry.category == "trending" for entry in trending)

    assert await resolver.deactivate("v1") is True
    assert await resolver.deactivate("missing") is False
    feed = await resolver.cached_feed(limit=10)
    assert "v1" not in [entry.video_id for entry in feed]
