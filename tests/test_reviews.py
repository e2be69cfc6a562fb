"""Tests for review collection and text cleanup."""

import httpx
import pytest

from videoshop.discovery.reddit import DiscussionClient
from videoshop.reviews.scraper import (
    ReviewScraper,
    clean_review_text,
    parse_marketplace_reviews,
    sentiment_rating,
    usable,
)

SEARCH_HTML = """
<div data-component-type="s-search-result" data-asin="B1">
  <h2><a href="/dp/B1"><span>Desk Lamp</span></a></h2>
</div>
"""

PRODUCT_HTML = """
<div data-hook="review">
  <span class="a-profile-name">Jordan</span>
  <i class="a-icon-alt">4.0 out of 5 stars</i>
  <span data-hook="review-body"><span>Bright, sturdy and the dimmer works well for late nights.</span></span>
</div>
<div data-hook="review">
  <span data-hook="review-body">Too short</span>
</div>
<div data-hook="review">
  <span class="a-profile-name">Riley</span>
  <span data-hook="review-body">Honestly the worst lamp I have owned, flickers constantly.</span>
</div>
"""

AGGREGATOR_HTML = """
<div class="result"><a class="result__snippet">Reviewers say this is a great lamp for small desks and dorms.</a></div>
<div class="result"><a class="result__snippet">meh</a></div>
"""


def _discussion(posts=None, fail=False):
    def handle(request):
        if fail:
            return httpx.Response(503)
        children = [{"kind": "t3", "data": post} for post in (posts or [])]
        return httpx.Response(200, json={"data": {"children": children}})

    return DiscussionClient(base_url="https://discuss.test", transport=httpx.MockTransport(handle))


def _web(marketplace="ok", aggregator="ok"):
    def handle(request):
        host, path = request.url.host, request.url.path
        if host == "shop.test":
            if marketplace == "captcha":
                if path == "/errors/validateCaptcha":
                    return httpx.Response(200, text="captcha")
                return httpx.Response(302, headers={"Location": "https://shop.test/errors/validateCaptcha"})
            if path == "/s":
                return httpx.Response(200, text=SEARCH_HTML)
            if path == "/dp/B1":
                return httpx.Response(200, text=PRODUCT_HTML)
        if host == "agg.test":
            if aggregator == "ok":
                return httpx.Response(200, text=AGGREGATOR_HTML)
            return httpx.Response(500)
        return httpx.Response(404)

    return httpx.MockTransport(handle)


def _scraper(discussion, transport, videos=None):
    return ReviewScraper(
        discussion=discussion,
        videos=videos,
        transport=transport,
        marketplace_url="https://shop.test",
        aggregator_url="https://agg.test/html/",
    )


class _Videos:
    def __init__(self, comments):
        self.comments = comments
        self.asked = []

    async def top_comments(self, video_id, max_results=10):
        self.asked.append(video_id)
        return self.comments.get(video_id, [])


def test_clean_review_text_strips_markup_and_scripts():
    raw = "<b>Great</b> lamp (function() { track(); })(); A.toggleExpander(x); really\n\n bright"

    assert clean_review_text(raw) == "Great lamp really bright"
    assert clean_review_text(None) == ""


@pytest.mark.parametrize(
    "text,rating",
    [
        ("Worst purchase, total garbage", 1),
        ("Bad hinge but great light", 2),
        ("Absolutely amazing", 5),
        ("Pretty good overall", 4),
        ("It is a lamp", 3),
    ],
)
def test_sentiment_rating(text, rating):
    assert sentiment_rating(text) == rating


def test_usable_length_window():
    assert not usable("short")
    assert usable("x" * 20)
    assert not usable("x" * 501)


def test_parse_marketplace_reviews():
    parsed = parse_marketplace_reviews(PRODUCT_HTML)

    assert parsed[0][:2] == ("Jordan", 4)
    assert parsed[2][:2] == ("Riley", None)


@pytest.mark.asyncio
async def test_marketplace_source_wins_first():
    scraper = _scraper(_discussion(), _web())

    result = await scraper.get_product_reviews("Desk Lamp")

    assert result.ok
    assert result.source == "marketplace"
    assert [r.rating for r in result.reviews] == [4, 1]
    assert all(r.verified for r in result.reviews)
    assert result.as_dict()["overall_rating"] == 2.5
    await scraper.close()


@pytest.mark.asyncio
async def test_captcha_falls_back_to_discussion():
    posts = [
        {"id": "x1", "title": "Desk Lamp review", "selftext": "Solid build, I would recommend it to anyone.", "author": "sam"},
        {"id": "x2", "title": "removed", "selftext": "This one was removed by mods entirely.", "removed_by_category": "moderator"},
    ]
    scraper = _scraper(_discussion(posts), _web(marketplace="captcha"))

    result = await scraper.get_product_reviews("Desk Lamp")

    assert result.source == "discussion"
    assert [r.author for r in result.reviews] == ["sam"]
    assert result.reviews[0].rating == 4


@pytest.mark.asyncio
async def test_video_comments_only_from_given_ids():
    videos = _Videos({"v2": ["Fantastic lamp, the warm setting is perfect for reading."]})
    scraper = _scraper(_discussion(fail=True), _web(marketplace="captcha", aggregator="down"), videos)

    without_ids = await scraper.get_product_reviews("Desk Lamp")
    with_ids = await scraper.get_product_reviews("Desk Lamp", video_ids=["v1", "v2"])

    assert not without_ids.ok
    assert videos.asked == ["v1", "v2"]
    assert with_ids.source == "video"
    assert with_ids.reviews[0].rating == 5


@pytest.mark.asyncio
async def test_aggregator_is_last_resort():
    scraper = _scraper(_discussion(fail=True), _web(marketplace="captcha"))

    result = await scraper.get_product_reviews("Desk Lamp")

    assert result.source == "aggregator"
    assert len(result.reviews) == 1


@pytest.mark.asyncio
async def test_all_sources_failing_reports_error():
    scraper = _scraper(_discussion(fail=True), _web(marketplace="captcha", aggregator="down"))

    result = await scraper.get_product_reviews("Desk Lamp")

    assert result.status == "error"
    assert result.error.startswith("aggregator")
    assert result.as_dict()["total_reviews"] == 0
