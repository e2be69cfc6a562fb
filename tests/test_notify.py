"""Tests for subscriptions, alert fan-out and the mail client."""

import json

import httpx
import pytest

from tests.fakes import FakeMailer
from videoshop.db.models import Subscription
from videoshop.errors import NotFoundError, ValidationError
from videoshop.notify import subscriptions as subs
from videoshop.notify.alerts import SubscriptionAlerter, subscription_matches
from videoshop.notify.mailer import MailClient


@pytest.mark.asyncio
async def test_create_subscription_normalizes_target(db_session):
    sub = await subs.create_subscription(db_session, "u1", "fan@example.com", "channel", target="r/gadgets")

    assert sub.target == "gadgets"
    assert sub.display_name == "r/gadgets"
    assert sub.is_active is True
    assert sub.settings == {"min_price": 0.0, "max_price": 1000.0, "price_drop_percentage": 10.0}


@pytest.mark.asyncio
async def test_duplicate_active_subscription_rejected(db_session):
    await subs.create_subscription(db_session, "u1", "fan@example.com", "category", target="Home")

    with pytest.raises(ValidationError, match="Already subscribed"):
        await subs.create_subscription(db_session, "u1", "fan@example.com", "category", target="home")


@pytest.mark.parametrize(
    "kwargs,message",
    [
        ({"email": "not-an-email"}, "valid email"),
        ({"sub_type": "weather"}, "type must be one of"),
        ({"frequency": "hourly"}, "frequency"),
        ({"min_price": 50, "max_price": 10}, "max_price"),
        ({"price_drop_percentage": 0}, "price_drop_percentage"),
        ({"target": "  "}, "target is required"),
    ],
)
@pytest.mark.asyncio
async def test_create_subscription_validation(db_session, kwargs, message):
    params = {"user_id": "u1", "email": "fan@example.com", "sub_type": "category", "target": "home"}
    params.update(kwargs)

    with pytest.raises(ValidationError, match=message):
        await subs.create_subscription(db_session, **params)


@pytest.mark.asyncio
async def test_toggle_update_and_soft_delete(db_session):
    sub = await subs.create_subscription(db_session, "u1", "fan@example.com", "new-products")
    assert sub.target == "all"

    toggled = await subs.toggle_subscription(db_session, sub.id)
    assert toggled.is_active is False

    updated = await subs.update_subscription(db_session, sub.id, frequency="daily", max_price=200)
    assert updated.frequency == "daily"
    assert updated.settings["max_price"] == 200.0

    with pytest.raises(ValidationError):
        await subs.update_subscription(db_session, sub.id, frequency="never")

    removed = await subs.deactivate_subscription(db_session, sub.id)
    assert removed.is_active is False
    assert [s.id for s in await subs.list_for_user(db_session, "u1")] == [sub.id]
    assert await subs.list_for_user(db_session, "u1", active_only=True) == []

    with pytest.raises(NotFoundError):
        await subs.get_subscription(db_session, 12345)


def _sub(sub_type, target, **settings):
    return Subscription(
        user_id="u", email="e@example.com", type=sub_type, target=target,
        display_name=target, settings=settings,
    )


@pytest.mark.asyncio
async def test_subscription_matches_target_and_price_window(make_product):
    lamp = await make_product("Desk Lamp", price=25.6, category="home")

    assert subscription_matches(_sub("category", "home"), lamp)
    assert subscription_matches(_sub("channel", "gadgets"), lamp)
    assert subscription_matches(_sub("new-products", "all"), lamp)
    assert not subscription_matches(_sub("category", "tech"), lamp)
    assert not subscription_matches(_sub("category", "home", max_price=20.0), lamp)
    assert not subscription_matches(_sub("price-drop", "home"), lamp)


@pytest.mark.asyncio
async def test_fan_out_counts_every_dispatch(session_factory, db_session, make_product):
    lamp = await make_product("Desk Lamp", category="home")
    mug = await make_product("Travel Mug", category="kitchen", discovery_source={"channel": "BuyItForLife"})
    await subs.create_subscription(db_session, "u1", "a@example.com", "category", target="home")
    await subs.create_subscription(db_session, "u2", "b@example.com", "new-products")
    paused = await subs.create_subscription(db_session, "u3", "c@example.com", "channel", target="BuyItForLife")
    await subs.toggle_subscription(db_session, paused.id)
    mailer = FakeMailer(deliver=False)

    sent = await SubscriptionAlerter(session_factory, mailer).fan_out([lamp, mug])

    assert sent == 3
    assert sorted(m["to"] for m in mailer.sent) == ["a@example.com", "b@example.com", "b@example.com"]
    stored = await subs.list_for_user(db_session, "u2")
    await db_session.refresh(stored[0])
    assert stored[0].alert_count == 2
    assert stored[0].last_alert_sent is not None


@pytest.mark.asyncio
async def test_fan_out_without_products_or_subscribers(session_factory, make_product):
    alerter = SubscriptionAlerter(session_factory, FakeMailer())

    assert await alerter.fan_out([]) == 0
    assert await alerter.fan_out([await make_product()]) == 0


@pytest.mark.asyncio
async def test_mail_client_reports_delivery():
    bodies = []

    def handle(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(202 if bodies[-1]["to"] == ["ok@example.com"] else 500)

    client = MailClient(api_url="https://mail.test/send", api_key="k", transport=httpx.MockTransport(handle))

    assert await client.send("ok@example.com", "Hi", "Body") is True
    assert await client.send("bad@example.com", "Hi", "Body") is False
    assert bodies[0]["subject"] == "Hi"
    assert client.sent == 1
    await client.close()


@pytest.mark.asyncio
async def test_unconfigured_mail_client_drops_messages():
    assert await MailClient(api_url="").send("a@example.com", "s", "b") is False
