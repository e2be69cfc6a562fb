"""Tests for checkout pricing, order creation and payment webhooks."""

import hashlib
import hmac
import json
import time

import pytest
from sqlalchemy import func, select

from videoshop.checkout.gateway import CheckoutSession, PaymentGateway
from videoshop.checkout.service import (
    CheckoutService,
    address_from_gateway,
    generate_order_number,
    order_totals,
    validate_request,
)
from videoshop.db.models import Order
from videoshop.errors import PaymentError, ValidationError, WebhookSignatureError

ADDRESS = {"name": "Sam Buyer", "line1": "1 Main St", "city": "Springfield", "postal_code": "62701", "country": "US"}
CUSTOMER = {"email": "buyer@example.com", "name": "Sam Buyer"}


class FakeGateway:
    def __init__(self):
        self.sessions = []

    async def create_checkout_session(self, **kwargs):
        self.sessions.append(kwargs)
        session_id = f"cs_test_{len(self.sessions)}"
        return CheckoutSession(id=session_id, url=f"https://pay.test/{session_id}")


class FakeFulfillment:
    def __init__(self, error=None):
        self.processed = []
        self.error = error

    async def process_order(self, order_id, retry=False):
        self.processed.append(order_id)
        if self.error:
            raise self.error


def _service(session_factory, fulfillment=None):
    gateway = FakeGateway()
    service = CheckoutService(
        session_factory=session_factory,
        gateway=gateway,
        fulfillment=fulfillment or FakeFulfillment(),
    )
    return service, gateway


@pytest.mark.parametrize(
    "subtotal,expected",
    [
        (40.0, (9.99, 3.2, 53.19)),
        (50.0, (9.99, 4.0, 63.99)),
        (60.0, (0.0, 4.8, 64.8)),
    ],
)
def test_order_totals(subtotal, expected):
    assert order_totals(subtotal) == pytest.approx(expected)


@pytest.mark.parametrize(
    "items,customer,address,message",
    [
        ([], CUSTOMER, ADDRESS, "Cart is empty"),
        ([{"product_id": 1}], {"name": "x"}, ADDRESS, "email"),
        ([{"product_id": 1}], CUSTOMER, {"line1": "1 Main St", "city": "X"}, "shipping address"),
        ([{"product_id": 1, "quantity": 0}], CUSTOMER, ADDRESS, "Invalid quantity"),
        ([{"product_id": 1, "quantity": -3}], CUSTOMER, ADDRESS, "Invalid quantity"),
        ([{"product_id": 1, "quantity": "2"}], CUSTOMER, ADDRESS, "Invalid quantity"),
        ([{"product_id": 1, "quantity": None}], CUSTOMER, ADDRESS, "Invalid quantity"),
        ([{"quantity": 1}], CUSTOMER, ADDRESS, "product_id"),
    ],
)
def test_validate_request_rejects(items, customer, address, message):
    with pytest.raises(ValidationError, match=message):
        validate_request(items, customer, address)


def test_order_number_format():
    number = generate_order_number()
    prefix, stamp, suffix = number.split("-")
    assert prefix == "VS"
    assert len(stamp) == 6 and stamp.isdigit()
    assert len(suffix) == 4


@pytest.mark.asyncio
async def test_create_session_prices_cart_and_stores_pending_order(session_factory, make_product):
    product = await make_product("Desk Lamp", price=25.6, supplier_price=20.0)
    service, gateway = _service(session_factory)

    result = await service.create_session([{"product_id": product.id, "quantity": 2}], CUSTOMER, ADDRESS)

    assert result["session_id"] == "cs_test_1"
    assert result["order_number"].startswith("VS-")
    line_items = gateway.sessions[0]["line_items"]
    assert [li["price_data"]["product_data"]["name"] for li in line_items] == ["Desk Lamp", "Tax"]
    assert line_items[0]["price_data"]["unit_amount"] == 2560
    assert line_items[0]["quantity"] == 2

    async with session_factory() as db:
        order = (await db.execute(select(Order))).scalar_one()
    assert order.payment_status == "pending"
    assert order.subtotal == pytest.approx(51.2)
    assert order.shipping == 0.0
    assert order.tax == pytest.approx(4.1)
    assert order.total == pytest.approx(55.3)
    assert order.total_profit == pytest.approx(11.2)
    assert order.items[0].supplier_platform == "cjdropshipping"


@pytest.mark.asyncio
async def test_unknown_product_creates_nothing(session_factory, make_product):
    await make_product("Desk Lamp")
    service, gateway = _service(session_factory)

    with pytest.raises(ValidationError):
        await service.create_session([{"product_id": 999}], CUSTOMER, ADDRESS)

    async with session_factory() as db:
        assert await db.scalar(select(func.count(Order.id))) == 0
    assert gateway.sessions == []


@pytest.mark.asyncio
async def test_zero_quantity_is_rejected_not_bumped_to_one(session_factory, make_product):
    product = await make_product("Desk Lamp")
    service, gateway = _service(session_factory)

    with pytest.raises(ValidationError, match="Invalid quantity"):
        await service.create_session([{"product_id": product.id, "quantity": 0}], CUSTOMER, ADDRESS)

    async with session_factory() as db:
        assert await db.scalar(select(func.count(Order.id))) == 0
    assert gateway.sessions == []


@pytest.mark.asyncio
async def test_checkout_completed_marks_paid_and_fulfills(session_factory, make_order):
    order = await make_order([("cjdropshipping", "P1")], payment_status="pending", order_number="VS-9")
    fulfillment = FakeFulfillment()
    service, _ = _service(session_factory, fulfillment)
    event = {
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": order.payment_session_id,
                "payment_intent": "pi_123",
                "shipping_details": {
                    "name": "Sam Buyer",
                    "address": {"line1": "9 Elm St", "city": "Shelbyville", "postal_code": "62565", "country": "US"},
                },
            }
        },
    }

    response = await service.handle_event(event)
    again = await service.handle_event(event)

    assert response == {"received": True, "type": "checkout.session.completed", "handled": True}
    assert again["handled"] is True
    assert fulfillment.processed == [order.id]
    async with session_factory() as db:
        stored = await db.get(Order, order.id)
    assert stored.payment_status == "paid"
    assert stored.payment_intent_id == "pi_123"
    assert stored.paid_at is not None
    assert stored.shipping_address["line1"] == "9 Elm St"


@pytest.mark.asyncio
async def test_fulfillment_error_does_not_reach_gateway(session_factory, make_order):
    order = await make_order([("cjdropshipping", "P1")], payment_status="pending")
    service, _ = _service(session_factory, FakeFulfillment(error=RuntimeError("supplier down")))

    response = await service.handle_event(
        {"type": "checkout.session.completed", "data": {"object": {"id": order.payment_session_id}}}
    )

    assert response["handled"] is True


@pytest.mark.asyncio
async def test_other_events(session_factory, make_order):
    service, _ = _service(session_factory)

    assert (await service.handle_event({"type": "customer.created", "data": {}}))["handled"] is False
    assert (
        await service.handle_event({"type": "checkout.session.completed", "data": {"object": {"id": "cs_nope"}}})
    )["handled"] is False
    assert (
        await service.handle_event({"type": "payment_intent.succeeded", "data": {"object": {"id": "pi_nope"}}})
    )["handled"] is False


@pytest.mark.asyncio
async def test_orders_for_email_lists_paid_orders(session_factory, make_order):
    await make_order([("cjdropshipping", "P1")], order_number="VS-1")
    await make_order([("cjdropshipping", "P2")], payment_status="pending", order_number="VS-2")
    service, _ = _service(session_factory)

    orders = await service.orders_for_email("buyer@example.com")

    assert [o.order_number for o in orders] == ["VS-1"]


def test_address_from_gateway():
    assert address_from_gateway({}) is None
    address = address_from_gateway(
        {"collected_information": {"shipping_details": {"name": "A", "address": {"line1": "1", "city": "C"}}}}
    )
    assert address["name"] == "A"
    assert address["postal_code"] == ""


@pytest.mark.asyncio
async def test_gateway_requires_secret_key():
    with pytest.raises(PaymentError):
        await PaymentGateway(secret_key="").create_checkout_session([], "s", "c", "a@b.c")


def _signed(payload: bytes, secret: str) -> str:
    timestamp = int(time.time())
    signed = f"{timestamp}.{payload.decode()}".encode()
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def test_verify_webhook():
    secret = "whsec_test"
    gateway = PaymentGateway(secret_key="sk_test", webhook_secret=secret)
    payload = json.dumps({"id": "evt_1", "object": "event", "type": "checkout.session.completed", "data": {"object": {}}}).encode()

    event = gateway.verify_webhook(payload, _signed(payload, secret))
    assert event["type"] == "checkout.session.completed"

    with pytest.raises(WebhookSignatureError):
        gateway.verify_webhook(payload, _signed(payload, "whsec_other"))
    with pytest.raises(WebhookSignatureError):
        gateway.verify_webhook(payload, None)
    with pytest.raises(WebhookSignatureError):
        PaymentGateway(webhook_secret="").verify_webhook(payload, "t=1,v1=x")
