"""Checkout: cart validation, order creation and payment webhook handling."""

import logging
import secrets
import string
import time
from typing import Any, Optional

from sqlalchemy import select

from videoshop.checkout.gateway import CheckoutSession, PaymentGateway, payment_gateway
from videoshop.config import settings
from videoshop.db.models import Order, OrderItem, Product, utcnow
from videoshop.db.session import AsyncSessionLocal
from videoshop.errors import ValidationError
from videoshop.fulfillment.engine import FulfillmentEngine, fulfillment_engine

logger = logging.getLogger(__name__)

REQUIRED_ADDRESS_FIELDS = ("line1", "city", "postal_code")
_ORDER_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


def generate_order_number() -> str:
    """``VS-<last 6 digits of the ms clock>-<4 random chars>``."""
    stamp = str(int(time.time() * 1000))[-6:]
    suffix = "".join(secrets.choice(_ORDER_SUFFIX_ALPHABET) for _ in range(4))
    return f"VS-{stamp}-{suffix}"


def order_totals(subtotal: float) -> tuple[float, float, float]:
    """(shipping, tax, total) for a subtotal."""
    shipping = 0.0 if subtotal > settings.free_shipping_threshold else settings.flat_shipping_rate
    tax = round(subtotal * settings.tax_rate, 2)
    return shipping, tax, round(subtotal + shipping + tax, 2)


def to_cents(amount: float) -> int:
    return int(round(amount * 100))


def line_item(name: str, description: str, amount: float, quantity: int = 1, image: Optional[str] = None) -> dict[str, Any]:
    product_data: dict[str, Any] = {"name": name, "description": description}
    if image:
        product_data["images"] = [image]
    return {
        "price_data": {
            "currency": "usd",
            "product_data": product_data,
            "unit_amount": to_cents(amount),
        },
        "quantity": quantity,
    }


def validate_request(items: Any, customer: Any, shipping_address: Any):
    """
    Reject incomplete checkout input before anything is created.

    Raises:
        ValidationError: empty cart, missing email or incomplete address
    """
    if not items or not isinstance(items, list):
        raise ValidationError("Cart is empty or invalid")
    if not isinstance(customer, dict) or not customer.get("email"):
        raise ValidationError("Customer email is required")
    if not isinstance(shipping_address, dict) or any(
        not shipping_address.get(field) for field in REQUIRED_ADDRESS_FIELDS
    ):
        raise ValidationError("Complete shipping address is required")
    for item in items:
        if not isinstance(item, dict) or item.get("product_id") is None:
            raise ValidationError("Every cart item needs a product_id")
        item_quantity(item)


def item_quantity(item: dict[str, Any]) -> int:
    """Requested quantity of a cart item; absent means one, anything else must be an int >= 1."""
    quantity = item.get("quantity", 1)
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationError(f"Invalid quantity for product {item.get('product_id')}")
    return quantity


def address_from_gateway(session: dict[str, Any]) -> Optional[dict[str, str]]:
    """Shipping address collected by the hosted checkout page, if any."""
    details = (
        session.get("shipping_details")
        or (session.get("collected_information") or {}).get("shipping_details")
        or {}
    )
    address = details.get("address") or session.get("shipping_address")
    if not address:
        return None
    return {
        "name": details.get("name") or address.get("name") or "",
        "line1": address.get("line1") or "",
        "line2": address.get("line2") or "",
        "city": address.get("city") or "",
        "state": address.get("state") or "",
        "postal_code": address.get("postal_code") or "",
        "country": address.get("country") or "",
    }


class CheckoutService:
    """Creates pending orders behind a hosted checkout and confirms them from webhooks."""

    def __init__(
        self,
        session_factory=None,
        gateway: Optional[PaymentGateway] = None,
        fulfillment: Optional[FulfillmentEngine] = None,
    ):
        self.session_factory = session_factory or AsyncSessionLocal
        self.gateway = gateway or payment_gateway
        self.fulfillment = fulfillment or fulfillment_engine

    async def create_session(
        self,
        items: list[dict[str, Any]],
        customer: dict[str, Any],
        shipping_address: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Price the cart, open a checkout session and store a pending order.

        Args:
            items: ``[{"product_id": int, "quantity": int}]``
            customer: ``{"email", "name", "phone"}``
            shipping_address: ``{"name", "line1", "line2", "city", "state", "postal_code", "country"}``

        Returns:
            ``{"session_id", "session_url", "order_number"}``

        Raises:
            ValidationError: invalid input or unknown product (nothing is stored)
            PaymentError: the gateway rejected the session
        """
        validate_request(items, customer, shipping_address)

        async with self.session_factory() as db:
            order_items: list[OrderItem] = []
            subtotal = 0.0
            total_profit = 0.0
            for position, entry in enumerate(items):
                result = await db.execute(select(Product).where(Product.id == int(entry["product_id"])))
                product = result.scalar_one_or_none()
                if product is None:
                    raise ValidationError(f"Product {entry['product_id']} not found")

                quantity = item_quantity(entry)
                unit_price = float(product.price)
                supplier_price = float((product.pricing or {}).get("supplier_price") or 0.0)
                total_price = round(unit_price * quantity, 2)
                profit = round((unit_price - supplier_price) * quantity, 2)
                order_items.append(
                    OrderItem(
                        position=position,
                        product_id=product.id,
                        product_name=product.name,
                        quantity=quantity,
                        unit_price=unit_price,
                        supplier_price=supplier_price,
                        total_price=total_price,
                        profit=profit,
                        supplier_platform=product.supplier_platform,
                        supplier_product_id=product.supplier_product_id,
                        supplier_url=(product.supplier or {}).get("url"),
                        image_url=product.image_url,
                        fulfillment_status="pending",
                    )
                )
                subtotal += total_price
                total_profit += profit

            subtotal = round(subtotal, 2)
            shipping, tax, total = order_totals(subtotal)

            line_items = [
                line_item(i.product_name, "Trending product from VideoShop", i.unit_price, i.quantity, i.image_url)
                for i in order_items
            ]
            if shipping > 0:
                line_items.append(line_item("Shipping", "Standard shipping", shipping))
            line_items.append(line_item("Tax", "Sales tax", tax))

            session: CheckoutSession = await self.gateway.create_checkout_session(
                line_items=line_items,
                success_url=f"{settings.public_domain}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{settings.public_domain}/checkout/cancel",
                customer_email=customer["email"],
                metadata={
                    "order_type": "dropshipping",
                    "item_count": str(len(order_items)),
                    "total_profit": f"{total_profit:.2f}",
                },
            )

            order = Order(
                order_number=generate_order_number(),
                payment_session_id=session.id,
                customer={
                    "email": customer["email"],
                    "name": customer.get("name") or "",
                    "phone": customer.get("phone") or "",
                },
                customer_email=customer["email"],
                shipping_address={
                    "name": shipping_address.get("name") or customer.get("name") or "",
                    "line1": shipping_address["line1"],
                    "line2": shipping_address.get("line2") or "",
                    "city": shipping_address["city"],
                    "state": shipping_address.get("state") or "",
                    "postal_code": shipping_address["postal_code"],
                    "country": shipping_address.get("country") or "US",
                },
                items=order_items,
                subtotal=subtotal,
                shipping=shipping,
                tax=tax,
                total=total,
                total_profit=round(total_profit, 2),
                status="pending",
                payment_status="pending",
                fulfillment_status="pending",
            )
            db.add(order)
            await db.commit()

        logger.info(
            f"Checkout session {session.id} opened for order {order.order_number} "
            f"(${total:.2f}, profit ${total_profit:.2f})"
        )
        return {
            "session_id": session.id,
            "session_url": session.url,
            "order_number": order.order_number,
        }

    async def handle_event(self, event: dict[str, Any]) -> dict[str, Any]:
        """
        Apply a verified gateway event.

        Fulfillment errors are logged here and never reach the gateway.
        """
        event_type = event.get("type")
        obj = (event.get("data") or {}).get("object") or {}
        if event_type == "checkout.session.completed":
            handled = await self._checkout_completed(obj)
        elif event_type == "payment_intent.succeeded":
            handled = await self._payment_succeeded(obj)
        else:
            logger.debug(f"Ignoring gateway event {event_type}")
            handled = False
        return {"received": True, "type": event_type, "handled": handled}

    async def _checkout_completed(self, session: dict[str, Any]) -> bool:
        async with self.session_factory() as db:
            result = await db.execute(select(Order).where(Order.payment_session_id == session.get("id")))
            order = result.scalar_one_or_none()
            if order is None:
                logger.error(f"Order not found for checkout session {session.get('id')}")
                return False
            if order.payment_status == "paid":
                logger.info(f"Order {order.order_number} already confirmed; ignoring redelivery")
                return True

            order.payment_intent_id = session.get("payment_intent")
            order.payment_status = "paid"
            order.status = "processing"
            order.paid_at = utcnow()
            address = address_from_gateway(session)
            if address:
                order.shipping_address = address
            await db.commit()
            order_id = order.id
            order_number = order.order_number

        logger.info(f"Payment confirmed for order {order_number}; starting fulfillment")
        try:
            await self.fulfillment.process_order(order_id)
        except Exception as e:
            # Order stays valid and is picked up by the retry sweep or by hand
            logger.error(f"Auto-fulfillment failed for {order_number}: {e}")
        return True

    async def _payment_succeeded(self, intent: dict[str, Any]) -> bool:
        async with self.session_factory() as db:
            result = await db.execute(select(Order).where(Order.payment_intent_id == intent.get("id")))
            order = result.scalar_one_or_none()
            if order is None:
                return False
            if order.payment_status != "paid":
                order.payment_status = "paid"
                order.paid_at = utcnow()
                await db.commit()
            return True

    async def orders_for_email(self, email: str, limit: int = 20) -> list[Order]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(Order)
                .where(Order.customer_email == email, Order.payment_status == "paid")
                .order_by(Order.created_at.desc(), Order.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())


# Global checkout service
checkout_service = CheckoutService()
