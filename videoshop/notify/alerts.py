"""Fan out new-product alerts to matching subscriptions."""

import logging
from typing import Optional

from sqlalchemy import select

from videoshop import metrics
from videoshop.config import settings
from videoshop.db.models import Product, Subscription, utcnow
from videoshop.db.session import AsyncSessionLocal
from videoshop.notify.mailer import MailClient, mail_client
from videoshop.notify.subscriptions import DEFAULT_SETTINGS

logger = logging.getLogger(__name__)

FAN_OUT_TYPES = ("category", "channel", "new-products")


def subscription_matches(subscription: Subscription, product: Product) -> bool:
    """Target match plus the subscription's price window."""
    target = (subscription.target or "").lower()
    if subscription.type == "category":
        matched = target == (product.category or "").lower()
    elif subscription.type == "channel":
        matched = target == (product.channel or "").lower()
    elif subscription.type == "new-products":
        matched = target == "all"
    else:
        matched = False
    if not matched:
        return False

    window = {**DEFAULT_SETTINGS, **(subscription.settings or {})}
    return window["min_price"] <= (product.price or 0.0) <= window["max_price"]


def render_alert(subscription: Subscription, product: Product) -> tuple[str, str]:
    subject = f"New in {subscription.display_name}: {product.name}"
    lines = [
        f"{product.name} just landed in the shop for ${product.price:.2f}.",
        "",
        (product.description or "").split("\n")[0][:200],
        "",
        f"View it: {settings.public_domain}/products/{product.id}",
        "",
        f"You get this because you follow {subscription.display_name}.",
    ]
    return subject, "\n".join(lines)


class SubscriptionAlerter:
    """One notification per (saved product, matching active subscription)."""

    def __init__(self, session_factory=None, mailer: Optional[MailClient] = None):
        self.session_factory = session_factory or AsyncSessionLocal
        self.mailer = mailer or mail_client

    async def fan_out(self, products: list[Product]) -> int:
        """
        Notify subscribers about newly saved products.

        Returns:
            Number of notifications dispatched
        """
        if not products:
            return 0

        sent = 0
        async with self.session_factory() as db:
            result = await db.execute(
                select(Subscription).where(
                    Subscription.is_active.is_(True),
                    Subscription.type.in_(FAN_OUT_TYPES),
                )
            )
            subscriptions = list(result.scalars().all())
            if not subscriptions:
                logger.debug("No active subscriptions to alert")
                return 0

            for product in products:
                for subscription in subscriptions:
                    if not subscription_matches(subscription, product):
                        continue
                    subject, body = render_alert(subscription, product)
                    delivered = await self.mailer.send(subscription.email, subject, body)
                    subscription.alert_count += 1
                    subscription.last_alert_sent = utcnow()
                    sent += 1
                    metrics.alerts_sent_total.labels(
                        type=subscription.type,
                        status="delivered" if delivered else "undelivered",
                    ).inc()
            await db.commit()

        logger.info(f"Dispatched {sent} subscription alerts for {len(products)} products")
        return sent
