"""Subscription management."""

import logging
import re
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from videoshop.db.models import Subscription
from videoshop.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

SUBSCRIPTION_TYPES = ("category", "channel", "price-drop", "new-products")
FREQUENCIES = ("instant", "daily", "weekly")
DEFAULT_SETTINGS = {"min_price": 0.0, "max_price": 1000.0, "price_drop_percentage": 10.0}

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_target(sub_type: str, target: Optional[str]) -> str:
    target = (target or "").strip()
    if sub_type == "new-products":
        return target.lower() or "all"
    if sub_type == "channel" and target.lower().startswith("r/"):
        target = target[2:]
    if sub_type == "category":
        target = target.lower()
    return target


def build_settings(
    current: Optional[dict[str, Any]] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    price_drop_percentage: Optional[float] = None,
) -> dict[str, Any]:
    """Merge price settings over the defaults and validate the window."""
    merged = {**DEFAULT_SETTINGS, **(current or {})}
    if min_price is not None:
        merged["min_price"] = float(min_price)
    if max_price is not None:
        merged["max_price"] = float(max_price)
    if price_drop_percentage is not None:
        merged["price_drop_percentage"] = float(price_drop_percentage)

    if merged["min_price"] < 0:
        raise ValidationError("min_price cannot be negative")
    if merged["max_price"] < merged["min_price"]:
        raise ValidationError("max_price must be greater than or equal to min_price")
    if not 0 < merged["price_drop_percentage"] <= 100:
        raise ValidationError("price_drop_percentage must be between 0 and 100")
    return merged


async def create_subscription(
    db: AsyncSession,
    user_id: str,
    email: str,
    sub_type: str,
    target: Optional[str] = None,
    display_name: Optional[str] = None,
    frequency: str = "instant",
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    price_drop_percentage: Optional[float] = None,
) -> Subscription:
    """
    Create a subscription after validating every field.

    Raises:
        ValidationError: bad type, frequency, email, target or price window,
            or an active subscription for the same user/type/target exists
    """
    if not user_id:
        raise ValidationError("user_id is required")
    if not email or not _EMAIL_RE.match(email):
        raise ValidationError("A valid email is required")
    if sub_type not in SUBSCRIPTION_TYPES:
        raise ValidationError(f"type must be one of {', '.join(SUBSCRIPTION_TYPES)}")
    if frequency not in FREQUENCIES:
        raise ValidationError(f"frequency must be one of {', '.join(FREQUENCIES)}")
    target = normalize_target(sub_type, target)
    if not target:
        raise ValidationError("target is required")
    sub_settings = build_settings(None, min_price, max_price, price_drop_percentage)

    existing = await db.execute(
        select(Subscription.id).where(
            Subscription.user_id == user_id,
            Subscription.type == sub_type,
            Subscription.target == target,
            Subscription.is_active.is_(True),
        )
    )
    if existing.scalar_one_or_none() is not None:
        raise ValidationError(f"Already subscribed to {sub_type} {target!r}")

    subscription = Subscription(
        user_id=user_id,
        email=email,
        type=sub_type,
        target=target,
        display_name=display_name or default_display_name(sub_type, target),
        frequency=frequency,
        is_active=True,
        alert_count=0,
        settings=sub_settings,
    )
    db.add(subscription)
    await db.commit()
    await db.refresh(subscription)
    logger.info(f"Subscription {subscription.id} created: {user_id} -> {sub_type}:{target}")
    return subscription


def default_display_name(sub_type: str, target: str) -> str:
    if sub_type == "channel":
        return f"r/{target}"
    if sub_type == "new-products":
        return "All new products"
    if sub_type == "price-drop":
        return f"Price drops: {target}"
    return f"{target.title()} products"


async def get_subscription(db: AsyncSession, subscription_id: int) -> Subscription:
    result = await db.execute(select(Subscription).where(Subscription.id == subscription_id))
    subscription = result.scalar_one_or_none()
    if subscription is None:
        raise NotFoundError(f"Subscription {subscription_id} not found")
    return subscription


async def list_for_user(db: AsyncSession, user_id: str, active_only: bool = False) -> list[Subscription]:
    query = select(Subscription).where(Subscription.user_id == user_id)
    if active_only:
        query = query.where(Subscription.is_active.is_(True))
    result = await db.execute(query.order_by(Subscription.created_at.desc(), Subscription.id.desc()))
    return list(result.scalars().all())


async def toggle_subscription(db: AsyncSession, subscription_id: int) -> Subscription:
    subscription = await get_subscription(db, subscription_id)
    subscription.is_active = not subscription.is_active
    await db.commit()
    await db.refresh(subscription)
    return subscription


async def update_subscription(
    db: AsyncSession,
    subscription_id: int,
    display_name: Optional[str] = None,
    frequency: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    price_drop_percentage: Optional[float] = None,
) -> Subscription:
    """Update preferences. Validation happens before anything is changed."""
    subscription = await get_subscription(db, subscription_id)
    if frequency is not None and frequency not in FREQUENCIES:
        raise ValidationError(f"frequency must be one of {', '.join(FREQUENCIES)}")
    new_settings = build_settings(subscription.settings, min_price, max_price, price_drop_percentage)

    if display_name:
        subscription.display_name = display_name
    if frequency is not None:
        subscription.frequency = frequency
    subscription.settings = new_settings
    await db.commit()
    await db.refresh(subscription)
    return subscription


async def deactivate_subscription(db: AsyncSession, subscription_id: int) -> Subscription:
    """Soft delete: the row stays for alert history."""
    subscription = await get_subscription(db, subscription_id)
    subscription.is_active = False
    await db.commit()
    await db.refresh(subscription)
    logger.info(f"Subscription {subscription_id} deactivated")
    return subscription
