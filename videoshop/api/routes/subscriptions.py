"""Subscription management routes."""

from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from videoshop.db.session import get_db
from videoshop.notify import subscriptions as service

router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])


class SubscriptionCreate(BaseModel):
    user_id: str
    email: str
    type: str
    target: Optional[str] = None
    display_name: Optional[str] = None
    frequency: str = "instant"
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    price_drop_percentage: Optional[float] = None


class SubscriptionUpdate(BaseModel):
    display_name: Optional[str] = None
    frequency: Optional[str] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    price_drop_percentage: Optional[float] = None


class SubscriptionResponse(BaseModel):
    id: int
    user_id: str
    email: str
    type: str
    target: str
    display_name: str
    frequency: str
    is_active: bool
    last_alert_sent: Optional[datetime]
    alert_count: int
    settings: dict[str, Any]
    created_at: datetime

    class Config:
        from_attributes = True


@router.post("", response_model=SubscriptionResponse, status_code=201)
async def create_subscription(body: SubscriptionCreate, db: AsyncSession = Depends(get_db)):
    return await service.create_subscription(
        db,
        user_id=body.user_id,
        email=body.email,
        sub_type=body.type,
        target=body.target,
        display_name=body.display_name,
        frequency=body.frequency,
        min_price=body.min_price,
        max_price=body.max_price,
        price_drop_percentage=body.price_drop_percentage,
    )


@router.get("/user/{user_id}", response_model=List[SubscriptionResponse])
async def list_subscriptions(
    user_id: str,
    active_only: bool = False,
    db: AsyncSession = Depends(get_db),
):
    return await service.list_for_user(db, user_id, active_only=active_only)


@router.post("/{subscription_id}/toggle", response_model=SubscriptionResponse)
async def toggle_subscription(subscription_id: int, db: AsyncSession = Depends(get_db)):
    return await service.toggle_subscription(db, subscription_id)


@router.patch("/{subscription_id}", response_model=SubscriptionResponse)
async def update_subscription(
    subscription_id: int,
    body: SubscriptionUpdate,
    db: AsyncSession = Depends(get_db),
):
    return await service.update_subscription(db, subscription_id, **body.model_dump())


@router.delete("/{subscription_id}", response_model=SubscriptionResponse)
async def delete_subscription(subscription_id: int, db: AsyncSession = Depends(get_db)):
    """Soft delete."""
    return await service.deactivate_subscription(db, subscription_id)
