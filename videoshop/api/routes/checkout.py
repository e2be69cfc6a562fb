"""Checkout, payment webhook and fulfillment routes."""

from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from pydantic import BaseModel, Field

from videoshop.api.deps import require_admin_api_key
from videoshop.checkout.service import checkout_service
from videoshop.errors import WebhookSignatureError
from videoshop.worker.tasks import task_runner

router = APIRouter(prefix="/api/checkout", tags=["checkout"])


class CartItem(BaseModel):
    product_id: int
    quantity: int = Field(1, ge=1)


class CheckoutRequest(BaseModel):
    items: List[CartItem] = []
    customer: dict[str, Any] = {}
    shipping_address: dict[str, Any] = {}


class OrderItemResponse(BaseModel):
    product_id: Optional[int]
    product_name: str
    quantity: int
    unit_price: float
    total_price: float
    fulfillment_status: str
    tracking_number: Optional[str]
    tracking_url: Optional[str]

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    order_number: str
    status: str
    payment_status: str
    fulfillment_status: str
    subtotal: float
    shipping: float
    tax: float
    total: float
    created_at: datetime
    items: List[OrderItemResponse]

    class Config:
        from_attributes = True


@router.post("/create-session")
async def create_session(body: CheckoutRequest):
    """Open a hosted checkout session and store the pending order."""
    session = await checkout_service.create_session(
        items=[item.model_dump() for item in body.items],
        customer=body.customer,
        shipping_address=body.shipping_address,
    )
    return {"success": True, **session}


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="Stripe-Signature"),
):
    payload = await request.body()
    try:
        event = checkout_service.gateway.verify_webhook(payload, stripe_signature)
    except WebhookSignatureError as e:
        raise HTTPException(status_code=400, detail=f"Webhook error: {e}")
    return await checkout_service.handle_event(event)


@router.get("/orders/{email}", response_model=List[OrderResponse])
async def customer_orders(email: str, limit: int = Query(default=20, ge=1, le=100)):
    return await checkout_service.orders_for_email(email, limit)


@router.post("/fulfillment/retry", dependencies=[Depends(require_admin_api_key)])
async def retry_fulfillment():
    summary = await task_runner.retry_fulfillments()
    return {"success": True, **summary}


@router.get("/fulfillment/stats")
async def fulfillment_stats(days: int = Query(default=7, ge=1, le=90)):
    return {"success": True, **(await checkout_service.fulfillment.fulfillment_stats(days))}
