"""Storefront product routes."""

from datetime import datetime
from typing import Any, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from videoshop.db.models import Product
from videoshop.db.session import get_db
from videoshop.pipeline.catalog import ProductCatalog

router = APIRouter(prefix="/api/products", tags=["products"])

catalog = ProductCatalog()


class ProductResponse(BaseModel):
    id: int
    name: str
    description: Optional[str]
    price: float
    image_url: Optional[str]
    category: str
    in_stock: bool
    source: str
    supplier_platform: Optional[str]
    supplier_product_id: Optional[str]
    pricing: Optional[dict[str, Any]]
    images: list[Any]
    variants: list[Any]
    analytics: dict[str, Any]
    automation: dict[str, Any]
    reviews: Optional[dict[str, Any]]
    status: str
    created_at: datetime

    class Config:
        from_attributes = True


class RatingRequest(BaseModel):
    # Validated by the catalog so bad values surface as a 400, not a 422
    rating: Any = None
    review: Optional[str] = Field(default=None, max_length=2000)


class EventRequest(BaseModel):
    event: Literal["view", "click", "order"]


@router.get("", response_model=List[ProductResponse])
async def list_products(
    category: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    """List active products, newest first."""
    query = select(Product).where(Product.status == "active")
    if category:
        query = query.where(Product.category == category)
    result = await db.execute(
        query.order_by(Product.created_at.desc(), Product.id.desc()).limit(limit).offset(offset)
    )
    return result.scalars().all()


@router.get("/{product_id}", response_model=ProductResponse)
async def get_product(product_id: int, db: AsyncSession = Depends(get_db)):
    product = await db.get(Product, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@router.post("/{product_id}/rating")
async def rate_product(product_id: int, body: RatingRequest):
    """Add a 1-5 rating. Anything else is rejected with 400."""
    summary = await catalog.rate_product(product_id, body.rating, body.review)
    return {"success": True, **summary}


@router.post("/{product_id}/events")
async def record_event(product_id: int, body: EventRequest):
    analytics = await catalog.record_event(product_id, body.event)
    return {"success": True, "analytics": analytics}
