"""SQLAlchemy database models."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class Product(Base):
    """Storefront catalog product."""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(64), nullable=False, default="other", index=True)
    in_stock: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_promoted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # manual | automated_discovery | api_import
    source: Mapped[str] = mapped_column(String(32), nullable=False, default="manual")
    discovery_post_id: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True, index=True
    )
    discovery_source: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    supplier_platform: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    supplier_product_id: Mapped[Optional[str]] = mapped_column(
        String(128), nullable=True, index=True
    )
    supplier: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    pricing: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    images: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    variants: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    seo: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    analytics: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    inventory: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    automation: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    reviews: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    # active | inactive | pending | out_of_stock | discontinued
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active", index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    ratings: Mapped[list["ProductRating"]] = relationship(
        "ProductRating", back_populates="product", cascade="all, delete-orphan", lazy="selectin"
    )

    @property
    def channel(self) -> Optional[str]:
        """Discussion channel the product was discovered in."""
        return (self.discovery_source or {}).get("channel")

    @property
    def profit(self) -> float:
        return float((self.pricing or {}).get("markup_amount") or 0.0)


class ProductRating(Base):
    """Customer star rating for a product."""

    __tablename__ = "product_ratings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    value: Mapped[int] = mapped_column(Integer, nullable=False)
    review: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    product: Mapped["Product"] = relationship("Product", back_populates="ratings")


class VideoCacheEntry(Base):
    """Cached metadata for one external video, shared by every product it matched."""

    __tablename__ = "video_cache_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    video_id: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    thumbnail_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    channel_title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    channel_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    view_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    like_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    comment_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    duration: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    duration_seconds: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    embed_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    watch_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(64), default="technology", nullable=False)
    relevance_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    api_call_made: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_fetched: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    product_links: Mapped[list["VideoProductLink"]] = relationship(
        "VideoProductLink",
        back_populates="video",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def product_ids(self) -> list[int]:
        return [link.product_id for link in self.product_links if link.product_id is not None]

    @property
    def product_names(self) -> list[str]:
        return [link.product_name for link in self.product_links if link.product_name]


class VideoProductLink(Base):
    """Association of a cached video with a product by id and/or name."""

    __tablename__ = "video_product_links"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    video_entry_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("video_cache_entries.id", ondelete="CASCADE"), nullable=False
    )
    product_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    product_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    linked_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    video: Mapped["VideoCacheEntry"] = relationship(
        "VideoCacheEntry", back_populates="product_links"
    )

    __table_args__ = (
        UniqueConstraint(
            "video_entry_id", "product_id", "product_name", name="uq_video_product_link"
        ),
    )


class Order(Base):
    """Customer order created at checkout."""

    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    payment_session_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, unique=True
    )
    payment_intent_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    customer: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    customer_email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    shipping_address: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    billing_address: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    subtotal: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    shipping: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    tax: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    total: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    total_profit: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    # pending | processing | fulfilled | shipped | delivered | cancelled | refunded
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False, index=True)
    # pending | paid | failed | refunded
    payment_status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    # pending | processing | complete | failed
    fulfillment_status: Mapped[str] = mapped_column(
        String(20), default="pending", nullable=False, index=True
    )

    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    shipped_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    internal_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
        lazy="selectin",
    )
    attempts: Mapped[list["FulfillmentAttempt"]] = relationship(
        "FulfillmentAttempt",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="FulfillmentAttempt.id",
        lazy="selectin",
    )


class OrderItem(Base):
    """One line of an order, fulfilled independently through its supplier."""

    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    product_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    unit_price: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    supplier_price: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    total_price: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    profit: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    supplier_platform: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    supplier_product_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    supplier_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # pending | processing | ordered | shipped | delivered | failed
    fulfillment_status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    supplier_order_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    tracking_number: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    tracking_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    fulfillment_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    order: Mapped["Order"] = relationship("Order", back_populates="items")


class FulfillmentAttempt(Base):
    """Log entry for one supplier dispatch try."""

    __tablename__ = "fulfillment_attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    order_item_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    attempted_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    supplier: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)  # success | failed
    response: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    order: Mapped["Order"] = relationship("Order", back_populates="attempts")


class Subscription(Base):
    """User alert subscription."""

    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    # category | channel | price-drop | new-products
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    target: Mapped[str] = mapped_column(String(128), nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    frequency: Mapped[str] = mapped_column(String(16), default="instant", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    last_alert_sent: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    alert_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    settings: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class PipelineRun(Base):
    """Bookkeeping for one discovery pipeline execution."""

    __tablename__ = "pipeline_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    run_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    trigger: Mapped[str] = mapped_column(String(20), default="manual", nullable=False)
    # pending | running | completed | failed | cancelled
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False, index=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    candidates_found: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    matches_found: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    products_saved: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    videos_added: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    alerts_sent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    report: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
