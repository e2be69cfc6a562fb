"""Product persistence for the discovery pipeline plus catalog maintenance."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import and_, delete, func, or_, select

from videoshop import metrics
from videoshop.config import settings
from videoshop.db.models import Product, ProductRating, utcnow
from videoshop.db.session import AsyncSessionLocal
from videoshop.errors import NotFoundError, ValidationError
from videoshop.suppliers import SupplierRegistry, supplier_registry
from videoshop.suppliers.matcher import SupplierMatch
from videoshop.suppliers.normalize import price_ladder

logger = logging.getLogger(__name__)

AUTOMATED_SOURCE = "automated_discovery"
ANALYTICS_EVENTS = ("view", "click", "order")


@dataclass
class SavedProduct:
    product: Product
    is_new: bool
    match: SupplierMatch


def _parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    return parsed.replace(tzinfo=None) if parsed.tzinfo else parsed


def product_fields(match: SupplierMatch, now: datetime) -> dict[str, Any]:
    """Column values for a product built from a supplier match."""
    normalized = match.product
    candidate = match.candidate
    category = normalized.category
    if category == "other" and candidate.category:
        category = candidate.category
    return {
        "name": normalized.title,
        "description": normalized.description,
        "price": normalized.pricing.final_price,
        "image_url": normalized.main_image,
        "category": category,
        "in_stock": normalized.in_stock,
        "source": AUTOMATED_SOURCE,
        "discovery_post_id": candidate.post.post_id,
        "discovery_source": candidate.discovery_metadata(),
        "supplier_platform": match.platform,
        "supplier_product_id": match.supplier_product_id,
        "supplier": match.supplier_metadata(),
        "pricing": {**normalized.pricing.as_dict(), "last_price_update": now.isoformat()},
        "seo": {**normalized.seo, "keywords": list(normalized.tags)},
        "status": "active" if normalized.in_stock else "out_of_stock",
    }


class ProductCatalog:
    """Create-or-update persistence keyed on the discovery post id."""

    def __init__(self, session_factory=None, registry: Optional[SupplierRegistry] = None):
        self.session_factory = session_factory or AsyncSessionLocal
        self.registry = registry or supplier_registry

    async def save_matches(self, matches: list[SupplierMatch]) -> list[SavedProduct]:
        """
        Persist matches as products.

        An existing product with the same discovery post id (or, failing that,
        the same supplier product) is updated in place: supplier and pricing
        data are replaced, image and variant lists are merged. A match that
        fails to save is logged and skipped.
        """
        saved: list[SavedProduct] = []
        for match in matches:
            try:
                saved.append(await self._save_one(match))
            except Exception as e:
                logger.error(f"Error saving product for {match.candidate.product_name!r}: {e}")
        created = sum(1 for s in saved if s.is_new)
        logger.info(f"Saved {len(saved)} products ({created} new, {len(saved) - created} updated)")
        return saved

    async def _save_one(self, match: SupplierMatch) -> SavedProduct:
        now = utcnow()
        fields = product_fields(match, now)
        async with self.session_factory() as db:
            result = await db.execute(
                select(Product)
                .where(
                    or_(
                        Product.discovery_post_id == fields["discovery_post_id"],
                        and_(
                            Product.supplier_platform == match.platform,
                            Product.supplier_product_id == match.supplier_product_id,
                        ),
                    )
                )
                .order_by(Product.id)
                .limit(1)
            )
            product = result.scalar_one_or_none()

            if product is None:
                product = Product(
                    **fields,
                    images=list(match.product.images),
                    variants=list(match.product.variants),
                    analytics={
                        "views": 0,
                        "clicks": 0,
                        "orders": 0,
                        "revenue": 0.0,
                        "conversion_rate": 0.0,
                        "trending_score": round(match.candidate.engagement_score, 2),
                    },
                    inventory={
                        "sku": match.product.sku,
                        "stock_quantity": 100 if match.product.in_stock else 0,
                        "track_inventory": False,
                    },
                    automation={
                        "is_automated": True,
                        "last_sync_at": now.isoformat(),
                        "sync_errors": [],
                        "needs_review": False,
                        "auto_update_price": True,
                    },
                )
                db.add(product)
                is_new = True
            else:
                for key, value in fields.items():
                    setattr(product, key, value)
                product.images = list(dict.fromkeys([*match.product.images, *(product.images or [])]))
                known = {v.get("id") for v in match.product.variants}
                product.variants = [*match.product.variants, *(v for v in (product.variants or []) if v.get("id") not in known)]
                product.analytics = {
                    **(product.analytics or {}),
                    "trending_score": round(match.candidate.engagement_score, 2),
                }
                product.automation = {
                    **(product.automation or {}),
                    "last_sync_at": now.isoformat(),
                }
                is_new = False

            await db.commit()
            await db.refresh(product)

        metrics.products_saved_total.labels(action="created" if is_new else "updated").inc()
        return SavedProduct(product=product, is_new=is_new, match=match)

    async def attach_reviews(self, product_id: int, reviews: dict[str, Any]):
        async with self.session_factory() as db:
            product = await db.get(Product, product_id)
            if product is None:
                return
            product.reviews = reviews
            await db.commit()

    async def _automated_products(self, db) -> list[Product]:
        result = await db.execute(
            select(Product).where(Product.source == AUTOMATED_SOURCE).order_by(Product.updated_at.desc())
        )
        return list(result.scalars().all())

    async def update_prices(self, max_age_days: Optional[int] = None) -> dict[str, int]:
        """
        Refresh pricing of automated products whose price is older than ``max_age_days``.

        Variant lookups are used (they do not consume the search cooldown).
        A failed lookup records the error and flags the product for review.
        """
        max_age_days = max_age_days or settings.price_sync_max_age_days
        cutoff = utcnow() - timedelta(days=max_age_days)
        summary = {"total": 0, "updated": 0, "flagged": 0}

        async with self.session_factory() as db:
            stale = []
            for product in await self._automated_products(db):
                automation = product.automation or {}
                if not automation.get("auto_update_price", True):
                    continue
                last = _parse_iso((product.pricing or {}).get("last_price_update"))
                if last is None or last < cutoff:
                    stale.append(product)
            stale = stale[: settings.price_sync_batch_size]
            summary["total"] = len(stale)

            for product in stale:
                now = utcnow()
                automation = dict(product.automation or {})
                try:
                    client = self.registry.get(product.supplier_platform or "")
                    result = await client.get_variants(product.supplier_product_id or "")
                except Exception as e:
                    result = None
                    error = str(e)
                else:
                    error = None if result.ok else result.error

                if error:
                    automation["sync_errors"] = [*automation.get("sync_errors", []), error][-5:]
                    automation["needs_review"] = True
                    summary["flagged"] += 1
                    logger.warning(f"Price sync failed for {product.name}: {error}")
                else:
                    prices = [v.price for v in result.variants if v.price]
                    if prices:
                        markup = (product.pricing or {}).get("markup_percentage")
                        ladder = price_ladder(min(prices), markup)
                        product.price = ladder.final_price
                        product.pricing = {**ladder.as_dict(), "last_price_update": now.isoformat()}
                    else:
                        product.pricing = {**(product.pricing or {}), "last_price_update": now.isoformat()}
                    automation["sync_errors"] = []
                    summary["updated"] += 1
                automation["last_sync_at"] = now.isoformat()
                product.automation = automation
            await db.commit()

        logger.info(
            f"Price sync: {summary['updated']}/{summary['total']} updated, {summary['flagged']} flagged"
        )
        return summary

    async def purge_automated(self) -> int:
        """Delete every product created by the discovery pipeline."""
        async with self.session_factory() as db:
            result = await db.execute(delete(Product).where(Product.source == AUTOMATED_SOURCE))
            await db.commit()
        logger.warning(f"Purged {result.rowcount} automated products")
        return result.rowcount or 0

    async def needing_review(self) -> list[Product]:
        async with self.session_factory() as db:
            return [
                p for p in await self._automated_products(db)
                if (p.automation or {}).get("needs_review")
            ]

    async def flag_for_review(self, product_id: int, reason: str):
        async with self.session_factory() as db:
            product = await db.get(Product, product_id)
            if product is None:
                raise NotFoundError(f"Product {product_id} not found")
            automation = dict(product.automation or {})
            automation["needs_review"] = True
            automation["sync_errors"] = [*automation.get("sync_errors", []), reason]
            product.automation = automation
            await db.commit()

    async def performance_report(self) -> dict[str, Any]:
        """Revenue, orders and views of automated products, overall and per group."""
        async with self.session_factory() as db:
            products = [
                p for p in await self._automated_products(db)
                if (p.automation or {}).get("is_automated")
            ]
        products.sort(key=lambda p: (p.analytics or {}).get("revenue", 0), reverse=True)

        def analytics(p: Product, key: str) -> float:
            return (p.analytics or {}).get(key, 0) or 0

        total_revenue = sum(analytics(p, "revenue") for p in products)
        total_orders = int(sum(analytics(p, "orders") for p in products))
        total_views = int(sum(analytics(p, "views") for p in products))

        def grouped(key_func) -> list[dict[str, Any]]:
            groups: dict[str, dict[str, Any]] = {}
            for p in products:
                key = key_func(p) or "unknown"
                group = groups.setdefault(key, {"name": key, "products": 0, "revenue": 0.0, "orders": 0, "views": 0})
                group["products"] += 1
                group["revenue"] = round(group["revenue"] + analytics(p, "revenue"), 2)
                group["orders"] += int(analytics(p, "orders"))
                group["views"] += int(analytics(p, "views"))
            return sorted(groups.values(), key=lambda g: g["revenue"], reverse=True)

        return {
            "summary": {
                "total_products": len(products),
                "total_revenue": round(total_revenue, 2),
                "total_orders": total_orders,
                "total_views": total_views,
                "average_order_value": round(total_revenue / total_orders, 2) if total_orders else 0.0,
                "conversion_rate": round(100.0 * total_orders / total_views, 2) if total_views else 0.0,
            },
            "top_performers": [
                {
                    "id": p.id,
                    "name": p.name,
                    "revenue": analytics(p, "revenue"),
                    "orders": analytics(p, "orders"),
                    "views": analytics(p, "views"),
                    "conversion_rate": analytics(p, "conversion_rate"),
                    "channel": p.channel,
                    "supplier": p.supplier_platform,
                }
                for p in products[:10]
            ],
            "category_performance": grouped(lambda p: p.category),
            "channel_performance": grouped(lambda p: p.channel),
        }

    async def rate_product(self, product_id: int, value: Any, review: Optional[str] = None) -> dict[str, Any]:
        """
        Record a 1-5 star rating.

        Raises:
            ValidationError: value is not an integer from 1 to 5
            NotFoundError: unknown product
        """
        if isinstance(value, str) and value.strip().isdigit():
            value = int(value.strip())
        if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 5:
            raise ValidationError("Rating must be an integer between 1 and 5")

        async with self.session_factory() as db:
            product = await db.get(Product, product_id)
            if product is None:
                raise NotFoundError(f"Product {product_id} not found")
            db.add(ProductRating(product_id=product_id, value=value, review=review))
            await db.commit()
            result = await db.execute(
                select(func.avg(ProductRating.value), func.count(ProductRating.id)).where(
                    ProductRating.product_id == product_id
                )
            )
            average, count = result.one()
        return {
            "product_id": product_id,
            "average_rating": round(float(average or 0.0), 2),
            "rating_count": count,
        }

    async def record_event(self, product_id: int, event: str) -> dict[str, Any]:
        """Count a storefront view, click or order against the product's analytics."""
        if event not in ANALYTICS_EVENTS:
            raise ValidationError(f"event must be one of {', '.join(ANALYTICS_EVENTS)}")
        async with self.session_factory() as db:
            product = await db.get(Product, product_id)
            if product is None:
                raise NotFoundError(f"Product {product_id} not found")
            stats = {"views": 0, "clicks": 0, "orders": 0, "revenue": 0.0, **(product.analytics or {})}
            if event == "view":
                stats["views"] += 1
            elif event == "click":
                stats["clicks"] += 1
            else:
                stats["orders"] += 1
                stats["revenue"] = round(stats["revenue"] + product.price, 2)
            stats["conversion_rate"] = (
                round(100.0 * stats["orders"] / stats["views"], 2) if stats["views"] else 0.0
            )
            stats["last_analytics_update"] = utcnow().isoformat()
            product.analytics = stats
            await db.commit()
        return stats
