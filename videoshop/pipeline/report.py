"""Run report helpers. Pure functions over saved products."""

from typing import Any, Iterable

from videoshop.db.models import Product

HIGH_PROFIT_THRESHOLD = 15.0
TRENDING_THRESHOLD = 1000.0
TOP_CATEGORY_THRESHOLD = 20.0


def _supplier_price(product: Product) -> float:
    return float((product.pricing or {}).get("supplier_price") or 0.0)


def _trending_score(product: Product) -> float:
    return float((product.analytics or {}).get("trending_score") or 0.0)


def profit_analysis(products: list[Product]) -> dict[str, Any]:
    total_revenue = sum(p.price or 0.0 for p in products)
    total_cost = sum(_supplier_price(p) for p in products)
    total_profit = total_revenue - total_cost
    return {
        "total_products": len(products),
        "total_revenue": round(total_revenue, 2),
        "total_supplier_cost": round(total_cost, 2),
        "total_profit": round(total_profit, 2),
        "average_profit": round(total_profit / len(products), 2) if products else 0.0,
        "profit_margin": round(100.0 * total_profit / total_revenue, 1) if total_revenue > 0 else 0.0,
    }


def top_products(products: list[Product], limit: int = 5) -> list[dict[str, Any]]:
    ranked = sorted(products, key=lambda p: p.profit, reverse=True)[:limit]
    return [
        {
            "id": p.id,
            "name": p.name,
            "price": round(p.price, 2),
            "supplier_price": round(_supplier_price(p), 2),
            "profit": round(p.profit, 2),
            "trending_score": _trending_score(p),
            "channel": p.channel or "unknown",
            "supplier": p.supplier_platform,
            "supplier_product_id": p.supplier_product_id,
        }
        for p in ranked
    ]


def category_breakdown(products: Iterable[Product]) -> dict[str, dict[str, Any]]:
    categories: dict[str, dict[str, Any]] = {}
    for p in products:
        entry = categories.setdefault(p.category or "other", {"count": 0, "total_profit": 0.0})
        entry["count"] += 1
        entry["total_profit"] += p.profit
    for entry in categories.values():
        entry["average_profit"] = round(entry["total_profit"] / entry["count"], 2)
        entry["total_profit"] = round(entry["total_profit"], 2)
    return categories


def channel_breakdown(products: Iterable[Product]) -> dict[str, dict[str, Any]]:
    channels: dict[str, dict[str, Any]] = {}
    for p in products:
        entry = channels.setdefault(p.channel or "unknown", {"count": 0, "total_engagement": 0.0})
        entry["count"] += 1
        entry["total_engagement"] += _trending_score(p)
    for entry in channels.values():
        entry["average_engagement"] = round(entry["total_engagement"] / entry["count"])
        entry["total_engagement"] = round(entry["total_engagement"], 2)
    return channels


def recommendations(products: list[Product]) -> list[dict[str, Any]]:
    """Qualitative suggestions: high-profit items, hot items and the best category."""
    found = []

    high_profit = [p for p in products if p.profit > HIGH_PROFIT_THRESHOLD]
    if high_profit:
        found.append(
            {
                "type": "high-profit",
                "priority": "high",
                "message": (
                    f"{len(high_profit)} products have high profit margins "
                    f"(>${HIGH_PROFIT_THRESHOLD:.0f}). Focus marketing on these."
                ),
                "products": [p.name for p in high_profit[:3]],
            }
        )

    trending = [p for p in products if _trending_score(p) > TRENDING_THRESHOLD]
    if trending:
        found.append(
            {
                "type": "trending",
                "priority": "high",
                "message": f"{len(trending)} products are highly trending. Fast-track these to market.",
                "products": [p.name for p in trending[:3]],
            }
        )

    categories = category_breakdown(products)
    if categories:
        name, top = max(categories.items(), key=lambda item: item[1]["total_profit"])
        if top["total_profit"] > TOP_CATEGORY_THRESHOLD:
            found.append(
                {
                    "type": "category",
                    "priority": "medium",
                    "message": (
                        f"{name} is your most profitable category with "
                        f"${top['total_profit']:.2f} total profit potential."
                    ),
                }
            )
    return found
