"""Turn a raw supplier listing into the canonical storefront product payload."""

import re
from dataclasses import dataclass, field
from typing import Any, Optional

from videoshop.config import settings
from videoshop.suppliers.base import SupplierListing, SupplierVariant

# Markers of thumbnails, spec sheets, screenshots and text-heavy images.
IMAGE_BLACKLIST = (
    "w=100",
    "h=100",
    "thumbnail",
    "screenshot",
    "spec",
    "detail",
    "trans.jpeg",
    "_trans",
    "info.jpg",
    "size.jpg",
    "chart",
    "guide",
    "instruction",
    "manual",
    "description.jpg",
    "webpage",
    "browser",
    "%E",
    "%C",
    "%D",
    "zh-",
    "cn-",
    "chinese",
    "text.jpg",
    "info.png",
    "desc.jpg",
    "param",
    "attribute",
    "property",
    "offerlists",
    "spm",
    "cosite",
)

EMBEDDED_IMAGE_RE = re.compile(r"https?://[^\s\"'<>]+\.(?:jpg|jpeg|png|gif|webp)", re.IGNORECASE)

# Checked in order; the first keyword family that matches wins.
CATEGORY_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    (
        "fashion",
        ("cloth", "wear", "fashion", "shirt", "blouse", "dress", "top", "bottom", "sleeve",
         "apparel", "garment", "outfit"),
    ),
    ("tech", ("tech", "phone", "electronic", "gadget", "device", "computer")),
    ("home", ("water", "drink", "kitchen", "office", "storage", "home", "furniture", "decor")),
    ("health", ("beauty", "care", "health", "cosmetic", "wellness", "skincare")),
    ("fashion", ("watch", "jewelry")),
    ("sports", ("sport", "fitness", "outdoor")),
    ("automotive", ("automotive", "car ", "vehicle")),
    ("books", ("book", "media")),
    ("food", ("food", "beverage")),
    ("pets", ("pet",)),
)

STOP_WORDS = frozenset(
    (
        "the", "is", "at", "which", "on", "this", "that", "with", "for", "as", "are", "was",
        "will", "be", "best", "good", "great", "how", "what", "why", "when", "where", "just",
        "got", "and", "my", "you", "your",
    )
)

SKU_PREFIXES = {"cjdropshipping": "CJ", "amazon": "AMZ"}

DEFAULT_SELLER = {"name": "Global Supplier", "rating": 4.5, "years": 5}
DEFAULT_SHIPPING = {"free_shipping": True, "estimated_days": "7-15", "global": True}


@dataclass
class PriceLadder:
    supplier_price: float
    markup_percentage: float
    markup_amount: float
    final_price: float
    compare_at_price: float

    def as_dict(self) -> dict[str, float]:
        return {
            "supplier_price": self.supplier_price,
            "markup_percentage": self.markup_percentage,
            "markup_amount": self.markup_amount,
            "final_price": self.final_price,
            "compare_at_price": self.compare_at_price,
        }


@dataclass
class NormalizedProduct:
    """Canonical product payload produced from a supplier listing."""

    title: str
    description: str
    category: str
    pricing: PriceLadder
    images: list[str]
    variants: list[dict[str, Any]]
    specifications: dict[str, Any]
    tags: list[str]
    sku: str
    in_stock: bool
    seo: dict[str, Any] = field(default_factory=dict)

    @property
    def main_image(self) -> Optional[str]:
        return self.images[0] if self.images else None


def price_ladder(
    supplier_price: float,
    markup_percentage: Optional[float] = None,
    compare_at_multiplier: Optional[float] = None,
) -> PriceLadder:
    """
    Compute storefront pricing from the supplier cost.

    ``markup_amount = supplier_price * markup/100``, ``final = supplier + markup``
    and ``compare_at = supplier_price * multiplier``.
    """
    markup = settings.default_markup_percentage if markup_percentage is None else markup_percentage
    multiplier = (
        settings.compare_at_multiplier if compare_at_multiplier is None else compare_at_multiplier
    )
    markup_amount = round(supplier_price * markup / 100.0, 2)
    return PriceLadder(
        supplier_price=round(supplier_price, 2),
        markup_percentage=markup,
        markup_amount=markup_amount,
        final_price=round(supplier_price + markup_amount, 2),
        compare_at_price=round(supplier_price * multiplier, 2),
    )


def is_quality_image(url: str, max_percent_signs: Optional[int] = None) -> bool:
    limit = settings.max_image_percent_signs if max_percent_signs is None else max_percent_signs
    if not url or not url.startswith("http"):
        return False
    if url.count("%") > limit:
        return False
    return not any(marker in url for marker in IMAGE_BLACKLIST)


def collect_images(listing: SupplierListing, variants: list[SupplierVariant]) -> list[str]:
    """Primary image, then distinct variant images, then images embedded in free text."""
    images: list[str] = []

    def add(url: Optional[str]):
        if url and url not in images:
            images.append(url)

    add(listing.image_url)
    for variant in variants:
        add(variant.image)
    for url in EMBEDDED_IMAGE_RE.findall(listing.description or ""):
        add(url)

    return [url for url in images if is_quality_image(url)]


def map_category(category: Optional[str]) -> str:
    if not category:
        return "other"
    lowered = category.lower()
    for mapped, keywords in CATEGORY_RULES:
        if any(keyword in lowered for keyword in keywords):
            return mapped
    return "other"


def normalize_variants(
    variants: list[SupplierVariant],
    fallback_price: float,
    markup_percentage: Optional[float] = None,
) -> list[dict[str, Any]]:
    """Storefront variants, each priced with the same markup as the parent listing."""
    return [
        {
            "id": variant.id,
            "name": variant.name,
            "sku": variant.sku,
            "price": (
                price_ladder(variant.price, markup_percentage).final_price
                if variant.price is not None
                else fallback_price
            ),
            "image": variant.image,
            "attributes": dict(variant.attributes),
            "stock": variant.stock if variant.stock is not None else 999,
        }
        for variant in variants
    ]


def extract_specifications(listing: SupplierListing, variants: list[SupplierVariant]) -> dict[str, Any]:
    specs: dict[str, Any] = {}
    if listing.weight:
        specs["Weight"] = f"{listing.weight:g}g"
    if listing.category:
        specs["Category"] = listing.category
    if listing.product_type:
        specs["Type"] = listing.product_type
    if variants and variants[0].attributes.get("standard"):
        specs["Dimensions"] = variants[0].attributes["standard"]
    return specs


def rich_description(title: str, variants: list[SupplierVariant], specs: dict[str, Any]) -> str:
    parts = [title or "Premium Quality Product"]

    names = [v.attributes.get("key") or v.name for v in variants if v.attributes.get("key") or v.name]
    if names:
        line = f"Available variants: {', '.join(names[:3])}"
        if len(names) > 3:
            line += f" and {len(names) - 3} more options"
        parts.append(line)

    if specs:
        parts.append("Specifications:\n" + "\n".join(f"- {k}: {v}" for k, v in specs.items()))

    parts.append("Fast global shipping worldwide\nQuality guaranteed\nMultiple payment options")
    return "\n\n".join(parts)


def generate_tags(title: str) -> list[str]:
    return [word for word in (title or "").lower().split() if len(word) > 3][:5]


def search_terms(text: str, max_terms: int = 2) -> str:
    """First meaningful words of a post title, used as the catalog query."""
    words = re.sub(r"[^\w\s]", " ", (text or "").lower()).split()
    kept = [w for w in words if len(w) > 2 and w not in STOP_WORDS][:max_terms]
    return " ".join(kept) if kept else "trending product"


def normalize_listing(
    listing: SupplierListing,
    variants: list[SupplierVariant],
    markup_percentage: Optional[float] = None,
) -> NormalizedProduct:
    """Build the canonical payload for a selected supplier listing."""
    specs = extract_specifications(listing, variants)
    pricing = price_ladder(listing.price, markup_percentage)
    title = listing.title or "Trending Product"
    return NormalizedProduct(
        title=title,
        description=rich_description(title, variants, specs),
        category=map_category(listing.category),
        pricing=pricing,
        images=collect_images(listing, variants),
        variants=normalize_variants(variants, pricing.final_price, markup_percentage),
        specifications=specs,
        tags=generate_tags(title),
        sku=f"{SKU_PREFIXES.get(listing.supplier, listing.supplier.upper())}-{listing.product_id}",
        in_stock=listing.in_stock,
        seo={
            "title": f"{title} - Fast Global Shipping",
            "description": f"{title} with fast global shipping worldwide.",
            "tags": generate_tags(title),
        },
    )
