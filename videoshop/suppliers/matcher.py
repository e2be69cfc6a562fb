"""Match scored candidates to supplier catalog entries under cooldown and dedupe rules."""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy import select

from videoshop.config import settings
from videoshop.db.models import Product
from videoshop.discovery.base import Candidate
from videoshop.suppliers import SupplierRegistry, supplier_registry
from videoshop.suppliers.base import SupplierClient, SupplierListing
from videoshop.suppliers.normalize import (
    DEFAULT_SELLER,
    DEFAULT_SHIPPING,
    NormalizedProduct,
    normalize_listing,
    search_terms,
)

logger = logging.getLogger(__name__)

# (platform, supplier product id) -> already stored?
ProductLookup = Callable[[str, str], Awaitable[bool]]


@dataclass
class MatchContext:
    """
    Request-scoped dedupe state for one matcher run.

    ``seen_ids`` holds every supplier product id examined during the run,
    whether it was selected or skipped, so later searches never re-examine it.
    """

    seen_ids: set[str] = field(default_factory=set)
    searches: int = 0
    rate_limited: int = 0
    duplicates_skipped: int = 0
    errors: list[str] = field(default_factory=list)

    @staticmethod
    def key(platform: str, product_id: str) -> str:
        return f"{platform}:{product_id}"


@dataclass
class SupplierMatch:
    """A candidate reconciled with a live supplier listing."""

    candidate: Candidate
    platform: str
    listing: SupplierListing
    product: NormalizedProduct

    @property
    def supplier_product_id(self) -> str:
        return self.listing.product_id

    @property
    def profit(self) -> float:
        return self.product.pricing.markup_amount

    def supplier_metadata(self) -> dict[str, Any]:
        """Supplier bag stored on the Product record."""
        return {
            "platform": self.platform,
            "product_id": self.listing.product_id,
            "url": self.listing.url,
            "price": self.listing.price,
            "title": self.listing.title,
            "seller": dict(DEFAULT_SELLER),
            "shipping": dict(DEFAULT_SHIPPING),
            "sold_count": self.listing.sold_count,
            "in_stock": self.listing.in_stock,
            "specifications": {
                **self.product.specifications,
                "real_product": True,
                "real_images": bool(self.product.images),
                "variants_available": bool(self.product.variants),
            },
        }


def storage_lookup(session_factory) -> ProductLookup:
    """Build a lookup that checks the products table for a supplier id."""

    async def lookup(platform: str, product_id: str) -> bool:
        async with session_factory() as db:
            result = await db.execute(
                select(Product.id)
                .where(
                    Product.supplier_platform == platform,
                    Product.supplier_product_id == product_id,
                )
                .limit(1)
            )
            return result.scalar_one_or_none() is not None

    return lookup


class SupplierMatcher:
    """Runs candidates through the enabled supplier integrations, first fit wins."""

    def __init__(
        self,
        lookup: ProductLookup,
        registry: Optional[SupplierRegistry] = None,
        supplier_names: Optional[list[str]] = None,
        markup_percentage: Optional[float] = None,
    ):
        self.lookup = lookup
        self.registry = registry or supplier_registry
        self.supplier_names = list(supplier_names or settings.enabled_suppliers)
        self.markup_percentage = markup_percentage

    @property
    def suppliers(self) -> list[SupplierClient]:
        return self.registry.enabled(self.supplier_names)

    async def match_candidates(
        self,
        candidates: list[Candidate],
        max_to_process: int,
        context: Optional[MatchContext] = None,
    ) -> list[SupplierMatch]:
        """
        Match the top candidates against supplier catalogs.

        Args:
            candidates: Candidates in ranking order
            max_to_process: How many of the leading candidates to try
            context: Dedupe state for the run (a fresh one when omitted)

        Returns:
            At most one match per candidate
        """
        context = context if context is not None else MatchContext()
        matches: list[SupplierMatch] = []

        for candidate in candidates[:max_to_process]:
            for supplier in self.suppliers:
                match = await self.match_candidate(candidate, supplier, context)
                if match is not None:
                    matches.append(match)
                    break

        logger.info(
            f"Supplier matching: {len(matches)} matches from "
            f"{min(len(candidates), max_to_process)} candidates "
            f"({context.rate_limited} cooldown skips, {context.duplicates_skipped} duplicates)"
        )
        return matches

    async def match_candidate(
        self,
        candidate: Candidate,
        supplier: SupplierClient,
        context: MatchContext,
    ) -> Optional[SupplierMatch]:
        query = search_terms(candidate.product_name or candidate.post.title)
        result = await supplier.search(query)

        if result.status == "rate_limited":
            context.rate_limited += 1
            logger.info(
                f"{supplier.name}: skipping {candidate.product_name!r}, "
                f"next search allowed in {result.wait_seconds:.0f}s"
            )
            return None
        context.searches += 1
        if not result.ok:
            context.errors.append(f"{supplier.name}: {result.error}")
            return None

        selected = await self._first_new_listing(supplier.name, result.listings, context)
        if selected is None:
            logger.info(f"{supplier.name}: no new listings for {query!r}")
            return None

        variants = await supplier.get_variants(selected.product_id)
        if not variants.ok:
            context.errors.append(f"{supplier.name} detail {selected.product_id}: {variants.error}")
            logger.warning(
                f"{supplier.name}: detail lookup failed for {selected.product_id}: {variants.error}"
            )
            return None

        product = normalize_listing(selected, variants.variants, self.markup_percentage)
        logger.info(
            f"{supplier.name}: matched {candidate.product_name!r} -> {selected.title!r} "
            f"(${product.pricing.supplier_price:.2f}, {len(product.images)} images)"
        )
        return SupplierMatch(
            candidate=candidate, platform=supplier.name, listing=selected, product=product
        )

    async def _first_new_listing(
        self,
        platform: str,
        listings: list[SupplierListing],
        context: MatchContext,
    ) -> Optional[SupplierListing]:
        for listing in listings:
            key = MatchContext.key(platform, listing.product_id)
            if key in context.seen_ids:
                context.duplicates_skipped += 1
                continue
            context.seen_ids.add(key)

            if await self.lookup(platform, listing.product_id):
                context.duplicates_skipped += 1
                logger.debug(f"{platform}: {listing.product_id} already stored")
                continue
            return listing
        return None

    def health(self) -> dict[str, Any]:
        suppliers = {client.name: client.health() for client in self.suppliers}
        ready = [name for name, info in suppliers.items() if info["can_search"]]
        return {
            "suppliers": suppliers,
            "ready_count": len(ready),
            "healthy": bool(ready),
        }
