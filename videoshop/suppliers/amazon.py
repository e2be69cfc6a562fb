"""Marketplace supplier: listing search by page scrape, orders through a purchasing relay."""

import logging
import re
import time
from typing import Any, Optional
from urllib.parse import urljoin

import httpx
from selectolax.parser import HTMLParser

from videoshop import metrics
from videoshop.config import settings
from videoshop.suppliers.base import (
    AuthResult,
    Clock,
    OrderPlacementResult,
    OrderRequest,
    SearchResult,
    StatusLookupResult,
    SupplierClient,
    SupplierListing,
    SupplierState,
    VariantResult,
)

logger = logging.getLogger(__name__)

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}

_PRICE_RE = re.compile(r"[\d,]+(?:\.\d+)?")


def parse_price_text(text: str) -> Optional[float]:
    match = _PRICE_RE.search(text or "")
    if not match:
        return None
    try:
        return float(match.group(0).replace(",", ""))
    except ValueError:
        return None


def parse_search_page(html: str, base_url: str = "https://www.amazon.com") -> list[SupplierListing]:
    """Extract result cards from a marketplace search page."""
    parser = HTMLParser(html)
    items = parser.css('[data-component-type="s-search-result"]') or parser.css("[data-asin]")

    listings = []
    for item in items:
        asin = item.attributes.get("data-asin") or ""
        if not asin:
            continue

        title_elem = item.css_first("h2 a span, h2 span, .a-text-normal")
        title = title_elem.text(strip=True) if title_elem else ""
        if not title:
            continue

        link_elem = item.css_first("h2 a, a.a-link-normal")
        href = link_elem.attributes.get("href") if link_elem else None
        price_elem = item.css_first(".a-price .a-offscreen, .a-price-whole")
        price = parse_price_text(price_elem.text(strip=True)) if price_elem else None
        if price is None:
            continue
        img_elem = item.css_first("img.s-image")

        listings.append(
            SupplierListing(
                supplier=AmazonClient.name,
                product_id=asin,
                title=title[:200],
                price=price,
                image_url=img_elem.attributes.get("src") if img_elem else None,
                url=urljoin(base_url, href) if href else f"{base_url}/dp/{asin}",
                raw={"asin": asin},
            )
        )
    return listings


class AmazonClient(SupplierClient):
    """Marketplace integration. Search needs no credentials; orders need the relay."""

    name = "amazon"
    requires_auth = False

    def __init__(
        self,
        state: Optional[SupplierState] = None,
        base_url: Optional[str] = None,
        relay_url: Optional[str] = None,
        relay_token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Clock = time.time,
    ):
        super().__init__(state or SupplierState(self.name, settings.amazon_cooldown_seconds, clock))
        self.base_url = (base_url or settings.amazon_base_url).rstrip("/")
        self.relay_url = (relay_url if relay_url is not None else settings.amazon_order_relay_url).rstrip("/")
        self.relay_token = relay_token if relay_token is not None else settings.amazon_order_relay_token
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=settings.amazon_timeout_seconds,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def authenticate(self) -> AuthResult:
        return AuthResult(ok=True)

    async def _search(self, keyword: str, token: Optional[str]) -> SearchResult:
        client = await self._get_client()
        try:
            response = await client.get(
                f"{self.base_url}/s", params={"k": keyword}, headers=BROWSER_HEADERS
            )
        except httpx.HTTPError as e:
            metrics.supplier_requests_total.labels(self.name, "search", "error").inc()
            return SearchResult.failure(f"{type(e).__name__}: {e}")

        if response.status_code != 200 or "/errors/validateCaptcha" in str(response.url):
            metrics.supplier_requests_total.labels(self.name, "search", "blocked").inc()
            return SearchResult.failure(f"Marketplace search blocked (HTTP {response.status_code})")

        metrics.supplier_requests_total.labels(self.name, "search", "success").inc()
        return SearchResult.success(parse_search_page(response.text, self.base_url))

    async def get_variants(self, product_id: str) -> VariantResult:
        # Listing cards carry no variant data; the listing itself is the only variant.
        return VariantResult(status="ok", variants=[])

    def _relay_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.relay_token}"} if self.relay_token else {}

    async def create_order(self, request: OrderRequest) -> OrderPlacementResult:
        if not self.relay_url:
            return OrderPlacementResult(
                status="error", error="Amazon fulfillment failed: order relay is not configured"
            )

        body: dict[str, Any] = {
            "reference": request.reference,
            "asin": request.product_id,
            "quantity": request.quantity,
            "ship_to": {
                "name": request.shipping_address.get("name") or request.customer_name,
                "line1": request.shipping_address.get("line1"),
                "line2": request.shipping_address.get("line2"),
                "city": request.shipping_address.get("city"),
                "state": request.shipping_address.get("state"),
                "postal_code": request.shipping_address.get("postal_code"),
                "country": request.shipping_address.get("country"),
                "phone": request.customer_phone,
            },
        }
        client = await self._get_client()
        try:
            response = await client.post(
                f"{self.relay_url}/orders", json=body, headers=self._relay_headers(), timeout=30.0
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            metrics.supplier_requests_total.labels(self.name, "order", "error").inc()
            return OrderPlacementResult(status="error", error=f"Amazon fulfillment failed: {e}")

        order_id = payload.get("order_id") if isinstance(payload, dict) else None
        if not order_id:
            return OrderPlacementResult(
                status="error", response=payload if isinstance(payload, dict) else {},
                error="Amazon relay returned no order id",
            )
        metrics.supplier_requests_total.labels(self.name, "order", "success").inc()
        return OrderPlacementResult(status="ok", supplier_order_id=str(order_id), response=payload)

    async def get_order_status(self, supplier_order_id: str) -> StatusLookupResult:
        if not self.relay_url:
            return StatusLookupResult(status="error", error="Amazon order relay is not configured")

        client = await self._get_client()
        try:
            response = await client.get(
                f"{self.relay_url}/orders/{supplier_order_id}", headers=self._relay_headers()
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            return StatusLookupResult(status="error", error=str(e))

        raw_status = str(payload.get("status") or "")
        tracking = payload.get("tracking_number")
        if raw_status.lower() == "delivered":
            status = "delivered"
        elif tracking:
            status = "shipped"
        else:
            status = "pending"
        return StatusLookupResult(
            status=status, tracking_number=tracking, raw_status=raw_status, response=payload
        )
