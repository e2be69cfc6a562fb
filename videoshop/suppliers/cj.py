"""CJ Dropshipping REST integration."""

import logging
import re
import time
from datetime import datetime
from typing import Any, Optional

import httpx

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
    SupplierVariant,
    VariantResult,
)
from videoshop.errors import SupplierAuthError

logger = logging.getLogger(__name__)

TOKEN_HEADER = "CJ-Access-Token"
DEFAULT_TOKEN_LIFETIME = 24 * 60 * 60
_NUMBER_RE = re.compile(r"\d+(?:\.\d+)?")


def parse_price(value: Any) -> float:
    """CJ prices arrive as numbers, numeric strings or ranges like ``"7.09 -- 8.82"``."""
    if value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    match = _NUMBER_RE.search(str(value))
    return float(match.group(0)) if match else 0.0


def parse_expiry(value: Any, now: float) -> float:
    if isinstance(value, (int, float)):
        # Millisecond epoch
        return float(value) / 1000.0 if value > 1e11 else float(value)
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
        except ValueError:
            logger.debug(f"Unparseable CJ token expiry {value!r}")
    return now + DEFAULT_TOKEN_LIFETIME


def parse_listing(item: dict[str, Any]) -> Optional[SupplierListing]:
    pid = item.get("pid")
    if not pid:
        return None
    return SupplierListing(
        supplier=CJDropshippingClient.name,
        product_id=str(pid),
        title=str(item.get("productNameEn") or ""),
        price=parse_price(item.get("sellPrice")),
        image_url=item.get("productImage"),
        category=item.get("categoryName"),
        url=item.get("productUrl"),
        description=item.get("remark") or item.get("description"),
        sold_count=int(item.get("sellCount") or 0),
        in_stock=str(item.get("productStatus", 1)) in ("1", "True", "true"),
        weight=parse_price(item.get("productWeight")) or None,
        product_type=item.get("productType"),
        raw=item,
    )


def parse_variant(item: dict[str, Any]) -> Optional[SupplierVariant]:
    vid = item.get("vid")
    if not vid:
        return None
    attributes = {
        key: item[src]
        for key, src in (
            ("key", "variantKey"),
            ("weight", "variantWeight"),
            ("standard", "variantStandard"),
            ("volume", "variantVolume"),
        )
        if item.get(src) not in (None, "")
    }
    stock = item.get("inventoryNum")
    return SupplierVariant(
        id=str(vid),
        name=str(item.get("variantNameEn") or item.get("variantKey") or "Standard"),
        sku=item.get("variantSku"),
        price=parse_price(item.get("variantSellPrice")) or None,
        image=item.get("variantImage"),
        attributes=attributes,
        stock=int(stock) if stock not in (None, "") else None,
    )


class CJDropshippingClient(SupplierClient):
    """Token-authenticated client for the CJ Dropshipping v1 API."""

    name = "cjdropshipping"

    def __init__(
        self,
        state: Optional[SupplierState] = None,
        email: Optional[str] = None,
        password: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Clock = time.time,
    ):
        super().__init__(state or SupplierState(self.name, settings.cj_cooldown_seconds, clock))
        self.email = email if email is not None else settings.cj_email
        self.password = password if password is not None else settings.cj_password
        self.base_url = (base_url or settings.cj_base_url).rstrip("/")
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=settings.cj_timeout_seconds,
                headers={"Content-Type": "application/json"},
                transport=self._transport,
            )
        return self._client

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        token: Optional[str] = None,
        **kwargs,
    ) -> dict[str, Any]:
        """Issue one API call and return the envelope when ``result`` is truthy."""
        client = await self._get_client()
        headers = {TOKEN_HEADER: token} if token else {}
        start = time.perf_counter()
        try:
            response = await client.request(method, path, headers=headers, **kwargs)
            payload = response.json()
        except httpx.HTTPError as e:
            metrics.supplier_requests_total.labels(self.name, operation, "error").inc()
            raise RuntimeError(f"{type(e).__name__}: {e}") from e
        except ValueError as e:
            metrics.supplier_requests_total.labels(self.name, operation, "error").inc()
            raise RuntimeError(f"Invalid JSON from CJ {operation}") from e
        finally:
            metrics.supplier_request_duration_seconds.labels(self.name, operation).observe(
                time.perf_counter() - start
            )

        if response.status_code == 401:
            self.state.invalidate_token()
        if not isinstance(payload, dict) or not payload.get("result"):
            message = payload.get("message") if isinstance(payload, dict) else None
            metrics.supplier_requests_total.labels(self.name, operation, "error").inc()
            raise RuntimeError(message or f"CJ {operation} returned HTTP {response.status_code}")

        metrics.supplier_requests_total.labels(self.name, operation, "success").inc()
        return payload

    async def authenticate(self) -> AuthResult:
        if not self.email or not self.password:
            return AuthResult(ok=False, error="CJ credentials are not configured")
        try:
            payload = await self._request(
                "POST",
                "/authentication/getAccessToken",
                "auth",
                json={"email": self.email, "password": self.password},
                timeout=10.0,
            )
        except RuntimeError as e:
            return AuthResult(ok=False, error=f"CJ authentication failed: {e}")

        data = payload.get("data") or {}
        token = data.get("accessToken")
        if not token:
            return AuthResult(ok=False, error="CJ authentication returned no token")
        return AuthResult(
            ok=True,
            token=token,
            expires_at=parse_expiry(data.get("accessTokenExpiryDate"), self.state.clock()),
        )

    async def _search(self, keyword: str, token: Optional[str]) -> SearchResult:
        logger.info(f"CJ catalog search: {keyword!r}")
        try:
            payload = await self._request(
                "GET",
                "/product/list",
                "search",
                token=token,
                params={"keyword": keyword, "pageNum": 1, "pageSize": settings.cj_page_size},
            )
        except RuntimeError as e:
            logger.warning(f"CJ search failed for {keyword!r}: {e}")
            return SearchResult.failure(str(e))

        items = (payload.get("data") or {}).get("list") or []
        listings = [listing for listing in map(parse_listing, items) if listing is not None]
        return SearchResult.success(listings)

    async def get_variants(self, product_id: str) -> VariantResult:
        try:
            token = await self.ensure_token()
            payload = await self._request(
                "GET",
                "/product/variant/query",
                "variants",
                token=token,
                params={"pid": product_id},
            )
        except (SupplierAuthError, RuntimeError) as e:
            return VariantResult(status="error", error=str(e))

        items = payload.get("data") or []
        if not isinstance(items, list):
            items = []
        variants = [v for v in map(parse_variant, items) if v is not None]
        return VariantResult(status="ok", variants=variants)

    async def create_order(self, request: OrderRequest) -> OrderPlacementResult:
        address = request.shipping_address
        body = {
            "orderNumber": request.reference,
            "products": [
                {
                    "pid": request.product_id,
                    "quantity": request.quantity,
                    "variantId": request.variant_id,
                }
            ],
            "shippingAddress": {
                "name": address.get("name") or request.customer_name,
                "phone": request.customer_phone or settings.default_customer_phone,
                "country": address.get("country"),
                "province": address.get("state"),
                "city": address.get("city"),
                "address": address.get("line1"),
                "address2": address.get("line2") or "",
                "zip": address.get("postal_code"),
            },
            "remark": f"VideoShop Order {request.reference}",
        }
        try:
            token = await self.ensure_token()
            payload = await self._request("POST", "/shopping/order", "order", token=token, json=body)
        except (SupplierAuthError, RuntimeError) as e:
            return OrderPlacementResult(status="error", error=f"CJ fulfillment failed: {e}")

        data = payload.get("data") or {}
        order_id = data.get("orderId") or data.get("id")
        if not order_id:
            return OrderPlacementResult(
                status="error", response=payload, error="CJ order response had no order id"
            )
        return OrderPlacementResult(status="ok", supplier_order_id=str(order_id), response=payload)

    async def get_order_status(self, supplier_order_id: str) -> StatusLookupResult:
        try:
            token = await self.ensure_token()
            payload = await self._request(
                "GET", f"/shopping/order/{supplier_order_id}", "order_status", token=token, timeout=15.0
            )
        except (SupplierAuthError, RuntimeError) as e:
            return StatusLookupResult(status="error", error=str(e))

        data = payload.get("data") or {}
        raw_status = data.get("orderStatus")
        tracking = data.get("trackingNumber")
        if str(raw_status).upper() == "DELIVERED":
            status = "delivered"
        elif tracking:
            status = "shipped"
        else:
            status = "pending"
        return StatusLookupResult(
            status=status, tracking_number=tracking, raw_status=raw_status, response=payload
        )
