"""Base classes and typed response shapes for supplier integrations."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Optional

from videoshop.errors import SupplierAuthError

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass
class SupplierListing:
    """One catalog search hit, validated out of the supplier payload."""

    supplier: str
    product_id: str
    title: str
    price: float
    image_url: Optional[str] = None
    category: Optional[str] = None
    url: Optional[str] = None
    description: Optional[str] = None
    sold_count: int = 0
    in_stock: bool = True
    weight: Optional[float] = None
    product_type: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass
class SupplierVariant:
    """A purchasable variant of a listing."""

    id: str
    name: str
    sku: Optional[str] = None
    price: Optional[float] = None
    image: Optional[str] = None
    attributes: dict[str, Any] = field(default_factory=dict)
    stock: Optional[int] = None


@dataclass
class AuthResult:
    ok: bool
    token: Optional[str] = None
    expires_at: Optional[float] = None
    error: Optional[str] = None


@dataclass
class SearchResult:
    """Catalog search outcome: ``ok``, ``rate_limited`` (skip) or ``error``."""

    status: Literal["ok", "rate_limited", "error"]
    listings: list[SupplierListing] = field(default_factory=list)
    wait_seconds: float = 0.0
    error: Optional[str] = None

    @classmethod
    def success(cls, listings: list[SupplierListing]) -> "SearchResult":
        return cls(status="ok", listings=listings)

    @classmethod
    def rate_limited(cls, wait_seconds: float) -> "SearchResult":
        return cls(status="rate_limited", wait_seconds=wait_seconds)

    @classmethod
    def failure(cls, error: str) -> "SearchResult":
        return cls(status="error", error=error)

    @property
    def ok(self) -> bool:
        return self.status == "ok"


@dataclass
class VariantResult:
    status: Literal["ok", "error"]
    variants: list[SupplierVariant] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"


@dataclass
class OrderRequest:
    """Everything a supplier needs to place an order for one line item."""

    reference: str
    product_id: str
    quantity: int
    shipping_address: dict[str, Any]
    customer_name: str
    customer_email: str
    customer_phone: Optional[str] = None
    variant_id: Optional[str] = None


@dataclass
class OrderPlacementResult:
    status: Literal["ok", "error"]
    supplier_order_id: Optional[str] = None
    response: dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"


@dataclass
class StatusLookupResult:
    """Supplier-side view of an order: still processing, shipped, or lookup error."""

    status: Literal["pending", "shipped", "delivered", "error"]
    tracking_number: Optional[str] = None
    raw_status: Optional[str] = None
    response: dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


class SupplierState:
    """
    Mutable per-integration state: bearer token, expiry and cooldown timer.

    One instance is owned by each supplier client. ``lock`` serializes the
    read-modify-write of ``last_request_time`` so two concurrent callers can
    never both claim the same cooldown window; ``auth_lock`` does the same
    for the token exchange.
    """

    def __init__(self, name: str, cooldown: float, clock: Clock = time.time):
        self.name = name
        self.cooldown = cooldown
        self.clock = clock
        self.token: Optional[str] = None
        self.token_expiry: Optional[float] = None
        self.last_request_time: Optional[float] = None
        self.lock = asyncio.Lock()
        self.auth_lock = asyncio.Lock()

    def remaining_wait(self) -> float:
        if self.last_request_time is None:
            return 0.0
        elapsed = self.clock() - self.last_request_time
        return max(0.0, self.cooldown - elapsed)

    async def try_acquire_slot(self) -> Optional[float]:
        """
        Claim the cooldown window without waiting.

        Returns:
            None when the slot was claimed (``last_request_time`` is stamped
            now, before the caller makes its request), otherwise the seconds
            left until the next call is allowed.
        """
        async with self.lock:
            wait = self.remaining_wait()
            if wait > 0:
                return wait
            self.last_request_time = self.clock()
            return None

    def token_valid(self) -> bool:
        return (
            self.token is not None
            and self.token_expiry is not None
            and self.clock() < self.token_expiry
        )

    def store_token(self, token: str, expires_at: float):
        self.token = token
        self.token_expiry = expires_at

    def invalidate_token(self):
        self.token = None
        self.token_expiry = None

    def snapshot(self) -> dict[str, Any]:
        wait = self.remaining_wait()
        return {
            "supplier": self.name,
            "token_valid": self.token_valid(),
            "cooldown_seconds": self.cooldown,
            "can_search": wait == 0,
            "next_available_seconds": int(wait + 0.999),
        }


class SupplierClient(ABC):
    """Abstract supplier catalog + ordering integration."""

    name: str = "base"
    requires_auth: bool = True

    def __init__(self, state: SupplierState):
        self.state = state

    @abstractmethod
    async def authenticate(self) -> AuthResult:
        """Exchange credentials for a bearer token."""
        pass

    @abstractmethod
    async def _search(self, keyword: str, token: Optional[str]) -> SearchResult:
        pass

    @abstractmethod
    async def get_variants(self, product_id: str) -> VariantResult:
        """Variant/detail lookup for one listing."""
        pass

    @abstractmethod
    async def create_order(self, request: OrderRequest) -> OrderPlacementResult:
        """Submit an order for one line item."""
        pass

    @abstractmethod
    async def get_order_status(self, supplier_order_id: str) -> StatusLookupResult:
        """Look up fulfillment progress of a previously placed order."""
        pass

    async def close(self):
        pass

    async def ensure_token(self) -> Optional[str]:
        """
        Return a valid token, re-authenticating only once the cached one expired.

        Raises:
            SupplierAuthError: when the credentials exchange fails
        """
        if not self.requires_auth:
            return None
        async with self.state.auth_lock:
            if self.state.token_valid():
                return self.state.token
            logger.info(f"Authenticating with {self.name}")
            result = await self.authenticate()
            if not result.ok or not result.token or result.expires_at is None:
                self.state.invalidate_token()
                raise SupplierAuthError(
                    result.error or f"{self.name} authentication failed", supplier=self.name
                )
            self.state.store_token(result.token, result.expires_at)
            return result.token

    async def search(self, keyword: str) -> SearchResult:
        """
        Rate-limited catalog search.

        A closed cooldown window is a scheduling skip, not an error: no
        request is made and the remaining wait is reported. Once the window
        is claimed it stays spent even if authentication or the search
        itself fails.
        """
        wait = await self.state.try_acquire_slot()
        if wait is not None:
            logger.info(f"{self.name} search skipped, cooldown has {wait:.0f}s remaining")
            return SearchResult.rate_limited(wait)

        try:
            token = await self.ensure_token()
        except SupplierAuthError as e:
            logger.error(f"{self.name} authentication failed: {e}")
            return SearchResult.failure(str(e))

        return await self._search(keyword, token)

    def health(self) -> dict[str, Any]:
        return self.state.snapshot()
