"""Fakes and builders shared across the test suite."""

from datetime import datetime, timezone
from typing import Any, Optional

from videoshop.discovery.base import Candidate, Classification, Post
from videoshop.suppliers.base import (
    AuthResult,
    OrderPlacementResult,
    OrderRequest,
    SearchResult,
    StatusLookupResult,
    SupplierClient,
    SupplierListing,
    SupplierState,
    VariantResult,
)


class FakeClock:
    """Epoch-seconds clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class RecordingScheduler:
    def __init__(self):
        self.jobs: list[dict[str, Any]] = []

    def schedule(self, delay_seconds, func, *args, name=None) -> str:
        self.jobs.append({"delay": delay_seconds, "func": func, "args": args, "name": name})
        return f"job-{len(self.jobs)}"


class FakeMailer:
    def __init__(self, deliver: bool = True):
        self.deliver = deliver
        self.sent: list[dict[str, str]] = []

    @property
    def configured(self) -> bool:
        return True

    async def send(self, to: str, subject: str, body: str, html: Optional[str] = None) -> bool:
        self.sent.append({"to": to, "subject": subject, "body": body})
        return self.deliver

    async def close(self):
        pass


class StubSupplier(SupplierClient):
    """Scriptable supplier: canned search results, orders and status lookups."""

    requires_auth = False

    def __init__(
        self,
        name: str,
        listings: Optional[list[SupplierListing]] = None,
        cooldown: float = 0.0,
        clock: Optional[FakeClock] = None,
        order_error: Optional[Exception] = None,
        status: Optional[StatusLookupResult] = None,
        variants: Optional[VariantResult] = None,
    ):
        super().__init__(SupplierState(name, cooldown, clock or FakeClock()))
        self.name = name
        self.listings = listings or []
        self.order_error = order_error
        self.status = status or StatusLookupResult(status="pending")
        self.variants = variants or VariantResult(status="ok")
        self.search_calls: list[str] = []
        self.orders: list[OrderRequest] = []

    async def authenticate(self) -> AuthResult:
        return AuthResult(ok=True)

    async def _search(self, keyword: str, token: Optional[str]) -> SearchResult:
        self.search_calls.append(keyword)
        return SearchResult.success(list(self.listings))

    async def get_variants(self, product_id: str) -> VariantResult:
        return self.variants

    async def create_order(self, request: OrderRequest) -> OrderPlacementResult:
        self.orders.append(request)
        if self.order_error is not None:
            raise self.order_error
        return OrderPlacementResult(
            status="ok",
            supplier_order_id=f"{self.name.upper()}-{len(self.orders)}",
            response={"ok": True},
        )

    async def get_order_status(self, supplier_order_id: str) -> StatusLookupResult:
        return self.status


def make_listing(product_id: str, supplier: str = "cjdropshipping", price: float = 20.0, **kwargs) -> SupplierListing:
    return SupplierListing(
        supplier=supplier,
        product_id=product_id,
        title=kwargs.pop("title", f"Listing {product_id}"),
        price=price,
        image_url=kwargs.pop("image_url", f"https://img.example.com/{product_id}.jpg"),
        **kwargs,
    )


def make_post(post_id: str = "p1", title: str = "Just got the Sony WH-1000XM5", **kwargs) -> Post:
    defaults = {
        "channel": "gadgets",
        "body": "",
        "upvotes": 500,
        "comment_count": 40,
        "created_utc": datetime(2024, 5, 1, tzinfo=timezone.utc).timestamp(),
    }
    defaults.update(kwargs)
    return Post(post_id=post_id, title=title, **defaults)


def make_candidate(
    post_id: str = "p1",
    name: str = "Sony Wh 1000xm5",
    score: float = 100.0,
    category: str = "electronics",
    channel: str = "gadgets",
) -> Candidate:
    return Candidate(
        post=make_post(post_id, title=f"Loving my {name}", channel=channel),
        classification=Classification(
            is_real_product=True,
            engagement_score=score,
            product_name=name,
            category=category,
            prices=["$350"],
        ),
    )
