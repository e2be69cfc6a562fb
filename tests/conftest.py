"""Shared fixtures: in-memory database, fake clock, scheduler and mailer."""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tests.fakes import FakeClock, FakeMailer, RecordingScheduler
from videoshop.db.models import Base, Order, OrderItem, Product


@pytest_asyncio.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler():
    return RecordingScheduler()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def make_product(session_factory):
    async def _make(name: str = "Desk Lamp", price: float = 25.6, supplier_price: float = 20.0, **fields) -> Product:
        defaults = {
            "category": "home",
            "source": "automated_discovery",
            "supplier_platform": "cjdropshipping",
            "supplier_product_id": f"pid-{name.lower().replace(' ', '-')}",
            "pricing": {"supplier_price": supplier_price, "markup_amount": round(price - supplier_price, 2)},
            "discovery_source": {"channel": "gadgets"},
            "analytics": {"trending_score": 120.0},
            "automation": {"is_automated": True, "needs_review": False},
        }
        defaults.update(fields)
        async with session_factory() as db:
            product = Product(name=name, price=price, **defaults)
            db.add(product)
            await db.commit()
            await db.refresh(product)
        return product

    return _make


@pytest.fixture
def make_order(session_factory):
    async def _make(
        items: list[tuple[str, str]],
        payment_status: str = "paid",
        fulfillment_status: str = "pending",
        item_status: str = "pending",
        order_number: str = "VS-123456-ABCD",
    ) -> Order:
        async with session_factory() as db:
            order = Order(
                order_number=order_number,
                payment_session_id=f"cs_{order_number}",
                customer={"email": "buyer@example.com", "name": "Sam Buyer", "phone": "555-0100"},
                customer_email="buyer@example.com",
                shipping_address={
                    "name": "Sam Buyer",
                    "line1": "1 Main St",
                    "city": "Springfield",
                    "state": "IL",
                    "postal_code": "62701",
                    "country": "US",
                },
                subtotal=40.0,
                shipping=9.99,
                tax=3.2,
                total=53.19,
                status="processing" if payment_status == "paid" else "pending",
                payment_status=payment_status,
                fulfillment_status=fulfillment_status,
                items=[
                    OrderItem(
                        position=index,
                        product_name=f"Item {index + 1}",
                        quantity=1,
                        unit_price=20.0,
                        supplier_price=15.0,
                        total_price=20.0,
                        profit=5.0,
                        supplier_platform=platform,
                        supplier_product_id=product_id,
                        fulfillment_status=item_status,
                    )
                    for index, (platform, product_id) in enumerate(items)
                ],
            )
            db.add(order)
            await db.commit()
            await db.refresh(order)
        return order

    return _make
