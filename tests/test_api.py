"""HTTP-level tests for the API routers and error mapping."""

import httpx
import pytest
import pytest_asyncio

from videoshop.api.routes import automation, products
from videoshop.config import settings
from videoshop.db.session import get_db
from videoshop.main import app
from videoshop.pipeline.catalog import ProductCatalog
from videoshop.suppliers import SupplierRegistry


@pytest_asyncio.fixture
async def client(session_factory, monkeypatch):
    async def override_database():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_database
    monkeypatch.setattr(products, "catalog", ProductCatalog(session_factory, SupplierRegistry()))
    monkeypatch.setattr(settings, "admin_api_key", "secret")
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


@pytest.mark.asyncio
async def test_subscription_lifecycle(client):
    body = {"user_id": "u1", "email": "fan@example.com", "type": "category", "target": "Home"}

    created = await client.post("/api/subscriptions", json=body)
    duplicate = await client.post("/api/subscriptions", json=body)

    assert created.status_code == 201
    assert created.json()["target"] == "home"
    assert duplicate.status_code == 400
    assert duplicate.json()["success"] is False

    sub_id = created.json()["id"]
    toggled = await client.post(f"/api/subscriptions/{sub_id}/toggle")
    assert toggled.json()["is_active"] is False

    listed = await client.get("/api/subscriptions/user/u1")
    assert [s["id"] for s in listed.json()] == [sub_id]

    missing = await client.delete("/api/subscriptions/999")
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_product_rating_and_events(client, make_product):
    product = await make_product()

    fetched = await client.get(f"/api/products/{product.id}")
    rated = await client.post(f"/api/products/{product.id}/rating", json={"rating": 4})
    bad = await client.post(f"/api/products/{product.id}/rating", json={"rating": 9})
    unknown = await client.post("/api/products/999/rating", json={"rating": 4})
    event = await client.post(f"/api/products/{product.id}/events", json={"event": "view"})
    bad_event = await client.post(f"/api/products/{product.id}/events", json={"event": "share"})

    assert fetched.json()["name"] == "Desk Lamp"
    assert rated.json() == {"success": True, "product_id": product.id, "average_rating": 4.0, "rating_count": 1}
    assert bad.status_code == 400
    assert unknown.status_code == 404
    assert event.json()["analytics"]["views"] == 1
    assert bad_event.status_code == 422


@pytest.mark.asyncio
async def test_run_requires_admin_key_and_reports_lock_conflict(client, monkeypatch):
    async def locked(trigger="scheduled", options=None):
        return None

    monkeypatch.setattr(automation.task_runner, "run_pipeline", locked)

    wrong_key = await client.post("/api/automation/run", headers={"X-Admin-API-Key": "nope"})
    conflict = await client.post("/api/automation/run", headers={"X-Admin-API-Key": "secret"})
    bad_window = await client.post(
        "/api/automation/run", headers={"X-Admin-API-Key": "secret"}, json={"time_window": "decade"}
    )

    assert wrong_key.status_code == 403
    assert conflict.status_code == 409
    assert bad_window.status_code == 422


@pytest.mark.asyncio
async def test_checkout_rejects_non_positive_quantity(client):
    body = {
        "items": [{"product_id": 1, "quantity": 0}],
        "customer": {"email": "buyer@example.com"},
        "shipping_address": {"line1": "1 Main St", "city": "Springfield", "postal_code": "62701", "country": "US"},
    }

    response = await client.post("/api/checkout/create-session", json=body)

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_operator_routes_disabled_without_configured_key(client, monkeypatch):
    monkeypatch.setattr(settings, "admin_api_key", "")

    response = await client.post("/api/automation/run", headers={"X-Admin-API-Key": "secret"})

    assert response.status_code == 503
