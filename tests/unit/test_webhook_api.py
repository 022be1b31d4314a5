"""
Unit Tests - HTTP API
"""
import httpx
import pytest
from pydantic import SecretStr

from order_engine.config import get_settings
from order_engine.database.connection import get_db_dependency, get_session_factory_dependency, session_scope
from order_engine.main import create_app


@pytest.fixture
async def client(session_factory, test_settings):
    """API client bound to the test database and settings"""
    app = create_app()

    async def override_db():
        async with session_scope(session_factory) as session:
            yield session

    app.dependency_overrides[get_db_dependency] = override_db
    app.dependency_overrides[get_session_factory_dependency] = lambda: session_factory
    app.dependency_overrides[get_settings] = lambda: test_settings

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


class TestWebhookEndpoint:
    """Tests for POST /api/v1/webhooks/storefront"""

    async def test_paid_order(self, client, make_item, order_payload):
        """Test a paid order is processed and answered 200"""
        await make_item(owned_quantity=10, sku="KITE-REBEL-9")

        response = await client.post("/api/v1/webhooks/storefront", json=order_payload())

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "event": "order/paid",
            "message": "Order processed",
            "order_id": "5001",
        }

    async def test_secret_header(self, client, test_settings, order_payload):
        """Test the shared secret header is enforced"""
        test_settings.storefront.webhook_secret = SecretStr("s3cret")

        rejected = await client.post(
            "/api/v1/webhooks/storefront", json=order_payload(), headers={"x-webhook-secret": "nope"}
        )
        accepted = await client.post(
            "/api/v1/webhooks/storefront", json=order_payload(), headers={"x-webhook-secret": "s3cret"}
        )

        assert rejected.status_code == 401
        assert rejected.json()["success"] is False
        assert accepted.status_code == 200

    async def test_invalid_json(self, client):
        """Test a non-JSON body answers 400"""
        response = await client.post(
            "/api/v1/webhooks/storefront", content=b"not json", headers={"content-type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json()["message"] == "Invalid JSON body"

    async def test_replay(self, client, order_payload):
        """Test replay of stored and unknown orders"""
        await client.post("/api/v1/webhooks/storefront", json=order_payload(event="order/created"))

        replayed = await client.post("/api/v1/webhooks/replay/5001")
        missing = await client.post("/api/v1/webhooks/replay/404")

        assert replayed.status_code == 200
        assert replayed.json()["message"] == "Order not paid, skipped"
        assert missing.status_code == 404

    async def test_replay_of_rejected_delivery(self, client, test_settings, order_payload):
        """Test replay answers 401 for a delivery that failed the secret check"""
        test_settings.storefront.webhook_secret = SecretStr("s3cret")
        await client.post("/api/v1/webhooks/storefront", json=order_payload(7777), headers={"x-webhook-secret": "forged"})

        replayed = await client.post("/api/v1/webhooks/replay/7777")
        detail = await client.get("/api/v1/orders/7777")

        assert replayed.status_code == 401
        assert replayed.json()["success"] is False
        assert replayed.json()["message"] == "Unauthorized"
        assert detail.status_code == 404


class TestOrderEndpoints:
    """Tests for /api/v1/orders"""

    async def test_list_and_detail(self, client, make_item, order_payload):
        """Test a processed order is listed and fully described"""
        await make_item(owned_quantity=10, sku="KITE-REBEL-9")
        await client.post("/api/v1/webhooks/storefront", json=order_payload())

        listing = await client.get("/api/v1/orders", params={"status": "fulfilled"})
        detail = await client.get("/api/v1/orders/5001")

        assert listing.status_code == 200
        assert listing.json()["total"] == 1
        assert listing.json()["items"][0]["external_order_id"] == "5001"
        body = detail.json()
        assert body["status"] == "fulfilled"
        assert body["customer_name"] == "Ana Souza"
        assert body["line_items"][0]["origin"] == "owned_stock"
        assert body["transaction"]["cost_of_goods"] == 100.0
        assert body["alert_ids"] == []

    async def test_unknown_order(self, client):
        """Test 404 for an order never processed"""
        response = await client.get("/api/v1/orders/404")

        assert response.status_code == 404

    async def test_stats(self, client, order_payload):
        """Test counts and revenue totals"""
        await client.post("/api/v1/webhooks/storefront", json=order_payload())

        response = await client.get("/api/v1/orders/stats")

        assert response.status_code == 200
        assert response.json()["total_orders"] == 1
        assert response.json()["by_status"] == {"fulfilled": 1}
        assert response.json()["total_revenue"] == 180.0
        assert response.json()["units_by_origin"] == {"owned_stock": 0, "supplier_dropship": 2}

    async def test_cancel_via_status(self, client, make_item, order_payload):
        """Test cancelling through the API compensates and then conflicts on revival"""
        await make_item(owned_quantity=10, sku="KITE-REBEL-9")
        await client.post("/api/v1/webhooks/storefront", json=order_payload())

        cancelled = await client.patch("/api/v1/orders/5001/status", json={"status": "cancelled"})
        revived = await client.patch("/api/v1/orders/5001/status", json={"status": "fulfilled"})
        missing = await client.patch("/api/v1/orders/404/status", json={"status": "cancelled"})

        assert cancelled.status_code == 200
        assert cancelled.json()["status"] == "cancelled"
        assert revived.status_code == 409
        assert missing.status_code == 404


class TestAlertEndpoints:
    """Tests for /api/v1/alerts"""

    async def test_list_and_resolve(self, client, order_payload):
        """Test a drop-ship alert can be listed and resolved once"""
        await client.post("/api/v1/webhooks/storefront", json=order_payload())

        listing = await client.get("/api/v1/alerts", params={"status": "pending", "related_order_id": "5001"})
        alert = listing.json()["items"][0]
        resolved = await client.patch(f"/api/v1/alerts/{alert['id']}", json={"status": "resolved", "notes": "PO 8812"})
        again = await client.patch(f"/api/v1/alerts/{alert['id']}", json={"status": "cancelled"})

        assert listing.json()["total"] == 1
        assert alert["quantity_needed"] == 2
        assert alert["inventory_item_id"] is None
        assert resolved.status_code == 200
        assert resolved.json()["status"] == "resolved"
        assert resolved.json()["notes"] == "PO 8812"
        assert again.status_code == 409

    async def test_stats(self, client, order_payload):
        """Test pending units are summed"""
        await client.post("/api/v1/webhooks/storefront", json=order_payload())

        response = await client.get("/api/v1/alerts/stats")

        assert response.json() == {"by_status": {"pending": 1}, "pending_units": 2}

    async def test_unknown_alert(self, client):
        """Test 404 for an unknown alert id"""
        response = await client.patch(
            "/api/v1/alerts/00000000-0000-0000-0000-000000000000", json={"status": "resolved"}
        )

        assert response.status_code == 404


class TestOperationalEndpoints:
    """Tests for liveness, info and metrics"""

    async def test_liveness(self, client):
        """Test the liveness probe"""
        response = await client.get("/api/v1/health/live")

        assert response.status_code == 200
        assert response.json() == {"status": "alive"}

    async def test_security_headers(self, client):
        """Test security headers are set on responses"""
        response = await client.get("/api/v1/info")

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"

    async def test_metrics(self, client, order_payload):
        """Test webhook counters are exposed"""
        await client.post("/api/v1/webhooks/storefront", json=order_payload())

        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "order_engine_webhooks_total" in response.text
