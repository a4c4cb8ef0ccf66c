"""Tests de integración de la API HTTP con los servicios sustituidos por dobles."""

import hashlib
import hmac
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from app.api.v1.schemas.sync_schemas import SyncError, SyncResult
from app.core.activity_tracker import ActivityTracker, get_activity_tracker
from app.core.scheduler import SyncScheduler, get_scheduler
from app.main import app
from app.services.order_sync_service import get_order_sync_service
from app.services.tracking_sync_service import TrackingSyncService, get_tracking_sync_service
from app.utils.error_handler import SyncInProgressException

WEBHOOK_SECRET = "s"


@pytest.fixture
def client():
    # Sin context manager para no disparar el lifespan (scheduler y validación de credenciales)
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def sync_service():
    service = MagicMock()
    service.sync_orders = AsyncMock(
        return_value=SyncResult(
            orders_processed=2,
            orders_failed=1,
            errors=[SyncError(order_number="1003", error="invalid address")],
        )
    )
    service.get_status = MagicMock(return_value={"state": "idle", "running": False})
    app.dependency_overrides[get_order_sync_service] = lambda: service
    return service


@pytest.fixture
def iqr_client():
    client = MagicMock()
    client.update_order_tracking = AsyncMock()
    client.end_session = AsyncMock()
    return client


@pytest.fixture
def tracking_service(make_settings, iqr_client):
    service = TrackingSyncService(
        iqr_client=iqr_client,
        shipstation_client=MagicMock(),
        activity_tracker=ActivityTracker(max_records=10),
        settings=make_settings(SHIPSTATION_WEBHOOK_SECRET=WEBHOOK_SECRET),
    )
    app.dependency_overrides[get_tracking_sync_service] = lambda: service
    return service


def signed_post(client: TestClient, body: dict | bytes, secret: str = WEBHOOK_SECRET):
    raw = body if isinstance(body, bytes) else json.dumps(body).encode()
    signature = hmac.new(secret.encode(), raw, hashlib.sha256).hexdigest()
    return client.post(
        "/api/v1/webhooks/shipstation",
        content=raw,
        headers={"Content-Type": "application/json", "X-ShipStation-Signature": signature},
    )


class TestSyncEndpoints:
    """Tests para /api/v1/sync."""

    def test_sync_orders_returns_camel_case_result(self, client, sync_service):
        response = client.post("/api/v1/sync/orders")

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "ordersProcessed": 2,
            "ordersFailed": 1,
            "errors": [{"orderNumber": "1003", "error": "invalid address"}],
        }
        sync_service.sync_orders.assert_awaited_once_with(None)

    def test_sync_request_is_passed_through(self, client, sync_service):
        response = client.post("/api/v1/sync/orders", json={"daysBack": 3, "orderStatus": "Partial"})

        assert response.status_code == 200
        request = sync_service.sync_orders.await_args.args[0]
        assert request.days_back == 3
        assert request.order_status == "Partial"

    def test_invalid_days_back_is_rejected(self, client, sync_service):
        response = client.post("/api/v1/sync/orders", json={"daysBack": 0})

        assert response.status_code == 422
        assert response.json()["error_type"] == "validation_error"
        sync_service.sync_orders.assert_not_awaited()

    def test_overlapping_sync_returns_conflict(self, client, sync_service):
        sync_service.sync_orders.side_effect = SyncInProgressException()

        response = client.post("/api/v1/sync/orders")

        assert response.status_code == 409
        assert response.json()["error_code"] == "SYNC_IN_PROGRESS"
        assert response.json()["message"] == "A sync run is already in progress"

    def test_status(self, client, sync_service):
        response = client.get("/api/v1/sync/status")

        assert response.status_code == 200
        assert response.json()["state"] == "idle"

    def test_activity(self, client):
        tracker = ActivityTracker(max_records=10)
        tracker.record_sync(success=True, orders_processed=4, orders_failed=0, duration=12.5, message="Synced 4 orders")
        app.dependency_overrides[get_activity_tracker] = lambda: tracker

        response = client.get("/api/v1/sync/activity")

        assert response.status_code == 200
        body = response.json()
        assert set(body) == {"last24Hours", "allTime", "recentActivity"}
        assert body["last24Hours"]["totalSyncs"] == 1
        assert body["last24Hours"]["ordersProcessed"] == 4
        assert body["allTime"]["ordersProcessed"] == 4
        assert body["recentActivity"][0]["message"] == "Synced 4 orders"

    def test_scheduler_pause_and_resume(self, client, settings):
        scheduler = SyncScheduler(run_sync=AsyncMock(), interval_seconds=60, enabled=True, settings=settings)
        app.dependency_overrides[get_scheduler] = lambda: scheduler

        paused = client.post("/api/v1/sync/scheduler/pause").json()
        assert paused["enabled"] is False

        resumed = client.post("/api/v1/sync/scheduler/resume").json()
        assert resumed["enabled"] is True
        assert resumed["interval_minutes"] == 1
        assert client.get("/api/v1/sync/scheduler").json()["running"] is False


class TestWebhookEndpoint:
    """Tests para /api/v1/webhooks/shipstation."""

    def test_signed_shipment_updates_iqr(self, client, tracking_service, iqr_client):
        response = signed_post(
            client,
            {
                "resource_url": "https://ssapi.shipstation.com/shipments?batchId=1",
                "resource_type": "SHIP_NOTIFY",
                "data": {"order_number": "1001", "order_key": "IQR-1001", "tracking_number": "1Z", "carrier_code": "ups"},
            },
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Updated tracking for order 1001"}
        assert iqr_client.update_order_tracking.await_args.args[0].order_id == "1001"

    def test_bad_signature_is_unauthorized(self, client, tracking_service, iqr_client):
        response = signed_post(client, {"resource_type": "SHIP_NOTIFY"}, secret="wrong")

        assert response.status_code == 401
        assert response.json()["error_code"] == "INVALID_WEBHOOK_SIGNATURE"
        iqr_client.update_order_tracking.assert_not_awaited()

    def test_missing_signature_is_unauthorized(self, client, tracking_service):
        response = client.post("/api/v1/webhooks/shipstation", json={"resource_type": "SHIP_NOTIFY"})

        assert response.status_code == 401

    def test_invalid_json_is_bad_request(self, client, tracking_service):
        response = signed_post(client, b"{not json")

        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_WEBHOOK_PAYLOAD"

    def test_shipment_without_data_is_bad_request(self, client, tracking_service):
        response = signed_post(client, {"resource_type": "SHIP_NOTIFY", "resource_url": "https://x"})

        assert response.status_code == 400
        assert response.json() == {"success": False, "message": "Resource data not included in webhook"}

    def test_other_events_are_acknowledged(self, client, tracking_service):
        response = signed_post(client, {"resource_type": "ORDER_NOTIFY", "resource_url": "https://x"})

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Ignoring event type: ORDER_NOTIFY"}


class TestHealthEndpoints:
    """Tests para los endpoints de salud."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_live(self, client):
        assert client.get("/live").json() == {"alive": True}

    def test_root_lists_endpoints(self, client):
        response = client.get("/")

        assert response.status_code == 200
        endpoints = response.json()["endpoints"]
        assert endpoints["sync"] == "/api/v1/sync"
        assert endpoints["webhooks"] == "/api/v1/webhooks"

    def test_ready(self, client, monkeypatch):
        monkeypatch.setattr("app.core.routers.get_readiness", lambda: {"ready": True})
        assert client.get("/ready").status_code == 200

        monkeypatch.setattr(
            "app.core.routers.get_readiness", lambda: {"ready": False, "reason": "Missing configuration"}
        )
        response = client.get("/ready")
        assert response.status_code == 503
        assert response.json()["reason"] == "Missing configuration"

    def test_detailed_unhealthy_is_503(self, client, monkeypatch):
        monkeypatch.setattr(
            "app.core.routers.get_health_status",
            AsyncMock(return_value={"status": "unhealthy", "services": {"iqr": "down", "shipstation": "down"}}),
        )

        response = client.get("/health/detailed")

        assert response.status_code == 503
        assert response.json()["services"]["iqr"] == "down"

    def test_detailed_degraded_is_200(self, client, monkeypatch):
        monkeypatch.setattr(
            "app.core.routers.get_health_status",
            AsyncMock(return_value={"status": "degraded", "services": {"iqr": "up", "shipstation": "down"}}),
        )

        assert client.get("/health/detailed").status_code == 200


class TestMiddleware:
    """Tests para el middleware y los manejadores de error."""

    def test_request_id_is_echoed(self, client):
        response = client.get("/live", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"
        assert "X-Process-Time" in response.headers

    def test_request_id_is_generated(self, client):
        assert client.get("/live").headers.get("X-Request-ID")

    def test_unknown_route_uses_error_format(self, client):
        response = client.get("/does-not-exist")

        assert response.status_code == 404
        assert response.json()["error_type"] == "http_error"
        assert response.json()["path"] == "/does-not-exist"
