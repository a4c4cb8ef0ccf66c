"""Tests unitarios para la escritura de tracking ShipStation → IQR."""

import hashlib
import hmac
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.api.v1.schemas.shipstation_schemas import ShipStationShipment
from app.api.v1.schemas.sync_schemas import ShipStationWebhookPayload
from app.core.activity_tracker import ActivityTracker
from app.services.tracking_sync_service import TrackingSyncService, is_shipment_event, verify_hmac_signature
from app.utils.error_handler import IQRAPIException


def sign(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def shipment_payload(**data) -> ShipStationWebhookPayload:
    return ShipStationWebhookPayload.model_validate(
        {
            "resource_url": "https://ssapi.shipstation.com/shipments?batchId=1",
            "resource_type": "SHIP_NOTIFY",
            "data": {
                "shipment_id": 987,
                "order_number": "1001",
                "custom_field1": "IQR-1001",
                "tracking_number": "1Z999",
                "carrier_code": "ups",
                "service_code": "ups_ground",
                "ship_date": "2024-03-01",
                **data,
            },
        }
    )


@pytest.fixture
def iqr_client():
    client = MagicMock()
    client.update_order_tracking = AsyncMock()
    client.end_session = AsyncMock()
    return client


@pytest.fixture
def shipstation_client():
    client = MagicMock()
    client.list_shipments = AsyncMock(return_value=[])
    return client


@pytest.fixture
def tracker():
    return ActivityTracker(max_records=20)


@pytest.fixture
def service(settings, iqr_client, shipstation_client, tracker):
    return TrackingSyncService(
        iqr_client=iqr_client,
        shipstation_client=shipstation_client,
        activity_tracker=tracker,
        settings=settings,
    )


class TestSignature:
    """Tests para la validación HMAC del webhook."""

    def test_valid_signature(self):
        body = b'{"a":1}'

        assert verify_hmac_signature(body, sign(body, "s"), "s")

    def test_tampered_body_is_rejected(self):
        signature = sign(b'{"a":1}', "s")

        assert not verify_hmac_signature(b'{"a":2}', signature, "s")

    def test_wrong_secret_is_rejected(self):
        body = b'{"a":1}'

        assert not verify_hmac_signature(body, sign(body, "other"), "s")

    def test_missing_signature_is_rejected_when_secret_configured(self):
        assert not verify_hmac_signature(b"{}", None, "s")
        assert not verify_hmac_signature(b"{}", "", "s")

    def test_no_secret_skips_validation(self):
        assert verify_hmac_signature(b"{}", None, None)
        assert verify_hmac_signature(b"{}", "garbage", "")

    def test_accepts_str_body(self):
        assert verify_hmac_signature('{"a":1}', sign(b'{"a":1}', "s"), "s")

    def test_service_uses_configured_secret(self, make_settings):
        service = TrackingSyncService(
            iqr_client=MagicMock(),
            shipstation_client=MagicMock(),
            activity_tracker=ActivityTracker(max_records=5),
            settings=make_settings(SHIPSTATION_WEBHOOK_SECRET="s"),
        )
        body = b'{"resource_type":"SHIP_NOTIFY"}'

        assert service.validate_webhook_signature(body, sign(body, "s"))
        assert not service.validate_webhook_signature(body, "deadbeef")


class TestWebhookHandling:
    """Tests para el ruteo y procesamiento de webhooks."""

    def test_shipment_event_types(self):
        for event in ("SHIP_NOTIFY", "FULFILLMENT_SHIPPED", "shipment", "fulfillment_shipped"):
            assert is_shipment_event(event)
        assert not is_shipment_event("ORDER_NOTIFY")
        assert not is_shipment_event(None)

    @pytest.mark.asyncio
    async def test_updates_iqr_tracking(self, service, iqr_client, tracker):
        result = await service.handle_webhook(shipment_payload())

        assert result.success is True
        assert result.message == "Updated tracking for order 1001"
        update = iqr_client.update_order_tracking.await_args.args[0]
        assert (update.order_id, update.tracking_number, update.carrier) == ("1001", "1Z999", "ups")
        assert update.shipping_method == "ups_ground"
        assert update.ship_date == "2024-03-01"
        iqr_client.end_session.assert_awaited_once()
        assert tracker.get_recent()[0].orders_processed == 1

    @pytest.mark.asyncio
    async def test_ignores_other_event_types(self, service, iqr_client):
        payload = ShipStationWebhookPayload(resource_type="ORDER_NOTIFY", resource_url="https://x")

        result = await service.handle_webhook(payload)

        assert result.success is True
        assert result.message == "Ignoring event type: ORDER_NOTIFY"
        iqr_client.update_order_tracking.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_data_fails(self, service, iqr_client):
        payload = ShipStationWebhookPayload(resource_type="SHIP_NOTIFY", resource_url="https://x")

        result = await service.handle_webhook(payload)

        assert result.success is False
        assert result.message == "Resource data not included in webhook"
        iqr_client.update_order_tracking.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_foreign_orders_are_acknowledged(self, service, iqr_client):
        """Órdenes que no creó el conector se confirman sin tocar IQR."""
        result = await service.handle_webhook(shipment_payload(order_number="#5555", custom_field1=None))

        assert result.success is True
        assert result.message == "Not an IQR order"
        iqr_client.update_order_tracking.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_legacy_custom_field_is_recognized(self, service, iqr_client):
        await service.handle_webhook(shipment_payload(order_number="5555", custom_field1="IQR Order ID: 777"))

        assert iqr_client.update_order_tracking.await_args.args[0].order_id == "777"

    @pytest.mark.asyncio
    async def test_iqr_failure_is_reported(self, service, iqr_client, tracker):
        iqr_client.update_order_tracking.side_effect = IQRAPIException("IQR API error: 500 boom")

        result = await service.handle_webhook(shipment_payload())

        assert result.success is False
        assert result.message == "IQR API error: 500 boom"
        iqr_client.end_session.assert_awaited_once()
        assert tracker.get_recent()[0].orders_failed == 1
        assert service.get_statistics()["tracking_failures"] == 1


class TestShipmentPolling:
    """Tests para el polling de envíos."""

    @pytest.mark.asyncio
    async def test_polls_and_updates_our_orders(self, service, iqr_client, shipstation_client):
        shipstation_client.list_shipments.return_value = [
            ShipStationShipment(orderNumber="1001", orderKey="IQR-1001", trackingNumber="T1", carrierCode="ups"),
            ShipStationShipment(orderNumber="#9000", orderKey="amazon-9000", trackingNumber="T2"),
            ShipStationShipment(
                orderNumber="1003",
                trackingNumber="T3",
                carrierCode="fedex",
                advancedOptions={"customField1": "IQR-1003"},
            ),
        ]

        async def update(tracking):
            if tracking.order_id == "1003":
                raise IQRAPIException("IQR API error: 500")

        iqr_client.update_order_tracking.side_effect = update
        since = datetime(2024, 3, 1, tzinfo=UTC)

        result = await service.poll_for_shipments(since)

        shipstation_client.list_shipments.assert_awaited_once_with(create_date_start="2024-03-01T00:00:00.000Z")
        assert result.since == "2024-03-01T00:00:00.000Z"
        assert result.shipments_found == 3
        assert result.updated == 1
        assert result.skipped == 1
        assert result.failed == 1
        assert result.errors[0]["message"] == "IQR API error: 500"
        assert result.errors[0]["context"]["order_id"] == "1003"
        iqr_client.end_session.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_session_ends_when_listing_fails(self, service, iqr_client, shipstation_client):
        shipstation_client.list_shipments.side_effect = RuntimeError("ShipStation down")

        with pytest.raises(RuntimeError):
            await service.poll_for_shipments()

        iqr_client.end_session.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_default_lookback(self, service, shipstation_client):
        before = datetime.now(UTC)

        result = await service.poll_for_shipments()

        since = datetime.fromisoformat(result.since.replace("Z", "+00:00"))
        assert 23.9 < (before - since).total_seconds() / 3600 < 24.1
