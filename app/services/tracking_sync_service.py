"""
Tracking Sync Service - writes ShipStation tracking back to IQR.

Two entry points feed the same writeback:
- process_shipment_webhook: a ShipStation shipment event pushed to us
- poll_for_shipments: a pull of recent shipments, for deployments that
  cannot receive webhooks

Both recover the IQR order id from the idempotency key written by the
order transformer and always end the IQR session when done.
"""

import hashlib
import hmac
import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from app.api.v1.schemas.iqr_schemas import IQRTrackingUpdate
from app.api.v1.schemas.sync_schemas import (
    ShipStationWebhookPayload,
    TrackingPollResult,
    WebhookResult,
)
from app.core.activity_tracker import ActivityTracker, get_activity_tracker
from app.core.config import Settings, get_settings
from app.core.logging_config import log_sync_operation, log_webhook_received
from app.db.iqr_client import IQRClient, get_iqr_client
from app.db.shipstation_client import ShipStationClient, get_shipstation_client
from app.services.order_transformer import extract_iqr_order_id
from app.utils.date_utils import to_iso
from app.utils.error_handler import AppException, ErrorAggregator

logger = logging.getLogger(__name__)

SHIPMENT_EVENT_TYPES = frozenset({"SHIP_NOTIFY", "FULFILLMENT_SHIPPED", "shipment", "fulfillment_shipped"})


def verify_hmac_signature(raw_body: bytes | str, signature: str | None, secret: str | None) -> bool:
    """
    Check a hex HMAC-SHA256 signature computed over the raw request body.

    No configured secret means validation is skipped and every request is
    trusted. With a secret configured, a missing signature is rejected.
    """
    if not secret:
        logger.warning("No webhook secret configured, skipping signature validation")
        return True

    if not signature:
        logger.warning("Missing webhook signature")
        return False

    body = raw_body.encode("utf-8") if isinstance(raw_body, str) else raw_body
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()

    return hmac.compare_digest(expected.encode("utf-8"), signature.strip().encode("utf-8"))


def is_shipment_event(resource_type: str | None) -> bool:
    return (resource_type or "") in SHIPMENT_EVENT_TYPES


class TrackingSyncService:
    """
    Pushes tracking numbers from ShipStation shipments into IQR orders.
    """

    def __init__(
        self,
        iqr_client: IQRClient | None = None,
        shipstation_client: ShipStationClient | None = None,
        activity_tracker: ActivityTracker | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.iqr_client = iqr_client or get_iqr_client()
        self.shipstation_client = shipstation_client or get_shipstation_client()
        self.activity_tracker = activity_tracker or get_activity_tracker()

        self.stats = {
            "webhooks_received": 0,
            "webhooks_ignored": 0,
            "tracking_updates": 0,
            "tracking_failures": 0,
        }

    def validate_webhook_signature(self, raw_body: bytes | str, signature: str | None) -> bool:
        """Validate a webhook against SHIPSTATION_WEBHOOK_SECRET."""
        return verify_hmac_signature(raw_body, signature, self.settings.SHIPSTATION_WEBHOOK_SECRET)

    def _extract_order_id(self, order_number: str | None, custom_field1: str | None, order_key: str | None):
        return extract_iqr_order_id(
            order_number,
            custom_field1=custom_field1,
            order_key=order_key,
            prefix=self.settings.ORDER_KEY_PREFIX,
        )

    async def handle_webhook(self, payload: ShipStationWebhookPayload) -> WebhookResult:
        """
        Route a webhook by resource type.

        Only shipment events are processed; anything else gets a benign
        "ignoring" answer.
        """
        self.stats["webhooks_received"] += 1
        log_webhook_received(payload.resource_type, resource_url=payload.resource_url)

        if not is_shipment_event(payload.resource_type):
            self.stats["webhooks_ignored"] += 1
            logger.debug(f"Ignoring non-shipment webhook: {payload.resource_type}")
            return WebhookResult(success=True, message=f"Ignoring event type: {payload.resource_type}")

        return await self.process_shipment_webhook(payload)

    async def process_shipment_webhook(self, payload: ShipStationWebhookPayload) -> WebhookResult:
        """
        Write the tracking of one shipment event back to IQR.

        Returns:
            WebhookResult: success=False when the payload has no shipment data
            or the IQR update failed; success=True for orders that are not ours
        """
        logger.info(
            "📦 Processing shipment webhook",
            extra={"resource_type": payload.resource_type, "resource_url": payload.resource_url},
        )

        data = payload.data
        if data is None:
            # Fetching the resource by URL is not supported
            logger.warning(
                "Resource data not included in webhook",
                extra={"resource_url": payload.resource_url},
            )
            return WebhookResult(success=False, message="Resource data not included in webhook")

        iqr_order_id = self._extract_order_id(data.order_number, data.custom_field1, data.order_key)
        if not iqr_order_id:
            logger.debug(f"Order {data.order_number} is not an IQR order, skipping")
            return WebhookResult(success=True, message="Not an IQR order")

        try:
            await self.iqr_client.update_order_tracking(
                IQRTrackingUpdate(
                    order_id=iqr_order_id,
                    tracking_number=data.tracking_number or "",
                    carrier=data.carrier_code or "",
                    ship_date=data.ship_date,
                    shipping_method=data.service_code,
                )
            )
        except Exception as e:
            message = e.message if isinstance(e, AppException) else str(e)
            self.stats["tracking_failures"] += 1
            logger.error(
                f"❌ Failed to update tracking in IQR for order {iqr_order_id}: {message}",
                extra={"order_id": iqr_order_id, "order_number": data.order_number},
            )
            self.activity_tracker.record_webhook(success=False, message=message)
            return WebhookResult(success=False, message=message)
        finally:
            await self.iqr_client.end_session()

        self.stats["tracking_updates"] += 1
        logger.info(
            f"✅ Tracking updated in IQR for order {iqr_order_id}",
            extra={"order_id": iqr_order_id, "tracking_number": data.tracking_number, "carrier": data.carrier_code},
        )
        message = f"Updated tracking for order {iqr_order_id}"
        self.activity_tracker.record_webhook(success=True, message=message)
        return WebhookResult(success=True, message=message)

    async def poll_for_shipments(self, since: datetime | None = None) -> TrackingPollResult:
        """
        Pull shipments created since `since` and write their tracking to IQR.

        Args:
            since: Lower bound on shipment creation (default now - TRACKING_POLL_LOOKBACK_HOURS)

        Returns:
            TrackingPollResult: Counts plus the per-shipment failures
        """
        since = since or datetime.now(UTC) - timedelta(hours=self.settings.TRACKING_POLL_LOOKBACK_HOURS)
        since_iso = to_iso(since)
        result = TrackingPollResult(since=since_iso)
        aggregator = ErrorAggregator()

        log_sync_operation("start", "tracking", since=since_iso)

        try:
            shipments = await self.shipstation_client.list_shipments(create_date_start=since_iso)
            result.shipments_found = len(shipments)
            logger.info(f"📦 Found {len(shipments)} shipments since {since_iso}")

            for shipment in shipments:
                custom_field1 = shipment.advancedOptions.customField1 if shipment.advancedOptions else None
                iqr_order_id = self._extract_order_id(shipment.orderNumber, custom_field1, shipment.orderKey)
                if not iqr_order_id:
                    result.skipped += 1
                    continue

                aggregator.increment_processed()
                try:
                    await self.iqr_client.update_order_tracking(
                        IQRTrackingUpdate(
                            order_id=iqr_order_id,
                            tracking_number=shipment.trackingNumber or "",
                            carrier=shipment.carrierCode or "",
                            ship_date=shipment.shipDate,
                            shipping_method=shipment.serviceCode,
                        )
                    )
                except Exception as e:
                    result.failed += 1
                    self.stats["tracking_failures"] += 1
                    aggregator.add_error(e, {"order_id": iqr_order_id, "order_number": shipment.orderNumber})
                    continue

                result.updated += 1
                self.stats["tracking_updates"] += 1
        finally:
            await self.iqr_client.end_session()

        result.errors = aggregator.get_summary()["errors"]
        log_sync_operation(
            "complete",
            "tracking",
            shipments_found=result.shipments_found,
            updated=result.updated,
            failed=result.failed,
        )
        return result

    def get_statistics(self) -> dict[str, Any]:
        return dict(self.stats)


# Singleton instance for global use
_tracking_sync_service: TrackingSyncService | None = None


def get_tracking_sync_service() -> TrackingSyncService:
    """
    Get or create the shared tracking sync service.

    Returns:
        TrackingSyncService: Shared service instance
    """
    global _tracking_sync_service
    if _tracking_sync_service is None:
        _tracking_sync_service = TrackingSyncService()
    return _tracking_sync_service
