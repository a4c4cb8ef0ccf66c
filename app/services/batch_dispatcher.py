"""
Batch Dispatcher - delivers transformed orders to ShipStation.

Orders are sent in sequential batches with bounded concurrency inside each
batch and a pause between batches. Every delivery is wrapped in the retry
handler and its outcome is recorded on its own, so one failed order never
cancels its siblings or later batches.
"""

import logging
from typing import Any, Awaitable, Callable, Sequence

from app.api.v1.schemas.shipstation_schemas import ShipStationOrder
from app.api.v1.schemas.sync_schemas import SyncError, SyncResult
from app.core.config import Settings, get_settings
from app.db.shipstation_client import ShipStationClient, get_shipstation_client
from app.utils.error_handler import AppException
from app.utils.parallel import process_in_batches
from app.utils.retry_handler import RetryHandler, create_shipstation_retry_handler

logger = logging.getLogger(__name__)


class BatchDispatcher:
    """
    Sends ShipStation orders in batches and collects per-order results.
    """

    def __init__(
        self,
        shipstation_client: ShipStationClient | None = None,
        retry_handler: RetryHandler | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.shipstation_client = shipstation_client or get_shipstation_client()
        self.retry_handler = retry_handler or create_shipstation_retry_handler(self.settings)

    async def dispatch(
        self,
        orders: Sequence[ShipStationOrder],
        result: SyncResult | None = None,
        deliver: Callable[[ShipStationOrder], Awaitable[Any]] | None = None,
        batch_size: int | None = None,
        concurrency: int | None = None,
        delay_between_batches: float | None = None,
    ) -> SyncResult:
        """
        Deliver every order and record its success or failure.

        Args:
            orders: Transformed orders
            result: Result to accumulate into (a fresh one when None)
            deliver: Delivery coroutine, defaults to ShipStationClient.create_order
            batch_size: Orders per batch (SYNC_BATCH_SIZE)
            concurrency: Deliveries in flight per batch (SYNC_CONCURRENCY)
            delay_between_batches: Seconds between batches (SYNC_BATCH_DELAY_MS)

        Returns:
            SyncResult: Counts and per-order errors
        """
        if result is None:
            result = SyncResult()
        deliver = deliver or self.shipstation_client.create_order

        batch_size = batch_size or self.settings.SYNC_BATCH_SIZE
        concurrency = concurrency or self.settings.SYNC_CONCURRENCY
        if delay_between_batches is None:
            delay_between_batches = self.settings.sync_batch_delay_seconds

        async def deliver_one(order: ShipStationOrder, index: int) -> bool:
            try:
                await self.retry_handler.execute(deliver, order)
            except Exception as e:
                result.orders_failed += 1
                message = e.message if isinstance(e, AppException) else str(e)
                result.errors.append(SyncError(order_number=order.orderNumber, error=message))
                logger.error(
                    f"❌ Failed to sync order {order.orderNumber} to ShipStation: {e}",
                    extra={"order_number": order.orderNumber, "order_key": order.orderKey},
                )
                return False

            result.orders_processed += 1
            logger.debug(
                f"Order {order.orderNumber} synced to ShipStation",
                extra={"order_number": order.orderNumber, "store_id": order.advancedOptions.storeId},
            )
            return True

        logger.info(
            f"📤 Dispatching {len(orders)} orders to ShipStation "
            f"(batch_size={batch_size}, concurrency={concurrency})"
        )

        await process_in_batches(
            orders,
            deliver_one,
            batch_size=batch_size,
            concurrency=concurrency,
            delay_between_batches=delay_between_batches,
        )

        return result
