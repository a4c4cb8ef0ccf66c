"""
Order Sync Service - Orchestrator for IQR → ShipStation order sync.

Architecture:
- Resolve: look up the configured ShipStation store (degrades to no store)
- Fetch: IQRClient walks the paginated sales-order listing
- Filter: status, then date window, then channel tag
- Transform: one IQROrder → one ShipStationOrder with the idempotency key
- Dispatch: BatchDispatcher upserts in bounded batches
- Cleanup: the IQR session is always ended, whichever step failed

Only one run executes at a time; a second trigger while a run is in
flight is rejected with SyncInProgressException.
"""

import asyncio
import logging
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from app.api.v1.schemas.shipstation_schemas import ShipStationOrder
from app.api.v1.schemas.sync_schemas import SyncError, SyncRequest, SyncResult
from app.core.activity_tracker import ActivityTracker, get_activity_tracker
from app.core.config import Settings, get_settings
from app.core.logging_config import log_sync_operation
from app.core.metrics import PerformanceMonitor, get_performance_monitor
from app.db.iqr_client import IQRClient, get_iqr_client
from app.db.shipstation_client import ShipStationClient, get_shipstation_client
from app.services.batch_dispatcher import BatchDispatcher
from app.services.order_transformer import transform_order
from app.utils.error_handler import AppException, SyncException, SyncInProgressException
from app.utils.order_filters import apply_filters

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    """Steps of a sync run, in execution order."""

    IDLE = "idle"
    RESOLVING_STORE = "resolving_store"
    FETCHING = "fetching"
    FILTERING = "filtering"
    TRANSFORMING = "transforming"
    DISPATCHING = "dispatching"
    ENDING_SESSION = "ending_session"
    COMPLETING = "completing"


class OrderSyncService:
    """
    Orchestrator service for syncing IQR sales orders into ShipStation.

    Steps run sequentially and are not resumable: a failure at any step
    ends the IQR session and completes the run as failed.
    """

    def __init__(
        self,
        iqr_client: IQRClient | None = None,
        shipstation_client: ShipStationClient | None = None,
        dispatcher: BatchDispatcher | None = None,
        activity_tracker: ActivityTracker | None = None,
        performance_monitor: PerformanceMonitor | None = None,
        settings: Settings | None = None,
    ):
        """
        Initialize the sync service.

        Args:
            iqr_client: IQR client (shared instance if None)
            shipstation_client: ShipStation client (shared instance if None)
            dispatcher: Batch dispatcher (built over shipstation_client if None)
            activity_tracker: Activity history (shared instance if None)
            performance_monitor: Timing collector (shared instance if None)
            settings: Settings (cached settings if None)
        """
        self.settings = settings or get_settings()
        self.iqr_client = iqr_client or get_iqr_client()
        self.shipstation_client = shipstation_client or get_shipstation_client()
        self.dispatcher = dispatcher or BatchDispatcher(self.shipstation_client, settings=self.settings)
        self.activity_tracker = activity_tracker or get_activity_tracker()
        self.performance_monitor = performance_monitor or get_performance_monitor()

        self.state = SyncState.IDLE
        self._failed_step = SyncState.IDLE
        self._lock = asyncio.Lock()

        self.stats = {
            "total_runs": 0,
            "failed_runs": 0,
            "last_run_time": None,
            "last_result": None,
            "last_error": None,
        }

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def _set_state(self, state: SyncState) -> None:
        logger.debug(f"Sync state: {self.state.value} → {state.value}")
        self.state = state

    async def sync_orders(self, options: SyncRequest | None = None) -> SyncResult:
        """
        Run one full sync.

        Per-order delivery failures are collected in the result and do not
        fail the run; `success` reflects orchestration completion.

        Args:
            options: Optional date window, status and days-back overrides

        Returns:
            SyncResult: Counts and per-order errors

        Raises:
            SyncInProgressException: If another run is in flight
            AppException: If fetching from IQR fails at the orchestration level
            SyncException: If an unexpected error aborts the run (wraps it with the failed step)
        """
        if self._lock.locked():
            raise SyncInProgressException()

        async with self._lock:
            try:
                return await self._run(options or SyncRequest())
            finally:
                self._set_state(SyncState.IDLE)

    async def _run(self, options: SyncRequest) -> SyncResult:
        result = SyncResult()
        monitor = self.performance_monitor

        self.stats["total_runs"] += 1
        self.stats["last_run_time"] = datetime.now(UTC).isoformat()

        log_sync_operation("start", "orders", options=options.model_dump(mode="json", exclude_none=True))
        monitor.start("order-sync-full")

        try:
            try:
                store_id = await self._resolve_store()

                self._set_state(SyncState.FETCHING)
                monitor.start("fetch-orders")
                orders = await self.iqr_client.get_orders()
                monitor.end("fetch-orders", {"count": len(orders)})
                logger.info(f"📥 Orders fetched from IQR: {len(orders)}")

                self._set_state(SyncState.FILTERING)
                statuses = [options.order_status] if options.order_status else self.settings.sync_order_statuses
                orders = apply_filters(
                    orders,
                    statuses=statuses,
                    days_back=options.days_back or self.settings.SYNC_DAYS_BACK,
                    channel=self.settings.SYNC_AGENT_CHANNEL,
                    from_date=options.from_date,
                    to_date=options.to_date,
                )

                if not orders:
                    logger.info("📭 No orders to sync after filtering")
                else:
                    self._set_state(SyncState.TRANSFORMING)
                    transformed = self._transform_all(orders, store_id, result)

                    self._set_state(SyncState.DISPATCHING)
                    monitor.start("process-orders")
                    await self.dispatcher.dispatch(transformed, result)
                    monitor.end(
                        "process-orders",
                        {"processed": result.orders_processed, "failed": result.orders_failed},
                    )
            finally:
                # Step reached before cleanup, reported if the run failed
                self._failed_step = self.state
                self._set_state(SyncState.ENDING_SESSION)
                await self.iqr_client.end_session()

        except Exception as e:
            failed_step = self._failed_step
            self._set_state(SyncState.COMPLETING)
            result.success = False
            self.stats["failed_runs"] += 1
            self.stats["last_error"] = str(e)

            log_sync_operation("error", "orders", error=str(e), step=failed_step.value)
            monitor.end("order-sync-full", {"success": False, "error": str(e)})
            self.activity_tracker.record_error(str(e) or "Unknown sync error")

            if isinstance(e, AppException):
                raise
            raise SyncException(
                f"Order sync failed while {failed_step.value}: {e}",
                operation=failed_step.value,
                sync_stats={"processed": result.orders_processed, "failed": result.orders_failed},
            ) from e

        self._set_state(SyncState.COMPLETING)
        duration = monitor.end(
            "order-sync-full",
            {"processed": result.orders_processed, "failed": result.orders_failed, "success": True},
        )

        log_sync_operation(
            "complete",
            "orders",
            processed=result.orders_processed,
            failed=result.orders_failed,
            duration_ms=round(duration, 2),
        )

        self.activity_tracker.record_sync(
            success=result.success,
            orders_processed=result.orders_processed,
            orders_failed=result.orders_failed,
            duration=duration,
            message=(
                f"Synced {result.orders_processed} orders"
                if result.orders_processed > 0
                else "No new orders to sync"
            ),
        )

        self.stats["last_result"] = result.model_dump(by_alias=True)
        logger.info(f"📊 Sync performance metrics: {monitor.get_all_stats()}")
        return result

    async def _resolve_store(self) -> int | None:
        """
        Look up the configured ShipStation store id.

        Failures are logged and the run continues without a store id.
        """
        self._set_state(SyncState.RESOLVING_STORE)
        store_name = self.settings.SHIPSTATION_STORE_NAME
        if not store_name:
            return None

        try:
            store = await self.shipstation_client.get_store_by_name(store_name)
        except Exception as e:
            logger.error(f"❌ Failed to fetch ShipStation store: {e}")
            logger.warning("Continuing without store ID - orders may not appear in the correct store")
            return None

        if store is None:
            logger.warning(
                f'⚠️ Store "{store_name}" not found in ShipStation. Orders will be created without a specific store.'
            )
            return None

        logger.info(f"Using ShipStation store: {store.storeName} (ID: {store.storeId})")
        return store.storeId

    def _transform_all(self, orders, store_id: int | None, result: SyncResult) -> list[ShipStationOrder]:
        transformed = []
        for order in orders:
            try:
                transformed.append(
                    transform_order(
                        order,
                        store_id=store_id,
                        order_key_prefix=self.settings.ORDER_KEY_PREFIX,
                        default_country=self.settings.DEFAULT_COUNTRY_CODE,
                    )
                )
            except ValueError as e:
                # includes pydantic ValidationError
                result.orders_failed += 1
                result.errors.append(SyncError(order_number=order.order_number, error=str(e)))
                logger.error(f"❌ Failed to transform IQR order {order.order_number}: {e}")
        return transformed

    def get_status(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "running": self.is_running,
            **self.stats,
        }


# Singleton instance for global use
_order_sync_service: OrderSyncService | None = None


def get_order_sync_service() -> OrderSyncService:
    """
    Get or create the shared order sync service.

    Returns:
        OrderSyncService: Shared service instance
    """
    global _order_sync_service
    if _order_sync_service is None:
        _order_sync_service = OrderSyncService()
    return _order_sync_service
