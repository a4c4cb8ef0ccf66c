"""Tests unitarios para el orquestador de sincronización IQR → ShipStation."""

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.api.v1.schemas.shipstation_schemas import ShipStationStore
from app.api.v1.schemas.sync_schemas import SyncRequest
from app.core.activity_tracker import ActivityTracker
from app.core.metrics import PerformanceMonitor
from app.services.batch_dispatcher import BatchDispatcher
from app.services.order_sync_service import OrderSyncService, SyncState
from app.utils.error_handler import (
    IQRAPIException,
    ShipStationAPIException,
    SyncException,
    SyncInProgressException,
)
from app.utils.retry_handler import RetryHandler, RetryPolicy
from tests.factories import build_order


@pytest.fixture
def iqr_client():
    client = MagicMock()
    client.get_orders = AsyncMock(return_value=[])
    client.end_session = AsyncMock()
    return client


@pytest.fixture
def shipstation_client():
    client = MagicMock()
    client.get_store_by_name = AsyncMock(return_value=ShipStationStore(storeId=22, storeName="DPC - Agent Quickbooks"))
    client.create_order = AsyncMock(return_value={"orderId": 1})
    return client


@pytest.fixture
def tracker():
    return ActivityTracker(max_records=20)


@pytest.fixture
def service(settings, iqr_client, shipstation_client, tracker):
    dispatcher = BatchDispatcher(
        shipstation_client=shipstation_client,
        retry_handler=RetryHandler("test", RetryPolicy(max_retries=1, initial_delay=0, max_delay=0)),
        settings=settings,
    )
    return OrderSyncService(
        iqr_client=iqr_client,
        shipstation_client=shipstation_client,
        dispatcher=dispatcher,
        activity_tracker=tracker,
        performance_monitor=PerformanceMonitor(),
        settings=settings,
    )


class TestOrderSyncService:
    """Tests para una corrida completa de sincronización."""

    @pytest.mark.asyncio
    async def test_syncs_matching_orders(self, service, iqr_client, shipstation_client, tracker):
        iqr_client.get_orders.return_value = [
            build_order(1001),
            build_order(1002, status="Closed"),
            build_order(1003, userdefined5="Web Store"),
            build_order(1004, status="Partial"),
        ]

        result = await service.sync_orders()

        assert result.success is True
        assert result.orders_processed == 2
        assert result.orders_failed == 0
        sent = [call.args[0] for call in shipstation_client.create_order.await_args_list]
        assert sorted(o.orderKey for o in sent) == ["IQR-1001", "IQR-1004"]
        assert all(o.advancedOptions.storeId == 22 for o in sent)
        iqr_client.end_session.assert_awaited_once()
        assert tracker.get_recent()[0].message == "Synced 2 orders"
        assert service.state == SyncState.IDLE

    @pytest.mark.asyncio
    async def test_no_orders_after_filtering(self, service, iqr_client, shipstation_client, tracker):
        iqr_client.get_orders.return_value = [build_order(1, status="Closed")]

        result = await service.sync_orders()

        assert result.orders_processed == 0
        shipstation_client.create_order.assert_not_awaited()
        assert tracker.get_recent()[0].message == "No new orders to sync"

    @pytest.mark.asyncio
    async def test_delivery_failures_are_collected(self, service, iqr_client, shipstation_client):
        iqr_client.get_orders.return_value = [build_order(1001), build_order(1002)]

        async def create_order(order):
            if order.orderNumber == "1002":
                raise ShipStationAPIException("invalid address", api_response_code=400)
            return {"orderId": 1}

        shipstation_client.create_order.side_effect = create_order

        result = await service.sync_orders()

        assert result.success is True
        assert result.orders_processed == 1
        assert result.orders_failed == 1
        assert result.errors[0].order_number == "1002"
        assert result.errors[0].error == "invalid address"

    @pytest.mark.asyncio
    async def test_store_lookup_failure_degrades_to_no_store(self, service, iqr_client, shipstation_client):
        shipstation_client.get_store_by_name.side_effect = ShipStationAPIException("unauthorized", api_response_code=401)
        iqr_client.get_orders.return_value = [build_order(1001)]

        result = await service.sync_orders()

        assert result.orders_processed == 1
        sent = shipstation_client.create_order.await_args.args[0]
        assert sent.advancedOptions.storeId is None

    @pytest.mark.asyncio
    async def test_unknown_store_degrades_to_no_store(self, service, iqr_client, shipstation_client):
        shipstation_client.get_store_by_name.return_value = None
        iqr_client.get_orders.return_value = [build_order(1001)]

        await service.sync_orders()

        assert shipstation_client.create_order.await_args.args[0].advancedOptions.storeId is None

    @pytest.mark.asyncio
    async def test_fetch_failure_fails_run_and_ends_session(self, service, iqr_client, tracker):
        """Un error al traer órdenes termina la corrida, pero la sesión IQR se cierra igual."""
        iqr_client.get_orders.side_effect = IQRAPIException("IQR unreachable")

        with pytest.raises(IQRAPIException):
            await service.sync_orders()

        iqr_client.end_session.assert_awaited_once()
        assert service.state == SyncState.IDLE
        assert service.stats["failed_runs"] == 1
        assert "IQR unreachable" in service.stats["last_error"]
        assert tracker.get_recent()[0].type == "error"

    @pytest.mark.asyncio
    async def test_rejects_overlapping_runs(self, service, iqr_client):
        """Una segunda corrida mientras la primera está en vuelo se rechaza."""
        release = asyncio.Event()

        async def slow_fetch():
            await release.wait()
            return []

        iqr_client.get_orders.side_effect = slow_fetch

        first = asyncio.create_task(service.sync_orders())
        for _ in range(5):
            await asyncio.sleep(0)
        assert service.is_running
        assert service.state == SyncState.FETCHING

        with pytest.raises(SyncInProgressException):
            await service.sync_orders()

        release.set()
        result = await first

        assert result.success is True
        assert not service.is_running
        assert iqr_client.get_orders.await_count == 1

    @pytest.mark.asyncio
    async def test_request_overrides_status_and_days_back(self, service, iqr_client, shipstation_client):
        now = datetime.now(UTC)
        iqr_client.get_orders.return_value = [
            build_order(1, status="Back Order", saledate=(now - timedelta(days=5)).isoformat()),
            build_order(2, status="Open", saledate=(now - timedelta(days=5)).isoformat()),
            build_order(3, status="Back Order", saledate=(now - timedelta(days=20)).isoformat()),
        ]

        result = await service.sync_orders(SyncRequest(order_status="Back Order", days_back=7))

        assert result.orders_processed == 1
        assert shipstation_client.create_order.await_args.args[0].orderKey == "IQR-1"

    @pytest.mark.asyncio
    async def test_request_date_window(self, service, iqr_client, shipstation_client):
        iqr_client.get_orders.return_value = [
            build_order(1, saledate="2024-01-15T00:00:00Z"),
            build_order(2, saledate="2024-02-15T00:00:00Z"),
        ]

        await service.sync_orders(
            SyncRequest(from_date=datetime(2024, 1, 1, tzinfo=UTC), to_date=datetime(2024, 1, 31, tzinfo=UTC))
        )

        assert shipstation_client.create_order.await_count == 1
        assert shipstation_client.create_order.await_args.args[0].orderKey == "IQR-1"

    @pytest.mark.asyncio
    async def test_status_reports_last_result(self, service, iqr_client):
        iqr_client.get_orders.return_value = [build_order(1001)]

        await service.sync_orders()
        status = service.get_status()

        assert status["state"] == "idle"
        assert status["running"] is False
        assert status["total_runs"] == 1
        assert status["last_result"]["ordersProcessed"] == 1

    @pytest.mark.asyncio
    async def test_unexpected_errors_are_wrapped_with_failed_step(self, service, iqr_client, tracker):
        """Errores que no son de la aplicación se reportan como SyncException con el paso fallido."""
        iqr_client.get_orders.return_value = [build_order(1001)]
        service.dispatcher.dispatch = AsyncMock(side_effect=RuntimeError("boom"))

        with pytest.raises(SyncException) as exc_info:
            await service.sync_orders()

        assert exc_info.value.operation == "dispatching"
        assert exc_info.value.status_code == 500
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        iqr_client.end_session.assert_awaited_once()
        assert tracker.get_recent()[0].message == "boom"
