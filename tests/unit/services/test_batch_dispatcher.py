"""Tests unitarios para el despacho de órdenes a ShipStation en lotes."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.api.v1.schemas.sync_schemas import SyncResult
from app.services.batch_dispatcher import BatchDispatcher
from app.services.order_transformer import transform_order
from app.utils import parallel
from app.utils.error_handler import ShipStationAPIException
from app.utils.retry_handler import RetryHandler, RetryPolicy
from tests.factories import build_order


def make_orders(count: int):
    return [transform_order(build_order(1000 + i)) for i in range(count)]


def make_dispatcher(settings, max_retries: int = 3) -> BatchDispatcher:
    retry_handler = RetryHandler("test", RetryPolicy(max_retries=max_retries, initial_delay=0, max_delay=0))
    return BatchDispatcher(shipstation_client=MagicMock(), retry_handler=retry_handler, settings=settings)


class TestBatchDispatcher:
    """Tests para BatchDispatcher.dispatch."""

    @pytest.mark.asyncio
    async def test_partial_failure_does_not_stop_siblings(self, settings):
        """La orden #2 de 5 falla; las otras 4 se entregan."""
        orders = make_orders(5)
        failing_key = orders[1].orderKey

        async def deliver(order):
            if order.orderKey == failing_key:
                raise ShipStationAPIException("ShipStation API error: 400 - bad address", api_response_code=400)
            return {"orderId": 1}

        result = await make_dispatcher(settings).dispatch(orders, deliver=deliver)

        assert result.orders_processed == 4
        assert result.orders_failed == 1
        assert result.errors[0].order_number == "1001"
        assert result.errors[0].error == "ShipStation API error: 400 - bad address"

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self, settings):
        deliver = AsyncMock(side_effect=[ShipStationAPIException("timeout"), {"orderId": 1}])

        result = await make_dispatcher(settings).dispatch(make_orders(1), deliver=deliver)

        assert result.orders_processed == 1
        assert result.orders_failed == 0
        assert deliver.await_count == 2

    @pytest.mark.asyncio
    async def test_exhausted_retries_record_failure(self, settings):
        deliver = AsyncMock(side_effect=ShipStationAPIException("ShipStation API error: 503", api_response_code=503))

        result = await make_dispatcher(settings, max_retries=2).dispatch(make_orders(1), deliver=deliver)

        assert deliver.await_count == 3
        assert result.orders_failed == 1
        assert result.errors[0].error == "ShipStation API error: 503"

    @pytest.mark.asyncio
    async def test_bounded_concurrency_across_batches(self, settings):
        """23 órdenes, lotes de 10, concurrencia 3."""
        in_flight = 0
        max_in_flight = 0
        delivered = []

        async def deliver(order):
            nonlocal in_flight, max_in_flight
            in_flight += 1
            max_in_flight = max(max_in_flight, in_flight)
            await asyncio.sleep(0.005)
            in_flight -= 1
            delivered.append(order.orderKey)

        batch_sizes = []
        run_batch = parallel.process_in_parallel

        async def record_batch(batch, processor, concurrency):
            batch_sizes.append(len(batch))
            return await run_batch(batch, processor, concurrency)

        with patch("app.utils.parallel.process_in_parallel", new=record_batch):
            result = await make_dispatcher(settings).dispatch(
                make_orders(23), deliver=deliver, batch_size=10, concurrency=3, delay_between_batches=0
            )

        assert batch_sizes == [10, 10, 3]
        assert result.orders_processed == 23
        assert max_in_flight <= 3
        assert len(set(delivered)) == 23

    @pytest.mark.asyncio
    async def test_accumulates_into_existing_result(self, settings):
        result = SyncResult(orders_failed=1)

        await make_dispatcher(settings).dispatch(make_orders(2), result=result, deliver=AsyncMock())

        assert result.orders_processed == 2
        assert result.orders_failed == 1

    @pytest.mark.asyncio
    async def test_defaults_to_shipstation_create_order(self, settings):
        client = MagicMock()
        client.create_order = AsyncMock(return_value={"orderId": 1})
        dispatcher = BatchDispatcher(shipstation_client=client, settings=settings)
        orders = make_orders(2)

        await dispatcher.dispatch(orders)

        assert client.create_order.await_count == 2
        client.create_order.assert_any_await(orders[0])

    @pytest.mark.asyncio
    async def test_empty_input(self, settings):
        deliver = AsyncMock()

        result = await make_dispatcher(settings).dispatch([], deliver=deliver)

        assert result.orders_processed == 0
        deliver.assert_not_awaited()
