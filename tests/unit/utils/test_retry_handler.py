"""Tests unitarios para la política de reintentos con backoff exponencial."""

from unittest.mock import AsyncMock, patch

import pytest

from app.utils.error_handler import IQRAuthenticationException, ShipStationAPIException
from app.utils.retry_handler import (
    RetryHandler,
    RetryPolicy,
    create_shipstation_retry_handler,
    retry_with_backoff,
)


class TestRetryPolicy:
    """Tests para el cálculo de delays y la decisión de reintentar."""

    def test_base_delay_doubles_and_caps(self):
        """El delay base se duplica en cada intento hasta el máximo."""
        policy = RetryPolicy(initial_delay=1.0, max_delay=10.0)

        assert [policy.base_delay(n) for n in range(5)] == [1.0, 2.0, 4.0, 8.0, 10.0]

    def test_jitter_is_positive_and_bounded(self):
        """El jitter agrega entre 0% y 30% del delay base."""
        policy = RetryPolicy(initial_delay=2.0, max_delay=10.0)

        for attempt in range(4):
            base = policy.base_delay(attempt)
            for _ in range(20):
                delay = policy.calculate_delay(attempt)
                assert base <= delay <= base * 1.3

    def test_does_not_retry_past_max_retries(self):
        policy = RetryPolicy(max_retries=2)

        assert policy.should_retry(RuntimeError("boom"), 0)
        assert policy.should_retry(RuntimeError("boom"), 1)
        assert not policy.should_retry(RuntimeError("boom"), 2)

    def test_app_exceptions_declare_retryability(self):
        """Un 4xx de ShipStation no se reintenta; un 5xx sí."""
        policy = RetryPolicy(max_retries=3)

        assert not policy.should_retry(ShipStationAPIException("bad", api_response_code=400), 0)
        assert policy.should_retry(ShipStationAPIException("down", api_response_code=503), 0)
        assert not policy.should_retry(IQRAuthenticationException("denied"), 0)

    def test_stop_on_wins_over_retry_on(self):
        policy = RetryPolicy(max_retries=3, stop_on=[KeyError])

        assert not policy.should_retry(KeyError("x"), 0)
        assert policy.should_retry(ValueError("x"), 0)


class TestRetryWithBackoff:
    """Tests para retry_with_backoff."""

    @pytest.mark.asyncio
    async def test_returns_after_transient_failures(self):
        """Debe reintentar hasta que la operación tenga éxito."""
        fn = AsyncMock(side_effect=[RuntimeError("1"), RuntimeError("2"), "ok"])

        result = await retry_with_backoff(fn, max_retries=3, initial_delay=0, max_delay=0)

        assert result == "ok"
        assert fn.await_count == 3

    @pytest.mark.asyncio
    async def test_reraises_last_error_when_exhausted(self):
        """Al agotar los reintentos se re-lanza el último error."""
        fn = AsyncMock(side_effect=[RuntimeError("first"), RuntimeError("second"), RuntimeError("last")])

        with pytest.raises(RuntimeError, match="last"):
            await retry_with_backoff(fn, max_retries=2, initial_delay=0, max_delay=0)

        assert fn.await_count == 3

    @pytest.mark.asyncio
    async def test_sleeps_with_exponential_delays(self):
        """Los delays siguen initial * 2^n (sin jitter)."""
        fn = AsyncMock(side_effect=[RuntimeError(), RuntimeError(), RuntimeError(), "ok"])
        policy = RetryPolicy(max_retries=3, initial_delay=1.0, max_delay=3.0, jitter_ratio=0)

        with patch("app.utils.retry_handler.asyncio.sleep", new=AsyncMock()) as sleep:
            await retry_with_backoff(fn, policy=policy)

        assert [call.args[0] for call in sleep.await_args_list] == [1.0, 2.0, 3.0]

    @pytest.mark.asyncio
    async def test_non_retryable_error_fails_immediately(self):
        fn = AsyncMock(side_effect=ShipStationAPIException("invalid order", api_response_code=400))

        with pytest.raises(ShipStationAPIException):
            await retry_with_backoff(fn, max_retries=3, initial_delay=0)

        assert fn.await_count == 1


class TestRetryHandler:
    """Tests para RetryHandler y sus métricas."""

    @pytest.mark.asyncio
    async def test_execute_passes_arguments_and_tracks_metrics(self):
        handler = RetryHandler("test", RetryPolicy(max_retries=1, initial_delay=0, max_delay=0))
        fn = AsyncMock(return_value={"orderId": 1})

        result = await handler.execute(fn, "order", flag=True)

        assert result == {"orderId": 1}
        fn.assert_awaited_once_with("order", flag=True)
        metrics = handler.get_metrics()
        assert metrics["total_calls"] == 1
        assert metrics["total_successes"] == 1
        assert metrics["success_rate"] == 100

    @pytest.mark.asyncio
    async def test_execute_counts_failures(self):
        handler = RetryHandler("test", RetryPolicy(max_retries=1, initial_delay=0, max_delay=0))
        fn = AsyncMock(side_effect=RuntimeError("boom"))

        with pytest.raises(RuntimeError):
            await handler.execute(fn)

        assert fn.await_count == 2
        assert handler.get_metrics()["total_failures"] == 1

        handler.reset_metrics()
        assert handler.get_metrics()["total_calls"] == 0

    def test_shipstation_handler_uses_settings(self, make_settings):
        settings = make_settings(SYNC_MAX_RETRIES=5, RETRY_INITIAL_DELAY_SECONDS=0.5, RETRY_MAX_DELAY_SECONDS=4.0)

        handler = create_shipstation_retry_handler(settings)

        assert handler.retry_policy.max_retries == 5
        assert handler.retry_policy.max_attempts == 6
        assert handler.retry_policy.initial_delay == 0.5
        assert handler.retry_policy.max_delay == 4.0
