"""Tests unitarios para SingleFlight."""

import asyncio

import pytest

from app.utils.single_flight import SingleFlight


class TestSingleFlight:
    """Tests para el colapso de llamadas concurrentes."""

    @pytest.mark.asyncio
    async def test_concurrent_calls_share_one_execution(self):
        """N llamadas concurrentes ejecutan la operación una sola vez."""
        calls = 0

        async def operation():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return "token"

        flight = SingleFlight("auth")
        results = await asyncio.gather(*(flight.do(operation) for _ in range(5)))

        assert results == ["token"] * 5
        assert calls == 1
        assert not flight.in_flight

    @pytest.mark.asyncio
    async def test_next_call_after_completion_runs_again(self):
        calls = 0

        async def operation():
            nonlocal calls
            calls += 1
            return calls

        flight = SingleFlight()

        assert await flight.do(operation) == 1
        assert await flight.do(operation) == 2

    @pytest.mark.asyncio
    async def test_error_is_shared_and_slot_released(self):
        """Todos los llamadores reciben el error y la siguiente llamada reintenta."""
        attempts = 0

        async def failing():
            nonlocal attempts
            attempts += 1
            await asyncio.sleep(0.01)
            raise RuntimeError("auth failed")

        flight = SingleFlight()
        results = await asyncio.gather(flight.do(failing), flight.do(failing), return_exceptions=True)

        assert attempts == 1
        assert all(isinstance(r, RuntimeError) for r in results)

        with pytest.raises(RuntimeError):
            await flight.do(failing)
        assert attempts == 2

    @pytest.mark.asyncio
    async def test_wait_blocks_until_flight_finishes_without_raising(self):
        """wait() espera la ejecución en vuelo y no propaga su error."""
        finished = False

        async def failing():
            nonlocal finished
            await asyncio.sleep(0.02)
            finished = True
            raise RuntimeError("auth failed")

        flight = SingleFlight()
        caller = asyncio.create_task(flight.do(failing))
        await asyncio.sleep(0)

        await flight.wait()

        assert finished
        assert not flight.in_flight
        with pytest.raises(RuntimeError):
            await caller

    @pytest.mark.asyncio
    async def test_wait_without_flight_returns_immediately(self):
        await SingleFlight().wait()
