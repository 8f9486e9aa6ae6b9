"""Unit tests for per-tool circuit breakers."""

import asyncio

import pytest

from voyageflow.core.errors import CircuitOpenError
from voyageflow.core.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitState,
)


class TestCircuitBreaker:
    """Tests for the CLOSED/OPEN/HALF_OPEN state machine."""

    @pytest.fixture(autouse=True)
    def _breaker(self, clock):
        """Create a breaker driven by the fake clock."""
        self.clock = clock
        self.breaker = CircuitBreaker(
            "calculate_route",
            failure_threshold=5,
            rolling_window_seconds=300,
            reset_timeout_seconds=30,
            clock=clock,
        )

    def _fail(self, times):
        for _ in range(times):
            self.breaker.record_failure()

    def test_opens_at_threshold(self):
        """Test that the circuit opens on the fifth failure, not before."""
        self._fail(4)
        assert self.breaker.state == CircuitState.CLOSED
        assert self.breaker.allow_request() is True

        self._fail(1)
        assert self.breaker.state == CircuitState.OPEN
        assert self.breaker.allow_request() is False
        assert self.breaker.retry_after() == pytest.approx(30)

    def test_half_open_admits_single_trial(self):
        """Test that only one call passes once the cool-down has elapsed."""
        self._fail(5)
        self.clock.advance(29)
        assert self.breaker.state == CircuitState.OPEN

        self.clock.advance(1)
        assert self.breaker.state == CircuitState.HALF_OPEN
        assert self.breaker.allow_request() is True
        assert self.breaker.allow_request() is False

    def test_trial_success_closes(self):
        """Test that a successful trial closes the circuit and clears failures."""
        self._fail(5)
        self.clock.advance(30)
        assert self.breaker.allow_request() is True

        self.breaker.record_success()
        assert self.breaker.state == CircuitState.CLOSED
        assert self.breaker.failures == 0

    def test_trial_failure_reopens(self):
        """Test that a failed trial restarts the cool-down."""
        self._fail(5)
        self.clock.advance(30)
        assert self.breaker.allow_request() is True

        self.breaker.record_failure()
        assert self.breaker.state == CircuitState.OPEN
        assert self.breaker.retry_after() == pytest.approx(30)

    def test_released_trial_can_be_retaken(self):
        """Test that a cancelled trial gives the slot back."""
        self._fail(5)
        self.clock.advance(30)
        assert self.breaker.allow_request() is True
        self.breaker.release_trial()
        assert self.breaker.allow_request() is True

    def test_old_failures_leave_the_window(self):
        """Test that failures older than the rolling window stop counting."""
        self._fail(1)
        self.clock.advance(301)
        self._fail(4)

        assert self.breaker.failures == 4
        assert self.breaker.state == CircuitState.CLOSED

    def test_snapshot(self):
        """Test the exported record of an open breaker."""
        self._fail(5)
        record = self.breaker.snapshot()

        assert record.tool_name == "calculate_route"
        assert record.state == CircuitState.OPEN
        assert record.failures == 5
        assert record.last_failure_at is not None
        assert record.retry_after_seconds == pytest.approx(30)


class TestGuardedCall:
    """Tests for running coroutines through a breaker."""

    def setup_method(self):
        """Create a breaker that opens after two failures."""
        self.calls = 0
        self.breaker = CircuitBreaker("get_fuel_prices", failure_threshold=2, reset_timeout_seconds=30)

    async def _failing(self, args):
        self.calls += 1
        raise ConnectionError("price service unreachable")

    @pytest.mark.asyncio
    async def test_success_passes_result_through(self):
        """Test that a healthy call returns its result."""

        async def ok(args):
            return {"prices": args}

        assert await self.breaker.call(ok, {"port_codes": ["SGSIN"]}) == {"prices": {"port_codes": ["SGSIN"]}}
        assert self.breaker.failures == 0

    @pytest.mark.asyncio
    async def test_open_circuit_rejects_without_calling(self):
        """Test that an open breaker fails fast with its retry-after."""
        for _ in range(2):
            with pytest.raises(ConnectionError):
                await self.breaker.call(self._failing, {})

        with pytest.raises(CircuitOpenError) as exc_info:
            await self.breaker.call(self._failing, {})

        assert self.calls == 2
        assert exc_info.value.tool_name == "get_fuel_prices"
        assert 0 < exc_info.value.retry_after_seconds <= 30

    @pytest.mark.asyncio
    async def test_call_timeout_counts_as_failure(self):
        """Test that a call exceeding its timeout is a failure."""

        async def slow(args):
            await asyncio.sleep(1)

        with pytest.raises(asyncio.TimeoutError):
            await self.breaker.call(slow, {}, timeout=0.01)
        assert self.breaker.failures == 1


class TestCircuitBreakerRegistry:
    """Tests for the breaker table."""

    def test_breakers_are_per_tool(self, breakers):
        """Test that each tool gets its own breaker instance."""
        route = breakers.get("calculate_route")
        assert breakers.get("calculate_route") is route
        assert breakers.get("get_fuel_prices") is not route

    def test_open_circuits_and_reset(self, clock):
        """Test listing open circuits and forgetting breakers."""
        registry = CircuitBreakerRegistry(failure_threshold=1, clock=clock)
        registry.get("calculate_route").record_failure()
        registry.get("get_fuel_prices")

        assert registry.open_circuits() == ["calculate_route"]
        assert list(registry.status()) == ["calculate_route", "get_fuel_prices"]

        registry.reset("calculate_route")
        assert registry.open_circuits() == []

        registry.reset()
        assert registry.status() == {}
