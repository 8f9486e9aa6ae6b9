"""Per-tool circuit breakers.

State machine for each tool name:
    CLOSED --(threshold failures within the rolling window)--> OPEN
    OPEN --(cool-down elapsed)--> HALF_OPEN
    HALF_OPEN --(trial succeeds)--> CLOSED (failures reset)
    HALF_OPEN --(trial fails)--> OPEN (cool-down restarts)

HALF_OPEN admits exactly one trial call; concurrent calls are refused until
the trial settles. The breaker only counts outcomes and never inspects why
a call failed.
"""

import asyncio
import time
from collections import deque
from datetime import (
    datetime,
    timezone,
)
from enum import Enum
from typing import (
    Any,
    Awaitable,
    Callable,
    Deque,
    Dict,
    List,
    Optional,
)

from pydantic import BaseModel

from voyageflow.core.config import settings
from voyageflow.core.errors import CircuitOpenError
from voyageflow.core.logging import logger


class CircuitState(str, Enum):
    """Breaker state."""

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreakerRecord(BaseModel):
    """Snapshot of one breaker, as exposed to health checks."""

    tool_name: str
    state: CircuitState
    failures: int
    last_failure_at: Optional[datetime] = None
    retry_after_seconds: Optional[float] = None


class CircuitBreaker:
    """Circuit breaker guarding a single tool."""

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        rolling_window_seconds: float = 300.0,
        reset_timeout_seconds: float = 30.0,
        call_timeout_seconds: Optional[float] = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize a closed breaker.

        Args:
            name: Tool name.
            failure_threshold: Failures within the window that open the circuit.
            rolling_window_seconds: Age after which a failure stops counting.
            reset_timeout_seconds: Cool-down before a trial call is allowed.
            call_timeout_seconds: Upper bound applied to each guarded call.
            clock: Monotonic time source.
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.rolling_window_seconds = rolling_window_seconds
        self.reset_timeout_seconds = reset_timeout_seconds
        self.call_timeout_seconds = call_timeout_seconds
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_times: Deque[float] = deque()
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False
        self.last_failure_at: Optional[datetime] = None

    @property
    def state(self) -> CircuitState:
        """Current state, moving OPEN to HALF_OPEN once the cool-down has elapsed."""
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            if self._clock() - self._opened_at >= self.reset_timeout_seconds:
                self._state = CircuitState.HALF_OPEN
                self._trial_in_flight = False
                logger.info("circuit_half_open", tool=self.name)
        return self._state

    @property
    def failures(self) -> int:
        """Failures counted toward opening the circuit."""
        return len(self._failure_times)

    def retry_after(self) -> float:
        """Seconds left in the cool-down, 0 when not open."""
        if self.state != CircuitState.OPEN or self._opened_at is None:
            return 0.0
        return max(0.0, self.reset_timeout_seconds - (self._clock() - self._opened_at))

    def allow_request(self) -> bool:
        """Admit or refuse a call, reserving the trial slot in HALF_OPEN."""
        state = self.state
        if state == CircuitState.CLOSED:
            return True
        if state == CircuitState.HALF_OPEN and not self._trial_in_flight:
            self._trial_in_flight = True
            return True
        return False

    def record_success(self) -> None:
        """Register a successful call."""
        if self._state == CircuitState.HALF_OPEN:
            logger.info("circuit_closed", tool=self.name)
        self._state = CircuitState.CLOSED
        self._failure_times.clear()
        self._opened_at = None
        self._trial_in_flight = False

    def record_failure(self) -> None:
        """Register a failed call and open the circuit when due."""
        now = self._clock()
        self.last_failure_at = datetime.now(timezone.utc)
        self._failure_times.append(now)
        while self._failure_times and now - self._failure_times[0] > self.rolling_window_seconds:
            self._failure_times.popleft()

        if self._state == CircuitState.HALF_OPEN:
            self._open(now)
        elif self._state == CircuitState.CLOSED and len(self._failure_times) >= self.failure_threshold:
            self._open(now)

    def _open(self, now: float) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = now
        self._trial_in_flight = False
        logger.warning("circuit_opened", tool=self.name, failures=self.failures)

    def release_trial(self) -> None:
        """Give back the HALF_OPEN trial slot without recording an outcome."""
        self._trial_in_flight = False

    async def call(self, func: Callable[..., Awaitable[Any]], *args: Any, timeout: Optional[float] = None, **kwargs: Any) -> Any:
        """Run a call through the breaker.

        Args:
            func: Coroutine function to call.
            *args: Positional arguments for ``func``.
            timeout: Per-call timeout; the smaller of this and the breaker's applies.
            **kwargs: Keyword arguments for ``func``.

        Returns:
            Any: Whatever ``func`` returns.

        Raises:
            CircuitOpenError: If the breaker refuses the call.
        """
        if not self.allow_request():
            raise CircuitOpenError(self.name, self.retry_after())

        limits = [t for t in (timeout, self.call_timeout_seconds) if t is not None]
        try:
            if limits:
                result = await asyncio.wait_for(func(*args, **kwargs), timeout=min(limits))
            else:
                result = await func(*args, **kwargs)
        except asyncio.CancelledError:
            self.release_trial()
            raise
        except Exception:
            self.record_failure()
            raise

        self.record_success()
        return result

    def snapshot(self) -> CircuitBreakerRecord:
        """Export the breaker's state."""
        state = self.state
        return CircuitBreakerRecord(
            tool_name=self.name,
            state=state,
            failures=self.failures,
            last_failure_at=self.last_failure_at,
            retry_after_seconds=self.retry_after() if state == CircuitState.OPEN else None,
        )


class CircuitBreakerRegistry:
    """Process-wide table of breakers keyed by tool name."""

    def __init__(
        self,
        failure_threshold: Optional[int] = None,
        rolling_window_seconds: Optional[float] = None,
        reset_timeout_seconds: Optional[float] = None,
        call_timeout_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize an empty registry with breaker defaults."""
        self.failure_threshold = failure_threshold or settings.CIRCUIT_FAILURE_THRESHOLD
        self.rolling_window_seconds = rolling_window_seconds or settings.CIRCUIT_ROLLING_WINDOW_SECONDS
        self.reset_timeout_seconds = (
            settings.CIRCUIT_RESET_TIMEOUT_SECONDS if reset_timeout_seconds is None else reset_timeout_seconds
        )
        self.call_timeout_seconds = call_timeout_seconds or settings.CIRCUIT_CALL_TIMEOUT_SECONDS
        self._clock = clock
        self._breakers: Dict[str, CircuitBreaker] = {}

    def get(self, tool_name: str) -> CircuitBreaker:
        """Get the breaker for a tool, creating it on first use."""
        breaker = self._breakers.get(tool_name)
        if breaker is None:
            breaker = CircuitBreaker(
                tool_name,
                failure_threshold=self.failure_threshold,
                rolling_window_seconds=self.rolling_window_seconds,
                reset_timeout_seconds=self.reset_timeout_seconds,
                call_timeout_seconds=self.call_timeout_seconds,
                clock=self._clock,
            )
            self._breakers[tool_name] = breaker
        return breaker

    def status(self) -> Dict[str, CircuitBreakerRecord]:
        """Snapshot every breaker."""
        return {name: breaker.snapshot() for name, breaker in sorted(self._breakers.items())}

    def open_circuits(self) -> List[str]:
        """Names of tools whose circuit is currently open."""
        return [name for name, record in self.status().items() if record.state == CircuitState.OPEN]

    def reset(self, tool_name: Optional[str] = None) -> None:
        """Forget one breaker or all of them."""
        if tool_name is None:
            self._breakers.clear()
        else:
            self._breakers.pop(tool_name, None)


# Global singleton
circuit_breaker_registry = CircuitBreakerRegistry()
