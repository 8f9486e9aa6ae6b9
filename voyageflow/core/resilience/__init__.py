"""Resilience layer: per-tool circuit breakers, retries and fallbacks.

Key components:
- CircuitBreaker / CircuitBreakerRegistry: CLOSED/OPEN/HALF_OPEN state machine per tool
- FallbackDispatcher / ToolResult: typed degraded responses
- ResilientToolClient: breaker + retry + fallback around each tool call
"""

from voyageflow.core.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRecord,
    CircuitBreakerRegistry,
    CircuitState,
    circuit_breaker_registry,
)
from voyageflow.core.resilience.fallbacks import (
    FallbackDispatcher,
    ResultStatus,
    ToolResult,
    create_degraded_response,
    haversine_nm,
    is_degraded_payload,
)
from voyageflow.core.resilience.retry import (
    RetryConfig,
    compute_backoff_ms,
    retry_with_backoff,
)
from voyageflow.core.resilience.tool_client import ResilientToolClient

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerRecord",
    "CircuitBreakerRegistry",
    "CircuitState",
    "FallbackDispatcher",
    "ResilientToolClient",
    "ResultStatus",
    "RetryConfig",
    "ToolResult",
    "circuit_breaker_registry",
    "compute_backoff_ms",
    "create_degraded_response",
    "haversine_nm",
    "is_degraded_payload",
    "retry_with_backoff",
]
