"""Resilient tool invocation.

Every tool call from a worker goes through ``ResilientToolClient.call``:
circuit breaker -> timeout -> transient retry -> result cache, and on
failure the fallback dispatcher. Breaker rejections surface to the stage as
degraded results when a fallback exists and as ``ToolUnavailableError``
otherwise.
"""

import time
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    Optional,
)

from voyageflow.core.catalog.registry import (
    CatalogRegistry,
    catalog_registry,
)
from voyageflow.core.errors import (
    CircuitOpenError,
    ToolNotFoundError,
    ToolUnavailableError,
)
from voyageflow.core.logging import logger
from voyageflow.core.observability.sink import (
    EventSink,
    event_sink,
)
from voyageflow.core.resilience.circuit_breaker import (
    CircuitBreakerRegistry,
    circuit_breaker_registry,
)
from voyageflow.core.resilience.fallbacks import (
    FallbackDispatcher,
    ToolResult,
)
from voyageflow.core.resilience.retry import (
    RetryConfig,
    retry_with_backoff,
)
from voyageflow.core.tools.registry import ToolRegistry

if TYPE_CHECKING:
    from voyageflow.core.orchestration.schema import StageContext


class ResilientToolClient:
    """Calls tools with breaker protection, retries and fallbacks."""

    def __init__(
        self,
        tools: ToolRegistry,
        breakers: Optional[CircuitBreakerRegistry] = None,
        fallbacks: Optional[FallbackDispatcher] = None,
        catalog: Optional[CatalogRegistry] = None,
        sink: Optional[EventSink] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        """Initialize the client.

        Args:
            tools: Tool implementations.
            breakers: Breaker table, the process-wide one by default.
            fallbacks: Degraded-response dispatcher.
            catalog: Catalog with tool definitions and timeouts.
            sink: Observability sink.
            retry_config: Tool-level retry settings.
        """
        self.tools = tools
        self.breakers = breakers or circuit_breaker_registry
        self.catalog = catalog or catalog_registry
        self.fallbacks = fallbacks or FallbackDispatcher(catalog=self.catalog)
        self.sink = sink or event_sink
        self.retry_config = retry_config or RetryConfig()

    def _timeout_for(self, tool_id: str, context: Optional["StageContext"]) -> Optional[float]:
        definition = self.catalog.get_tool(tool_id)
        limits = []
        if definition is not None:
            limits.append(definition.timeout_ms / 1000)
        if context is not None and context.remaining_seconds() is not None:
            limits.append(context.remaining_seconds())
        return min(limits) if limits else None

    async def call(
        self,
        tool_id: str,
        args: Dict[str, Any],
        context: Optional["StageContext"] = None,
        fallback_context: Optional[Dict[str, Any]] = None,
    ) -> ToolResult:
        """Call a tool, falling back to a degraded result on failure.

        Args:
            tool_id: Catalog tool id.
            args: Tool arguments.
            context: The calling stage's context.
            fallback_context: State in hand that fallbacks may use.

        Returns:
            ToolResult: An ok or degraded result.

        Raises:
            ToolNotFoundError: If the tool is unknown, disabled or unimplemented.
            ToolUnavailableError: If the call failed and no fallback exists.
        """
        definition = self.catalog.get_tool(tool_id)
        if definition is None or not definition.enabled:
            raise ToolNotFoundError(f"Tool '{tool_id}' is not registered or disabled")
        func = self.tools.get(tool_id)
        if func is None:
            raise ToolNotFoundError(f"Tool '{tool_id}' has no implementation")

        breaker = self.breakers.get(tool_id)
        correlation_id = context.correlation_id if context else None
        start = time.perf_counter()

        try:
            data = await retry_with_backoff(
                lambda: breaker.call(func, args, timeout=self._timeout_for(tool_id, context)),
                self.retry_config,
                operation=f"tool:{tool_id}",
            )
        except Exception as e:
            duration_ms = int((time.perf_counter() - start) * 1000)
            status = "rejected" if isinstance(e, CircuitOpenError) else "failed"
            logger.warning("tool_call_failed", tool=tool_id, status=status, error=str(e), duration_ms=duration_ms)
            self.sink.tool_call(tool_id, correlation_id, duration_ms, status, error=str(e))

            fallback = await self.fallbacks.get_fallback_response(
                tool_id,
                e,
                {"args": args, **(fallback_context or {})},
            )
            if fallback is None:
                raise ToolUnavailableError(tool_id, str(e) or type(e).__name__) from e
            return fallback

        duration_ms = int((time.perf_counter() - start) * 1000)
        await self.fallbacks.remember(tool_id, args, data)
        self.sink.tool_call(tool_id, correlation_id, duration_ms, "success")
        logger.debug("tool_call_completed", tool=tool_id, duration_ms=duration_ms)
        return ToolResult.ok(tool_id, data)
