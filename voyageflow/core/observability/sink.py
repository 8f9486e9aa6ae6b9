"""Fire-and-forget structured event sink.

Events are queued in memory and shipped in batches, either when the batch
size is reached or on a periodic flush. A failed flush is logged and its
batch dropped; the sink never blocks or raises into the caller. Without an
ingest URL or exporter the sink is disabled and ``emit`` does nothing.

Event types: agent_execution, tool_call, state_change,
checkpoint_operation, error.
"""

import asyncio
from datetime import (
    datetime,
    timezone,
)
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
)

import httpx

from voyageflow.core.config import settings
from voyageflow.core.logging import logger

SERVICE_NAME = "voyageflow-orchestrator"

Exporter = Callable[[List[Dict[str, Any]]], Awaitable[None]]


class HttpExporter:
    """Posts event batches as JSON to an ingest endpoint."""

    def __init__(self, url: str, dataset: str, token: str = "", timeout: float = 5.0):
        """Initialize the exporter.

        Args:
            url: Ingest base URL.
            dataset: Dataset name appended to the URL.
            token: Optional bearer token.
            timeout: Request timeout in seconds.
        """
        self.endpoint = f"{url.rstrip('/')}/{dataset}"
        self.headers = {"Content-Type": "application/json"}
        if token:
            self.headers["Authorization"] = f"Bearer {token}"
        self.timeout = timeout

    async def __call__(self, batch: List[Dict[str, Any]]) -> None:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(self.endpoint, json=batch, headers=self.headers)
            response.raise_for_status()


class EventSink:
    """Batched, best-effort event emitter."""

    def __init__(
        self,
        exporter: Optional[Exporter] = None,
        batch_size: Optional[int] = None,
        flush_interval: Optional[float] = None,
    ):
        """Initialize the sink.

        Args:
            exporter: Coroutine function receiving each batch. Defaults to an
                HTTP exporter when an ingest URL is configured.
            batch_size: Queue length that triggers an immediate flush.
            flush_interval: Seconds between periodic flushes.
        """
        if exporter is None and settings.OBSERVABILITY_INGEST_URL:
            exporter = HttpExporter(
                settings.OBSERVABILITY_INGEST_URL,
                settings.OBSERVABILITY_DATASET,
                settings.OBSERVABILITY_API_TOKEN,
            )
        self._exporter = exporter
        self.batch_size = batch_size or settings.OBSERVABILITY_BATCH_SIZE
        self.flush_interval = flush_interval or settings.OBSERVABILITY_FLUSH_INTERVAL_SECONDS
        self._queue: List[Dict[str, Any]] = []
        self._flush_task: Optional[asyncio.Task] = None
        self._pending: set = set()
        self.dropped_events = 0

    @property
    def enabled(self) -> bool:
        """Whether events are collected at all."""
        return self._exporter is not None

    @property
    def queued(self) -> int:
        """Number of events waiting for the next flush."""
        return len(self._queue)

    def emit(self, event_type: str, correlation_id: Optional[str] = None, level: str = "info", **fields: Any) -> None:
        """Queue an event without waiting.

        Args:
            event_type: One of the known event types.
            correlation_id: Run correlation id.
            level: info, warn or error.
            **fields: Event payload.
        """
        if not self.enabled:
            return

        timestamp = datetime.now(timezone.utc).isoformat()
        self._queue.append(
            {
                "_time": timestamp,
                "type": event_type,
                "level": level,
                "service": SERVICE_NAME,
                "environment": settings.ENVIRONMENT.value,
                "correlation_id": correlation_id,
                **fields,
            }
        )

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return

        if len(self._queue) >= self.batch_size:
            task = loop.create_task(self.flush())
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        elif self._flush_task is None or self._flush_task.done():
            self._flush_task = loop.create_task(self._periodic_flush())

    async def _periodic_flush(self) -> None:
        while self._queue:
            await asyncio.sleep(self.flush_interval)
            await self.flush()

    async def flush(self) -> int:
        """Ship all queued events.

        Returns:
            int: Number of events shipped (0 when the batch was dropped).
        """
        if not self._exporter or not self._queue:
            return 0

        batch = self._queue[:]
        self._queue.clear()
        try:
            await self._exporter(batch)
        except Exception as e:
            self.dropped_events += len(batch)
            logger.error("observability_flush_failed", dropped=len(batch), error=str(e))
            return 0
        return len(batch)

    async def close(self) -> None:
        """Flush what is queued and stop the periodic task."""
        if self._flush_task is not None and not self._flush_task.done():
            self._flush_task.cancel()
        await self.flush()

    # ─── Typed helpers ───────────────────────────────────────────

    def agent_execution(self, agent_id: str, correlation_id: Optional[str], duration_ms: int, status: str, **meta: Any) -> None:
        """Record a stage/agent execution."""
        self.emit("agent_execution", correlation_id, agent=agent_id, duration_ms=duration_ms, status=status, **meta)

    def tool_call(self, tool_id: str, correlation_id: Optional[str], duration_ms: int, status: str, **meta: Any) -> None:
        """Record a tool call."""
        self.emit("tool_call", correlation_id, tool=tool_id, duration_ms=duration_ms, status=status, **meta)

    def state_change(self, correlation_id: Optional[str], fields: List[str], **meta: Any) -> None:
        """Record which state fields a stage changed."""
        self.emit("state_change", correlation_id, fields=fields, **meta)

    def checkpoint_operation(self, operation: str, thread_id: str, duration_ms: int, status: str, **meta: Any) -> None:
        """Record a checkpoint read/write/delete."""
        self.emit(
            "checkpoint_operation",
            meta.pop("correlation_id", None),
            operation=operation,
            thread_id=thread_id,
            duration_ms=duration_ms,
            status=status,
            **meta,
        )

    def error(self, correlation_id: Optional[str], message: str, **meta: Any) -> None:
        """Record an error."""
        self.emit("error", correlation_id, level="error", message=message, **meta)


# Global singleton
event_sink = EventSink()
