"""Best-effort observability event sink."""

from voyageflow.core.observability.sink import (
    EventSink,
    HttpExporter,
    event_sink,
)

__all__ = ["EventSink", "HttpExporter", "event_sink"]
