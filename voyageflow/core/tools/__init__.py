"""Tool implementations called through the resilience layer."""

from voyageflow.core.tools.http import HttpToolClient
from voyageflow.core.tools.registry import (
    ToolFunction,
    ToolRegistry,
    build_http_tool_registry,
)

__all__ = ["HttpToolClient", "ToolFunction", "ToolRegistry", "build_http_tool_registry"]
