"""Registry of tool implementations keyed by catalog tool id."""

from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
)

from voyageflow.core.catalog.registry import (
    CatalogRegistry,
    catalog_registry,
)
from voyageflow.core.logging import logger
from voyageflow.core.tools.http import HttpToolClient

ToolFunction = Callable[[Dict[str, Any]], Awaitable[Any]]


class ToolRegistry:
    """Maps tool ids to async callables taking a single args dict."""

    def __init__(self):
        """Initialize an empty registry."""
        self._tools: Dict[str, ToolFunction] = {}

    def register(self, tool_id: str, func: ToolFunction) -> None:
        """Register or replace a tool implementation."""
        self._tools[tool_id] = func
        logger.debug("tool_registered", tool=tool_id)

    def get(self, tool_id: str) -> Optional[ToolFunction]:
        """Get a tool implementation."""
        return self._tools.get(tool_id)

    def list_tools(self) -> List[str]:
        """List registered tool ids."""
        return sorted(self._tools)

    def reset(self) -> None:
        """Remove every implementation."""
        self._tools.clear()


def build_http_tool_registry(catalog: Optional[CatalogRegistry] = None, client: Optional[HttpToolClient] = None) -> ToolRegistry:
    """Register an HTTP-backed implementation for every catalog tool.

    Args:
        catalog: Catalog listing the tools.
        client: HTTP client to bind tools to.

    Returns:
        ToolRegistry: Registry with one entry per catalog tool.
    """
    catalog = catalog or catalog_registry
    client = client or HttpToolClient()
    registry = ToolRegistry()
    for tool in catalog.list_tools():
        registry.register(tool.id, client.bind(tool.id))
    return registry
