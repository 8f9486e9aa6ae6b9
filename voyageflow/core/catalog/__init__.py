"""Static catalog of worker agents and tools.

Key components:
- AgentDefinition / ToolDefinition: Pydantic catalog records
- CatalogRegistry: YAML-loaded registry with reset/reload lifecycle
"""

from voyageflow.core.catalog.registry import (
    CatalogRegistry,
    catalog_registry,
)
from voyageflow.core.catalog.schema import (
    AgentDefinition,
    AgentType,
    BackoffStrategy,
    ExecutionConfig,
    RetryPolicy,
    ToolCost,
    ToolDefinition,
    ToolType,
)

__all__ = [
    "AgentDefinition",
    "AgentType",
    "BackoffStrategy",
    "CatalogRegistry",
    "ExecutionConfig",
    "RetryPolicy",
    "ToolCost",
    "ToolDefinition",
    "ToolType",
    "catalog_registry",
]
