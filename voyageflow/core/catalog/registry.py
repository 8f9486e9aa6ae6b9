"""YAML-backed catalog of worker agents and tools.

Scans ``agents.yaml`` and ``tools.yaml`` from a definitions directory at
construction. The orchestration core only reads the catalog; writes exist
for tests and for the reload boundary.
"""

import os
from typing import (
    Dict,
    List,
    Optional,
)

import yaml
from pydantic import ValidationError

from voyageflow.core.catalog.schema import (
    AgentDefinition,
    ToolDefinition,
)
from voyageflow.core.config import settings
from voyageflow.core.logging import logger

DEFAULT_DEFINITIONS_DIR = os.path.join(os.path.dirname(__file__), "definitions")


class CatalogRegistry:
    """Read-mostly registry of agent and tool definitions."""

    def __init__(self, definitions_dir: Optional[str] = None, autoload: bool = True):
        """Initialize the registry and load definitions.

        Args:
            definitions_dir: Directory holding agents.yaml and tools.yaml.
            autoload: Load definitions immediately.
        """
        self.definitions_dir = definitions_dir or settings.CATALOG_DIR or DEFAULT_DEFINITIONS_DIR
        self._agents: Dict[str, AgentDefinition] = {}
        self._tools: Dict[str, ToolDefinition] = {}
        if autoload:
            self.reload()

    def reload(self) -> None:
        """Drop all definitions and load them again from disk."""
        self.reset()
        if not os.path.isdir(self.definitions_dir):
            logger.warning("catalog_dir_not_found", path=self.definitions_dir)
            return

        for entry in self._read_entries("tools.yaml", "tools"):
            try:
                self.register_tool(ToolDefinition(**entry))
            except ValidationError as e:
                logger.exception("catalog_tool_invalid", tool=entry.get("id"), error=str(e))

        for entry in self._read_entries("agents.yaml", "agents"):
            try:
                self.register_agent(AgentDefinition(**entry))
            except ValidationError as e:
                logger.exception("catalog_agent_invalid", agent=entry.get("id"), error=str(e))

        logger.info(
            "catalog_loaded",
            path=self.definitions_dir,
            agent_count=len(self._agents),
            tool_count=len(self._tools),
        )

    def _read_entries(self, filename: str, section: str) -> List[dict]:
        filepath = os.path.join(self.definitions_dir, filename)
        if not os.path.isfile(filepath):
            return []
        with open(filepath, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return list(data.get(section) or [])

    def reset(self) -> None:
        """Remove every definition."""
        self._agents.clear()
        self._tools.clear()

    def register_agent(self, agent: AgentDefinition) -> None:
        """Add or replace an agent definition."""
        self._agents[agent.id] = agent

    def register_tool(self, tool: ToolDefinition) -> None:
        """Add or replace a tool definition."""
        self._tools[tool.id] = tool

    def get_worker(self, agent_id: str) -> Optional[AgentDefinition]:
        """Get an agent definition by id."""
        return self._agents.get(agent_id)

    def get_tool(self, tool_id: str) -> Optional[ToolDefinition]:
        """Get a tool definition by id."""
        return self._tools.get(tool_id)

    def list_agents(self) -> List[AgentDefinition]:
        """List all agent definitions, enabled or not, ordered by id."""
        return [self._agents[k] for k in sorted(self._agents)]

    def list_tools(self) -> List[ToolDefinition]:
        """List all tool definitions ordered by id."""
        return [self._tools[k] for k in sorted(self._tools)]

    def list_enabled(self) -> List[AgentDefinition]:
        """List enabled agents ordered by id."""
        return [a for a in self.list_agents() if a.enabled]

    def find_producers(self, field: str) -> List[AgentDefinition]:
        """Find enabled agents that declare they produce a state field.

        Args:
            field: The state field name.

        Returns:
            List[AgentDefinition]: Producers ordered by id.
        """
        return [a for a in self.list_enabled() if field in a.produces]

    def find_by_intent(self, intent: str) -> List[AgentDefinition]:
        """Find enabled agents that declare an intent."""
        return [a for a in self.list_enabled() if intent in a.intents]


# Global singleton
catalog_registry = CatalogRegistry()
