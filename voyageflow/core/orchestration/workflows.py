"""Versioned intent workflows loaded from YAML.

Each file under intents/ describes the ordered steps answering one
intent. Steps are pure data records with an optional guard ``condition``;
the registry keeps the highest version per intent and can be reloaded
without restarting the process.
"""

import os
from typing import (
    Any,
    Dict,
    List,
    Optional,
)

import yaml
from pydantic import (
    BaseModel,
    Field,
    ValidationError,
)

from voyageflow.core.config import settings
from voyageflow.core.logging import logger
from voyageflow.core.orchestration.conditions import (
    Condition,
    evaluate_condition,
)

DEFAULT_WORKFLOWS_DIR = os.path.join(os.path.dirname(__file__), "intents")


def _version_key(version: str) -> tuple:
    parts = []
    for part in str(version).split("."):
        parts.append(int(part) if part.isdigit() else 0)
    return tuple(parts)


class WorkflowStep(BaseModel):
    """One step of an intent workflow."""

    id: str
    agent: str
    required: bool = True
    depends_on: Optional[List[str]] = None
    condition: Optional[Condition] = None
    description: str = ""


class IntentWorkflow(BaseModel):
    """Ordered steps answering one intent."""

    id: str
    version: str = "1.0.0"
    intent: str
    description: str = ""
    keywords: List[str] = Field(default_factory=list)
    expected_outputs: List[str] = Field(default_factory=list)
    steps: List[WorkflowStep] = Field(default_factory=list)

    def pending_steps(self, state: Dict[str, Any]) -> List[WorkflowStep]:
        """Steps still to run: not yet successful and with a holding guard."""
        agent_status = state.get("agent_status") or {}
        return [
            step
            for step in self.steps
            if agent_status.get(step.agent) != "success" and evaluate_condition(step.condition, state)
        ]

    def next_step(self, state: Dict[str, Any]) -> Optional[WorkflowStep]:
        """The first step not yet marked successful whose guard holds."""
        pending = self.pending_steps(state)
        return pending[0] if pending else None


class IntentWorkflowRegistry:
    """Registry of intent workflows, highest version wins."""

    def __init__(self, workflows_dir: Optional[str] = None):
        """Initialize and load workflows from the workflows directory."""
        self.workflows_dir = workflows_dir or settings.WORKFLOWS_DIR or DEFAULT_WORKFLOWS_DIR
        self._workflows: Dict[str, IntentWorkflow] = {}
        self.reload()

    def reload(self) -> None:
        """Rescan the workflows directory."""
        self._workflows = {}
        if not os.path.isdir(self.workflows_dir):
            logger.warning("intent_workflows_dir_not_found", path=self.workflows_dir)
            return

        for filename in sorted(os.listdir(self.workflows_dir)):
            if not filename.endswith((".yaml", ".yml")):
                continue

            filepath = os.path.join(self.workflows_dir, filename)
            try:
                workflow = self._parse_workflow(filepath)
                if workflow:
                    self.register(workflow)
            except (yaml.YAMLError, ValidationError) as e:
                logger.exception("intent_workflow_parse_failed", file=filename, error=str(e))

    def _parse_workflow(self, filepath: str) -> Optional[IntentWorkflow]:
        """Parse a single YAML workflow file."""
        with open(filepath, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)

        if not data or "intent" not in data or "steps" not in data:
            return None

        data.setdefault("id", os.path.splitext(os.path.basename(filepath))[0])
        return IntentWorkflow(**data)

    def register(self, workflow: IntentWorkflow) -> None:
        """Add a workflow, keeping the highest version for its intent."""
        current = self._workflows.get(workflow.intent)
        if current is not None and _version_key(current.version) > _version_key(workflow.version):
            return
        self._workflows[workflow.intent] = workflow
        logger.info(
            "intent_workflow_loaded",
            intent=workflow.intent,
            workflow_id=workflow.id,
            version=workflow.version,
            step_count=len(workflow.steps),
        )

    def get(self, intent: str) -> Optional[IntentWorkflow]:
        """Get the workflow for an intent."""
        return self._workflows.get(intent)

    def intents(self) -> List[str]:
        """Intents with a configured workflow."""
        return sorted(self._workflows)

    def list_workflows(self) -> List[Dict[str, str]]:
        """List workflows with their versions and descriptions."""
        return [
            {"intent": w.intent, "id": w.id, "version": w.version, "description": w.description}
            for _, w in sorted(self._workflows.items())
        ]

    def get_workflows_prompt(self) -> str:
        """Describe the configured intents for an LLM classifier prompt."""
        if not self._workflows:
            return "No intent workflows configured."

        lines = ["## Available Intents"]
        for intent, workflow in sorted(self._workflows.items()):
            flow = " → ".join(s.agent for s in workflow.steps)
            lines.append(f"- **{intent}**: {workflow.description}")
            lines.append(f"  Flow: {flow}")
        return "\n".join(lines)


# Global singleton
intent_workflow_registry = IntentWorkflowRegistry()
