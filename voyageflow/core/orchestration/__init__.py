"""Plan generation, validation and execution.

Key components:
- IntentClassifier: cached LLM/rule intent classification
- PlanGenerator: builds ExecutionPlans from intent workflows or the catalog
- PlanValidator: static checks before execution
- executor.PlanExecutor: level-by-level scheduling with retries and partial failure
"""

from voyageflow.core.orchestration.classifier import IntentClassifier
from voyageflow.core.orchestration.generator import PlanGenerator
from voyageflow.core.orchestration.schema import (
    Classification,
    ExecutionPlan,
    ExecutionResult,
    PlanContext,
    PlanEstimates,
    Stage,
    StageContext,
    StageErrorRecord,
    StageStatus,
    ValidationResult,
    VsEstimates,
)
from voyageflow.core.orchestration.validator import PlanValidator
from voyageflow.core.orchestration.workflows import (
    IntentWorkflow,
    IntentWorkflowRegistry,
    WorkflowStep,
    intent_workflow_registry,
)

__all__ = [
    "Classification",
    "ExecutionPlan",
    "ExecutionResult",
    "IntentClassifier",
    "IntentWorkflow",
    "IntentWorkflowRegistry",
    "PlanContext",
    "PlanEstimates",
    "PlanGenerator",
    "PlanValidator",
    "Stage",
    "StageContext",
    "StageErrorRecord",
    "StageStatus",
    "ValidationResult",
    "VsEstimates",
    "WorkflowStep",
    "intent_workflow_registry",
]
