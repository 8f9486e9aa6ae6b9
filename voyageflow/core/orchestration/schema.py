"""Pydantic models for execution plans and their results.

A plan is created by the PlanGenerator, checked by the PlanValidator and
then frozen: stages are never mutated during execution. The executor
tracks its per-run bookkeeping separately and reports it in an
ExecutionResult.
"""

import time
import uuid
from datetime import (
    datetime,
    timezone,
)
from enum import Enum
from typing import (
    Any,
    Dict,
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)

from voyageflow.core.catalog.schema import (
    AgentType,
    RetryPolicy,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Classification(BaseModel):
    """Result of intent classification."""

    query_type: str
    agent_id: Optional[str] = None
    confidence: float = 0.0
    reasoning: str = ""
    method: str = "rules"
    extracted_params: Dict[str, Any] = Field(default_factory=dict)
    cache_hit: bool = False
    latency_ms: int = 0
    query_hash: Optional[str] = None


class Stage(BaseModel):
    """One scheduled worker invocation.

    Attributes:
        stage_id: Unique id within the plan.
        order: Topological hint; the dependency edges are authoritative.
        required: A failure cascades to dependents when True.
        depends_on: Stage ids that must complete first.
        provides: State keys the stage populates.
        requires: State keys the stage needs.
        optional_inputs: State keys passed along when present.
    """

    model_config = ConfigDict(frozen=True)

    stage_id: str
    order: int
    agent_id: str
    agent_name: str
    agent_type: AgentType = AgentType.SPECIALIST
    required: bool = True
    can_run_in_parallel: bool = False
    depends_on: List[str] = Field(default_factory=list)
    provides: List[str] = Field(default_factory=list)
    requires: List[str] = Field(default_factory=list)
    optional_inputs: List[str] = Field(default_factory=list)
    tools_needed: List[str] = Field(default_factory=list)
    optional_tools: List[str] = Field(default_factory=list)
    estimated_duration_ms: int = 0
    estimated_cost: float = 0.0
    timeout_ms: int = 30000
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)


class PlanEstimates(BaseModel):
    """Aggregate estimates for a plan."""

    model_config = ConfigDict(frozen=True)

    total_cost_usd: float = 0.0
    total_duration_ms: int = 0
    agent_count: int = 0
    llm_calls: int = 0
    api_calls: int = 0


class PlanContext(BaseModel):
    """Run-level settings carried by a plan."""

    model_config = ConfigDict(frozen=True)

    priority: str = "normal"
    timeout_ms: int = 120000
    correlation_id: str = Field(default_factory=lambda: str(uuid.uuid4()))


class ValidationResult(BaseModel):
    """Outcome of static plan validation. Errors block execution."""

    model_config = ConfigDict(frozen=True)

    valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)


class ExecutionPlan(BaseModel):
    """An ordered DAG of stages answering one query."""

    model_config = ConfigDict(frozen=True)

    plan_id: str = Field(default_factory=lambda: f"plan_{uuid.uuid4().hex[:12]}")
    query_type: str
    strategy: str = "config"
    workflow_id: Optional[str] = None
    workflow_version: Optional[str] = None
    stages: List[Stage] = Field(default_factory=list)
    validation: Optional[ValidationResult] = None
    estimates: PlanEstimates = Field(default_factory=PlanEstimates)
    required_state: List[str] = Field(default_factory=list)
    expected_outputs: List[str] = Field(default_factory=list)
    context: PlanContext = Field(default_factory=PlanContext)
    original_query: str = ""
    classification: Optional[Classification] = None
    created_at: datetime = Field(default_factory=_utcnow)

    def get_stage(self, stage_id: str) -> Optional[Stage]:
        """Look up a stage by id."""
        for stage in self.stages:
            if stage.stage_id == stage_id:
                return stage
        return None

    def with_validation(self, validation: ValidationResult) -> "ExecutionPlan":
        """Return a copy of the plan carrying its validation result."""
        return self.model_copy(update={"validation": validation})


class StageStatus(str, Enum):
    """Terminal status of a stage in one run."""

    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class StageErrorRecord(BaseModel):
    """A stage failure captured during a run."""

    stage_id: str
    agent_id: str
    error: str
    error_type: str = "Exception"
    attempts: int = 1
    recoverable: bool = False
    timestamp: datetime = Field(default_factory=_utcnow)


class VsEstimates(BaseModel):
    """Actual-versus-estimated comparison, for calibration only."""

    duration_diff_ms: int = 0
    cost_diff_usd: float = 0.0
    accuracy_percent: int = 0


class ExecutionResult(BaseModel):
    """Outcome of one plan run.

    Every stage id of the plan appears in exactly one of completed, failed
    or skipped.
    """

    plan_id: str
    success: bool
    stages_completed: List[str] = Field(default_factory=list)
    stages_failed: List[str] = Field(default_factory=list)
    stages_skipped: List[str] = Field(default_factory=list)
    skip_reasons: Dict[str, str] = Field(default_factory=dict)
    duration_ms: int = 0
    actual_cost_usd: float = 0.0
    errors: List[StageErrorRecord] = Field(default_factory=list)
    vs_estimates: VsEstimates = Field(default_factory=VsEstimates)
    final_state: Dict[str, Any] = Field(default_factory=dict)
    timed_out: bool = False
    early_exit_reason: Optional[str] = None

    def status_of(self, stage_id: str) -> Optional[StageStatus]:
        """Terminal status of a stage, None if the stage is unknown."""
        if stage_id in self.stages_completed:
            return StageStatus.COMPLETED
        if stage_id in self.stages_failed:
            return StageStatus.FAILED
        if stage_id in self.stages_skipped:
            return StageStatus.SKIPPED
        return None


class StageContext(BaseModel):
    """Per-invocation context handed to workers and tool calls."""

    stage_id: str
    agent_id: str
    correlation_id: str
    attempt: int = 1
    deadline: Optional[float] = None

    def remaining_seconds(self) -> Optional[float]:
        """Seconds left before the stage deadline, None when unbounded."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())
