"""Schemas for the voyage planning endpoints."""

from typing import (
    Any,
    Dict,
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    Field,
)

from voyageflow.core.orchestration.schema import (
    Classification,
    ExecutionPlan,
)
from voyageflow.core.persistence.recovery import CheckpointSummary
from voyageflow.core.resilience.circuit_breaker import CircuitBreakerRecord


class VoyageQueryRequest(BaseModel):
    """Request body for running a voyage query."""

    query: str = Field(..., min_length=1, max_length=2000, description="The user's question")
    thread_id: Optional[str] = Field(default=None, description="Conversation thread; a new one if omitted")
    state: Dict[str, Any] = Field(default_factory=dict, description="Voyage fields known up front")


class VoyageQueryResponse(BaseModel):
    """Outcome of one query run."""

    thread_id: str
    correlation_id: str
    response: str
    query_type: Optional[str] = None
    plan: Optional[Dict[str, Any]] = None
    plan_errors: List[str] = Field(default_factory=list)
    execution: Optional[Dict[str, Any]] = None
    final_recommendation: Optional[Dict[str, Any]] = None
    degraded_mode: bool = False
    missing_data: List[str] = Field(default_factory=list)


class PlanPreviewRequest(BaseModel):
    """Request body for planning a query without running it."""

    query: str = Field(..., min_length=1, max_length=2000)
    state: Dict[str, Any] = Field(default_factory=dict)


class PlanPreviewResponse(BaseModel):
    """A classified and validated plan."""

    classification: Classification
    plan: ExecutionPlan


class CheckpointListResponse(BaseModel):
    """A thread's checkpoint history, oldest step first."""

    thread_id: str
    checkpoints: List[CheckpointSummary]
    total: int


class RecoverResponse(BaseModel):
    """Config to resume a graph from a checkpoint."""

    thread_id: str
    checkpoint_id: str
    config: Dict[str, Any]


class DeleteThreadResponse(BaseModel):
    """Result of purging a thread."""

    thread_id: str
    deleted: int


class HealthResponse(BaseModel):
    """Service health snapshot."""

    status: str
    version: str
    environment: str
    circuits: Dict[str, CircuitBreakerRecord] = Field(default_factory=dict)
    open_circuits: List[str] = Field(default_factory=list)
    checkpoint_store: Dict[str, Any] = Field(default_factory=dict)
