"""Pydantic models for the worker and tool catalog."""

from enum import Enum
from typing import (
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    Field,
)


class AgentType(str, Enum):
    """Role an agent plays in a plan."""

    SUPERVISOR = "supervisor"
    SPECIALIST = "specialist"
    COORDINATOR = "coordinator"
    FINALIZER = "finalizer"


class BackoffStrategy(str, Enum):
    """How retry delays grow between attempts."""

    LINEAR = "linear"
    EXPONENTIAL = "exponential"


class ToolCost(str, Enum):
    """Cost class of a tool call."""

    FREE = "free"
    API_CALL = "api_call"
    EXPENSIVE = "expensive"


class ToolType(str, Enum):
    """Fallback family a tool belongs to."""

    ROUTE = "route"
    WEATHER = "weather"
    PRICE = "price"
    ANALYSIS = "analysis"
    VESSEL = "vessel"
    OTHER = "other"


class RetryPolicy(BaseModel):
    """Retry policy for a stage invocation."""

    max_retries: int = Field(default=2, ge=0)
    backoff_ms: int = Field(default=1000, ge=0)
    backoff: BackoffStrategy = BackoffStrategy.EXPONENTIAL


class ExecutionConfig(BaseModel):
    """Scheduling hints for an agent."""

    can_run_in_parallel: bool = False
    max_execution_time_ms: int = Field(default=30000, gt=0)
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)


class LLMConfig(BaseModel):
    """LLM usage of an agent, used for cost estimation only."""

    model: str
    temperature: float = 0.0
    max_tokens: int = 1000


class StateContract(BaseModel):
    """State fields an agent consumes."""

    required: List[str] = Field(default_factory=list)
    optional: List[str] = Field(default_factory=list)


class ToolAccess(BaseModel):
    """Tools an agent calls."""

    required: List[str] = Field(default_factory=list)
    optional: List[str] = Field(default_factory=list)


class AgentDefinition(BaseModel):
    """Static description of a worker agent.

    Attributes:
        id: Unique agent identifier, also the worker registry key.
        type: Role in a plan, used for duration estimates.
        intents: Query types this agent serves directly.
        produces: State fields this agent populates.
        consumes: State fields this agent reads.
        tools: Tools this agent calls through the resilience layer.
        execution: Parallelism, timeout and retry policy.
        estimated_duration_ms: Explicit duration estimate, overrides the type default.
        enabled: Disabled agents fail plan validation.
    """

    id: str
    name: str
    description: str = ""
    version: str = "1.0.0"
    type: AgentType = AgentType.SPECIALIST
    intents: List[str] = Field(default_factory=list)
    produces: List[str] = Field(default_factory=list)
    consumes: StateContract = Field(default_factory=StateContract)
    tools: ToolAccess = Field(default_factory=ToolAccess)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    llm: Optional[LLMConfig] = None
    estimated_duration_ms: Optional[int] = None
    enabled: bool = True


class RateLimit(BaseModel):
    """Call budget for a tool."""

    calls: int
    window_ms: int


class ToolDefinition(BaseModel):
    """Static description of an external tool."""

    id: str
    name: str
    description: str = ""
    category: str = "calculation"
    tool_type: ToolType = ToolType.OTHER
    cost: ToolCost = ToolCost.FREE
    avg_latency_ms: int = 0
    timeout_ms: int = 30000
    rate_limit: Optional[RateLimit] = None
    enabled: bool = True
