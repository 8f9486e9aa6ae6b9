"""Exception hierarchy for the orchestration core.

Errors fall into four families:
- Plan errors: raised before any stage runs, fatal to that run.
- Stage errors: worker/tool failures during execution, recovered by the
  retry policy and then absorbed or cascaded by the executor.
- Resilience errors: breaker rejections and tools with no usable fallback.
- Persistence errors: checkpoint read/write/integrity failures.
"""

import re
from typing import (
    TYPE_CHECKING,
    List,
    Optional,
)

import httpx

if TYPE_CHECKING:
    from voyageflow.core.orchestration.schema import ValidationResult


class VoyageFlowError(Exception):
    """Base class for all orchestration core errors."""


# ─── Plan errors ─────────────────────────────────────────────────


class PlanError(VoyageFlowError):
    """A plan could not be produced or may not run."""


class PlanGenerationError(PlanError):
    """No workflow or catalog path can satisfy the requested query type."""


class PlanValidationError(PlanError):
    """A plan failed static validation.

    Attributes:
        result: The validation result carrying the individual errors.
    """

    def __init__(self, result: "ValidationResult"):
        """Initialize with the failing validation result."""
        self.result = result
        super().__init__("; ".join(result.errors) or "plan validation failed")


# ─── Stage errors ────────────────────────────────────────────────


class StageError(VoyageFlowError):
    """A stage failed while executing."""


class TransientStageError(StageError):
    """A stage failure that is safe to retry."""


class StageTimeoutError(StageError):
    """A stage exceeded its wall-clock budget. Never retried."""

    def __init__(self, stage_id: str, timeout_ms: int):
        """Initialize with the stage id and its budget."""
        self.stage_id = stage_id
        self.timeout_ms = timeout_ms
        super().__init__(f"Stage '{stage_id}' timed out after {timeout_ms}ms")


class WorkerNotFoundError(StageError):
    """The stage names a worker with no registered implementation."""


# ─── Resilience errors ───────────────────────────────────────────


class ToolNotFoundError(VoyageFlowError):
    """The tool id is not registered."""


class CircuitOpenError(VoyageFlowError):
    """A call was refused because the tool's circuit breaker is open."""

    def __init__(self, tool_name: str, retry_after_seconds: float):
        """Initialize with the tool name and remaining cool-down."""
        self.tool_name = tool_name
        self.retry_after_seconds = retry_after_seconds
        super().__init__(f"Circuit open for tool '{tool_name}', retry after {retry_after_seconds:.1f}s")


class ToolUnavailableError(StageError):
    """A tool call failed and no degraded fallback exists."""

    def __init__(self, tool_name: str, reason: str):
        """Initialize with the tool name and the underlying failure."""
        self.tool_name = tool_name
        self.reason = reason
        super().__init__(f"Tool '{tool_name}' unavailable: {reason}")


# ─── Persistence errors ──────────────────────────────────────────


class CheckpointError(VoyageFlowError):
    """Base class for checkpoint persistence failures."""


class CheckpointNotFoundError(CheckpointError):
    """The requested checkpoint does not exist."""


class CheckpointReadError(CheckpointError):
    """The checkpoint store could not be read."""


class CheckpointIntegrityError(CheckpointError):
    """A checkpoint failed its structural integrity check.

    Attributes:
        checkpoint_id: The checkpoint that failed, if known.
        problems: The individual failed checks.
    """

    def __init__(self, checkpoint_id: Optional[str], problems: List[str]):
        """Initialize with the failing checkpoint and the failed checks."""
        self.checkpoint_id = checkpoint_id
        self.problems = problems
        super().__init__(f"Checkpoint '{checkpoint_id}' failed integrity check: {', '.join(problems)}")


# ─── Classification ──────────────────────────────────────────────

RETRYABLE_ERROR_CODES = {
    "ETIMEDOUT",
    "ECONNRESET",
    "RATE_LIMIT",
    "TIMEOUT_ERROR",
    "NETWORK_ERROR",
    "API_ERROR",
}

RETRYABLE_STATUS_CODES = {408, 429}

_RETRYABLE_MESSAGE = re.compile(r"timeout|network|connection|ECONNREFUSED|ENOTFOUND", re.IGNORECASE)


def is_transient_error(error: BaseException) -> bool:
    """Decide whether a failure is worth retrying.

    Stage timeouts, breaker rejections and missing tools/workers are never
    transient, whatever their message says.

    Args:
        error: The exception raised by a stage or tool call.

    Returns:
        bool: True if the failure is transient.
    """
    if isinstance(error, (StageTimeoutError, CircuitOpenError, ToolNotFoundError, WorkerNotFoundError, PlanError)):
        return False
    if isinstance(error, ToolUnavailableError):
        return False
    if isinstance(error, (TransientStageError, ConnectionError, httpx.TransportError)):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status in RETRYABLE_STATUS_CODES or status >= 500

    code = getattr(error, "code", None)
    if isinstance(code, str) and code in RETRYABLE_ERROR_CODES:
        return True
    status = getattr(error, "status_code", None)
    if isinstance(status, int) and (status in RETRYABLE_STATUS_CODES or status >= 500):
        return True

    return bool(_RETRYABLE_MESSAGE.search(str(error)))
