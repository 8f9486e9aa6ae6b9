"""Plan executor: dependency-level scheduling with partial-failure semantics.

Stages are grouped into dependency levels and run in ``order`` within a
level: consecutive stages flagged ``can_run_in_parallel`` run concurrently
under a concurrency limit, and every other stage runs alone in its place.
Every invocation gets a hard timeout and a retry policy that only retries
transient failures.

A failing stage never aborts the run. Its error is recorded, and stages
that depend on a failed *required* stage are skipped, transitively.
Dependents of a failed optional stage run without its output. Results of a
level are merged into the shared state only after the whole level settles.
"""

import asyncio
import time
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    Field,
)

from voyageflow.core.config import settings
from voyageflow.core.errors import (
    PlanValidationError,
    StageError,
    StageTimeoutError,
    TransientStageError,
    WorkerNotFoundError,
    is_transient_error,
)
from voyageflow.core.langgraph.agents.workers import (
    WorkerRegistry,
    worker_registry,
)
from voyageflow.core.logging import (
    bind_correlation_id,
    clear_correlation_id,
    logger,
)
from voyageflow.core.observability.sink import (
    EventSink,
    event_sink,
)
from voyageflow.core.orchestration.dag import group_by_level
from voyageflow.core.orchestration.schema import (
    ExecutionPlan,
    ExecutionResult,
    Stage,
    StageContext,
    StageErrorRecord,
    StageStatus,
    VsEstimates,
)
from voyageflow.core.resilience.retry import compute_backoff_ms

CONTEXT_KEYS = ("messages", "query", "correlation_id", "thread_id")
MAX_MISSING_DATA_IN_DEGRADED_MODE = 3


class StageOutcome(BaseModel):
    """What one stage invocation produced."""

    stage_id: str
    status: StageStatus
    produced: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[StageErrorRecord] = None
    cost_usd: float = 0.0
    attempts: int = 0
    duration_ms: int = 0


def accuracy_percent(actual: float, estimate: float) -> int:
    """How close an actual value came to its estimate, 0-100."""
    if estimate <= 0:
        return 0
    return max(0, round((1 - abs(actual - estimate) / estimate) * 100))


class PlanExecutor:
    """Runs validated execution plans."""

    def __init__(
        self,
        workers: Optional[WorkerRegistry] = None,
        sink: Optional[EventSink] = None,
        max_concurrency: Optional[int] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize the executor.

        Args:
            workers: Registry resolving agent ids to worker implementations.
            sink: Observability sink.
            max_concurrency: Upper bound on concurrently running stages.
            sleep: Backoff sleep, injectable for tests.
        """
        self.workers = workers or worker_registry
        self.sink = sink or event_sink
        self.max_concurrency = max_concurrency or settings.EXECUTOR_MAX_CONCURRENCY
        self._sleep = sleep

    async def execute(self, plan: ExecutionPlan, state: Optional[Dict[str, Any]] = None) -> ExecutionResult:
        """Execute a plan against shared state.

        Args:
            plan: A validated plan.
            state: Initial shared state. Not mutated.

        Returns:
            ExecutionResult: Partial results, statuses and errors.

        Raises:
            PlanValidationError: If the plan carries a failed validation.
        """
        if plan.validation is not None and not plan.validation.valid:
            raise PlanValidationError(plan.validation)

        correlation_id = plan.context.correlation_id
        bind_correlation_id(correlation_id)
        start = time.perf_counter()
        shared: Dict[str, Any] = dict(state or {})
        agent_status: Dict[str, str] = dict(shared.get("agent_status") or {})
        statuses: Dict[str, StageStatus] = {}
        skip_reasons: Dict[str, str] = {}
        errors: List[StageErrorRecord] = []
        actual_cost = 0.0
        timed_out = False
        early_exit_reason: Optional[str] = None
        semaphore = asyncio.Semaphore(self.max_concurrency)

        logger.info(
            "plan_execution_started",
            plan_id=plan.plan_id,
            stage_count=len(plan.stages),
            timeout_ms=plan.context.timeout_ms,
        )

        try:
            for level in group_by_level(plan.stages):
                elapsed_ms = (time.perf_counter() - start) * 1000
                if not timed_out and early_exit_reason is None:
                    if elapsed_ms > plan.context.timeout_ms:
                        timed_out = True
                        logger.warning("plan_execution_timed_out", plan_id=plan.plan_id, elapsed_ms=int(elapsed_ms))
                    else:
                        early_exit_reason = self._early_exit_reason(shared)
                        if early_exit_reason:
                            logger.info("plan_execution_early_exit", plan_id=plan.plan_id, reason=early_exit_reason)

                if timed_out or early_exit_reason:
                    reason = "plan timeout reached" if timed_out else f"early exit: {early_exit_reason}"
                    for stage in level:
                        statuses[stage.stage_id] = StageStatus.SKIPPED
                        skip_reasons[stage.stage_id] = reason
                    continue

                runnable: List[Stage] = []
                for stage in level:
                    blocked_by = self._blocking_reason(stage, plan, statuses)
                    if blocked_by:
                        statuses[stage.stage_id] = StageStatus.SKIPPED
                        skip_reasons[stage.stage_id] = blocked_by
                        logger.info("stage_skipped", stage_id=stage.stage_id, reason=blocked_by)
                    else:
                        runnable.append(stage)

                snapshot = dict(shared)
                outcomes: Dict[str, StageOutcome] = {}
                for batch in self._batches(runnable):
                    settled = await asyncio.gather(
                        *(self._run_stage(s, snapshot, semaphore, correlation_id) for s in batch)
                    )
                    outcomes.update({o.stage_id: o for o in settled})

                for stage in level:
                    outcome = outcomes.get(stage.stage_id)
                    if outcome is None:
                        agent_status[stage.agent_id] = "skipped"
                        continue
                    statuses[stage.stage_id] = outcome.status
                    actual_cost += outcome.cost_usd
                    if outcome.status == StageStatus.COMPLETED:
                        shared.update(outcome.produced)
                        agent_status[stage.agent_id] = "success"
                        if outcome.produced:
                            self.sink.state_change(correlation_id, sorted(outcome.produced), stage_id=stage.stage_id)
                    else:
                        agent_status[stage.agent_id] = "failed"
                        errors.append(outcome.error)

                shared["agent_status"] = dict(agent_status)
        finally:
            clear_correlation_id()

        for stage_id, reason in skip_reasons.items():
            stage = plan.get_stage(stage_id)
            if stage is not None and agent_status.get(stage.agent_id) != "success":
                agent_status[stage.agent_id] = "skipped"
        shared["agent_status"] = agent_status

        duration_ms = int((time.perf_counter() - start) * 1000)
        ordered = sorted(plan.stages, key=lambda s: (s.order, s.stage_id))
        required_failed = any(
            statuses.get(s.stage_id) == StageStatus.FAILED and s.required for s in plan.stages
        )
        result = ExecutionResult(
            plan_id=plan.plan_id,
            success=not required_failed and not timed_out,
            stages_completed=[s.stage_id for s in ordered if statuses.get(s.stage_id) == StageStatus.COMPLETED],
            stages_failed=[s.stage_id for s in ordered if statuses.get(s.stage_id) == StageStatus.FAILED],
            stages_skipped=[s.stage_id for s in ordered if statuses.get(s.stage_id) == StageStatus.SKIPPED],
            skip_reasons=skip_reasons,
            duration_ms=duration_ms,
            actual_cost_usd=round(actual_cost, 6),
            errors=errors,
            vs_estimates=VsEstimates(
                duration_diff_ms=duration_ms - plan.estimates.total_duration_ms,
                cost_diff_usd=round(actual_cost - plan.estimates.total_cost_usd, 6),
                accuracy_percent=accuracy_percent(duration_ms, plan.estimates.total_duration_ms),
            ),
            final_state=shared,
            timed_out=timed_out,
            early_exit_reason=early_exit_reason,
        )

        logger.info(
            "plan_execution_completed",
            plan_id=plan.plan_id,
            success=result.success,
            completed=result.stages_completed,
            failed=result.stages_failed,
            skipped=result.stages_skipped,
            duration_ms=duration_ms,
            accuracy_percent=result.vs_estimates.accuracy_percent,
        )
        return result

    @staticmethod
    def _batches(stages: List[Stage]) -> List[List[Stage]]:
        """Split a level, already sorted by ``order``, into batches run one after another.

        Consecutive parallel stages share a batch; a serial stage is a batch of its own.
        """
        batches: List[List[Stage]] = []
        for stage in stages:
            if stage.can_run_in_parallel and batches and batches[-1][0].can_run_in_parallel:
                batches[-1].append(stage)
            else:
                batches.append([stage])
        return batches

    @staticmethod
    def _early_exit_reason(state: Dict[str, Any]) -> Optional[str]:
        if state.get("needs_clarification"):
            return "needs_clarification"
        if state.get("degraded_mode") and len(state.get("missing_data") or []) > MAX_MISSING_DATA_IN_DEGRADED_MODE:
            return "degraded_mode"
        return None

    @staticmethod
    def _blocking_reason(stage: Stage, plan: ExecutionPlan, statuses: Dict[str, StageStatus]) -> Optional[str]:
        """Why a stage may not start, or None when its dependencies allow it."""
        for dep in stage.depends_on:
            status = statuses.get(dep)
            if status == StageStatus.COMPLETED:
                continue
            if status == StageStatus.SKIPPED:
                return f"dependency '{dep}' was skipped"
            if status == StageStatus.FAILED:
                upstream = plan.get_stage(dep)
                if upstream is not None and upstream.required:
                    return f"required dependency '{dep}' failed"
                continue
            return f"dependency '{dep}' did not run"
        return None

    async def _run_stage(
        self,
        stage: Stage,
        snapshot: Dict[str, Any],
        semaphore: asyncio.Semaphore,
        correlation_id: str,
    ) -> StageOutcome:
        """Invoke one stage with timeout and retries. Never raises."""
        start = time.perf_counter()
        worker = self.workers.get(stage.agent_id)
        keys = set(stage.requires) | set(stage.optional_inputs) | set(CONTEXT_KEYS)
        state_slice = {k: snapshot[k] for k in keys if k in snapshot}
        policy = stage.retry_policy
        timeout_s = stage.timeout_ms / 1000
        attempt = 0
        error: BaseException

        while True:
            attempt += 1
            if worker is None:
                error = WorkerNotFoundError(f"No worker registered for agent '{stage.agent_id}'")
                break

            context = StageContext(
                stage_id=stage.stage_id,
                agent_id=stage.agent_id,
                correlation_id=correlation_id,
                attempt=attempt,
                deadline=time.monotonic() + timeout_s,
            )
            try:
                async with semaphore:
                    output = await asyncio.wait_for(worker.execute(dict(state_slice), context), timeout=timeout_s)
                if output.error:
                    raise TransientStageError(output.error) if output.retryable else StageError(output.error)

                duration_ms = int((time.perf_counter() - start) * 1000)
                cost = output.cost_usd if output.cost_usd is not None else stage.estimated_cost
                logger.info("stage_completed", stage_id=stage.stage_id, attempts=attempt, duration_ms=duration_ms)
                self.sink.agent_execution(stage.agent_id, correlation_id, duration_ms, "success", stage_id=stage.stage_id)
                return StageOutcome(
                    stage_id=stage.stage_id,
                    status=StageStatus.COMPLETED,
                    produced=output.produced,
                    cost_usd=cost,
                    attempts=attempt,
                    duration_ms=duration_ms,
                )
            except asyncio.TimeoutError:
                error = StageTimeoutError(stage.stage_id, stage.timeout_ms)
            except Exception as e:
                error = e

            if attempt > policy.max_retries or not is_transient_error(error):
                break

            delay_ms = compute_backoff_ms(attempt, policy)
            logger.warning(
                "stage_retry_scheduled",
                stage_id=stage.stage_id,
                attempt=attempt,
                delay_ms=delay_ms,
                error=str(error),
            )
            await self._sleep(delay_ms / 1000)

        duration_ms = int((time.perf_counter() - start) * 1000)
        message = str(error) or type(error).__name__
        logger.error(
            "stage_failed",
            stage_id=stage.stage_id,
            agent_id=stage.agent_id,
            attempts=attempt,
            error_type=type(error).__name__,
            error=message,
        )
        self.sink.agent_execution(stage.agent_id, correlation_id, duration_ms, "failed", stage_id=stage.stage_id)
        self.sink.error(correlation_id, message, stage_id=stage.stage_id, agent=stage.agent_id)
        return StageOutcome(
            stage_id=stage.stage_id,
            status=StageStatus.FAILED,
            error=StageErrorRecord(
                stage_id=stage.stage_id,
                agent_id=stage.agent_id,
                error=message,
                error_type=type(error).__name__,
                attempts=attempt,
                recoverable=not stage.required,
            ),
            attempts=attempt,
            duration_ms=duration_ms,
        )
