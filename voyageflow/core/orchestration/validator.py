"""Static validation of execution plans.

Checks, in order:
1. the ``depends_on`` graph is acyclic and only points at earlier stages
2. every agent and required tool exists in the catalog and is enabled
3. every stage's ``requires`` is satisfied by current state or by the
   ``provides`` of stages ordered strictly before it

Any error blocks execution; warnings and suggestions do not.
"""

from typing import (
    Any,
    Dict,
    List,
    Optional,
    Set,
)

from voyageflow.core.catalog.registry import (
    CatalogRegistry,
    catalog_registry,
)
from voyageflow.core.errors import PlanValidationError
from voyageflow.core.logging import logger
from voyageflow.core.orchestration.dag import (
    find_cycle,
    group_by_level,
)
from voyageflow.core.orchestration.generator import available_keys
from voyageflow.core.orchestration.schema import (
    ExecutionPlan,
    ValidationResult,
)


class PlanValidator:
    """Validates plans against the catalog and current state."""

    def __init__(self, catalog: Optional[CatalogRegistry] = None):
        """Initialize the validator."""
        self.catalog = catalog or catalog_registry

    def validate(self, plan: ExecutionPlan, state: Optional[Dict[str, Any]] = None) -> ValidationResult:
        """Validate a plan.

        Args:
            plan: The plan to check.
            state: Current shared state.

        Returns:
            ValidationResult: ``valid`` is False when any error was found.
        """
        errors: List[str] = []
        warnings: List[str] = []
        suggestions: List[str] = []
        stages = plan.stages

        if not stages:
            errors.append("Plan has no stages")

        seen: Set[str] = set()
        for stage in stages:
            if stage.stage_id in seen:
                errors.append(f"Duplicate stage id '{stage.stage_id}'")
            seen.add(stage.stage_id)

        # 1. Dependency graph
        cycle = find_cycle(stages)
        if cycle:
            errors.append(f"Circular dependency detected: {' -> '.join(cycle)}")

        by_id = {s.stage_id: s for s in stages}
        for stage in stages:
            for dep in stage.depends_on:
                upstream = by_id.get(dep)
                if upstream is None:
                    errors.append(f"Stage '{stage.stage_id}' depends on unknown stage '{dep}'")
                elif upstream.order >= stage.order:
                    errors.append(f"Stage '{stage.stage_id}' depends on '{dep}' which is not ordered before it")

        # 2. Catalog references
        for stage in stages:
            agent = self.catalog.get_worker(stage.agent_id)
            if agent is None:
                errors.append(f"Agent '{stage.agent_id}' not found in catalog (stage '{stage.stage_id}')")
            elif not agent.enabled:
                errors.append(f"Agent '{stage.agent_id}' is disabled (stage '{stage.stage_id}')")

            for tool_id in stage.tools_needed:
                tool = self.catalog.get_tool(tool_id)
                if tool is None:
                    errors.append(f"Tool '{tool_id}' required by stage '{stage.stage_id}' not found in catalog")
                elif not tool.enabled:
                    errors.append(f"Tool '{tool_id}' required by stage '{stage.stage_id}' is disabled")
            for tool_id in stage.optional_tools:
                tool = self.catalog.get_tool(tool_id)
                if tool is None or not tool.enabled:
                    warnings.append(f"Optional tool '{tool_id}' of stage '{stage.stage_id}' is unavailable")

        # 3. Required inputs
        available = available_keys(state or {})
        for stage in stages:
            earlier: Set[str] = set()
            for other in stages:
                if other.order < stage.order:
                    earlier.update(other.provides)
            for key in stage.requires:
                if key not in available and key not in earlier:
                    errors.append(
                        f"Stage '{stage.stage_id}' requires '{key}' which is neither in state "
                        f"nor produced by an earlier stage"
                    )

        # Budgets
        timeout_ms = plan.context.timeout_ms
        for stage in stages:
            if stage.timeout_ms > timeout_ms:
                warnings.append(
                    f"Stage '{stage.stage_id}' timeout {stage.timeout_ms}ms exceeds plan timeout {timeout_ms}ms"
                )
        if plan.estimates.total_duration_ms > timeout_ms:
            warnings.append(
                f"Estimated duration {plan.estimates.total_duration_ms}ms exceeds plan timeout {timeout_ms}ms"
            )

        if not cycle:
            for group in group_by_level(stages):
                serial = [s.stage_id for s in group if not s.can_run_in_parallel]
                if len(serial) > 1:
                    suggestions.append(f"Stages {', '.join(serial)} are independent and could run in parallel")

        result = ValidationResult(valid=not errors, errors=errors, warnings=warnings, suggestions=suggestions)
        if errors:
            logger.warning("plan_validation_failed", plan_id=plan.plan_id, errors=errors)
        else:
            logger.info("plan_validated", plan_id=plan.plan_id, warning_count=len(warnings))
        return result

    def validate_or_raise(self, plan: ExecutionPlan, state: Optional[Dict[str, Any]] = None) -> ExecutionPlan:
        """Validate and return the plan carrying its result.

        Raises:
            PlanValidationError: If the plan has any error.
        """
        result = self.validate(plan, state)
        if not result.valid:
            raise PlanValidationError(result)
        return plan.with_validation(result)
