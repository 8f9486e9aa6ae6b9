"""Execution plan generation.

Two strategies:
1. Config-driven: the intent has a versioned workflow; steps whose guard
   fails or whose agent already succeeded are dropped, the rest become
   stages in workflow order.
2. Reasoning-driven: no workflow exists; the plan is assembled from the
   catalog by chaining ``produces``/``consumes`` contracts backwards from
   the outputs of the agents that declare the intent.

Generation is a pure function of its inputs and the catalog. The plan is
returned unvalidated.
"""

from collections import OrderedDict
from typing import (
    Any,
    Dict,
    List,
    Optional,
    Set,
    Tuple,
)

from voyageflow.core.catalog.registry import (
    CatalogRegistry,
    catalog_registry,
)
from voyageflow.core.catalog.schema import (
    AgentDefinition,
    AgentType,
    ToolCost,
)
from voyageflow.core.config import settings
from voyageflow.core.errors import PlanGenerationError
from voyageflow.core.logging import logger
from voyageflow.core.orchestration.dag import compute_levels
from voyageflow.core.orchestration.schema import (
    Classification,
    ExecutionPlan,
    PlanContext,
    PlanEstimates,
    Stage,
)
from voyageflow.core.orchestration.workflows import (
    IntentWorkflow,
    IntentWorkflowRegistry,
    WorkflowStep,
    intent_workflow_registry,
)

LLM_COST_PER_TOKEN_USD = 0.000003
TOOL_COST_USD = {
    ToolCost.FREE: 0.0,
    ToolCost.API_CALL: 0.001,
    ToolCost.EXPENSIVE: 0.01,
}
DEFAULT_DURATION_MS = {
    AgentType.SUPERVISOR: 2000,
    AgentType.SPECIALIST: 5000,
    AgentType.FINALIZER: 3000,
}
FALLBACK_DURATION_MS = 5000
ALWAYS_AVAILABLE = {"messages"}


def available_keys(state: Dict[str, Any]) -> Set[str]:
    """State keys holding a usable value."""
    return {k for k, v in state.items() if v is not None} | ALWAYS_AVAILABLE


class PlanGenerator:
    """Builds execution plans from workflows or the catalog."""

    def __init__(
        self,
        catalog: Optional[CatalogRegistry] = None,
        workflows: Optional[IntentWorkflowRegistry] = None,
        cache_size: Optional[int] = None,
    ):
        """Initialize the generator.

        Args:
            catalog: Agent/tool catalog.
            workflows: Intent workflow registry.
            cache_size: Number of stage layouts memoized; 0 disables caching.
        """
        self.catalog = catalog or catalog_registry
        self.workflows = workflows or intent_workflow_registry
        self.cache_size = settings.PLAN_CACHE_SIZE if cache_size is None else cache_size
        self._cache: "OrderedDict[Tuple, Tuple[List[Stage], PlanEstimates]]" = OrderedDict()
        self.cache_hits = 0

    def generate(
        self,
        query: str,
        classification: Classification,
        state: Optional[Dict[str, Any]] = None,
        context: Optional[PlanContext] = None,
    ) -> ExecutionPlan:
        """Generate a plan for a classified query.

        Args:
            query: The normalized user query.
            classification: Intent classification result.
            state: Current shared state.
            context: Run-level settings; defaults from configuration.

        Returns:
            ExecutionPlan: The unvalidated plan.

        Raises:
            PlanGenerationError: If neither a workflow nor the catalog can serve the intent.
        """
        state = state or {}
        context = context or PlanContext(timeout_ms=settings.DEFAULT_PLAN_TIMEOUT_MS)
        workflow = self.workflows.get(classification.query_type)

        if workflow is not None:
            plan = self._from_workflow(workflow, query, classification, state, context)
        else:
            plan = self._from_catalog(query, classification, state, context)

        logger.info(
            "plan_generated",
            plan_id=plan.plan_id,
            query_type=plan.query_type,
            strategy=plan.strategy,
            stages=[s.stage_id for s in plan.stages],
            estimated_cost_usd=plan.estimates.total_cost_usd,
            estimated_duration_ms=plan.estimates.total_duration_ms,
        )
        return plan

    def get_next_step(self, intent: str, state: Dict[str, Any]) -> Optional[WorkflowStep]:
        """The next workflow step for supervisor-style routing."""
        workflow = self.workflows.get(intent)
        return workflow.next_step(state) if workflow else None

    # ─── Config-driven ───────────────────────────────────────────

    def _from_workflow(
        self,
        workflow: IntentWorkflow,
        query: str,
        classification: Classification,
        state: Dict[str, Any],
        context: PlanContext,
    ) -> ExecutionPlan:
        pending = workflow.pending_steps(state)
        cache_key = (
            workflow.id,
            workflow.version,
            tuple(s.id for s in pending),
            frozenset(available_keys(state)),
        )
        cached = self._cache_get(cache_key)
        if cached is not None:
            stages, estimates = cached
        else:
            stages = self._workflow_stages(pending)
            estimates = self._estimate(stages)
            self._cache_put(cache_key, (stages, estimates))

        return ExecutionPlan(
            query_type=classification.query_type,
            strategy="config",
            workflow_id=workflow.id,
            workflow_version=workflow.version,
            stages=stages,
            estimates=estimates,
            required_state=self._required_state(stages),
            expected_outputs=list(workflow.expected_outputs) or self._all_outputs(stages),
            context=context,
            original_query=query,
            classification=classification,
        )

    def _workflow_stages(self, steps: List[WorkflowStep]) -> List[Stage]:
        included = {s.id for s in steps}
        stages: List[Stage] = []
        for order, step in enumerate(steps, start=1):
            agent = self.catalog.get_worker(step.agent)
            requires = set(agent.consumes.required) if agent else set()
            if step.depends_on is not None:
                depends_on = [d for d in step.depends_on if d in included]
            else:
                depends_on = [s.stage_id for s in stages if requires & set(s.provides)]
            stages.append(self._build_stage(step.id, order, step.agent, agent, step.required, depends_on))
        return stages

    # ─── Reasoning-driven ────────────────────────────────────────

    def _from_catalog(
        self,
        query: str,
        classification: Classification,
        state: Dict[str, Any],
        context: PlanContext,
    ) -> ExecutionPlan:
        intent_agents = self.catalog.find_by_intent(classification.query_type)
        if classification.agent_id and not intent_agents:
            agent = self.catalog.get_worker(classification.agent_id)
            if agent and agent.enabled:
                intent_agents = [agent]
        if not intent_agents:
            raise PlanGenerationError(f"No workflow or catalog agent serves intent '{classification.query_type}'")

        present = available_keys(state)
        selected: "OrderedDict[str, AgentDefinition]" = OrderedDict()

        def provided(field: str) -> bool:
            return field in present or any(field in a.produces for a in selected.values())

        def need(field: str, chain: Set[str]) -> None:
            if provided(field):
                return
            producers = [p for p in self.catalog.find_producers(field) if p.id not in chain]
            if not producers:
                return
            producer = producers[0]
            selected[producer.id] = producer
            for requirement in producer.consumes.required:
                need(requirement, chain | {producer.id})

        for agent in intent_agents:
            selected[agent.id] = agent
            for requirement in agent.consumes.required:
                need(requirement, {agent.id})

        finalizers = [a for a in self.catalog.list_enabled() if a.type == AgentType.FINALIZER and a.id not in selected]
        ordered = self._topological(list(selected.values()))
        if finalizers:
            ordered.append(finalizers[0])

        stages: List[Stage] = []
        for order, agent in enumerate(ordered, start=1):
            inputs = set(agent.consumes.required)
            if agent.type == AgentType.FINALIZER:
                inputs |= set(agent.consumes.optional)
            depends_on = [s.stage_id for s in stages if inputs & set(s.provides)]
            stages.append(self._build_stage(agent.id, order, agent.id, agent, True, depends_on))

        targets: List[str] = []
        for agent in intent_agents:
            targets.extend(f for f in agent.produces if f not in targets)

        return ExecutionPlan(
            query_type=classification.query_type,
            strategy="reasoning",
            stages=stages,
            estimates=self._estimate(stages),
            required_state=self._required_state(stages),
            expected_outputs=targets,
            context=context,
            original_query=query,
            classification=classification,
        )

    @staticmethod
    def _topological(agents: List[AgentDefinition]) -> List[AgentDefinition]:
        """Order agents so producers precede consumers; ties broken by id."""
        by_id = {a.id: a for a in agents}
        deps: Dict[str, Set[str]] = {}
        for agent in agents:
            deps[agent.id] = {
                other.id
                for other in agents
                if other.id != agent.id and set(agent.consumes.required) & set(other.produces)
            }

        ordered: List[AgentDefinition] = []
        remaining = dict(deps)
        while remaining:
            ready = sorted(a for a, d in remaining.items() if not (d & set(remaining)))
            if not ready:
                ready = sorted(remaining)[:1]
            for agent_id in ready:
                ordered.append(by_id[agent_id])
                del remaining[agent_id]
        return ordered

    # ─── Shared helpers ──────────────────────────────────────────

    def _build_stage(
        self,
        stage_id: str,
        order: int,
        agent_id: str,
        agent: Optional[AgentDefinition],
        required: bool,
        depends_on: List[str],
    ) -> Stage:
        if agent is None:
            return Stage(
                stage_id=stage_id,
                order=order,
                agent_id=agent_id,
                agent_name=agent_id,
                required=required,
                depends_on=depends_on,
            )

        cost = agent.llm.max_tokens * LLM_COST_PER_TOKEN_USD if agent.llm else 0.0
        for tool_id in agent.tools.required:
            tool = self.catalog.get_tool(tool_id)
            if tool is not None:
                cost += TOOL_COST_USD[tool.cost]

        duration = agent.estimated_duration_ms or DEFAULT_DURATION_MS.get(agent.type, FALLBACK_DURATION_MS)
        return Stage(
            stage_id=stage_id,
            order=order,
            agent_id=agent.id,
            agent_name=agent.name,
            agent_type=agent.type,
            required=required,
            can_run_in_parallel=agent.execution.can_run_in_parallel,
            depends_on=depends_on,
            provides=list(agent.produces),
            requires=list(agent.consumes.required),
            optional_inputs=list(agent.consumes.optional),
            tools_needed=list(agent.tools.required),
            optional_tools=list(agent.tools.optional),
            estimated_duration_ms=duration,
            estimated_cost=round(cost, 6),
            timeout_ms=agent.execution.max_execution_time_ms,
            retry_policy=agent.execution.retry_policy,
        )

    def _estimate(self, stages: List[Stage]) -> PlanEstimates:
        """Sum cost; duration is the sum over levels of each level's slowest stage."""
        levels = compute_levels(stages)
        slowest: Dict[int, int] = {}
        for stage in stages:
            level = levels[stage.stage_id]
            slowest[level] = max(slowest.get(level, 0), stage.estimated_duration_ms)

        api_calls = 0
        llm_calls = 0
        for stage in stages:
            agent = self.catalog.get_worker(stage.agent_id)
            if agent and agent.llm:
                llm_calls += 1
            for tool_id in stage.tools_needed:
                tool = self.catalog.get_tool(tool_id)
                if tool and tool.cost != ToolCost.FREE:
                    api_calls += 1

        return PlanEstimates(
            total_cost_usd=round(sum(s.estimated_cost for s in stages), 6),
            total_duration_ms=sum(slowest.values()),
            agent_count=len({s.agent_id for s in stages}),
            llm_calls=llm_calls,
            api_calls=api_calls,
        )

    @staticmethod
    def _required_state(stages: List[Stage]) -> List[str]:
        """Keys the plan needs before it starts."""
        provided: Set[str] = set(ALWAYS_AVAILABLE)
        needed: List[str] = []
        for stage in sorted(stages, key=lambda s: s.order):
            for key in stage.requires:
                if key not in provided and key not in needed:
                    needed.append(key)
            provided.update(stage.provides)
        return needed

    @staticmethod
    def _all_outputs(stages: List[Stage]) -> List[str]:
        outputs: List[str] = []
        for stage in stages:
            outputs.extend(f for f in stage.provides if f not in outputs)
        return outputs

    def _cache_get(self, key: Tuple) -> Optional[Tuple[List[Stage], PlanEstimates]]:
        if not self.cache_size or key not in self._cache:
            return None
        self._cache.move_to_end(key)
        self.cache_hits += 1
        return self._cache[key]

    def _cache_put(self, key: Tuple, value: Tuple[List[Stage], PlanEstimates]) -> None:
        if not self.cache_size:
            return
        self._cache[key] = value
        self._cache.move_to_end(key)
        while len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)

    def clear_cache(self) -> None:
        """Forget memoized stage layouts."""
        self._cache.clear()
