"""Voyage planning graph.

A LangGraph ``StateGraph`` that runs one query end to end:
1. classify: intent classification (cached, LLM with rule fallback)
2. plan: plan generation and static validation
3. execute: the plan executor runs the stages against the shared state
4. respond: the final answer, a clarification question or the plan errors

The graph is compiled with the durable checkpointer, so every node
boundary is a recoverable checkpoint of the thread.
"""

import uuid
from typing import (
    Any,
    Dict,
    Optional,
)

from langchain_core.messages import (
    AIMessage,
    HumanMessage,
)
from langchain_core.runnables import RunnableConfig
from langgraph.graph import (
    END,
    START,
    StateGraph,
)
from langgraph.graph.state import CompiledStateGraph

from voyageflow.core.config import (
    Environment,
    settings,
)
from voyageflow.core.errors import PlanError
from voyageflow.core.langgraph.schema import (
    STATE_FIELDS,
    VoyageState,
)
from voyageflow.core.logging import (
    bind_correlation_id,
    logger,
)
from voyageflow.core.orchestration.classifier import IntentClassifier
from voyageflow.core.orchestration.executor import PlanExecutor
from voyageflow.core.orchestration.generator import PlanGenerator
from voyageflow.core.orchestration.schema import (
    Classification,
    ExecutionPlan,
    PlanContext,
)
from voyageflow.core.orchestration.validator import PlanValidator
from voyageflow.core.persistence.checkpointer import DurableCheckpointSaver
from voyageflow.core.resilience.fallbacks import is_degraded_payload

DATA_FIELDS = (
    "route_data",
    "weather_forecast",
    "bunker_ports",
    "port_prices",
    "bunker_analysis",
    "vessel_comparison",
)


class VoyagePlanningGraph:
    """Classify -> plan -> execute -> respond graph with durable checkpoints.

    Graph structure:
        START → classify → plan → (execute →) respond → END
    """

    def __init__(
        self,
        checkpointer: DurableCheckpointSaver,
        classifier: Optional[IntentClassifier] = None,
        generator: Optional[PlanGenerator] = None,
        validator: Optional[PlanValidator] = None,
        executor: Optional[PlanExecutor] = None,
    ):
        """Initialize the graph.

        Args:
            checkpointer: Durable checkpoint saver.
            classifier: Intent classifier.
            generator: Plan generator.
            validator: Plan validator.
            executor: Plan executor.
        """
        self.checkpointer = checkpointer
        self.classifier = classifier or IntentClassifier()
        self.generator = generator or PlanGenerator()
        self.validator = validator or PlanValidator(self.generator.catalog)
        self.executor = executor or PlanExecutor()
        self._graph: Optional[CompiledStateGraph] = None

    # ─── Graph Nodes ───────────────────────────────────────────────

    async def _classify_node(self, state: VoyageState, config: RunnableConfig) -> dict:
        """Classify the query and fold extracted parameters into state."""
        bind_correlation_id(state.correlation_id)
        classification = await self.classifier.classify(state.query)

        updates: Dict[str, Any] = {"classification": classification.model_dump(mode="json")}
        for key, value in classification.extracted_params.items():
            if key in STATE_FIELDS and value:
                updates[key] = value

        logger.info(
            "graph_query_classified",
            thread_id=config["configurable"]["thread_id"],
            query_type=classification.query_type,
            method=classification.method,
            cache_hit=classification.cache_hit,
        )
        return updates

    async def _plan_node(self, state: VoyageState, config: RunnableConfig) -> dict:
        """Generate and validate a plan; record plan errors instead of raising."""
        classification = Classification.model_validate(state.classification)
        shared = state.shared_state()
        context = PlanContext(timeout_ms=settings.DEFAULT_PLAN_TIMEOUT_MS, correlation_id=state.correlation_id)

        try:
            plan = self.generator.generate(state.query, classification, shared, context)
            plan = self.validator.validate_or_raise(plan, shared)
        except PlanError as e:
            logger.warning("graph_plan_rejected", query_type=classification.query_type, error=str(e))
            return {"plan": None, "plan_errors": [str(e)]}

        return {"plan": plan.model_dump(mode="json"), "plan_errors": []}

    def _route_after_plan(self, state: VoyageState) -> str:
        """Execute a valid plan, otherwise go straight to respond."""
        return "execute" if state.plan else "respond"

    async def _execute_node(self, state: VoyageState, config: RunnableConfig) -> dict:
        """Run the plan and merge produced fields into graph state."""
        plan = ExecutionPlan.model_validate(state.plan)
        result = await self.executor.execute(plan, state.shared_state())

        updates = {key: value for key, value in result.final_state.items() if key in STATE_FIELDS}
        missing = sorted(key for key in DATA_FIELDS if is_degraded_payload(result.final_state.get(key)))
        updates["missing_data"] = missing
        updates["degraded_mode"] = bool(missing)
        updates["execution"] = result.model_dump(mode="json", exclude={"final_state"})
        return updates

    async def _respond_node(self, state: VoyageState) -> dict:
        """Turn the run outcome into the assistant message."""
        if state.plan_errors:
            text = "I could not plan this request: " + "; ".join(state.plan_errors)
        elif state.needs_clarification:
            text = state.clarification_question or "Could you clarify your request?"
        elif state.final_recommendation:
            text = state.final_recommendation.get("summary") or ""
        else:
            failed = (state.execution or {}).get("errors") or []
            reasons = ", ".join(f"{e['stage_id']}: {e['error']}" for e in failed)
            text = "The plan finished without a recommendation." + (f" Failed stages: {reasons}" if reasons else "")

        return {"response": text, "messages": [AIMessage(content=text)]}

    # ─── Graph Builder ─────────────────────────────────────────────

    async def create_graph(self) -> Optional[CompiledStateGraph]:
        """Create and compile the voyage planning graph."""
        if self._graph is not None:
            return self._graph

        try:
            builder = StateGraph(VoyageState)

            builder.add_node("classify", self._classify_node)
            builder.add_node("plan", self._plan_node)
            builder.add_node("execute", self._execute_node)
            builder.add_node("respond", self._respond_node)

            builder.add_edge(START, "classify")
            builder.add_edge("classify", "plan")
            builder.add_conditional_edges("plan", self._route_after_plan, ["execute", "respond"])
            builder.add_edge("execute", "respond")
            builder.add_edge("respond", END)

            self._graph = builder.compile(
                checkpointer=self.checkpointer,
                name=f"{settings.PROJECT_NAME} Voyage Planner ({settings.ENVIRONMENT.value})",
            )
            logger.info("voyage_graph_created")
        except Exception as e:
            logger.exception("voyage_graph_creation_failed", error=str(e))
            if settings.ENVIRONMENT == Environment.PRODUCTION:
                return None
            raise e

        return self._graph

    # ─── Public API ────────────────────────────────────────────────

    async def get_response(
        self,
        query: str,
        thread_id: str,
        initial_state: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Run a query on a thread and return the outcome.

        Per-query run status is reset on every call; voyage data from
        earlier turns of the thread is kept and reused by the plan.

        Args:
            query: The user's question.
            thread_id: Conversation thread for checkpointing.
            initial_state: Extra voyage fields known up front.

        Returns:
            Dict[str, Any]: Response text, plan, execution summary and recommendation.
        """
        if self._graph is None:
            self._graph = await self.create_graph()

        correlation_id = str(uuid.uuid4())
        config = {
            "configurable": {"thread_id": thread_id},
            "metadata": {"environment": settings.ENVIRONMENT.value, "correlation_id": correlation_id},
        }
        graph_input = {
            **{k: v for k, v in (initial_state or {}).items() if k in STATE_FIELDS},
            "messages": [HumanMessage(content=query)],
            "query": query,
            "correlation_id": correlation_id,
            "thread_id": thread_id,
            "agent_status": {},
            "needs_clarification": False,
            "clarification_question": None,
            "final_recommendation": None,
            "execution": None,
            "plan": None,
            "plan_errors": [],
        }

        state = await self._graph.ainvoke(graph_input, config=config)
        logger.info("voyage_query_completed", thread_id=thread_id, correlation_id=correlation_id)
        return {
            "thread_id": thread_id,
            "correlation_id": correlation_id,
            "response": state.get("response", ""),
            "query_type": (state.get("classification") or {}).get("query_type"),
            "plan": state.get("plan"),
            "plan_errors": state.get("plan_errors") or [],
            "execution": state.get("execution"),
            "final_recommendation": state.get("final_recommendation"),
            "degraded_mode": state.get("degraded_mode", False),
            "missing_data": state.get("missing_data") or [],
        }
