"""Unit tests for static plan validation."""

import pytest

from voyageflow.core.catalog.registry import CatalogRegistry
from voyageflow.core.catalog.schema import (
    AgentDefinition,
    ToolAccess,
    ToolDefinition,
)
from voyageflow.core.errors import PlanValidationError
from voyageflow.core.orchestration.generator import PlanGenerator
from voyageflow.core.orchestration.schema import (
    Classification,
    ExecutionPlan,
    PlanContext,
    Stage,
)
from voyageflow.core.orchestration.validator import PlanValidator
from voyageflow.core.orchestration.workflows import IntentWorkflowRegistry


def _stage(stage_id, order, agent_id="route_agent", depends_on=None, **kwargs):
    return Stage(
        stage_id=stage_id,
        order=order,
        agent_id=agent_id,
        agent_name=agent_id,
        depends_on=depends_on or [],
        **kwargs,
    )


class TestPlanValidator:
    """Tests for the validator against the packaged catalog."""

    def setup_method(self):
        """Create a validator and a generator sharing the catalog."""
        self.catalog = CatalogRegistry()
        self.validator = PlanValidator(self.catalog)
        self.generator = PlanGenerator(self.catalog, IntentWorkflowRegistry())

    def test_generated_plan_is_valid(self):
        """Test that a generated plan passes validation."""
        state = {"origin_port": "Singapore", "destination_port": "Rotterdam", "query": "q"}
        plan = self.generator.generate("q", Classification(query_type="bunker_planning"), state)
        result = self.validator.validate(plan, state)

        assert result.valid is True
        assert result.errors == []

    def test_cycle_is_reported_with_path(self):
        """Test that a dependency cycle is rejected and its path named."""
        plan = ExecutionPlan(
            query_type="route_calculation",
            stages=[
                _stage("a", 1, depends_on=["b"], requires=[]),
                _stage("b", 2, depends_on=["a"], requires=[]),
            ],
        )
        result = self.validator.validate(plan, {})

        assert result.valid is False
        assert "Circular dependency detected: a -> b -> a" in result.errors

    def test_dependency_must_be_ordered_before(self):
        """Test that depending on a later stage is an error."""
        plan = ExecutionPlan(
            query_type="route_calculation",
            stages=[_stage("a", 1, depends_on=["b"]), _stage("b", 2)],
        )
        result = self.validator.validate(plan, {"origin_port": "A", "destination_port": "B"})
        assert any("not ordered before it" in e for e in result.errors)

    def test_unknown_dependency(self):
        """Test that a dependency on a missing stage is an error."""
        plan = ExecutionPlan(query_type="x", stages=[_stage("a", 1, depends_on=["ghost"])])
        result = self.validator.validate(plan, {"origin_port": "A", "destination_port": "B"})
        assert "Stage 'a' depends on unknown stage 'ghost'" in result.errors

    def test_unknown_agent(self):
        """Test that an agent missing from the catalog is an error."""
        plan = ExecutionPlan(query_type="x", stages=[_stage("a", 1, agent_id="ghost_agent")])
        result = self.validator.validate(plan, {})
        assert any("Agent 'ghost_agent' not found" in e for e in result.errors)

    def test_missing_required_input(self):
        """Test that an unsatisfied input is an error."""
        plan = ExecutionPlan(
            query_type="route_calculation",
            stages=[_stage("route", 1, requires=["origin_port", "destination_port"])],
        )
        result = self.validator.validate(plan, {"origin_port": "Singapore"})

        assert result.valid is False
        assert any("requires 'destination_port'" in e for e in result.errors)

    def test_input_produced_by_earlier_stage(self):
        """Test that an earlier stage's outputs satisfy later inputs."""
        plan = ExecutionPlan(
            query_type="route_calculation",
            stages=[
                _stage("extract", 1, agent_id="entity_extractor", provides=["origin_port", "destination_port"]),
                _stage("route", 2, depends_on=["extract"], requires=["origin_port", "destination_port"]),
            ],
        )
        assert self.validator.validate(plan, {}).valid is True

    def test_empty_plan(self):
        """Test that a plan without stages is rejected."""
        result = self.validator.validate(ExecutionPlan(query_type="x"), {})
        assert "Plan has no stages" in result.errors

    def test_budget_warnings(self):
        """Test that stage timeouts above the plan budget only warn."""
        plan = ExecutionPlan(
            query_type="x",
            stages=[_stage("a", 1, timeout_ms=60000)],
            context=PlanContext(timeout_ms=10000),
        )
        result = self.validator.validate(plan, {})
        assert result.valid is True
        assert any("exceeds plan timeout" in w for w in result.warnings)

    def test_parallelism_suggestion(self):
        """Test that independent serial stages produce a suggestion."""
        plan = ExecutionPlan(query_type="x", stages=[_stage("a", 1), _stage("b", 2)])
        result = self.validator.validate(plan, {})
        assert result.suggestions == ["Stages a, b are independent and could run in parallel"]

    def test_validate_or_raise(self):
        """Test that an invalid plan raises with its errors attached."""
        plan = ExecutionPlan(query_type="x", stages=[_stage("a", 1, agent_id="ghost_agent")])
        with pytest.raises(PlanValidationError) as exc_info:
            self.validator.validate_or_raise(plan, {})
        assert exc_info.value.result.valid is False

    def test_validate_or_raise_attaches_result(self):
        """Test that a valid plan comes back carrying its validation."""
        plan = ExecutionPlan(query_type="x", stages=[_stage("a", 1)])
        validated = self.validator.validate_or_raise(plan, {})
        assert validated.validation.valid is True
        assert plan.validation is None


class TestCatalogReferences:
    """Tests for disabled and missing catalog entries."""

    def setup_method(self):
        """Build a small catalog by hand."""
        self.catalog = CatalogRegistry(autoload=False)
        self.catalog.register_tool(ToolDefinition(id="live_tool", name="Live"))
        self.catalog.register_tool(ToolDefinition(id="dead_tool", name="Dead", enabled=False))
        self.catalog.register_agent(
            AgentDefinition(id="worker", name="Worker", tools=ToolAccess(required=["live_tool"]))
        )
        self.catalog.register_agent(AgentDefinition(id="retired", name="Retired", enabled=False))
        self.validator = PlanValidator(self.catalog)

    def test_disabled_agent(self):
        """Test that a disabled agent is an error."""
        plan = ExecutionPlan(query_type="x", stages=[_stage("a", 1, agent_id="retired")])
        assert "Agent 'retired' is disabled (stage 'a')" in self.validator.validate(plan).errors

    def test_disabled_and_missing_tools(self):
        """Test that required tools must exist and be enabled; optional ones only warn."""
        plan = ExecutionPlan(
            query_type="x",
            stages=[
                _stage(
                    "a",
                    1,
                    agent_id="worker",
                    tools_needed=["live_tool", "dead_tool", "ghost_tool"],
                    optional_tools=["ghost_tool"],
                )
            ],
        )
        result = self.validator.validate(plan)

        assert "Tool 'dead_tool' required by stage 'a' is disabled" in result.errors
        assert "Tool 'ghost_tool' required by stage 'a' not found in catalog" in result.errors
        assert "Optional tool 'ghost_tool' of stage 'a' is unavailable" in result.warnings
