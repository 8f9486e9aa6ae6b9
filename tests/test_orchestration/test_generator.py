"""Unit tests for execution plan generation."""

import pytest

from voyageflow.core.errors import PlanGenerationError
from voyageflow.core.orchestration.dag import (
    compute_levels,
    find_cycle,
)
from voyageflow.core.orchestration.generator import PlanGenerator
from voyageflow.core.orchestration.schema import Classification
from voyageflow.core.orchestration.workflows import IntentWorkflowRegistry

PORTS = {"origin_port": "Singapore", "destination_port": "Rotterdam", "query": "bunker plan"}


class TestConfigDrivenPlans:
    """Tests for plans built from intent workflows."""

    def setup_method(self):
        """Create a generator over the packaged catalog and workflows."""
        self.generator = PlanGenerator(workflows=IntentWorkflowRegistry())

    def test_guarded_step_dropped_when_ports_known(self):
        """Test that the extraction step is omitted when its guard fails."""
        plan = self.generator.generate("bunker plan", Classification(query_type="bunker_planning"), PORTS)

        assert plan.strategy == "config"
        assert plan.workflow_id == "bunker_planning"
        assert plan.workflow_version == "1.2.0"
        assert [s.stage_id for s in plan.stages] == ["route", "weather", "bunker", "finalize"]
        assert plan.get_stage("route").depends_on == []
        assert plan.get_stage("weather").depends_on == ["route"]
        assert plan.get_stage("bunker").depends_on == ["route"]
        assert plan.get_stage("finalize").depends_on == ["weather", "bunker"]
        assert plan.get_stage("weather").required is False
        assert plan.expected_outputs == ["bunker_analysis", "final_recommendation"]

    def test_extraction_step_feeds_route(self):
        """Test that dependencies are inferred from produces/consumes contracts."""
        plan = self.generator.generate("where to bunker", Classification(query_type="bunker_planning"), {"query": "q"})

        assert plan.stages[0].stage_id == "extract"
        assert plan.get_stage("route").depends_on == ["extract"]
        assert plan.required_state == ["query"]

    def test_stage_settings_come_from_catalog(self):
        """Test that timeouts, retry policies and parallelism are copied from the catalog."""
        plan = self.generator.generate("bunker plan", Classification(query_type="bunker_planning"), PORTS)
        bunker = plan.get_stage("bunker")

        assert bunker.agent_id == "bunker_agent"
        assert bunker.can_run_in_parallel is True
        assert bunker.timeout_ms == 45000
        assert bunker.retry_policy.max_retries == 2
        assert bunker.tools_needed == ["find_bunker_ports", "get_fuel_prices", "analyze_bunker_options"]

    def test_estimates(self):
        """Test that duration sums each level's slowest stage and cost sums all stages."""
        plan = self.generator.generate("bunker plan", Classification(query_type="bunker_planning"), PORTS)

        assert plan.estimates.total_duration_ms == 5000 + 5000 + 3000
        assert plan.estimates.total_cost_usd == pytest.approx(0.0135)
        assert plan.estimates.agent_count == 4
        assert plan.estimates.llm_calls == 2
        assert plan.estimates.api_calls == 3

    def test_generation_is_deterministic(self):
        """Test that identical inputs give identical stage layouts."""
        classification = Classification(query_type="vessel_selection")
        state = {**PORTS, "vessel_names": ["Ocean Star", "Atlantic Dawn"]}
        first = self.generator.generate("q", classification, state)
        second = PlanGenerator(workflows=IntentWorkflowRegistry(), cache_size=0).generate("q", classification, state)

        assert first.stages == second.stages
        assert first.estimates == second.estimates
        assert first.plan_id != second.plan_id

    def test_layout_cache(self):
        """Test that repeated layouts are memoized."""
        classification = Classification(query_type="route_calculation")
        self.generator.generate("q", classification, PORTS)
        self.generator.generate("q", classification, PORTS)
        assert self.generator.cache_hits == 1

        self.generator.clear_cache()
        self.generator.generate("q", classification, PORTS)
        assert self.generator.cache_hits == 1

    def test_generated_plans_are_acyclic(self):
        """Test that every packaged workflow yields an acyclic plan."""
        workflows = IntentWorkflowRegistry()
        for intent in workflows.intents():
            plan = self.generator.generate("q", Classification(query_type=intent), {"query": "q"})
            assert find_cycle(plan.stages) is None
            levels = compute_levels(plan.stages)
            for stage in plan.stages:
                for dep in stage.depends_on:
                    assert levels[dep] < levels[stage.stage_id]


class TestReasoningDrivenPlans:
    """Tests for plans assembled from the catalog."""

    def setup_method(self):
        """Create a generator with no workflows."""
        self.generator = PlanGenerator(workflows=IntentWorkflowRegistry("/nonexistent/intents"))

    def test_backward_chaining(self):
        """Test that producers of missing inputs are pulled into the plan."""
        plan = self.generator.generate("bunker plan", Classification(query_type="bunker_planning"), PORTS)

        assert plan.strategy == "reasoning"
        assert [s.stage_id for s in plan.stages] == ["route_agent", "bunker_agent", "finalize"]
        assert plan.get_stage("bunker_agent").depends_on == ["route_agent"]
        assert set(plan.get_stage("finalize").depends_on) == {"route_agent", "bunker_agent"}
        assert plan.expected_outputs == ["bunker_ports", "port_prices", "bunker_analysis"]

    def test_extractor_chained_when_ports_missing(self):
        """Test that the entity extractor is added to produce the ports."""
        plan = self.generator.generate("route please", Classification(query_type="route_calculation"), {"query": "q"})
        assert [s.stage_id for s in plan.stages] == ["entity_extractor", "route_agent", "finalize"]

    def test_unknown_intent_raises(self):
        """Test that an intent nobody serves is a plan error."""
        with pytest.raises(PlanGenerationError):
            self.generator.generate("q", Classification(query_type="tea_ceremony"), {})

    def test_classification_agent_fallback(self):
        """Test that the classified first agent serves an intent without declarations."""
        plan = self.generator.generate(
            "q",
            Classification(query_type="custom", agent_id="route_agent"),
            PORTS,
        )
        assert plan.stages[0].agent_id == "route_agent"
