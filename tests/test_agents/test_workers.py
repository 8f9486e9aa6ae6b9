"""Tests for the voyage planning workers."""

import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel

from voyageflow.core.errors import ToolUnavailableError
from voyageflow.core.langgraph.agents.workers import (
    BunkerWorker,
    EntityExtractorWorker,
    FinalizeWorker,
    RouteWorker,
    VesselSelectionWorker,
    WeatherWorker,
    assess_vessel,
    build_worker_registry,
    rank_vessels,
    reference_price,
)
from voyageflow.core.orchestration.schema import StageContext
from voyageflow.core.resilience.fallbacks import FallbackDispatcher
from voyageflow.core.resilience.retry import RetryConfig
from voyageflow.core.resilience.tool_client import ResilientToolClient

CONTEXT = StageContext(stage_id="stage", agent_id="agent", correlation_id="corr-1")
ROUTE = {"origin_port": "Singapore", "destination_port": "Rotterdam", "distance_nm": 3360.0, "_degraded": False}


@pytest.fixture
def tool_client(fake_tools, breakers, kv_store, catalog, sink):
    """A resilient client over the canned tools."""
    return ResilientToolClient(
        fake_tools,
        breakers=breakers,
        fallbacks=FallbackDispatcher(cache=kv_store, catalog=catalog),
        catalog=catalog,
        sink=sink,
        retry_config=RetryConfig(max_attempts=1, initial_delay_ms=0),
    )


class TestVesselAssessment:
    """Tests for the fuel and cost model."""

    def test_marginal_vessel(self):
        """Test sea days, fuel with margin and shortfall cost."""
        result = assess_vessel(
            "Ocean Star",
            {"speed_knots": 14, "consumption_mt_per_day": 30, "rob_mt": 200},
            3360.0,
            600.0,
        )

        assert result["sea_days"] == 10.0
        assert result["fuel_required_mt"] == 330.0
        assert result["bunker_shortfall_mt"] == 130.0
        assert result["total_cost_usd"] == 78000.0
        assert result["feasibility"] == "marginal"

    def test_feasible_and_infeasible(self):
        """Test enough fuel on board and a tank too small for the voyage."""
        feasible = assess_vessel("A", {"rob_mt": 500}, 3360.0, 600.0)
        infeasible = assess_vessel("B", {"tank_capacity_mt": 300}, 3360.0, 600.0)

        assert feasible["feasibility"] == "feasible"
        assert feasible["bunker_cost_usd"] == 0
        assert infeasible["feasibility"] == "infeasible"

    def test_daily_cost_included(self):
        """Test that operating cost is added for each sea day."""
        result = assess_vessel("A", {"rob_mt": 500, "daily_cost_usd": 12000}, 3360.0, 600.0)
        assert result["total_cost_usd"] == 120000.0

    def test_reference_price(self):
        """Test the cheapest quote and the historical fallback."""
        prices = {"prices": [{"prices": {"VLSFO": 610.0}}, {"prices": {"VLSFO": 595.0}}, {"prices": {}}]}
        assert reference_price(prices) == 595.0
        assert reference_price(None) == 650.0


class TestVesselRanking:
    """Tests for deterministic vessel ranking."""

    def test_feasibility_before_cost(self):
        """Test that a feasible vessel outranks a cheaper infeasible one."""
        analyses = [
            {"vessel_name": "Cheap", "total_cost_usd": 10.0, "feasibility": "infeasible", "bunker_shortfall_mt": 50.0},
            {"vessel_name": "Pricey", "total_cost_usd": 90.0, "feasibility": "feasible", "bunker_shortfall_mt": 0.0},
            {"vessel_name": "Middle", "total_cost_usd": 50.0, "feasibility": "marginal", "bunker_shortfall_mt": 20.0},
        ]
        rankings = rank_vessels(analyses)

        assert [r["vessel_name"] for r in rankings] == ["Pricey", "Middle", "Cheap"]
        assert [r["rank"] for r in rankings] == [1, 2, 3]
        assert rankings[0]["recommendation_reason"] == "No bunkering required for this voyage"
        assert rankings[1]["recommendation_reason"] == "Needs 20 MT bunkers"

    def test_ties_break_by_name_then_input_order(self):
        """Test that equal cost and feasibility fall back to name, then position."""
        analyses = [
            {"vessel_name": "beta", "total_cost_usd": 10.0, "feasibility": "feasible", "bunker_shortfall_mt": 0.0},
            {"vessel_name": "Alpha", "total_cost_usd": 10.0, "feasibility": "feasible", "bunker_shortfall_mt": 0.0},
            {"vessel_name": "beta", "total_cost_usd": 10.0, "feasibility": "feasible", "bunker_shortfall_mt": 0.0, "tag": 2},
        ]
        rankings = rank_vessels(analyses)
        assert [r["vessel_name"] for r in rankings] == ["Alpha", "beta", "beta"]

    @pytest.mark.asyncio
    async def test_identical_inputs_rank_identically(self):
        """Test that repeated comparisons of the same fleet agree."""
        worker = VesselSelectionWorker()
        state = {
            "vessel_names": ["Ocean Star", "Atlantic Dawn", "Pacific Glory"],
            "route_data": ROUTE,
            "vessel_profiles": {
                "Ocean Star": {"rob_mt": 200},
                "Atlantic Dawn": {"rob_mt": 200},
                "Pacific Glory": {"rob_mt": 400},
            },
        }

        first = await worker.execute(dict(state), CONTEXT)
        second = await worker.execute(dict(state), CONTEXT)

        first_ranking = first.produced["vessel_comparison"]["rankings"]
        assert first_ranking == second.produced["vessel_comparison"]["rankings"]
        assert [r["vessel_name"] for r in first_ranking] == ["Pacific Glory", "Atlantic Dawn", "Ocean Star"]


class TestVesselSelectionWorker:
    """Tests for the vessel comparison stage."""

    @pytest.mark.asyncio
    async def test_no_candidates(self):
        """Test that an empty fleet fails the stage."""
        output = await VesselSelectionWorker().execute({"route_data": ROUTE}, CONTEXT)
        assert output.error == "No candidate vessels to compare"

    @pytest.mark.asyncio
    async def test_profiles_from_tool(self, tool_client):
        """Test that profiles are looked up through the tool client."""
        worker = VesselSelectionWorker(tool_client)
        output = await worker.execute({"vessel_names": "Ocean Star, Atlantic Dawn", "route_data": ROUTE}, CONTEXT)
        comparison = output.produced["vessel_comparison"]

        assert [a["vessel_name"] for a in comparison["vessels_analyzed"]] == ["Ocean Star", "Atlantic Dawn"]
        assert comparison["vessels_analyzed"][0]["bunker_shortfall_mt"] == 130.0
        assert comparison["recommended_vessel"] == "Atlantic Dawn"
        assert "_degraded" not in comparison

    @pytest.mark.asyncio
    async def test_default_profiles_are_disclosed(self):
        """Test that assumed profiles mark the comparison degraded."""
        output = await VesselSelectionWorker().execute({"vessel_names": ["Ocean Star"], "route_data": ROUTE}, CONTEXT)
        comparison = output.produced["vessel_comparison"]

        assert comparison["_degraded"] is True
        assert comparison["_degradation_reason"] == "Default vessel profiles used"
        assert comparison["_missing_components"] == ["vessel_profile:Ocean Star"]


class TestEntityExtractorWorker:
    """Tests for entity resolution."""

    @pytest.mark.asyncio
    async def test_ports_from_query(self):
        """Test resolving both ports from the query."""
        output = await EntityExtractorWorker().execute(
            {"query": "Find bunker options from Singapore to Rotterdam"}, CONTEXT
        )
        assert output.produced == {"origin_port": "Singapore", "destination_port": "Rotterdam"}

    @pytest.mark.asyncio
    async def test_state_wins_over_query(self):
        """Test that known values are kept."""
        output = await EntityExtractorWorker().execute(
            {"query": "from Busan to Santos", "origin_port": "Qingdao", "vessel_names": ["Ocean Star, Atlantic Dawn"]},
            CONTEXT,
        )
        assert output.produced["origin_port"] == "Qingdao"
        assert output.produced["destination_port"] == "Santos"
        assert output.produced["vessel_names"] == ["Ocean Star", "Atlantic Dawn"]

    @pytest.mark.asyncio
    async def test_clarification_needed(self):
        """Test that unresolved ports request clarification."""
        output = await EntityExtractorWorker().execute({"query": "Where should I bunker?"}, CONTEXT)

        assert output.produced["needs_clarification"] is True
        assert output.produced["clarification_question"] == "Which ports does the voyage start and end at?"


class TestToolWorkers:
    """Tests for workers calling tools through the resilience layer."""

    @pytest.mark.asyncio
    async def test_route_weather_bunker_chain(self, tool_client):
        """Test the route, weather and bunker workers end to end."""
        state = {"origin_port": "Singapore", "destination_port": "Rotterdam"}
        route = (await RouteWorker(tool_client).execute(dict(state), CONTEXT)).produced["route_data"]
        assert route["distance_nm"] == 8300.0
        assert route["_degraded"] is False

        state["route_data"] = route
        weather = (await WeatherWorker(tool_client).execute(dict(state), CONTEXT)).produced["weather_forecast"]
        assert weather["consumption_multiplier"] == 1.05

        state["weather_forecast"] = weather
        bunker = (await BunkerWorker(tool_client).execute(dict(state), CONTEXT)).produced
        assert [p["port_code"] for p in bunker["bunker_ports"]["ports"]] == ["LKCMB", "AEFJR"]
        assert bunker["bunker_analysis"]["best_option"]["port_name"] == "Fujairah"

    @pytest.mark.asyncio
    async def test_bunker_degrades_when_prices_fail(self, tool_client, fake_tools):
        """Test that a failed price lookup degrades rather than fails the stage."""

        async def prices_down(args):
            raise ConnectionError("price feed connection reset")

        fake_tools.register("get_fuel_prices", prices_down)
        output = await BunkerWorker(tool_client).execute({"route_data": ROUTE}, CONTEXT)
        port_prices = output.produced["port_prices"]

        assert port_prices["_degraded"] is True
        assert [p["port_code"] for p in port_prices["prices"]] == ["LKCMB", "AEFJR"]
        assert output.produced["bunker_analysis"]["_degraded"] is False

    @pytest.mark.asyncio
    async def test_no_tool_client(self):
        """Test that a worker without a client fails with a typed error."""
        with pytest.raises(ToolUnavailableError):
            await RouteWorker().execute({"origin_port": "A", "destination_port": "B"}, CONTEXT)


class TestFinalizeWorker:
    """Tests for the final recommendation."""

    @pytest.mark.asyncio
    async def test_template_summary(self):
        """Test the summary assembled without a chat model."""
        state = {
            "route_data": {**ROUTE, "estimated_hours": 240.0},
            "bunker_analysis": {"best_option": {"port_code": "AEFJR", "port_name": "Fujairah"}, "_degraded": False},
        }
        output = await FinalizeWorker().execute(state, CONTEXT)
        recommendation = output.produced["final_recommendation"]

        assert "Recommended bunker port: Fujairah." in recommendation["summary"]
        assert recommendation["bunker_option"]["port_code"] == "AEFJR"
        assert recommendation["degraded"] is False
        assert recommendation["components"] == ["bunker_analysis", "route_data"]

    @pytest.mark.asyncio
    async def test_degraded_inputs_disclosed(self):
        """Test that estimated components are named in the summary."""
        state = {
            "route_data": {**ROUTE, "_degraded": True, "_degradation_reason": "straight-line estimate"},
            "weather_forecast": {"consumption_multiplier": 1.0, "_degraded": True, "_degradation_reason": "no forecast"},
        }
        recommendation = (await FinalizeWorker().execute(state, CONTEXT)).produced["final_recommendation"]

        assert recommendation["degraded"] is True
        assert recommendation["summary"].endswith(" Note: some figures are estimates (route_data, weather_forecast).")
        assert recommendation["degradation_reasons"]["route_data"] == "straight-line estimate"

    @pytest.mark.asyncio
    async def test_llm_summary(self):
        """Test that a chat model's narrative replaces the template."""
        llm = FakeListChatModel(responses=["Bunker at Fujairah on the way to Rotterdam."])
        output = await FinalizeWorker(llm=llm).execute({"route_data": ROUTE}, CONTEXT)
        assert output.produced["final_recommendation"]["summary"] == "Bunker at Fujairah on the way to Rotterdam."

    @pytest.mark.asyncio
    async def test_nothing_to_summarize(self):
        """Test the summary when no stage produced anything."""
        output = await FinalizeWorker().execute({}, CONTEXT)
        assert output.produced["final_recommendation"]["summary"] == "No results were produced for this query."


class TestWorkerRegistry:
    """Tests for the standard registry."""

    def test_standard_workers(self):
        """Test that every catalog agent has a worker."""
        registry = build_worker_registry()
        names = {w["name"] for w in registry.list_workers()}

        assert names == {
            "entity_extractor",
            "route_agent",
            "weather_agent",
            "bunker_agent",
            "vessel_selection_agent",
            "finalize",
        }
