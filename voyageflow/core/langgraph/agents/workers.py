"""Worker agents for voyage planning.

Each worker is a specialized agent bound to one catalog entry. The plan
executor hands it a slice of the shared state (the entry's required and
optional inputs plus the query context) and merges the fields it produces
back into the shared state once the stage's dependency level settles.

Workers reach external services only through the ``ResilientToolClient``,
so a degraded tool result arrives as a payload carrying ``_degraded`` and
the worker passes it on rather than failing.
"""

import json
from typing import (
    Any,
    Dict,
    List,
    Optional,
)

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import (
    HumanMessage,
    SystemMessage,
)
from pydantic import (
    BaseModel,
    Field,
)

from voyageflow.core.errors import (
    ToolNotFoundError,
    ToolUnavailableError,
)
from voyageflow.core.logging import logger
from voyageflow.core.orchestration.classifier import (
    extract_params,
    normalize_vessel_names,
)
from voyageflow.core.orchestration.schema import StageContext
from voyageflow.core.resilience.fallbacks import (
    HISTORICAL_FUEL_PRICES_USD,
    ToolResult,
    is_degraded_payload,
)
from voyageflow.core.resilience.tool_client import ResilientToolClient

DEFAULT_VESSEL_PROFILE = {
    "speed_knots": 14.0,
    "consumption_mt_per_day": 30.0,
    "rob_mt": 0.0,
    "daily_cost_usd": 0.0,
}
FUEL_SAFETY_MARGIN = 1.1
FEASIBILITY_ORDER = {"feasible": 0, "marginal": 1, "infeasible": 2}


class WorkerOutput(BaseModel):
    """What a worker hands back to the executor.

    Attributes:
        produced: State fields to merge into the shared state.
        error: Failure message. A set error fails the stage.
        retryable: Whether the failure is transient.
        cost_usd: Actual cost, when the worker can measure it.
    """

    produced: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    retryable: bool = False
    cost_usd: Optional[float] = None


class BaseWorker:
    """Base class for all worker agents.

    Attributes:
        name: Catalog agent id this worker implements.
        description: Brief description of the worker's role.
        tool_client: Resilient client used for every tool call.
        llm: Optional chat model for narrative output.
    """

    name: str = "base_worker"
    description: str = "A base worker agent."

    def __init__(self, tool_client: Optional[ResilientToolClient] = None, llm: Optional[BaseChatModel] = None):
        """Initialize the worker agent."""
        self.tool_client = tool_client
        self.llm = llm

    async def execute(self, state: Dict[str, Any], context: StageContext) -> WorkerOutput:
        """Run the worker against its state slice.

        Args:
            state: The worker's inputs. Owned by the worker.
            context: Stage id, attempt number and deadline.

        Returns:
            WorkerOutput: Produced fields or an error.
        """
        raise NotImplementedError

    async def call_tool(
        self,
        tool_id: str,
        args: Dict[str, Any],
        context: StageContext,
        state: Optional[Dict[str, Any]] = None,
    ) -> ToolResult:
        """Call a tool through the resilience layer.

        Raises:
            ToolUnavailableError: If no client is configured or the call failed without fallback.
        """
        if self.tool_client is None:
            raise ToolUnavailableError(tool_id, "no tool client configured")
        return await self.tool_client.call(tool_id, args, context=context, fallback_context=state)

    def __repr__(self) -> str:
        """Return a string representation of the worker."""
        return f"<{self.__class__.__name__} name={self.name!r}>"


class EntityExtractorWorker(BaseWorker):
    """Resolves ports and vessel names from the query."""

    name = "entity_extractor"
    description = "Resolves ports and vessel names mentioned in the query."

    async def execute(self, state: Dict[str, Any], context: StageContext) -> WorkerOutput:
        """Extract entities, keeping values already present in state."""
        found = extract_params(state.get("query") or "")
        produced: Dict[str, Any] = {}
        for key in ("origin_port", "destination_port"):
            value = state.get(key) or found.get(key)
            if value:
                produced[key] = value

        vessels = normalize_vessel_names(state.get("vessel_names")) or normalize_vessel_names(found.get("vessel_names"))
        if vessels:
            produced["vessel_names"] = vessels

        if "origin_port" not in produced or "destination_port" not in produced:
            produced["needs_clarification"] = True
            produced["clarification_question"] = "Which ports does the voyage start and end at?"

        logger.info("entities_extracted", stage_id=context.stage_id, fields=sorted(produced))
        return WorkerOutput(produced=produced)


class RouteWorker(BaseWorker):
    """Computes the voyage route."""

    name = "route_agent"
    description = "Computes the voyage route between origin and destination."

    async def execute(self, state: Dict[str, Any], context: StageContext) -> WorkerOutput:
        """Calculate the route between the resolved ports."""
        args = {
            "origin_port": state["origin_port"],
            "destination_port": state["destination_port"],
        }
        if state.get("vessel_speed_knots"):
            args["speed_knots"] = state["vessel_speed_knots"]

        result = await self.call_tool("calculate_route", args, context, state)
        return WorkerOutput(produced={"route_data": result.to_payload()})


class WeatherWorker(BaseWorker):
    """Forecasts weather along the route."""

    name = "weather_agent"
    description = "Forecasts weather and its consumption impact along the route."

    async def execute(self, state: Dict[str, Any], context: StageContext) -> WorkerOutput:
        """Build the weather timeline for the computed route."""
        route = state["route_data"]
        args = {
            "waypoints": route.get("waypoints") or [],
            "distance_nm": route.get("distance_nm"),
            "estimated_hours": route.get("estimated_hours"),
        }
        result = await self.call_tool("calculate_weather_timeline", args, context, state)
        return WorkerOutput(produced={"weather_forecast": result.to_payload()})


class BunkerWorker(BaseWorker):
    """Finds bunkering ports and ranks the options."""

    name = "bunker_agent"
    description = "Finds and ranks bunkering options along the route."

    async def execute(self, state: Dict[str, Any], context: StageContext) -> WorkerOutput:
        """Search ports, price them and analyze the options."""
        route = state["route_data"]
        route_args = {
            "origin_port": route.get("origin_port"),
            "destination_port": route.get("destination_port"),
            "waypoints": route.get("waypoints") or [],
        }
        ports_result = await self.call_tool("find_bunker_ports", {"route": route_args}, context, state)
        ports = (ports_result.data or {}).get("ports") or []
        port_codes = [p["port_code"] for p in ports if isinstance(p, dict) and p.get("port_code")]

        prices_result = await self.call_tool(
            "get_fuel_prices",
            {"port_codes": port_codes},
            context,
            {**state, "port_codes": port_codes},
        )
        prices = (prices_result.data or {}).get("prices") or []

        weather = state.get("weather_forecast") or {}
        analysis_result = await self.call_tool(
            "analyze_bunker_options",
            {
                "ports": ports,
                "prices": prices,
                "fuel_required_mt": state.get("fuel_required_mt"),
                "consumption_multiplier": weather.get("consumption_multiplier", 1.0),
            },
            context,
            state,
        )

        logger.info(
            "bunker_options_analyzed",
            stage_id=context.stage_id,
            port_count=len(ports),
            degraded=[r.tool_name for r in (ports_result, prices_result, analysis_result) if r.is_degraded],
        )
        return WorkerOutput(
            produced={
                "bunker_ports": ports_result.to_payload(),
                "port_prices": prices_result.to_payload(),
                "bunker_analysis": analysis_result.to_payload(),
            }
        )


def reference_price(port_prices: Any, grade: str = "VLSFO") -> float:
    """Lowest quoted price for a fuel grade, or the historical average."""
    quotes = []
    for entry in (port_prices or {}).get("prices") or []:
        price = (entry.get("prices") or {}).get(grade) if isinstance(entry, dict) else None
        if isinstance(price, (int, float)):
            quotes.append(float(price))
    return min(quotes) if quotes else HISTORICAL_FUEL_PRICES_USD[grade]


def assess_vessel(name: str, profile: Dict[str, Any], distance_nm: float, price_usd_per_mt: float) -> Dict[str, Any]:
    """Fuel requirement, shortfall, cost and feasibility of one vessel for a route."""
    merged = {**DEFAULT_VESSEL_PROFILE, **{k: v for k, v in profile.items() if v is not None}}
    speed = float(merged["speed_knots"]) or DEFAULT_VESSEL_PROFILE["speed_knots"]
    sea_days = distance_nm / (speed * 24)
    fuel_required = round(sea_days * float(merged["consumption_mt_per_day"]) * FUEL_SAFETY_MARGIN, 1)
    shortfall = round(max(0.0, fuel_required - float(merged["rob_mt"])), 1)
    capacity = merged.get("tank_capacity_mt")

    if capacity is not None and float(capacity) < fuel_required:
        feasibility = "infeasible"
    elif shortfall == 0:
        feasibility = "feasible"
    else:
        feasibility = "marginal"

    bunker_cost = shortfall * price_usd_per_mt
    total_cost = round(bunker_cost + sea_days * float(merged["daily_cost_usd"]), 2)
    return {
        "vessel_name": name,
        "sea_days": round(sea_days, 2),
        "fuel_required_mt": fuel_required,
        "bunker_shortfall_mt": shortfall,
        "bunker_cost_usd": round(bunker_cost, 2),
        "total_cost_usd": total_cost,
        "feasibility": feasibility,
    }


def rank_vessels(analyses: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Rank vessel analyses by feasibility, then total cost, then name.

    Ties on all three keep input order, so identical inputs always produce
    the same ranking.
    """
    indexed = list(enumerate(analyses))
    indexed.sort(
        key=lambda pair: (
            FEASIBILITY_ORDER.get(pair[1]["feasibility"], len(FEASIBILITY_ORDER)),
            pair[1]["total_cost_usd"],
            pair[1]["vessel_name"].lower(),
            pair[0],
        )
    )
    rankings = []
    for rank, (_, analysis) in enumerate(indexed, start=1):
        if analysis["bunker_shortfall_mt"] == 0:
            reason = "No bunkering required for this voyage"
        else:
            reason = f"Needs {analysis['bunker_shortfall_mt']:.0f} MT bunkers"
        rankings.append(
            {
                "rank": rank,
                "vessel_name": analysis["vessel_name"],
                "total_cost_usd": analysis["total_cost_usd"],
                "feasibility": analysis["feasibility"],
                "recommendation_reason": reason,
            }
        )
    return rankings


class VesselSelectionWorker(BaseWorker):
    """Compares candidate vessels for a voyage."""

    name = "vessel_selection_agent"
    description = "Compares candidate vessels for the next voyage by cost and feasibility."

    async def _profile(self, vessel_name: str, state: Dict[str, Any], context: StageContext) -> Dict[str, Any]:
        known = (state.get("vessel_profiles") or {}).get(vessel_name)
        if known:
            return dict(known)
        if self.tool_client is None:
            return {}
        try:
            result = await self.call_tool("get_vessel_profile", {"vessel_name": vessel_name}, context, state)
        except (ToolUnavailableError, ToolNotFoundError) as e:
            logger.warning("vessel_profile_unavailable", vessel=vessel_name, error=str(e))
            return {}
        return dict(result.data) if isinstance(result.data, dict) else {}

    async def execute(self, state: Dict[str, Any], context: StageContext) -> WorkerOutput:
        """Assess each vessel against the route and rank them."""
        vessel_names = normalize_vessel_names(state.get("vessel_names")) or []
        if not vessel_names:
            return WorkerOutput(error="No candidate vessels to compare")

        route = state["route_data"]
        distance_nm = float(route.get("distance_nm") or 0.0)
        price = reference_price(state.get("port_prices"))

        analyses = []
        defaulted = []
        for name in vessel_names:
            profile = await self._profile(name, state, context)
            if not profile:
                defaulted.append(name)
            analyses.append(assess_vessel(name, profile, distance_nm, price))

        rankings = rank_vessels(analyses)
        comparison = {
            "vessels_analyzed": analyses,
            "rankings": rankings,
            "recommended_vessel": rankings[0]["vessel_name"],
            "reference_price_usd_per_mt": price,
            "analysis_summary": (
                f"{rankings[0]['vessel_name']} ranks first of {len(rankings)} "
                f"at {rankings[0]['total_cost_usd']:.0f} USD ({rankings[0]['feasibility']})"
            ),
        }
        if defaulted or is_degraded_payload(route):
            comparison["_degraded"] = True
            comparison["_degradation_reason"] = (
                "Default vessel profiles used" if defaulted else "Route is an estimate"
            )
            comparison["_missing_components"] = [f"vessel_profile:{n}" for n in defaulted]

        logger.info("vessels_ranked", stage_id=context.stage_id, ranking=[r["vessel_name"] for r in rankings])
        return WorkerOutput(produced={"vessel_comparison": comparison})


FINALIZE_SYSTEM_PROMPT = (
    "You are a maritime voyage planning assistant. Summarize the findings below "
    "for a charterer in at most five sentences. If any component is marked degraded, "
    "say plainly which figures are estimates."
)

SUMMARY_FIELDS = ("route_data", "weather_forecast", "bunker_analysis", "vessel_comparison")


class FinalizeWorker(BaseWorker):
    """Synthesizes stage outputs into the final recommendation."""

    name = "finalize"
    description = "Synthesizes stage outputs into the final recommendation."

    def _template_summary(self, facts: Dict[str, Any]) -> str:
        parts = []
        route = facts.get("route_data")
        if route:
            parts.append(
                f"Route {route.get('origin_port')} to {route.get('destination_port')}: "
                f"{route.get('distance_nm')} nm, about {route.get('estimated_hours')} hours."
            )
        analysis = facts.get("bunker_analysis")
        if analysis:
            best = analysis.get("best_option")
            if best:
                parts.append(f"Recommended bunker port: {best.get('port_name') or best.get('port_code')}.")
            else:
                parts.append(f"Bunker analysis: {analysis.get('analysis_summary') or 'no option identified'}.")
        comparison = facts.get("vessel_comparison")
        if comparison:
            parts.append(f"Vessel comparison: {comparison.get('analysis_summary')}.")
        weather = facts.get("weather_forecast")
        if weather:
            parts.append(f"Weather consumption factor {weather.get('consumption_multiplier', 1.0)}.")
        return " ".join(parts) or "No results were produced for this query."

    async def execute(self, state: Dict[str, Any], context: StageContext) -> WorkerOutput:
        """Assemble the recommendation and disclose degraded inputs."""
        facts = {key: state[key] for key in SUMMARY_FIELDS if state.get(key)}
        degraded = {key: value.get("_degradation_reason") for key, value in facts.items() if is_degraded_payload(value)}

        summary = self._template_summary(facts)
        if self.llm is not None:
            try:
                response = await self.llm.ainvoke(
                    [
                        SystemMessage(content=FINALIZE_SYSTEM_PROMPT),
                        HumanMessage(content=json.dumps({"query": state.get("query"), **facts}, default=str)),
                    ]
                )
                summary = str(response.content).strip() or summary
            except Exception as e:
                logger.exception("finalize_llm_failed", stage_id=context.stage_id, error=str(e))

        if degraded:
            summary += " Note: some figures are estimates (" + ", ".join(sorted(degraded)) + ")."

        recommendation = {
            "summary": summary,
            "components": sorted(facts),
            "degraded": bool(degraded),
            "degradation_reasons": degraded,
        }
        comparison = facts.get("vessel_comparison")
        if comparison:
            recommendation["recommended_vessel"] = comparison.get("recommended_vessel")
        analysis = facts.get("bunker_analysis")
        if analysis and analysis.get("best_option"):
            recommendation["bunker_option"] = analysis["best_option"]

        return WorkerOutput(produced={"final_recommendation": recommendation})


class WorkerRegistry:
    """Maps catalog agent ids to worker instances."""

    def __init__(self, workers: Optional[List[BaseWorker]] = None):
        """Initialize the registry with an optional set of workers."""
        self._workers: Dict[str, BaseWorker] = {}
        for worker in workers or []:
            self.register(worker)

    def register(self, worker: BaseWorker, agent_id: Optional[str] = None) -> None:
        """Register a worker under its name or an explicit agent id."""
        self._workers[agent_id or worker.name] = worker
        logger.debug("worker_registered", worker=agent_id or worker.name)

    def get(self, agent_id: str) -> Optional[BaseWorker]:
        """Get a worker by agent id."""
        return self._workers.get(agent_id)

    def list_workers(self) -> List[Dict[str, str]]:
        """List registered workers with their descriptions."""
        return [{"name": name, "description": w.description} for name, w in self._workers.items()]

    def bind(self, tool_client: Optional[ResilientToolClient] = None, llm: Optional[BaseChatModel] = None) -> None:
        """Attach a tool client and chat model to every registered worker."""
        for worker in self._workers.values():
            if tool_client is not None:
                worker.tool_client = tool_client
            if llm is not None:
                worker.llm = llm


def build_worker_registry(
    tool_client: Optional[ResilientToolClient] = None,
    llm: Optional[BaseChatModel] = None,
) -> WorkerRegistry:
    """Create a registry holding the standard voyage planning workers."""
    return WorkerRegistry(
        [
            EntityExtractorWorker(tool_client, llm),
            RouteWorker(tool_client, llm),
            WeatherWorker(tool_client, llm),
            BunkerWorker(tool_client, llm),
            VesselSelectionWorker(tool_client, llm),
            FinalizeWorker(tool_client, llm),
        ]
    )


# Global singleton
worker_registry = build_worker_registry()


def get_worker(agent_id: str) -> Optional[BaseWorker]:
    """Get a worker from the global registry.

    Args:
        agent_id: The catalog agent id.

    Returns:
        Optional[BaseWorker]: The worker if found, None otherwise.
    """
    return worker_registry.get(agent_id)


def list_workers() -> List[Dict[str, str]]:
    """List all workers in the global registry with their descriptions."""
    return worker_registry.list_workers()


def register_worker(worker: BaseWorker, agent_id: Optional[str] = None) -> None:
    """Register a worker into the global registry.

    Args:
        worker: The worker instance.
        agent_id: Catalog agent id, defaults to the worker's name.
    """
    worker_registry.register(worker, agent_id)
    logger.info("worker_registered", worker=agent_id or worker.name)
