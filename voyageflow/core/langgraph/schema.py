"""Graph state for the voyage planning graph.

Domain fields are top-level channels so the checkpointer can externalize
each large one on its own and diff snapshots field by field.
"""

from typing import (
    Annotated,
    Any,
    Dict,
    List,
    Optional,
)

from langgraph.graph.message import add_messages
from pydantic import (
    BaseModel,
    Field,
)

BOOKKEEPING_FIELDS = frozenset({"messages", "classification", "plan", "execution", "plan_errors", "response"})


class VoyageState(BaseModel):
    """State carried through classify -> plan -> execute -> respond."""

    messages: Annotated[list, add_messages] = Field(default_factory=list)
    query: str = ""
    correlation_id: str = ""
    thread_id: Optional[str] = None

    # ─── Orchestration ────────────────────────────────────────────
    classification: Optional[Dict[str, Any]] = None
    plan: Optional[Dict[str, Any]] = None
    plan_errors: List[str] = Field(default_factory=list)
    execution: Optional[Dict[str, Any]] = None
    response: str = ""

    # ─── Voyage data ──────────────────────────────────────────────
    origin_port: Optional[str] = None
    destination_port: Optional[str] = None
    vessel_names: Optional[List[str]] = None
    vessel_speed_knots: Optional[float] = None
    fuel_required_mt: Optional[float] = None
    port_coordinates: Optional[Dict[str, Any]] = None
    vessel_profiles: Optional[Dict[str, Any]] = None
    route_data: Optional[Dict[str, Any]] = None
    weather_forecast: Optional[Dict[str, Any]] = None
    bunker_ports: Optional[Dict[str, Any]] = None
    port_prices: Optional[Dict[str, Any]] = None
    bunker_analysis: Optional[Dict[str, Any]] = None
    vessel_comparison: Optional[Dict[str, Any]] = None
    final_recommendation: Optional[Dict[str, Any]] = None

    # ─── Run status ───────────────────────────────────────────────
    agent_status: Dict[str, str] = Field(default_factory=dict)
    needs_clarification: bool = False
    clarification_question: Optional[str] = None
    degraded_mode: bool = False
    missing_data: List[str] = Field(default_factory=list)

    def shared_state(self) -> Dict[str, Any]:
        """The executor-facing view: domain fields that are set."""
        return {
            key: value
            for key, value in self.model_dump(exclude=set(BOOKKEEPING_FIELDS)).items()
            if value is not None
        }


STATE_FIELDS = frozenset(VoyageState.model_fields) - BOOKKEEPING_FIELDS
