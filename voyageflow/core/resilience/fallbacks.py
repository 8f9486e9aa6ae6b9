"""Degraded-response fallbacks for tool calls.

When a tool call is refused by an open breaker or exhausts its retries,
``FallbackDispatcher.get_fallback_response`` tries, in order:
1. a previously cached successful result for equivalent inputs
2. a cheaper approximation from inputs already in hand
3. an explicit "insufficient data" result
and returns None when the tool has no acceptable degraded answer.

Every result is a ``ToolResult`` whose status is ok, degraded or failed;
``to_payload()`` adds ``_degraded`` and ``_degradation_reason`` so the
final response can disclose reduced confidence.
"""

import hashlib
import json
import math
from datetime import (
    datetime,
    timedelta,
    timezone,
)
from enum import Enum
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

from voyageflow.core.catalog.registry import (
    CatalogRegistry,
    catalog_registry,
)
from voyageflow.core.catalog.schema import ToolType
from voyageflow.core.logging import logger
from voyageflow.core.state.kv import BaseKVStore

EARTH_RADIUS_NM = 3440.065
DEFAULT_SPEED_KNOTS = 14.0
TOOL_CACHE_PREFIX = "tool_cache:"
HISTORICAL_FUEL_PRICES_USD = {"VLSFO": 650.0, "LSGO": 700.0, "MGO": 750.0}


class ResultStatus(str, Enum):
    """Quality of a tool result."""

    OK = "ok"
    DEGRADED = "degraded"
    FAILED = "failed"


class ToolResult(BaseModel):
    """Typed outcome of a tool call."""

    tool_name: str
    status: ResultStatus
    data: Any = None
    reason: Optional[str] = None
    missing_components: List[str] = Field(default_factory=list)
    from_cache: bool = False

    @classmethod
    def ok(cls, tool_name: str, data: Any) -> "ToolResult":
        """Build a normal result."""
        return cls(tool_name=tool_name, status=ResultStatus.OK, data=data)

    @classmethod
    def degraded(
        cls,
        tool_name: str,
        data: Any,
        reason: str,
        missing_components: Optional[List[str]] = None,
        from_cache: bool = False,
    ) -> "ToolResult":
        """Build a reduced-confidence result."""
        return cls(
            tool_name=tool_name,
            status=ResultStatus.DEGRADED,
            data=data,
            reason=reason,
            missing_components=missing_components or [],
            from_cache=from_cache,
        )

    @classmethod
    def failed(cls, tool_name: str, reason: str) -> "ToolResult":
        """Build a result that carries no usable data."""
        return cls(tool_name=tool_name, status=ResultStatus.FAILED, reason=reason)

    @property
    def is_ok(self) -> bool:
        """Whether the result is authoritative."""
        return self.status == ResultStatus.OK

    @property
    def is_degraded(self) -> bool:
        """Whether the result is a degraded substitute."""
        return self.status == ResultStatus.DEGRADED

    def to_payload(self) -> Dict[str, Any]:
        """Render the result as state data with degradation markers."""
        body = dict(self.data) if isinstance(self.data, dict) else {"value": self.data}
        body["_degraded"] = self.status != ResultStatus.OK
        body["_degradation_reason"] = self.reason
        if self.missing_components:
            body["_missing_components"] = list(self.missing_components)
        return body


def is_degraded_payload(value: Any) -> bool:
    """Check whether a state value came from a fallback."""
    return isinstance(value, dict) and bool(value.get("_degraded"))


def create_degraded_response(partial: Dict[str, Any], missing: List[str]) -> Dict[str, Any]:
    """Mark a partially assembled answer as degraded."""
    return {
        **partial,
        "_degraded": True,
        "_degradation_reason": f"Missing components: {', '.join(missing)}",
        "_missing_components": list(missing),
    }


def haversine_nm(origin: Dict[str, float], destination: Dict[str, float]) -> float:
    """Great-circle distance in nautical miles between two lat/lon points."""
    lat1, lon1 = math.radians(origin["lat"]), math.radians(origin["lon"])
    lat2, lon2 = math.radians(destination["lat"]), math.radians(destination["lon"])
    a = math.sin((lat2 - lat1) / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin((lon2 - lon1) / 2) ** 2
    return 2 * EARTH_RADIUS_NM * math.asin(math.sqrt(a))


def _coordinates(value: Any) -> Optional[Dict[str, float]]:
    if isinstance(value, dict):
        lat = value.get("lat", value.get("latitude"))
        lon = value.get("lon", value.get("lng", value.get("longitude")))
        if isinstance(lat, (int, float)) and isinstance(lon, (int, float)):
            return {"lat": float(lat), "lon": float(lon)}
    if isinstance(value, (list, tuple)) and len(value) == 2 and all(isinstance(v, (int, float)) for v in value):
        return {"lat": float(value[0]), "lon": float(value[1])}
    return None


def cache_key(tool_name: str, args: Dict[str, Any]) -> str:
    """Cache key for a tool call with equivalent inputs."""
    digest = hashlib.sha256(json.dumps(args, sort_keys=True, default=str).encode("utf-8")).hexdigest()
    return f"{TOOL_CACHE_PREFIX}{tool_name}:{digest}"


Strategy = Callable[[str, Dict[str, Any], Dict[str, Any]], Awaitable[Optional[ToolResult]]]


class FallbackDispatcher:
    """Maps tool names to degraded-response strategies."""

    def __init__(
        self,
        cache: Optional[BaseKVStore] = None,
        cache_ttl_seconds: int = 24 * 3600,
        catalog: Optional[CatalogRegistry] = None,
    ):
        """Initialize the dispatcher.

        Args:
            cache: Store holding successful results for reuse.
            cache_ttl_seconds: How long a successful result stays reusable.
            catalog: Catalog used to map unknown tool ids to a tool type.
        """
        self.cache = cache
        self.cache_ttl_seconds = cache_ttl_seconds
        self.catalog = catalog or catalog_registry
        self._strategies: Dict[str, Strategy] = {
            "calculate_route": self._route_fallback,
            "calculate_weather_timeline": self._route_fallback,
            "find_bunker_ports": self._bunker_ports_fallback,
            "get_fuel_prices": self._fuel_prices_fallback,
            "analyze_bunker_options": self._bunker_analysis_fallback,
            "get_vessel_profile": self._cached_only,
        }
        self._type_strategies: Dict[ToolType, Strategy] = {
            ToolType.ROUTE: self._route_fallback,
            ToolType.WEATHER: self._route_fallback,
            ToolType.PRICE: self._fuel_prices_fallback,
            ToolType.ANALYSIS: self._bunker_analysis_fallback,
            ToolType.VESSEL: self._cached_only,
        }

    def register(self, tool_name: str, strategy: Strategy) -> None:
        """Install a strategy for a tool."""
        self._strategies[tool_name] = strategy

    # ─── Result cache ─────────────────────────────────────────────

    async def remember(self, tool_name: str, args: Dict[str, Any], data: Any) -> None:
        """Cache a successful result for later degraded reuse."""
        if self.cache is None:
            return
        try:
            payload = json.dumps(data, default=str)
        except (TypeError, ValueError):
            return
        await self.cache.set(cache_key(tool_name, args), payload, self.cache_ttl_seconds)

    async def lookup(self, tool_name: str, args: Dict[str, Any]) -> Optional[Any]:
        """Fetch a cached successful result for equivalent inputs."""
        if self.cache is None:
            return None
        raw = await self.cache.get(cache_key(tool_name, args))
        return json.loads(raw) if raw is not None else None

    # ─── Dispatch ─────────────────────────────────────────────────

    async def get_fallback_response(
        self,
        tool_name: str,
        error: Optional[BaseException],
        context: Optional[Dict[str, Any]] = None,
    ) -> Optional[ToolResult]:
        """Produce a degraded substitute for a failed tool call.

        Args:
            tool_name: The tool that failed.
            error: The failure, used in the degradation reason.
            context: ``args`` of the failed call plus any state in hand.

        Returns:
            Optional[ToolResult]: A degraded result, or None when no
            acceptable substitute exists.
        """
        context = context or {}
        args = context.get("args") or {}
        strategy = self._strategies.get(tool_name)
        if strategy is None:
            definition = self.catalog.get_tool(tool_name)
            if definition is not None:
                strategy = self._type_strategies.get(definition.tool_type)
        if strategy is None:
            strategy = self._cached_only

        result = await strategy(tool_name, args, context)
        if result is None:
            logger.warning("fallback_unavailable", tool=tool_name, error=str(error) if error else None)
        else:
            logger.warning(
                "fallback_applied",
                tool=tool_name,
                reason=result.reason,
                from_cache=result.from_cache,
                error=str(error) if error else None,
            )
        return result

    async def _from_cache(self, tool_name: str, args: Dict[str, Any]) -> Optional[ToolResult]:
        cached = await self.lookup(tool_name, args)
        if cached is None:
            return None
        return ToolResult.degraded(
            tool_name,
            cached,
            reason=f"Using cached {tool_name} result (live service unavailable)",
            from_cache=True,
        )

    async def _cached_only(self, tool_name: str, args: Dict[str, Any], context: Dict[str, Any]) -> Optional[ToolResult]:
        return await self._from_cache(tool_name, args)

    async def _route_fallback(self, tool_name: str, args: Dict[str, Any], context: Dict[str, Any]) -> Optional[ToolResult]:
        cached = await self._from_cache(tool_name, args)
        if cached is not None:
            return cached

        port_coordinates = context.get("port_coordinates") or {}
        origin = _coordinates(args.get("origin_coordinates")) or _coordinates(
            port_coordinates.get(args.get("origin_port") or context.get("origin_port"))
        )
        destination = _coordinates(args.get("destination_coordinates")) or _coordinates(
            port_coordinates.get(args.get("destination_port") or context.get("destination_port"))
        )
        if origin is None or destination is None:
            return None

        speed = float(args.get("speed_knots") or context.get("vessel_speed_knots") or DEFAULT_SPEED_KNOTS)
        distance = haversine_nm(origin, destination)
        route = {
            "origin_port": args.get("origin_port"),
            "destination_port": args.get("destination_port"),
            "distance_nm": round(distance, 1),
            "estimated_hours": round(distance / speed, 1),
            "waypoints": [origin, destination],
            "route_type": "straight-line estimate",
        }
        return ToolResult.degraded(
            tool_name,
            route,
            reason=f"{tool_name} unavailable; using straight-line route estimate",
            missing_components=["waypoints", "canal_transits"],
        )

    async def _bunker_ports_fallback(self, tool_name: str, args: Dict[str, Any], context: Dict[str, Any]) -> Optional[ToolResult]:
        cached = await self._from_cache(tool_name, args)
        if cached is not None:
            return cached
        return ToolResult.degraded(
            tool_name,
            {"ports": [], "warning": "Bunker port search unavailable"},
            reason="Port search unavailable; no bunker ports could be identified",
            missing_components=["bunker_ports"],
        )

    async def _fuel_prices_fallback(self, tool_name: str, args: Dict[str, Any], context: Dict[str, Any]) -> Optional[ToolResult]:
        cached = await self._from_cache(tool_name, args)
        if cached is not None:
            return cached
        port_codes = args.get("port_codes") or context.get("port_codes") or []
        last_updated = (datetime.now(timezone.utc) - timedelta(days=7)).isoformat()
        prices = [
            {
                "port_code": code,
                "prices": dict(HISTORICAL_FUEL_PRICES_USD),
                "currency": "USD",
                "last_updated": last_updated,
                "is_fresh": False,
            }
            for code in port_codes
        ]
        return ToolResult.degraded(
            tool_name,
            {"prices": prices},
            reason="Price service unavailable; using historical average prices",
            missing_components=["live_prices"],
        )

    async def _bunker_analysis_fallback(self, tool_name: str, args: Dict[str, Any], context: Dict[str, Any]) -> Optional[ToolResult]:
        return ToolResult.degraded(
            tool_name,
            {"recommendations": [], "best_option": None, "analysis_summary": "insufficient data"},
            reason="Insufficient data for bunker analysis",
            missing_components=["bunker_analysis"],
        )
