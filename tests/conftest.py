"""Shared test fixtures for the test suite."""

from typing import (
    Any,
    Dict,
)

import pytest
import yaml

from voyageflow.core.catalog.registry import CatalogRegistry
from voyageflow.core.observability.sink import EventSink
from voyageflow.core.resilience.circuit_breaker import CircuitBreakerRegistry
from voyageflow.core.state.kv import InMemoryKVStore
from voyageflow.core.tools.registry import ToolRegistry


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    """A clock tests can move forward explicitly."""
    return FakeClock()


@pytest.fixture
def kv_store() -> InMemoryKVStore:
    """A fresh in-memory key-value store."""
    return InMemoryKVStore()


@pytest.fixture
def sink() -> EventSink:
    """An event sink collecting every event in memory."""
    collected = []

    async def exporter(batch):
        collected.extend(batch)

    event_sink = EventSink(exporter=exporter, batch_size=1000, flush_interval=60)
    event_sink.collected = collected
    return event_sink


@pytest.fixture
def breakers() -> CircuitBreakerRegistry:
    """A breaker table isolated from the process-wide one."""
    return CircuitBreakerRegistry(failure_threshold=5, rolling_window_seconds=300, reset_timeout_seconds=30)


@pytest.fixture
def tmp_catalog_dir(tmp_path) -> str:
    """Create a temporary catalog with two agents and one tool."""
    definitions = tmp_path / "definitions"
    definitions.mkdir()
    (definitions / "agents.yaml").write_text(
        yaml.dump(
            {
                "agents": [
                    {
                        "id": "route_agent",
                        "name": "Route Agent",
                        "intents": ["route_calculation"],
                        "produces": ["route_data"],
                        "consumes": {"required": ["origin_port", "destination_port"]},
                        "tools": {"required": ["calculate_route"]},
                    },
                    {
                        "id": "legacy_agent",
                        "name": "Legacy Agent",
                        "produces": ["legacy_data"],
                        "enabled": False,
                    },
                    {
                        "id": "broken_agent",
                        "execution": {"max_execution_time_ms": -5},
                    },
                ]
            }
        ),
        encoding="utf-8",
    )
    (definitions / "tools.yaml").write_text(
        yaml.dump(
            {
                "tools": [
                    {
                        "id": "calculate_route",
                        "name": "Route Calculator",
                        "tool_type": "route",
                        "cost": "api_call",
                    }
                ]
            }
        ),
        encoding="utf-8",
    )
    return str(definitions)


@pytest.fixture
def catalog() -> CatalogRegistry:
    """The packaged catalog, loaded fresh."""
    return CatalogRegistry()


def _route(args: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "origin_port": args.get("origin_port"),
        "destination_port": args.get("destination_port"),
        "distance_nm": 8300.0,
        "estimated_hours": 593.0,
        "waypoints": [{"lat": 1.29, "lon": 103.85}, {"lat": 51.95, "lon": 4.14}],
    }


@pytest.fixture
def fake_tools() -> ToolRegistry:
    """A tool registry answering every catalog tool with canned data."""
    registry = ToolRegistry()

    async def calculate_route(args):
        return _route(args)

    async def calculate_weather_timeline(args):
        return {"forecast": [{"day": 1, "wave_height_m": 2.1}], "consumption_multiplier": 1.05}

    async def find_bunker_ports(args):
        return {"ports": [{"port_code": "LKCMB", "port_name": "Colombo"}, {"port_code": "AEFJR", "port_name": "Fujairah"}]}

    async def get_fuel_prices(args):
        return {
            "prices": [
                {"port_code": "LKCMB", "prices": {"VLSFO": 610.0}},
                {"port_code": "AEFJR", "prices": {"VLSFO": 595.0}},
            ]
        }

    async def analyze_bunker_options(args):
        return {
            "recommendations": [{"port_code": "AEFJR", "total_cost_usd": 297500.0}],
            "best_option": {"port_code": "AEFJR", "port_name": "Fujairah"},
            "analysis_summary": "Fujairah is the cheapest option",
        }

    async def get_vessel_profile(args):
        return {"speed_knots": 14.0, "consumption_mt_per_day": 30.0, "rob_mt": 200.0}

    for func in (
        calculate_route,
        calculate_weather_timeline,
        find_bunker_ports,
        get_fuel_prices,
        analyze_bunker_options,
        get_vessel_profile,
    ):
        registry.register(func.__name__, func)
    return registry
