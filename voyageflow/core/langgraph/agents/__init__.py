"""Worker agents executed by the plan executor.

This package provides one worker per catalog agent (entity extraction,
route, weather, bunker, vessel selection, finalize) and the registry the
executor resolves them from.
"""

from voyageflow.core.langgraph.agents.workers import (
    BaseWorker,
    BunkerWorker,
    EntityExtractorWorker,
    FinalizeWorker,
    RouteWorker,
    VesselSelectionWorker,
    WeatherWorker,
    WorkerOutput,
    WorkerRegistry,
    build_worker_registry,
    get_worker,
    list_workers,
    rank_vessels,
    register_worker,
    worker_registry,
)

__all__ = [
    "BaseWorker",
    "BunkerWorker",
    "EntityExtractorWorker",
    "FinalizeWorker",
    "RouteWorker",
    "VesselSelectionWorker",
    "WeatherWorker",
    "WorkerOutput",
    "WorkerRegistry",
    "build_worker_registry",
    "get_worker",
    "list_workers",
    "rank_vessels",
    "register_worker",
    "worker_registry",
]
