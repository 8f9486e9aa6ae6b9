"""API v1 router configuration.

This module sets up the main API router, includes the voyage planning
sub-router and serves the health endpoint.
"""

from fastapi import (
    APIRouter,
    Depends,
)

from voyageflow.api.v1.voyage import (
    get_runtime,
    router as voyage_router,
)
from voyageflow.core.config import settings
from voyageflow.core.logging import logger
from voyageflow.core.runtime import VoyageRuntime
from voyageflow.schemas.voyage import HealthResponse

api_router = APIRouter()

# Include routers
api_router.include_router(voyage_router, prefix="/voyage", tags=["voyage"])


@api_router.get("/health", response_model=HealthResponse)
async def health_check(runtime: VoyageRuntime = Depends(get_runtime)):
    """Health check endpoint.

    Returns:
        HealthResponse: Breaker states and checkpoint-store health.
    """
    checkpoint_store = await runtime.checkpointer.health()
    open_circuits = runtime.breakers.open_circuits()
    status = "healthy"
    if checkpoint_store["status"] == "down":
        status = "unhealthy"
    elif open_circuits or checkpoint_store["status"] == "degraded":
        status = "degraded"

    logger.info("health_check_called", status=status, open_circuits=open_circuits)
    return HealthResponse(
        status=status,
        version=settings.VERSION,
        environment=settings.ENVIRONMENT.value,
        circuits=runtime.breakers.status(),
        open_circuits=open_circuits,
        checkpoint_store=checkpoint_store,
    )
