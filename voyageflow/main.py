"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from voyageflow.api.v1.api import api_router
from voyageflow.core.config import settings
from voyageflow.core.logging import logger
from voyageflow.core.runtime import (
    VoyageRuntime,
    build_runtime,
)


def create_app(runtime: Optional[VoyageRuntime] = None) -> FastAPI:
    """Create the application.

    Args:
        runtime: Prebuilt runtime; built from configuration on startup if omitted.

    Returns:
        FastAPI: The application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "runtime", None) is None:
            app.state.runtime = build_runtime()
        logger.info("application_startup", project=settings.PROJECT_NAME, version=settings.VERSION)
        try:
            yield
        finally:
            await app.state.runtime.close()
            logger.info("application_shutdown")

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        openapi_url=f"{settings.API_V1_STR}/openapi.json",
        lifespan=lifespan,
    )
    app.state.runtime = runtime
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(api_router, prefix=settings.API_V1_STR)
    return app


app = create_app()
