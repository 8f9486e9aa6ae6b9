"""This file contains the schemas for the application."""

from voyageflow.schemas.voyage import (
    CheckpointListResponse,
    DeleteThreadResponse,
    HealthResponse,
    PlanPreviewRequest,
    PlanPreviewResponse,
    RecoverResponse,
    VoyageQueryRequest,
    VoyageQueryResponse,
)

__all__ = [
    "CheckpointListResponse",
    "DeleteThreadResponse",
    "HealthResponse",
    "PlanPreviewRequest",
    "PlanPreviewResponse",
    "RecoverResponse",
    "VoyageQueryRequest",
    "VoyageQueryResponse",
]
