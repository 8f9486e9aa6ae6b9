"""Voyage planning API endpoints.

Runs queries through the planning graph, previews plans without executing
them, and exposes checkpoint history, recovery and purge per thread.
"""

import uuid

from fastapi import (
    APIRouter,
    Depends,
    HTTPException,
    Request,
)

from voyageflow.core.errors import (
    CheckpointIntegrityError,
    CheckpointNotFoundError,
    CheckpointReadError,
    PlanError,
    PlanValidationError,
)
from voyageflow.core.logging import logger
from voyageflow.core.orchestration.schema import PlanContext
from voyageflow.core.runtime import VoyageRuntime
from voyageflow.schemas.voyage import (
    CheckpointListResponse,
    DeleteThreadResponse,
    PlanPreviewRequest,
    PlanPreviewResponse,
    RecoverResponse,
    VoyageQueryRequest,
    VoyageQueryResponse,
)

router = APIRouter()


def get_runtime(request: Request) -> VoyageRuntime:
    """Resolve the runtime attached to the app."""
    return request.app.state.runtime


@router.post("/query", response_model=VoyageQueryResponse)
async def run_query(body: VoyageQueryRequest, runtime: VoyageRuntime = Depends(get_runtime)):
    """Run a query end to end on a thread.

    A run with failed stages still answers 200 with its partial state and
    error list; only infrastructure failures produce an error status.
    """
    thread_id = body.thread_id or str(uuid.uuid4())
    logger.info("voyage_query_received", thread_id=thread_id, query_length=len(body.query))
    try:
        result = await runtime.graph.get_response(body.query, thread_id, initial_state=body.state)
    except CheckpointReadError as e:
        logger.exception("voyage_query_failed", thread_id=thread_id, error=str(e))
        raise HTTPException(status_code=503, detail=str(e))
    return VoyageQueryResponse(**result)


@router.post("/plan", response_model=PlanPreviewResponse)
async def preview_plan(body: PlanPreviewRequest, runtime: VoyageRuntime = Depends(get_runtime)):
    """Classify a query and return its validated plan without running it."""
    classification = await runtime.classifier.classify(body.query)
    state = {**classification.extracted_params, **body.state, "query": body.query}
    try:
        plan = runtime.generator.generate(body.query, classification, state, PlanContext())
        plan = runtime.validator.validate_or_raise(plan, state)
    except PlanValidationError as e:
        raise HTTPException(status_code=422, detail={"errors": e.result.errors, "warnings": e.result.warnings})
    except PlanError as e:
        raise HTTPException(status_code=422, detail={"errors": [str(e)], "warnings": []})
    return PlanPreviewResponse(classification=classification, plan=plan)


@router.get("/threads/{thread_id}/checkpoints", response_model=CheckpointListResponse)
async def list_checkpoints(thread_id: str, runtime: VoyageRuntime = Depends(get_runtime)):
    """List a thread's checkpoints ordered by step."""
    try:
        checkpoints = await runtime.recovery.list_checkpoints(thread_id)
    except CheckpointReadError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return CheckpointListResponse(thread_id=thread_id, checkpoints=checkpoints, total=len(checkpoints))


@router.post("/threads/{thread_id}/checkpoints/{checkpoint_id}/recover", response_model=RecoverResponse)
async def recover_checkpoint(thread_id: str, checkpoint_id: str, runtime: VoyageRuntime = Depends(get_runtime)):
    """Validate a checkpoint and return the config that resumes from it."""
    try:
        config = await runtime.recovery.recover_from_checkpoint(thread_id, checkpoint_id)
    except CheckpointNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except CheckpointIntegrityError as e:
        logger.error("checkpoint_integrity_failed", thread_id=thread_id, checkpoint_id=checkpoint_id, problems=e.problems)
        raise HTTPException(status_code=409, detail={"error": str(e), "problems": e.problems})
    except CheckpointReadError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return RecoverResponse(thread_id=thread_id, checkpoint_id=checkpoint_id, config=dict(config))


@router.delete("/threads/{thread_id}", response_model=DeleteThreadResponse)
async def delete_thread(thread_id: str, runtime: VoyageRuntime = Depends(get_runtime)):
    """Purge a thread's checkpoints and state references."""
    deleted = await runtime.recovery.delete_thread(thread_id)
    return DeleteThreadResponse(thread_id=thread_id, deleted=deleted)
