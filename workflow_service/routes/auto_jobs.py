"""
Auto-Job Routes

Trigger, poll and cancel workflow runs, and read the postings they produce.

Endpoints:
    POST /auto-jobs/trigger                  - Start a run (idempotent per active run)
    GET  /auto-jobs/runs                     - Recent runs for the owner
    GET  /auto-jobs/runs/{run_id}            - Full run snapshot (poll target)
    POST /auto-jobs/runs/{run_id}/cancel     - Request cooperative cancellation
    GET  /auto-jobs                          - Paginated auto jobs
    GET  /auto-jobs/stats                    - Counts per processing status
    GET  /auto-jobs/{record_id}              - Single auto job
    GET  /auto-jobs/{record_id}/recommendation - Cached recommendation (computed on miss)
"""

import logging
import math
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from src.common.error_handling import AlreadyRunning, InvalidSettings, ItemFailure, RunNotFound, StructuralFailure
from src.common.workflow_types import ProcessingStatus, WorkflowRun

from ..auth import get_owner_id, verify_token
from ..engine import WorkflowEngine, get_engine
from ..models import (
    AutoJobListResponse,
    AutoJobResponse,
    CancelResponse,
    RecommendationResponse,
    RunSnapshotResponse,
    TriggerRequest,
    TriggerResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auto-jobs", tags=["auto-jobs"], dependencies=[Depends(verify_token)])


def _status_url(run_id: str) -> str:
    return f"/auto-jobs/runs/{run_id}"


def _owned_run(engine: WorkflowEngine, run_id: str, owner_id: str) -> WorkflowRun:
    try:
        run = engine.workflow.get_status(run_id)
    except RunNotFound:
        raise HTTPException(status_code=404, detail="Run not found")
    if run.owner_id != owner_id:
        raise HTTPException(status_code=404, detail="Run not found")
    return run


# =============================================================================
# Runs
# =============================================================================

@router.post("/trigger", response_model=TriggerResponse)
async def trigger_run(
    request: Optional[TriggerRequest] = None,
    owner_id: str = Depends(get_owner_id),
    engine: WorkflowEngine = Depends(get_engine),
) -> TriggerResponse:
    """
    Start a workflow run and return its handle without waiting.

    While a run is active for the owner, its id is returned with created=false.
    """
    settings = None
    if request is not None and request.settings is not None:
        try:
            settings = engine.workflow.parse_settings(request.settings)
        except InvalidSettings as e:
            raise HTTPException(status_code=400, detail=str(e))

    try:
        run = await engine.workflow.trigger(owner_id, settings=settings)
    except AlreadyRunning as e:
        if not e.run_id:
            raise HTTPException(status_code=409, detail=str(e))
        logger.info(f"[{e.run_id[:8]}] Trigger for {owner_id} returned active run")
        return TriggerResponse(run_id=e.run_id, created=False, status_url=_status_url(e.run_id))
    except Exception as e:
        logger.error(f"Failed to start workflow for {owner_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to start workflow: {e}")

    return TriggerResponse(run_id=run.run_id, created=True, status_url=_status_url(run.run_id))


@router.get("/runs", response_model=List[RunSnapshotResponse])
async def list_runs(
    limit: int = Query(20, ge=1, le=100),
    owner_id: str = Depends(get_owner_id),
    engine: WorkflowEngine = Depends(get_engine),
) -> List[RunSnapshotResponse]:
    runs = engine.workflow.list_runs(owner_id, limit=limit)
    return [RunSnapshotResponse(**run.to_api_dict()) for run in runs]


@router.get("/runs/{run_id}", response_model=RunSnapshotResponse)
async def get_run(
    run_id: str,
    owner_id: str = Depends(get_owner_id),
    engine: WorkflowEngine = Depends(get_engine),
) -> RunSnapshotResponse:
    """Latest published snapshot. Clients stop polling on completed, failed or cancelled."""
    run = _owned_run(engine, run_id, owner_id)
    return RunSnapshotResponse(**run.to_api_dict())


@router.post("/runs/{run_id}/cancel", response_model=CancelResponse)
async def cancel_run(
    run_id: str,
    owner_id: str = Depends(get_owner_id),
    engine: WorkflowEngine = Depends(get_engine),
) -> CancelResponse:
    """Acknowledge a cancel request. The run stops at its next check point."""
    run = _owned_run(engine, run_id, owner_id)
    if run.status.is_terminal:
        return CancelResponse(success=False, message=f"Run already {run.status.value}")

    try:
        accepted = engine.workflow.cancel(run_id)
    except RunNotFound:
        raise HTTPException(status_code=404, detail="Run not found")

    if not accepted:
        return CancelResponse(success=False, message="Run already finished")
    return CancelResponse(success=True, message="Cancellation requested")


# =============================================================================
# Auto jobs
# =============================================================================

@router.get("", response_model=AutoJobListResponse)
async def list_auto_jobs(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[ProcessingStatus] = Query(None),
    owner_id: str = Depends(get_owner_id),
    engine: WorkflowEngine = Depends(get_engine),
) -> AutoJobListResponse:
    records, total = engine.registry.list(
        owner_id, status=status.value if status else None, page=page, limit=limit
    )
    return AutoJobListResponse(
        jobs=[AutoJobResponse(**record.to_api_dict()) for record in records],
        total=total,
        page=page,
        limit=limit,
        pages=math.ceil(total / limit) if total else 0,
    )


@router.get("/stats")
async def get_auto_job_stats(
    owner_id: str = Depends(get_owner_id),
    engine: WorkflowEngine = Depends(get_engine),
) -> Dict[str, int]:
    return engine.registry.stats(owner_id)


@router.get("/{record_id}", response_model=AutoJobResponse)
async def get_auto_job(
    record_id: str,
    owner_id: str = Depends(get_owner_id),
    engine: WorkflowEngine = Depends(get_engine),
) -> AutoJobResponse:
    record = engine.registry.get(owner_id, record_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Auto job not found")
    return AutoJobResponse(**record.to_api_dict())


@router.get("/{record_id}/recommendation", response_model=RecommendationResponse)
async def get_recommendation(
    record_id: str,
    force_refresh: bool = Query(False),
    owner_id: str = Depends(get_owner_id),
    engine: WorkflowEngine = Depends(get_engine),
) -> RecommendationResponse:
    """Read-through cache: returns the stored verdict or computes it once."""
    record = engine.registry.get(owner_id, record_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Auto job not found")

    try:
        profile = engine.workflow.load_profile(owner_id)
    except StructuralFailure as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        entry = await engine.cache.get_or_compute(record.id, profile, force_refresh=force_refresh)
    except ItemFailure as e:
        raise HTTPException(status_code=503, detail=str(e))

    return RecommendationResponse(**entry.to_api_dict())
