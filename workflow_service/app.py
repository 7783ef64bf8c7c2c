"""
FastAPI service for the auto-job workflow engine.

Provides endpoints for triggering runs, polling their status and
requesting cancellation, plus read access to discovered jobs. Runs execute
as background asyncio tasks in this process; the stuck recommendation
sweep and the daily scheduler run alongside them.
"""

import asyncio
import logging
from typing import List

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.common.logger import setup_logging
from src.common.workflow_types import utcnow
from src.services.recommendation_cache import run_periodic_sweep

from .config import settings, validate_config_on_startup
from .engine import WorkflowEngine, get_engine
from .models import HealthResponse
from .routes import auto_jobs_router

logger = logging.getLogger(__name__)

# Validate configuration at startup
validate_config_on_startup()

app = FastAPI(title="Auto-Job Workflow", version="1.0.0")

if settings.cors_origins_list:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.include_router(auto_jobs_router)

_background_tasks: List[asyncio.Task] = []


@app.get("/health", response_model=HealthResponse)
async def health_check(engine: WorkflowEngine = Depends(get_engine)) -> HealthResponse:
    """Health check endpoint for container orchestration."""
    return HealthResponse(
        status="healthy",
        executing_runs=len(engine.workflow.executing_run_ids()),
        scheduler_enabled=settings.scheduler_enabled,
        timestamp=utcnow(),
    )


@app.on_event("startup")
async def startup_workflow_engine():
    """
    Recover from the previous process, then start background loops.

    Indexes are created first; the unique (owner_id, job_id) index backs
    deduplication. Runs still marked running were interrupted by a restart:
    they are marked failed and their owners released before anything new
    starts.
    """
    setup_logging(level="INFO", format="json" if settings.is_production else "simple")
    engine = get_engine()
    engine.ensure_indexes()

    interrupted = engine.workflow.recover_interrupted_runs()
    if interrupted:
        logger.info(f"Marked {len(interrupted)} interrupted runs as failed")

    engine.cache.sweep()

    _background_tasks.append(
        asyncio.create_task(run_periodic_sweep(engine.cache, settings.sweep_interval_seconds))
    )
    if settings.scheduler_enabled:
        _background_tasks.append(asyncio.create_task(engine.scheduler.run_forever()))
        logger.info(f"Scheduler started (daily at {settings.scheduler_hour:02d}:00)")


@app.on_event("shutdown")
async def shutdown_workflow_engine():
    """Stop background loops and finalize executing runs as interrupted."""
    for task in _background_tasks:
        task.cancel()
    await asyncio.gather(*_background_tasks, return_exceptions=True)
    _background_tasks.clear()

    await get_engine().workflow.shutdown()
    logger.info("Workflow engine stopped")
