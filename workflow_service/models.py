"""
Shared Pydantic models for the workflow service.

These models define the structure for API requests and responses.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class TriggerRequest(BaseModel):
    """Request body for starting a run. Stored settings are used when omitted."""

    settings: Optional[Dict[str, Any]] = Field(
        None, description="WorkflowSettings for this run only (keywords, location, max_jobs, ...)"
    )


class TriggerResponse(BaseModel):
    """Run handle. ``created`` is false when an already active run is returned."""

    run_id: str
    created: bool
    status_url: str


class StepSnapshot(BaseModel):
    name: str
    status: str
    message: Optional[str] = None
    count: Optional[int] = None
    total: Optional[int] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class ProgressSnapshot(BaseModel):
    current_step: str
    current_step_index: int
    total_steps: int
    percentage: int = Field(..., ge=0, le=100)


class StatsSnapshot(BaseModel):
    jobs_found: int = 0
    new_jobs: int = 0
    duplicates: int = 0
    analyzed: int = 0
    relevant: int = 0
    not_relevant: int = 0
    generated: int = 0
    errors: int = 0


class RunSnapshotResponse(BaseModel):
    """Full WorkflowRun snapshot returned to polling clients."""

    run_id: str
    owner_id: str
    status: str = Field(..., description="running, completed, failed or cancelled")
    steps: List[StepSnapshot]
    progress: ProgressSnapshot
    stats: StatsSnapshot
    cancel_requested: bool
    is_manual: bool
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None


class CancelResponse(BaseModel):
    success: bool
    message: str


class RecommendationResponse(BaseModel):
    score: Optional[int] = None
    should_apply: bool
    reason: str
    cached_at: Optional[datetime] = None
    error: Optional[str] = None


class AutoJobResponse(BaseModel):
    id: str
    owner_id: str
    job_id: str
    job_title: str
    company_name: str
    job_url: str
    location: Optional[str] = None
    processing_status: str
    extracted_data: Optional[Dict[str, Any]] = None
    recommendation: Optional[RecommendationResponse] = None
    cover_letter_text: Optional[str] = None
    customized_resume_text: Optional[str] = None
    error_message: Optional[str] = None
    workflow_run_id: Optional[str] = None
    discovered_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None


class AutoJobListResponse(BaseModel):
    jobs: List[AutoJobResponse]
    total: int
    page: int
    limit: int
    pages: int


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    executing_runs: int
    scheduler_enabled: bool
    timestamp: datetime
