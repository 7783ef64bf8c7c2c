"""
Workflow Data Models

Data structures for workflow runs, their steps, discovered postings and
cached recommendations. Each model converts to and from its MongoDB
document form.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

PLACEHOLDER_REASON = "Calculating..."
DEFAULT_FAILURE_MESSAGE = "AI adapter error"


def utcnow() -> datetime:
    """Naive UTC timestamp (the form pymongo hands back by default)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class RunStatus(str, Enum):
    """Status values for a workflow run."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not RunStatus.RUNNING


class StepStatus(str, Enum):
    """Status values for a workflow step."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class StepName(str, Enum):
    """The fixed pipeline, in execution order."""

    DISCOVER = "discover"
    DEDUPLICATE = "deduplicate"
    EXTRACT = "extract"
    RECOMMEND = "recommend"
    GENERATE = "generate"


PIPELINE_STEPS: List[StepName] = list(StepName)


class ProcessingStatus(str, Enum):
    """Processing status of an AutoJobRecord."""

    PENDING = "pending"
    ANALYZED = "analyzed"
    RELEVANT = "relevant"
    NOT_RELEVANT = "not_relevant"
    GENERATED = "generated"
    ERROR = "error"


# Allowed step transitions: no step may regress or be revisited
_STEP_TRANSITIONS = {
    StepStatus.PENDING: {StepStatus.RUNNING},
    StepStatus.RUNNING: {StepStatus.COMPLETED, StepStatus.FAILED},
    StepStatus.COMPLETED: set(),
    StepStatus.FAILED: set(),
}


@dataclass
class WorkflowStep:
    """One stage of a run's fixed pipeline."""

    name: StepName
    status: StepStatus = StepStatus.PENDING
    message: Optional[str] = None
    count: Optional[int] = None
    total: Optional[int] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def _transition(self, target: StepStatus) -> None:
        if target not in _STEP_TRANSITIONS[self.status]:
            raise ValueError(
                f"Illegal step transition for {self.name.value}: "
                f"{self.status.value} -> {target.value}"
            )
        self.status = target

    def start(self, message: Optional[str] = None) -> None:
        self._transition(StepStatus.RUNNING)
        self.started_at = utcnow()
        self.message = message

    def complete(self, message: Optional[str] = None) -> None:
        self._transition(StepStatus.COMPLETED)
        self.completed_at = utcnow()
        if message:
            self.message = message

    def fail(self, message: Optional[str] = None) -> None:
        self._transition(StepStatus.FAILED)
        self.completed_at = utcnow()
        if message:
            self.message = message

    @property
    def item_fraction(self) -> float:
        """Fraction of this step's items processed (0 when total unknown)."""
        if not self.total or self.count is None:
            return 0.0
        return min(1.0, self.count / self.total)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name.value,
            "status": self.status.value,
            "message": self.message,
            "count": self.count,
            "total": self.total,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowStep":
        return cls(
            name=StepName(data["name"]),
            status=StepStatus(data.get("status", "pending")),
            message=data.get("message"),
            count=data.get("count"),
            total=data.get("total"),
            started_at=data.get("started_at"),
            completed_at=data.get("completed_at"),
        )


@dataclass
class WorkflowStats:
    """Run counters. Only ever incremented, only by the controller."""

    jobs_found: int = 0
    new_jobs: int = 0
    duplicates: int = 0
    analyzed: int = 0
    relevant: int = 0
    not_relevant: int = 0
    generated: int = 0
    errors: int = 0

    def increment(self, counter: str, amount: int = 1) -> None:
        if amount < 0:
            raise ValueError("Workflow stats are monotonically non-decreasing")
        if counter not in self.__dataclass_fields__:
            raise KeyError(f"Unknown workflow stat: {counter}")
        setattr(self, counter, getattr(self, counter) + amount)

    def to_dict(self) -> Dict[str, int]:
        return {name: getattr(self, name) for name in self.__dataclass_fields__}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "WorkflowStats":
        data = data or {}
        return cls(**{name: int(data.get(name, 0)) for name in cls.__dataclass_fields__})


@dataclass
class WorkflowProgress:
    current_step: str = "Initializing..."
    current_step_index: int = 0
    total_steps: int = len(PIPELINE_STEPS)
    percentage: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_step": self.current_step,
            "current_step_index": self.current_step_index,
            "total_steps": self.total_steps,
            "percentage": self.percentage,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "WorkflowProgress":
        data = data or {}
        return cls(
            current_step=data.get("current_step", "Initializing..."),
            current_step_index=int(data.get("current_step_index", 0)),
            total_steps=int(data.get("total_steps", len(PIPELINE_STEPS))),
            percentage=int(data.get("percentage", 0)),
        )


@dataclass
class WorkflowRun:
    """
    One execution of the five-step pipeline for one owner.

    The controller is the only writer of status, steps, progress and stats.
    ``cancel_requested`` is written only by the cancel call.
    """

    run_id: str
    owner_id: str
    status: RunStatus = RunStatus.RUNNING
    steps: List[WorkflowStep] = field(
        default_factory=lambda: [WorkflowStep(name=name) for name in PIPELINE_STEPS]
    )
    progress: WorkflowProgress = field(default_factory=WorkflowProgress)
    stats: WorkflowStats = field(default_factory=WorkflowStats)
    cancel_requested: bool = False
    is_manual: bool = True
    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None

    def step(self, name: StepName) -> WorkflowStep:
        for step in self.steps:
            if step.name == name:
                return step
        raise KeyError(name)

    def recompute_progress(self) -> None:
        """percentage = (completed steps + current step item fraction) / total steps."""
        total_steps = len(self.steps)
        completed = sum(1 for s in self.steps if s.status == StepStatus.COMPLETED)
        running = next((s for s in self.steps if s.status == StepStatus.RUNNING), None)
        fraction = running.item_fraction if running else 0.0

        self.progress.total_steps = total_steps
        self.progress.percentage = int(round(100 * (completed + fraction) / total_steps))
        if running:
            self.progress.current_step = running.name.value
            self.progress.current_step_index = self.steps.index(running)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "_id": self.run_id,
            "owner_id": self.owner_id,
            "status": self.status.value,
            "steps": [s.to_dict() for s in self.steps],
            "progress": self.progress.to_dict(),
            "stats": self.stats.to_dict(),
            "cancel_requested": self.cancel_requested,
            "is_manual": self.is_manual,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "error_message": self.error_message,
        }

    def to_api_dict(self) -> Dict[str, Any]:
        """JSON-ready snapshot for polling clients."""
        data = self.to_dict()
        data["run_id"] = data.pop("_id")
        data["started_at"] = _iso(self.started_at)
        data["completed_at"] = _iso(self.completed_at)
        for step in data["steps"]:
            step["started_at"] = _iso(step["started_at"])
            step["completed_at"] = _iso(step["completed_at"])
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowRun":
        return cls(
            run_id=data["_id"],
            owner_id=data["owner_id"],
            status=RunStatus(data.get("status", "running")),
            steps=[WorkflowStep.from_dict(s) for s in data.get("steps", [])],
            progress=WorkflowProgress.from_dict(data.get("progress")),
            stats=WorkflowStats.from_dict(data.get("stats")),
            cancel_requested=bool(data.get("cancel_requested", False)),
            is_manual=bool(data.get("is_manual", True)),
            started_at=data.get("started_at") or utcnow(),
            completed_at=data.get("completed_at"),
            error_message=data.get("error_message"),
        )


@dataclass
class RecommendationCacheEntry:
    """
    Cached "should I apply" verdict for one AutoJobRecord.

    At rest exactly one of ``score`` and ``error`` is set. The placeholder
    (no score, no error, reason "Calculating...") exists only while a
    computation is in flight.
    """

    score: Optional[int]
    should_apply: bool
    reason: str
    cached_at: datetime
    error: Optional[str] = None

    @classmethod
    def placeholder(cls) -> "RecommendationCacheEntry":
        return cls(score=None, should_apply=False, reason=PLACEHOLDER_REASON, cached_at=utcnow())

    @classmethod
    def failure(cls, message: str) -> "RecommendationCacheEntry":
        message = (message or "").strip() or DEFAULT_FAILURE_MESSAGE
        return cls(score=None, should_apply=False, reason=message, cached_at=utcnow(), error=message)

    @property
    def is_placeholder(self) -> bool:
        return self.score is None and not self.error

    @property
    def is_final(self) -> bool:
        return self.score is not None or bool(self.error)

    def is_stuck(self, stale_after: timedelta, now: Optional[datetime] = None) -> bool:
        """A placeholder older than the staleness window is stuck."""
        now = now or utcnow()
        return self.is_placeholder and self.cached_at < now - stale_after

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "score": self.score,
            "should_apply": self.should_apply,
            "reason": self.reason,
            "cached_at": self.cached_at,
        }
        if self.error:
            data["error"] = self.error
        return data

    def to_api_dict(self) -> Dict[str, Any]:
        data = self.to_dict()
        data["cached_at"] = _iso(self.cached_at)
        data.setdefault("error", None)
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["RecommendationCacheEntry"]:
        if not data:
            return None
        return cls(
            score=data.get("score"),
            should_apply=bool(data.get("should_apply", False)),
            reason=data.get("reason") or "",
            cached_at=data.get("cached_at") or utcnow(),
            error=data.get("error") or None,
        )


@dataclass
class AutoJobRecord:
    """A discovered posting and its processing state, independent of any run."""

    id: str
    owner_id: str
    job_id: str
    job_title: str
    company_name: str
    job_url: str
    job_description_text: Optional[str] = None
    location: Optional[str] = None
    processing_status: ProcessingStatus = ProcessingStatus.PENDING
    extracted_data: Optional[Dict[str, Any]] = None
    recommendation: Optional[RecommendationCacheEntry] = None
    recommendation_generation: int = 0
    cover_letter_text: Optional[str] = None
    customized_resume_text: Optional[str] = None
    error_message: Optional[str] = None
    workflow_run_id: Optional[str] = None
    discovered_at: datetime = field(default_factory=utcnow)
    processed_at: Optional[datetime] = None

    def to_api_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "job_id": self.job_id,
            "job_title": self.job_title,
            "company_name": self.company_name,
            "job_url": self.job_url,
            "location": self.location,
            "processing_status": self.processing_status.value,
            "extracted_data": self.extracted_data,
            "recommendation": self.recommendation.to_api_dict() if self.recommendation else None,
            "cover_letter_text": self.cover_letter_text,
            "customized_resume_text": self.customized_resume_text,
            "error_message": self.error_message,
            "workflow_run_id": self.workflow_run_id,
            "discovered_at": _iso(self.discovered_at),
            "processed_at": _iso(self.processed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AutoJobRecord":
        return cls(
            id=str(data["_id"]),
            owner_id=data["owner_id"],
            job_id=data["job_id"],
            job_title=data.get("job_title", ""),
            company_name=data.get("company_name", ""),
            job_url=data.get("job_url", ""),
            job_description_text=data.get("job_description_text"),
            location=data.get("location"),
            processing_status=ProcessingStatus(data.get("processing_status", "pending")),
            extracted_data=data.get("extracted_data"),
            recommendation=RecommendationCacheEntry.from_dict(data.get("recommendation")),
            recommendation_generation=int(data.get("recommendation_generation", 0)),
            cover_letter_text=data.get("cover_letter_text"),
            customized_resume_text=data.get("customized_resume_text"),
            error_message=data.get("error_message"),
            workflow_run_id=data.get("workflow_run_id"),
            discovered_at=data.get("discovered_at") or utcnow(),
            processed_at=data.get("processed_at"),
        )


class WorkflowSettings(BaseModel):
    """
    Owner-scoped search configuration, read at Discover start.

    Mutation is external CRUD; the engine only reads it.
    """

    keywords: List[str] = Field(..., min_length=1, description="Search keywords")
    location: Optional[str] = Field(None, max_length=100)
    job_types: List[str] = Field(default_factory=list)
    experience_levels: List[str] = Field(default_factory=list)
    date_posted: Optional[str] = Field(None, description="e.g. 'past week'")
    worldwide_only: bool = False
    max_jobs: int = Field(50, ge=1, le=1000, description="Postings admitted per run")
    avoid_duplicates: bool = True
    enabled: bool = Field(False, description="Include in scheduled runs")

    @field_validator("keywords")
    @classmethod
    def validate_keywords(cls, v: List[str]) -> List[str]:
        cleaned = [kw.strip() for kw in v if kw and kw.strip()]
        if not cleaned:
            raise ValueError("at least one non-empty keyword is required")
        return cleaned
