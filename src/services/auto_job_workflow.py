"""
Auto-Job Workflow Controller

Runs the fixed five-step pipeline for one owner:

    discover -> deduplicate -> extract -> recommend -> generate

Each run executes as one asyncio task. The controller is the only writer
of the run's status, steps, progress and stats, and publishes them as a
single snapshot after every change. Cancellation is a flag on the run
document, checked before every step and between items.

Failure handling:
- StructuralFailure (and any unexpected error, e.g. the store being
  unreachable) fails the current step and the run.
- ItemFailure / AdapterError / AI timeout on one posting marks that
  AutoJobRecord as error, bumps stats.errors, and the step moves on.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional

from pydantic import ValidationError

from src.common.config import Config
from src.common.error_handling import (
    AdapterError,
    AlreadyRunning,
    InvalidSettings,
    ItemFailure,
    RunNotFound,
    SourceUnavailable,
    StructuralFailure,
)
from src.common.logger import PipelineLogger, get_logger
from src.common.repositories import (
    WorkflowRunsRepositoryInterface,
    WorkflowSettingsRepositoryInterface,
    get_workflow_runs_repository,
    get_workflow_settings_repository,
)
from src.common.workflow_types import (
    DEFAULT_FAILURE_MESSAGE,
    AutoJobRecord,
    PIPELINE_STEPS,
    RunStatus,
    StepName,
    StepStatus,
    WorkflowRun,
    WorkflowSettings,
    WorkflowStep,
    utcnow,
)
from src.services.ai_adapter import AIAdapter
from src.services.job_registry import JobRegistry
from src.services.job_sources import JobSource
from src.services.recommendation_cache import RecommendationCache

INTERRUPTED_MESSAGE = "interrupted"
CANCELLED_MESSAGE = "Cancelled"
SHORT_DESCRIPTION_MESSAGE = "Job description missing from source"


@dataclass
class RunContext:
    """Mutable working state of one executing run."""

    run: WorkflowRun
    settings_override: Optional[WorkflowSettings] = None
    settings: Optional[WorkflowSettings] = None
    profile: Optional[str] = None
    discovered: List[tuple] = field(default_factory=list)  # (record, is_new)
    records: List[AutoJobRecord] = field(default_factory=list)


class AutoJobWorkflow:
    """
    Trigger, observe and cancel auto-job workflow runs.

    Collaborators are injected; repositories fall back to the singleton
    factories when omitted.
    """

    def __init__(
        self,
        source: JobSource,
        ai_adapter: AIAdapter,
        registry: Optional[JobRegistry] = None,
        cache: Optional[RecommendationCache] = None,
        runs_repository: Optional[WorkflowRunsRepositoryInterface] = None,
        settings_repository: Optional[WorkflowSettingsRepositoryInterface] = None,
        ai_timeout_seconds: float = 120,
        relevance_threshold: int = 50,
        min_description_length: int = 50,
        default_max_jobs: int = 50,
    ):
        self.source = source
        self.ai_adapter = ai_adapter
        self.registry = registry or JobRegistry()
        self.cache = cache or RecommendationCache(
            ai_adapter, self.registry.repository, ai_timeout_seconds=ai_timeout_seconds
        )
        self._runs_repository = runs_repository
        self._settings_repository = settings_repository
        self.ai_timeout_seconds = ai_timeout_seconds
        self.relevance_threshold = relevance_threshold
        self.min_description_length = min_description_length
        self.default_max_jobs = default_max_jobs

        self._tasks: Dict[str, asyncio.Task] = {}
        self._logger = get_logger(__name__)

        self._steps: Dict[StepName, Callable[[RunContext, WorkflowStep, PipelineLogger], Awaitable[bool]]] = {
            StepName.DISCOVER: self._discover,
            StepName.DEDUPLICATE: self._deduplicate,
            StepName.EXTRACT: self._extract,
            StepName.RECOMMEND: self._recommend,
            StepName.GENERATE: self._generate,
        }

    @property
    def runs(self) -> WorkflowRunsRepositoryInterface:
        if self._runs_repository is None:
            self._runs_repository = get_workflow_runs_repository()
        return self._runs_repository

    @property
    def settings_repository(self) -> WorkflowSettingsRepositoryInterface:
        if self._settings_repository is None:
            self._settings_repository = get_workflow_settings_repository()
        return self._settings_repository

    # =========================================================================
    # Public contract
    # =========================================================================

    async def trigger(
        self,
        owner_id: str,
        settings: Optional[WorkflowSettings] = None,
        is_manual: bool = True,
    ) -> WorkflowRun:
        """
        Start a run for ``owner_id`` and return immediately.

        Args:
            owner_id: Owner scope
            settings: Settings for this run only; stored settings are read
                at Discover start when omitted
            is_manual: False for scheduled runs

        Raises:
            AlreadyRunning: If the owner already has an active run
        """
        run_id = uuid.uuid4().hex
        self._acquire_owner_lock(owner_id, run_id)

        run = WorkflowRun(run_id=run_id, owner_id=owner_id, is_manual=is_manual)
        try:
            self.runs.create_run(run)
        except Exception:
            self.runs.release_owner_lock(owner_id, run_id)
            raise

        task = asyncio.create_task(self.execute(RunContext(run=run, settings_override=settings)))
        self._tasks[run_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(run_id, None))

        self._logger.info(f"[{run_id[:8]}] Workflow run started for owner {owner_id}")
        return run

    def get_status(self, run_id: str) -> WorkflowRun:
        """Read the latest published snapshot of a run."""
        run = self.runs.get_run(run_id)
        if run is None:
            raise RunNotFound(run_id)
        return run

    def cancel(self, run_id: str) -> bool:
        """
        Request cooperative cancellation.

        Returns:
            True if the request was recorded, False if the run already ended

        Raises:
            RunNotFound: If the run does not exist
        """
        if self.runs.request_cancel(run_id):
            self._logger.info(f"[{run_id[:8]}] Cancellation requested")
            return True
        if self.runs.get_run(run_id) is None:
            raise RunNotFound(run_id)
        return False

    def list_runs(self, owner_id: str, limit: int = 20) -> List[WorkflowRun]:
        return self.runs.list_runs(owner_id, limit=limit)

    def is_executing(self, run_id: str) -> bool:
        return run_id in self._tasks

    def executing_run_ids(self) -> List[str]:
        return list(self._tasks)

    async def wait_for(self, run_id: str) -> None:
        """Await a run executing in this process (no-op otherwise)."""
        task = self._tasks.get(run_id)
        if task is not None:
            await task

    def recover_interrupted_runs(self) -> List[str]:
        """
        Fail runs left running by a previous process and free their owners.

        Called once at startup, before any new run is triggered.
        """
        recovered = []
        for run in self.runs.find_running():
            if self.is_executing(run.run_id):
                continue
            for step in run.steps:
                if step.status == StepStatus.RUNNING:
                    step.fail(INTERRUPTED_MESSAGE)
            run.status = RunStatus.FAILED
            run.error_message = INTERRUPTED_MESSAGE
            run.completed_at = utcnow()
            self.runs.publish_snapshot(run)
            self.runs.release_owner_lock(run.owner_id, run.run_id)
            recovered.append(run.run_id)
            self._logger.warning(f"[{run.run_id[:8]}] Marked interrupted run as failed")
        return recovered

    async def shutdown(self) -> None:
        """Cancel executing runs; each finalizes as interrupted."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # =========================================================================
    # Run execution
    # =========================================================================

    def _acquire_owner_lock(self, owner_id: str, run_id: str) -> None:
        holder = self.runs.try_acquire_owner_lock(owner_id, run_id)
        if holder is None:
            return

        # A lock whose run is gone or finished was left behind by a crash
        if holder and not self.is_executing(holder):
            existing = self.runs.get_run(holder)
            if existing is None or existing.status.is_terminal:
                self._logger.warning(f"[{holder[:8]}] Releasing stale owner lock for {owner_id}")
                self.runs.release_owner_lock(owner_id, holder)
                holder = self.runs.try_acquire_owner_lock(owner_id, run_id)
                if holder is None:
                    return

        raise AlreadyRunning(owner_id, holder or None)

    def _publish(self, run: WorkflowRun) -> None:
        run.recompute_progress()
        self.runs.publish_snapshot(run)

    def _cancel_requested(self, run: WorkflowRun) -> bool:
        return self.runs.is_cancel_requested(run.run_id)

    async def execute(self, ctx: RunContext) -> WorkflowRun:
        """Drive one run to a terminal status. Always releases the owner lock."""
        run = ctx.run
        log = get_logger(__name__, run_id=run.run_id)
        current: Optional[WorkflowStep] = None

        try:
            for name in PIPELINE_STEPS:
                if self._cancel_requested(run):
                    self._finish_cancelled(run, current=None, log=log)
                    return run

                current = run.step(name)
                current.start()
                self._publish(run)
                step_log = log.with_layer(name.value)
                step_log.info("Step started")

                cancelled = await self._steps[name](ctx, current, step_log)
                if cancelled:
                    self._finish_cancelled(run, current=current, log=step_log)
                    return run

                current.complete()
                self._publish(run)
                step_log.info(current.message or "Step completed")
                current = None

            run.status = RunStatus.COMPLETED
            run.completed_at = utcnow()
            self._publish(run)
            log.info(f"Run completed: {run.stats.to_dict()}")

        except asyncio.CancelledError:
            self._finish_failed(run, current, INTERRUPTED_MESSAGE, log)
            raise
        except StructuralFailure as e:
            self._finish_failed(run, current, str(e), log)
        except Exception as e:
            log.exception(f"Unexpected error: {e}")
            self._finish_failed(run, current, str(e) or type(e).__name__, log)
        finally:
            try:
                self.runs.release_owner_lock(run.owner_id, run.run_id)
            except Exception as e:
                log.error(f"Could not release owner lock: {e}")

        return run

    def _finish_cancelled(
        self, run: WorkflowRun, current: Optional[WorkflowStep], log: PipelineLogger
    ) -> None:
        if current is not None and current.status == StepStatus.RUNNING:
            current.fail(CANCELLED_MESSAGE)
        run.status = RunStatus.CANCELLED
        run.completed_at = utcnow()
        self._publish(run)
        log.info("Run cancelled")

    def _finish_failed(
        self,
        run: WorkflowRun,
        current: Optional[WorkflowStep],
        message: str,
        log: PipelineLogger,
    ) -> None:
        if current is not None and current.status == StepStatus.RUNNING:
            current.fail(message)
        run.status = RunStatus.FAILED
        run.error_message = message
        run.completed_at = utcnow()
        try:
            self._publish(run)
        except Exception as e:
            log.error(f"Could not publish failed run state: {e}")
        log.error(f"Run failed: {message}")

    async def _call_ai(self, fn: Callable[..., Any], *args: Any) -> Any:
        """Run a blocking adapter call under the AI timeout. Any failure becomes ItemFailure."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(fn, *args), timeout=self.ai_timeout_seconds
            )
        except asyncio.TimeoutError:
            raise ItemFailure(f"AI call timed out after {self.ai_timeout_seconds:g}s")
        except AdapterError as e:
            raise ItemFailure(str(e) or DEFAULT_FAILURE_MESSAGE)
        except Exception as e:
            self._logger.exception(f"AI call {getattr(fn, '__name__', fn)} raised unexpectedly")
            raise ItemFailure(f"AI call failed: {e}")

    async def _for_each_record(
        self,
        ctx: RunContext,
        step: WorkflowStep,
        log: PipelineLogger,
        records: List[AutoJobRecord],
        handle: Callable[[AutoJobRecord], Awaitable[bool]],
    ) -> Optional[List[AutoJobRecord]]:
        """
        Apply ``handle`` to each record with per-item failure isolation.

        ``handle`` returns True to pass the record on to the next step.

        Returns:
            Records passed on, or None if cancellation was observed
        """
        step.total = len(records)
        step.count = 0
        self._publish(ctx.run)
        survivors = []

        for record in records:
            if self._cancel_requested(ctx.run):
                return None
            try:
                if await handle(record):
                    survivors.append(record)
            except (ItemFailure, AdapterError) as e:
                log.warning(f"Job {record.job_id} failed: {e}")
                self.registry.mark_error(record, str(e))
                ctx.run.stats.increment("errors")
            step.count += 1
            self._publish(ctx.run)

        return survivors

    # =========================================================================
    # Steps
    # =========================================================================

    def parse_settings(self, raw: Dict[str, Any]) -> WorkflowSettings:
        """
        Validate raw owner settings, filling max_jobs from the service default.

        Raises:
            InvalidSettings: If the settings cannot drive a run
        """
        try:
            return WorkflowSettings.model_validate({"max_jobs": self.default_max_jobs, **raw})
        except ValidationError as e:
            raise InvalidSettings(f"Invalid workflow settings: {e}", step=StepName.DISCOVER.value)

    def _resolve_settings(self, ctx: RunContext) -> WorkflowSettings:
        if ctx.settings_override is not None:
            return ctx.settings_override

        raw = self.settings_repository.get_settings(ctx.run.owner_id)
        if raw is None and Config.HIMALAYAS_KEYWORDS:
            raw = {"keywords": Config.HIMALAYAS_KEYWORDS.split(",")}
        if raw is None:
            raise InvalidSettings("No workflow settings configured", step=StepName.DISCOVER.value)
        return self.parse_settings(raw)

    async def _discover(self, ctx: RunContext, step: WorkflowStep, log: PipelineLogger) -> bool:
        ctx.settings = self._resolve_settings(ctx)
        max_jobs = ctx.settings.max_jobs
        step.count = 0

        try:
            postings: Iterator = iter(self.source.search(ctx.settings))
        except StructuralFailure:
            raise
        except Exception as e:
            raise SourceUnavailable(f"Job source failed: {e}", step=StepName.DISCOVER.value)

        seen = set()
        while len(ctx.discovered) < max_jobs:
            if self._cancel_requested(ctx.run):
                return True
            try:
                posting = await asyncio.to_thread(next, postings, None)
            except StructuralFailure:
                raise
            except Exception as e:
                raise SourceUnavailable(f"Job source failed: {e}", step=StepName.DISCOVER.value)
            if posting is None:
                break

            try:
                key = self.registry.dedup_key(posting)
            except ItemFailure as e:
                log.warning(f"Skipping posting {posting.job_title!r}: {e}")
                ctx.run.stats.increment("errors")
                continue
            if key in seen:
                log.debug(f"Skipping repeated posting {key} within this run")
                continue
            seen.add(key)

            record, is_new = self.registry.upsert_discovered(ctx.run.owner_id, posting, ctx.run.run_id)
            ctx.discovered.append((record, is_new))
            ctx.run.stats.increment("jobs_found")
            step.count = len(ctx.discovered)
            self._publish(ctx.run)

        step.total = len(ctx.discovered)
        step.message = f"Found {step.total} jobs (limit {max_jobs})"
        return False

    async def _deduplicate(self, ctx: RunContext, step: WorkflowStep, log: PipelineLogger) -> bool:
        step.total = len(ctx.discovered)
        step.count = 0
        avoid_duplicates = ctx.settings.avoid_duplicates if ctx.settings else True

        for record, is_new in ctx.discovered:
            if is_new:
                ctx.run.stats.increment("new_jobs")
                ctx.records.append(record)
            else:
                ctx.run.stats.increment("duplicates")
                if not avoid_duplicates:
                    ctx.records.append(self.registry.reset_for_reprocessing(record, ctx.run.run_id))
            step.count += 1

        step.message = (
            f"{ctx.run.stats.new_jobs} new, {ctx.run.stats.duplicates} duplicates"
        )
        log.info(f"{len(ctx.records)} jobs continue to extraction")
        return False

    async def _extract(self, ctx: RunContext, step: WorkflowStep, log: PipelineLogger) -> bool:
        async def handle(record: AutoJobRecord) -> bool:
            description = (record.job_description_text or "").strip()
            if len(description) < self.min_description_length:
                raise ItemFailure(SHORT_DESCRIPTION_MESSAGE, job_id=record.job_id)
            extracted = await self._call_ai(self.ai_adapter.extract, description)
            self.registry.mark_analyzed(record, extracted)
            ctx.run.stats.increment("analyzed")
            return True

        survivors = await self._for_each_record(ctx, step, log, ctx.records, handle)
        if survivors is None:
            return True
        ctx.records = survivors
        step.message = f"Analyzed {len(survivors)} of {step.total} jobs"
        return False

    def load_profile(self, owner_id: str) -> str:
        """Owner's candidate profile, falling back to CANDIDATE_PROFILE_PATH."""
        profile = self.settings_repository.get_candidate_profile(owner_id)
        if not profile:
            profile = Config.load_default_profile()
        if not profile:
            raise StructuralFailure(
                "No candidate profile available for recommendations",
                step=StepName.RECOMMEND.value,
            )
        return profile

    async def _recommend(self, ctx: RunContext, step: WorkflowStep, log: PipelineLogger) -> bool:
        if ctx.records:
            ctx.profile = self.load_profile(ctx.run.owner_id)

        async def handle(record: AutoJobRecord) -> bool:
            entry = await self.cache.get_or_compute(record.id, ctx.profile)
            if entry.score is None:
                raise ItemFailure(entry.error or DEFAULT_FAILURE_MESSAGE, job_id=record.job_id)
            relevant = entry.score >= self.relevance_threshold
            self.registry.mark_relevance(record, relevant)
            ctx.run.stats.increment("relevant" if relevant else "not_relevant")
            log.debug(f"Job {record.job_id} scored {entry.score}")
            return relevant

        survivors = await self._for_each_record(ctx, step, log, ctx.records, handle)
        if survivors is None:
            return True
        ctx.records = survivors
        step.message = f"{len(survivors)} relevant of {step.total} jobs"
        return False

    async def _generate(self, ctx: RunContext, step: WorkflowStep, log: PipelineLogger) -> bool:
        async def handle(record: AutoJobRecord) -> bool:
            materials = await self._call_ai(self.ai_adapter.generate, record, ctx.profile)
            self.registry.mark_generated(
                record, materials.cover_letter_text, materials.customized_resume_text
            )
            ctx.run.stats.increment("generated")
            return True

        survivors = await self._for_each_record(ctx, step, log, ctx.records, handle)
        if survivors is None:
            return True
        step.message = f"Generated materials for {len(survivors)} jobs"
        return False
