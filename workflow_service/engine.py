"""
Engine wiring for the workflow service.

Builds the controller and its collaborators once per process. Routes get
the engine through the ``get_engine`` dependency so tests can override it.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from src.common.repositories import (
    RepositoryConfig,
    get_auto_job_repository,
    get_workflow_runs_repository,
    get_workflow_settings_repository,
)
from src.services.ai_adapter import LLMAIAdapter
from src.services.auto_job_workflow import AutoJobWorkflow
from src.services.job_registry import JobRegistry
from src.services.job_sources import HimalayasSource
from src.services.recommendation_cache import RecommendationCache
from src.services.workflow_scheduler import WorkflowScheduler

from .config import ServiceSettings, get_settings

logger = logging.getLogger(__name__)


@dataclass
class WorkflowEngine:
    workflow: AutoJobWorkflow
    registry: JobRegistry
    cache: RecommendationCache
    scheduler: WorkflowScheduler

    def ensure_indexes(self) -> None:
        self.registry.repository.ensure_indexes()
        self.workflow.runs.ensure_indexes()


def build_engine(settings: ServiceSettings) -> WorkflowEngine:
    """Assemble the production engine from service settings."""
    repo_config = RepositoryConfig(atlas_uri=settings.mongodb_uri, database=settings.mongo_db_name)
    settings_repository = get_workflow_settings_repository(repo_config)
    registry = JobRegistry(get_auto_job_repository(repo_config))
    ai_adapter = LLMAIAdapter(
        should_apply_threshold=settings.should_apply_threshold,
        relevance_threshold=settings.relevance_threshold,
        timeout=settings.ai_timeout_seconds,
    )
    cache = RecommendationCache(
        ai_adapter,
        registry.repository,
        ai_timeout_seconds=settings.ai_timeout_seconds,
        stale_after_seconds=settings.stuck_entry_timeout_seconds,
    )
    workflow = AutoJobWorkflow(
        source=HimalayasSource(),
        ai_adapter=ai_adapter,
        registry=registry,
        cache=cache,
        runs_repository=get_workflow_runs_repository(repo_config),
        settings_repository=settings_repository,
        ai_timeout_seconds=settings.ai_timeout_seconds,
        relevance_threshold=settings.relevance_threshold,
        min_description_length=settings.min_description_length,
        default_max_jobs=settings.default_max_jobs,
    )
    scheduler = WorkflowScheduler(workflow, settings_repository, hour=settings.scheduler_hour)
    logger.info("Workflow engine assembled")
    return WorkflowEngine(workflow=workflow, registry=registry, cache=cache, scheduler=scheduler)


_engine: Optional[WorkflowEngine] = None


def get_engine() -> WorkflowEngine:
    """FastAPI dependency returning the process-wide engine."""
    global _engine

    if _engine is None:
        _engine = build_engine(get_settings())
    return _engine


def reset_engine() -> None:
    global _engine
    _engine = None
