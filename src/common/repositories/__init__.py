"""
Repository Pattern for MongoDB Operations

Public API:
- get_workflow_runs_repository(): runs and per-owner run locks
- get_auto_job_repository(): discovered postings and recommendation cache
- get_workflow_settings_repository(): owner settings and candidate profiles
- WriteResult: match/modify counts returned by single-document updates

Usage:
    from src.common.repositories import get_auto_job_repository

    repo = get_auto_job_repository()
    record, is_new = repo.upsert_discovered(owner_id, posting, run_id)
"""

from .base import AtlasCollectionMixin, WriteResult
from .auto_job_repository import AutoJobRepositoryInterface
from .workflow_runs_repository import WorkflowRunsRepositoryInterface
from .workflow_settings_repository import WorkflowSettingsRepositoryInterface
from .config import (
    get_auto_job_repository,
    get_workflow_runs_repository,
    get_workflow_settings_repository,
    reset_repositories,
    RepositoryConfig,
)

__all__ = [
    "get_auto_job_repository",
    "get_workflow_runs_repository",
    "get_workflow_settings_repository",
    "reset_repositories",
    "AutoJobRepositoryInterface",
    "WorkflowRunsRepositoryInterface",
    "WorkflowSettingsRepositoryInterface",
    "WriteResult",
    "AtlasCollectionMixin",
    "RepositoryConfig",
]
