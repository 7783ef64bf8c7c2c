"""
Repository Configuration and Factory

Factory functions returning the repository implementations for the
workflow collections. Singletons share one MongoClient.
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional

from .auto_job_repository import AutoJobRepositoryInterface
from .workflow_runs_repository import WorkflowRunsRepositoryInterface
from .workflow_settings_repository import WorkflowSettingsRepositoryInterface

logger = logging.getLogger(__name__)


@dataclass
class RepositoryConfig:
    """
    Configuration for repository initialization.

    Loaded from environment variables with sensible defaults.
    """
    atlas_uri: str
    database: str = "jobs"

    @classmethod
    def from_env(cls) -> "RepositoryConfig":
        """
        Load configuration from environment variables.

        Environment variables:
        - MONGODB_URI (required): MongoDB connection string
        - MONGO_DB_NAME: Database name (default "jobs")

        Raises:
            ValueError: If MONGODB_URI is not set
        """
        atlas_uri = os.getenv("MONGODB_URI")
        if not atlas_uri:
            raise ValueError("MONGODB_URI environment variable is required")
        return cls(atlas_uri=atlas_uri, database=os.getenv("MONGO_DB_NAME", "jobs"))


_runs_repository: Optional[WorkflowRunsRepositoryInterface] = None
_auto_job_repository: Optional[AutoJobRepositoryInterface] = None
_settings_repository: Optional[WorkflowSettingsRepositoryInterface] = None

# Factories take an explicit config on first call; later calls return the
# existing instance. Without one they read MONGODB_URI and MONGO_DB_NAME.


def get_workflow_runs_repository(
    config: Optional[RepositoryConfig] = None,
) -> WorkflowRunsRepositoryInterface:
    """Get the workflow runs repository instance (singleton)."""
    global _runs_repository

    if _runs_repository is None:
        config = config or RepositoryConfig.from_env()
        from .workflow_runs_repository import AtlasWorkflowRunsRepository
        _runs_repository = AtlasWorkflowRunsRepository(config.atlas_uri, config.database)
        logger.info("Initialized workflow runs repository")

    return _runs_repository


def get_auto_job_repository(
    config: Optional[RepositoryConfig] = None,
) -> AutoJobRepositoryInterface:
    """Get the auto jobs repository instance (singleton)."""
    global _auto_job_repository

    if _auto_job_repository is None:
        config = config or RepositoryConfig.from_env()
        from .auto_job_repository import AtlasAutoJobRepository
        _auto_job_repository = AtlasAutoJobRepository(config.atlas_uri, config.database)
        logger.info("Initialized auto jobs repository")

    return _auto_job_repository


def get_workflow_settings_repository(
    config: Optional[RepositoryConfig] = None,
) -> WorkflowSettingsRepositoryInterface:
    """Get the workflow settings repository instance (singleton)."""
    global _settings_repository

    if _settings_repository is None:
        config = config or RepositoryConfig.from_env()
        from .workflow_settings_repository import AtlasWorkflowSettingsRepository
        _settings_repository = AtlasWorkflowSettingsRepository(config.atlas_uri, config.database)
        logger.info("Initialized workflow settings repository")

    return _settings_repository


def reset_repositories() -> None:
    """
    Reset all repository singletons and the shared connection.

    Used for testing or when configuration changes.
    """
    global _runs_repository, _auto_job_repository, _settings_repository

    from .base import AtlasCollectionMixin
    AtlasCollectionMixin.reset_connection()

    _runs_repository = None
    _auto_job_repository = None
    _settings_repository = None
    logger.info("Repository singletons reset")
