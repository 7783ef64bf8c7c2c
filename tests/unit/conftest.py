"""
Global fixtures for all unit tests.

This conftest provides autouse fixtures that prevent real external service calls:
- MongoDB connection attempts (would cause 5-30s timeout per test)
- Environment variable isolation (prevents credential leakage)

Shared in-memory collaborators for workflow tests live here too.
"""

import os
import pytest
from unittest.mock import patch, MagicMock

# Set test environment BEFORE any imports to prevent Config from loading real values
os.environ["ENVIRONMENT"] = "test"
os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017")

from src.common.repositories import AtlasCollectionMixin
from src.services.job_registry import JobRegistry
from src.services.recommendation_cache import RecommendationCache
from tests.fixtures.fake_collaborators import OWNER_ID, PROFILE, ScriptedAIAdapter
from tests.fixtures.in_memory_repositories import (
    InMemoryAutoJobRepository,
    InMemoryWorkflowRunsRepository,
    InMemoryWorkflowSettingsRepository,
)


@pytest.fixture(autouse=True)
def mock_mongodb():
    """
    Prevent MongoDB connection attempts in all unit tests.

    MongoClient("") defaults to localhost:27017, causing 5-30s timeout per test.
    """
    with patch("src.common.repositories.base.MongoClient") as mock_client:
        mock_instance = MagicMock()
        mock_db = MagicMock()
        mock_collection = MagicMock()

        # Setup chain: client["db"]["collection"]
        mock_instance.__getitem__ = MagicMock(return_value=mock_db)
        mock_db.__getitem__ = MagicMock(return_value=mock_collection)
        mock_collection.find_one = MagicMock(return_value=None)
        mock_collection.find = MagicMock(return_value=[])

        mock_client.return_value = mock_instance
        AtlasCollectionMixin._client = None
        yield mock_client
        AtlasCollectionMixin._client = None


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch):
    """
    Isolate test environment from real credentials and configurations.

    Mock API keys keep an accidental LLM call from reaching a provider.
    """
    monkeypatch.setenv("ENVIRONMENT", "test")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-mock-key")
    monkeypatch.setenv("OPENROUTER_API_KEY", "sk-or-test-mock-key")


@pytest.fixture
def runs_repo():
    return InMemoryWorkflowRunsRepository()


@pytest.fixture
def jobs_repo():
    return InMemoryAutoJobRepository()


@pytest.fixture
def settings_repo():
    repo = InMemoryWorkflowSettingsRepository()
    repo.settings[OWNER_ID] = {"keywords": ["python"], "max_jobs": 50}
    repo.profiles[OWNER_ID] = PROFILE
    return repo


@pytest.fixture
def ai_adapter():
    return ScriptedAIAdapter()


@pytest.fixture
def registry(jobs_repo):
    return JobRegistry(jobs_repo)


@pytest.fixture
def cache(ai_adapter, jobs_repo):
    return RecommendationCache(
        ai_adapter,
        jobs_repo,
        ai_timeout_seconds=5,
        stale_after_seconds=600,
        poll_interval_seconds=0.01,
    )
