"""
Workflow Settings Repository

Read-only access to owner settings and candidate profiles in the
workflow_settings collection. Documents look like::

    {"_id": owner_id, "settings": {...}, "candidate_profile": "..."}
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .base import AtlasCollectionMixin

logger = logging.getLogger(__name__)


class WorkflowSettingsRepositoryInterface(ABC):
    """Abstract interface for owner settings lookups."""

    @abstractmethod
    def get_settings(self, owner_id: str) -> Optional[Dict[str, Any]]:
        """Raw settings dict, or None if the owner has none stored."""
        pass

    @abstractmethod
    def get_candidate_profile(self, owner_id: str) -> Optional[str]:
        pass

    @abstractmethod
    def list_enabled_owners(self) -> List[str]:
        """Owners whose settings opt into scheduled runs."""
        pass


class AtlasWorkflowSettingsRepository(AtlasCollectionMixin, WorkflowSettingsRepositoryInterface):
    """Atlas MongoDB implementation of WorkflowSettingsRepository."""

    _collection_name = "workflow_settings"

    def __init__(self, mongodb_uri: Optional[str] = None, database: str = "jobs"):
        self._init_atlas(mongodb_uri, database)

    def get_settings(self, owner_id: str) -> Optional[Dict[str, Any]]:
        doc = self._get_collection().find_one({"_id": owner_id}, {"settings": 1})
        return doc.get("settings") if doc else None

    def get_candidate_profile(self, owner_id: str) -> Optional[str]:
        doc = self._get_collection().find_one({"_id": owner_id}, {"candidate_profile": 1})
        profile = doc.get("candidate_profile") if doc else None
        return profile if profile and profile.strip() else None

    def list_enabled_owners(self) -> List[str]:
        cursor = self._get_collection().find({"settings.enabled": True}, {"_id": 1})
        return [str(doc["_id"]) for doc in cursor]
