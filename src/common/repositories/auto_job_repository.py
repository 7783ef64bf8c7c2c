"""
Auto Job Repository

Repository for the auto_jobs collection: one document per discovered
posting, keyed uniquely by (owner_id, job_id), carrying its processing
state and its embedded recommendation cache entry.

The recommendation entry is guarded by ``recommendation_generation``: a
claim only succeeds against the generation the caller last read, and a
finalize only lands if no one has claimed since.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError

from src.common.workflow_types import (
    PLACEHOLDER_REASON,
    AutoJobRecord,
    ProcessingStatus,
    RecommendationCacheEntry,
    utcnow,
)

from .base import AtlasCollectionMixin, WriteResult, to_write_result

logger = logging.getLogger(__name__)


def _object_id(record_id: str) -> Optional[ObjectId]:
    try:
        return ObjectId(record_id)
    except (InvalidId, TypeError):
        return None


def stuck_recommendation_filter(cutoff: datetime) -> Dict[str, Any]:
    """Placeholder entries (no score, no error) cached before ``cutoff``."""
    return {
        "recommendation.cached_at": {"$lt": cutoff},
        "recommendation.score": None,
        "recommendation.error": {"$in": [None, ""]},
        "recommendation.reason": PLACEHOLDER_REASON,
    }


class AutoJobRepositoryInterface(ABC):
    """Abstract interface for the auto_jobs collection."""

    @abstractmethod
    def upsert_discovered(
        self, owner_id: str, posting: Dict[str, Any], run_id: str
    ) -> Tuple[AutoJobRecord, bool]:
        """
        Insert a posting if its (owner_id, job_id) key is unseen.

        Args:
            owner_id: Owner scope
            posting: Fields with at least job_id, job_title, company_name, job_url
            run_id: Run that discovered it

        Returns:
            (record, is_new). Existing records are returned unchanged.
        """
        pass

    @abstractmethod
    def get(self, record_id: str) -> Optional[AutoJobRecord]:
        pass

    @abstractmethod
    def get_for_owner(self, owner_id: str, record_id: str) -> Optional[AutoJobRecord]:
        pass

    @abstractmethod
    def update_fields(self, record_id: str, fields: Dict[str, Any]) -> WriteResult:
        """$set arbitrary processing fields (status, extracted data, outputs)."""
        pass

    @abstractmethod
    def reset_for_reprocessing(self, record_id: str, run_id: str) -> WriteResult:
        """Return a known record to pending so a run can process it again."""
        pass

    @abstractmethod
    def list_for_owner(
        self,
        owner_id: str,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[AutoJobRecord], int]:
        """Page of records (newest first) and the total matching count."""
        pass

    @abstractmethod
    def count_by_status(self, owner_id: str) -> Dict[str, int]:
        pass

    @abstractmethod
    def claim_recommendation(
        self, record_id: str, expected_generation: int, placeholder: RecommendationCacheEntry
    ) -> bool:
        """
        Write the placeholder and bump the generation, only if the stored
        generation still equals ``expected_generation``.
        """
        pass

    @abstractmethod
    def finalize_recommendation(
        self, record_id: str, generation: int, entry: RecommendationCacheEntry
    ) -> bool:
        """Write a terminal entry, only if ``generation`` is still current."""
        pass

    @abstractmethod
    def count_stuck_recommendations(self, cutoff: datetime) -> int:
        pass

    @abstractmethod
    def clear_stuck_recommendations(self, cutoff: datetime) -> int:
        """Remove placeholder entries older than ``cutoff``. Returns count cleared."""
        pass

    def ensure_indexes(self) -> None:
        """Create the unique (owner_id, job_id) index dedup relies on, plus query indexes."""
        pass


class AtlasAutoJobRepository(AtlasCollectionMixin, AutoJobRepositoryInterface):
    """Atlas MongoDB implementation of AutoJobRepository."""

    _collection_name = "auto_jobs"

    def __init__(self, mongodb_uri: Optional[str] = None, database: str = "jobs"):
        self._init_atlas(mongodb_uri, database)

    def upsert_discovered(
        self, owner_id: str, posting: Dict[str, Any], run_id: str
    ) -> Tuple[AutoJobRecord, bool]:
        key = {"owner_id": owner_id, "job_id": posting["job_id"]}
        on_insert = {
            **posting,
            **key,
            "processing_status": ProcessingStatus.PENDING.value,
            "recommendation_generation": 0,
            "workflow_run_id": run_id,
            "discovered_at": utcnow(),
        }
        collection = self._get_collection()
        try:
            result = collection.update_one(key, {"$setOnInsert": on_insert}, upsert=True)
            is_new = result.upserted_id is not None
        except DuplicateKeyError:
            # Concurrent insert of the same key won the race
            is_new = False

        doc = collection.find_one(key)
        return AutoJobRecord.from_dict(doc), is_new

    def get(self, record_id: str) -> Optional[AutoJobRecord]:
        oid = _object_id(record_id)
        if oid is None:
            return None
        doc = self._get_collection().find_one({"_id": oid})
        return AutoJobRecord.from_dict(doc) if doc else None

    def get_for_owner(self, owner_id: str, record_id: str) -> Optional[AutoJobRecord]:
        oid = _object_id(record_id)
        if oid is None:
            return None
        doc = self._get_collection().find_one({"_id": oid, "owner_id": owner_id})
        return AutoJobRecord.from_dict(doc) if doc else None

    def update_fields(self, record_id: str, fields: Dict[str, Any]) -> WriteResult:
        result = self._get_collection().update_one(
            {"_id": ObjectId(record_id)}, {"$set": fields}
        )
        return to_write_result(result)

    def reset_for_reprocessing(self, record_id: str, run_id: str) -> WriteResult:
        result = self._get_collection().update_one(
            {"_id": ObjectId(record_id)},
            {"$set": {
                "processing_status": ProcessingStatus.PENDING.value,
                "workflow_run_id": run_id,
                "error_message": None,
            }},
        )
        return to_write_result(result)

    def list_for_owner(
        self,
        owner_id: str,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[AutoJobRecord], int]:
        query: Dict[str, Any] = {"owner_id": owner_id}
        if status:
            query["processing_status"] = status
        collection = self._get_collection()
        cursor = (
            collection.find(query, {"job_description_text": 0})
            .sort([("discovered_at", DESCENDING)])
            .skip(skip)
            .limit(limit)
        )
        return [AutoJobRecord.from_dict(doc) for doc in cursor], collection.count_documents(query)

    def count_by_status(self, owner_id: str) -> Dict[str, int]:
        pipeline = [
            {"$match": {"owner_id": owner_id}},
            {"$group": {"_id": "$processing_status", "count": {"$sum": 1}}},
        ]
        return {
            row["_id"]: row["count"]
            for row in self._get_collection().aggregate(pipeline)
        }

    def claim_recommendation(
        self, record_id: str, expected_generation: int, placeholder: RecommendationCacheEntry
    ) -> bool:
        result = self._get_collection().update_one(
            {"_id": ObjectId(record_id), "recommendation_generation": expected_generation},
            {
                "$set": {"recommendation": placeholder.to_dict()},
                "$inc": {"recommendation_generation": 1},
            },
        )
        return result.modified_count == 1

    def finalize_recommendation(
        self, record_id: str, generation: int, entry: RecommendationCacheEntry
    ) -> bool:
        result = self._get_collection().update_one(
            {"_id": ObjectId(record_id), "recommendation_generation": generation},
            {"$set": {"recommendation": entry.to_dict()}},
        )
        return result.modified_count == 1

    def count_stuck_recommendations(self, cutoff: datetime) -> int:
        return self._get_collection().count_documents(stuck_recommendation_filter(cutoff))

    def clear_stuck_recommendations(self, cutoff: datetime) -> int:
        result = self._get_collection().update_many(
            stuck_recommendation_filter(cutoff),
            {"$unset": {"recommendation": ""}},
        )
        return result.modified_count

    def ensure_indexes(self) -> None:
        collection = self._get_collection()
        try:
            collection.create_index(
                [("owner_id", ASCENDING), ("job_id", ASCENDING)], unique=True, background=True
            )
            collection.create_index(
                [("owner_id", ASCENDING), ("processing_status", ASCENDING)], background=True
            )
            collection.create_index("recommendation.cached_at", background=True)
            logger.info("Auto jobs indexes ensured")
        except Exception as e:
            logger.error(f"Error creating auto jobs indexes, duplicate postings are not prevented: {e}")
