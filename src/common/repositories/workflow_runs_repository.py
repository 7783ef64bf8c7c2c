"""
Workflow Runs Repository

Repository for the workflow_runs collection plus the per-owner run lock
kept in workflow_locks. The lock document is the single source of truth
for "this owner has an active run".
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError

from src.common.workflow_types import RunStatus, WorkflowRun, utcnow

from .base import AtlasCollectionMixin

logger = logging.getLogger(__name__)

LOCKS_COLLECTION = "workflow_locks"


class WorkflowRunsRepositoryInterface(ABC):
    """
    Abstract interface for workflow run persistence.

    Snapshot writes replace the controller-owned fields in one update so
    readers never observe a half-applied transition. ``cancel_requested``
    is deliberately excluded from snapshots.
    """

    @abstractmethod
    def try_acquire_owner_lock(self, owner_id: str, run_id: str) -> Optional[str]:
        """
        Atomically claim the owner's run slot.

        Returns:
            None when the lock was acquired for ``run_id``, otherwise the
            run id currently holding it.
        """
        pass

    @abstractmethod
    def release_owner_lock(self, owner_id: str, run_id: str) -> bool:
        """Release the lock only if ``run_id`` still holds it."""
        pass

    @abstractmethod
    def get_lock_holder(self, owner_id: str) -> Optional[str]:
        """Run id currently holding the owner's lock, if any."""
        pass

    @abstractmethod
    def create_run(self, run: WorkflowRun) -> None:
        pass

    @abstractmethod
    def get_run(self, run_id: str) -> Optional[WorkflowRun]:
        pass

    @abstractmethod
    def publish_snapshot(self, run: WorkflowRun) -> None:
        """Persist status, steps, progress, stats and completion fields atomically."""
        pass

    @abstractmethod
    def request_cancel(self, run_id: str) -> bool:
        """Set cancel_requested on a running run. False if not running."""
        pass

    @abstractmethod
    def is_cancel_requested(self, run_id: str) -> bool:
        pass

    @abstractmethod
    def list_runs(self, owner_id: str, limit: int = 20) -> List[WorkflowRun]:
        """Most recent runs for an owner, newest first."""
        pass

    @abstractmethod
    def find_running(self) -> List[WorkflowRun]:
        """All runs still marked running (used for startup recovery)."""
        pass

    def ensure_indexes(self) -> None:
        """Create the indexes listing and recovery queries rely on."""
        pass


class AtlasWorkflowRunsRepository(AtlasCollectionMixin, WorkflowRunsRepositoryInterface):
    """Atlas MongoDB implementation of WorkflowRunsRepository."""

    _collection_name = "workflow_runs"

    def __init__(self, mongodb_uri: Optional[str] = None, database: str = "jobs"):
        self._init_atlas(mongodb_uri, database)

    def _locks(self):
        return self._get_collection(LOCKS_COLLECTION)

    def try_acquire_owner_lock(self, owner_id: str, run_id: str) -> Optional[str]:
        # A held lock does not match the filter, so the upsert collides on _id
        for _ in range(2):
            try:
                self._locks().update_one(
                    {"_id": owner_id, "run_id": None},
                    {"$set": {"run_id": run_id, "acquired_at": utcnow()}},
                    upsert=True,
                )
                return None
            except DuplicateKeyError:
                holder = self.get_lock_holder(owner_id)
                if holder:
                    return holder
                # Released between our attempt and the read; try once more
        return self.get_lock_holder(owner_id) or ""

    def release_owner_lock(self, owner_id: str, run_id: str) -> bool:
        result = self._locks().update_one(
            {"_id": owner_id, "run_id": run_id},
            {"$set": {"run_id": None, "released_at": utcnow()}},
        )
        return result.modified_count == 1

    def get_lock_holder(self, owner_id: str) -> Optional[str]:
        doc = self._locks().find_one({"_id": owner_id})
        return doc.get("run_id") if doc else None

    def create_run(self, run: WorkflowRun) -> None:
        self._get_collection().insert_one(run.to_dict())

    def get_run(self, run_id: str) -> Optional[WorkflowRun]:
        doc = self._get_collection().find_one({"_id": run_id})
        return WorkflowRun.from_dict(doc) if doc else None

    def publish_snapshot(self, run: WorkflowRun) -> None:
        data = run.to_dict()
        fields = {
            key: data[key]
            for key in ("status", "steps", "progress", "stats", "completed_at", "error_message")
        }
        result = self._get_collection().update_one({"_id": run.run_id}, {"$set": fields})
        if result.matched_count == 0:
            logger.warning(f"[{run.run_id[:8]}] Snapshot for unknown run dropped")

    def request_cancel(self, run_id: str) -> bool:
        result = self._get_collection().update_one(
            {"_id": run_id, "status": RunStatus.RUNNING.value},
            {"$set": {"cancel_requested": True}},
        )
        return result.matched_count == 1

    def is_cancel_requested(self, run_id: str) -> bool:
        doc = self._get_collection().find_one({"_id": run_id}, {"cancel_requested": 1})
        return bool(doc and doc.get("cancel_requested"))

    def list_runs(self, owner_id: str, limit: int = 20) -> List[WorkflowRun]:
        cursor = (
            self._get_collection()
            .find({"owner_id": owner_id})
            .sort([("started_at", DESCENDING)])
            .limit(limit)
        )
        return [WorkflowRun.from_dict(doc) for doc in cursor]

    def find_running(self) -> List[WorkflowRun]:
        cursor = self._get_collection().find({"status": RunStatus.RUNNING.value})
        return [WorkflowRun.from_dict(doc) for doc in cursor]

    def ensure_indexes(self) -> None:
        try:
            self._get_collection().create_index(
                [("owner_id", 1), ("started_at", DESCENDING)], background=True
            )
            self._get_collection().create_index("status", background=True)
            logger.info("Workflow runs indexes ensured")
        except Exception as e:
            logger.warning(f"Error creating workflow runs indexes: {e}")
