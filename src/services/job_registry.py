"""
Job Registry

Durable store of discovered postings and their processing status. Wraps
the auto_jobs repository with the status transitions the workflow steps
perform, and owns deduplication by (owner_id, job_id).
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from src.common.dedupe import extract_job_id, normalize_job_id
from src.common.error_handling import ItemFailure
from src.common.repositories import AutoJobRepositoryInterface, get_auto_job_repository
from src.common.workflow_types import AutoJobRecord, ProcessingStatus, utcnow
from src.services.job_sources import RawPosting

logger = logging.getLogger(__name__)


class JobRegistry:
    """Processing-state transitions for AutoJobRecords."""

    def __init__(self, repository: Optional[AutoJobRepositoryInterface] = None):
        self._repository = repository

    @property
    def repository(self) -> AutoJobRepositoryInterface:
        if self._repository is None:
            self._repository = get_auto_job_repository()
        return self._repository

    def dedup_key(self, posting: RawPosting) -> str:
        """
        Dedup key for a posting: its external id, or one derived from its URL.

        Raises:
            ItemFailure: If the posting has neither
        """
        job_id = normalize_job_id(posting.job_id)
        if job_id:
            return job_id
        try:
            return extract_job_id(posting.job_url)
        except ValueError:
            raise ItemFailure("Posting has no job id and no URL")

    def upsert_discovered(
        self, owner_id: str, posting: RawPosting, run_id: str
    ) -> Tuple[AutoJobRecord, bool]:
        """Store a posting unless its key is already known. Returns (record, is_new)."""
        document = posting.to_document()
        document["job_id"] = self.dedup_key(posting)
        return self.repository.upsert_discovered(owner_id, document, run_id)

    def reset_for_reprocessing(self, record: AutoJobRecord, run_id: str) -> AutoJobRecord:
        self.repository.reset_for_reprocessing(record.id, run_id)
        record.processing_status = ProcessingStatus.PENDING
        record.workflow_run_id = run_id
        record.error_message = None
        return record

    def _transition(self, record: AutoJobRecord, status: ProcessingStatus, **fields: Any) -> None:
        update: Dict[str, Any] = {
            "processing_status": status.value,
            "processed_at": utcnow(),
            **fields,
        }
        self.repository.update_fields(record.id, update)
        record.processing_status = status
        record.processed_at = update["processed_at"]
        for key, value in fields.items():
            setattr(record, key, value)

    def mark_analyzed(self, record: AutoJobRecord, extracted_data: Dict[str, Any]) -> None:
        self._transition(record, ProcessingStatus.ANALYZED, extracted_data=extracted_data)

    def mark_relevance(self, record: AutoJobRecord, relevant: bool) -> None:
        status = ProcessingStatus.RELEVANT if relevant else ProcessingStatus.NOT_RELEVANT
        self._transition(record, status)

    def mark_generated(
        self, record: AutoJobRecord, cover_letter_text: str, customized_resume_text: str
    ) -> None:
        self._transition(
            record,
            ProcessingStatus.GENERATED,
            cover_letter_text=cover_letter_text,
            customized_resume_text=customized_resume_text,
        )

    def mark_error(self, record: AutoJobRecord, message: str) -> None:
        logger.warning(f"Job {record.job_id} failed: {message}")
        self._transition(record, ProcessingStatus.ERROR, error_message=message)

    def get(self, owner_id: str, record_id: str) -> Optional[AutoJobRecord]:
        return self.repository.get_for_owner(owner_id, record_id)

    def list(
        self, owner_id: str, status: Optional[str] = None, page: int = 1, limit: int = 20
    ) -> Tuple[List[AutoJobRecord], int]:
        skip = max(page - 1, 0) * limit
        return self.repository.list_for_owner(owner_id, status=status, skip=skip, limit=limit)

    def stats(self, owner_id: str) -> Dict[str, int]:
        counts = self.repository.count_by_status(owner_id)
        result = {status.value: counts.get(status.value, 0) for status in ProcessingStatus}
        result["total"] = sum(result.values())
        return result
