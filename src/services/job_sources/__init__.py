"""
Job Sources Module

A job source turns an owner's WorkflowSettings into a stream of raw
postings. Sources are consumed lazily by the Discover step, which stops
pulling once the run's max_jobs cap is reached.

Any exception escaping ``search`` (or raised while iterating its result)
fails the Discover step; sources should raise SourceUnavailable when the
upstream cannot be reached.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from src.common.workflow_types import WorkflowSettings


@dataclass
class RawPosting:
    """Unified posting structure across all sources."""
    job_id: str
    job_title: str
    company_name: str
    job_url: str
    job_description_text: Optional[str] = None
    location: Optional[str] = None
    posted_at: Optional[datetime] = None
    structured_data: Dict[str, Any] = field(default_factory=dict)

    def to_document(self) -> Dict[str, Any]:
        """Fields stored on a newly discovered AutoJobRecord."""
        doc = {
            "job_id": self.job_id,
            "job_title": self.job_title,
            "company_name": self.company_name,
            "job_url": self.job_url,
            "job_description_text": self.job_description_text,
            "location": self.location,
            "posted_at": self.posted_at,
        }
        if self.structured_data:
            doc["structured_data"] = self.structured_data
        return doc


class JobSource(ABC):
    """Abstract base class for job data sources."""

    @abstractmethod
    def search(self, settings: WorkflowSettings) -> Iterable[RawPosting]:
        """
        Search the source for postings matching ``settings``.

        Args:
            settings: Owner's validated workflow settings

        Returns:
            Iterable of RawPosting, possibly lazy

        Raises:
            SourceUnavailable: If the upstream cannot be reached
        """
        pass

    @abstractmethod
    def get_source_name(self) -> str:
        """Unique identifier for this source (e.g. "himalayas")."""
        pass


from .himalayas_source import HimalayasSource

__all__ = ["JobSource", "RawPosting", "HimalayasSource"]
