"""
Scripted job source and AI adapter for workflow tests.
"""

import threading
import time
from typing import Callable, Dict, Iterator, List, Optional, Set

from src.common.error_handling import AdapterError, SourceUnavailable
from src.common.workflow_types import AutoJobRecord, WorkflowSettings
from src.services.ai_adapter import AIAdapter, GeneratedMaterials, RecommendationResult
from src.services.job_sources import JobSource, RawPosting

OWNER_ID = "owner-1"
PROFILE = "Senior Python engineer. 8 years building APIs and data pipelines on AWS."

LONG_DESCRIPTION = (
    "We are hiring a backend engineer to build Python services on AWS, "
    "own our data pipelines and mentor other engineers."
)


def make_posting(job_id: str, description: str = LONG_DESCRIPTION, **fields) -> RawPosting:
    return RawPosting(
        job_id=job_id,
        job_title=fields.get("job_title", f"Engineer {job_id}"),
        company_name=fields.get("company_name", "Acme"),
        job_url=fields.get("job_url", f"https://example.com/jobs/{job_id}"),
        job_description_text=description,
        location=fields.get("location", "Remote"),
    )


class FakeJobSource(JobSource):
    """Yields the given postings lazily, optionally failing."""

    def __init__(
        self,
        postings: List[RawPosting],
        fail_on_search: bool = False,
        fail_after: Optional[int] = None,
    ):
        self.postings = postings
        self.fail_on_search = fail_on_search
        self.fail_after = fail_after
        self.pulled = 0
        self.searched_with: List[WorkflowSettings] = []

    def get_source_name(self) -> str:
        return "fake"

    def search(self, settings: WorkflowSettings) -> Iterator[RawPosting]:
        self.searched_with.append(settings)
        if self.fail_on_search:
            raise SourceUnavailable("Job board is down")
        return self._iterate()

    def _iterate(self) -> Iterator[RawPosting]:
        for index, posting in enumerate(self.postings):
            if self.fail_after is not None and index >= self.fail_after:
                raise ConnectionError("connection reset by peer")
            self.pulled += 1
            yield posting


class ScriptedAIAdapter(AIAdapter):
    """
    Deterministic AI adapter.

    Scores come from ``scores`` (default 80). Job ids in fail_recommend and
    fail_generate raise AdapterError, with ``recommend_error`` as the message
    when given; job ids in crash_generate raise RuntimeError. Extract fails
    when the text contains any marker in fail_extract. ``on_recommend`` runs
    after each recommendation.
    """

    def __init__(
        self,
        scores: Optional[Dict[str, int]] = None,
        default_score: int = 80,
        fail_extract: Optional[Set[str]] = None,
        fail_recommend: Optional[Set[str]] = None,
        fail_generate: Optional[Set[str]] = None,
        crash_generate: Optional[Set[str]] = None,
        recommend_error: Optional[str] = None,
        recommend_delay: float = 0.0,
        on_recommend: Optional[Callable[[int], None]] = None,
    ):
        self.scores = scores or {}
        self.default_score = default_score
        self.fail_extract = fail_extract or set()
        self.fail_recommend = fail_recommend or set()
        self.fail_generate = fail_generate or set()
        self.crash_generate = crash_generate or set()
        self.recommend_error = recommend_error
        self.recommend_delay = recommend_delay
        self.on_recommend = on_recommend
        self.extract_calls: List[str] = []
        self.recommend_calls: List[str] = []
        self.generate_calls: List[str] = []
        self._lock = threading.Lock()

    def extract(self, text: str) -> Dict:
        self.extract_calls.append(text)
        for marker in self.fail_extract:
            if marker in text:
                raise AdapterError(f"Malformed AI response for {marker}")
        return {"skills": ["python", "aws"], "salary": None, "years_experience": 5}

    def recommend(self, record: AutoJobRecord, profile: str) -> RecommendationResult:
        with self._lock:
            self.recommend_calls.append(record.job_id)
            count = len(self.recommend_calls)
        if self.recommend_delay:
            time.sleep(self.recommend_delay)
        if record.job_id in self.fail_recommend:
            if self.recommend_error is not None:
                raise AdapterError(self.recommend_error)
            raise AdapterError(f"AI provider error for {record.job_id}")
        score = self.scores.get(record.job_id, self.default_score)
        result = RecommendationResult(
            score=score, should_apply=score >= 70, reason=f"Scored {score}"
        )
        if self.on_recommend:
            self.on_recommend(count)
        return result

    def generate(self, record: AutoJobRecord, profile: str) -> GeneratedMaterials:
        self.generate_calls.append(record.job_id)
        if record.job_id in self.fail_generate:
            raise AdapterError("Generation failed")
        if record.job_id in self.crash_generate:
            raise RuntimeError("unexpected response shape")
        return GeneratedMaterials(
            cover_letter_text=f"Dear {record.company_name},",
            customized_resume_text=f"Resume for {record.job_title}",
        )
