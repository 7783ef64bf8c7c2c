"""
Himalayas.app Job Source

Pages through remote jobs from Himalayas.app's free public API and yields
those matching the owner's keywords, one page at a time.

API: https://himalayas.app/jobs/api
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.common.dedupe import extract_job_id
from src.common.error_handling import SourceUnavailable
from src.common.workflow_types import WorkflowSettings

from . import JobSource, RawPosting

logger = logging.getLogger(__name__)


class HimalayasSource(JobSource):
    """Himalayas.app remote jobs source."""

    API_URL = "https://himalayas.app/jobs/api"
    TIMEOUT = 30  # seconds
    PAGE_SIZE = 20
    MAX_PAGES = 50

    def __init__(self, session: Optional[requests.Session] = None):
        self._session = session or requests.Session()

    def get_source_name(self) -> str:
        return "himalayas"

    def search(self, settings: WorkflowSettings) -> Iterator[RawPosting]:
        """
        Yield matching postings, fetching further pages only on demand.

        Raises:
            SourceUnavailable: When a page cannot be fetched after retries
        """
        keywords = [k.lower() for k in settings.keywords]
        location = (settings.location or "").lower().strip()
        logger.info(
            f"Searching Himalayas: keywords={settings.keywords}, "
            f"location={settings.location}, worldwide_only={settings.worldwide_only}"
        )

        for page in range(self.MAX_PAGES):
            try:
                jobs = self._fetch_page(offset=page * self.PAGE_SIZE)
            except requests.exceptions.RequestException as e:
                logger.error(f"Error fetching Himalayas jobs: {e}")
                raise SourceUnavailable(f"Himalayas API unavailable: {e}") from e

            if not jobs:
                return

            for job_dict in jobs:
                posting = self._convert(job_dict)
                if posting and self._matches(posting, keywords, location, settings.worldwide_only):
                    yield posting

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(requests.exceptions.RequestException),
        reraise=True,
    )
    def _fetch_page(self, offset: int) -> List[Dict[str, Any]]:
        response = self._session.get(
            self.API_URL,
            params={"limit": self.PAGE_SIZE, "offset": offset},
            timeout=self.TIMEOUT,
        )
        response.raise_for_status()
        data = response.json()

        # API returns a list directly or wraps it in an object
        if not isinstance(data, list):
            data = data.get("jobs", data.get("data", []))
        return data or []

    @staticmethod
    def _matches(posting: RawPosting, keywords: List[str], location: str, worldwide_only: bool) -> bool:
        posting_location = (posting.location or "").lower()
        if worldwide_only and "worldwide" not in posting_location and "anywhere" not in posting_location:
            return False
        if location and location not in posting_location and "worldwide" not in posting_location:
            return False
        text = f"{posting.job_title} {posting.job_description_text or ''}".lower()
        return any(kw in text for kw in keywords)

    def _convert(self, job_dict: Dict[str, Any]) -> Optional[RawPosting]:
        title = str(job_dict.get("title", "")).strip()
        company = str(job_dict.get("companyName", "") or job_dict.get("company", "")).strip()
        url = (
            job_dict.get("applicationLink")
            or job_dict.get("applyUrl")
            or job_dict.get("url")
            or ""
        )
        if not url and job_dict.get("slug"):
            url = f"https://himalayas.app/jobs/{job_dict['slug']}"
        url = str(url).strip()

        if not (title and company and url):
            logger.debug(f"Skipping incomplete Himalayas job: {title!r} at {company!r}")
            return None

        source_id = job_dict.get("id") or job_dict.get("guid")
        job_id = f"himalayas_{source_id}" if source_id else extract_job_id(url)

        return RawPosting(
            job_id=job_id,
            job_title=title,
            company_name=company,
            job_url=url,
            job_description_text=str(job_dict.get("description", "")).strip() or None,
            location=self._build_location(job_dict),
            posted_at=self._parse_date(job_dict.get("pubDate") or job_dict.get("publishedAt")),
            structured_data={
                key: job_dict[key]
                for key in ("employmentType", "seniority", "salaryCurrency",
                            "minSalary", "maxSalary", "categories")
                if job_dict.get(key) is not None
            },
        )

    def _build_location(self, job_dict: Dict[str, Any]) -> str:
        parts = []
        restrictions = job_dict.get("locationRestrictions")
        if isinstance(restrictions, list):
            parts.extend(str(r) for r in restrictions)
        elif isinstance(restrictions, str):
            parts.append(restrictions)

        if job_dict.get("location"):
            parts.append(str(job_dict["location"]))

        if job_dict.get("isWorldwide") or job_dict.get("worldwide") or not parts:
            parts.append("Worldwide")

        return ", ".join(filter(None, parts))

    def _parse_date(self, value: Any) -> Optional[datetime]:
        if not value:
            return None
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value, timezone.utc).replace(tzinfo=None)
        try:
            return datetime.fromisoformat(str(value).replace("Z", "+00:00")).replace(tzinfo=None)
        except ValueError:
            return None
