"""
Posting identity for deduplication.

The dedup key of an AutoJobRecord is the external posting id. Sources
usually supply it; when they do not, it is derived from the posting URL.

Usage:
    from src.common.dedupe import extract_job_id

    extract_job_id("https://www.linkedin.com/jobs/view/3847291058/")
    # '3847291058'
"""

import hashlib
import re
from typing import Optional
from urllib.parse import parse_qs, urlparse


def normalize_job_id(job_id: Optional[str]) -> str:
    """
    Normalize a source-supplied posting id.

    Strips surrounding whitespace; ids are otherwise case-sensitive
    (Indeed job keys are hex, Himalayas ids are slugs).
    """
    return (job_id or "").strip()


def extract_job_id(job_url: str) -> str:
    """
    Extract a stable posting id from a job board URL.

    Priority:
    1. LinkedIn path id (``/jobs/view/<digits>``)
    2. ``currentJobId`` query parameter
    3. Indeed ``jk`` / ``vjk`` query parameter
    4. Any 10+ digit path segment
    5. Stable hash of the full URL

    Args:
        job_url: Posting URL

    Returns:
        Posting id string (never empty for a non-empty URL)

    Examples:
        >>> extract_job_id("https://linkedin.com/jobs/view/3847291058")
        '3847291058'
        >>> extract_job_id("https://indeed.com/viewjob?jk=abc123def4567890")
        'abc123def4567890'
    """
    if not job_url:
        raise ValueError("Cannot derive a job id from an empty URL")

    parsed = urlparse(job_url.strip())
    query = parse_qs(parsed.query)

    path_match = re.search(r"/view/(\d+)", parsed.path)
    if path_match:
        return path_match.group(1)

    for param in ("currentJobId", "jk", "vjk"):
        values = query.get(param)
        if values and values[0]:
            return values[0]

    numeric_match = re.search(r"/(\d{10,})", parsed.path)
    if numeric_match:
        return numeric_match.group(1)

    return "url_" + hashlib.sha1(job_url.strip().encode("utf-8")).hexdigest()[:24]
