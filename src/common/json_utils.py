"""
JSON parsing for AI adapter responses.

Model output is often almost-JSON: fenced in markdown, wrapped in prose,
single-quoted or carrying trailing commas. ``parse_llm_json`` peels the
wrapping off and falls back to json-repair before giving up.
"""

import json
import re
from typing import Any, Dict, Optional

from json_repair import repair_json

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


def parse_llm_json(text: str) -> Dict[str, Any]:
    """
    Parse a JSON object out of an LLM response.

    Args:
        text: Raw model output

    Returns:
        Parsed dictionary

    Raises:
        ValueError: If no JSON object can be recovered

    Example:
        >>> parse_llm_json('```json\\n{"score": 80}\\n```')
        {'score': 80}
        >>> parse_llm_json("Sure! {'score': 80,}")
        {'score': 80}
    """
    if not text or not text.strip():
        raise ValueError("Empty input: no JSON content to parse")

    candidate = _FENCE_RE.sub("", text.strip()).strip()
    if not candidate.startswith("{"):
        match = _OBJECT_RE.search(candidate)
        if not match:
            raise ValueError(f"No JSON object found in text: {text[:200]}")
        candidate = match.group(0)

    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError:
        parsed = repair_json(candidate, return_objects=True)

    # Models sometimes wrap the object in a list: [{...}]
    if isinstance(parsed, list) and len(parsed) == 1:
        parsed = parsed[0]

    if not isinstance(parsed, dict) or not parsed:
        raise ValueError(f"Could not recover a JSON object from: {text[:200]}")

    return parsed


def coerce_score(value: Any) -> Optional[int]:
    """
    Normalise a model-provided score to an int in [0, 100].

    Accepts ints, floats and numeric strings like "82" or "82%".
    Returns None when the value is not a finite number.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        value = value.strip().rstrip("%").strip()
        if not value:
            return None
    try:
        score = int(round(float(value)))
    except (TypeError, ValueError, OverflowError):
        return None
    return max(0, min(100, score))
