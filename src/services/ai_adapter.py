"""
AI Extraction / Recommendation Adapter

The workflow talks to the model through ``AIAdapter``:

- extract(text) -> structured fields (skills, salary, experience, location)
- recommend(record, profile) -> RecommendationResult
- generate(record, profile) -> GeneratedMaterials

Every method may raise AdapterError. Calls are synchronous; the controller
runs them in a worker thread under a bounded timeout.

LLMAIAdapter is the production implementation over ChatOpenAI, routed
through OpenRouter when OPENROUTER_API_KEY is set.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI
from tenacity import retry, retry_if_not_exception_type, stop_after_attempt, wait_exponential

from src.common.config import Config
from src.common.error_handling import AdapterError
from src.common.json_utils import coerce_score, parse_llm_json
from src.common.logger import get_logger
from src.common.workflow_types import AutoJobRecord

DEFAULT_RELEVANCE_THRESHOLD = 50
DEFAULT_SHOULD_APPLY_THRESHOLD = 70


@dataclass
class RecommendationResult:
    score: int
    should_apply: bool
    reason: str


@dataclass
class GeneratedMaterials:
    cover_letter_text: str
    customized_resume_text: str


def describe_match(
    score: int,
    matched_skills: int,
    missing_skills: int,
    should_apply_threshold: int = DEFAULT_SHOULD_APPLY_THRESHOLD,
    moderate_threshold: int = DEFAULT_RELEVANCE_THRESHOLD,
) -> str:
    """Human-readable verdict for a match score."""
    if score >= should_apply_threshold:
        return (
            f"Strong match ({score}% compatibility). Matched {matched_skills} key skills. "
            "Good alignment with job requirements."
        )
    if score >= moderate_threshold:
        return (
            f"Moderate match ({score}% compatibility). {missing_skills} important skills missing. "
            "Consider applying after addressing key gaps."
        )
    return (
        f"Weak match ({score}% compatibility). Missing {missing_skills} critical skills. "
        "Significant gaps in requirements. Not recommended."
    )


class AIAdapter(ABC):
    """Abstract AI collaborator used by the Extract, Recommend and Generate steps."""

    @abstractmethod
    def extract(self, text: str) -> Dict[str, Any]:
        pass

    @abstractmethod
    def recommend(self, record: AutoJobRecord, profile: str) -> RecommendationResult:
        pass

    @abstractmethod
    def generate(self, record: AutoJobRecord, profile: str) -> GeneratedMaterials:
        pass


EXTRACT_SYSTEM = """You extract structured facts from job descriptions.

Return ONLY a JSON object with these keys:
{
  "skills": ["skill", ...],
  "salary": {"min": number|null, "max": number|null, "currency": "USD"|null},
  "years_experience": number|null,
  "location": string|null,
  "remote_option": "remote"|"hybrid"|"onsite"|null
}
Use null when the description does not say. Do not invent values."""

RECOMMEND_SYSTEM = """You are a senior technical recruiter judging candidate-job fit.

Compare the candidate profile against the job and return ONLY a JSON object:
{
  "score": 0-100,
  "matched_skills": ["skill", ...],
  "missing_skills": ["skill", ...]
}

SCORING GUIDELINES:
- 80-100: core skills match, right level, relevant domain
- 60-79: most skills match, some learnable gaps
- 40-59: partial match, significant gaps
- 0-39: major misalignment"""

GENERATE_SYSTEM = """You write tailored job application materials.

Use only facts present in the candidate profile. Return ONLY a JSON object:
{
  "cover_letter": "3-4 short paragraphs, plain text",
  "resume": "the candidate's resume rewritten to emphasise what this job asks for, plain text"
}"""


class LLMAIAdapter(AIAdapter):
    """ChatOpenAI-backed adapter with JSON responses."""

    def __init__(
        self,
        model: Optional[str] = None,
        generation_model: Optional[str] = None,
        should_apply_threshold: int = DEFAULT_SHOULD_APPLY_THRESHOLD,
        relevance_threshold: int = DEFAULT_RELEVANCE_THRESHOLD,
        timeout: Optional[float] = None,
    ):
        self._logger = get_logger(__name__)
        self.should_apply_threshold = should_apply_threshold
        self.relevance_threshold = relevance_threshold

        model_name = model or Config.AUTO_JOB_MODEL
        self.llm = ChatOpenAI(
            model=model_name,
            temperature=Config.ANALYTICAL_TEMPERATURE,
            api_key=Config.get_llm_api_key(),
            base_url=Config.get_llm_base_url(),
            timeout=timeout,
        )
        self.generation_llm = ChatOpenAI(
            model=generation_model or Config.AUTO_JOB_GENERATION_MODEL,
            temperature=Config.CREATIVE_TEMPERATURE,
            api_key=Config.get_llm_api_key(),
            base_url=Config.get_llm_base_url(),
            timeout=timeout,
        )
        self._logger.info(f"LLMAIAdapter initialized with model: {model_name}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_not_exception_type(AdapterError),
        reraise=True,
    )
    def _invoke_json(self, llm: ChatOpenAI, system_prompt: str, user_prompt: str) -> Dict[str, Any]:
        response = llm.invoke([
            SystemMessage(content=system_prompt),
            HumanMessage(content=user_prompt),
        ])
        content = response.content if isinstance(response.content, str) else str(response.content)
        try:
            return parse_llm_json(content)
        except ValueError as e:
            raise AdapterError(f"Malformed AI response: {e}") from e

    def _call(self, llm: ChatOpenAI, system_prompt: str, user_prompt: str) -> Dict[str, Any]:
        try:
            return self._invoke_json(llm, system_prompt, user_prompt)
        except AdapterError:
            raise
        except Exception as e:
            raise AdapterError(f"AI call failed: {e}") from e

    def extract(self, text: str) -> Dict[str, Any]:
        data = self._call(self.llm, EXTRACT_SYSTEM, f"JOB DESCRIPTION:\n{text[:8000]}")
        skills = data.get("skills") or []
        if not isinstance(skills, list):
            raise AdapterError("Malformed AI response: 'skills' is not a list")
        return {
            "skills": [str(s) for s in skills],
            "salary": data.get("salary") if isinstance(data.get("salary"), dict) else None,
            "years_experience": data.get("years_experience"),
            "location": data.get("location"),
            "remote_option": data.get("remote_option"),
        }

    def recommend(self, record: AutoJobRecord, profile: str) -> RecommendationResult:
        skills = ", ".join((record.extracted_data or {}).get("skills", [])[:30])
        user_prompt = f"""=== JOB ===
Title: {record.job_title}
Company: {record.company_name}
Location: {record.location or 'Not specified'}
Required skills: {skills or 'Not extracted'}

Description:
{(record.job_description_text or '')[:6000]}

=== CANDIDATE PROFILE ===
{profile[:6000]}"""

        data = self._call(self.llm, RECOMMEND_SYSTEM, user_prompt)
        score = coerce_score(data.get("score"))
        if score is None:
            raise AdapterError(f"Malformed AI response: invalid score {data.get('score')!r}")

        matched: List[Any] = data.get("matched_skills") or []
        missing: List[Any] = data.get("missing_skills") or []
        return RecommendationResult(
            score=score,
            should_apply=score >= self.should_apply_threshold,
            reason=describe_match(
                score,
                len(matched),
                len(missing),
                self.should_apply_threshold,
                self.relevance_threshold,
            ),
        )

    def generate(self, record: AutoJobRecord, profile: str) -> GeneratedMaterials:
        user_prompt = f"""Job: {record.job_title} at {record.company_name}

{(record.job_description_text or '')[:6000]}

=== CANDIDATE PROFILE ===
{profile[:8000]}"""

        data = self._call(self.generation_llm, GENERATE_SYSTEM, user_prompt)
        cover_letter = str(data.get("cover_letter") or "").strip()
        resume = str(data.get("resume") or "").strip()
        if not cover_letter or not resume:
            raise AdapterError("Malformed AI response: missing cover letter or resume")
        return GeneratedMaterials(cover_letter_text=cover_letter, customized_resume_text=resume)
