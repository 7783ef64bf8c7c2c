"""
Engine-level configuration read from the environment (and a local .env).

Service concerns such as auth, CORS and timeouts live in
workflow_service.config; this module holds what the engine components need
on their own: LLM credentials, model names, and fallbacks for owners that
have not stored settings or a profile.
"""

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


class Config:
    MONGODB_URI: str = os.getenv("MONGODB_URI", "")
    MONGO_DB_NAME: str = os.getenv("MONGO_DB_NAME", "jobs")

    OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
    OPENROUTER_API_KEY: str = os.getenv("OPENROUTER_API_KEY", "")
    USE_OPENROUTER: bool = _flag("USE_OPENROUTER", "true")

    # Extraction and scoring use the cheap model, materials the strong one
    AUTO_JOB_MODEL: str = os.getenv("AUTO_JOB_MODEL", "gpt-4o-mini")
    AUTO_JOB_GENERATION_MODEL: str = os.getenv("AUTO_JOB_GENERATION_MODEL", "gpt-4o")
    ANALYTICAL_TEMPERATURE: float = 0.3
    CREATIVE_TEMPERATURE: float = 0.7

    # Used when the owner has no profile document
    CANDIDATE_PROFILE_PATH: str = os.getenv("CANDIDATE_PROFILE_PATH", "./master-cv.md")

    # Comma-separated; used when the owner has no stored settings
    HIMALAYAS_KEYWORDS: str = os.getenv("HIMALAYAS_KEYWORDS", "")

    @classmethod
    def _routes_via_openrouter(cls) -> bool:
        return cls.USE_OPENROUTER and bool(cls.OPENROUTER_API_KEY)

    @classmethod
    def get_llm_api_key(cls) -> str:
        return cls.OPENROUTER_API_KEY if cls._routes_via_openrouter() else cls.OPENAI_API_KEY

    @classmethod
    def get_llm_base_url(cls) -> Optional[str]:
        """OpenRouter's OpenAI-compatible endpoint, or None for api.openai.com."""
        return OPENROUTER_BASE_URL if cls._routes_via_openrouter() else None

    @classmethod
    def load_default_profile(cls) -> Optional[str]:
        path = Path(cls.CANDIDATE_PROFILE_PATH)
        if not path.is_file():
            return None
        return path.read_text(encoding="utf-8")
