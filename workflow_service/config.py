"""
Settings for the workflow service, read from the environment at import time.

Field names map to upper-case environment variables (AI_TIMEOUT_SECONDS,
SCHEDULER_HOUR, ...). Bad values stop the process before it serves traffic.
"""

import logging
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

KNOWN_ENVIRONMENTS = ("development", "staging", "production", "test")
WEAK_SECRETS = {"secret", "password", "changeme", "0123456789abcdef"}


class ServiceSettings(BaseSettings):
    # Bearer secret; when unset outside production the API is open
    runner_api_secret: Optional[str] = Field(default=None, min_length=16)
    environment: str = "development"
    cors_origins: str = ""

    mongodb_uri: str = "mongodb://localhost:27017"
    mongo_db_name: str = "jobs"

    ai_timeout_seconds: float = Field(default=120, gt=0, le=900)
    stuck_entry_timeout_seconds: float = Field(default=600, gt=0)
    sweep_interval_seconds: float = Field(default=300, ge=10)

    default_max_jobs: int = Field(default=50, ge=1, le=1000)
    relevance_threshold: int = Field(default=50, ge=0, le=100)
    should_apply_threshold: int = Field(default=70, ge=0, le=100)
    min_description_length: int = Field(default=50, ge=0)

    scheduler_enabled: bool = False
    scheduler_hour: int = Field(default=9, ge=0, le=23)

    @field_validator("environment")
    @classmethod
    def normalise_environment(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in KNOWN_ENVIRONMENTS:
            raise ValueError(f"environment must be one of {', '.join(KNOWN_ENVIRONMENTS)}, got {v!r}")
        return v

    @field_validator("runner_api_secret")
    @classmethod
    def reject_weak_secret(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and (v.lower() in WEAK_SECRETS or len(set(v)) < 4):
            raise ValueError("RUNNER_API_SECRET is too weak, use a random string")
        return v

    @field_validator("mongodb_uri")
    @classmethod
    def require_mongo_scheme(cls, v: str) -> str:
        if not v.startswith(("mongodb://", "mongodb+srv://")):
            raise ValueError(f"MONGODB_URI must start with mongodb:// or mongodb+srv://, got {v!r}")
        return v

    @model_validator(mode="after")
    def check_timeouts(self) -> "ServiceSettings":
        # A live AI call must never look stuck to the sweep
        if self.stuck_entry_timeout_seconds <= self.ai_timeout_seconds:
            raise ValueError(
                f"stuck_entry_timeout_seconds ({self.stuck_entry_timeout_seconds}) "
                f"must exceed ai_timeout_seconds ({self.ai_timeout_seconds})"
            )
        return self

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def auth_required(self) -> bool:
        return self.is_production or self.runner_api_secret is not None

    def deployment_warnings(self) -> List[str]:
        """Settings that load fine but look wrong for where we are running."""
        warnings = []
        if self.should_apply_threshold < self.relevance_threshold:
            warnings.append("should_apply_threshold is below relevance_threshold")
        if self.is_production:
            if not self.cors_origins:
                warnings.append("CORS_ORIGINS is empty in production")
            if "localhost" in self.mongodb_uri:
                warnings.append("MONGODB_URI points at localhost in production")
        return warnings

    class Config:
        env_prefix = ""
        case_sensitive = False


@lru_cache()
def get_settings() -> ServiceSettings:
    return ServiceSettings()


def validate_config_on_startup() -> None:
    """
    Load settings and refuse to start on a broken configuration.

    Raises:
        ValueError: if the environment does not produce valid settings, or
            production runs without RUNNER_API_SECRET
    """
    try:
        current = get_settings()
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {e}") from e

    if current.is_production and not current.runner_api_secret:
        raise ValueError("RUNNER_API_SECRET is required in production")

    for warning in current.deployment_warnings():
        logger.warning(f"Config: {warning}")

    logger.info(
        f"Config: environment={current.environment} auth_required={current.auth_required} "
        f"ai_timeout={current.ai_timeout_seconds}s stuck_after={current.stuck_entry_timeout_seconds}s "
        f"scheduler={'on at %02d:00' % current.scheduler_hour if current.scheduler_enabled else 'off'}"
    )


settings = get_settings()
