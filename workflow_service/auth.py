"""
Authentication Module

Shared-secret bearer auth for the workflow endpoints, plus resolution of
the owner a request acts for.
"""

import logging
import secrets
from typing import Optional

from fastapi import Header, HTTPException, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from .config import settings


logger = logging.getLogger(__name__)
security = HTTPBearer(auto_error=False)


def get_runner_secret() -> str:
    """Get the API secret from validated config."""
    if not settings.runner_api_secret:
        raise ValueError(
            "RUNNER_API_SECRET environment variable is required for authentication"
        )
    return settings.runner_api_secret


async def verify_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security)
) -> Optional[HTTPAuthorizationCredentials]:
    """
    Verify the shared secret bearer token.

    Without a configured secret outside production, requests pass through.

    Raises:
        HTTPException: 401 if the token is missing or wrong,
            500 if auth is required but no secret is configured
    """
    if not settings.auth_required:
        return credentials

    try:
        expected_secret = get_runner_secret()
    except ValueError:
        raise HTTPException(status_code=500, detail="Server authentication not configured")

    if credentials is None or not secrets.compare_digest(
        credentials.credentials.encode(), expected_secret.encode()
    ):
        logger.warning("Rejected request with invalid or missing token")
        raise HTTPException(status_code=401, detail="Invalid authentication token")

    return credentials


async def get_owner_id(x_owner_id: str = Header(..., alias="X-Owner-Id")) -> str:
    """Owner scope for the request, taken from the X-Owner-Id header."""
    owner_id = x_owner_id.strip()
    if not owner_id:
        raise HTTPException(status_code=400, detail="X-Owner-Id header is empty")
    return owner_id
