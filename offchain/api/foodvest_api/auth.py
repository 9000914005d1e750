"""
Operator authentication for the /admin endpoints.

Payment endpoints are called by the FoodVest backend on behalf of an
already authenticated user and carry no token. Admin endpoints move
money (settlement re-drive, user registration) and require the
X-API-Key header once API_TOKEN is configured.
"""

import secrets
from typing import Optional

import structlog
from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader

from .config import Settings, get_settings

logger = structlog.get_logger()

# Header only; query parameters end up in access logs
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "X-API-Key"},
    )


async def verify_api_token(
    api_key: Optional[str] = Depends(api_key_header),
    settings: Settings = Depends(get_settings),
) -> bool:
    """
    Admit the request if API_TOKEN is unset or matches X-API-Key.

    Raises:
        HTTPException: 401 when the header is missing or wrong.
    """
    if not settings.api_token:
        return True

    if not api_key:
        logger.warning("admin_request_without_token")
        raise _unauthorized("API token required. Provide via X-API-Key header.")

    if not secrets.compare_digest(api_key.encode(), settings.api_token.encode()):
        logger.warning("admin_request_invalid_token")
        raise _unauthorized("Invalid API token")

    return True
