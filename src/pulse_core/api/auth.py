"""Admin-key dependency for the Pulse metrics API.

Dashboard reads are public. Collection triggers and the run log require the
service key configured as MetricsConfig.api_key (PULSE_API_KEY).
"""
import logging
import secrets
from typing import Annotated

from fastapi import HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader


logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-PULSE-API-KEY"

api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)


async def require_api_key(
    request: Request,
    api_key: Annotated[str | None, Security(api_key_header)] = None,
) -> str:
    """Check the request's admin key against the app configuration.

    Raises:
        HTTPException: 500 if no admin key is configured, 401 if the header
            is missing or wrong
    """
    expected_key = request.app.state.config.api_key

    if not expected_key:
        logger.error("Admin endpoint called but PULSE_API_KEY is not configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Admin API key not configured",
        )

    if not api_key or not secrets.compare_digest(api_key.encode(), expected_key.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "API-Key"},
        )

    return api_key
