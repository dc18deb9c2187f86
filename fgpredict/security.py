"""Security middleware: rate limiting and API key authentication."""

import logging
from typing import Optional

from fastapi import HTTPException, Security
from fastapi.security import APIKeyHeader
from slowapi import Limiter
from slowapi.util import get_remote_address

from fgpredict.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

IS_PRODUCTION = settings.ENVIRONMENT == "production"

# Rate limiter using client IP
limiter = Limiter(key_func=get_remote_address)

# API Key header for batch and write endpoints
api_key_header = APIKeyHeader(name=settings.API_KEY_HEADER, auto_error=False)


async def verify_api_key(
    api_key: Optional[str] = Security(api_key_header),
) -> bool:
    """
    Verify API key for protected endpoints.

    SECURITY: In production, API_KEY must be configured. Empty API_KEY
    blocks all protected requests (fail-closed). In development, empty API_KEY
    allows all requests for convenience.
    """
    current = get_settings()
    if not current.API_KEY:
        if IS_PRODUCTION:
            logger.error("API_KEY not configured in production - blocking batch access")
            raise HTTPException(
                status_code=503,
                detail="Service misconfigured. Batch access disabled.",
            )
        return True

    if not api_key:
        raise HTTPException(
            status_code=401,
            detail=f"Missing API key. Provide it via {current.API_KEY_HEADER} header.",
        )

    if api_key != current.API_KEY:
        logger.warning("Invalid API key attempt")
        raise HTTPException(status_code=403, detail="Invalid API key")

    return True
