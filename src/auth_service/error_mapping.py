# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""
Centralized error mapping from credential lifecycle errors to FastAPI HTTPExceptions.

Endpoints catch domain errors and raise the result of map_auth_error so the
status code policy lives in one place.
"""

import logging
from typing import Optional

from fastapi import HTTPException

from platform_auth.error_handler import (
    AccountInfoUnsupportedError,
    CredentialNotFoundError,
    CredentialStoreError,
    MissingClientCredentialsError,
    NoAdvertiserAccountError,
    NoRefreshTokenError,
    OAuthStateError,
    ProviderHTTPError,
    UnsupportedProviderError,
)

logger = logging.getLogger(__name__)


def map_auth_error(e: Exception, context: Optional[str] = None) -> HTTPException:
    """
    Map a credential lifecycle exception to an appropriate HTTPException.

    Args:
        e: The raised exception
        context: Optional context string for logging (e.g., endpoint name)

    Returns:
        HTTPException with appropriate status code and detail
    """
    ctx = f" ({context})" if context else ""

    if isinstance(e, OAuthStateError):
        return HTTPException(status_code=400, detail=f"Invalid OAuth callback: {e}")

    if isinstance(e, (UnsupportedProviderError, AccountInfoUnsupportedError)):
        return HTTPException(status_code=400, detail=str(e))

    if isinstance(e, (MissingClientCredentialsError, NoRefreshTokenError)):
        return HTTPException(status_code=400, detail=f"Configuration Error: {e}")

    if isinstance(e, NoAdvertiserAccountError):
        return HTTPException(status_code=422, detail=f"No usable account found: {e}")

    if isinstance(e, CredentialNotFoundError):
        return HTTPException(status_code=404, detail=str(e))

    if isinstance(e, CredentialStoreError):
        logger.error(f"Credential store failure{ctx}: {e}")
        return HTTPException(status_code=503, detail=f"Service Unavailable: {e}")

    if isinstance(e, ProviderHTTPError):
        if e.timed_out:
            return HTTPException(status_code=504, detail=f"Gateway Timeout: {e}")
        return HTTPException(status_code=502, detail=f"Bad Gateway: {e}")

    if isinstance(e, ValueError):
        return HTTPException(status_code=400, detail=f"Invalid Request: {e}")

    # Log unexpected errors
    logger.error(f"Unhandled exception{ctx}: {e}")
    return HTTPException(status_code=500, detail=str(e))
