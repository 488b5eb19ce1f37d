# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""
FastAPI dependencies for the auth service.

This module centralizes all FastAPI dependency functions including:
- Service objects retrieved from app state
- API key and cron secret verification
- Team resolution from the request
"""

import os

from fastapi import Depends, Header, HTTPException, Request
from fastapi.security import APIKeyHeader

from platform_auth.connection_flow import ConnectionFlow
from platform_auth.credential_store import CredentialStore
from platform_auth.token_refresh_service import TokenRefreshOrchestrator

# Security schemes
api_key_header = APIKeyHeader(name="Authorization", auto_error=False)


def get_orchestrator(request: Request) -> TokenRefreshOrchestrator:
    """Dependency to get the token refresh orchestrator from the app state."""
    return request.app.state.orchestrator


def get_credential_store(request: Request) -> CredentialStore:
    """Dependency to get the credential store from the app state."""
    return request.app.state.credential_store


def get_connection_flow(request: Request) -> ConnectionFlow:
    """Dependency to get the connection flow from the app state."""
    return request.app.state.connection_flow


async def verify_api_key(auth: str = Depends(api_key_header)):
    """
    Dependency to verify the service API key.

    If AUTH_SERVICE_API_KEY is not set, skips verification (open access mode).
    Accepts Bearer token in Authorization header.
    """
    api_key = os.getenv("AUTH_SERVICE_API_KEY")
    if not api_key:
        return auth
    if not auth or auth != f"Bearer {api_key}":
        raise HTTPException(status_code=401, detail="Invalid or missing API Key")
    return auth


async def verify_cron_secret(auth: str = Depends(api_key_header)):
    """
    Dependency for the scheduled trigger.

    Accepts Bearer CRON_SECRET when configured, otherwise falls back to the
    service API key rules.
    """
    cron_secret = os.getenv("CRON_SECRET")
    if cron_secret:
        if auth == f"Bearer {cron_secret}":
            return auth
        if not os.getenv("AUTH_SERVICE_API_KEY"):
            raise HTTPException(status_code=401, detail="Invalid or missing cron secret")
    return await verify_api_key(auth)


async def get_team_id(x_team_id: str = Header(default="", alias="X-Team-Id")) -> str:
    """Team scope for the request, supplied by the upstream session layer."""
    team_id = x_team_id.strip()
    if not team_id:
        raise HTTPException(status_code=400, detail="X-Team-Id header is required")
    return team_id
