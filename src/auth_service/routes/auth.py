# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""
Credential lifecycle API routes.

This module contains the team-scoped endpoints:
- Manual refresh trigger and refresh status (/api/auth/refresh)
- Credential listing and team app registration (/api/auth/credentials)
- OAuth connect and callback (/api/auth/oauth/{platform})
- Disconnect (/api/auth/disconnect/{credential_id})
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from auth_service.dependencies import (
    get_connection_flow,
    get_credential_store,
    get_orchestrator,
    get_team_id,
    verify_api_key,
)
from auth_service.error_mapping import map_auth_error
from auth_service.models import (
    AppCredentialRequest,
    AppCredentialResponse,
    AuthorizationUrlResponse,
    ConnectionResponse,
    CredentialListResponse,
    CredentialSummary,
    DisconnectResponse,
    RefreshRequest,
    RefreshResponse,
    RefreshStatusResponse,
)
from platform_auth.connection_flow import ConnectionFlow
from platform_auth.credential_store import CredentialStore
from platform_auth.provider_registry import get_provider_config
from platform_auth.token_refresh_service import TokenRefreshOrchestrator

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/auth")


@router.post("/refresh", response_model=RefreshResponse)
async def trigger_refresh(
    body: Optional[RefreshRequest] = None,
    team_id: str = Depends(get_team_id),
    orchestrator: TokenRefreshOrchestrator = Depends(get_orchestrator),
    _=Depends(verify_api_key),
):
    """
    Refresh the team's credentials that are close to expiry.

    Request body:
        {"platform": "google", "force": false}
    """
    body = body or RefreshRequest()
    try:
        platform = get_provider_config(body.platform).name if body.platform else None
        summary = await orchestrator.refresh_platform_credentials(
            team_id, platform, force=body.force
        )
    except Exception as e:
        raise map_auth_error(e, "refresh")
    return RefreshResponse.from_summary(summary.to_dict())


@router.get("/refresh", response_model=RefreshStatusResponse)
async def refresh_status(
    team_id: str = Depends(get_team_id),
    store: CredentialStore = Depends(get_credential_store),
    orchestrator: TokenRefreshOrchestrator = Depends(get_orchestrator),
    _=Depends(verify_api_key),
):
    """Returns refresh-need and error state for the team's active credentials."""
    credentials = [
        CredentialSummary.from_credential(c, store) for c in await store.list_active(team_id)
    ]
    return RefreshStatusResponse(
        total=len(credentials),
        needs_refresh=sum(1 for c in credentials if c.needs_refresh),
        with_errors=sum(1 for c in credentials if c.has_error),
        service=orchestrator.get_status(),
        credentials=credentials,
    )


@router.get("/credentials", response_model=CredentialListResponse)
async def list_credentials(
    platform: Optional[str] = None,
    team_id: str = Depends(get_team_id),
    store: CredentialStore = Depends(get_credential_store),
    _=Depends(verify_api_key),
):
    try:
        provider = get_provider_config(platform).name if platform else None
        credentials = await store.list_active(team_id, provider)
    except Exception as e:
        raise map_auth_error(e, "list_credentials")
    return CredentialListResponse(
        credentials=[CredentialSummary.from_credential(c, store) for c in credentials]
    )


@router.post("/credentials", response_model=AppCredentialResponse)
async def register_app_credentials(
    body: AppCredentialRequest,
    team_id: str = Depends(get_team_id),
    store: CredentialStore = Depends(get_credential_store),
    _=Depends(verify_api_key),
):
    """
    Register the team's own OAuth application for a platform.

    Request body:
        {"platform": "kakao", "client_id": "...", "client_secret": "...",
         "redirect_uri": "https://app/cb"}
    """
    try:
        app = await store.save_app_credentials(
            team_id, body.platform, body.client_id, body.client_secret, body.redirect_uri
        )
    except Exception as e:
        raise map_auth_error(e, "register_app_credentials")
    return AppCredentialResponse.from_app(app)


@router.get("/oauth/{platform}", response_model=AuthorizationUrlResponse)
async def start_oauth(
    platform: str,
    request: Request,
    redirect_uri: Optional[str] = None,
    team_id: str = Depends(get_team_id),
    flow: ConnectionFlow = Depends(get_connection_flow),
    _=Depends(verify_api_key),
):
    """Returns the provider authorization URL for connecting a new account."""
    try:
        config = get_provider_config(platform)
        url = await flow.start_connection(
            config.name,
            team_id,
            redirect_uri,
            default_redirect_uri=str(request.url_for("oauth_callback", platform=config.name)),
        )
    except Exception as e:
        raise map_auth_error(e, "start_oauth")
    return AuthorizationUrlResponse(platform=config.name, authorization_url=url)


@router.get(
    "/oauth/{platform}/callback",
    name="oauth_callback",
    response_model=ConnectionResponse,
)
async def oauth_callback(
    platform: str,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    error_description: Optional[str] = None,
    flow: ConnectionFlow = Depends(get_connection_flow),
    store: CredentialStore = Depends(get_credential_store),
):
    """
    Provider redirect target. Authenticated by the signed state, not the API
    key, since the browser arrives here straight from the provider.
    """
    if error:
        logger.info(f"OAuth authorization for '{platform}' was not granted: {error}")
        raise HTTPException(
            status_code=400,
            detail=f"Authorization denied: {error_description or error}",
        )
    if not code or not state:
        raise HTTPException(status_code=400, detail="Missing 'code' or 'state' parameter")

    try:
        credential = await flow.complete_connection(platform, code, state)
    except Exception as e:
        raise map_auth_error(e, "oauth_callback")
    return ConnectionResponse(credential=CredentialSummary.from_credential(credential, store))


@router.delete("/disconnect/{credential_id}", response_model=DisconnectResponse)
async def disconnect_credential(
    credential_id: str,
    hard: bool = False,
    team_id: str = Depends(get_team_id),
    flow: ConnectionFlow = Depends(get_connection_flow),
    orchestrator: TokenRefreshOrchestrator = Depends(get_orchestrator),
    _=Depends(verify_api_key),
):
    try:
        await flow.disconnect(team_id, credential_id, hard_delete=hard)
    except Exception as e:
        raise map_auth_error(e, "disconnect")
    await orchestrator.release_credential(credential_id)
    return DisconnectResponse(credential_id=credential_id, deleted=hard)
