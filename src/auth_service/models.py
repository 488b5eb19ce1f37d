# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""
Pydantic models for the auth service.

This module contains the request/response models used by the API endpoints.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from platform_auth.credential_store import AppCredential, Credential, CredentialStore


class RefreshRequest(BaseModel):
    """Manual refresh trigger. Omit platform to refresh every provider."""
    platform: Optional[str] = None
    force: bool = False


class RefreshErrorEntry(BaseModel):
    credential_id: str
    error: str


class RefreshResponse(BaseModel):
    success: bool
    successful: int
    failed: int
    errors: List[RefreshErrorEntry] = Field(default_factory=list)
    message: str

    @classmethod
    def from_summary(cls, summary: Dict[str, Any]) -> "RefreshResponse":
        successful = summary["successful"]
        failed = summary["failed"]
        if successful == 0 and failed == 0:
            message = "No credentials needed refresh"
        else:
            message = f"Refreshed {successful} credential(s), {failed} failed"
        return cls(
            success=failed == 0,
            successful=successful,
            failed=failed,
            errors=summary["errors"],
            message=message,
        )


class CredentialSummary(BaseModel):
    """Public view of a credential. Tokens and client secrets are never exposed."""
    id: str
    platform: str
    account_id: str
    account_name: Optional[str] = None
    email: Optional[str] = None
    is_active: bool
    expires_at: Optional[datetime] = None
    last_sync_at: Optional[datetime] = None
    needs_refresh: bool = False
    is_expired: bool = False
    has_error: bool = False
    needs_reconnection: bool = False
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_credential(
        cls, credential: Credential, store: CredentialStore
    ) -> "CredentialSummary":
        return cls(
            id=credential.id,
            platform=credential.provider,
            account_id=credential.account_id,
            account_name=credential.account_name,
            email=credential.email,
            is_active=credential.is_active,
            expires_at=credential.expires_at,
            last_sync_at=credential.last_sync_at,
            needs_refresh=store.needs_refresh(credential),
            is_expired=store.is_expired(credential),
            has_error=credential.error_message is not None,
            needs_reconnection=credential.needs_reconnection,
            error_message=credential.error_message,
            created_at=credential.created_at,
            updated_at=credential.updated_at,
        )


class CredentialListResponse(BaseModel):
    credentials: List[CredentialSummary]


class RefreshStatusResponse(BaseModel):
    total: int
    needs_refresh: int
    with_errors: int
    service: Dict[str, Any]
    credentials: List[CredentialSummary]


class AuthorizationUrlResponse(BaseModel):
    platform: str
    authorization_url: str


class ConnectionResponse(BaseModel):
    success: bool = True
    credential: CredentialSummary


class DisconnectResponse(BaseModel):
    success: bool = True
    credential_id: str
    deleted: bool


class AppCredentialRequest(BaseModel):
    """A team's own OAuth application for one platform."""
    platform: str
    client_id: str
    client_secret: str
    redirect_uri: Optional[str] = None


class AppCredentialResponse(BaseModel):
    """Registered application. The client secret is never echoed back."""
    success: bool = True
    platform: str
    client_id: str
    redirect_uri: Optional[str] = None
    updated_at: datetime

    @classmethod
    def from_app(cls, app: AppCredential) -> "AppCredentialResponse":
        return cls(
            platform=app.provider,
            client_id=app.client_id,
            redirect_uri=app.redirect_uri,
            updated_at=app.updated_at,
        )
