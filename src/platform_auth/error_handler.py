# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/platform_auth/error_handler.py

from typing import Optional


def mask_credential(value: Optional[str], style: str = "short") -> str:
    """
    Mask a token or secret for safe display in logs.

    Args:
        value: The raw token/secret/identifier
        style: 'short' shows the last 6 chars, 'full' shows first 4 and last 4

    Returns:
        Masked string that never exposes the full value
    """
    if not value:
        return "<none>"
    if style == "full":
        if len(value) <= 8:
            return "****"
        return f"{value[:4]}****{value[-4:]}"
    if len(value) <= 6:
        return "..." + "*" * len(value)
    return f"...{value[-6:]}"


class PlatformAuthError(Exception):
    """Base class for all OAuth credential lifecycle errors."""


# ---------------------------------------------------------------------------
# Configuration errors: fatal for the single operation, never retried.
# ---------------------------------------------------------------------------


class UnsupportedProviderError(PlatformAuthError):
    """Provider is unknown or has no authorization/token endpoint configured."""

    def __init__(self, provider: str, message: Optional[str] = None):
        self.provider = provider
        super().__init__(message or f"OAuth not supported for platform: {provider}")


class MissingClientCredentialsError(PlatformAuthError):
    """No client id/secret could be resolved for a provider or credential."""

    def __init__(self, provider: str, message: Optional[str] = None):
        self.provider = provider
        super().__init__(message or f"Client credentials not found for {provider}")


class NoRefreshTokenError(PlatformAuthError):
    """Credential cannot be refreshed because it carries no refresh token."""

    def __init__(self, message: str = "No refresh token available"):
        super().__init__(message)


# ---------------------------------------------------------------------------
# Protocol/state errors: forged or stale authorization callbacks.
# ---------------------------------------------------------------------------


class OAuthStateError(PlatformAuthError):
    """Base class for rejected OAuth state payloads."""


class InvalidStateError(OAuthStateError):
    def __init__(self, message: str = "Invalid OAuth state"):
        super().__init__(message)


class ProviderMismatchError(OAuthStateError):
    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Platform mismatch in OAuth state: state was issued for '{actual}', "
            f"callback is for '{expected}'"
        )


class StateExpiredError(OAuthStateError):
    def __init__(self, age_seconds: float):
        self.age_seconds = age_seconds
        super().__init__(f"OAuth state expired ({int(age_seconds)}s old)")


# ---------------------------------------------------------------------------
# Transient provider errors: recorded, retried by the next cycle.
# ---------------------------------------------------------------------------


class ProviderHTTPError(PlatformAuthError):
    """
    A provider endpoint answered with a non-2xx status, timed out, or was unreachable.

    status_code is None for timeouts and transport failures.
    """

    label = "Provider request failed"

    def __init__(
        self,
        provider: str,
        status_code: Optional[int] = None,
        detail: Optional[str] = None,
        timed_out: bool = False,
    ):
        self.provider = provider
        self.status_code = status_code
        self.detail = detail
        self.timed_out = timed_out
        if status_code is not None:
            message = f"{self.label}: {status_code}"
        elif timed_out:
            message = f"{self.label}: timeout"
        else:
            message = f"{self.label}: connection error"
        if detail:
            message = f"{message} - {detail}"
        super().__init__(message)


class TokenExchangeError(ProviderHTTPError):
    label = "Token exchange failed"


class TokenRefreshError(ProviderHTTPError):
    label = "Token refresh failed"


class AccountInfoFetchError(ProviderHTTPError):
    label = "Failed to fetch account info"


# ---------------------------------------------------------------------------
# Data-shape errors: well-formed responses without usable content.
# ---------------------------------------------------------------------------


class AccountInfoUnsupportedError(PlatformAuthError):
    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"Account info not supported for platform: {provider}")


class NoAdvertiserAccountError(PlatformAuthError):
    def __init__(self, provider: str, message: Optional[str] = None):
        self.provider = provider
        super().__init__(message or f"No usable advertiser account found for {provider}")


# ---------------------------------------------------------------------------
# Persistence errors
# ---------------------------------------------------------------------------


class CredentialNotFoundError(PlatformAuthError):
    def __init__(self, credential_id: str):
        self.credential_id = credential_id
        super().__init__(f"Credential not found: {credential_id}")


class CredentialStoreError(PlatformAuthError):
    """The persistence backend could not load its data or apply a write."""
