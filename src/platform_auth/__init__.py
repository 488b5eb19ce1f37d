# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/platform_auth/__init__.py

from .account_resolver import AccountResolver, NormalizedAccount
from .authorization import build_authorization_url
from .client_credentials import ClientCredentials, ClientCredentialsResolver
from .connection_flow import ConnectionFlow
from .credential_store import (
    Credential,
    CredentialStore,
    InMemoryCredentialBackend,
    JsonFileCredentialBackend,
    create_credential_store,
)
from .oauth_state import OAuthState, StateCodec
from .provider_registry import (
    PROVIDER_MAP,
    ProviderConfig,
    get_available_providers,
    get_provider_config,
    is_oauth_supported,
)
from .settings import AuthSettings
from .token_exchange import TokenExchanger, TokenResponse
from .token_refresh_service import (
    RefreshCycleSummary,
    RefreshResult,
    TokenRefreshOrchestrator,
)

__all__ = [
    "AccountResolver",
    "AuthSettings",
    "ClientCredentials",
    "ClientCredentialsResolver",
    "ConnectionFlow",
    "Credential",
    "CredentialStore",
    "InMemoryCredentialBackend",
    "JsonFileCredentialBackend",
    "NormalizedAccount",
    "OAuthState",
    "PROVIDER_MAP",
    "ProviderConfig",
    "RefreshCycleSummary",
    "RefreshResult",
    "StateCodec",
    "TokenExchanger",
    "TokenRefreshOrchestrator",
    "TokenResponse",
    "build_authorization_url",
    "create_credential_store",
    "get_available_providers",
    "get_provider_config",
    "is_oauth_supported",
]
