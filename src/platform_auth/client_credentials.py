# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/platform_auth/client_credentials.py

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

from .credential_store import Credential, CredentialStore
from .error_handler import MissingClientCredentialsError
from .provider_registry import normalize_provider
from .settings import AuthSettings

lib_logger = logging.getLogger("platform_auth")


@dataclass(frozen=True)
class ClientCredentials:
    client_id: str
    client_secret: str
    source: str
    redirect_uri: Optional[str] = None


class SharedAppCredentialStrategy:
    """Deployment-wide application credentials configured through the environment."""

    name = "environment"

    def __init__(self, settings: AuthSettings):
        self._shared: Dict[str, Tuple[Optional[str], Optional[str]]] = {
            "google": (settings.google_client_id, settings.google_client_secret),
        }

    async def for_team(self, team_id: str, provider: str) -> Optional[ClientCredentials]:
        client_id, client_secret = self._shared.get(normalize_provider(provider), (None, None))
        if client_id and client_secret:
            return ClientCredentials(client_id, client_secret, self.name)
        return None

    async def resolve(self, credential: Credential) -> Optional[ClientCredentials]:
        return await self.for_team(credential.team_id, credential.provider)


class StoredCredentialStrategy:
    """Client id/secret saved alongside the credential at connect time."""

    name = "stored"

    async def for_team(self, team_id: str, provider: str) -> Optional[ClientCredentials]:
        return None

    async def resolve(self, credential: Credential) -> Optional[ClientCredentials]:
        if credential.client_id and credential.client_secret:
            return ClientCredentials(credential.client_id, credential.client_secret, self.name)
        return None


class TeamAppCredentialStrategy:
    """The OAuth application a team registered for a provider."""

    name = "team"

    def __init__(self, store: CredentialStore):
        self.store = store

    async def for_team(self, team_id: str, provider: str) -> Optional[ClientCredentials]:
        app = await self.store.get_app_credentials(team_id, provider)
        if app is None:
            return None
        return ClientCredentials(app.client_id, app.client_secret, self.name, app.redirect_uri)

    async def resolve(self, credential: Credential) -> Optional[ClientCredentials]:
        return await self.for_team(credential.team_id, credential.provider)


class ClientCredentialsResolver:
    """
    Resolves the application client id/secret for a provider or credential by
    trying an ordered list of strategies. The first strategy that answers wins.
    """

    def __init__(self, strategies: Sequence = ()):
        self.strategies = list(strategies)

    @classmethod
    def from_settings(
        cls, settings: AuthSettings, store: Optional[CredentialStore] = None
    ) -> "ClientCredentialsResolver":
        strategies = [SharedAppCredentialStrategy(settings), StoredCredentialStrategy()]
        if store is not None:
            strategies.append(TeamAppCredentialStrategy(store))
        return cls(strategies)

    async def resolve(self, credential: Credential) -> ClientCredentials:
        """Client credentials for refreshing an existing credential."""
        for strategy in self.strategies:
            resolved = await strategy.resolve(credential)
            if resolved is not None:
                lib_logger.debug(
                    f"Client credentials for credential {credential.id} resolved from {resolved.source}"
                )
                return resolved
        raise MissingClientCredentialsError(credential.provider)

    async def resolve_for_team(self, team_id: str, provider: str) -> ClientCredentials:
        """Client credentials for starting or completing a new connection."""
        provider_key = normalize_provider(provider)
        for strategy in self.strategies:
            resolved = await strategy.for_team(team_id, provider_key)
            if resolved is not None:
                return resolved
        raise MissingClientCredentialsError(provider_key)
