# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/platform_auth/connection_flow.py

import logging
from typing import Optional

from .account_resolver import AccountResolver
from .authorization import build_authorization_url
from .client_credentials import ClientCredentials, ClientCredentialsResolver
from .credential_store import Credential, CredentialStore
from .error_handler import CredentialNotFoundError, MissingClientCredentialsError
from .oauth_state import StateCodec
from .provider_registry import get_provider_config
from .token_exchange import TokenExchanger

lib_logger = logging.getLogger("platform_auth")


class ConnectionFlow:
    """
    Connect and disconnect a team's provider account.

    start_connection -> provider consent screen -> complete_connection
    (state check, code exchange, account lookup, supersede-and-store).
    Errors propagate to the caller for direct user feedback.
    """

    def __init__(
        self,
        codec: StateCodec,
        exchanger: TokenExchanger,
        account_resolver: AccountResolver,
        store: CredentialStore,
        client_credentials: ClientCredentialsResolver,
    ):
        self.codec = codec
        self.exchanger = exchanger
        self.account_resolver = account_resolver
        self.store = store
        self.client_credentials = client_credentials

    async def _client_for(
        self,
        team_id: str,
        provider: str,
        client_id: Optional[str],
        client_secret: Optional[str],
    ) -> ClientCredentials:
        if client_id and client_secret:
            return ClientCredentials(client_id, client_secret, "request")
        resolved = await self.client_credentials.resolve_for_team(team_id, provider)
        if client_id and client_id != resolved.client_id:
            raise MissingClientCredentialsError(
                provider, f"Client secret not provided for {provider}"
            )
        return resolved

    async def start_connection(
        self,
        provider: str,
        team_id: str,
        redirect_uri: Optional[str] = None,
        client_id: Optional[str] = None,
        default_redirect_uri: Optional[str] = None,
    ) -> str:
        """
        Return the authorization URL the user should be redirected to.

        The redirect URI is the explicit one, else the one registered with
        the team's application, else `default_redirect_uri`.
        """
        config = get_provider_config(provider)
        registered_redirect_uri = None
        try:
            client = await self.client_credentials.resolve_for_team(team_id, config.name)
            client_id = client_id or client.client_id
            registered_redirect_uri = client.redirect_uri
        except MissingClientCredentialsError:
            if not client_id:
                raise

        redirect_uri = redirect_uri or registered_redirect_uri or default_redirect_uri
        if not redirect_uri:
            raise ValueError("A redirect_uri is required to start a connection")

        url = build_authorization_url(config.name, team_id, redirect_uri, client_id, self.codec)
        lib_logger.info(f"Started '{config.name}' connection for team {team_id}")
        return url

    async def complete_connection(
        self,
        provider: str,
        code: str,
        state: str,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        redirect_uri: Optional[str] = None,
    ) -> Credential:
        """
        Finish the callback leg and persist the new credential.

        The team and redirect URI come from the verified state. Client
        credentials that did not come from the shared environment app are
        stored on the credential so later refreshes keep using the same
        application.
        """
        config = get_provider_config(provider)
        # Signature check only; the exchanger verifies provider and age
        team_id = self.codec.decode(state).team_id
        client = await self._client_for(team_id, config.name, client_id, client_secret)

        token = await self.exchanger.exchange_code(
            config.name,
            code,
            state,
            client.client_id,
            client.client_secret,
            redirect_uri=redirect_uri,
        )

        account = await self.account_resolver.resolve(
            config.name, token.access_token, client.client_id, client.client_secret
        )

        token_data = {
            "access_token": token.access_token,
            "refresh_token": token.refresh_token,
            "expires_in": token.expires_in,
            "scope": token.scope,
            "account_id": account.account_id,
            "account_name": account.account_name,
            "email": account.email,
        }
        if client.source != "environment":
            token_data["client_id"] = client.client_id
            token_data["client_secret"] = client.client_secret

        return await self.store.upsert_new(token.state.team_id, config.name, token_data)

    async def disconnect(
        self, team_id: str, credential_id: str, hard_delete: bool = False
    ) -> None:
        """
        Deactivate (or delete) a team's credential.

        Raises:
            CredentialNotFoundError: unknown id or owned by another team.
        """
        credential = await self.store.get_by_id(credential_id)
        if credential is None or credential.team_id != team_id:
            raise CredentialNotFoundError(credential_id)

        if hard_delete:
            await self.store.delete(credential_id)
        else:
            await self.store.deactivate(credential_id)
        lib_logger.info(
            f"Disconnected '{credential.provider}' credential {credential_id} "
            f"(team {team_id}, {'deleted' if hard_delete else 'deactivated'})"
        )
