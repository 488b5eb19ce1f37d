# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/platform_auth/token_exchange.py

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, Optional, Type

import httpx

from .error_handler import (
    InvalidStateError,
    ProviderHTTPError,
    TokenExchangeError,
    TokenRefreshError,
    UnsupportedProviderError,
    mask_credential,
)
from .oauth_state import OAuthState, StateCodec
from .provider_registry import ProviderConfig, get_provider_config
from .settings import DEFAULT_HTTP_TIMEOUT

lib_logger = logging.getLogger("platform_auth")

TOKEN_REQUEST_HEADERS = {
    "Content-Type": "application/x-www-form-urlencoded",
    "Accept": "application/json",
}

# (client_id, client_secret, code_or_refresh_token, redirect_uri) -> form body
BodyBuilder = Callable[[str, str, str, Optional[str]], Dict[str, str]]


@dataclass(frozen=True)
class GrantBodyStrategy:
    authorization_code: BodyBuilder
    refresh_token: BodyBuilder


def _standard_code_body(
    client_id: str, client_secret: str, code: str, redirect_uri: Optional[str]
) -> Dict[str, str]:
    body = {
        "grant_type": "authorization_code",
        "code": code,
        "client_id": client_id,
        "client_secret": client_secret,
    }
    if redirect_uri:
        body["redirect_uri"] = redirect_uri
    return body


def _standard_refresh_body(
    client_id: str, client_secret: str, refresh_token: str, redirect_uri: Optional[str]
) -> Dict[str, str]:
    return {
        "grant_type": "refresh_token",
        "refresh_token": refresh_token,
        "client_id": client_id,
        "client_secret": client_secret,
    }


def _tiktok_code_body(
    client_id: str, client_secret: str, code: str, redirect_uri: Optional[str]
) -> Dict[str, str]:
    return {"app_id": client_id, "secret": client_secret, "auth_code": code}


def _tiktok_refresh_body(
    client_id: str, client_secret: str, refresh_token: str, redirect_uri: Optional[str]
) -> Dict[str, str]:
    return {
        "app_id": client_id,
        "secret": client_secret,
        "grant_type": "refresh_token",
        "refresh_token": refresh_token,
    }


DEFAULT_GRANT_STRATEGY = GrantBodyStrategy(
    authorization_code=_standard_code_body,
    refresh_token=_standard_refresh_body,
)

GRANT_BODY_BUILDERS: Dict[str, GrantBodyStrategy] = {
    "tiktok": GrantBodyStrategy(
        authorization_code=_tiktok_code_body,
        refresh_token=_tiktok_refresh_body,
    ),
}


def get_grant_strategy(provider: str) -> GrantBodyStrategy:
    return GRANT_BODY_BUILDERS.get(provider, DEFAULT_GRANT_STRATEGY)


@dataclass
class TokenResponse:
    """Provider token payload, passed through without added semantics."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    scope: Optional[str] = None
    state: Optional[OAuthState] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)


def _error_detail(response: httpx.Response) -> Optional[str]:
    try:
        payload = response.json()
    except ValueError:
        text = response.text.strip()
        return text[:200] or None
    if isinstance(payload, dict):
        detail = (
            payload.get("error_description")
            or payload.get("message")
            or payload.get("error")
        )
        if isinstance(detail, dict):
            detail = detail.get("message") or str(detail)
        return str(detail)[:200] if detail else None
    return None


class TokenExchanger:
    """
    Exchanges authorization codes and refresh tokens for access tokens.

    The exchanger never touches persisted state; callers decide what to do
    with a TokenResponse or a raised error.
    """

    def __init__(
        self,
        codec: StateCodec,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.codec = codec
        self.timeout = timeout
        self._http_client = http_client
        # nonce -> monotonic deadline after which the entry can be forgotten
        self._consumed_nonces: Dict[str, float] = {}
        self._nonce_lock = asyncio.Lock()

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            yield client

    async def _consume_nonce(self, state: OAuthState) -> None:
        async with self._nonce_lock:
            now = time.monotonic()
            for nonce, deadline in list(self._consumed_nonces.items()):
                if deadline <= now:
                    del self._consumed_nonces[nonce]
            if state.nonce in self._consumed_nonces:
                lib_logger.warning(
                    f"Rejected OAuth callback for '{state.provider}': state replayed (team {state.team_id})"
                )
                raise InvalidStateError("OAuth state already used")
            self._consumed_nonces[state.nonce] = now + self.codec.validity_seconds

    async def _release_nonce(self, state: OAuthState) -> None:
        async with self._nonce_lock:
            self._consumed_nonces.pop(state.nonce, None)

    async def exchange_code(
        self,
        provider: str,
        code: str,
        state: str,
        client_id: str,
        client_secret: str,
        redirect_uri: Optional[str] = None,
        now_ms: Optional[int] = None,
    ) -> TokenResponse:
        """
        Exchange an authorization code for tokens after verifying the state.

        Args:
            provider: Provider the callback arrived for
            code: Authorization code from the callback
            state: Opaque state blob from the callback
            client_id: Application client id
            client_secret: Application client secret
            redirect_uri: Redirect URI; defaults to the one embedded in the state
            now_ms: Clock override for the state validity check

        Returns:
            TokenResponse with the decoded state attached

        Raises:
            InvalidStateError, ProviderMismatchError, StateExpiredError,
            UnsupportedProviderError, TokenExchangeError
        """
        config = get_provider_config(provider)
        decoded = self.codec.verify(state, config.name, now_ms=now_ms)
        if not config.token_url:
            raise UnsupportedProviderError(config.name)
        await self._consume_nonce(decoded)

        body = get_grant_strategy(config.name).authorization_code(
            client_id, client_secret, code, redirect_uri or decoded.redirect_uri
        )
        lib_logger.info(f"Exchanging authorization code for '{config.name}' (team {decoded.team_id})")
        try:
            token = await self._post_token_request(config, body, TokenExchangeError)
        except TokenExchangeError as e:
            # The provider never ruled on the code; allow the same callback to be retried
            if e.status_code is None or e.status_code >= 500:
                await self._release_nonce(decoded)
            raise
        token.state = decoded
        return token

    async def refresh(
        self,
        provider: str,
        refresh_token: str,
        client_id: str,
        client_secret: str,
    ) -> TokenResponse:
        """
        Trade a refresh token for a new access token.

        Raises:
            UnsupportedProviderError: provider has no token endpoint.
            TokenRefreshError: non-2xx response, timeout or transport failure.
        """
        config = get_provider_config(provider)
        if not config.token_url:
            raise UnsupportedProviderError(config.name)

        body = get_grant_strategy(config.name).refresh_token(
            client_id, client_secret, refresh_token, None
        )
        lib_logger.debug(
            f"Refreshing '{config.name}' token with refresh token {mask_credential(refresh_token)}"
        )
        return await self._post_token_request(config, body, TokenRefreshError)

    async def _post_token_request(
        self,
        config: ProviderConfig,
        body: Dict[str, str],
        error_cls: Type[ProviderHTTPError],
    ) -> TokenResponse:
        response: Optional[httpx.Response] = None
        try:
            async with self._client() as client:
                response = await client.post(
                    config.token_url,
                    data=body,
                    headers=TOKEN_REQUEST_HEADERS,
                    timeout=self.timeout,
                )
                response.raise_for_status()
                token_data = response.json()
        except httpx.HTTPStatusError as e:
            raise error_cls(
                config.name,
                status_code=e.response.status_code,
                detail=_error_detail(e.response),
            ) from e
        except httpx.TimeoutException as e:
            raise error_cls(config.name, timed_out=True) from e
        except httpx.RequestError as e:
            raise error_cls(config.name, detail=str(e) or type(e).__name__) from e
        except ValueError as e:
            raise error_cls(
                config.name,
                status_code=response.status_code if response is not None else None,
                detail="invalid JSON body",
            ) from e

        if not isinstance(token_data, dict):
            raise error_cls(config.name, status_code=response.status_code, detail="unexpected body")

        token_data = self._unwrap_envelope(config, token_data, response.status_code, error_cls)
        return self._parse_token_data(config, token_data, response.status_code, error_cls)

    @staticmethod
    def _unwrap_envelope(
        config: ProviderConfig,
        token_data: Dict[str, Any],
        status_code: int,
        error_cls: Type[ProviderHTTPError],
    ) -> Dict[str, Any]:
        # TikTok answers 200 with {"code", "message", "data"}; non-zero code is an error
        if "code" in token_data and "data" in token_data and "access_token" not in token_data:
            if token_data.get("code") not in (0, "0"):
                raise error_cls(
                    config.name,
                    status_code=status_code,
                    detail=str(token_data.get("message") or f"code {token_data.get('code')}"),
                )
            return token_data.get("data") or {}
        return token_data

    @staticmethod
    def _parse_token_data(
        config: ProviderConfig,
        token_data: Dict[str, Any],
        status_code: int,
        error_cls: Type[ProviderHTTPError],
    ) -> TokenResponse:
        access_token = token_data.get("access_token")
        if not access_token:
            raise error_cls(config.name, status_code=status_code, detail="response missing access_token")

        expires_in = token_data.get("expires_in", token_data.get("access_token_expire_in"))
        try:
            expires_in = int(expires_in) if expires_in is not None else None
        except (TypeError, ValueError):
            lib_logger.warning(f"Ignoring non-numeric expires_in from '{config.name}': {expires_in!r}")
            expires_in = None

        scope = token_data.get("scope")
        if isinstance(scope, (list, tuple)):
            scope = config.scope_delimiter.join(str(s) for s in scope)

        return TokenResponse(
            access_token=access_token,
            refresh_token=token_data.get("refresh_token") or None,
            expires_in=expires_in,
            scope=scope,
            raw=token_data,
        )
