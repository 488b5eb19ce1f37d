# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/platform_auth/authorization.py

import logging
import secrets
from typing import Optional
from urllib.parse import urlencode

from .error_handler import UnsupportedProviderError
from .oauth_state import OAuthState, StateCodec, current_time_ms
from .provider_registry import get_provider_config

lib_logger = logging.getLogger("platform_auth")


def build_authorization_url(
    provider: str,
    team_id: str,
    redirect_uri: str,
    client_id: str,
    codec: StateCodec,
    now_ms: Optional[int] = None,
) -> str:
    """
    Build the provider's authorization redirect URL with a signed state.

    Args:
        provider: Provider key (e.g. 'google', 'tiktok')
        team_id: Team the resulting credential will belong to
        redirect_uri: Callback URL registered with the provider
        client_id: Application client identifier
        codec: StateCodec used to sign the state parameter
        now_ms: Override for the state timestamp (epoch milliseconds)

    Raises:
        UnsupportedProviderError: unknown provider or no authorization URL.
    """
    config = get_provider_config(provider)
    if not config.authorization_url:
        raise UnsupportedProviderError(config.name)

    state = OAuthState(
        provider=config.name,
        team_id=team_id,
        redirect_uri=redirect_uri,
        nonce=secrets.token_urlsafe(16),
        issued_at_ms=current_time_ms() if now_ms is None else now_ms,
    )

    params = {
        config.client_id_param: client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "state": codec.encode(state),
    }
    if config.scopes:
        params["scope"] = config.scope_string
    if config.supports_offline_consent:
        params["access_type"] = "offline"
        params["prompt"] = "consent"
    params.update(config.extra_authorize_params)

    lib_logger.debug(f"Built authorization URL for '{config.name}' (team {team_id})")
    return f"{config.authorization_url}?{urlencode(params)}"
