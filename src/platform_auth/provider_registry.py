# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/platform_auth/provider_registry.py

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Tuple

from .error_handler import UnsupportedProviderError


@dataclass(frozen=True)
class ProviderConfig:
    """Static OAuth configuration for one advertising platform."""

    name: str
    display_name: str
    authorization_url: str
    token_url: str
    scopes: Tuple[str, ...] = ()
    client_id_param: str = "client_id"
    scope_delimiter: str = " "
    supports_offline_consent: bool = True
    extra_authorize_params: Mapping[str, str] = field(default_factory=dict)

    @property
    def is_oauth_supported(self) -> bool:
        return bool(self.authorization_url and self.token_url)

    @property
    def scope_string(self) -> str:
        return self.scope_delimiter.join(self.scopes)


PROVIDER_MAP: Dict[str, ProviderConfig] = {
    "google": ProviderConfig(
        name="google",
        display_name="Google Ads",
        authorization_url="https://accounts.google.com/o/oauth2/v2/auth",
        token_url="https://oauth2.googleapis.com/token",
        scopes=(
            "https://www.googleapis.com/auth/adwords",
            "https://www.googleapis.com/auth/userinfo.email",
        ),
    ),
    "meta": ProviderConfig(
        name="meta",
        display_name="Meta Ads",
        authorization_url="https://www.facebook.com/v23.0/dialog/oauth",
        token_url="https://graph.facebook.com/v23.0/oauth/access_token",
        scopes=("ads_read", "ads_management", "business_management", "email"),
    ),
    # TikTok names the client identifier `client_key`, joins scopes with commas
    # and has no offline/consent concept.
    "tiktok": ProviderConfig(
        name="tiktok",
        display_name="TikTok Ads",
        authorization_url="https://www.tiktok.com/v2/auth/authorize/",
        token_url="https://business-api.tiktok.com/open_api/v1.3/oauth2/access_token/",
        scopes=("ads.management", "ads.operation", "reporting"),
        client_id_param="client_key",
        scope_delimiter=",",
        supports_offline_consent=False,
    ),
    "amazon": ProviderConfig(
        name="amazon",
        display_name="Amazon Ads",
        authorization_url="https://www.amazon.com/ap/oa",
        token_url="https://api.amazon.com/auth/o2/token",
        scopes=("advertising::campaign_management",),
    ),
    "kakao": ProviderConfig(
        name="kakao",
        display_name="Kakao Moment",
        authorization_url="https://kauth.kakao.com/oauth/authorize",
        token_url="https://kauth.kakao.com/oauth/token",
        scopes=("profile_nickname", "account_email"),
    ),
    "naver": ProviderConfig(
        name="naver",
        display_name="Naver Search Ads",
        authorization_url="https://nid.naver.com/oauth2.0/authorize",
        token_url="https://nid.naver.com/oauth2.0/token",
    ),
    # Manual-only integration: API keys are entered by hand, no OAuth endpoints.
    "coupang": ProviderConfig(
        name="coupang",
        display_name="Coupang Ads",
        authorization_url="",
        token_url="",
    ),
}

PROVIDER_ALIASES: Dict[str, str] = {
    "facebook": "meta",
}


def normalize_provider(provider: str) -> str:
    key = (provider or "").strip().lower()
    return PROVIDER_ALIASES.get(key, key)


def get_provider_config(provider: str) -> ProviderConfig:
    """
    Look up the static configuration for a provider.

    Raises:
        UnsupportedProviderError: if the provider is unknown.
    """
    config = PROVIDER_MAP.get(normalize_provider(provider))
    if config is None:
        raise UnsupportedProviderError(provider, f"Unknown platform: {provider}")
    return config


def is_oauth_supported(provider: str) -> bool:
    config = PROVIDER_MAP.get(normalize_provider(provider))
    return bool(config and config.is_oauth_supported)


def get_available_providers() -> List[str]:
    """Returns a list of all registered provider keys."""
    return list(PROVIDER_MAP.keys())
