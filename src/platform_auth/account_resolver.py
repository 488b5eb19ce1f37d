# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/platform_auth/account_resolver.py

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, Optional, Tuple

import httpx

from .error_handler import (
    AccountInfoFetchError,
    AccountInfoUnsupportedError,
    NoAdvertiserAccountError,
)
from .provider_registry import normalize_provider
from .settings import DEFAULT_HTTP_TIMEOUT, AuthSettings

lib_logger = logging.getLogger("platform_auth")


@dataclass(frozen=True)
class NormalizedAccount:
    account_id: str
    account_name: Optional[str] = None
    email: Optional[str] = None


@dataclass(frozen=True)
class AccountRequest:
    """Inputs available to a provider's request builder."""

    access_token: str
    client_id: Optional[str]
    client_secret: Optional[str]
    settings: Optional[AuthSettings]


RequestBuilder = Callable[[AccountRequest], Tuple[Dict[str, str], Dict[str, str]]]
ResponseParser = Callable[[Dict[str, Any]], NormalizedAccount]


@dataclass(frozen=True)
class AccountStrategy:
    url: str
    build_request: RequestBuilder
    parse: ResponseParser


# ---------------------------------------------------------------------------
# Request builders: (headers, query params)
# ---------------------------------------------------------------------------


def _bearer_request(req: AccountRequest) -> Tuple[Dict[str, str], Dict[str, str]]:
    return {"Authorization": f"Bearer {req.access_token}"}, {}


def _meta_request(req: AccountRequest) -> Tuple[Dict[str, str], Dict[str, str]]:
    return {"Authorization": f"Bearer {req.access_token}"}, {"fields": "id,name,email"}


def _amazon_request(req: AccountRequest) -> Tuple[Dict[str, str], Dict[str, str]]:
    client_id = (req.settings.amazon_client_id if req.settings else None) or req.client_id
    headers = {"Authorization": f"Bearer {req.access_token}"}
    if client_id:
        headers["Amazon-Advertising-API-ClientId"] = client_id
    return headers, {}


def _tiktok_request(req: AccountRequest) -> Tuple[Dict[str, str], Dict[str, str]]:
    params = {}
    if req.client_id:
        params["app_id"] = req.client_id
    if req.client_secret:
        params["secret"] = req.client_secret
    return {"Access-Token": req.access_token}, params


# ---------------------------------------------------------------------------
# Response parsers
# ---------------------------------------------------------------------------


def parse_google_account(data: Dict[str, Any]) -> NormalizedAccount:
    return NormalizedAccount(
        account_id=str(data["id"]),
        account_name=data.get("name") or data.get("email"),
        email=data.get("email"),
    )


def parse_meta_account(data: Dict[str, Any]) -> NormalizedAccount:
    return NormalizedAccount(
        account_id=str(data["id"]),
        account_name=data.get("name"),
        email=data.get("email"),
    )


def parse_kakao_account(data: Dict[str, Any]) -> NormalizedAccount:
    kakao_account = data.get("kakao_account") or {}
    profile = kakao_account.get("profile") or {}
    return NormalizedAccount(
        account_id=str(data["id"]),
        account_name=profile.get("nickname") or "Kakao User",
        email=kakao_account.get("email"),
    )


def parse_naver_account(data: Dict[str, Any]) -> NormalizedAccount:
    response = data.get("response") or {}
    if "id" not in response:
        raise KeyError("id")
    return NormalizedAccount(
        account_id=str(response["id"]),
        account_name=response.get("name") or response.get("nickname"),
        email=response.get("email"),
    )


def parse_amazon_account(data: Any) -> NormalizedAccount:
    profiles = data if isinstance(data, list) else []
    if not profiles:
        raise NoAdvertiserAccountError("amazon", "No Amazon Ads profiles found for this login")
    profile = profiles[0]
    account_info = profile.get("accountInfo") or {}
    profile_id = str(profile["profileId"])
    return NormalizedAccount(
        account_id=profile_id,
        account_name=account_info.get("name") or f"Amazon Profile {profile_id}",
    )


def parse_tiktok_account(data: Dict[str, Any]) -> NormalizedAccount:
    advertisers = (data.get("data") or {}).get("list") or []
    if not advertisers:
        raise NoAdvertiserAccountError("tiktok", "No TikTok advertiser accounts authorized")
    advertiser = advertisers[0]
    return NormalizedAccount(
        account_id=str(advertiser["advertiser_id"]),
        account_name=advertiser.get("advertiser_name"),
    )


ACCOUNT_STRATEGIES: Dict[str, AccountStrategy] = {
    "google": AccountStrategy(
        url="https://www.googleapis.com/oauth2/v2/userinfo",
        build_request=_bearer_request,
        parse=parse_google_account,
    ),
    "meta": AccountStrategy(
        url="https://graph.facebook.com/v23.0/me",
        build_request=_meta_request,
        parse=parse_meta_account,
    ),
    "kakao": AccountStrategy(
        url="https://kapi.kakao.com/v2/user/me",
        build_request=_bearer_request,
        parse=parse_kakao_account,
    ),
    "naver": AccountStrategy(
        url="https://openapi.naver.com/v1/nid/me",
        build_request=_bearer_request,
        parse=parse_naver_account,
    ),
    "amazon": AccountStrategy(
        url="https://advertising-api.amazon.com/v2/profiles",
        build_request=_amazon_request,
        parse=parse_amazon_account,
    ),
    "tiktok": AccountStrategy(
        url="https://business-api.tiktok.com/open_api/v1.3/oauth2/advertiser/get/",
        build_request=_tiktok_request,
        parse=parse_tiktok_account,
    ),
}


class AccountResolver:
    """Identifies the provider account behind a freshly issued access token."""

    def __init__(
        self,
        settings: Optional[AuthSettings] = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        http_client: Optional[httpx.AsyncClient] = None,
        strategies: Optional[Dict[str, AccountStrategy]] = None,
    ):
        self.settings = settings
        self.timeout = timeout
        self._http_client = http_client
        self.strategies = strategies if strategies is not None else ACCOUNT_STRATEGIES

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            yield client

    async def resolve(
        self,
        provider: str,
        access_token: str,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
    ) -> NormalizedAccount:
        """
        Fetch and normalize the account behind an access token.

        Raises:
            AccountInfoUnsupportedError: provider has no identity endpoint.
            AccountInfoFetchError: non-2xx, timeout, or unparseable response.
            NoAdvertiserAccountError: well-formed response with no usable account.
        """
        key = normalize_provider(provider)
        strategy = self.strategies.get(key)
        if strategy is None:
            raise AccountInfoUnsupportedError(key)

        headers, params = strategy.build_request(
            AccountRequest(
                access_token=access_token,
                client_id=client_id,
                client_secret=client_secret,
                settings=self.settings,
            )
        )

        try:
            async with self._client() as client:
                response = await client.get(
                    strategy.url, headers=headers, params=params, timeout=self.timeout
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            raise AccountInfoFetchError(key, status_code=e.response.status_code) from e
        except httpx.TimeoutException as e:
            raise AccountInfoFetchError(key, timed_out=True) from e
        except httpx.RequestError as e:
            raise AccountInfoFetchError(key, detail=str(e) or type(e).__name__) from e
        except ValueError as e:
            raise AccountInfoFetchError(key, detail="invalid JSON body") from e

        # TikTok reports API-level failures inside a 200 envelope
        if key == "tiktok" and isinstance(data, dict) and data.get("code") not in (None, 0, "0"):
            raise AccountInfoFetchError(
                key,
                status_code=response.status_code,
                detail=str(data.get("message") or f"code {data.get('code')}"),
            )

        try:
            account = strategy.parse(data)
        except (KeyError, TypeError, AttributeError) as e:
            raise AccountInfoFetchError(
                key, detail=f"unexpected identity response shape ({e})"
            ) from e

        lib_logger.info(f"Resolved '{key}' account {account.account_id}")
        return account
