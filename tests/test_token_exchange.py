import time
from urllib.parse import parse_qs

import httpx
import pytest
import respx

from platform_auth.error_handler import (
    InvalidStateError,
    ProviderMismatchError,
    StateExpiredError,
    TokenExchangeError,
    TokenRefreshError,
    UnsupportedProviderError,
)
from platform_auth.oauth_state import OAuthState
from platform_auth.token_exchange import get_grant_strategy

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
TIKTOK_TOKEN_URL = "https://business-api.tiktok.com/open_api/v1.3/oauth2/access_token/"


def _form(request: httpx.Request) -> dict:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


def _blob(codec, provider="google", age_seconds=0, nonce="n-1"):
    return codec.encode(
        OAuthState(
            provider=provider,
            team_id="t1",
            redirect_uri="https://app/cb",
            nonce=nonce,
            issued_at_ms=int((time.time() - age_seconds) * 1000),
        )
    )


def test_grant_strategy_table_renames_tiktok_params():
    body = get_grant_strategy("tiktok").authorization_code("app", "sec", "CODE", "https://app/cb")
    assert body == {"app_id": "app", "secret": "sec", "auth_code": "CODE"}

    body = get_grant_strategy("google").refresh_token("cid", "csec", "rt", None)
    assert body == {
        "grant_type": "refresh_token",
        "refresh_token": "rt",
        "client_id": "cid",
        "client_secret": "csec",
    }


@pytest.mark.asyncio
async def test_google_code_exchange_posts_form_and_returns_tokens(exchanger, codec):
    with respx.mock(assert_all_called=True) as mock_router:
        route = mock_router.post(GOOGLE_TOKEN_URL).mock(
            return_value=httpx.Response(
                200,
                json={"access_token": "ya29.X", "refresh_token": "1//Y", "expires_in": 3600},
            )
        )

        token = await exchanger.exchange_code(
            "google", "abc123", _blob(codec), "cid", "csec", redirect_uri="https://app/cb"
        )

    form = _form(route.calls.last.request)
    assert form["grant_type"] == "authorization_code"
    assert form["code"] == "abc123"
    assert form["redirect_uri"] == "https://app/cb"
    assert token.access_token == "ya29.X"
    assert token.refresh_token == "1//Y"
    assert token.expires_in == 3600
    assert token.state.team_id == "t1"


@pytest.mark.asyncio
async def test_exchange_rejects_bad_state_before_any_http_call(exchanger, codec):
    with respx.mock(assert_all_called=False) as mock_router:
        route = mock_router.post(GOOGLE_TOKEN_URL).mock(return_value=httpx.Response(200, json={}))

        with pytest.raises(InvalidStateError):
            await exchanger.exchange_code("google", "abc", "garbage", "cid", "csec")
        with pytest.raises(ProviderMismatchError):
            await exchanger.exchange_code("meta", "abc", _blob(codec), "cid", "csec")
        with pytest.raises(StateExpiredError):
            await exchanger.exchange_code(
                "google", "abc", _blob(codec, age_seconds=11 * 60), "cid", "csec"
            )

    assert route.call_count == 0


@pytest.mark.asyncio
async def test_state_cannot_be_replayed(exchanger, codec):
    blob = _blob(codec, nonce="once")
    with respx.mock(assert_all_called=True) as mock_router:
        mock_router.post(GOOGLE_TOKEN_URL).mock(
            return_value=httpx.Response(200, json={"access_token": "a"})
        )
        await exchanger.exchange_code("google", "c1", blob, "cid", "csec")

        with pytest.raises(InvalidStateError):
            await exchanger.exchange_code("google", "c2", blob, "cid", "csec")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "first_attempt",
    [httpx.ReadTimeout("timed out"), httpx.ConnectError("refused"), httpx.Response(503)],
)
async def test_transient_failure_lets_the_callback_be_retried(exchanger, codec, first_attempt):
    blob = _blob(codec, nonce="retry")
    with respx.mock(assert_all_called=True) as mock_router:
        mock_router.post(GOOGLE_TOKEN_URL).mock(
            side_effect=[first_attempt, httpx.Response(200, json={"access_token": "a"})]
        )
        with pytest.raises(TokenExchangeError):
            await exchanger.exchange_code("google", "c1", blob, "cid", "csec")

        token = await exchanger.exchange_code("google", "c1", blob, "cid", "csec")

    assert token.access_token == "a"


@pytest.mark.asyncio
async def test_rejected_code_keeps_state_consumed(exchanger, codec):
    blob = _blob(codec, nonce="rejected")
    with respx.mock(assert_all_called=True) as mock_router:
        route = mock_router.post(GOOGLE_TOKEN_URL).mock(
            return_value=httpx.Response(400, json={"error": "invalid_grant"})
        )
        with pytest.raises(TokenExchangeError):
            await exchanger.exchange_code("google", "c1", blob, "cid", "csec")
        with pytest.raises(InvalidStateError):
            await exchanger.exchange_code("google", "c1", blob, "cid", "csec")

    assert route.call_count == 1


@pytest.mark.asyncio
async def test_non_2xx_exchange_carries_status(exchanger, codec):
    with respx.mock(assert_all_called=True) as mock_router:
        mock_router.post(GOOGLE_TOKEN_URL).mock(
            return_value=httpx.Response(400, json={"error": "invalid_grant"})
        )

        with pytest.raises(TokenExchangeError) as exc_info:
            await exchanger.exchange_code("google", "abc", _blob(codec), "cid", "csec")

    assert exc_info.value.status_code == 400
    assert "Token exchange failed: 400" in str(exc_info.value)


@pytest.mark.asyncio
async def test_tiktok_exchange_uses_renamed_params_and_unwraps_envelope(exchanger, codec):
    with respx.mock(assert_all_called=True) as mock_router:
        route = mock_router.post(TIKTOK_TOKEN_URL).mock(
            return_value=httpx.Response(
                200,
                json={
                    "code": 0,
                    "message": "OK",
                    "data": {
                        "access_token": "tt-access",
                        "scope": [4, 5],
                        "advertiser_ids": ["123"],
                    },
                },
            )
        )

        token = await exchanger.exchange_code(
            "tiktok", "AUTH", _blob(codec, provider="tiktok"), "app", "sec"
        )

    assert _form(route.calls.last.request) == {"app_id": "app", "secret": "sec", "auth_code": "AUTH"}
    assert token.access_token == "tt-access"
    assert token.refresh_token is None
    assert token.scope == "4,5"


@pytest.mark.asyncio
async def test_tiktok_envelope_error_code_is_a_failure(exchanger):
    with respx.mock(assert_all_called=True) as mock_router:
        mock_router.post(TIKTOK_TOKEN_URL).mock(
            return_value=httpx.Response(
                200, json={"code": 40105, "message": "Access token is incorrect", "data": {}}
            )
        )

        with pytest.raises(TokenRefreshError) as exc_info:
            await exchanger.refresh("tiktok", "rt", "app", "sec")

    assert "Access token is incorrect" in str(exc_info.value)


@pytest.mark.asyncio
async def test_refresh_non_2xx_raises_refresh_error(exchanger):
    with respx.mock(assert_all_called=True) as mock_router:
        mock_router.post(GOOGLE_TOKEN_URL).mock(return_value=httpx.Response(401, text="nope"))

        with pytest.raises(TokenRefreshError) as exc_info:
            await exchanger.refresh("google", "rt", "cid", "csec")

    assert exc_info.value.status_code == 401


@pytest.mark.asyncio
async def test_refresh_timeout_is_a_refresh_error(exchanger):
    with respx.mock(assert_all_called=True) as mock_router:
        mock_router.post(GOOGLE_TOKEN_URL).mock(side_effect=httpx.ReadTimeout("slow"))

        with pytest.raises(TokenRefreshError) as exc_info:
            await exchanger.refresh("google", "rt", "cid", "csec")

    assert exc_info.value.timed_out is True
    assert exc_info.value.status_code is None


@pytest.mark.asyncio
async def test_refresh_missing_access_token_is_a_failure(exchanger):
    with respx.mock(assert_all_called=True) as mock_router:
        mock_router.post(GOOGLE_TOKEN_URL).mock(return_value=httpx.Response(200, json={}))

        with pytest.raises(TokenRefreshError):
            await exchanger.refresh("google", "rt", "cid", "csec")


@pytest.mark.asyncio
async def test_refresh_for_provider_without_token_url_is_unsupported(exchanger):
    with pytest.raises(UnsupportedProviderError):
        await exchanger.refresh("coupang", "rt", "cid", "csec")
