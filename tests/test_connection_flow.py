from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
import respx

from platform_auth.account_resolver import AccountResolver
from platform_auth.client_credentials import ClientCredentialsResolver
from platform_auth.connection_flow import ConnectionFlow
from platform_auth.error_handler import (
    CredentialNotFoundError,
    MissingClientCredentialsError,
    NoAdvertiserAccountError,
)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
TIKTOK_TOKEN_URL = "https://business-api.tiktok.com/open_api/v1.3/oauth2/access_token/"
TIKTOK_ADVERTISERS_URL = "https://business-api.tiktok.com/open_api/v1.3/oauth2/advertiser/get/"


@pytest.fixture
def flow(codec, exchanger, store, settings) -> ConnectionFlow:
    return ConnectionFlow(
        codec,
        exchanger,
        AccountResolver(settings, timeout=10.0),
        store,
        ClientCredentialsResolver.from_settings(settings, store),
    )


def _state_from(url: str) -> str:
    return parse_qs(urlparse(url).query)["state"][0]


def _mock_google(mock_router, access_token="ya29.X", account_id="g-1"):
    mock_router.post(GOOGLE_TOKEN_URL).mock(
        return_value=httpx.Response(
            200,
            json={"access_token": access_token, "refresh_token": "1//Y", "expires_in": 3600},
        )
    )
    mock_router.get(GOOGLE_USERINFO_URL).mock(
        return_value=httpx.Response(
            200, json={"id": account_id, "email": "ads@example.com", "name": "Ads Team"}
        )
    )


@pytest.mark.asyncio
async def test_start_connection_uses_shared_google_app(flow):
    url = await flow.start_connection("google", "t1", "https://app/cb")

    assert parse_qs(urlparse(url).query)["client_id"] == ["google-app-id"]


@pytest.mark.asyncio
async def test_start_connection_without_app_credentials_fails(flow):
    with pytest.raises(MissingClientCredentialsError):
        await flow.start_connection("kakao", "t1", "https://app/cb")


@pytest.mark.asyncio
async def test_start_connection_uses_team_app_and_its_redirect_uri(flow, store):
    await store.save_app_credentials(
        "t1", "kakao", "kakao-app", "kakao-secret", "https://team.example/cb"
    )

    url = await flow.start_connection("kakao", "t1", default_redirect_uri="https://svc/cb")

    query = parse_qs(urlparse(url).query)
    assert query["client_id"] == ["kakao-app"]
    assert query["redirect_uri"] == ["https://team.example/cb"]


@pytest.mark.asyncio
async def test_start_connection_falls_back_to_default_redirect(flow):
    url = await flow.start_connection(
        "meta", "t1", client_id="fb-app", default_redirect_uri="https://svc/cb"
    )

    query = parse_qs(urlparse(url).query)
    assert query["client_id"] == ["fb-app"]
    assert query["redirect_uri"] == ["https://svc/cb"]


@pytest.mark.asyncio
async def test_start_connection_without_any_redirect_uri_fails(flow):
    with pytest.raises(ValueError):
        await flow.start_connection("google", "t1")


@pytest.mark.asyncio
async def test_kakao_connection_with_team_app(flow, store):
    await store.save_app_credentials("t1", "kakao", "kakao-app", "kakao-secret")
    state = _state_from(await flow.start_connection("kakao", "t1", "https://app/cb"))

    with respx.mock(assert_all_called=True) as mock_router:
        token_route = mock_router.post("https://kauth.kakao.com/oauth/token").mock(
            return_value=httpx.Response(
                200, json={"access_token": "k-access", "refresh_token": "k-rt", "expires_in": 21599}
            )
        )
        mock_router.get("https://kapi.kakao.com/v2/user/me").mock(
            return_value=httpx.Response(200, json={"id": 987, "properties": {"nickname": "Shop"}})
        )
        credential = await flow.complete_connection("kakao", "KCODE", state)

    form = parse_qs(token_route.calls.last.request.content.decode())
    assert form["client_id"] == ["kakao-app"]
    assert form["client_secret"] == ["kakao-secret"]
    assert credential.account_id == "987"
    assert credential.client_id == "kakao-app"
    assert credential.client_secret == "kakao-secret"


@pytest.mark.asyncio
async def test_google_connection_end_to_end(flow, store):
    state = _state_from(await flow.start_connection("google", "t1", "https://app/cb"))

    with respx.mock(assert_all_called=True) as mock_router:
        _mock_google(mock_router)
        credential = await flow.complete_connection("google", "abc123", state)

    assert credential.team_id == "t1"
    assert credential.provider == "google"
    assert credential.access_token == "ya29.X"
    assert credential.refresh_token == "1//Y"
    assert credential.account_id == "g-1"
    assert credential.account_name == "Ads Team"
    assert credential.client_id is None

    expected = datetime.now(timezone.utc) + timedelta(seconds=3600)
    assert abs((credential.expires_at - expected).total_seconds()) < 5
    assert [c.id for c in await store.list_active("t1", "google")] == [credential.id]


@pytest.mark.asyncio
async def test_reconnecting_same_account_supersedes_previous(flow, store):
    with respx.mock(assert_all_called=True) as mock_router:
        _mock_google(mock_router, access_token="first")
        first = await flow.complete_connection(
            "google", "c1", _state_from(await flow.start_connection("google", "t1", "https://app/cb"))
        )
    with respx.mock(assert_all_called=True) as mock_router:
        _mock_google(mock_router, access_token="second")
        second = await flow.complete_connection(
            "google", "c2", _state_from(await flow.start_connection("google", "t1", "https://app/cb"))
        )

    active = await store.list_active("t1", "google")
    assert [c.id for c in active] == [second.id]
    assert (await store.get_by_id(first.id)).is_active is False


@pytest.mark.asyncio
async def test_tiktok_connection_stores_request_client_credentials(flow, store):
    state = _state_from(await flow.start_connection("tiktok", "t1", "https://app/cb", client_id="tt-app"))

    with respx.mock(assert_all_called=True) as mock_router:
        mock_router.post(TIKTOK_TOKEN_URL).mock(
            return_value=httpx.Response(
                200, json={"code": 0, "message": "OK", "data": {"access_token": "tt-access"}}
            )
        )
        mock_router.get(TIKTOK_ADVERTISERS_URL).mock(
            return_value=httpx.Response(
                200,
                json={"code": 0, "data": {"list": [{"advertiser_id": 42, "advertiser_name": "Shop"}]}},
            )
        )
        credential = await flow.complete_connection(
            "tiktok", "AUTH", state, client_id="tt-app", client_secret="tt-secret"
        )

    stored = await store.get_by_id(credential.id)
    assert stored.account_id == "42"
    assert stored.client_id == "tt-app"
    assert stored.client_secret == "tt-secret"
    assert stored.refresh_token is None
    assert stored.expires_at is None


@pytest.mark.asyncio
async def test_connection_without_advertiser_stores_nothing(flow, store):
    state = _state_from(await flow.start_connection("tiktok", "t1", "https://app/cb", client_id="tt-app"))

    with respx.mock(assert_all_called=True) as mock_router:
        mock_router.post(TIKTOK_TOKEN_URL).mock(
            return_value=httpx.Response(200, json={"code": 0, "data": {"access_token": "tt"}})
        )
        mock_router.get(TIKTOK_ADVERTISERS_URL).mock(
            return_value=httpx.Response(200, json={"code": 0, "data": {"list": []}})
        )
        with pytest.raises(NoAdvertiserAccountError):
            await flow.complete_connection(
                "tiktok", "AUTH", state, client_id="tt-app", client_secret="tt-secret"
            )

    assert await store.list_active("t1") == []


@pytest.mark.asyncio
async def test_disconnect_deactivates_or_deletes(flow, store):
    first = await store.upsert_new("t1", "google", {"access_token": "a", "account_id": "1"})
    second = await store.upsert_new("t1", "meta", {"access_token": "b", "account_id": "2"})

    await flow.disconnect("t1", first.id)
    await flow.disconnect("t1", second.id, hard_delete=True)

    assert (await store.get_by_id(first.id)).is_active is False
    assert await store.get_by_id(second.id) is None


@pytest.mark.asyncio
async def test_disconnect_rejects_other_teams_credentials(flow, store):
    credential = await store.upsert_new("t1", "google", {"access_token": "a", "account_id": "1"})

    with pytest.raises(CredentialNotFoundError):
        await flow.disconnect("t2", credential.id)
    with pytest.raises(CredentialNotFoundError):
        await flow.disconnect("t1", "missing")

    assert (await store.get_by_id(credential.id)).is_active is True
