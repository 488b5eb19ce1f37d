import pytest

from platform_auth.client_credentials import ClientCredentialsResolver
from platform_auth.credential_store import Credential
from platform_auth.error_handler import MissingClientCredentialsError
from platform_auth.settings import DEFAULT_HTTP_TIMEOUT, AuthSettings


def test_from_env_reads_all_keys():
    settings = AuthSettings.from_env(
        {
            "OAUTH_STATE_SECRET": "abc",
            "GOOGLE_CLIENT_ID": "gid",
            "GOOGLE_CLIENT_SECRET": "gsec",
            "AMAZON_CLIENT_ID": "amzn",
            "OAUTH_HTTP_TIMEOUT": "15",
            "CREDENTIAL_STORE_PATH": "/tmp/creds.json",
            "TOKEN_REFRESH_SCHEDULER": "true",
            "TOKEN_REFRESH_INTERVAL_MINUTES": "10",
        }
    )

    assert settings.state_secret == "abc"
    assert settings.google_client_id == "gid"
    assert settings.amazon_client_id == "amzn"
    assert settings.http_timeout == 15.0
    assert settings.credential_store_path == "/tmp/creds.json"
    assert settings.refresh_scheduler_enabled is True
    assert settings.refresh_interval_minutes == 10


def test_from_env_defaults_and_generated_secret():
    settings = AuthSettings.from_env({})

    assert settings.state_secret
    assert settings.http_timeout == DEFAULT_HTTP_TIMEOUT
    assert settings.refresh_scheduler_enabled is False
    assert settings.google_client_id is None
    assert settings.state_secret not in repr(settings)


@pytest.mark.parametrize("raw, expected", [("2", 10.0), ("120", 30.0), ("nope", 20.0)])
def test_http_timeout_is_clamped(raw, expected):
    assert AuthSettings.from_env({"OAUTH_HTTP_TIMEOUT": raw}).http_timeout == expected


def test_invalid_interval_falls_back_to_default():
    assert AuthSettings.from_env({"TOKEN_REFRESH_INTERVAL_MINUTES": "soon"}).refresh_interval_minutes == 30


@pytest.mark.asyncio
async def test_resolver_order_is_shared_app_then_stored_then_team(settings, store):
    resolver = ClientCredentialsResolver.from_settings(settings, store)
    await store.save_app_credentials("t", "kakao", "team-kakao", "team-kakao-secret")
    await store.save_app_credentials("t", "naver", "team-naver", "team-naver-secret")
    google = Credential(
        id="1", team_id="t", provider="google", account_id="a", access_token="x",
        client_id="team", client_secret="team-secret",
    )
    kakao = Credential(
        id="2", team_id="t", provider="kakao", account_id="a", access_token="x",
        client_id="kakao-app", client_secret="kakao-secret",
    )
    naver = Credential(id="3", team_id="t", provider="naver", account_id="a", access_token="x")

    assert (await resolver.resolve(google)).source == "environment"
    assert (await resolver.resolve(kakao)).client_id == "kakao-app"
    assert (await resolver.resolve(kakao)).source == "stored"
    assert (await resolver.resolve(naver)).client_id == "team-naver"
    assert (await resolver.resolve(naver)).source == "team"


@pytest.mark.asyncio
async def test_resolver_without_any_source_fails(settings, store):
    resolver = ClientCredentialsResolver.from_settings(settings, store)
    naver = Credential(id="3", team_id="t", provider="naver", account_id="a", access_token="x")

    with pytest.raises(MissingClientCredentialsError):
        await resolver.resolve(naver)
    with pytest.raises(MissingClientCredentialsError):
        await resolver.resolve_for_team("t", "naver")
    assert (await resolver.resolve_for_team("t", "google")).client_id == "google-app-id"


@pytest.mark.asyncio
async def test_team_app_credentials_are_scoped_to_team(settings, store):
    resolver = ClientCredentialsResolver.from_settings(settings, store)
    await store.save_app_credentials("t1", "facebook", "fb-app", "fb-secret", "https://t1/cb")

    resolved = await resolver.resolve_for_team("t1", "meta")
    assert resolved.client_id == "fb-app"
    assert resolved.redirect_uri == "https://t1/cb"
    with pytest.raises(MissingClientCredentialsError):
        await resolver.resolve_for_team("t2", "meta")
