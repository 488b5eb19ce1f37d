import sys
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from platform_auth.client_credentials import ClientCredentialsResolver  # noqa: E402
from platform_auth.credential_store import CredentialStore  # noqa: E402
from platform_auth.oauth_state import StateCodec  # noqa: E402
from platform_auth.settings import AuthSettings  # noqa: E402
from platform_auth.token_exchange import TokenExchanger  # noqa: E402
from platform_auth.token_refresh_service import TokenRefreshOrchestrator  # noqa: E402


@pytest.fixture
def settings() -> AuthSettings:
    return AuthSettings(
        state_secret="test-state-secret",
        google_client_id="google-app-id",
        google_client_secret="google-app-secret",
        amazon_client_id="amzn1.application-oa2-client.test",
        http_timeout=10.0,
    )


@pytest.fixture
def codec(settings) -> StateCodec:
    return StateCodec(settings.state_secret)


@pytest.fixture
def store() -> CredentialStore:
    return CredentialStore()


@pytest.fixture
def exchanger(codec) -> TokenExchanger:
    return TokenExchanger(codec, timeout=10.0)


@pytest.fixture
def orchestrator(store, exchanger, settings) -> TokenRefreshOrchestrator:
    return TokenRefreshOrchestrator(
        store, exchanger, ClientCredentialsResolver.from_settings(settings, store)
    )
