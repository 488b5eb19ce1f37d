import pytest

from auth_service.error_mapping import map_auth_error
from platform_auth.error_handler import (
    CredentialStoreError,
    TokenRefreshError,
    mask_credential,
)


@pytest.mark.parametrize(
    "value, style, expected",
    [
        ("sk-service-key-123456", "full", "sk-s****3456"),
        ("short", "full", "****"),
        ("1//refresh-token", "short", "...-token"),
        (None, "full", "<none>"),
    ],
)
def test_mask_credential_styles(value, style, expected):
    assert mask_credential(value, style=style) == expected


def test_store_failure_maps_to_service_unavailable():
    error = map_auth_error(CredentialStoreError("disk gone"), "test")

    assert error.status_code == 503
    assert error.detail == "Service Unavailable: disk gone"


def test_provider_timeout_maps_to_gateway_timeout():
    error = map_auth_error(TokenRefreshError("google", timed_out=True))

    assert error.status_code == 504
