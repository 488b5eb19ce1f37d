# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/platform_auth/oauth_state.py

"""
Signed, time-boxed anti-forgery state for the OAuth redirect round trip.

The state is self-contained: it is never stored server-side, only verified
when it comes back on the callback. Wire format:

    base64url(json payload) "." base64url(HMAC-SHA256(payload))
"""

import base64
import binascii
import hashlib
import hmac
import json
import logging
import time
from dataclasses import asdict, dataclass
from typing import Optional

from .error_handler import InvalidStateError, ProviderMismatchError, StateExpiredError
from .provider_registry import normalize_provider

lib_logger = logging.getLogger("platform_auth")

STATE_VALIDITY_SECONDS = 10 * 60  # 10 minutes


def current_time_ms() -> int:
    return int(time.time() * 1000)


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64url_decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


@dataclass(frozen=True)
class OAuthState:
    provider: str
    team_id: str
    redirect_uri: str
    nonce: str
    issued_at_ms: int

    def age_seconds(self, now_ms: Optional[int] = None) -> float:
        now_ms = current_time_ms() if now_ms is None else now_ms
        return (now_ms - self.issued_at_ms) / 1000


class StateCodec:
    """Encodes and verifies OAuthState blobs with an HMAC key."""

    def __init__(self, secret: str, validity_seconds: int = STATE_VALIDITY_SECONDS):
        if not secret:
            raise ValueError("StateCodec requires a non-empty secret")
        self._key = secret.encode("utf-8")
        self.validity_seconds = validity_seconds

    def _sign(self, payload: bytes) -> bytes:
        return hmac.new(self._key, payload, hashlib.sha256).digest()

    def encode(self, state: OAuthState) -> str:
        payload = json.dumps(asdict(state), separators=(",", ":"), sort_keys=True).encode(
            "utf-8"
        )
        return f"{_b64url_encode(payload)}.{_b64url_encode(self._sign(payload))}"

    def decode(self, blob: str) -> OAuthState:
        """
        Decode and authenticate a state blob.

        Raises:
            InvalidStateError: malformed, tampered, or missing fields.
        """
        if not blob or not isinstance(blob, str) or blob.count(".") != 1:
            raise InvalidStateError()

        payload_part, signature_part = blob.split(".", 1)
        try:
            payload = _b64url_decode(payload_part)
            signature = _b64url_decode(signature_part)
        except (binascii.Error, ValueError):
            raise InvalidStateError()

        if not hmac.compare_digest(signature, self._sign(payload)):
            raise InvalidStateError()

        try:
            data = json.loads(payload.decode("utf-8"))
            return OAuthState(
                provider=str(data["provider"]),
                team_id=str(data["team_id"]),
                redirect_uri=str(data["redirect_uri"]),
                nonce=str(data["nonce"]),
                issued_at_ms=int(data["issued_at_ms"]),
            )
        except (UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError, ValueError):
            raise InvalidStateError()

    def verify(
        self, blob: str, provider: str, now_ms: Optional[int] = None
    ) -> OAuthState:
        """
        Decode a state blob and check it against the callback's provider and
        the validity window.

        Raises:
            InvalidStateError, ProviderMismatchError, StateExpiredError
        """
        try:
            state = self.decode(blob)
        except InvalidStateError:
            lib_logger.warning(f"Rejected OAuth callback for '{provider}': invalid state")
            raise

        expected = normalize_provider(provider)
        if normalize_provider(state.provider) != expected:
            lib_logger.warning(
                f"Rejected OAuth callback: state issued for '{state.provider}' "
                f"arrived on '{expected}' callback (team {state.team_id})"
            )
            raise ProviderMismatchError(expected=expected, actual=state.provider)

        age = state.age_seconds(now_ms)
        if age > self.validity_seconds:
            lib_logger.warning(
                f"Rejected OAuth callback for '{expected}': state expired "
                f"({int(age)}s old, team {state.team_id})"
            )
            raise StateExpiredError(age)

        return state
