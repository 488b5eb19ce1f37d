# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/platform_auth/settings.py

import logging
import os
import secrets
from dataclasses import dataclass, field
from typing import Mapping, Optional

lib_logger = logging.getLogger("platform_auth")

DEFAULT_HTTP_TIMEOUT = 20.0
MIN_HTTP_TIMEOUT = 10.0
MAX_HTTP_TIMEOUT = 30.0
DEFAULT_REFRESH_INTERVAL_MINUTES = 30


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _parse_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        lib_logger.warning(f"Invalid value for {key}: '{raw}'. Using default {default}.")
        return default


def _parse_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return max(1, int(raw))
    except ValueError:
        lib_logger.warning(f"Invalid value for {key}: '{raw}'. Using default {default}.")
        return default


@dataclass
class AuthSettings:
    """Deployment configuration for the credential lifecycle core."""

    state_secret: str = field(repr=False)
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = field(default=None, repr=False)
    amazon_client_id: Optional[str] = None
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    credential_store_path: Optional[str] = None
    refresh_scheduler_enabled: bool = False
    refresh_interval_minutes: int = DEFAULT_REFRESH_INTERVAL_MINUTES

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "AuthSettings":
        """
        Build settings from environment variables.

        Args:
            env: Mapping to read from. Defaults to os.environ.
        """
        env = os.environ if env is None else env

        state_secret = env.get("OAUTH_STATE_SECRET") or ""
        if not state_secret:
            lib_logger.warning(
                "OAUTH_STATE_SECRET is not set; generated a per-process secret. "
                "Pending OAuth callbacks will not survive a restart."
            )
            state_secret = secrets.token_urlsafe(32)

        timeout = _parse_float(env, "OAUTH_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT)
        clamped = min(MAX_HTTP_TIMEOUT, max(MIN_HTTP_TIMEOUT, timeout))
        if clamped != timeout:
            lib_logger.warning(
                f"OAUTH_HTTP_TIMEOUT={timeout} is outside {MIN_HTTP_TIMEOUT}-{MAX_HTTP_TIMEOUT}s; using {clamped}."
            )

        return cls(
            state_secret=state_secret,
            google_client_id=env.get("GOOGLE_CLIENT_ID") or None,
            google_client_secret=env.get("GOOGLE_CLIENT_SECRET") or None,
            amazon_client_id=env.get("AMAZON_CLIENT_ID") or None,
            http_timeout=clamped,
            credential_store_path=env.get("CREDENTIAL_STORE_PATH") or None,
            refresh_scheduler_enabled=_parse_bool(env.get("TOKEN_REFRESH_SCHEDULER")),
            refresh_interval_minutes=_parse_int(
                env, "TOKEN_REFRESH_INTERVAL_MINUTES", DEFAULT_REFRESH_INTERVAL_MINUTES
            ),
        )
