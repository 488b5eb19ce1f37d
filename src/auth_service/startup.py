# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""
Application startup and shutdown logic.

This module contains the lifespan context manager that wires the credential
lifecycle components together and stores them on app.state.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI

from platform_auth.account_resolver import AccountResolver
from platform_auth.client_credentials import ClientCredentialsResolver
from platform_auth.connection_flow import ConnectionFlow
from platform_auth.credential_store import CredentialStore, create_credential_store
from platform_auth.oauth_state import StateCodec
from platform_auth.settings import AuthSettings
from platform_auth.token_exchange import TokenExchanger
from platform_auth.token_refresh_service import TokenRefreshOrchestrator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(
    app: FastAPI,
    settings: Optional[AuthSettings] = None,
    store: Optional[CredentialStore] = None,
):
    """
    Build the orchestrator and its collaborators for the app's lifetime.

    Args:
        app: The FastAPI application instance
        settings: Explicit settings; read from the environment when omitted
        store: Explicit credential store; built from settings when omitted
    """
    settings = settings or AuthSettings.from_env()

    if store is None:
        store = create_credential_store(settings.credential_store_path)
        if settings.credential_store_path:
            logger.info(f"Using credential store file '{settings.credential_store_path}'")
        else:
            logger.warning(
                "CREDENTIAL_STORE_PATH is not set; credentials are kept in memory only."
            )

    http_client = httpx.AsyncClient(timeout=settings.http_timeout)

    codec = StateCodec(settings.state_secret)
    exchanger = TokenExchanger(codec, timeout=settings.http_timeout, http_client=http_client)
    account_resolver = AccountResolver(
        settings, timeout=settings.http_timeout, http_client=http_client
    )
    client_credentials = ClientCredentialsResolver.from_settings(settings, store)
    orchestrator = TokenRefreshOrchestrator(store, exchanger, client_credentials)

    app.state.settings = settings
    app.state.credential_store = store
    app.state.orchestrator = orchestrator
    app.state.connection_flow = ConnectionFlow(
        codec, exchanger, account_resolver, store, client_credentials
    )

    if not os.getenv("AUTH_SERVICE_API_KEY"):
        logger.warning(
            "AUTH_SERVICE_API_KEY is not set; the API is open to anyone who can reach it."
        )

    if settings.refresh_scheduler_enabled:
        orchestrator.start(settings.refresh_interval_minutes)
    else:
        logger.info("In-process refresh scheduler disabled; relying on /api/cron/refresh-tokens.")

    yield

    # Shutdown
    await orchestrator.aclose()
    await http_client.aclose()
    logger.info("Auth service stopped.")
