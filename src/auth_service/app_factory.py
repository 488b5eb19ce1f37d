# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""
Builds the auth service FastAPI app: lifespan wiring, CORS and routers.
"""

import logging
import os
from typing import List, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from auth_service.startup import lifespan
from platform_auth.credential_store import CredentialStore
from platform_auth.settings import AuthSettings

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[AuthSettings] = None,
    store: Optional[CredentialStore] = None,
) -> FastAPI:
    """
    Args:
        settings: Explicit settings; the lifespan reads the environment when omitted
        store: Pre-built credential store, mainly for tests
    """
    app = FastAPI(
        title="Ad Platform Auth Service",
        description="OAuth connection and token refresh for advertising platform credentials",
        version="1.0.0",
        lifespan=lambda app: lifespan(app, settings, store),
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins(),
        allow_credentials=False,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Authorization", "Content-Type", "X-Team-Id"],
    )

    from auth_service.routes import auth, cron

    app.include_router(auth.router)
    app.include_router(cron.router)
    return app


def cors_origins() -> List[str]:
    """AUTH_SERVICE_CORS_ORIGINS as a list; "*" (the default) allows any origin."""
    raw = os.getenv("AUTH_SERVICE_CORS_ORIGINS", "*")
    origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
    if not origins or origins == ["*"]:
        logger.warning(
            "AUTH_SERVICE_CORS_ORIGINS allows every origin; "
            "list the dashboard domains explicitly in production."
        )
        return ["*"]
    return origins
