# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""
Scheduled trigger routes.

An external scheduler calls these on an interval; the refresh cycle itself
never raises for per-credential failures.
"""

import logging

from fastapi import APIRouter, Depends

from auth_service.dependencies import get_orchestrator, verify_cron_secret
from auth_service.error_mapping import map_auth_error
from auth_service.models import RefreshResponse
from platform_auth.token_refresh_service import TokenRefreshOrchestrator

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/cron")


@router.get("/refresh-tokens", response_model=RefreshResponse)
async def cron_refresh_tokens(
    orchestrator: TokenRefreshOrchestrator = Depends(get_orchestrator),
    _=Depends(verify_cron_secret),
):
    """Refresh every team's credentials that are close to expiry."""
    try:
        summary = await orchestrator.refresh_expired_tokens()
    except Exception as e:
        raise map_auth_error(e, "cron_refresh_tokens")
    return RefreshResponse.from_summary(summary.to_dict())
