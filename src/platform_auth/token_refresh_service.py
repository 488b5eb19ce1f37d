# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/platform_auth/token_refresh_service.py

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from .client_credentials import ClientCredentialsResolver
from .credential_store import Credential, CredentialStore
from .error_handler import (
    CredentialNotFoundError,
    NoRefreshTokenError,
    PlatformAuthError,
    mask_credential,
)
from .provider_registry import normalize_provider
from .settings import DEFAULT_REFRESH_INTERVAL_MINUTES
from .token_exchange import TokenExchanger

lib_logger = logging.getLogger("platform_auth")


@dataclass
class RefreshResult:
    """Outcome of one credential refresh. Never persisted on its own."""

    success: bool
    access_token: Optional[str] = field(default=None, repr=False)
    refresh_token: Optional[str] = field(default=None, repr=False)
    expires_at: Optional[datetime] = None
    error: Optional[str] = None


@dataclass
class RefreshCycleSummary:
    successful: int = 0
    failed: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)

    def record_failure(self, credential_id: str, error: str) -> None:
        self.failed += 1
        self.errors.append({"credential_id": credential_id, "error": error})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "successful": self.successful,
            "failed": self.failed,
            "errors": [dict(e) for e in self.errors],
        }


class TokenRefreshOrchestrator:
    """
    Finds credentials nearing expiry and refreshes them concurrently.

    Each credential is refreshed independently: one provider's failure is
    recorded on that credential and in the cycle summary, never raised to
    the caller. At most one refresh-and-persist sequence runs per credential
    id at a time.

    The orchestrator can run its own interval timer (start/stop) in a
    long-lived process, or be driven entirely by an external cron trigger.
    """

    def __init__(
        self,
        store: CredentialStore,
        exchanger: TokenExchanger,
        client_credentials: ClientCredentialsResolver,
    ):
        self.store = store
        self.exchanger = exchanger
        self.client_credentials = client_credentials

        self._refresh_locks: Dict[str, asyncio.Lock] = {}
        self._locks_lock = asyncio.Lock()

        self._is_running = False
        self._interval_task: Optional[asyncio.Task] = None
        self.last_cycle_at: Optional[datetime] = None
        self.last_summary: Optional[RefreshCycleSummary] = None

    @property
    def is_running(self) -> bool:
        return self._is_running

    async def _get_lock(self, credential_id: str) -> asyncio.Lock:
        async with self._locks_lock:
            if credential_id not in self._refresh_locks:
                self._refresh_locks[credential_id] = asyncio.Lock()
            return self._refresh_locks[credential_id]

    async def release_credential(self, credential_id: str) -> None:
        """
        Forget the refresh lock of a credential that left the active set.

        Callers still holding the lock finish normally; they re-read the
        record and skip inactive or deleted credentials.
        """
        async with self._locks_lock:
            self._refresh_locks.pop(credential_id, None)

    # =========================================================================
    # Refresh cycles
    # =========================================================================

    async def refresh_expired_tokens(
        self, team_id: Optional[str] = None
    ) -> RefreshCycleSummary:
        """
        Refresh every active credential inside the expiry window.

        Args:
            team_id: Restrict the cycle to one team. None scans all teams.
        """
        scope = f"team {team_id}" if team_id else "all teams"
        lib_logger.info(f"Starting token refresh cycle ({scope})")

        credentials = await self.store.list_needing_refresh(team_id)
        if not credentials:
            lib_logger.info("No credentials need token refresh")
            return self._finish_cycle(RefreshCycleSummary())

        lib_logger.info(f"Found {len(credentials)} credential(s) needing refresh")
        summary = await self._refresh_batch(credentials)
        lib_logger.info(
            f"Token refresh cycle completed: {summary.successful} refreshed, "
            f"{summary.failed} failed ({scope})"
        )
        return self._finish_cycle(summary)

    async def refresh_platform_credentials(
        self,
        team_id: str,
        provider: Optional[str] = None,
        force: bool = False,
    ) -> RefreshCycleSummary:
        """
        Manual refresh for one team, optionally scoped to one provider.

        Args:
            team_id: Team whose credentials are refreshed
            provider: Restrict to one provider
            force: Refresh every active credential in scope, not only those
                inside the expiry window
        """
        provider_key = normalize_provider(provider) if provider else None
        if force:
            credentials = await self.store.list_active(team_id, provider_key)
        else:
            credentials = [
                c
                for c in await self.store.list_needing_refresh(team_id)
                if provider_key is None or c.provider == provider_key
            ]

        if not credentials:
            return RefreshCycleSummary()

        summary = await self._refresh_batch(credentials, force=force)
        lib_logger.info(
            f"Platform credentials refresh completed for team {team_id}"
            f"{f' ({provider_key})' if provider_key else ''}: "
            f"{summary.successful} refreshed, {summary.failed} failed"
        )
        return summary

    async def _refresh_batch(
        self, credentials: Sequence[Credential], force: bool = False
    ) -> RefreshCycleSummary:
        results = await asyncio.gather(
            *(self.refresh_single_credential(c, force=force) for c in credentials),
            return_exceptions=True,
        )

        summary = RefreshCycleSummary()
        for credential, result in zip(credentials, results):
            if isinstance(result, BaseException):
                lib_logger.error(
                    f"Refresh task for credential {credential.id} raised: {result!r}"
                )
                summary.record_failure(credential.id, str(result) or "Unknown error")
            elif result.success:
                summary.successful += 1
            else:
                summary.record_failure(credential.id, result.error or "Token refresh failed")
        return summary

    def _finish_cycle(self, summary: RefreshCycleSummary) -> RefreshCycleSummary:
        self.last_cycle_at = self.store.now()
        self.last_summary = summary
        return summary

    # =========================================================================
    # Single credential
    # =========================================================================

    async def refresh_single_credential(
        self, credential: Credential, force: bool = False
    ) -> RefreshResult:
        """
        Refresh one credential and persist the result.

        Failures are recorded on the credential (mark_failed) and returned as
        a failed RefreshResult; nothing is raised.

        Args:
            credential: Credential to refresh
            force: Refresh even if another caller already renewed it
        """
        if not credential.refresh_token:
            error = str(NoRefreshTokenError())
            lib_logger.warning(
                f"Cannot refresh '{credential.provider}' credential {credential.id}: {error}"
            )
            await self._record_failure(credential.id, error)
            return RefreshResult(success=False, error=error)

        async with await self._get_lock(credential.id):
            try:
                current = await self.store.get_by_id(credential.id)
                if current is None:
                    await self.release_credential(credential.id)
                    raise CredentialNotFoundError(credential.id)
                if not current.is_active:
                    lib_logger.info(f"Skipping refresh of inactive credential {current.id}")
                    await self.release_credential(current.id)
                    return RefreshResult(success=False, error="Credential is no longer active")

                # Another cycle may have renewed it while we waited for the lock
                if not force and not self.store.needs_refresh(current):
                    lib_logger.debug(f"Credential {current.id} already fresh; skipping refresh")
                    return RefreshResult(
                        success=True,
                        access_token=current.access_token,
                        refresh_token=current.refresh_token,
                        expires_at=current.expires_at,
                    )

                if not current.refresh_token:
                    raise NoRefreshTokenError()

                client = await self.client_credentials.resolve(current)
                token = await self.exchanger.refresh(
                    current.provider,
                    current.refresh_token,
                    client.client_id,
                    client.client_secret,
                )

                expires_at = None
                if token.expires_in is not None:
                    expires_at = self.store.now() + timedelta(seconds=token.expires_in)

                # Providers that rotate refresh tokens invalidate the old one
                refresh_token = token.refresh_token or current.refresh_token
                if token.refresh_token and token.refresh_token != current.refresh_token:
                    lib_logger.debug(
                        f"Refresh token rotated for credential {current.id} "
                        f"({mask_credential(current.refresh_token)} -> {mask_credential(token.refresh_token)})"
                    )

                tokens: Dict[str, Any] = {
                    "access_token": token.access_token,
                    "refresh_token": refresh_token,
                }
                if expires_at is not None:
                    tokens["expires_at"] = expires_at

                await self.store.update_tokens(current.id, tokens)
                lib_logger.info(
                    f"Refreshed '{current.provider}' credential {current.id} (team {current.team_id})"
                )
                return RefreshResult(
                    success=True,
                    access_token=token.access_token,
                    refresh_token=refresh_token,
                    expires_at=expires_at,
                )

            except Exception as e:
                error = str(e) or type(e).__name__
                lib_logger.warning(
                    f"Token refresh failed for '{credential.provider}' credential {credential.id}: {error}"
                )
                await self._record_failure(credential.id, error)
                return RefreshResult(success=False, error=error)

    async def _record_failure(self, credential_id: str, error: str) -> None:
        try:
            await self.store.mark_failed(credential_id, error)
        except PlatformAuthError as e:
            lib_logger.error(f"Could not record refresh failure for credential {credential_id}: {e}")

    # =========================================================================
    # Interval timer
    # =========================================================================

    def start(self, interval_minutes: int = DEFAULT_REFRESH_INTERVAL_MINUTES) -> None:
        """
        Mark the orchestrator running and, when called inside an event loop,
        schedule a refresh cycle now and every `interval_minutes` after.
        """
        if self._is_running:
            lib_logger.warning("Token refresh service is already running")
            return

        self._is_running = True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            lib_logger.info(
                "Token refresh service started without an event loop; "
                "cycles must be triggered externally"
            )
            return

        lib_logger.info(f"Starting token refresh service (every {interval_minutes} min)")
        self._interval_task = loop.create_task(self._run_periodically(interval_minutes * 60))

    def stop(self) -> None:
        if self._interval_task is not None:
            self._interval_task.cancel()
            self._interval_task = None
        self._is_running = False
        lib_logger.info("Token refresh service stopped")

    async def aclose(self) -> None:
        """Stop the timer and wait for an in-flight cycle to unwind."""
        task = self._interval_task
        self.stop()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _run_periodically(self, interval_seconds: float) -> None:
        while True:
            try:
                await self.refresh_expired_tokens()
            except Exception as e:
                lib_logger.error(f"Periodic token refresh failed: {e}")
            await asyncio.sleep(interval_seconds)

    def get_status(self) -> Dict[str, Any]:
        return {
            "is_running": self._is_running,
            "has_interval": self._interval_task is not None,
            "last_cycle_at": self.last_cycle_at.isoformat() if self.last_cycle_at else None,
        }
