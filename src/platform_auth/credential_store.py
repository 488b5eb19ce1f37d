# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/platform_auth/credential_store.py

"""
Credential persistence gateway.

Records are immutable snapshots: every mutation builds replacement
Credential objects and commits a new record map in one step, so a failed
commit leaves the previous state fully intact. Backends only have to
provide point lookups, point updates and the deactivate-then-insert
primitive used by `upsert_new`.
"""

import asyncio
import logging
import uuid
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from .error_handler import (
    CredentialNotFoundError,
    CredentialStoreError,
    UnsupportedProviderError,
)
from .provider_registry import get_provider_config, normalize_provider
from .utils.resilient_io import safe_read_json, safe_write_json

lib_logger = logging.getLogger("platform_auth")

# Refresh when token is close to expiry
REFRESH_EXPIRY_BUFFER_SECONDS = 5 * 60  # 5 minutes

STORE_SCHEMA_VERSION = 1

_DATETIME_FIELDS = ("expires_at", "last_sync_at", "created_at", "updated_at")
_TOKEN_FIELDS = ("access_token", "refresh_token", "expires_at", "scope")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass
class Credential:
    """One team's authorized connection to one provider account."""

    id: str
    team_id: str
    provider: str
    account_id: str
    access_token: str = field(repr=False)
    refresh_token: Optional[str] = field(default=None, repr=False)
    expires_at: Optional[datetime] = None
    scope: Optional[str] = None
    account_name: Optional[str] = None
    email: Optional[str] = None
    is_active: bool = True
    last_sync_at: Optional[datetime] = None
    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    # Per-credential application credentials, used when no shared app credential exists
    client_id: Optional[str] = None
    client_secret: Optional[str] = field(default=None, repr=False)

    @property
    def needs_reconnection(self) -> bool:
        return self.error_message is not None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in _DATETIME_FIELDS:
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Credential":
        values = dict(data)
        for key in _DATETIME_FIELDS:
            if key in values:
                values[key] = _parse_datetime(values[key])
        for key in ("created_at", "updated_at"):
            if values.get(key) is None:
                values.pop(key, None)
        known = cls.__dataclass_fields__.keys()
        return cls(**{k: v for k, v in values.items() if k in known})


@dataclass
class AppCredential:
    """A team's own OAuth application registered for one provider."""

    team_id: str
    provider: str
    client_id: str
    client_secret: str = field(repr=False)
    redirect_uri: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.team_id, self.provider)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        data["updated_at"] = self.updated_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AppCredential":
        values = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        for key in ("created_at", "updated_at"):
            parsed = _parse_datetime(values.get(key))
            if parsed is None:
                values.pop(key, None)
            else:
                values[key] = parsed
        return cls(**values)


class InMemoryCredentialBackend:
    """Process-local backend. All writes are serialized by one asyncio lock."""

    def __init__(self):
        self._records: Dict[str, Credential] = {}
        self._apps: Dict[Tuple[str, str], AppCredential] = {}
        self._lock = asyncio.Lock()

    async def _load(self) -> None:
        return None

    async def _commit(
        self,
        records: Dict[str, Credential],
        apps: Optional[Dict[Tuple[str, str], AppCredential]] = None,
    ) -> None:
        self._records = records
        if apps is not None:
            self._apps = apps

    async def select(
        self, predicate: Optional[Callable[[Credential], bool]] = None
    ) -> List[Credential]:
        async with self._lock:
            await self._load()
            return [
                replace(c) for c in self._records.values() if predicate is None or predicate(c)
            ]

    async def get(self, credential_id: str) -> Optional[Credential]:
        async with self._lock:
            await self._load()
            record = self._records.get(credential_id)
            return replace(record) if record else None

    async def supersede_and_insert(self, credential: Credential) -> List[str]:
        """
        Deactivate every active record sharing (team_id, provider, account_id)
        with `credential`, then insert it. Both steps commit together.

        Returns:
            Ids of the records that were deactivated.
        """
        async with self._lock:
            await self._load()
            records = dict(self._records)
            superseded = []
            for record_id, record in records.items():
                if (
                    record.is_active
                    and record.team_id == credential.team_id
                    and record.provider == credential.provider
                    and record.account_id == credential.account_id
                ):
                    records[record_id] = replace(
                        record, is_active=False, updated_at=credential.created_at
                    )
                    superseded.append(record_id)
            records[credential.id] = replace(credential)
            await self._commit(records)
            return superseded

    async def update(self, credential_id: str, **changes: Any) -> Credential:
        async with self._lock:
            await self._load()
            current = self._records.get(credential_id)
            if current is None:
                raise CredentialNotFoundError(credential_id)
            updated = replace(current, **changes)
            records = dict(self._records)
            records[credential_id] = updated
            await self._commit(records)
            return replace(updated)

    async def delete(self, credential_id: str) -> bool:
        async with self._lock:
            await self._load()
            if credential_id not in self._records:
                return False
            records = dict(self._records)
            del records[credential_id]
            await self._commit(records)
            return True

    async def get_app(self, team_id: str, provider: str) -> Optional[AppCredential]:
        async with self._lock:
            await self._load()
            app = self._apps.get((team_id, provider))
            return replace(app) if app else None

    async def put_app(self, app: AppCredential) -> AppCredential:
        """Insert or replace the team's application credential for a provider."""
        async with self._lock:
            await self._load()
            existing = self._apps.get(app.key)
            if existing is not None:
                app = replace(app, created_at=existing.created_at)
            apps = dict(self._apps)
            apps[app.key] = app
            await self._commit(dict(self._records), apps)
            return replace(app)


class JsonFileCredentialBackend(InMemoryCredentialBackend):
    """
    JSON-file backend.

    The whole document is written atomically (temp file + rename) before
    the in-memory view is swapped, so a failed write keeps both the file and
    the cache at the previous state. A file that exists but cannot be parsed
    is never overwritten: every operation raises CredentialStoreError until
    it is repaired or moved aside.
    """

    def __init__(self, file_path: Union[str, Path]):
        super().__init__()
        self.file_path = Path(file_path)
        self._loaded = False

    def _unreadable(self, reason: str) -> CredentialStoreError:
        lib_logger.error(
            f"Credential store '{self.file_path}' is unreadable ({reason}); "
            "refusing to load or overwrite it"
        )
        return CredentialStoreError(
            f"Credential store '{self.file_path.name}' is unreadable: {reason}"
        )

    async def _load(self) -> None:
        if self._loaded:
            return

        exists = await asyncio.to_thread(self.file_path.exists)
        data = await asyncio.to_thread(safe_read_json, self.file_path, lib_logger, None)
        if not exists:
            data = {}
        elif not isinstance(data, dict):
            raise self._unreadable("invalid JSON document")

        records: Dict[str, Credential] = {}
        apps: Dict[Tuple[str, str], AppCredential] = {}
        try:
            for item in data.get("credentials", []):
                credential = Credential.from_dict(item)
                records[credential.id] = credential
            for item in data.get("app_credentials", []):
                app = AppCredential.from_dict(item)
                apps[app.key] = app
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise self._unreadable(f"malformed record: {e}") from e

        self._records = records
        self._apps = apps
        self._loaded = True
        lib_logger.debug(
            f"Loaded {len(records)} credential(s) and {len(apps)} app credential(s) "
            f"from '{self.file_path.name}'"
        )

    async def _commit(
        self,
        records: Dict[str, Credential],
        apps: Optional[Dict[Tuple[str, str], AppCredential]] = None,
    ) -> None:
        apps = self._apps if apps is None else apps
        payload = {
            "schema_version": STORE_SCHEMA_VERSION,
            "credentials": [c.to_dict() for c in records.values()],
            "app_credentials": [a.to_dict() for a in apps.values()],
        }
        written = await asyncio.to_thread(
            safe_write_json, self.file_path, payload, lib_logger, True
        )
        if not written:
            raise CredentialStoreError(
                f"Failed to persist credentials to '{self.file_path.name}'"
            )
        self._records = records
        self._apps = apps


class CredentialStore:
    """Team- and provider-scoped queries and lifecycle transitions over a backend."""

    def __init__(
        self,
        backend: Optional[InMemoryCredentialBackend] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.backend = backend if backend is not None else InMemoryCredentialBackend()
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    # =========================================================================
    # Queries
    # =========================================================================

    async def list_active(
        self, team_id: str, provider: Optional[str] = None
    ) -> List[Credential]:
        """Active credentials for a team, newest first."""
        provider_key = normalize_provider(provider) if provider else None
        records = await self.backend.select(
            lambda c: c.is_active
            and c.team_id == team_id
            and (provider_key is None or c.provider == provider_key)
        )
        return sorted(records, key=lambda c: c.created_at, reverse=True)

    async def get_one(
        self, team_id: str, provider: str, account_id: Optional[str] = None
    ) -> Optional[Credential]:
        for credential in await self.list_active(team_id, provider):
            if account_id is None or credential.account_id == account_id:
                return credential
        return None

    async def get_by_id(self, credential_id: str) -> Optional[Credential]:
        return await self.backend.get(credential_id)

    def is_expired(self, credential: Credential) -> bool:
        if credential.expires_at is None:
            return False
        return credential.expires_at <= self.now()

    def needs_refresh(self, credential: Credential) -> bool:
        if credential.expires_at is None:
            return False
        buffer = timedelta(seconds=REFRESH_EXPIRY_BUFFER_SECONDS)
        return credential.expires_at <= self.now() + buffer

    async def list_needing_refresh(self, team_id: Optional[str] = None) -> List[Credential]:
        """Active credentials inside the refresh window. team_id=None scans every team."""
        records = await self.backend.select(
            lambda c: c.is_active and (team_id is None or c.team_id == team_id)
        )
        return [c for c in records if self.needs_refresh(c)]

    # =========================================================================
    # Mutations
    # =========================================================================

    async def upsert_new(
        self, team_id: str, provider: str, token_data: Mapping[str, Any]
    ) -> Credential:
        """
        Insert a new active credential, superseding any active record for the
        same (team_id, provider, account_id).

        Args:
            team_id: Owning team
            provider: Provider key
            token_data: access_token and account_id are required; optional keys
                are refresh_token, expires_at (datetime) or expires_in (seconds),
                scope, account_name, email, client_id, client_secret.
        """
        if not token_data.get("access_token"):
            raise ValueError("token_data requires an access_token")
        if not token_data.get("account_id"):
            raise ValueError("token_data requires an account_id")

        now = self.now()
        expires_at = _parse_datetime(token_data.get("expires_at"))
        if expires_at is None and token_data.get("expires_in") is not None:
            expires_at = now + timedelta(seconds=int(token_data["expires_in"]))

        credential = Credential(
            id=str(uuid.uuid4()),
            team_id=team_id,
            provider=normalize_provider(provider),
            account_id=str(token_data["account_id"]),
            access_token=token_data["access_token"],
            refresh_token=token_data.get("refresh_token"),
            expires_at=expires_at,
            scope=token_data.get("scope"),
            account_name=token_data.get("account_name"),
            email=token_data.get("email"),
            client_id=token_data.get("client_id"),
            client_secret=token_data.get("client_secret"),
            created_at=now,
            updated_at=now,
        )
        superseded = await self.backend.supersede_and_insert(credential)
        if superseded:
            lib_logger.info(
                f"Superseded {len(superseded)} '{credential.provider}' credential(s) "
                f"for account {credential.account_id} (team {team_id})"
            )
        lib_logger.info(f"Stored new '{credential.provider}' credential {credential.id} (team {team_id})")
        return credential

    async def update_tokens(
        self, credential_id: str, tokens: Mapping[str, Any]
    ) -> Credential:
        """
        Apply refreshed tokens and clear any recorded error.

        Only keys present in `tokens` among access_token, refresh_token,
        expires_at and scope are written.
        """
        changes = {k: tokens[k] for k in _TOKEN_FIELDS if k in tokens}
        if "expires_at" in changes:
            changes["expires_at"] = _parse_datetime(changes["expires_at"])
        return await self.backend.update(
            credential_id, **changes, error_message=None, updated_at=self.now()
        )

    async def mark_failed(self, credential_id: str, message: str) -> Credential:
        """Record a failure. The credential stays active so it can be reconnected."""
        return await self.backend.update(
            credential_id, error_message=message, updated_at=self.now()
        )

    async def touch_last_sync(self, credential_id: str) -> Credential:
        now = self.now()
        return await self.backend.update(
            credential_id, last_sync_at=now, error_message=None, updated_at=now
        )

    async def deactivate(self, credential_id: str) -> Credential:
        return await self.backend.update(
            credential_id, is_active=False, updated_at=self.now()
        )

    async def delete(self, credential_id: str) -> bool:
        return await self.backend.delete(credential_id)

    # =========================================================================
    # Team application credentials
    # =========================================================================

    async def save_app_credentials(
        self,
        team_id: str,
        provider: str,
        client_id: str,
        client_secret: str,
        redirect_uri: Optional[str] = None,
    ) -> AppCredential:
        """
        Register (or replace) the OAuth application a team connects a
        provider with.

        Raises:
            UnsupportedProviderError: unknown provider or one without OAuth.
            ValueError: empty client id or secret.
        """
        config = get_provider_config(provider)
        if not config.is_oauth_supported:
            raise UnsupportedProviderError(
                config.name, f"{config.display_name} does not support OAuth connections"
            )
        if not client_id or not client_secret:
            raise ValueError("client_id and client_secret are required")

        now = self.now()
        app = await self.backend.put_app(
            AppCredential(
                team_id=team_id,
                provider=config.name,
                client_id=client_id,
                client_secret=client_secret,
                redirect_uri=redirect_uri or None,
                created_at=now,
                updated_at=now,
            )
        )
        lib_logger.info(f"Saved '{config.name}' application credentials for team {team_id}")
        return app

    async def get_app_credentials(
        self, team_id: str, provider: str
    ) -> Optional[AppCredential]:
        return await self.backend.get_app(team_id, normalize_provider(provider))


def create_credential_store(path: Optional[Union[str, Path]] = None) -> CredentialStore:
    """File-backed store when a path is given, in-memory otherwise."""
    if path:
        return CredentialStore(JsonFileCredentialBackend(path))
    return CredentialStore(InMemoryCredentialBackend())
