"""OAuth credential lifecycle for calendar owners.

Tokens are encrypted with ``TokenCipher`` before they reach storage and
decrypted on read. Access tokens are refreshed when they expire within
five minutes. A refresh rejected with invalid_grant means the user revoked
access; callers get ``CredentialRevokedError`` and should disconnect.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import TypeVar

import structlog

from taskscout.calendar.google import GoogleCalendarClient, TokenGrant
from taskscout.errors import (
    CalendarRequestError,
    CredentialMissingError,
    CredentialRevokedError,
    TokenRefreshError,
)
from taskscout.models.calendar import OAuthCredential
from taskscout.storage.base import Storage
from taskscout.utils.clock import ensure_aware, now_utc
from taskscout.utils.crypto import TokenCipher

logger = structlog.get_logger().bind(component="calendar.credentials")

T = TypeVar("T")

# Refresh this long before the recorded expiry.
REFRESH_BUFFER = timedelta(minutes=5)


class CredentialManager:
    def __init__(self, storage: Storage, client: GoogleCalendarClient, cipher: TokenCipher) -> None:
        self._storage = storage
        self._client = client
        self._cipher = cipher

    async def _load(self, owner: str) -> OAuthCredential:
        stored = await self._storage.credentials.get(owner)
        if stored is None:
            raise CredentialMissingError(owner)
        return stored.model_copy(
            update={
                "access_token": self._cipher.decrypt(stored.access_token),
                "refresh_token": self._cipher.decrypt(stored.refresh_token),
            }
        )

    async def _save(self, credential: OAuthCredential) -> None:
        await self._storage.credentials.upsert(
            credential.model_copy(
                update={
                    "access_token": self._cipher.encrypt(credential.access_token),
                    "refresh_token": self._cipher.encrypt(credential.refresh_token),
                }
            )
        )

    async def store_grant(self, owner: str, grant: TokenGrant) -> OAuthCredential:
        """Persist a fresh grant. Keeps the previous refresh token if Google omitted one."""
        refresh_token = grant.refresh_token
        if not refresh_token:
            existing = await self._storage.credentials.get(owner)
            if existing is None:
                raise CredentialMissingError(owner)
            refresh_token = self._cipher.decrypt(existing.refresh_token)

        credential = OAuthCredential(
            owner=owner,
            access_token=grant.access_token,
            refresh_token=refresh_token,
            expiry=grant.expiry,
            scope=grant.scope,
        )
        await self._save(credential)
        logger.info("credential_stored", owner=owner, expiry=credential.expiry.isoformat())
        return credential

    async def _refresh(self, credential: OAuthCredential) -> OAuthCredential:
        try:
            grant = await self._client.refresh_access_token(credential.refresh_token)
        except TokenRefreshError as exc:
            if exc.revoked:
                logger.warning("credential_revoked", owner=credential.owner)
                raise CredentialRevokedError(credential.owner) from exc
            raise
        # Concurrent refreshes may both write; the last one wins and both tokens are valid.
        refreshed = credential.model_copy(
            update={
                "access_token": grant.access_token,
                "refresh_token": grant.refresh_token or credential.refresh_token,
                "expiry": grant.expiry,
            }
        )
        await self._save(refreshed)
        logger.info("access_token_refreshed", owner=credential.owner)
        return refreshed

    async def get_valid_access_token(self, owner: str, *, force_refresh: bool = False) -> str:
        credential = await self._load(owner)
        if force_refresh or ensure_aware(credential.expiry) <= now_utc() + REFRESH_BUFFER:
            credential = await self._refresh(credential)
        return credential.access_token

    async def call_with_token(self, owner: str, fn: Callable[[str], Awaitable[T]]) -> T:
        """Run ``fn(access_token)``; on a 401 refresh once and retry."""
        token = await self.get_valid_access_token(owner)
        try:
            return await fn(token)
        except CalendarRequestError as exc:
            if exc.status_code != 401:
                raise
            logger.info("access_token_rejected_retrying", owner=owner)
        token = await self.get_valid_access_token(owner, force_refresh=True)
        return await fn(token)

    async def token_expiry(self, owner: str) -> datetime | None:
        stored = await self._storage.credentials.get(owner)
        return stored.expiry if stored else None

    async def delete(self, owner: str) -> bool:
        return await self._storage.credentials.delete(owner)

    async def owners(self) -> list[str]:
        return await self._storage.credentials.owners()
