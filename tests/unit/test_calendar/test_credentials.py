"""CredentialManager: encryption at rest, refresh buffer, 401 retry, revocation."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from taskscout.calendar.google import TokenGrant
from taskscout.errors import (
    CalendarRequestError,
    CredentialMissingError,
    CredentialRevokedError,
    TokenRefreshError,
)


def _token_requests(api):
    return [r for r in api.requests if r.url.host == "oauth2.googleapis.com"]


@pytest.mark.asyncio
async def test_tokens_are_encrypted_in_storage(calendar, storage):
    await calendar.connect()
    stored = await storage.credentials.get("alice")
    assert stored.access_token != "stored-alice"
    assert stored.refresh_token != "refresh-token"
    assert await calendar.credentials.get_valid_access_token("alice") == "stored-alice"


@pytest.mark.asyncio
async def test_fresh_token_is_not_refreshed(calendar):
    await calendar.connect(expires_in=timedelta(hours=1))
    await calendar.credentials.get_valid_access_token("alice")
    assert _token_requests(calendar.api) == []


@pytest.mark.asyncio
async def test_token_inside_buffer_is_refreshed(calendar):
    await calendar.connect(expires_in=timedelta(minutes=4))
    token = await calendar.credentials.get_valid_access_token("alice")
    assert token == "access-1"
    assert len(_token_requests(calendar.api)) == 1
    # The refreshed token is persisted, so the next call reuses it
    assert await calendar.credentials.get_valid_access_token("alice") == "access-1"
    assert len(_token_requests(calendar.api)) == 1


@pytest.mark.asyncio
async def test_missing_credential_raises(calendar):
    with pytest.raises(CredentialMissingError):
        await calendar.credentials.get_valid_access_token("nobody")


@pytest.mark.asyncio
async def test_grant_without_refresh_token_keeps_existing(calendar):
    await calendar.connect()
    expiry = datetime.now(timezone.utc) + timedelta(hours=2)
    await calendar.credentials.store_grant("alice", TokenGrant(access_token="new", expiry=expiry))
    await calendar.credentials.get_valid_access_token("alice", force_refresh=True)
    form = _token_requests(calendar.api)[-1].content.decode()
    assert "refresh_token=refresh-token" in form


@pytest.mark.asyncio
async def test_first_grant_without_refresh_token_is_rejected(calendar):
    expiry = datetime.now(timezone.utc) + timedelta(hours=1)
    with pytest.raises(CredentialMissingError):
        await calendar.credentials.store_grant("alice", TokenGrant(access_token="a", expiry=expiry))


@pytest.mark.asyncio
async def test_invalid_grant_becomes_revoked(calendar):
    await calendar.connect(expires_in=timedelta(minutes=1))
    calendar.api.refresh_error = "invalid_grant"
    with pytest.raises(CredentialRevokedError):
        await calendar.credentials.get_valid_access_token("alice")


@pytest.mark.asyncio
async def test_transient_refresh_error_is_not_revocation(calendar):
    await calendar.connect(expires_in=timedelta(minutes=1))
    calendar.api.refresh_error = "temporarily_unavailable"
    with pytest.raises(TokenRefreshError) as exc_info:
        await calendar.credentials.get_valid_access_token("alice")
    assert not isinstance(exc_info.value, CredentialRevokedError)


# ─────────────────────────────────────────────────────────────────────────────
# call_with_token
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_call_with_token_retries_once_after_401(calendar):
    await calendar.connect()
    seen: list[str] = []

    async def call(token: str) -> str:
        seen.append(token)
        if token == "stored-alice":
            raise CalendarRequestError(401, "Invalid Credentials")
        return "ok"

    assert await calendar.credentials.call_with_token("alice", call) == "ok"
    assert seen == ["stored-alice", "access-1"]


@pytest.mark.asyncio
async def test_call_with_token_gives_up_after_second_401(calendar):
    await calendar.connect()

    async def call(token: str) -> str:
        raise CalendarRequestError(401, "Invalid Credentials")

    with pytest.raises(CalendarRequestError):
        await calendar.credentials.call_with_token("alice", call)
    assert len(_token_requests(calendar.api)) == 1


@pytest.mark.asyncio
async def test_non_auth_errors_are_not_retried(calendar):
    await calendar.connect()
    calls = 0

    async def call(token: str) -> str:
        nonlocal calls
        calls += 1
        raise CalendarRequestError(500, "backend error")

    with pytest.raises(CalendarRequestError):
        await calendar.credentials.call_with_token("alice", call)
    assert calls == 1


@pytest.mark.asyncio
async def test_owners_and_delete(calendar):
    await calendar.connect("alice")
    await calendar.connect("bob")
    assert await calendar.credentials.owners() == ["alice", "bob"]
    assert await calendar.credentials.delete("alice") is True
    assert await calendar.credentials.owners() == ["bob"]
    assert await calendar.credentials.token_expiry("alice") is None
