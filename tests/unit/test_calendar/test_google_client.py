"""GoogleCalendarClient against an httpx MockTransport."""

from __future__ import annotations

from datetime import datetime, timezone
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from taskscout.calendar.google import CALENDAR_READONLY_SCOPE, GoogleCalendarClient
from taskscout.errors import CalendarRequestError, SyncCursorExpiredError, TokenRefreshError


def _client(handler) -> GoogleCalendarClient:
    return GoogleCalendarClient("cid", "secret", "http://localhost/cb", transport=httpx.MockTransport(handler))


# ─────────────────────────────────────────────────────────────────────────────
# 1. OAuth
# ─────────────────────────────────────────────────────────────────────────────

def test_authorization_url_requests_offline_consent():
    url = _client(lambda r: httpx.Response(200)).authorization_url("state-123")
    query = parse_qs(urlparse(url).query)
    assert query["access_type"] == ["offline"]
    assert query["prompt"] == ["consent"]
    assert query["scope"] == [CALENDAR_READONLY_SCOPE]
    assert query["state"] == ["state-123"]
    assert query["redirect_uri"] == ["http://localhost/cb"]


@pytest.mark.asyncio
async def test_exchange_code_returns_grant(google_api):
    client = _client(google_api.handler)
    grant = await client.exchange_code("auth-code")
    assert grant.access_token == "access-1"
    assert grant.refresh_token == "refresh-token"
    assert grant.expiry > datetime.now(timezone.utc)
    form = parse_qs(google_api.requests[0].content.decode())
    assert form["grant_type"] == ["authorization_code"]
    await client.close()


@pytest.mark.asyncio
async def test_exchange_without_refresh_token_is_rejected():
    client = _client(lambda r: httpx.Response(200, json={"access_token": "a", "expires_in": 3600}))
    with pytest.raises(TokenRefreshError):
        await client.exchange_code("auth-code")
    await client.close()


@pytest.mark.asyncio
async def test_refresh_keeps_refresh_token_when_omitted():
    client = _client(lambda r: httpx.Response(200, json={"access_token": "fresh", "expires_in": 60}))
    grant = await client.refresh_access_token("original-refresh")
    assert grant.access_token == "fresh"
    assert grant.refresh_token == "original-refresh"
    await client.close()


@pytest.mark.asyncio
async def test_invalid_grant_marks_revoked(google_api):
    google_api.refresh_error = "invalid_grant"
    client = _client(google_api.handler)
    with pytest.raises(TokenRefreshError) as exc_info:
        await client.refresh_access_token("dead")
    assert exc_info.value.revoked is True
    await client.close()


@pytest.mark.asyncio
async def test_other_token_errors_are_not_revocation():
    client = _client(lambda r: httpx.Response(500, text="upstream"))
    with pytest.raises(TokenRefreshError) as exc_info:
        await client.refresh_access_token("r")
    assert exc_info.value.revoked is False
    await client.close()


# ─────────────────────────────────────────────────────────────────────────────
# 2. Events
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_list_events_follows_pages():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.params.get("pageToken") == "p2":
            return httpx.Response(200, json={"items": [{"id": "b"}], "nextSyncToken": "cur"})
        return httpx.Response(200, json={"items": [{"id": "a"}], "nextPageToken": "p2"})

    client = _client(handler)
    page = await client.list_events("tok")
    assert [i["id"] for i in page.items] == ["a", "b"]
    assert page.next_sync_token == "cur"
    assert seen[0].headers["Authorization"] == "Bearer tok"
    assert "timeMin" in seen[0].url.params and "syncToken" not in seen[0].url.params
    await client.close()


@pytest.mark.asyncio
async def test_list_events_with_sync_token_shows_deleted(google_api):
    client = _client(google_api.handler)
    await client.list_events("tok", sync_token="cursor-0")
    params = google_api.calls("/events")[0].url.params
    assert params["syncToken"] == "cursor-0"
    assert params["showDeleted"] == "true"
    assert "timeMin" not in params
    await client.close()


@pytest.mark.asyncio
async def test_gone_sync_token_raises_cursor_expired(google_api):
    google_api.expired_tokens.add("old")
    client = _client(google_api.handler)
    with pytest.raises(SyncCursorExpiredError):
        await client.list_events("tok", sync_token="old")
    await client.close()


@pytest.mark.asyncio
async def test_api_error_keeps_status_code(google_api):
    google_api.reject_tokens.add("bad")
    client = _client(google_api.handler)
    with pytest.raises(CalendarRequestError) as exc_info:
        await client.list_events("bad")
    assert exc_info.value.status_code == 401
    await client.close()


@pytest.mark.asyncio
async def test_transport_error_becomes_calendar_error():
    def handler(request):
        raise httpx.ConnectError("no route", request=request)

    client = _client(handler)
    with pytest.raises(CalendarRequestError) as exc_info:
        await client.list_events("tok")
    assert exc_info.value.status_code == 0
    await client.close()


# ─────────────────────────────────────────────────────────────────────────────
# 3. Push channels
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_watch_parses_millisecond_expiration(google_api):
    client = _client(google_api.handler)
    watch = await client.watch("tok", "primary", "chan-1", "https://hooks.example.com/gcal")
    assert watch.channel_id == "chan-1"
    assert watch.resource_id.startswith("res-")
    assert abs((watch.expiration - google_api.watch_expiration).total_seconds()) < 1
    await client.close()


@pytest.mark.asyncio
async def test_stop_channel_error_raises(google_api):
    google_api.stop_status = 404
    client = _client(google_api.handler)
    with pytest.raises(CalendarRequestError):
        await client.stop_channel("tok", "chan-1", "res-1")
    await client.close()
