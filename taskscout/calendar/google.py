"""Google Calendar REST client (httpx).

Stateless with respect to credentials: every call takes the access token
to use. Token lifetime and storage belong to ``CredentialManager``.

Errors:
    CalendarRequestError   — non-2xx from the Calendar API (status_code kept)
    SyncCursorExpiredError — 410 Gone on a syncToken request
    TokenRefreshError      — token endpoint refused a grant (revoked=True on invalid_grant)
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any
from urllib.parse import quote, urlencode

import httpx
import structlog
from pydantic import BaseModel

from taskscout.errors import CalendarRequestError, SyncCursorExpiredError, TokenRefreshError
from taskscout.utils.clock import now_utc, to_rfc3339

logger = structlog.get_logger().bind(component="calendar.google")

GOOGLE_OAUTH_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
CALENDAR_READONLY_SCOPE = "https://www.googleapis.com/auth/calendar.readonly"

_MAX_PAGES = 50


class TokenGrant(BaseModel):
    access_token: str
    refresh_token: str | None = None
    expiry: datetime
    scope: str = ""


class EventPage(BaseModel):
    """All pages of one events.list call, flattened."""

    items: list[dict[str, Any]]
    next_sync_token: str | None = None


class WatchResponse(BaseModel):
    channel_id: str
    resource_id: str
    expiration: datetime


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, dict):
            return str(err.get("message") or err.get("status") or err)[:200]
        if isinstance(err, str):
            desc = payload.get("error_description")
            return f"{err}: {desc}" if desc else err
    return str(payload)[:200]


def _grant_from_payload(payload: Any, fallback_refresh: str | None = None) -> TokenGrant:
    if not isinstance(payload, dict) or not str(payload.get("access_token") or "").strip():
        raise TokenRefreshError("token response is missing a non-empty access_token")
    try:
        expires_in = int(payload.get("expires_in") or 3600)
    except (TypeError, ValueError):
        expires_in = 3600
    return TokenGrant(
        access_token=payload["access_token"].strip(),
        refresh_token=payload.get("refresh_token") or fallback_refresh,
        expiry=now_utc() + timedelta(seconds=expires_in),
        scope=payload.get("scope") or CALENDAR_READONLY_SCOPE,
    )


class GoogleCalendarClient:
    """OAuth + Calendar v3 endpoints used by the sync engine and webhook manager."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    # ── OAuth ─────────────────────────────────────────────────────────────

    def authorization_url(self, state: str) -> str:
        """Consent URL. Offline access + forced consent so Google issues a refresh token."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": CALENDAR_READONLY_SCOPE,
            "access_type": "offline",
            "prompt": "consent",
            "state": state,
        }
        return f"{GOOGLE_OAUTH_AUTH_URL}?{urlencode(params)}"

    async def _token_request(self, data: dict[str, str]) -> dict[str, Any]:
        client = await self._get_client()
        try:
            response = await client.post(
                GOOGLE_OAUTH_TOKEN_URL, data=data, headers={"Accept": "application/json"}
            )
        except httpx.HTTPError as exc:
            raise TokenRefreshError(f"token request failed: {exc}") from exc

        if response.status_code >= 300:
            message = _error_message(response)
            revoked = response.status_code in (400, 401) and "invalid_grant" in message
            raise TokenRefreshError(
                f"token endpoint returned {response.status_code}: {message}", revoked=revoked
            )
        try:
            return response.json()
        except ValueError as exc:
            raise TokenRefreshError("token endpoint returned invalid JSON") from exc

    async def exchange_code(self, code: str) -> TokenGrant:
        payload = await self._token_request(
            {
                "code": code,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": self.redirect_uri,
                "grant_type": "authorization_code",
            }
        )
        grant = _grant_from_payload(payload)
        if not grant.refresh_token:
            raise TokenRefreshError("Google did not return a refresh token; re-consent required")
        return grant

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        payload = await self._token_request(
            {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            }
        )
        return _grant_from_payload(payload, fallback_refresh=refresh_token)

    # ── Calendar API ──────────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        access_token: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> httpx.Response:
        client = await self._get_client()
        try:
            return await client.request(
                method,
                f"{GOOGLE_CALENDAR_API_BASE_URL}{path}",
                params=params,
                json=json_body,
                headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise CalendarRequestError(0, f"{type(exc).__name__}: {exc}") from exc

    async def list_events(
        self,
        access_token: str,
        calendar_id: str = "primary",
        *,
        sync_token: str | None = None,
        time_min: datetime | None = None,
        time_max: datetime | None = None,
    ) -> EventPage:
        """Fetch all pages of events.

        With ``sync_token`` only changes since that cursor are returned
        (cancelled events included). Otherwise the time window is used.
        """
        params: dict[str, Any] = {"singleEvents": "true", "conferenceDataVersion": 1, "maxResults": 250}
        if sync_token:
            params["syncToken"] = sync_token
            params["showDeleted"] = "true"
        else:
            start = time_min or now_utc()
            params["timeMin"] = to_rfc3339(start)
            params["timeMax"] = to_rfc3339(time_max or start + timedelta(days=30))

        path = f"/calendars/{quote(calendar_id, safe='')}/events"
        items: list[dict[str, Any]] = []
        next_sync_token: str | None = None
        page_token: str | None = None

        for _ in range(_MAX_PAGES):
            if page_token:
                params["pageToken"] = page_token
            response = await self._request("GET", path, access_token, params=params)
            if response.status_code == 410:
                raise SyncCursorExpiredError(f"sync token expired for calendar {calendar_id!r}")
            if response.status_code >= 300:
                raise CalendarRequestError(response.status_code, _error_message(response))

            payload = response.json()
            items.extend(i for i in payload.get("items") or [] if isinstance(i, dict))
            next_sync_token = payload.get("nextSyncToken") or next_sync_token
            page_token = payload.get("nextPageToken")
            if not page_token:
                break
        else:
            logger.warning("list_events_page_limit", calendar_id=calendar_id, pages=_MAX_PAGES)

        return EventPage(items=items, next_sync_token=next_sync_token)

    async def watch(
        self,
        access_token: str,
        calendar_id: str,
        channel_id: str,
        address: str,
        *,
        channel_token: str | None = None,
    ) -> WatchResponse:
        """Open a push channel (``events.watch``, type web_hook)."""
        body: dict[str, Any] = {"id": channel_id, "type": "web_hook", "address": address}
        if channel_token:
            body["token"] = channel_token
        response = await self._request(
            "POST", f"/calendars/{quote(calendar_id, safe='')}/events/watch", access_token, json_body=body
        )
        if response.status_code >= 300:
            raise CalendarRequestError(response.status_code, _error_message(response))

        payload = response.json()
        # Google reports expiration as epoch milliseconds in a string.
        expiration_ms = int(payload.get("expiration") or 0)
        return WatchResponse(
            channel_id=payload.get("id") or channel_id,
            resource_id=payload.get("resourceId") or "",
            expiration=datetime.fromtimestamp(expiration_ms / 1000, tz=now_utc().tzinfo),
        )

    async def stop_channel(self, access_token: str, channel_id: str, resource_id: str) -> None:
        response = await self._request(
            "POST", "/channels/stop", access_token, json_body={"id": channel_id, "resourceId": resource_id}
        )
        if response.status_code >= 300:
            raise CalendarRequestError(response.status_code, _error_message(response))
