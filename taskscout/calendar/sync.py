"""Calendar sync engine — mirror remote events into local storage.

Full sync lists the window [now, now + sync_window_days]. Incremental sync
replays changes since the subscription's cursor; a rejected cursor (410)
falls back to a full sync. Cancelled events are marked, never deleted.
All-day events (no ``start.dateTime``) are skipped.
"""

from __future__ import annotations

import re
import uuid
from datetime import timedelta
from typing import Any

import structlog

from taskscout.calendar.credentials import CredentialManager
from taskscout.calendar.google import EventPage, GoogleCalendarClient
from taskscout.errors import SyncCursorExpiredError
from taskscout.models.calendar import Attendee, CalendarEvent, SyncReport
from taskscout.storage.base import Storage
from taskscout.utils.clock import now_utc, parse_rfc3339

logger = structlog.get_logger().bind(component="calendar.sync")

_VIDEO_LOCATION_RE = re.compile(
    r"zoom\.us|meet\.google\.com|teams\.microsoft\.com|webex\.com", re.IGNORECASE
)


def _domain(email: str | None) -> str:
    return (email or "").rpartition("@")[2].lower()


def is_meeting_event(raw: dict[str, Any]) -> bool:
    """A live event with a video link, or attendees outside the organizer's domain."""
    if raw.get("status") == "cancelled":
        return False
    if (raw.get("conferenceData") or {}).get("entryPoints"):
        return True
    if raw.get("hangoutLink"):
        return True
    if _VIDEO_LOCATION_RE.search(raw.get("location") or ""):
        return True

    organizer_domain = _domain((raw.get("organizer") or {}).get("email"))
    if not organizer_domain:
        return False
    return any(
        _domain(a.get("email")) not in ("", organizer_domain)
        for a in raw.get("attendees") or []
    )


def map_event(owner: str, calendar_id: str, raw: dict[str, Any]) -> CalendarEvent | None:
    """Map a Calendar API event resource. Returns None for all-day events."""
    start = (raw.get("start") or {}).get("dateTime")
    end = (raw.get("end") or {}).get("dateTime")
    if not start:
        return None

    start_time = parse_rfc3339(start)
    attendees = [
        Attendee(
            email=a["email"],
            display_name=a.get("displayName"),
            response_status=a.get("responseStatus"),
            organizer=bool(a.get("organizer")),
        )
        for a in raw.get("attendees") or []
        if a.get("email")
    ]
    return CalendarEvent(
        id=str(uuid.uuid4()),
        owner=owner,
        calendar_id=calendar_id,
        external_event_id=raw["id"],
        summary=raw.get("summary") or "Untitled Event",
        description=raw.get("description") or "",
        start_time=start_time,
        end_time=parse_rfc3339(end) if end else start_time,
        location=raw.get("location") or "",
        attendees=attendees,
        organizer=(raw.get("organizer") or {}).get("email"),
        conference_data=raw.get("conferenceData"),
        hangout_link=raw.get("hangoutLink"),
        status=raw.get("status") or "confirmed",
        is_meeting=is_meeting_event(raw),
        recurring_event_id=raw.get("recurringEventId"),
        synced_at=now_utc(),
    )


class CalendarSyncEngine:
    def __init__(
        self,
        storage: Storage,
        client: GoogleCalendarClient,
        credentials: CredentialManager,
        *,
        window_days: int = 30,
    ) -> None:
        self._storage = storage
        self._client = client
        self._credentials = credentials
        self.window_days = window_days

    async def _apply(self, owner: str, calendar_id: str, page: EventPage, report: SyncReport) -> None:
        for raw in page.items:
            if not raw.get("id"):
                report.skipped += 1
                continue
            if raw.get("status") == "cancelled":
                if await self._storage.events.mark_cancelled(owner, calendar_id, raw["id"]):
                    report.cancelled += 1
                else:
                    report.skipped += 1
                continue
            event = map_event(owner, calendar_id, raw)
            if event is None:
                report.skipped += 1
                continue
            await self._storage.events.upsert(event)
            report.upserted += 1

        # The cursor lives on the push subscription; without one there is nothing to resume.
        if page.next_sync_token:
            report.cursor_saved = await self._storage.webhooks.update_cursor(
                owner, calendar_id, page.next_sync_token
            )

    async def full_sync(self, owner: str, calendar_id: str = "primary") -> SyncReport:
        start = now_utc()
        end = start + timedelta(days=self.window_days)
        page = await self._credentials.call_with_token(
            owner,
            lambda token: self._client.list_events(token, calendar_id, time_min=start, time_max=end),
        )
        report = SyncReport(owner=owner, calendar_id=calendar_id, full=True)
        await self._apply(owner, calendar_id, page, report)
        logger.info(
            "calendar_full_sync",
            owner=owner,
            calendar_id=calendar_id,
            upserted=report.upserted,
            cancelled=report.cancelled,
            skipped=report.skipped,
        )
        return report

    async def incremental_sync(self, owner: str, calendar_id: str = "primary") -> SyncReport:
        subscription = await self._storage.webhooks.get(owner, calendar_id)
        cursor = subscription.sync_cursor if subscription else None
        if not cursor:
            return await self.full_sync(owner, calendar_id)

        try:
            page = await self._credentials.call_with_token(
                owner, lambda token: self._client.list_events(token, calendar_id, sync_token=cursor)
            )
        except SyncCursorExpiredError:
            logger.info("sync_cursor_expired", owner=owner, calendar_id=calendar_id)
            await self._storage.webhooks.update_cursor(owner, calendar_id, None)
            return await self.full_sync(owner, calendar_id)

        report = SyncReport(owner=owner, calendar_id=calendar_id, full=False)
        await self._apply(owner, calendar_id, page, report)
        logger.info(
            "calendar_incremental_sync",
            owner=owner,
            calendar_id=calendar_id,
            upserted=report.upserted,
            cancelled=report.cancelled,
        )
        return report

    async def sync(self, owner: str, calendar_id: str = "primary") -> SyncReport:
        """Incremental when a cursor exists, full otherwise."""
        return await self.incremental_sync(owner, calendar_id)
