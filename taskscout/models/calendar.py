"""Calendar mirror, OAuth credential and push-channel records."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from taskscout.utils.clock import now_utc


class Attendee(BaseModel):
    email: str
    display_name: str | None = None
    response_status: str | None = None
    organizer: bool = False

    @property
    def domain(self) -> str:
        return self.email.rpartition("@")[2].lower()


class CalendarEvent(BaseModel):
    """Local mirror of one remote event, keyed by (owner, calendar_id, external_event_id)."""

    id: str
    owner: str
    calendar_id: str = "primary"
    external_event_id: str
    summary: str = ""
    description: str = ""
    start_time: datetime
    end_time: datetime
    location: str = ""
    attendees: list[Attendee] = Field(default_factory=list)
    organizer: str | None = None
    conference_data: dict[str, Any] | None = None
    hangout_link: str | None = None
    status: str = "confirmed"
    is_meeting: bool = False
    prep_task_created: bool = False
    prep_task_id: str | None = None
    recurring_event_id: str | None = None
    synced_at: datetime = Field(default_factory=now_utc)

    @property
    def cancelled(self) -> bool:
        return self.status == "cancelled"

    @property
    def meeting_link(self) -> str | None:
        if self.hangout_link:
            return self.hangout_link
        for entry in (self.conference_data or {}).get("entryPoints", []):
            if entry.get("uri"):
                return entry["uri"]
        return None


class OAuthCredential(BaseModel):
    """Decrypted credential as used in memory. Storage holds ciphertext."""

    owner: str
    provider: str = "google"
    access_token: str
    refresh_token: str
    expiry: datetime
    scope: str = ""


class WebhookSubscription(BaseModel):
    owner: str
    calendar_id: str = "primary"
    channel_id: str
    resource_id: str
    expiration: datetime
    sync_cursor: str | None = None
    created_at: datetime = Field(default_factory=now_utc)


class SyncReport(BaseModel):
    owner: str
    calendar_id: str = "primary"
    full: bool
    upserted: int = 0
    cancelled: int = 0
    skipped: int = 0
    cursor_saved: bool = False

    @property
    def total(self) -> int:
        return self.upserted + self.cancelled


class ConnectionStatus(BaseModel):
    owner: str
    connected: bool
    last_sync: datetime | None = None
    webhook_expiry: datetime | None = None
    token_expiry: datetime | None = None


class MeetingPrepEntry(BaseModel):
    """Upcoming meeting joined with its prep task and research progress."""

    event: CalendarEvent
    prep_task_id: str | None = None
    prep_task_title: str | None = None
    research_status: str | None = None
    has_result: bool = False
