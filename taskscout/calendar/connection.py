"""Per-owner calendar connection — OAuth handshake, status, disconnect.

This is the surface the API and CLI talk to. It composes the credential
manager, sync engine, webhook manager and meeting-prep automation.
"""

from __future__ import annotations

import base64
import json
from datetime import datetime, timedelta

import structlog

from taskscout.calendar.credentials import CredentialManager
from taskscout.calendar.google import GoogleCalendarClient
from taskscout.calendar.meeting_prep import MeetingPrepAutomation
from taskscout.calendar.sync import CalendarSyncEngine
from taskscout.calendar.webhooks import WebhookManager
from taskscout.errors import InputError, WebhookRegistrationError
from taskscout.models.calendar import CalendarEvent, ConnectionStatus, MeetingPrepEntry, SyncReport
from taskscout.storage.base import Storage
from taskscout.utils.clock import now_utc

logger = structlog.get_logger().bind(component="calendar.connection")


def encode_state(owner: str) -> str:
    return base64.urlsafe_b64encode(json.dumps({"owner": owner}).encode()).decode()


def decode_state(state: str) -> str:
    """Owner id from an OAuth ``state`` parameter."""
    try:
        padded = state + "=" * (-len(state) % 4)
        owner = json.loads(base64.urlsafe_b64decode(padded.encode()))["owner"]
    except (ValueError, KeyError, TypeError) as exc:
        raise InputError("INVALID_STATE", "OAuth state parameter is malformed") from exc
    if not isinstance(owner, str) or not owner:
        raise InputError("INVALID_STATE", "OAuth state parameter has no owner")
    return owner


class CalendarConnection:
    def __init__(
        self,
        storage: Storage,
        client: GoogleCalendarClient,
        credentials: CredentialManager,
        sync_engine: CalendarSyncEngine,
        webhooks: WebhookManager,
        meeting_prep: MeetingPrepAutomation,
    ) -> None:
        self._storage = storage
        self._client = client
        self.credentials = credentials
        self.sync_engine = sync_engine
        self.webhooks = webhooks
        self.meeting_prep = meeting_prep

    def authorization_url(self, owner: str) -> str:
        if not owner:
            raise InputError("MISSING_FIELD", "owner is required")
        return self._client.authorization_url(encode_state(owner))

    async def complete_oauth(self, code: str, state: str) -> SyncReport:
        """Exchange the code, open a push channel, run a full sync and a prep sweep."""
        if not code:
            raise InputError("MISSING_FIELD", "code is required")
        owner = decode_state(state)

        grant = await self._client.exchange_code(code)
        await self.credentials.store_grant(owner, grant)

        try:
            await self.webhooks.register(owner)
        except WebhookRegistrationError as exc:
            # Still usable without push; the periodic sync covers it.
            logger.warning("webhook_registration_skipped", owner=owner, error=str(exc))

        report = await self.sync_engine.full_sync(owner)
        await self.meeting_prep.run_for_owner(owner)
        logger.info("calendar_connected", owner=owner, events=report.upserted)
        return report

    async def manual_sync(self, owner: str) -> SyncReport:
        report = await self.sync_engine.sync(owner)
        await self.meeting_prep.run_for_owner(owner)
        return report

    async def status(self, owner: str) -> ConnectionStatus:
        credential = await self._storage.credentials.get(owner)
        subscription = await self._storage.webhooks.get(owner)
        return ConnectionStatus(
            owner=owner,
            connected=credential is not None,
            last_sync=await self._storage.events.last_synced_at(owner),
            webhook_expiry=subscription.expiration if subscription else None,
            token_expiry=credential.expiry if credential else None,
        )

    async def disconnect(self, owner: str) -> None:
        """Stop channels (best effort), then drop credential and subscriptions. Events stay."""
        stopped = await self.webhooks.stop_all_for_owner(owner)
        await self._storage.webhooks.delete_for_owner(owner)
        await self.credentials.delete(owner)
        logger.info("calendar_disconnected", owner=owner, channels_stopped=stopped)

    async def list_events(
        self,
        owner: str,
        start: datetime | None = None,
        end: datetime | None = None,
        is_meeting: bool | None = None,
        status: str | None = None,
    ) -> list[CalendarEvent]:
        return await self._storage.events.list(owner, start, end, is_meeting, status)

    async def meeting_prep_overview(self, owner: str, days: int = 2) -> list[MeetingPrepEntry]:
        """Upcoming meetings with their prep task and research progress."""
        now = now_utc()
        events = await self._storage.events.list(
            owner, start=now, end=now + timedelta(days=days), is_meeting=True
        )
        entries = []
        for event in events:
            if event.cancelled:
                continue
            entry = MeetingPrepEntry(event=event, prep_task_id=event.prep_task_id)
            if event.prep_task_id:
                task = await self._storage.tasks.get(event.prep_task_id)
                tracking = await self._storage.research.get_tracking(event.prep_task_id)
                entry.prep_task_title = task.title if task else None
                entry.research_status = tracking.status.value if tracking else None
                entry.has_result = await self._storage.research.latest_result(event.prep_task_id) is not None
            entries.append(entry)
        return entries
