"""Push channel lifecycle — register, renew, stop, and handle deliveries.

Google channels expire (typically after about a week); the scheduler renews
anything expiring within the renewal horizon. A delivery carries only the
channel id and a resource state, so the owner is resolved from the stored
subscription and the actual changes are pulled with an incremental sync.
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable
from datetime import timedelta

import structlog

from taskscout.calendar.credentials import CredentialManager
from taskscout.calendar.google import GoogleCalendarClient
from taskscout.calendar.sync import CalendarSyncEngine
from taskscout.errors import CalendarRequestError, WebhookRegistrationError
from taskscout.models.calendar import WebhookSubscription
from taskscout.storage.base import Storage
from taskscout.utils.clock import ensure_aware, now_utc
from taskscout.worker.queue import WorkQueue

logger = structlog.get_logger().bind(component="calendar.webhooks")

OwnerHook = Callable[[str], Awaitable[object]]


class WebhookManager:
    def __init__(
        self,
        storage: Storage,
        client: GoogleCalendarClient,
        credentials: CredentialManager,
        sync_engine: CalendarSyncEngine,
        *,
        webhook_url: str = "",
        queue: WorkQueue | None = None,
        on_synced: OwnerHook | None = None,
    ) -> None:
        self._storage = storage
        self._client = client
        self._credentials = credentials
        self._sync = sync_engine
        self.webhook_url = webhook_url
        self._queue = queue
        # Called with the owner after a delivery-triggered sync (meeting-prep sweep).
        self.on_synced = on_synced

    async def register(self, owner: str, calendar_id: str = "primary") -> WebhookSubscription:
        if not self.webhook_url:
            raise WebhookRegistrationError("google_webhook_url is not configured")

        channel_id = str(uuid.uuid4())
        try:
            response = await self._credentials.call_with_token(
                owner, lambda token: self._client.watch(token, calendar_id, channel_id, self.webhook_url)
            )
        except CalendarRequestError as exc:
            raise WebhookRegistrationError(str(exc)) from exc

        expiration = ensure_aware(response.expiration)
        if expiration <= now_utc():
            raise WebhookRegistrationError(
                f"channel {channel_id} returned a past expiration {expiration.isoformat()}"
            )

        subscription = WebhookSubscription(
            owner=owner,
            calendar_id=calendar_id,
            channel_id=response.channel_id,
            resource_id=response.resource_id,
            expiration=expiration,
            sync_cursor=None,
        )
        await self._storage.webhooks.upsert(subscription)
        logger.info(
            "webhook_registered",
            owner=owner,
            calendar_id=calendar_id,
            channel_id=subscription.channel_id,
            expires=expiration.isoformat(),
        )
        return subscription

    async def stop(self, subscription: WebhookSubscription) -> bool:
        """Close the remote channel. Failures are logged, never raised."""
        try:
            await self._credentials.call_with_token(
                subscription.owner,
                lambda token: self._client.stop_channel(
                    token, subscription.channel_id, subscription.resource_id
                ),
            )
        except Exception as exc:
            logger.warning(
                "webhook_stop_failed",
                owner=subscription.owner,
                channel_id=subscription.channel_id,
                error=str(exc),
            )
            return False
        logger.info("webhook_stopped", owner=subscription.owner, channel_id=subscription.channel_id)
        return True

    async def renew(self, owner: str, calendar_id: str = "primary") -> WebhookSubscription:
        existing = await self._storage.webhooks.get(owner, calendar_id)
        if existing is not None:
            await self.stop(existing)
        return await self.register(owner, calendar_id)

    async def renew_if_expiring_soon(self, within: timedelta = timedelta(minutes=60)) -> int:
        """Renew every subscription expiring inside ``within``. Returns the number renewed."""
        expiring = await self._storage.webhooks.list_expiring(now_utc() + within)
        renewed = 0
        for subscription in expiring:
            try:
                await self.renew(subscription.owner, subscription.calendar_id)
                renewed += 1
            except Exception as exc:
                logger.error(
                    "webhook_renewal_failed",
                    owner=subscription.owner,
                    channel_id=subscription.channel_id,
                    error=str(exc),
                )
        if expiring:
            logger.info("webhooks_renewed", renewed=renewed, expiring=len(expiring))
        return renewed

    async def stop_all_for_owner(self, owner: str) -> int:
        stopped = 0
        for subscription in await self._storage.webhooks.list_for_owner(owner):
            if await self.stop(subscription):
                stopped += 1
        return stopped

    async def on_notification(self, channel_id: str, state: str) -> None:
        """Process one push delivery."""
        if state == "sync":
            logger.debug("webhook_handshake", channel_id=channel_id)
            return

        subscription = await self._storage.webhooks.get_by_channel(channel_id)
        if subscription is None:
            logger.warning("webhook_unknown_channel", channel_id=channel_id, state=state)
            return
        if state != "exists":
            logger.info("webhook_state_ignored", channel_id=channel_id, state=state)
            return

        report = await self._sync.incremental_sync(subscription.owner, subscription.calendar_id)
        logger.info(
            "webhook_sync_done",
            owner=subscription.owner,
            upserted=report.upserted,
            cancelled=report.cancelled,
        )
        if self.on_synced is not None:
            await self.on_synced(subscription.owner)

    def accept_notification(self, channel_id: str, state: str) -> bool:
        """Hand a delivery to the work queue. Returns False if it was dropped."""
        if self._queue is None:
            raise RuntimeError("WebhookManager has no work queue")
        return self._queue.enqueue(
            f"webhook:{channel_id}", lambda: self.on_notification(channel_id, state)
        )
