"""Background calendar jobs on APScheduler.

    renew_webhooks     every 20 min  renew channels expiring within 60 min
    sync_all_owners    every 15 min  fallback sync (5 min in test mode)
    run_meeting_prep   every 15 min  prep-task sweep
    daily_maintenance  03:00 daily   prune research history

Every job walks all connected owners and keeps going when one fails. A
revoked refresh token is not retried: the owner is disconnected.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from taskscout.calendar.connection import CalendarConnection
from taskscout.config import TaskscoutSettings
from taskscout.errors import CredentialRevokedError
from taskscout.storage.base import Storage

logger = structlog.get_logger().bind(component="worker.scheduler")


class CalendarScheduler:
    def __init__(
        self,
        storage: Storage,
        connection: CalendarConnection,
        config: TaskscoutSettings,
    ) -> None:
        self._storage = storage
        self._connection = connection
        self._config = config
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.running = False

    # ── Jobs ──────────────────────────────────────────────────────────────

    async def _disconnect_revoked(self, owner: str, job: str) -> None:
        logger.warning("owner_credential_revoked", owner=owner, job=job)
        try:
            await self._connection.disconnect(owner)
        except Exception as exc:
            logger.error("revoked_owner_disconnect_failed", owner=owner, error=str(exc))

    async def renew_webhooks(self) -> int:
        within = timedelta(minutes=self._config.webhook_renew_within_minutes)
        return await self._connection.webhooks.renew_if_expiring_soon(within)

    async def sync_all_owners(self) -> int:
        """Sync every connected owner. Returns the number that succeeded."""
        owners = await self._connection.credentials.owners()
        synced = 0
        for owner in owners:
            try:
                await self._connection.sync_engine.sync(owner)
                synced += 1
            except CredentialRevokedError:
                await self._disconnect_revoked(owner, "sync_all_owners")
            except Exception as exc:
                logger.error("owner_sync_failed", owner=owner, error=str(exc))
        logger.info("sync_sweep_done", owners=len(owners), synced=synced)
        return synced

    async def run_meeting_prep(self) -> int:
        owners = await self._connection.credentials.owners()
        return await self._connection.meeting_prep.run_for_all_owners(owners)

    async def daily_maintenance(self) -> int:
        keep = self._config.research_history_keep
        if keep <= 0:
            return 0
        pruned = await self._storage.research.prune_history(keep)
        logger.info("research_history_pruned", keep=keep, pruned=pruned)
        return pruned

    async def _run_job(self, name: str) -> None:
        try:
            await getattr(self, name)()
        except Exception:
            logger.exception("scheduled_job_failed", job=name)

    # ── Lifecycle ─────────────────────────────────────────────────────────

    def _add(self, name: str, trigger: Any) -> None:
        self.scheduler.add_job(
            self._run_job,
            trigger=trigger,
            args=[name],
            id=name,
            name=name,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

    def start(self) -> None:
        """Register the jobs and start the scheduler. Needs a running event loop."""
        if self.running:
            return
        cfg = self._config
        self._add("renew_webhooks", IntervalTrigger(minutes=cfg.webhook_renewal_minutes))
        self._add("sync_all_owners", IntervalTrigger(minutes=cfg.effective_sync_interval_minutes))
        self._add("run_meeting_prep", IntervalTrigger(minutes=cfg.meeting_prep_interval_minutes))
        self._add("daily_maintenance", CronTrigger(hour=cfg.maintenance_hour, minute=0))
        self.scheduler.start()
        self.running = True
        logger.info("scheduler_started", jobs=len(self.scheduler.get_jobs()))

    def shutdown(self) -> None:
        if not self.running:
            return
        self.scheduler.shutdown(wait=False)
        self.running = False
        logger.info("scheduler_stopped")

    def status(self) -> list[dict[str, Any]]:
        jobs = []
        for job in self.scheduler.get_jobs():
            next_run = getattr(job, "next_run_time", None)
            jobs.append(
                {
                    "id": job.id,
                    "trigger": str(job.trigger),
                    "next_run": next_run.isoformat() if next_run else None,
                }
            )
        return jobs
