"""CalendarScheduler: job bodies and APScheduler registration."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from taskscout.calendar.connection import CalendarConnection
from taskscout.config import TaskscoutSettings
from taskscout.models.calendar import WebhookSubscription
from taskscout.models.research import ResearchIntent, ResearchPlan, Subtask
from taskscout.worker.scheduler import CalendarScheduler


def _settings(**overrides) -> TaskscoutSettings:
    return TaskscoutSettings(_env_file=None, **overrides)


def _scheduler(calendar, **overrides) -> CalendarScheduler:
    connection = CalendarConnection(
        calendar.storage,
        calendar.client,
        calendar.credentials,
        calendar.sync,
        calendar.webhooks,
        calendar.meeting_prep,
    )
    return CalendarScheduler(calendar.storage, connection, _settings(**overrides))


def _in(hours: float) -> datetime:
    return datetime.now(timezone.utc) + timedelta(hours=hours)


# ─────────────────────────────────────────────────────────────────────────────
# 1. Sync sweep
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_sync_sweep_continues_past_failing_owner(calendar, storage, event_factory):
    # bob's token is due for refresh and the token endpoint is down
    await calendar.connect("alice")
    await calendar.connect("bob", expires_in=timedelta(minutes=1))
    calendar.api.refresh_error = "temporarily_unavailable"
    calendar.api.events = [event_factory("e1", _in(5))]

    synced = await _scheduler(calendar).sync_all_owners()

    assert synced == 1
    assert len(await storage.events.list("alice")) == 1
    # A transient failure keeps the connection
    assert await storage.credentials.get("bob") is not None


@pytest.mark.asyncio
async def test_revoked_owner_is_disconnected(calendar, storage):
    await calendar.connect("alice")
    await calendar.connect("bob", expires_in=timedelta(minutes=1))
    await storage.webhooks.upsert(
        WebhookSubscription(owner="bob", channel_id="b", resource_id="r", expiration=_in(48))
    )
    calendar.api.refresh_error = "invalid_grant"

    synced = await _scheduler(calendar).sync_all_owners()

    assert synced == 1
    assert await storage.credentials.get("bob") is None
    assert await storage.webhooks.get("bob") is None
    assert await storage.credentials.get("alice") is not None


# ─────────────────────────────────────────────────────────────────────────────
# 2. Other jobs
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_meeting_prep_job_covers_connected_owners(calendar, storage, event_factory):
    await calendar.connect("alice")
    calendar.api.events = [event_factory("e1", _in(24), attendees=["jane@other.io"])]
    await calendar.sync.full_sync("alice")

    assert await _scheduler(calendar).run_meeting_prep() == 1


@pytest.mark.asyncio
async def test_renew_job_uses_configured_horizon(calendar, storage):
    await calendar.connect("alice")
    await storage.webhooks.upsert(
        WebhookSubscription(owner="alice", channel_id="old", resource_id="r", expiration=_in(1.5))
    )
    assert await _scheduler(calendar, webhook_renew_within_minutes=60).renew_webhooks() == 0
    assert await _scheduler(calendar, webhook_renew_within_minutes=120).renew_webhooks() == 1


@pytest.mark.asyncio
async def test_daily_maintenance_prunes_old_plans(calendar, storage):
    base = datetime.now(timezone.utc)
    plans = []
    for i in range(4):
        plan = ResearchPlan(
            task_id="t1",
            owner="alice",
            intent=ResearchIntent.GENERAL_SUMMARY,
            subtasks=[Subtask(id="s", title="s", query="q")],
            created_at=base - timedelta(days=i),
        )
        plans.append(await storage.research.create_plan(plan))

    pruned = await _scheduler(calendar, research_history_keep=2).daily_maintenance()

    assert pruned == 2
    assert await storage.research.get_plan(plans[0].id) is not None
    assert await storage.research.get_plan(plans[3].id) is None


@pytest.mark.asyncio
async def test_daily_maintenance_disabled_with_zero(calendar):
    assert await _scheduler(calendar, research_history_keep=0).daily_maintenance() == 0


@pytest.mark.asyncio
async def test_job_errors_are_contained(calendar, monkeypatch):
    scheduler = _scheduler(calendar)

    async def boom() -> int:
        raise RuntimeError("boom")

    monkeypatch.setattr(scheduler, "renew_webhooks", boom)
    await scheduler._run_job("renew_webhooks")


# ─────────────────────────────────────────────────────────────────────────────
# 3. Lifecycle
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_start_registers_four_jobs(calendar):
    scheduler = _scheduler(calendar, calendar_test_mode=True)
    scheduler.start()
    try:
        jobs = {job["id"]: job for job in scheduler.status()}
        assert set(jobs) == {"renew_webhooks", "sync_all_owners", "run_meeting_prep", "daily_maintenance"}
        assert "0:05:00" in jobs["sync_all_owners"]["trigger"]
        assert jobs["daily_maintenance"]["next_run"] is not None
    finally:
        scheduler.shutdown()
    assert scheduler.running is False
