"""In-process storage backend.

Default for development and the backend every unit test runs against.
Records are deep-copied on the way in and out so callers can't mutate
stored state behind the repository's back.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime

from taskscout.models.calendar import CalendarEvent, OAuthCredential, WebhookSubscription
from taskscout.models.research import (
    PlanStatus,
    ResearchPlan,
    ResearchResult,
    ResearchTrackingRecord,
)
from taskscout.models.tasks import Task, UserProfile
from taskscout.storage.base import Storage
from taskscout.utils.clock import now_utc


class MemoryTaskRepository:
    def __init__(self) -> None:
        self._rows: dict[str, Task] = {}

    async def create(self, task: Task) -> Task:
        self._rows[task.id] = task.model_copy(deep=True)
        return task

    async def get(self, task_id: str) -> Task | None:
        row = self._rows.get(task_id)
        return row.model_copy(deep=True) if row else None

    async def list(self, owner: str) -> list[Task]:
        rows = [t for t in self._rows.values() if t.owner == owner]
        return [t.model_copy(deep=True) for t in sorted(rows, key=lambda t: t.created_at)]

    async def update(self, task: Task) -> Task:
        task.updated_at = now_utc()
        self._rows[task.id] = task.model_copy(deep=True)
        return task

    async def delete(self, task_id: str) -> bool:
        return self._rows.pop(task_id, None) is not None


class MemoryProfileRepository:
    def __init__(self) -> None:
        self._rows: dict[str, UserProfile] = {}

    async def get(self, owner: str) -> UserProfile | None:
        row = self._rows.get(owner)
        return row.model_copy() if row else None

    async def upsert(self, profile: UserProfile) -> UserProfile:
        self._rows[profile.owner] = profile.model_copy()
        return profile


class MemoryResearchRepository:
    def __init__(self) -> None:
        self._tracking: dict[str, ResearchTrackingRecord] = {}
        self._plans: dict[str, ResearchPlan] = {}
        self._results: dict[str, list[ResearchResult]] = defaultdict(list)

    async def get_or_create_tracking(self, task_id: str) -> ResearchTrackingRecord:
        record = self._tracking.get(task_id)
        if record is None:
            record = ResearchTrackingRecord(task_id=task_id)
            self._tracking[task_id] = record
        return record.model_copy()

    async def get_tracking(self, task_id: str) -> ResearchTrackingRecord | None:
        record = self._tracking.get(task_id)
        return record.model_copy() if record else None

    async def save_tracking(self, record: ResearchTrackingRecord) -> ResearchTrackingRecord:
        record.updated_at = now_utc()
        self._tracking[record.task_id] = record.model_copy()
        return record

    async def create_plan(self, plan: ResearchPlan) -> ResearchPlan:
        self._plans[plan.id] = plan.model_copy(deep=True)
        return plan

    async def get_plan(self, plan_id: str) -> ResearchPlan | None:
        plan = self._plans.get(plan_id)
        return plan.model_copy(deep=True) if plan else None

    async def set_plan_status(self, plan_id: str, status: PlanStatus) -> None:
        plan = self._plans.get(plan_id)
        if plan is not None:
            plan.status = status

    async def create_result(self, result: ResearchResult) -> ResearchResult:
        self._results[result.task_id].append(result.model_copy(deep=True))
        return result

    async def latest_result(self, task_id: str) -> ResearchResult | None:
        results = self._results.get(task_id)
        if not results:
            return None
        return max(results, key=lambda r: r.created_at).model_copy(deep=True)

    async def delete_for_task(self, task_id: str) -> None:
        self._tracking.pop(task_id, None)
        self._results.pop(task_id, None)
        for plan_id in [p.id for p in self._plans.values() if p.task_id == task_id]:
            del self._plans[plan_id]

    async def prune_history(self, keep: int) -> int:
        """Keep the newest ``keep`` plans per task, plus the plan behind the latest result.

        Results of dropped plans go too. Returns the number of plans removed.
        """
        if keep <= 0:
            return 0
        by_task: dict[str, list[ResearchPlan]] = defaultdict(list)
        for plan in self._plans.values():
            by_task[plan.task_id].append(plan)

        removed = 0
        for task_id, plans in by_task.items():
            plans.sort(key=lambda p: p.created_at, reverse=True)
            stale = {p.id for p in plans[keep:]}
            results = self._results.get(task_id)
            if results:
                stale.discard(max(results, key=lambda r: r.created_at).plan_id)
            if not stale:
                continue
            for plan_id in stale:
                del self._plans[plan_id]
            self._results[task_id] = [r for r in self._results.get(task_id, []) if r.plan_id not in stale]
            removed += len(stale)
        return removed


class MemoryCalendarEventRepository:
    def __init__(self) -> None:
        self._rows: dict[str, CalendarEvent] = {}

    def _find(self, owner: str, calendar_id: str, external_event_id: str) -> CalendarEvent | None:
        for event in self._rows.values():
            if (
                event.owner == owner
                and event.calendar_id == calendar_id
                and event.external_event_id == external_event_id
            ):
                return event
        return None

    async def upsert(self, event: CalendarEvent) -> tuple[CalendarEvent, bool]:
        existing = self._find(event.owner, event.calendar_id, event.external_event_id)
        if existing is None:
            self._rows[event.id] = event.model_copy(deep=True)
            return event, True
        # Identity and prep bookkeeping survive a re-sync.
        merged = event.model_copy(
            update={
                "id": existing.id,
                "prep_task_created": existing.prep_task_created,
                "prep_task_id": existing.prep_task_id,
            },
            deep=True,
        )
        self._rows[existing.id] = merged
        return merged.model_copy(deep=True), False

    async def mark_cancelled(self, owner: str, calendar_id: str, external_event_id: str) -> bool:
        existing = self._find(owner, calendar_id, external_event_id)
        if existing is None:
            return False
        existing.status = "cancelled"
        existing.synced_at = now_utc()
        return True

    async def get(self, event_id: str) -> CalendarEvent | None:
        row = self._rows.get(event_id)
        return row.model_copy(deep=True) if row else None

    async def list(
        self,
        owner: str,
        start: datetime | None = None,
        end: datetime | None = None,
        is_meeting: bool | None = None,
        status: str | None = None,
    ) -> list[CalendarEvent]:
        rows = []
        for e in self._rows.values():
            if e.owner != owner:
                continue
            if start is not None and e.start_time < start:
                continue
            if end is not None and e.start_time > end:
                continue
            if is_meeting is not None and e.is_meeting != is_meeting:
                continue
            if status is not None and e.status != status:
                continue
            rows.append(e.model_copy(deep=True))
        return sorted(rows, key=lambda e: e.start_time)

    async def prep_candidates(
        self, owner: str, window_start: datetime, window_end: datetime
    ) -> list[CalendarEvent]:
        return [
            e
            for e in await self.list(owner, start=window_start, end=window_end, is_meeting=True)
            if not e.prep_task_created and not e.cancelled
        ]

    async def mark_prep_task_created(self, event_id: str, task_id: str) -> None:
        event = self._rows.get(event_id)
        if event is not None:
            event.prep_task_created = True
            event.prep_task_id = task_id

    async def clear_prep_task(self, task_id: str) -> int:
        cleared = 0
        for event in self._rows.values():
            if event.prep_task_id == task_id:
                event.prep_task_id = None
                cleared += 1
        return cleared

    async def last_synced_at(self, owner: str) -> datetime | None:
        times = [e.synced_at for e in self._rows.values() if e.owner == owner]
        return max(times) if times else None


class MemoryCredentialRepository:
    def __init__(self) -> None:
        self._rows: dict[tuple[str, str], OAuthCredential] = {}

    async def get(self, owner: str, provider: str = "google") -> OAuthCredential | None:
        row = self._rows.get((owner, provider))
        return row.model_copy() if row else None

    async def upsert(self, credential: OAuthCredential) -> None:
        self._rows[(credential.owner, credential.provider)] = credential.model_copy()

    async def delete(self, owner: str, provider: str = "google") -> bool:
        return self._rows.pop((owner, provider), None) is not None

    async def owners(self, provider: str = "google") -> list[str]:
        return sorted(owner for owner, prov in self._rows if prov == provider)


class MemoryWebhookRepository:
    def __init__(self) -> None:
        self._rows: dict[tuple[str, str], WebhookSubscription] = {}

    async def upsert(self, subscription: WebhookSubscription) -> None:
        self._rows[(subscription.owner, subscription.calendar_id)] = subscription.model_copy()

    async def get(self, owner: str, calendar_id: str = "primary") -> WebhookSubscription | None:
        row = self._rows.get((owner, calendar_id))
        return row.model_copy() if row else None

    async def get_by_channel(self, channel_id: str) -> WebhookSubscription | None:
        for row in self._rows.values():
            if row.channel_id == channel_id:
                return row.model_copy()
        return None

    async def list_for_owner(self, owner: str) -> list[WebhookSubscription]:
        return [r.model_copy() for (o, _), r in self._rows.items() if o == owner]

    async def list_expiring(self, before: datetime) -> list[WebhookSubscription]:
        rows = [r.model_copy() for r in self._rows.values() if r.expiration <= before]
        return sorted(rows, key=lambda r: r.expiration)

    async def update_cursor(self, owner: str, calendar_id: str, cursor: str | None) -> bool:
        row = self._rows.get((owner, calendar_id))
        if row is None:
            return False
        row.sync_cursor = cursor
        return True

    async def delete_for_owner(self, owner: str) -> int:
        keys = [k for k in self._rows if k[0] == owner]
        for key in keys:
            del self._rows[key]
        return len(keys)


def create_memory_storage() -> Storage:
    return Storage(
        tasks=MemoryTaskRepository(),
        profiles=MemoryProfileRepository(),
        research=MemoryResearchRepository(),
        events=MemoryCalendarEventRepository(),
        credentials=MemoryCredentialRepository(),
        webhooks=MemoryWebhookRepository(),
    )
