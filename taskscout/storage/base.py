"""Repository interfaces.

One protocol per aggregate. ``Storage`` bundles them so services take a
single dependency. Implementations wrap driver failures in
``PersistenceError`` and re-raise; nothing here swallows a failed write.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from taskscout.models.calendar import CalendarEvent, OAuthCredential, WebhookSubscription
from taskscout.models.research import (
    PlanStatus,
    ResearchPlan,
    ResearchResult,
    ResearchTrackingRecord,
)
from taskscout.models.tasks import Task, UserProfile


class TaskRepository(Protocol):
    async def create(self, task: Task) -> Task: ...
    async def get(self, task_id: str) -> Task | None: ...
    async def list(self, owner: str) -> list[Task]: ...
    async def update(self, task: Task) -> Task: ...
    async def delete(self, task_id: str) -> bool: ...


class ProfileRepository(Protocol):
    async def get(self, owner: str) -> UserProfile | None: ...
    async def upsert(self, profile: UserProfile) -> UserProfile: ...


class ResearchRepository(Protocol):
    async def get_or_create_tracking(self, task_id: str) -> ResearchTrackingRecord: ...
    async def get_tracking(self, task_id: str) -> ResearchTrackingRecord | None: ...
    async def save_tracking(self, record: ResearchTrackingRecord) -> ResearchTrackingRecord: ...
    async def create_plan(self, plan: ResearchPlan) -> ResearchPlan: ...
    async def get_plan(self, plan_id: str) -> ResearchPlan | None: ...
    async def set_plan_status(self, plan_id: str, status: PlanStatus) -> None: ...
    async def create_result(self, result: ResearchResult) -> ResearchResult: ...
    async def latest_result(self, task_id: str) -> ResearchResult | None: ...
    async def delete_for_task(self, task_id: str) -> None: ...
    async def prune_history(self, keep: int) -> int: ...


class CalendarEventRepository(Protocol):
    async def upsert(self, event: CalendarEvent) -> tuple[CalendarEvent, bool]: ...
    async def mark_cancelled(self, owner: str, calendar_id: str, external_event_id: str) -> bool: ...
    async def get(self, event_id: str) -> CalendarEvent | None: ...
    async def list(
        self,
        owner: str,
        start: datetime | None = None,
        end: datetime | None = None,
        is_meeting: bool | None = None,
        status: str | None = None,
    ) -> list[CalendarEvent]: ...
    async def prep_candidates(
        self, owner: str, window_start: datetime, window_end: datetime
    ) -> list[CalendarEvent]: ...
    async def mark_prep_task_created(self, event_id: str, task_id: str) -> None: ...
    async def clear_prep_task(self, task_id: str) -> int: ...
    async def last_synced_at(self, owner: str) -> datetime | None: ...


class CredentialRepository(Protocol):
    async def get(self, owner: str, provider: str = "google") -> OAuthCredential | None: ...
    async def upsert(self, credential: OAuthCredential) -> None: ...
    async def delete(self, owner: str, provider: str = "google") -> bool: ...
    async def owners(self, provider: str = "google") -> list[str]: ...


class WebhookRepository(Protocol):
    async def upsert(self, subscription: WebhookSubscription) -> None: ...
    async def get(self, owner: str, calendar_id: str = "primary") -> WebhookSubscription | None: ...
    async def get_by_channel(self, channel_id: str) -> WebhookSubscription | None: ...
    async def list_for_owner(self, owner: str) -> list[WebhookSubscription]: ...
    async def list_expiring(self, before: datetime) -> list[WebhookSubscription]: ...
    async def update_cursor(self, owner: str, calendar_id: str, cursor: str | None) -> bool: ...
    async def delete_for_owner(self, owner: str) -> int: ...


@dataclass
class Storage:
    tasks: TaskRepository
    profiles: ProfileRepository
    research: ResearchRepository
    events: CalendarEventRepository
    credentials: CredentialRepository
    webhooks: WebhookRepository

    async def close(self) -> None:
        """Release backend resources. Overridden by pooled backends."""
        return None
