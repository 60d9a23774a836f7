"""Meeting-prep automation.

Finds upcoming external meetings that have no prep task yet and creates
one per meeting through ``TaskService``. The generated title contains
"Preparing for meeting", so the classifier routes it to the meeting-prep
research pipeline like any hand-written task.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog

from taskscout.models.calendar import CalendarEvent
from taskscout.models.tasks import Task, TaskPriority
from taskscout.services.tasks import TaskService
from taskscout.storage.base import Storage
from taskscout.utils.clock import now_utc

logger = structlog.get_logger().bind(component="calendar.meeting_prep")

PREP_TAGS = ["meeting-prep", "auto-generated", "calendar-sync"]

_GENERIC_MAILBOX = re.compile(
    r"^(noreply|no-reply|support|notifications|calendar|donotreply)@", re.IGNORECASE
)


@dataclass
class Prospect:
    name: str
    email: str
    company: str


def company_name(domain: str) -> str:
    """``acme-corp.io`` → ``Acme Corp``. First label only."""
    if not domain:
        return "Unknown Company"
    label = domain.split(".")[0]
    return " ".join(word[:1].upper() + word[1:] for word in re.split(r"[-_]", label) if word)


def extract_prospect(event: CalendarEvent) -> Prospect | None:
    """First attendee outside the organizer's domain that isn't a generic mailbox."""
    organizer_domain = (event.organizer or "").rpartition("@")[2].lower()
    if not organizer_domain:
        logger.warning("meeting_prep_no_organizer", event_id=event.external_event_id)
        return None

    for attendee in event.attendees:
        email = attendee.email.lower()
        if not email or attendee.domain == organizer_domain:
            continue
        if _GENERIC_MAILBOX.match(email):
            continue
        return Prospect(
            name=attendee.display_name or email.partition("@")[0],
            email=email,
            company=company_name(attendee.domain),
        )
    return None


def build_description(event: CalendarEvent, prospect: Prospect) -> str:
    lines = [
        "**Meeting Details:**",
        f"- **Time:** {event.start_time.strftime('%A, %B %d, %Y %H:%M %Z').strip()}",
    ]
    if event.location:
        lines.append(f"- **Location:** {event.location}")
    if event.meeting_link:
        lines.append(f"- **Meeting Link:** {event.meeting_link}")
    lines.append(f"- **Prospect:** {prospect.name} ({prospect.email})")
    lines.append("")
    if event.description:
        lines.extend(["**Meeting Agenda:**", event.description, ""])
    lines.extend(["---", "*Auto-generated from Google Calendar event*"])
    return "\n".join(lines)


class MeetingPrepAutomation:
    def __init__(
        self,
        storage: Storage,
        tasks: TaskService,
        *,
        window_hours: tuple[int, int] = (12, 48),
    ) -> None:
        self._storage = storage
        self._tasks = tasks
        self.min_hours, self.max_hours = window_hours

    async def detect(self, owner: str, now: datetime | None = None) -> list[CalendarEvent]:
        """Meetings starting inside the prep window that have no prep task yet."""
        now = now or now_utc()
        return await self._storage.events.prep_candidates(
            owner, now + timedelta(hours=self.min_hours), now + timedelta(hours=self.max_hours)
        )

    async def create_prep_task(self, event: CalendarEvent, prospect: Prospect) -> Task:
        task = await self._tasks.create_task(
            event.owner,
            f"Preparing for meeting with {prospect.name} at {prospect.company}",
            build_description(event, prospect),
            due=event.start_time - timedelta(hours=2),
            priority=TaskPriority.HIGH,
            tags=list(PREP_TAGS),
        )
        await self._storage.events.mark_prep_task_created(event.id, task.id)
        logger.info(
            "meeting_prep_task_created",
            owner=event.owner,
            task_id=task.id,
            event_id=event.external_event_id,
            prospect=prospect.email,
        )
        return task

    async def run_for_owner(self, owner: str, now: datetime | None = None) -> list[Task]:
        created: list[Task] = []
        for event in await self.detect(owner, now):
            prospect = extract_prospect(event)
            if prospect is None:
                logger.debug("meeting_prep_no_prospect", owner=owner, event_id=event.external_event_id)
                continue
            try:
                created.append(await self.create_prep_task(event, prospect))
            except Exception as exc:
                logger.error(
                    "meeting_prep_event_failed",
                    owner=owner,
                    event_id=event.external_event_id,
                    error=str(exc),
                )
        return created

    async def run_for_all_owners(self, owners: list[str], now: datetime | None = None) -> int:
        """Sweep every owner; one owner's failure does not stop the batch."""
        total = 0
        for owner in owners:
            try:
                total += len(await self.run_for_owner(owner, now))
            except Exception as exc:
                logger.error("meeting_prep_owner_failed", owner=owner, error=str(exc))
        logger.info("meeting_prep_sweep_done", owners=len(owners), created=total)
        return total
