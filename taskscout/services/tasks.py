"""Task CRUD with research triggers.

Creating an eligible task, or editing the title/description of one, hands
a research run to the work queue; the caller never waits on the pipeline.
Deleting a task removes its research history and progress log, and detaches any calendar
event that pointed at it (the event keeps ``prep_task_created`` so the
automation does not recreate the task).
"""

from __future__ import annotations

from datetime import datetime

import structlog

from taskscout.errors import InputError, NotFoundError
from taskscout.models.tasks import Task, TaskPriority, TaskUpdate
from taskscout.research.classifier import classify
from taskscout.research.orchestrator import ResearchOrchestrator
from taskscout.storage.base import Storage
from taskscout.worker.queue import WorkQueue

logger = structlog.get_logger().bind(component="services.tasks")

MISSING_FIELD = "MISSING_FIELD"


class TaskService:
    def __init__(self, storage: Storage, orchestrator: ResearchOrchestrator, queue: WorkQueue) -> None:
        self._storage = storage
        self._orchestrator = orchestrator
        self._queue = queue

    async def _maybe_enqueue_research(self, task: Task) -> bool:
        profile = await self._storage.profiles.get(task.owner)
        if not classify(task, profile).eligible:
            return False
        queued = self._queue.enqueue(
            f"research:{task.id}", lambda: self._orchestrator.request_research(task.id)
        )
        if queued:
            logger.info("research_enqueued", task_id=task.id, owner=task.owner)
        return queued

    async def create_task(
        self,
        owner: str,
        title: str,
        description: str = "",
        *,
        due: datetime | None = None,
        priority: TaskPriority = TaskPriority.MEDIUM,
        tags: list[str] | None = None,
    ) -> Task:
        if not owner or not owner.strip():
            raise InputError(MISSING_FIELD, "owner is required")
        if not title or not title.strip():
            raise InputError(MISSING_FIELD, "title is required")

        task = await self._storage.tasks.create(
            Task(
                owner=owner.strip(),
                title=title.strip(),
                description=description or "",
                due=due,
                priority=priority,
                tags=tags or [],
            )
        )
        logger.info("task_created", task_id=task.id, owner=task.owner)
        await self._maybe_enqueue_research(task)
        return task

    async def get_task(self, task_id: str) -> Task:
        task = await self._storage.tasks.get(task_id)
        if task is None:
            raise NotFoundError("task", task_id)
        return task

    async def list_tasks(self, owner: str) -> list[Task]:
        if not owner:
            raise InputError(MISSING_FIELD, "owner is required")
        return await self._storage.tasks.list(owner)

    async def update_task(self, task_id: str, update: TaskUpdate) -> Task:
        task = await self.get_task(task_id)
        if update.title is not None and not update.title.strip():
            raise InputError(MISSING_FIELD, "title cannot be empty")

        changes = update.model_dump(exclude_none=True)
        task = await self._storage.tasks.update(task.model_copy(update=changes))
        logger.info("task_updated", task_id=task_id, fields=sorted(changes))
        if update.touches_content():
            await self._maybe_enqueue_research(task)
        return task

    async def delete_task(self, task_id: str) -> None:
        await self.get_task(task_id)
        await self._storage.research.delete_for_task(task_id)
        await self._orchestrator.clear_log(task_id)
        await self._storage.events.clear_prep_task(task_id)
        await self._storage.tasks.delete(task_id)
        logger.info("task_deleted", task_id=task_id)
