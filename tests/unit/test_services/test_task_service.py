"""TaskService: validation, research triggers, and cascading delete."""

from __future__ import annotations

import pytest

from taskscout.errors import InputError, NotFoundError
from taskscout.models.research import TrackingStatus
from taskscout.models.tasks import TaskStatus, TaskUpdate
from taskscout.services.tasks import MISSING_FIELD, TaskService
from taskscout.worker.queue import WorkQueue


@pytest.fixture
def queue():
    return WorkQueue(maxsize=10, workers=1)


@pytest.fixture
def service(storage, orchestrator, queue):
    return TaskService(storage, orchestrator, queue)


# ─────────────────────────────────────────────────────────────────────────────
# 1. Create
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_research_task_is_queued(service, queue):
    task = await service.create_task("alice", "  Research EV charging market  ")
    assert task.title == "Research EV charging market"
    assert queue.pending == 1


@pytest.mark.asyncio
async def test_operational_task_is_not_queued(service, queue):
    await service.create_task("alice", "Pay the electricity bill")
    assert queue.pending == 0


@pytest.mark.parametrize("owner, title", [("", "Research x"), ("alice", ""), ("alice", "   ")])
@pytest.mark.asyncio
async def test_missing_fields_are_rejected(service, owner, title):
    with pytest.raises(InputError) as exc_info:
        await service.create_task(owner, title)
    assert exc_info.value.code == MISSING_FIELD


@pytest.mark.asyncio
async def test_queued_research_runs_to_completion(service, queue, storage):
    task = await service.create_task("alice", "Research vector databases")
    queue.start()
    await queue.stop(drain=True)

    record = await storage.research.get_tracking(task.id)
    assert record.status == TrackingStatus.COMPLETED
    assert await storage.research.latest_result(task.id) is not None


@pytest.mark.asyncio
async def test_full_queue_does_not_fail_create(storage, orchestrator):
    service = TaskService(storage, orchestrator, WorkQueue(maxsize=1, workers=1))
    await service.create_task("alice", "Research topic one")
    task = await service.create_task("alice", "Research topic two")
    assert await storage.tasks.get(task.id) is not None


# ─────────────────────────────────────────────────────────────────────────────
# 2. Read and update
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_get_unknown_task_raises(service):
    with pytest.raises(NotFoundError):
        await service.get_task("missing")


@pytest.mark.asyncio
async def test_list_is_per_owner(service):
    await service.create_task("alice", "Research a")
    await service.create_task("bob", "Research b")
    assert [t.title for t in await service.list_tasks("alice")] == ["Research a"]


@pytest.mark.asyncio
async def test_content_edit_requeues_research(service, queue):
    task = await service.create_task("alice", "Water plants")
    assert queue.pending == 0

    await service.update_task(task.id, TaskUpdate(title="Research indoor plant care"))
    assert queue.pending == 1


@pytest.mark.asyncio
async def test_status_edit_does_not_requeue(service, queue):
    task = await service.create_task("alice", "Research indoor plant care")
    updated = await service.update_task(task.id, TaskUpdate(status=TaskStatus.DONE))
    assert updated.status == TaskStatus.DONE
    assert queue.pending == 1


@pytest.mark.asyncio
async def test_blank_title_update_rejected(service):
    task = await service.create_task("alice", "Research x")
    with pytest.raises(InputError):
        await service.update_task(task.id, TaskUpdate(title=" "))


# ─────────────────────────────────────────────────────────────────────────────
# 3. Delete
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_delete_removes_research_history(service, orchestrator, storage):
    task = await service.create_task("alice", "Research vector databases")
    outcome = await orchestrator.request_research(task.id)
    assert await orchestrator.get_log(task.id)

    await service.delete_task(task.id)

    assert await storage.tasks.get(task.id) is None
    assert await storage.research.latest_result(task.id) is None
    assert await storage.research.get_plan(outcome.result.plan_id) is None
    assert await storage.research.get_tracking(task.id) is None
    assert await orchestrator.get_log(task.id) == []


@pytest.mark.asyncio
async def test_delete_unknown_task_raises(service):
    with pytest.raises(NotFoundError):
        await service.delete_task("missing")
