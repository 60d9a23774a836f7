"""Research orchestrator — classify → plan → execute → persist.

Tracking state machine (one record per task)::

    not_started → classifying ─┬─ not eligible → not_started
                               └─ eligible → planning → executing → completed
                                                  any failure ──────→ failed

Every request writes a new plan and, on success, a new result; earlier runs
are left untouched. ``request_research`` never raises: failures come back
as a ``ResearchOutcome`` with ``success=False``.
"""

from __future__ import annotations

import structlog

from taskscout.models.research import (
    Classification,
    MeetingPrepReport,
    PlanStatus,
    ResearchIntent,
    ResearchOutcome,
    ResearchPlan,
    ResearchResult,
    StoredResults,
    Subtask,
    TaskType,
    TrackingStatus,
)
from taskscout.models.tasks import Task
from taskscout.research.classifier import classify, extract_meeting_context
from taskscout.research.executor import ResearchExecutor
from taskscout.research.planner import ResearchPlanner
from taskscout.research.progress import ProgressLog
from taskscout.storage.base import Storage

logger = structlog.get_logger().bind(component="research.orchestrator")

TASK_NOT_FOUND = "TASK_NOT_FOUND"
NOT_RESEARCH_TASK = "NOT_RESEARCH_TASK"


class ResearchOrchestrator:
    def __init__(
        self,
        storage: Storage,
        planner: ResearchPlanner,
        executor: ResearchExecutor,
        progress: ProgressLog | None = None,
    ) -> None:
        self._storage = storage
        self._planner = planner
        self._executor = executor
        self._progress = progress or ProgressLog()

    async def _set_status(self, task_id: str, status: TrackingStatus, **fields) -> None:
        record = await self._storage.research.get_or_create_tracking(task_id)
        record.status = status
        for key, value in fields.items():
            setattr(record, key, value)
        await self._storage.research.save_tracking(record)
        await self._progress.log_entry(task_id, f"status → {status.value}")

    async def request_research(
        self, task_id: str, intent: ResearchIntent | None = None
    ) -> ResearchOutcome:
        """Run the full pipeline for one task."""
        intent = intent or ResearchIntent.GENERAL_SUMMARY
        plan: ResearchPlan | None = None
        log = logger.bind(task_id=task_id)

        try:
            task = await self._storage.tasks.get(task_id)
            if task is None:
                log.info("research_task_missing")
                return ResearchOutcome(success=False, message="Task not found", error=TASK_NOT_FOUND)

            # Lazily creates the tracking record; each request starts over.
            await self._set_status(task_id, TrackingStatus.NOT_STARTED)

            # ── Classify ────────────────────────────────────────────────────
            await self._set_status(task_id, TrackingStatus.CLASSIFYING)
            profile = await self._storage.profiles.get(task.owner)
            classification = classify(task, profile)

            if not classification.eligible:
                await self._set_status(task_id, TrackingStatus.NOT_STARTED, eligible=False)
                log.info("research_not_eligible", keyword=classification.matched_keyword)
                return ResearchOutcome(
                    success=False, message="Task does not require research", error=NOT_RESEARCH_TASK
                )

            task_type = classification.task_type
            context = extract_meeting_context(task, profile) if task_type == TaskType.MEETING_PREP else None

            # ── Plan ────────────────────────────────────────────────────────
            await self._set_status(
                task_id, TrackingStatus.PLANNING, eligible=True, intent=intent, task_type=task_type
            )
            subtasks = await self._planner.plan(task, intent, task_type, context, profile)
            plan = await self._storage.research.create_plan(
                ResearchPlan(
                    task_id=task.id,
                    owner=task.owner,
                    intent=intent,
                    task_type=task_type,
                    subtasks=subtasks,
                )
            )
            await self._storage.research.set_plan_status(plan.id, PlanStatus.IN_PROGRESS)
            await self._progress.log_entry(task_id, f"planned {len(subtasks)} queries")

            # ── Execute ─────────────────────────────────────────────────────
            await self._set_status(task_id, TrackingStatus.EXECUTING)
            execution = await self._executor.execute(
                subtasks, intent, task.owner, task_type, context, profile
            )

            result = await self._storage.research.create_result(
                ResearchResult(
                    task_id=task.id,
                    plan_id=plan.id,
                    owner=task.owner,
                    report=execution.report,
                    recommended_pages=execution.recommended_pages,
                    subtask_results=execution.subtask_results,
                    sources_count=execution.sources_count,
                    pages_analyzed=execution.pages_analyzed,
                )
            )
            await self._storage.research.set_plan_status(plan.id, PlanStatus.COMPLETED)
            await self._set_status(task_id, TrackingStatus.COMPLETED)
            await self._progress.log_entry(task_id, f"completed with {result.sources_count} sources")
            log.info(
                "research_completed",
                plan_id=plan.id,
                task_type=task_type.value,
                sources=result.sources_count,
            )
            return ResearchOutcome(
                success=True, message="Research completed successfully", result=result, intent=intent
            )

        except Exception as exc:
            log.error("research_failed", error=str(exc), exc_info=True)
            await self._record_failure(task_id, plan)
            return ResearchOutcome(success=False, message="Research failed", error=str(exc) or type(exc).__name__)

    async def _record_failure(self, task_id: str, plan: ResearchPlan | None) -> None:
        try:
            if plan is not None:
                await self._storage.research.set_plan_status(plan.id, PlanStatus.FAILED)
            await self._set_status(task_id, TrackingStatus.FAILED)
        except Exception as exc:
            # Storage itself is down; the outcome still reports the original failure.
            logger.error("research_failure_not_recorded", task_id=task_id, error=str(exc))

    async def get_results(self, task_id: str) -> StoredResults | None:
        """Latest result for ``task_id`` with the intent of its plan."""
        result = await self._storage.research.latest_result(task_id)
        if result is None:
            return None
        plan = await self._storage.research.get_plan(result.plan_id)
        if plan is not None:
            return StoredResults(result=result, intent=plan.intent, task_type=plan.task_type)
        task_type = TaskType.MEETING_PREP if isinstance(result.report, MeetingPrepReport) else TaskType.GENERAL_RESEARCH
        return StoredResults(result=result, intent=ResearchIntent.GENERAL_SUMMARY, task_type=task_type)

    async def preview_plan(
        self, task: Task, intent: ResearchIntent | None = None
    ) -> tuple[Classification, list[Subtask]]:
        """Classify and plan an unsaved task. Nothing is persisted."""
        profile = await self._storage.profiles.get(task.owner)
        classification = classify(task, profile)
        if not classification.eligible:
            return classification, []
        context = (
            extract_meeting_context(task, profile)
            if classification.task_type == TaskType.MEETING_PREP
            else None
        )
        subtasks = await self._planner.plan(
            task, intent or ResearchIntent.GENERAL_SUMMARY, classification.task_type, context, profile
        )
        return classification, subtasks

    async def get_log(self, task_id: str, n: int = 50) -> list[str]:
        return await self._progress.get_log(task_id, n)

    async def clear_log(self, task_id: str) -> None:
        await self._progress.clear(task_id)
