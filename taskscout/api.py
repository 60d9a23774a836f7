"""HTTP API (FastAPI).

    /api/tasks                    task CRUD, research enqueued on eligible create/edit
    /api/research/...             run, read and preview research
    /api/calendar/...             OAuth handshake, sync, events, meeting prep, push receiver

``create_app()`` builds the service container in the lifespan; tests pass a
prebuilt container instead. Domain errors map to JSON bodies with a stable
``error`` code: InputError → 400, NotFoundError → 404.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from urllib.parse import quote

import structlog
from fastapi import APIRouter, FastAPI, Header, Query, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel

from taskscout.config import settings
from taskscout.container import ServiceContainer
from taskscout.errors import InputError, NotFoundError, TaskscoutError
from taskscout.models.research import ResearchIntent
from taskscout.models.tasks import Task, TaskPriority, TaskUpdate
from taskscout.services.tasks import MISSING_FIELD

logger = structlog.get_logger().bind(component="api")


# ── Request bodies ────────────────────────────────────────────────────────────
# Required fields are optional here so a missing one yields MISSING_FIELD, not 422.


class TaskCreateBody(BaseModel):
    owner: str | None = None
    title: str | None = None
    description: str = ""
    due: datetime | None = None
    priority: TaskPriority = TaskPriority.MEDIUM
    tags: list[str] = []


class ResearchRequestBody(BaseModel):
    intent: ResearchIntent | None = None


class PlanPreviewBody(BaseModel):
    owner: str | None = None
    title: str | None = None
    description: str = ""
    intent: ResearchIntent | None = None


def _require(value: str | None, name: str) -> str:
    if not value or not value.strip():
        raise InputError(MISSING_FIELD, f"{name} is required")
    return value


def _container(request: Request) -> ServiceContainer:
    return request.app.state.container


# ── Tasks ─────────────────────────────────────────────────────────────────────

tasks_router = APIRouter(prefix="/api/tasks", tags=["tasks"])


@tasks_router.post("", status_code=status.HTTP_201_CREATED)
async def create_task(body: TaskCreateBody, request: Request) -> Task:
    return await _container(request).tasks.create_task(
        _require(body.owner, "owner"),
        _require(body.title, "title"),
        body.description,
        due=body.due,
        priority=body.priority,
        tags=body.tags,
    )


@tasks_router.get("")
async def list_tasks(request: Request, owner: str | None = None) -> list[Task]:
    return await _container(request).tasks.list_tasks(_require(owner, "owner"))


@tasks_router.get("/{task_id}")
async def get_task(task_id: str, request: Request) -> Task:
    return await _container(request).tasks.get_task(task_id)


@tasks_router.patch("/{task_id}")
async def update_task(task_id: str, body: TaskUpdate, request: Request) -> Task:
    return await _container(request).tasks.update_task(task_id, body)


@tasks_router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(task_id: str, request: Request) -> Response:
    await _container(request).tasks.delete_task(task_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ── Research ──────────────────────────────────────────────────────────────────

research_router = APIRouter(prefix="/api/research", tags=["research"])


@research_router.post("/request/{task_id}")
async def request_research(
    task_id: str, request: Request, body: ResearchRequestBody | None = None
) -> JSONResponse:
    outcome = await _container(request).orchestrator.request_research(
        task_id, body.intent if body else None
    )
    code = status.HTTP_200_OK if outcome.success else status.HTTP_400_BAD_REQUEST
    return JSONResponse(status_code=code, content=outcome.model_dump(mode="json"))


@research_router.post("/plan")
async def preview_plan(body: PlanPreviewBody, request: Request) -> dict:
    task = Task(
        owner=_require(body.owner, "owner"),
        title=_require(body.title, "title"),
        description=body.description,
    )
    classification, subtasks = await _container(request).orchestrator.preview_plan(task, body.intent)
    return {
        "eligible": classification.eligible,
        "task_type": classification.task_type.value,
        "matched_keyword": classification.matched_keyword,
        "subtasks": [s.model_dump() for s in subtasks],
    }


@research_router.get("/{task_id}")
async def get_research(task_id: str, request: Request) -> dict:
    stored = await _container(request).orchestrator.get_results(task_id)
    if stored is None:
        raise NotFoundError("research result", task_id)
    return stored.model_dump(mode="json")


@research_router.get("/{task_id}/log")
async def get_research_log(task_id: str, request: Request, n: int = 50) -> dict:
    return {"task_id": task_id, "entries": await _container(request).orchestrator.get_log(task_id, n)}


# ── Calendar ──────────────────────────────────────────────────────────────────

calendar_router = APIRouter(prefix="/api/calendar", tags=["calendar"])


@calendar_router.get("/auth/google")
async def google_auth_url(request: Request, owner: str | None = None) -> dict:
    return {"auth_url": _container(request).calendar.authorization_url(_require(owner, "owner"))}


@calendar_router.get("/auth/google/callback")
async def google_auth_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
) -> RedirectResponse:
    container = _container(request)
    target = container.config.frontend_url.rstrip("/")
    if error:
        logger.warning("oauth_consent_denied", error=error)
        return RedirectResponse(f"{target}/?calendar=error&reason={quote(error)}")
    try:
        await container.calendar.complete_oauth(_require(code, "code"), _require(state, "state"))
    except TaskscoutError as exc:
        logger.error("oauth_callback_failed", error=str(exc))
        return RedirectResponse(f"{target}/?calendar=error")
    return RedirectResponse(f"{target}/?calendar=connected")


@calendar_router.post("/sync")
async def manual_sync(request: Request, owner: str | None = None) -> dict:
    report = await _container(request).calendar.manual_sync(_require(owner, "owner"))
    return report.model_dump() | {"total": report.total}


@calendar_router.get("/events")
async def list_events(
    request: Request,
    owner: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    is_meeting: bool | None = None,
    event_status: str | None = Query(default=None, alias="status"),
) -> list[dict]:
    events = await _container(request).calendar.list_events(
        _require(owner, "owner"), start, end, is_meeting, event_status
    )
    return [e.model_dump(mode="json") for e in events]


@calendar_router.get("/meeting-prep")
async def meeting_prep(request: Request, owner: str | None = None, days: int = 2) -> list[dict]:
    entries = await _container(request).calendar.meeting_prep_overview(_require(owner, "owner"), days)
    return [e.model_dump(mode="json") for e in entries]


@calendar_router.get("/status")
async def calendar_status(request: Request, owner: str | None = None) -> dict:
    return (await _container(request).calendar.status(_require(owner, "owner"))).model_dump(mode="json")


@calendar_router.post("/webhook")
async def calendar_webhook(
    request: Request,
    x_goog_channel_id: str | None = Header(default=None),
    x_goog_resource_state: str | None = Header(default=None),
) -> Response:
    """Push receiver. Always acks 200; processing happens on the work queue."""
    if not x_goog_channel_id or not x_goog_resource_state:
        logger.warning("webhook_missing_headers")
        return Response(status_code=status.HTTP_200_OK)
    _container(request).calendar.webhooks.accept_notification(x_goog_channel_id, x_goog_resource_state)
    return Response(status_code=status.HTTP_200_OK)


@calendar_router.post("/disconnect")
async def calendar_disconnect(request: Request, owner: str | None = None) -> dict:
    owner = _require(owner, "owner")
    await _container(request).calendar.disconnect(owner)
    return {"owner": owner, "connected": False}


# ── App ───────────────────────────────────────────────────────────────────────


def create_app(container: ServiceContainer | None = None, *, start_scheduler: bool = True) -> FastAPI:
    """Build the FastAPI app. A prebuilt ``container`` is used as-is and not closed."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = container is None
        app.state.container = container or await ServiceContainer.build(settings)
        app.state.container.start(scheduler=start_scheduler)
        logger.info("api_started", scheduler=start_scheduler)
        try:
            yield
        finally:
            if owned:
                await app.state.container.close()
            else:
                app.state.container.scheduler.shutdown()
                await app.state.container.queue.stop(drain=False)
            logger.info("api_stopped")

    app = FastAPI(
        title="Taskscout API",
        description="Task research and calendar meeting-prep service",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "Accept"],
    )

    @app.exception_handler(InputError)
    async def _input_error(request: Request, exc: InputError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": exc.code, "message": exc.message})

    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"error": "NOT_FOUND", "message": str(exc)})

    @app.get("/health", tags=["health"])
    async def health() -> dict:
        return {"status": "ok"}

    app.include_router(tasks_router)
    app.include_router(research_router)
    app.include_router(calendar_router)
    return app
