"""Service wiring.

Everything with a connection or a background loop (storage pool, HTTP
clients, Redis, work queue, scheduler) is built once here and handed to
the components that need it. The API lifespan and the CLI both go through
``ServiceContainer.build``.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from taskscout.calendar.connection import CalendarConnection
from taskscout.calendar.credentials import CredentialManager
from taskscout.calendar.google import GoogleCalendarClient
from taskscout.calendar.meeting_prep import MeetingPrepAutomation
from taskscout.calendar.sync import CalendarSyncEngine
from taskscout.calendar.webhooks import WebhookManager
from taskscout.config import TaskscoutSettings, settings as default_settings
from taskscout.providers.llm import LLMClient, build_llm_client
from taskscout.providers.search import SearchClient, build_search_client
from taskscout.research.executor import ResearchExecutor
from taskscout.research.orchestrator import ResearchOrchestrator
from taskscout.research.planner import ResearchPlanner
from taskscout.research.progress import ProgressLog
from taskscout.services.tasks import TaskService
from taskscout.storage import build_storage
from taskscout.storage.base import Storage
from taskscout.utils.crypto import TokenCipher
from taskscout.worker.queue import WorkQueue
from taskscout.worker.scheduler import CalendarScheduler

logger = structlog.get_logger().bind(component="container")

_UNSET = object()


@dataclass
class ServiceContainer:
    config: TaskscoutSettings
    storage: Storage
    search: SearchClient
    llm: LLMClient | None
    progress: ProgressLog
    orchestrator: ResearchOrchestrator
    queue: WorkQueue
    tasks: TaskService
    google: GoogleCalendarClient
    calendar: CalendarConnection
    scheduler: CalendarScheduler

    @classmethod
    async def build(
        cls,
        config: TaskscoutSettings | None = None,
        *,
        storage: Storage | None = None,
        search: SearchClient | None = None,
        llm=_UNSET,
        progress: ProgressLog | None = None,
        google: GoogleCalendarClient | None = None,
    ) -> "ServiceContainer":
        """Build every service. Keyword overrides replace the configured backends."""
        config = config or default_settings
        storage = storage or await build_storage(config)
        search = search or build_search_client(config)
        if llm is _UNSET:
            llm = build_llm_client(config)
        progress = progress or ProgressLog(config.redis_url or None)

        planner = ResearchPlanner(llm, max_subtasks=config.planner_max_subtasks, timeout=config.llm_timeout)
        executor = ResearchExecutor(
            search,
            llm,
            results_per_subtask=config.results_per_subtask,
            max_results_for_synthesis=config.max_results_for_synthesis,
            timeout=config.llm_timeout,
        )
        orchestrator = ResearchOrchestrator(storage, planner, executor, progress)
        queue = WorkQueue(config.work_queue_size, config.work_queue_workers)
        tasks = TaskService(storage, orchestrator, queue)

        google = google or GoogleCalendarClient(
            config.google_client_id, config.google_client_secret, config.google_redirect_uri
        )
        credentials = CredentialManager(storage, google, TokenCipher(config.token_encryption_key))
        sync_engine = CalendarSyncEngine(storage, google, credentials, window_days=config.sync_window_days)
        meeting_prep = MeetingPrepAutomation(storage, tasks, window_hours=config.meeting_window_hours)
        webhooks = WebhookManager(
            storage,
            google,
            credentials,
            sync_engine,
            webhook_url=config.google_webhook_url,
            queue=queue,
            on_synced=meeting_prep.run_for_owner,
        )
        calendar = CalendarConnection(storage, google, credentials, sync_engine, webhooks, meeting_prep)
        scheduler = CalendarScheduler(storage, calendar, config)

        logger.info(
            "container_built",
            storage=config.storage_backend,
            search=getattr(search, "name", type(search).__name__),
            llm=llm is not None,
        )
        return cls(
            config=config,
            storage=storage,
            search=search,
            llm=llm,
            progress=progress,
            orchestrator=orchestrator,
            queue=queue,
            tasks=tasks,
            google=google,
            calendar=calendar,
            scheduler=scheduler,
        )

    def start(self, *, scheduler: bool = True) -> None:
        """Start background workers. Must run inside the event loop."""
        self.queue.start()
        if scheduler:
            self.scheduler.start()

    async def close(self) -> None:
        self.scheduler.shutdown()
        await self.queue.stop(drain=False)
        await self.google.close()
        await self.search.close()
        if self.llm is not None:
            await self.llm.close()
        await self.progress.close()
        await self.storage.close()
        logger.info("container_closed")
