"""Unit-test conftest — MockLLM, FakeSearch, FakeGoogleAPI and shared fixtures.

All fixtures here are available to every test under tests/unit/ without import.
Nothing in the unit suite touches the network: Google is faked at the
transport layer so the real ``GoogleCalendarClient`` code path runs.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import parse_qs

import httpx
import pytest

from taskscout.calendar.credentials import CredentialManager
from taskscout.calendar.google import GoogleCalendarClient, TokenGrant
from taskscout.calendar.meeting_prep import MeetingPrepAutomation
from taskscout.calendar.sync import CalendarSyncEngine
from taskscout.calendar.webhooks import WebhookManager
from taskscout.models.research import RawSearchResult
from taskscout.models.tasks import Task
from taskscout.research.executor import ResearchExecutor
from taskscout.research.orchestrator import ResearchOrchestrator
from taskscout.research.planner import ResearchPlanner
from taskscout.research.progress import ProgressLog
from taskscout.services.tasks import TaskService
from taskscout.storage.memory import create_memory_storage
from taskscout.utils.crypto import TokenCipher
from taskscout.worker.queue import WorkQueue


# ─────────────────────────────────────────────────────────────────────────────
# MockLLM: drop-in replacement for OpenAICompatibleClient
# ─────────────────────────────────────────────────────────────────────────────

class MockLLM:
    """Configurable fake LLM client.

    Args:
        responses:  Strings returned by successive chat_simple calls; the last
                    one repeats once the list is exhausted.
        raises:     If set, chat_simple raises this exception.
        delay:      Seconds to sleep before answering.
    """

    def __init__(
        self,
        responses: list[str] | str = "mock response",
        *,
        raises: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.responses = [responses] if isinstance(responses, str) else list(responses)
        self.raises = raises
        self.delay = delay
        self.prompts: list[str] = []

    async def chat_simple(self, prompt: str = "", system: str = "", **kwargs) -> str:
        self.prompts.append(prompt)
        if self.delay > 0:
            await asyncio.sleep(self.delay)
        if self.raises:
            raise self.raises
        index = min(len(self.prompts) - 1, len(self.responses) - 1)
        return self.responses[index]

    async def close(self) -> None:
        pass


# ─────────────────────────────────────────────────────────────────────────────
# FakeSearch: per-query canned results, failures and delays
# ─────────────────────────────────────────────────────────────────────────────

class FakeSearch:
    name = "fake"

    def __init__(
        self,
        results: dict[str, list[str]] | None = None,
        *,
        fail: set[str] | None = None,
        delays: dict[str, float] | None = None,
    ) -> None:
        # query → list of URLs; unknown queries get two URLs derived from the query
        self.results = results or {}
        self.fail = fail or set()
        self.delays = delays or {}
        self.queries: list[str] = []

    async def search(self, query: str, limit: int = 5) -> list[RawSearchResult]:
        self.queries.append(query)
        if query in self.delays:
            await asyncio.sleep(self.delays[query])
        if query in self.fail:
            raise RuntimeError(f"search failed for {query!r}")
        slug = query.replace(" ", "-").lower()
        urls = self.results.get(query, [f"https://example.org/{slug}/1", f"https://example.org/{slug}/2"])
        return [
            RawSearchResult(id=f"r{i}", title=f"{query} #{i}", url=url, snippet=f"Snippet about {query} ({i})")
            for i, url in enumerate(urls[:limit])
        ]

    async def close(self) -> None:
        pass


# ─────────────────────────────────────────────────────────────────────────────
# FakeGoogleAPI: httpx.MockTransport handler for OAuth + Calendar v3
# ─────────────────────────────────────────────────────────────────────────────

def gcal_event(
    event_id: str,
    start: datetime,
    *,
    summary: str = "Sync",
    organizer: str = "me@acme.com",
    attendees: list[str] | None = None,
    status: str = "confirmed",
    location: str = "",
    hangout_link: str | None = None,
    description: str = "",
    all_day: bool = False,
) -> dict[str, Any]:
    """Build a Calendar API event resource."""
    if status == "cancelled":
        return {"id": event_id, "status": "cancelled"}
    if all_day:
        start_field = {"date": start.date().isoformat()}
        end_field = {"date": (start + timedelta(days=1)).date().isoformat()}
    else:
        start_field = {"dateTime": start.isoformat()}
        end_field = {"dateTime": (start + timedelta(minutes=30)).isoformat()}
    raw: dict[str, Any] = {
        "id": event_id,
        "status": status,
        "summary": summary,
        "description": description,
        "start": start_field,
        "end": end_field,
        "organizer": {"email": organizer},
        "attendees": [{"email": e} for e in (attendees or [])],
    }
    if location:
        raw["location"] = location
    if hangout_link:
        raw["hangoutLink"] = hangout_link
    return raw


class FakeGoogleAPI:
    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []
        self.changes: list[dict[str, Any]] = []
        self.next_sync_token = "cursor-1"
        self.expired_tokens: set[str] = set()
        self.watch_expiration = datetime.now(timezone.utc) + timedelta(days=7)
        self.watch_status = 200
        self.stop_status = 204
        self.refresh_error: str | None = None
        self.reject_tokens: set[str] = set()
        self.issued = 0
        self.requests: list[httpx.Request] = []

    def calls(self, path_suffix: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith(path_suffix)]

    def _token(self) -> httpx.Response:
        self.issued += 1
        return httpx.Response(
            200,
            json={
                "access_token": f"access-{self.issued}",
                "refresh_token": "refresh-token",
                "expires_in": 3600,
                "scope": "https://www.googleapis.com/auth/calendar.readonly",
            },
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.url.host == "oauth2.googleapis.com":
            form = parse_qs(request.content.decode())
            if form.get("grant_type") == ["refresh_token"] and self.refresh_error:
                return httpx.Response(400, json={"error": self.refresh_error})
            return self._token()

        bearer = request.headers.get("Authorization", "").removeprefix("Bearer ")
        if bearer in self.reject_tokens:
            return httpx.Response(401, json={"error": {"message": "Invalid Credentials"}})

        if path.endswith("/events/watch"):
            if self.watch_status >= 300:
                return httpx.Response(self.watch_status, json={"error": {"message": "watch refused"}})
            body = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "id": body["id"],
                    "resourceId": f"res-{body['id'][:8]}",
                    "expiration": str(int(self.watch_expiration.timestamp() * 1000)),
                },
            )
        if path.endswith("/channels/stop"):
            if self.stop_status >= 300:
                return httpx.Response(self.stop_status, json={"error": {"message": "stop refused"}})
            return httpx.Response(204)
        if path.endswith("/events"):
            sync_token = request.url.params.get("syncToken")
            if sync_token in self.expired_tokens:
                return httpx.Response(410, json={"error": {"message": "Sync token is no longer valid"}})
            items = self.changes if sync_token else self.events
            return httpx.Response(200, json={"items": items, "nextSyncToken": self.next_sync_token})
        return httpx.Response(404)


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

def make_task(title: str, description: str = "", owner: str = "alice") -> Task:
    return Task(owner=owner, title=title, description=description)


def hours_from_now(hours: float) -> datetime:
    return datetime.now(timezone.utc) + timedelta(hours=hours)


class CalendarHarness:
    """All calendar services wired against memory storage and FakeGoogleAPI."""

    def __init__(self, storage, api: FakeGoogleAPI, *, webhook_url: str = "https://hooks.example.com/gcal"):
        self.storage = storage
        self.api = api
        self.client = GoogleCalendarClient(
            "client-id", "client-secret", "http://localhost/cb", transport=httpx.MockTransport(api.handler)
        )
        self.credentials = CredentialManager(storage, self.client, TokenCipher("test-secret"))
        self.sync = CalendarSyncEngine(storage, self.client, self.credentials)
        self.queue = WorkQueue(maxsize=10, workers=1)
        orchestrator = ResearchOrchestrator(
            storage, ResearchPlanner(llm=None), ResearchExecutor(FakeSearch(), llm=None), ProgressLog()
        )
        self.tasks = TaskService(storage, orchestrator, self.queue)
        self.meeting_prep = MeetingPrepAutomation(storage, self.tasks)
        self.webhooks = WebhookManager(
            storage,
            self.client,
            self.credentials,
            self.sync,
            webhook_url=webhook_url,
            queue=self.queue,
            on_synced=self.meeting_prep.run_for_owner,
        )

    async def connect(self, owner: str = "alice", *, expires_in: timedelta = timedelta(hours=1)) -> None:
        await self.credentials.store_grant(
            owner,
            TokenGrant(
                access_token=f"stored-{owner}",
                refresh_token="refresh-token",
                expiry=datetime.now(timezone.utc) + expires_in,
            ),
        )


# ─────────────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def storage():
    """Fresh in-memory storage for each test."""
    return create_memory_storage()


@pytest.fixture
def fake_search():
    return FakeSearch()


@pytest.fixture
def orchestrator(storage, fake_search):
    """Rule-based orchestrator (no LLM) over memory storage."""
    return ResearchOrchestrator(
        storage,
        ResearchPlanner(llm=None),
        ResearchExecutor(fake_search, llm=None),
        ProgressLog(),
    )


@pytest.fixture
def google_api():
    return FakeGoogleAPI()


@pytest.fixture
async def calendar(storage, google_api):
    harness = CalendarHarness(storage, google_api)
    yield harness
    await harness.client.close()


@pytest.fixture
def make_llm():
    """Factory for MockLLM: ``make_llm(responses, raises=..., delay=...)``."""
    return MockLLM


@pytest.fixture
def make_search():
    """Factory for FakeSearch: ``make_search(results, fail=..., delays=...)``."""
    return FakeSearch


@pytest.fixture
def task_factory():
    return make_task


@pytest.fixture
def event_factory():
    """Factory for Calendar API event resources (see ``gcal_event``)."""
    return gcal_event
