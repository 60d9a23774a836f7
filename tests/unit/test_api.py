"""HTTP API through FastAPI's TestClient with a prebuilt container."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from fastapi.testclient import TestClient

from taskscout.api import create_app
from taskscout.calendar.connection import encode_state
from taskscout.calendar.google import GoogleCalendarClient
from taskscout.config import TaskscoutSettings
from taskscout.container import ServiceContainer
from taskscout.research.progress import ProgressLog


@pytest.fixture
def container(storage, google_api, make_search):
    config = TaskscoutSettings(
        _env_file=None,
        google_webhook_url="https://hooks.example.com/gcal",
        frontend_url="http://app.example.com",
        token_encryption_key="api-test-key",
    )
    google = GoogleCalendarClient(
        "client-id", "client-secret", "http://localhost/cb", transport=httpx.MockTransport(google_api.handler)
    )
    return asyncio.run(
        ServiceContainer.build(
            config,
            storage=storage,
            search=make_search(),
            llm=None,
            progress=ProgressLog(),
            google=google,
        )
    )


@pytest.fixture
def client(container):
    with TestClient(create_app(container, start_scheduler=False)) as test_client:
        yield test_client


def _task(client, title: str, owner: str = "alice") -> dict:
    response = client.post("/api/tasks", json={"owner": owner, "title": title})
    assert response.status_code == 201
    return response.json()


# ─────────────────────────────────────────────────────────────────────────────
# 1. Tasks
# ─────────────────────────────────────────────────────────────────────────────

def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_create_and_fetch_task(client):
    task = _task(client, "Research EV charging market")
    fetched = client.get(f"/api/tasks/{task['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["title"] == "Research EV charging market"
    assert [t["id"] for t in client.get("/api/tasks", params={"owner": "alice"}).json()] == [task["id"]]


@pytest.mark.parametrize("body", [{"owner": "alice"}, {"title": "Research x"}, {"owner": "alice", "title": "  "}])
def test_missing_field_is_400(client, body):
    response = client.post("/api/tasks", json=body)
    assert response.status_code == 400
    assert response.json()["error"] == "MISSING_FIELD"


def test_unknown_task_is_404(client):
    response = client.get("/api/tasks/nope")
    assert response.status_code == 404
    assert response.json()["error"] == "NOT_FOUND"


def test_patch_and_delete_task(client):
    task = _task(client, "Water plants")
    patched = client.patch(f"/api/tasks/{task['id']}", json={"status": "done"})
    assert patched.json()["status"] == "done"
    assert client.delete(f"/api/tasks/{task['id']}").status_code == 204
    assert client.get(f"/api/tasks/{task['id']}").status_code == 404


# ─────────────────────────────────────────────────────────────────────────────
# 2. Research
# ─────────────────────────────────────────────────────────────────────────────

def test_research_request_and_result(client):
    task = _task(client, "Research vector databases")
    response = client.post(f"/api/research/request/{task['id']}", json={"intent": "decision_support"})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["intent"] == "decision_support"
    assert body["result"]["report"]["kind"] == "general"

    # The queued run from task creation may also have finished; either is the latest
    stored = client.get(f"/api/research/{task['id']}")
    assert stored.status_code == 200
    assert stored.json()["result"]["task_id"] == task["id"]
    assert client.get(f"/api/research/{task['id']}/log").json()["entries"]


def test_research_on_operational_task_is_400(client):
    task = _task(client, "Fix the login bug")
    response = client.post(f"/api/research/request/{task['id']}")
    assert response.status_code == 400
    assert response.json()["error"] == "NOT_RESEARCH_TASK"


def test_research_on_missing_task_is_400(client):
    response = client.post("/api/research/request/missing")
    assert response.status_code == 400
    assert response.json()["error"] == "TASK_NOT_FOUND"


def test_research_result_missing_is_404(client):
    assert client.get("/api/research/missing").status_code == 404


def test_plan_preview(client):
    response = client.post("/api/research/plan", json={"owner": "alice", "title": "Compare CRM tools"})
    body = response.json()
    assert body["eligible"] is True
    assert len(body["subtasks"]) >= 3


# ─────────────────────────────────────────────────────────────────────────────
# 3. Calendar
# ─────────────────────────────────────────────────────────────────────────────

def test_auth_url_contains_state(client):
    url = client.get("/api/calendar/auth/google", params={"owner": "alice"}).json()["auth_url"]
    assert parse_qs(urlparse(url).query)["state"] == [encode_state("alice")]


def test_callback_with_consent_error_redirects(client):
    response = client.get(
        "/api/calendar/auth/google/callback", params={"error": "access_denied"}, follow_redirects=False
    )
    assert response.status_code in (302, 307)
    assert response.headers["location"] == "http://app.example.com/?calendar=error&reason=access_denied"


def test_callback_connects_and_status_reports_it(client, google_api):
    start = datetime.now(timezone.utc) + timedelta(hours=24)
    google_api.events = [
        {
            "id": "e1",
            "status": "confirmed",
            "summary": "Intro",
            "start": {"dateTime": start.isoformat()},
            "end": {"dateTime": (start + timedelta(minutes=30)).isoformat()},
            "organizer": {"email": "me@acme.com"},
            "attendees": [{"email": "jane@other.io"}],
        }
    ]
    response = client.get(
        "/api/calendar/auth/google/callback",
        params={"code": "auth-code", "state": encode_state("alice")},
        follow_redirects=False,
    )
    assert response.headers["location"] == "http://app.example.com/?calendar=connected"

    status = client.get("/api/calendar/status", params={"owner": "alice"}).json()
    assert status["connected"] is True
    events = client.get("/api/calendar/events", params={"owner": "alice", "is_meeting": "true"}).json()
    assert [e["external_event_id"] for e in events] == ["e1"]
    prep = client.get("/api/calendar/meeting-prep", params={"owner": "alice"}).json()
    assert prep[0]["prep_task_title"].startswith("Preparing for meeting with jane")

    assert client.post("/api/calendar/disconnect", params={"owner": "alice"}).json()["connected"] is False
    assert client.get("/api/calendar/status", params={"owner": "alice"}).json()["connected"] is False


def test_callback_with_bad_state_redirects_to_error(client):
    response = client.get(
        "/api/calendar/auth/google/callback",
        params={"code": "auth-code", "state": "garbage"},
        follow_redirects=False,
    )
    assert response.headers["location"] == "http://app.example.com/?calendar=error"


@pytest.mark.parametrize(
    "headers",
    [
        {"X-Goog-Channel-ID": "unknown", "X-Goog-Resource-State": "exists"},
        {"X-Goog-Channel-ID": "unknown", "X-Goog-Resource-State": "sync"},
        {},
    ],
)
def test_webhook_always_acks(client, headers):
    assert client.post("/api/calendar/webhook", headers=headers).status_code == 200


def test_calendar_routes_require_owner(client):
    response = client.post("/api/calendar/sync")
    assert response.status_code == 400
    assert response.json()["error"] == "MISSING_FIELD"
