"""PostgreSQL storage backend (asyncpg).

Connection string: postgresql://postgres@localhost:5432/taskscout
                   or set POSTGRES_URL in .env

Schema (``schema.sql``) is applied on connect. Structured blobs (subtasks,
reports, attendees) live in JSONB columns; a pool-level codec maps them to
Python objects.

Unlike a cache, every read and write here is authoritative: driver errors
are wrapped in ``PersistenceError`` with the operation name and re-raised.
"""

from __future__ import annotations

import json
import os
import re
from datetime import datetime
from typing import Any

import structlog

from taskscout.errors import PersistenceError
from taskscout.models.calendar import Attendee, CalendarEvent, OAuthCredential, WebhookSubscription
from taskscout.models.research import (
    PlanStatus,
    ResearchPlan,
    ResearchResult,
    ResearchTrackingRecord,
    Subtask,
)
from taskscout.models.tasks import Task, UserProfile
from taskscout.storage.base import Storage

logger = structlog.get_logger().bind(component="pg")


class PgPool:
    """asyncpg pool wrapper.

    Usage:
        pg = PgPool(dsn)
        await pg.connect()   # creates pool + runs DDL
        rows = await pg.fetch("tasks.list", "SELECT ...", owner)
        await pg.close()
    """

    def __init__(self, dsn: str) -> None:
        self.dsn = dsn
        self._pool = None

    async def connect(self) -> None:
        if self._pool is not None:
            return
        import asyncpg

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.dsn,
                min_size=1,
                max_size=10,
                command_timeout=10,
                init=self._init_connection,
            )
        except (OSError, asyncpg.PostgresError) as exc:
            raise PersistenceError("pg.connect", exc) from exc
        logger.info("pg_connected", dsn=self._redacted_dsn())
        await self._ensure_schema()

    @staticmethod
    async def _init_connection(conn) -> None:
        await conn.set_type_codec("jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog")

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def _ensure_schema(self) -> None:
        schema_path = os.path.join(os.path.dirname(__file__), "schema.sql")
        with open(schema_path) as f:
            ddl = f.read()
        await self.execute("pg.schema", ddl)
        logger.info("pg_schema_ready")

    def _require_pool(self, operation: str):
        if self._pool is None:
            raise PersistenceError(operation, RuntimeError("pool not connected"))
        return self._pool

    # ── Core query methods ─────────────────────────────────────────────────

    async def execute(self, operation: str, query: str, *args: object) -> str:
        pool = self._require_pool(operation)
        try:
            async with pool.acquire() as conn:
                return await conn.execute(query, *args)
        except Exception as exc:
            logger.error("pg_execute_error", operation=operation, error=str(exc))
            raise PersistenceError(operation, exc) from exc

    async def fetch(self, operation: str, query: str, *args: object) -> list[dict]:
        pool = self._require_pool(operation)
        try:
            async with pool.acquire() as conn:
                rows = await conn.fetch(query, *args)
        except Exception as exc:
            logger.error("pg_fetch_error", operation=operation, error=str(exc))
            raise PersistenceError(operation, exc) from exc
        return [dict(r) for r in rows]

    async def fetchrow(self, operation: str, query: str, *args: object) -> dict | None:
        pool = self._require_pool(operation)
        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow(query, *args)
        except Exception as exc:
            logger.error("pg_fetchrow_error", operation=operation, error=str(exc))
            raise PersistenceError(operation, exc) from exc
        return dict(row) if row else None

    def _redacted_dsn(self) -> str:
        """Log-safe DSN (hides password if present)."""
        return re.sub(r":([^@/]+)@", ":***@", self.dsn)


def _affected(status: str) -> int:
    """Row count from an asyncpg status string such as 'DELETE 3'."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, IndexError):
        return 0


# ── Tasks & profiles ─────────────────────────────────────────────────────────


class PgTaskRepository:
    def __init__(self, pg: PgPool) -> None:
        self._pg = pg

    async def create(self, task: Task) -> Task:
        await self._pg.execute(
            "tasks.create",
            """
            INSERT INTO tasks (id, owner, title, description, due, priority, status, tags, created_at, updated_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
            """,
            task.id, task.owner, task.title, task.description, task.due,
            task.priority.value, task.status.value, task.tags, task.created_at, task.updated_at,
        )
        return task

    async def get(self, task_id: str) -> Task | None:
        row = await self._pg.fetchrow("tasks.get", "SELECT * FROM tasks WHERE id = $1", task_id)
        return Task.from_row(row) if row else None

    async def list(self, owner: str) -> list[Task]:
        rows = await self._pg.fetch(
            "tasks.list", "SELECT * FROM tasks WHERE owner = $1 ORDER BY created_at", owner
        )
        return [Task.from_row(r) for r in rows]

    async def update(self, task: Task) -> Task:
        row = await self._pg.fetchrow(
            "tasks.update",
            """
            UPDATE tasks
               SET title = $2, description = $3, due = $4, priority = $5,
                   status = $6, tags = $7, updated_at = NOW()
             WHERE id = $1
         RETURNING updated_at
            """,
            task.id, task.title, task.description, task.due,
            task.priority.value, task.status.value, task.tags,
        )
        if row:
            task.updated_at = row["updated_at"]
        return task

    async def delete(self, task_id: str) -> bool:
        status = await self._pg.execute("tasks.delete", "DELETE FROM tasks WHERE id = $1", task_id)
        return _affected(status) > 0


class PgProfileRepository:
    def __init__(self, pg: PgPool) -> None:
        self._pg = pg

    async def get(self, owner: str) -> UserProfile | None:
        row = await self._pg.fetchrow("profiles.get", "SELECT * FROM user_profiles WHERE owner = $1", owner)
        return UserProfile(**row) if row else None

    async def upsert(self, profile: UserProfile) -> UserProfile:
        await self._pg.execute(
            "profiles.upsert",
            """
            INSERT INTO user_profiles (owner, name, email, job_title, company, company_description, industry)
            VALUES ($1, $2, $3, $4, $5, $6, $7)
            ON CONFLICT (owner) DO UPDATE SET
                name = EXCLUDED.name, email = EXCLUDED.email, job_title = EXCLUDED.job_title,
                company = EXCLUDED.company, company_description = EXCLUDED.company_description,
                industry = EXCLUDED.industry
            """,
            profile.owner, profile.name, profile.email, profile.job_title,
            profile.company, profile.company_description, profile.industry,
        )
        return profile


# ── Research ─────────────────────────────────────────────────────────────────


def _plan_from_row(row: dict) -> ResearchPlan:
    return ResearchPlan(
        id=row["id"],
        task_id=row["task_id"],
        owner=row["owner"],
        intent=row["intent"],
        task_type=row["task_type"],
        subtasks=[Subtask(**s) for s in row["subtasks"] or []],
        status=row["status"],
        created_at=row["created_at"],
    )


def _result_from_row(row: dict) -> ResearchResult:
    return ResearchResult.model_validate(
        {
            "id": row["id"],
            "task_id": row["task_id"],
            "plan_id": row["plan_id"],
            "owner": row["owner"],
            "report": row["report"],
            "recommended_pages": row["recommended_pages"] or [],
            "subtask_results": row["subtask_results"] or [],
            "sources_count": row["sources_count"],
            "pages_analyzed": row["pages_analyzed"],
            "created_at": row["created_at"],
        }
    )


class PgResearchRepository:
    def __init__(self, pg: PgPool) -> None:
        self._pg = pg

    async def get_or_create_tracking(self, task_id: str) -> ResearchTrackingRecord:
        # ON CONFLICT keeps concurrent callers down to one row per task.
        row = await self._pg.fetchrow(
            "research.tracking.get_or_create",
            """
            INSERT INTO research_tracking (task_id) VALUES ($1)
            ON CONFLICT (task_id) DO UPDATE SET task_id = EXCLUDED.task_id
            RETURNING *
            """,
            task_id,
        )
        return ResearchTrackingRecord(**row)

    async def get_tracking(self, task_id: str) -> ResearchTrackingRecord | None:
        row = await self._pg.fetchrow(
            "research.tracking.get", "SELECT * FROM research_tracking WHERE task_id = $1", task_id
        )
        return ResearchTrackingRecord(**row) if row else None

    async def save_tracking(self, record: ResearchTrackingRecord) -> ResearchTrackingRecord:
        row = await self._pg.fetchrow(
            "research.tracking.save",
            """
            UPDATE research_tracking
               SET eligible = $2, intent = $3, task_type = $4, status = $5, updated_at = NOW()
             WHERE task_id = $1
         RETURNING updated_at
            """,
            record.task_id,
            record.eligible,
            record.intent.value if record.intent else None,
            record.task_type.value if record.task_type else None,
            record.status.value,
        )
        if row:
            record.updated_at = row["updated_at"]
        return record

    async def create_plan(self, plan: ResearchPlan) -> ResearchPlan:
        await self._pg.execute(
            "research.plan.create",
            """
            INSERT INTO research_plans (id, task_id, owner, intent, task_type, subtasks, status, created_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            """,
            plan.id, plan.task_id, plan.owner, plan.intent.value, plan.task_type.value,
            [s.model_dump() for s in plan.subtasks], plan.status.value, plan.created_at,
        )
        return plan

    async def get_plan(self, plan_id: str) -> ResearchPlan | None:
        row = await self._pg.fetchrow("research.plan.get", "SELECT * FROM research_plans WHERE id = $1", plan_id)
        return _plan_from_row(row) if row else None

    async def set_plan_status(self, plan_id: str, status: PlanStatus) -> None:
        await self._pg.execute(
            "research.plan.status",
            "UPDATE research_plans SET status = $2 WHERE id = $1",
            plan_id, status.value,
        )

    async def create_result(self, result: ResearchResult) -> ResearchResult:
        data = result.model_dump(mode="json")
        await self._pg.execute(
            "research.result.create",
            """
            INSERT INTO research_results
                (id, task_id, plan_id, owner, report, recommended_pages, subtask_results,
                 sources_count, pages_analyzed, created_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
            """,
            result.id, result.task_id, result.plan_id, result.owner,
            data["report"], data["recommended_pages"], data["subtask_results"],
            result.sources_count, result.pages_analyzed, result.created_at,
        )
        return result

    async def latest_result(self, task_id: str) -> ResearchResult | None:
        row = await self._pg.fetchrow(
            "research.result.latest",
            "SELECT * FROM research_results WHERE task_id = $1 ORDER BY created_at DESC LIMIT 1",
            task_id,
        )
        return _result_from_row(row) if row else None

    async def delete_for_task(self, task_id: str) -> None:
        # Results cascade from plans.
        await self._pg.execute("research.delete.plans", "DELETE FROM research_plans WHERE task_id = $1", task_id)
        await self._pg.execute(
            "research.delete.tracking", "DELETE FROM research_tracking WHERE task_id = $1", task_id
        )

    async def prune_history(self, keep: int) -> int:
        if keep <= 0:
            return 0
        status = await self._pg.execute(
            "research.prune",
            """
            DELETE FROM research_plans
             WHERE id IN (
                SELECT id FROM (
                    SELECT id, ROW_NUMBER() OVER (PARTITION BY task_id ORDER BY created_at DESC) AS rn
                      FROM research_plans
                ) ranked
                WHERE rn > $1
             )
               AND id NOT IN (
                SELECT DISTINCT ON (task_id) plan_id
                  FROM research_results
                 ORDER BY task_id, created_at DESC
             )
            """,
            keep,
        )
        return _affected(status)


# ── Calendar ─────────────────────────────────────────────────────────────────


def _event_from_row(row: dict) -> CalendarEvent:
    data = dict(row)
    data["attendees"] = [Attendee(**a) for a in data.get("attendees") or []]
    return CalendarEvent(**data)


class PgCalendarEventRepository:
    def __init__(self, pg: PgPool) -> None:
        self._pg = pg

    async def upsert(self, event: CalendarEvent) -> tuple[CalendarEvent, bool]:
        # xmax = 0 only for freshly inserted rows.
        row = await self._pg.fetchrow(
            "events.upsert",
            """
            INSERT INTO calendar_events
                (id, owner, calendar_id, external_event_id, summary, description, start_time, end_time,
                 location, attendees, organizer, conference_data, hangout_link, status, is_meeting,
                 recurring_event_id, synced_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16, $17)
            ON CONFLICT (owner, calendar_id, external_event_id) DO UPDATE SET
                summary = EXCLUDED.summary, description = EXCLUDED.description,
                start_time = EXCLUDED.start_time, end_time = EXCLUDED.end_time,
                location = EXCLUDED.location, attendees = EXCLUDED.attendees,
                organizer = EXCLUDED.organizer, conference_data = EXCLUDED.conference_data,
                hangout_link = EXCLUDED.hangout_link, status = EXCLUDED.status,
                is_meeting = EXCLUDED.is_meeting, recurring_event_id = EXCLUDED.recurring_event_id,
                synced_at = EXCLUDED.synced_at
            RETURNING *, (xmax = 0) AS inserted
            """,
            event.id, event.owner, event.calendar_id, event.external_event_id, event.summary,
            event.description, event.start_time, event.end_time, event.location,
            [a.model_dump() for a in event.attendees], event.organizer, event.conference_data,
            event.hangout_link, event.status, event.is_meeting, event.recurring_event_id, event.synced_at,
        )
        inserted = bool(row.pop("inserted"))
        return _event_from_row(row), inserted

    async def mark_cancelled(self, owner: str, calendar_id: str, external_event_id: str) -> bool:
        status = await self._pg.execute(
            "events.cancel",
            """
            UPDATE calendar_events SET status = 'cancelled', synced_at = NOW()
             WHERE owner = $1 AND calendar_id = $2 AND external_event_id = $3
            """,
            owner, calendar_id, external_event_id,
        )
        return _affected(status) > 0

    async def get(self, event_id: str) -> CalendarEvent | None:
        row = await self._pg.fetchrow("events.get", "SELECT * FROM calendar_events WHERE id = $1", event_id)
        return _event_from_row(row) if row else None

    async def list(
        self,
        owner: str,
        start: datetime | None = None,
        end: datetime | None = None,
        is_meeting: bool | None = None,
        status: str | None = None,
    ) -> list[CalendarEvent]:
        clauses = ["owner = $1"]
        args: list[Any] = [owner]
        for column, op, value in (
            ("start_time", ">=", start),
            ("start_time", "<=", end),
            ("is_meeting", "=", is_meeting),
            ("status", "=", status),
        ):
            if value is not None:
                args.append(value)
                clauses.append(f"{column} {op} ${len(args)}")
        rows = await self._pg.fetch(
            "events.list",
            f"SELECT * FROM calendar_events WHERE {' AND '.join(clauses)} ORDER BY start_time",
            *args,
        )
        return [_event_from_row(r) for r in rows]

    async def prep_candidates(
        self, owner: str, window_start: datetime, window_end: datetime
    ) -> list[CalendarEvent]:
        rows = await self._pg.fetch(
            "events.prep_candidates",
            """
            SELECT * FROM calendar_events
             WHERE owner = $1 AND is_meeting AND NOT prep_task_created AND status <> 'cancelled'
               AND start_time >= $2 AND start_time <= $3
             ORDER BY start_time
            """,
            owner, window_start, window_end,
        )
        return [_event_from_row(r) for r in rows]

    async def mark_prep_task_created(self, event_id: str, task_id: str) -> None:
        await self._pg.execute(
            "events.mark_prep",
            "UPDATE calendar_events SET prep_task_created = TRUE, prep_task_id = $2 WHERE id = $1",
            event_id, task_id,
        )

    async def clear_prep_task(self, task_id: str) -> int:
        status = await self._pg.execute(
            "events.clear_prep",
            "UPDATE calendar_events SET prep_task_id = NULL WHERE prep_task_id = $1",
            task_id,
        )
        return _affected(status)

    async def last_synced_at(self, owner: str) -> datetime | None:
        row = await self._pg.fetchrow(
            "events.last_synced", "SELECT MAX(synced_at) AS last FROM calendar_events WHERE owner = $1", owner
        )
        return row["last"] if row else None


class PgCredentialRepository:
    def __init__(self, pg: PgPool) -> None:
        self._pg = pg

    async def get(self, owner: str, provider: str = "google") -> OAuthCredential | None:
        row = await self._pg.fetchrow(
            "credentials.get",
            "SELECT owner, provider, access_token, refresh_token, expiry, scope "
            "FROM oauth_credentials WHERE owner = $1 AND provider = $2",
            owner, provider,
        )
        return OAuthCredential(**row) if row else None

    async def upsert(self, credential: OAuthCredential) -> None:
        await self._pg.execute(
            "credentials.upsert",
            """
            INSERT INTO oauth_credentials (owner, provider, access_token, refresh_token, expiry, scope)
            VALUES ($1, $2, $3, $4, $5, $6)
            ON CONFLICT (owner, provider) DO UPDATE SET
                access_token = EXCLUDED.access_token, refresh_token = EXCLUDED.refresh_token,
                expiry = EXCLUDED.expiry, scope = EXCLUDED.scope, updated_at = NOW()
            """,
            credential.owner, credential.provider, credential.access_token,
            credential.refresh_token, credential.expiry, credential.scope,
        )

    async def delete(self, owner: str, provider: str = "google") -> bool:
        status = await self._pg.execute(
            "credentials.delete",
            "DELETE FROM oauth_credentials WHERE owner = $1 AND provider = $2",
            owner, provider,
        )
        return _affected(status) > 0

    async def owners(self, provider: str = "google") -> list[str]:
        rows = await self._pg.fetch(
            "credentials.owners",
            "SELECT owner FROM oauth_credentials WHERE provider = $1 ORDER BY owner",
            provider,
        )
        return [r["owner"] for r in rows]


class PgWebhookRepository:
    def __init__(self, pg: PgPool) -> None:
        self._pg = pg

    async def upsert(self, subscription: WebhookSubscription) -> None:
        await self._pg.execute(
            "webhooks.upsert",
            """
            INSERT INTO webhook_subscriptions
                (owner, calendar_id, channel_id, resource_id, expiration, sync_cursor, created_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7)
            ON CONFLICT (owner, calendar_id) DO UPDATE SET
                channel_id = EXCLUDED.channel_id, resource_id = EXCLUDED.resource_id,
                expiration = EXCLUDED.expiration, sync_cursor = EXCLUDED.sync_cursor,
                created_at = EXCLUDED.created_at
            """,
            subscription.owner, subscription.calendar_id, subscription.channel_id,
            subscription.resource_id, subscription.expiration, subscription.sync_cursor,
            subscription.created_at,
        )

    async def get(self, owner: str, calendar_id: str = "primary") -> WebhookSubscription | None:
        row = await self._pg.fetchrow(
            "webhooks.get",
            "SELECT * FROM webhook_subscriptions WHERE owner = $1 AND calendar_id = $2",
            owner, calendar_id,
        )
        return WebhookSubscription(**row) if row else None

    async def get_by_channel(self, channel_id: str) -> WebhookSubscription | None:
        row = await self._pg.fetchrow(
            "webhooks.get_by_channel", "SELECT * FROM webhook_subscriptions WHERE channel_id = $1", channel_id
        )
        return WebhookSubscription(**row) if row else None

    async def list_for_owner(self, owner: str) -> list[WebhookSubscription]:
        rows = await self._pg.fetch(
            "webhooks.list_for_owner", "SELECT * FROM webhook_subscriptions WHERE owner = $1", owner
        )
        return [WebhookSubscription(**r) for r in rows]

    async def list_expiring(self, before: datetime) -> list[WebhookSubscription]:
        rows = await self._pg.fetch(
            "webhooks.list_expiring",
            "SELECT * FROM webhook_subscriptions WHERE expiration <= $1 ORDER BY expiration",
            before,
        )
        return [WebhookSubscription(**r) for r in rows]

    async def update_cursor(self, owner: str, calendar_id: str, cursor: str | None) -> bool:
        status = await self._pg.execute(
            "webhooks.update_cursor",
            "UPDATE webhook_subscriptions SET sync_cursor = $3 WHERE owner = $1 AND calendar_id = $2",
            owner, calendar_id, cursor,
        )
        return _affected(status) > 0

    async def delete_for_owner(self, owner: str) -> int:
        status = await self._pg.execute(
            "webhooks.delete_for_owner", "DELETE FROM webhook_subscriptions WHERE owner = $1", owner
        )
        return _affected(status)


class PostgresStorage(Storage):
    """Storage whose repositories share one asyncpg pool."""

    def __init__(self, pg: PgPool) -> None:
        super().__init__(
            tasks=PgTaskRepository(pg),
            profiles=PgProfileRepository(pg),
            research=PgResearchRepository(pg),
            events=PgCalendarEventRepository(pg),
            credentials=PgCredentialRepository(pg),
            webhooks=PgWebhookRepository(pg),
        )
        self.pg = pg

    async def close(self) -> None:
        await self.pg.close()


async def create_postgres_storage(dsn: str) -> PostgresStorage:
    pg = PgPool(dsn)
    await pg.connect()
    return PostgresStorage(pg)
