"""Taskscout CLI.

Commands:
    taskscout serve                        — Run the HTTP API with background jobs
    taskscout plan "<title>"               — Classify and plan a draft task (nothing saved)
    taskscout task add|list                — Create / list tasks (eligible tasks get researched)
    taskscout research request|show|log    — Run research, show the latest result, tail progress
    taskscout calendar connect|sync|status|disconnect
    taskscout scheduler status             — Background job schedule
    taskscout version

With the default memory backend every command starts from empty storage;
set STORAGE_BACKEND=postgres to share state with a running server.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from importlib.metadata import PackageNotFoundError, version as package_version
from typing import NoReturn, TypeVar

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from taskscout.utils import setup_logging

# Initialize logging on import
setup_logging()

app = typer.Typer(
    name="taskscout",
    help="🔎 Taskscout — research agent for tasks and calendar meetings",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
research_app = typer.Typer(help="Run and inspect research", no_args_is_help=True)
task_app = typer.Typer(help="Manage tasks", no_args_is_help=True)
calendar_app = typer.Typer(help="Google Calendar connection", no_args_is_help=True)
scheduler_app = typer.Typer(help="Background jobs", no_args_is_help=True)
app.add_typer(research_app, name="research")
app.add_typer(task_app, name="task")
app.add_typer(calendar_app, name="calendar")
app.add_typer(scheduler_app, name="scheduler")

console = Console()

T = TypeVar("T")


def _run(fn: Callable[..., Awaitable[T]], *, start_queue: bool = False) -> T:
    """Build the container, run ``fn(container)``, close everything."""

    async def _main():
        from taskscout.container import ServiceContainer

        container = await ServiceContainer.build()
        if start_queue:
            container.start(scheduler=False)
        try:
            return await fn(container)
        finally:
            await container.close()

    return asyncio.run(_main())


def _fail(message: str) -> NoReturn:
    console.print(f"[red]✗ {message}[/]")
    raise typer.Exit(code=1)


# ── taskscout serve ───────────────────────────────────────────


@app.command()
def serve(
    host: str = typer.Option(None, "--host", help="Bind address (default: API_HOST)"),
    port: int = typer.Option(None, "--port", help="Port (default: API_PORT)"),
    no_scheduler: bool = typer.Option(False, "--no-scheduler", help="Do not start background jobs"),
):
    """🌐 Run the HTTP API."""
    import uvicorn

    from taskscout.api import create_app
    from taskscout.config import settings

    uvicorn.run(
        create_app(start_scheduler=not no_scheduler),
        host=host or settings.api_host,
        port=port or settings.api_port,
        log_level=settings.log_level.lower(),
    )


# ── taskscout plan ────────────────────────────────────────────


@app.command()
def plan(
    title: str = typer.Argument(..., help="Draft task title"),
    description: str = typer.Option("", "--description", "-d"),
    owner: str = typer.Option(None, "--owner", help="Owner id (default: DEFAULT_OWNER)"),
    intent: str = typer.Option("general_summary", "--intent", "-i"),
):
    """🗺  Show how a task would be classified and planned."""
    from taskscout.config import settings
    from taskscout.models.research import ResearchIntent
    from taskscout.models.tasks import Task

    try:
        research_intent = ResearchIntent(intent)
    except ValueError:
        _fail(f"unknown intent {intent!r}; choose from {', '.join(i.value for i in ResearchIntent)}")

    task = Task(owner=owner or settings.default_owner, title=title, description=description)

    async def _plan(container):
        return await container.orchestrator.preview_plan(task, research_intent)

    classification, subtasks = _run(_plan)
    if not classification.eligible:
        console.print("[yellow]⚠ Not a research task — nothing would run.[/]")
        return

    console.print(
        f"[dim]type: {classification.task_type.value} | keyword: {classification.matched_keyword}[/]"
    )
    table = Table(title=f"Plan for: {title}")
    table.add_column("#", style="dim", width=3)
    table.add_column("Subtask", style="cyan")
    table.add_column("Query", style="white")
    for i, st in enumerate(subtasks, 1):
        table.add_row(str(i), st.title, st.query)
    console.print(table)


# ── taskscout task ────────────────────────────────────────────


@task_app.command("add")
def task_add(
    title: str = typer.Argument(...),
    description: str = typer.Option("", "--description", "-d"),
    owner: str = typer.Option(None, "--owner"),
):
    """➕ Create a task; eligible tasks are researched before the command exits."""
    from taskscout.config import settings

    async def _add(container):
        task = await container.tasks.create_task(owner or settings.default_owner, title, description)
        await container.queue.join()
        tracking = await container.storage.research.get_tracking(task.id)
        return task, tracking

    task, tracking = _run(_add, start_queue=True)
    console.print(f"[green]✓[/] Task [bold]{task.id}[/] created")
    if tracking is not None:
        console.print(f"[dim]research: {tracking.status.value}[/]")


@task_app.command("list")
def task_list(owner: str = typer.Option(None, "--owner")):
    """📋 List tasks for an owner."""
    from taskscout.config import settings

    async def _list(container):
        return await container.tasks.list_tasks(owner or settings.default_owner)

    tasks = _run(_list)
    table = Table(title="Tasks")
    table.add_column("ID", style="dim")
    table.add_column("Title", style="cyan")
    table.add_column("Priority")
    table.add_column("Status")
    for t in tasks:
        table.add_row(t.id[:8], t.title, t.priority.value, t.status.value)
    console.print(table)


# ── taskscout research ────────────────────────────────────────


@research_app.command("request")
def research_request(
    task_id: str = typer.Argument(...),
    intent: str = typer.Option("general_summary", "--intent", "-i"),
):
    """🔬 Run the research pipeline for a task now."""
    from taskscout.models.research import ResearchIntent

    async def _request(container):
        return await container.orchestrator.request_research(task_id, ResearchIntent(intent))

    outcome = _run(_request)
    if not outcome.success:
        _fail(f"{outcome.message} ({outcome.error})")
    result = outcome.result
    console.print(
        Panel(
            result.report.overview,
            title=f"[bold]Research {result.id[:8]}[/]",
            subtitle=f"{result.sources_count} sources",
        )
    )


@research_app.command("show")
def research_show(task_id: str = typer.Argument(...)):
    """📄 Show the latest research result for a task."""
    from taskscout.models.research import GeneralReport

    async def _show(container):
        return await container.orchestrator.get_results(task_id)

    stored = _run(_show)
    if stored is None:
        _fail(f"no research result for task {task_id}")

    report = stored.result.report
    console.print(Panel(report.overview, title=f"[bold]{stored.task_type.value}[/] · {stored.intent.value}"))
    if isinstance(report, GeneralReport):
        for heading, items in (
            ("Key findings", report.key_findings),
            ("Risks / unknowns", report.risks_or_unknowns),
            ("Recommendations", report.recommendations),
        ):
            if items:
                console.print(f"\n[bold cyan]{heading}[/]")
                for item in items:
                    console.print(f"  • {item}")
    else:
        for heading, section in (
            ("Industry trends", report.industry_trends),
            ("Company intelligence", report.company_intelligence),
            ("Persona analysis", report.persona_analysis),
            ("Meeting strategy", report.meeting_strategy),
        ):
            if section:
                console.print(f"\n[bold cyan]{heading}[/]")
                for key, value in section.items():
                    console.print(f"  [dim]{key}:[/] {value}")

    if stored.result.recommended_pages:
        table = Table(title="Recommended reading")
        table.add_column("Title", style="cyan")
        table.add_column("URL", style="blue")
        for page in stored.result.recommended_pages:
            table.add_row(page.title, page.url)
        console.print(table)


@research_app.command("log")
def research_log(
    task_id: str = typer.Argument(...),
    n: int = typer.Option(50, "--lines", "-n"),
):
    """📜 Show pipeline progress lines for a task."""

    async def _log(container):
        return await container.orchestrator.get_log(task_id, n)

    entries = _run(_log)
    if not entries:
        console.print("[dim]No progress entries.[/]")
    for line in entries:
        console.print(line)


# ── taskscout calendar ────────────────────────────────────────


@calendar_app.command("connect")
def calendar_connect(owner: str = typer.Option(None, "--owner")):
    """🔗 Print the Google consent URL for an owner."""
    from taskscout.config import settings

    async def _connect(container):
        return container.calendar.authorization_url(owner or settings.default_owner)

    console.print(_run(_connect))


@calendar_app.command("sync")
def calendar_sync(owner: str = typer.Option(None, "--owner")):
    """🔄 Sync now and run the meeting-prep sweep."""
    from taskscout.config import settings
    from taskscout.errors import CalendarError

    async def _sync(container):
        report = await container.calendar.manual_sync(owner or settings.default_owner)
        await container.queue.join()
        return report

    try:
        report = _run(_sync, start_queue=True)
    except CalendarError as exc:
        _fail(str(exc))
    kind = "full" if report.full else "incremental"
    console.print(
        f"[green]✓[/] {kind} sync: {report.upserted} upserted, "
        f"{report.cancelled} cancelled, {report.skipped} skipped"
    )


@calendar_app.command("status")
def calendar_status(owner: str = typer.Option(None, "--owner")):
    """📡 Connection status."""
    from taskscout.config import settings

    async def _status(container):
        return await container.calendar.status(owner or settings.default_owner)

    status = _run(_status)
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Owner", status.owner)
    table.add_row("Connected", "✅" if status.connected else "❌")
    table.add_row("Last sync", str(status.last_sync or "—"))
    table.add_row("Webhook expiry", str(status.webhook_expiry or "—"))
    table.add_row("Token expiry", str(status.token_expiry or "—"))
    console.print(Panel(table, title="[bold]Calendar[/]"))


@calendar_app.command("disconnect")
def calendar_disconnect(owner: str = typer.Option(None, "--owner")):
    """🔌 Stop push channels and delete stored tokens. Synced events are kept."""
    from taskscout.config import settings

    async def _disconnect(container):
        await container.calendar.disconnect(owner or settings.default_owner)

    _run(_disconnect)
    console.print("[green]✓[/] Disconnected")


# ── taskscout scheduler ───────────────────────────────────────


@scheduler_app.command("status")
def scheduler_status():
    """⏱  Show the background job schedule."""

    async def _status(container):
        container.scheduler.start()
        try:
            return container.scheduler.status()
        finally:
            container.scheduler.shutdown()

    table = Table(title="Scheduled jobs")
    table.add_column("Job", style="cyan")
    table.add_column("Trigger", style="white")
    table.add_column("Next run", style="dim")
    for job in _run(_status):
        table.add_row(job["id"], job["trigger"], job["next_run"] or "—")
    console.print(table)


# ── taskscout version ─────────────────────────────────────────


@app.command()
def version():
    """📦 Show Taskscout version."""
    try:
        current = package_version("taskscout")
    except PackageNotFoundError:
        current = "dev"
    console.print(f"[bold cyan]🔎 Taskscout[/] v{current}")


# ── Entry point ───────────────────────────────────────────────

if __name__ == "__main__":
    app()
