"""Research planner — turns a task and intent into 3-6 search subtasks.

With an LLM: an intent-specific prompt (or the five-category meeting-prep
prompt) whose JSON array answer is truncated and validated.
Without one, or when the answer is unusable: deterministic templates keyed
by intent with the task title substituted.

The planner never raises because of the LLM.
"""

from __future__ import annotations

import asyncio
import hashlib

import structlog

from taskscout.models.research import MeetingContext, ResearchIntent, Subtask, TaskType
from taskscout.models.tasks import Task, UserProfile
from taskscout.research import prompts
from taskscout.utils.llm_json import extract_json_array

logger = structlog.get_logger().bind(component="research.planner")

# Sentinel: distinguish "build the configured LLM client" from "explicitly no LLM"
_UNSET = object()

MIN_SUBTASKS = 3
MAX_SUBTASKS = 6

_RULE_TEMPLATES: dict[ResearchIntent, list[tuple[str, str]]] = {
    ResearchIntent.BACKGROUND_BRIEF: [
        ("Overview", "{t} overview"),
        ("Key concepts", "{t} explained"),
        ("Recent developments", "{t} latest developments"),
    ],
    ResearchIntent.DECISION_SUPPORT: [
        ("Options comparison", "{t} comparison"),
        ("Pros and cons", "{t} advantages disadvantages"),
        ("Best practices", "{t} best practices"),
        ("User reviews", "{t} reviews"),
    ],
    ResearchIntent.COMPETITIVE_SCAN: [
        ("Market leaders", "{t} market leaders"),
        ("Competitors", "{t} competitors"),
        ("Market analysis", "{t} market analysis"),
        ("Trends", "{t} trends"),
    ],
    ResearchIntent.UPDATE_SINCE_LAST: [
        ("Recent news", "{t} news"),
        ("Latest updates", "{t} updates recent"),
        ("What changed", "{t} changes"),
    ],
    ResearchIntent.GENERAL_SUMMARY: [
        ("General overview", "{t}"),
        ("Detailed information", "{t} guide"),
        ("Expert insights", "{t} expert analysis"),
    ],
}

_MEETING_TEMPLATES: list[tuple[str, str]] = [
    ("Company overview", "{company} company overview products"),
    ("Company news", "{company} recent news announcements"),
    ("Prospect background", "{name} {title} {company}"),
    ("Industry trends", "{company} industry trends"),
    ("Role pain points", "{title} challenges pain points"),
    ("Competitive landscape", "{company} competitors market position"),
]

_PLACEHOLDER_NAME = "the prospect"
_PLACEHOLDER_COMPANY = "their company"
_PLACEHOLDER_TITLE = "decision maker"


def subtask_id(task_id: str, index: int, query: str) -> str:
    """Stable id so re-planning the same task gives the same ids."""
    digest = hashlib.sha1(f"{task_id}:{index}:{query}".encode()).hexdigest()[:16]
    return f"st_{digest}"


def _build(task_id: str, pairs: list[tuple[str, str]]) -> list[Subtask]:
    return [
        Subtask(id=subtask_id(task_id, i, query), title=title, query=query)
        for i, (title, query) in enumerate(pairs)
    ]


def plan_with_rules(
    task: Task,
    intent: ResearchIntent,
    task_type: TaskType | None = None,
    context: MeetingContext | None = None,
) -> list[Subtask]:
    """Deterministic fallback plan."""
    if task_type == TaskType.MEETING_PREP:
        ctx = context or MeetingContext()
        company = ctx.company_name or ctx.company_domain or _PLACEHOLDER_COMPANY
        values = {
            "name": ctx.prospect_name or _PLACEHOLDER_NAME,
            "company": company,
            "title": ctx.prospect_title or _PLACEHOLDER_TITLE,
        }
        pairs = [(title, " ".join(tpl.format(**values).split())) for title, tpl in _MEETING_TEMPLATES]
        return _build(task.id, pairs)

    base = task.title.strip()
    templates = _RULE_TEMPLATES.get(intent, _RULE_TEMPLATES[ResearchIntent.GENERAL_SUMMARY])
    return _build(task.id, [(title, tpl.format(t=base)) for title, tpl in templates])


class ResearchPlanner:
    """Produces the subtask list for one research request.

    Args:
        llm:          Object with ``chat_simple``; None forces the rule-based path.
        max_subtasks: Upper bound on planned queries (capped at 6).
        timeout:      Seconds to wait for the LLM before falling back.
    """

    def __init__(self, llm=_UNSET, max_subtasks: int = MAX_SUBTASKS, timeout: float = 45.0) -> None:
        if llm is _UNSET:
            from taskscout.providers.llm import build_llm_client
            llm = build_llm_client()
        self._llm = llm
        self.max_subtasks = max(MIN_SUBTASKS, min(max_subtasks, MAX_SUBTASKS))
        self.timeout = timeout

    async def plan(
        self,
        task: Task,
        intent: ResearchIntent = ResearchIntent.GENERAL_SUMMARY,
        task_type: TaskType | None = None,
        context: MeetingContext | None = None,
        profile: UserProfile | None = None,
    ) -> list[Subtask]:
        if self._llm is not None:
            try:
                subtasks = await self._plan_with_llm(task, intent, task_type, context, profile)
                logger.info(
                    "plan_created", task_id=task.id, source="llm", subtasks=len(subtasks), intent=intent.value
                )
                return subtasks
            except Exception as exc:
                logger.warning("llm_plan_failed", task_id=task.id, error=str(exc), fallback="rules")

        subtasks = plan_with_rules(task, intent, task_type, context)
        logger.info("plan_created", task_id=task.id, source="rules", subtasks=len(subtasks), intent=intent.value)
        return subtasks

    async def _plan_with_llm(
        self,
        task: Task,
        intent: ResearchIntent,
        task_type: TaskType | None,
        context: MeetingContext | None,
        profile: UserProfile | None,
    ) -> list[Subtask]:
        if task_type == TaskType.MEETING_PREP:
            prompt = prompts.build_meeting_plan_prompt(
                task, context or MeetingContext(), profile, self.max_subtasks
            )
        else:
            prompt = prompts.build_plan_prompt(task, intent, self.max_subtasks)

        raw = await asyncio.wait_for(
            self._llm.chat_simple(
                prompt=prompt,
                system=prompts.PLANNER_SYSTEM,
                temperature=0.3,
                max_tokens=1024,
            ),
            timeout=self.timeout,
        )
        entries = extract_json_array(raw)[: self.max_subtasks]

        pairs: list[tuple[str, str]] = []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            query = str(entry.get("query") or "").strip()
            if not query:
                continue
            title = str(entry.get("title") or "Research query").strip()
            pairs.append((title[:120], query[:300]))

        if len(pairs) < MIN_SUBTASKS:
            raise ValueError(f"LLM returned {len(pairs)} usable queries, need {MIN_SUBTASKS}")
        return _build(task.id, pairs)
