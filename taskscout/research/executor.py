"""Research executor — runs the subtask searches and synthesises one report.

Searches for all subtasks are issued concurrently. After they all return,
results are merged in subtask order through one URL set, so a URL belongs to
the first subtask that surfaced it and later subtasks keep their query with
the duplicate dropped. A failed search contributes an empty source list.

Synthesis runs once over the deduplicated union. The LLM answer is parsed
as ``{"report": …, "recommended_pages": […]}``; an unusable report is
replaced by the rule-based report of the right variant, and with no LLM (or
an unparseable answer) the whole synthesis is rule-based.
"""

from __future__ import annotations

import asyncio
from typing import Any

import structlog
from pydantic import ValidationError

from taskscout.models.research import (
    ExecutionResult,
    GeneralReport,
    MeetingContext,
    MeetingPrepReport,
    RawSearchResult,
    RecommendedPage,
    ResearchIntent,
    Subtask,
    SubtaskResult,
    TaskType,
)
from taskscout.models.tasks import UserProfile
from taskscout.research import prompts
from taskscout.utils.llm_json import extract_json_object

logger = structlog.get_logger().bind(component="research.executor")

_UNSET = object()

RESULTS_PER_SUBTASK = 5
MAX_RESULTS_FOR_SYNTHESIS = 15
MAX_RECOMMENDED_PAGES = 5
_FALLBACK_FINDINGS = 5


# ── Rule-based synthesis ─────────────────────────────────────────────────────


def fallback_general_report(results: list[RawSearchResult]) -> GeneralReport:
    return GeneralReport(
        overview=(
            f"Research completed with {len(results)} sources analyzed. "
            "The search covered multiple aspects and found relevant information. "
            "Review the recommended pages below for detailed insights."
        ),
        key_findings=[
            f"Finding {i}: {r.snippet[:150]}..."
            for i, r in enumerate(results[:_FALLBACK_FINDINGS], start=1)
        ],
        risks_or_unknowns=[
            "Limited synthesis available - manual review of sources recommended",
            "Some sources may require deeper analysis",
        ],
        recommendations=[
            "Review all recommended pages for comprehensive understanding",
            "Cross-reference findings with multiple sources",
            "Consider conducting deeper research if needed",
        ],
    )


def fallback_meeting_report(
    results: list[RawSearchResult], context: MeetingContext | None = None
) -> MeetingPrepReport:
    ctx = context or MeetingContext()
    name = ctx.prospect_name or "the prospect"
    company = ctx.company_name or "their company"
    snippets = [f"{r.snippet[:150]}..." for r in results[:_FALLBACK_FINDINGS]]
    no_data = "No information found in search results"
    return MeetingPrepReport(
        overview=(
            f"Meeting preparation research for {name} at {company} completed with "
            f"{len(results)} sources analyzed. Automated synthesis was unavailable; "
            "review the recommended pages below before the meeting."
        ),
        industry_trends={"summary": no_data, "key_changes": []},
        company_intelligence={"recent_news": snippets, "strategic_direction": no_data},
        persona_analysis={
            "persona_name": name,
            "persona_title": ctx.prospect_title or "",
            "persona_company": company,
        },
        meeting_strategy={
            "opening_approach": f"Open by confirming {name}'s current priorities and agenda for the meeting.",
            "discovery_questions": [
                "What are the main challenges your team is working on right now?",
                "How are you handling this today, and what is not working?",
                "What would a successful outcome look like for you?",
            ],
        },
    )


def fallback_pages(results: list[RawSearchResult]) -> list[RecommendedPage]:
    return [
        RecommendedPage(
            title=r.title,
            url=r.url,
            why_read=f"Relevant source found during research: {r.snippet[:100]}...",
            highlights=[r.snippet[:200]],
        )
        for r in results[:MAX_RECOMMENDED_PAGES]
    ]


def merge_subtask_results(
    subtasks: list[Subtask], searched: list[list[RawSearchResult]]
) -> tuple[list[SubtaskResult], list[RawSearchResult]]:
    """Attribute each URL to the first subtask (in input order) that returned it."""
    seen: set[str] = set()
    union: list[RawSearchResult] = []
    subtask_results: list[SubtaskResult] = []
    for subtask, results in zip(subtasks, searched):
        sources: list[RawSearchResult] = []
        for result in results:
            if result.url in seen:
                continue
            seen.add(result.url)
            union.append(result)
            sources.append(result)
        subtask_results.append(
            SubtaskResult(subtask_id=subtask.id, title=subtask.title, query=subtask.query, sources=sources)
        )
    return subtask_results, union


class ResearchExecutor:
    """Search + synthesis for one plan.

    Args:
        search:  Object with ``search(query, limit)``.
        llm:     Object with ``chat_simple``; None forces rule-based synthesis.
    """

    def __init__(
        self,
        search,
        llm=_UNSET,
        *,
        results_per_subtask: int = RESULTS_PER_SUBTASK,
        max_results_for_synthesis: int = MAX_RESULTS_FOR_SYNTHESIS,
        timeout: float = 90.0,
    ) -> None:
        if llm is _UNSET:
            from taskscout.providers.llm import build_llm_client
            llm = build_llm_client()
        self._search = search
        self._llm = llm
        self.results_per_subtask = results_per_subtask
        self.max_results_for_synthesis = max_results_for_synthesis
        self.timeout = timeout

    async def execute(
        self,
        subtasks: list[Subtask],
        intent: ResearchIntent,
        owner: str,
        task_type: TaskType | None = None,
        context: MeetingContext | None = None,
        profile: UserProfile | None = None,
    ) -> ExecutionResult:
        searched = await self._run_searches(subtasks)
        subtask_results, union = merge_subtask_results(subtasks, searched)
        logger.info(
            "search_complete",
            owner=owner,
            subtasks=len(subtasks),
            unique_results=len(union),
        )

        report, pages = await self._synthesize(union, intent, task_type, context, profile)
        return ExecutionResult(
            report=report,
            recommended_pages=pages,
            subtask_results=subtask_results,
            sources_count=len(union),
            pages_analyzed=len(union),
        )

    async def _run_searches(self, subtasks: list[Subtask]) -> list[list[RawSearchResult]]:
        outcomes = await asyncio.gather(
            *(self._search.search(s.query, self.results_per_subtask) for s in subtasks),
            return_exceptions=True,
        )
        searched: list[list[RawSearchResult]] = []
        for subtask, outcome in zip(subtasks, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning("subtask_search_failed", subtask_id=subtask.id, query=subtask.query, error=str(outcome))
                searched.append([])
            else:
                searched.append(list(outcome)[: self.results_per_subtask])
        return searched

    async def _synthesize(
        self,
        results: list[RawSearchResult],
        intent: ResearchIntent,
        task_type: TaskType | None,
        context: MeetingContext | None,
        profile: UserProfile | None,
    ) -> tuple[GeneralReport | MeetingPrepReport, list[RecommendedPage]]:
        meeting = task_type == TaskType.MEETING_PREP

        if self._llm is not None and results:
            try:
                return await self._synthesize_with_llm(results, intent, meeting, context, profile)
            except Exception as exc:
                logger.warning("llm_synthesis_failed", error=str(exc), fallback="rules")

        report = fallback_meeting_report(results, context) if meeting else fallback_general_report(results)
        return report, fallback_pages(results)

    async def _synthesize_with_llm(
        self,
        results: list[RawSearchResult],
        intent: ResearchIntent,
        meeting: bool,
        context: MeetingContext | None,
        profile: UserProfile | None,
    ) -> tuple[GeneralReport | MeetingPrepReport, list[RecommendedPage]]:
        shown = results[: self.max_results_for_synthesis]
        if meeting:
            prompt = prompts.build_meeting_synthesis_prompt(context or MeetingContext(), profile, shown)
        else:
            prompt = prompts.build_general_synthesis_prompt(intent, shown)

        raw = await asyncio.wait_for(
            self._llm.chat_simple(
                prompt=prompt,
                system=prompts.SYNTHESIS_SYSTEM,
                temperature=0.3,
                max_tokens=3000,
            ),
            timeout=self.timeout,
        )
        parsed = extract_json_object(raw)

        report = self._coerce_report(parsed.get("report"), meeting)
        if report is None:
            logger.warning("llm_report_invalid", fallback="rules")
            report = fallback_meeting_report(results, context) if meeting else fallback_general_report(results)

        pages = self._coerce_pages(parsed.get("recommended_pages"))
        if not pages:
            pages = fallback_pages(results)
        return report, pages

    @staticmethod
    def _coerce_report(value: Any, meeting: bool) -> GeneralReport | MeetingPrepReport | None:
        if not isinstance(value, dict):
            return None
        model = MeetingPrepReport if meeting else GeneralReport
        data = {k: v for k, v in value.items() if k != "kind"}
        try:
            report = model.model_validate(data)
        except ValidationError:
            return None
        return report if report.overview.strip() else None

    @staticmethod
    def _coerce_pages(value: Any) -> list[RecommendedPage]:
        if not isinstance(value, list):
            return []
        pages: list[RecommendedPage] = []
        for item in value:
            if not isinstance(item, dict):
                continue
            try:
                page = RecommendedPage.model_validate(item)
            except ValidationError:
                continue
            if page.url:
                pages.append(page)
            if len(pages) == MAX_RECOMMENDED_PAGES:
                break
        return pages
