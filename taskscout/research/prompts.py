"""Prompt templates for planning and synthesis."""

from __future__ import annotations

from taskscout.models.research import MeetingContext, RawSearchResult, ResearchIntent
from taskscout.models.tasks import Task, UserProfile
from taskscout.utils.clock import month_year, today_str

INTENT_DESCRIPTIONS: dict[ResearchIntent, str] = {
    ResearchIntent.BACKGROUND_BRIEF: "Get a high-level background overview",
    ResearchIntent.DECISION_SUPPORT: "Help make a decision by comparing options",
    ResearchIntent.COMPETITIVE_SCAN: "Analyze competitors and market landscape",
    ResearchIntent.UPDATE_SINCE_LAST: "Find recent updates and changes",
    ResearchIntent.GENERAL_SUMMARY: "Create a general comprehensive summary",
}

# ── Planning ─────────────────────────────────────────────────────────────────

PLANNER_SYSTEM = """\
You are a research planning expert. Generate specific, high-quality web search \
queries. Return ONLY valid JSON. No prose, no markdown fences."""


def build_plan_prompt(task: Task, intent: ResearchIntent, max_queries: int) -> str:
    return f"""\
Today is {today_str()} ({month_year()}).
Task: "{task.title}"
Description: "{task.description or 'No description provided'}"
Intent: {INTENT_DESCRIPTIONS[intent]}

Generate 3-{max_queries} search queries that will help complete this research.
Return a JSON array of objects with this format:
[
  {{"title": "Query 1 purpose", "query": "specific search query"}},
  {{"title": "Query 2 purpose", "query": "specific search query"}}
]

Make queries specific, actionable, and diverse. Cover different aspects of the research goal."""


def build_meeting_plan_prompt(
    task: Task, ctx: MeetingContext, profile: UserProfile | None, max_queries: int
) -> str:
    prospect = ctx.prospect_name or "the prospect"
    company = ctx.company_name or "their company"
    title = ctx.prospect_title or "unknown title"
    my_company = (profile.company if profile else "") or "[my company]"
    return f"""\
Today is {today_str()} ({month_year()}).
I am preparing for a B2B meeting.

Task: "{task.title}"
Prospect: {prospect} ({title}) at {company}
Prospect email: {ctx.prospect_email or 'unknown'}
My company: {my_company}

Generate 5-{max_queries} web search queries covering these five categories, at least one each:
  1. company: what {company} does, products, recent news
  2. person: {prospect}'s role, background and public activity
  3. industry: recent trends and shifts in {company}'s industry
  4. pain_points: challenges a {title} at a company like {company} faces
  5. competition: {company}'s competitors and market position

Return a JSON array of objects:
[{{"title": "category: purpose", "query": "specific search query"}}]"""


# ── Synthesis ────────────────────────────────────────────────────────────────

SYNTHESIS_SYSTEM = """\
You are a research analyst. Base every statement on the search results you are \
given; do not invent facts. Return ONLY valid JSON."""


def format_results(results: list[RawSearchResult]) -> str:
    blocks = []
    for i, r in enumerate(results, start=1):
        blocks.append(f"[{i}] {r.title}\nURL: {r.url}\n{r.snippet}")
    return "\n\n".join(blocks)


def build_general_synthesis_prompt(
    intent: ResearchIntent, results: list[RawSearchResult]
) -> str:
    return f"""\
Research goal: {INTENT_DESCRIPTIONS[intent]}

SEARCH RESULTS:
{format_results(results)}

---

Write a structured research report and pick the 3-5 most useful pages.
Return JSON with this EXACT structure:
{{
  "report": {{
    "overview": "2-3 paragraph summary",
    "key_findings": ["finding grounded in the results", "..."],
    "risks_or_unknowns": ["gap, risk or open question", "..."],
    "recommendations": ["concrete next step", "..."]
  }},
  "recommended_pages": [
    {{"title": "page title", "url": "URL from the results", "why_read": "why it matters", "highlights": ["key point"]}}
  ]
}}"""


def build_meeting_synthesis_prompt(
    ctx: MeetingContext, profile: UserProfile | None, results: list[RawSearchResult]
) -> str:
    my_role = (profile.job_title if profile else "") or "Sales professional"
    my_company = (profile.company if profile else "") or "[Your company]"
    my_product = (profile.company_description if profile else "") or "[Your product description]"
    prospect = ctx.prospect_name or "[Prospect name]"
    title = ctx.prospect_title or "[Title unknown]"
    company = ctx.company_name or "[Company unknown]"
    email = ctx.prospect_email or "[Email unknown]"
    return f"""\
You are my B2B meeting research agent.

MY CONTEXT:
- My Role: {my_role}
- My Company: {my_company}
- My Product: {my_product}

PROSPECT INFORMATION:
- Name: {prospect}
- Title: {title}
- Company: {company}
- Email: {email}

SEARCH RESULTS:
{format_results(results)}

---

Build a brief that prepares me for this meeting using ONLY the search results above.
Return JSON with this EXACT structure:
{{
  "report": {{
    "overview": "who this person is, what their company does, why this meeting matters",
    "industry_trends": {{"summary": "...", "key_changes": ["..."], "implications_for_meeting": "..."}},
    "company_intelligence": {{"recent_news": ["..."], "product_launches": ["..."], "strategic_direction": "...", "growth_signals": "..."}},
    "persona_analysis": {{"persona_name": "{prospect}", "persona_title": "{title}", "role_description": "...",
                          "key_responsibilities": ["..."], "decision_authority": "decision_maker | influencer | end_user",
                          "likely_pain_points": ["..."]}},
    "meeting_strategy": {{"opening_approach": "...", "discovery_questions": ["..."], "value_propositions": ["..."],
                          "potential_objections": ["..."], "closing_strategy": "..."}}
  }},
  "recommended_pages": [
    {{"title": "page title", "url": "URL from the results", "why_read": "why it matters for the meeting", "highlights": ["key point"]}}
  ]
}}

If a section has no supporting results, say "No information found in search results".
Infer decision_authority from the title: C-level or VP = decision_maker, Director or Head of = influencer, otherwise end_user.
State facts only; no flattery."""
