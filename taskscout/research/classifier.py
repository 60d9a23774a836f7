"""Task classifier — decides whether a task needs research, and which kind.

Pure, rule-based and deterministic: the same task and profile always give
the same answer.

Eligibility:
    0. Tasks tagged by meeting-prep automation ⇒ eligible, meeting_prep.
    1. Any operational keyword (fix, deploy, pay, …) ⇒ not eligible.
    2. Else any research keyword ⇒ eligible.
    3. Else not eligible.

English keywords match at the start of a word ("fix" matches "fixing",
not "prefix"); Korean keywords match anywhere.

Type:
    meeting_prep when the text carries a meeting signal AND names a person
    or company. A sales-like profile role lowers the bar to either one.
    Everything else is general_research.
"""

from __future__ import annotations

import re

import structlog

from taskscout.models.research import Classification, MeetingContext, TaskType
from taskscout.models.tasks import Task, UserProfile

logger = structlog.get_logger().bind(component="research.classifier")

RESEARCH_KEYWORDS: tuple[str, ...] = (
    # English
    "research", "analysis", "analyze", "analyse", "market", "competitive", "report",
    "investigate", "study", "survey", "review", "compare", "comparison",
    "explore", "evaluate", "assess", "benchmark", "trend", "forecast",
    "insight", "overview", "summary", "brief", "landscape", "strategy",
    "find out", "look into", "gather information",
    "prepare", "preparing", "prep",
    # Korean
    "조사", "분석", "리서치", "연구", "정리", "비교", "검토", "전략",
    "시장", "경쟁", "보고서", "트렌드", "동향", "현황", "파악", "준비",
)

# Meeting words are deliberately absent: auto-created meeting-prep tasks
# must stay eligible.
OPERATIONAL_KEYWORDS: tuple[str, ...] = (
    # English
    "fix", "bug", "deploy", "update password", "reset", "configure",
    "install", "uninstall", "reboot", "restart", "backup", "restore",
    "delete", "remove", "cancel", "send email",
    "buy", "order", "pay", "invoice", "receipt", "delivery",
    # Korean
    "처리", "수정", "버그", "배포", "비밀번호", "재부팅", "설치",
    "삭제", "제거", "취소", "이메일", "전화",
    "구매", "주문", "결제", "배송", "택배", "영수증",
)

MEETING_KEYWORDS: tuple[str, ...] = (
    "meeting", "meet with", "call with", "prep", "prepare", "preparing",
    "intro call", "demo", "pitch", "interview", "sync with", "1:1",
    "회의", "미팅", "면담", "만남",
)

SALES_ROLE_HINTS: tuple[str, ...] = (
    "sales", "business development", "bizdev", "account executive", "account manager",
    "founder", "partnership", "customer success", "영업",
)

_EMAIL_RE = re.compile(r"[\w.+-]+@([\w-]+(?:\.[\w-]+)+)")
_WITH_NAME_RE = re.compile(r"\bwith\s+([A-Z][\w'-]+(?:\s+[A-Z][\w'-]+)?)")
_AT_COMPANY_RE = re.compile(r"\bat\s+([A-Z][\w&.'-]*(?:\s+[A-Z][\w&.'-]*)*)")
_TITLE_RE = re.compile(
    r"\b(CEO|CTO|CFO|COO|CMO|CPO|VP(?: of)? [A-Z][a-z]+|Head of [A-Z][a-z]+|"
    r"Director(?: of [A-Z][a-z]+)?|Founder|Co-?founder|Manager|Engineer)\b"
)
_KOREAN_NAME_RE = re.compile(r"([가-힣]{2,4})\s?님")


def _is_ascii(keyword: str) -> bool:
    return keyword.isascii()


def _compile(keywords: tuple[str, ...]) -> list[tuple[str, re.Pattern[str]]]:
    compiled = []
    for kw in keywords:
        pattern = rf"\b{re.escape(kw)}" if _is_ascii(kw) else re.escape(kw)
        compiled.append((kw, re.compile(pattern, re.IGNORECASE)))
    return compiled


# Tags written by meeting-prep automation. The description of such a task
# carries calendar text and a derived company name, so keywords are skipped.
AUTO_PREP_TAGS: frozenset[str] = frozenset({"meeting-prep", "auto-generated"})

_RESEARCH = _compile(RESEARCH_KEYWORDS)
_OPERATIONAL = _compile(OPERATIONAL_KEYWORDS)
_MEETING = _compile(MEETING_KEYWORDS)


def _first_match(text: str, patterns: list[tuple[str, re.Pattern[str]]]) -> str | None:
    for kw, pattern in patterns:
        if pattern.search(text):
            return kw
    return None


def _mentions_party(text: str) -> bool:
    return bool(
        _EMAIL_RE.search(text)
        or _WITH_NAME_RE.search(text)
        or _AT_COMPANY_RE.search(text)
        or _KOREAN_NAME_RE.search(text)
    )


def _has_sales_role(profile: UserProfile | None) -> bool:
    if profile is None or not profile.job_title:
        return False
    role = profile.job_title.lower()
    return any(hint in role for hint in SALES_ROLE_HINTS)


def is_research_task(task: Task) -> bool:
    return classify(task).eligible


def classify_type(task: Task, profile: UserProfile | None = None) -> TaskType:
    text = task.text
    meeting_signal = _first_match(text, _MEETING) is not None
    party_signal = _mentions_party(text)

    if _has_sales_role(profile):
        is_meeting = meeting_signal or party_signal
    else:
        is_meeting = meeting_signal and party_signal
    return TaskType.MEETING_PREP if is_meeting else TaskType.GENERAL_RESEARCH


def classify(task: Task, profile: UserProfile | None = None) -> Classification:
    """Return eligibility and task type for ``task``."""
    if AUTO_PREP_TAGS.issubset(task.tags):
        logger.debug("task_classified", task_id=task.id, eligible=True, keyword="meeting-prep")
        return Classification(eligible=True, task_type=TaskType.MEETING_PREP, matched_keyword="meeting-prep")

    text = task.text

    operational = _first_match(text, _OPERATIONAL)
    if operational is not None:
        logger.debug("task_classified", task_id=task.id, eligible=False, keyword=operational)
        return Classification(eligible=False, matched_keyword=operational)

    research = _first_match(text, _RESEARCH)
    if research is None:
        logger.debug("task_classified", task_id=task.id, eligible=False, keyword=None)
        return Classification(eligible=False)

    task_type = classify_type(task, profile)
    logger.debug(
        "task_classified", task_id=task.id, eligible=True, keyword=research, task_type=task_type.value
    )
    return Classification(eligible=True, task_type=task_type, matched_keyword=research)


def extract_meeting_context(task: Task, profile: UserProfile | None = None) -> MeetingContext:
    """Pull prospect name, title, email and company out of the task text.

    Understands the description that meeting-prep automation writes
    (``**Prospect:** Jane Doe (jane@other.io)``) as well as free text such
    as "Call with Jane at Acme".
    """
    text = task.text
    ctx = MeetingContext()

    prospect_line = re.search(r"\*\*Prospect:\*\*\s*(.+?)\s*\(([^)]+@[^)]+)\)", text)
    if prospect_line:
        ctx.prospect_name = prospect_line.group(1).strip()
        ctx.prospect_email = prospect_line.group(2).strip()

    if ctx.prospect_email is None:
        email = _EMAIL_RE.search(text)
        if email:
            ctx.prospect_email = email.group(0)
    if ctx.prospect_email:
        ctx.company_domain = ctx.prospect_email.rpartition("@")[2].lower()

    if ctx.prospect_name is None:
        name = _WITH_NAME_RE.search(task.title) or _WITH_NAME_RE.search(text)
        if name:
            ctx.prospect_name = name.group(1)
        else:
            korean = _KOREAN_NAME_RE.search(text)
            if korean:
                ctx.prospect_name = korean.group(1)

    company = _AT_COMPANY_RE.search(task.title) or _AT_COMPANY_RE.search(text)
    if company:
        ctx.company_name = company.group(1).strip()

    title = _TITLE_RE.search(text)
    if title:
        ctx.prospect_title = title.group(1)

    if profile is not None:
        ctx.user_company = profile.company or None
        ctx.user_role = profile.job_title or None
    return ctx
