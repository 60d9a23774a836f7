"""Research pipeline records.

ResearchTrackingRecord — one per task, the pipeline state machine
ResearchPlan          — one per request, the planned queries
ResearchResult        — one per successful run, report + recommended pages

The report is a tagged union keyed on ``kind``; consumers branch on the
concrete class rather than probing for optional fields.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from taskscout.utils.clock import now_utc


class ResearchIntent(str, Enum):
    BACKGROUND_BRIEF = "background_brief"
    DECISION_SUPPORT = "decision_support"
    COMPETITIVE_SCAN = "competitive_scan"
    UPDATE_SINCE_LAST = "update_since_last"
    GENERAL_SUMMARY = "general_summary"


class TaskType(str, Enum):
    GENERAL_RESEARCH = "general_research"
    MEETING_PREP = "meeting_prep"


class TrackingStatus(str, Enum):
    NOT_STARTED = "not_started"
    CLASSIFYING = "classifying"
    PLANNING = "planning"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


class PlanStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class ResearchTrackingRecord(BaseModel):
    task_id: str
    eligible: bool = False
    intent: ResearchIntent | None = None
    task_type: TaskType | None = None
    status: TrackingStatus = TrackingStatus.NOT_STARTED
    updated_at: datetime = Field(default_factory=now_utc)


class MeetingContext(BaseModel):
    """What the planner knows about the person a meeting is with."""

    prospect_name: str | None = None
    prospect_title: str | None = None
    prospect_email: str | None = None
    company_name: str | None = None
    company_domain: str | None = None
    user_company: str | None = None
    user_role: str | None = None


class Subtask(BaseModel):
    id: str
    title: str
    query: str


class ResearchPlan(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    task_id: str
    owner: str
    intent: ResearchIntent
    task_type: TaskType = TaskType.GENERAL_RESEARCH
    subtasks: list[Subtask]
    status: PlanStatus = PlanStatus.PENDING
    created_at: datetime = Field(default_factory=now_utc)


class RawSearchResult(BaseModel):
    id: str
    title: str
    url: str
    snippet: str = ""


class SubtaskResult(BaseModel):
    subtask_id: str
    title: str
    query: str
    sources: list[RawSearchResult] = Field(default_factory=list)


class RecommendedPage(BaseModel):
    title: str
    url: str
    why_read: str = ""
    highlights: list[str] = Field(default_factory=list)


# ── Report variants ──────────────────────────────────────────────────────────


class GeneralReport(BaseModel):
    kind: Literal["general"] = "general"
    overview: str
    key_findings: list[str] = Field(default_factory=list)
    risks_or_unknowns: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class MeetingPrepReport(BaseModel):
    """Meeting brief. Each section is a free-form object; a bare string becomes {"summary": ...}."""

    kind: Literal["meeting_prep"] = "meeting_prep"
    overview: str
    industry_trends: dict[str, Any] = Field(default_factory=dict)
    company_intelligence: dict[str, Any] = Field(default_factory=dict)
    persona_analysis: dict[str, Any] = Field(default_factory=dict)
    meeting_strategy: dict[str, Any] = Field(default_factory=dict)

    @field_validator(
        "industry_trends", "company_intelligence", "persona_analysis", "meeting_strategy",
        mode="before",
    )
    @classmethod
    def _wrap_text(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"summary": value}
        if value is None:
            return {}
        return value


Report = Annotated[Union[GeneralReport, MeetingPrepReport], Field(discriminator="kind")]

report_adapter: TypeAdapter[GeneralReport | MeetingPrepReport] = TypeAdapter(Report)


class ResearchResult(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    task_id: str
    plan_id: str
    owner: str
    report: Report
    recommended_pages: list[RecommendedPage] = Field(default_factory=list, max_length=5)
    subtask_results: list[SubtaskResult] = Field(default_factory=list)
    sources_count: int = 0
    pages_analyzed: int = 0
    created_at: datetime = Field(default_factory=now_utc)


class ExecutionResult(BaseModel):
    """What the executor hands back to the orchestrator before persistence."""

    report: Report
    recommended_pages: list[RecommendedPage] = Field(default_factory=list)
    subtask_results: list[SubtaskResult] = Field(default_factory=list)
    sources_count: int = 0
    pages_analyzed: int = 0


class Classification(BaseModel):
    eligible: bool
    task_type: TaskType = TaskType.GENERAL_RESEARCH
    matched_keyword: str | None = None


class ResearchOutcome(BaseModel):
    """Structured answer of a research request. Failures are data, not exceptions."""

    success: bool
    message: str = ""
    error: str | None = None
    result: ResearchResult | None = None
    intent: ResearchIntent | None = None


class StoredResults(BaseModel):
    """Latest result for a task plus the intent of the plan it came from."""

    result: ResearchResult
    intent: ResearchIntent
    task_type: TaskType
