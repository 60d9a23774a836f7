"""Taskscout Research — the classify → plan → execute → synthesise pipeline.

Architecture:
    classify()           — rule-based eligibility + task type (pure)
    ResearchPlanner      — 3-6 search subtasks, LLM with template fallback
    ResearchExecutor     — concurrent searches, URL dedup, one synthesis pass
    ResearchOrchestrator — tracking state machine, persists plans and results
    ProgressLog          — Redis ring buffer of stage transitions per task

CLI surface (wired in taskscout.main):
    taskscout research request <task_id>
    taskscout research show    <task_id>
    taskscout research log     <task_id>
    taskscout plan "<title>"
"""

from .classifier import classify, extract_meeting_context
from .executor import ResearchExecutor
from .orchestrator import ResearchOrchestrator
from .planner import ResearchPlanner

__all__ = [
    "classify",
    "extract_meeting_context",
    "ResearchExecutor",
    "ResearchOrchestrator",
    "ResearchPlanner",
]
