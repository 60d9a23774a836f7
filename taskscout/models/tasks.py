"""Task and UserProfile — the user-facing records research hangs off."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from taskscout.utils.clock import now_utc


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TaskStatus(str, Enum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    DONE = "done"


class Task(BaseModel):
    """A user task. Auto-created meeting-prep tasks are ordinary tasks too."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    owner: str
    title: str
    description: str = ""
    due: datetime | None = None
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.TODO
    tags: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)

    @property
    def text(self) -> str:
        """Title and description joined, as the classifier and planner read them."""
        return f"{self.title}\n{self.description}".strip()

    @classmethod
    def from_row(cls, row: dict) -> "Task":
        """Construct from an asyncpg record dict."""
        return cls(
            id=row["id"],
            owner=row["owner"],
            title=row["title"],
            description=row.get("description") or "",
            due=row.get("due"),
            priority=row.get("priority") or TaskPriority.MEDIUM,
            status=row.get("status") or TaskStatus.TODO,
            tags=list(row.get("tags") or []),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


class TaskUpdate(BaseModel):
    """Partial update. Unset fields are left alone."""

    title: str | None = None
    description: str | None = None
    due: datetime | None = None
    priority: TaskPriority | None = None
    status: TaskStatus | None = None
    tags: list[str] | None = None

    def touches_content(self) -> bool:
        """True when the edit can change research eligibility or queries."""
        return self.title is not None or self.description is not None


class UserProfile(BaseModel):
    """Optional per-owner context used for role hints and meeting-prep prompts."""

    owner: str
    name: str = ""
    email: str = ""
    job_title: str = ""
    company: str = ""
    company_description: str = ""
    industry: str = ""
