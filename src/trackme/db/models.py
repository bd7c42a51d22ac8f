"""Data models for trackme."""

from dataclasses import dataclass, field
from datetime import datetime

REPO_TYPES = ("github", "gitlab")

PROJECT_STATUSES = ("active", "in-progress", "outOfDeadline", "completed", "canceled")
TASK_STATUSES = ("pending", "completed", "canceled")


@dataclass
class Task:
    id: str
    title: str
    start_date: datetime
    end_date: datetime
    description: str = ""
    status: str = "pending"
    cancel_reason: str | None = None
    commit_id: str | None = None
    commit_url: str | None = None
    commit_diff: str | None = None
    ai_summary: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Project:
    id: str
    name: str
    admin_id: str
    repo_type: str
    repo_username: str
    repo_name: str
    start_date: datetime
    end_date: datetime
    description: str = ""
    status: str = "active"
    cancel_reason: str | None = None
    version: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None
    tasks: list[Task] = field(default_factory=list)

    def get_task(self, task_id: str) -> Task | None:
        return next((t for t in self.tasks if t.id == task_id), None)
