"""Date-windowed completion ratios and the admin dashboard."""

import logging
import math
import sqlite3
from datetime import datetime, timedelta

from trackme.core import lifecycle
from trackme.core.projects import list_projects, save_project
from trackme.db.models import Project, Task
from trackme.errors import ConflictError, ValidationError

logger = logging.getLogger(__name__)

WINDOWS = ("all", "today", "week", "month")


def _day_start(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def in_window(task: Task, window: str, now: datetime) -> bool:
    """Whether a task's scheduled start falls inside the window around ``now``.

    Weeks run Sunday through Saturday.
    """
    if window not in WINDOWS:
        raise ValidationError(f"Unknown filter: {window}")
    if window == "all":
        return True

    now = lifecycle.ensure_utc(now)
    start = lifecycle.ensure_utc(task.start_date)

    if window == "today":
        return start.date() == now.date()
    if window == "week":
        week_start = _day_start(now) - timedelta(days=(now.weekday() + 1) % 7)
        week_end = week_start + timedelta(days=7)
        return week_start <= start < week_end
    return (start.year, start.month) == (now.year, now.month)


def filter_tasks(tasks: list[Task], window: str = "all", now: datetime | None = None) -> list[Task]:
    now = now or lifecycle.utcnow()
    return [t for t in tasks if in_window(t, window, now)]


def completion_percent(tasks: list[Task]) -> int:
    """Share of completed tasks as a whole percentage, rounded half up."""
    if not tasks:
        return 0
    completed = sum(1 for t in tasks if t.status == "completed")
    return math.floor(completed / len(tasks) * 100 + 0.5)


def project_progress(project: Project, window: str = "all", now: datetime | None = None) -> int:
    return completion_percent(filter_tasks(project.tasks, window, now))


def status_counts(tasks: list[Task]) -> dict:
    counts = {"total": len(tasks), "completed": 0, "pending": 0, "canceled": 0}
    for t in tasks:
        counts[t.status] = counts.get(t.status, 0) + 1
    counts["progress"] = completion_percent(tasks)
    return counts


def refresh_deadlines(
    db: sqlite3.Connection,
    projects: list[Project],
    now: datetime | None = None,
) -> list[Project]:
    """Recompute and persist the status of each project whose status moved."""
    for project in projects:
        if not lifecycle.refresh_status(project, now):
            continue
        try:
            save_project(db, project)
        except ConflictError:
            logger.warning("Skipped status refresh for %s: concurrent update", project.id)
    return projects


def admin_dashboard(
    db: sqlite3.Connection,
    admin_id: str,
    window: str = "all",
    now: datetime | None = None,
) -> dict:
    """Dashboard payload for one admin: active projects, today's tasks, counters."""
    if window not in WINDOWS:
        raise ValidationError(f"Unknown filter: {window}")
    now = lifecycle.ensure_utc(now or lifecycle.utcnow())

    projects = list_projects(db, admin_id=admin_id, exclude_statuses=("canceled",))
    refresh_deadlines(db, projects, now)

    active = [
        {
            "project": project,
            "progress": project_progress(project, window, now),
            "total_tasks": len(project.tasks),
            "completed_tasks": sum(1 for t in project.tasks if t.status == "completed"),
        }
        for project in projects
        if project.status in ("active", "in-progress")
    ]

    todays_tasks = [
        (project, task)
        for project in projects
        for task in project.tasks
        if in_window(task, "today", now)
    ]

    return {
        "active_projects": active,
        "todays_tasks": todays_tasks,
        "summary": {
            "total_projects": len(projects),
            "active_projects": len(active),
            "completed_projects": sum(1 for p in projects if p.status == "completed"),
            "out_of_deadline_projects": sum(1 for p in projects if p.status == "outOfDeadline"),
            "todays_tasks": status_counts([t for _, t in todays_tasks]),
        },
    }
