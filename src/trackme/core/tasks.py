"""Task operations. Every status change recomputes the parent project."""

import logging
import re
import sqlite3
from datetime import datetime

from trackme.core import lifecycle
from trackme.core.projects import parse_date, require_project, save_project
from trackme.db.models import Project, Task
from trackme.errors import NotFoundError, ValidationError
from trackme.integrations.repo_host import resolve_commit_url

logger = logging.getLogger(__name__)


def slugify(title: str) -> str:
    """Convert a title to a URL-friendly slug."""
    slug = title.lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[\s_]+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")[:60] or "task"


def _unique_id(project: Project, base_slug: str) -> str:
    """Generate a task ID unique within the project, appending a number if needed."""
    existing = {t.id for t in project.tasks}
    if base_slug not in existing:
        return base_slug

    i = 2
    while f"{base_slug}-{i}" in existing:
        i += 1
    return f"{base_slug}-{i}"


def add_task(
    db: sqlite3.Connection,
    project_id: str,
    title: str,
    start_date: datetime | str,
    end_date: datetime | str,
    description: str = "",
    now: datetime | None = None,
) -> Task:
    """Append a pending task to a project."""
    if not title or not title.strip():
        raise ValidationError("Task title is required")

    project = require_project(db, project_id)
    task = Task(
        id=_unique_id(project, slugify(title)),
        title=title.strip(),
        description=description or "",
        start_date=parse_date(start_date, "start_date"),
        end_date=parse_date(end_date, "end_date"),
    )
    project.tasks.append(task)

    lifecycle.refresh_status(project, now)
    save_project(db, project)
    logger.info("Added task %s to project %s", task.id, project_id)
    return project.get_task(task.id)


def get_task(
    db: sqlite3.Connection,
    project_id: str,
    task_id: str,
    admin_id: str | None = None,
) -> Task:
    project = require_project(db, project_id, admin_id)
    task = project.get_task(task_id)
    if not task:
        raise NotFoundError("Task not found")
    return task


def update_task_status(
    db: sqlite3.Connection,
    project_id: str,
    task_id: str,
    status: str,
    commit_id: str | None = None,
    cancel_reason: str | None = None,
    now: datetime | None = None,
) -> Task:
    """Resolve a pending task and recompute the project status."""
    project = require_project(db, project_id)
    task = project.get_task(task_id)
    if not task:
        raise NotFoundError("Task not found")

    commit_url = None
    if status == "completed" and commit_id:
        commit_url = resolve_commit_url(
            project.repo_type, project.repo_username, project.repo_name, commit_id
        )

    lifecycle.transition_task(
        task,
        status,
        commit_id=commit_id,
        commit_url=commit_url,
        cancel_reason=cancel_reason,
    )

    old_status = project.status
    if lifecycle.refresh_status(project, now):
        logger.info(
            "Project %s status %s -> %s after task %s became %s",
            project_id, old_status, project.status, task_id, status,
        )
    save_project(db, project)
    return task
