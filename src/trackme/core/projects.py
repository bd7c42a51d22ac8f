"""Project persistence and project-level operations."""

import logging
import sqlite3
import uuid
from datetime import datetime

from trackme.core import lifecycle
from trackme.db.models import Project, Task, REPO_TYPES
from trackme.errors import ConflictError, NotFoundError, StorageError, ValidationError

logger = logging.getLogger(__name__)


def create_project(
    db: sqlite3.Connection,
    name: str,
    admin_id: str,
    repo_type: str,
    repo_username: str,
    repo_name: str,
    start_date: datetime | str,
    end_date: datetime | str,
    description: str = "",
    now: datetime | None = None,
) -> Project:
    """Create a new project in the ``active`` state."""
    if not all([name, admin_id, repo_type, repo_username, repo_name, start_date, end_date]):
        raise ValidationError("Missing required fields")
    if repo_type not in REPO_TYPES:
        raise ValidationError('Repository type must be either "github" or "gitlab"')

    start = parse_date(start_date, "start_date")
    end = parse_date(end_date, "end_date")
    now = lifecycle.ensure_utc(now or lifecycle.utcnow())
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)

    if start < today:
        raise ValidationError("Project start date cannot be in the past")
    if end <= start:
        raise ValidationError("Project end date must be after start date")

    project = Project(
        id=uuid.uuid4().hex,
        name=name,
        description=description or "",
        admin_id=str(admin_id),
        repo_type=repo_type,
        repo_username=repo_username,
        repo_name=repo_name,
        start_date=start,
        end_date=end,
    )
    try:
        db.execute(
            """INSERT INTO projects
               (id, name, description, admin_id, repo_type, repo_username, repo_name,
                start_date, end_date, status)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 'active')""",
            (
                project.id, project.name, project.description, project.admin_id,
                project.repo_type, project.repo_username, project.repo_name,
                start.isoformat(), end.isoformat(),
            ),
        )
        db.commit()
    except sqlite3.Error as e:
        db.rollback()
        raise StorageError(f"Failed to create project: {e}") from e

    logger.info("Created project %s (%s) for admin %s", project.id, name, admin_id)
    return get_project(db, project.id)


def get_project(
    db: sqlite3.Connection,
    project_id: str,
    admin_id: str | None = None,
) -> Project | None:
    """Get a project by ID, optionally restricted to one owner."""
    query = "SELECT * FROM projects WHERE id = ?"
    params: list = [project_id]
    if admin_id is not None:
        query += " AND admin_id = ?"
        params.append(str(admin_id))

    row = db.execute(query, params).fetchone()
    if not row:
        return None
    return _row_to_project(db, row)


def require_project(
    db: sqlite3.Connection,
    project_id: str,
    admin_id: str | None = None,
) -> Project:
    project = get_project(db, project_id, admin_id)
    if not project:
        raise NotFoundError("Project not found")
    return project


def list_projects(
    db: sqlite3.Connection,
    admin_id: str | None = None,
    exclude_statuses: tuple[str, ...] = (),
) -> list[Project]:
    """List projects, newest first."""
    query = "SELECT * FROM projects WHERE 1 = 1"
    params: list = []

    if admin_id is not None:
        query += " AND admin_id = ?"
        params.append(str(admin_id))

    if exclude_statuses:
        query += f" AND status NOT IN ({', '.join('?' for _ in exclude_statuses)})"
        params.extend(exclude_statuses)

    query += " ORDER BY created_at DESC, rowid DESC"
    try:
        rows = db.execute(query, params).fetchall()
        return [_row_to_project(db, r) for r in rows]
    except sqlite3.Error as e:
        raise StorageError(f"Failed to list projects: {e}") from e


def save_project(db: sqlite3.Connection, project: Project) -> Project:
    """Persist a project and its tasks.

    The write only succeeds if the stored version still matches the version
    the project was read at; otherwise ``ConflictError`` is raised and
    nothing is written.
    """
    try:
        cursor = db.execute(
            """UPDATE projects
               SET name = ?, description = ?, repo_username = ?, repo_name = ?,
                   start_date = ?, end_date = ?, status = ?, cancel_reason = ?,
                   version = version + 1, updated_at = datetime('now')
               WHERE id = ? AND version = ?""",
            (
                project.name, project.description, project.repo_username,
                project.repo_name, project.start_date.isoformat(),
                project.end_date.isoformat(), project.status, project.cancel_reason,
                project.id, project.version,
            ),
        )
        if cursor.rowcount == 0:
            db.rollback()
            if get_project(db, project.id) is None:
                raise NotFoundError("Project not found")
            raise ConflictError(
                f"Project {project.id} was modified concurrently; reload and retry"
            )

        db.execute("DELETE FROM tasks WHERE project_id = ?", (project.id,))
        for position, task in enumerate(project.tasks):
            _insert_task(db, project.id, position, task)
        db.commit()
    except sqlite3.Error as e:
        db.rollback()
        raise StorageError(f"Failed to save project {project.id}: {e}") from e

    project.version += 1
    return project


def update_project(
    db: sqlite3.Connection,
    project_id: str,
    now: datetime | None = None,
    **kwargs,
) -> Project:
    """Update editable project fields.

    Dates are not re-validated here; the status is recomputed since a moved
    end date can enter or leave the overdue window.
    """
    project = require_project(db, project_id)

    allowed = {"name", "description", "repo_name", "start_date", "end_date"}
    updates = {k: v for k, v in kwargs.items() if k in allowed and v}
    for key, value in updates.items():
        if key in ("start_date", "end_date"):
            value = parse_date(value, key)
        setattr(project, key, value)

    lifecycle.refresh_status(project, now)
    return save_project(db, project)


def cancel_project(
    db: sqlite3.Connection,
    project_id: str,
    reason: str | None,
) -> Project:
    """Cancel a project. Cancellation is terminal."""
    project = require_project(db, project_id)
    lifecycle.cancel(project, reason)
    save_project(db, project)
    logger.info("Project %s canceled: %s", project_id, project.cancel_reason)
    return project


def parse_date(value: datetime | str | None, field_name: str) -> datetime:
    """Parse an ISO date or datetime into an aware UTC datetime."""
    if isinstance(value, datetime):
        return lifecycle.ensure_utc(value)
    if not value:
        raise ValidationError(f"Missing {field_name}")
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError as e:
        raise ValidationError(f"Invalid {field_name}: {value}") from e
    return lifecycle.ensure_utc(parsed)


def _insert_task(db: sqlite3.Connection, project_id: str, position: int, task: Task):
    db.execute(
        """INSERT INTO tasks
           (id, project_id, position, title, description, status, cancel_reason,
            commit_id, commit_url, commit_diff, ai_summary, start_date, end_date,
            created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?,
                   COALESCE(?, datetime('now')), datetime('now'))""",
        (
            task.id, project_id, position, task.title, task.description, task.status,
            task.cancel_reason, task.commit_id, task.commit_url, task.commit_diff,
            task.ai_summary, task.start_date.isoformat(), task.end_date.isoformat(),
            _format_dt(task.created_at),
        ),
    )


def _row_to_project(db: sqlite3.Connection, row: sqlite3.Row) -> Project:
    task_rows = db.execute(
        "SELECT * FROM tasks WHERE project_id = ? ORDER BY position",
        (row["id"],),
    ).fetchall()
    return Project(
        id=row["id"],
        name=row["name"],
        description=row["description"] or "",
        admin_id=row["admin_id"],
        repo_type=row["repo_type"],
        repo_username=row["repo_username"],
        repo_name=row["repo_name"],
        start_date=lifecycle.ensure_utc(datetime.fromisoformat(row["start_date"])),
        end_date=lifecycle.ensure_utc(datetime.fromisoformat(row["end_date"])),
        status=row["status"],
        cancel_reason=row["cancel_reason"],
        version=row["version"],
        created_at=_parse_dt(row["created_at"]),
        updated_at=_parse_dt(row["updated_at"]),
        tasks=[_row_to_task(r) for r in task_rows],
    )


def _row_to_task(row: sqlite3.Row) -> Task:
    return Task(
        id=row["id"],
        title=row["title"],
        description=row["description"] or "",
        status=row["status"],
        cancel_reason=row["cancel_reason"],
        commit_id=row["commit_id"],
        commit_url=row["commit_url"],
        commit_diff=row["commit_diff"],
        ai_summary=row["ai_summary"],
        start_date=lifecycle.ensure_utc(datetime.fromisoformat(row["start_date"])),
        end_date=lifecycle.ensure_utc(datetime.fromisoformat(row["end_date"])),
        created_at=_parse_dt(row["created_at"]),
        updated_at=_parse_dt(row["updated_at"]),
    )


def _parse_dt(val: str | None) -> datetime | None:
    if val is None:
        return None
    return datetime.fromisoformat(val)


def _format_dt(val: datetime | None) -> str | None:
    if val is None:
        return None
    return val.strftime("%Y-%m-%d %H:%M:%S")
