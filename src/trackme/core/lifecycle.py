"""Project and task status transitions.

A project's stored status is one of three shapes:

- ``Canceled(reason)``: set only by explicit cancellation, never recomputed.
- ``Completed()``: reached once every task is terminal with at least one
  completed, never recomputed afterwards.
- ``Derived(status)``: anything else; recomputed from the task set and the
  current time on every task change and on every deadline sweep.
"""

from dataclasses import dataclass
from datetime import datetime, timezone

from trackme.db.models import Project, Task, TASK_STATUSES
from trackme.errors import ValidationError


@dataclass(frozen=True)
class Canceled:
    reason: str | None


@dataclass(frozen=True)
class Completed:
    pass


@dataclass(frozen=True)
class Derived:
    status: str


ProjectState = Canceled | Completed | Derived


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def stored_state(project: Project) -> ProjectState:
    if project.status == "canceled":
        return Canceled(project.cancel_reason)
    if project.status == "completed":
        return Completed()
    return Derived(project.status)


def derive_status(tasks: list[Task], end_date: datetime, now: datetime) -> str:
    """Status implied by the task set and the clock, ignoring sticky states."""
    has_completed = any(t.status == "completed" for t in tasks)
    has_pending = any(t.status == "pending" for t in tasks)

    if has_completed and not has_pending:
        return "completed"
    if has_pending and ensure_utc(now) > ensure_utc(end_date):
        return "outOfDeadline"
    if has_completed:
        return "in-progress"
    return "active"


def recompute(project: Project, now: datetime | None = None) -> tuple[str, bool]:
    """Return ``(status, changed)`` for a project without mutating it."""
    state = stored_state(project)
    if not isinstance(state, Derived):
        return project.status, False

    status = derive_status(project.tasks, project.end_date, now or utcnow())
    return status, status != state.status


def refresh_status(project: Project, now: datetime | None = None) -> bool:
    """Apply ``recompute`` to the project in place. Returns True if it changed."""
    status, changed = recompute(project, now)
    if changed:
        project.status = status
    return changed


def cancel(project: Project, reason: str | None) -> Project:
    """Force a project into the terminal canceled state."""
    if not reason or not reason.strip():
        raise ValidationError("A cancel reason is required")
    if isinstance(stored_state(project), Canceled):
        raise ValidationError(f"Project {project.id} is already canceled")

    project.status = "canceled"
    project.cancel_reason = reason.strip()
    return project


def transition_task(
    task: Task,
    status: str,
    commit_id: str | None = None,
    commit_url: str | None = None,
    cancel_reason: str | None = None,
) -> Task:
    """Move a pending task to ``completed`` or ``canceled``.

    ``commit_id``/``commit_url`` and ``cancel_reason`` are only ever written,
    never cleared.
    """
    if status not in TASK_STATUSES:
        raise ValidationError(f"Invalid task status: {status}")
    if task.status != "pending":
        raise ValidationError(f"Task {task.id} is already {task.status}")

    if status == "completed":
        if not commit_id:
            raise ValidationError("A commit id is required to complete a task")
        task.commit_id = commit_id
        task.commit_url = commit_url
    elif status == "canceled":
        if not cancel_reason or not cancel_reason.strip():
            raise ValidationError("A cancel reason is required to cancel a task")
        task.cancel_reason = cancel_reason.strip()
    else:
        raise ValidationError("A task cannot be moved back to pending")

    task.status = status
    return task
