"""Commit-to-summary pipeline.

The task's ``ai_summary``, ``commit_url`` and cached ``commit_diff`` are
written in a single save after every network step has succeeded, so a
failure anywhere leaves the stored task untouched.
"""

import logging
import sqlite3
from dataclasses import dataclass

import httpx

from trackme.config import Config
from trackme.core.projects import require_project, save_project
from trackme.errors import NotFoundError, ValidationError
from trackme.integrations import repo_host
from trackme.integrations.completion import CompletionClient

logger = logging.getLogger(__name__)


@dataclass
class SummaryResult:
    summary: str
    rate_limited: bool
    commit_url: str | None = None


def _checked_access(project, config: Config, http: httpx.Client | None) -> tuple[str | None, bool]:
    """Verify the repository is readable. Returns ``(token, rate_limited)``."""
    token = config.token_for(project.repo_type)
    access = repo_host.check_access(
        project.repo_type,
        project.repo_username,
        project.repo_name,
        token,
        client=http,
        timeout=config.http_timeout,
    )
    if not access.exists:
        raise NotFoundError("Repository not found. Please check the repository details.")
    if access.rate_limited:
        logger.warning(
            "Rate limit reached for %s. Consider adding an API token.", project.repo_type
        )
    repo_host.require_token(access, project.repo_type, token)
    return token, access.rate_limited


def generate_task_summary(
    db: sqlite3.Connection,
    config: Config,
    admin_id: str,
    project_id: str,
    task_id: str,
    commit_id: str | None = None,
    repo_username: str | None = None,
    http: httpx.Client | None = None,
    completion: CompletionClient | None = None,
) -> SummaryResult:
    """Fetch a task's commit diff, summarize it and store the result on the task."""
    project = require_project(db, project_id, admin_id)

    # Written together with the summary, never on its own.
    if repo_username:
        project.repo_username = repo_username

    token, rate_limited = _checked_access(project, config, http)

    task = project.get_task(task_id)
    if not task:
        raise NotFoundError("Task not found")

    commit_id = commit_id or task.commit_id
    if not commit_id:
        raise ValidationError("A commit id is required to generate a summary")

    commit_url = repo_host.resolve_commit_url(
        project.repo_type, project.repo_username, project.repo_name, commit_id
    )
    logger.info("Fetching diff from %s", commit_url)
    diff = repo_host.fetch_diff(
        commit_url, project.repo_type, token, client=http, timeout=config.http_timeout
    )

    completion = completion or CompletionClient.from_config(config)
    summary = completion.summarize_task(diff)

    task.commit_url = commit_url
    task.commit_diff = diff
    task.ai_summary = summary
    save_project(db, project)

    return SummaryResult(summary=summary, rate_limited=rate_limited, commit_url=commit_url)


def generate_project_summary(
    db: sqlite3.Connection,
    config: Config,
    admin_id: str,
    project_id: str,
    http: httpx.Client | None = None,
    completion: CompletionClient | None = None,
) -> SummaryResult:
    """Summarize a project from the diffs of its completed tasks.

    Diffs cached by earlier task summaries are reused; a completed task
    without one is fetched once and cached.
    """
    project = require_project(db, project_id, admin_id)
    token, rate_limited = _checked_access(project, config, http)

    completed = [t for t in project.tasks if t.status == "completed" and t.commit_url]
    if not completed:
        raise ValidationError("Project has no completed tasks to summarize")

    fetched = {}
    for task in completed:
        if task.commit_diff is None:
            fetched[task.id] = repo_host.fetch_diff(
                task.commit_url,
                project.repo_type,
                token,
                client=http,
                timeout=config.http_timeout,
            )
    diffs = [task.commit_diff or fetched[task.id] for task in completed]

    completion = completion or CompletionClient.from_config(config)
    summary = completion.summarize_project(diffs)

    if fetched:
        for task in completed:
            if task.id in fetched:
                task.commit_diff = fetched[task.id]
        save_project(db, project)

    return SummaryResult(summary=summary, rate_limited=rate_limited)
