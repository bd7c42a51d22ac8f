"""CLI entry point for trackme."""

import json
import logging
import sys

import click

from trackme.config import get_config
from trackme.core import progress as progress_mod
from trackme.core import projects as projects_mod
from trackme.core.scheduler import DeadlineScheduler
from trackme.db.engine import get_db
from trackme.errors import TrackMeError


def _get_db():
    config = get_config()
    return get_db(config.db_path)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def main(verbose):
    """trackme - project deadline and commit summary tracker"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ── Server Commands ───────────────────────────────────────────────────────────


@main.command("serve")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", default=5000, type=int, help="Port to listen on")
def serve(host, port):
    """Run the HTTP API with the deadline scheduler."""
    from trackme.web.app import run_server

    click.echo(f"Serving trackme API at http://{host}:{port}")
    run_server(host=host, port=port)


@main.command("sweep")
def sweep():
    """Run one deadline sweep and exit."""
    config = get_config()
    updated = DeadlineScheduler(config.db_path).run_once()
    if not updated:
        click.echo("No project status changes.")
        return
    for project_id in updated:
        click.echo(f"Updated: {project_id}")


# ── Project Commands ──────────────────────────────────────────────────────────


@main.group("project")
def project_group():
    """Inspect and manage projects."""
    pass


@project_group.command("list")
@click.option("--admin", default=None, help="Only projects owned by this admin")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def project_list(admin, json_output):
    """List projects."""
    with _get_db() as db:
        projects = projects_mod.list_projects(db, admin_id=admin)

    if json_output:
        click.echo(json.dumps([_project_dict(p) for p in projects], indent=2))
        return

    if not projects:
        click.echo("No projects found.")
        return

    for p in projects:
        pct = progress_mod.project_progress(p)
        click.echo(f"  {p.id}: {p.name} ({p.status}) {pct}% [{p.repo_type}:{p.repo_username}/{p.repo_name}]")


@project_group.command("show")
@click.argument("project_id")
def project_show(project_id):
    """Show project details and its tasks."""
    with _get_db() as db:
        project = projects_mod.get_project(db, project_id)
    if not project:
        click.echo(f"Project not found: {project_id}", err=True)
        sys.exit(1)

    click.echo(f"Project: {project.id}")
    click.echo(f"  Name: {project.name}")
    click.echo(f"  Status: {project.status}")
    if project.cancel_reason:
        click.echo(f"  Cancel reason: {project.cancel_reason}")
    click.echo(f"  Admin: {project.admin_id}")
    click.echo(f"  Repo: {project.repo_type}:{project.repo_username}/{project.repo_name}")
    click.echo(f"  Window: {project.start_date.date()} -> {project.end_date.date()}")
    click.echo(f"  Progress: {progress_mod.project_progress(project)}%")

    status_icons = {"pending": "○", "completed": "✓", "canceled": "✗"}
    for task in project.tasks:
        icon = status_icons.get(task.status, "?")
        commit = f" [commit: {task.commit_id}]" if task.commit_id else ""
        click.echo(f"    {icon} {task.id}: {task.title} ({task.status}){commit}")


@project_group.command("cancel")
@click.argument("project_id")
@click.option("--reason", required=True, help="Why the project is canceled")
def project_cancel(project_id, reason):
    """Cancel a project."""
    with _get_db() as db:
        try:
            project = projects_mod.cancel_project(db, project_id, reason)
        except TrackMeError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
    click.echo(f"Canceled: {project.id} ({project.cancel_reason})")


# ── Helpers ───────────────────────────────────────────────────────────────────


def _project_dict(project) -> dict:
    return {
        "id": project.id,
        "name": project.name,
        "status": project.status,
        "admin_id": project.admin_id,
        "repo": f"{project.repo_type}:{project.repo_username}/{project.repo_name}",
        "start_date": project.start_date.isoformat(),
        "end_date": project.end_date.isoformat(),
        "progress": progress_mod.project_progress(project),
        "tasks": len(project.tasks),
    }


if __name__ == "__main__":
    main()
