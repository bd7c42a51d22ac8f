"""HTTP API for developers and admins.

Authentication happens upstream; the proxy in front of this app forwards the
authenticated principal as ``X-User-Id`` and ``X-User-Role`` headers.
"""

import logging
from contextlib import asynccontextmanager

import httpx
import uvicorn
from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from trackme.config import Config, get_config
from trackme.core import progress as progress_mod
from trackme.core import projects as projects_mod
from trackme.core import summaries as summaries_mod
from trackme.core import tasks as tasks_mod
from trackme.core.scheduler import DeadlineScheduler
from trackme.db.engine import get_db, init_db
from trackme.errors import TrackMeError, ValidationError
from trackme.integrations.completion import CompletionClient

logger = logging.getLogger(__name__)


def _config(request: Request) -> Config:
    return request.app.state.config


def _get_db(request: Request):
    return init_db(_config(request).db_path)


def _principal(request: Request, role: str) -> str:
    user_id = request.headers.get("x-user-id")
    if not user_id:
        raise TrackMeError("Authentication required", 401)
    if request.headers.get("x-user-role") != role:
        raise TrackMeError(f"{role.capitalize()} access required", 403)
    return user_id


async def _json_body(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError as e:
        raise ValidationError("Request body must be JSON") from e
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


# ── Developer handlers ────────────────────────────────────────────────────────


async def dev_create_project(request: Request):
    developer = _principal(request, "developer")
    body = await _json_body(request)
    db = _get_db(request)
    try:
        project = projects_mod.create_project(
            db,
            name=body.get("name"),
            admin_id=body.get("adminId"),
            repo_type=body.get("repoType"),
            repo_username=body.get("repoUsername") or developer,
            repo_name=body.get("repoName"),
            start_date=body.get("startDate"),
            end_date=body.get("endDate"),
            description=body.get("description", ""),
        )
        return JSONResponse(_project_dict(project), status_code=201)
    finally:
        db.close()


async def dev_list_projects(request: Request):
    _principal(request, "developer")
    db = _get_db(request)
    try:
        return JSONResponse([_project_dict(p) for p in projects_mod.list_projects(db)])
    finally:
        db.close()


async def dev_update_project(request: Request):
    _principal(request, "developer")
    body = await _json_body(request)
    db = _get_db(request)
    try:
        project = projects_mod.update_project(
            db,
            request.path_params["project_id"],
            name=body.get("name"),
            description=body.get("description"),
            repo_name=body.get("repoName"),
            start_date=body.get("startDate"),
            end_date=body.get("endDate"),
        )
        return JSONResponse(_project_dict(project))
    finally:
        db.close()


async def dev_cancel_project(request: Request):
    _principal(request, "developer")
    body = await _json_body(request)
    db = _get_db(request)
    try:
        project = projects_mod.cancel_project(
            db, request.path_params["project_id"], body.get("cancelReason")
        )
        return JSONResponse(_project_dict(project))
    finally:
        db.close()


async def dev_add_task(request: Request):
    _principal(request, "developer")
    body = await _json_body(request)
    schedule = body.get("schedule") or {}
    if not isinstance(schedule, dict):
        raise ValidationError("schedule must be an object with startDate and endDate")
    db = _get_db(request)
    try:
        task = tasks_mod.add_task(
            db,
            request.path_params["project_id"],
            title=body.get("title"),
            start_date=schedule.get("startDate"),
            end_date=schedule.get("endDate"),
            description=body.get("description", ""),
        )
        return JSONResponse(_task_dict(task), status_code=201)
    finally:
        db.close()


async def dev_update_task_status(request: Request):
    _principal(request, "developer")
    body = await _json_body(request)
    db = _get_db(request)
    try:
        task = tasks_mod.update_task_status(
            db,
            request.path_params["project_id"],
            request.path_params["task_id"],
            body.get("status"),
            commit_id=body.get("commitId"),
            cancel_reason=body.get("cancelReason"),
        )
        return JSONResponse(_task_dict(task))
    finally:
        db.close()


# ── Admin handlers ────────────────────────────────────────────────────────────


async def admin_dashboard(request: Request):
    admin_id = _principal(request, "admin")
    window = request.query_params.get("filter", "all")
    db = _get_db(request)
    try:
        data = progress_mod.admin_dashboard(db, admin_id, window)
    finally:
        db.close()

    return JSONResponse({
        "activeProjects": [
            {
                **_project_dict(entry["project"], with_tasks=False),
                "progress": entry["progress"],
                "totalTasks": entry["total_tasks"],
                "completedTasks": entry["completed_tasks"],
            }
            for entry in data["active_projects"]
        ],
        "todaysTasks": [
            {**_task_dict(task), "projectId": project.id, "projectName": project.name}
            for project, task in data["todays_tasks"]
        ],
        "summary": {
            "totalProjects": data["summary"]["total_projects"],
            "activeProjects": data["summary"]["active_projects"],
            "completedProjects": data["summary"]["completed_projects"],
            "outOfDeadlineProjects": data["summary"]["out_of_deadline_projects"],
            "todaysTasks": data["summary"]["todays_tasks"],
        },
    })


async def admin_get_project(request: Request):
    admin_id = _principal(request, "admin")
    window = request.query_params.get("filter", "all")
    db = _get_db(request)
    try:
        project = projects_mod.require_project(db, request.path_params["project_id"], admin_id)
        tasks = progress_mod.filter_tasks(project.tasks, window)
        project_data = _project_dict(project, with_tasks=False)
        project_data["tasks"] = [_task_dict(t) for t in tasks]
        project_data["progress"] = progress_mod.completion_percent(tasks)
        return JSONResponse({"project": project_data})
    finally:
        db.close()


async def admin_generate_summary(request: Request):
    admin_id = _principal(request, "admin")
    body = await _json_body(request)
    if not body.get("projectId"):
        raise ValidationError("projectId is required")

    config = _config(request)
    result = await run_in_threadpool(
        _generate_summary, config, admin_id, body, request.app.state.http
    )
    payload = {"summary": result.summary, "rateLimited": result.rate_limited}
    if result.commit_url:
        payload["commitUrl"] = result.commit_url
    return JSONResponse(payload)


def _generate_summary(config: Config, admin_id: str, body: dict, http: httpx.Client | None):
    completion = CompletionClient.from_config(config, http=http) if http else None
    with get_db(config.db_path) as db:
        if body.get("taskId"):
            return summaries_mod.generate_task_summary(
                db,
                config,
                admin_id,
                body["projectId"],
                body["taskId"],
                commit_id=body.get("commitId"),
                repo_username=body.get("repoUsername"),
                http=http,
                completion=completion,
            )
        return summaries_mod.generate_project_summary(
            db, config, admin_id, body["projectId"], http=http, completion=completion
        )


# ── Serialization ─────────────────────────────────────────────────────────────


def _project_dict(p, with_tasks: bool = True) -> dict:
    data = {
        "id": p.id,
        "name": p.name,
        "description": p.description,
        "adminId": p.admin_id,
        "repoType": p.repo_type,
        "repoUsername": p.repo_username,
        "repoName": p.repo_name,
        "status": p.status,
        "cancelReason": p.cancel_reason,
        "startDate": p.start_date.isoformat(),
        "endDate": p.end_date.isoformat(),
        "createdAt": p.created_at.isoformat() if p.created_at else None,
        "updatedAt": p.updated_at.isoformat() if p.updated_at else None,
    }
    if with_tasks:
        data["tasks"] = [_task_dict(t) for t in p.tasks]
    return data


def _task_dict(t) -> dict:
    return {
        "id": t.id,
        "title": t.title,
        "description": t.description,
        "status": t.status,
        "cancelReason": t.cancel_reason,
        "commitId": t.commit_id,
        "commitUrl": t.commit_url,
        "aiSummary": t.ai_summary,
        "schedule": {
            "startDate": t.start_date.isoformat(),
            "endDate": t.end_date.isoformat(),
        },
    }


async def _handle_error(request: Request, exc: TrackMeError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        {"error": str(exc), "rateLimited": exc.rate_limited},
        status_code=exc.status_code,
    )


# ── App ───────────────────────────────────────────────────────────────────────


def create_app(
    config: Config | None = None,
    run_scheduler: bool = True,
    http: httpx.Client | None = None,
) -> Starlette:
    """Build the app. ``http`` is the outbound client for repository hosts
    and the completion endpoint; each request opens its own when unset."""
    config = config or get_config()

    @asynccontextmanager
    async def lifespan(app: Starlette):
        scheduler = None
        if run_scheduler:
            scheduler = DeadlineScheduler(config.db_path, interval=config.sweep_interval)
            scheduler.start()
        try:
            yield
        finally:
            if scheduler:
                scheduler.stop()

    routes = [
        Route("/api/developer/projects", dev_create_project, methods=["POST"]),
        Route("/api/developer/projects", dev_list_projects, methods=["GET"]),
        Route("/api/developer/projects/{project_id}", dev_update_project, methods=["PUT"]),
        Route("/api/developer/projects/{project_id}/cancel", dev_cancel_project, methods=["PATCH"]),
        Route("/api/developer/projects/{project_id}/tasks", dev_add_task, methods=["POST"]),
        Route(
            "/api/developer/projects/{project_id}/tasks/{task_id}/status",
            dev_update_task_status,
            methods=["PATCH"],
        ),
        Route("/api/admin/dashboard", admin_dashboard),
        Route("/api/admin/projects/{project_id}", admin_get_project),
        Route("/api/admin/generate-summary", admin_generate_summary, methods=["POST"]),
    ]
    app = Starlette(
        routes=routes,
        lifespan=lifespan,
        exception_handlers={TrackMeError: _handle_error},
    )
    app.state.config = config
    app.state.http = http
    return app


def run_server(host: str = "127.0.0.1", port: int = 5000):
    app = create_app()
    uvicorn.run(app, host=host, port=port)
