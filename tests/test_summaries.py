"""Tests for the completion client and the commit-to-summary pipeline."""

import json
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import httpx
import pytest

from trackme.config import Config
from trackme.core import projects as projects_mod
from trackme.core import summaries as summaries_mod
from trackme.core import tasks as tasks_mod
from trackme.db.engine import init_db
from trackme.errors import NotFoundError, ValidationError
from trackme.integrations.completion import (
    DIFF_SEPARATOR,
    CompletionClient,
    SummaryGenerationError,
)
from trackme.integrations.repo_host import InvalidDiffContentError, TokenRequiredError

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
COMPLETION_URL = "https://llm.example/v1/chat/completions"

DIFF_A = "diff --git a/a.py b/a.py\n+alpha\n"
DIFF_B = "diff --git a/b.py b/b.py\n+beta\n"


def completion_response(text: str) -> httpx.Response:
    return httpx.Response(200, json={"choices": [{"message": {"content": text}}]})


class FakeHosts:
    """Routes requests to the repository host and completion endpoint."""

    def __init__(self, private=False, completion_status=200, diffs=None):
        self.private = private
        self.completion_status = completion_status
        self.diffs = diffs or {"abc123": DIFF_A, "def456": DIFF_B}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if url.startswith("https://api.github.com/repos/"):
            return httpx.Response(200, json={"private": self.private})
        if url.endswith(".diff"):
            commit = url.rsplit("/", 1)[-1][: -len(".diff")]
            if commit in self.diffs:
                return httpx.Response(200, text=self.diffs[commit])
            return httpx.Response(404)
        if url == COMPLETION_URL:
            if self.completion_status != 200:
                return httpx.Response(self.completion_status)
            prompt = json.loads(request.content)["messages"][1]["content"]
            return completion_response(f"SUMMARY of {len(prompt)} chars")
        return httpx.Response(500)

    def diff_requests(self) -> list[str]:
        return [str(r.url) for r in self.requests if str(r.url).endswith(".diff")]


def make_config(db_path: Path, github_token=None) -> Config:
    return Config(
        db_path=db_path,
        github_token=github_token,
        completion_url=COMPLETION_URL,
        completion_token="hf-secret",
        completion_model="test-model",
    )


@pytest.fixture
def env():
    with tempfile.TemporaryDirectory() as tmp:
        db_path = Path(tmp) / "test.db"
        db = init_db(db_path)
        project = projects_mod.create_project(
            db, "Demo", "admin-1", "github", "alice", "repo", "2026-03-10", "2026-04-10", now=NOW
        )
        for title in ("Build", "Ship", "Docs"):
            tasks_mod.add_task(db, project.id, title, "2026-03-11", "2026-03-12", now=NOW)
        tasks_mod.update_task_status(db, project.id, "build", "completed", commit_id="abc123", now=NOW)
        tasks_mod.update_task_status(db, project.id, "ship", "completed", commit_id="def456", now=NOW)
        yield db, db_path, project.id
        db.close()


def run_task_summary(db, db_path, project_id, hosts, task_id="build", **kwargs):
    transport = httpx.MockTransport(hosts)
    http = httpx.Client(transport=transport)
    config = make_config(db_path, kwargs.pop("github_token", None))
    completion = CompletionClient.from_config(config, http=http)
    return summaries_mod.generate_task_summary(
        db, config, kwargs.pop("admin_id", "admin-1"), project_id, task_id,
        http=http, completion=completion, **kwargs,
    )


class TestCompletionClient:
    def test_payload_and_verbatim_text(self):
        captured = {}

        def handler(request):
            captured["headers"] = request.headers
            captured["body"] = json.loads(request.content)
            return completion_response("  📝 Summary\nverbatim  ")

        client = CompletionClient(
            COMPLETION_URL, "test-model", "hf-secret",
            http=httpx.Client(transport=httpx.MockTransport(handler)),
        )
        assert client.summarize_task(DIFF_A) == "  📝 Summary\nverbatim  "

        body = captured["body"]
        assert body["model"] == "test-model"
        assert body["stream"] is False
        assert [m["role"] for m in body["messages"]] == ["system", "user"]
        assert "📂 Files Modified" in body["messages"][1]["content"]
        assert DIFF_A in body["messages"][1]["content"]
        assert captured["headers"]["authorization"] == "Bearer hf-secret"

    def test_project_prompt_joins_diffs(self):
        captured = {}

        def handler(request):
            captured["prompt"] = json.loads(request.content)["messages"][1]["content"]
            return completion_response("ok")

        client = CompletionClient(
            COMPLETION_URL, "m", http=httpx.Client(transport=httpx.MockTransport(handler))
        )
        client.summarize_project([DIFF_A, DIFF_B])
        assert DIFF_A + DIFF_SEPARATOR + DIFF_B in captured["prompt"]
        assert "🚀 Next Steps" in captured["prompt"]

    def test_http_error(self):
        client = CompletionClient(
            COMPLETION_URL, "m",
            http=httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(500))),
        )
        with pytest.raises(SummaryGenerationError) as exc_info:
            client.summarize_task(DIFF_A)
        assert exc_info.value.status_code == 500

    def test_malformed_body(self):
        client = CompletionClient(
            COMPLETION_URL, "m",
            http=httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(200, json={}))),
        )
        with pytest.raises(SummaryGenerationError, match="malformed"):
            client.summarize_task(DIFF_A)


class TestTaskSummary:
    def test_generates_and_persists(self, env):
        db, db_path, project_id = env
        hosts = FakeHosts()
        result = run_task_summary(db, db_path, project_id, hosts)

        assert result.summary.startswith("SUMMARY")
        assert result.rate_limited is False
        assert result.commit_url == "https://github.com/alice/repo/commit/abc123.diff"

        task = tasks_mod.get_task(db, project_id, "build")
        assert task.ai_summary == result.summary
        assert task.commit_diff == DIFF_A

    def test_regenerating_overwrites(self, env):
        db, db_path, project_id = env
        run_task_summary(db, db_path, project_id, FakeHosts())
        hosts = FakeHosts(diffs={"abc123": DIFF_A + "+more\n"})
        second = run_task_summary(db, db_path, project_id, hosts)
        assert len(hosts.diff_requests()) == 1
        assert tasks_mod.get_task(db, project_id, "build").ai_summary == second.summary

    def test_explicit_commit_id(self, env):
        db, db_path, project_id = env
        result = run_task_summary(db, db_path, project_id, FakeHosts(), commit_id="def456")
        assert result.commit_url.endswith("/def456.diff")

    def test_completion_failure_leaves_task_untouched(self, env):
        db, db_path, project_id = env
        with pytest.raises(SummaryGenerationError) as exc_info:
            run_task_summary(db, db_path, project_id, FakeHosts(completion_status=500))
        assert exc_info.value.status_code == 500

        task = tasks_mod.get_task(db, project_id, "build")
        assert task.ai_summary is None
        assert task.commit_diff is None

    def test_invalid_diff_leaves_task_untouched(self, env):
        db, db_path, project_id = env
        hosts = FakeHosts(diffs={"abc123": "<html>error</html>"})
        with pytest.raises(InvalidDiffContentError):
            run_task_summary(db, db_path, project_id, hosts)
        assert tasks_mod.get_task(db, project_id, "build").ai_summary is None

    def test_private_repo_requires_token(self, env):
        db, db_path, project_id = env
        hosts = FakeHosts(private=True)
        with pytest.raises(TokenRequiredError, match="GITHUB_TOKEN"):
            run_task_summary(db, db_path, project_id, hosts)
        assert hosts.diff_requests() == []

    def test_private_repo_with_token(self, env):
        db, db_path, project_id = env
        hosts = FakeHosts(private=True)
        run_task_summary(db, db_path, project_id, hosts, github_token="gh")
        diff_request = next(r for r in hosts.requests if str(r.url).endswith(".diff"))
        assert diff_request.headers["authorization"] == "token gh"

    def test_missing_repository(self, env):
        db, db_path, project_id = env

        def handler(request):
            return httpx.Response(404)

        with pytest.raises(NotFoundError, match="Repository not found"):
            run_task_summary(db, db_path, project_id, handler)

    def test_other_admin_cannot_summarize(self, env):
        db, db_path, project_id = env
        with pytest.raises(NotFoundError, match="Project not found"):
            run_task_summary(db, db_path, project_id, FakeHosts(), admin_id="admin-2")

    def test_pending_task_without_commit(self, env):
        db, db_path, project_id = env
        with pytest.raises(ValidationError, match="commit id"):
            run_task_summary(db, db_path, project_id, FakeHosts(), task_id="docs")

    def test_unknown_task(self, env):
        db, db_path, project_id = env
        with pytest.raises(NotFoundError, match="Task not found"):
            run_task_summary(db, db_path, project_id, FakeHosts(), task_id="nope")

    def test_repo_username_override_persisted(self, env):
        db, db_path, project_id = env
        hosts = FakeHosts()
        result = run_task_summary(db, db_path, project_id, hosts, repo_username="bob")
        assert result.commit_url == "https://github.com/bob/repo/commit/abc123.diff"
        assert projects_mod.get_project(db, project_id).repo_username == "bob"

    def test_repo_username_kept_when_repository_missing(self, env):
        db, db_path, project_id = env

        def handler(request):
            return httpx.Response(404)

        with pytest.raises(NotFoundError, match="Repository not found"):
            run_task_summary(db, db_path, project_id, handler, repo_username="bob")
        assert projects_mod.get_project(db, project_id).repo_username == "alice"

    def test_repo_username_kept_when_completion_fails(self, env):
        db, db_path, project_id = env
        hosts = FakeHosts(completion_status=500)
        with pytest.raises(SummaryGenerationError):
            run_task_summary(db, db_path, project_id, hosts, repo_username="bob")

        project = projects_mod.get_project(db, project_id)
        assert project.repo_username == "alice"
        assert project.get_task("build").ai_summary is None


class TestProjectSummary:
    def _run(self, db, db_path, project_id, hosts):
        http = httpx.Client(transport=httpx.MockTransport(hosts))
        config = make_config(db_path)
        return summaries_mod.generate_project_summary(
            db, config, "admin-1", project_id,
            http=http, completion=CompletionClient.from_config(config, http=http),
        )

    def test_reuses_cached_diffs(self, env):
        db, db_path, project_id = env
        run_task_summary(db, db_path, project_id, FakeHosts())
        run_task_summary(db, db_path, project_id, FakeHosts(), task_id="ship")

        hosts = FakeHosts()
        result = self._run(db, db_path, project_id, hosts)
        assert result.summary.startswith("SUMMARY")
        assert result.commit_url is None
        assert hosts.diff_requests() == []

    def test_fetches_and_caches_missing_diffs(self, env):
        db, db_path, project_id = env
        hosts = FakeHosts()
        self._run(db, db_path, project_id, hosts)
        assert len(hosts.diff_requests()) == 2
        assert tasks_mod.get_task(db, project_id, "ship").commit_diff == DIFF_B

        again = FakeHosts()
        self._run(db, db_path, project_id, again)
        assert again.diff_requests() == []

    def test_completion_failure_caches_nothing(self, env):
        db, db_path, project_id = env
        with pytest.raises(SummaryGenerationError):
            self._run(db, db_path, project_id, FakeHosts(completion_status=503))
        assert tasks_mod.get_task(db, project_id, "build").commit_diff is None

    def test_no_completed_tasks(self):
        with tempfile.TemporaryDirectory() as tmp:
            db_path = Path(tmp) / "test.db"
            db = init_db(db_path)
            project = projects_mod.create_project(
                db, "Empty", "admin-1", "github", "alice", "repo",
                "2026-03-10", "2026-04-10", now=NOW,
            )
            with pytest.raises(ValidationError, match="no completed tasks"):
                self._run(db, db_path, project.id, FakeHosts())
            db.close()
