"""Configuration loading from environment variables."""

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_COMPLETION_URL = "https://router.huggingface.co/novita/v3/openai/chat/completions"
DEFAULT_COMPLETION_MODEL = "deepseek/deepseek-v3-0324"
DEFAULT_HTTP_TIMEOUT = 30.0


@dataclass
class Config:
    db_path: Path = field(default_factory=lambda: Path.home() / ".trackme" / "trackme.db")
    github_token: str | None = None
    gitlab_token: str | None = None
    completion_url: str = DEFAULT_COMPLETION_URL
    completion_token: str | None = None
    completion_model: str = DEFAULT_COMPLETION_MODEL
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    sweep_interval: float = 3600.0

    @classmethod
    def from_env(cls) -> "Config":
        config = cls()

        if db := os.environ.get("TRACKME_DB_PATH"):
            config.db_path = Path(db)

        config.github_token = os.environ.get("GITHUB_TOKEN") or None
        config.gitlab_token = os.environ.get("GITLAB_TOKEN") or None
        config.completion_token = os.environ.get("HUGGING_FACE_TOKEN") or None

        if url := os.environ.get("TRACKME_COMPLETION_URL"):
            config.completion_url = url

        if model := os.environ.get("TRACKME_COMPLETION_MODEL"):
            config.completion_model = model

        if timeout := os.environ.get("TRACKME_HTTP_TIMEOUT"):
            config.http_timeout = float(timeout)

        if interval := os.environ.get("TRACKME_SWEEP_INTERVAL"):
            config.sweep_interval = float(interval)

        return config

    def token_for(self, repo_type: str) -> str | None:
        """Return the API token configured for a repository host kind."""
        return {
            "github": self.github_token,
            "gitlab": self.gitlab_token,
        }.get(repo_type)


def get_config() -> Config:
    return Config.from_env()
