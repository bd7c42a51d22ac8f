"""Chat-completion endpoint client used to summarize git diffs."""

import logging
from contextlib import contextmanager

import httpx

from trackme.config import DEFAULT_HTTP_TIMEOUT
from trackme.errors import TrackMeError

logger = logging.getLogger(__name__)

DIFF_SEPARATOR = "\n\n---\n\n"

SYSTEM_PROMPT = (
    "You are a helpful programming instructor who provides clear, detailed "
    "explanations with examples. You analyze Git diffs and provide structured, "
    "actionable summaries."
)

TASK_PROMPT = """Analyze the following Git diff and provide a clear summary in this format:

📝 Summary
[Provide a high-level overview of the changes in 1-2 sentences]

📂 Files Modified
[List each modified file with a brief description of changes]

🔧 Key Changes
- [List major functional changes]
- [List bug fixes]
- [List improvements]

💡 Impact
[Explain how these changes affect the system/users]

Git Diff Content:
{diff}"""

PROJECT_PROMPT = """Review the following Git diffs and provide a comprehensive project progress summary in this format:

📊 Progress Overview
[High-level summary of project progress]

🎯 Key Achievements
- [List major features completed]
- [List significant improvements]
- [List bug fixes]

📈 Impact Analysis
[Explain how these changes contribute to project goals]

🚀 Next Steps
[Suggest logical next steps based on these changes]

Git Diff Content:
{diff}"""


class SummaryGenerationError(TrackMeError):
    """Raised when the completion endpoint does not produce a summary."""

    status_code = 502


class CompletionClient:
    """Sends one non-streaming chat request per summary."""

    def __init__(
        self,
        url: str,
        model: str,
        token: str | None = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        http: httpx.Client | None = None,
    ):
        self.url = url
        self.model = model
        self.token = token
        self.timeout = timeout
        self._http = http

    @classmethod
    def from_config(cls, config, http: httpx.Client | None = None) -> "CompletionClient":
        return cls(
            url=config.completion_url,
            model=config.completion_model,
            token=config.completion_token,
            timeout=config.http_timeout,
            http=http,
        )

    def summarize_task(self, diff_text: str) -> str:
        """Summarize a single commit diff."""
        return self.complete(TASK_PROMPT.format(diff=diff_text))

    def summarize_project(self, diff_texts: list[str]) -> str:
        """Summarize the concatenated diffs of a project's completed tasks."""
        return self.complete(PROJECT_PROMPT.format(diff=DIFF_SEPARATOR.join(diff_texts)))

    def build_payload(self, prompt: str) -> dict:
        return {
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "model": self.model,
            "stream": False,
        }

    def complete(self, prompt: str) -> str:
        """Send a prompt and return the generated text verbatim."""
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        with self._session() as http:
            try:
                response = http.post(self.url, json=self.build_payload(prompt), headers=headers)
            except httpx.HTTPError as e:
                logger.error("Completion request failed: %s", e)
                raise SummaryGenerationError(f"Failed to generate AI summary: {e}") from e

        if not response.is_success:
            logger.error("Completion endpoint returned HTTP %s", response.status_code)
            raise SummaryGenerationError(
                f"Failed to generate AI summary: AI API request failed with status "
                f"{response.status_code}",
                response.status_code,
            )

        try:
            return response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise SummaryGenerationError(
                f"Failed to generate AI summary: malformed response ({e})"
            ) from e

    @contextmanager
    def _session(self):
        if self._http is not None:
            yield self._http
            return
        with httpx.Client(timeout=self.timeout) as owned:
            yield owned
