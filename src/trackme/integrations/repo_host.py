"""GitHub/GitLab REST access: repository visibility checks and commit diffs."""

import logging
from contextlib import contextmanager
from dataclasses import dataclass

import httpx

from trackme.config import DEFAULT_HTTP_TIMEOUT
from trackme.errors import TrackMeError

logger = logging.getLogger(__name__)

USER_AGENT = "trackme"
DIFF_MARKER = "diff --git"


class RepoHostError(TrackMeError):
    """Raised when a repository host operation fails."""


class UnsupportedHostError(RepoHostError):
    status_code = 400


class RepositoryAccessError(RepoHostError):
    """The host's metadata endpoint answered with an unexpected status."""


class RateLimitError(RepoHostError):
    """Anonymous request refused; a token would likely lift the limit."""

    status_code = 403
    rate_limited = True


class DiffFetchError(RepoHostError):
    """The raw diff endpoint answered with a non-success status."""


class InvalidDiffContentError(RepoHostError):
    """The host answered 200 but the body is not a git diff."""

    status_code = 400


class TokenRequiredError(RepoHostError):
    status_code = 403


@dataclass
class RepoAccess:
    exists: bool
    is_private: bool | None
    rate_limited: bool


def resolve_commit_url(host_kind: str, owner: str, repo_name: str, commit_id: str) -> str:
    """Build the raw ``.diff`` URL for a commit."""
    if host_kind == "github":
        return f"https://github.com/{owner}/{repo_name}/commit/{commit_id}.diff"
    if host_kind == "gitlab":
        return f"https://gitlab.com/{owner}/{repo_name}/-/commit/{commit_id}.diff"
    raise UnsupportedHostError(f"Unsupported repository type: {host_kind}")


def metadata_url(host_kind: str, owner: str, repo_name: str) -> str:
    if host_kind == "github":
        return f"https://api.github.com/repos/{owner}/{repo_name}"
    if host_kind == "gitlab":
        return f"https://gitlab.com/api/v4/projects/{owner}%2F{repo_name}"
    raise UnsupportedHostError(f"Unsupported repository type: {host_kind}")


def auth_headers(host_kind: str, token: str | None) -> dict[str, str]:
    headers = {"User-Agent": USER_AGENT}
    if token:
        if host_kind == "github":
            headers["Authorization"] = f"token {token}"
        elif host_kind == "gitlab":
            headers["PRIVATE-TOKEN"] = token
    return headers


@contextmanager
def _session(client: httpx.Client | None, timeout: float):
    """Yield the given client, or a short-lived one closed on exit."""
    if client is not None:
        yield client
        return
    with httpx.Client(timeout=timeout, follow_redirects=True) as owned:
        yield owned


def check_access(
    host_kind: str,
    owner: str,
    repo_name: str,
    token: str | None = None,
    client: httpx.Client | None = None,
    timeout: float = DEFAULT_HTTP_TIMEOUT,
) -> RepoAccess:
    """Ask the host whether a repository exists and whether it is private."""
    url = metadata_url(host_kind, owner, repo_name)

    with _session(client, timeout) as http:
        try:
            response = http.get(url, headers=auth_headers(host_kind, token))
        except httpx.HTTPError as e:
            raise RepositoryAccessError(f"Error checking repository access: {e}") from e

    # Heuristic: an anonymous 403 is most often quota exhaustion, not a
    # missing repository. Existence is assumed rather than verified.
    if response.status_code == 403 and not token:
        logger.warning("Anonymous %s request was refused; assuming rate limit", host_kind)
        return RepoAccess(exists=True, is_private=None, rate_limited=True)

    if response.status_code == 404:
        return RepoAccess(exists=False, is_private=None, rate_limited=False)

    if not response.is_success:
        raise RepositoryAccessError(
            f"Failed to check repository: {response.reason_phrase}",
            response.status_code,
        )

    try:
        data = response.json()
    except ValueError as e:
        raise RepositoryAccessError(f"Unreadable repository metadata: {e}", 502) from e

    if host_kind == "github":
        is_private = bool(data.get("private"))
    elif "public" in data:
        is_private = not data["public"]
    else:
        is_private = data.get("visibility") != "public"

    return RepoAccess(exists=True, is_private=is_private, rate_limited=False)


def require_token(access: RepoAccess, host_kind: str, token: str | None) -> None:
    """Fail fast when a private repository is about to be read anonymously."""
    if access.is_private and not token:
        raise TokenRequiredError(
            f"API token required for private {host_kind} repositories. "
            f"Please add {host_kind.upper()}_TOKEN to environment variables."
        )


def fetch_diff(
    url: str,
    host_kind: str,
    token: str | None = None,
    client: httpx.Client | None = None,
    timeout: float = DEFAULT_HTTP_TIMEOUT,
) -> str:
    """Download the textual patch behind a commit URL."""
    headers = auth_headers(host_kind, token)
    headers["Accept"] = "text/plain"

    with _session(client, timeout) as http:
        try:
            response = http.get(url, headers=headers)
        except httpx.HTTPError as e:
            raise RepositoryAccessError(f"Error fetching git diff: {e}") from e

    if response.status_code == 403 and not token:
        raise RateLimitError(
            "Rate limit exceeded. Consider using an API token for higher limits."
        )

    if not response.is_success:
        raise DiffFetchError(
            f"Failed to fetch diff: {response.reason_phrase}",
            response.status_code,
        )

    diff = response.text
    if DIFF_MARKER not in diff:
        raise InvalidDiffContentError("Invalid diff content received")

    logger.debug("Fetched %d bytes of diff from %s", len(diff), url)
    return diff
