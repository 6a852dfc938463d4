"""Issue tracker connector contract, error taxonomy, and factory helpers."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Protocol

from assign_bot.engine.models import RepoRef
from assign_bot.github.github_auth import GitHubAuth, load_github_auth_from_env


@dataclass(frozen=True)
class TrackerIssue:
    number: int
    state: str
    assignees: list[str] = field(default_factory=list)
    labels: list[str] = field(default_factory=list)
    is_pull_request: bool = False

    @property
    def is_open(self) -> bool:
        return self.state == "open"

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "TrackerIssue":
        assignees = [
            str(item.get("login", "")) if isinstance(item, dict) else str(item)
            for item in payload.get("assignees") or []
        ]
        labels = [
            str(item.get("name", "")) if isinstance(item, dict) else str(item)
            for item in payload.get("labels") or []
        ]
        return cls(
            number=int(payload.get("number", 0) or 0),
            state=str(payload.get("state", "open")),
            assignees=[login for login in assignees if login],
            labels=[label for label in labels if label],
            is_pull_request=bool(payload.get("pull_request")),
        )


class TrackerError(RuntimeError):
    def __init__(self, message: str, reason_code: str, status: int | None = None) -> None:
        super().__init__(message)
        self.reason_code = reason_code
        self.status = status


class NotFoundError(TrackerError):
    """The referenced issue no longer exists; never worth retrying."""

    def __init__(self, message: str, status: int | None = 404) -> None:
        super().__init__(message, reason_code="github_not_found", status=status)


class TransientTrackerError(TrackerError):
    def __init__(
        self,
        message: str,
        reason_code: str,
        status: int | None = None,
        retry_after_s: float | None = None,
    ) -> None:
        super().__init__(message, reason_code=reason_code, status=status)
        self.retry_after_s = retry_after_s


class IssueTracker(Protocol):
    """Connector contract for all issue tracker implementations."""

    def get_issue(self, repo: RepoRef, issue_number: int) -> TrackerIssue: ...

    def add_assignee(self, repo: RepoRef, issue_number: int, login: str) -> None: ...

    def remove_assignee(self, repo: RepoRef, issue_number: int, login: str) -> None: ...

    def list_comments(self, repo: RepoRef, issue_number: int) -> list[dict[str, Any]]: ...

    def create_comment(self, repo: RepoRef, issue_number: int, body: str) -> dict[str, Any]: ...


def resolve_connector_type(env: dict[str, str] | None = None) -> str:
    """Explicit ``ASSIGN_BOT_GITHUB_CONNECTOR``, else ``api`` when a token is set."""
    env_map = os.environ if env is None else env
    explicit = (env_map.get("ASSIGN_BOT_GITHUB_CONNECTOR") or "").strip().lower()
    if explicit:
        return explicit
    return "api" if load_github_auth_from_env(env_map).read_token else "in_memory"


def build_connector_from_env(env: dict[str, str] | None = None) -> IssueTracker:
    env_map = os.environ if env is None else env
    connector_type = resolve_connector_type(env_map)

    if connector_type == "api":
        from assign_bot.github.github_connector_api import GitHubIssueTracker

        return GitHubIssueTracker(auth=load_github_auth_from_env(env_map))

    from assign_bot.github.github_connector_inmemory import InMemoryIssueTracker

    return InMemoryIssueTracker()


__all__ = [
    "GitHubAuth",
    "IssueTracker",
    "NotFoundError",
    "TrackerError",
    "TrackerIssue",
    "TransientTrackerError",
    "build_connector_from_env",
    "resolve_connector_type",
]
