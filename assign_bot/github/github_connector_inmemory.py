"""In-memory issue tracker for deterministic tests and dry runs."""

from __future__ import annotations

from typing import Any

from assign_bot.engine.models import RepoRef
from assign_bot.github.github_connector import NotFoundError, TrackerError, TrackerIssue


class InMemoryIssueTracker:
    """Keeps issues and comments in dicts and records every call made."""

    def __init__(self) -> None:
        self.issues: dict[tuple[RepoRef, int], dict[str, Any]] = {}
        self.comments: dict[tuple[RepoRef, int], list[dict[str, Any]]] = {}
        self.calls: list[tuple[str, str, int, str]] = []
        self._scripted_failures: dict[tuple[str, RepoRef, int], list[TrackerError]] = {}

    def add_issue(
        self,
        repo: RepoRef,
        issue_number: int,
        *,
        state: str = "open",
        assignees: list[str] | None = None,
        labels: list[str] | None = None,
    ) -> dict[str, Any]:
        issue = {
            "number": int(issue_number),
            "state": state,
            "assignees": list(assignees or []),
            "labels": list(labels or []),
        }
        self.issues[(repo, int(issue_number))] = issue
        self.comments.setdefault((repo, int(issue_number)), [])
        return issue

    def close_issue(self, repo: RepoRef, issue_number: int) -> None:
        self._issue(repo, issue_number)["state"] = "closed"

    def fail_next(
        self,
        operation: str,
        repo: RepoRef,
        issue_number: int,
        error: TrackerError,
        times: int = 1,
    ) -> None:
        queue = self._scripted_failures.setdefault((operation, repo, int(issue_number)), [])
        queue.extend([error] * max(1, int(times)))

    def calls_for(self, operation: str) -> list[tuple[str, str, int, str]]:
        return [call for call in self.calls if call[0] == operation]

    def get_issue(self, repo: RepoRef, issue_number: int) -> TrackerIssue:
        self._record("get_issue", repo, issue_number)
        return TrackerIssue.from_payload(self._issue(repo, issue_number))

    def add_assignee(self, repo: RepoRef, issue_number: int, login: str) -> None:
        self._record("add_assignee", repo, issue_number, login)
        assignees = self._issue(repo, issue_number)["assignees"]
        if login not in assignees:
            assignees.append(login)

    def remove_assignee(self, repo: RepoRef, issue_number: int, login: str) -> None:
        self._record("remove_assignee", repo, issue_number, login)
        issue = self._issue(repo, issue_number)
        issue["assignees"] = [name for name in issue["assignees"] if name != login]

    def list_comments(self, repo: RepoRef, issue_number: int) -> list[dict[str, Any]]:
        self._record("list_comments", repo, issue_number)
        self._issue(repo, issue_number)
        return [dict(comment) for comment in self.comments.get((repo, int(issue_number)), [])]

    def create_comment(self, repo: RepoRef, issue_number: int, body: str) -> dict[str, Any]:
        self._record("create_comment", repo, issue_number, body)
        self._issue(repo, issue_number)
        thread = self.comments.setdefault((repo, int(issue_number)), [])
        comment = {"id": len(thread) + 1, "body": body, "user": {"login": "assign-bot"}}
        thread.append(comment)
        return dict(comment)

    def _record(self, operation: str, repo: RepoRef, issue_number: int, detail: str = "") -> None:
        self.calls.append((operation, repo.full_name, int(issue_number), detail))
        scripted = self._scripted_failures.get((operation, repo, int(issue_number)))
        if scripted:
            raise scripted.pop(0)

    def _issue(self, repo: RepoRef, issue_number: int) -> dict[str, Any]:
        issue = self.issues.get((repo, int(issue_number)))
        if issue is None:
            raise NotFoundError(f"issue not found: {repo.full_name}#{issue_number}")
        return issue
