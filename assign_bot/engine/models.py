"""Records shared by the assignment ledger, block registry, and queue."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable

Clock = Callable[[], int]

MS_PER_MINUTE = 60 * 1000
MS_PER_HOUR = 60 * MS_PER_MINUTE

SCOPE_GLOBAL = "global"
SCOPE_ISSUE = "issue"


def now_ms() -> int:
    return int(time.time() * 1000)


def hours_to_ms(hours: float) -> int:
    return int(round(hours * MS_PER_HOUR))


@dataclass(frozen=True)
class RepoRef:
    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @classmethod
    def parse(cls, full_name: str) -> "RepoRef":
        """Split an ``owner/name`` string at the ingress boundary only."""
        owner, sep, name = full_name.strip().partition("/")
        if not sep or not owner or not name:
            raise ValueError(f"invalid_repo_full_name: {full_name!r}")
        return cls(owner=owner, name=name)

    def __str__(self) -> str:
        return self.full_name


@dataclass(frozen=True)
class BlockScope:
    """Where a block applies: everywhere, or a single issue."""

    kind: str
    repo: RepoRef | None = None
    issue_number: int | None = None

    @classmethod
    def global_scope(cls) -> "BlockScope":
        return cls(kind=SCOPE_GLOBAL)

    @classmethod
    def for_issue(cls, repo: RepoRef, issue_number: int) -> "BlockScope":
        return cls(kind=SCOPE_ISSUE, repo=repo, issue_number=int(issue_number))

    @property
    def is_global(self) -> bool:
        return self.kind == SCOPE_GLOBAL

    def key(self) -> tuple[str, str, str, int]:
        if self.is_global or self.repo is None or self.issue_number is None:
            return (SCOPE_GLOBAL, "", "", 0)
        return (SCOPE_ISSUE, self.repo.owner, self.repo.name, self.issue_number)


@dataclass(frozen=True)
class Assignment:
    id: int
    repo: RepoRef
    issue_number: int
    assignee: str
    deadline: int
    created_at: int

    @classmethod
    def from_row(cls, row: Any) -> "Assignment":
        return cls(
            id=int(row["id"]),
            repo=RepoRef(owner=str(row["repo_owner"]), name=str(row["repo_name"])),
            issue_number=int(row["issue_number"]),
            assignee=str(row["assignee"]),
            deadline=int(row["deadline"]),
            created_at=int(row["created_at"]),
        )


@dataclass(frozen=True)
class QueueEntry:
    id: int
    username: str
    repo: RepoRef
    issue_number: int
    duration_ms: int
    retry_count: int
    failure_count: int
    next_attempt_at: int
    created_at: int

    @classmethod
    def from_row(cls, row: Any) -> "QueueEntry":
        return cls(
            id=int(row["id"]),
            username=str(row["username"]),
            repo=RepoRef(owner=str(row["repo_owner"]), name=str(row["repo_name"])),
            issue_number=int(row["issue_number"]),
            duration_ms=int(row["duration_ms"]),
            retry_count=int(row["retry_count"]),
            failure_count=int(row["failure_count"]),
            next_attempt_at=int(row["next_attempt_at"]),
            created_at=int(row["created_at"]),
        )


@dataclass(frozen=True)
class Block:
    username: str
    scope: BlockScope
    blocked_until: int

    @classmethod
    def from_row(cls, row: Any) -> "Block":
        if str(row["scope"]) == SCOPE_GLOBAL:
            scope = BlockScope.global_scope()
        else:
            scope = BlockScope.for_issue(
                RepoRef(owner=str(row["repo_owner"]), name=str(row["repo_name"])),
                int(row["issue_number"]),
            )
        return cls(
            username=str(row["username"]),
            scope=scope,
            blocked_until=int(row["blocked_until"]),
        )
