"""Turns comment commands and tracker events into ledger/queue/block operations."""

from __future__ import annotations

import re
import sqlite3
from dataclasses import dataclass
from typing import Any, Callable, Iterable

import structlog

from assign_bot.engine import notices
from assign_bot.engine.blocks import BlockRegistry
from assign_bot.engine.errors import AuthorizationError, ConflictError, ValidationError
from assign_bot.engine.ledger import AssignmentLedger
from assign_bot.engine.models import (
    MS_PER_HOUR,
    MS_PER_MINUTE,
    BlockScope,
    Clock,
    RepoRef,
    now_ms,
)
from assign_bot.engine.queue import DEFAULT_MAX_ACTIVE, AssignmentQueue
from assign_bot.github.github_connector import IssueTracker, NotFoundError, TrackerError
from assign_bot.shared.policy import AssignmentPolicy

ASSIGN_COMMAND = "/assign"
UNASSIGN_COMMAND = "/unassign"
EXTEND_COMMAND = "/extend-"

EXTEND_RE = re.compile(r"/extend-(\d+)([hm])")
CLOSES_RE = re.compile(r"closes\s+#(\d+)", re.IGNORECASE)


@dataclass(frozen=True)
class CommandResult:
    action: str
    repo: RepoRef
    issue_number: int
    reply: str = ""

    def as_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "repo": self.repo.full_name,
            "issue_number": self.issue_number,
            "reply": self.reply,
        }


def parse_extension(command: str) -> tuple[int, str]:
    """Return ``(extension_ms, "<n><unit>")`` for an ``/extend-<n><h|m>`` command."""
    match = EXTEND_RE.search(command)
    if not match:
        raise ValidationError(f"invalid extension command: {command!r}")
    value = int(match.group(1))
    unit = match.group(2)
    if value <= 0:
        raise ValidationError("extension must be positive")
    extension_ms = value * (MS_PER_HOUR if unit == "h" else MS_PER_MINUTE)
    return extension_ms, f"{value}{unit}"


def parse_closing_refs(body: str) -> list[int]:
    numbers = [int(number) for number in CLOSES_RE.findall(body or "")]
    return list(dict.fromkeys(numbers))


class CommandEngine:
    def __init__(
        self,
        *,
        ledger: AssignmentLedger,
        blocks: BlockRegistry,
        queue: AssignmentQueue,
        tracker: IssueTracker,
        policy: AssignmentPolicy | None = None,
        clock: Clock = now_ms,
        logger: Any | None = None,
        max_active: int = DEFAULT_MAX_ACTIVE,
    ) -> None:
        self.ledger = ledger
        self.blocks = blocks
        self.queue = queue
        self.tracker = tracker
        self.policy = policy or AssignmentPolicy()
        self.clock = clock
        self.log = logger if logger is not None else structlog.get_logger(__name__)
        self.max_active = max(1, int(max_active))

    def handle_comment(
        self,
        repo: RepoRef,
        issue_number: int,
        sender: str,
        body: str,
        labels: Iterable[str] = (),
    ) -> CommandResult | None:
        command = (body or "").strip()
        if command.startswith(ASSIGN_COMMAND):
            label_list = list(labels)
            return self._guarded(
                "assign",
                repo,
                issue_number,
                sender,
                lambda: self.assign(repo, issue_number, sender, label_list),
            )
        if command.startswith(UNASSIGN_COMMAND):
            return self._guarded(
                "unassign",
                repo,
                issue_number,
                sender,
                lambda: self.unassign(repo, issue_number, sender),
            )
        if command.startswith(EXTEND_COMMAND):
            return self._guarded(
                "extend",
                repo,
                issue_number,
                sender,
                lambda: self.extend(repo, issue_number, sender, command),
            )
        return None

    def _guarded(
        self,
        command: str,
        repo: RepoRef,
        issue_number: int,
        sender: str,
        handler: Callable[[], CommandResult],
    ) -> CommandResult:
        try:
            return handler()
        except (TrackerError, ConflictError, sqlite3.Error) as exc:
            self.log.error(
                "command_failed",
                command=command,
                repo=repo.full_name,
                issue_number=issue_number,
                sender=sender,
                error=str(exc),
            )
            return CommandResult("error", repo, issue_number, notices.command_failed(sender))

    def assign(
        self, repo: RepoRef, issue_number: int, sender: str, labels: Iterable[str] = ()
    ) -> CommandResult:
        duration_ms = self.policy.duration_ms_for(labels)
        scope = BlockScope.for_issue(repo, issue_number)
        if self.blocks.is_blocked(scope, sender):
            until = self.blocks.blocked_until(scope, sender)
            return CommandResult("blocked", repo, issue_number, notices.blocked(sender, until))

        existing = self.ledger.get(repo, issue_number)
        if existing is not None:
            return CommandResult(
                "already_assigned",
                repo,
                issue_number,
                notices.already_assigned(sender, existing.assignee),
            )

        if self.ledger.active_count(sender) >= self.max_active:
            self.queue.enqueue(sender, repo, issue_number, duration_ms)
            return CommandResult(
                "queued", repo, issue_number, notices.added_to_queue(sender, self.max_active)
            )

        self.tracker.add_assignee(repo, issue_number, sender)
        deadline = self.clock() + duration_ms
        try:
            self.ledger.add(repo, issue_number, sender, deadline)
        except ConflictError:
            self.tracker.remove_assignee(repo, issue_number, sender)
            current = self.ledger.get(repo, issue_number)
            assignee = current.assignee if current is not None else sender
            return CommandResult(
                "already_assigned",
                repo,
                issue_number,
                notices.already_assigned(sender, assignee),
            )
        self.log.info(
            "assignment_created",
            repo=repo.full_name,
            issue_number=issue_number,
            assignee=sender,
            deadline=deadline,
        )
        return CommandResult(
            "assigned", repo, issue_number, notices.assigned(sender, duration_ms, deadline)
        )

    def unassign(self, repo: RepoRef, issue_number: int, sender: str) -> CommandResult:
        existing = self.ledger.get(repo, issue_number)
        if existing is not None and existing.assignee != sender:
            return CommandResult(
                "refused",
                repo,
                issue_number,
                notices.not_your_assignment(sender, existing.assignee),
            )
        self.tracker.remove_assignee(repo, issue_number, sender)
        if self.ledger.remove(repo, issue_number):
            self.log.info(
                "assignment_released", repo=repo.full_name, issue_number=issue_number, user=sender
            )
        self._drain(sender)
        return CommandResult("unassigned", repo, issue_number, notices.unassigned(sender))

    def extend(
        self, repo: RepoRef, issue_number: int, sender: str, command: str
    ) -> CommandResult:
        try:
            self._authorize_maintainer(sender)
            extension_ms, amount = parse_extension(command)
        except AuthorizationError:
            self.log.info("extend_denied", sender=sender, repo=repo.full_name)
            return CommandResult(
                "not_authorized", repo, issue_number, notices.not_authorized(sender)
            )
        except ValidationError:
            return CommandResult("invalid", repo, issue_number, notices.invalid_extension())

        if not self.ledger.extend(repo, issue_number, extension_ms):
            return CommandResult("no_assignment", repo, issue_number, notices.nothing_to_extend())
        deadline = self.ledger.deadline(repo, issue_number) or 0
        self.log.info(
            "assignment_extended",
            repo=repo.full_name,
            issue_number=issue_number,
            extension_ms=extension_ms,
            deadline=deadline,
        )
        return CommandResult("extended", repo, issue_number, notices.extended(amount, deadline))

    def _authorize_maintainer(self, sender: str) -> None:
        if not self.policy.is_maintainer(sender):
            raise AuthorizationError(f"{sender} is not a maintainer")

    def issue_closed(self, repo: RepoRef, issue_number: int) -> CommandResult:
        assignment = self.ledger.get(repo, issue_number)
        self.queue.purge_issue(repo, issue_number)
        if assignment is None:
            return CommandResult("closed", repo, issue_number)
        self.ledger.remove(repo, issue_number)
        self.log.info(
            "assignment_closed",
            repo=repo.full_name,
            issue_number=issue_number,
            assignee=assignment.assignee,
        )
        self._drain(assignment.assignee)
        return CommandResult("closed", repo, issue_number)

    def pull_request_merged(self, repo: RepoRef, body: str, author: str) -> list[CommandResult]:
        results: list[CommandResult] = []
        users_to_drain: list[str] = []
        for issue_number in parse_closing_refs(body):
            log = self.log.bind(repo=repo.full_name, issue_number=issue_number, author=author)
            try:
                assignment = self.ledger.get(repo, issue_number)
                try:
                    self.tracker.remove_assignee(repo, issue_number, author)
                except NotFoundError:
                    log.info("merged_reference_not_found")
                    if assignment is not None:
                        self.ledger.remove(repo, issue_number)
                    continue
                self.blocks.clear(BlockScope.for_issue(repo, issue_number), author)
                if assignment is None:
                    results.append(CommandResult("merged", repo, issue_number))
                    continue
                self.ledger.remove(repo, issue_number)
                log.info("assignment_completed", assignee=assignment.assignee)
                users_to_drain.extend([author, assignment.assignee])
                results.append(
                    CommandResult(
                        "completed",
                        repo,
                        issue_number,
                        notices.completed_by_merge(assignment.assignee, issue_number),
                    )
                )
            except (TrackerError, sqlite3.Error) as exc:
                log.error("merge_completion_failed", error=str(exc))
                results.append(CommandResult("error", repo, issue_number))
        for user in dict.fromkeys(users_to_drain):
            self._drain(user)
        return results

    def _drain(self, user: str) -> None:
        try:
            report = self.queue.drain(user, self.tracker)
        except sqlite3.Error as exc:
            self.log.error("queue_drain_failed", user=user, error=str(exc))
            return
        if report.admitted:
            self.log.info("queue_backfilled", user=user, admitted=report.admitted)
