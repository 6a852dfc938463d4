"""Per-user FIFO backlog of deferred claims, drained as capacity frees up.

Each user has their own line ordered by ``(created_at, id)``. Draining walks
that line once, oldest first, and stops as soon as the user is back at the
active-assignment cap. An entry that cannot be admitted is either moved to
the back of the line (``created_at`` bumped, ``retry_count`` incremented) or
purged once its retry budget is spent.

Tracker faults are split in two. A missing issue purges the entry at once.
Any other fault schedules the entry for a later attempt with exponential
back-off, tracked by ``failure_count`` and ``next_attempt_at``. The count is cumulative
and never reset, and the entry is dropped once it exceeds
``max_transient_failures``.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from typing import Any

import structlog

from assign_bot.engine import notices
from assign_bot.engine.blocks import BlockRegistry
from assign_bot.engine.db import AssignmentDB
from assign_bot.engine.errors import ConflictError
from assign_bot.engine.ledger import AssignmentLedger
from assign_bot.engine.models import BlockScope, Clock, QueueEntry, RepoRef, now_ms
from assign_bot.github.github_connector import (
    IssueTracker,
    NotFoundError,
    TrackerError,
    TransientTrackerError,
)

DEFAULT_MAX_ACTIVE = 4
DEFAULT_MAX_RETRIES = 3
DEFAULT_MAX_TRANSIENT_FAILURES = 5
DEFAULT_BACKOFF_BASE_MS = 60 * 1000
DEFAULT_BACKOFF_MAX_MS = 60 * 60 * 1000


@dataclass
class DrainReport:
    user: str
    admitted: list[int] = field(default_factory=list)
    requeued: list[int] = field(default_factory=list)
    purged: list[int] = field(default_factory=list)
    deferred: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "user": self.user,
            "admitted": list(self.admitted),
            "requeued": list(self.requeued),
            "purged": list(self.purged),
            "deferred": list(self.deferred),
            "failed": list(self.failed),
        }


class AssignmentQueue:
    def __init__(
        self,
        *,
        db: AssignmentDB,
        ledger: AssignmentLedger,
        blocks: BlockRegistry,
        clock: Clock = now_ms,
        logger: Any | None = None,
        max_active: int = DEFAULT_MAX_ACTIVE,
        max_retries: int = DEFAULT_MAX_RETRIES,
        max_transient_failures: int = DEFAULT_MAX_TRANSIENT_FAILURES,
        backoff_base_ms: int = DEFAULT_BACKOFF_BASE_MS,
        backoff_max_ms: int = DEFAULT_BACKOFF_MAX_MS,
    ) -> None:
        self.db = db
        self.ledger = ledger
        self.blocks = blocks
        self.clock = clock
        self.log = logger if logger is not None else structlog.get_logger(__name__)
        self.max_active = max(1, int(max_active))
        self.max_retries = max(0, int(max_retries))
        self.max_transient_failures = max(0, int(max_transient_failures))
        self.backoff_base_ms = max(1, int(backoff_base_ms))
        self.backoff_max_ms = max(self.backoff_base_ms, int(backoff_max_ms))

    def enqueue(
        self, user: str, repo: RepoRef, issue_number: int, duration_ms: int
    ) -> QueueEntry:
        existing = self.db.find_queue_entry(user, repo.owner, repo.name, issue_number)
        if existing is not None:
            return QueueEntry.from_row(existing)
        entry_id = self.db.insert_queue_entry(
            user, repo.owner, repo.name, issue_number, duration_ms, created_at=self.clock()
        )
        self.log.info(
            "queue_entry_added",
            user=user,
            repo=repo.full_name,
            issue_number=issue_number,
            queue_id=entry_id,
        )
        row = self.db.get_queue_entry(entry_id)
        if row is None:
            raise RuntimeError("queue_entry_missing_after_insert")
        return QueueEntry.from_row(row)

    def entries(self, user: str) -> list[QueueEntry]:
        return [QueueEntry.from_row(row) for row in self.db.list_queue_entries(user)]

    def distinct_users(self) -> list[str]:
        return self.db.list_queued_usernames()

    def purge_issue(self, repo: RepoRef, issue_number: int) -> list[int]:
        purged: list[int] = []
        for row in self.db.list_queue_entries_for_issue(repo.owner, repo.name, issue_number):
            if self.db.delete_queue_entry(int(row["id"])):
                purged.append(int(row["id"]))
        if purged:
            self.log.info(
                "queue_entries_purged_for_issue",
                repo=repo.full_name,
                issue_number=issue_number,
                queue_ids=purged,
            )
        return purged

    def drain(self, user: str, tracker: IssueTracker) -> DrainReport:
        report = DrainReport(user=user)
        active = self.ledger.active_count(user)
        for row in self.db.list_queue_entries(user):
            if active >= self.max_active:
                break
            entry = QueueEntry.from_row(row)
            log = self.log.bind(
                user=user,
                queue_id=entry.id,
                repo=entry.repo.full_name,
                issue_number=entry.issue_number,
            )
            if entry.next_attempt_at > self.clock():
                report.deferred.append(entry.id)
                continue
            try:
                if self._try_admit(entry, tracker, log, report):
                    active = self.ledger.active_count(user)
            except NotFoundError:
                log.info("queue_entry_purged", reason="issue_not_found")
                self.db.delete_queue_entry(entry.id)
                report.purged.append(entry.id)
            except TrackerError as exc:
                self._record_failure(entry, exc, log, report)
            except sqlite3.Error as exc:
                log.error("queue_entry_store_failed", error=str(exc))
                report.failed.append(entry.id)
        return report

    def _try_admit(
        self,
        entry: QueueEntry,
        tracker: IssueTracker,
        log: Any,
        report: DrainReport,
    ) -> bool:
        scope = BlockScope.for_issue(entry.repo, entry.issue_number)
        if self.blocks.is_blocked(scope, entry.username):
            self._back_off(entry, "user_blocked", log, report)
            return False

        issue = tracker.get_issue(entry.repo, entry.issue_number)
        if not issue.is_open:
            log.info("queue_entry_purged", reason="issue_not_open", state=issue.state)
            self.db.delete_queue_entry(entry.id)
            report.purged.append(entry.id)
            return False

        if issue.assignees or self.ledger.get(entry.repo, entry.issue_number) is not None:
            self._back_off(entry, "issue_already_assigned", log, report)
            return False

        tracker.add_assignee(entry.repo, entry.issue_number, entry.username)
        deadline = self.clock() + entry.duration_ms
        try:
            self.ledger.add(entry.repo, entry.issue_number, entry.username, deadline)
        except ConflictError:
            tracker.remove_assignee(entry.repo, entry.issue_number, entry.username)
            self._back_off(entry, "assignment_conflict", log, report)
            return False
        self.db.delete_queue_entry(entry.id)
        report.admitted.append(entry.id)
        log.info("queue_entry_admitted", deadline=deadline)

        try:
            tracker.create_comment(
                entry.repo,
                entry.issue_number,
                notices.queued_assigned(entry.username, entry.duration_ms, deadline),
            )
        except TrackerError as exc:
            log.warning("queue_admission_notice_failed", error=str(exc))
        return True

    def _back_off(self, entry: QueueEntry, reason: str, log: Any, report: DrainReport) -> None:
        if entry.retry_count >= self.max_retries:
            log.info("queue_entry_purged", reason=reason, retry_count=entry.retry_count)
            self.db.delete_queue_entry(entry.id)
            report.purged.append(entry.id)
            return
        self.db.requeue_entry(entry.id, created_at=self.clock())
        log.info("queue_entry_requeued", reason=reason, retry_count=entry.retry_count + 1)
        report.requeued.append(entry.id)

    def _record_failure(
        self, entry: QueueEntry, exc: TrackerError, log: Any, report: DrainReport
    ) -> None:
        failures = entry.failure_count + 1
        if failures > self.max_transient_failures:
            log.warning(
                "queue_entry_purged",
                reason="failure_budget_exhausted",
                failure_count=failures,
                error=str(exc),
            )
            self.db.delete_queue_entry(entry.id)
            report.purged.append(entry.id)
            return
        delay_ms = self.backoff_delay_ms(failures)
        if isinstance(exc, TransientTrackerError) and exc.retry_after_s is not None:
            delay_ms = max(delay_ms, int(exc.retry_after_s * 1000))
        next_attempt_at = self.clock() + delay_ms
        self.db.record_queue_failure(entry.id, next_attempt_at=next_attempt_at)
        log.warning(
            "queue_entry_attempt_failed",
            reason_code=exc.reason_code,
            failure_count=failures,
            next_attempt_at=next_attempt_at,
            error=str(exc),
        )
        report.failed.append(entry.id)

    def backoff_delay_ms(self, failures: int) -> int:
        exponent = max(0, int(failures) - 1)
        return min(self.backoff_base_ms * (2**exponent), self.backoff_max_ms)
