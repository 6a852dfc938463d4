"""Periodic reconciliation sweep: expire overdue claims, then drain queues."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any

import structlog

from assign_bot.engine import notices
from assign_bot.engine.blocks import BlockRegistry
from assign_bot.engine.ledger import AssignmentLedger
from assign_bot.engine.models import Assignment, BlockScope, Clock, now_ms
from assign_bot.engine.queue import AssignmentQueue
from assign_bot.github.github_connector import IssueTracker, NotFoundError

DEFAULT_SWEEP_INTERVAL_S = 60.0
DEFAULT_EXPIRY_BLOCK_HOURS = 5.0


@dataclass
class SweepReport:
    started_at: int = 0
    skipped: bool = False
    expired: list[int] = field(default_factory=list)
    stale_removed: list[int] = field(default_factory=list)
    expiry_failures: list[int] = field(default_factory=list)
    blocks_purged: int = 0
    drains: list[dict[str, Any]] = field(default_factory=list)
    drain_failures: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at,
            "skipped": self.skipped,
            "expired": list(self.expired),
            "stale_removed": list(self.stale_removed),
            "expiry_failures": list(self.expiry_failures),
            "blocks_purged": self.blocks_purged,
            "drains": list(self.drains),
            "drain_failures": list(self.drain_failures),
        }


class ReconciliationScheduler:
    def __init__(
        self,
        *,
        ledger: AssignmentLedger,
        blocks: BlockRegistry,
        queue: AssignmentQueue,
        tracker: IssueTracker,
        clock: Clock = now_ms,
        logger: Any | None = None,
        interval_s: float = DEFAULT_SWEEP_INTERVAL_S,
        expiry_block_hours: float = DEFAULT_EXPIRY_BLOCK_HOURS,
    ) -> None:
        self.ledger = ledger
        self.blocks = blocks
        self.queue = queue
        self.tracker = tracker
        self.clock = clock
        self.log = logger if logger is not None else structlog.get_logger(__name__)
        self.interval_s = max(0.01, float(interval_s))
        self.expiry_block_hours = float(expiry_block_hours)
        self._sweep_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> SweepReport:
        """Run one full sweep, or return a skipped report if one is in flight."""
        if not self._sweep_lock.acquire(blocking=False):
            self.log.info("sweep_skipped_busy")
            return SweepReport(started_at=self.clock(), skipped=True)
        try:
            report = SweepReport(started_at=self.clock())
            self.expire_overdue(report)
            self._purge_expired_blocks(report)
            self.drain_all(report)
            self.log.info(
                "sweep_completed",
                expired=len(report.expired),
                stale_removed=len(report.stale_removed),
                expiry_failures=len(report.expiry_failures),
                drained_users=len(report.drains),
                drain_failures=len(report.drain_failures),
            )
            return report
        finally:
            self._sweep_lock.release()

    def expire_overdue(self, report: SweepReport | None = None) -> SweepReport:
        report = report if report is not None else SweepReport(started_at=self.clock())
        for assignment in self.ledger.overdue(self.clock()):
            log = self.log.bind(
                assignment_id=assignment.id,
                repo=assignment.repo.full_name,
                issue_number=assignment.issue_number,
                assignee=assignment.assignee,
            )
            try:
                self._expire(assignment, log, report)
            except NotFoundError:
                self.ledger.remove(assignment.repo, assignment.issue_number)
                report.stale_removed.append(assignment.id)
                log.info("stale_assignment_removed", reason="issue_not_found")
            except Exception as exc:
                log.error("assignment_expiry_failed", error=str(exc), exc_info=True)
                report.expiry_failures.append(assignment.id)
        return report

    def _expire(self, assignment: Assignment, log: Any, report: SweepReport) -> None:
        repo, number, user = assignment.repo, assignment.issue_number, assignment.assignee
        issue = self.tracker.get_issue(repo, number)
        if not issue.is_open or user not in issue.assignees:
            # Resolved out-of-band; drop the row without notifying or blocking.
            self.ledger.remove(repo, number)
            report.stale_removed.append(assignment.id)
            log.info("stale_assignment_removed", reason="not_assigned_on_tracker")
            return

        marker = notices.EXPIRY_MARKER.format(user=user, deadline=assignment.deadline)
        comments = self.tracker.list_comments(repo, number)
        if not any(marker in str(comment.get("body") or "") for comment in comments):
            self.tracker.create_comment(
                repo, number, notices.expired(user, assignment.deadline, self.expiry_block_hours)
            )
        self.tracker.remove_assignee(repo, number, user)
        block = self.blocks.block(
            BlockScope.for_issue(repo, number), user, self.expiry_block_hours
        )
        self.ledger.remove(repo, number)
        report.expired.append(assignment.id)
        log.info("assignment_expired", blocked_until=block.blocked_until)

    def _purge_expired_blocks(self, report: SweepReport) -> None:
        try:
            report.blocks_purged = self.blocks.purge_expired()
        except Exception as exc:
            self.log.warning("block_purge_failed", error=str(exc))

    def drain_all(self, report: SweepReport | None = None) -> SweepReport:
        report = report if report is not None else SweepReport(started_at=self.clock())
        for user in self.queue.distinct_users():
            try:
                report.drains.append(self.queue.drain(user, self.tracker).as_dict())
            except Exception as exc:
                self.log.error("queue_drain_failed", user=user, error=str(exc), exc_info=True)
                report.drain_failures.append(user)
        return report

    def run_forever(self, stop_event: threading.Event | None = None) -> None:
        event = stop_event if stop_event is not None else self._stop_event
        self.log.info("scheduler_started", interval_s=self.interval_s)
        while not event.is_set():
            try:
                self.run_once()
            except Exception as exc:
                self.log.error("sweep_failed", error=str(exc), exc_info=True)
            event.wait(self.interval_s)
        self.log.info("scheduler_stopped")

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self.run_forever, name="assign-bot-scheduler", daemon=True
        )
        self._thread.start()

    def stop(self, timeout_s: float | None = 5.0) -> None:
        self._stop_event.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout_s)
        self._thread = None
