from __future__ import annotations

from assign_bot.engine import notices
from assign_bot.engine.models import MS_PER_HOUR, BlockScope, RepoRef
from assign_bot.github.github_connector import TrackerError, TransientTrackerError

REPO = RepoRef(owner="open-source", name="widgets")


def _overdue_claim(harness, issue_number: int, user: str = "alice", on_tracker: bool = True):
    if on_tracker:
        harness.tracker.add_issue(REPO, issue_number, assignees=[user])
    return harness.ledger.add(REPO, issue_number, user, harness.clock() - 1)


def test_expired_claim_is_released_blocked_and_announced_once(harness) -> None:
    assignment = _overdue_claim(harness, 7)

    report = harness.scheduler.run_once()

    assert report.expired == [assignment.id]
    assert harness.ledger.get(REPO, 7) is None
    assert harness.tracker.issues[(REPO, 7)]["assignees"] == []
    scope = BlockScope.for_issue(REPO, 7)
    assert harness.blocks.blocked_until(scope, "alice") == harness.clock() + 5 * MS_PER_HOUR
    [comment] = harness.tracker.comments[(REPO, 7)]
    assert "has expired" in comment["body"]

    again = harness.scheduler.run_once()
    assert again.expired == []
    assert len(harness.tracker.comments[(REPO, 7)]) == 1


def test_retained_row_does_not_post_a_second_expiry_comment(harness) -> None:
    assignment = _overdue_claim(harness, 7)
    harness.tracker.fail_next(
        "remove_assignee", REPO, 7, TransientTrackerError("unavailable", "github_503", 503)
    )

    first = harness.scheduler.run_once()
    assert first.expiry_failures == [assignment.id]
    assert harness.ledger.get(REPO, 7) is not None

    second = harness.scheduler.run_once()

    assert second.expired == [assignment.id]
    assert len(harness.tracker.comments[(REPO, 7)]) == 1
    marker = notices.EXPIRY_MARKER.format(user="alice", deadline=assignment.deadline)
    assert marker in harness.tracker.comments[(REPO, 7)][0]["body"]


def test_out_of_band_release_only_drops_the_row(harness) -> None:
    harness.tracker.add_issue(REPO, 8)
    stale = _overdue_claim(harness, 8, on_tracker=False)
    missing = _overdue_claim(harness, 404, on_tracker=False)

    report = harness.scheduler.run_once()

    assert report.stale_removed == [stale.id, missing.id]
    assert report.expired == []
    assert harness.ledger.all() == []
    assert harness.tracker.comments[(REPO, 8)] == []
    assert harness.blocks.active_blocks("alice") == []


def test_one_failing_claim_does_not_stop_the_sweep(harness) -> None:
    broken = _overdue_claim(harness, 1)
    healthy = _overdue_claim(harness, 2, user="bob")
    harness.tracker.fail_next("get_issue", REPO, 1, TrackerError("forbidden", "github_401", 401))

    report = harness.scheduler.run_once()

    assert report.expiry_failures == [broken.id]
    assert report.expired == [healthy.id]
    assert harness.ledger.get(REPO, 1) is not None


def test_sweep_is_skipped_while_another_is_in_flight(harness) -> None:
    _overdue_claim(harness, 7)
    harness.scheduler._sweep_lock.acquire()
    try:
        report = harness.scheduler.run_once()
    finally:
        harness.scheduler._sweep_lock.release()

    assert report.skipped is True
    assert harness.ledger.get(REPO, 7) is not None
    assert harness.tracker.calls == []


def test_freed_slot_is_backfilled_in_the_same_sweep(make_harness) -> None:
    harness = make_harness(max_active=1)
    _overdue_claim(harness, 7)
    harness.tracker.add_issue(REPO, 9)
    entry = harness.queue.enqueue("alice", REPO, 9, 2 * MS_PER_HOUR)

    report = harness.scheduler.run_once()

    assert report.drains == [
        {
            "user": "alice",
            "admitted": [entry.id],
            "requeued": [],
            "purged": [],
            "deferred": [],
            "failed": [],
        }
    ]
    assert harness.ledger.get(REPO, 9).assignee == "alice"


def test_sweep_purges_lapsed_blocks(harness) -> None:
    harness.blocks.block(BlockScope.for_issue(REPO, 1), "alice", 1)
    harness.clock.advance(2 * MS_PER_HOUR)

    assert harness.scheduler.run_once().blocks_purged == 1


def test_background_thread_starts_and_stops(harness) -> None:
    harness.scheduler.start()
    try:
        assert harness.scheduler.is_running is True
    finally:
        harness.scheduler.stop()

    assert harness.scheduler.is_running is False
