from __future__ import annotations

import pytest

from assign_bot.engine.commands import parse_closing_refs, parse_extension
from assign_bot.engine.errors import ValidationError
from assign_bot.engine.models import MS_PER_HOUR, MS_PER_MINUTE, BlockScope, RepoRef
from assign_bot.github.github_connector import TrackerError

REPO = RepoRef(owner="open-source", name="widgets")


def _comment(harness, issue_number: int, sender: str, body: str, labels=()):
    return harness.engine.handle_comment(REPO, issue_number, sender, body, labels=labels)


def _hold(harness, issue_number: int, user: str = "alice", hours: float = 3) -> None:
    harness.tracker.add_issue(REPO, issue_number, assignees=[user])
    harness.ledger.add(REPO, issue_number, user, harness.clock() + int(hours * MS_PER_HOUR))


def test_assign_uses_label_duration(harness) -> None:
    harness.tracker.add_issue(REPO, 3, labels=["easy"])

    result = _comment(harness, 3, "alice", "/assign", labels=["easy"])

    assert result.action == "assigned"
    assert "1.5 hours" in result.reply
    assignment = harness.ledger.get(REPO, 3)
    assert assignment.deadline == harness.clock() + 5_400_000
    assert harness.tracker.issues[(REPO, 3)]["assignees"] == ["alice"]


def test_assign_without_known_label_uses_default_hours(harness) -> None:
    harness.tracker.add_issue(REPO, 3, labels=["docs"])

    result = _comment(harness, 3, "alice", "/assign", labels=["docs"])

    assert "3 hours" in result.reply
    assert harness.ledger.get(REPO, 3).deadline == harness.clock() + 3 * MS_PER_HOUR


def test_assign_at_cap_queues_without_touching_tracker(harness) -> None:
    for number in (1, 2, 3, 4):
        harness.ledger.add(REPO, number, "alice", harness.clock() + MS_PER_HOUR)
    harness.tracker.add_issue(REPO, 9, labels=["hard"])

    result = _comment(harness, 9, "alice", "/assign", labels=["hard"])

    assert result.action == "queued"
    assert "added to your queue" in result.reply
    assert harness.tracker.calls_for("add_assignee") == []
    [entry] = harness.queue.entries("alice")
    assert entry.issue_number == 9
    assert entry.duration_ms == 5 * MS_PER_HOUR


def test_blocked_user_cannot_reclaim_issue(harness) -> None:
    harness.tracker.add_issue(REPO, 3)
    harness.tracker.add_issue(REPO, 4)
    harness.blocks.block(BlockScope.for_issue(REPO, 3), "alice", 5)

    result = _comment(harness, 3, "alice", "/assign")

    assert result.action == "blocked"
    assert "temporarily blocked" in result.reply
    assert harness.ledger.get(REPO, 3) is None
    assert _comment(harness, 4, "alice", "/assign").action == "assigned"


def test_claimed_issue_is_not_reassigned(harness) -> None:
    _hold(harness, 3, user="bob")

    result = _comment(harness, 3, "alice", "/assign")

    assert result.action == "already_assigned"
    assert "@bob" in result.reply
    assert harness.ledger.get(REPO, 3).assignee == "bob"


def test_assign_that_loses_the_ledger_race_undoes_the_tracker_assignee(
    harness, monkeypatch
) -> None:
    harness.tracker.add_issue(REPO, 3)
    add_assignee = harness.tracker.add_assignee

    def add_while_bob_claims(repo, issue_number, login):
        add_assignee(repo, issue_number, login)
        harness.ledger.add(repo, issue_number, "bob", harness.clock() + MS_PER_HOUR)

    monkeypatch.setattr(harness.tracker, "add_assignee", add_while_bob_claims)

    result = _comment(harness, 3, "alice", "/assign")

    assert result.action == "already_assigned"
    assert "@bob" in result.reply
    assert harness.tracker.calls_for("remove_assignee") == [
        ("remove_assignee", REPO.full_name, 3, "alice")
    ]
    assert harness.tracker.issues[(REPO, 3)]["assignees"] == []
    assert harness.ledger.get(REPO, 3).assignee == "bob"
    assert harness.queue.entries("alice") == []


def test_unassign_releases_and_is_idempotent(harness) -> None:
    _hold(harness, 3)

    first = _comment(harness, 3, "alice", "/unassign")
    second = _comment(harness, 3, "alice", "/unassign")

    assert first.action == "unassigned"
    assert second.action == "unassigned"
    assert harness.ledger.get(REPO, 3) is None
    assert harness.tracker.issues[(REPO, 3)]["assignees"] == []


def test_unassign_of_someone_elses_claim_is_refused(harness) -> None:
    _hold(harness, 3)

    result = _comment(harness, 3, "bob", "/unassign")

    assert result.action == "refused"
    assert harness.ledger.get(REPO, 3).assignee == "alice"
    assert harness.tracker.calls_for("remove_assignee") == []


def test_unassign_backfills_from_queue(make_harness) -> None:
    harness = make_harness(max_active=1)
    _hold(harness, 3)
    harness.tracker.add_issue(REPO, 9)
    _comment(harness, 9, "alice", "/assign")

    _comment(harness, 3, "alice", "/unassign")

    assert harness.ledger.get(REPO, 9).assignee == "alice"
    assert harness.queue.entries("alice") == []


def test_maintainer_extends_deadline(harness) -> None:
    _hold(harness, 3, hours=1)
    before = harness.ledger.deadline(REPO, 3)

    hours = _comment(harness, 3, "maintainer", "/extend-2h")
    minutes = _comment(harness, 3, "maintainer", "/extend-30m")

    assert hours.action == "extended"
    assert "extended by 2h" in hours.reply
    assert minutes.action == "extended"
    assert harness.ledger.deadline(REPO, 3) == before + 2 * MS_PER_HOUR + 30 * MS_PER_MINUTE


def test_non_maintainer_extend_is_rejected(harness) -> None:
    _hold(harness, 3)
    before = harness.ledger.deadline(REPO, 3)

    result = _comment(harness, 3, "alice", "/extend-3h")

    assert result.action == "not_authorized"
    assert "not authorized" in result.reply
    assert harness.ledger.deadline(REPO, 3) == before


def test_malformed_or_pointless_extend(harness) -> None:
    _hold(harness, 3)

    assert _comment(harness, 3, "maintainer", "/extend-abc").action == "invalid"
    assert _comment(harness, 3, "maintainer", "/extend-0h").action == "invalid"
    assert _comment(harness, 4, "maintainer", "/extend-1h").action == "no_assignment"


def test_non_command_comments_are_ignored(harness) -> None:
    assert _comment(harness, 3, "alice", "looks good to me") is None
    assert harness.tracker.calls == []


def test_tracker_failure_becomes_error_reply(harness) -> None:
    harness.tracker.add_issue(REPO, 3)
    harness.tracker.fail_next("add_assignee", REPO, 3, TrackerError("denied", "github_422", 422))

    result = _comment(harness, 3, "alice", "/assign")

    assert result.action == "error"
    assert "something went wrong" in result.reply
    assert harness.ledger.get(REPO, 3) is None


def test_issue_closed_clears_claim_and_waiting_entries(make_harness) -> None:
    harness = make_harness(max_active=1)
    _hold(harness, 3)
    harness.tracker.add_issue(REPO, 9)
    harness.queue.enqueue("alice", REPO, 9, MS_PER_HOUR)
    harness.queue.enqueue("bob", REPO, 3, MS_PER_HOUR)

    harness.engine.issue_closed(REPO, 3)

    assert harness.ledger.get(REPO, 3) is None
    assert harness.queue.entries("bob") == []
    assert harness.ledger.get(REPO, 9).assignee == "alice"


def test_merged_pull_request_completes_and_clears_blocks(make_harness) -> None:
    harness = make_harness(max_active=1)
    _hold(harness, 3)
    harness.tracker.add_issue(REPO, 4)
    harness.blocks.block(BlockScope.for_issue(REPO, 4), "alice", 5)
    harness.tracker.add_issue(REPO, 9)
    harness.queue.enqueue("alice", REPO, 9, MS_PER_HOUR)

    results = harness.engine.pull_request_merged(
        REPO, "Closes #3 and closes #4, also closes #404", "alice"
    )

    assert [(r.issue_number, r.action) for r in results] == [(3, "completed"), (4, "merged")]
    assert "completed with the PR merge" in results[0].reply
    assert harness.ledger.get(REPO, 3) is None
    assert harness.tracker.issues[(REPO, 3)]["assignees"] == []
    assert harness.blocks.is_blocked(BlockScope.for_issue(REPO, 4), "alice") is False
    assert harness.ledger.get(REPO, 9).assignee == "alice"


def test_parse_helpers() -> None:
    assert parse_extension("/extend-90m") == (90 * MS_PER_MINUTE, "90m")
    assert parse_extension("/extend-2h please") == (2 * MS_PER_HOUR, "2h")
    with pytest.raises(ValidationError):
        parse_extension("/extend-2d")
    assert parse_closing_refs("Closes #3, closes #3 and CLOSES  #5") == [3, 5]
    assert parse_closing_refs("") == []
