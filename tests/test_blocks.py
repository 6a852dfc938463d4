from __future__ import annotations

from assign_bot.engine.models import MS_PER_HOUR, BlockScope, RepoRef

REPO = RepoRef(owner="open-source", name="widgets")


def test_block_expires_passively(harness) -> None:
    scope = BlockScope.for_issue(REPO, 7)
    block = harness.blocks.block(scope, "alice", 5)

    assert block.blocked_until == harness.clock() + 5 * MS_PER_HOUR
    assert harness.blocks.is_blocked(scope, "alice") is True

    harness.clock.advance(5 * MS_PER_HOUR - 1)
    assert harness.blocks.is_blocked(scope, "alice") is True
    harness.clock.advance(1)
    assert harness.blocks.is_blocked(scope, "alice") is False


def test_reblock_replaces_instead_of_extending(harness) -> None:
    scope = BlockScope.for_issue(REPO, 7)
    harness.blocks.block(scope, "alice", 5)
    harness.clock.advance(MS_PER_HOUR)

    harness.blocks.block(scope, "alice", 1)

    assert harness.blocks.blocked_until(scope, "alice") == harness.clock() + MS_PER_HOUR
    assert len(harness.db.list_blocks("alice")) == 1


def test_issue_scopes_are_independent(harness) -> None:
    harness.blocks.block(BlockScope.for_issue(REPO, 7), "alice", 5)

    assert harness.blocks.is_blocked(BlockScope.for_issue(REPO, 8), "alice") is False
    assert harness.blocks.is_blocked(BlockScope.for_issue(REPO, 7), "bob") is False
    assert harness.blocks.is_blocked(BlockScope.global_scope(), "alice") is False
    assert harness.blocks.blocked_until(BlockScope.for_issue(REPO, 8), "alice") == 0


def test_global_scope_round_trips_through_store(harness) -> None:
    harness.blocks.block(BlockScope.global_scope(), "alice", 2)

    [block] = harness.blocks.active_blocks("alice")
    assert block.scope.is_global
    assert harness.blocks.is_blocked(BlockScope.global_scope(), "alice") is True


def test_clear_is_idempotent(harness) -> None:
    scope = BlockScope.for_issue(REPO, 7)
    harness.blocks.block(scope, "alice", 5)

    assert harness.blocks.clear(scope, "alice") is True
    assert harness.blocks.clear(scope, "alice") is False
    assert harness.blocks.is_blocked(scope, "alice") is False


def test_purge_expired_drops_only_lapsed_blocks(harness) -> None:
    harness.blocks.block(BlockScope.for_issue(REPO, 1), "alice", 1)
    harness.blocks.block(BlockScope.for_issue(REPO, 2), "alice", 5)
    harness.clock.advance(2 * MS_PER_HOUR)

    assert [b.scope.issue_number for b in harness.blocks.active_blocks("alice")] == [2]
    assert harness.blocks.purge_expired() == 1
    assert len(harness.db.list_blocks("alice")) == 1
