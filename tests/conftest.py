from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

import pytest

from assign_bot.engine.blocks import BlockRegistry
from assign_bot.engine.commands import CommandEngine
from assign_bot.engine.db import AssignmentDB
from assign_bot.engine.ledger import AssignmentLedger
from assign_bot.engine.models import RepoRef
from assign_bot.engine.queue import AssignmentQueue
from assign_bot.engine.scheduler import ReconciliationScheduler
from assign_bot.github.github_connector_inmemory import InMemoryIssueTracker
from assign_bot.shared.policy import AssignmentPolicy

T0 = 1_700_000_000_000
REPO = RepoRef(owner="open-source", name="widgets")


class FakeClock:
    def __init__(self, now: int = T0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += int(ms)
        return self.now


@dataclass
class Harness:
    clock: FakeClock
    db: AssignmentDB
    tracker: InMemoryIssueTracker
    ledger: AssignmentLedger
    blocks: BlockRegistry
    queue: AssignmentQueue
    engine: CommandEngine
    scheduler: ReconciliationScheduler


def build_harness(
    max_active: int = 4,
    max_retries: int = 3,
    max_transient_failures: int = 5,
    maintainers: tuple[str, ...] = ("maintainer",),
) -> Harness:
    clock = FakeClock()
    db = AssignmentDB()
    tracker = InMemoryIssueTracker()
    ledger = AssignmentLedger(db=db, clock=clock)
    blocks = BlockRegistry(db=db, clock=clock)
    queue = AssignmentQueue(
        db=db,
        ledger=ledger,
        blocks=blocks,
        clock=clock,
        max_active=max_active,
        max_retries=max_retries,
        max_transient_failures=max_transient_failures,
        backoff_base_ms=60_000,
        backoff_max_ms=3_600_000,
    )
    engine = CommandEngine(
        ledger=ledger,
        blocks=blocks,
        queue=queue,
        tracker=tracker,
        policy=AssignmentPolicy(maintainers=frozenset(maintainers)),
        clock=clock,
        max_active=max_active,
    )
    scheduler = ReconciliationScheduler(
        ledger=ledger,
        blocks=blocks,
        queue=queue,
        tracker=tracker,
        clock=clock,
        interval_s=0.05,
        expiry_block_hours=5,
    )
    return Harness(clock, db, tracker, ledger, blocks, queue, engine, scheduler)


@pytest.fixture
def make_harness() -> Callable[..., Harness]:
    return build_harness


@pytest.fixture
def harness() -> Harness:
    return build_harness()
