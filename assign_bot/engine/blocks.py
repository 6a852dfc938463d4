"""Timestamp-gated cool-down windows keyed by (user, scope)."""

from __future__ import annotations

from assign_bot.engine.db import AssignmentDB
from assign_bot.engine.models import Block, BlockScope, Clock, hours_to_ms, now_ms


class BlockRegistry:
    def __init__(self, *, db: AssignmentDB, clock: Clock = now_ms) -> None:
        self.db = db
        self.clock = clock

    def is_blocked(self, scope: BlockScope, user: str) -> bool:
        return self.clock() < self.blocked_until(scope, user)

    def blocked_until(self, scope: BlockScope, user: str) -> int:
        row = self.db.get_block(user, *scope.key())
        return int(row["blocked_until"]) if row is not None else 0

    def block(self, scope: BlockScope, user: str, duration_hours: float) -> Block:
        """Replace any existing block for the same scope; never extends one."""
        blocked_until = self.clock() + hours_to_ms(duration_hours)
        self.db.upsert_block(user, *scope.key(), blocked_until)
        return Block(username=user, scope=scope, blocked_until=blocked_until)

    def clear(self, scope: BlockScope, user: str) -> bool:
        return self.db.delete_block(user, *scope.key())

    def active_blocks(self, user: str) -> list[Block]:
        now = self.clock()
        return [
            Block.from_row(row)
            for row in self.db.list_blocks(user)
            if int(row["blocked_until"]) > now
        ]

    def purge_expired(self) -> int:
        return self.db.delete_blocks_expired_before(self.clock())
