"""Assignment ledger: one active claim per issue."""

from __future__ import annotations

import sqlite3

from assign_bot.engine.db import AssignmentDB
from assign_bot.engine.errors import ConflictError, ValidationError
from assign_bot.engine.models import Assignment, Clock, RepoRef, now_ms


class AssignmentLedger:
    def __init__(self, *, db: AssignmentDB, clock: Clock = now_ms) -> None:
        self.db = db
        self.clock = clock

    def add(self, repo: RepoRef, issue_number: int, user: str, deadline: int) -> Assignment:
        try:
            assignment_id = self.db.insert_assignment(
                repo.owner,
                repo.name,
                issue_number,
                user,
                deadline,
                created_at=self.clock(),
            )
        except sqlite3.IntegrityError as exc:
            raise ConflictError(
                f"assignment already exists for {repo.full_name}#{issue_number}"
            ) from exc
        row = self.db.get_assignment(repo.owner, repo.name, issue_number)
        if row is None or int(row["id"]) != assignment_id:
            raise ConflictError(f"assignment for {repo.full_name}#{issue_number} was replaced")
        return Assignment.from_row(row)

    def remove(self, repo: RepoRef, issue_number: int) -> bool:
        return self.db.delete_assignment(repo.owner, repo.name, issue_number)

    def get(self, repo: RepoRef, issue_number: int) -> Assignment | None:
        row = self.db.get_assignment(repo.owner, repo.name, issue_number)
        return Assignment.from_row(row) if row is not None else None

    def active_count(self, user: str) -> int:
        """Outstanding claims only; rows are deleted when work completes."""
        return self.db.count_assignments_for(user)

    def extend(self, repo: RepoRef, issue_number: int, extension_ms: int) -> bool:
        if int(extension_ms) <= 0:
            raise ValidationError("extension must be positive")
        return self.db.add_to_deadline(repo.owner, repo.name, issue_number, extension_ms)

    def deadline(self, repo: RepoRef, issue_number: int) -> int | None:
        assignment = self.get(repo, issue_number)
        return assignment.deadline if assignment is not None else None

    def all(self) -> list[Assignment]:
        return [Assignment.from_row(row) for row in self.db.list_assignments()]

    def overdue(self, now: int | None = None) -> list[Assignment]:
        cutoff = self.clock() if now is None else now
        return [Assignment.from_row(row) for row in self.db.list_assignments(cutoff)]
