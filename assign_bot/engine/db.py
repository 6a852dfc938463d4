"""SQLite persistence for assignments, queue entries, and blocks."""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path
from typing import Any


class AssignmentDB:
    """Small SQLite wrapper; every mutation is one statement plus commit."""

    def __init__(self, db_path: Path | str = ":memory:") -> None:
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        # The scheduler thread and webhook handlers share this connection.
        self._lock = threading.RLock()
        self._configure_connection()
        self._init_schema()

    def _configure_connection(self) -> None:
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA busy_timeout=5000")
        self.conn.execute("PRAGMA synchronous=NORMAL")
        self.conn.execute("PRAGMA temp_store=MEMORY")

    def _init_schema(self) -> None:
        self.conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS assignments (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                repo_owner TEXT NOT NULL,
                repo_name TEXT NOT NULL,
                issue_number INTEGER NOT NULL,
                assignee TEXT NOT NULL,
                deadline INTEGER NOT NULL,
                created_at INTEGER NOT NULL,
                UNIQUE(repo_owner, repo_name, issue_number)
            );

            CREATE INDEX IF NOT EXISTS idx_assignments_assignee
                ON assignments(assignee);

            CREATE TABLE IF NOT EXISTS user_queues (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                username TEXT NOT NULL,
                repo_owner TEXT NOT NULL,
                repo_name TEXT NOT NULL,
                issue_number INTEGER NOT NULL,
                duration_ms INTEGER NOT NULL,
                retry_count INTEGER NOT NULL DEFAULT 0,
                failure_count INTEGER NOT NULL DEFAULT 0,
                next_attempt_at INTEGER NOT NULL DEFAULT 0,
                created_at INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_user_queues_username
                ON user_queues(username, created_at, id);

            CREATE TABLE IF NOT EXISTS blocked_users (
                username TEXT NOT NULL,
                scope TEXT NOT NULL,
                repo_owner TEXT NOT NULL DEFAULT '',
                repo_name TEXT NOT NULL DEFAULT '',
                issue_number INTEGER NOT NULL DEFAULT 0,
                blocked_until INTEGER NOT NULL,
                PRIMARY KEY (username, scope, repo_owner, repo_name, issue_number)
            );
            """
        )
        self.conn.commit()

    def _execute(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Cursor:
        with self._lock:
            cur = self.conn.execute(sql, params)
            self.conn.commit()
            return cur

    def _fetchone(self, sql: str, params: tuple[Any, ...] = ()) -> dict[str, Any] | None:
        with self._lock:
            row = self.conn.execute(sql, params).fetchone()
        return dict(row) if row is not None else None

    def _fetchall(self, sql: str, params: tuple[Any, ...] = ()) -> list[dict[str, Any]]:
        with self._lock:
            rows = self.conn.execute(sql, params).fetchall()
        return [dict(row) for row in rows]

    # assignments

    def insert_assignment(
        self,
        repo_owner: str,
        repo_name: str,
        issue_number: int,
        assignee: str,
        deadline: int,
        created_at: int,
    ) -> int:
        cur = self._execute(
            """
            INSERT INTO assignments
                (repo_owner, repo_name, issue_number, assignee, deadline, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (repo_owner, repo_name, int(issue_number), assignee, int(deadline), int(created_at)),
        )
        return int(cur.lastrowid or 0)

    def delete_assignment(self, repo_owner: str, repo_name: str, issue_number: int) -> bool:
        cur = self._execute(
            "DELETE FROM assignments WHERE repo_owner = ? AND repo_name = ? AND issue_number = ?",
            (repo_owner, repo_name, int(issue_number)),
        )
        return int(cur.rowcount or 0) > 0

    def get_assignment(
        self, repo_owner: str, repo_name: str, issue_number: int
    ) -> dict[str, Any] | None:
        return self._fetchone(
            """
            SELECT * FROM assignments
            WHERE repo_owner = ? AND repo_name = ? AND issue_number = ?
            """,
            (repo_owner, repo_name, int(issue_number)),
        )

    def count_assignments_for(self, assignee: str) -> int:
        row = self._fetchone(
            "SELECT COUNT(*) AS count FROM assignments WHERE assignee = ?", (assignee,)
        )
        return int(row["count"]) if row else 0

    def add_to_deadline(
        self, repo_owner: str, repo_name: str, issue_number: int, extension_ms: int
    ) -> bool:
        cur = self._execute(
            """
            UPDATE assignments SET deadline = deadline + ?
            WHERE repo_owner = ? AND repo_name = ? AND issue_number = ?
            """,
            (int(extension_ms), repo_owner, repo_name, int(issue_number)),
        )
        return int(cur.rowcount or 0) > 0

    def list_assignments(self, deadline_before: int | None = None) -> list[dict[str, Any]]:
        if deadline_before is None:
            return self._fetchall("SELECT * FROM assignments ORDER BY deadline ASC, id ASC")
        return self._fetchall(
            "SELECT * FROM assignments WHERE deadline < ? ORDER BY deadline ASC, id ASC",
            (int(deadline_before),),
        )

    # queue

    def insert_queue_entry(
        self,
        username: str,
        repo_owner: str,
        repo_name: str,
        issue_number: int,
        duration_ms: int,
        created_at: int,
    ) -> int:
        cur = self._execute(
            """
            INSERT INTO user_queues
                (username, repo_owner, repo_name, issue_number, duration_ms, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (username, repo_owner, repo_name, int(issue_number), int(duration_ms), int(created_at)),
        )
        return int(cur.lastrowid or 0)

    def get_queue_entry(self, entry_id: int) -> dict[str, Any] | None:
        return self._fetchone("SELECT * FROM user_queues WHERE id = ?", (int(entry_id),))

    def find_queue_entry(
        self, username: str, repo_owner: str, repo_name: str, issue_number: int
    ) -> dict[str, Any] | None:
        return self._fetchone(
            """
            SELECT * FROM user_queues
            WHERE username = ? AND repo_owner = ? AND repo_name = ? AND issue_number = ?
            ORDER BY id ASC LIMIT 1
            """,
            (username, repo_owner, repo_name, int(issue_number)),
        )

    def list_queue_entries(self, username: str) -> list[dict[str, Any]]:
        return self._fetchall(
            "SELECT * FROM user_queues WHERE username = ? ORDER BY created_at ASC, id ASC",
            (username,),
        )

    def list_queue_entries_for_issue(
        self, repo_owner: str, repo_name: str, issue_number: int
    ) -> list[dict[str, Any]]:
        return self._fetchall(
            """
            SELECT * FROM user_queues
            WHERE repo_owner = ? AND repo_name = ? AND issue_number = ?
            ORDER BY id ASC
            """,
            (repo_owner, repo_name, int(issue_number)),
        )

    def list_queued_usernames(self) -> list[str]:
        rows = self._fetchall(
            """
            SELECT username, MIN(created_at) AS first_at FROM user_queues
            GROUP BY username ORDER BY first_at ASC, username ASC
            """
        )
        return [str(row["username"]) for row in rows]

    def requeue_entry(self, entry_id: int, created_at: int) -> None:
        self._execute(
            """
            UPDATE user_queues SET created_at = ?, retry_count = retry_count + 1
            WHERE id = ?
            """,
            (int(created_at), int(entry_id)),
        )

    def record_queue_failure(self, entry_id: int, next_attempt_at: int) -> None:
        self._execute(
            """
            UPDATE user_queues SET failure_count = failure_count + 1, next_attempt_at = ?
            WHERE id = ?
            """,
            (int(next_attempt_at), int(entry_id)),
        )

    def delete_queue_entry(self, entry_id: int) -> bool:
        cur = self._execute("DELETE FROM user_queues WHERE id = ?", (int(entry_id),))
        return int(cur.rowcount or 0) > 0

    # blocks

    def upsert_block(
        self,
        username: str,
        scope: str,
        repo_owner: str,
        repo_name: str,
        issue_number: int,
        blocked_until: int,
    ) -> None:
        self._execute(
            """
            INSERT INTO blocked_users
                (username, scope, repo_owner, repo_name, issue_number, blocked_until)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(username, scope, repo_owner, repo_name, issue_number)
            DO UPDATE SET blocked_until = excluded.blocked_until
            """,
            (username, scope, repo_owner, repo_name, int(issue_number), int(blocked_until)),
        )

    def get_block(
        self, username: str, scope: str, repo_owner: str, repo_name: str, issue_number: int
    ) -> dict[str, Any] | None:
        return self._fetchone(
            """
            SELECT * FROM blocked_users
            WHERE username = ? AND scope = ? AND repo_owner = ? AND repo_name = ?
              AND issue_number = ?
            """,
            (username, scope, repo_owner, repo_name, int(issue_number)),
        )

    def delete_block(
        self, username: str, scope: str, repo_owner: str, repo_name: str, issue_number: int
    ) -> bool:
        cur = self._execute(
            """
            DELETE FROM blocked_users
            WHERE username = ? AND scope = ? AND repo_owner = ? AND repo_name = ?
              AND issue_number = ?
            """,
            (username, scope, repo_owner, repo_name, int(issue_number)),
        )
        return int(cur.rowcount or 0) > 0

    def list_blocks(self, username: str = "") -> list[dict[str, Any]]:
        if username:
            return self._fetchall(
                "SELECT * FROM blocked_users WHERE username = ? ORDER BY blocked_until ASC",
                (username,),
            )
        return self._fetchall("SELECT * FROM blocked_users ORDER BY blocked_until ASC")

    def delete_blocks_expired_before(self, now: int) -> int:
        cur = self._execute("DELETE FROM blocked_users WHERE blocked_until <= ?", (int(now),))
        return int(cur.rowcount or 0)
