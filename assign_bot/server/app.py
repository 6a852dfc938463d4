"""Webhook ingress and process wiring with a minimal ASGI HTTP layer."""

from __future__ import annotations

import argparse
import json
import os
from pathlib import Path
from typing import Any

import pydantic

from assign_bot.engine import notices
from assign_bot.engine.blocks import BlockRegistry
from assign_bot.engine.commands import CommandEngine, CommandResult
from assign_bot.engine.db import AssignmentDB
from assign_bot.engine.ledger import AssignmentLedger
from assign_bot.engine.models import Clock, RepoRef, now_ms
from assign_bot.engine.queue import AssignmentQueue
from assign_bot.engine.scheduler import ReconciliationScheduler
from assign_bot.github.github_connector import (
    IssueTracker,
    TrackerError,
    build_connector_from_env,
    resolve_connector_type,
)
from assign_bot.server.events import IssueCommentEvent, IssuesEvent, PullRequestEvent
from assign_bot.shared.logging import configure_logging, get_logger
from assign_bot.shared.policy import AssignmentPolicy
from assign_bot.shared.settings import AssignBotSettings, ConfigurationError, get_settings


class ServerApp:
    """Owns the store, engine components, and scheduler for one process."""

    def __init__(
        self,
        db_path: str | Path = ":memory:",
        *,
        settings: AssignBotSettings | None = None,
        tracker: IssueTracker | None = None,
        policy: AssignmentPolicy | None = None,
        clock: Clock = now_ms,
        logger: Any | None = None,
    ) -> None:
        self.settings = settings or AssignBotSettings.from_env()
        self.log = logger if logger is not None else get_logger("assign_bot")
        self.db = AssignmentDB(db_path)
        self.tracker = tracker if tracker is not None else build_connector_from_env()
        self.policy = policy or self.settings.load_policy()
        self.clock = clock
        self.ledger = AssignmentLedger(db=self.db, clock=clock)
        self.blocks = BlockRegistry(db=self.db, clock=clock)
        self.queue = AssignmentQueue(
            db=self.db,
            ledger=self.ledger,
            blocks=self.blocks,
            clock=clock,
            logger=self.log.bind(component="queue"),
            max_active=self.settings.max_active,
            max_retries=self.settings.max_queue_retries,
            max_transient_failures=self.settings.max_transient_failures,
            backoff_base_ms=int(self.settings.backoff_base_s * 1000),
            backoff_max_ms=int(self.settings.backoff_max_s * 1000),
        )
        self.engine = CommandEngine(
            ledger=self.ledger,
            blocks=self.blocks,
            queue=self.queue,
            tracker=self.tracker,
            policy=self.policy,
            clock=clock,
            logger=self.log.bind(component="commands"),
            max_active=self.settings.max_active,
        )
        self.scheduler = ReconciliationScheduler(
            ledger=self.ledger,
            blocks=self.blocks,
            queue=self.queue,
            tracker=self.tracker,
            clock=clock,
            logger=self.log.bind(component="scheduler"),
            interval_s=self.settings.sweep_interval_s,
            expiry_block_hours=self.settings.expiry_block_hours,
        )

    def ingest_webhook(self, event_type: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            if event_type == "issues":
                return self._on_issues(IssuesEvent.model_validate(payload))
            if event_type == "issue_comment":
                return self._on_issue_comment(IssueCommentEvent.model_validate(payload))
            if event_type == "pull_request":
                return self._on_pull_request(PullRequestEvent.model_validate(payload))
        except pydantic.ValidationError as exc:
            self.log.warning("webhook_payload_invalid", event_type=event_type, errors=exc.errors())
            return {"status": "invalid_payload", "event_type": event_type}
        return {"status": "ignored", "event_type": event_type}

    def _on_issues(self, event: IssuesEvent) -> dict[str, Any]:
        repo = event.repository.ref()
        if event.action == "opened":
            if not self.settings.greet_new_issues or event.issue.is_pull_request:
                return {"status": "ignored", "event_type": "issues"}
            posted = self._post(repo, event.issue.number, notices.greeting())
            return {"status": "handled", "action": "greeted", "posted": posted}
        if event.action == "closed":
            result = self.engine.issue_closed(repo, event.issue.number)
            return {"status": "handled", "result": result.as_dict()}
        return {"status": "ignored", "event_type": "issues"}

    def _on_issue_comment(self, event: IssueCommentEvent) -> dict[str, Any]:
        if event.action != "created":
            return {"status": "ignored", "event_type": "issue_comment"}
        if event.issue.is_pull_request or event.comment.user.is_bot:
            return {"status": "ignored", "event_type": "issue_comment"}
        result = self.engine.handle_comment(
            event.repository.ref(),
            event.issue.number,
            event.comment.user.login,
            event.comment.body,
            labels=event.issue.label_names,
        )
        if result is None:
            return {"status": "ignored", "event_type": "issue_comment"}
        return {"status": "handled", "result": self._render(result)}

    def _on_pull_request(self, event: PullRequestEvent) -> dict[str, Any]:
        if event.action != "closed" or not event.pull_request.merged:
            return {"status": "ignored", "event_type": "pull_request"}
        results = self.engine.pull_request_merged(
            event.repository.ref(),
            event.pull_request.body or "",
            event.pull_request.user.login,
        )
        return {"status": "handled", "results": [self._render(result) for result in results]}

    def _render(self, result: CommandResult) -> dict[str, Any]:
        rendered = result.as_dict()
        rendered["posted"] = bool(result.reply) and self._post(
            result.repo, result.issue_number, result.reply
        )
        return rendered

    def _post(self, repo: RepoRef, issue_number: int, body: str) -> bool:
        try:
            self.tracker.create_comment(repo, issue_number, body)
        except TrackerError as exc:
            self.log.warning(
                "reply_post_failed",
                repo=repo.full_name,
                issue_number=issue_number,
                error=str(exc),
            )
            return False
        return True

    def sweep(self) -> dict[str, Any]:
        return self.scheduler.run_once().as_dict()

    def list_assignments(self) -> list[dict[str, Any]]:
        return [
            {
                "repo": assignment.repo.full_name,
                "issue_number": assignment.issue_number,
                "assignee": assignment.assignee,
                "deadline": assignment.deadline,
                "created_at": assignment.created_at,
            }
            for assignment in self.ledger.all()
        ]

    def list_queue(self, user: str) -> list[dict[str, Any]]:
        return [
            {
                "id": entry.id,
                "repo": entry.repo.full_name,
                "issue_number": entry.issue_number,
                "duration_ms": entry.duration_ms,
                "retry_count": entry.retry_count,
                "failure_count": entry.failure_count,
                "next_attempt_at": entry.next_attempt_at,
                "created_at": entry.created_at,
            }
            for entry in self.queue.entries(user)
        ]


class ASGIServer:
    """Minimal ASGI adapter: health, webhook ingress, and manual sweeps."""

    def __init__(self, service: ServerApp | None = None, run_scheduler: bool = True) -> None:
        self._service = service
        self.run_scheduler = run_scheduler

    @property
    def service(self) -> ServerApp:
        if self._service is None:
            self._service = create_app_from_env()
        return self._service

    async def __call__(self, scope: dict[str, Any], receive: Any, send: Any) -> None:
        if scope.get("type") == "lifespan":
            await self._lifespan(receive, send)
            return
        if scope.get("type") != "http":
            await self._send_json(send, 500, {"error": "unsupported_scope"})
            return

        method = scope.get("method", "GET")
        path = scope.get("path", "")
        headers = self._parse_headers(scope.get("headers") or [])
        body = await self._read_body(receive)

        try:
            if method == "GET" and path == "/health":
                await self._send_json(
                    send,
                    200,
                    {"status": "ok", "scheduler_running": self.service.scheduler.is_running},
                )
                return

            if method == "POST" and path == "/webhooks/github":
                event_type = headers.get("x-github-event", "").strip()
                if not event_type:
                    await self._send_json(send, 400, {"error": "missing_event_type"})
                    return
                payload = self._parse_json(body)
                if payload is None:
                    await self._send_json(send, 400, {"error": "invalid_json"})
                    return
                result = self.service.ingest_webhook(event_type, payload)
                status = 422 if result.get("status") == "invalid_payload" else 200
                await self._send_json(send, status, result)
                return

            if method == "POST" and path == "/sweep":
                await self._send_json(send, 200, self.service.sweep())
                return

            if method == "GET" and path == "/assignments":
                items = self.service.list_assignments()
                await self._send_json(
                    send, 200, {"items": items, "summary": {"count": len(items)}}
                )
                return

            if method == "GET" and path.startswith("/queues/"):
                user = path[len("/queues/") :].strip("/")
                if not user or "/" in user:
                    await self._send_json(send, 404, {"error": "not_found"})
                    return
                items = self.service.list_queue(user)
                await self._send_json(
                    send, 200, {"items": items, "summary": {"count": len(items)}}
                )
                return

            await self._send_json(send, 404, {"error": "not_found"})
        except Exception as exc:
            self.service.log.error(
                "request_failed", method=method, path=path, error=str(exc), exc_info=True
            )
            await self._send_json(send, 500, {"error": "internal_error"})

    async def _lifespan(self, receive: Any, send: Any) -> None:
        while True:
            message = await receive()
            if message["type"] == "lifespan.startup":
                try:
                    service = self.service
                except ConfigurationError as exc:
                    await send({"type": "lifespan.startup.failed", "message": str(exc)})
                    return
                if self.run_scheduler:
                    service.scheduler.start()
                await send({"type": "lifespan.startup.complete"})
            elif message["type"] == "lifespan.shutdown":
                if self._service is not None:
                    self._service.scheduler.stop()
                await send({"type": "lifespan.shutdown.complete"})
                return

    def _parse_headers(self, raw_headers: list[tuple[bytes, bytes]]) -> dict[str, str]:
        parsed: dict[str, str] = {}
        for key, value in raw_headers:
            parsed[key.decode("latin-1").lower()] = value.decode("latin-1")
        return parsed

    async def _read_body(self, receive: Any) -> bytes:
        chunks: list[bytes] = []
        while True:
            message = await receive()
            if message["type"] != "http.request":
                continue
            chunks.append(message.get("body", b""))
            if not message.get("more_body", False):
                break
        return b"".join(chunks)

    def _parse_json(self, body: bytes) -> dict[str, Any] | None:
        if not body:
            return None
        try:
            parsed = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return None
        if not isinstance(parsed, dict):
            return None
        return parsed

    async def _send_json(self, send: Any, status: int, payload: dict[str, Any]) -> None:
        body = json.dumps(payload).encode("utf-8")
        await send(
            {
                "type": "http.response.start",
                "status": status,
                "headers": [(b"content-type", b"application/json")],
            }
        )
        await send({"type": "http.response.body", "body": body})


def create_app(db_path: str | Path = ":memory:", **kwargs: Any) -> ServerApp:
    return ServerApp(db_path=db_path, **kwargs)


def create_app_from_env(env: dict[str, str] | None = None) -> ServerApp:
    """Build the process-wide service from environment settings; configures logging."""
    env_map = os.environ if env is None else env
    settings = get_settings(env_map)
    connector_type = resolve_connector_type(env_map)
    # In-memory issues are all missing: a sweep over a real store purges every row.
    if (
        connector_type != "api"
        and settings.uses_file_storage
        and not settings.allow_in_memory_tracker
    ):
        raise ConfigurationError(
            f"refusing to open {settings.sqlite_path} with the in-memory tracker; set "
            "ASSIGN_BOT_GITHUB_TOKEN (or ASSIGN_BOT_GITHUB_CONNECTOR=api), or "
            "ASSIGN_BOT_ALLOW_IN_MEMORY_TRACKER=true to accept the data loss"
        )
    configure_logging(settings.log_level, settings.json_logs)
    return ServerApp(
        db_path=settings.sqlite_path,
        settings=settings,
        tracker=build_connector_from_env(env_map),
    )


app = ASGIServer()


def main() -> int:
    parser = argparse.ArgumentParser(description="assign-bot ASGI server entrypoint")
    parser.add_argument(
        "--print-startup",
        action="store_true",
        help="print the supported uvicorn startup command and exit",
    )
    args = parser.parse_args()

    if args.print_startup:
        print("uvicorn assign_bot.server.app:app --host 127.0.0.1 --port 8000")
        return 0

    parser.print_help()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
