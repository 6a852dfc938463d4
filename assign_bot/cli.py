"""assign-bot CLI."""

from __future__ import annotations

import json

import typer

from assign_bot.github.github_auth import load_github_auth_from_env
from assign_bot.github.github_connector import resolve_connector_type
from assign_bot.server.app import ServerApp, create_app_from_env
from assign_bot.shared.settings import AssignBotSettings, ConfigurationError

app = typer.Typer(add_completion=False, help="assign-bot: issue assignment queue and deadlines")


def _service() -> ServerApp:
    try:
        return create_app_from_env()
    except ConfigurationError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=2)


@app.command()
def status() -> None:
    """Print effective settings with tokens redacted."""
    settings = AssignBotSettings.from_env()
    auth = load_github_auth_from_env()
    payload = {
        "sqlite_path": str(settings.sqlite_path),
        "connector": resolve_connector_type(),
        "allow_in_memory_tracker": settings.allow_in_memory_tracker,
        "sweep_interval_s": settings.sweep_interval_s,
        "max_active": settings.max_active,
        "max_queue_retries": settings.max_queue_retries,
        "expiry_block_hours": settings.expiry_block_hours,
        "maintainers": list(settings.maintainers),
        "policy_path": str(settings.policy_path) if settings.policy_path else None,
        "auth": auth.redacted(),
    }
    typer.echo(json.dumps(payload, indent=2))


@app.command()
def sweep() -> None:
    """Run one reconciliation sweep and print its report."""
    report = _service().sweep()
    typer.echo(json.dumps(report, indent=2))


@app.command("run-scheduler")
def run_scheduler() -> None:
    """Run the periodic sweep loop in the foreground until interrupted."""
    service = _service()
    typer.echo(f"sweeping every {service.settings.sweep_interval_s:g}s (ctrl-c to stop)")
    try:
        service.scheduler.run_forever()
    except KeyboardInterrupt:
        raise typer.Exit(code=0)


@app.command()
def queue(user: str = typer.Argument(...)) -> None:
    """List a user's queued claims in admission order."""
    items = _service().list_queue(user)
    typer.echo(json.dumps({"user": user, "items": items}, indent=2))


@app.command()
def assignments() -> None:
    """List active assignments."""
    items = _service().list_assignments()
    typer.echo(json.dumps({"items": items, "count": len(items)}, indent=2))


if __name__ == "__main__":
    app()
