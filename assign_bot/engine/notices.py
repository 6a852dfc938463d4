"""Plain-text comment bodies posted on issues."""

from __future__ import annotations

from datetime import datetime, timezone

from assign_bot.engine.models import MS_PER_HOUR

EXPIRY_MARKER = "<!-- assign-bot:expired:{user}:{deadline} -->"


def format_timestamp(ms: int) -> str:
    moment = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    return moment.strftime("%Y-%m-%d %H:%M UTC")


def format_hours(duration_ms: int) -> str:
    return f"{duration_ms / MS_PER_HOUR:g}"


def assigned(user: str, duration_ms: int, deadline: int) -> str:
    return (
        f"@{user} has been assigned to this issue for {format_hours(duration_ms)} hours. "
        f"Deadline: {format_timestamp(deadline)}."
    )


def queued_assigned(user: str, duration_ms: int, deadline: int) -> str:
    return (
        f"@{user} has been auto-assigned to this queued issue for "
        f"{format_hours(duration_ms)} hours. Deadline: {format_timestamp(deadline)}."
    )


def added_to_queue(user: str, max_active: int) -> str:
    return (
        f"@{user}, you have reached the maximum of {max_active} active assignments. "
        "This issue has been added to your queue and will be assigned once a slot is available."
    )


def blocked(user: str, blocked_until: int) -> str:
    return (
        f"@{user}, you are temporarily blocked from being assigned this issue until "
        f"{format_timestamp(blocked_until)} due to a previous expired assignment."
    )


def already_assigned(user: str, assignee: str) -> str:
    if user == assignee:
        return f"@{user}, you are already assigned to this issue."
    return f"@{user}, this issue is already assigned to @{assignee}."


def unassigned(user: str) -> str:
    return f"@{user} has been unassigned from this issue."


def not_your_assignment(user: str, assignee: str) -> str:
    return f"@{user}, this issue is assigned to @{assignee}; only they can unassign it."


def not_authorized(user: str) -> str:
    return f"@{user} is not authorized to extend assignment deadlines."


def invalid_extension() -> str:
    return "Invalid extension format. Use /extend-<number><h or m> (e.g., /extend-1h)."


def extended(amount: str, deadline: int) -> str:
    return (
        f"The assignment deadline has been extended by {amount}. "
        f"New deadline: {format_timestamp(deadline)}."
    )


def nothing_to_extend() -> str:
    return "No active assignment found to extend."


def expired(user: str, deadline: int, block_hours: float) -> str:
    marker = EXPIRY_MARKER.format(user=user, deadline=deadline)
    return (
        f"Assignment for @{user} has expired and been removed. "
        f"You are blocked from claiming this issue again for {block_hours:g} hours.\n\n{marker}"
    )


def completed_by_merge(user: str, issue_number: int) -> str:
    return (
        f"Assignment for @{user} on issue #{issue_number} has been completed with the PR merge."
    )


def command_failed(user: str) -> str:
    return f"Sorry @{user}, something went wrong while processing your command. Please try again."


def greeting() -> str:
    return "Thanks for opening this issue!"
