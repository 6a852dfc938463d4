"""Runtime settings loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from assign_bot.shared.policy import AssignmentPolicy, load_policy

TRUTHY = {"1", "true", "yes", "on"}


class ConfigurationError(ValueError):
    """Raised when the environment describes a setup the bot refuses to run."""


@dataclass(frozen=True)
class AssignBotSettings:
    """Storage location, engine limits, and logging options."""

    data_dir: Path
    sqlite_path: Path
    sweep_interval_s: float = 60.0
    max_active: int = 4
    max_queue_retries: int = 3
    expiry_block_hours: float = 5.0
    max_transient_failures: int = 5
    backoff_base_s: float = 60.0
    backoff_max_s: float = 3600.0
    maintainers: tuple[str, ...] = ()
    policy_path: Path | None = None
    greet_new_issues: bool = True
    allow_in_memory_tracker: bool = False
    log_level: str = "INFO"
    json_logs: bool = True

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> "AssignBotSettings":
        source = os.environ if env is None else env
        data_dir = Path(source.get("ASSIGN_BOT_DATA_DIR", "./data"))
        sqlite_path = Path(
            source.get("ASSIGN_BOT_SQLITE_PATH", str(data_dir / "assign_bot.sqlite"))
        )
        policy_path = (source.get("ASSIGN_BOT_POLICY_PATH") or "").strip()
        maintainers = tuple(
            login.strip()
            for login in (source.get("ASSIGN_BOT_MAINTAINERS") or "").split(",")
            if login.strip()
        )
        return cls(
            data_dir=data_dir,
            sqlite_path=sqlite_path,
            sweep_interval_s=_float(source, "ASSIGN_BOT_SWEEP_INTERVAL_S", 60.0),
            max_active=_int(source, "ASSIGN_BOT_MAX_ACTIVE", 4),
            max_queue_retries=_int(source, "ASSIGN_BOT_MAX_QUEUE_RETRIES", 3),
            expiry_block_hours=_float(source, "ASSIGN_BOT_EXPIRY_BLOCK_HOURS", 5.0),
            max_transient_failures=_int(source, "ASSIGN_BOT_MAX_TRANSIENT_FAILURES", 5),
            backoff_base_s=_float(source, "ASSIGN_BOT_BACKOFF_BASE_S", 60.0),
            backoff_max_s=_float(source, "ASSIGN_BOT_BACKOFF_MAX_S", 3600.0),
            maintainers=maintainers,
            policy_path=Path(policy_path) if policy_path else None,
            greet_new_issues=_bool(source, "ASSIGN_BOT_GREET_NEW_ISSUES", True),
            allow_in_memory_tracker=_bool(source, "ASSIGN_BOT_ALLOW_IN_MEMORY_TRACKER", False),
            log_level=(source.get("ASSIGN_BOT_LOG_LEVEL") or "INFO").strip().upper(),
            json_logs=_bool(source, "ASSIGN_BOT_JSON_LOGS", True),
        )

    @property
    def uses_file_storage(self) -> bool:
        return str(self.sqlite_path) != ":memory:"

    def ensure_directories(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.sqlite_path.parent.mkdir(parents=True, exist_ok=True)

    def load_policy(self) -> AssignmentPolicy:
        return load_policy(self.policy_path).with_maintainers(self.maintainers)


def get_settings(env: dict[str, str] | None = None) -> AssignBotSettings:
    """Build settings from environment variables and create storage directories."""

    settings = AssignBotSettings.from_env(env)
    settings.ensure_directories()
    return settings


def _int(source: dict[str, str], key: str, default: int) -> int:
    raw = (source.get(key) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from exc


def _float(source: dict[str, str], key: str, default: float) -> float:
    raw = (source.get(key) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{key} must be a number, got {raw!r}") from exc


def _bool(source: dict[str, str], key: str, default: bool) -> bool:
    raw = (source.get(key) or "").strip().lower()
    if not raw:
        return default
    return raw in TRUTHY
