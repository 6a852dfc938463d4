"""Assignment policy: label-driven claim durations and the maintainer allow-list.

Defaults mirror the labels used on the tracker (``easy``/``medium``/``hard``).
A YAML file can override them::

    maintainers: [alice, bob]
    default_hours: 3
    label_hours:
      easy: 1.5
      medium: 3
      hard: 5
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

import yaml

from assign_bot.engine.models import hours_to_ms

DEFAULT_LABEL_HOURS = {"easy": 1.5, "medium": 3.0, "hard": 5.0}
DEFAULT_HOURS = 3.0


@dataclass(frozen=True)
class AssignmentPolicy:
    maintainers: frozenset[str] = frozenset()
    label_hours: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_LABEL_HOURS))
    default_hours: float = DEFAULT_HOURS

    def duration_ms_for(self, labels: Iterable[str]) -> int:
        """First configured label present on the issue wins."""
        present = {str(label).strip().lower() for label in labels}
        for label, hours in self.label_hours.items():
            if label in present:
                return hours_to_ms(hours)
        return hours_to_ms(self.default_hours)

    def is_maintainer(self, login: str) -> bool:
        return login in self.maintainers

    def with_maintainers(self, extra: Iterable[str]) -> "AssignmentPolicy":
        merged = self.maintainers | {login.strip() for login in extra if login.strip()}
        return AssignmentPolicy(
            maintainers=frozenset(merged),
            label_hours=dict(self.label_hours),
            default_hours=self.default_hours,
        )


def load_policy(path: Path | str | None = None) -> AssignmentPolicy:
    if path is None or not str(path).strip():
        return AssignmentPolicy()
    policy_path = Path(path)
    if not policy_path.exists():
        raise FileNotFoundError(f"Policy file not found: {policy_path}")
    raw = yaml.safe_load(policy_path.read_text()) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Policy file must contain a mapping: {policy_path}")

    maintainers = raw.get("maintainers") or []
    if not isinstance(maintainers, list):
        raise ValueError("policy.maintainers must be a list")

    label_hours = dict(DEFAULT_LABEL_HOURS)
    configured = raw.get("label_hours")
    if configured is not None:
        if not isinstance(configured, dict):
            raise ValueError("policy.label_hours must be a mapping")
        label_hours = {
            str(label).strip().lower(): float(hours) for label, hours in configured.items()
        }

    return AssignmentPolicy(
        maintainers=frozenset(str(login).strip() for login in maintainers if str(login).strip()),
        label_hours=label_hours,
        default_hours=float(raw.get("default_hours", DEFAULT_HOURS)),
    )
