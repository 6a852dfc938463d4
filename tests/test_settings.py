from __future__ import annotations

from pathlib import Path

import pytest

from assign_bot.engine.models import MS_PER_HOUR
from assign_bot.shared.policy import AssignmentPolicy, load_policy
from assign_bot.shared.settings import AssignBotSettings, get_settings


def test_settings_defaults_from_empty_env() -> None:
    settings = AssignBotSettings.from_env({})

    assert settings.sqlite_path == Path("data") / "assign_bot.sqlite"
    assert settings.sweep_interval_s == 60.0
    assert settings.max_active == 4
    assert settings.max_queue_retries == 3
    assert settings.expiry_block_hours == 5.0
    assert settings.maintainers == ()
    assert settings.greet_new_issues is True
    assert settings.allow_in_memory_tracker is False
    assert settings.uses_file_storage is True
    assert settings.json_logs is True


def test_settings_parse_overrides_and_create_directories(tmp_path: Path) -> None:
    settings = get_settings(
        {
            "ASSIGN_BOT_DATA_DIR": str(tmp_path / "state"),
            "ASSIGN_BOT_MAX_ACTIVE": "2",
            "ASSIGN_BOT_SWEEP_INTERVAL_S": "15",
            "ASSIGN_BOT_MAINTAINERS": "alice, bob,,",
            "ASSIGN_BOT_JSON_LOGS": "no",
            "ASSIGN_BOT_LOG_LEVEL": "debug",
        }
    )

    assert settings.sqlite_path == tmp_path / "state" / "assign_bot.sqlite"
    assert (tmp_path / "state").is_dir()
    assert settings.max_active == 2
    assert settings.sweep_interval_s == 15.0
    assert settings.maintainers == ("alice", "bob")
    assert settings.json_logs is False
    assert settings.log_level == "DEBUG"
    assert settings.load_policy().is_maintainer("bob")


def test_settings_reject_malformed_numbers() -> None:
    with pytest.raises(ValueError, match="ASSIGN_BOT_MAX_ACTIVE"):
        AssignBotSettings.from_env({"ASSIGN_BOT_MAX_ACTIVE": "four"})


def test_policy_durations_follow_labels() -> None:
    policy = AssignmentPolicy()

    assert policy.duration_ms_for(["Easy"]) == int(1.5 * MS_PER_HOUR)
    assert policy.duration_ms_for(["bug", "hard"]) == 5 * MS_PER_HOUR
    assert policy.duration_ms_for([]) == 3 * MS_PER_HOUR


def test_policy_file_overrides_defaults(tmp_path: Path) -> None:
    path = tmp_path / "policy.yaml"
    path.write_text(
        "maintainers: [carol]\n"
        "default_hours: 2\n"
        "label_hours:\n"
        "  quick: 0.5\n"
    )

    policy = load_policy(path).with_maintainers(["dave"])

    assert policy.is_maintainer("carol")
    assert policy.is_maintainer("dave")
    assert not policy.is_maintainer("eve")
    assert policy.duration_ms_for(["quick"]) == MS_PER_HOUR // 2
    assert policy.duration_ms_for(["easy"]) == 2 * MS_PER_HOUR


def test_policy_file_must_be_a_mapping(tmp_path: Path) -> None:
    path = tmp_path / "policy.yaml"
    path.write_text("- not\n- a mapping\n")

    with pytest.raises(ValueError):
        load_policy(path)
    with pytest.raises(FileNotFoundError):
        load_policy(tmp_path / "missing.yaml")
