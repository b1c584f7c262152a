# pyright: reportPrivateUsage=false

"""Tests for AppSettings loading and validation."""

from pathlib import Path

from pydantic import ValidationError
import pytest
import yaml

from podsync.config import AppSettings
from podsync.exceptions import ConfigLoadError

MASTER_KEY = "ab" * 32

# --- Fixtures ---


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Clears settings env vars and points CONFIG_FILE at a missing file."""
    for name in (
        "MASTER_KEY",
        "LOG_FORMAT",
        "LOG_LEVEL",
        "DATA_DIR",
        "CHECK_SCHEDULE",
        "STATS_SCHEDULE",
        "FEED_TIMEOUT_SECONDS",
        "USER_AGENT",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CONFIG_FILE", str(tmp_path / "absent.yaml"))


# --- Tests ---


@pytest.mark.unit
def test_defaults_with_master_key_from_env(monkeypatch: pytest.MonkeyPatch):
    """Only the master key is required; everything else has a default."""
    monkeypatch.setenv("MASTER_KEY", MASTER_KEY)

    settings = AppSettings()  # type: ignore

    assert settings.master_key.get_secret_value() == MASTER_KEY
    assert settings.log_format == "json"
    assert settings.data_dir == Path("/data")
    assert str(settings.check_schedule) == "*/15 * * * *"
    assert str(settings.stats_schedule) == "0 0 * * *"
    assert settings.user_agent == "podsync/1.0"


@pytest.mark.unit
def test_missing_master_key_raises():
    """Settings cannot load without a master key."""
    with pytest.raises(ValidationError):
        AppSettings()  # type: ignore


@pytest.mark.unit
@pytest.mark.parametrize("bad_key", ["abcd", "zz" * 32, "ab" * 33])
def test_invalid_master_key_raises(monkeypatch: pytest.MonkeyPatch, bad_key: str):
    """The master key must be exactly 64 hex characters."""
    monkeypatch.setenv("MASTER_KEY", bad_key)

    with pytest.raises(ValidationError):
        AppSettings()  # type: ignore


@pytest.mark.unit
def test_master_key_is_not_shown_in_repr(monkeypatch: pytest.MonkeyPatch):
    """The master key is kept secret in reprs."""
    monkeypatch.setenv("MASTER_KEY", MASTER_KEY)

    assert MASTER_KEY not in repr(AppSettings())  # type: ignore


@pytest.mark.unit
def test_env_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    """Environment variables override the defaults."""
    monkeypatch.setenv("MASTER_KEY", MASTER_KEY)
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    monkeypatch.setenv("CHECK_SCHEDULE", "*/5 * * * *")
    monkeypatch.setenv("FEED_TIMEOUT_SECONDS", "12.5")
    monkeypatch.setenv("LOG_FORMAT", "human")

    settings = AppSettings()  # type: ignore

    assert settings.data_dir == tmp_path
    assert settings.check_schedule.minute == "*/5"
    assert settings.feed_timeout_seconds == 12.5
    assert settings.log_format == "human"


@pytest.mark.unit
@pytest.mark.parametrize("schedule", ["not a cron", "   ", "99 * * * *"])
def test_invalid_schedule_raises(monkeypatch: pytest.MonkeyPatch, schedule: str):
    """Schedules must be valid cron expressions."""
    monkeypatch.setenv("MASTER_KEY", MASTER_KEY)
    monkeypatch.setenv("CHECK_SCHEDULE", schedule)

    with pytest.raises(ValidationError):
        AppSettings()  # type: ignore


@pytest.mark.unit
def test_yaml_file_values_are_loaded(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    """Values missing from the environment are read from the YAML file."""
    config_path = tmp_path / "podsync.yaml"
    config_path.write_text(
        yaml.dump(
            {
                "master_key": MASTER_KEY,
                "stats_schedule": "30 1 * * *",
                "user_agent": "custom/2.0",
            }
        ),
        encoding="utf-8",
    )
    monkeypatch.setenv("CONFIG_FILE", str(config_path))

    settings = AppSettings()  # type: ignore

    assert settings.master_key.get_secret_value() == MASTER_KEY
    assert str(settings.stats_schedule) == "30 1 * * *"
    assert settings.user_agent == "custom/2.0"


@pytest.mark.unit
def test_env_wins_over_yaml(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    """Environment values take precedence over the YAML file."""
    config_path = tmp_path / "podsync.yaml"
    config_path.write_text(
        yaml.dump({"master_key": MASTER_KEY, "user_agent": "from-yaml"}),
        encoding="utf-8",
    )
    monkeypatch.setenv("CONFIG_FILE", str(config_path))
    monkeypatch.setenv("USER_AGENT", "from-env")

    assert AppSettings().user_agent == "from-env"  # type: ignore


@pytest.mark.unit
def test_invalid_yaml_raises_config_load_error(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
):
    """A YAML file that is not a mapping cannot be loaded."""
    config_path = tmp_path / "podsync.yaml"
    config_path.write_text("- just\n- a list\n", encoding="utf-8")
    monkeypatch.setenv("CONFIG_FILE", str(config_path))
    monkeypatch.setenv("MASTER_KEY", MASTER_KEY)

    with pytest.raises(ConfigLoadError):
        AppSettings()  # type: ignore
