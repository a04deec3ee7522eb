from pathlib import Path

import pytest

from worklog.config import DEFAULT_DB_PATH, load_config


@pytest.fixture
def required_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    monkeypatch.setenv("DISCORD_TOKEN", "token")
    monkeypatch.setenv("GUILD_ID", "1234")
    monkeypatch.setenv("TIMEZONE", "Asia/Shanghai")
    monkeypatch.delenv("WORKLOG_DB_PATH", raising=False)
    monkeypatch.delenv("TIMER_TICK_SECONDS", raising=False)
    return monkeypatch


def test_load_config_defaults(required_env: pytest.MonkeyPatch) -> None:
    config = load_config()

    assert config.guild_id == 1234
    assert config.timezone.key == "Asia/Shanghai"
    assert config.db_path == DEFAULT_DB_PATH
    assert config.tick_seconds == 1.0


def test_load_config_optional_values(required_env: pytest.MonkeyPatch) -> None:
    required_env.setenv("WORKLOG_DB_PATH", "/tmp/worklog-test.db")
    required_env.setenv("TIMER_TICK_SECONDS", "0.5")

    config = load_config()

    assert config.db_path == Path("/tmp/worklog-test.db")
    assert config.tick_seconds == 0.5


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("GUILD_ID", "abc"),
        ("GUILD_ID", "-3"),
        ("TIMEZONE", "Mars/Olympus"),
        ("TIMER_TICK_SECONDS", "0"),
        ("TIMER_TICK_SECONDS", "fast"),
        ("DISCORD_TOKEN", ""),
    ],
)
def test_load_config_rejects_bad_values(required_env: pytest.MonkeyPatch, name: str, value: str) -> None:
    required_env.setenv(name, value)

    with pytest.raises(ValueError, match=name):
        load_config()
