from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


DEFAULT_WORK_TYPES: tuple[str, ...] = ("工作", "生活", "运动", "学习")
DEFAULT_FEATURES: dict[str, bool] = {
    "timer": True,
    "statistics": True,
    "export": True,
    "manualRecord": True,
}
# Category left out of the "excluding life" daily total.
LIFE_WORK_TYPE = "生活"
DEFAULT_TIMER_CONTENT = "计时工作"
DEFAULT_DB_PATH = Path("worklog.db")


@dataclass(frozen=True, slots=True)
class Config:
    discord_token: str
    guild_id: int
    timezone: ZoneInfo
    db_path: Path
    tick_seconds: float


def _required_env(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise ValueError(f"Missing required environment variable: {name}")
    return value.strip()


def _required_int_env(name: str) -> int:
    value = _required_env(name)
    try:
        parsed = int(value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer") from exc

    if parsed <= 0:
        raise ValueError(f"Environment variable {name} must be positive")
    return parsed


def _timezone_from_env(name: str) -> ZoneInfo:
    tz_name = _required_env(name)
    try:
        return ZoneInfo(tz_name)
    except ZoneInfoNotFoundError as exc:
        raise ValueError(f"Invalid timezone in {name}: {tz_name}") from exc


def load_config() -> Config:
    tick_raw = os.getenv("TIMER_TICK_SECONDS", "1").strip()
    try:
        tick_seconds = float(tick_raw)
    except ValueError as exc:
        raise ValueError("TIMER_TICK_SECONDS must be a number") from exc

    if tick_seconds <= 0:
        raise ValueError("TIMER_TICK_SECONDS must be positive")

    db_path = os.getenv("WORKLOG_DB_PATH", "").strip()

    return Config(
        discord_token=_required_env("DISCORD_TOKEN"),
        guild_id=_required_int_env("GUILD_ID"),
        timezone=_timezone_from_env("TIMEZONE"),
        db_path=Path(db_path) if db_path else DEFAULT_DB_PATH,
        tick_seconds=tick_seconds,
    )
