from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Any

from .config import DEFAULT_FEATURES, DEFAULT_WORK_TYPES

_LEADING_INT = re.compile(r"\s*[+-]?\d+")


def parse_minutes(value: Any) -> int:
    """Best-effort integer minutes; anything unusable counts as zero."""
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else 0
    # Leading integer only, so "12.5" and "12 min" both read as 12.
    match = _LEADING_INT.match(str(value))
    return int(match.group()) if match else 0


@dataclass(frozen=True, slots=True)
class TimerSnapshot:
    is_running: bool = False
    start_time: int | None = None
    elapsed_time: int = 0

    @classmethod
    def idle(cls) -> TimerSnapshot:
        return cls()

    @property
    def is_idle(self) -> bool:
        return self.start_time is None

    @property
    def is_paused(self) -> bool:
        return not self.is_running and self.start_time is not None

    def elapsed_at(self, now_ms: int) -> int:
        if self.is_running and self.start_time is not None:
            return max(0, now_ms - self.start_time)
        return max(0, self.elapsed_time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "isRunning": self.is_running,
            "startTime": self.start_time,
            "elapsedTime": self.elapsed_time,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TimerSnapshot:
        start = data.get("startTime")
        # Older snapshots used 0 for "never started".
        start_time = int(start) if start else None
        return cls(
            is_running=bool(data.get("isRunning")) and start_time is not None,
            start_time=start_time,
            elapsed_time=int(data.get("elapsedTime") or 0),
        )


@dataclass(frozen=True, slots=True)
class WorkRecord:
    id: int
    date: str
    start_time: str
    end_time: str
    duration: int
    content: str
    type: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "duration": self.duration,
            "content": self.content,
            "type": self.type,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkRecord:
        return cls(
            id=int(data["id"]),
            date=str(data.get("date", "")),
            start_time=str(data.get("startTime", "")),
            end_time=str(data.get("endTime", "")),
            duration=max(0, parse_minutes(data.get("duration"))),
            content=str(data.get("content") or ""),
            type=str(data.get("type") or ""),
        )


@dataclass(frozen=True, slots=True)
class TotalRow:
    label: str
    minutes: int


@dataclass(frozen=True, slots=True)
class Settings:
    features: dict[str, bool] = field(default_factory=lambda: dict(DEFAULT_FEATURES))
    work_types: tuple[str, ...] = DEFAULT_WORK_TYPES

    def feature_enabled(self, name: str) -> bool:
        return self.features.get(name, True)

    def to_dict(self) -> dict[str, Any]:
        return {"features": dict(self.features), "workTypes": list(self.work_types)}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Settings:
        data = data or {}
        features = dict(DEFAULT_FEATURES)
        raw_features = data.get("features")
        if isinstance(raw_features, dict):
            features.update({str(key): bool(value) for key, value in raw_features.items()})

        work_types: list[str] = []
        for item in data.get("workTypes") or ():
            name = str(item).strip()
            if name and name not in work_types:
                work_types.append(name)

        return cls(features=features, work_types=tuple(work_types) or DEFAULT_WORK_TYPES)
