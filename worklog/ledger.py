from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from datetime import date, datetime
from typing import Any
from zoneinfo import ZoneInfo

from .db import RECORDS_KEY, Database
from .errors import InvalidState, NotFound, ValidationError
from .models import WorkRecord, parse_minutes


def newest_first(records: Iterable[WorkRecord]) -> list[WorkRecord]:
    """Total ordering for display: latest day, latest start, latest id first."""
    return sorted(records, key=lambda item: (item.date, item.start_time, item.id), reverse=True)


def _parse_clock(value: str, label: str) -> datetime:
    try:
        return datetime.strptime(value.strip(), "%H:%M")
    except ValueError as exc:
        raise ValidationError(f"{label} must be HH:MM, got {value!r}") from exc


def build_manual_record(
    day: str,
    start_time: str,
    end_time: str,
    content: str,
    work_type: str,
    work_types: Sequence[str] | None = None,
) -> dict[str, Any]:
    """Validate a hand-entered (or edited) session and return its record fields."""
    fields = {"date": day, "start time": start_time, "end time": end_time, "content": content, "type": work_type}
    missing = [label for label, value in fields.items() if not value or not str(value).strip()]
    if missing:
        raise ValidationError(f"Missing required field(s): {', '.join(missing)}")

    try:
        date.fromisoformat(day.strip())
    except ValueError as exc:
        raise ValidationError(f"date must be YYYY-MM-DD, got {day!r}") from exc

    if work_types is not None and work_type not in work_types:
        raise ValidationError(f"Unknown category: {work_type}")

    start = _parse_clock(start_time, "start time")
    end = _parse_clock(end_time, "end time")
    duration = round((end - start).total_seconds() / 60)
    if duration <= 0:
        raise InvalidState("End time must be later than start time")

    return {
        "date": day.strip(),
        "startTime": start.strftime("%H:%M"),
        "endTime": end.strftime("%H:%M"),
        "duration": duration,
        "content": content.strip(),
        "type": work_type,
    }


class RecordLedger:
    """Completed work sessions persisted as one list under the ``records`` key."""

    def __init__(
        self,
        db: Database,
        clock: Callable[[], int],
        logger: logging.Logger | None = None,
    ) -> None:
        self.db = db
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)
        self._last_id = 0

    def _load(self) -> list[dict[str, Any]]:
        raw = self.db.get(RECORDS_KEY)
        if not isinstance(raw, list):
            return []
        return [item for item in raw if isinstance(item, dict) and "id" in item]

    def _next_id(self, existing: list[dict[str, Any]]) -> int:
        for item in existing:
            try:
                self._last_id = max(self._last_id, int(item["id"]))
            except (TypeError, ValueError):
                continue
        # Clock-derived so ids keep increasing across restarts, bumped on collisions.
        return max(self.clock(), self._last_id + 1)

    def add(self, record: dict[str, Any]) -> WorkRecord:
        records = self._load()
        record_id = self._next_id(records)
        entry = {key: value for key, value in record.items() if key != "id"}
        entry["id"] = record_id

        self.db.set(RECORDS_KEY, records + [entry])
        self._last_id = record_id
        self.logger.info("Record added: id=%s date=%s duration=%s", record_id, entry.get("date"), entry.get("duration"))
        return WorkRecord.from_dict(entry)

    def update(self, record_id: int, patch: dict[str, Any]) -> WorkRecord:
        records = self._load()
        for index, item in enumerate(records):
            if item.get("id") == record_id:
                break
        else:
            raise NotFound(f"No record with id {record_id}")

        merged = {**item, **{key: value for key, value in patch.items() if key != "id"}}
        updated = list(records)
        updated[index] = merged
        self.db.set(RECORDS_KEY, updated)
        self.logger.info("Record updated: id=%s", record_id)
        return WorkRecord.from_dict(merged)

    def delete(self, record_id: int) -> None:
        records = self._load()
        remaining = [item for item in records if item.get("id") != record_id]
        if len(remaining) == len(records):
            raise NotFound(f"No record with id {record_id}")

        self.db.set(RECORDS_KEY, remaining)
        self.logger.info("Record deleted: id=%s", record_id)

    def delete_all(self) -> None:
        self.db.set(RECORDS_KEY, [])
        self.logger.info("All records deleted")

    def all(self) -> list[WorkRecord]:
        return [WorkRecord.from_dict(item) for item in self._load()]

    def get(self, record_id: int) -> WorkRecord:
        for item in self._load():
            if item.get("id") == record_id:
                return WorkRecord.from_dict(item)
        raise NotFound(f"No record with id {record_id}")

    def by_date(self, day: str) -> list[WorkRecord]:
        return [WorkRecord.from_dict(item) for item in self._load() if item.get("date") == day]

    def today(self, tz: ZoneInfo) -> list[WorkRecord]:
        day = datetime.fromtimestamp(self.clock() / 1000, tz).date().isoformat()
        return newest_first(self.by_date(day))

    def total_minutes(self, day: str) -> int:
        return sum(parse_minutes(item.get("duration")) for item in self._load() if item.get("date") == day)

    def total_minutes_excluding(self, day: str, excluded_type: str) -> int:
        return sum(
            parse_minutes(item.get("duration"))
            for item in self._load()
            if item.get("date") == day and item.get("type") != excluded_type
        )
