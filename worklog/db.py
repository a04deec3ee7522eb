from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any

from .errors import StorageUnavailable
from .models import Settings


SETTINGS_KEY = "settings"
RECORDS_KEY = "records"
CURRENT_TIMER_KEY = "currentTimer"


class Database:
    """SQLite-backed key/value store of whole JSON blobs.

    Every public method either completes or raises ``StorageUnavailable``;
    a failed write leaves the previous value in place.
    """

    def __init__(self, db_path: str | Path, logger: logging.Logger | None = None) -> None:
        self.logger = logger or logging.getLogger(__name__)
        try:
            self._conn = sqlite3.connect(str(db_path))
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"Cannot open store at {db_path}: {exc}") from exc
        self._conn.row_factory = sqlite3.Row
        self._closed = False

    def close(self) -> None:
        if self._closed:
            return
        self._conn.close()
        self._closed = True

    def initialize(self) -> None:
        try:
            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS store (
                  key TEXT PRIMARY KEY,
                  value TEXT NOT NULL
                );
                """
            )
            self._conn.commit()
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"Cannot initialize store: {exc}") from exc

        # Seed defaults on first run only; existing data is left untouched.
        if self.get(SETTINGS_KEY) is None:
            self.set(SETTINGS_KEY, Settings().to_dict())
        if self.get(RECORDS_KEY) is None:
            self.set(RECORDS_KEY, [])

    def get(self, key: str) -> Any | None:
        try:
            row = self._conn.execute("SELECT value FROM store WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"Cannot read {key!r}: {exc}") from exc
        if row is None:
            return None

        try:
            return json.loads(row["value"])
        except json.JSONDecodeError:
            self.logger.warning("Stored value for %s is not valid JSON, treating as absent", key)
            return None

    def set(self, key: str, value: Any) -> None:
        payload = json.dumps(value, ensure_ascii=False)
        try:
            self._conn.execute(
                """
                INSERT INTO store (key, value)
                VALUES (?, ?)
                ON CONFLICT(key)
                DO UPDATE SET value=excluded.value
                """,
                (key, payload),
            )
            self._conn.commit()
        except sqlite3.Error as exc:
            self._rollback()
            raise StorageUnavailable(f"Cannot write {key!r}: {exc}") from exc

    def remove(self, key: str) -> None:
        try:
            self._conn.execute("DELETE FROM store WHERE key = ?", (key,))
            self._conn.commit()
        except sqlite3.Error as exc:
            self._rollback()
            raise StorageUnavailable(f"Cannot remove {key!r}: {exc}") from exc

    def update_setting(self, path: str, value: Any) -> dict[str, Any]:
        """Deep-set a dotted path inside the settings blob and rewrite it whole."""
        parts = [part for part in path.split(".") if part]
        if not parts:
            raise ValueError("Setting path must not be empty")

        settings = self.get(SETTINGS_KEY)
        if not isinstance(settings, dict):
            settings = {}

        current = settings
        for part in parts[:-1]:
            child = current.get(part)
            if not isinstance(child, dict):
                child = {}
                current[part] = child
            current = child
        current[parts[-1]] = value

        self.set(SETTINGS_KEY, settings)
        return settings

    def _rollback(self) -> None:
        if self._closed:
            return
        try:
            self._conn.rollback()
        except sqlite3.Error:
            self.logger.debug("Rollback failed after store error", exc_info=True)
