from __future__ import annotations

import logging
import math
from collections.abc import Callable
from datetime import datetime
from zoneinfo import ZoneInfo

from discord.ext import tasks

from .authority import now_ms
from .config import DEFAULT_TIMER_CONTENT
from .db import CURRENT_TIMER_KEY, Database
from .errors import AuthorityUnreachable, InvalidState, StorageUnavailable, ValidationError, WorklogError
from .ledger import RecordLedger
from .messaging import AuthorityChannel, Message, MessageType
from .models import Settings, TimerSnapshot, WorkRecord
from .settings import SettingsService


def duration_minutes(elapsed_ms: int) -> int:
    """Whole minutes, halves rounded up, never negative."""
    return max(0, math.floor(elapsed_ms / 60000 + 0.5))


class TimerObserver:
    """UI-side view of the timer.

    Reads state from the authority and asks it for transitions; when the
    authority does not answer it falls back to (and corrects) the persisted
    snapshot instead of blocking.
    """

    def __init__(
        self,
        channel: AuthorityChannel,
        db: Database,
        ledger: RecordLedger,
        settings: SettingsService,
        tz: ZoneInfo,
        clock: Callable[[], int] = now_ms,
        refresh_seconds: float = 1.0,
        on_refresh: Callable[[TimerSnapshot, int], None] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.channel = channel
        self.db = db
        self.ledger = ledger
        self.settings = settings
        self.tz = tz
        self.clock = clock
        self.refresh_seconds = refresh_seconds
        self.on_refresh = on_refresh
        self.logger = logger or logging.getLogger(__name__)

        self.snapshot = TimerSnapshot.idle()
        self.work_types: tuple[str, ...] = Settings().work_types
        self._selected_type: str | None = None
        self._unsubscribe: Callable[[], None] | None = None
        self.refresh_loop.change_interval(seconds=refresh_seconds)

    @property
    def selected_type(self) -> str:
        if self._selected_type in self.work_types:
            return self._selected_type
        return self.work_types[0]

    def select_type(self, work_type: str) -> None:
        if work_type not in self.work_types:
            raise ValidationError(f"Unknown category: {work_type}")
        self._selected_type = work_type

    def elapsed_ms(self) -> int:
        return self.snapshot.elapsed_at(self.clock())

    async def attach(self) -> TimerSnapshot:
        if self._unsubscribe is None:
            self._unsubscribe = self.settings.broadcast.subscribe(self._on_message)
        self._load_work_types()

        reported: TimerSnapshot | None = None
        try:
            reported = await self._request_status()
        except AuthorityUnreachable:
            self.logger.warning("Authority unreachable on attach, falling back to persisted snapshot")
        except StorageUnavailable:
            self.logger.warning("Authority could not reach storage on attach", exc_info=True)

        if reported is not None and reported.is_running:
            self.snapshot = reported
        else:
            persisted = self._read_persisted()
            if persisted.is_running:
                # The authority lost a run that storage still remembers.
                self.snapshot = persisted
                await self._reannounce(persisted)
            else:
                self.snapshot = reported if reported is not None else persisted

        if self.snapshot.is_running:
            self._start_refresh()
        return self.snapshot

    def detach(self) -> None:
        self._stop_refresh()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def refresh(self) -> TimerSnapshot:
        try:
            self.snapshot = await self._request_status()
        except AuthorityUnreachable:
            self.logger.warning("Authority did not answer within %ss, using local timing", self.refresh_seconds)
        except StorageUnavailable:
            self.logger.warning("Authority could not reach storage, using local timing", exc_info=True)

        if self.on_refresh is not None:
            self.on_refresh(self.snapshot, self.elapsed_ms())
        return self.snapshot

    async def start(self) -> TimerSnapshot:
        if self.snapshot.is_running:
            self.logger.debug("Start ignored, timer already running")
            return self.snapshot

        seed = self.snapshot.elapsed_time if self.snapshot.is_paused else 0
        now = self.clock()
        await self._command(
            Message(MessageType.START_TIMER, {"startTime": now - seed, "elapsedTime": seed}),
            TimerSnapshot(is_running=True, start_time=now - seed, elapsed_time=seed),
        )
        if self.snapshot.is_running:
            self._start_refresh()
        return self.snapshot

    async def resume(self) -> TimerSnapshot:
        if self.snapshot.is_idle:
            raise InvalidState("Nothing to resume, no timer has been started")
        return await self.start()

    async def pause(self) -> TimerSnapshot:
        current = self.snapshot
        if not current.is_running or current.start_time is None:
            self.logger.debug("Pause ignored, timer not running")
            return current

        self._stop_refresh()
        await self._command(
            Message(MessageType.PAUSE_TIMER),
            TimerSnapshot(
                is_running=False,
                start_time=current.start_time,
                elapsed_time=current.elapsed_at(self.clock()),
            ),
        )
        return self.snapshot

    async def stop(self, content: str | None = None, work_type: str | None = None) -> WorkRecord:
        await self.refresh()
        current = self.snapshot
        if current.start_time is None:
            raise InvalidState("No timer has been started")
        if work_type is not None:
            self.select_type(work_type)

        now = self.clock()
        started = datetime.fromtimestamp(current.start_time / 1000, self.tz)
        ended = datetime.fromtimestamp(now / 1000, self.tz)

        # Commit the record before clearing so a storage failure loses nothing.
        record = self.ledger.add(
            {
                "date": started.date().isoformat(),
                "startTime": started.strftime("%H:%M"),
                "endTime": ended.strftime("%H:%M"),
                "duration": duration_minutes(current.elapsed_at(now)),
                "content": (content or "").strip() or DEFAULT_TIMER_CONTENT,
                "type": self.selected_type,
            }
        )

        self._stop_refresh()
        try:
            await self._clear_authority()
        except StorageUnavailable:
            # The run is still live, so a retried stop must not find this record.
            self._withdraw(record)
            raise

        self.snapshot = TimerSnapshot.idle()
        return record

    async def _clear_authority(self) -> None:
        try:
            await self.channel.request(Message(MessageType.CLEAR_TIMER), self.refresh_seconds)
        except AuthorityUnreachable:
            self.logger.warning("Authority unreachable on stop, leaving an idle snapshot for it to adopt")
            self.db.set(CURRENT_TIMER_KEY, TimerSnapshot.idle().to_dict())

    def _withdraw(self, record: WorkRecord) -> None:
        try:
            self.ledger.delete(record.id)
        except WorklogError:
            self.logger.exception("Could not withdraw record %s after the timer failed to clear", record.id)
        else:
            self.logger.warning("Timer did not clear, withdrew record %s", record.id)

    async def _command(self, message: Message, expected: TimerSnapshot) -> None:
        try:
            await self.channel.request(message, self.refresh_seconds)
        except AuthorityUnreachable:
            self.logger.warning("Authority unreachable for %s, writing corrective snapshot", message.type)
            self.db.set(CURRENT_TIMER_KEY, expected.to_dict())
            self.snapshot = expected
            return

        self.snapshot = expected
        await self.refresh()

    async def _request_status(self) -> TimerSnapshot:
        reply = await self.channel.request(Message(MessageType.GET_TIMER_STATUS), self.refresh_seconds)
        return TimerSnapshot.from_dict(reply)

    async def _reannounce(self, snapshot: TimerSnapshot) -> None:
        try:
            await self.channel.request(
                Message(
                    MessageType.START_TIMER,
                    {"startTime": snapshot.start_time, "elapsedTime": snapshot.elapsed_time},
                ),
                self.refresh_seconds,
            )
            self.logger.info("Re-announced persisted run from %s to the authority", snapshot.start_time)
        except (AuthorityUnreachable, StorageUnavailable):
            self.logger.warning("Could not re-announce persisted run, timing locally", exc_info=True)

    def _read_persisted(self) -> TimerSnapshot:
        try:
            stored = self.db.get(CURRENT_TIMER_KEY)
        except StorageUnavailable:
            self.logger.warning("Storage unavailable on attach, treating timer as idle", exc_info=True)
            return TimerSnapshot.idle()
        if not isinstance(stored, dict):
            return TimerSnapshot.idle()
        return TimerSnapshot.from_dict(stored)

    def _load_work_types(self) -> None:
        try:
            self.work_types = self.settings.load().work_types
        except StorageUnavailable:
            self.logger.warning("Settings unavailable, keeping cached categories", exc_info=True)

    def _on_message(self, message: Message) -> None:
        if message.type != MessageType.SETTINGS_UPDATED:
            return
        self.work_types = Settings.from_dict(message.data.get("settings")).work_types
        self.logger.debug("Categories refreshed: %s", ", ".join(self.work_types))

    @tasks.loop(seconds=1.0)
    async def refresh_loop(self) -> None:
        await self.refresh()
        if not self.snapshot.is_running:
            self.refresh_loop.stop()

    def _start_refresh(self) -> None:
        if not self.refresh_loop.is_running():
            self.refresh_loop.start()

    def _stop_refresh(self) -> None:
        self.refresh_loop.cancel()
