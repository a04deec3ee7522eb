from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

from discord.ext import tasks

from .db import CURRENT_TIMER_KEY, Database
from .errors import StorageUnavailable
from .messaging import AuthorityChannel, Message, MessageType
from .models import TimerSnapshot


def now_ms() -> int:
    return int(time.time() * 1000)


class TimerAuthority:
    """Owner of the one live timer.

    Holds the snapshot in memory and persists every change. While serving, a
    tick loop refreshes the persisted elapsed time of a running timer.
    Observers talk to it only through an ``AuthorityChannel``.
    """

    def __init__(
        self,
        db: Database,
        clock: Callable[[], int] = now_ms,
        tick_seconds: float = 1.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self.db = db
        self.clock = clock
        self.tick_seconds = tick_seconds
        self.logger = logger or logging.getLogger(__name__)

        self._snapshot = TimerSnapshot.idle()
        self.tick_loop.change_interval(seconds=tick_seconds)

    @property
    def snapshot(self) -> TimerSnapshot:
        return self._snapshot

    @property
    def ticking(self) -> bool:
        return self.tick_loop.is_running()

    async def serve(self, channel: AuthorityChannel) -> None:
        """Answer requests one at a time until the channel closes."""
        self.logger.info("Timer authority serving")
        try:
            self.status()
        except StorageUnavailable:
            self.logger.exception("Could not rehydrate the timer snapshot at startup")

        self.tick_loop.start()
        try:
            while True:
                item = await channel.receive()
                if item is None:
                    break
                message, reply = item
                if reply.done():
                    # The requester gave up waiting and has already applied its fallback.
                    self.logger.debug("Dropping stale %s request", message.type)
                    continue
                try:
                    result = self.handle(message)
                except Exception as exc:
                    self.logger.warning("Request %s failed: %s", message.type, exc)
                    if not reply.done():
                        reply.set_exception(exc)
                    continue
                if not reply.done():
                    reply.set_result(result)
        finally:
            await self._stop_ticking()
            self.logger.info("Timer authority stopped")

    def handle(self, message: Message) -> dict[str, Any]:
        if message.type == MessageType.START_TIMER:
            self.start(
                start_time=message.data.get("startTime"),
                elapsed_seed=message.data.get("elapsedTime") or 0,
            )
            return {"status": "started"}
        if message.type == MessageType.PAUSE_TIMER:
            self.pause()
            return {"status": "paused"}
        if message.type == MessageType.CLEAR_TIMER:
            self.clear()
            return {"status": "cleared"}
        if message.type == MessageType.GET_TIMER_STATUS:
            return self.status().to_dict()

        self.logger.debug("Ignoring unknown message type %s", message.type)
        return {"status": "unknown command"}

    def start(self, start_time: int | None = None, elapsed_seed: int = 0) -> TimerSnapshot:
        # An explicit start instant wins over the elapsed seed.
        started = int(start_time) if start_time else self.clock() - int(elapsed_seed)
        snapshot = TimerSnapshot(
            is_running=True,
            start_time=started,
            elapsed_time=max(0, self.clock() - started),
        )
        self._persist(snapshot)

        self._snapshot = snapshot
        self.logger.info("Timer started: start=%s elapsed=%sms", started, snapshot.elapsed_time)
        return snapshot

    def resume(self) -> TimerSnapshot:
        return self.start(elapsed_seed=self._snapshot.elapsed_time)

    def pause(self) -> TimerSnapshot:
        current = self._snapshot
        if not current.is_running or current.start_time is None:
            self.logger.debug("Ignoring pause while not running")
            return current

        snapshot = TimerSnapshot(
            is_running=False,
            start_time=current.start_time,
            elapsed_time=max(0, self.clock() - current.start_time),
        )
        self._persist(snapshot)

        self._snapshot = snapshot
        self.logger.info("Timer paused: elapsed=%sms", snapshot.elapsed_time)
        return snapshot

    def clear(self) -> TimerSnapshot:
        self.db.remove(CURRENT_TIMER_KEY)

        self._snapshot = TimerSnapshot.idle()
        self.logger.info("Timer cleared")
        return self._snapshot

    def status(self) -> TimerSnapshot:
        try:
            stored = self.db.get(CURRENT_TIMER_KEY)
        except StorageUnavailable:
            self.logger.warning("Snapshot unreadable, answering from memory", exc_info=True)
            return self._snapshot

        if not isinstance(stored, dict):
            return self._snapshot

        persisted = TimerSnapshot.from_dict(stored)
        if persisted.is_idle:
            # Corrective idle snapshot left by an observer that could not reach us.
            return self.clear()

        adopted = persisted.start_time != self._snapshot.start_time or persisted.is_running != self._snapshot.is_running
        if adopted and persisted.is_running:
            # Restarted, or an observer started a run while we were away: pick it up.
            self.logger.info("Resuming persisted run from %s", persisted.start_time)
            return self.start(start_time=persisted.start_time)
        if adopted:
            self.logger.info("Adopting persisted snapshot: running=%s start=%s", persisted.is_running, persisted.start_time)
        self._snapshot = persisted
        return self._snapshot

    def shutdown(self) -> None:
        """Drop the tick without touching persisted state."""
        self.tick_loop.cancel()

    @tasks.loop(seconds=1.0)
    async def tick_loop(self) -> None:
        self._tick()

    def _tick(self) -> None:
        current = self._snapshot
        if not current.is_running or current.start_time is None:
            return

        snapshot = TimerSnapshot(
            is_running=True,
            start_time=current.start_time,
            elapsed_time=max(0, self.clock() - current.start_time),
        )
        self._snapshot = snapshot
        try:
            self._persist(snapshot)
        except StorageUnavailable:
            self.logger.exception("Tick could not persist the timer snapshot")

    def _persist(self, snapshot: TimerSnapshot) -> None:
        self.db.set(CURRENT_TIMER_KEY, snapshot.to_dict())

    async def _stop_ticking(self) -> None:
        task = self.tick_loop.get_task()
        self.tick_loop.cancel()
        if task is not None and not task.done():
            await asyncio.wait({task})
