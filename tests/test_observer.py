import asyncio
from datetime import datetime, timezone

import pytest

from worklog.authority import TimerAuthority
from worklog.db import CURRENT_TIMER_KEY, Database
from worklog.errors import InvalidState, StorageUnavailable, ValidationError
from worklog.ledger import RecordLedger
from worklog.messaging import AuthorityChannel, Broadcast, Message, MessageType
from worklog.models import TimerSnapshot
from worklog.observer import TimerObserver, duration_minutes
from worklog.settings import SettingsService

MINUTE = 60_000


def at(hour: int, minute: int) -> int:
    return int(datetime(2026, 2, 1, hour, minute, tzinfo=timezone.utc).timestamp() * 1000)


class FakeClock:
    def __init__(self, now_ms: int) -> None:
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms


class Harness:
    """One store, one authority serving a channel, and a factory for observers."""

    def __init__(self, clock: FakeClock, serve: bool = True) -> None:
        self.clock = clock
        self.db = Database(":memory:")
        self.db.initialize()
        self.ledger = RecordLedger(db=self.db, clock=clock)
        self.settings = SettingsService(db=self.db, broadcast=Broadcast())
        self.channel = AuthorityChannel()
        self.authority = TimerAuthority(db=self.db, clock=clock)
        self.serving = asyncio.create_task(self.authority.serve(self.channel)) if serve else None

    def observer(self, refresh_seconds: float = 1.0, on_refresh=None) -> TimerObserver:
        return TimerObserver(
            channel=self.channel,
            db=self.db,
            ledger=self.ledger,
            settings=self.settings,
            tz=timezone.utc,
            clock=self.clock,
            refresh_seconds=refresh_seconds,
            on_refresh=on_refresh,
        )

    async def close(self) -> None:
        self.channel.close()
        if self.serving is not None:
            await self.serving


def test_duration_minutes_rounds_half_up_and_never_negative() -> None:
    assert duration_minutes(29_999) == 0
    assert duration_minutes(30_000) == 1
    assert duration_minutes(121 * MINUTE) == 121
    assert duration_minutes(-5 * MINUTE) == 0


def test_start_pause_resume_stop_produces_one_record() -> None:
    async def scenario() -> None:
        clock = FakeClock(at(9, 52))
        harness = Harness(clock)
        observer = harness.observer()
        await observer.attach()

        await observer.start()
        assert observer.snapshot.is_running

        clock.now_ms = at(10, 10)
        paused = await observer.pause()
        assert paused.is_paused
        assert paused.elapsed_time == 18 * MINUTE

        await observer.resume()
        clock.now_ms = at(11, 53)
        record = await observer.stop()

        assert (record.start_time, record.end_time, record.duration) == ("09:52", "11:53", 121)
        assert record.date == "2026-02-01"
        assert record.type == "工作"
        assert record.content == "计时工作"
        assert harness.ledger.all() == [record]
        assert harness.db.get(CURRENT_TIMER_KEY) is None
        assert harness.authority.snapshot == TimerSnapshot.idle()

        observer.detach()
        await harness.close()

    asyncio.run(scenario())


def test_stop_duration_matches_wall_time() -> None:
    async def scenario() -> None:
        clock = FakeClock(at(8, 0))
        harness = Harness(clock)
        observer = harness.observer()
        await observer.attach()
        await observer.start()

        clock.now_ms = at(8, 0) + 44 * MINUTE + 31_000
        record = await observer.stop(content="review", work_type="学习")

        assert record.duration == 45
        assert record.content == "review"
        assert record.type == "学习"

        observer.detach()
        await harness.close()

    asyncio.run(scenario())


def test_stop_without_started_timer_is_invalid_state() -> None:
    async def scenario() -> None:
        harness = Harness(FakeClock(at(9, 0)))
        observer = harness.observer()
        await observer.attach()

        with pytest.raises(InvalidState):
            await observer.stop()
        with pytest.raises(InvalidState):
            await observer.resume()
        assert harness.ledger.all() == []

        observer.detach()
        await harness.close()

    asyncio.run(scenario())


def test_second_observer_sees_run_started_elsewhere() -> None:
    async def scenario() -> None:
        clock = FakeClock(at(9, 0))
        harness = Harness(clock)
        first = harness.observer()
        second = harness.observer()
        await first.attach()
        await second.attach()

        await first.start()
        clock.now_ms = at(9, 5)
        refreshed = await second.refresh()

        assert refreshed.is_running
        assert second.elapsed_ms() == 5 * MINUTE

        first.detach()
        second.detach()
        await harness.close()

    asyncio.run(scenario())


def test_attach_falls_back_to_persisted_snapshot_when_authority_is_gone() -> None:
    async def scenario() -> None:
        clock = FakeClock(at(9, 30))
        harness = Harness(clock, serve=False)
        harness.channel.close()
        harness.db.set(CURRENT_TIMER_KEY, {"isRunning": True, "startTime": at(9, 0), "elapsedTime": 0})
        observer = harness.observer()

        snapshot = await observer.attach()

        assert snapshot.is_running
        assert observer.elapsed_ms() == 30 * MINUTE
        observer.detach()

    asyncio.run(scenario())


def test_attach_times_out_on_silent_authority() -> None:
    async def scenario() -> None:
        clock = FakeClock(at(9, 30))
        harness = Harness(clock, serve=False)
        harness.db.set(CURRENT_TIMER_KEY, {"isRunning": False, "startTime": at(9, 0), "elapsedTime": 12 * MINUTE})
        observer = harness.observer(refresh_seconds=0.05)

        snapshot = await asyncio.wait_for(observer.attach(), timeout=2)

        assert snapshot.is_paused
        assert snapshot.elapsed_time == 12 * MINUTE
        observer.detach()

    asyncio.run(scenario())


def test_attach_treats_unavailable_storage_as_idle() -> None:
    async def scenario() -> None:
        harness = Harness(FakeClock(at(9, 0)), serve=False)
        harness.channel.close()
        harness.db.close()
        observer = harness.observer()

        snapshot = await observer.attach()

        assert snapshot == TimerSnapshot.idle()
        observer.detach()

    asyncio.run(scenario())


def test_start_while_unreachable_leaves_snapshot_the_authority_adopts() -> None:
    async def scenario() -> None:
        clock = FakeClock(at(9, 0))
        harness = Harness(clock, serve=False)
        harness.channel.close()
        observer = harness.observer()
        await observer.attach()

        await observer.start()
        observer.detach()
        assert harness.db.get(CURRENT_TIMER_KEY)["isRunning"] is True

        # A fresh authority picks the run up on first contact.
        clock.now_ms = at(9, 20)
        revived = TimerAuthority(db=harness.db, clock=clock)
        status = revived.status()
        assert status.is_running
        assert status.elapsed_time == 20 * MINUTE

    asyncio.run(scenario())


def test_settings_broadcast_refreshes_categories() -> None:
    async def scenario() -> None:
        harness = Harness(FakeClock(at(9, 0)))
        observer = harness.observer()
        await observer.attach()
        observer.select_type("运动")

        harness.settings.add_work_type("阅读")
        assert "阅读" in observer.work_types

        harness.settings.delete_work_type("运动")
        assert observer.selected_type == "工作"

        with pytest.raises(ValidationError):
            observer.select_type("运动")

        observer.detach()
        harness.settings.add_work_type("冥想")
        assert "冥想" not in observer.work_types

        await harness.close()

    asyncio.run(scenario())


def test_refresh_loop_reports_authority_time_while_running() -> None:
    async def scenario() -> None:
        clock = FakeClock(at(9, 0))
        harness = Harness(clock)
        seen = []
        observer = harness.observer(refresh_seconds=0.02, on_refresh=lambda snapshot, elapsed: seen.append(elapsed))
        await observer.attach()
        await observer.start()

        clock.now_ms = at(9, 3)
        await asyncio.sleep(0.1)
        assert seen[-1] == 3 * MINUTE

        await observer.pause()
        count = len(seen)
        await asyncio.sleep(0.1)
        assert len(seen) == count

        observer.detach()
        await harness.close()

    asyncio.run(scenario())


def test_start_sent_while_authority_was_down_keeps_elapsed_time() -> None:
    async def scenario() -> None:
        clock = FakeClock(at(9, 0))
        harness = Harness(clock, serve=False)
        observer = harness.observer(refresh_seconds=0.05)
        await observer.attach()
        await observer.start()
        observer.detach()

        # The authority comes up later and finds the timed-out requests still queued.
        clock.now_ms = at(9, 20)
        harness.serving = asyncio.create_task(harness.authority.serve(harness.channel))
        status = await harness.channel.request(Message(MessageType.GET_TIMER_STATUS), timeout=1)

        assert status["isRunning"] is True
        assert status["startTime"] == at(9, 0)
        assert status["elapsedTime"] == 20 * MINUTE

        await harness.close()

    asyncio.run(scenario())


def test_stop_is_retry_safe_when_timer_fails_to_clear(monkeypatch: pytest.MonkeyPatch) -> None:
    async def scenario() -> None:
        clock = FakeClock(at(9, 0))
        harness = Harness(clock)
        observer = harness.observer()
        await observer.attach()
        await observer.start()
        clock.now_ms = at(9, 10)

        def failing_clear():
            raise StorageUnavailable("disk is gone")

        monkeypatch.setattr(harness.authority, "clear", failing_clear)
        with pytest.raises(StorageUnavailable):
            await observer.stop()
        assert harness.ledger.all() == []
        assert harness.authority.snapshot.is_running

        monkeypatch.undo()
        record = await observer.stop()

        assert harness.ledger.all() == [record]
        assert record.duration == 10

        observer.detach()
        await harness.close()

    asyncio.run(scenario())
