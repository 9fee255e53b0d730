import asyncio
from datetime import UTC, datetime, timedelta, timezone

from engine.clock import SessionTimer, as_utc, format_timestamp, parse_timestamp


def test_timestamps_round_trip_with_z_suffix():
    dt = datetime(2024, 3, 1, 9, 30, tzinfo=UTC)
    assert format_timestamp(dt) == "2024-03-01T09:30:00Z"
    assert parse_timestamp("2024-03-01T09:30:00Z") == dt
    assert parse_timestamp("2024-03-01T10:30:00+01:00") == dt


def test_as_utc_treats_naive_as_utc():
    assert as_utc(datetime(2024, 1, 1, 12)) == datetime(2024, 1, 1, 12, tzinfo=UTC)
    plus2 = datetime(2024, 1, 1, 14, tzinfo=timezone(timedelta(hours=2)))
    assert as_utc(plus2).hour == 12
    assert as_utc(None) is None


def test_tick_decrements_and_expires_once():
    expired = []
    ticks = []

    async def on_expire():
        expired.append(True)

    async def on_tick(n):
        ticks.append(n)

    async def scenario():
        timer = SessionTimer(2, on_expire, on_tick=on_tick)
        await timer.tick()
        await timer.tick()
        await timer.tick()
        return timer

    timer = asyncio.run(scenario())
    assert ticks == [1, 0]
    assert expired == [True]
    assert timer.remaining == 0 and timer.expired is True


def test_overlapping_ticks_complete_only_once():
    calls = []

    async def scenario():
        gate = asyncio.Event()

        async def on_expire():
            calls.append("expire")
            await gate.wait()

        timer = SessionTimer(1, on_expire)
        first = asyncio.create_task(timer.tick())
        await asyncio.sleep(0)
        await timer._expire()
        gate.set()
        await first

    asyncio.run(scenario())
    assert calls == ["expire"]


def test_run_counts_down_to_expiry():
    ticks = []
    done = []

    async def on_tick(n):
        ticks.append(n)

    async def on_expire():
        done.append(True)

    async def scenario():
        timer = SessionTimer(3, on_expire, on_tick=on_tick, interval=0)
        await timer.start()

    asyncio.run(scenario())
    assert ticks == [2, 1, 0]
    assert done == [True]


def test_zero_remaining_expires_immediately():
    done = []

    async def on_expire():
        done.append(True)

    asyncio.run(SessionTimer(0, on_expire).run())
    assert done == [True]


def test_stop_prevents_expiry():
    done = []

    async def on_expire():
        done.append(True)

    async def scenario():
        timer = SessionTimer(5, on_expire, interval=0)
        timer.stop()
        await timer.run()
        await timer.tick()
        return timer

    timer = asyncio.run(scenario())
    assert done == []
    assert timer.remaining == 5


def test_cancel_stops_running_task():
    async def on_expire():
        raise AssertionError("should not expire")

    async def scenario():
        timer = SessionTimer(100, on_expire, interval=0.01)
        timer.start()
        await asyncio.sleep(0.03)
        assert timer.running
        timer.cancel()
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        return timer

    timer = asyncio.run(scenario())
    assert not timer.running
    assert timer.remaining > 0
