import asyncio

import pytest

from tether.scheduling import PeriodicTask


def test_periodic_task_runs_repeatedly() -> None:
    calls: list[int] = []

    async def tick() -> None:
        calls.append(1)

    async def runner() -> None:
        task = PeriodicTask(tick, 0.02, name="test")
        task.start()
        assert task.running is True
        await asyncio.sleep(0.15)
        await task.aclose()
        assert task.running is False

    asyncio.run(runner())

    assert len(calls) >= 3


def test_periodic_task_never_overlaps_ticks() -> None:
    active = 0
    max_active = 0

    async def tick() -> None:
        nonlocal active, max_active
        active += 1
        max_active = max(max_active, active)
        await asyncio.sleep(0.08)
        active -= 1

    async def runner() -> None:
        task = PeriodicTask(tick, 0.02, name="slow")
        task.start()
        await asyncio.sleep(0.3)
        await task.aclose()

    asyncio.run(runner())

    assert max_active == 1


def test_trigger_during_busy_tick_runs_once_more() -> None:
    runs: list[str] = []
    release = None

    async def tick() -> None:
        runs.append("tick")
        if len(runs) == 1:
            await release.wait()

    async def runner() -> None:
        nonlocal release
        release = asyncio.Event()
        task = PeriodicTask(tick, 60.0, name="trigger")
        task.start()
        task.trigger()
        await asyncio.sleep(0)
        assert task.busy is True
        task.trigger()
        task.trigger()
        release.set()
        await asyncio.sleep(0.05)
        await task.aclose()

    asyncio.run(runner())

    assert runs == ["tick", "tick"]


def test_trigger_before_start_is_ignored() -> None:
    runs: list[str] = []

    async def tick() -> None:
        runs.append("tick")

    async def runner() -> None:
        task = PeriodicTask(tick, 60.0)
        task.trigger()
        await asyncio.sleep(0.01)

    asyncio.run(runner())

    assert runs == []


def test_failing_tick_does_not_stop_timer() -> None:
    calls: list[int] = []

    async def tick() -> None:
        calls.append(1)
        raise RuntimeError("tick failure")

    async def runner() -> None:
        task = PeriodicTask(tick, 0.02, name="failing")
        task.start()
        await asyncio.sleep(0.15)
        await task.aclose()

    asyncio.run(runner())

    assert len(calls) >= 2


def test_stop_cancels_tick_in_flight() -> None:
    finished: list[bool] = []

    async def tick() -> None:
        await asyncio.sleep(0.2)
        finished.append(True)

    async def runner() -> None:
        task = PeriodicTask(tick, 60.0, name="cancel")
        task.start()
        task.trigger()
        await asyncio.sleep(0.01)
        task.stop()
        await asyncio.sleep(0.3)
        assert task.busy is False

    asyncio.run(runner())

    assert finished == []


@pytest.mark.parametrize("interval", [0, -1.0])
def test_interval_must_be_positive(interval: float) -> None:
    async def tick() -> None:
        return None

    with pytest.raises(ValueError):
        PeriodicTask(tick, interval)
