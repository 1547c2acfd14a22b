import asyncio

import pytest

from aether.timers import TimerPurpose, TimerTable


@pytest.mark.asyncio
async def test_fires_once():
    timers = TimerTable()
    fired = []
    timers.arm(TimerPurpose.SILENCE, 0.01, lambda: fired.append("silence"))
    assert timers.is_armed(TimerPurpose.SILENCE)

    await asyncio.sleep(0.05)

    assert fired == ["silence"]
    assert not timers.is_armed(TimerPurpose.SILENCE)


@pytest.mark.asyncio
async def test_rearm_replaces_previous():
    timers = TimerTable()
    fired = []
    timers.arm(TimerPurpose.SILENCE, 0.01, lambda: fired.append("first"))
    timers.arm(TimerPurpose.SILENCE, 0.02, lambda: fired.append("second"))

    await asyncio.sleep(0.06)

    assert fired == ["second"]


@pytest.mark.asyncio
async def test_cancel_and_cancel_all():
    timers = TimerTable()
    fired = []
    timers.arm(TimerPurpose.INACTIVITY, 0.01, lambda: fired.append("inactivity"))
    timers.arm(TimerPurpose.ECHO_COOLOFF, 0.01, lambda: fired.append("echo"))
    timers.arm(TimerPurpose.SYNTHESIS_WATCHDOG, 0.01, lambda: fired.append("watchdog"))

    assert timers.cancel(TimerPurpose.INACTIVITY) is True
    assert timers.cancel(TimerPurpose.INACTIVITY) is False
    timers.cancel_all()
    await asyncio.sleep(0.05)

    assert fired == []
    assert timers.armed() == set()


@pytest.mark.asyncio
async def test_coroutine_callbacks_are_settled():
    timers = TimerTable()
    done = []

    async def work():
        await asyncio.sleep(0.01)
        done.append(True)

    timers.arm(TimerPurpose.SILENCE, 0, work)
    await asyncio.sleep(0.005)
    await timers.settle()

    assert done == [True]


@pytest.mark.asyncio
async def test_failing_coroutine_does_not_break_settle():
    timers = TimerTable()

    async def boom():
        raise RuntimeError("boom")

    timers.arm(TimerPurpose.SILENCE, 0, boom)
    await asyncio.sleep(0.005)
    await timers.settle()
