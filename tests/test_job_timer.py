"""Tests for the named one-shot timer."""

import asyncio
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from conftest import T0, fire_timer
from turnkeeper.engine.job_timer import JobTimer
from turnkeeper.errors import SchedulingError


async def noop() -> None:
    pass


@pytest.mark.asyncio
async def test_schedule_and_inspect(timer):
    timer.schedule("reminder:1", T0, noop)

    assert timer.exists("reminder:1")
    assert timer.next_invocation("reminder:1") == T0
    assert timer.next_invocation("reminder:2") is None


@pytest.mark.asyncio
async def test_schedule_replaces_same_name(timer):
    timer.schedule("reminder:1", T0, noop)
    timer.schedule("reminder:1", T0 + timedelta(hours=1), noop)

    assert timer.names() == ["reminder:1"]
    assert timer.next_invocation("reminder:1") == T0 + timedelta(hours=1)


@pytest.mark.asyncio
async def test_schedule_rejects_naive_datetime(timer):
    with pytest.raises(SchedulingError):
        timer.schedule("reminder:1", datetime(2030, 1, 1, 12, 0), noop)
    assert not timer.exists("reminder:1")


@pytest.mark.asyncio
async def test_cancel(timer):
    assert timer.cancel("reminder:1") is False

    timer.schedule("reminder:1", T0, noop)
    assert timer.cancel("reminder:1") is True
    assert not timer.exists("reminder:1")


@pytest.mark.asyncio
async def test_reschedule(timer):
    assert timer.reschedule("hiatus:1", T0) is False
    assert not timer.exists("hiatus:1")

    timer.schedule("hiatus:1", T0, noop)
    assert timer.reschedule("hiatus:1", T0 + timedelta(days=1)) is True
    assert timer.next_invocation("hiatus:1") == T0 + timedelta(days=1)


@pytest.mark.asyncio
async def test_fire_runs_callback_once(timer, scheduler):
    calls = []

    async def callback():
        calls.append(timer.exists("reminder:1"))

    timer.schedule("reminder:1", T0, callback)
    await fire_timer(scheduler, "reminder:1")

    # Callback saw no live timer under its own name
    assert calls == [False]
    assert not timer.exists("reminder:1")


@pytest.mark.asyncio
async def test_cancelled_fire_is_ignored(timer, scheduler):
    """A fire already handed off when the timer was cancelled does nothing."""
    calls = []

    async def callback():
        calls.append(1)

    timer.schedule("reminder:1", T0, callback)
    job = scheduler.get_job("reminder:1")
    timer.cancel("reminder:1")

    await job.func(*job.args)
    assert calls == []


@pytest.mark.asyncio
async def test_replaced_fire_is_ignored(timer, scheduler):
    calls = []

    async def first():
        calls.append("first")

    async def second():
        calls.append("second")

    timer.schedule("reminder:1", T0, first)
    stale_job = scheduler.get_job("reminder:1")
    timer.schedule("reminder:1", T0, second)

    await stale_job.func(*stale_job.args)
    await fire_timer(scheduler, "reminder:1")
    assert calls == ["second"]


@pytest.mark.asyncio
async def test_failing_callback_is_contained(timer, scheduler):
    async def callback():
        raise RuntimeError("boom")

    timer.schedule("reminder:1", T0, callback)
    await fire_timer(scheduler, "reminder:1")

    assert not timer.exists("reminder:1")


@pytest.mark.asyncio
async def test_running_scheduler_fires_due_timer():
    timer = JobTimer()
    timer.start()
    fired = asyncio.Event()

    async def callback():
        fired.set()

    try:
        timer.schedule(
            "reminder:1",
            datetime.now(ZoneInfo("UTC")) + timedelta(milliseconds=50),
            callback,
        )
        await asyncio.wait_for(fired.wait(), timeout=5)
    finally:
        timer.shutdown()

    assert not timer.exists("reminder:1")
