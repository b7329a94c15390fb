"""Tests for rebuilding timers after a restart."""

import logging
from datetime import timedelta

import pytest

from conftest import ALICE, BOB, CHANNEL, T0, add_session
from turnkeeper.db.models import HiatusRecord, ReminderRecord, TimestampStatus

SECOND = timedelta(seconds=1)


def reminder(channel_id: int, due_at, tier: int = 0) -> ReminderRecord:
    return ReminderRecord(
        channel_id=channel_id,
        user_id=ALICE.user_id,
        character_name=ALICE.character_name,
        due_at=due_at,
        tier=tier,
    )


@pytest.mark.asyncio
async def test_reminder_due_in_past_is_orphaned(env, caplog):
    await add_session(env.repo)
    await env.repo.upsert_reminder(reminder(CHANNEL, T0 - SECOND))

    with caplog.at_level(logging.WARNING, logger="turnkeeper.engine.recovery"):
        report = await env.recovery.run()

    assert report.orphaned_reminders == 1
    assert report.restored_reminders == 0
    assert report.orphan_names == [f"reminder:{CHANNEL}"]
    assert not env.timer.exists(f"reminder:{CHANNEL}")
    assert await env.repo.get_reminder(CHANNEL) is None
    session = await env.repo.get_session(CHANNEL)
    assert session.status == TimestampStatus.OVERDUE
    assert f"marking channel {CHANNEL} overdue" in caplog.text


@pytest.mark.asyncio
async def test_reminder_due_in_future_is_restored_with_its_tier(env):
    await env.repo.upsert_reminder(reminder(CHANNEL, T0 + SECOND, tier=1))
    await env.repo.upsert_reminder(reminder(-200, T0 + SECOND, tier=0))

    report = await env.recovery.run()

    assert report.restored_reminders == 2
    assert report.orphaned_reminders == 0
    assert env.timer.next_invocation(f"reminder:{CHANNEL}") == T0 + SECOND

    final = env.scheduler.get_job(f"reminder:{CHANNEL}").args[2]
    first = env.scheduler.get_job("reminder:-200").args[2]
    assert final.func == env.escalation.fire_final_reminder
    assert first.func == env.escalation.fire_first_reminder
    assert final.args == (CHANNEL, ALICE.user_id)


@pytest.mark.asyncio
async def test_hiatus_recovery(env):
    await env.repo.upsert_hiatus(
        HiatusRecord(user_id=ALICE.user_id, reason="exams", expires_at=T0 - SECOND)
    )
    await env.repo.upsert_hiatus(
        HiatusRecord(user_id=BOB.user_id, reason="trip", expires_at=T0 + timedelta(days=1))
    )
    await env.repo.upsert_hiatus(HiatusRecord(user_id=3, reason="indefinite"))

    report = await env.recovery.run()

    assert report.orphaned_hiatuses == 1
    assert report.restored_hiatuses == 1
    assert not env.timer.exists(f"hiatus:{ALICE.user_id}")
    assert env.timer.next_invocation(f"hiatus:{BOB.user_id}") == T0 + timedelta(days=1)
    assert not env.timer.exists("hiatus:3")

    # Expired record is kept for manual cleanup
    assert await env.repo.get_hiatus(ALICE.user_id) is not None


@pytest.mark.asyncio
async def test_recovery_on_empty_store(env):
    report = await env.recovery.run()

    assert report.restored_reminders == report.orphaned_reminders == 0
    assert report.restored_hiatuses == report.orphaned_hiatuses == 0
    assert env.timer.names() == []
