"""Tests for reminder escalation."""

import asyncio
from datetime import timedelta

import pytest

from conftest import ALICE, BOB, CHANNEL, T0, add_session, fire_timer
from turnkeeper.db.models import HiatusRecord, HiatusStatus, ReminderRecord, TimestampStatus
from turnkeeper.engine.escalation import EscalationState
from turnkeeper.errors import ConfigurationError, PersistenceError

NAME = f"reminder:{CHANNEL}"


async def arm_alice(env):
    return await env.escalation.arm(CHANNEL, ALICE.user_id, ALICE.character_name)


@pytest.mark.asyncio
async def test_arm_schedules_first_tier(env):
    record = await arm_alice(env)

    assert record.tier == 0
    assert record.due_at == T0 + timedelta(hours=2)
    assert env.timer.next_invocation(NAME) == T0 + timedelta(hours=2)

    stored = await env.repo.get_reminder(CHANNEL)
    assert stored == record
    assert await env.escalation.state(CHANNEL) == EscalationState.TIER0_SCHEDULED


@pytest.mark.asyncio
async def test_arm_twice_replaces(env):
    await arm_alice(env)
    env.clock.advance(minutes=30)
    await arm_alice(env)

    assert len(await env.repo.get_reminders()) == 1
    assert env.timer.names() == [NAME]
    assert env.timer.next_invocation(NAME) == T0 + timedelta(hours=2, minutes=30)


@pytest.mark.asyncio
async def test_arm_without_offset_changes_nothing(env):
    await env.repo.db.execute(
        "DELETE FROM configuration WHERE key = 'schedule_reminder_0_hours'"
    )
    await env.repo.db.commit()

    with pytest.raises(ConfigurationError):
        await arm_alice(env)

    assert await env.repo.get_reminder(CHANNEL) is None
    assert not env.timer.exists(NAME)


@pytest.mark.asyncio
async def test_first_fire_escalates_to_final_tier(env):
    await add_session(env.repo)
    await arm_alice(env)

    fire_time = env.clock.advance(hours=2)
    await fire_timer(env.scheduler, NAME)

    assert env.notifier.of("send_reminder") == [
        (CHANNEL, ALICE.user_id, ALICE.character_name, 0, False)
    ]

    record = await env.repo.get_reminder(CHANNEL)
    assert record.tier == 1
    assert record.due_at == fire_time + timedelta(hours=4)
    assert record.hiatus_extended is False
    assert env.timer.next_invocation(NAME) == fire_time + timedelta(hours=4)

    session = await env.repo.get_session(CHANNEL)
    assert session.status == TimestampStatus.FIRST_REMINDER_SENT
    assert await env.escalation.state(CHANNEL) == EscalationState.TIER1_SCHEDULED


@pytest.mark.asyncio
async def test_first_fire_adds_hiatus_offset(env):
    await arm_alice(env)
    await env.repo.upsert_hiatus(HiatusRecord(user_id=ALICE.user_id, reason="exams"))

    fire_time = env.clock.advance(hours=2)
    await fire_timer(env.scheduler, NAME)

    record = await env.repo.get_reminder(CHANNEL)
    assert record.due_at == fire_time + timedelta(hours=4 + 3)
    assert record.hiatus_extended is True
    assert env.notifier.of("send_reminder")[0][-1] is True


@pytest.mark.asyncio
async def test_final_fire_warns_moderators_and_stops(env):
    await add_session(env.repo)
    await arm_alice(env)
    env.clock.advance(hours=2)
    await fire_timer(env.scheduler, NAME)
    env.clock.advance(hours=4)
    await fire_timer(env.scheduler, NAME)

    tiers = [call[3] for call in env.notifier.of("send_reminder")]
    assert tiers == [0, 1]
    assert env.notifier.of("send_moderator_warning") == [
        (CHANNEL, ALICE.user_id, ALICE.character_name, HiatusStatus.NO_HIATUS)
    ]

    assert await env.repo.get_reminder(CHANNEL) is None
    assert not env.timer.exists(NAME)
    session = await env.repo.get_session(CHANNEL)
    assert session.status == TimestampStatus.SECOND_REMINDER_SENT
    assert await env.escalation.state(CHANNEL) == EscalationState.OVERDUE


@pytest.mark.asyncio
async def test_moderator_warning_carries_hiatus_status(env):
    await arm_alice(env)
    env.clock.advance(hours=2)
    await fire_timer(env.scheduler, NAME)
    await env.repo.upsert_hiatus(
        HiatusRecord(user_id=ALICE.user_id, reason="trip", expires_at=T0 + timedelta(days=9))
    )
    await fire_timer(env.scheduler, NAME)

    warning = env.notifier.of("send_moderator_warning")[0]
    assert warning[3] == HiatusStatus.ACTIVE


@pytest.mark.asyncio
async def test_send_failure_still_escalates(env):
    await arm_alice(env)
    env.notifier.failing.add("send_reminder")

    await fire_timer(env.scheduler, NAME)

    record = await env.repo.get_reminder(CHANNEL)
    assert record.tier == 1
    assert env.timer.exists(NAME)


@pytest.mark.asyncio
async def test_stale_fire_after_cancel_is_ignored(env):
    await arm_alice(env)
    await env.escalation.cancel(CHANNEL)

    await env.escalation.fire_first_reminder(CHANNEL, ALICE.user_id)
    await env.escalation.fire_final_reminder(CHANNEL, ALICE.user_id)

    assert env.notifier.of("send_reminder") == []
    assert await env.repo.get_reminder(CHANNEL) is None
    assert not env.timer.exists(NAME)
    assert await env.escalation.state(CHANNEL) == EscalationState.IDLE


@pytest.mark.asyncio
async def test_restore_uses_handler_for_tier(env):
    record = ReminderRecord(
        channel_id=CHANNEL,
        user_id=ALICE.user_id,
        character_name=ALICE.character_name,
        due_at=T0 + timedelta(hours=1),
        tier=1,
    )
    await env.repo.upsert_reminder(record)

    env.escalation.restore(record)
    callback = env.scheduler.get_job(NAME).args[2]
    assert callback.func == env.escalation.fire_final_reminder

    await fire_timer(env.scheduler, NAME)
    tiers = [call[3] for call in env.notifier.of("send_reminder")]
    assert tiers == [1]


def dispatch(env):
    """Hand the pending reminder to the executor: it leaves the scheduler
    and its callback has not run yet."""
    callback = env.scheduler.get_job(NAME).args[2]
    env.scheduler.remove_job(NAME)
    return callback


@pytest.mark.asyncio
async def test_dispatched_fire_ignores_next_participant(env):
    await arm_alice(env)
    env.clock.advance(hours=2)
    callback = dispatch(env)

    # The turn moves on before Alice's callback gets the channel lock
    await env.escalation.arm(CHANNEL, BOB.user_id, BOB.character_name)
    await callback()

    assert env.notifier.of("send_reminder") == []
    record = await env.repo.get_reminder(CHANNEL)
    assert record.user_id == BOB.user_id
    assert record.tier == 0
    assert env.timer.next_invocation(NAME) == env.clock.now() + timedelta(hours=2)


@pytest.mark.asyncio
async def test_dispatched_fire_ignores_rearm_of_same_user(env):
    await arm_alice(env)
    env.clock.advance(hours=2)
    callback = dispatch(env)

    await arm_alice(env)
    await callback()

    assert env.notifier.of("send_reminder") == []
    record = await env.repo.get_reminder(CHANNEL)
    assert record.tier == 0
    assert record.due_at == env.clock.now() + timedelta(hours=2)


@pytest.mark.asyncio
async def test_dispatched_fire_racing_arm_never_reminds_new_holder(env):
    await arm_alice(env)
    env.clock.advance(hours=2)
    callback = dispatch(env)

    await asyncio.gather(
        env.escalation.arm(CHANNEL, BOB.user_id, BOB.character_name),
        callback(),
    )

    reminded = [call[1] for call in env.notifier.of("send_reminder")]
    assert BOB.user_id not in reminded
    record = await env.repo.get_reminder(CHANNEL)
    assert record.user_id == BOB.user_id
    assert record.tier == 0
    assert env.timer.names() == [NAME]


@pytest.mark.asyncio
async def test_arm_write_failure_keeps_pending_reminder(env, monkeypatch):
    await arm_alice(env)
    before = env.timer.next_invocation(NAME)

    async def broken_upsert(record):
        raise PersistenceError("disk I/O error")

    monkeypatch.setattr(env.repo, "upsert_reminder", broken_upsert)
    with pytest.raises(PersistenceError):
        await env.escalation.arm(CHANNEL, BOB.user_id, BOB.character_name)

    record = await env.repo.get_reminder(CHANNEL)
    assert record.user_id == ALICE.user_id
    assert env.timer.next_invocation(NAME) == before
