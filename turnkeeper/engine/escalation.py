"""Tiered reply reminders for the participant holding the turn.

Per channel the machine moves through::

    (idle) --arm--> TIER0_SCHEDULED --fire--> TIER1_SCHEDULED --fire--> OVERDUE

Arming always replaces whatever was pending for the channel. The persisted
ReminderRecord is the source of truth; the timer only decides when a handler
runs, and handlers re-read the record before acting.
"""

import functools
import logging
from datetime import timedelta
from enum import Enum

from turnkeeper.db.config_store import (
    OFFSET_HIATUS,
    OFFSET_REMINDER_0,
    OFFSET_REMINDER_1,
    ConfigurationStore,
)
from turnkeeper.db.models import (
    HiatusStatus,
    ReminderRecord,
    TimestampStatus,
    reminder_timer_name,
)
from turnkeeper.db.repository import Repository
from turnkeeper.engine.clock import Clock
from turnkeeper.engine.interfaces import Notifier
from turnkeeper.engine.job_timer import JobTimer
from turnkeeper.engine.locks import KeyedLock, channel_key
from turnkeeper.engine.status import StatusBoard, hiatus_status_of

logger = logging.getLogger(__name__)

FIRST_TIER = 0
FINAL_TIER = 1


class EscalationState(str, Enum):
    IDLE = "idle"
    TIER0_SCHEDULED = "tier0_scheduled"
    TIER1_SCHEDULED = "tier1_scheduled"
    OVERDUE = "overdue"


class EscalationStateMachine:
    """Arms, fires and cancels the reminders of every channel."""

    def __init__(
        self,
        repo: Repository,
        timer: JobTimer,
        config: ConfigurationStore,
        notifier: Notifier,
        status: StatusBoard,
        clock: Clock,
        locks: KeyedLock,
    ):
        self.repo = repo
        self.timer = timer
        self.config = config
        self.notifier = notifier
        self.status = status
        self.clock = clock
        self.locks = locks

    async def first_offset(self) -> timedelta:
        """Delay before the first reminder of a freshly assigned turn."""
        return await self.config.get_offset(OFFSET_REMINDER_0)

    async def arm(
        self,
        channel_id: int,
        user_id: int,
        character_name: str,
        offset: timedelta | None = None,
    ) -> ReminderRecord:
        """Start escalation for a newly assigned turn, replacing any pending one.

        Pass ``offset`` when it was already resolved with :meth:`first_offset`.
        If the record cannot be written, the pending reminder is left as it was.
        """
        # Read config first so a missing offset rejects the call untouched
        if offset is None:
            offset = await self.first_offset()

        async with self.locks.hold(channel_key(channel_id)):
            record = ReminderRecord(
                channel_id=channel_id,
                user_id=user_id,
                character_name=character_name,
                due_at=self.clock.now() + offset,
                tier=FIRST_TIER,
            )
            # Upsert replaces the channel's row, schedule replaces its timer
            await self.repo.upsert_reminder(record)
            self.restore(record)

        logger.info(
            f"Armed reminder for {character_name} (user {user_id}) in channel "
            f"{channel_id}, due {record.due_at}"
        )
        return record

    async def cancel(self, channel_id: int) -> None:
        """Stop escalation for a channel (session finished or turn reassigned)."""
        async with self.locks.hold(channel_key(channel_id)):
            await self._clear(channel_id)
        logger.info(f"Cancelled reminders for channel {channel_id}")

    def restore(self, record: ReminderRecord) -> None:
        """Arm the timer for an existing record without writing to the store.

        The handler matches the record's tier, so a tier-1 record resumes at
        the final reminder instead of repeating the first one. It is also
        bound to the record's user, so a fire that outlives a re-arm cannot
        act on the next participant's reminder.
        """
        handler = self.fire_first_reminder if record.tier == FIRST_TIER else self.fire_final_reminder
        self.timer.schedule(
            record.timer_name,
            record.due_at,
            functools.partial(handler, record.channel_id, record.user_id),
        )

    async def state(self, channel_id: int) -> EscalationState:
        record = await self.repo.get_reminder(channel_id)
        if record is not None:
            if record.tier == FIRST_TIER:
                return EscalationState.TIER0_SCHEDULED
            return EscalationState.TIER1_SCHEDULED

        session = await self.repo.get_session(channel_id)
        if session and session.status in (
            TimestampStatus.SECOND_REMINDER_SENT,
            TimestampStatus.OVERDUE,
        ):
            return EscalationState.OVERDUE
        return EscalationState.IDLE

    # Timer handlers

    async def fire_first_reminder(self, channel_id: int, user_id: int) -> None:
        """Send the first reminder and schedule the final one."""
        async with self.locks.hold(channel_key(channel_id)):
            record = await self._pending(channel_id, user_id, FIRST_TIER)
            if record is None:
                logger.warning(f"Ignoring stale first reminder for channel {channel_id}")
                return

            logger.info(f"Sending reminder #0 for {record.timer_name}...")
            hiatus = await self.repo.get_hiatus(record.user_id)
            try:
                await self.notifier.send_reminder(
                    channel_id,
                    record.user_id,
                    record.character_name,
                    FIRST_TIER,
                    hiatus is not None,
                )
            except Exception as e:
                # Escalation continues; the record may now claim a reminder
                # that never reached the user.
                logger.error(f"Failed to send reminder #0 for {record.timer_name}: {e}")

            await self.status.record(channel_id, status=TimestampStatus.FIRST_REMINDER_SENT)

            due_at = self.clock.now() + await self.config.get_offset(OFFSET_REMINDER_1)
            if hiatus is not None:
                due_at += await self.config.get_offset(OFFSET_HIATUS)

            record.tier = FINAL_TIER
            record.due_at = due_at
            record.hiatus_extended = hiatus is not None
            await self.repo.upsert_reminder(record)
            self.restore(record)

        logger.info(f"Rescheduled {record.timer_name} for final reminder at {due_at}")

    async def fire_final_reminder(self, channel_id: int, user_id: int) -> None:
        """Send the final reminder, warn moderators and stop escalating."""
        async with self.locks.hold(channel_key(channel_id)):
            record = await self._pending(channel_id, user_id, FINAL_TIER)
            if record is None:
                logger.warning(f"Ignoring stale final reminder for channel {channel_id}")
                return

            logger.info(f"Sending reminder #1 for {record.timer_name}...")
            hiatus_status = hiatus_status_of(await self.repo.get_hiatus(record.user_id))
            try:
                await self.notifier.send_reminder(
                    channel_id,
                    record.user_id,
                    record.character_name,
                    FINAL_TIER,
                    hiatus_status != HiatusStatus.NO_HIATUS,
                )
            except Exception as e:
                logger.error(f"Failed to send reminder #1 for {record.timer_name}: {e}")

            await self.repo.delete_reminder(channel_id)
            await self.status.record(channel_id, status=TimestampStatus.SECOND_REMINDER_SENT)

            try:
                await self.notifier.send_moderator_warning(
                    channel_id, record.user_id, record.character_name, hiatus_status
                )
            except Exception as e:
                logger.error(f"Failed to send moderator warning for {record.timer_name}: {e}")

        logger.info(f"Finished reminder job {record.timer_name}")

    # Internals

    async def _pending(self, channel_id: int, user_id: int, tier: int) -> ReminderRecord | None:
        """The record a fire was armed for, or None if the fire is stale.

        Call with the channel lock held. A fire has already left the timer
        registry when it runs, so a live timer under the same name means the
        channel was re-armed while this fire waited for the lock.
        """
        record = await self.repo.get_reminder(channel_id)
        if record is None or record.user_id != user_id or record.tier != tier:
            return None
        if self.timer.exists(record.timer_name):
            return None
        return record

    async def _clear(self, channel_id: int) -> None:
        name = reminder_timer_name(channel_id)
        if self.timer.exists(name):
            self.timer.cancel(name)
        await self.repo.delete_reminder(channel_id)
