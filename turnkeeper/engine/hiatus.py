"""Hiatus handling: extending and reconciling reply deadlines around absences."""

import functools
import logging
from datetime import datetime, timedelta

from turnkeeper.db.config_store import OFFSET_HIATUS, ConfigurationStore
from turnkeeper.db.models import (
    HiatusRecord,
    HiatusSessionSummary,
    HiatusStatus,
    Session,
    TimestampStatus,
    hiatus_timer_name,
    reminder_timer_name,
)
from turnkeeper.db.repository import Repository
from turnkeeper.engine.clock import Clock
from turnkeeper.engine.escalation import FIRST_TIER, EscalationStateMachine
from turnkeeper.engine.interfaces import Notifier
from turnkeeper.engine.job_timer import JobTimer
from turnkeeper.engine.locks import KeyedLock, channel_key, user_key
from turnkeeper.engine.status import StatusBoard, hiatus_status_of
from turnkeeper.errors import ValidationError
from turnkeeper.utils.constants import HIATUS_END_DELAY, MAX_HIATUS_REASON_LENGTH

logger = logging.getLogger(__name__)


class HiatusAdjuster:
    """Starts, edits and ends hiatuses and keeps reminder deadlines in step.

    Starting a hiatus pushes every pending reminder of the user back by the
    hiatus offset. Ending one (explicitly or because it expired) always goes
    through the ``hiatus:<user_id>`` timer and :meth:`finish`, which takes the
    extension off final reminders again and flags replies that turn out to
    be overdue.
    """

    def __init__(
        self,
        repo: Repository,
        timer: JobTimer,
        config: ConfigurationStore,
        notifier: Notifier,
        escalation: EscalationStateMachine,
        status: StatusBoard,
        clock: Clock,
        locks: KeyedLock,
    ):
        self.repo = repo
        self.timer = timer
        self.config = config
        self.notifier = notifier
        self.escalation = escalation
        self.status = status
        self.clock = clock
        self.locks = locks

    async def start(
        self, user_id: int, reason: str, expires_at: datetime | None = None
    ) -> HiatusRecord:
        """Start a hiatus and extend the user's pending reminders.

        Raises:
            ValidationError: if a hiatus is already active, the reason is
                empty or too long, or the end date is not in the future
        """
        self._validate_reason(reason)
        if expires_at is not None:
            self._validate_expiry(expires_at)
        offset = await self.config.get_offset(OFFSET_HIATUS)

        async with self.locks.hold(user_key(user_id)):
            if await self.repo.get_hiatus(user_id) is not None:
                raise ValidationError(
                    f"User {user_id} tried to start a hiatus while one is active",
                    "You already have an active hiatus. Edit or end it instead.",
                )

            hiatus = HiatusRecord(user_id=user_id, reason=reason, expires_at=expires_at)
            # Stored before any extension: a first reminder firing meanwhile
            # must already see the hiatus and add the offset itself.
            await self.repo.upsert_hiatus(hiatus)

            sessions = await self.repo.get_sessions_by_current_user(user_id)
            logger.debug(f"Adjusting {len(sessions)} reminders to accommodate hiatus...")
            for session in sessions:
                await self._extend_reminder(session.channel_id, offset)

            try:
                hiatus.announcement_id = await self.notifier.announce_hiatus(hiatus)
            except Exception as e:
                logger.error(f"Failed to announce hiatus for user {user_id}: {e}")
            else:
                await self.repo.upsert_hiatus(hiatus)

            await self._mark_sessions(sessions, hiatus_status_of(hiatus))

            if expires_at is not None:
                self._schedule_finish(user_id, expires_at)

        logger.info(
            f"Started hiatus for user {user_id} "
            f"({'until ' + str(expires_at) if expires_at else 'indefinite'})"
        )
        return hiatus

    async def edit(
        self, user_id: int, new_expires_at: datetime, reason: str | None = None
    ) -> HiatusRecord:
        """Change when a hiatus ends (and optionally its reason)."""
        self._validate_expiry(new_expires_at)
        if reason is not None:
            self._validate_reason(reason)

        async with self.locks.hold(user_key(user_id)):
            hiatus = await self._require_hiatus(user_id)
            hiatus.expires_at = new_expires_at
            if reason is not None:
                hiatus.reason = reason
            await self.repo.upsert_hiatus(hiatus)

            name = hiatus.timer_name
            if self.timer.exists(name):
                self.timer.reschedule(name, new_expires_at)
            else:
                self._schedule_finish(user_id, new_expires_at)

            sessions = await self.repo.get_sessions_by_current_user(user_id)
            await self._mark_sessions(sessions, hiatus_status_of(hiatus))

            try:
                await self.notifier.edit_hiatus_announcement(hiatus)
            except Exception as e:
                logger.error(f"Failed to edit hiatus announcement for user {user_id}: {e}")

        logger.info(f"Edited hiatus for user {user_id}, now until {new_expires_at}")
        return hiatus

    async def end(self, user_id: int) -> None:
        """End a hiatus now.

        The hiatus timer is pulled forward (or created) to fire immediately,
        so manual and natural endings share :meth:`finish`.
        """
        async with self.locks.hold(user_key(user_id)):
            hiatus = await self._require_hiatus(user_id)
            fire_at = self.clock.now() + HIATUS_END_DELAY

            if self.timer.exists(hiatus.timer_name):
                self.timer.reschedule(hiatus.timer_name, fire_at)
            else:
                self._schedule_finish(user_id, fire_at)

        logger.info(f"Ending hiatus for user {user_id} at {fire_at}")

    def restore(self, hiatus: HiatusRecord) -> None:
        """Arm the end timer of a stored hiatus without writing to the store."""
        if hiatus.expires_at is None:
            return
        self._schedule_finish(hiatus.user_id, hiatus.expires_at)

    async def hiatus_status(self, user_id: int) -> HiatusStatus:
        return hiatus_status_of(await self.repo.get_hiatus(user_id))

    async def finish(self, user_id: int) -> list[HiatusSessionSummary]:
        """Reconcile the user's pending replies and delete the hiatus."""
        async with self.locks.hold(user_key(user_id)):
            hiatus = await self.repo.get_hiatus(user_id)
            if hiatus is None:
                logger.warning(f"No hiatus to finish for user {user_id}")
                return []

            logger.info(f"Finishing hiatus for user {user_id}...")
            offset = await self.config.get_offset(OFFSET_HIATUS)
            sessions = await self.repo.get_sessions_by_current_user(user_id)

            summaries = []
            for session in sessions:
                overdue = await self._reconcile(session, offset)
                summaries.append(
                    HiatusSessionSummary(
                        channel_id=session.channel_id,
                        character_name=session.current_turn.character_name,
                        last_advance_at=session.last_advance_at,
                        overdue=overdue,
                    )
                )

            await self.repo.delete_hiatus(user_id)
            if self.timer.exists(hiatus.timer_name):
                self.timer.cancel(hiatus.timer_name)

            try:
                await self.notifier.delete_hiatus_announcement(hiatus)
            except Exception as e:
                logger.error(f"Failed to delete hiatus announcement for user {user_id}: {e}")

            try:
                await self.notifier.send_hiatus_summary(user_id, summaries)
            except Exception as e:
                logger.error(f"Failed to send hiatus summary for user {user_id}: {e}")

        logger.info(
            f"Finished hiatus for user {user_id} "
            f"({len(summaries)} pending, {sum(s.overdue for s in summaries)} overdue)"
        )
        return summaries

    # Internals

    async def _extend_reminder(self, channel_id: int, offset: timedelta) -> None:
        async with self.locks.hold(channel_key(channel_id)):
            name = reminder_timer_name(channel_id)
            record = await self.repo.get_reminder(channel_id)
            if record is not None and record.tier != FIRST_TIER and record.hiatus_extended:
                # The first reminder fired after the hiatus was stored
                logger.debug(f"{name} already carries the hiatus offset")
                return

            next_invocation = self.timer.next_invocation(name)
            if next_invocation is None:
                logger.warning(f"No pending reminder {name} to extend for hiatus")
                return

            new_due_at = next_invocation + offset
            self.timer.reschedule(name, new_due_at)

            if record is not None:
                record.due_at = new_due_at
                record.hiatus_extended = True
                await self.repo.upsert_reminder(record)

            logger.debug(f"Moved {name} from {next_invocation} to {new_due_at}")

    async def _reconcile(self, session: Session, offset: timedelta) -> bool:
        """Undo the hiatus extension of one session. Returns True if now overdue."""
        channel_id = session.channel_id
        async with self.locks.hold(channel_key(channel_id)):
            record = await self.repo.get_reminder(channel_id)

            # No reminder: the turn moved on. Tier 0: the first deadline keeps
            # its extension. Not extended: nothing to take back.
            if record is None or record.tier == FIRST_TIER or not record.hiatus_extended:
                await self.status.record(channel_id, hiatus_status=HiatusStatus.NO_HIATUS)
                return False

            name = record.timer_name
            next_invocation = self.timer.next_invocation(name) or record.due_at
            natural_due_at = next_invocation - offset

            if natural_due_at < self.clock.now():
                logger.debug(f"{name} is overdue (natural due {natural_due_at})")
                if self.timer.exists(name):
                    self.timer.cancel(name)
                await self.repo.delete_reminder(channel_id)
                await self.status.record(
                    channel_id,
                    status=TimestampStatus.OVERDUE,
                    hiatus_status=HiatusStatus.NO_HIATUS,
                )
                return True

            record.due_at = natural_due_at
            record.hiatus_extended = False
            await self.repo.upsert_reminder(record)
            if not self.timer.reschedule(name, natural_due_at):
                self.escalation.restore(record)
            await self.status.record(channel_id, hiatus_status=HiatusStatus.NO_HIATUS)

            logger.debug(f"Moved {name} back to {natural_due_at}")
            return False

    async def _mark_sessions(self, sessions: list[Session], hiatus_status: HiatusStatus) -> None:
        for session in sessions:
            await self.status.record(session.channel_id, hiatus_status=hiatus_status)

    async def _require_hiatus(self, user_id: int) -> HiatusRecord:
        hiatus = await self.repo.get_hiatus(user_id)
        if hiatus is None:
            raise ValidationError(
                f"User {user_id} has no active hiatus",
                "You don't have an active hiatus.",
            )
        return hiatus

    def _schedule_finish(self, user_id: int, fire_at: datetime) -> None:
        self.timer.schedule(
            hiatus_timer_name(user_id),
            fire_at,
            functools.partial(self.finish, user_id),
        )

    def _validate_reason(self, reason: str) -> None:
        if not reason or not reason.strip():
            raise ValidationError("Hiatus reason is empty", "Please give a reason for your hiatus.")
        if len(reason) > MAX_HIATUS_REASON_LENGTH:
            raise ValidationError(
                f"Hiatus reason longer than {MAX_HIATUS_REASON_LENGTH} characters",
                f"Your reason is too long (max {MAX_HIATUS_REASON_LENGTH} characters).",
            )

    def _validate_expiry(self, expires_at: datetime) -> None:
        if expires_at.tzinfo is None:
            raise ValidationError(f"Hiatus end date {expires_at} has no timezone")
        if expires_at <= self.clock.now():
            raise ValidationError(
                f"Hiatus end date {expires_at} is in the past",
                "The end date of your hiatus must be in the future.",
            )
