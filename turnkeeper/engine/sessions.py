"""Session lifecycle: starting, advancing, editing and finishing turn orders."""

import logging

from turnkeeper.db.models import (
    NextReason,
    Participant,
    Session,
    TimestampStatus,
)
from turnkeeper.db.repository import Repository
from turnkeeper.engine import turn_order
from turnkeeper.engine.clock import Clock
from turnkeeper.engine.escalation import EscalationStateMachine
from turnkeeper.engine.interfaces import Notifier
from turnkeeper.engine.locks import KeyedLock, session_key
from turnkeeper.engine.status import StatusBoard, hiatus_status_of
from turnkeeper.errors import PersistenceError, ValidationError

logger = logging.getLogger(__name__)


class SessionService:
    """Applies turn-order changes and keeps escalation in step with them.

    Serves as both the ``TurnAdvancer`` and the ``SessionFinisher`` of the
    bot layer.
    """

    def __init__(
        self,
        repo: Repository,
        escalation: EscalationStateMachine,
        notifier: Notifier,
        status: StatusBoard,
        clock: Clock,
        locks: KeyedLock,
    ):
        self.repo = repo
        self.escalation = escalation
        self.notifier = notifier
        self.status = status
        self.clock = clock
        self.locks = locks

    async def get_session(self, channel_id: int) -> Session:
        session = await self.repo.get_session(channel_id)
        if session is None:
            raise ValidationError(
                f"No session in channel {channel_id}",
                "There is no turn order running in this chat.",
            )
        return session

    async def start_session(self, channel_id: int, participants: list[Participant]) -> Session:
        """Start a turn order; the first participant gets the turn."""
        turn_order.validate_participants(participants)

        async with self.locks.hold(session_key(channel_id)):
            if await self.repo.get_session(channel_id) is not None:
                raise ValidationError(
                    f"Session already running in channel {channel_id}",
                    "A turn order is already running in this chat. /finish it first.",
                )

            session = Session(
                channel_id=channel_id,
                participants=list(participants),
                current_turn=participants[0],
                last_advance_at=self.clock.now(),
                status=TimestampStatus.JUST_STARTED,
            )
            await self._hand_over(None, session, None, NextReason.ADVANCED)

        logger.info(
            f"Started session in channel {channel_id} with {len(participants)} participants"
        )
        return session

    async def advance(
        self,
        channel_id: int,
        reason: NextReason = NextReason.ADVANCED,
        message: str | None = None,
    ) -> Session:
        """Give the turn to the next participant and restart escalation."""
        async with self.locks.hold(session_key(channel_id)):
            stored = await self.get_session(channel_id)
            return await self._advance_locked(stored, stored, reason, message)

    async def finish(self, channel_id: int) -> None:
        """End a session and drop its pending reminders."""
        async with self.locks.hold(session_key(channel_id)):
            await self.get_session(channel_id)
            await self.escalation.cancel(channel_id)
            await self.repo.delete_session(channel_id)
        logger.info(f"Finished session in channel {channel_id}")

    async def add_participant(
        self, channel_id: int, participant: Participant, at_index: int
    ) -> Session:
        async with self.locks.hold(session_key(channel_id)):
            session = await self.get_session(channel_id)
            session = turn_order.insert_participant(session, participant, at_index)
            await self.repo.upsert_session(session)

        logger.info(
            f"Added {participant.character_name} at position {at_index} in channel {channel_id}"
        )
        return session

    async def remove_participant(self, channel_id: int, at_index: int) -> Session:
        """Remove a participant, passing the turn on first if they hold it."""
        async with self.locks.hold(session_key(channel_id)):
            stored = await self.get_session(channel_id)
            # Validates index and minimum size before anything is written
            session = turn_order.remove_participant(stored, at_index, self.clock.now())
            removed = stored.participants[at_index]

            if removed == stored.current_turn:
                session.status = TimestampStatus.IN_TIME
                await self._hand_over(stored, session, removed, NextReason.REMOVED)
            else:
                await self.repo.upsert_session(session)

        logger.info(f"Removed {removed.character_name} from channel {channel_id}")
        return session

    async def set_turn(self, channel_id: int, at_index: int, notify: bool = True) -> Session:
        """Point the turn at a position.

        With ``notify`` the turn goes through the normal advance path (the
        participant is told and reminders restart). Without it, the turn is
        moved quietly and reminders stop until the next advance.
        """
        async with self.locks.hold(session_key(channel_id)):
            stored = await self.get_session(channel_id)

            if notify:
                previous = turn_order.previous_index(stored, at_index)
                session = turn_order.set_current_turn(stored, previous)
                return await self._advance_locked(stored, session, NextReason.MANUALLY_SET, None)

            session = turn_order.set_current_turn(stored, at_index)
            session.status = TimestampStatus.MANUALLY_SET
            session.hiatus_status = hiatus_status_of(
                await self.repo.get_hiatus(session.current_turn.user_id)
            )
            await self.repo.upsert_session(session)
            await self.escalation.cancel(channel_id)
            await self.status.record(channel_id, status=TimestampStatus.MANUALLY_SET)

        logger.info(
            f"Silently set turn in channel {channel_id} to {session.current_turn.character_name}"
        )
        return session

    # Internals

    async def _advance_locked(
        self, stored: Session, session: Session, reason: NextReason, message: str | None
    ) -> Session:
        """Advance ``session`` by one position; ``stored`` is what the database holds."""
        previous = session.current_turn
        session = turn_order.advance_turn(session, self.clock.now())
        session.status = TimestampStatus.IN_TIME
        await self._hand_over(stored, session, previous, reason, message)

        logger.info(
            f"Turn in channel {session.channel_id} passed from {previous.character_name} "
            f"to {session.current_turn.character_name} ({reason.value})"
        )
        return session

    async def _hand_over(
        self,
        stored: Session | None,
        session: Session,
        previous: Participant | None,
        reason: NextReason,
        message: str | None = None,
    ) -> None:
        """Persist a new turn holder, arm their reminders and tell them.

        Everything that can reject the change is read before the first
        write. If arming still fails, ``stored`` is written back (or the new
        session deleted when there was none) and the error propagates.
        """
        current = session.current_turn
        offset = await self.escalation.first_offset()
        session.hiatus_status = hiatus_status_of(await self.repo.get_hiatus(current.user_id))

        await self.repo.upsert_session(session)
        try:
            await self.escalation.arm(
                session.channel_id, current.user_id, current.character_name, offset
            )
        except Exception:
            await self._roll_back(session.channel_id, stored)
            raise

        await self._notify(session, previous, reason, message)

    async def _roll_back(self, channel_id: int, stored: Session | None) -> None:
        try:
            if stored is None:
                await self.repo.delete_session(channel_id)
            else:
                await self.repo.upsert_session(stored)
        except PersistenceError as e:
            logger.error(f"Failed to roll back session in channel {channel_id}: {e}")
        else:
            logger.warning(f"Rolled back turn change in channel {channel_id}")

    async def _notify(
        self,
        session: Session,
        previous: Participant | None,
        reason: NextReason,
        message: str | None = None,
    ) -> None:
        try:
            await self.notifier.send_turn_notification(session, previous, reason, message)
        except Exception as e:
            logger.error(f"Failed to notify next participant in channel {session.channel_id}: {e}")
        try:
            await self.notifier.update_status(
                session.channel_id, session.status, session.hiatus_status
            )
        except Exception as e:
            logger.error(f"Failed to surface status for channel {session.channel_id}: {e}")
