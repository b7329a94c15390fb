"""Turn-order logic over a session's participant list.

Functions here are pure: they return a new Session and never touch the
database, timers or chat. ``turnkeeper.engine.sessions`` applies the results.
"""

from dataclasses import replace
from datetime import datetime

from turnkeeper.db.models import Participant, Session
from turnkeeper.errors import InconsistentStateError, ValidationError

MIN_PARTICIPANTS = 2


def current_index(session: Session) -> int:
    """Index of the participant holding the turn.

    Raises:
        InconsistentStateError: if the current turn is not in the turn order
    """
    for i, participant in enumerate(session.participants):
        if participant == session.current_turn:
            return i
    raise InconsistentStateError(
        f"Current turn {session.current_turn} not found in turn order of "
        f"channel {session.channel_id}"
    )


def advance_turn(session: Session, now: datetime) -> Session:
    """Move the turn to the next participant, wrapping to the first."""
    index = current_index(session)
    next_index = (index + 1) % len(session.participants)
    return replace(
        session,
        participants=list(session.participants),
        current_turn=session.participants[next_index],
        last_advance_at=now,
    )


def insert_participant(session: Session, participant: Participant, at_index: int) -> Session:
    """Insert a participant at a 0-based position (may equal the list length)."""
    if not 0 <= at_index <= len(session.participants):
        raise ValidationError(
            f"Position {at_index} is out of range (0-{len(session.participants)})."
        )
    if participant in session.participants:
        raise ValidationError(
            f"{participant.character_name} is already in this turn order."
        )

    participants = list(session.participants)
    participants.insert(at_index, participant)
    return replace(session, participants=participants)


def remove_participant(session: Session, at_index: int, now: datetime) -> Session:
    """Remove the participant at a position.

    If that participant holds the turn, the turn is advanced first so the
    session never points at someone outside the list. The removal then
    applies to the original index.
    """
    _check_index(session, at_index)
    if len(session.participants) <= MIN_PARTICIPANTS:
        raise ValidationError(
            f"A session needs at least {MIN_PARTICIPANTS} participants."
        )

    if session.participants[at_index] == session.current_turn:
        session = advance_turn(session, now)

    participants = list(session.participants)
    del participants[at_index]
    return replace(session, participants=participants)


def set_current_turn(session: Session, at_index: int) -> Session:
    """Point the turn directly at a position."""
    _check_index(session, at_index)
    return replace(
        session,
        participants=list(session.participants),
        current_turn=session.participants[at_index],
    )


def previous_index(session: Session, at_index: int) -> int:
    """Position before ``at_index``, wrapping to the last one."""
    _check_index(session, at_index)
    return (at_index - 1) % len(session.participants)


def validate_participants(participants: list[Participant]) -> None:
    if len(participants) < MIN_PARTICIPANTS:
        raise ValidationError(
            f"A session needs at least {MIN_PARTICIPANTS} participants."
        )
    if len(set(participants)) != len(participants):
        raise ValidationError("The same character appears twice in the turn order.")


def _check_index(session: Session, at_index: int) -> None:
    if not 0 <= at_index < len(session.participants):
        raise ValidationError(
            f"Position {at_index} is out of range (0-{len(session.participants) - 1})."
        )
