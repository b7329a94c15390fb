"""Data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class TimestampStatus(str, Enum):
    """Reply status of a session, surfaced to moderators."""

    JUST_STARTED = "just_started"
    IN_TIME = "in_time"
    FIRST_REMINDER_SENT = "first_reminder_sent"
    SECOND_REMINDER_SENT = "second_reminder_sent"
    OVERDUE = "overdue"
    MANUALLY_SET = "manually_set"


class HiatusStatus(str, Enum):
    """Absence state of a participant."""

    NO_HIATUS = "no_hiatus"
    ACTIVE = "active"
    ACTIVE_INDEFINITE = "active_indefinite"


class NextReason(str, Enum):
    """Why the turn moved to the next participant."""

    ADVANCED = "advanced"
    SKIPPED = "skipped"
    REMOVED = "removed"
    MANUALLY_SET = "manually_set"


@dataclass(frozen=True)
class Participant:
    """A character played by a chat user inside one session."""

    user_id: int
    character_name: str


@dataclass
class Session:
    """A turn-order session bound to one chat."""

    channel_id: int
    participants: list[Participant]
    current_turn: Participant
    last_advance_at: datetime | None = None  # UTC
    status: TimestampStatus = TimestampStatus.JUST_STARTED
    hiatus_status: HiatusStatus = HiatusStatus.NO_HIATUS
    created_at: datetime | None = None


@dataclass
class ReminderRecord:
    """Pending reminder for the participant holding the turn in a channel."""

    channel_id: int
    user_id: int
    character_name: str
    due_at: datetime  # UTC
    tier: int = 0  # 0 = first reminder, 1 = final reminder
    hiatus_extended: bool = False  # hiatus offset currently included in due_at

    @property
    def timer_name(self) -> str:
        return reminder_timer_name(self.channel_id)


@dataclass
class HiatusRecord:
    """Declared absence of a user."""

    user_id: int
    reason: str
    expires_at: datetime | None = None  # UTC, None = indefinite
    announcement_id: int | None = None
    created_at: datetime | None = None

    @property
    def timer_name(self) -> str:
        return hiatus_timer_name(self.user_id)


@dataclass
class HiatusSessionSummary:
    """One pending reply listed in the hiatus-ended summary."""

    channel_id: int
    character_name: str
    last_advance_at: datetime | None
    overdue: bool = False


@dataclass
class RecoveryReport:
    """Counts produced by a startup recovery run."""

    restored_reminders: int = 0
    orphaned_reminders: int = 0
    restored_hiatuses: int = 0
    orphaned_hiatuses: int = 0
    orphan_names: list[str] = field(default_factory=list)


def reminder_timer_name(channel_id: int) -> str:
    return f"reminder:{channel_id}"


def hiatus_timer_name(user_id: int) -> str:
    return f"hiatus:{user_id}"
