"""Capabilities the scheduling core consumes or exposes across layers."""

from typing import Protocol

from turnkeeper.db.models import (
    HiatusRecord,
    HiatusSessionSummary,
    HiatusStatus,
    NextReason,
    Participant,
    Session,
    TimestampStatus,
)


class Notifier(Protocol):
    """Outbound messages. Implemented by ``turnkeeper.bot.notifier``."""

    async def send_reminder(
        self,
        channel_id: int,
        user_id: int,
        character_name: str,
        tier: int,
        hiatus_active: bool,
    ) -> None: ...

    async def send_moderator_warning(
        self,
        channel_id: int,
        user_id: int,
        character_name: str,
        hiatus_status: HiatusStatus,
    ) -> None: ...

    async def send_hiatus_summary(
        self, user_id: int, sessions: list[HiatusSessionSummary]
    ) -> None: ...

    async def send_turn_notification(
        self,
        session: Session,
        previous: Participant | None,
        reason: NextReason,
        message: str | None = None,
    ) -> None: ...

    async def update_status(
        self,
        channel_id: int,
        status: TimestampStatus | None = None,
        hiatus_status: HiatusStatus | None = None,
    ) -> None: ...

    async def announce_hiatus(self, hiatus: HiatusRecord) -> int | None: ...

    async def edit_hiatus_announcement(self, hiatus: HiatusRecord) -> None: ...

    async def delete_hiatus_announcement(self, hiatus: HiatusRecord) -> None: ...


class TurnAdvancer(Protocol):
    async def advance(
        self,
        channel_id: int,
        reason: NextReason = NextReason.ADVANCED,
        message: str | None = None,
    ) -> Session: ...


class SessionFinisher(Protocol):
    async def finish(self, channel_id: int) -> None: ...
