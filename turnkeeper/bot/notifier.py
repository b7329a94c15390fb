"""Telegram implementation of the outbound message capability."""

import logging

from telegram import Bot
from telegram.constants import ParseMode

from turnkeeper.bot.formatters import (
    format_hiatus_announcement,
    format_hiatus_summary,
    format_moderator_warning,
    format_reminder,
    format_status_update,
    format_turn_notification,
)
from turnkeeper.bot.keyboards import moderator_warning_keyboard
from turnkeeper.db.config_store import (
    HIATUS_CHAT_KEY,
    MODERATOR_CHAT_KEY,
    NOTIFICATION_CHAT_KEY,
    ConfigurationStore,
)
from turnkeeper.db.models import (
    HiatusRecord,
    HiatusSessionSummary,
    HiatusStatus,
    NextReason,
    Participant,
    Session,
    TimestampStatus,
)

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """Sends reminders, warnings and announcements through the bot.

    Destination chats are read from the configuration store on every send,
    so a moderator can move them with /config without a restart. Errors are
    raised to the caller, which logs them.
    """

    def __init__(self, bot: Bot, config: ConfigurationStore):
        self.bot = bot
        self.config = config

    async def _chat(self, key: str) -> int:
        return int(await self.config.get_number(key))

    async def send_reminder(
        self,
        channel_id: int,
        user_id: int,
        character_name: str,
        tier: int,
        hiatus_active: bool,
    ) -> None:
        await self.bot.send_message(
            chat_id=await self._chat(NOTIFICATION_CHAT_KEY),
            text=format_reminder(user_id, character_name, tier, hiatus_active),
            parse_mode=ParseMode.HTML,
        )
        logger.debug(f"Sent reminder #{tier} to user {user_id} for channel {channel_id}")

    async def send_moderator_warning(
        self,
        channel_id: int,
        user_id: int,
        character_name: str,
        hiatus_status: HiatusStatus,
    ) -> None:
        await self.bot.send_message(
            chat_id=await self._chat(MODERATOR_CHAT_KEY),
            text=format_moderator_warning(channel_id, user_id, character_name, hiatus_status),
            parse_mode=ParseMode.HTML,
            reply_markup=moderator_warning_keyboard(channel_id),
        )

    async def send_hiatus_summary(
        self, user_id: int, sessions: list[HiatusSessionSummary]
    ) -> None:
        await self.bot.send_message(
            chat_id=await self._chat(NOTIFICATION_CHAT_KEY),
            text=format_hiatus_summary(user_id, sessions),
            parse_mode=ParseMode.HTML,
        )

    async def send_turn_notification(
        self,
        session: Session,
        previous: Participant | None,
        reason: NextReason,
        message: str | None = None,
    ) -> None:
        await self.bot.send_message(
            chat_id=session.channel_id,
            text=format_turn_notification(session, previous, reason, message),
            parse_mode=ParseMode.HTML,
        )

    async def update_status(
        self,
        channel_id: int,
        status: TimestampStatus | None = None,
        hiatus_status: HiatusStatus | None = None,
    ) -> None:
        if status is None and hiatus_status is None:
            return
        await self.bot.send_message(
            chat_id=await self._chat(MODERATOR_CHAT_KEY),
            text=format_status_update(channel_id, status, hiatus_status),
            parse_mode=ParseMode.HTML,
            disable_notification=True,
        )

    async def announce_hiatus(self, hiatus: HiatusRecord) -> int | None:
        message = await self.bot.send_message(
            chat_id=await self._chat(HIATUS_CHAT_KEY),
            text=format_hiatus_announcement(hiatus),
            parse_mode=ParseMode.HTML,
        )
        return message.message_id

    async def edit_hiatus_announcement(self, hiatus: HiatusRecord) -> None:
        if hiatus.announcement_id is None:
            return
        await self.bot.edit_message_text(
            chat_id=await self._chat(HIATUS_CHAT_KEY),
            message_id=hiatus.announcement_id,
            text=format_hiatus_announcement(hiatus),
            parse_mode=ParseMode.HTML,
        )

    async def delete_hiatus_announcement(self, hiatus: HiatusRecord) -> None:
        if hiatus.announcement_id is None:
            return
        await self.bot.delete_message(
            chat_id=await self._chat(HIATUS_CHAT_KEY),
            message_id=hiatus.announcement_id,
        )
