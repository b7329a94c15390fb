"""Command handlers."""

import logging
from html import escape

from telegram import Update
from telegram.ext import ContextTypes

from turnkeeper.bot.formatters import format_date, format_help_message, format_session
from turnkeeper.db.config_store import ConfigurationStore
from turnkeeper.db.models import NextReason, Participant
from turnkeeper.engine.clock import Clock
from turnkeeper.engine.hiatus import HiatusAdjuster
from turnkeeper.engine.sessions import SessionService
from turnkeeper.errors import ConfigurationError, ValidationError
from turnkeeper.utils.constants import MAX_CHARACTER_NAME_LENGTH, MAX_TURN_MESSAGE_LENGTH
from turnkeeper.utils.time_utils import parse_hiatus_until

logger = logging.getLogger(__name__)


def parse_participant(token: str) -> Participant:
    """Parse ``<user_id>:<character name>``."""
    user_part, sep, name = token.partition(":")
    if not sep or not name.strip():
        raise ValidationError(f"Participant must look like <user_id>:<name>, got '{token}'.")
    try:
        user_id = int(user_part)
    except ValueError:
        raise ValidationError(f"'{user_part}' is not a valid user ID.")
    name = name.strip()
    if len(name) > MAX_CHARACTER_NAME_LENGTH:
        raise ValidationError(
            f"Character names can be at most {MAX_CHARACTER_NAME_LENGTH} characters."
        )
    return Participant(user_id=user_id, character_name=name)


def parse_index(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise ValidationError(f"'{value}' is not a valid position.")


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help command."""
    if not update.message:
        return

    await update.message.reply_html(format_help_message())


# Sessions


async def session_start_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /session_start <uid>:<name> <uid>:<name> ..."""
    if not update.effective_chat or not update.message:
        return

    if not context.args or len(context.args) < 2:
        await update.message.reply_text(
            "Usage: /session_start <user_id>:<name> <user_id>:<name> ..."
        )
        return

    participants = [parse_participant(token) for token in context.args]
    sessions: SessionService = context.bot_data["sessions"]
    session = await sessions.start_session(update.effective_chat.id, participants)

    await update.message.reply_html(format_session(session))


async def next_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /next [message] - only the participant holding the turn may pass it on."""
    if not update.effective_chat or not update.effective_user or not update.message:
        return

    sessions: SessionService = context.bot_data["sessions"]
    session = await sessions.get_session(update.effective_chat.id)

    if session.current_turn.user_id != update.effective_user.id:
        await update.message.reply_text("❌ It's not your turn.")
        return

    message = " ".join(context.args) if context.args else None
    if message and len(message) > MAX_TURN_MESSAGE_LENGTH:
        await update.message.reply_text(
            f"Your message is too long (max {MAX_TURN_MESSAGE_LENGTH} characters)."
        )
        return

    await sessions.advance(update.effective_chat.id, NextReason.ADVANCED, message)


async def skip_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /skip - pass the turn on without waiting for a reply."""
    if not update.effective_chat or not update.message:
        return

    sessions: SessionService = context.bot_data["sessions"]
    skipped = (await sessions.get_session(update.effective_chat.id)).current_turn
    await sessions.advance(update.effective_chat.id, NextReason.SKIPPED)

    logger.info(f"Skipped {skipped.character_name} in chat {update.effective_chat.id}")


async def finish_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /finish command."""
    if not update.effective_chat or not update.message:
        return

    sessions: SessionService = context.bot_data["sessions"]
    await sessions.finish(update.effective_chat.id)

    await update.message.reply_html("🏁 <b>Turn order finished.</b>")


async def status_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /status command."""
    if not update.effective_chat or not update.message:
        return

    sessions: SessionService = context.bot_data["sessions"]
    clock: Clock = context.bot_data["clock"]
    session = await sessions.get_session(update.effective_chat.id)

    await update.message.reply_html(format_session(session, clock.now()))


async def turn_add_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /turn_add <index> <uid>:<name>"""
    if not update.effective_chat or not update.message:
        return

    if not context.args or len(context.args) != 2:
        await update.message.reply_text("Usage: /turn_add <index> <user_id>:<name>")
        return

    at_index = parse_index(context.args[0])
    participant = parse_participant(context.args[1])

    sessions: SessionService = context.bot_data["sessions"]
    session = await sessions.add_participant(update.effective_chat.id, participant, at_index)

    await update.message.reply_html(format_session(session))


async def turn_remove_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /turn_remove <index>"""
    if not update.effective_chat or not update.message:
        return

    if not context.args or len(context.args) != 1:
        await update.message.reply_text("Usage: /turn_remove <index>")
        return

    sessions: SessionService = context.bot_data["sessions"]
    session = await sessions.remove_participant(
        update.effective_chat.id, parse_index(context.args[0])
    )

    await update.message.reply_html(format_session(session))


async def turn_set_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /turn_set <index> [silent]"""
    if not update.effective_chat or not update.message:
        return

    if not context.args or len(context.args) not in (1, 2):
        await update.message.reply_text("Usage: /turn_set <index> [silent]")
        return

    notify = True
    if len(context.args) == 2:
        if context.args[1].lower() != "silent":
            await update.message.reply_text("Usage: /turn_set <index> [silent]")
            return
        notify = False

    sessions: SessionService = context.bot_data["sessions"]
    session = await sessions.set_turn(
        update.effective_chat.id, parse_index(context.args[0]), notify=notify
    )

    if not notify:
        await update.message.reply_html(format_session(session))


# Hiatus


async def hiatus_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /hiatus <reason> [| until]"""
    if not update.effective_user or not update.message:
        return

    if not context.args:
        await update.message.reply_text("Usage: /hiatus <reason> [| until]")
        return

    hiatus: HiatusAdjuster = context.bot_data["hiatus"]
    clock: Clock = context.bot_data["clock"]

    reason, sep, until = " ".join(context.args).partition("|")
    expires_at = parse_hiatus_until(until, clock.now()) if sep else None

    record = await hiatus.start(update.effective_user.id, reason.strip(), expires_at)

    until_text = format_date(record.expires_at) if record.expires_at else "further notice"
    await update.message.reply_html(f"⏳ <b>Hiatus started</b> until {until_text}.")


async def hiatus_edit_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /hiatus_edit <until>"""
    if not update.effective_user or not update.message:
        return

    if not context.args:
        await update.message.reply_text("Usage: /hiatus_edit <until>")
        return

    hiatus: HiatusAdjuster = context.bot_data["hiatus"]
    clock: Clock = context.bot_data["clock"]

    expires_at = parse_hiatus_until(" ".join(context.args), clock.now())
    record = await hiatus.edit(update.effective_user.id, expires_at)

    await update.message.reply_html(
        f"⏳ <b>Hiatus updated</b>, now until {format_date(record.expires_at)}."
    )


async def hiatus_end_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /hiatus_end command."""
    if not update.effective_user or not update.message:
        return

    hiatus: HiatusAdjuster = context.bot_data["hiatus"]
    await hiatus.end(update.effective_user.id)

    await update.message.reply_text("👋 Ending your hiatus. A summary of your turns follows.")


# Settings


async def config_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /config <key> [value]"""
    if not update.message:
        return

    if not context.args or len(context.args) > 2:
        await update.message.reply_text("Usage: /config <key> [value]")
        return

    config: ConfigurationStore = context.bot_data["config"]
    key = context.args[0]

    if len(context.args) == 1:
        try:
            value = await config.get_string(key)
        except ConfigurationError:
            await update.message.reply_html(f"<code>{escape(key)}</code> is not set.")
            return
        await update.message.reply_html(
            f"<code>{escape(key)}</code> = <code>{escape(value)}</code>"
        )
        return

    value = context.args[1]
    await config.set_value(key, value)
    await update.message.reply_html(
        f"✓ <code>{escape(key)}</code> set to <code>{escape(value)}</code>"
    )
