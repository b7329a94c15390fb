"""Callback query handlers for inline buttons."""

import logging
from html import escape

from telegram import Update
from telegram.ext import ContextTypes

from turnkeeper.db.models import NextReason
from turnkeeper.engine.interfaces import SessionFinisher, TurnAdvancer
from turnkeeper.errors import TurnkeeperError

logger = logging.getLogger(__name__)


async def handle_skip_callback(
    update: Update, context: ContextTypes.DEFAULT_TYPE, channel_id: int
) -> None:
    """Handle 'Skip turn' button press on a moderator warning."""
    query = update.callback_query
    if not query:
        return

    advancer: TurnAdvancer = context.bot_data["advancer"]
    try:
        session = await advancer.advance(channel_id, NextReason.SKIPPED)
    except TurnkeeperError as e:
        logger.warning(f"Skip from moderator warning failed for channel {channel_id}: {e}")
        await query.answer(e.user_message, show_alert=True)
        return

    if query.message:
        await query.message.edit_text(
            f"⏭ <b>Skipped.</b> It's now {escape(session.current_turn.character_name)}'s turn "
            f"in <code>{channel_id}</code>.",
            parse_mode="HTML",
        )
    await query.answer("Turn skipped")


async def handle_finish_callback(
    update: Update, context: ContextTypes.DEFAULT_TYPE, channel_id: int
) -> None:
    """Handle 'Finish session' button press on a moderator warning."""
    query = update.callback_query
    if not query:
        return

    finisher: SessionFinisher = context.bot_data["finisher"]
    try:
        await finisher.finish(channel_id)
    except TurnkeeperError as e:
        logger.warning(f"Finish from moderator warning failed for channel {channel_id}: {e}")
        await query.answer(e.user_message, show_alert=True)
        return

    if query.message:
        await query.message.edit_text(
            f"🏁 <b>Session in <code>{channel_id}</code> finished.</b>",
            parse_mode="HTML",
        )
    await query.answer("Session finished")


async def callback_router(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Route callback queries to appropriate handlers."""
    if not update.callback_query:
        return

    query = update.callback_query
    data = query.data

    if not data:
        return

    # Parse callback data
    action, _, argument = data.partition(":")

    try:
        channel_id = int(argument)
    except ValueError:
        await query.answer("Unknown action")
        return

    if action == "skip":
        await handle_skip_callback(update, context, channel_id)

    elif action == "finish":
        await handle_finish_callback(update, context, channel_id)

    else:
        await query.answer("Unknown action")
