"""Inline keyboard builders."""

from telegram import InlineKeyboardButton, InlineKeyboardMarkup


def moderator_warning_keyboard(channel_id: int) -> InlineKeyboardMarkup:
    """Keyboard for moderator warnings: Skip, Finish."""
    return InlineKeyboardMarkup(
        [
            [
                InlineKeyboardButton("⏭ Skip turn", callback_data=f"skip:{channel_id}"),
                InlineKeyboardButton("🏁 Finish session", callback_data=f"finish:{channel_id}"),
            ]
        ]
    )
