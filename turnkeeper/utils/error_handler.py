"""Global error handler for the bot."""

import logging
import traceback

from telegram import Update
from telegram.ext import ContextTypes

from turnkeeper.errors import TurnkeeperError, ValidationError

logger = logging.getLogger(__name__)


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle errors in the bot."""
    error = context.error

    if isinstance(error, ValidationError):
        # Rejected requests are routine; no traceback needed
        logger.info(f"Rejected request: {error}")
    elif isinstance(error, TurnkeeperError):
        logger.error(f"{type(error).__name__} while handling an update: {error}")
    else:
        logger.error("Exception while handling an update:", exc_info=error)

        tb_list = traceback.format_exception(None, error, error.__traceback__)
        tb_string = "".join(tb_list)
        logger.error(f"Traceback:\n{tb_string}")

    # Try to notify the user
    if isinstance(update, Update) and update.effective_message:
        try:
            if isinstance(error, TurnkeeperError):
                error_message = f"❌ {error.user_message}"
            else:
                error_message = (
                    "😅 Oops! Something went wrong.\n\n"
                    "The error has been logged. Please try again or use /help for assistance."
                )

                if "Timeout" in str(error):
                    error_message = (
                        "⏱️ Request timed out.\n\n"
                        "Please try again in a moment."
                    )
                elif "Network" in str(error):
                    error_message = (
                        "🌐 Network error.\n\n"
                        "Please check your connection and try again."
                    )

            await update.effective_message.reply_text(error_message)

        except Exception as e:
            logger.error(f"Failed to send error message to user: {e}")
