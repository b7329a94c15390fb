"""Main entry point for the Turnkeeper bot."""

import logging
import sys

from telegram.ext import Application, CallbackQueryHandler, CommandHandler

from turnkeeper.bot.callbacks import callback_router
from turnkeeper.bot.handlers import (
    config_command,
    finish_command,
    help_command,
    hiatus_command,
    hiatus_edit_command,
    hiatus_end_command,
    next_command,
    session_start_command,
    skip_command,
    status_command,
    turn_add_command,
    turn_remove_command,
    turn_set_command,
)
from turnkeeper.bot.notifier import TelegramNotifier
from turnkeeper.config import Config
from turnkeeper.db.config_store import ConfigurationStore
from turnkeeper.db.migrations import run_migrations
from turnkeeper.db.repository import Repository
from turnkeeper.engine.clock import SystemClock
from turnkeeper.engine.escalation import EscalationStateMachine
from turnkeeper.engine.hiatus import HiatusAdjuster
from turnkeeper.engine.job_timer import JobTimer
from turnkeeper.engine.locks import KeyedLock
from turnkeeper.engine.recovery import RecoveryLoader
from turnkeeper.engine.sessions import SessionService
from turnkeeper.engine.status import StatusBoard
from turnkeeper.utils.error_handler import error_handler

# Configure logging
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, Config.LOG_LEVEL),
    stream=sys.stdout,
)

logger = logging.getLogger(__name__)


async def post_init(application: Application) -> None:
    """Initialize bot resources after application is created."""
    # Initialize database
    await run_migrations(Config.DATABASE_PATH)

    # Create repository and store in bot_data
    repo = Repository(Config.DATABASE_PATH)
    await repo.connect()
    application.bot_data["repo"] = repo

    config = ConfigurationStore(repo)
    notifier = TelegramNotifier(application.bot, config)
    clock = SystemClock()
    locks = KeyedLock()

    timer = JobTimer()
    timer.start()
    application.bot_data["timer"] = timer

    status = StatusBoard(repo, notifier)
    escalation = EscalationStateMachine(repo, timer, config, notifier, status, clock, locks)
    hiatus = HiatusAdjuster(repo, timer, config, notifier, escalation, status, clock, locks)
    sessions = SessionService(repo, escalation, notifier, status, clock, locks)

    # Rebuild pending timers before anything else can schedule one
    await RecoveryLoader(repo, escalation, hiatus, status, clock).run()

    application.bot_data.update(
        {
            "config": config,
            "clock": clock,
            "sessions": sessions,
            "hiatus": hiatus,
            "advancer": sessions,
            "finisher": sessions,
        }
    )

    logger.info("Turnkeeper initialized successfully")


async def post_shutdown(application: Application) -> None:
    """Cleanup resources on shutdown."""
    timer: JobTimer = application.bot_data.get("timer")
    if timer:
        timer.shutdown()

    repo: Repository = application.bot_data.get("repo")
    if repo:
        await repo.close()

    logger.info("Turnkeeper shut down")


def main() -> None:
    """Start the bot."""
    # Validate configuration
    try:
        Config.validate()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    # Create application
    application = (
        Application.builder()
        .token(Config.TELEGRAM_BOT_TOKEN)
        .post_init(post_init)
        .post_shutdown(post_shutdown)
        .build()
    )

    # Register handlers

    # Sessions
    application.add_handler(CommandHandler("help", help_command))
    application.add_handler(CommandHandler("session_start", session_start_command))
    application.add_handler(CommandHandler("next", next_command))
    application.add_handler(CommandHandler("status", status_command))
    application.add_handler(CommandHandler("finish", finish_command))

    # Moderation
    application.add_handler(CommandHandler("skip", skip_command))
    application.add_handler(CommandHandler("turn_add", turn_add_command))
    application.add_handler(CommandHandler("turn_remove", turn_remove_command))
    application.add_handler(CommandHandler("turn_set", turn_set_command))
    application.add_handler(CommandHandler("config", config_command))

    # Hiatus
    application.add_handler(CommandHandler("hiatus", hiatus_command))
    application.add_handler(CommandHandler("hiatus_edit", hiatus_edit_command))
    application.add_handler(CommandHandler("hiatus_end", hiatus_end_command))

    # Callback queries (buttons)
    application.add_handler(CallbackQueryHandler(callback_router))

    # Error handler
    application.add_error_handler(error_handler)

    # Start the bot
    logger.info("Starting Turnkeeper bot...")
    application.run_polling(allowed_updates=["message", "callback_query"])


if __name__ == "__main__":
    main()
