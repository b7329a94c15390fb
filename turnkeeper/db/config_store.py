"""Runtime configuration stored in the database."""

import logging
from datetime import timedelta

from turnkeeper.db.repository import Repository
from turnkeeper.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Offsets are stored as two keys each: schedule_<name>_hours / schedule_<name>_minutes
OFFSET_REMINDER_0 = "reminder_0"
OFFSET_REMINDER_1 = "reminder_1"
OFFSET_HIATUS = "hiatus"

NOTIFICATION_CHAT_KEY = "channels_notification_chat_id"
MODERATOR_CHAT_KEY = "channels_moderator_chat_id"
HIATUS_CHAT_KEY = "channels_hiatus_chat_id"


class ConfigurationStore:
    """Key-value settings that moderators can change while the bot runs."""

    def __init__(self, repo: Repository):
        self.repo = repo

    async def get_string(self, key: str) -> str:
        """Get a string value.

        Raises:
            ConfigurationError: if the key is not set
        """
        value = await self.repo.get_config_value(key)
        if value is None or value == "":
            raise ConfigurationError(f"Value for key {key} does not exist")
        return value

    async def get_number(self, key: str) -> float:
        """Get a numeric value.

        Raises:
            ConfigurationError: if the key is not set or not a number
        """
        value = await self.get_string(key)
        try:
            return float(value)
        except ValueError as e:
            raise ConfigurationError(f"Value for key {key} is not a number: {value!r}") from e

    async def set_value(self, key: str, value: str) -> None:
        """Set a value, creating the key if needed."""
        await self.repo.set_config_value(key, value)
        logger.info(f"Configuration {key} set to {value!r}")

    async def get_offset(self, name: str) -> timedelta:
        """Get a schedule offset (e.g. ``reminder_0``) as a timedelta."""
        hours = await self.get_number(f"schedule_{name}_hours")
        minutes = await self.get_number(f"schedule_{name}_minutes")
        offset = timedelta(hours=hours, minutes=minutes)
        if offset < timedelta(0):
            raise ConfigurationError(f"Schedule offset {name} is negative: {offset}")
        return offset
