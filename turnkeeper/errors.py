"""Exception types surfaced by the turn-order core."""


class TurnkeeperError(Exception):
    """Base error with a message that is safe to show in chat."""

    default_user_message = "Something went wrong. Please try again."

    def __init__(self, message: str, user_message: str | None = None):
        super().__init__(message)
        self.user_message = user_message or self.default_user_message


class ConfigurationError(TurnkeeperError):
    """A required configuration value is missing or unparsable."""

    default_user_message = "A required setting is missing. Ask a moderator to check /config."


class ValidationError(TurnkeeperError):
    """A request was rejected before any state was changed."""

    def __init__(self, message: str, user_message: str | None = None):
        # Validation messages are written for the user already
        super().__init__(message, user_message or message)


class InconsistentStateError(TurnkeeperError):
    """Stored session data contradicts itself (e.g. current turn not in order)."""

    default_user_message = "This session's turn order is inconsistent. A moderator needs to fix it."


class PersistenceError(TurnkeeperError):
    """The database could not be read or written."""

    default_user_message = "I couldn't save that. Please try again in a moment."


class SchedulingError(TurnkeeperError):
    """A timer operation referenced an entry that does not exist or was malformed."""
