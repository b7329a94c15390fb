"""Constants and default values."""

from datetime import timedelta

# Limits
MAX_HIATUS_REASON_LENGTH = 3500
MAX_CHARACTER_NAME_LENGTH = 200
MAX_TURN_MESSAGE_LENGTH = 1000

# Ending a hiatus by hand fires its timer this far in the future
HIATUS_END_DELAY = timedelta(seconds=1)

# A hiatus "until" given as a bare date ends at this hour (UTC)
HIATUS_DATE_ONLY_HOUR = 12

# Default timezone
DEFAULT_TIMEZONE = "UTC"
