"""Time and timezone utilities."""

import re
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from dateutil import parser as date_parser

from turnkeeper.errors import ValidationError
from turnkeeper.utils.constants import DEFAULT_TIMEZONE, HIATUS_DATE_ONLY_HOUR

UTC = ZoneInfo("UTC")

_RELATIVE_PATTERN = re.compile(
    r"^(?:in\s+)?(\d+)\s*(m|min|mins|minutes?|h|hrs?|hours?|d|days?|w|weeks?)$",
    re.IGNORECASE,
)


def to_utc(dt: datetime, tz: str = DEFAULT_TIMEZONE) -> datetime:
    """Convert a datetime to UTC, treating naive values as local to ``tz``."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=ZoneInfo(tz))
    return dt.astimezone(UTC)


def parse_hiatus_until(text: str, now: datetime) -> datetime:
    """Parse the end of a hiatus.

    Accepts relative durations ("3d", "in 12 hours", "2 weeks") and absolute
    dates ("2026-11-02", "2026-11-02 18:30", "Nov 2"). A bare date ends at
    noon UTC on that day.

    Raises:
        ValidationError: if the text can't be read as a date
    """
    text = text.strip()
    if not text:
        raise ValidationError("Empty hiatus end date", "Please tell me when your hiatus ends.")

    match = _RELATIVE_PATTERN.match(text)
    if match:
        amount = int(match.group(1))
        unit = match.group(2).lower()[0]
        if unit == "m":
            return now + timedelta(minutes=amount)
        elif unit == "h":
            return now + timedelta(hours=amount)
        elif unit == "d":
            return now + timedelta(days=amount)
        return now + timedelta(weeks=amount)

    default = now.replace(hour=0, minute=0, second=0, microsecond=0, tzinfo=None)
    try:
        parsed = date_parser.parse(text, default=default)
    except (ValueError, OverflowError) as e:
        raise ValidationError(
            f"Could not parse hiatus end date {text!r}: {e}",
            f"❌ I couldn't understand '{text}' as a date. Try e.g. 2026-11-02 or 3d.",
        ) from e

    if not _has_time(text):
        parsed = parsed.replace(hour=HIATUS_DATE_ONLY_HOUR)

    return to_utc(parsed)


def _has_time(text: str) -> bool:
    return bool(re.search(r"\d:\d|\d\s*(am|pm)\b", text, re.IGNORECASE))


def format_relative_time(dt: datetime, now: datetime | None = None) -> str:
    """Format a datetime relative to now.

    Examples:
        "in 5 minutes"
        "in 2 hours"
        "tomorrow"
        "2 days ago"
    """
    if now is None:
        now = datetime.now(UTC)

    delta = dt - now
    total_seconds = delta.total_seconds()

    if total_seconds < 0:
        abs_seconds = abs(total_seconds)
        if abs_seconds < 3600:
            minutes = int(abs_seconds / 60)
            return f"{minutes} minute{'s' if minutes != 1 else ''} ago"
        elif abs_seconds < 86400:
            hours = int(abs_seconds / 3600)
            return f"{hours} hour{'s' if hours != 1 else ''} ago"
        else:
            days = int(abs_seconds / 86400)
            return f"{days} day{'s' if days != 1 else ''} ago"
    else:
        if total_seconds < 3600:
            minutes = int(total_seconds / 60)
            return f"in {minutes} minute{'s' if minutes != 1 else ''}"
        elif total_seconds < 86400:
            hours = int(total_seconds / 3600)
            return f"in {hours} hour{'s' if hours != 1 else ''}"
        elif total_seconds < 172800:  # 2 days
            return "tomorrow"
        else:
            days = int(total_seconds / 86400)
            return f"in {days} days"
