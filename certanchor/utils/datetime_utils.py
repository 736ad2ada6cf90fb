"""
Timezone-aware datetime utilities.

The registry speaks unix seconds (uint64); everything inside the service
uses timezone-aware UTC datetimes. Conversions go through these helpers.
"""
from datetime import date, datetime, timezone
from typing import Optional, Union


def utc_now() -> datetime:
    """
    Get current UTC time as timezone-aware datetime.

    Use this instead of datetime.utcnow() which returns naive datetime.
    """
    return datetime.now(timezone.utc)


def to_unix_seconds(value: Union[datetime, int, float]) -> int:
    """Convert a datetime (naive = UTC) or a numeric timestamp to whole unix seconds."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp())
    return int(value)


def from_unix_seconds(seconds: Optional[int]) -> Optional[datetime]:
    """Convert registry unix seconds to an aware datetime. 0 and None map to None."""
    if not seconds:
        return None
    return datetime.fromtimestamp(int(seconds), tz=timezone.utc)


def valid_until_to_unix(value: Optional[Union[date, datetime]]) -> int:
    """
    Convert a form "valid until" value to registry unix seconds.

    A calendar date means midnight UTC at the start of that day, which is
    what a browser date input produces. None means "never expires" (0).
    """
    if value is None:
        return 0
    if isinstance(value, datetime):
        return to_unix_seconds(value)
    return to_unix_seconds(datetime(value.year, value.month, value.day, tzinfo=timezone.utc))
