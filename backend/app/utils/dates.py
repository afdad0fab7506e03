"""Week bucket helpers."""
from datetime import date, datetime, timedelta, timezone
from typing import Optional


def get_upcoming_sunday(now: Optional[datetime] = None) -> date:
    """
    Get the Sunday that closes the current week bucket.

    On a Sunday this is the following Sunday, so a week never ends on the
    day it is computed.

    Args:
        now: Reference time (defaults to local now)

    Returns:
        Date of the upcoming Sunday
    """
    today = (now or datetime.now()).date()
    # date.weekday(): Monday=0 ... Sunday=6
    days_until_sunday = 6 - today.weekday()
    if days_until_sunday == 0:
        days_until_sunday = 7
    return today + timedelta(days=days_until_sunday)


def parse_capture_date(value: str) -> datetime:
    """
    Parse a client-supplied capture date.

    Accepts ISO 8601 dates or datetimes, with an optional trailing "Z".
    Timezone-aware values are converted to naive UTC.

    Raises:
        ValueError: If the value is not a valid ISO date
    """
    value = (value or "").strip()
    if not value:
        raise ValueError("date is required")
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise ValueError(f"Invalid date: {value}")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
