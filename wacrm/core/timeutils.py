"""Time helpers shared by models and services."""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def local_now(tz_name: str, now: datetime | None = None) -> datetime:
    """Convert ``now`` (default: current time) to the named timezone."""
    return (now or utcnow()).astimezone(ZoneInfo(tz_name))


def parse_epoch(value: int | float | str | datetime | None) -> datetime | None:
    """Parse a provider timestamp (epoch seconds, epoch millis, or ISO-8601).

    Returns None for missing or unparseable values.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) or (isinstance(value, str) and value.isdigit()):
        seconds = float(value)
        # Millisecond epochs are 13 digits
        if seconds > 1e12:
            seconds /= 1000
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
