"""UTC-everywhere time handling. Invoices store and compare UTC only."""

from datetime import datetime, timezone


def now_utc() -> datetime:
    """Current time in UTC. Use instead of datetime.now()."""
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """
    Convert an aware datetime to UTC.

    Raises:
        ValueError: If datetime is naive
    """
    if dt.tzinfo is None:
        raise ValueError(
            "Cannot convert naive datetime to UTC. Datetime must be timezone-aware."
        )
    return dt.astimezone(timezone.utc)


def start_of_month(dt: datetime) -> datetime:
    """Midnight UTC on the first day of dt's month."""
    return to_utc(dt).replace(day=1, hour=0, minute=0, second=0, microsecond=0)
