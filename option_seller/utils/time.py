"""Time utilities (IST)."""

from datetime import datetime, time, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo

IST = ZoneInfo("Asia/Kolkata")


def to_ist(dt: datetime, naive_assumed_tz: tzinfo = timezone.utc) -> datetime:
    """Convert datetime to IST timezone-aware value."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=naive_assumed_tz)
    return dt.astimezone(IST)


def parse_hhmm(value: str) -> time:
    """Parse ``"HH:MM"`` (or ``"HH:MM:SS"``) into a ``time``."""
    parts = [int(p) for p in str(value).strip().split(":")]
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid time of day: {value!r}")
    return time(*parts)


def floor_to_interval(dt: datetime, interval: timedelta) -> datetime:
    """
    Floor ``dt`` to the start of its ``interval`` bucket, counted from
    midnight of the same day (bars are aligned to the wall clock).
    """
    midnight = dt.replace(hour=0, minute=0, second=0, microsecond=0)
    buckets = (dt - midnight) // interval
    return midnight + buckets * interval
