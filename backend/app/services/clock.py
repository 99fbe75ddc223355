"""
Time helpers.

Appointment date/time columns hold salon-local wall time ("YYYY-MM-DD",
"HH:MM"); bookkeeping timestamps (created_at, expires_at, paid_at) are UTC
strings in "%Y-%m-%d %H:%M:%S" form.
"""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

TS_FORMAT = "%Y-%m-%d %H:%M:%S"


def utc_now() -> datetime:
    """Naive UTC now."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def format_ts(dt: datetime) -> str:
    return dt.strftime(TS_FORMAT)


def parse_ts(value: str) -> datetime:
    return datetime.strptime(value, TS_FORMAT)


def salon_now(tz_name: str) -> datetime:
    """Naive wall-clock now in the salon's time zone."""
    return datetime.now(ZoneInfo(tz_name)).replace(tzinfo=None)


def local_to_utc(local_dt: datetime, tz_name: str) -> datetime:
    """Convert naive salon-local wall time to naive UTC."""
    aware = local_dt.replace(tzinfo=ZoneInfo(tz_name))
    return aware.astimezone(timezone.utc).replace(tzinfo=None)


def appointment_start(date_str: str, time_str: str) -> datetime:
    """Naive salon-local start of an appointment."""
    return datetime.strptime(f"{date_str} {time_str}", "%Y-%m-%d %H:%M")


def parse_date(value: str | date) -> date:
    if isinstance(value, date):
        return value
    return datetime.strptime(value, "%Y-%m-%d").date()
