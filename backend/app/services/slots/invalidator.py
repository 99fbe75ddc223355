# backend/app/services/slots/invalidator.py
"""
Cache invalidation for slot lists.

Triggers:
✓ Appointment created / rescheduled / cancelled / expired → affected dates
✓ Blocked period created/deleted → every date in its range
✓ Weekly business hours changed (PUT /admin/schedule) → everything

Lists also expire on their own after cache_ttl_seconds.
"""

import logging
from datetime import date, timedelta

from redis import Redis
from redis.exceptions import RedisError

from ..clock import parse_date
from .redis_store import SlotsRedisStore

logger = logging.getLogger(__name__)


def invalidate_slots_cache(
    redis: Redis | None,
    dates: list[date] | None = None,
) -> int:
    """
    Drop cached slot lists.

    Args:
        redis: Redis client; None means caching is off
        dates: Dates to invalidate, or None for all cached dates

    Returns:
        Number of deleted cache keys
    """
    if redis is None:
        return 0
    try:
        return SlotsRedisStore(redis).delete_day_slots(dates)
    except RedisError as e:
        # Stale entries still expire after the TTL
        logger.error(f"Slot cache invalidation failed for {dates}: {e}")
        return 0


def get_affected_dates(
    date_start: date,
    date_end: date,
) -> list[date]:
    """
    Get list of dates in range [date_start, date_end].

    Args:
        date_start: Start date (inclusive)
        date_end: End date (inclusive)

    Returns:
        List of dates
    """
    if date_start > date_end:
        date_start, date_end = date_end, date_start

    dates = []
    current = date_start
    while current <= date_end:
        dates.append(current)
        current += timedelta(days=1)

    return dates


def get_affected_dates_from_period(period) -> list[date]:
    """Dates covered by a BlockedPeriods row."""
    return get_affected_dates(parse_date(period.date_start), parse_date(period.date_end))
