# backend/app/services/slots/calculator.py
"""
Level 1: open intervals of one resource (a stylist, or the unassigned
salon chair) on one date.

Contains:
✓ salon weekly schedule (business_hours) or default hours
✓ stylist weekday overrides (stylists.work_schedule)
✓ blocked periods, salon-wide and stylist-specific, merged as a union

Does NOT contain:
✗ Appointments (subtracted at Level 2)
✗ Grid enumeration and "already passed" filtering (Level 2)

Intervals are (start_min, end_min) pairs, minutes since midnight, half-open.
"""

import json
import logging
from datetime import date

from .config import BookingConfig, get_booking_config, time_str_to_minutes

logger = logging.getLogger(__name__)

Interval = tuple[int, int]

DAY_NAMES = ["mon", "tue", "wed", "thu", "fri", "sat", "sun"]
DAY_END = 24 * 60


def calculate_open_intervals(
    store,
    target_date: date,
    stylist=None,
    config: BookingConfig | None = None,
) -> list[Interval]:
    """
    Working intervals for target_date minus blocked periods.

    Args:
        store: ScheduleStore
        target_date: Day to calculate
        stylist: Stylists row, or None for the salon-level resource

    Returns:
        Sorted, non-overlapping intervals. Empty list = closed.
    """
    config = config or get_booking_config()

    window = working_intervals(store, target_date, stylist, config)
    if not window:
        return []

    stylist_id = stylist.id if stylist is not None else None
    periods = store.list_blocked_periods(target_date, stylist_id)
    blocked = [_period_interval(p) for p in periods]

    return subtract_intervals(window, blocked)


def working_intervals(
    store,
    target_date: date,
    stylist=None,
    config: BookingConfig | None = None,
) -> list[Interval]:
    """
    Effective opening window(s) before blocks.

    A stylist's override for the weekday wins; otherwise the salon default.
    """
    config = config or get_booking_config()

    if stylist is not None and stylist.work_schedule:
        try:
            schedule = json.loads(stylist.work_schedule)
        except json.JSONDecodeError:
            logger.warning(f"Invalid work_schedule JSON for stylist {stylist.id}, using salon hours")
            schedule = {}
        override = _get_day_override(schedule, target_date)
        if override is not None:
            return _normalize(override)

    hours = store.get_business_hours(target_date.weekday())
    if hours is None:
        return _normalize([[config.default_open, config.default_close]])
    if not hours.is_open:
        return []
    return _normalize([[hours.open_time, hours.close_time]])


def subtract_intervals(base: list[Interval], remove: list[Interval]) -> list[Interval]:
    """base minus the union of remove; overlapping removals are not double-counted."""
    result: list[Interval] = []
    blocked = merge_intervals(remove)

    for start, end in merge_intervals(base):
        cursor = start
        for b_start, b_end in blocked:
            if b_end <= cursor or b_start >= end:
                continue
            if b_start > cursor:
                result.append((cursor, b_start))
            cursor = max(cursor, b_end)
            if cursor >= end:
                break
        if cursor < end:
            result.append((cursor, end))

    return result


def merge_intervals(intervals: list[Interval]) -> list[Interval]:
    """Sort and merge overlapping or touching intervals; empty ones are dropped."""
    merged: list[Interval] = []
    for start, end in sorted(i for i in intervals if i[1] > i[0]):
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


# ── Helpers ──────────────────────────────────────────────────────────────


def _get_day_override(schedule: dict, target_date: date) -> list[list[str]] | None:
    """
    Extract the stylist's intervals for target_date.

    Supports {"mon": {"start", "end"} | null | [[s, e], ...]} and numeric
    weekday keys {"0": [[s, e], ...]}.

    Returns None when the schedule has no entry for the weekday (salon
    default applies) and [] when the stylist is off that day.
    """
    weekday = target_date.weekday()  # 0 = Monday, 6 = Sunday

    weekday_str = str(weekday)
    if weekday_str in schedule:
        intervals = schedule[weekday_str]
        return intervals if isinstance(intervals, list) else []

    day_name = DAY_NAMES[weekday]
    if day_name not in schedule:
        return None

    day_data = schedule[day_name]
    if day_data is None:
        return []
    if isinstance(day_data, dict):
        start = day_data.get("start")
        end = day_data.get("end")
        if start and end:
            return [[start, end]]
        return []
    if isinstance(day_data, list):
        return day_data
    return []


def _normalize(raw: list) -> list[Interval]:
    intervals: list[Interval] = []
    for item in raw:
        if len(item) != 2:
            continue
        try:
            start = time_str_to_minutes(item[0])
            end = time_str_to_minutes(item[1])
        except (ValueError, AttributeError):
            logger.warning(f"Skipping malformed interval {item!r}")
            continue
        intervals.append((start, min(end, DAY_END)))
    return merge_intervals(intervals)


def _period_interval(period) -> Interval:
    """A blocked period without a time range covers the whole day."""
    if period.time_start and period.time_end:
        return (time_str_to_minutes(period.time_start), time_str_to_minutes(period.time_end))
    return (0, DAY_END)
