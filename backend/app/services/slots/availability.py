# backend/app/services/slots/availability.py
"""
Level 2: bookable start times.

For one resource (a stylist, or the unassigned salon chair when no stylist
can perform the requested services):
- Level 1 open intervals (hours minus blocked periods)
- minus active appointments as [start, start + duration)
- candidates on the slot grid, anchored at each opening time, such that
  [candidate, candidate + duration) fits inside a free interval
- same-day candidates that already started are dropped (salon time zone)

Without an explicit stylist the result is the union over every active
stylist able to perform all requested services.
"""

import logging
from datetime import date, datetime
from typing import Iterable, Optional

from redis import Redis
from redis.exceptions import RedisError

from ..clock import salon_now
from ..errors import BookingValidationError, ScheduleIntegrityError
from .calculator import Interval, calculate_open_intervals, subtract_intervals
from .config import BookingConfig, get_booking_config, minutes_to_time_str, time_str_to_minutes
from .redis_store import SlotsRedisStore

logger = logging.getLogger(__name__)


def compute_slots(
    store,
    target_date: date,
    duration_minutes: int,
    stylist_id: Optional[int] = None,
    service_ids: Iterable[int] = (),
    config: BookingConfig | None = None,
    now: datetime | None = None,
    redis: Redis | None = None,
    exclude_appointment_id: Optional[int] = None,
) -> list[str]:
    """
    Ordered "HH:MM" start times bookable on target_date.

    Args:
        store: ScheduleStore
        target_date: Day to calculate
        duration_minutes: Total duration of the requested services
        stylist_id: Specific stylist, or None for "any available"
        service_ids: Requested services; restrict "any" to capable stylists
        now: Salon-local "now" (defaults to the current time in config.timezone)
        redis: Slot cache; None disables caching
        exclude_appointment_id: Appointment ignored in the conflict check (reschedule)

    Raises:
        BookingValidationError: duration is not positive, or the stylist is unknown
        ScheduleIntegrityError: overlapping active appointments found
    """
    config = config or get_booking_config()
    now = now or salon_now(config.timezone)

    if duration_minutes <= 0:
        raise BookingValidationError("Duration must be positive")

    service_ids = sorted(set(service_ids))
    resources = resolve_resources(store, stylist_id, service_ids)

    cache = None
    if redis is not None and exclude_appointment_id is None:
        cache = SlotsRedisStore(redis, config)
        resource_key = str(stylist_id) if stylist_id is not None else "any-" + ".".join(map(str, service_ids))
        try:
            cached = cache.get_slots(target_date, resource_key, duration_minutes, now)
        except RedisError as e:
            logger.warning(f"Slot cache read failed: {e}")
            cache = None
            cached = None
        if cached is not None:
            return cached

    slots: set[str] = set()
    for stylist in resources:
        slots.update(
            compute_resource_slots(
                store, target_date, duration_minutes, stylist, config, now, exclude_appointment_id
            )
        )
    result = sorted(slots)

    if cache is not None:
        try:
            cache.store_slots(target_date, resource_key, duration_minutes, result)
        except RedisError as e:
            logger.warning(f"Slot cache write failed: {e}")

    return result


def resolve_resources(store, stylist_id: Optional[int], service_ids: Iterable[int]) -> list:
    """
    Resources a booking may land on, in assignment order.

    [stylist] for an explicit stylist, capable active stylists otherwise,
    [None] (the unassigned chair) when nobody is capable.

    Raises:
        BookingValidationError: unknown stylist, or one who does not perform
            the requested services while another stylist does
    """
    service_ids = list(service_ids)
    if stylist_id is not None:
        stylist = store.get_stylist(stylist_id)
        if stylist is None:
            raise BookingValidationError(f"Unknown stylist {stylist_id}")
        if not stylist.is_active:
            return []
        if service_ids:
            capable_ids = {s.id for s in store.list_capable_stylists(service_ids)}
            if capable_ids and stylist_id not in capable_ids:
                raise BookingValidationError("Stylist does not perform the selected services")
        return [stylist]

    capable = store.list_capable_stylists(service_ids)
    return capable or [None]


def compute_resource_slots(
    store,
    target_date: date,
    duration_minutes: int,
    stylist,
    config: BookingConfig,
    now: datetime,
    exclude_appointment_id: Optional[int] = None,
) -> list[str]:
    """Bookable start times for one stylist (or the unassigned chair when stylist is None)."""
    if target_date < now.date():
        return []

    open_intervals = calculate_open_intervals(store, target_date, stylist, config)
    if not open_intervals:
        return []

    stylist_id = stylist.id if stylist is not None else None
    appointments = store.list_active_appointments(target_date, stylist_id, exclude_appointment_id)
    busy = appointment_intervals(appointments)
    check_no_overlaps(busy, target_date, stylist_id)

    free = subtract_intervals(open_intervals, [i for i, _ in busy])

    now_min = None
    if target_date == now.date():
        now_min = now.hour * 60 + now.minute + (1 if now.second or now.microsecond else 0)

    step = config.slot_step_minutes
    result: list[str] = []
    for open_start, open_end in open_intervals:
        t = open_start
        while t + duration_minutes <= open_end:
            if (now_min is None or t >= now_min) and _fits(t, t + duration_minutes, free):
                result.append(minutes_to_time_str(t))
            t += step

    return result


def appointment_intervals(appointments: list) -> list[tuple[Interval, int]]:
    """[(start_min, end_min), appointment_id] for each appointment, sorted by start."""
    busy = []
    for appt in appointments:
        start = time_str_to_minutes(appt.time)
        busy.append(((start, start + appt.duration_minutes), appt.id))
    busy.sort()
    return busy


def check_no_overlaps(
    busy: list[tuple[Interval, int]],
    target_date: date,
    stylist_id: Optional[int],
) -> None:
    """Raise ScheduleIntegrityError if two active appointments of one resource overlap."""
    for (prev, prev_id), (cur, cur_id) in zip(busy, busy[1:]):
        if cur[0] < prev[1]:
            logger.critical(
                f"Double booking detected: appointments {prev_id} and {cur_id} overlap "
                f"on {target_date.isoformat()} for stylist={stylist_id}"
            )
            raise ScheduleIntegrityError(
                f"Appointments {prev_id} and {cur_id} overlap on {target_date.isoformat()}"
            )


def _fits(start: int, end: int, free: list[Interval]) -> bool:
    return any(f_start <= start and end <= f_end for f_start, f_end in free)
