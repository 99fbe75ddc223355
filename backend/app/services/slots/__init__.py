# backend/app/services/slots/__init__.py
"""
Slots calculation module.

Level 1: open intervals (weekly hours, stylist overrides, blocked periods)
Level 2: bookable start times (appointments, grid, same-day cut-off),
         cached briefly in Redis Sorted Sets
"""

from .config import BookingConfig, get_booking_config
from .calculator import calculate_open_intervals
from .redis_store import SlotsRedisStore
from .invalidator import invalidate_slots_cache
from .availability import compute_slots

__all__ = [
    "BookingConfig",
    "get_booking_config",
    "calculate_open_intervals",
    "SlotsRedisStore",
    "invalidate_slots_cache",
    "compute_slots",
]
