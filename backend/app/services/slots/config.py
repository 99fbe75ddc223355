# backend/app/services/slots/config.py
"""
Booking configuration for slots calculation.
"""

from dataclasses import dataclass
from functools import lru_cache

from ...config import settings


@dataclass(frozen=True)
class BookingConfig:
    """
    Configuration for booking/slots system.

    Attributes:
        slot_step_minutes: Candidate grid step in minutes (15/30/60)
        cache_ttl_seconds: Redis TTL for computed slot lists
        timezone: Salon time zone; "now" for same-day queries is taken here
        default_open: Salon opening time when no weekly schedule is saved
        default_close: Salon closing time when no weekly schedule is saved
    """
    slot_step_minutes: int = 30  # 15 / 30 / 60
    cache_ttl_seconds: int = 60
    timezone: str = "Asia/Singapore"
    default_open: str = "09:00"
    default_close: str = "18:00"

    def __post_init__(self):
        """Validate configuration."""
        if self.slot_step_minutes not in (15, 30, 60):
            raise ValueError(f"slot_step_minutes must be 15, 30, or 60, got {self.slot_step_minutes}")
        if self.cache_ttl_seconds <= 0:
            raise ValueError(f"cache_ttl_seconds must be positive, got {self.cache_ttl_seconds}")


@lru_cache
def get_booking_config() -> BookingConfig:
    """Booking configuration built from application settings (singleton)."""
    return BookingConfig(
        slot_step_minutes=settings.slot_step_minutes,
        cache_ttl_seconds=settings.slot_cache_ttl_seconds,
        timezone=settings.timezone,
    )


def time_str_to_minutes(value: str) -> int:
    """Convert "HH:MM" to minutes since midnight ("24:00" means end of day)."""
    hours, minutes = value.strip().split(":")
    return int(hours) * 60 + int(minutes)


def minutes_to_time_str(minutes: int) -> str:
    """Convert minutes since midnight to "HH:MM"."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"
