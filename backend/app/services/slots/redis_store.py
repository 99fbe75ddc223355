# backend/app/services/slots/redis_store.py
"""
Short-TTL Redis cache for computed slot lists, using Sorted Sets.

Key format: slots:{date}:{resource}:{duration}
    resource = stylist id, or "any" + requested service ids
Value: Sorted Set where member = "HH:MM", score = slot start as a unix
       timestamp (UTC).

Query: ZRANGEBYSCORE key ({now_ts} +inf → slots that have not started yet.
Sentinel: "__empty__" with score=0 marks "calculated, zero slots".
"""

from datetime import date, datetime, timezone

from redis import Redis

from ..clock import local_to_utc
from .config import BookingConfig, get_booking_config

EMPTY_SENTINEL = "__empty__"


class SlotsRedisStore:
    """Redis storage wrapper using Sorted Sets for slot lists."""

    KEY_PREFIX = "slots"

    def __init__(self, redis: Redis, config: BookingConfig | None = None):
        self.redis = redis
        self.config = config or get_booking_config()

    def _key(self, dt: date, resource: str, duration_minutes: int) -> str:
        return f"{self.KEY_PREFIX}:{dt.isoformat()}:{resource}:{duration_minutes}"

    def _ts(self, local_dt: datetime) -> float:
        utc = local_to_utc(local_dt, self.config.timezone)
        return utc.replace(tzinfo=timezone.utc).timestamp()

    # ── Write ────────────────────────────────────────────────────────────

    def store_slots(
        self,
        dt: date,
        resource: str,
        duration_minutes: int,
        slots: list[str],
    ) -> None:
        """
        Store a computed slot list.

        Args:
            dt: Target date
            resource: Stylist id or "any:..." marker
            duration_minutes: Requested duration
            slots: "HH:MM" start times. Empty list → sentinel is stored.
        """
        key = self._key(dt, resource, duration_minutes)
        pipe = self.redis.pipeline()

        pipe.delete(key)
        if slots:
            mapping = {
                time_str: self._ts(datetime.strptime(f"{dt.isoformat()} {time_str}", "%Y-%m-%d %H:%M"))
                for time_str in slots
            }
            pipe.zadd(key, mapping)
        else:
            # Empty day: sentinel so EXISTS returns True
            pipe.zadd(key, {EMPTY_SENTINEL: 0})
        pipe.expire(key, self.config.cache_ttl_seconds)

        pipe.execute()

    # ── Read ─────────────────────────────────────────────────────────────

    def get_slots(
        self,
        dt: date,
        resource: str,
        duration_minutes: int,
        now: datetime,
    ) -> list[str] | None:
        """
        Cached slots that start after `now` (salon-local).

        Returns:
            Sorted list of "HH:MM" strings, or None on cache miss.
        """
        key = self._key(dt, resource, duration_minutes)
        if not self.redis.exists(key):
            return None

        now_ts = self._ts(now)
        members = self.redis.zrangebyscore(key, f"({now_ts}", "+inf")
        times = [m.decode() if isinstance(m, bytes) else m for m in members]
        return [t for t in times if t != EMPTY_SENTINEL]

    # ── Delete ───────────────────────────────────────────────────────────

    def delete_day_slots(self, dates: list[date] | None = None) -> int:
        """
        Delete cached slot lists.

        Args:
            dates: Specific dates, or None to delete everything cached.

        Returns:
            Number of deleted keys.
        """
        if dates:
            keys = []
            for dt in dates:
                keys.extend(self.redis.scan_iter(match=f"{self.KEY_PREFIX}:{dt.isoformat()}:*"))
        else:
            keys = list(self.redis.scan_iter(match=f"{self.KEY_PREFIX}:*"))

        if not keys:
            return 0

        return self.redis.delete(*keys)
