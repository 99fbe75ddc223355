"""
backend/app/services/locks.py

Named mutual-exclusion locks.

- slot_lock(stylist_id, date): serializes check-and-commit of bookings for one
  stylist on one date, so two requests cannot both pass the availability
  re-check.
- try_sweep_lock(name): single-runner guard for periodic sweeps; an
  overlapping run sees the lock taken and skips.

With a Redis client the locks are Redis locks shared by every API process;
without one they fall back to process-local threading locks.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import date
from typing import Iterator, Optional

from redis import Redis
from redis.exceptions import LockError

from .errors import SlotUnavailableError

logger = logging.getLogger(__name__)


class LockManager:
    KEY_PREFIX = "lock"

    def __init__(self, redis: Optional[Redis] = None, timeout: float = 10.0):
        self.redis = redis
        self.timeout = timeout
        self._local_locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _local(self, name: str) -> threading.Lock:
        with self._guard:
            lock = self._local_locks.get(name)
            if lock is None:
                lock = threading.Lock()
                self._local_locks[name] = lock
            return lock

    @staticmethod
    def slot_key(stylist_id: Optional[int], target_date: date) -> str:
        resource = stylist_id if stylist_id is not None else "pool"
        return f"slot:{resource}:{target_date.isoformat()}"

    @contextmanager
    def slot_lock(self, stylist_id: Optional[int], target_date: date) -> Iterator[None]:
        """
        Block until the stylist/date lock is held.

        Raises:
            SlotUnavailableError: lock not acquired within the timeout
        """
        name = f"{self.KEY_PREFIX}:{self.slot_key(stylist_id, target_date)}"

        if self.redis is not None:
            lock = self.redis.lock(name, timeout=self.timeout, blocking_timeout=self.timeout)
            if not lock.acquire():
                logger.warning(f"Timed out waiting for {name}")
                raise SlotUnavailableError()
            try:
                yield
            finally:
                try:
                    lock.release()
                except LockError:
                    logger.error(f"{name} expired before release")
            return

        local = self._local(name)
        if not local.acquire(timeout=self.timeout):
            logger.warning(f"Timed out waiting for {name}")
            raise SlotUnavailableError()
        try:
            yield
        finally:
            local.release()

    @contextmanager
    def try_sweep_lock(self, sweep_name: str, ttl: float = 300.0) -> Iterator[bool]:
        """Yield True if this run owns the sweep, False if another run holds it."""
        name = f"{self.KEY_PREFIX}:sweep:{sweep_name}"

        if self.redis is not None:
            lock = self.redis.lock(name, timeout=ttl)
            acquired = lock.acquire(blocking=False)
            try:
                yield acquired
            finally:
                if acquired:
                    try:
                        lock.release()
                    except LockError:
                        logger.error(f"{name} expired before release")
            return

        local = self._local(name)
        acquired = local.acquire(blocking=False)
        try:
            yield acquired
        finally:
            if acquired:
                local.release()
