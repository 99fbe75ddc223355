"""
backend/app/services/events.py

Event emitter: pushes appointment side-effect jobs to a Redis queue for the
worker (worker/app/events).

Queue: events:p2p (calendar sync and customer notifications)
"""

import json
import logging
import time
from typing import Optional, Protocol

from redis import Redis

logger = logging.getLogger(__name__)

QUEUE = "events:p2p"

APPOINTMENT_CONFIRMED = "appointment_confirmed"
APPOINTMENT_RESCHEDULED = "appointment_rescheduled"
APPOINTMENT_CANCELLED = "appointment_cancelled"
CALENDAR_AUTH_FAILED = "calendar_auth_failed"


class EventEmitter(Protocol):
    def emit(self, event_type: str, payload: dict) -> None: ...


class RedisEventEmitter:
    """Pushes events to the Redis list consumed by the worker."""

    def __init__(self, redis: Redis, queue: str = QUEUE):
        self.redis = redis
        self.queue = queue

    def emit(self, event_type: str, payload: dict) -> None:
        """
        Emit an event.

        Never raises: the state change that produced the event is already
        committed; a lost event leaves the appointment to the resync sweep.
        """
        event = {
            "type": event_type,
            **payload,
            "ts": int(time.time()),
        }
        try:
            self.redis.rpush(self.queue, json.dumps(event))
            logger.info(f"Event emitted: {event_type} → {self.queue}")
        except Exception as e:
            logger.error(f"Failed to emit event {event_type}: {e}")


_default_emitter: Optional[RedisEventEmitter] = None


def get_event_emitter() -> RedisEventEmitter:
    global _default_emitter
    if _default_emitter is None:
        from ..redis_client import redis_client

        _default_emitter = RedisEventEmitter(redis_client)
    return _default_emitter
