"""
Appointment event consumer.

One EventConsumer drains events:p2p and feeds each event to its handler.
A failed event is parked in events:p2p:retry with an attempt counter and
the time it becomes due again (backing off RETRY_DELAY seconds per
attempt); after MAX_RETRIES it lands in events:p2p:dead for inspection.

Started by worker/app/main.py.
"""

import asyncio
import json
import logging
import time
from typing import Optional

import redis.asyncio as aioredis

from backend.app.services.events import QUEUE

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
RETRY_DELAY = 5.0
RETRY_QUEUE = f"{QUEUE}:retry"
DEAD_QUEUE = f"{QUEUE}:dead"

# Outcomes of EventConsumer.handle
HANDLED = "handled"
RETRYING = "retrying"
DEAD = "dead"


class EventConsumer:
    def __init__(self, r: aioredis.Redis, ctx, poll_timeout: int = 5, retry_delay: float = RETRY_DELAY):
        self.r = r
        self.ctx = ctx
        self.poll_timeout = poll_timeout
        self.retry_delay = retry_delay

    async def run(self) -> None:
        """Consume the main queue and promote due retries until cancelled."""
        logger.info(f"Event consumer started on {QUEUE}")
        await asyncio.gather(self._consume(), self._retry_loop())

    async def _consume(self) -> None:
        while True:
            try:
                result = await self.r.brpop(QUEUE, timeout=self.poll_timeout)
                if result is not None:
                    await self.handle(result[1])
            except asyncio.CancelledError:
                logger.info("Event consumer cancelled")
                raise
            except Exception:
                logger.exception("Event consumer error, retrying in 2s")
                await asyncio.sleep(2)

    async def _retry_loop(self) -> None:
        while True:
            try:
                await self.promote_due_retries()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"Promoting {RETRY_QUEUE} failed")
            await asyncio.sleep(self.retry_delay)

    async def handle(self, raw: str) -> str:
        """Run one raw event through its handler; returns HANDLED, RETRYING or DEAD."""
        from . import process_event

        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.error(f"Invalid JSON in event queue: {raw[:200]}")
            await self.r.rpush(DEAD_QUEUE, raw)
            return DEAD

        attempt = data.get("_attempt", 1)
        try:
            await process_event(data, self.ctx)
            return HANDLED
        except Exception:
            logger.exception(
                f"Event {data.get('type')} for appointment {data.get('appointment_id')} "
                f"failed (attempt {attempt}/{MAX_RETRIES})"
            )

        if attempt >= MAX_RETRIES:
            await self.r.rpush(DEAD_QUEUE, json.dumps(data))
            logger.warning(f"Event {data.get('type')} moved to {DEAD_QUEUE}")
            return DEAD

        data["_attempt"] = attempt + 1
        data["_retry_at"] = time.time() + self.retry_delay * attempt
        await self.r.rpush(RETRY_QUEUE, json.dumps(data))
        return RETRYING

    async def promote_due_retries(self, now: Optional[float] = None) -> int:
        """Move retry events whose backoff has elapsed back onto the main queue."""
        now = time.time() if now is None else now
        promoted = 0
        for _ in range(await self.r.llen(RETRY_QUEUE)):
            raw = await self.r.lpop(RETRY_QUEUE)
            if raw is None:
                break
            try:
                due = json.loads(raw).get("_retry_at", 0) <= now
            except json.JSONDecodeError:
                await self.r.rpush(DEAD_QUEUE, raw)
                continue
            if due:
                await self.r.rpush(QUEUE, raw)
                promoted += 1
            else:
                await self.r.rpush(RETRY_QUEUE, raw)
        if promoted:
            logger.info(f"Promoted {promoted} event(s) from {RETRY_QUEUE}")
        return promoted
