"""
worker/app/main.py

Entry point of the side-effect worker: calendar sync and customer
notifications for committed appointment changes.

    python -m worker.app.main
"""

import asyncio
import logging

import redis.asyncio as aioredis

from backend.app.config import settings
from backend.app.services.notifications import TelegramChannel

from .context import build_context
from .events.consumer import EventConsumer

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def main() -> None:
    ctx = build_context()
    channels = ", ".join(c.name for c in ctx.dispatcher.channels) or "none"
    logger.info(f"Worker starting, notification channels: {channels}")

    r = aioredis.from_url(settings.redis_url, decode_responses=True)
    try:
        await EventConsumer(r, ctx).run()
    finally:
        await r.aclose()
        for channel in ctx.dispatcher.channels:
            if isinstance(channel, TelegramChannel):
                await channel.bot.session.close()


if __name__ == "__main__":
    asyncio.run(main())
