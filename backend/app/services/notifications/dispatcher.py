"""
Notification dispatcher.

Tries the configured channels in order and stops at the first successful
delivery. A channel that is not available for the recipient is skipped; a
channel that fails or times out falls through to the next one.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from ..errors import ProviderError
from .channels import Channel
from .formatters import format_message
from .recipients import Recipient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryResult:
    sent: bool
    channel: Optional[str] = None


class NotificationDispatcher:
    def __init__(self, channels: list[Channel], timeout: float = 10.0):
        self.channels = list(channels)
        self.timeout = timeout

    async def send(self, kind: str, recipient: Recipient, appointment: dict, **extra) -> DeliveryResult:
        """
        Deliver one notification.

        Args:
            kind: confirmation | reminder | cancellation | reschedule
            appointment: display fields (see calendar_sync.appointment_payload)
            extra: kind-specific fields, e.g. old_date/old_time

        Returns:
            DeliveryResult(sent=True, channel=...) on the first success,
            DeliveryResult(sent=False) when every available channel failed
        """
        message = format_message(kind, appointment, **extra)

        tried = 0
        for channel in self.channels:
            if not channel.available_for(recipient):
                continue
            tried += 1
            try:
                await asyncio.wait_for(channel.send(recipient, message), timeout=self.timeout)
            except (ProviderError, asyncio.TimeoutError) as e:
                logger.warning(f"{kind} via {channel.name} failed for {recipient.name}, trying next channel: {e}")
                continue
            except Exception:
                logger.exception(f"{kind} via {channel.name} crashed for {recipient.name}")
                continue
            return DeliveryResult(sent=True, channel=channel.name)

        if tried == 0:
            logger.warning(f"No channel available to send {kind} to {recipient.name}")
        else:
            logger.error(f"All {tried} channel(s) failed to send {kind} to {recipient.name}")
        return DeliveryResult(sent=False)
