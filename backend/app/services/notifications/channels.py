"""
Notification channels.

One class per transport; each raises ProviderError when delivery fails.

- TelegramChannel  → aiogram Bot.send_message
- WhatsAppChannel  → WhatsApp Cloud API over httpx
- EmailChannel     → Resend
"""

import asyncio
import logging
from typing import Optional, Protocol

import httpx
import resend
from aiogram import Bot
from aiogram.exceptions import TelegramAPIError
from resend.exceptions import ResendError

from ..errors import ProviderError
from .formatters import Message
from .recipients import Recipient

logger = logging.getLogger(__name__)

WHATSAPP_API_URL = "https://graph.facebook.com/v19.0/{phone_number_id}/messages"


class Channel(Protocol):
    name: str

    def available_for(self, recipient: Recipient) -> bool: ...

    async def send(self, recipient: Recipient, message: Message) -> None: ...


class TelegramChannel:
    name = "telegram"

    def __init__(self, bot: Bot):
        self.bot = bot

    def available_for(self, recipient: Recipient) -> bool:
        return bool(recipient.telegram_id)

    async def send(self, recipient: Recipient, message: Message) -> None:
        try:
            await self.bot.send_message(
                chat_id=recipient.telegram_id,
                text=message.text,
                parse_mode="HTML",
            )
        except TelegramAPIError as e:
            raise ProviderError(f"Telegram send to {recipient.telegram_id} failed: {e}") from e
        logger.info(f"Telegram notification sent to tg_id={recipient.telegram_id}")


class WhatsAppChannel:
    name = "whatsapp"

    def __init__(self, phone_number_id: str, access_token: str, timeout: float = 10.0):
        self.url = WHATSAPP_API_URL.format(phone_number_id=phone_number_id)
        self.access_token = access_token
        self.timeout = timeout

    def available_for(self, recipient: Recipient) -> bool:
        return bool(recipient.whatsapp_phone)

    async def send(self, recipient: Recipient, message: Message) -> None:
        body = {
            "messaging_product": "whatsapp",
            "to": recipient.whatsapp_phone.lstrip("+"),
            "type": "text",
            "text": {"body": message.plain},
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(
                    self.url,
                    json=body,
                    headers={"Authorization": f"Bearer {self.access_token}"},
                )
                resp.raise_for_status()
        except httpx.HTTPError as e:
            raise ProviderError(f"WhatsApp send to {recipient.whatsapp_phone} failed: {e}") from e
        logger.info(f"WhatsApp notification sent to {recipient.whatsapp_phone}")


class EmailChannel:
    name = "email"

    def __init__(self, api_key: str, sender: str):
        resend.api_key = api_key
        self.sender = sender

    def available_for(self, recipient: Recipient) -> bool:
        return recipient.mailable

    async def send(self, recipient: Recipient, message: Message) -> None:
        email_data = {
            "from": self.sender,
            "to": [recipient.email],
            "subject": message.subject,
            "html": message.email_html,
        }
        try:
            response = await asyncio.to_thread(resend.Emails.send, email_data)
        except ResendError as e:
            raise ProviderError(f"Email send to {recipient.email} failed: {e}") from e
        logger.info(f"Email sent via Resend to {recipient.email}: {response}")


def build_channels(settings, bot: Optional[Bot] = None) -> list[Channel]:
    """Configured channels in fallback order: Telegram, WhatsApp, e-mail."""
    channels: list[Channel] = []
    if bot is None and settings.tg_bot_token:
        bot = Bot(token=settings.tg_bot_token)
    if bot is not None:
        channels.append(TelegramChannel(bot))
    if settings.whatsapp_phone_number_id and settings.whatsapp_access_token:
        channels.append(WhatsAppChannel(
            settings.whatsapp_phone_number_id,
            settings.whatsapp_access_token,
            timeout=settings.provider_timeout_seconds,
        ))
    if settings.resend_api_key:
        channels.append(EmailChannel(settings.resend_api_key, settings.email_from))
    return channels
