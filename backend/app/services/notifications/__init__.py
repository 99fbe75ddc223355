from .channels import Channel, EmailChannel, TelegramChannel, WhatsAppChannel, build_channels
from .dispatcher import DeliveryResult, NotificationDispatcher
from .formatters import CANCELLATION, CONFIRMATION, REMINDER, RESCHEDULE, Message, format_message
from .recipients import Recipient, resolve_recipient

__all__ = [
    "Channel",
    "EmailChannel",
    "TelegramChannel",
    "WhatsAppChannel",
    "build_channels",
    "DeliveryResult",
    "NotificationDispatcher",
    "CANCELLATION",
    "CONFIRMATION",
    "REMINDER",
    "RESCHEDULE",
    "Message",
    "format_message",
    "Recipient",
    "resolve_recipient",
]
