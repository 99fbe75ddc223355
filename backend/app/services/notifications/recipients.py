"""
Recipient resolution for appointment notifications.

The customer is the only recipient: identities come from the linked user
account (Telegram / WhatsApp) plus the e-mail on the appointment.
"""

from dataclasses import dataclass
from typing import Optional

# Placeholder addresses created for messaging-only customers
SUPPRESSED_EMAIL_DOMAINS = ("@telegram.local", "@whatsapp.local")


@dataclass
class Recipient:
    name: str
    email: Optional[str] = None
    telegram_id: Optional[int] = None
    whatsapp_phone: Optional[str] = None

    @property
    def mailable(self) -> bool:
        if not self.email:
            return False
        return not self.email.lower().endswith(SUPPRESSED_EMAIL_DOMAINS)


def resolve_recipient(appointment) -> Recipient:
    """Build the customer recipient of an appointment row."""
    user = appointment.user
    return Recipient(
        name=appointment.customer_name,
        email=appointment.customer_email,
        telegram_id=user.telegram_id if user is not None else None,
        whatsapp_phone=user.whatsapp_phone if user is not None else None,
    )
