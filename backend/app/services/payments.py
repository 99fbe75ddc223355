"""
backend/app/services/payments.py

Stripe integration for booking deposits.

- Checkout Session creation (hosted payment page for the deposit)
- Webhook signature verification
- Session expiry and refunds

Every SDK call is bounded by the provider timeout and surfaces failures as
ProviderError.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import stripe

from .errors import ProviderError, WebhookVerificationError
from .timeouts import call_with_timeout

logger = logging.getLogger(__name__)

# Stripe rejects Checkout Sessions expiring sooner than 30 minutes
MIN_SESSION_LIFETIME = timedelta(minutes=30)


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    url: str


class StripeDepositProvider:
    """Deposit payments through Stripe Checkout."""

    def __init__(
        self,
        secret_key: str,
        webhook_secret: str,
        currency: str = "sgd",
        public_base_url: str = "http://localhost:3000",
        timeout: float = 10.0,
    ):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.currency = currency
        self.public_base_url = public_base_url.rstrip("/")
        self.timeout = timeout

    def create_checkout(
        self,
        deposit_id: int,
        appointment_id: int,
        amount: int,
        customer_email: str,
        description: str,
        expires_at: datetime,
    ) -> CheckoutSession:
        """
        Create a Checkout Session for a deposit.

        Args:
            amount: Minor currency units (must be positive)
            expires_at: Naive UTC hold expiry

        Raises:
            ValueError: invalid amount
            ProviderError: Stripe call failed or timed out
        """
        if amount <= 0:
            raise ValueError(f"Invalid deposit amount: {amount}")

        metadata = {
            "deposit_id": str(deposit_id),
            "appointment_id": str(appointment_id),
        }
        session_expiry = max(
            expires_at.replace(tzinfo=timezone.utc),
            datetime.now(timezone.utc) + MIN_SESSION_LIFETIME + timedelta(minutes=1),
        )

        try:
            session = call_with_timeout(
                stripe.checkout.Session.create,
                api_key=self.secret_key,
                mode="payment",
                customer_email=customer_email,
                line_items=[{
                    "quantity": 1,
                    "price_data": {
                        "currency": self.currency,
                        "unit_amount": amount,
                        "product_data": {"name": description},
                    },
                }],
                metadata=metadata,
                payment_intent_data={"metadata": metadata},
                expires_at=int(session_expiry.timestamp()),
                success_url=f"{self.public_base_url}/booking/success?appointment={appointment_id}",
                cancel_url=f"{self.public_base_url}/booking/cancelled?appointment={appointment_id}",
                timeout=self.timeout,
                label="stripe.checkout.Session.create",
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe error creating checkout for deposit {deposit_id}: {e}")
            raise ProviderError(f"Payment provider error: {e}") from e

        logger.info(f"Created checkout session {session.id} for deposit {deposit_id}")
        return CheckoutSession(session_id=session.id, url=session.url)

    def verify_webhook(self, payload: bytes, signature: Optional[str]) -> dict:
        """
        Verify a webhook payload and return the event as a dict.

        Raises:
            WebhookVerificationError: missing/invalid signature or payload
        """
        if not self.webhook_secret:
            raise WebhookVerificationError("Webhook secret is not configured")
        if not signature:
            raise WebhookVerificationError("Missing Stripe-Signature header")

        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Webhook signature verification failed: {e}")
            raise WebhookVerificationError("Invalid signature") from e
        except ValueError as e:
            logger.warning(f"Webhook payload is not valid JSON: {e}")
            raise WebhookVerificationError("Invalid payload") from e

        # Signature covers the raw body, so the parsed JSON is trusted
        return json.loads(payload)

    def expire_checkout(self, session_id: str) -> None:
        """Close an unpaid Checkout Session. Raises ProviderError."""
        try:
            call_with_timeout(
                stripe.checkout.Session.expire,
                session_id,
                api_key=self.secret_key,
                timeout=self.timeout,
                label="stripe.checkout.Session.expire",
            )
        except stripe.StripeError as e:
            raise ProviderError(f"Failed to expire checkout {session_id}: {e}") from e
        logger.info(f"Expired checkout session {session_id}")

    def refund(self, payment_intent_id: str) -> str:
        """Refund a paid deposit in full. Returns the refund id. Raises ProviderError."""
        try:
            refund = call_with_timeout(
                stripe.Refund.create,
                api_key=self.secret_key,
                payment_intent=payment_intent_id,
                timeout=self.timeout,
                label="stripe.Refund.create",
            )
        except stripe.StripeError as e:
            raise ProviderError(f"Refund failed for {payment_intent_id}: {e}") from e
        logger.info(f"Refunded payment {payment_intent_id}: {refund.id}")
        return refund.id
