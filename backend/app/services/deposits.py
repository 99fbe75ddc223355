"""
backend/app/services/deposits.py

Deposit hold manager.

Policy (admin_settings row):
- deposits enabled flag
- percentage of the appointment total
- trust threshold: customers with at least this many completed visits
  book without a deposit

A hold is a PENDING deposit row created in the same transaction as the
PENDING_PAYMENT appointment; the Stripe Checkout Session is requested
afterwards, outside the booking lock.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from .clock import appointment_start, format_ts, parse_ts, utc_now
from .errors import ProviderError
from .payments import StripeDepositProvider
from .schedule_store import (
    DEPOSIT_FORFEITED,
    DEPOSIT_PAID,
    DEPOSIT_PENDING,
    DEPOSIT_REFUNDED,
    ScheduleStore,
)

logger = logging.getLogger(__name__)

PAYMENT_EVENTS = ("checkout.session.completed", "payment_intent.succeeded")


@dataclass(frozen=True)
class DepositPolicy:
    enabled: bool
    percentage: int
    trust_threshold: int


@dataclass(frozen=True)
class HoldResult:
    deposit_id: int
    payment_url: str


@dataclass(frozen=True)
class PaymentSignal:
    """A verified "deposit paid" notification from the provider."""
    event_type: str
    deposit_id: Optional[int]
    session_id: Optional[str]
    payment_intent_id: Optional[str]


def calculate_amount(total_price: int, percentage: int) -> int:
    """
    Deposit in minor units: total * percentage / 100, rounded up.

    Integer arithmetic only, so the result never carries fractional units.
    """
    if total_price < 0 or percentage < 0:
        raise ValueError("total_price and percentage must be non-negative")
    return (total_price * percentage + 99) // 100


class DepositHoldManager:
    def __init__(
        self,
        store: ScheduleStore,
        provider: StripeDepositProvider,
        hold_timeout_minutes: int = 15,
        refund_window_hours: int = 24,
        currency: str = "sgd",
    ):
        self.store = store
        self.provider = provider
        self.hold_timeout = timedelta(minutes=hold_timeout_minutes)
        self.refund_window = timedelta(hours=refund_window_hours)
        self.currency = currency

    # ── Policy ───────────────────────────────────────────────────────────

    def policy(self) -> DepositPolicy:
        row = self.store.get_deposit_policy()
        return DepositPolicy(
            enabled=bool(row.deposit_enabled),
            percentage=row.deposit_percentage,
            trust_threshold=row.deposit_trust_threshold,
        )

    def requires_deposit(self, customer_email: str) -> bool:
        """First-time customers pay a deposit; trusted returning customers do not."""
        policy = self.policy()
        if not policy.enabled or policy.percentage <= 0:
            return False
        visits = self.store.count_completed_visits(customer_email)
        return visits < policy.trust_threshold

    # ── Hold lifecycle ───────────────────────────────────────────────────

    def open_hold(self, appointment, amount: int):
        """Persist the PENDING deposit for a PENDING_PAYMENT appointment (caller commits)."""
        expires_at = utc_now() + self.hold_timeout
        deposit = self.store.add_deposit(
            appointment_id=appointment.id,
            amount=amount,
            currency=self.currency,
            expires_at=format_ts(expires_at),
        )
        logger.info(
            f"Deposit {deposit.id} opened for appointment {appointment.id}: "
            f"{amount} {self.currency}, expires {deposit.expires_at}"
        )
        return deposit

    def request_payment(self, appointment, deposit) -> HoldResult:
        """
        Create the external payment request for an open hold.

        Raises:
            ProviderError: Stripe failed; the hold cannot be completed
        """
        services = ", ".join(s.name for s in appointment.services) or "Appointment"
        session = self.provider.create_checkout(
            deposit_id=deposit.id,
            appointment_id=appointment.id,
            amount=deposit.amount,
            customer_email=appointment.customer_email,
            description=f"Deposit: {services} on {appointment.date} {appointment.time}",
            expires_at=parse_ts(deposit.expires_at),
        )
        self.store.update_deposit(
            deposit.id,
            checkout_session_id=session.session_id,
            payment_url=session.url,
        )
        self.store.commit()
        return HoldResult(deposit_id=deposit.id, payment_url=session.url)

    def hold_expiry(self, appointment) -> datetime:
        """Naive UTC moment the hold lapses."""
        deposit = appointment.deposit
        if deposit is not None:
            return parse_ts(deposit.expires_at)
        return parse_ts(appointment.created_at) + self.hold_timeout

    def forfeit(self, deposit) -> bool:
        """PENDING → FORFEITED; closes the Checkout Session best-effort."""
        if not self.store.transition_deposit(deposit.id, [DEPOSIT_PENDING], DEPOSIT_FORFEITED):
            return False
        self.store.commit()
        logger.info(f"Deposit {deposit.id} forfeited")

        if deposit.checkout_session_id:
            try:
                self.provider.expire_checkout(deposit.checkout_session_id)
            except ProviderError as e:
                logger.warning(f"Could not expire checkout for deposit {deposit.id}: {e}")
        return True

    def settle_on_cancel(self, appointment, now_local: datetime) -> Optional[str]:
        """
        Settle the deposit of a cancelled appointment.

        - unpaid hold → FORFEITED
        - paid, cancelled at least refund_window before start → refunded
        - paid, later cancellation → FORFEITED

        Returns the resulting deposit status, or None without a deposit.
        Provider failures are logged; the deposit then stays PAID.
        """
        deposit = appointment.deposit
        if deposit is None:
            return None

        if deposit.status == DEPOSIT_PENDING:
            self.forfeit(deposit)
            return deposit.status

        if deposit.status != DEPOSIT_PAID:
            return deposit.status

        start = appointment_start(appointment.date, appointment.time)
        if start - now_local < self.refund_window or not deposit.payment_intent_id:
            if self.store.transition_deposit(deposit.id, [DEPOSIT_PAID], DEPOSIT_FORFEITED):
                self.store.commit()
                logger.info(f"Deposit {deposit.id} forfeited on late cancellation")
            return deposit.status

        try:
            self.provider.refund(deposit.payment_intent_id)
        except ProviderError as e:
            logger.error(f"Refund of deposit {deposit.id} failed, left PAID for manual handling: {e}")
            return deposit.status

        if self.store.transition_deposit(deposit.id, [DEPOSIT_PAID], DEPOSIT_REFUNDED):
            self.store.commit()
            logger.info(f"Deposit {deposit.id} refunded")
        return deposit.status

    # ── Webhook ──────────────────────────────────────────────────────────

    def parse_webhook(self, payload: bytes, signature: Optional[str]) -> Optional[PaymentSignal]:
        """
        Verify the webhook and extract a payment signal.

        Returns None for event types that do not confirm a deposit.

        Raises:
            WebhookVerificationError: signature check failed
        """
        event = self.provider.verify_webhook(payload, signature)
        event_type = event.get("type")
        if event_type not in PAYMENT_EVENTS:
            logger.info(f"Ignoring webhook event {event_type}")
            return None

        obj = event.get("data", {}).get("object", {}) or {}
        if event_type == "checkout.session.completed" and obj.get("payment_status") == "unpaid":
            logger.info(f"Checkout {obj.get('id')} completed without payment yet")
            return None

        metadata = obj.get("metadata") or {}
        raw_deposit_id = metadata.get("deposit_id")
        try:
            deposit_id = int(raw_deposit_id) if raw_deposit_id is not None else None
        except (TypeError, ValueError):
            deposit_id = None

        if event_type == "checkout.session.completed":
            session_id = obj.get("id")
            payment_intent_id = obj.get("payment_intent")
        else:
            session_id = None
            payment_intent_id = obj.get("id")

        return PaymentSignal(
            event_type=event_type,
            deposit_id=deposit_id,
            session_id=session_id,
            payment_intent_id=payment_intent_id,
        )

    def record_payment(self, signal: PaymentSignal):
        """
        Mark the deposit PAID. Idempotent.

        Returns the deposit row, or None when the signal matches no deposit.
        """
        deposit = None
        if signal.deposit_id is not None:
            deposit = self.store.get_deposit(signal.deposit_id)
        if deposit is None and signal.session_id:
            deposit = self.store.get_deposit_by_session(signal.session_id)
        if deposit is None:
            logger.warning(f"Payment webhook {signal.event_type} matches no deposit: {signal}")
            return None

        fields = {"paid_at": format_ts(utc_now())}
        if signal.payment_intent_id:
            fields["payment_intent_id"] = signal.payment_intent_id

        if self.store.transition_deposit(deposit.id, [DEPOSIT_PENDING, DEPOSIT_FORFEITED], DEPOSIT_PAID, **fields):
            self.store.commit()
            logger.info(f"Deposit {deposit.id} paid ({signal.event_type})")
        elif signal.payment_intent_id and not deposit.payment_intent_id:
            self.store.update_deposit(deposit.id, payment_intent_id=signal.payment_intent_id)
            self.store.commit()
        return deposit
