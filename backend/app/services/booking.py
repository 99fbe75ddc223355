"""
backend/app/services/booking.py

Booking state machine.

    PENDING_PAYMENT ──paid──▶ SCHEDULED ──sweep──▶ COMPLETED
          │                       │
          └──expired/cancel──▶ CANCELLED ◀──cancel──┘

Create re-checks availability under the stylist/date lock and commits inside
it, so two bookers cannot both win one slot. Calendar sync and customer
notifications run in the worker: this module only emits events after the
state change is committed, and never rolls a transition back because a side
effect failed.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from redis import Redis

from .clock import appointment_start, parse_date, salon_now, utc_now
from .deposits import DepositHoldManager, calculate_amount
from .errors import (
    AppointmentNotFoundError,
    BookingValidationError,
    InvalidTransitionError,
    ProviderError,
    SlotUnavailableError,
)
from .events import (
    APPOINTMENT_CANCELLED,
    APPOINTMENT_CONFIRMED,
    APPOINTMENT_RESCHEDULED,
    EventEmitter,
)
from .locks import LockManager
from .schedule_store import (
    ACTIVE_STATUSES,
    CANCELLED,
    COMPLETED,
    PENDING_PAYMENT,
    SCHEDULED,
    ScheduleStore,
)
from .slots.availability import compute_resource_slots, resolve_resources
from .slots.config import BookingConfig, get_booking_config
from .slots.invalidator import invalidate_slots_cache

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
TIME_RE = re.compile(r"^\d{2}:\d{2}$")


@dataclass
class BookingRequest:
    date: str
    time: str
    service_ids: list[int]
    customer_name: str
    customer_email: str
    stylist_id: Optional[int] = None
    source: str = "web"


@dataclass
class BookingResult:
    appointment: object
    deposit_id: Optional[int] = None
    payment_url: Optional[str] = None


class BookingService:
    def __init__(
        self,
        store: ScheduleStore,
        deposits: DepositHoldManager,
        emitter: EventEmitter,
        locks: LockManager,
        redis: Optional[Redis] = None,
        config: BookingConfig | None = None,
        auto_complete_grace_minutes: int = 60,
    ):
        self.store = store
        self.deposits = deposits
        self.emitter = emitter
        self.locks = locks
        self.redis = redis
        self.config = config or get_booking_config()
        self.auto_complete_grace = timedelta(minutes=auto_complete_grace_minutes)

    def _now(self) -> datetime:
        return salon_now(self.config.timezone)

    # ── Create ───────────────────────────────────────────────────────────

    def create(self, request: BookingRequest, now: datetime | None = None) -> BookingResult:
        """
        Book an appointment.

        Raises:
            BookingValidationError: malformed request, unknown services/stylist
            SlotUnavailableError: slot taken (also when a race is lost)
            ProviderError: deposit required but the payment request failed
        """
        now = now or self._now()
        target_date = self._validate_slot_fields(request.date, request.time, now)
        self._validate_customer(request.customer_name, request.customer_email)

        if not request.service_ids:
            raise BookingValidationError("At least one service is required")
        services = self.store.get_services(request.service_ids)
        if len(services) != len(set(request.service_ids)):
            raise BookingValidationError("Unknown or inactive service")

        duration = sum(s.duration_min for s in services)
        total_price = sum(s.price for s in services)
        service_ids = [s.id for s in services]

        resources = resolve_resources(self.store, request.stylist_id, service_ids)

        email = request.customer_email.strip().lower()
        needs_deposit = self.deposits.requires_deposit(email)
        amount = calculate_amount(total_price, self.deposits.policy().percentage) if needs_deposit else 0
        needs_deposit = needs_deposit and amount > 0
        user = self.store.find_user_by_email(email)

        appointment = None
        deposit = None
        for stylist in resources:
            stylist_id = stylist.id if stylist is not None else None
            with self.locks.slot_lock(stylist_id, target_date):
                free = compute_resource_slots(
                    self.store, target_date, duration, stylist, self.config, now
                )
                if request.time not in free:
                    continue

                appointment = self.store.add_appointment(
                    services,
                    date=target_date.isoformat(),
                    time=request.time,
                    duration_minutes=duration,
                    total_price=total_price,
                    stylist_id=stylist_id,
                    user_id=user.id if user else None,
                    customer_name=request.customer_name.strip(),
                    customer_email=email,
                    status=PENDING_PAYMENT if needs_deposit else SCHEDULED,
                    source=request.source,
                )
                if needs_deposit:
                    deposit = self.deposits.open_hold(appointment, amount)
                self.store.commit()
            break

        if appointment is None:
            logger.info(
                f"Slot {request.date} {request.time} unavailable "
                f"(stylist={request.stylist_id}, duration={duration})"
            )
            raise SlotUnavailableError()

        invalidate_slots_cache(self.redis, [target_date])
        logger.info(
            f"Appointment {appointment.id} created: {appointment.date} {appointment.time} "
            f"stylist={appointment.stylist_id} status={appointment.status}"
        )

        if deposit is None:
            self.emitter.emit(APPOINTMENT_CONFIRMED, {"appointment_id": appointment.id})
            return BookingResult(appointment=appointment)

        try:
            hold = self.deposits.request_payment(appointment, deposit)
        except ProviderError:
            self._abandon_hold(appointment, deposit)
            raise

        return BookingResult(
            appointment=appointment,
            deposit_id=hold.deposit_id,
            payment_url=hold.payment_url,
        )

    def _abandon_hold(self, appointment, deposit) -> None:
        """Release the slot when the payment request could not be created."""
        self.store.rollback()
        if self.store.transition_status(
            appointment.id, [PENDING_PAYMENT], CANCELLED, cancel_reason="payment_setup_failed"
        ):
            self.store.commit()
            self.deposits.forfeit(deposit)
        invalidate_slots_cache(self.redis, [parse_date(appointment.date)])
        logger.error(f"Appointment {appointment.id} released: deposit payment request failed")

    # ── Confirm ──────────────────────────────────────────────────────────

    def confirm_deposit_paid(self, appointment_id: int) -> bool:
        """
        PENDING_PAYMENT → SCHEDULED.

        Returns True if this call made the transition. A repeated signal for
        an appointment that is already SCHEDULED is a no-op.
        """
        appointment = self.store.get_appointment(appointment_id)
        if appointment is None:
            raise AppointmentNotFoundError(f"Appointment {appointment_id} not found")

        if self.store.transition_status(appointment_id, [PENDING_PAYMENT], SCHEDULED):
            self.store.commit()
            logger.info(f"Appointment {appointment_id} confirmed after deposit payment")
            self.emitter.emit(APPOINTMENT_CONFIRMED, {"appointment_id": appointment_id})
            return True

        if appointment.status == CANCELLED:
            logger.warning(
                f"Deposit paid for cancelled appointment {appointment_id} "
                f"(reason={appointment.cancel_reason}); needs admin follow-up"
            )
        else:
            logger.info(f"Appointment {appointment_id} already {appointment.status}, payment signal ignored")
        return False

    def handle_payment_webhook(self, payload: bytes, signature: Optional[str]) -> dict:
        """
        Verify a provider webhook and advance the appointment it pays for.

        Raises:
            WebhookVerificationError: rejected before any state change
        """
        signal = self.deposits.parse_webhook(payload, signature)
        if signal is None:
            return {"status": "ignored"}

        deposit = self.deposits.record_payment(signal)
        if deposit is None:
            return {"status": "unknown_deposit"}

        confirmed = self.confirm_deposit_paid(deposit.appointment_id)
        return {
            "status": "confirmed" if confirmed else "already_processed",
            "appointment_id": deposit.appointment_id,
        }

    # ── Reschedule ───────────────────────────────────────────────────────

    def reschedule(
        self,
        appointment_id: int,
        new_date: str,
        new_time: str,
        customer_email: Optional[str] = None,
        now: datetime | None = None,
    ):
        """
        Move an active appointment to a new date/time with the same stylist.

        Raises:
            AppointmentNotFoundError: unknown id or not owned by customer_email
            InvalidTransitionError: appointment is completed or cancelled
            SlotUnavailableError: new slot is not free
        """
        now = now or self._now()
        appointment = self._get_owned(appointment_id, customer_email)
        if appointment.status not in ACTIVE_STATUSES:
            raise InvalidTransitionError(f"Cannot reschedule a {appointment.status} appointment")

        target_date = self._validate_slot_fields(new_date, new_time, now)
        old_date, old_time = appointment.date, appointment.time
        if (old_date, old_time) == (target_date.isoformat(), new_time):
            return appointment

        stylist = self.store.get_stylist(appointment.stylist_id) if appointment.stylist_id else None
        with self.locks.slot_lock(appointment.stylist_id, target_date):
            free = compute_resource_slots(
                self.store,
                target_date,
                appointment.duration_minutes,
                stylist,
                self.config,
                now,
                exclude_appointment_id=appointment.id,
            )
            if new_time not in free:
                raise SlotUnavailableError()
            self.store.move_appointment(appointment.id, target_date.isoformat(), new_time)
            self.store.commit()

        invalidate_slots_cache(self.redis, sorted({parse_date(old_date), target_date}))
        logger.info(
            f"Appointment {appointment.id} rescheduled: {old_date} {old_time} → "
            f"{appointment.date} {appointment.time}"
        )
        self.emitter.emit(APPOINTMENT_RESCHEDULED, {
            "appointment_id": appointment.id,
            "old_date": old_date,
            "old_time": old_time,
        })
        return appointment

    # ── Cancel ───────────────────────────────────────────────────────────

    def cancel(
        self,
        appointment_id: int,
        customer_email: Optional[str] = None,
        reason: Optional[str] = None,
        now: datetime | None = None,
    ):
        """
        Cancel from any non-terminal state.

        Deposit settlement, calendar cleanup and the notification are
        best-effort and never undo the cancellation. Cancelling an already
        cancelled appointment returns it unchanged.

        Raises:
            AppointmentNotFoundError: unknown id or not owned by customer_email
            InvalidTransitionError: appointment is completed
        """
        now = now or self._now()
        appointment = self._get_owned(appointment_id, customer_email)

        if not self.store.transition_status(
            appointment.id, ACTIVE_STATUSES, CANCELLED, cancel_reason=reason or "cancelled"
        ):
            if appointment.status == CANCELLED:
                return appointment
            raise InvalidTransitionError(f"Cannot cancel a {appointment.status} appointment")
        self.store.commit()
        logger.info(f"Appointment {appointment.id} cancelled (reason={reason})")

        self.deposits.settle_on_cancel(appointment, now)

        invalidate_slots_cache(self.redis, [parse_date(appointment.date)])
        self.emitter.emit(APPOINTMENT_CANCELLED, {
            "appointment_id": appointment.id,
            "stylist_id": appointment.stylist_id,
            "calendar_event_id": appointment.calendar_event_id,
        })
        return appointment

    # ── Sweeps ───────────────────────────────────────────────────────────

    def auto_complete(self, now: datetime | None = None) -> dict:
        """SCHEDULED → COMPLETED once start + grace is in the past."""
        now = now or self._now()
        processed = changed = 0

        for appointment in self.store.list_by_status(SCHEDULED):
            start = appointment_start(appointment.date, appointment.time)
            if start + self.auto_complete_grace >= now:
                continue
            processed += 1
            if self.store.transition_status(appointment.id, [SCHEDULED], COMPLETED):
                self.store.commit()
                changed += 1
                logger.info(f"Appointment {appointment.id} auto-completed")

        return {"processed": processed, "changed": changed}

    def expire_unpaid_holds(self, now_utc: datetime | None = None) -> dict:
        """PENDING_PAYMENT → CANCELLED for holds past their expiry; deposit → FORFEITED."""
        now_utc = now_utc or utc_now()
        processed = changed = 0
        freed: set[date] = set()

        for appointment in self.store.list_by_status(PENDING_PAYMENT):
            if self.deposits.hold_expiry(appointment) > now_utc:
                continue
            processed += 1
            if not self.store.transition_status(
                appointment.id, [PENDING_PAYMENT], CANCELLED, cancel_reason="hold_expired"
            ):
                continue
            self.store.commit()
            changed += 1
            freed.add(parse_date(appointment.date))
            logger.info(f"Appointment {appointment.id} hold expired")
            if appointment.deposit is not None:
                self.deposits.forfeit(appointment.deposit)

        if freed:
            invalidate_slots_cache(self.redis, sorted(freed))
        return {"processed": processed, "changed": changed}

    # ── Helpers ──────────────────────────────────────────────────────────

    def _get_owned(self, appointment_id: int, customer_email: Optional[str]):
        appointment = self.store.get_appointment(appointment_id)
        if appointment is None:
            raise AppointmentNotFoundError(f"Appointment {appointment_id} not found")
        if customer_email is not None and appointment.customer_email.lower() != customer_email.strip().lower():
            raise AppointmentNotFoundError(f"Appointment {appointment_id} not found")
        return appointment

    @staticmethod
    def _validate_slot_fields(date_str: str, time_str: str, now: datetime) -> date:
        try:
            target_date = datetime.strptime(date_str, "%Y-%m-%d").date()
        except (TypeError, ValueError):
            raise BookingValidationError("Date must be in YYYY-MM-DD format")
        if not time_str or not TIME_RE.match(time_str):
            raise BookingValidationError("Time must be in HH:MM format")
        hours, minutes = map(int, time_str.split(":"))
        if hours > 23 or minutes > 59:
            raise BookingValidationError("Time must be in HH:MM format")
        if target_date < now.date():
            raise BookingValidationError("Cannot book a date in the past")
        return target_date

    @staticmethod
    def _validate_customer(name: str, email: str) -> None:
        if not name or not name.strip():
            raise BookingValidationError("Customer name is required")
        if not email or not EMAIL_RE.match(email.strip()):
            raise BookingValidationError("A valid customer email is required")
