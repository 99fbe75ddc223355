"""
Unit tests for the booking state machine.
"""

from datetime import datetime, timedelta

import pytest

from backend.app.services.booking import BookingRequest
from backend.app.services.clock import utc_now
from backend.app.services.errors import (
    AppointmentNotFoundError,
    BookingValidationError,
    InvalidTransitionError,
    ProviderError,
    SlotUnavailableError,
    WebhookVerificationError,
)
from backend.app.services.events import (
    APPOINTMENT_CANCELLED,
    APPOINTMENT_CONFIRMED,
    APPOINTMENT_RESCHEDULED,
)
from backend.app.services.schedule_store import (
    CANCELLED,
    COMPLETED,
    DEPOSIT_FORFEITED,
    DEPOSIT_PAID,
    DEPOSIT_PENDING,
    PENDING_PAYMENT,
    SCHEDULED,
)
from backend.app.services.slots import compute_slots

from tests.fakes import DAY, DAY_STR, MORNING, checkout_completed


@pytest.fixture
def deposit_policy(store, salon, db):
    """Deposits on: 20% for customers without a completed visit."""
    store.update_deposit_policy(deposit_enabled=1, deposit_percentage=20, deposit_trust_threshold=1)
    db.commit()


def _free(store, salon, config, stylist="alice", duration=30, now=MORNING):
    return compute_slots(store, DAY, duration, stylist_id=salon[stylist].id, config=config, now=now)


class TestCreate:
    def test_without_deposit_is_scheduled_and_confirmed(self, book, emitter):
        result = book("10:00")

        appt = result.appointment
        assert appt.status == SCHEDULED
        assert appt.duration_minutes == 30
        assert appt.total_price == 5000
        assert result.payment_url is None
        assert emitter.of_type(APPOINTMENT_CONFIRMED) == [{"appointment_id": appt.id}]

    def test_booked_slot_disappears(self, book, store, salon, config):
        book("10:00")

        assert "10:00" not in _free(store, salon, config)

    def test_same_slot_twice_is_unavailable(self, book, emitter):
        book("10:00")

        with pytest.raises(SlotUnavailableError) as exc:
            book("10:00", email="dave@example.com")

        assert "no longer available" in str(exc.value)
        assert len(emitter.of_type(APPOINTMENT_CONFIRMED)) == 1

    def test_any_stylist_assigns_first_free_capable_stylist(self, book, salon):
        first = book("10:00", stylist=None)
        second = book("10:00", stylist=None, email="dave@example.com")

        assert first.appointment.stylist_id == salon["alice"].id
        assert second.appointment.stylist_id == salon["bob"].id

        with pytest.raises(SlotUnavailableError):
            book("10:00", stylist=None, email="erin@example.com")

    def test_multiple_services_sum_duration_and_price(self, booking, salon):
        request = BookingRequest(
            date=DAY_STR,
            time="10:00",
            service_ids=[salon["cut"].id, salon["colour"].id],
            customer_name="Carol",
            customer_email="carol@example.com",
            stylist_id=salon["alice"].id,
        )

        appt = booking.create(request, now=MORNING).appointment

        assert appt.duration_minutes == 90
        assert appt.total_price == 13000
        assert sorted(s.name for s in appt.services) == ["Colour", "Haircut"]

    def test_stylist_without_the_service_rejected(self, book):
        with pytest.raises(BookingValidationError):
            book("10:00", service="colour", stylist="bob")

    def test_linked_user_found_by_email(self, book, telegram_user):
        appt = book("10:00", email="TINA@example.com").appointment

        assert appt.user_id == telegram_user.id
        assert appt.customer_email == "tina@example.com"

    @pytest.mark.parametrize("field,value", [
        ("date", "07/01/2030"),
        ("time", "9am"),
        ("time", "25:00"),
        ("customer_name", "  "),
        ("customer_email", "not-an-email"),
        ("service_ids", []),
        ("service_ids", [999]),
    ])
    def test_invalid_input_rejected(self, booking, salon, field, value):
        fields = {
            "date": DAY_STR,
            "time": "10:00",
            "service_ids": [salon["cut"].id],
            "customer_name": "Carol",
            "customer_email": "carol@example.com",
            field: value,
        }

        with pytest.raises(BookingValidationError):
            booking.create(BookingRequest(**fields), now=MORNING)

    def test_past_date_rejected(self, book):
        with pytest.raises(BookingValidationError):
            book("10:00", day=(DAY - timedelta(days=1)).isoformat())

    def test_started_slot_today_unavailable(self, booking, salon):
        request = BookingRequest(
            date=DAY_STR,
            time="09:00",
            service_ids=[salon["cut"].id],
            customer_name="Carol",
            customer_email="carol@example.com",
            stylist_id=salon["alice"].id,
        )

        with pytest.raises(SlotUnavailableError):
            booking.create(request, now=datetime(2030, 1, 7, 9, 15))


class TestDepositFlow:
    def test_first_time_customer_holds_slot_pending_payment(self, book, provider, emitter, deposit_policy):
        result = book("10:00")

        appt = result.appointment
        assert appt.status == PENDING_PAYMENT
        assert appt.deposit.status == DEPOSIT_PENDING
        assert appt.deposit.amount == 1000
        assert result.deposit_id == appt.deposit.id
        assert result.payment_url == f"https://checkout.stripe.test/cs_test_{result.deposit_id}"
        assert provider.checkouts[0]["amount"] == 1000
        assert emitter.of_type(APPOINTMENT_CONFIRMED) == []

    def test_hold_blocks_slot_for_others(self, book, deposit_policy):
        book("10:00")

        with pytest.raises(SlotUnavailableError):
            book("10:00", email="dave@example.com")

    def test_webhook_confirms_exactly_once(self, book, booking, emitter, deposit_policy):
        result = book("10:00")
        payload = checkout_completed(result.deposit_id)

        first = booking.handle_payment_webhook(payload, "valid")
        second = booking.handle_payment_webhook(payload, "valid")

        appt = result.appointment
        assert first == {"status": "confirmed", "appointment_id": appt.id}
        assert second == {"status": "already_processed", "appointment_id": appt.id}
        assert appt.status == SCHEDULED
        assert appt.deposit.status == DEPOSIT_PAID
        assert appt.deposit.payment_intent_id == f"pi_test_{result.deposit_id}"
        assert emitter.of_type(APPOINTMENT_CONFIRMED) == [{"appointment_id": appt.id}]

    def test_webhook_with_bad_signature_changes_nothing(self, book, booking, deposit_policy):
        result = book("10:00")

        with pytest.raises(WebhookVerificationError):
            booking.handle_payment_webhook(checkout_completed(result.deposit_id), "forged")

        assert result.appointment.status == PENDING_PAYMENT

    def test_unpaid_checkout_completion_ignored(self, book, booking, deposit_policy):
        result = book("10:00")

        outcome = booking.handle_payment_webhook(
            checkout_completed(result.deposit_id, payment_status="unpaid"), "valid"
        )

        assert outcome == {"status": "ignored"}
        assert result.appointment.status == PENDING_PAYMENT

    def test_webhook_for_unknown_deposit(self, booking, salon, deposit_policy):
        assert booking.handle_payment_webhook(checkout_completed(4242), "valid") == {"status": "unknown_deposit"}

    def test_confirm_deposit_paid_is_idempotent(self, book, booking, emitter, deposit_policy):
        appt = book("10:00").appointment

        assert booking.confirm_deposit_paid(appt.id) is True
        assert booking.confirm_deposit_paid(appt.id) is False
        assert len(emitter.of_type(APPOINTMENT_CONFIRMED)) == 1

    def test_confirm_unknown_appointment(self, booking):
        with pytest.raises(AppointmentNotFoundError):
            booking.confirm_deposit_paid(12345)

    def test_provider_failure_releases_hold(self, book, provider, store, salon, config, deposit_policy):
        provider.fail_checkout = True

        with pytest.raises(ProviderError):
            book("10:00")

        appt = store.list_by_status(CANCELLED)[0]
        assert appt.cancel_reason == "payment_setup_failed"
        assert appt.deposit.status == DEPOSIT_FORFEITED
        assert "10:00" in _free(store, salon, config)

    def test_trusted_customer_books_without_deposit(self, book, booking, deposit_policy):
        first = book("10:00").appointment
        booking.confirm_deposit_paid(first.id)
        booking.auto_complete(now=datetime(2030, 1, 7, 12, 0))

        second = book("14:00")

        assert second.appointment.status == SCHEDULED
        assert second.payment_url is None

    def test_expired_hold_frees_the_slot(self, book, booking, provider, store, salon, config, deposit_policy):
        result = book("10:00")

        counts = booking.expire_unpaid_holds(now_utc=utc_now() + timedelta(minutes=16))

        appt = result.appointment
        assert counts == {"processed": 1, "changed": 1}
        assert appt.status == CANCELLED
        assert appt.cancel_reason == "hold_expired"
        assert appt.deposit.status == DEPOSIT_FORFEITED
        assert provider.expired == [f"cs_test_{result.deposit_id}"]
        assert "10:00" in _free(store, salon, config)

    def test_live_hold_not_expired(self, book, booking, deposit_policy):
        result = book("10:00")

        assert booking.expire_unpaid_holds(now_utc=utc_now()) == {"processed": 0, "changed": 0}
        assert result.appointment.status == PENDING_PAYMENT

    def test_late_payment_on_expired_hold_not_rescheduled(self, book, booking, emitter, deposit_policy):
        result = book("10:00")
        booking.expire_unpaid_holds(now_utc=utc_now() + timedelta(minutes=16))

        outcome = booking.handle_payment_webhook(checkout_completed(result.deposit_id), "valid")

        assert outcome["status"] == "already_processed"
        assert result.appointment.status == CANCELLED
        assert result.appointment.deposit.status == DEPOSIT_PAID
        assert emitter.of_type(APPOINTMENT_CONFIRMED) == []


class TestReschedule:
    def test_moves_and_emits_old_slot(self, book, booking, emitter, store, salon, config):
        appt = book("10:00").appointment

        booking.reschedule(appt.id, DAY_STR, "14:00", now=MORNING)

        assert (appt.date, appt.time) == (DAY_STR, "14:00")
        assert emitter.of_type(APPOINTMENT_RESCHEDULED) == [
            {"appointment_id": appt.id, "old_date": DAY_STR, "old_time": "10:00"}
        ]
        free = _free(store, salon, config)
        assert "10:00" in free
        assert "14:00" not in free

    def test_overlapping_own_slot_allowed(self, book, booking):
        appt = book("10:00", service="colour").appointment

        booking.reschedule(appt.id, DAY_STR, "10:30", now=MORNING)

        assert appt.time == "10:30"

    def test_conflict_leaves_original_unchanged(self, book, booking, emitter):
        book("14:00", email="dave@example.com")
        appt = book("10:00").appointment

        with pytest.raises(SlotUnavailableError):
            booking.reschedule(appt.id, DAY_STR, "14:00", now=MORNING)

        assert appt.time == "10:00"
        assert emitter.of_type(APPOINTMENT_RESCHEDULED) == []

    def test_same_slot_is_noop(self, book, booking, emitter):
        appt = book("10:00").appointment

        booking.reschedule(appt.id, DAY_STR, "10:00", now=MORNING)

        assert emitter.of_type(APPOINTMENT_RESCHEDULED) == []

    def test_reminder_flag_reset(self, book, booking, store, db):
        appt = book("10:00").appointment
        store.mark_reminder_sent(appt.id)
        db.commit()

        booking.reschedule(appt.id, DAY_STR, "15:00", now=MORNING)

        assert appt.reminder_sent == 0

    def test_other_customer_cannot_reschedule(self, book, booking):
        appt = book("10:00").appointment

        with pytest.raises(AppointmentNotFoundError):
            booking.reschedule(appt.id, DAY_STR, "14:00", customer_email="mallory@example.com", now=MORNING)

    def test_cancelled_cannot_be_rescheduled(self, book, booking):
        appt = book("10:00").appointment
        booking.cancel(appt.id, now=MORNING)

        with pytest.raises(InvalidTransitionError):
            booking.reschedule(appt.id, DAY_STR, "14:00", now=MORNING)


class TestCancel:
    def test_cancel_frees_slot_and_emits(self, book, booking, emitter, store, salon, config):
        appt = book("10:00").appointment

        booking.cancel(appt.id, customer_email="carol@example.com", reason="customer", now=MORNING)

        assert appt.status == CANCELLED
        assert appt.cancel_reason == "customer"
        assert "10:00" in _free(store, salon, config)
        assert emitter.of_type(APPOINTMENT_CANCELLED) == [
            {"appointment_id": appt.id, "stylist_id": salon["alice"].id, "calendar_event_id": None}
        ]

    def test_cancel_twice_is_idempotent(self, book, booking, emitter):
        appt = book("10:00").appointment

        booking.cancel(appt.id, now=MORNING)
        again = booking.cancel(appt.id, now=MORNING)

        assert again.status == CANCELLED
        assert len(emitter.of_type(APPOINTMENT_CANCELLED)) == 1

    def test_completed_cannot_be_cancelled(self, book, booking):
        appt = book("10:00").appointment
        booking.auto_complete(now=datetime(2030, 1, 7, 12, 0))

        with pytest.raises(InvalidTransitionError):
            booking.cancel(appt.id, now=MORNING)

    def test_unknown_appointment(self, booking):
        with pytest.raises(AppointmentNotFoundError):
            booking.cancel(777)

    def test_pending_hold_cancel_forfeits_deposit(self, book, booking, deposit_policy):
        appt = book("10:00").appointment

        booking.cancel(appt.id, now=MORNING)

        assert appt.status == CANCELLED
        assert appt.deposit.status == DEPOSIT_FORFEITED


class TestAutoComplete:
    def test_completes_after_grace_period(self, book, booking):
        appt = book("10:00").appointment

        assert booking.auto_complete(now=datetime(2030, 1, 7, 10, 59)) == {"processed": 0, "changed": 0}
        assert booking.auto_complete(now=datetime(2030, 1, 7, 11, 30)) == {"processed": 1, "changed": 1}
        assert appt.status == COMPLETED

    def test_pending_payment_not_completed(self, book, booking, deposit_policy):
        appt = book("10:00").appointment

        booking.auto_complete(now=datetime(2030, 1, 8, 12, 0))

        assert appt.status == PENDING_PAYMENT

    def test_no_event_emitted(self, book, booking, emitter):
        book("10:00")
        emitter.events.clear()

        booking.auto_complete(now=datetime(2030, 1, 7, 12, 0))

        assert emitter.events == []
