"""
Unit tests for the periodic sweeps: reminders, auto-complete, hold expiry.
"""

from datetime import datetime, timedelta

import pytest

from backend.app.services.clock import utc_now
from backend.app.services.completion_checker import run_auto_complete
from backend.app.services.hold_checker import run_hold_expiry
from backend.app.services.locks import LockManager
from backend.app.services.notifications import NotificationDispatcher
from backend.app.services.reminder_checker import run_reminders
from backend.app.services.schedule_store import CANCELLED, COMPLETED

from tests.fakes import DAY, MORNING, FakeChannel


def _dispatcher(email_fails=False):
    return NotificationDispatcher([FakeChannel("email", "email", fail=email_fails)])


class TestReminders:
    @pytest.mark.asyncio
    async def test_sends_once_per_appointment(self, book, store, locks):
        appt = book("10:00").appointment
        dispatcher = _dispatcher()

        first = await run_reminders(store, dispatcher, locks, MORNING, send_delay=0)
        second = await run_reminders(store, dispatcher, locks, MORNING, send_delay=0)

        assert first == {"processed": 1, "sent": 1, "failed": 0, "skipped": False}
        assert second == {"processed": 0, "sent": 0, "failed": 0, "skipped": False}
        assert appt.reminder_sent == 1
        assert appt.reminder_sent_at is not None

    @pytest.mark.asyncio
    async def test_failed_send_is_retried_next_run(self, book, store, locks):
        appt = book("10:00").appointment

        failed = await run_reminders(store, _dispatcher(email_fails=True), locks, MORNING, send_delay=0)
        assert failed == {"processed": 1, "sent": 0, "failed": 1, "skipped": False}
        assert appt.reminder_sent == 0

        retried = await run_reminders(store, _dispatcher(), locks, MORNING, send_delay=0)
        assert retried["sent"] == 1

    @pytest.mark.asyncio
    async def test_only_appointments_inside_lookahead(self, book, store, locks):
        book("10:00")
        book("10:00", day=(DAY + timedelta(days=2)).isoformat(), email="dave@example.com")

        counts = await run_reminders(store, _dispatcher(), locks, MORNING, lookahead_hours=24, send_delay=0)

        assert counts["processed"] == 1

    @pytest.mark.asyncio
    async def test_started_appointments_skipped(self, book, store, locks):
        book("10:00")

        counts = await run_reminders(store, _dispatcher(), locks, datetime(2030, 1, 7, 10, 30), send_delay=0)

        assert counts["processed"] == 0

    @pytest.mark.asyncio
    async def test_cancelled_not_reminded(self, book, booking, store, locks):
        appt = book("10:00").appointment
        booking.cancel(appt.id, now=MORNING)

        counts = await run_reminders(store, _dispatcher(), locks, MORNING, send_delay=0)

        assert counts["processed"] == 0

    @pytest.mark.asyncio
    async def test_run_started_mid_send_does_not_resend(self, book, store, locks):
        """A second run (sweep lock already expired) must skip a reminder still being sent."""
        appt = book("10:00").appointment
        overlapping = []

        class SlowChannel(FakeChannel):
            async def send(self, recipient, message):
                if not overlapping:
                    overlapping.append(await run_reminders(
                        store, NotificationDispatcher([self]), LockManager(), MORNING, send_delay=0,
                    ))
                await super().send(recipient, message)

        channel = SlowChannel("email", "email")

        counts = await run_reminders(store, NotificationDispatcher([channel]), locks, MORNING, send_delay=0)

        assert counts["sent"] == 1
        assert overlapping == [{"processed": 0, "sent": 0, "failed": 0, "skipped": False}]
        assert len(channel.sent) == 1
        assert appt.reminder_sent == 1

    @pytest.mark.asyncio
    async def test_overlapping_run_skipped(self, book, store, locks):
        book("10:00")

        with locks.try_sweep_lock("reminders"):
            counts = await run_reminders(store, _dispatcher(), locks, MORNING, send_delay=0)

        assert counts == {"processed": 0, "sent": 0, "failed": 0, "skipped": True}


class TestAutoCompleteSweep:
    def test_completes_past_appointments(self, book, booking, locks):
        appt = book("10:00").appointment

        counts = run_auto_complete(booking, locks, now=datetime(2030, 1, 7, 12, 0))

        assert counts == {"processed": 1, "changed": 1, "failed": 0, "skipped": False}
        assert appt.status == COMPLETED

    def test_overlapping_run_skipped(self, booking, locks, salon):
        with locks.try_sweep_lock("auto-complete"):
            assert run_auto_complete(booking, locks)["skipped"] is True


class TestHoldExpirySweep:
    def test_expires_lapsed_holds(self, book, booking, store, db, locks):
        store.update_deposit_policy(deposit_enabled=1, deposit_percentage=20, deposit_trust_threshold=1)
        db.commit()
        appt = book("10:00").appointment

        counts = run_hold_expiry(booking, locks, now_utc=utc_now() + timedelta(minutes=16))

        assert counts == {"processed": 1, "changed": 1, "failed": 0, "skipped": False}
        assert appt.status == CANCELLED

    def test_overlapping_run_skipped(self, booking, locks, salon):
        with locks.try_sweep_lock("hold-expiry"):
            assert run_hold_expiry(booking, locks)["skipped"] is True
