"""
HTTP-level tests: routing, validation and the domain error → status mapping.

The app runs against the in-memory database and recording fakes; the
lifespan (init_db) is not triggered.
"""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from backend.app.config import settings
from backend.app.database import get_db
from backend.app.dependencies import (
    get_calendar_client,
    get_dispatcher,
    get_emitter,
    get_locks,
    get_payment_provider,
    get_redis,
)
from backend.app.main import app
from backend.app.services.events import APPOINTMENT_CONFIRMED
from backend.app.services.notifications import NotificationDispatcher

from tests.fakes import DAY_STR, FakeChannel, checkout_completed

INTERNAL_TOKEN = "sweep-secret"


@pytest.fixture
def calendar_client():
    return MagicMock()


@pytest.fixture
def client(db, salon, emitter, provider, locks, calendar_client, monkeypatch):
    monkeypatch.setattr(settings, "internal_token", INTERNAL_TOKEN)
    monkeypatch.setattr(settings, "reminder_send_delay_seconds", 0)

    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_redis] = lambda: None
    app.dependency_overrides[get_locks] = lambda: locks
    app.dependency_overrides[get_emitter] = lambda: emitter
    app.dependency_overrides[get_payment_provider] = lambda: provider
    app.dependency_overrides[get_calendar_client] = lambda: calendar_client
    app.dependency_overrides[get_dispatcher] = lambda: NotificationDispatcher([FakeChannel("email", "email")])
    yield TestClient(app)
    app.dependency_overrides.clear()


def _booking_body(salon, time="10:00", email="carol@example.com", **extra):
    return {
        "date": DAY_STR,
        "time": time,
        "service_ids": [salon["cut"].id],
        "customer_name": "Carol",
        "customer_email": email,
        "stylist_id": salon["alice"].id,
        **extra,
    }


class TestSlotsEndpoint:
    def test_lists_slots_for_services(self, client, salon):
        resp = client.get("/slots", params={
            "date": DAY_STR,
            "service_ids": [salon["cut"].id],
            "stylist_id": salon["alice"].id,
        })

        assert resp.status_code == 200
        body = resp.json()
        assert body["duration_minutes"] == 30
        assert body["slots"][0] == "09:00"
        assert body["slots"][-1] == "16:30"

    def test_duration_or_services_required(self, client):
        assert client.get("/slots", params={"date": DAY_STR}).status_code == 422

    def test_stylist_lacking_the_service_gets_422(self, client, salon):
        params = {"date": DAY_STR, "service_ids": [salon["colour"].id], "stylist_id": salon["bob"].id}

        resp = client.get("/slots", params=params)

        assert resp.status_code == 422
        booked = client.post("/appointments", json={
            **_booking_body(salon, time="09:00"),
            "service_ids": [salon["colour"].id],
            "stylist_id": salon["bob"].id,
        })
        assert booked.status_code == 422

    def test_unknown_stylist(self, client):
        resp = client.get("/slots", params={"date": DAY_STR, "duration": 30, "stylist_id": 999})

        assert resp.status_code == 422


class TestAppointmentsEndpoint:
    def test_create_returns_201(self, client, salon, emitter):
        resp = client.post("/appointments", json=_booking_body(salon))

        assert resp.status_code == 201
        appt = resp.json()["appointment"]
        assert appt["status"] == "SCHEDULED"
        assert appt["services"][0]["name"] == "Haircut"
        assert emitter.of_type(APPOINTMENT_CONFIRMED) == [{"appointment_id": appt["id"]}]

    def test_taken_slot_returns_409_with_message(self, client, salon):
        client.post("/appointments", json=_booking_body(salon))

        resp = client.post("/appointments", json=_booking_body(salon, email="dave@example.com"))

        assert resp.status_code == 409
        assert resp.json()["detail"] == "Slot no longer available, please pick another time"

    def test_bad_input_returns_422(self, client, salon):
        resp = client.post("/appointments", json=_booking_body(salon, time="9 o'clock"))

        assert resp.status_code == 422

    def test_read_unknown_returns_404(self, client):
        assert client.get("/appointments/4040").status_code == 404

    def test_reschedule_and_cancel(self, client, salon):
        appt_id = client.post("/appointments", json=_booking_body(salon)).json()["appointment"]["id"]

        moved = client.post(f"/appointments/{appt_id}/reschedule", json={
            "date": DAY_STR, "time": "13:00", "customer_email": "carol@example.com",
        })
        assert moved.status_code == 200
        assert moved.json()["time"] == "13:00"

        cancelled = client.post(f"/appointments/{appt_id}/cancel", json={"customer_email": "carol@example.com"})
        assert cancelled.status_code == 200
        assert cancelled.json()["status"] == "CANCELLED"

    def test_foreign_email_cannot_cancel(self, client, salon):
        appt_id = client.post("/appointments", json=_booking_body(salon)).json()["appointment"]["id"]

        resp = client.post(f"/appointments/{appt_id}/cancel", json={"customer_email": "mallory@example.com"})

        assert resp.status_code == 404

    def test_payment_provider_down_returns_502(self, client, salon, provider, store, db):
        store.update_deposit_policy(deposit_enabled=1, deposit_percentage=20, deposit_trust_threshold=1)
        db.commit()
        provider.fail_checkout = True

        resp = client.post("/appointments", json=_booking_body(salon))

        assert resp.status_code == 502


class TestPaymentWebhook:
    def test_confirms_held_booking(self, client, salon, store, db):
        store.update_deposit_policy(deposit_enabled=1, deposit_percentage=20, deposit_trust_threshold=1)
        db.commit()
        booked = client.post("/appointments", json=_booking_body(salon)).json()
        assert booked["appointment"]["status"] == "PENDING_PAYMENT"

        resp = client.post(
            "/payments/webhook",
            content=checkout_completed(booked["deposit_id"]),
            headers={"Stripe-Signature": "valid"},
        )

        assert resp.status_code == 200
        assert resp.json()["status"] == "confirmed"
        appt = client.get(f"/appointments/{booked['appointment']['id']}").json()
        assert appt["status"] == "SCHEDULED"

    def test_bad_signature_returns_400(self, client):
        resp = client.post("/payments/webhook", content=checkout_completed(1), headers={"Stripe-Signature": "nope"})

        assert resp.status_code == 400


class TestAdminEndpoints:
    def test_schedule_roundtrip(self, client):
        resp = client.put("/admin/schedule", json={"days": [
            {"weekday": 0, "is_open": False},
        ]})

        assert resp.status_code == 200
        monday = resp.json()["days"][0]
        assert monday["is_open"] is False
        assert client.get("/slots", params={"date": DAY_STR, "duration": 30}).json()["slots"] == []

    def test_schedule_change_clears_every_cached_day(self, client):
        redis = MagicMock()
        redis.scan_iter.return_value = iter(["slots:2030-01-07:1:30", "slots:2030-01-08:any-1:30"])
        app.dependency_overrides[get_redis] = lambda: redis

        resp = client.put("/admin/schedule", json={"days": [{"weekday": 2, "is_open": False}]})

        assert resp.status_code == 200
        redis.scan_iter.assert_called_once_with(match="slots:*")
        redis.delete.assert_called_once_with("slots:2030-01-07:1:30", "slots:2030-01-08:any-1:30")

    def test_schedule_rejects_inverted_hours(self, client):
        resp = client.put("/admin/schedule", json={"days": [
            {"weekday": 1, "is_open": True, "open_time": "18:00", "close_time": "09:00"},
        ]})

        assert resp.status_code == 422

    def test_blocked_period_lifecycle(self, client, salon):
        created = client.post("/admin/blocked-periods", json={
            "date_start": DAY_STR,
            "date_end": DAY_STR,
            "stylist_id": salon["alice"].id,
            "time_start": "12:00",
            "time_end": "14:00",
            "reason": "Training",
        })
        assert created.status_code == 201
        period_id = created.json()["id"]

        listed = client.get("/admin/blocked-periods", params={"from_date": DAY_STR}).json()
        assert [p["id"] for p in listed] == [period_id]

        slots = client.get("/slots", params={
            "date": DAY_STR, "duration": 30, "stylist_id": salon["alice"].id,
        }).json()["slots"]
        assert "12:00" not in slots

        assert client.delete(f"/admin/blocked-periods/{period_id}").status_code == 204
        assert client.delete(f"/admin/blocked-periods/{period_id}").status_code == 404

    def test_blocked_period_needs_both_times(self, client):
        resp = client.post("/admin/blocked-periods", json={
            "date_start": DAY_STR, "date_end": DAY_STR, "time_start": "12:00",
        })

        assert resp.status_code == 422

    def test_deposit_policy_update(self, client):
        resp = client.put("/admin/deposit-policy", json={"deposit_enabled": True, "deposit_percentage": 25})

        assert resp.status_code == 200
        assert resp.json()["deposit_enabled"] is True
        assert resp.json()["deposit_percentage"] == 25

    def test_calendar_status_not_connected(self, client, salon):
        resp = client.get(f"/admin/stylists/{salon['alice'].id}/calendar")

        assert resp.status_code == 200
        assert resp.json()["is_connected"] is False


class TestInternalSweeps:
    @pytest.mark.parametrize("sweep", ["hold-expiry", "auto-complete", "reminders", "calendar-resync"])
    def test_token_required(self, client, sweep):
        assert client.post(f"/internal/sweeps/{sweep}").status_code == 403
        assert client.post(
            f"/internal/sweeps/{sweep}", headers={"X-Internal-Token": "wrong"}
        ).status_code == 403

    @pytest.mark.parametrize("sweep", ["hold-expiry", "auto-complete", "reminders", "calendar-resync"])
    def test_runs_with_token(self, client, sweep):
        resp = client.post(f"/internal/sweeps/{sweep}", headers={"X-Internal-Token": INTERNAL_TOKEN})

        assert resp.status_code == 200
        assert resp.json()["skipped"] is False

    def test_second_overlapping_run_skipped(self, client, locks):
        with locks.try_sweep_lock("hold-expiry"):
            resp = client.post("/internal/sweeps/hold-expiry", headers={"X-Internal-Token": INTERNAL_TOKEN})

        assert resp.json() == {"processed": 0, "changed": 0, "sent": None, "failed": 0, "skipped": True}


class TestIntegrations:
    def test_auth_url_for_known_stylist(self, client, salon, calendar_client):
        calendar_client.get_oauth_url.return_value = "https://accounts.google.com/o/oauth2/auth?x=1"

        resp = client.get("/integrations/google/auth-url", params={"stylist_id": salon["alice"].id})

        assert resp.status_code == 200
        assert resp.json()["auth_url"].startswith("https://accounts.google.com/")

    def test_callback_saves_tokens(self, client, salon, calendar_client):
        calendar_client.exchange_code_for_tokens.return_value = {
            "stylist_id": salon["alice"].id,
            "access_token": "token",
            "refresh_token": "refresh",
            "token_expires_at": "2030-01-01 00:00:00",
        }

        resp = client.get("/integrations/google/callback", params={"code": "abc", "state": "s:1:xyz"})

        assert resp.status_code == 200
        status = client.get(f"/admin/stylists/{salon['alice'].id}/calendar").json()
        assert status["is_connected"] is True
        assert status["needs_reconnect"] is False

    def test_callback_with_bad_state(self, client, calendar_client):
        calendar_client.exchange_code_for_tokens.side_effect = ValueError("Invalid state parameter")

        resp = client.get("/integrations/google/callback", params={"code": "abc", "state": "junk"})

        assert resp.status_code == 400
