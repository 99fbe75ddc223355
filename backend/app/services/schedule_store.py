"""
backend/app/services/schedule_store.py

Schedule store: the only place that queries the database.

ScheduleStore describes what the booking core needs; SqlScheduleStore is the
SQLAlchemy-backed implementation used by the API, the sweeps and the worker.
Status changes are conditional UPDATEs (WHERE status IN ...) so repeated
webhooks and overlapping sweeps apply each transition at most once.
"""

from datetime import date
from typing import Iterable, Optional, Protocol

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from ..models.generated import (
    AdminSettings,
    Appointments,
    BlockedPeriods,
    BusinessHours,
    Deposits,
    Services,
    StylistIntegrations,
    Stylists,
    Users,
    t_stylist_services,
)
from .clock import format_ts, utc_now

# Appointment statuses
PENDING_PAYMENT = "PENDING_PAYMENT"
SCHEDULED = "SCHEDULED"
COMPLETED = "COMPLETED"
CANCELLED = "CANCELLED"

ACTIVE_STATUSES = (PENDING_PAYMENT, SCHEDULED)
TERMINAL_STATUSES = (COMPLETED, CANCELLED)

# Deposit statuses
DEPOSIT_PENDING = "PENDING"
DEPOSIT_PAID = "PAID"
DEPOSIT_FORFEITED = "FORFEITED"
DEPOSIT_REFUNDED = "REFUNDED"


class ScheduleStore(Protocol):
    # Reference data
    def list_business_hours(self) -> list[BusinessHours]: ...
    def get_business_hours(self, weekday: int) -> Optional[BusinessHours]: ...
    def save_business_hours(self, days: list[dict]) -> list[BusinessHours]: ...
    def get_services(self, service_ids: Iterable[int]) -> list[Services]: ...
    def get_stylist(self, stylist_id: int) -> Optional[Stylists]: ...
    def list_capable_stylists(self, service_ids: Iterable[int]) -> list[Stylists]: ...
    def list_blocked_periods(self, target_date: date, stylist_id: Optional[int]) -> list[BlockedPeriods]: ...
    def list_upcoming_blocked_periods(self, from_date: date) -> list[BlockedPeriods]: ...
    def add_blocked_period(self, **fields) -> BlockedPeriods: ...
    def delete_blocked_period(self, period_id: int) -> Optional[BlockedPeriods]: ...
    def get_deposit_policy(self) -> AdminSettings: ...
    def update_deposit_policy(self, **fields) -> AdminSettings: ...
    def find_user_by_email(self, email: str) -> Optional[Users]: ...

    # Appointments
    def add_appointment(self, services: list[Services], **fields) -> Appointments: ...
    def get_appointment(self, appointment_id: int) -> Optional[Appointments]: ...
    def list_active_appointments(
        self, target_date: date, stylist_id: Optional[int], exclude_id: Optional[int] = None
    ) -> list[Appointments]: ...
    def transition_status(
        self, appointment_id: int, from_statuses: Iterable[str], to_status: str, **fields
    ) -> bool: ...
    def move_appointment(self, appointment_id: int, new_date: str, new_time: str) -> None: ...
    def set_calendar_event_id(self, appointment_id: int, event_id: Optional[str]) -> None: ...
    def count_completed_visits(self, email: str) -> int: ...
    def list_by_status(self, status: str) -> list[Appointments]: ...
    def list_reminder_candidates(self, date_from: date, date_to: date) -> list[Appointments]: ...
    def mark_reminder_sent(self, appointment_id: int) -> bool: ...
    def release_reminder_claim(self, appointment_id: int) -> None: ...
    def list_unsynced(self, date_from: date) -> list[Appointments]: ...

    # Deposits
    def add_deposit(self, **fields) -> Deposits: ...
    def get_deposit(self, deposit_id: int) -> Optional[Deposits]: ...
    def get_deposit_by_session(self, session_id: str) -> Optional[Deposits]: ...
    def update_deposit(self, deposit_id: int, **fields) -> None: ...
    def transition_deposit(
        self, deposit_id: int, from_statuses: Iterable[str], to_status: str, **fields
    ) -> bool: ...

    # Calendar integrations
    def get_integration(self, stylist_id: int) -> Optional[StylistIntegrations]: ...
    def save_integration_tokens(
        self, stylist_id: int, access_token: str, refresh_token: Optional[str], token_expires_at: Optional[str]
    ) -> StylistIntegrations: ...
    def update_integration(self, stylist_id: int, **fields) -> None: ...

    def commit(self) -> None: ...
    def rollback(self) -> None: ...


class SqlScheduleStore:
    """SQLAlchemy implementation of ScheduleStore on top of one Session."""

    def __init__(self, db: Session):
        self.db = db

    # ── Reference data ───────────────────────────────────────────────────

    def list_business_hours(self) -> list[BusinessHours]:
        return self.db.query(BusinessHours).order_by(BusinessHours.weekday).all()

    def get_business_hours(self, weekday: int) -> Optional[BusinessHours]:
        return self.db.get(BusinessHours, weekday)

    def save_business_hours(self, days: list[dict]) -> list[BusinessHours]:
        for day in days:
            row = self.db.get(BusinessHours, day["weekday"])
            if row is None:
                row = BusinessHours(weekday=day["weekday"])
                self.db.add(row)
            row.is_open = 1 if day["is_open"] else 0
            row.open_time = day["open_time"]
            row.close_time = day["close_time"]
        self.db.flush()
        return self.list_business_hours()

    def get_services(self, service_ids: Iterable[int]) -> list[Services]:
        ids = list(service_ids)
        if not ids:
            return []
        return (
            self.db.query(Services)
            .filter(Services.id.in_(ids), Services.is_active == 1)
            .order_by(Services.id)
            .all()
        )

    def get_stylist(self, stylist_id: int) -> Optional[Stylists]:
        return self.db.get(Stylists, stylist_id)

    def list_capable_stylists(self, service_ids: Iterable[int]) -> list[Stylists]:
        """Active stylists able to perform every one of the given services."""
        ids = sorted(set(service_ids))
        query = self.db.query(Stylists).filter(Stylists.is_active == 1)
        if ids:
            capable = (
                select(t_stylist_services.c.stylist_id)
                .where(t_stylist_services.c.service_id.in_(ids))
                .group_by(t_stylist_services.c.stylist_id)
                .having(func.count(t_stylist_services.c.service_id) == len(ids))
            )
            query = query.filter(Stylists.id.in_(capable))
        return query.order_by(Stylists.id).all()

    def list_blocked_periods(self, target_date: date, stylist_id: Optional[int]) -> list[BlockedPeriods]:
        """Salon-wide periods plus, when given, the stylist's own ones covering target_date."""
        date_str = target_date.isoformat()
        owner_filter = BlockedPeriods.stylist_id.is_(None)
        if stylist_id is not None:
            owner_filter = or_(owner_filter, BlockedPeriods.stylist_id == stylist_id)
        return (
            self.db.query(BlockedPeriods)
            .filter(
                owner_filter,
                BlockedPeriods.date_start <= date_str,
                BlockedPeriods.date_end >= date_str,
            )
            .order_by(BlockedPeriods.id)
            .all()
        )

    def list_upcoming_blocked_periods(self, from_date: date) -> list[BlockedPeriods]:
        return (
            self.db.query(BlockedPeriods)
            .filter(BlockedPeriods.date_end >= from_date.isoformat())
            .order_by(BlockedPeriods.date_start, BlockedPeriods.id)
            .all()
        )

    def add_blocked_period(self, **fields) -> BlockedPeriods:
        period = BlockedPeriods(created_at=format_ts(utc_now()), **fields)
        self.db.add(period)
        self.db.flush()
        return period

    def delete_blocked_period(self, period_id: int) -> Optional[BlockedPeriods]:
        period = self.db.get(BlockedPeriods, period_id)
        if period is not None:
            self.db.delete(period)
            self.db.flush()
        return period

    def get_deposit_policy(self) -> AdminSettings:
        policy = self.db.query(AdminSettings).order_by(AdminSettings.id).first()
        if policy is None:
            policy = AdminSettings(
                deposit_enabled=1,
                deposit_percentage=15,
                deposit_trust_threshold=1,
                updated_at=format_ts(utc_now()),
            )
            self.db.add(policy)
            self.db.flush()
        return policy

    def update_deposit_policy(self, **fields) -> AdminSettings:
        policy = self.get_deposit_policy()
        for field, value in fields.items():
            setattr(policy, field, value)
        policy.updated_at = format_ts(utc_now())
        self.db.flush()
        return policy

    def find_user_by_email(self, email: str) -> Optional[Users]:
        return self.db.query(Users).filter(func.lower(Users.email) == email.lower()).first()

    # ── Appointments ─────────────────────────────────────────────────────

    def add_appointment(self, services: list[Services], **fields) -> Appointments:
        now = format_ts(utc_now())
        appointment = Appointments(created_at=now, updated_at=now, reminder_sent=0, **fields)
        appointment.services = list(services)
        self.db.add(appointment)
        self.db.flush()
        return appointment

    def get_appointment(self, appointment_id: int) -> Optional[Appointments]:
        return self.db.get(Appointments, appointment_id)

    def list_active_appointments(
        self,
        target_date: date,
        stylist_id: Optional[int],
        exclude_id: Optional[int] = None,
    ) -> list[Appointments]:
        """Active appointments on a date; stylist_id=None means the unassigned pool."""
        query = self.db.query(Appointments).filter(
            Appointments.date == target_date.isoformat(),
            Appointments.status.in_(ACTIVE_STATUSES),
        )
        if stylist_id is None:
            query = query.filter(Appointments.stylist_id.is_(None))
        else:
            query = query.filter(Appointments.stylist_id == stylist_id)
        if exclude_id is not None:
            query = query.filter(Appointments.id != exclude_id)
        return query.order_by(Appointments.time, Appointments.id).all()

    def transition_status(
        self,
        appointment_id: int,
        from_statuses: Iterable[str],
        to_status: str,
        **fields,
    ) -> bool:
        values = {"status": to_status, "updated_at": format_ts(utc_now()), **fields}
        updated = (
            self.db.query(Appointments)
            .filter(
                Appointments.id == appointment_id,
                Appointments.status.in_(list(from_statuses)),
            )
            .update(values, synchronize_session="fetch")
        )
        return updated == 1

    def move_appointment(self, appointment_id: int, new_date: str, new_time: str) -> None:
        appointment = self.db.get(Appointments, appointment_id)
        appointment.date = new_date
        appointment.time = new_time
        appointment.reminder_sent = 0
        appointment.reminder_sent_at = None
        appointment.updated_at = format_ts(utc_now())
        self.db.flush()

    def set_calendar_event_id(self, appointment_id: int, event_id: Optional[str]) -> None:
        appointment = self.db.get(Appointments, appointment_id)
        appointment.calendar_event_id = event_id
        appointment.updated_at = format_ts(utc_now())
        self.db.flush()

    def count_completed_visits(self, email: str) -> int:
        return (
            self.db.query(func.count(Appointments.id))
            .filter(
                func.lower(Appointments.customer_email) == email.lower(),
                Appointments.status == COMPLETED,
            )
            .scalar()
        ) or 0

    def list_by_status(self, status: str) -> list[Appointments]:
        return (
            self.db.query(Appointments)
            .filter(Appointments.status == status)
            .order_by(Appointments.date, Appointments.time, Appointments.id)
            .all()
        )

    def list_reminder_candidates(self, date_from: date, date_to: date) -> list[Appointments]:
        return (
            self.db.query(Appointments)
            .filter(
                Appointments.status == SCHEDULED,
                Appointments.reminder_sent == 0,
                Appointments.date >= date_from.isoformat(),
                Appointments.date <= date_to.isoformat(),
            )
            .order_by(Appointments.date, Appointments.time, Appointments.id)
            .all()
        )

    def mark_reminder_sent(self, appointment_id: int) -> bool:
        now = format_ts(utc_now())
        updated = (
            self.db.query(Appointments)
            .filter(Appointments.id == appointment_id, Appointments.reminder_sent == 0)
            .update(
                {"reminder_sent": 1, "reminder_sent_at": now, "updated_at": now},
                synchronize_session="fetch",
            )
        )
        return updated == 1

    def release_reminder_claim(self, appointment_id: int) -> None:
        self.db.query(Appointments).filter(
            Appointments.id == appointment_id, Appointments.reminder_sent == 1
        ).update(
            {"reminder_sent": 0, "reminder_sent_at": None, "updated_at": format_ts(utc_now())},
            synchronize_session="fetch",
        )

    def list_unsynced(self, date_from: date) -> list[Appointments]:
        return (
            self.db.query(Appointments)
            .filter(
                Appointments.status == SCHEDULED,
                Appointments.calendar_event_id.is_(None),
                Appointments.stylist_id.isnot(None),
                Appointments.date >= date_from.isoformat(),
            )
            .order_by(Appointments.date, Appointments.time, Appointments.id)
            .all()
        )

    # ── Deposits ─────────────────────────────────────────────────────────

    def add_deposit(self, **fields) -> Deposits:
        now = format_ts(utc_now())
        deposit = Deposits(created_at=now, updated_at=now, status=DEPOSIT_PENDING, **fields)
        self.db.add(deposit)
        self.db.flush()
        return deposit

    def get_deposit(self, deposit_id: int) -> Optional[Deposits]:
        return self.db.get(Deposits, deposit_id)

    def get_deposit_by_session(self, session_id: str) -> Optional[Deposits]:
        return self.db.query(Deposits).filter(Deposits.checkout_session_id == session_id).first()

    def update_deposit(self, deposit_id: int, **fields) -> None:
        deposit = self.db.get(Deposits, deposit_id)
        for field, value in fields.items():
            setattr(deposit, field, value)
        deposit.updated_at = format_ts(utc_now())
        self.db.flush()

    def transition_deposit(
        self,
        deposit_id: int,
        from_statuses: Iterable[str],
        to_status: str,
        **fields,
    ) -> bool:
        values = {"status": to_status, "updated_at": format_ts(utc_now()), **fields}
        updated = (
            self.db.query(Deposits)
            .filter(Deposits.id == deposit_id, Deposits.status.in_(list(from_statuses)))
            .update(values, synchronize_session="fetch")
        )
        return updated == 1

    # ── Calendar integrations ────────────────────────────────────────────

    def get_integration(self, stylist_id: int) -> Optional[StylistIntegrations]:
        return (
            self.db.query(StylistIntegrations)
            .filter(
                StylistIntegrations.stylist_id == stylist_id,
                StylistIntegrations.provider == "google_calendar",
            )
            .first()
        )

    def save_integration_tokens(
        self,
        stylist_id: int,
        access_token: str,
        refresh_token: Optional[str],
        token_expires_at: Optional[str],
    ) -> StylistIntegrations:
        """Store fresh OAuth tokens; a successful reconnect clears needs_reconnect."""
        now = format_ts(utc_now())
        integration = self.get_integration(stylist_id)
        if integration is None:
            integration = StylistIntegrations(
                stylist_id=stylist_id,
                provider="google_calendar",
                calendar_id="primary",
                created_at=now,
            )
            self.db.add(integration)
        integration.access_token = access_token
        if refresh_token:
            integration.refresh_token = refresh_token
        integration.token_expires_at = token_expires_at
        integration.sync_enabled = 1
        integration.needs_reconnect = 0
        integration.updated_at = now
        self.db.flush()
        return integration

    def update_integration(self, stylist_id: int, **fields) -> None:
        integration = self.get_integration(stylist_id)
        if integration is None:
            return
        for field, value in fields.items():
            setattr(integration, field, value)
        integration.updated_at = format_ts(utc_now())
        self.db.flush()

    # ── Transaction ──────────────────────────────────────────────────────

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()
