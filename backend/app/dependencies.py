# backend/app/dependencies.py
"""
FastAPI dependencies wiring the booking core to its collaborators.

Tests override the leaf providers (get_db, get_redis, get_locks,
get_emitter, get_payment_provider, get_calendar_client, get_dispatcher).
"""

from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from redis import Redis
from sqlalchemy.orm import Session

from .config import settings
from .database import get_db
from .redis_client import redis_client
from .services.booking import BookingService
from .services.calendar_sync import CalendarReconciler
from .services.deposits import DepositHoldManager
from .services.events import EventEmitter, get_event_emitter
from .services.google_calendar import GoogleCalendarClient
from .services.locks import LockManager
from .services.notifications import NotificationDispatcher, build_channels
from .services.payments import StripeDepositProvider
from .services.schedule_store import SqlScheduleStore


def get_store(db: Session = Depends(get_db)) -> SqlScheduleStore:
    return SqlScheduleStore(db)


def get_redis() -> Optional[Redis]:
    return redis_client


@lru_cache
def _lock_manager() -> LockManager:
    return LockManager(redis_client, timeout=settings.lock_timeout_seconds)


def get_locks() -> LockManager:
    return _lock_manager()


def get_emitter() -> EventEmitter:
    return get_event_emitter()


@lru_cache
def get_payment_provider() -> StripeDepositProvider:
    return StripeDepositProvider(
        secret_key=settings.stripe_secret_key,
        webhook_secret=settings.stripe_webhook_secret,
        currency=settings.deposit_currency,
        public_base_url=settings.public_base_url,
        timeout=settings.provider_timeout_seconds,
    )


@lru_cache
def get_calendar_client() -> GoogleCalendarClient:
    return GoogleCalendarClient(
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret,
        redirect_uri=settings.google_redirect_uri,
        timezone=settings.timezone,
    )


@lru_cache
def get_dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher(
        build_channels(settings),
        timeout=settings.provider_timeout_seconds,
    )


def get_deposits(
    store: SqlScheduleStore = Depends(get_store),
    provider: StripeDepositProvider = Depends(get_payment_provider),
) -> DepositHoldManager:
    return DepositHoldManager(
        store,
        provider,
        hold_timeout_minutes=settings.hold_timeout_minutes,
        refund_window_hours=settings.deposit_refund_window_hours,
        currency=settings.deposit_currency,
    )


def get_booking_service(
    store: SqlScheduleStore = Depends(get_store),
    deposits: DepositHoldManager = Depends(get_deposits),
    emitter: EventEmitter = Depends(get_emitter),
    locks: LockManager = Depends(get_locks),
    redis: Optional[Redis] = Depends(get_redis),
) -> BookingService:
    return BookingService(
        store,
        deposits,
        emitter,
        locks,
        redis=redis,
        auto_complete_grace_minutes=settings.auto_complete_grace_minutes,
    )


def get_reconciler(
    store: SqlScheduleStore = Depends(get_store),
    client: GoogleCalendarClient = Depends(get_calendar_client),
    emitter: EventEmitter = Depends(get_emitter),
) -> CalendarReconciler:
    return CalendarReconciler(store, client, emitter, timeout=settings.provider_timeout_seconds)


def require_internal_token(x_internal_token: Optional[str] = Header(None)) -> None:
    """Sweep triggers are accepted only with the shared internal token."""
    if not settings.internal_token or x_internal_token != settings.internal_token:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid internal token")
