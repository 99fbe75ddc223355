# backend/app/routers/internal.py
"""
Internal sweep triggers.

Called by an external scheduler (cron, k8s CronJob), never by customers.
Every request must carry X-Internal-Token. Each sweep is idempotent and
guarded by a single-runner lock; an overlapping call reports skipped=true.

POST /internal/sweeps/hold-expiry
POST /internal/sweeps/auto-complete
POST /internal/sweeps/reminders
POST /internal/sweeps/calendar-resync
"""

import logging

from fastapi import APIRouter, Depends

from ..config import settings
from ..dependencies import (
    get_booking_service,
    get_dispatcher,
    get_locks,
    get_reconciler,
    get_store,
    require_internal_token,
)
from ..schemas.admin import SweepResult
from ..services.booking import BookingService
from ..services.calendar_sync import CalendarReconciler, run_calendar_resync
from ..services.clock import salon_now
from ..services.completion_checker import run_auto_complete
from ..services.hold_checker import run_hold_expiry
from ..services.locks import LockManager
from ..services.notifications import NotificationDispatcher
from ..services.reminder_checker import run_reminders
from ..services.schedule_store import SqlScheduleStore

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/internal/sweeps",
    tags=["internal"],
    dependencies=[Depends(require_internal_token)],
)


@router.post("/hold-expiry", response_model=SweepResult)
def sweep_hold_expiry(
    booking: BookingService = Depends(get_booking_service),
    locks: LockManager = Depends(get_locks),
):
    return run_hold_expiry(booking, locks)


@router.post("/auto-complete", response_model=SweepResult)
def sweep_auto_complete(
    booking: BookingService = Depends(get_booking_service),
    locks: LockManager = Depends(get_locks),
):
    return run_auto_complete(booking, locks)


@router.post("/reminders", response_model=SweepResult)
async def sweep_reminders(
    store: SqlScheduleStore = Depends(get_store),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    locks: LockManager = Depends(get_locks),
):
    return await run_reminders(
        store,
        dispatcher,
        locks,
        now_local=salon_now(settings.timezone),
        lookahead_hours=settings.reminder_lookahead_hours,
        send_delay=settings.reminder_send_delay_seconds,
    )


@router.post("/calendar-resync", response_model=SweepResult)
def sweep_calendar_resync(
    store: SqlScheduleStore = Depends(get_store),
    reconciler: CalendarReconciler = Depends(get_reconciler),
    locks: LockManager = Depends(get_locks),
):
    return run_calendar_resync(store, reconciler, locks, salon_now(settings.timezone).date())
