"""
Appointment event handlers.

Handles: appointment_confirmed, appointment_rescheduled,
appointment_cancelled, calendar_auth_failed.

Calendar calls are blocking (Google API client) and run in a thread with
their own DB session; notifications go through the async dispatcher.
Neither ever changes the appointment's status.
"""

import asyncio
import logging
from typing import Optional

from backend.app.services.calendar_sync import appointment_payload
from backend.app.services.events import (
    APPOINTMENT_CANCELLED,
    APPOINTMENT_CONFIRMED,
    APPOINTMENT_RESCHEDULED,
    CALENDAR_AUTH_FAILED,
)
from backend.app.services.notifications import (
    CANCELLATION,
    CONFIRMATION,
    RESCHEDULE,
    Recipient,
    resolve_recipient,
)
from backend.app.services.schedule_store import CANCELLED, SCHEDULED

from . import register_event

logger = logging.getLogger(__name__)


def _load(ctx, appointment_id: int) -> Optional[tuple[str, Recipient, dict]]:
    """(status, recipient, display payload) of an appointment, or None."""
    with ctx.store() as store:
        appointment = store.get_appointment(appointment_id)
        if appointment is None:
            return None
        return appointment.status, resolve_recipient(appointment), appointment_payload(appointment)


def _sync_calendar(ctx, appointment_id: int) -> Optional[str]:
    with ctx.store() as store:
        appointment = store.get_appointment(appointment_id)
        if appointment is None:
            return None
        return ctx.reconciler(store).sync(appointment)


def _delete_calendar_event(ctx, appointment_id: int, event_id: Optional[str]) -> bool:
    with ctx.store() as store:
        appointment = store.get_appointment(appointment_id)
        if appointment is None:
            return False
        return ctx.reconciler(store).delete(appointment, event_id)


async def _calendar_step(func, ctx, appointment_id: int, *args) -> None:
    """Run a blocking calendar call; its failure never blocks the notification."""
    try:
        await asyncio.to_thread(func, ctx, appointment_id, *args)
    except Exception:
        logger.exception(f"{func.__name__} failed for appointment {appointment_id}")


async def _notify(ctx, kind: str, recipient: Recipient, payload: dict, **extra) -> None:
    result = await ctx.dispatcher.send(kind, recipient, payload, **extra)
    if result.sent:
        logger.info(f"{kind} for appointment {payload['id']} sent via {result.channel}")
    else:
        logger.error(f"{kind} for appointment {payload['id']} could not be delivered")


@register_event(APPOINTMENT_CONFIRMED)
async def handle_appointment_confirmed(data: dict, ctx) -> None:
    """Appointment is SCHEDULED: mirror it into the calendar, send the confirmation."""
    appointment_id = data.get("appointment_id")
    if not appointment_id:
        logger.error(f"{APPOINTMENT_CONFIRMED} event without appointment_id")
        return

    loaded = await asyncio.to_thread(_load, ctx, appointment_id)
    if loaded is None:
        logger.error(f"Appointment not found: {appointment_id}")
        return
    status, recipient, payload = loaded
    if status != SCHEDULED:
        logger.info(f"Appointment {appointment_id} is {status}, confirmation skipped")
        return

    await _calendar_step(_sync_calendar, ctx, appointment_id)
    await _notify(ctx, CONFIRMATION, recipient, payload)


@register_event(APPOINTMENT_RESCHEDULED)
async def handle_appointment_rescheduled(data: dict, ctx) -> None:
    """Appointment moved: update the calendar event, send the reschedule notice."""
    appointment_id = data.get("appointment_id")
    if not appointment_id:
        logger.error(f"{APPOINTMENT_RESCHEDULED} event without appointment_id")
        return

    loaded = await asyncio.to_thread(_load, ctx, appointment_id)
    if loaded is None:
        logger.error(f"Appointment not found: {appointment_id}")
        return
    status, recipient, payload = loaded
    if status == CANCELLED:
        logger.info(f"Appointment {appointment_id} was cancelled, reschedule notice skipped")
        return

    if status == SCHEDULED:
        await _calendar_step(_sync_calendar, ctx, appointment_id)
    await _notify(
        ctx,
        RESCHEDULE,
        recipient,
        payload,
        old_date=data.get("old_date"),
        old_time=data.get("old_time"),
    )


@register_event(APPOINTMENT_CANCELLED)
async def handle_appointment_cancelled(data: dict, ctx) -> None:
    """Appointment cancelled: remove the calendar event, send the cancellation."""
    appointment_id = data.get("appointment_id")
    if not appointment_id:
        logger.error(f"{APPOINTMENT_CANCELLED} event without appointment_id")
        return

    loaded = await asyncio.to_thread(_load, ctx, appointment_id)
    if loaded is None:
        logger.error(f"Appointment not found: {appointment_id}")
        return
    _, recipient, payload = loaded

    event_id = data.get("calendar_event_id")
    if event_id:
        await _calendar_step(_delete_calendar_event, ctx, appointment_id, event_id)
    await _notify(ctx, CANCELLATION, recipient, payload)


@register_event(CALENDAR_AUTH_FAILED)
async def handle_calendar_auth_failed(data: dict, ctx) -> None:
    """Token refresh failed; the admin console shows the stylist as needing reconnect."""
    logger.warning(
        f"Google Calendar auth failed: stylist_id={data.get('stylist_id')} "
        f"reason={data.get('reason')}"
    )
