"""
Appointment reminder checker.

Sends one reminder per SCHEDULED appointment starting within the lookahead
window, pausing between sends to stay under the messaging providers' rate
limits.

Each appointment is claimed (reminder_sent=1, conditional UPDATE) before the
send, so a second run that starts while this one is still sending skips it.
A failed send releases the claim and the next run retries it.

Triggered by the scheduler through POST /internal/sweeps/reminders.
Uses the synchronous store via asyncio.to_thread.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from .calendar_sync import appointment_payload
from .clock import appointment_start
from .locks import LockManager
from .notifications import REMINDER, NotificationDispatcher, Recipient, resolve_recipient
from .schedule_store import ScheduleStore

logger = logging.getLogger(__name__)

SWEEP_NAME = "reminders"


def _due_ids(store: ScheduleStore, now_local: datetime, window_end: datetime) -> list[int]:
    return [
        a.id for a in store.list_reminder_candidates(now_local.date(), window_end.date())
        if now_local < appointment_start(a.date, a.time) <= window_end
    ]


def _claim(store: ScheduleStore, appointment_id: int) -> Optional[tuple[Recipient, dict]]:
    """Mark the reminder as sent; (recipient, payload) if this run won the claim."""
    if not store.mark_reminder_sent(appointment_id):
        return None
    store.commit()
    appointment = store.get_appointment(appointment_id)
    return resolve_recipient(appointment), appointment_payload(appointment)


def _release(store: ScheduleStore, appointment_id: int) -> None:
    store.release_reminder_claim(appointment_id)
    store.commit()


async def run_reminders(
    store: ScheduleStore,
    dispatcher: NotificationDispatcher,
    locks: LockManager,
    now_local: datetime,
    lookahead_hours: int = 24,
    send_delay: float = 1.0,
) -> dict:
    """
    Returns:
        {"processed", "sent", "failed", "skipped"}
    """
    window_end = now_local + timedelta(hours=lookahead_hours)

    with locks.try_sweep_lock(SWEEP_NAME) as acquired:
        if not acquired:
            logger.info(f"{SWEEP_NAME} already running, skipped")
            return {"processed": 0, "sent": 0, "failed": 0, "skipped": True}

        due = await asyncio.to_thread(_due_ids, store, now_local, window_end)

        processed = sent = failed = 0
        for appointment_id in due:
            if processed and send_delay > 0:
                await asyncio.sleep(send_delay)

            claimed = await asyncio.to_thread(_claim, store, appointment_id)
            if claimed is None:
                logger.info(f"Reminder for appointment {appointment_id} already claimed")
                continue
            recipient, payload = claimed

            processed += 1
            result = await dispatcher.send(REMINDER, recipient, payload)
            if not result.sent:
                failed += 1
                await asyncio.to_thread(_release, store, appointment_id)
                continue

            sent += 1
            logger.info(f"Reminder for appointment {appointment_id} sent via {result.channel}")

    logger.info(f"{SWEEP_NAME}: processed={processed} sent={sent} failed={failed}")
    return {"processed": processed, "sent": sent, "failed": failed, "skipped": False}
