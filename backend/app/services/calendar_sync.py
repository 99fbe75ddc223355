"""
backend/app/services/calendar_sync.py

Calendar sync reconciler.

Mirrors SCHEDULED appointments into the assigned stylist's Google Calendar.

- No integration / sync disabled / needs reconnect → skipped, returns None
- Expired access token → refreshed first; a rejected refresh flips
  needs_reconnect and emits calendar_auth_failed
- Any other provider failure → logged, appointment keeps no calendar
  reference and is picked up by the resync sweep
"""

import logging
from datetime import date, timedelta
from typing import Optional

from .clock import format_ts, parse_ts, utc_now
from .errors import CalendarAuthError, ProviderError
from .events import CALENDAR_AUTH_FAILED, EventEmitter
from .google_calendar import GoogleCalendarClient
from .locks import LockManager
from .schedule_store import SCHEDULED, ScheduleStore
from .timeouts import call_with_timeout

logger = logging.getLogger(__name__)

# Refresh a little early so the token does not lapse mid-request
TOKEN_EXPIRY_MARGIN = timedelta(minutes=1)


def appointment_payload(appointment) -> dict:
    """Display fields of an appointment (calendar events, notifications)."""
    return {
        "id": appointment.id,
        "stylist_name": appointment.stylist.name if appointment.stylist is not None else None,
        "date": appointment.date,
        "time": appointment.time,
        "duration_minutes": appointment.duration_minutes,
        "services": [s.name for s in appointment.services],
        "customer_name": appointment.customer_name,
        "customer_email": appointment.customer_email,
        "total_price": appointment.total_price,
    }


class CalendarReconciler:
    def __init__(
        self,
        store: ScheduleStore,
        client: GoogleCalendarClient,
        emitter: Optional[EventEmitter] = None,
        timeout: float = 10.0,
    ):
        self.store = store
        self.client = client
        self.emitter = emitter
        self.timeout = timeout

    # ── Tokens ───────────────────────────────────────────────────────────

    def _credentials(self, stylist_id: int):
        """
        Usable (integration, access_token) for a stylist, or None when sync
        is skipped for that stylist.
        """
        integration = self.store.get_integration(stylist_id)
        if integration is None or not integration.access_token:
            logger.warning(f"Calendar sync skipped: stylist {stylist_id} has no calendar connected")
            return None
        if not integration.sync_enabled:
            logger.info(f"Calendar sync disabled for stylist {stylist_id}")
            return None
        if integration.needs_reconnect:
            logger.warning(f"Calendar sync skipped: stylist {stylist_id} needs to reconnect")
            return None

        access_token = integration.access_token
        expires_at = integration.token_expires_at
        if expires_at and parse_ts(expires_at) <= utc_now() + TOKEN_EXPIRY_MARGIN:
            refreshed = call_with_timeout(
                self.client.refresh_access_token,
                integration.refresh_token,
                timeout=self.timeout,
                label="google.refresh_access_token",
            )
            access_token = refreshed["access_token"]
            self.store.update_integration(
                stylist_id,
                access_token=access_token,
                token_expires_at=refreshed["token_expires_at"],
            )
            self.store.commit()
            logger.info(f"Refreshed calendar token for stylist {stylist_id}")

        return integration, access_token

    def _mark_needs_reconnect(self, stylist_id: int, error: Exception) -> None:
        logger.warning(f"Calendar authorisation failed for stylist {stylist_id}: {error}")
        self.store.update_integration(stylist_id, needs_reconnect=1)
        self.store.commit()
        if self.emitter is not None:
            self.emitter.emit(CALENDAR_AUTH_FAILED, {"stylist_id": stylist_id, "reason": str(error)})

    # ── Operations ───────────────────────────────────────────────────────

    def sync(self, appointment) -> Optional[str]:
        """
        Create or update the calendar event of a SCHEDULED appointment.

        Returns the event id, or None when sync was skipped or failed.
        Never raises for provider trouble.
        """
        stylist_id = appointment.stylist_id
        if stylist_id is None:
            return None
        if appointment.status != SCHEDULED:
            logger.info(f"Calendar sync skipped for appointment {appointment.id} in status {appointment.status}")
            return None

        try:
            creds = self._credentials(stylist_id)
            if creds is None:
                return None
            integration, access_token = creds
            calendar_id = integration.calendar_id or "primary"

            if appointment.calendar_event_id:
                event_id = call_with_timeout(
                    self.client.update_event,
                    access_token,
                    integration.refresh_token,
                    calendar_id,
                    appointment.calendar_event_id,
                    appointment_payload(appointment),
                    timeout=self.timeout,
                    label="google.update_event",
                )
            else:
                event_id = call_with_timeout(
                    self.client.create_event,
                    access_token,
                    integration.refresh_token,
                    calendar_id,
                    appointment_payload(appointment),
                    timeout=self.timeout,
                    label="google.create_event",
                )
        except CalendarAuthError as e:
            self._mark_needs_reconnect(stylist_id, e)
            return None
        except ProviderError as e:
            logger.error(f"Calendar sync failed for appointment {appointment.id}: {e}")
            return None

        if event_id != appointment.calendar_event_id:
            self.store.set_calendar_event_id(appointment.id, event_id)
        self.store.update_integration(stylist_id, last_sync_at=format_ts(utc_now()))
        self.store.commit()
        logger.info(f"Appointment {appointment.id} synced to calendar event {event_id}")
        return event_id

    def delete(self, appointment, event_id: Optional[str] = None) -> bool:
        """
        Remove the calendar event of a cancelled appointment and clear the
        reference. Returns True when nothing is left in the calendar.
        """
        event_id = event_id or appointment.calendar_event_id
        stylist_id = appointment.stylist_id
        if not event_id or stylist_id is None:
            return True

        try:
            creds = self._credentials(stylist_id)
            if creds is None:
                return False
            integration, access_token = creds
            call_with_timeout(
                self.client.delete_event,
                access_token,
                integration.refresh_token,
                integration.calendar_id or "primary",
                event_id,
                timeout=self.timeout,
                label="google.delete_event",
            )
        except CalendarAuthError as e:
            self._mark_needs_reconnect(stylist_id, e)
            return False
        except ProviderError as e:
            logger.error(f"Calendar delete failed for appointment {appointment.id}: {e}")
            return False

        if appointment.calendar_event_id:
            self.store.set_calendar_event_id(appointment.id, None)
            self.store.commit()
        logger.info(f"Calendar event {event_id} removed for appointment {appointment.id}")
        return True


def run_calendar_resync(
    store: ScheduleStore,
    reconciler: CalendarReconciler,
    locks: LockManager,
    today: date,
) -> dict:
    """
    Re-attempt sync for upcoming SCHEDULED appointments that have a stylist
    but no calendar reference.
    """
    with locks.try_sweep_lock("calendar-resync") as acquired:
        if not acquired:
            logger.info("calendar-resync already running, skipped")
            return {"processed": 0, "changed": 0, "failed": 0, "skipped": True}

        processed = changed = 0
        for appointment in store.list_unsynced(today):
            processed += 1
            try:
                synced = reconciler.sync(appointment)
            except Exception:
                logger.exception(f"calendar-resync failed for appointment {appointment.id}")
                store.rollback()
                continue
            if synced:
                changed += 1

    failed = processed - changed
    logger.info(f"calendar-resync: processed={processed} synced={changed} not_synced={failed}")
    return {"processed": processed, "changed": changed, "failed": failed, "skipped": False}
