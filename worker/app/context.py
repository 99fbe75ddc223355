"""
Shared collaborators for event handlers.

Handlers get one WorkerContext instead of reaching for module globals, so
tests can hand in an in-memory session factory and fake channels.
"""

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, Optional

from sqlalchemy.orm import Session

from backend.app.services.calendar_sync import CalendarReconciler
from backend.app.services.events import EventEmitter
from backend.app.services.google_calendar import GoogleCalendarClient
from backend.app.services.notifications import NotificationDispatcher, build_channels
from backend.app.services.schedule_store import SqlScheduleStore


@dataclass
class WorkerContext:
    session_factory: Callable[[], Session]
    dispatcher: NotificationDispatcher
    calendar: GoogleCalendarClient
    emitter: Optional[EventEmitter] = None
    provider_timeout: float = 10.0

    @contextmanager
    def store(self) -> Iterator[SqlScheduleStore]:
        db = self.session_factory()
        try:
            yield SqlScheduleStore(db)
        finally:
            db.close()

    def reconciler(self, store: SqlScheduleStore) -> CalendarReconciler:
        return CalendarReconciler(store, self.calendar, self.emitter, timeout=self.provider_timeout)


def build_context() -> WorkerContext:
    from backend.app.config import settings
    from backend.app.database import SessionLocal
    from backend.app.services.events import get_event_emitter

    return WorkerContext(
        session_factory=SessionLocal,
        dispatcher=NotificationDispatcher(
            build_channels(settings),
            timeout=settings.provider_timeout_seconds,
        ),
        calendar=GoogleCalendarClient(
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            redirect_uri=settings.google_redirect_uri,
            timezone=settings.timezone,
        ),
        emitter=get_event_emitter(),
        provider_timeout=settings.provider_timeout_seconds,
    )
