"""
Pytest configuration and shared fixtures.

Every test gets a fresh in-memory SQLite database behind the real
SqlScheduleStore, plus recording fakes for the event queue, the payment
provider and the notification channels.
"""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from backend.app.models.generated import Base, BusinessHours, Services, Stylists, Users
from backend.app.services.booking import BookingRequest, BookingService
from backend.app.services.deposits import DepositHoldManager
from backend.app.services.locks import LockManager
from backend.app.services.schedule_store import SqlScheduleStore
from backend.app.services.slots.config import BookingConfig
from tests.fakes import DAY_STR, MORNING, FakeDepositProvider, RecordingEmitter


# ── Database ─────────────────────────────────────────────────────────────────

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def store(db):
    return SqlScheduleStore(db)


@pytest.fixture
def salon(db, store):
    """
    Salon open 09:00–17:00 every day.

    Services: cut (30 min, 5000), colour (60 min, 8000)
    Stylists: Alice (cut + colour), Bob (cut)
    Deposits disabled; tests that need them switch the policy on.
    """
    for weekday in range(7):
        db.add(BusinessHours(weekday=weekday, is_open=1, open_time="09:00", close_time="17:00"))

    cut = Services(name="Haircut", duration_min=30, price=5000, is_active=1)
    colour = Services(name="Colour", duration_min=60, price=8000, is_active=1)
    db.add_all([cut, colour])
    db.flush()

    alice = Stylists(name="Alice", is_active=1, email="alice@salon.test")
    alice.services = [cut, colour]
    bob = Stylists(name="Bob", is_active=1, email="bob@salon.test")
    bob.services = [cut]
    db.add_all([alice, bob])
    db.flush()

    store.update_deposit_policy(deposit_enabled=0)
    db.commit()
    return {"cut": cut, "colour": colour, "alice": alice, "bob": bob}


@pytest.fixture
def telegram_user(db):
    user = Users(name="Tina", email="tina@example.com", telegram_id=555001)
    db.add(user)
    db.commit()
    return user


# ── Collaborators ────────────────────────────────────────────────────────────

@pytest.fixture
def emitter():
    return RecordingEmitter()


@pytest.fixture
def provider():
    return FakeDepositProvider()


@pytest.fixture
def locks():
    return LockManager(redis=None, timeout=2.0)


@pytest.fixture
def config():
    return BookingConfig(slot_step_minutes=30, timezone="Asia/Singapore")


@pytest.fixture
def deposits(store, provider):
    return DepositHoldManager(store, provider, hold_timeout_minutes=15, refund_window_hours=24)


@pytest.fixture
def booking(store, deposits, emitter, locks, config):
    return BookingService(store, deposits, emitter, locks, redis=None, config=config)


@pytest.fixture
def book(booking, salon):
    """Shortcut: book(time, service="cut", stylist="alice", email=...)."""
    def _book(time_str, service="cut", stylist="alice", email="carol@example.com", day=DAY_STR):
        request = BookingRequest(
            date=day,
            time=time_str,
            service_ids=[salon[service].id],
            customer_name="Carol",
            customer_email=email,
            stylist_id=salon[stylist].id if stylist else None,
        )
        return booking.create(request, now=MORNING)
    return _book
