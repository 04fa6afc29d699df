"""
Shared fixtures.

Every test gets its own SQLite database file. The clock is frozen at
Wednesday 2026-03-04 10:30 business time so "past" and "next Monday" are
deterministic.
"""
import os
import tempfile
from datetime import date, datetime, time, timedelta

# Must be set before homeserve.lib.db builds its module-level engine
os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(tempfile.gettempdir(), "homeserve-import.db")
os.environ.setdefault("NOTIFICATION_PROVIDER", "log")
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from homeserve.api.app import app
from homeserve.api.dependencies import get_clock, get_db, get_notifier
from homeserve.lib.db import create_db_engine, init_db
from homeserve.lib.jwt import create_access_token
from homeserve.lib.metrics import get_metrics_collector, reset_metrics
from homeserve.models import (
    Appointment,
    AppointmentStatus,
    AvailabilitySlot,
    Provider,
    Service,
    ServiceCategory,
    User,
    UserType,
)
from homeserve.services.notification_service import Notifier
from homeserve.services.timeslots import DayOfWeek


FIXED_NOW = datetime(2026, 3, 4, 10, 30)
TODAY = FIXED_NOW.date()


def fixed_clock() -> datetime:
    return FIXED_NOW


def next_weekday(day: DayOfWeek, weeks_ahead: int = 0, start: date = TODAY) -> date:
    """First date strictly after ``start`` falling on ``day``, plus whole weeks."""
    first = day.next_date(start + timedelta(days=1))
    return first + timedelta(weeks=weeks_ahead)


class RecordingNotifier(Notifier):
    """Notifier that records calls instead of delivering."""

    def __init__(self):
        self.calls = []

    def notify_booking_confirmed(self, appointment):
        self.calls.append(("booking_confirmed", appointment.id))

    def notify_booking_cancelled(self, appointment, reason):
        self.calls.append(("booking_cancelled", appointment.id, reason))

    def notify_completion(self, appointment):
        self.calls.append(("completion", appointment.id))

    def notify_rescheduled(self, appointment):
        self.calls.append(("rescheduled", appointment.id))

    def events(self):
        return [call[0] for call in self.calls]


@pytest.fixture
def engine(tmp_path):
    db_engine = create_db_engine(f"sqlite:///{tmp_path / 'homeserve.db'}")
    init_db(bind=db_engine)
    yield db_engine
    db_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def metrics():
    reset_metrics()
    collector = get_metrics_collector()
    yield collector
    reset_metrics()


@pytest.fixture
def client(session_factory, notifier, metrics):
    """TestClient with one fresh session per request against the test database."""
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_clock] = lambda: fixed_clock

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()


def auth_headers(actor_id, actor_type: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token(str(actor_id), actor_type)}"}


# ----- factories -----

@pytest.fixture
def make_provider(db):
    counter = {"n": 0}

    def _make_provider(name=None) -> Provider:
        counter["n"] += 1
        user = User(
            name=name or f"Provider {counter['n']}",
            email=f"provider{counter['n']}@example.com",
            type=UserType.PROVIDER,
        )
        db.add(user)
        db.flush()
        provider = Provider(id=user.id)
        db.add(provider)
        db.commit()
        return provider
    return _make_provider


@pytest.fixture
def make_customer(db):
    counter = {"n": 0}

    def _make_customer(name=None) -> User:
        counter["n"] += 1
        user = User(
            name=name or f"Customer {counter['n']}",
            phone=f"+6390000000{counter['n']:02d}",
            type=UserType.CUSTOMER,
        )
        db.add(user)
        db.commit()
        return user
    return _make_customer


@pytest.fixture
def make_service(db):
    def _make_service(provider_id=None, active=True) -> Service:
        service = Service(
            provider_id=provider_id,
            name="Aircon Cleaning",
            category=ServiceCategory.APPLIANCE_REPAIR,
            base_price=1500,
            duration_minutes=60,
            active=active,
        )
        db.add(service)
        db.commit()
        return service
    return _make_service


@pytest.fixture
def make_slot(db):
    def _make_slot(provider_id, day, start: str, end: str, is_active=True) -> AvailabilitySlot:
        h1, m1 = map(int, start.split(":"))
        h2, m2 = map(int, end.split(":"))
        slot = AvailabilitySlot(
            provider_id=provider_id,
            day_of_week=DayOfWeek.parse(day),
            start_time=time(h1, m1),
            end_time=time(h2, m2),
            is_active=is_active,
        )
        db.add(slot)
        db.commit()
        return slot
    return _make_slot


@pytest.fixture
def make_appointment(db):
    def _make_appointment(
        customer_id,
        provider_id,
        service_id,
        scheduled: datetime,
        status=AppointmentStatus.ACCEPTED,
        availability_id=None,
    ) -> Appointment:
        appointment = Appointment(
            customer_id=customer_id,
            provider_id=provider_id,
            service_id=service_id,
            availability_id=availability_id,
            scheduled_date=scheduled,
            status=status,
        )
        db.add(appointment)
        db.commit()
        return appointment
    return _make_appointment


@pytest.fixture
def world(make_provider, make_customer, make_service, make_slot):
    """One provider with a Monday 09:00-10:00 slot, one service and two customers."""
    provider = make_provider()
    service = make_service(provider_id=provider.id)
    slot = make_slot(provider.id, "monday", "09:00", "10:00")
    return {
        "provider": provider,
        "service": service,
        "slot": slot,
        "customer": make_customer(),
        "other_customer": make_customer(),
    }
