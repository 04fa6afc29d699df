"""
Unit tests for appointment listings, lookups and provider statistics.
"""
from datetime import date, datetime, timedelta
from decimal import Decimal
from unittest.mock import MagicMock
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from homeserve.lib.errors import StoreUnavailable
from homeserve.models import AppointmentStatus, Rating
from homeserve.services.actors import Actor, ActorRole
from homeserve.services.appointment_service import AppointmentQuery, AppointmentService
from homeserve.services.errors import InvalidInput, NotFound, NotOwner

from conftest import FIXED_NOW


S = AppointmentStatus


@pytest.fixture
def service(db):
    return AppointmentService(db)


@pytest.fixture
def history(world, make_appointment):
    """Five appointments for the world provider spread over March 2026."""
    customer, provider, svc = world["customer"].id, world["provider"].id, world["service"].id
    return [
        make_appointment(customer, provider, svc, datetime(2026, 3, 2, 9), status=S.COMPLETED),
        make_appointment(customer, provider, svc, datetime(2026, 3, 4, 14), status=S.CANCELLED),
        make_appointment(customer, provider, svc, datetime(2026, 3, 9, 9), status=S.ACCEPTED),
        make_appointment(world["other_customer"].id, provider, svc, datetime(2026, 3, 16, 9), status=S.PENDING),
        make_appointment(customer, provider, svc, datetime(2026, 4, 6, 9), status=S.CONFIRMED),
    ]


@pytest.mark.unit
def test_get_missing(service):
    """Test a missing appointment raises NotFound."""
    with pytest.raises(NotFound):
        service.get(uuid4())


@pytest.mark.unit
def test_get_for_actor_checks_party(service, world, history):
    """Test parties and admins can read an appointment, strangers cannot."""
    appointment = history[0]

    assert service.get_for_actor(appointment.id, Actor(world["customer"].id, ActorRole.CUSTOMER)) is appointment
    assert service.get_for_actor(appointment.id, Actor(world["provider"].id, ActorRole.PROVIDER)) is appointment
    assert service.get_for_actor(appointment.id, Actor(uuid4(), ActorRole.ADMIN)) is appointment
    with pytest.raises(NotOwner):
        service.get_for_actor(appointment.id, Actor(world["other_customer"].id, ActorRole.CUSTOMER))


@pytest.mark.unit
def test_list_for_provider_default_newest_first(service, world, history):
    """Test default listing is by scheduled date descending."""
    page = service.list_for_provider(world["provider"].id)

    assert page.total == 5
    assert page.pages == 1
    assert [a.scheduled_date for a in page.items] == sorted((a.scheduled_date for a in history), reverse=True)


@pytest.mark.unit
def test_list_pagination(service, world, history):
    """Test page and limit slice the ordered results."""
    query = AppointmentQuery(page=2, limit=2, sort_order="asc")

    page = service.list_for_provider(world["provider"].id, query)

    assert page.total == 5
    assert page.pages == 3
    assert [a.id for a in page.items] == [history[2].id, history[3].id]


@pytest.mark.unit
def test_list_filters(service, world, history):
    """Test status and inclusive date filters."""
    active = service.list_for_provider(
        world["provider"].id,
        AppointmentQuery(statuses=[S.ACCEPTED, S.PENDING, S.CONFIRMED]),
    )
    assert active.total == 3

    march_first_half = service.list_for_provider(
        world["provider"].id,
        AppointmentQuery(date_from=date(2026, 3, 4), date_to=date(2026, 3, 9)),
    )
    assert {a.id for a in march_first_half.items} == {history[1].id, history[2].id}


@pytest.mark.unit
def test_list_for_customer_only_own(service, world, history):
    """Test customers only see their own appointments."""
    page = service.list_for_customer(world["other_customer"].id)
    assert [a.id for a in page.items] == [history[3].id]


@pytest.mark.unit
@pytest.mark.parametrize("query", [
    AppointmentQuery(page=0),
    AppointmentQuery(limit=0),
    AppointmentQuery(limit=101),
    AppointmentQuery(sort_by="price"),
    AppointmentQuery(sort_order="sideways"),
    AppointmentQuery(date_from=date(2026, 3, 9), date_to=date(2026, 3, 1)),
])
def test_list_rejects_bad_query(service, world, query):
    """Test malformed listing parameters raise InvalidInput."""
    with pytest.raises(InvalidInput):
        service.list_for_provider(world["provider"].id, query)


@pytest.mark.unit
def test_active_on_date(service, world, history, make_appointment):
    """Test the active set is bounded to one date and skips terminal statuses."""
    make_appointment(
        world["customer"].id, world["provider"].id, world["service"].id,
        datetime(2026, 3, 9, 23, 59), status=S.IN_PROGRESS,
    )

    active = service.active_on_date(world["provider"].id, date(2026, 3, 9))
    assert [a.scheduled_date.hour for a in active] == [9, 23]
    assert service.active_on_date(world["provider"].id, date(2026, 3, 4)) == []


@pytest.mark.unit
def test_find_active_at(service, world, history):
    """Test exact-timestamp lookup honours exclusion."""
    moment = datetime(2026, 3, 9, 9)
    assert service.find_active_at(world["provider"].id, moment).id == history[2].id
    assert service.find_active_at(world["provider"].id, moment, exclude_id=history[2].id) is None
    assert service.find_active_at(world["provider"].id, datetime(2026, 3, 2, 9)) is None


@pytest.mark.unit
def test_stats(service, world, history, db):
    """Test provider statistics for the frozen clock."""
    history[0].final_price = Decimal("1500.50")
    db.add(Rating(
        appointment_id=history[0].id,
        user_id=world["customer"].id,
        provider_id=world["provider"].id,
        rating_value=4,
    ))
    db.commit()

    stats = service.stats(world["provider"].id, FIXED_NOW)

    assert stats.total == 5
    assert stats.by_status["completed"] == 1
    assert stats.by_status["no_show"] == 0
    assert stats.today == 1
    assert stats.this_month == 4
    assert stats.this_year == 5
    assert stats.total_revenue == 1500.5
    assert stats.average_rating == 4.0
    assert stats.completion_rate == 20


@pytest.mark.unit
def test_stats_empty_provider(service, make_provider):
    """Test statistics for a provider with no appointments."""
    stats = service.stats(make_provider().id, FIXED_NOW + timedelta(days=1))
    assert stats.total == 0
    assert stats.completion_rate == 0
    assert stats.average_rating == 0.0


@pytest.mark.unit
@pytest.mark.parametrize("call", ["get_for_actor", "list_for_provider", "stats"])
def test_reads_report_store_unavailable(call):
    """Test an unreachable store on a lookup or listing raises StoreUnavailable."""
    session = MagicMock(spec=Session)
    session.get.side_effect = OperationalError("SELECT 1", {}, Exception("could not connect to server"))
    session.execute.side_effect = OperationalError("SELECT 1", {}, Exception("could not connect to server"))
    service = AppointmentService(session)
    args = {
        "get_for_actor": (uuid4(), Actor(id=uuid4(), role=ActorRole.CUSTOMER)),
        "list_for_provider": (uuid4(),),
        "stats": (uuid4(), FIXED_NOW),
    }[call]

    with pytest.raises(StoreUnavailable):
        getattr(service, call)(*args)
