"""
Unit tests for the weekly availability template store.
"""
from datetime import time
from unittest.mock import patch
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from homeserve.lib.errors import StoreUnavailable
from homeserve.models import AvailabilitySlot
from homeserve.services.availability_service import (
    AvailabilityService,
    SlotPatch,
    build_weekly_schedule,
)
from homeserve.services.errors import (
    HasBookings,
    InvalidFormat,
    InvalidInput,
    InvalidRange,
    NotFound,
    NotOwner,
    OverlapConflict,
)
from homeserve.services.timeslots import ClockTime, DayOfWeek, TimeRange

from conftest import next_weekday


def _at(value: str, day):
    return ClockTime.parse(value).on(day)


@pytest.fixture
def service(db):
    return AvailabilityService(db)


@pytest.mark.unit
def test_add_slot_defaults_to_active(service, make_provider):
    """Test a new slot is created active unless told otherwise."""
    provider = make_provider()

    slot = service.add_slot(provider.id, "tuesday", TimeRange.parse("09:00", "12:00"))

    assert slot.is_active is True
    assert slot.day_of_week == DayOfWeek.TUESDAY
    assert slot.start_time == time(9, 0)
    assert slot.end_time == time(12, 0)


@pytest.mark.unit
def test_add_slot_inactive(service, make_provider):
    """Test a slot can be created inactive."""
    provider = make_provider()
    slot = service.add_slot(provider.id, DayOfWeek.FRIDAY, TimeRange.parse("13:00", "14:00"), is_active=False)
    assert slot.is_active is False


@pytest.mark.unit
def test_add_overlapping_slot_rejected(service, make_provider):
    """Test Tuesday 11:00-13:00 is rejected next to Tuesday 09:00-12:00."""
    provider = make_provider()
    service.add_slot(provider.id, "tuesday", TimeRange.parse("09:00", "12:00"))

    with pytest.raises(OverlapConflict) as exc_info:
        service.add_slot(provider.id, "tuesday", TimeRange.parse("11:00", "13:00"))

    assert exc_info.value.code == "overlap_conflict"
    assert len(service.list_by_provider_and_day(provider.id, "tuesday")) == 1


@pytest.mark.unit
def test_overlap_checks_inactive_slots_too(service, make_provider):
    """Test inactive slots still block overlapping inserts."""
    provider = make_provider()
    service.add_slot(provider.id, "monday", TimeRange.parse("09:00", "12:00"), is_active=False)

    with pytest.raises(OverlapConflict):
        service.add_slot(provider.id, "monday", TimeRange.parse("10:00", "11:00"))


@pytest.mark.unit
def test_shared_boundary_start_rejected(service, make_provider):
    """Test a slot sharing an exact start time is rejected."""
    provider = make_provider()
    service.add_slot(provider.id, "monday", TimeRange.parse("09:00", "12:00"))

    with pytest.raises(OverlapConflict):
        service.add_slot(provider.id, "monday", TimeRange.parse("09:00", "09:30"))


@pytest.mark.unit
def test_disjoint_and_back_to_back_slots_accepted(service, make_provider):
    """Test disjoint and touching ranges on one day are both accepted."""
    provider = make_provider()
    service.add_slot(provider.id, "monday", TimeRange.parse("09:00", "10:00"))
    service.add_slot(provider.id, "monday", TimeRange.parse("10:00", "11:00"))
    service.add_slot(provider.id, "monday", TimeRange.parse("14:00", "15:00"))

    slots = service.list_by_provider_and_day(provider.id, "monday")
    assert [str(s.time_range) for s in slots] == ["09:00 - 10:00", "10:00 - 11:00", "14:00 - 15:00"]


@pytest.mark.unit
def test_same_range_on_other_day_accepted(service, make_provider):
    """Test overlap is scoped to provider and day."""
    provider = make_provider()
    other = make_provider()
    service.add_slot(provider.id, "monday", TimeRange.parse("09:00", "10:00"))
    service.add_slot(provider.id, "tuesday", TimeRange.parse("09:00", "10:00"))
    service.add_slot(other.id, "monday", TimeRange.parse("09:00", "10:00"))

    assert len(service.list_by_provider(provider.id)) == 2


@pytest.mark.unit
def test_add_slot_unknown_provider(service):
    """Test adding a slot for a missing provider raises NotFound."""
    with pytest.raises(NotFound):
        service.add_slot(uuid4(), "monday", TimeRange.parse("09:00", "10:00"))


@pytest.mark.unit
def test_list_by_provider_orders_by_day_then_start(service, make_provider):
    """Test listing is Monday first and ascending by start time."""
    provider = make_provider()
    service.add_slot(provider.id, "sunday", TimeRange.parse("08:00", "09:00"))
    service.add_slot(provider.id, "monday", TimeRange.parse("15:00", "16:00"))
    service.add_slot(provider.id, "monday", TimeRange.parse("08:00", "09:00"))
    service.add_slot(provider.id, "wednesday", TimeRange.parse("10:00", "11:00"))

    listed = [(s.day_of_week.value, str(s.time_range.start)) for s in service.list_by_provider(provider.id)]

    assert listed == [
        ("monday", "08:00"),
        ("monday", "15:00"),
        ("wednesday", "10:00"),
        ("sunday", "08:00"),
    ]


@pytest.mark.unit
def test_update_slot_moves_time(service, make_provider):
    """Test a partial update changes only the given fields."""
    provider = make_provider()
    slot = service.add_slot(provider.id, "monday", TimeRange.parse("09:00", "10:00"))

    updated = service.update_slot(slot.id, SlotPatch(end_time=ClockTime.parse("11:00")))

    assert updated.start_time == time(9, 0)
    assert updated.end_time == time(11, 0)
    assert updated.is_active is True


@pytest.mark.unit
def test_update_slot_ignores_itself_for_overlap(service, make_provider):
    """Test widening a slot does not conflict with its own old range."""
    provider = make_provider()
    slot = service.add_slot(provider.id, "monday", TimeRange.parse("09:00", "10:00"))

    updated = service.update_slot(slot.id, SlotPatch(start_time=ClockTime.parse("08:00")))

    assert updated.start_time == time(8, 0)


@pytest.mark.unit
def test_update_slot_rejects_overlap_on_new_day(service, make_provider):
    """Test moving a slot to a day where it overlaps is rejected and nothing changes."""
    provider = make_provider()
    service.add_slot(provider.id, "tuesday", TimeRange.parse("09:00", "12:00"))
    slot = service.add_slot(provider.id, "monday", TimeRange.parse("10:00", "11:00"))

    with pytest.raises(OverlapConflict):
        service.update_slot(slot.id, SlotPatch(day_of_week=DayOfWeek.TUESDAY))

    assert service.get_slot(slot.id).day_of_week == DayOfWeek.MONDAY


@pytest.mark.unit
def test_update_slot_rejects_inverted_range(service, make_provider):
    """Test an update that leaves start after end raises InvalidRange."""
    provider = make_provider()
    slot = service.add_slot(provider.id, "monday", TimeRange.parse("09:00", "10:00"))

    with pytest.raises(InvalidRange):
        service.update_slot(slot.id, SlotPatch(start_time=ClockTime.parse("10:30")))


@pytest.mark.unit
def test_update_slot_toggle_active(service, make_provider):
    """Test deactivating a slot through a patch."""
    provider = make_provider()
    slot = service.add_slot(provider.id, "monday", TimeRange.parse("09:00", "10:00"))

    updated = service.update_slot(slot.id, SlotPatch(is_active=False))

    assert updated.is_active is False
    assert service.list_by_provider(provider.id, active_only=True) == []


@pytest.mark.unit
def test_update_slot_empty_patch(service, make_provider):
    """Test an empty patch is rejected as invalid input."""
    provider = make_provider()
    slot = service.add_slot(provider.id, "monday", TimeRange.parse("09:00", "10:00"))

    with pytest.raises(InvalidInput):
        service.update_slot(slot.id, SlotPatch())


@pytest.mark.unit
def test_update_missing_slot(service):
    """Test updating a missing slot raises NotFound."""
    with pytest.raises(NotFound):
        service.update_slot(uuid4(), SlotPatch(is_active=False))


@pytest.mark.unit
def test_update_slot_of_other_provider(service, make_provider):
    """Test a provider cannot edit another provider's slot."""
    owner = make_provider()
    intruder = make_provider()
    slot = service.add_slot(owner.id, "monday", TimeRange.parse("09:00", "10:00"))

    with pytest.raises(NotOwner):
        service.update_slot(slot.id, SlotPatch(is_active=False), provider_id=intruder.id)


@pytest.mark.unit
def test_delete_unreferenced_slot(service, make_provider, db):
    """Test deleting a slot no appointment references."""
    provider = make_provider()
    slot = service.add_slot(provider.id, "monday", TimeRange.parse("09:00", "10:00"))

    service.delete_slot(slot.id, provider_id=provider.id)

    assert db.get(AvailabilitySlot, slot.id) is None


@pytest.mark.unit
def test_delete_referenced_slot_rejected(service, world, make_appointment):
    """Test a slot with appointment history cannot be deleted."""
    slot = world["slot"]
    make_appointment(
        world["customer"].id, world["provider"].id, world["service"].id,
        _at("09:00", next_weekday(DayOfWeek.MONDAY)),
        availability_id=slot.id,
    )

    with pytest.raises(HasBookings):
        service.delete_slot(slot.id)

    assert service.get_slot(slot.id) is not None


@pytest.mark.unit
def test_summary_counts(service, make_provider):
    """Test template summary totals and per-day counts of active slots."""
    provider = make_provider()
    service.add_slot(provider.id, "monday", TimeRange.parse("09:00", "10:00"))
    service.add_slot(provider.id, "monday", TimeRange.parse("13:00", "14:00"))
    service.add_slot(provider.id, "friday", TimeRange.parse("09:00", "10:00"), is_active=False)

    summary = service.summary(provider.id)

    assert summary.total_slots == 3
    assert summary.active_slots == 2
    assert summary.slots_per_day["monday"] == 2
    assert summary.slots_per_day["friday"] == 0
    assert set(summary.slots_per_day) == {d.value for d in DayOfWeek}


# ----- weekly bulk replace -----

@pytest.mark.unit
def test_build_weekly_schedule_from_entries():
    """Test per-day entries become a schedule; unavailable days contribute nothing."""
    schedule = build_weekly_schedule([
        {"day_of_week": "Monday", "is_available": True, "start_time": "09:00", "end_time": "12:00"},
        {"day_of_week": "Monday", "is_available": True, "start_time": "13:00", "end_time": "17:00"},
        {"day_of_week": "Sunday", "is_available": False},
    ])

    assert [str(r) for r in schedule[DayOfWeek.MONDAY]] == ["09:00 - 12:00", "13:00 - 17:00"]
    assert schedule[DayOfWeek.SUNDAY] == []


@pytest.mark.unit
@pytest.mark.parametrize("entry,error", [
    ({"day_of_week": "Monday", "start_time": "9am", "end_time": "12:00"}, InvalidFormat),
    ({"day_of_week": "Monday", "start_time": "12:00", "end_time": "09:00"}, InvalidRange),
    ({"day_of_week": "Someday", "start_time": "09:00", "end_time": "12:00"}, InvalidFormat),
    ({"day_of_week": "Monday", "is_available": True}, InvalidInput),
])
def test_build_weekly_schedule_validation(entry, error):
    """Test malformed weekly entries are rejected before the store is touched."""
    with pytest.raises(error):
        build_weekly_schedule([entry])


@pytest.mark.unit
def test_build_weekly_schedule_rejects_overlap_within_request():
    """Test two overlapping ranges for the same day in one request."""
    with pytest.raises(OverlapConflict):
        build_weekly_schedule([
            {"day_of_week": "Monday", "start_time": "09:00", "end_time": "12:00"},
            {"day_of_week": "Monday", "start_time": "11:00", "end_time": "13:00"},
        ])


@pytest.mark.unit
def test_set_weekly_replaces_unreferenced_slots(service, make_provider):
    """Test bulk replace deletes unreferenced slots and creates the new ones."""
    provider = make_provider()
    service.add_slot(provider.id, "monday", TimeRange.parse("09:00", "10:00"))
    service.add_slot(provider.id, "tuesday", TimeRange.parse("09:00", "10:00"))

    result = service.set_weekly_availability(provider.id, {
        DayOfWeek.WEDNESDAY: [TimeRange.parse("08:00", "12:00")],
    })

    assert [(s.day_of_week, str(s.time_range)) for s in result] == [
        (DayOfWeek.WEDNESDAY, "08:00 - 12:00"),
    ]


@pytest.mark.unit
def test_set_weekly_keeps_matching_slot_identity(service, make_provider):
    """Test a slot requested again keeps its id and is reactivated."""
    provider = make_provider()
    slot = service.add_slot(provider.id, "monday", TimeRange.parse("09:00", "10:00"), is_active=False)

    result = service.set_weekly_availability(provider.id, {
        DayOfWeek.MONDAY: [TimeRange.parse("09:00", "10:00")],
    })

    assert len(result) == 1
    assert result[0].id == slot.id
    assert result[0].is_active is True


@pytest.mark.unit
def test_set_weekly_preserves_referenced_slot(service, world, make_appointment):
    """Test a booked slot dropped from the week is deactivated, not deleted."""
    slot = world["slot"]
    appointment = make_appointment(
        world["customer"].id, world["provider"].id, world["service"].id,
        _at("09:00", next_weekday(DayOfWeek.MONDAY)),
        availability_id=slot.id,
    )

    result = service.set_weekly_availability(world["provider"].id, {
        DayOfWeek.TUESDAY: [TimeRange.parse("09:00", "10:00")],
    })

    by_id = {s.id: s for s in result}
    assert slot.id in by_id
    assert by_id[slot.id].is_active is False
    assert service.referenced_slot_ids([slot.id]) == {slot.id}
    assert appointment.availability_id == slot.id


@pytest.mark.unit
def test_set_weekly_rejects_conflict_with_preserved_slot(service, world, make_appointment, db):
    """Test a new range overlapping a preserved booked slot fails and nothing changes."""
    slot = world["slot"]
    make_appointment(
        world["customer"].id, world["provider"].id, world["service"].id,
        _at("09:00", next_weekday(DayOfWeek.MONDAY)),
        availability_id=slot.id,
    )
    service.add_slot(world["provider"].id, "friday", TimeRange.parse("09:00", "10:00"))

    with pytest.raises(OverlapConflict):
        service.set_weekly_availability(world["provider"].id, {
            DayOfWeek.MONDAY: [TimeRange.parse("09:30", "11:00")],
        })

    remaining = service.list_by_provider(world["provider"].id)
    assert {(s.day_of_week, s.is_active) for s in remaining} == {
        (DayOfWeek.MONDAY, True),
        (DayOfWeek.FRIDAY, True),
    }



@pytest.mark.unit
def test_provider_views_require_provider(service):
    """Test the customer-facing template views reject an unknown provider."""
    with pytest.raises(NotFound):
        service.provider_template(uuid4())
    with pytest.raises(NotFound):
        service.provider_day(uuid4(), "monday")


@pytest.mark.unit
def test_provider_views_list_active_slots(service, world, make_slot):
    """Test the customer-facing views hide inactive slots."""
    make_slot(world["provider"].id, "monday", "13:00", "14:00", is_active=False)

    assert [s.id for s in service.provider_template(world["provider"].id)] == [world["slot"].id]
    assert [s.id for s in service.provider_day(world["provider"].id, "Mon")] == [world["slot"].id]


@pytest.mark.unit
def test_flush_failure_leaves_template_unchanged(service, make_provider, db):
    """Test a connection lost while saving a slot raises StoreUnavailable and writes nothing."""
    provider = make_provider()
    lost = OperationalError("INSERT", {}, Exception("server closed the connection unexpectedly"))

    with patch.object(db, "flush", side_effect=lost):
        with pytest.raises(StoreUnavailable):
            service.add_slot(provider.id, "tuesday", TimeRange.parse("09:00", "12:00"))

    assert db.query(AvailabilitySlot).filter_by(provider_id=provider.id).count() == 0
