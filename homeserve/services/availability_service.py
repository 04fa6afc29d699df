"""
Availability store: a provider's recurring weekly template.

Slots are (day of week, clock range, active flag) rows. No two slots of a
provider on the same day may conflict, whether active or not; see
``TimeRange.conflicts_with`` for the policy.
"""
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Union
from uuid import UUID

from sqlalchemy import select, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from homeserve.lib.db import advisory_lock, store_guard, transaction
from homeserve.lib.logging import get_logger
from homeserve.models.appointments import Appointment
from homeserve.models.availability import AvailabilitySlot
from homeserve.models.providers import Provider
from homeserve.services.errors import (
    HasBookings,
    InvalidInput,
    NotFound,
    NotOwner,
    OverlapConflict,
)
from homeserve.services.timeslots import ClockTime, DayOfWeek, TimeRange


logger = get_logger(__name__)

WeeklySchedule = Mapping[DayOfWeek, list[TimeRange]]


@dataclass
class SlotPatch:
    """Partial update of a template slot; ``None`` leaves a field unchanged."""
    day_of_week: Optional[DayOfWeek] = None
    start_time: Optional[ClockTime] = None
    end_time: Optional[ClockTime] = None
    is_active: Optional[bool] = None

    def is_empty(self) -> bool:
        return all(
            value is None
            for value in (self.day_of_week, self.start_time, self.end_time, self.is_active)
        )


@dataclass
class AvailabilitySummary:
    total_slots: int
    active_slots: int
    slots_per_day: dict[str, int]


def _field(entry: Any, name: str, default=None):
    if isinstance(entry, Mapping):
        return entry.get(name, default)
    return getattr(entry, name, default)


def build_weekly_schedule(entries: Iterable[Any]) -> dict[DayOfWeek, list[TimeRange]]:
    """
    Convert per-day entries into a weekly schedule.

    Each entry carries ``day_of_week``, ``is_available``, ``start_time`` and
    ``end_time``. Unavailable days contribute nothing. Every entry is
    validated before anything is returned, and ranges requested for the same
    day must not conflict with each other.

    Raises:
        InvalidFormat: Unknown day name or malformed clock time
        InvalidRange: start_time not before end_time
        InvalidInput: An available day without times
        OverlapConflict: Two requested ranges on the same day conflict
    """
    schedule: dict[DayOfWeek, list[TimeRange]] = {}
    for entry in entries:
        day = DayOfWeek.parse(_field(entry, "day_of_week"))
        if not _field(entry, "is_available", True):
            schedule.setdefault(day, [])
            continue
        start, end = _field(entry, "start_time"), _field(entry, "end_time")
        if not start or not end:
            raise InvalidInput(
                f"{day.label} is marked available but has no start_time/end_time",
                details={"day_of_week": day.value},
            )
        new_range = TimeRange.parse(start, end)
        for existing in schedule.setdefault(day, []):
            if new_range.conflicts_with(existing):
                raise OverlapConflict(
                    f"{day.label} {new_range} conflicts with {existing} in the same request",
                    details={"day_of_week": day.value, "start_time": str(new_range.start), "end_time": str(new_range.end)},
                )
        schedule[day].append(new_range)
    return schedule


def _sort_key(slot: AvailabilitySlot):
    return (slot.day_of_week.number, slot.start_time)


class AvailabilityService:
    """Service for a provider's weekly availability template."""

    def __init__(self, db_session: Session):
        self.db = db_session

    # ----- queries -----

    def get_slot(self, slot_id: UUID) -> AvailabilitySlot:
        with store_guard(self.db):
            slot = self.db.get(AvailabilitySlot, slot_id)
        if slot is None:
            raise NotFound("Availability slot", str(slot_id))
        return slot

    def list_by_provider(self, provider_id: UUID, active_only: bool = False) -> list[AvailabilitySlot]:
        """All slots of a provider, Monday first, then by start time."""
        query = select(AvailabilitySlot).where(AvailabilitySlot.provider_id == provider_id)
        if active_only:
            query = query.where(AvailabilitySlot.is_active == True)  # noqa: E712
        with store_guard(self.db):
            slots = self.db.execute(query).scalars().all()
        return sorted(slots, key=_sort_key)

    def list_by_provider_and_day(
        self,
        provider_id: UUID,
        day: Union[DayOfWeek, str],
        active_only: bool = False,
    ) -> list[AvailabilitySlot]:
        """Slots for one day of the week, ordered by start time."""
        day = DayOfWeek.parse(day)
        query = (
            select(AvailabilitySlot)
            .where(
                and_(
                    AvailabilitySlot.provider_id == provider_id,
                    AvailabilitySlot.day_of_week == day,
                )
            )
            .order_by(AvailabilitySlot.start_time.asc())
        )
        if active_only:
            query = query.where(AvailabilitySlot.is_active == True)  # noqa: E712
        with store_guard(self.db):
            return list(self.db.execute(query).scalars().all())

    def provider_template(self, provider_id: UUID) -> list[AvailabilitySlot]:
        """
        Active weekly template as shown to customers.

        Raises:
            NotFound: Provider does not exist
        """
        self._require_provider(provider_id)
        return self.list_by_provider(provider_id, active_only=True)

    def provider_day(self, provider_id: UUID, day: Union[DayOfWeek, str]) -> list[AvailabilitySlot]:
        """Active slots of one weekday as shown to customers."""
        self._require_provider(provider_id)
        return self.list_by_provider_and_day(provider_id, day, active_only=True)

    def summary(self, provider_id: UUID) -> AvailabilitySummary:
        """Slot counts for the provider's template."""
        self._require_provider(provider_id)
        slots = self.list_by_provider(provider_id)
        per_day = {day.value: 0 for day in DayOfWeek}
        for slot in slots:
            if slot.is_active:
                per_day[slot.day_of_week.value] += 1
        return AvailabilitySummary(
            total_slots=len(slots),
            active_slots=sum(1 for s in slots if s.is_active),
            slots_per_day=per_day,
        )

    def referenced_slot_ids(self, slot_ids: Iterable[UUID]) -> set[UUID]:
        """Ids among ``slot_ids`` that at least one appointment points at."""
        slot_ids = list(slot_ids)
        if not slot_ids:
            return set()
        query = (
            select(Appointment.availability_id)
            .where(Appointment.availability_id.in_(slot_ids))
            .distinct()
        )
        with store_guard(self.db):
            return set(self.db.execute(query).scalars().all())

    # ----- mutations -----

    def add_slot(
        self,
        provider_id: UUID,
        day: Union[DayOfWeek, str],
        time_range: TimeRange,
        is_active: bool = True,
    ) -> AvailabilitySlot:
        """
        Create a template slot.

        Args:
            provider_id: Owning provider
            day: Day of the week
            time_range: Validated clock range
            is_active: Initial active flag

        Returns:
            The created slot

        Raises:
            NotFound: Provider does not exist
            OverlapConflict: Range conflicts with another slot on that day
        """
        day = DayOfWeek.parse(day)
        try:
            with transaction(self.db):
                self._require_provider(provider_id)
                advisory_lock(self.db, "availability", provider_id)
                self._check_conflicts(provider_id, day, time_range)

                slot = AvailabilitySlot(
                    provider_id=provider_id,
                    day_of_week=day,
                    start_time=time_range.start.to_time(),
                    end_time=time_range.end.to_time(),
                    is_active=is_active,
                )
                self.db.add(slot)
                self.db.flush()
        except IntegrityError as exc:
            raise self._overlap(day, time_range) from exc

        logger.info(
            f"Availability slot added: {day.label} {time_range}",
            extra={"provider_id": str(provider_id), "slot_id": str(slot.id)},
        )
        return slot

    def update_slot(
        self,
        slot_id: UUID,
        patch: SlotPatch,
        provider_id: Optional[UUID] = None,
    ) -> AvailabilitySlot:
        """
        Partially update a slot and re-validate overlap on its (new) day.

        Args:
            slot_id: Slot to update
            patch: Fields to change
            provider_id: Acting provider; must own the slot when given

        Raises:
            InvalidInput: Empty patch
            NotFound: Slot does not exist
            NotOwner: Slot belongs to another provider
            InvalidRange: Resulting start not before end
            OverlapConflict: Resulting range conflicts with another slot
        """
        if patch.is_empty():
            raise InvalidInput("At least one field must be provided")

        try:
            with transaction(self.db):
                slot = self.get_slot(slot_id)
                self._check_owner(slot, provider_id)

                day = patch.day_of_week or slot.day_of_week
                time_range = TimeRange(
                    patch.start_time or ClockTime.from_time(slot.start_time),
                    patch.end_time or ClockTime.from_time(slot.end_time),
                )
                advisory_lock(self.db, "availability", slot.provider_id)
                self._check_conflicts(slot.provider_id, day, time_range, exclude_id=slot.id)

                slot.day_of_week = day
                slot.start_time = time_range.start.to_time()
                slot.end_time = time_range.end.to_time()
                if patch.is_active is not None:
                    slot.is_active = patch.is_active
                self.db.flush()
        except IntegrityError as exc:
            raise self._overlap(day, time_range) from exc

        logger.info(
            f"Availability slot updated: {day.label} {time_range}",
            extra={"provider_id": str(slot.provider_id), "slot_id": str(slot.id)},
        )
        return slot

    def delete_slot(self, slot_id: UUID, provider_id: Optional[UUID] = None) -> None:
        """
        Delete a slot that no appointment references.

        Raises:
            NotFound: Slot does not exist
            NotOwner: Slot belongs to another provider
            HasBookings: An appointment references the slot
        """
        with transaction(self.db):
            slot = self.get_slot(slot_id)
            self._check_owner(slot, provider_id)
            if self.referenced_slot_ids([slot.id]):
                logger.warning(
                    "Refused to delete referenced availability slot",
                    extra={"slot_id": str(slot.id)},
                )
                raise HasBookings(
                    "Cannot delete a slot that has appointments; deactivate it instead",
                    details={"slot_id": str(slot.id)},
                )
            self.db.delete(slot)

        logger.info("Availability slot deleted", extra={"slot_id": str(slot_id)})

    def set_weekly_availability(
        self,
        provider_id: UUID,
        schedule: WeeklySchedule,
    ) -> list[AvailabilitySlot]:
        """
        Replace the provider's whole weekly template.

        Slots matching a requested (day, range) exactly are kept and
        reactivated. Other slots that appointments reference are kept but
        deactivated so the back-reference survives; unreferenced ones are
        deleted. Requested ranges that are new are created, and must not
        conflict with a preserved slot.

        Args:
            provider_id: Provider whose template is replaced
            schedule: Desired active ranges per day (see ``build_weekly_schedule``)

        Returns:
            The provider's resulting template

        Raises:
            NotFound: Provider does not exist
            OverlapConflict: A requested range conflicts with another
                requested range or a preserved slot
        """
        desired = {
            (DayOfWeek.parse(day), time_range)
            for day, ranges in schedule.items()
            for time_range in ranges
        }
        for day, ranges in schedule.items():
            for i, first in enumerate(ranges):
                for second in ranges[i + 1:]:
                    if first.conflicts_with(second):
                        raise self._overlap(DayOfWeek.parse(day), second)

        try:
            with transaction(self.db):
                self._require_provider(provider_id)
                advisory_lock(self.db, "availability", provider_id)

                existing = self.list_by_provider(provider_id)
                referenced = self.referenced_slot_ids(s.id for s in existing)
                preserved: list[AvailabilitySlot] = []
                created = kept = deactivated = deleted = 0

                for slot in existing:
                    key = (slot.day_of_week, slot.time_range)
                    if key in desired:
                        slot.is_active = True
                        desired.discard(key)
                        kept += 1
                    elif slot.id in referenced:
                        slot.is_active = False
                        preserved.append(slot)
                        deactivated += 1
                    else:
                        self.db.delete(slot)
                        deleted += 1
                self.db.flush()

                for day, time_range in sorted(desired, key=lambda item: (item[0].number, item[1].start)):
                    for slot in preserved:
                        if slot.day_of_week == day and time_range.conflicts_with(slot.time_range):
                            raise OverlapConflict(
                                f"{day.label} {time_range} conflicts with booked slot {slot.time_range}",
                                details={
                                    "day_of_week": day.value,
                                    "start_time": str(time_range.start),
                                    "end_time": str(time_range.end),
                                    "conflicting_slot_id": str(slot.id),
                                },
                            )
                    self.db.add(AvailabilitySlot(
                        provider_id=provider_id,
                        day_of_week=day,
                        start_time=time_range.start.to_time(),
                        end_time=time_range.end.to_time(),
                        is_active=True,
                    ))
                    created += 1
                self.db.flush()
        except IntegrityError as exc:
            raise OverlapConflict("Weekly availability conflicts with an existing slot") from exc

        logger.info(
            "Weekly availability replaced",
            extra={
                "provider_id": str(provider_id),
                "added": created,
                "kept": kept,
                "deactivated": deactivated,
                "deleted": deleted,
            },
        )
        return self.list_by_provider(provider_id)

    # ----- helpers -----

    def _require_provider(self, provider_id: UUID) -> Provider:
        with store_guard(self.db):
            provider = self.db.get(Provider, provider_id)
        if provider is None:
            raise NotFound("Provider", str(provider_id))
        return provider

    def _check_owner(self, slot: AvailabilitySlot, provider_id: Optional[UUID]) -> None:
        if provider_id is not None and slot.provider_id != provider_id:
            raise NotOwner("Availability slot belongs to another provider")

    def _check_conflicts(
        self,
        provider_id: UUID,
        day: DayOfWeek,
        time_range: TimeRange,
        exclude_id: Optional[UUID] = None,
    ) -> None:
        for other in self.list_by_provider_and_day(provider_id, day):
            if other.id == exclude_id:
                continue
            if time_range.conflicts_with(other.time_range):
                logger.warning(
                    f"Availability overlap rejected: {day.label} {time_range} vs {other.time_range}",
                    extra={"provider_id": str(provider_id)},
                )
                raise OverlapConflict(
                    f"{day.label} {time_range} overlaps existing slot {other.time_range}",
                    details={
                        "day_of_week": day.value,
                        "start_time": str(time_range.start),
                        "end_time": str(time_range.end),
                        "conflicting_slot_id": str(other.id),
                    },
                )

    @staticmethod
    def _overlap(day: DayOfWeek, time_range: TimeRange) -> OverlapConflict:
        return OverlapConflict(
            f"{day.label} {time_range} overlaps an existing slot",
            details={"day_of_week": day.value, "start_time": str(time_range.start), "end_time": str(time_range.end)},
        )

