"""
Scheduling engine.

Projects a provider's weekly template onto concrete calendar dates and
validates bookings against it.

A template slot is never consumed. Whether Monday 09:00 is free is always
re-derived from the active appointments on the exact date being asked
about, so a booking in one week never leaks into another.
"""
import enum
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from homeserve.lib.db import advisory_lock, store_guard, transaction
from homeserve.lib.errors import AppException, StoreUnavailable
from homeserve.lib.logging import get_logger
from homeserve.lib.metrics import MetricsCollector, get_metrics_collector
from homeserve.lib.settings import settings
from homeserve.models.appointments import Appointment, AppointmentStatus
from homeserve.models.availability import AvailabilitySlot
from homeserve.models.providers import Provider
from homeserve.models.services import Service
from homeserve.models.users import User, UserType
from homeserve.services.appointment_service import AppointmentService
from homeserve.services.availability_service import AvailabilityService
from homeserve.services.errors import (
    InvalidInput,
    NotFound,
    PastDateTime,
    SlotAlreadyBooked,
    SlotNotFound,
)
from homeserve.services.notification_service import Notifier, notify_safely
from homeserve.services.timeslots import ClockTime, DayOfWeek, business_now


logger = get_logger(__name__)

Clock = Callable[[], datetime]


class SlotStatus(str, enum.Enum):
    AVAILABLE = "available"
    BOOKED = "booked"
    PAST = "past"


@dataclass(frozen=True)
class SlotAvailability:
    """One template slot as seen on one calendar date."""
    slot_id: UUID
    date: date
    day_of_week: DayOfWeek
    start_time: ClockTime
    end_time: ClockTime
    status: SlotStatus
    appointment_id: Optional[UUID] = None

    @property
    def is_available(self) -> bool:
        return self.status == SlotStatus.AVAILABLE


@dataclass(frozen=True)
class WeeklyDay:
    day_of_week: DayOfWeek
    slot_count: int
    next_date: date


@dataclass
class RangeSummary:
    date_from: date
    date_to: date
    total: int = 0
    available: int = 0
    booked: int = 0
    past: int = 0


@dataclass(frozen=True)
class BookingRequest:
    provider_id: UUID
    customer_id: UUID
    service_id: UUID
    date: date
    time: ClockTime
    description: Optional[str] = None

    @property
    def scheduled(self) -> datetime:
        return self.time.on(self.date)


def _holder(slot: AvailabilitySlot, appointments: list[Appointment]) -> Optional[Appointment]:
    """
    The active appointment occupying ``slot`` among one date's appointments.

    Holding is decided by the slot's current window only. ``availability_id``
    is history and goes stale once the provider edits the slot's times.
    """
    time_range = slot.time_range
    for appointment in appointments:
        if time_range.contains(ClockTime.from_datetime(appointment.scheduled_date)):
            return appointment
    return None


class SchedulingEngine:
    """
    Date projection and booking validation over the weekly template.

    Args:
        db_session: Database session
        notifier: Receives booking side effects after commit
        clock: Returns the business-local current time
        metrics: Counter sink
    """

    def __init__(
        self,
        db_session: Session,
        notifier: Optional[Notifier] = None,
        clock: Clock = business_now,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.db = db_session
        self.notifier = notifier
        self.clock = clock
        self.metrics = metrics or get_metrics_collector()
        self.availability = AvailabilityService(db_session)
        self.appointments = AppointmentService(db_session)

    # ----- projection -----

    def project_day(self, provider_id: UUID, day: date) -> list[SlotAvailability]:
        """
        Classify every active slot of the provider for one calendar date.

        A slot is ``past`` when the date is before today, or is today and the
        slot starts at or before the current clock time. Otherwise it is
        ``booked`` when an active appointment on that date falls inside its
        window, and ``available`` when none does.

        Raises:
            NotFound: Provider does not exist
        """
        self._require(Provider, provider_id, "Provider")
        return self._project(provider_id, day, self.clock())

    def project_range(self, provider_id: UUID, start: date, days: int) -> dict[date, list[SlotAvailability]]:
        """Project ``days`` consecutive dates starting at ``start``."""
        self._check_span(days)
        self._require(Provider, provider_id, "Provider")
        now = self.clock()
        return {
            start + timedelta(days=offset): self._project(provider_id, start + timedelta(days=offset), now)
            for offset in range(days)
        }

    def summary(self, provider_id: UUID, start: date, days: int) -> RangeSummary:
        """Booked, free and past slot-occurrences over a date range."""
        projection = self.project_range(provider_id, start, days)
        result = RangeSummary(date_from=start, date_to=start + timedelta(days=days - 1))
        for slots in projection.values():
            for slot in slots:
                result.total += 1
                if slot.status == SlotStatus.AVAILABLE:
                    result.available += 1
                elif slot.status == SlotStatus.BOOKED:
                    result.booked += 1
                else:
                    result.past += 1
        return result

    def weekly_days(self, provider_id: UUID) -> list[WeeklyDay]:
        """Days of the week with at least one active slot, and when each next occurs."""
        self._require(Provider, provider_id, "Provider")
        today = self.clock().date()
        counts: dict[DayOfWeek, int] = {}
        for slot in self.availability.list_by_provider(provider_id, active_only=True):
            counts[slot.day_of_week] = counts.get(slot.day_of_week, 0) + 1
        return [
            WeeklyDay(day_of_week=day, slot_count=count, next_date=day.next_date(today))
            for day, count in sorted(counts.items(), key=lambda item: item[0].number)
        ]

    def _project(self, provider_id: UUID, day: date, now: datetime) -> list[SlotAvailability]:
        weekday = DayOfWeek.from_date(day)
        slots = self.availability.list_by_provider_and_day(provider_id, weekday, active_only=True)
        appointments = self.appointments.active_on_date(provider_id, day) if slots else []
        today, current = now.date(), ClockTime.from_datetime(now)

        result = []
        for slot in slots:
            start = ClockTime.from_time(slot.start_time)
            holder = _holder(slot, appointments)
            if day < today or (day == today and start <= current):
                status = SlotStatus.PAST
            elif holder is not None:
                status = SlotStatus.BOOKED
            else:
                status = SlotStatus.AVAILABLE
            result.append(SlotAvailability(
                slot_id=slot.id,
                date=day,
                day_of_week=weekday,
                start_time=start,
                end_time=ClockTime.from_time(slot.end_time),
                status=status,
                appointment_id=holder.id if holder is not None else None,
            ))
        return result

    # ----- booking -----

    def check_bookable(
        self,
        provider_id: UUID,
        day: date,
        start: ClockTime,
        exclude_id: Optional[UUID] = None,
    ) -> AvailabilitySlot:
        """
        Validate that (provider, date, time) can take an appointment.

        Checks run in order: the time must be the exact start of an active
        template slot, no other active appointment may hold that slot on
        that date, and the moment must be strictly in the future.

        Args:
            provider_id: Provider to book
            day: Calendar date
            start: Requested start time
            exclude_id: Appointment to ignore (the one being rescheduled)

        Returns:
            The matched template slot

        Raises:
            SlotNotFound, SlotAlreadyBooked, PastDateTime
        """
        weekday = DayOfWeek.from_date(day)
        slot = next(
            (
                s for s in self.availability.list_by_provider_and_day(provider_id, weekday, active_only=True)
                if ClockTime.from_time(s.start_time) == start
            ),
            None,
        )
        if slot is None:
            raise SlotNotFound(provider_id, weekday.label, str(start))

        appointments = [
            a for a in self.appointments.active_on_date(provider_id, day)
            if a.id != exclude_id
        ]
        holder = _holder(slot, appointments)
        if holder is not None:
            raise SlotAlreadyBooked(
                f"{weekday.label} {day.isoformat()} at {start} is already booked",
                details={"provider_id": str(provider_id), "date": day.isoformat(), "time": str(start)},
            )

        if start.on(day) <= self.clock():
            raise PastDateTime(
                "Cannot book a date and time in the past",
                details={"date": day.isoformat(), "time": str(start)},
            )
        return slot

    def create_booking(self, request: BookingRequest) -> Appointment:
        """
        Book a provider for a concrete date and template start time.

        The check-then-create runs as one transaction serialized per
        provider and date. The appointment is created ``accepted`` and both
        parties are notified after commit.

        Args:
            request: Booking parameters

        Returns:
            The created appointment

        Raises:
            NotFound: Provider, customer or service does not exist
            InvalidInput: Service is inactive or offered by another provider
            SlotNotFound, SlotAlreadyBooked, PastDateTime
        """
        try:
            with transaction(self.db):
                self._require(Provider, request.provider_id, "Provider")
                customer = self._require(User, request.customer_id, "Customer")
                if customer.type != UserType.CUSTOMER:
                    raise NotFound("Customer", str(request.customer_id))
                self._check_service(request.service_id, request.provider_id)

                advisory_lock(self.db, "booking", request.provider_id, request.date.isoformat())
                slot = self.check_bookable(request.provider_id, request.date, request.time)

                appointment = Appointment(
                    customer_id=request.customer_id,
                    provider_id=request.provider_id,
                    service_id=request.service_id,
                    availability_id=slot.id,
                    scheduled_date=request.scheduled,
                    status=AppointmentStatus.ACCEPTED,
                    repair_description=request.description,
                )
                self.db.add(appointment)
                self.db.flush()
        except IntegrityError as exc:
            error = SlotAlreadyBooked(
                f"{request.date.isoformat()} at {request.time} is already booked",
                details={"provider_id": str(request.provider_id), "date": request.date.isoformat(), "time": str(request.time)},
            )
            self._rejected(request, error)
            raise error from exc
        except StoreUnavailable:
            raise
        except AppException as exc:
            self._rejected(request, exc)
            raise

        self.metrics.increment_bookings_created()
        logger.info(
            "Booking created",
            extra={
                "appointment_id": str(appointment.id),
                "provider_id": str(request.provider_id),
                "scheduled_date": request.scheduled.isoformat(),
            },
        )
        notify_safely(self.notifier, "notify_booking_confirmed", appointment)
        return appointment

    # ----- helpers -----

    def _rejected(self, request: BookingRequest, error: AppException) -> None:
        self.metrics.increment_booking_conflicts(error.code)
        logger.warning(
            f"Booking rejected: {error.message}",
            extra={"code": error.code, "provider_id": str(request.provider_id)},
        )

    def _check_service(self, service_id: UUID, provider_id: UUID) -> Service:
        service = self._require(Service, service_id, "Service")
        if not service.active:
            raise InvalidInput("Service is not active", details={"service_id": str(service_id)})
        if service.provider_id is not None and service.provider_id != provider_id:
            raise InvalidInput(
                "Service is not offered by this provider",
                details={"service_id": str(service_id), "provider_id": str(provider_id)},
            )
        return service

    def _require(self, model, object_id: UUID, label: str):
        with store_guard(self.db):
            instance = self.db.get(model, object_id)
        if instance is None:
            raise NotFound(label, str(object_id))
        return instance

    @staticmethod
    def _check_span(days: int) -> None:
        if not 1 <= days <= settings.max_projection_days:
            raise InvalidInput(
                f"days must be between 1 and {settings.max_projection_days}",
                details={"days": days},
            )
