"""
Appointment store queries.

Read side of the appointment table: lookups with ownership checks,
paginated listings for either party, the date-scoped active set used by
conflict checks, and per-provider statistics.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Optional, Sequence
from uuid import UUID

from sqlalchemy import select, and_, func
from sqlalchemy.orm import Session

from homeserve.lib.db import store_guard
from homeserve.models.appointments import (
    ACTIVE_STATUSES,
    Appointment,
    AppointmentStatus,
)
from homeserve.models.providers import Provider
from homeserve.models.ratings import Rating
from homeserve.services.actors import Actor
from homeserve.services.errors import InvalidInput, NotFound, NotOwner
from homeserve.services.timeslots import day_bounds


SORT_FIELDS = {
    "scheduled_date": Appointment.scheduled_date,
    "created_at": Appointment.created_at,
}
MAX_PAGE_SIZE = 100


@dataclass
class AppointmentQuery:
    """Filters, pagination and ordering for appointment listings."""
    statuses: Sequence[AppointmentStatus] = ()
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    page: int = 1
    limit: int = 10
    sort_by: str = "scheduled_date"
    sort_order: str = "desc"

    def validate(self) -> None:
        if self.page < 1:
            raise InvalidInput("page must be >= 1")
        if not 1 <= self.limit <= MAX_PAGE_SIZE:
            raise InvalidInput(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        if self.sort_by not in SORT_FIELDS:
            raise InvalidInput(
                f"sort_by must be one of: {', '.join(SORT_FIELDS)}",
                details={"sort_by": self.sort_by},
            )
        if self.sort_order not in ("asc", "desc"):
            raise InvalidInput("sort_order must be 'asc' or 'desc'")
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise InvalidInput("date_from must not be after date_to")


@dataclass
class AppointmentPage:
    items: list[Appointment]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit


@dataclass
class AppointmentStats:
    total: int
    by_status: dict[str, int] = field(default_factory=dict)
    today: int = 0
    this_month: int = 0
    this_year: int = 0
    total_revenue: float = 0.0
    average_rating: float = 0.0
    completion_rate: int = 0


class AppointmentService:
    """Read-only access to appointments."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def get(self, appointment_id: UUID) -> Appointment:
        with store_guard(self.db):
            appointment = self.db.get(Appointment, appointment_id)
        if appointment is None:
            raise NotFound("Appointment", str(appointment_id))
        return appointment

    def get_for_actor(self, appointment_id: UUID, actor: Actor) -> Appointment:
        """
        Fetch an appointment the actor is a party to.

        Raises:
            NotFound: Appointment does not exist
            NotOwner: Actor is neither its customer nor its provider
        """
        appointment = self.get(appointment_id)
        ensure_party(appointment, actor)
        return appointment

    def list_for_provider(self, provider_id: UUID, query: Optional[AppointmentQuery] = None) -> AppointmentPage:
        return self._list(Appointment.provider_id == provider_id, query or AppointmentQuery())

    def list_for_customer(self, customer_id: UUID, query: Optional[AppointmentQuery] = None) -> AppointmentPage:
        return self._list(Appointment.customer_id == customer_id, query or AppointmentQuery())

    def active_on_date(self, provider_id: UUID, day: date) -> list[Appointment]:
        """Active appointments of a provider within [day 00:00, next day 00:00)."""
        start, end = day_bounds(day)
        query = (
            select(Appointment)
            .where(
                and_(
                    Appointment.provider_id == provider_id,
                    Appointment.scheduled_date >= start,
                    Appointment.scheduled_date < end,
                    Appointment.status.in_(list(ACTIVE_STATUSES)),
                )
            )
            .order_by(Appointment.scheduled_date.asc())
        )
        with store_guard(self.db):
            return list(self.db.execute(query).scalars().all())

    def find_active_at(
        self,
        provider_id: UUID,
        scheduled: datetime,
        exclude_id: Optional[UUID] = None,
    ) -> Optional[Appointment]:
        """The active appointment holding this exact provider timestamp, if any."""
        conditions = [
            Appointment.provider_id == provider_id,
            Appointment.scheduled_date == scheduled,
            Appointment.status.in_(list(ACTIVE_STATUSES)),
        ]
        if exclude_id is not None:
            conditions.append(Appointment.id != exclude_id)
        query = select(Appointment).where(and_(*conditions)).limit(1)
        with store_guard(self.db):
            return self.db.execute(query).scalars().first()

    def stats(self, provider_id: UUID, now: datetime) -> AppointmentStats:
        """
        Dashboard statistics for a provider.

        Args:
            provider_id: Provider to summarize
            now: Business-local current time for today/month/year windows

        Returns:
            AppointmentStats
        """
        with store_guard(self.db):
            provider = self.db.get(Provider, provider_id)
            if provider is None:
                raise NotFound("Provider", str(provider_id))

            rows = self.db.execute(
                select(Appointment.status, func.count(Appointment.id))
                .where(Appointment.provider_id == provider_id)
                .group_by(Appointment.status)
            ).all()
            by_status = {s.value: 0 for s in AppointmentStatus}
            for status, count in rows:
                by_status[AppointmentStatus(status).value] = count
            total = sum(by_status.values())

            today_start, today_end = day_bounds(now.date())
            month_start = datetime(now.year, now.month, 1)
            year_start = datetime(now.year, 1, 1)

            revenue = self.db.execute(
                select(func.coalesce(func.sum(Appointment.final_price), 0))
                .where(
                    and_(
                        Appointment.provider_id == provider_id,
                        Appointment.status == AppointmentStatus.COMPLETED,
                    )
                )
            ).scalar_one()
            average = self.db.execute(
                select(func.avg(Rating.rating_value)).where(Rating.provider_id == provider_id)
            ).scalar_one()

            completed = by_status[AppointmentStatus.COMPLETED.value]
            return AppointmentStats(
                total=total,
                by_status=by_status,
                today=self._count_between(provider_id, today_start, today_end),
                this_month=self._count_between(provider_id, month_start, _next_month(month_start)),
                this_year=self._count_between(provider_id, year_start, datetime(now.year + 1, 1, 1)),
                total_revenue=round(float(revenue or 0), 2),
                average_rating=round(float(average), 2) if average is not None else 0.0,
                completion_rate=round(completed * 100 / total) if total else 0,
            )

    def _count_between(self, provider_id: UUID, start: datetime, end: datetime) -> int:
        query = select(func.count(Appointment.id)).where(
            and_(
                Appointment.provider_id == provider_id,
                Appointment.scheduled_date >= start,
                Appointment.scheduled_date < end,
            )
        )
        return self.db.execute(query).scalar_one()

    def _list(self, owner_clause, query: AppointmentQuery) -> AppointmentPage:
        query.validate()
        conditions = [owner_clause]
        if query.statuses:
            conditions.append(Appointment.status.in_(list(query.statuses)))
        if query.date_from:
            conditions.append(Appointment.scheduled_date >= day_bounds(query.date_from)[0])
        if query.date_to:
            conditions.append(Appointment.scheduled_date < day_bounds(query.date_to)[1])
        column = SORT_FIELDS[query.sort_by]
        order = column.asc() if query.sort_order == "asc" else column.desc()

        with store_guard(self.db):
            total = self.db.execute(
                select(func.count(Appointment.id)).where(and_(*conditions))
            ).scalar_one()

            items = self.db.execute(
                select(Appointment)
                .where(and_(*conditions))
                .order_by(order, Appointment.id)
                .offset((query.page - 1) * query.limit)
                .limit(query.limit)
            ).scalars().all()

            return AppointmentPage(items=list(items), total=total, page=query.page, limit=query.limit)


def ensure_party(appointment: Appointment, actor: Actor) -> None:
    """Raise NotOwner unless the actor is a party to the appointment (admins pass)."""
    if actor.is_admin:
        return
    if actor.is_customer and appointment.customer_id == actor.id:
        return
    if actor.is_provider and appointment.provider_id == actor.id:
        return
    raise NotOwner(
        "You are not a party to this appointment",
        details={"appointment_id": str(appointment.id)},
    )


def _next_month(month_start: datetime) -> datetime:
    return (month_start + timedelta(days=32)).replace(day=1)
