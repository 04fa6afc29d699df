"""
Appointment lifecycle manager.

Legal status changes are a table keyed by (current status, actor role).
Providers move an appointment strictly forward along

    pending -> accepted/approved -> confirmed -> on_the_way -> in_progress -> completed

or end it as cancelled/no_show from any non-terminal status. Customers
can only cancel, and only before the provider is on the way.

Each operation is one transaction; notifications go out after commit.
"""
from datetime import date
from decimal import Decimal
from typing import Callable, Optional, Union
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from homeserve.lib.db import advisory_lock, transaction
from homeserve.lib.logging import get_logger
from homeserve.lib.metrics import MetricsCollector, get_metrics_collector
from homeserve.models.appointments import Appointment, AppointmentStatus
from homeserve.models.providers import Provider
from homeserve.models.ratings import Rating
from homeserve.services.actors import Actor, ActorRole
from homeserve.services.appointment_service import AppointmentService, ensure_party
from homeserve.services.errors import (
    AlreadyRated,
    InvalidInput,
    InvalidTransition,
    NotOwner,
    NotRatable,
    SlotAlreadyBooked,
)
from homeserve.services.notification_service import Notifier, notify_safely
from homeserve.services.scheduling_engine import SchedulingEngine
from homeserve.services.timeslots import ClockTime, business_now


logger = get_logger(__name__)

S = AppointmentStatus

# Position on the forward chain; accepted and approved are synonyms
STATUS_RANK = {
    S.PENDING: 0,
    S.ACCEPTED: 1,
    S.APPROVED: 1,
    S.CONFIRMED: 2,
    S.ON_THE_WAY: 3,
    S.IN_PROGRESS: 4,
    S.COMPLETED: 5,
}

CUSTOMER_CANCELLABLE = frozenset({S.PENDING, S.ACCEPTED, S.APPROVED, S.CONFIRMED})
RESCHEDULABLE = CUSTOMER_CANCELLABLE


def _build_transitions() -> dict[tuple[AppointmentStatus, ActorRole], frozenset]:
    table = {}
    for status in AppointmentStatus:
        if status.is_terminal:
            continue
        forward = {s for s, rank in STATUS_RANK.items() if rank > STATUS_RANK[status]}
        provider_moves = frozenset(forward | {S.CANCELLED, S.NO_SHOW})
        table[(status, ActorRole.PROVIDER)] = provider_moves
        table[(status, ActorRole.ADMIN)] = provider_moves
        if status in CUSTOMER_CANCELLABLE:
            table[(status, ActorRole.CUSTOMER)] = frozenset({S.CANCELLED})
    return table


TRANSITIONS = _build_transitions()


def allowed_transitions(status: AppointmentStatus, role: ActorRole) -> frozenset:
    return TRANSITIONS.get((status, role), frozenset())


def parse_status(value: Union[str, AppointmentStatus]) -> AppointmentStatus:
    try:
        return AppointmentStatus.parse(value)
    except ValueError:
        raise InvalidInput(
            f"Unknown appointment status '{value}'",
            details={"allowed": [s.value for s in AppointmentStatus]},
        )


class LifecycleService:
    """
    Status transitions, cancellation, rescheduling and rating.

    Args:
        db_session: Database session
        notifier: Receives lifecycle side effects after commit
        clock: Returns the business-local current time
        metrics: Counter sink
    """

    def __init__(
        self,
        db_session: Session,
        notifier: Optional[Notifier] = None,
        clock: Callable = business_now,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.db = db_session
        self.notifier = notifier
        self.clock = clock
        self.metrics = metrics or get_metrics_collector()
        self.appointments = AppointmentService(db_session)
        self.engine = SchedulingEngine(db_session, notifier=None, clock=clock, metrics=self.metrics)

    def cancel(self, appointment_id: UUID, actor: Actor, reason: Optional[str] = None) -> Appointment:
        """
        Cancel an appointment.

        Customers may cancel while it is pending, accepted, approved or
        confirmed; the reason is optional. Providers may cancel from any
        non-terminal status and must give a reason.

        Raises:
            NotFound, NotOwner, InvalidInput (missing provider reason), InvalidTransition
        """
        return self.update_status(appointment_id, actor, S.CANCELLED, reason=reason)

    def update_status(
        self,
        appointment_id: UUID,
        actor: Actor,
        new_status: Union[str, AppointmentStatus],
        final_price: Optional[Decimal] = None,
        reason: Optional[str] = None,
    ) -> Appointment:
        """
        Move an appointment to ``new_status``.

        Passing the current status with a ``final_price`` only records the
        price; this is allowed on terminal appointments too.

        Args:
            appointment_id: Appointment to update
            actor: Acting party
            new_status: Target status (aliases accepted)
            final_price: Optional price to record
            reason: Cancellation reason

        Returns:
            The updated appointment

        Raises:
            InvalidInput: Unknown status, negative price, missing provider cancel reason
            NotFound: Appointment does not exist
            NotOwner: Actor is not a party
            InvalidTransition: Move not allowed from the current status
        """
        target = parse_status(new_status)
        reason = reason.strip() if reason else None
        if final_price is not None and Decimal(str(final_price)) < 0:
            raise InvalidInput("final_price must not be negative")
        if target == S.CANCELLED and not actor.is_customer and not reason:
            raise InvalidInput("A cancellation reason is required")
        if final_price is not None and actor.is_customer:
            raise NotOwner("Only the provider can set the final price")

        with transaction(self.db):
            appointment = self.appointments.get(appointment_id)
            ensure_party(appointment, actor)
            current = appointment.status

            if target == current and final_price is not None:
                appointment.final_price = final_price
                self.db.flush()
                changed = False
            else:
                if target not in allowed_transitions(current, actor.role):
                    logger.warning(
                        f"Transition rejected: {current.value} -> {target.value}",
                        extra={"appointment_id": str(appointment.id), "actor": actor.role.value},
                    )
                    raise InvalidTransition(
                        f"Cannot change status from {current.value} to {target.value}",
                        current=current.value,
                        requested=target.value,
                    )
                appointment.status = target
                if final_price is not None:
                    appointment.final_price = final_price
                if target == S.CANCELLED:
                    appointment.cancellation_reason = reason
                if target == S.COMPLETED:
                    provider = self.db.get(Provider, appointment.provider_id)
                    provider.total_jobs_completed = (provider.total_jobs_completed or 0) + 1
                self.db.flush()
                changed = True

        if not changed:
            logger.info("Final price recorded", extra={"appointment_id": str(appointment.id)})
            return appointment

        self.metrics.increment_transitions(current.value, target.value, actor.role.value)
        logger.info(
            f"Appointment {current.value} -> {target.value}",
            extra={"appointment_id": str(appointment.id), "actor": actor.role.value},
        )
        if target == S.CANCELLED:
            notify_safely(self.notifier, "notify_booking_cancelled", appointment, reason)
        elif target == S.COMPLETED:
            notify_safely(self.notifier, "notify_completion", appointment)
        return appointment

    def reschedule(
        self,
        appointment_id: UUID,
        actor: Actor,
        new_date: date,
        new_time: ClockTime,
        reason: Optional[str] = None,
    ) -> Appointment:
        """
        Move an appointment to another date and template start time.

        The new moment goes through the same checks as a booking (ignoring
        the appointment itself). On success the status resets to pending
        for re-confirmation. On any failure the appointment is unchanged.

        Raises:
            NotFound, NotOwner, InvalidTransition,
            SlotNotFound, SlotAlreadyBooked, PastDateTime
        """
        try:
            with transaction(self.db):
                appointment = self.appointments.get(appointment_id)
                ensure_party(appointment, actor)
                previous = appointment.status
                if previous not in RESCHEDULABLE:
                    raise InvalidTransition(
                        f"Cannot reschedule an appointment that is {previous.value}",
                        current=previous.value,
                    )

                advisory_lock(self.db, "booking", appointment.provider_id, new_date.isoformat())
                slot = self.engine.check_bookable(
                    appointment.provider_id, new_date, new_time, exclude_id=appointment.id
                )

                appointment.scheduled_date = new_time.on(new_date)
                appointment.availability_id = slot.id
                appointment.status = S.PENDING
                appointment.reschedule_reason = reason
                self.db.flush()
        except IntegrityError as exc:
            raise SlotAlreadyBooked(
                f"{new_date.isoformat()} at {new_time} is already booked",
                details={"date": new_date.isoformat(), "time": str(new_time)},
            ) from exc

        self.metrics.increment_transitions(previous.value, S.PENDING.value, actor.role.value)
        logger.info(
            "Appointment rescheduled",
            extra={
                "appointment_id": str(appointment.id),
                "scheduled_date": appointment.scheduled_date.isoformat(),
            },
        )
        notify_safely(self.notifier, "notify_rescheduled", appointment)
        return appointment

    def rate(
        self,
        appointment_id: UUID,
        actor: Actor,
        rating_value: int,
        comment: Optional[str] = None,
    ) -> Rating:
        """
        Attach the customer's rating to a completed appointment and refresh
        the provider's aggregate.

        Raises:
            InvalidInput: Value outside 1..5
            NotFound: Appointment does not exist
            NotOwner: Actor is not the appointment's customer
            NotRatable: Appointment is not completed
            AlreadyRated: Appointment already has a rating
        """
        if not 1 <= int(rating_value) <= 5:
            raise InvalidInput("rating_value must be between 1 and 5")

        try:
            with transaction(self.db):
                appointment = self.appointments.get(appointment_id)
                if not actor.is_customer or appointment.customer_id != actor.id:
                    raise NotOwner("Only the customer of this appointment can rate it")
                if appointment.status != S.COMPLETED:
                    raise NotRatable(
                        "Only completed appointments can be rated",
                        details={"status": appointment.status.value},
                    )
                existing = self.db.execute(
                    select(Rating.id).where(Rating.appointment_id == appointment.id)
                ).first()
                if existing is not None:
                    raise AlreadyRated("This appointment has already been rated")

                advisory_lock(self.db, "rating", appointment.provider_id)
                rating = Rating(
                    appointment_id=appointment.id,
                    user_id=actor.id,
                    provider_id=appointment.provider_id,
                    rating_value=int(rating_value),
                    comment=comment,
                )
                self.db.add(rating)
                self.db.flush()
                self._refresh_provider_rating(appointment.provider_id)
        except IntegrityError as exc:
            raise AlreadyRated("This appointment has already been rated") from exc

        self.metrics.increment_ratings()
        logger.info(
            "Rating submitted",
            extra={"appointment_id": str(appointment_id), "rating": rating.rating_value},
        )
        return rating

    def _refresh_provider_rating(self, provider_id: UUID) -> None:
        average, count = self.db.execute(
            select(func.avg(Rating.rating_value), func.count(Rating.id))
            .where(Rating.provider_id == provider_id)
        ).one()
        provider = self.db.get(Provider, provider_id)
        provider.rating_avg = round(float(average), 2) if average is not None else None
        provider.rating_count = count
