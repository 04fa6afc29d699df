"""
Appointment API routes.

Provides:
- POST /appointments: customer books a provider's template slot on a date
- GET /appointments: the caller's appointments (filters, pagination, sort)
- GET /appointments/stats: provider dashboard statistics
- GET /appointments/{id}: one appointment, parties only
- POST /appointments/{id}/cancel, PATCH /appointments/{id}/status,
  POST /appointments/{id}/reschedule, POST /appointments/{id}/rating
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from homeserve.api.dependencies import (
    get_clock,
    get_current_actor,
    get_db,
    get_lifecycle_service,
    get_scheduling_engine,
    require_customer,
    require_provider,
)
from homeserve.models.appointments import Appointment
from homeserve.models.ratings import Rating
from homeserve.services.actors import Actor
from homeserve.services.appointment_service import AppointmentQuery, AppointmentService
from homeserve.services.lifecycle_service import LifecycleService, parse_status
from homeserve.services.scheduling_engine import BookingRequest, SchedulingEngine
from homeserve.services.timeslots import ClockTime


router = APIRouter(prefix="/appointments", tags=["appointments"])


# Pydantic schemas
class BookingCreateRequest(BaseModel):
    provider_id: UUID
    service_id: UUID
    date: date
    time: str = Field(description="Template slot start, HH:MM")
    description: Optional[str] = Field(None, max_length=2000)


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class StatusUpdateRequest(BaseModel):
    status: str = Field(description="Target status; aliases such as 'finished' or 'on the way' accepted")
    final_price: Optional[Decimal] = Field(None, ge=0)
    cancellation_reason: Optional[str] = Field(None, max_length=1000)


class RescheduleRequest(BaseModel):
    date: date
    time: str = Field(description="Template slot start, HH:MM")
    reason: Optional[str] = Field(None, max_length=1000)


class RatingRequest(BaseModel):
    rating_value: int = Field(ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=1000)


class AppointmentResponse(BaseModel):
    id: UUID
    customer_id: UUID
    provider_id: UUID
    service_id: UUID
    availability_id: Optional[UUID] = None
    scheduled_date: datetime
    status: str
    final_price: Optional[float] = None
    repair_description: Optional[str] = None
    cancellation_reason: Optional[str] = None
    reschedule_reason: Optional[str] = None
    created_at: datetime


class AppointmentListResponse(BaseModel):
    appointments: List[AppointmentResponse]
    total: int
    page: int
    limit: int
    pages: int


class RatingResponse(BaseModel):
    id: UUID
    appointment_id: UUID
    provider_id: UUID
    rating_value: int
    comment: Optional[str] = None


class StatsResponse(BaseModel):
    total: int
    by_status: Dict[str, int]
    today: int
    this_month: int
    this_year: int
    total_revenue: float
    average_rating: float
    completion_rate: int


def _appointment_response(appointment: Appointment) -> AppointmentResponse:
    return AppointmentResponse(
        id=appointment.id,
        customer_id=appointment.customer_id,
        provider_id=appointment.provider_id,
        service_id=appointment.service_id,
        availability_id=appointment.availability_id,
        scheduled_date=appointment.scheduled_date,
        status=appointment.status.value,
        final_price=float(appointment.final_price) if appointment.final_price is not None else None,
        repair_description=appointment.repair_description,
        cancellation_reason=appointment.cancellation_reason,
        reschedule_reason=appointment.reschedule_reason,
        created_at=appointment.created_at,
    )


def _rating_response(rating: Rating) -> RatingResponse:
    return RatingResponse(
        id=rating.id,
        appointment_id=rating.appointment_id,
        provider_id=rating.provider_id,
        rating_value=rating.rating_value,
        comment=rating.comment,
    )


@router.post("", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_booking(
    body: BookingCreateRequest,
    actor: Actor = Depends(require_customer),
    engine: SchedulingEngine = Depends(get_scheduling_engine),
) -> AppointmentResponse:
    """
    Book a provider.

    The time must be the exact start of one of the provider's active
    weekly slots for that weekday. Returns 404 (slot_not_found) when it is
    not, 409 (slot_already_booked / past_date_time) when the slot is taken
    on that date or already started.
    """
    request = BookingRequest(
        provider_id=body.provider_id,
        customer_id=actor.id,
        service_id=body.service_id,
        date=body.date,
        time=ClockTime.parse(body.time),
        description=body.description,
    )
    return _appointment_response(engine.create_booking(request))


@router.get("", response_model=AppointmentListResponse)
def list_my_appointments(
    status_filter: Optional[List[str]] = Query(None, alias="status"),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort_by: str = Query("scheduled_date"),
    sort_order: str = Query("desc"),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> AppointmentListResponse:
    """The caller's appointments as customer or as provider."""
    query = AppointmentQuery(
        statuses=[parse_status(s) for s in status_filter or []],
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    service = AppointmentService(db)
    if actor.is_provider:
        result = service.list_for_provider(actor.id, query)
    else:
        result = service.list_for_customer(actor.id, query)
    return AppointmentListResponse(
        appointments=[_appointment_response(a) for a in result.items],
        total=result.total,
        page=result.page,
        limit=result.limit,
        pages=result.pages,
    )


@router.get("/stats", response_model=StatsResponse)
def provider_stats(
    actor: Actor = Depends(require_provider),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
) -> StatsResponse:
    stats = AppointmentService(db).stats(actor.id, clock())
    return StatsResponse(
        total=stats.total,
        by_status=stats.by_status,
        today=stats.today,
        this_month=stats.this_month,
        this_year=stats.this_year,
        total_revenue=stats.total_revenue,
        average_rating=stats.average_rating,
        completion_rate=stats.completion_rate,
    )


@router.get("/{appointment_id}", response_model=AppointmentResponse)
def get_appointment(
    appointment_id: UUID,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> AppointmentResponse:
    return _appointment_response(AppointmentService(db).get_for_actor(appointment_id, actor))


@router.post("/{appointment_id}/cancel", response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: UUID,
    body: CancelRequest,
    actor: Actor = Depends(get_current_actor),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
) -> AppointmentResponse:
    """Cancel as customer (before the provider is on the way) or as provider (reason required)."""
    return _appointment_response(lifecycle.cancel(appointment_id, actor, reason=body.reason))


@router.patch("/{appointment_id}/status", response_model=AppointmentResponse)
def update_status(
    appointment_id: UUID,
    body: StatusUpdateRequest,
    actor: Actor = Depends(require_provider),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
) -> AppointmentResponse:
    appointment = lifecycle.update_status(
        appointment_id,
        actor,
        body.status,
        final_price=body.final_price,
        reason=body.cancellation_reason,
    )
    return _appointment_response(appointment)


@router.post("/{appointment_id}/reschedule", response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: UUID,
    body: RescheduleRequest,
    actor: Actor = Depends(get_current_actor),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
) -> AppointmentResponse:
    """Move to another template slot; status returns to pending."""
    appointment = lifecycle.reschedule(
        appointment_id,
        actor,
        body.date,
        ClockTime.parse(body.time),
        reason=body.reason,
    )
    return _appointment_response(appointment)


@router.post("/{appointment_id}/rating", response_model=RatingResponse, status_code=status.HTTP_201_CREATED)
def rate_appointment(
    appointment_id: UUID,
    body: RatingRequest,
    actor: Actor = Depends(require_customer),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
) -> RatingResponse:
    rating = lifecycle.rate(appointment_id, actor, body.rating_value, comment=body.comment)
    return _rating_response(rating)
