"""
Availability API routes.

Provides:
- Provider template management (``/availability``): add, edit, delete,
  bulk weekly replace, own listing and summary
- Public provider views (``/providers/{provider_id}/availability``):
  template, single day, concrete date projection, weekly days, range summary
"""
from datetime import date
from typing import Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from homeserve.api.dependencies import get_db, get_scheduling_engine, require_provider
from homeserve.models.availability import AvailabilitySlot
from homeserve.services.actors import Actor
from homeserve.services.availability_service import (
    AvailabilityService,
    SlotPatch,
    build_weekly_schedule,
)
from homeserve.services.scheduling_engine import SchedulingEngine, SlotAvailability
from homeserve.services.timeslots import ClockTime, DayOfWeek, TimeRange


router = APIRouter(tags=["availability"])


# Pydantic schemas
class SlotCreateRequest(BaseModel):
    day_of_week: str = Field(description="Day name, e.g. monday or Mon")
    start_time: str = Field(description="HH:MM, 24h")
    end_time: str = Field(description="HH:MM, 24h")
    is_active: bool = True


class SlotUpdateRequest(BaseModel):
    day_of_week: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    is_active: Optional[bool] = None


class WeeklyDayEntry(BaseModel):
    day_of_week: str
    is_available: bool = True
    start_time: Optional[str] = None
    end_time: Optional[str] = None


class WeeklyAvailabilityRequest(BaseModel):
    days: List[WeeklyDayEntry]


class SlotResponse(BaseModel):
    id: UUID
    provider_id: UUID
    day_of_week: DayOfWeek
    start_time: str
    end_time: str
    is_active: bool
    duration_hours: float


class SlotAvailabilityResponse(BaseModel):
    slot_id: UUID
    date: date
    day_of_week: DayOfWeek
    start_time: str
    end_time: str
    status: str
    is_available: bool


class DateAvailabilityResponse(BaseModel):
    provider_id: UUID
    date: date
    day_of_week: DayOfWeek
    slots: List[SlotAvailabilityResponse]


class WeeklyDayResponse(BaseModel):
    day_of_week: DayOfWeek
    slot_count: int
    next_date: date


class TemplateSummaryResponse(BaseModel):
    total_slots: int
    active_slots: int
    slots_per_day: Dict[str, int]


class RangeSummaryResponse(BaseModel):
    date_from: date
    date_to: date
    total: int
    available: int
    booked: int
    past: int


def _slot_response(slot: AvailabilitySlot) -> SlotResponse:
    time_range = slot.time_range
    return SlotResponse(
        id=slot.id,
        provider_id=slot.provider_id,
        day_of_week=slot.day_of_week,
        start_time=str(time_range.start),
        end_time=str(time_range.end),
        is_active=slot.is_active,
        duration_hours=time_range.duration_hours(),
    )


def _projection_response(item: SlotAvailability) -> SlotAvailabilityResponse:
    return SlotAvailabilityResponse(
        slot_id=item.slot_id,
        date=item.date,
        day_of_week=item.day_of_week,
        start_time=str(item.start_time),
        end_time=str(item.end_time),
        status=item.status.value,
        is_available=item.is_available,
    )


# ----- provider template management -----

@router.get("/availability", response_model=List[SlotResponse])
def list_my_slots(
    actor: Actor = Depends(require_provider),
    db: Session = Depends(get_db),
) -> List[SlotResponse]:
    """List the calling provider's whole template, active and inactive."""
    return [_slot_response(s) for s in AvailabilityService(db).list_by_provider(actor.id)]


@router.get("/availability/summary", response_model=TemplateSummaryResponse)
def my_template_summary(
    actor: Actor = Depends(require_provider),
    db: Session = Depends(get_db),
) -> TemplateSummaryResponse:
    summary = AvailabilityService(db).summary(actor.id)
    return TemplateSummaryResponse(
        total_slots=summary.total_slots,
        active_slots=summary.active_slots,
        slots_per_day=summary.slots_per_day,
    )


@router.post("/availability", response_model=SlotResponse, status_code=status.HTTP_201_CREATED)
def add_slot(
    body: SlotCreateRequest,
    actor: Actor = Depends(require_provider),
    db: Session = Depends(get_db),
) -> SlotResponse:
    """
    Add a weekly slot.

    Returns 400 for malformed times or start >= end, 409 when the range
    overlaps or shares a boundary with another slot on that day.
    """
    day = DayOfWeek.parse(body.day_of_week)
    time_range = TimeRange.parse(body.start_time, body.end_time)
    slot = AvailabilityService(db).add_slot(actor.id, day, time_range, is_active=body.is_active)
    return _slot_response(slot)


@router.put("/availability/weekly", response_model=List[SlotResponse])
def set_weekly_availability(
    body: WeeklyAvailabilityRequest,
    actor: Actor = Depends(require_provider),
    db: Session = Depends(get_db),
) -> List[SlotResponse]:
    """
    Replace the whole weekly template.

    Slots already referenced by appointments are deactivated instead of
    deleted.
    """
    schedule = build_weekly_schedule(body.days)
    slots = AvailabilityService(db).set_weekly_availability(actor.id, schedule)
    return [_slot_response(s) for s in slots]


@router.patch("/availability/{slot_id}", response_model=SlotResponse)
def update_slot(
    slot_id: UUID,
    body: SlotUpdateRequest,
    actor: Actor = Depends(require_provider),
    db: Session = Depends(get_db),
) -> SlotResponse:
    patch = SlotPatch(
        day_of_week=DayOfWeek.parse(body.day_of_week) if body.day_of_week is not None else None,
        start_time=ClockTime.parse(body.start_time) if body.start_time is not None else None,
        end_time=ClockTime.parse(body.end_time) if body.end_time is not None else None,
        is_active=body.is_active,
    )
    slot = AvailabilityService(db).update_slot(slot_id, patch, provider_id=actor.id)
    return _slot_response(slot)


@router.delete("/availability/{slot_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_slot(
    slot_id: UUID,
    actor: Actor = Depends(require_provider),
    db: Session = Depends(get_db),
) -> Response:
    AvailabilityService(db).delete_slot(slot_id, provider_id=actor.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ----- public provider views -----

@router.get("/providers/{provider_id}/availability", response_model=List[SlotResponse])
def list_provider_slots(
    provider_id: UUID,
    db: Session = Depends(get_db),
) -> List[SlotResponse]:
    """Active weekly template of a provider."""
    slots = AvailabilityService(db).provider_template(provider_id)
    return [_slot_response(s) for s in slots]


@router.get("/providers/{provider_id}/availability/days/{day}", response_model=List[SlotResponse])
def list_provider_day(
    provider_id: UUID,
    day: str,
    db: Session = Depends(get_db),
) -> List[SlotResponse]:
    """Active slots of one weekday, with durations in hours."""
    slots = AvailabilityService(db).provider_day(provider_id, day)
    return [_slot_response(s) for s in slots]


@router.get("/providers/{provider_id}/availability/dates/{target_date}", response_model=DateAvailabilityResponse)
def provider_date_availability(
    provider_id: UUID,
    target_date: date,
    engine: SchedulingEngine = Depends(get_scheduling_engine),
) -> DateAvailabilityResponse:
    """Which slots are available, booked or past on a concrete date."""
    projection = engine.project_day(provider_id, target_date)
    return DateAvailabilityResponse(
        provider_id=provider_id,
        date=target_date,
        day_of_week=DayOfWeek.from_date(target_date),
        slots=[_projection_response(item) for item in projection],
    )


@router.get("/providers/{provider_id}/availability/weekly-days", response_model=List[WeeklyDayResponse])
def provider_weekly_days(
    provider_id: UUID,
    engine: SchedulingEngine = Depends(get_scheduling_engine),
) -> List[WeeklyDayResponse]:
    return [
        WeeklyDayResponse(day_of_week=d.day_of_week, slot_count=d.slot_count, next_date=d.next_date)
        for d in engine.weekly_days(provider_id)
    ]


@router.get("/providers/{provider_id}/availability/summary", response_model=RangeSummaryResponse)
def provider_range_summary(
    provider_id: UUID,
    start: Optional[date] = Query(None, description="First date (default: today)"),
    days: int = Query(7, description="Number of dates to project"),
    engine: SchedulingEngine = Depends(get_scheduling_engine),
) -> RangeSummaryResponse:
    summary = engine.summary(provider_id, start or engine.clock().date(), days)
    return RangeSummaryResponse(
        date_from=summary.date_from,
        date_to=summary.date_to,
        total=summary.total,
        available=summary.available,
        booked=summary.booked,
        past=summary.past,
    )
