"""
Service catalog routes.

Bookings reference a service listing; customers pick one of these before
choosing a provider slot. Listings are read-only here.
"""
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, field_validator
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from homeserve.api.dependencies import get_db
from homeserve.models.services import Service, ServiceCategory
from homeserve.services.errors import NotFound


class ServiceResponse(BaseModel):
    id: UUID
    provider_id: Optional[UUID] = None
    name: str
    category: ServiceCategory
    description: Optional[str] = None
    base_price: float
    duration_minutes: int
    active: bool

    model_config = {"from_attributes": True}

    @field_validator("base_price", mode="before")
    @classmethod
    def _price_as_float(cls, value):
        return float(value)


router = APIRouter(prefix="/services", tags=["services"])


@router.get("", response_model=List[ServiceResponse])
def list_services(
    category: Optional[ServiceCategory] = Query(None, description="Filter by category"),
    provider_id: Optional[UUID] = Query(None, description="Services this provider can be booked for"),
    active_only: bool = Query(True, description="Show only active services"),
    db: Session = Depends(get_db),
) -> List[ServiceResponse]:
    """
    List bookable services, ordered by category then name.

    With ``provider_id`` the result holds that provider's own listings plus
    platform-wide ones, which any provider can be booked for.
    """
    stmt = select(Service)
    if active_only:
        stmt = stmt.where(Service.active.is_(True))
    if category:
        stmt = stmt.where(Service.category == category)
    if provider_id:
        stmt = stmt.where(or_(Service.provider_id == provider_id, Service.provider_id.is_(None)))

    services = db.execute(stmt.order_by(Service.category, Service.name)).scalars().all()
    return [ServiceResponse.model_validate(s) for s in services]


@router.get("/{service_id}", response_model=ServiceResponse)
def get_service(service_id: UUID, db: Session = Depends(get_db)) -> ServiceResponse:
    service = db.get(Service, service_id)
    if service is None:
        raise NotFound("Service", str(service_id))
    return ServiceResponse.model_validate(service)
