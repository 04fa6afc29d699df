"""
Service model - catalog listings that appointments are booked against.
"""
from uuid import uuid4
from typing import Optional
from uuid import UUID
import enum

from sqlalchemy import String, Numeric, Integer, Boolean, ForeignKey, Uuid, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from homeserve.lib.db import Base


class ServiceCategory(str, enum.Enum):
    """Service category enumeration."""
    CLEANING = "cleaning"
    PLUMBING = "plumbing"
    ELECTRICAL = "electrical"
    APPLIANCE_REPAIR = "appliance_repair"
    OTHER = "other"


class Service(Base):
    """
    Service entity - bookable services.

    The scheduling core only checks that a listing exists and is active;
    pricing and categories belong to the catalog.
    """
    __tablename__ = "services"

    # Primary key
    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )

    # Owning provider (null for platform-wide listings)
    provider_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("providers.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )

    # Service details
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    category: Mapped[ServiceCategory] = mapped_column(
        SQLEnum(ServiceCategory, name="service_category", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        index=True,
    )
    description: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    # Pricing and duration
    base_price: Mapped[float] = mapped_column(
        Numeric(10, 2),
        nullable=False,
    )
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)

    # Status
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Service(id={self.id}, name={self.name}, category={self.category})>"
