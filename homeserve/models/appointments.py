"""
Appointment model - concrete, date-stamped bookings of a provider by a customer.
"""
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4, UUID
import enum

from sqlalchemy import String, Numeric, DateTime, ForeignKey, Uuid, Enum as SQLEnum, Index, text
from sqlalchemy.orm import Mapped, mapped_column

from homeserve.lib.db import Base


class AppointmentStatus(str, enum.Enum):
    """
    Appointment status state machine.

    pending -> accepted/approved -> confirmed -> on_the_way -> in_progress -> completed,
    with cancelled and no_show reachable from any non-terminal status.
    """
    PENDING = "pending"
    ACCEPTED = "accepted"
    APPROVED = "approved"
    CONFIRMED = "confirmed"
    ON_THE_WAY = "on_the_way"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES

    @classmethod
    def parse(cls, value: "str | AppointmentStatus") -> "AppointmentStatus":
        """
        Accept canonical values and the alternate vocabulary
        (``finished``, ``canceled``, ``on the way``, ``in-progress``, ``no-show``).
        Raises ValueError for anything else.
        """
        if isinstance(value, AppointmentStatus):
            return value
        key = str(value).strip().lower().replace("-", "_").replace(" ", "_")
        key = STATUS_ALIASES.get(key, key)
        return cls(key)


STATUS_ALIASES = {
    "finished": "completed",
    "canceled": "cancelled",
    "noshow": "no_show",
    "ontheway": "on_the_way",
    "inprogress": "in_progress",
}

TERMINAL_STATUSES = frozenset({
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCELLED,
    AppointmentStatus.NO_SHOW,
})

# Statuses that still occupy a provider's slot for conflict checks
ACTIVE_STATUSES = frozenset(AppointmentStatus) - TERMINAL_STATUSES

_ACTIVE_STATUS_SQL = "status IN ({})".format(
    ", ".join(f"'{s.value}'" for s in AppointmentStatus if s in ACTIVE_STATUSES)
)


class Appointment(Base):
    """
    Appointment entity.

    ``availability_id`` is a weak back-reference to the template slot used
    at booking time; it never marks the slot as consumed.
    """
    __tablename__ = "appointments"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )

    # Parties
    customer_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    provider_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("providers.id", ondelete="CASCADE"),
        nullable=False,
    )
    service_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("services.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    availability_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("availability_slots.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Provider-local wall-clock date and time
    scheduled_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    status: Mapped[AppointmentStatus] = mapped_column(
        SQLEnum(
            AppointmentStatus,
            name="appointment_status",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=AppointmentStatus.PENDING,
    )

    final_price: Mapped[Optional[float]] = mapped_column(Numeric(10, 2), nullable=True)
    repair_description: Mapped[Optional[str]] = mapped_column(String(2000), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    reschedule_reason: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        # Conflict checks query exactly this tuple
        Index("ix_appointments_provider_date_status", "provider_id", "scheduled_date", "status"),
        # At most one active appointment per provider and exact timestamp
        Index(
            "uq_appointments_provider_active_slot",
            "provider_id",
            "scheduled_date",
            unique=True,
            postgresql_where=text(_ACTIVE_STATUS_SQL),
            sqlite_where=text(_ACTIVE_STATUS_SQL),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Appointment(id={self.id}, provider_id={self.provider_id}, "
            f"scheduled={self.scheduled_date}, status={self.status})>"
        )
