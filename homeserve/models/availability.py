"""
Availability model - a provider's recurring weekly template.
"""
from datetime import datetime, time, timezone
from uuid import uuid4, UUID

from sqlalchemy import Boolean, DateTime, ForeignKey, Time, Uuid, Enum as SQLEnum, CheckConstraint, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column

from homeserve.lib.db import Base
from homeserve.services.timeslots import ClockTime, DayOfWeek, TimeRange


class AvailabilitySlot(Base):
    """
    Recurring weekly time window (day of week + clock times).

    A slot is a template, not a calendar entry: the same Monday 09:00 slot
    recurs every week and is never consumed by a booking.
    """
    __tablename__ = "availability_slots"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    provider_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("providers.id", ondelete="CASCADE"),
        nullable=False,
    )
    day_of_week: Mapped[DayOfWeek] = mapped_column(
        SQLEnum(DayOfWeek, name="day_of_week", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

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
        CheckConstraint("start_time < end_time", name="availability_slot_time_valid"),
        UniqueConstraint(
            "provider_id", "day_of_week", "start_time", "end_time",
            name="uniq_provider_day_window",
        ),
        Index("ix_availability_provider_day", "provider_id", "day_of_week"),
    )

    @property
    def time_range(self) -> TimeRange:
        return TimeRange(ClockTime.from_time(self.start_time), ClockTime.from_time(self.end_time))

    def __repr__(self) -> str:
        return (
            f"<AvailabilitySlot(id={self.id}, provider_id={self.provider_id}, "
            f"day={self.day_of_week}, {self.start_time}-{self.end_time}, active={self.is_active})>"
        )
