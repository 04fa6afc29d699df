"""
Provider model - extends User for home-service providers.
"""
from typing import Optional
from uuid import UUID

from sqlalchemy import Integer, Numeric, Boolean, ForeignKey, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from homeserve.lib.db import Base


class Provider(Base):
    """
    Provider entity - service providers (1:1 with User).

    ``rating_avg`` is denormalized: it is recomputed as the mean of all the
    provider's ratings whenever a rating is added.
    """
    __tablename__ = "providers"

    # Primary key (also foreign key to users)
    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )

    # Performance metrics
    rating_avg: Mapped[Optional[float]] = mapped_column(
        Numeric(3, 2),
        nullable=True,
    )
    rating_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    total_jobs_completed: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    # Status
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Provider(id={self.id}, rating={self.rating_avg}, jobs={self.total_jobs_completed})>"
