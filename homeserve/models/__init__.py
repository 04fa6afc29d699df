"""
SQLAlchemy models package.
Import all models here to ensure they're registered with Base.metadata.
"""
from homeserve.models.users import User, UserType
from homeserve.models.providers import Provider
from homeserve.models.services import Service, ServiceCategory
from homeserve.models.availability import AvailabilitySlot
from homeserve.models.appointments import Appointment, AppointmentStatus, ACTIVE_STATUSES
from homeserve.models.ratings import Rating

__all__ = [
    "User",
    "UserType",
    "Provider",
    "Service",
    "ServiceCategory",
    "AvailabilitySlot",
    "Appointment",
    "AppointmentStatus",
    "ACTIVE_STATUSES",
    "Rating",
]
