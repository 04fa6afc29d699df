"""
Scheduling error taxonomy.

Validation errors are raised before the store is touched, conflict and
transition errors reflect the store's state at operation time. All of them
are client errors and are never retried; ``StoreUnavailable`` is the only
transient kind.
"""
from typing import Any, Dict, Optional

from homeserve.lib.errors import (
    BadRequestException,
    ConflictException,
    ForbiddenException,
    NotFoundException,
    StoreUnavailable,
)


class InvalidInput(BadRequestException):
    """Malformed or missing input."""

    code = "invalid_input"


class InvalidFormat(InvalidInput):
    """A clock time or day name could not be parsed."""

    code = "invalid_format"


class InvalidRange(InvalidInput):
    """A time range whose start is not before its end."""

    code = "invalid_range"


class NotFound(NotFoundException):
    """Slot, appointment, provider, customer or service missing."""

    code = "not_found"


class SlotNotFound(NotFound):
    """No active template slot starts at the requested day and time."""

    code = "slot_not_found"

    def __init__(self, provider_id: Any, day: str, start: str):
        super().__init__("Availability slot")
        self.message = f"Provider has no active {day} slot starting at {start}"
        self.details = {"provider_id": str(provider_id), "day_of_week": day, "start_time": start}


class NotOwner(ForbiddenException):
    """The actor is not a party to the resource it tries to change."""

    code = "not_owner"


class OverlapConflict(ConflictException):
    """A template slot would overlap another slot on the same day."""

    code = "overlap_conflict"


class SlotAlreadyBooked(ConflictException):
    """An active appointment already holds this provider/date/time."""

    code = "slot_already_booked"


class PastDateTime(ConflictException):
    """The requested date and time is not strictly in the future."""

    code = "past_date_time"


class InvalidTransition(ConflictException):
    """The requested status change is not allowed from the current status."""

    code = "invalid_transition"

    def __init__(self, message: str, current: Optional[str] = None, requested: Optional[str] = None):
        details: Dict[str, Any] = {}
        if current is not None:
            details["current_status"] = current
        if requested is not None:
            details["requested_status"] = requested
        super().__init__(message, details=details)


class NotRatable(ConflictException):
    """Only completed appointments can be rated."""

    code = "not_ratable"


class AlreadyRated(ConflictException):
    """The appointment already carries a rating."""

    code = "already_rated"


class HasBookings(ConflictException):
    """The slot is referenced by appointments and cannot be deleted."""

    code = "has_bookings"


__all__ = [
    "InvalidInput",
    "InvalidFormat",
    "InvalidRange",
    "NotFound",
    "SlotNotFound",
    "NotOwner",
    "OverlapConflict",
    "SlotAlreadyBooked",
    "PastDateTime",
    "InvalidTransition",
    "NotRatable",
    "AlreadyRated",
    "HasBookings",
    "StoreUnavailable",
]
