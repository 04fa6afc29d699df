"""
Time and slot value types.

Pure helpers with no store access: day-of-week, minute-resolution clock
times and half-open time ranges, plus the conflict policy shared by the
availability store and the booking checks.
"""
import enum
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional, Union
from zoneinfo import ZoneInfo

from homeserve.lib.settings import settings
from homeserve.services.errors import InvalidFormat, InvalidRange


CLOCK_TIME_PATTERN = re.compile(r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$")
MINUTES_PER_DAY = 24 * 60


class DayOfWeek(str, enum.Enum):
    """Day of the week, ordered Monday first (ISO order)."""
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @property
    def number(self) -> int:
        """0 for Monday through 6 for Sunday, matching ``date.weekday()``."""
        return _DAY_ORDER.index(self)

    @property
    def label(self) -> str:
        return self.value.capitalize()

    @classmethod
    def from_date(cls, value: date) -> "DayOfWeek":
        return _DAY_ORDER[value.weekday()]

    @classmethod
    def parse(cls, value: Union[str, "DayOfWeek"]) -> "DayOfWeek":
        """Accept full or three-letter day names in any case."""
        if isinstance(value, DayOfWeek):
            return value
        key = (value or "").strip().lower()
        for day in _DAY_ORDER:
            if key in (day.value, day.value[:3]):
                return day
        raise InvalidFormat(
            f"Invalid day of week '{value}'. Must be one of: "
            + ", ".join(d.label for d in _DAY_ORDER)
        )

    def next_date(self, start: date) -> date:
        """First date on or after ``start`` that falls on this day."""
        return start + timedelta(days=(self.number - start.weekday()) % 7)


_DAY_ORDER = list(DayOfWeek)


@dataclass(frozen=True, order=True)
class ClockTime:
    """Minute of day in [0, 1439]."""

    minutes: int

    def __post_init__(self):
        if not 0 <= self.minutes < MINUTES_PER_DAY:
            raise InvalidFormat(f"Clock time out of range: {self.minutes} minutes")

    @classmethod
    def parse(cls, value: Union[str, time, "ClockTime"]) -> "ClockTime":
        """Parse 24h ``HH:MM`` (the hour may be a single digit)."""
        if isinstance(value, ClockTime):
            return value
        if isinstance(value, time):
            return cls.from_time(value)
        if not isinstance(value, str) or not CLOCK_TIME_PATTERN.match(value.strip()):
            raise InvalidFormat(
                f"Invalid time format '{value}'. Use HH:MM format (e.g., 09:00, 17:30)"
            )
        hours, minutes = value.strip().split(":")
        return cls(int(hours) * 60 + int(minutes))

    @classmethod
    def from_time(cls, value: time) -> "ClockTime":
        return cls(value.hour * 60 + value.minute)

    @classmethod
    def from_datetime(cls, value: datetime) -> "ClockTime":
        return cls(value.hour * 60 + value.minute)

    def to_time(self) -> time:
        return time(self.minutes // 60, self.minutes % 60)

    def on(self, day: date) -> datetime:
        """Combine with a calendar date into a naive wall-clock datetime."""
        return datetime.combine(day, self.to_time())

    def __str__(self) -> str:
        return f"{self.minutes // 60:02d}:{self.minutes % 60:02d}"


@dataclass(frozen=True)
class TimeRange:
    """Half-open range [start, end) within one day."""

    start: ClockTime
    end: ClockTime

    def __post_init__(self):
        if self.start >= self.end:
            raise InvalidRange(
                f"Start time must be before end time ({self.start} - {self.end})",
                details={"start_time": str(self.start), "end_time": str(self.end)},
            )

    @classmethod
    def parse(cls, start: Union[str, time, ClockTime], end: Union[str, time, ClockTime]) -> "TimeRange":
        return cls(ClockTime.parse(start), ClockTime.parse(end))

    def duration_minutes(self) -> int:
        return self.end.minutes - self.start.minutes

    def duration_hours(self) -> float:
        return round(self.duration_minutes() / 60, 2)

    def overlaps(self, other: "TimeRange") -> bool:
        return self.start < other.end and self.end > other.start

    def conflicts_with(self, other: "TimeRange") -> bool:
        """
        Anti-overlap policy for template slots: intersecting ranges conflict,
        and so does sharing the exact start or the exact end.
        """
        return (
            self.overlaps(other)
            or self.start == other.start
            or self.end == other.end
        )

    def contains(self, moment: ClockTime) -> bool:
        return self.start <= moment < self.end

    def __str__(self) -> str:
        return f"{self.start} - {self.end}"


def business_now(tz_name: Optional[str] = None) -> datetime:
    """Current wall-clock time in the business timezone, as a naive datetime."""
    tz = ZoneInfo(tz_name or settings.business_timezone)
    return datetime.now(tz).replace(tzinfo=None, second=0, microsecond=0)


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """[day 00:00, next day 00:00) as naive datetimes."""
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)
