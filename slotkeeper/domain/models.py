"""
Domain models for working hours, schedule overrides, services and appointments.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, time
from enum import Enum
from typing import FrozenSet, Iterable, List, Optional, Tuple

import pendulum
from pendulum import Date, DateTime

from .exceptions import InvalidScheduleError

MINUTES_PER_DAY = 24 * 60


@dataclass(frozen=True)
class TimeRange:
    """
    Represents an immutable half-open time range ``[start, end)``.

    Invariant: start must be before end.
    """
    start: DateTime
    end: DateTime

    def __post_init__(self):
        if self.start >= self.end:
            raise ValueError(f"Start time {self.start} must be before end time {self.end}")

    def duration_minutes(self) -> int:
        """Return the duration in minutes."""
        return int((self.end - self.start).total_seconds() / 60)

    def overlaps(self, other: "TimeRange") -> bool:
        """Check if this range overlaps with another."""
        return self.start < other.end and self.end > other.start

    def contains(self, other: "TimeRange") -> bool:
        """Check if another range lies entirely inside this one."""
        return self.start <= other.start and other.end <= self.end

    def intersect(self, other: "TimeRange") -> "TimeRange | None":
        """
        Calculate the intersection of two time ranges.
        Returns None if there is no overlap.
        """
        if not self.overlaps(other):
            return None

        start = max(self.start, other.start)
        end = min(self.end, other.end)

        return TimeRange(start=start, end=end)

    def days(self) -> List[Date]:
        """Return every calendar day this range touches."""
        current = self.start.date()
        last = self.end.subtract(microseconds=1).date()
        result: List[Date] = []
        while current <= last:
            result.append(current)
            current = current.add(days=1)
        return result

    def __str__(self) -> str:
        return f"{self.start.format('DD.MM.YYYY HH:mm')} - {self.end.format('HH:mm')}"


def _minute_of_day(value: time) -> int:
    return value.hour * 60 + value.minute


def as_date(value: date) -> Date:
    """Normalize a plain ``datetime.date`` into a pendulum ``Date``."""
    if isinstance(value, Date):
        return value
    return pendulum.date(value.year, value.month, value.day)


def wall_clock(day: date, minute: int, timezone: str) -> DateTime:
    """Build the local datetime ``minute`` minutes after midnight of ``day``."""
    day = as_date(day)
    if minute >= MINUTES_PER_DAY:
        day = day.add(days=minute // MINUTES_PER_DAY)
        minute = minute % MINUTES_PER_DAY
    return pendulum.datetime(day.year, day.month, day.day, minute // 60, minute % 60, tz=timezone)


@dataclass(frozen=True)
class TimeSlot:
    """
    A time-of-day window inside a single day.

    ``end == time(0, 0)`` means midnight at the end of the day.
    """
    start: time
    end: time

    def __post_init__(self):
        if self.start_minute >= self.end_minute:
            raise InvalidScheduleError(f"Slot start {self.start} must be before end {self.end}")

    @property
    def start_minute(self) -> int:
        return _minute_of_day(self.start)

    @property
    def end_minute(self) -> int:
        minute = _minute_of_day(self.end)
        return MINUTES_PER_DAY if minute == 0 else minute

    def overlaps(self, other: "TimeSlot") -> bool:
        return self.start_minute < other.end_minute and self.end_minute > other.start_minute

    def to_range(self, day: Date, timezone: str) -> TimeRange | None:
        """
        Anchor the slot on a calendar day.

        Returns None when the slot lies entirely inside a DST gap: nonexistent
        local times are shifted forward, so start and end collapse.
        """
        start = wall_clock(day, self.start_minute, timezone)
        end = wall_clock(day, self.end_minute, timezone)
        if start >= end:
            return None
        return TimeRange(start=start, end=end)


@dataclass(frozen=True)
class DaySchedule:
    """
    Working slots for one weekday (0=Monday, 6=Sunday).

    Slots are stored start-ascending and never overlap.
    """
    day_of_week: int
    is_work_day: bool = True
    slots: Tuple[TimeSlot, ...] = ()

    def __post_init__(self):
        if self.day_of_week not in range(7):
            raise InvalidScheduleError(f"day_of_week must be between 0 and 6, got {self.day_of_week}")

        ordered = tuple(sorted(self.slots, key=lambda s: s.start_minute))
        for previous, current in zip(ordered, ordered[1:]):
            if previous.overlaps(current):
                raise InvalidScheduleError(
                    f"Overlapping slots on weekday {self.day_of_week}: "
                    f"{previous.start}-{previous.end} and {current.start}-{current.end}"
                )
        object.__setattr__(self, "slots", ordered)

    def effective_slots(self) -> Tuple[TimeSlot, ...]:
        return self.slots if self.is_work_day else ()


@dataclass(frozen=True)
class WorkingHoursTemplate:
    """
    Recurring weekly working hours of a professional.

    The optional validity window is inclusive on both ends.
    """
    id: str
    professional_id: str
    days: Tuple[DaySchedule, ...]
    is_active: bool = True
    valid_from: Optional[Date] = None
    valid_until: Optional[Date] = None

    def __post_init__(self):
        seen: set[int] = set()
        for day in self.days:
            if day.day_of_week in seen:
                raise InvalidScheduleError(
                    f"Template {self.id} defines weekday {day.day_of_week} more than once"
                )
            seen.add(day.day_of_week)

        if self.valid_from and self.valid_until and self.valid_from > self.valid_until:
            raise InvalidScheduleError(
                f"Template {self.id}: valid_from {self.valid_from} is after valid_until {self.valid_until}"
            )

        object.__setattr__(self, "days", tuple(sorted(self.days, key=lambda d: d.day_of_week)))

    def covers(self, day: Date) -> bool:
        """Check if the validity window includes a day."""
        if self.valid_from is not None and day < self.valid_from:
            return False
        if self.valid_until is not None and day > self.valid_until:
            return False
        return True

    def day_schedule(self, day_of_week: int) -> DaySchedule | None:
        for day in self.days:
            if day.day_of_week == day_of_week:
                return day
        return None


class ExceptionType(str, Enum):
    VACATION = "VACATION"
    SICK_LEAVE = "SICK_LEAVE"
    TRAINING = "TRAINING"
    PERSONAL = "PERSONAL"
    EXTRA_HOURS = "EXTRA_HOURS"


class ExceptionStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


@dataclass(frozen=True)
class ScheduleException:
    """
    A dated override of the recurring schedule.

    EXTRA_HOURS adds availability, every other type removes it. A partial-day
    window applies on each date between ``start_date`` and ``end_date``.
    """
    id: str
    professional_id: str
    type: ExceptionType
    start_date: Date
    end_date: Date
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    is_all_day: bool = False
    status: ExceptionStatus = ExceptionStatus.PENDING
    reason: Optional[str] = None

    def __post_init__(self):
        if self.end_date < self.start_date:
            raise InvalidScheduleError(
                f"Exception {self.id}: end_date {self.end_date} is before start_date {self.start_date}"
            )

        if self.is_all_day:
            if self.start_time is not None or self.end_time is not None:
                raise InvalidScheduleError(f"All-day exception {self.id} must not carry times")
            if self.type is ExceptionType.EXTRA_HOURS:
                raise InvalidScheduleError(f"Extra hours {self.id} need an explicit time window")
        else:
            if self.start_time is None or self.end_time is None:
                raise InvalidScheduleError(
                    f"Partial-day exception {self.id} needs both start_time and end_time"
                )
            # Raises InvalidScheduleError when the window is empty or inverted.
            TimeSlot(self.start_time, self.end_time)

    @property
    def is_additive(self) -> bool:
        return self.type is ExceptionType.EXTRA_HOURS

    @property
    def is_approved(self) -> bool:
        return self.status is ExceptionStatus.APPROVED

    def applies_on(self, day: Date) -> bool:
        return self.start_date <= day <= self.end_date

    def window(self) -> TimeSlot | None:
        """Return the daily time window, or None for all-day exceptions."""
        if self.is_all_day:
            return None
        return TimeSlot(self.start_time, self.end_time)


@dataclass(frozen=True)
class BreakRule:
    """
    A recurring unavailable window such as lunch.

    Either ``start_time`` is fixed, or the break floats inside
    ``[window_start, window_end)``.
    """
    id: str
    professional_id: str
    duration_minutes: int
    days_of_week: FrozenSet[int] = frozenset(range(7))
    start_time: Optional[time] = None
    window_start: Optional[time] = None
    window_end: Optional[time] = None

    def __post_init__(self):
        if self.duration_minutes <= 0:
            raise InvalidScheduleError(f"Break {self.id}: duration_minutes must be positive")

        invalid_days = [d for d in self.days_of_week if d not in range(7)]
        if invalid_days:
            raise InvalidScheduleError(f"Break {self.id}: invalid weekdays {sorted(invalid_days)}")
        object.__setattr__(self, "days_of_week", frozenset(self.days_of_week))

        has_window = self.window_start is not None or self.window_end is not None
        if (self.start_time is None) == (not has_window):
            raise InvalidScheduleError(
                f"Break {self.id}: set either start_time or a flexible window, not both"
            )

        if self.start_time is not None:
            if _minute_of_day(self.start_time) + self.duration_minutes > MINUTES_PER_DAY:
                raise InvalidScheduleError(f"Break {self.id} runs past midnight")
        else:
            if self.window_start is None or self.window_end is None:
                raise InvalidScheduleError(f"Break {self.id}: flexible window needs start and end")
            window = TimeSlot(self.window_start, self.window_end)
            if window.end_minute - window.start_minute < self.duration_minutes:
                raise InvalidScheduleError(
                    f"Break {self.id}: window is shorter than {self.duration_minutes} minutes"
                )

    @property
    def is_flexible(self) -> bool:
        return self.start_time is None

    def applies_on(self, day: Date) -> bool:
        return day.weekday() in self.days_of_week

    def fixed_slot(self) -> TimeSlot:
        start = _minute_of_day(self.start_time)
        end = start + self.duration_minutes
        return TimeSlot(self.start_time, time(end // 60, end % 60) if end < MINUTES_PER_DAY else time(0, 0))

    def window(self) -> TimeSlot:
        return TimeSlot(self.window_start, self.window_end)


@dataclass(frozen=True)
class ServiceDurationModel:
    """
    Time requirements of a service.

    The bookable duration is preparation + execution + finalization. The
    buffer is only enforced between consecutive bookings and is not part of
    the slot itself.
    """
    service_id: str
    execution_minutes: int
    preparation_minutes: int = 0
    finalization_minutes: int = 0
    buffer_minutes: int = 0
    execution_max_minutes: Optional[int] = None

    def __post_init__(self):
        for name in ("execution_minutes", "preparation_minutes", "finalization_minutes", "buffer_minutes"):
            if getattr(self, name) < 0:
                raise InvalidScheduleError(f"Service {self.service_id}: {name} must not be negative")
        if self.execution_max_minutes is not None and self.execution_max_minutes < self.execution_minutes:
            raise InvalidScheduleError(
                f"Service {self.service_id}: execution_max_minutes is below execution_minutes"
            )
        if self.min_duration <= 0:
            raise InvalidScheduleError(f"Service {self.service_id}: total duration must be positive")

    @property
    def is_variable(self) -> bool:
        return self.execution_max_minutes is not None

    @property
    def min_duration(self) -> int:
        """Duration used for displaying availability."""
        return self.preparation_minutes + self.execution_minutes + self.finalization_minutes

    @property
    def max_duration(self) -> int:
        """Duration validated at booking time."""
        execution = self.execution_max_minutes if self.is_variable else self.execution_minutes
        return self.preparation_minutes + execution + self.finalization_minutes

    def duration(self, use_max: bool = False) -> int:
        return self.max_duration if use_max else self.min_duration

    @classmethod
    def combine(cls, models: Iterable["ServiceDurationModel"]) -> "ServiceDurationModel":
        """
        Merge several services booked back to back into one duration model.

        Phases are summed; the largest buffer wins.
        """
        models = list(models)
        if not models:
            raise ValueError("At least one service is required")
        if len(models) == 1:
            return models[0]

        variable = any(m.is_variable for m in models)
        return cls(
            service_id="+".join(m.service_id for m in models),
            preparation_minutes=sum(m.preparation_minutes for m in models),
            execution_minutes=sum(m.execution_minutes for m in models),
            execution_max_minutes=(
                sum((m.execution_max_minutes or m.execution_minutes) for m in models) if variable else None
            ),
            finalization_minutes=sum(m.finalization_minutes for m in models),
            buffer_minutes=max(m.buffer_minutes for m in models),
        )


class AppointmentStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"
    RESCHEDULED = "RESCHEDULED"

    @property
    def is_terminal(self) -> bool:
        return self not in ACTIVE_STATUSES

    @property
    def blocks_time(self) -> bool:
        return self in ACTIVE_STATUSES


ACTIVE_STATUSES = frozenset({AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED})


@dataclass
class Appointment:
    """
    A booking of one or more services with a professional.

    Never deleted: cancellation and rescheduling are status transitions.
    """
    id: str
    professional_id: str
    client_id: str
    service_ids: Tuple[str, ...]
    scheduled_at: DateTime
    end_time: DateTime
    created_at: DateTime
    buffer_minutes: int = 0
    status: AppointmentStatus = AppointmentStatus.PENDING
    recurrence_group_id: Optional[str] = None
    rescheduled_from_id: Optional[str] = None
    rescheduled_to_id: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cancelled_by_client: bool = False
    was_late_cancellation: bool = False
    actual_duration_minutes: Optional[int] = None
    notes: Optional[str] = None
    confirmed_at: Optional[DateTime] = None
    completed_at: Optional[DateTime] = None
    cancelled_at: Optional[DateTime] = None
    rescheduled_at: Optional[DateTime] = None
    no_show_at: Optional[DateTime] = None

    @property
    def duration_minutes(self) -> int:
        return int((self.end_time - self.scheduled_at).total_seconds() / 60)

    @property
    def is_active(self) -> bool:
        return self.status.blocks_time

    def time_range(self) -> TimeRange:
        return TimeRange(start=self.scheduled_at, end=self.end_time)

    def blocking_window(self) -> TimeRange:
        """The booked range plus the trailing buffer."""
        return TimeRange(start=self.scheduled_at, end=self.end_time.add(minutes=self.buffer_minutes))

    def snapshot(self) -> "Appointment":
        return replace(self)


@dataclass(frozen=True)
class Professional:
    id: str
    name: str = ""
    preferred: bool = False
