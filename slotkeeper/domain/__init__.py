"""
Domain layer - Pure scheduling logic without external dependencies.
"""

from .events import AppointmentEvent, TransitionKind
from .exceptions import (
    IllegalTransitionError,
    InvalidScheduleError,
    NotFoundError,
    PolicyViolationError,
    SchedulingError,
    SlotConflictError,
)
from .models import (
    Appointment,
    AppointmentStatus,
    BreakRule,
    DaySchedule,
    ExceptionStatus,
    ExceptionType,
    Professional,
    ScheduleException,
    ServiceDurationModel,
    TimeRange,
    TimeSlot,
    WorkingHoursTemplate,
)
from .recurrence import RecurrencePattern, RecurrenceType
from .schedule_resolver import ScheduleResolver
from .slot_generator import SlotGenerator, generate_slots

__all__ = [
    "Appointment",
    "AppointmentEvent",
    "AppointmentStatus",
    "BreakRule",
    "DaySchedule",
    "ExceptionStatus",
    "ExceptionType",
    "IllegalTransitionError",
    "InvalidScheduleError",
    "NotFoundError",
    "PolicyViolationError",
    "Professional",
    "RecurrencePattern",
    "RecurrenceType",
    "ScheduleException",
    "ScheduleResolver",
    "SchedulingError",
    "ServiceDurationModel",
    "SlotConflictError",
    "SlotGenerator",
    "TimeRange",
    "TimeSlot",
    "TransitionKind",
    "WorkingHoursTemplate",
    "generate_slots",
]
