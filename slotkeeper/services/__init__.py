"""
Service layer helpers that orchestrate repositories and domain logic.
"""

from .availability import AvailabilityService, ProfessionalSlot, WindowCheck
from .booking import BookingRequest, BookingService
from .conflict_guard import ConflictGuard, ReservationLock
from .ports import AppointmentRepository, EventSink, ScheduleRepository, ServiceCatalog

__all__ = [
    "AppointmentRepository",
    "AvailabilityService",
    "BookingRequest",
    "BookingService",
    "ConflictGuard",
    "EventSink",
    "ProfessionalSlot",
    "ReservationLock",
    "ScheduleRepository",
    "ServiceCatalog",
    "WindowCheck",
]
