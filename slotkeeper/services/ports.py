"""
Protocols describing the collaborators the scheduling services depend on.

Keeping them structural lets the in-memory adapter, a database adapter or a
test stub be plugged in without inheritance.
"""

from __future__ import annotations

from datetime import date
from typing import ContextManager, List, Optional, Protocol, Sequence

from ..domain.events import AppointmentEvent
from ..domain.models import (
    Appointment,
    AppointmentStatus,
    BreakRule,
    Professional,
    ScheduleException,
    ServiceDurationModel,
    TimeRange,
    WorkingHoursTemplate,
)


class ScheduleRepository(Protocol):
    """Read access to a professional's calendar model."""

    def get_professional(self, professional_id: str) -> Professional:
        """Return the professional or raise NotFoundError."""

    def get_active_template(self, professional_id: str) -> Optional[WorkingHoursTemplate]:
        """Return the active working hours template, if any."""

    def list_breaks(self, professional_id: str) -> Sequence[BreakRule]:
        """Return the break rules of a professional."""

    def list_exceptions(
        self,
        professional_id: str,
        start_date: date,
        end_date: date,
    ) -> Sequence[ScheduleException]:
        """Return exceptions touching the inclusive date range, any status."""


class ServiceCatalog(Protocol):
    """Lookup of service time requirements."""

    def get_duration_model(self, service_id: str) -> ServiceDurationModel:
        """Return the duration model or raise NotFoundError."""


class AppointmentRepository(Protocol):
    """Persistence boundary for appointments."""

    def get(self, appointment_id: str) -> Appointment:
        """Return a copy of the appointment or raise NotFoundError."""

    def list_active(self, professional_id: str, window: TimeRange) -> List[Appointment]:
        """PENDING/CONFIRMED appointments of a professional touching the window."""

    def list_active_for_client(self, client_id: str, window: TimeRange) -> List[Appointment]:
        """PENDING/CONFIRMED appointments of a client overlapping the window, buffers excluded."""

    def list_by_recurrence_group(self, group_id: str) -> List[Appointment]:
        """All appointments sharing a recurrence group, ordered by start."""

    def list_by_status(self, status: AppointmentStatus) -> List[Appointment]:
        """All appointments with the given status."""

    def add(self, appointment: Appointment) -> None:
        """Store a new appointment."""

    def update(self, appointment: Appointment) -> None:
        """Replace a stored appointment."""

    def transaction(self) -> ContextManager[None]:
        """All writes inside the block commit together or not at all."""


class EventSink(Protocol):
    """Receiver of domain events (notifications, commissions, analytics)."""

    def publish(self, event: AppointmentEvent) -> None:
        """Hand the event over for asynchronous processing."""
