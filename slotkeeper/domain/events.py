"""
Domain events emitted on appointment status transitions.

One event type tagged by ``TransitionKind``; collaborators (notifications,
commission calculation, analytics) branch on ``kind``.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict

from pendulum import DateTime

from .models import Appointment


class TransitionKind(str, Enum):
    CREATED = "APPOINTMENT_CREATED"
    CONFIRMED = "APPOINTMENT_CONFIRMED"
    CANCELLED = "APPOINTMENT_CANCELLED"
    RESCHEDULED = "APPOINTMENT_RESCHEDULED"
    COMPLETED = "APPOINTMENT_COMPLETED"
    NO_SHOW = "APPOINTMENT_NO_SHOW"


@dataclass(frozen=True)
class AppointmentEvent:
    """
    Snapshot of an appointment right after a transition.

    Metadata keys per kind:
        CREATED: ``recurrence_index`` (recurring series only)
        CANCELLED: ``was_late_cancellation``, ``hours_before_scheduled``,
            ``cancelled_by_client``, ``reason``, ``previous_status``
        RESCHEDULED: ``previous_scheduled_at``, ``previous_professional_id``,
            ``original_appointment_id``, ``reason``
        COMPLETED: ``actual_duration_minutes``
    """
    kind: TransitionKind
    appointment: Appointment
    occurred_at: DateTime
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def appointment_id(self) -> str:
        return self.appointment.id

    @property
    def professional_id(self) -> str:
        return self.appointment.professional_id

    def to_dict(self) -> Dict[str, Any]:
        """Plain representation for logging sinks and fixtures."""
        appt = self.appointment
        metadata = {
            key: value.to_iso8601_string() if isinstance(value, DateTime) else value
            for key, value in self.metadata.items()
        }
        return {
            "kind": self.kind.value,
            "occurred_at": self.occurred_at.to_iso8601_string(),
            "appointment_id": appt.id,
            "professional_id": appt.professional_id,
            "client_id": appt.client_id,
            "status": appt.status.value,
            "scheduled_at": appt.scheduled_at.to_iso8601_string(),
            "end_time": appt.end_time.to_iso8601_string(),
            "metadata": metadata,
        }
