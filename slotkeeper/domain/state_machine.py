"""
Lifecycle rules for a single appointment.
"""

from typing import Dict, FrozenSet, Tuple

from pendulum import DateTime

from .exceptions import IllegalTransitionError
from .models import Appointment, AppointmentStatus

S = AppointmentStatus

ALLOWED_TRANSITIONS: Dict[AppointmentStatus, FrozenSet[AppointmentStatus]] = {
    S.PENDING: frozenset({S.CONFIRMED, S.CANCELLED, S.RESCHEDULED, S.NO_SHOW}),
    S.CONFIRMED: frozenset({S.COMPLETED, S.CANCELLED, S.RESCHEDULED, S.NO_SHOW}),
    S.COMPLETED: frozenset(),
    S.CANCELLED: frozenset(),
    S.NO_SHOW: frozenset(),
    S.RESCHEDULED: frozenset(),
}

# Transitions that only make sense once the appointment has started.
_REQUIRES_START = frozenset({S.COMPLETED, S.NO_SHOW})


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def require_transition(
    appointment: Appointment,
    target: AppointmentStatus,
    now: DateTime | None = None,
) -> None:
    """
    Raise IllegalTransitionError unless ``appointment`` may move to ``target``.

    COMPLETED and NO_SHOW additionally need ``now`` to be at or after
    ``scheduled_at``.
    """
    if not can_transition(appointment.status, target):
        raise IllegalTransitionError(
            f"Appointment {appointment.id} cannot move from {appointment.status.value} to {target.value}"
        )

    if target in _REQUIRES_START:
        if now is None:
            raise ValueError("now is required to check start-dependent transitions")
        if now < appointment.scheduled_at:
            raise IllegalTransitionError(
                f"Appointment {appointment.id} starts at {appointment.scheduled_at}; "
                f"cannot mark it {target.value} before that"
            )


def cancellation_notice(
    appointment: Appointment,
    now: DateTime,
    minimum_hours: float,
) -> Tuple[bool, float]:
    """
    Return ``(is_late, hours_before_scheduled)`` for a cancellation at ``now``.

    Late means less notice than ``minimum_hours``. Hours are negative for an
    appointment that already started.
    """
    hours_before = (appointment.scheduled_at - now).total_seconds() / 3600
    return hours_before < minimum_hours, round(hours_before, 2)
