"""
Domain-specific exception hierarchy for the scheduling core.
"""

from __future__ import annotations

from typing import Optional


class SchedulingError(Exception):
    """Base class for all scheduling errors."""


class NotFoundError(SchedulingError):
    """Raised when a professional, appointment or service does not exist."""


class InvalidScheduleError(SchedulingError):
    """Raised when a template, break or exception is malformed at write time."""


class SlotConflictError(SchedulingError):
    """
    Raised when a booking window is taken or its lock cannot be acquired.

    Callers should re-query availability instead of retrying the same window.
    """

    def __init__(
        self,
        message: str,
        professional_id: Optional[str] = None,
        window: Optional[object] = None,
    ) -> None:
        super().__init__(message)
        self.professional_id = professional_id
        self.window = window


class IllegalTransitionError(SchedulingError):
    """Raised when an appointment cannot move to the requested status."""


class PolicyViolationError(SchedulingError):
    """Raised when an advance-booking rule of the tenant policy is broken."""
