"""
Core business logic for enumerating bookable start times.

This is pure domain logic without any external dependencies (no storage,
no clock reads, no I/O): identical inputs always yield identical output.
"""

from typing import Iterable, List, Optional, Sequence

from pendulum import DateTime

from .models import Appointment, ServiceDurationModel, TimeRange


def conflicting_appointments(
    window: TimeRange,
    existing_appointments: Iterable[Appointment],
    exclude_ids: Iterable[str] = (),
) -> List[Appointment]:
    """Active appointments whose blocking window intersects ``window``."""
    excluded = set(exclude_ids)
    return [
        appt for appt in existing_appointments
        if appt.is_active and appt.id not in excluded and appt.blocking_window().overlaps(window)
    ]


def _within_advance_limits(
    start: DateTime,
    now: Optional[DateTime],
    min_advance_hours: float,
    max_advance_days: Optional[int],
) -> bool:
    if now is None:
        return True
    if start < now.add(seconds=int(min_advance_hours * 3600)):
        return False
    if max_advance_days is not None and start > now.add(days=max_advance_days):
        return False
    return True


def generate_slots(
    open_intervals: Iterable[TimeRange],
    duration_model: ServiceDurationModel,
    existing_appointments: Sequence[Appointment],
    step_minutes: int,
    *,
    now: Optional[DateTime] = None,
    min_advance_hours: float = 0,
    max_advance_days: Optional[int] = None,
    use_max_duration: bool = False,
    exclude_appointment_ids: Iterable[str] = (),
) -> List[DateTime]:
    """
    Enumerate valid start times inside the open intervals.

    A candidate is valid if ``[start, start + duration + buffer)`` fits in
    its open interval and does not intersect the blocking window of any
    active existing appointment.

    Args:
        open_intervals: Resolved open working intervals
        duration_model: Time requirements of the service(s) to book
        existing_appointments: Appointments of the same professional
        step_minutes: Granularity of candidate start times
        now: Reference instant for the advance-booking limits; None disables them
        min_advance_hours: Candidates before ``now`` plus this are dropped
        max_advance_days: Candidates after ``now`` plus this are dropped
        use_max_duration: Validate variable services with their maximum duration
        exclude_appointment_ids: Appointments to ignore (the one being moved)

    Returns:
        Sorted list of unique start times
    """
    if step_minutes <= 0:
        raise ValueError(f"step_minutes must be positive, got {step_minutes}")

    duration = duration_model.duration(use_max=use_max_duration)
    footprint = duration + duration_model.buffer_minutes
    excluded = set(exclude_appointment_ids)
    blocking = [
        appt.blocking_window()
        for appt in existing_appointments
        if appt.is_active and appt.id not in excluded
    ]

    candidates: set[DateTime] = set()

    for interval in open_intervals:
        start = interval.start

        while start.add(minutes=footprint) <= interval.end:
            if _within_advance_limits(start, now, min_advance_hours, max_advance_days):
                window = TimeRange(start=start, end=start.add(minutes=footprint))
                if not any(window.overlaps(busy) for busy in blocking):
                    candidates.add(start)
            start = start.add(minutes=step_minutes)

    return sorted(candidates)


class SlotGenerator:
    """
    ``generate_slots`` bound to a tenant's step and advance-booking limits.
    """

    def __init__(
        self,
        step_minutes: int = 15,
        min_advance_hours: float = 0,
        max_advance_days: Optional[int] = None,
    ):
        if step_minutes <= 0:
            raise ValueError(f"step_minutes must be positive, got {step_minutes}")
        self.step_minutes = step_minutes
        self.min_advance_hours = min_advance_hours
        self.max_advance_days = max_advance_days

    def generate(
        self,
        open_intervals: Iterable[TimeRange],
        duration_model: ServiceDurationModel,
        existing_appointments: Sequence[Appointment],
        now: Optional[DateTime] = None,
        use_max_duration: bool = False,
    ) -> List[DateTime]:
        return generate_slots(
            open_intervals,
            duration_model,
            existing_appointments,
            self.step_minutes,
            now=now,
            min_advance_hours=self.min_advance_hours,
            max_advance_days=self.max_advance_days,
            use_max_duration=use_max_duration,
        )
