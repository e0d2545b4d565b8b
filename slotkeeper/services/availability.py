"""
Application service answering availability questions.

Loads the calendar snapshot of a professional through the repository
protocols and delegates the calculation to the domain-level
``ScheduleResolver`` and slot generator. Read-only: safe to call from any
number of threads.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, List, Optional, Sequence

import pendulum
from pendulum import Date, DateTime

from ..config import TenantPolicy
from ..domain.exceptions import PolicyViolationError
from ..domain.intervals import merge_ranges
from ..domain.models import (
    Appointment,
    ServiceDurationModel,
    TimeRange,
)
from ..domain.schedule_resolver import ScheduleResolver
from ..domain.slot_generator import conflicting_appointments, generate_slots
from .ports import AppointmentRepository, ScheduleRepository, ServiceCatalog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProfessionalSlot:
    """A start time offered by one of several compared professionals."""
    professional_id: str
    start: DateTime
    preferred: bool = False


@dataclass(frozen=True)
class WindowCheck:
    """Outcome of validating one concrete booking window."""
    window: TimeRange
    within_working_hours: bool
    conflicts: List[Appointment]
    client_conflicts: List[Appointment] = field(default_factory=list)

    @property
    def is_bookable(self) -> bool:
        """Client overlaps are reported separately and do not decide this."""
        return self.within_working_hours and not self.conflicts


class AvailabilityService:
    """
    Orchestrates calendar loading, interval resolution and slot generation.
    """

    def __init__(
        self,
        schedules: ScheduleRepository,
        catalog: ServiceCatalog,
        appointments: AppointmentRepository,
        policy: TenantPolicy,
        clock: Callable[[], DateTime] = pendulum.now,
    ) -> None:
        self._schedules = schedules
        self._catalog = catalog
        self._appointments = appointments
        self.policy = policy
        self._clock = clock
        self._resolver = ScheduleResolver(timezone=policy.timezone)

    def now(self) -> DateTime:
        return self._clock().in_timezone(self.policy.timezone)

    def resolve_open_intervals(
        self,
        professional_id: str,
        start_date: date,
        end_date: date,
    ) -> Dict[Date, List[TimeRange]]:
        """
        Open working intervals per day for an inclusive date range.

        Raises:
            NotFoundError: If the professional is unknown
        """
        self._schedules.get_professional(professional_id)

        template = self._schedules.get_active_template(professional_id)
        breaks = self._schedules.list_breaks(professional_id)
        exceptions = self._schedules.list_exceptions(professional_id, start_date, end_date)

        return self._resolver.resolve_range(start_date, end_date, template, breaks, exceptions)

    def duration_model_for(self, service_ids: Sequence[str]) -> ServiceDurationModel:
        """
        Combined duration model of the requested services.

        Raises:
            NotFoundError: If a service is unknown
            ValueError: If no service is given
        """
        if not service_ids:
            raise ValueError("At least one service is required")
        return ServiceDurationModel.combine(self._catalog.get_duration_model(s) for s in service_ids)

    def find_slots(
        self,
        professional_id: str,
        service_ids: Sequence[str],
        start_date: date,
        end_date: date,
        step_minutes: Optional[int] = None,
    ) -> List[DateTime]:
        """
        Bookable start times of a professional for the given services.

        Variable-duration services are offered by their minimum duration; the
        booking path validates the maximum.
        """
        duration_model = self.duration_model_for(service_ids)
        intervals_by_day = self.resolve_open_intervals(professional_id, start_date, end_date)
        open_intervals = merge_ranges(r for day in intervals_by_day.values() for r in day)

        if not open_intervals:
            logger.debug("Professional %s has no open time between %s and %s",
                         professional_id, start_date, end_date)
            return []

        existing = self._appointments.list_active(
            professional_id,
            TimeRange(start=open_intervals[0].start, end=open_intervals[-1].end),
        )

        slots = generate_slots(
            open_intervals,
            duration_model,
            existing,
            step_minutes or self.policy.slot_step_minutes,
            now=self.now(),
            min_advance_hours=self.policy.min_advance_hours,
            max_advance_days=self.policy.max_advance_days,
        )

        logger.debug("Found %d slot(s) for professional %s", len(slots), professional_id)
        return slots

    def compare_professionals(
        self,
        professional_ids: Sequence[str],
        service_ids: Sequence[str],
        start_date: date,
        end_date: date,
        step_minutes: Optional[int] = None,
    ) -> List[ProfessionalSlot]:
        """
        Slots of several professionals merged into one list.

        Sorted by start time; at equal start preferred professionals come
        first, then professional id.
        """
        results: List[ProfessionalSlot] = []

        for professional_id in dict.fromkeys(professional_ids):
            professional = self._schedules.get_professional(professional_id)
            for start in self.find_slots(professional_id, service_ids, start_date, end_date, step_minutes):
                results.append(ProfessionalSlot(professional_id, start, professional.preferred))

        return sorted(results, key=lambda s: (s.start, not s.preferred, s.professional_id))

    def check_advance_policy(self, start: DateTime) -> None:
        """
        Raises:
            PolicyViolationError: If ``start`` is too soon or too far ahead
        """
        now = self.now()
        earliest = now.add(seconds=int(self.policy.min_advance_hours * 3600))
        latest = now.add(days=self.policy.max_advance_days)

        if start < earliest:
            raise PolicyViolationError(
                f"Bookings need at least {self.policy.min_advance_hours:g} hour(s) notice; "
                f"earliest possible start is {earliest.to_datetime_string()}"
            )
        if start > latest:
            raise PolicyViolationError(
                f"Bookings can be made at most {self.policy.max_advance_days} day(s) ahead"
            )

    def check_window(
        self,
        professional_id: str,
        start: DateTime,
        duration_model: ServiceDurationModel,
        exclude_appointment_ids: Sequence[str] = (),
        client_id: Optional[str] = None,
    ) -> WindowCheck:
        """
        Validate one concrete booking against current data.

        Uses the maximum duration of variable services and the same fit and
        buffer rule as slot generation. With ``client_id`` also lists the
        client's other active appointments overlapping the service time.
        """
        start = start.in_timezone(self.policy.timezone)
        window = TimeRange(
            start=start,
            end=start.add(minutes=duration_model.max_duration + duration_model.buffer_minutes),
        )

        intervals_by_day = self.resolve_open_intervals(
            professional_id,
            window.start.date(),
            window.end.date(),
        )
        open_intervals = merge_ranges(r for day in intervals_by_day.values() for r in day)
        within_hours = any(interval.contains(window) for interval in open_intervals)

        existing = self._appointments.list_active(professional_id, window)
        conflicts = conflicting_appointments(window, existing, exclude_appointment_ids)

        client_conflicts: List[Appointment] = []
        if client_id is not None:
            service_time = TimeRange(start=start, end=start.add(minutes=duration_model.max_duration))
            excluded = set(exclude_appointment_ids)
            client_conflicts = [
                a for a in self._appointments.list_active_for_client(client_id, service_time)
                if a.id not in excluded
            ]

        return WindowCheck(
            window=window,
            within_working_hours=within_hours,
            conflicts=conflicts,
            client_conflicts=client_conflicts,
        )
