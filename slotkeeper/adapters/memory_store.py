"""
In-memory implementation of the repository protocols.

Used by the CLI (backed by a YAML fixture) and by the test-suite. All reads
return copies, so callers can never mutate stored state behind the store's
back.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import date
from typing import Dict, Iterator, List, Optional

from ..domain.exceptions import NotFoundError
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

logger = logging.getLogger(__name__)


class InMemoryStore:
    """
    Calendar model, service catalog and appointment timeline in dictionaries.

    ``transaction()`` snapshots the appointment table and restores it if the
    block raises, giving all-or-nothing commits for multi-row writes.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self.professionals: Dict[str, Professional] = {}
        self.templates: Dict[str, List[WorkingHoursTemplate]] = {}
        self.breaks: Dict[str, List[BreakRule]] = {}
        self.exceptions: Dict[str, List[ScheduleException]] = {}
        self.services: Dict[str, ServiceDurationModel] = {}
        self.appointments: Dict[str, Appointment] = {}

    # -- calendar model writes ------------------------------------------

    def add_professional(self, professional: Professional) -> None:
        with self._lock:
            self.professionals[professional.id] = professional

    def save_template(self, template: WorkingHoursTemplate) -> None:
        """
        Store a template. Saving an active template deactivates the others.
        """
        with self._lock:
            self._require_professional(template.professional_id)
            existing = [
                t for t in self.templates.get(template.professional_id, [])
                if t.id != template.id
            ]
            if template.is_active:
                existing = [replace(t, is_active=False) if t.is_active else t for t in existing]
            existing.append(template)
            self.templates[template.professional_id] = existing

    def add_break(self, rule: BreakRule) -> None:
        with self._lock:
            self._require_professional(rule.professional_id)
            self.breaks.setdefault(rule.professional_id, []).append(rule)

    def add_exception(self, exception: ScheduleException) -> None:
        with self._lock:
            self._require_professional(exception.professional_id)
            others = [e for e in self.exceptions.get(exception.professional_id, []) if e.id != exception.id]
            others.append(exception)
            self.exceptions[exception.professional_id] = others

    def add_service(self, model: ServiceDurationModel) -> None:
        with self._lock:
            self.services[model.service_id] = model

    # -- ScheduleRepository ---------------------------------------------

    def get_professional(self, professional_id: str) -> Professional:
        with self._lock:
            return self._require_professional(professional_id)

    def list_professionals(self) -> List[Professional]:
        with self._lock:
            return sorted(self.professionals.values(), key=lambda p: p.id)

    def get_active_template(self, professional_id: str) -> Optional[WorkingHoursTemplate]:
        with self._lock:
            for template in self.templates.get(professional_id, []):
                if template.is_active:
                    return template
            return None

    def list_breaks(self, professional_id: str) -> List[BreakRule]:
        with self._lock:
            return list(self.breaks.get(professional_id, []))

    def list_exceptions(
        self,
        professional_id: str,
        start_date: date,
        end_date: date,
    ) -> List[ScheduleException]:
        with self._lock:
            return [
                e for e in self.exceptions.get(professional_id, [])
                if e.start_date <= end_date and e.end_date >= start_date
            ]

    # -- ServiceCatalog -------------------------------------------------

    def get_duration_model(self, service_id: str) -> ServiceDurationModel:
        with self._lock:
            try:
                return self.services[service_id]
            except KeyError:
                raise NotFoundError(f"Unknown service: {service_id}") from None

    # -- AppointmentRepository ------------------------------------------

    def get(self, appointment_id: str) -> Appointment:
        with self._lock:
            try:
                return replace(self.appointments[appointment_id])
            except KeyError:
                raise NotFoundError(f"Unknown appointment: {appointment_id}") from None

    def list_active(self, professional_id: str, window: TimeRange) -> List[Appointment]:
        with self._lock:
            found = [
                replace(a) for a in self.appointments.values()
                if a.professional_id == professional_id
                and a.is_active
                and a.blocking_window().overlaps(window)
            ]
        return sorted(found, key=lambda a: a.scheduled_at)

    def list_active_for_client(self, client_id: str, window: TimeRange) -> List[Appointment]:
        with self._lock:
            found = [
                replace(a) for a in self.appointments.values()
                if a.client_id == client_id
                and a.is_active
                and a.scheduled_at < window.end
                and a.end_time > window.start
            ]
        return sorted(found, key=lambda a: a.scheduled_at)

    def list_by_recurrence_group(self, group_id: str) -> List[Appointment]:
        with self._lock:
            found = [replace(a) for a in self.appointments.values() if a.recurrence_group_id == group_id]
        return sorted(found, key=lambda a: a.scheduled_at)

    def list_by_status(self, status: AppointmentStatus) -> List[Appointment]:
        with self._lock:
            found = [replace(a) for a in self.appointments.values() if a.status is status]
        return sorted(found, key=lambda a: a.scheduled_at)

    def list_appointments(self) -> List[Appointment]:
        with self._lock:
            found = [replace(a) for a in self.appointments.values()]
        return sorted(found, key=lambda a: (a.scheduled_at, a.id))

    def add(self, appointment: Appointment) -> None:
        with self._lock:
            if appointment.id in self.appointments:
                raise ValueError(f"Appointment {appointment.id} already exists")
            self.appointments[appointment.id] = replace(appointment)

    def update(self, appointment: Appointment) -> None:
        with self._lock:
            if appointment.id not in self.appointments:
                raise NotFoundError(f"Unknown appointment: {appointment.id}")
            self.appointments[appointment.id] = replace(appointment)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            snapshot = dict(self.appointments)
            try:
                yield
            except BaseException:
                self.appointments = snapshot
                logger.debug("Transaction rolled back, %d appointment(s) restored", len(snapshot))
                raise

    def _require_professional(self, professional_id: str) -> Professional:
        try:
            return self.professionals[professional_id]
        except KeyError:
            raise NotFoundError(f"Unknown professional: {professional_id}") from None
