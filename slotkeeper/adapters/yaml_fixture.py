"""
YAML-backed calendar data for the CLI and for local experiments.

The file is validated with Pydantic records and turned into an
``InMemoryStore``; appointments can be written back after a booking.
"""

from __future__ import annotations

from datetime import date, datetime, time
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pendulum
import yaml
from pendulum import DateTime
from pydantic import BaseModel, Field, field_validator

from ..domain.models import (
    Appointment,
    AppointmentStatus,
    BreakRule,
    DaySchedule,
    ExceptionStatus,
    ExceptionType,
    Professional,
    ScheduleException,
    ServiceDurationModel,
    TimeSlot,
    WorkingHoursTemplate,
    as_date,
)
from .memory_store import InMemoryStore


_TIMESTAMPS = ("confirmed_at", "completed_at", "cancelled_at", "rescheduled_at", "no_show_at")


def _coerce_time(value: Any) -> Any:
    # Unquoted values like 12:00 are read by YAML 1.1 as base-60 integers (720).
    if isinstance(value, int):
        return time(value // 60, value % 60)
    return value


class DayRecord(BaseModel):
    day_of_week: int
    is_work_day: bool = True
    slots: List[Tuple[time, time]] = Field(default_factory=list)

    @field_validator("slots", mode="before")
    @classmethod
    def coerce_slots(cls, value: Any) -> Any:
        return [[_coerce_time(t) for t in pair] for pair in value or []]


class TemplateRecord(BaseModel):
    id: str
    is_active: bool = True
    valid_from: Optional[date] = None
    valid_until: Optional[date] = None
    days: List[DayRecord] = Field(default_factory=list)


class BreakRecord(BaseModel):
    id: str
    duration_minutes: int
    days_of_week: List[int] = Field(default_factory=lambda: list(range(7)))
    start_time: Optional[time] = None
    window_start: Optional[time] = None
    window_end: Optional[time] = None

    @field_validator("start_time", "window_start", "window_end", mode="before")
    @classmethod
    def coerce_time(cls, value: Any) -> Any:
        return _coerce_time(value)


class ExceptionRecord(BaseModel):
    id: str
    type: ExceptionType
    start_date: date
    end_date: Optional[date] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    is_all_day: bool = False
    status: ExceptionStatus = ExceptionStatus.APPROVED
    reason: Optional[str] = None

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def coerce_time(cls, value: Any) -> Any:
        return _coerce_time(value)


class ProfessionalRecord(BaseModel):
    id: str
    name: str = ""
    preferred: bool = False
    template: Optional[TemplateRecord] = None
    breaks: List[BreakRecord] = Field(default_factory=list)
    exceptions: List[ExceptionRecord] = Field(default_factory=list)


class ServiceRecord(BaseModel):
    service_id: str
    execution_minutes: int
    preparation_minutes: int = 0
    finalization_minutes: int = 0
    buffer_minutes: int = 0
    execution_max_minutes: Optional[int] = None


class AppointmentRecord(BaseModel):
    id: str
    professional_id: str
    client_id: str
    service_ids: List[str]
    scheduled_at: datetime
    end_time: datetime
    created_at: Optional[datetime] = None
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
    confirmed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    rescheduled_at: Optional[datetime] = None
    no_show_at: Optional[datetime] = None


class FixtureFile(BaseModel):
    professionals: List[ProfessionalRecord] = Field(default_factory=list)
    services: List[ServiceRecord] = Field(default_factory=list)
    appointments: List[AppointmentRecord] = Field(default_factory=list)


def _to_pendulum(value: datetime, timezone: str) -> DateTime:
    """Aware datetimes keep their offset; naive ones are read in ``timezone``."""
    if value.tzinfo is None:
        return pendulum.instance(value, tz=timezone)
    return pendulum.instance(value).in_timezone(timezone)


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Data file not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ValueError("Data file must contain a mapping at the root level.")
    return data


def load_store_from_yaml(path: Path, timezone: str = "Europe/Berlin") -> InMemoryStore:
    """
    Build an in-memory store from a YAML data file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the YAML or a record is invalid
        InvalidScheduleError: If a template, break or exception is malformed
    """
    fixture = FixtureFile(**_read_yaml(path))
    store = InMemoryStore()

    for record in fixture.professionals:
        store.add_professional(Professional(id=record.id, name=record.name, preferred=record.preferred))

        if record.template is not None:
            store.save_template(_template_from_record(record.id, record.template))

        for rule in record.breaks:
            store.add_break(BreakRule(
                id=rule.id,
                professional_id=record.id,
                duration_minutes=rule.duration_minutes,
                days_of_week=frozenset(rule.days_of_week),
                start_time=rule.start_time,
                window_start=rule.window_start,
                window_end=rule.window_end,
            ))

        for exc in record.exceptions:
            store.add_exception(ScheduleException(
                id=exc.id,
                professional_id=record.id,
                type=exc.type,
                start_date=as_date(exc.start_date),
                end_date=as_date(exc.end_date or exc.start_date),
                start_time=exc.start_time,
                end_time=exc.end_time,
                is_all_day=exc.is_all_day,
                status=exc.status,
                reason=exc.reason,
            ))

    for service in fixture.services:
        store.add_service(ServiceDurationModel(**service.model_dump()))

    # Records without created_at count as created at load time.
    loaded_at = pendulum.now(timezone)
    for record in fixture.appointments:
        scheduled_at = _to_pendulum(record.scheduled_at, timezone)
        data = record.model_dump(exclude={"scheduled_at", "end_time", "created_at", "service_ids", *_TIMESTAMPS})
        stamps = {
            name: _to_pendulum(getattr(record, name), timezone)
            for name in _TIMESTAMPS
            if getattr(record, name) is not None
        }
        store.add(Appointment(
            **data,
            **stamps,
            service_ids=tuple(record.service_ids),
            scheduled_at=scheduled_at,
            end_time=_to_pendulum(record.end_time, timezone),
            created_at=_to_pendulum(record.created_at, timezone) if record.created_at else loaded_at,
        ))

    return store


def _template_from_record(professional_id: str, record: TemplateRecord) -> WorkingHoursTemplate:
    return WorkingHoursTemplate(
        id=record.id,
        professional_id=professional_id,
        is_active=record.is_active,
        valid_from=as_date(record.valid_from) if record.valid_from else None,
        valid_until=as_date(record.valid_until) if record.valid_until else None,
        days=tuple(
            DaySchedule(
                day_of_week=day.day_of_week,
                is_work_day=day.is_work_day,
                slots=tuple(TimeSlot(start, end) for start, end in day.slots),
            )
            for day in record.days
        ),
    )


def _appointment_to_dict(appointment: Appointment) -> Dict[str, Any]:
    return {
        "id": appointment.id,
        "professional_id": appointment.professional_id,
        "client_id": appointment.client_id,
        "service_ids": list(appointment.service_ids),
        "scheduled_at": appointment.scheduled_at.to_iso8601_string(),
        "end_time": appointment.end_time.to_iso8601_string(),
        "created_at": appointment.created_at.to_iso8601_string(),
        "buffer_minutes": appointment.buffer_minutes,
        "status": appointment.status.value,
        "recurrence_group_id": appointment.recurrence_group_id,
        "rescheduled_from_id": appointment.rescheduled_from_id,
        "rescheduled_to_id": appointment.rescheduled_to_id,
        "cancellation_reason": appointment.cancellation_reason,
        "cancelled_by_client": appointment.cancelled_by_client,
        "was_late_cancellation": appointment.was_late_cancellation,
        "actual_duration_minutes": appointment.actual_duration_minutes,
        "notes": appointment.notes,
        **{
            name: getattr(appointment, name).to_iso8601_string()
            for name in _TIMESTAMPS
            if getattr(appointment, name) is not None
        },
    }


def save_appointments_to_yaml(store: InMemoryStore, path: Path) -> None:
    """Replace the ``appointments`` section of the data file, keeping the rest."""
    data = _read_yaml(path)
    data["appointments"] = [_appointment_to_dict(a) for a in store.list_appointments()]

    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, sort_keys=False, allow_unicode=True)
