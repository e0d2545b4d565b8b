"""
Tests for the AvailabilityService orchestration layer.
"""

from datetime import time

import pendulum
import pytest

from slotkeeper.adapters.memory_store import InMemoryStore
from slotkeeper.config import TenantPolicy
from slotkeeper.domain.exceptions import NotFoundError, PolicyViolationError
from slotkeeper.domain.models import (
    Appointment,
    AppointmentStatus,
    DaySchedule,
    ExceptionStatus,
    ExceptionType,
    Professional,
    ScheduleException,
    ServiceDurationModel,
    TimeSlot,
    WorkingHoursTemplate,
)
from slotkeeper.services.availability import AvailabilityService

TZ = "Europe/Berlin"
MONDAY = pendulum.date(2024, 11, 25)


def _dt(value: str):
    return pendulum.parse(value, tz=TZ)


def _build_service(
    policy: TenantPolicy = None,
    now: str = "2024-11-20 08:00",
    store: InMemoryStore = None,
) -> AvailabilityService:
    store = store or InMemoryStore()
    morning = tuple(DaySchedule(dow, slots=(TimeSlot(time(9, 0), time(11, 0)),)) for dow in range(5))
    late = tuple(DaySchedule(dow, slots=(TimeSlot(time(10, 0), time(12, 0)),)) for dow in range(5))

    store.add_professional(Professional("anna", "Anna"))
    store.add_professional(Professional("ben", "Ben", preferred=True))
    store.add_professional(Professional("carl", "Carl"))
    store.save_template(WorkingHoursTemplate("anna-tpl", "anna", days=morning))
    store.save_template(WorkingHoursTemplate("ben-tpl", "ben", days=late))
    store.save_template(WorkingHoursTemplate("carl-tpl", "carl", days=morning))
    store.add_exception(ScheduleException(
        "carl-off", "carl", ExceptionType.VACATION, MONDAY, MONDAY,
        is_all_day=True, status=ExceptionStatus.APPROVED,
    ))
    store.add_service(ServiceDurationModel("cut", execution_minutes=60))

    return AvailabilityService(
        store, store, store,
        policy or TenantPolicy(min_advance_hours=1, max_advance_days=30, slot_step_minutes=30),
        clock=lambda: _dt(now),
    )


class TestFindSlots:
    """Tests for find_slots."""

    def test_find_slots_for_one_day(self):
        service = _build_service()

        slots = service.find_slots("anna", ["cut"], MONDAY, MONDAY)

        assert [s.format("HH:mm") for s in slots] == ["09:00", "09:30", "10:00"]

    def test_step_override(self):
        service = _build_service()

        slots = service.find_slots("anna", ["cut"], MONDAY, MONDAY, step_minutes=60)

        assert [s.format("HH:mm") for s in slots] == ["09:00", "10:00"]

    def test_vacation_removes_day(self):
        service = _build_service()

        assert service.find_slots("carl", ["cut"], MONDAY, MONDAY) == []

    def test_min_advance_applies(self):
        service = _build_service(now="2024-11-25 08:15")

        slots = service.find_slots("anna", ["cut"], MONDAY, MONDAY)

        assert [s.format("HH:mm") for s in slots] == ["09:30", "10:00"]

    def test_unknown_professional(self):
        service = _build_service()

        with pytest.raises(NotFoundError):
            service.find_slots("nobody", ["cut"], MONDAY, MONDAY)

    def test_no_services(self):
        service = _build_service()

        with pytest.raises(ValueError):
            service.find_slots("anna", [], MONDAY, MONDAY)


class TestCompareProfessionals:
    """Tests for compare_professionals."""

    def test_merged_and_ordered(self):
        """Equal starts list the preferred professional first."""
        service = _build_service()

        slots = service.compare_professionals(["anna", "ben", "carl"], ["cut"], MONDAY, MONDAY)

        assert [(s.start.format("HH:mm"), s.professional_id) for s in slots] == [
            ("09:00", "anna"),
            ("09:30", "anna"),
            ("10:00", "ben"),
            ("10:00", "anna"),
            ("10:30", "ben"),
            ("11:00", "ben"),
        ]

    def test_duplicate_ids_counted_once(self):
        service = _build_service()

        slots = service.compare_professionals(["anna", "anna"], ["cut"], MONDAY, MONDAY)

        assert len(slots) == 3


class TestPolicyChecks:
    """Advance window and concrete window validation."""

    def test_check_advance_policy(self):
        service = _build_service()

        service.check_advance_policy(_dt("2024-11-25 09:00"))
        with pytest.raises(PolicyViolationError):
            service.check_advance_policy(_dt("2024-11-20 08:30"))
        with pytest.raises(PolicyViolationError):
            service.check_advance_policy(_dt("2024-12-21 09:00"))

    def test_check_window_uses_maximum_duration(self):
        service = _build_service()
        model = ServiceDurationModel("color", execution_minutes=60, execution_max_minutes=150)

        check = service.check_window("anna", _dt("2024-11-25 09:00"), model)

        assert not check.within_working_hours
        assert not check.is_bookable
        assert check.window.duration_minutes() == 150

    def test_check_window_lists_client_overlaps(self):
        """Client overlaps are reported but leave the window bookable."""
        store = InMemoryStore()
        service = _build_service(store=store)
        elsewhere = Appointment(
            id="a1", professional_id="ben", client_id="c1", service_ids=("cut",),
            scheduled_at=_dt("2024-11-25 10:00"), end_time=_dt("2024-11-25 11:00"),
            created_at=_dt("2024-11-19 08:00"), buffer_minutes=15,
        )
        store.add(elsewhere)
        store.add(Appointment(
            id="a2", professional_id="ben", client_id="c1", service_ids=("cut",),
            scheduled_at=_dt("2024-11-25 09:00"), end_time=_dt("2024-11-25 09:30"),
            created_at=_dt("2024-11-19 08:00"), status=AppointmentStatus.CANCELLED,
        ))
        model = ServiceDurationModel("cut", execution_minutes=60)

        check = service.check_window("anna", _dt("2024-11-25 09:30"), model, client_id="c1")

        assert check.is_bookable
        assert [a.id for a in check.client_conflicts] == ["a1"]
        assert service.check_window("anna", _dt("2024-11-25 09:30"), model).client_conflicts == []
        assert service.check_window("anna", _dt("2024-11-25 09:30"), model, ["a1"], "c1").client_conflicts == []
        assert service.check_window("anna", _dt("2024-11-25 09:00"), model, client_id="c1").client_conflicts == []
