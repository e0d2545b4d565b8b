"""
Tests for slot generation.
"""

import pendulum
import pytest

from slotkeeper.domain.models import Appointment, AppointmentStatus, ServiceDurationModel, TimeRange
from slotkeeper.domain.slot_generator import SlotGenerator, conflicting_appointments, generate_slots

TZ = "Europe/Berlin"


def _dt(value: str):
    return pendulum.parse(value, tz=TZ)


def _tr(start: str, end: str, day: str = "2024-11-25") -> TimeRange:
    return TimeRange(start=_dt(f"{day} {start}"), end=_dt(f"{day} {end}"))


def _appointment(start: str, end: str, buffer_minutes: int = 0, status=AppointmentStatus.CONFIRMED, appt_id="a1"):
    return Appointment(
        id=appt_id,
        professional_id="pro",
        client_id="c1",
        service_ids=("cut",),
        scheduled_at=_dt(f"2024-11-25 {start}"),
        end_time=_dt(f"2024-11-25 {end}"),
        created_at=_dt("2024-11-20 08:00"),
        buffer_minutes=buffer_minutes,
        status=status,
    )


def _times(slots):
    return [s.format("HH:mm") for s in slots]


class TestGenerateSlots:
    """Tests for generate_slots."""

    def test_monday_with_lunch_break_and_existing_booking(self):
        """
        Mon 09:00-17:00 with a 12:00-13:00 break, 60 min service plus 15 min
        buffer, existing booking 10:00-11:00 (blocking until 11:15).

        A candidate occupies [start, start + 75min) and must fit its open
        interval without touching the existing blocking window, so nothing
        fits in the morning and the afternoon offers 13:00 to 15:45.
        """
        open_intervals = [_tr("09:00", "12:00"), _tr("13:00", "17:00")]
        model = ServiceDurationModel("cut", execution_minutes=60, buffer_minutes=15)
        existing = [_appointment("10:00", "11:00", buffer_minutes=15)]

        slots = generate_slots(open_intervals, model, existing, step_minutes=15)

        assert _times(slots) == [
            "13:00", "13:15", "13:30", "13:45", "14:00", "14:15",
            "14:30", "14:45", "15:00", "15:15", "15:30", "15:45",
        ]
        for rejected in ("09:00", "09:30", "11:15", "11:45", "16:00"):
            assert rejected not in _times(slots)

    def test_free_day_without_buffer(self):
        slots = generate_slots(
            [_tr("09:00", "12:00")],
            ServiceDurationModel("cut", execution_minutes=60),
            [],
            step_minutes=60,
        )

        assert _times(slots) == ["09:00", "10:00", "11:00"]

    def test_booking_may_start_at_end_of_existing_blocking_window(self):
        """Windows are end-exclusive: touching is not overlapping."""
        slots = generate_slots(
            [_tr("09:00", "12:00")],
            ServiceDurationModel("cut", execution_minutes=30),
            [_appointment("09:00", "10:00", buffer_minutes=15)],
            step_minutes=15,
        )

        assert slots[0].format("HH:mm") == "10:15"

    def test_inactive_appointments_do_not_block(self):
        existing = [
            _appointment("09:00", "12:00", status=AppointmentStatus.CANCELLED, appt_id="a1"),
            _appointment("09:00", "12:00", status=AppointmentStatus.RESCHEDULED, appt_id="a2"),
        ]

        slots = generate_slots(
            [_tr("09:00", "12:00")],
            ServiceDurationModel("cut", execution_minutes=60),
            existing,
            step_minutes=60,
        )

        assert len(slots) == 3

    def test_excluded_appointment_is_ignored(self):
        """The appointment being moved does not block its own new slot."""
        slots = generate_slots(
            [_tr("09:00", "10:00")],
            ServiceDurationModel("cut", execution_minutes=60),
            [_appointment("09:00", "10:00")],
            step_minutes=15,
            exclude_appointment_ids=["a1"],
        )

        assert _times(slots) == ["09:00"]

    def test_variable_duration_uses_minimum_unless_asked(self):
        model = ServiceDurationModel("color", execution_minutes=60, execution_max_minutes=90)
        open_intervals = [_tr("09:00", "11:00")]

        shortest = generate_slots(open_intervals, model, [], step_minutes=30)
        longest = generate_slots(open_intervals, model, [], step_minutes=30, use_max_duration=True)

        assert _times(shortest) == ["09:00", "09:30", "10:00"]
        assert _times(longest) == ["09:00", "09:30"]

    def test_advance_limits(self):
        """Candidates too soon or too far ahead are dropped."""
        now = _dt("2024-11-25 08:30")
        open_intervals = [_tr("09:00", "12:00"), _tr("09:00", "12:00", day="2024-11-28")]
        model = ServiceDurationModel("cut", execution_minutes=60)

        slots = generate_slots(
            open_intervals, model, [], step_minutes=60,
            now=now, min_advance_hours=1.5, max_advance_days=2,
        )

        assert [s.to_datetime_string() for s in slots] == [
            "2024-11-25 10:00:00",
            "2024-11-25 11:00:00",
        ]

    def test_output_sorted_and_unique(self):
        """Overlapping input intervals never produce duplicates."""
        slots = generate_slots(
            [_tr("10:00", "12:00"), _tr("09:00", "11:00")],
            ServiceDurationModel("cut", execution_minutes=30),
            [],
            step_minutes=30,
        )

        assert slots == sorted(set(slots))
        assert _times(slots)[0] == "09:00"

    def test_generation_is_idempotent(self):
        open_intervals = [_tr("09:00", "12:00"), _tr("13:00", "17:00")]
        model = ServiceDurationModel("cut", execution_minutes=45, buffer_minutes=10)
        existing = [_appointment("14:00", "15:00", buffer_minutes=10)]

        first = generate_slots(open_intervals, model, existing, step_minutes=15)
        second = generate_slots(open_intervals, model, existing, step_minutes=15)

        assert first == second

    def test_invalid_step_rejected(self):
        with pytest.raises(ValueError, match="step_minutes"):
            generate_slots([_tr("09:00", "12:00")], ServiceDurationModel("cut", execution_minutes=30), [], 0)


class TestSlotGenerator:
    """Tests for the bound SlotGenerator."""

    def test_generate_uses_configured_step(self):
        generator = SlotGenerator(step_minutes=30)

        slots = generator.generate([_tr("09:00", "10:30")], ServiceDurationModel("cut", execution_minutes=30), [])

        assert _times(slots) == ["09:00", "09:30", "10:00"]

    def test_rejects_non_positive_step(self):
        with pytest.raises(ValueError):
            SlotGenerator(step_minutes=-15)


class TestConflictingAppointments:
    """Tests for conflicting_appointments."""

    def test_buffer_counts_as_blocked(self):
        existing = [_appointment("09:00", "10:00", buffer_minutes=15)]

        assert conflicting_appointments(_tr("10:00", "10:30"), existing) == existing
        assert conflicting_appointments(_tr("10:15", "10:45"), existing) == []
