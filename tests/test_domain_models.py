"""
Tests for domain models.
"""

import pendulum
import pytest
from datetime import time

from slotkeeper.domain.exceptions import InvalidScheduleError
from slotkeeper.domain.models import (
    Appointment,
    AppointmentStatus,
    BreakRule,
    DaySchedule,
    ExceptionType,
    ScheduleException,
    ServiceDurationModel,
    TimeRange,
    TimeSlot,
    WorkingHoursTemplate,
)


def _dt(value: str):
    return pendulum.parse(value, tz="Europe/Berlin")


class TestTimeRange:
    """Tests for TimeRange model."""

    def test_create_valid_time_range(self):
        """Test creating a valid time range."""
        tr = TimeRange(start=_dt("2024-11-25 09:00"), end=_dt("2024-11-25 17:00"))

        assert tr.duration_minutes() == 480

    def test_invalid_time_range_raises_error(self):
        """Test that creating an invalid time range raises ValueError."""
        with pytest.raises(ValueError, match="Start time .* must be before end time"):
            TimeRange(start=_dt("2024-11-25 17:00"), end=_dt("2024-11-25 09:00"))

    def test_overlaps_is_end_exclusive(self):
        """Ranges that only touch do not overlap."""
        morning = TimeRange(start=_dt("2024-11-25 09:00"), end=_dt("2024-11-25 12:00"))
        late_morning = TimeRange(start=_dt("2024-11-25 11:00"), end=_dt("2024-11-25 14:00"))
        afternoon = TimeRange(start=_dt("2024-11-25 12:00"), end=_dt("2024-11-25 17:00"))

        assert morning.overlaps(late_morning)
        assert late_morning.overlaps(morning)
        assert not morning.overlaps(afternoon)

    def test_contains_and_intersect(self):
        """Test containment and intersection."""
        day = TimeRange(start=_dt("2024-11-25 09:00"), end=_dt("2024-11-25 17:00"))
        inner = TimeRange(start=_dt("2024-11-25 10:00"), end=_dt("2024-11-25 11:00"))
        spill = TimeRange(start=_dt("2024-11-25 16:00"), end=_dt("2024-11-25 18:00"))

        assert day.contains(inner)
        assert not day.contains(spill)
        assert day.intersect(spill) == TimeRange(start=_dt("2024-11-25 16:00"), end=_dt("2024-11-25 17:00"))
        assert inner.intersect(spill) is None

    def test_days_excludes_midnight_end(self):
        """A range ending exactly at midnight only touches one day."""
        evening = TimeRange(start=_dt("2024-11-25 20:00"), end=_dt("2024-11-26 00:00"))
        overnight = TimeRange(start=_dt("2024-11-25 22:00"), end=_dt("2024-11-26 02:00"))

        assert evening.days() == [pendulum.date(2024, 11, 25)]
        assert overnight.days() == [pendulum.date(2024, 11, 25), pendulum.date(2024, 11, 26)]


class TestScheduleModels:
    """Validation of slots, day schedules and templates."""

    def test_slot_start_must_precede_end(self):
        with pytest.raises(InvalidScheduleError):
            TimeSlot(time(12, 0), time(9, 0))

    def test_midnight_end_means_end_of_day(self):
        """time(0, 0) as end covers the rest of the day."""
        slot = TimeSlot(time(18, 0), time(0, 0))

        assert slot.end_minute == 24 * 60
        tr = slot.to_range(pendulum.date(2024, 11, 25), "Europe/Berlin")
        assert tr.end == _dt("2024-11-26 00:00")

    def test_slot_inside_dst_gap_has_no_range(self):
        """02:00-03:00 does not exist in Berlin on the spring-forward day."""
        slot = TimeSlot(time(2, 0), time(3, 0))

        assert slot.to_range(pendulum.date(2024, 3, 31), "Europe/Berlin") is None
        assert slot.to_range(pendulum.date(2024, 3, 30), "Europe/Berlin") is not None

    def test_overlapping_slots_rejected(self):
        with pytest.raises(InvalidScheduleError, match="Overlapping slots"):
            DaySchedule(0, slots=(TimeSlot(time(9, 0), time(12, 0)), TimeSlot(time(11, 0), time(14, 0))))

    def test_slots_are_sorted(self):
        """Slots are stored start-ascending."""
        day = DaySchedule(0, slots=(TimeSlot(time(14, 0), time(18, 0)), TimeSlot(time(9, 0), time(12, 0))))

        assert [s.start for s in day.slots] == [time(9, 0), time(14, 0)]

    def test_non_work_day_has_no_effective_slots(self):
        day = DaySchedule(5, is_work_day=False, slots=(TimeSlot(time(9, 0), time(12, 0)),))

        assert day.effective_slots() == ()

    def test_duplicate_weekday_rejected(self):
        with pytest.raises(InvalidScheduleError, match="more than once"):
            WorkingHoursTemplate("t1", "pro", days=(DaySchedule(0), DaySchedule(0)))

    def test_validity_window_is_inclusive(self):
        template = WorkingHoursTemplate(
            "t1", "pro", days=(),
            valid_from=pendulum.date(2024, 11, 1),
            valid_until=pendulum.date(2024, 11, 30),
        )

        assert template.covers(pendulum.date(2024, 11, 1))
        assert template.covers(pendulum.date(2024, 11, 30))
        assert not template.covers(pendulum.date(2024, 12, 1))


class TestScheduleException:
    """Validation of dated overrides."""

    def test_all_day_exception_must_not_carry_times(self):
        with pytest.raises(InvalidScheduleError):
            ScheduleException(
                "e1", "pro", ExceptionType.VACATION,
                pendulum.date(2024, 11, 25), pendulum.date(2024, 11, 25),
                start_time=time(9, 0), end_time=time(12, 0), is_all_day=True,
            )

    def test_extra_hours_need_a_window(self):
        """Additive exceptions cannot be all-day."""
        with pytest.raises(InvalidScheduleError, match="explicit time window"):
            ScheduleException(
                "e1", "pro", ExceptionType.EXTRA_HOURS,
                pendulum.date(2024, 11, 30), pendulum.date(2024, 11, 30), is_all_day=True,
            )

    def test_partial_day_needs_both_times(self):
        with pytest.raises(InvalidScheduleError, match="needs both"):
            ScheduleException(
                "e1", "pro", ExceptionType.PERSONAL,
                pendulum.date(2024, 11, 25), pendulum.date(2024, 11, 25), start_time=time(9, 0),
            )

    def test_end_before_start_rejected(self):
        with pytest.raises(InvalidScheduleError):
            ScheduleException(
                "e1", "pro", ExceptionType.SICK_LEAVE,
                pendulum.date(2024, 11, 26), pendulum.date(2024, 11, 25), is_all_day=True,
            )


class TestBreakRule:
    """Validation of fixed and flexible breaks."""

    def test_fixed_or_flexible_not_both(self):
        with pytest.raises(InvalidScheduleError, match="either"):
            BreakRule("b1", "pro", 30, start_time=time(12, 0), window_start=time(12, 0), window_end=time(14, 0))

    def test_window_must_fit_duration(self):
        with pytest.raises(InvalidScheduleError, match="shorter"):
            BreakRule("b1", "pro", 90, window_start=time(12, 0), window_end=time(13, 0))

    def test_fixed_slot(self):
        rule = BreakRule("b1", "pro", 45, start_time=time(12, 30))

        assert rule.fixed_slot() == TimeSlot(time(12, 30), time(13, 15))
        assert not rule.is_flexible

    def test_applies_on_weekday(self):
        rule = BreakRule("b1", "pro", 30, days_of_week=frozenset({0}), start_time=time(12, 0))

        assert rule.applies_on(pendulum.date(2024, 11, 25))  # Monday
        assert not rule.applies_on(pendulum.date(2024, 11, 26))


class TestServiceDurationModel:
    """Duration phases and combination."""

    def test_min_and_max_duration(self):
        model = ServiceDurationModel(
            "color", execution_minutes=60, preparation_minutes=10,
            finalization_minutes=5, buffer_minutes=15, execution_max_minutes=90,
        )

        assert model.is_variable
        assert model.min_duration == 75
        assert model.max_duration == 105
        assert model.duration(use_max=True) == 105

    def test_buffer_not_part_of_duration(self):
        model = ServiceDurationModel("cut", execution_minutes=45, buffer_minutes=15)

        assert model.min_duration == 45
        assert model.max_duration == 45

    def test_combine_sums_phases_and_keeps_largest_buffer(self):
        cut = ServiceDurationModel("cut", execution_minutes=45, buffer_minutes=10)
        color = ServiceDurationModel("color", execution_minutes=60, execution_max_minutes=90, buffer_minutes=15)

        combined = ServiceDurationModel.combine([cut, color])

        assert combined.service_id == "cut+color"
        assert combined.min_duration == 105
        assert combined.max_duration == 135
        assert combined.buffer_minutes == 15

    def test_max_below_min_rejected(self):
        with pytest.raises(InvalidScheduleError):
            ServiceDurationModel("x", execution_minutes=60, execution_max_minutes=30)


class TestAppointment:
    """Derived appointment properties."""

    def test_blocking_window_includes_buffer(self):
        appt = Appointment(
            id="a1", professional_id="pro", client_id="c1", service_ids=("cut",),
            scheduled_at=_dt("2024-11-25 10:00"), end_time=_dt("2024-11-25 11:00"),
            created_at=_dt("2024-11-20 08:00"), buffer_minutes=15,
        )

        assert appt.duration_minutes == 60
        assert appt.blocking_window().end == _dt("2024-11-25 11:15")
        assert appt.is_active

    def test_terminal_statuses_do_not_block(self):
        for status in (AppointmentStatus.CANCELLED, AppointmentStatus.RESCHEDULED,
                       AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW):
            assert status.is_terminal
            assert not status.blocks_time
