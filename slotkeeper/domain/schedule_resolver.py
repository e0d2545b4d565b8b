"""
Resolution of recurring working hours into concrete open intervals.

Pure domain logic: the caller hands over a snapshot of the professional's
template, break rules and exceptions, and gets back open intervals per day.

Pipeline per day:
1. Slots of the active template for the weekday
2. Minus break rules (fixed first, then flexible ones)
3. Minus approved subtractive exceptions, plus approved extra hours
4. Merge into sorted, non-overlapping, end-exclusive intervals
"""

import logging
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence

from pendulum import Date

from .intervals import merge_ranges, subtract_ranges, union_ranges
from .models import (
    BreakRule,
    ScheduleException,
    TimeRange,
    TimeSlot,
    WorkingHoursTemplate,
    as_date,
)

logger = logging.getLogger(__name__)


class ScheduleResolver:
    """
    Flattens template + breaks + exceptions into open working intervals.
    """

    def __init__(self, timezone: str = "Europe/Berlin"):
        self.timezone = timezone

    def resolve_range(
        self,
        start_date: date,
        end_date: date,
        template: Optional[WorkingHoursTemplate],
        breaks: Sequence[BreakRule] = (),
        exceptions: Sequence[ScheduleException] = (),
    ) -> Dict[Date, List[TimeRange]]:
        """
        Resolve every day of an inclusive date range.

        Returns a dict with one entry per day, in calendar order. Closed days
        map to an empty list.
        """
        start = as_date(start_date)
        end = as_date(end_date)
        if start > end:
            raise ValueError(f"start_date {start} must not be after end_date {end}")

        resolved: Dict[Date, List[TimeRange]] = {}
        current = start

        while current <= end:
            resolved[current] = self.resolve_day(current, template, breaks, exceptions)
            current = current.add(days=1)

        return resolved

    def resolve_day(
        self,
        day: date,
        template: Optional[WorkingHoursTemplate],
        breaks: Iterable[BreakRule] = (),
        exceptions: Iterable[ScheduleException] = (),
    ) -> List[TimeRange]:
        """Resolve the open intervals of a single day."""
        day = as_date(day)

        intervals = self._template_intervals(day, template)
        intervals = self._apply_breaks(day, intervals, breaks)
        intervals = self._apply_exceptions(day, intervals, exceptions)

        logger.debug("Resolved %d open interval(s) on %s", len(intervals), day)
        return intervals

    def _template_intervals(
        self,
        day: Date,
        template: Optional[WorkingHoursTemplate],
    ) -> List[TimeRange]:
        if template is None or not template.is_active or not template.covers(day):
            return []

        schedule = template.day_schedule(day.weekday())
        if schedule is None:
            return []

        return merge_ranges(self._anchor(day, schedule.effective_slots()))

    def _apply_breaks(
        self,
        day: Date,
        intervals: List[TimeRange],
        breaks: Iterable[BreakRule],
    ) -> List[TimeRange]:
        applicable = [b for b in breaks if b.applies_on(day)]
        if not intervals or not applicable:
            return intervals

        fixed = self._anchor(day, [b.fixed_slot() for b in applicable if not b.is_flexible])
        intervals = subtract_ranges(intervals, fixed)

        flexible = sorted(
            (b for b in applicable if b.is_flexible),
            key=lambda b: b.window().start_minute,
        )
        for rule in flexible:
            placed = self._place_flexible_break(day, intervals, rule)
            if placed is None:
                logger.debug("Flexible break %s does not fit on %s, skipped", rule.id, day)
                continue
            intervals = subtract_ranges(intervals, [placed])

        return intervals

    def _place_flexible_break(
        self,
        day: Date,
        intervals: List[TimeRange],
        rule: BreakRule,
    ) -> TimeRange | None:
        """Earliest stretch of open time inside the break window that fits the break."""
        window = rule.window().to_range(day, self.timezone)
        if window is None:
            return None

        for interval in intervals:
            overlap = interval.intersect(window)
            if overlap and overlap.duration_minutes() >= rule.duration_minutes:
                return TimeRange(
                    start=overlap.start,
                    end=overlap.start.add(minutes=rule.duration_minutes),
                )

        return None

    def _apply_exceptions(
        self,
        day: Date,
        intervals: List[TimeRange],
        exceptions: Iterable[ScheduleException],
    ) -> List[TimeRange]:
        active = [e for e in exceptions if e.is_approved and e.applies_on(day)]
        if not active:
            return intervals

        removed: List[TimeRange] = []
        added: List[TimeRange] = []

        for exception in active:
            if exception.is_additive:
                added.extend(self._anchor(day, [exception.window()]))
            elif exception.is_all_day:
                intervals = []
            else:
                removed.extend(self._anchor(day, [exception.window()]))

        intervals = subtract_ranges(intervals, removed)
        return union_ranges(intervals, added)

    def _anchor(self, day: Date, slots: Iterable[TimeSlot]) -> List[TimeRange]:
        """Concrete ranges of ``slots`` on ``day``; slots lost to a DST gap are dropped."""
        ranges = []
        for slot in slots:
            anchored = slot.to_range(day, self.timezone)
            if anchored is None:
                logger.debug("Slot %s-%s falls into a DST gap on %s, skipped", slot.start, slot.end, day)
                continue
            ranges.append(anchored)
        return ranges
