"""
Expansion of recurring booking requests into individual start times.
"""

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from pendulum import DateTime

MAX_OCCURRENCES = 52  # one year of weekly bookings


class RecurrenceType(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"


@dataclass(frozen=True)
class RecurrencePattern:
    """
    How often a booking repeats.

    Needs ``count`` or ``until`` (or both; whichever ends first wins).
    """
    type: RecurrenceType
    interval: int = 1
    count: Optional[int] = None
    until: Optional[DateTime] = None

    def __post_init__(self):
        if self.interval < 1:
            raise ValueError(f"interval must be >= 1, got {self.interval}")
        if self.count is None and self.until is None:
            raise ValueError("A recurrence needs a count or an until date")
        if self.count is not None and not 1 <= self.count <= MAX_OCCURRENCES:
            raise ValueError(f"count must be between 1 and {MAX_OCCURRENCES}, got {self.count}")

    def next_after(self, current: DateTime) -> DateTime:
        if self.type is RecurrenceType.DAILY:
            return current.add(days=self.interval)
        if self.type is RecurrenceType.WEEKLY:
            return current.add(weeks=self.interval)
        if self.type is RecurrenceType.BIWEEKLY:
            return current.add(weeks=2)
        return current.add(months=self.interval)

    def describe(self) -> str:
        unit = {
            RecurrenceType.DAILY: "day",
            RecurrenceType.WEEKLY: "week",
            RecurrenceType.MONTHLY: "month",
        }
        if self.type is RecurrenceType.BIWEEKLY:
            return "every 2 weeks"
        if self.interval == 1:
            return f"every {unit[self.type]}"
        return f"every {self.interval} {unit[self.type]}s"


def generate_occurrences(first: DateTime, pattern: RecurrencePattern) -> List[DateTime]:
    """
    Start times of a series beginning at ``first``, capped at MAX_OCCURRENCES.
    """
    limit = min(pattern.count or MAX_OCCURRENCES, MAX_OCCURRENCES)
    occurrences: List[DateTime] = []
    current = first

    while len(occurrences) < limit:
        if pattern.until is not None and current > pattern.until:
            break
        occurrences.append(current)
        current = pattern.next_after(current)

    return occurrences


def new_recurrence_group_id() -> str:
    return f"recurrence_{uuid.uuid4().hex[:12]}"
