"""
Set operations on lists of ``TimeRange``.

Every function returns a new list that is sorted start-ascending and free of
overlapping or adjacent ranges.
"""

from typing import Iterable, List

from .models import TimeRange


def merge_ranges(ranges: Iterable[TimeRange]) -> List[TimeRange]:
    """
    Merge overlapping or adjacent time ranges.

    Example: [09:00-10:00, 10:00-11:00] -> [09:00-11:00]
    """
    sorted_ranges = sorted(ranges, key=lambda r: (r.start, r.end))
    if not sorted_ranges:
        return []

    merged: List[TimeRange] = [sorted_ranges[0]]

    for current in sorted_ranges[1:]:
        last = merged[-1]

        if current.start <= last.end:
            merged[-1] = TimeRange(start=last.start, end=max(last.end, current.end))
        else:
            merged.append(current)

    return merged


def subtract_ranges(base: Iterable[TimeRange], removed: Iterable[TimeRange]) -> List[TimeRange]:
    """
    Subtract ranges from a set of ranges.

    Example:
    Base: [09:00 - 17:00]
    Removed: [10:00-11:00, 14:00-15:00]
    Result: [09:00-10:00, 11:00-14:00, 15:00-17:00]
    """
    to_remove = merge_ranges(removed)
    result: List[TimeRange] = []

    for block in merge_ranges(base):
        current_start = block.start

        for busy in to_remove:
            if busy.end <= current_start:
                continue
            if busy.start >= block.end:
                break

            if current_start < busy.start:
                result.append(TimeRange(start=current_start, end=busy.start))

            current_start = max(current_start, busy.end)
            if current_start >= block.end:
                break

        if current_start < block.end:
            result.append(TimeRange(start=current_start, end=block.end))

    return result


def union_ranges(*groups: Iterable[TimeRange]) -> List[TimeRange]:
    """Union of several groups of ranges."""
    combined: List[TimeRange] = []
    for group in groups:
        combined.extend(group)
    return merge_ranges(combined)


def is_normalized(ranges: List[TimeRange]) -> bool:
    """Check that ranges are sorted, disjoint and not touching."""
    return all(previous.end < current.start for previous, current in zip(ranges, ranges[1:]))
