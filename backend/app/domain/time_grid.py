"""Minute-of-day arithmetic shared by booking validation and grid rendering.

All times are integer minutes since local midnight. Intervals are half-open,
``[start, end)``, so touching windows never overlap.
"""

from __future__ import annotations

from typing import NamedTuple

from backend.app.core.errors import InvalidPartySize, InvalidTimeRange

ALIGNMENT_MINUTES = 5
MINUTES_PER_DAY = 24 * 60

DEFAULT_START_MIN = 9 * 60
DEFAULT_END_MIN = 21 * 60
DEFAULT_SLOT_MINUTES = 30

MIN_PARTY_SIZE = 1
MAX_PARTY_SIZE = 4


class Slot(NamedTuple):
    start: int
    end: int


def minutes(hours: int, mins: int = 0) -> int:
    return hours * 60 + mins


def format_minutes(value: int) -> str:
    return f"{value // 60:02d}:{value % 60:02d}"


def is_five_minute_aligned(value: int) -> bool:
    return value % ALIGNMENT_MINUTES == 0


def overlaps(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    return max(a_start, b_start) < min(a_end, b_end)


def make_slots(start_min: int, end_min: int, slot_minutes: int) -> list[Slot]:
    """Consecutive ``slot_minutes``-wide windows from ``start_min``.

    A trailing window that would run past ``end_min`` is not emitted.
    """
    if slot_minutes <= 0:
        raise ValueError("slot_minutes must be positive")
    slots: list[Slot] = []
    start = start_min
    while start + slot_minutes <= end_min:
        slots.append(Slot(start, start + slot_minutes))
        start += slot_minutes
    return slots


def assert_reservation_validity(start_min: int, end_min: int, party_size: int) -> None:
    if not is_five_minute_aligned(start_min) or not is_five_minute_aligned(end_min):
        raise InvalidTimeRange("Time must be aligned to 5-minute increments")
    if start_min < 0 or end_min > MINUTES_PER_DAY:
        raise InvalidTimeRange("Time must fall within the day")
    if start_min >= end_min:
        raise InvalidTimeRange("Start must be before end")
    if party_size < MIN_PARTY_SIZE or party_size > MAX_PARTY_SIZE:
        raise InvalidPartySize(f"partySize must be {MIN_PARTY_SIZE}..{MAX_PARTY_SIZE}")
