"""One-active-reservation-per-person rule.

A person may hold only one reservation that has not yet finished today.
Overlapping windows always conflict; a later, non-overlapping booking is
allowed once the earlier reservation has ended. The "not yet finished" part
only applies to today: there is no cross-day tracking because the day is
reset manually.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import date, datetime

from backend.app.core.errors import DuplicatePersonConflict
from backend.app.domain.models import Reservation
from backend.app.domain.names import guard_key, is_placeholder
from backend.app.domain.time_grid import overlaps

logger = logging.getLogger(__name__)


def person_keys(names: Iterable[str]) -> set[str]:
    return {guard_key(name) for name in names if not is_placeholder(name)} - {""}


def find_conflict(
    names: Sequence[str],
    *,
    day: date,
    start: int,
    end: int,
    existing: Iterable[Reservation],
    now: datetime,
) -> Reservation | None:
    candidates = person_keys(names)
    if not candidates:
        return None

    is_today = day == now.date()
    now_min = now.hour * 60 + now.minute

    for reservation in existing:
        if reservation.date != day:
            continue
        if not candidates & person_keys(reservation.player_names):
            continue
        if overlaps(reservation.start_min, reservation.end_min, start, end):
            return reservation
        if is_today and reservation.end_min > now_min:
            return reservation
    return None


def check_guard(
    names: Sequence[str],
    *,
    day: date,
    start: int,
    end: int,
    existing: Iterable[Reservation],
    now: datetime,
) -> None:
    conflict = find_conflict(names, day=day, start=start, end=end, existing=existing, now=now)
    if conflict is not None:
        logger.info(
            "Duplicate person rejected: existing reservation %s ends at %d",
            conflict.id,
            conflict.end_min,
        )
        raise DuplicatePersonConflict(
            existing_reservation_id=conflict.id,
            existing_end_min=conflict.end_min,
        )
