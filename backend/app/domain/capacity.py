from __future__ import annotations

from collections.abc import Iterable

from backend.app.core.errors import CapacityExceeded
from backend.app.domain.models import Reservation
from backend.app.domain.time_grid import overlaps

COURT_CAPACITY = 4


def used_capacity(reservations: Iterable[Reservation], start: int, end: int, court_id: int) -> int:
    """Sum of party sizes on ``court_id`` whose window overlaps ``[start, end)``."""
    return sum(
        r.party_size
        for r in reservations
        if r.court_id == court_id and overlaps(r.start_min, r.end_min, start, end)
    )


def remaining_capacity(reservations: Iterable[Reservation], start: int, end: int, court_id: int) -> int:
    return max(COURT_CAPACITY - used_capacity(reservations, start, end, court_id), 0)


def is_full(used: int) -> bool:
    return used >= COURT_CAPACITY


def can_add(used: int, party_size: int) -> bool:
    return used + party_size <= COURT_CAPACITY


def check_capacity(
    reservations: Iterable[Reservation],
    *,
    court_id: int,
    start: int,
    end: int,
    party_size: int,
) -> int:
    """Raise ``CapacityExceeded`` unless the party fits; return seats used after adding it."""
    used = used_capacity(reservations, start, end, court_id)
    if not can_add(used, party_size):
        raise CapacityExceeded(used=used, requested=party_size, capacity=COURT_CAPACITY)
    return used + party_size
