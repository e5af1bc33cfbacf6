from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime


@dataclass(frozen=True)
class BlackoutBlock:
    court_id: int
    start_min: int
    end_min: int
    reason: str | None = None


@dataclass(frozen=True)
class DayConfig:
    """The single active day: courts, operating window, slot size and gates."""

    date: date
    court_count: int
    court_names: tuple[str, ...]
    start_min: int
    end_min: int
    slot_minutes: int
    preparing: bool = False
    notice: str = ""
    blocks: tuple[BlackoutBlock, ...] = ()
    updated_at: datetime | None = None


@dataclass(frozen=True)
class NewReservation:
    court_id: int
    date: date
    start_min: int
    end_min: int
    party_size: int
    player_names: tuple[str, ...]
    owner_id: str
    pin: str | None = None
    idempotency_key: str | None = None


@dataclass(frozen=True)
class Reservation:
    id: str
    court_id: int
    date: date
    start_min: int
    end_min: int
    party_size: int
    player_names: tuple[str, ...]
    owner_id: str
    pin: str | None = None
    idempotency_key: str | None = None
    created_at: datetime | None = field(default=None, compare=False)
