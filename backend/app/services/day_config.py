from __future__ import annotations

import logging
import string
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date

from backend.app.core.errors import InvalidDayConfig
from backend.app.db.store import CourtStore
from backend.app.domain.capacity import COURT_CAPACITY, used_capacity
from backend.app.domain.gate import blocking_block
from backend.app.domain.models import BlackoutBlock, DayConfig, Reservation
from backend.app.domain.time_grid import (
    DEFAULT_END_MIN,
    DEFAULT_SLOT_MINUTES,
    DEFAULT_START_MIN,
    is_five_minute_aligned,
    make_slots,
)

logger = logging.getLogger(__name__)

MIN_COURTS = 1
MAX_COURTS = 21
MIN_SLOT_MINUTES = 5
MAX_SLOT_MINUTES = 240


def court_label(index: int) -> str:
    """Zero-based index to a letter label: 0 -> A, 25 -> Z, 26 -> AA."""
    letters = string.ascii_uppercase
    label = ""
    index += 1
    while index > 0:
        index, rem = divmod(index - 1, len(letters))
        label = letters[rem] + label
    return label


def block_is_valid(block: BlackoutBlock, *, court_count: int, start_min: int, end_min: int) -> bool:
    return (
        1 <= block.court_id <= court_count
        and is_five_minute_aligned(block.start_min)
        and is_five_minute_aligned(block.end_min)
        and block.start_min < block.end_min
        and start_min <= block.start_min
        and block.end_min <= end_min
    )


def build_day_config(
    *,
    day: date,
    court_count: int,
    court_names: Sequence[str | None],
    start_min: int | None = None,
    end_min: int | None = None,
    slot_minutes: int | None = None,
    preparing: bool = False,
    notice: str = "",
    blocks: Iterable[BlackoutBlock] = (),
) -> DayConfig:
    """Validate an admin save. Invalid blackout blocks are dropped, not rejected."""
    if court_count < MIN_COURTS or court_count > MAX_COURTS:
        raise InvalidDayConfig(f"courtCount must be {MIN_COURTS}..{MAX_COURTS}")
    if len(court_names) != court_count:
        raise InvalidDayConfig("courtNames length must equal courtCount")

    s_min = DEFAULT_START_MIN if start_min is None else start_min
    e_min = DEFAULT_END_MIN if end_min is None else end_min
    slot = DEFAULT_SLOT_MINUTES if slot_minutes is None else slot_minutes

    if not all(is_five_minute_aligned(v) for v in (s_min, e_min, slot)):
        raise InvalidDayConfig("Times must be aligned to 5 minutes")
    if s_min < 0 or e_min > 24 * 60:
        raise InvalidDayConfig("Operating hours must fall within the day")
    if s_min >= e_min:
        raise InvalidDayConfig("startMin must be before endMin")
    if slot < MIN_SLOT_MINUTES or slot > MAX_SLOT_MINUTES:
        raise InvalidDayConfig(f"slotMinutes must be {MIN_SLOT_MINUTES}..{MAX_SLOT_MINUTES}")
    if (e_min - s_min) % slot != 0:
        raise InvalidDayConfig("Range must be divisible by slotMinutes")

    names = tuple((name or "").strip() or court_label(i) for i, name in enumerate(court_names))

    kept = []
    for block in blocks:
        if block_is_valid(block, court_count=court_count, start_min=s_min, end_min=e_min):
            kept.append(block)
        else:
            logger.info(
                "Dropping invalid blackout block court=%s %s-%s",
                block.court_id,
                block.start_min,
                block.end_min,
            )

    return DayConfig(
        date=day,
        court_count=court_count,
        court_names=names,
        start_min=s_min,
        end_min=e_min,
        slot_minutes=slot,
        preparing=preparing,
        notice=notice,
        blocks=tuple(kept),
    )


async def activate(store: CourtStore, config: DayConfig) -> DayConfig:
    """Replace the active day wholesale; last writer wins."""
    saved = await store.save_day_config(config)
    await store.commit()
    logger.warning(
        "Active day set to %s: %d courts, %d-%d by %d min, preparing=%s, %d blocks",
        saved.date,
        saved.court_count,
        saved.start_min,
        saved.end_min,
        saved.slot_minutes,
        saved.preparing,
        len(saved.blocks),
    )
    return saved


@dataclass(frozen=True)
class GridCell:
    start: int
    end: int
    used: int
    remaining: int
    full: bool
    bookable: bool
    blocked_reason: str | None = None


@dataclass(frozen=True)
class GridCourt:
    court_id: int
    name: str
    cells: tuple[GridCell, ...]


def build_grid(config: DayConfig, reservations: Sequence[Reservation]) -> list[GridCourt]:
    """Courts x slots for one config snapshot and one reservation snapshot."""
    day_reservations = [r for r in reservations if r.date == config.date]
    slots = make_slots(config.start_min, config.end_min, config.slot_minutes)
    courts = []
    for court_id in range(1, config.court_count + 1):
        cells = []
        for slot in slots:
            used = used_capacity(day_reservations, slot.start, slot.end, court_id)
            block = blocking_block(config, court_id, slot.start, slot.end)
            full = used >= COURT_CAPACITY
            cells.append(
                GridCell(
                    start=slot.start,
                    end=slot.end,
                    used=used,
                    remaining=max(COURT_CAPACITY - used, 0),
                    full=full,
                    bookable=not config.preparing and block is None and not full,
                    blocked_reason=(block.reason or "blocked") if block is not None else None,
                )
            )
        courts.append(GridCourt(court_id=court_id, name=config.court_names[court_id - 1], cells=tuple(cells)))
    return courts
