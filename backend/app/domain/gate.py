from __future__ import annotations

from backend.app.core.errors import DayPreparing, SlotBlocked
from backend.app.domain.models import BlackoutBlock, DayConfig
from backend.app.domain.time_grid import overlaps


def blocking_block(config: DayConfig, court_id: int, start: int, end: int) -> BlackoutBlock | None:
    for block in config.blocks:
        if block.court_id == court_id and overlaps(block.start_min, block.end_min, start, end):
            return block
    return None


def bookable(config: DayConfig, court_id: int, start: int, end: int) -> bool:
    """Whether a cell is open, ignoring capacity."""
    return not config.preparing and blocking_block(config, court_id, start, end) is None


def check_gate(config: DayConfig, court_id: int, start: int, end: int) -> None:
    if config.preparing:
        raise DayPreparing()
    block = blocking_block(config, court_id, start, end)
    if block is not None:
        raise SlotBlocked(reason=block.reason, start_min=block.start_min, end_min=block.end_min)
