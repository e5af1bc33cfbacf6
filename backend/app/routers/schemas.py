from dataclasses import asdict
from datetime import date, datetime

from pydantic import BaseModel, Field

from backend.app.domain.models import DayConfig, Reservation
from backend.app.services.day_config import GridCourt


class CreateReservationIn(BaseModel):
    court_id: int
    date: date
    # Minutes since local midnight, e.g. 540 for 09:00
    start_min: int
    end_min: int
    party_size: int
    player_names: list[str]
    pin: str | None = Field(default=None, max_length=16)
    idempotency_key: str | None = Field(default=None, max_length=128)


class CancelReservationIn(BaseModel):
    pin: str | None = Field(default=None, max_length=16)


class ReservationOut(BaseModel):
    id: str
    court_id: int
    date: date
    start_min: int
    end_min: int
    party_size: int
    player_names: list[str]
    owner_id: str
    has_pin: bool
    created_at: datetime | None = None

    @classmethod
    def from_domain(cls, reservation: Reservation) -> "ReservationOut":
        return cls(
            id=reservation.id,
            court_id=reservation.court_id,
            date=reservation.date,
            start_min=reservation.start_min,
            end_min=reservation.end_min,
            party_size=reservation.party_size,
            player_names=list(reservation.player_names),
            owner_id=reservation.owner_id,
            has_pin=bool(reservation.pin),
            created_at=reservation.created_at,
        )


class BlackoutBlockIn(BaseModel):
    court_id: int
    start_min: int
    end_min: int
    reason: str | None = Field(default=None, max_length=200)


class BlackoutBlockOut(BlackoutBlockIn):
    pass


class DayConfigIn(BaseModel):
    date: date
    court_count: int
    court_names: list[str | None]
    start_min: int | None = None
    end_min: int | None = None
    slot_minutes: int | None = None
    preparing: bool = False
    notice: str = Field(default="", max_length=20_000)
    blocks: list[BlackoutBlockIn] = Field(default_factory=list)


class DayConfigOut(BaseModel):
    date: date
    court_count: int
    court_names: list[str]
    start_min: int
    end_min: int
    slot_minutes: int
    preparing: bool
    notice: str
    blocks: list[BlackoutBlockOut]
    updated_at: datetime | None = None

    @classmethod
    def from_domain(cls, config: DayConfig) -> "DayConfigOut":
        return cls(
            date=config.date,
            court_count=config.court_count,
            court_names=list(config.court_names),
            start_min=config.start_min,
            end_min=config.end_min,
            slot_minutes=config.slot_minutes,
            preparing=config.preparing,
            notice=config.notice,
            blocks=[
                BlackoutBlockOut(court_id=b.court_id, start_min=b.start_min, end_min=b.end_min, reason=b.reason)
                for b in config.blocks
            ],
            updated_at=config.updated_at,
        )


class GridCellOut(BaseModel):
    start: int
    end: int
    used: int
    remaining: int
    full: bool
    bookable: bool
    blocked_reason: str | None = None


class GridCourtOut(BaseModel):
    court_id: int
    name: str
    cells: list[GridCellOut]

    @classmethod
    def from_domain(cls, court: GridCourt) -> "GridCourtOut":
        return cls(
            court_id=court.court_id,
            name=court.name,
            cells=[GridCellOut(**asdict(cell)) for cell in court.cells],
        )


class GridOut(BaseModel):
    date: date
    preparing: bool
    slot_minutes: int
    courts: list[GridCourtOut]


class ResetIn(BaseModel):
    all: bool = False


class DeletedOut(BaseModel):
    ok: bool = True
    deleted: int


class DeletePastIn(BaseModel):
    before: date | None = None


class DeletePastOut(DeletedOut):
    before: date


class UpdateNamesIn(BaseModel):
    player_names: list[str]


class ChangePinIn(BaseModel):
    new_pin: str | None = None


class OkOut(BaseModel):
    ok: bool = True
