"""Booking write path and PIN cancellation.

A booking moves through ``Received -> Validated -> GuardChecked ->
CapacityChecked -> Committed``. Input checks run before any storage access;
the idempotency lookup, day gate, guard and capacity checks all run under the
per-day lock, inside the same transaction as the insert.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum

from backend.app.core.clock import Clock, local_now
from backend.app.core.config import Settings
from backend.app.core.errors import (
    CourtError,
    DayNotConfigured,
    Forbidden,
    IdempotencyKeyReused,
    InvalidCourt,
    InvalidPin,
    InvalidTimeRange,
    MissingFields,
    PlayerCountMismatch,
    ReservationNotFound,
    SlotConflict,
    TransientStoreError,
)
from backend.app.core.ttl_store import TtlStore, TtlStoreUnavailable
from backend.app.db.store import CourtStore, IdempotencyKeyTaken, StoreConflict, StoreUnavailable
from backend.app.domain.capacity import check_capacity
from backend.app.domain.gate import check_gate
from backend.app.domain.guard import check_guard
from backend.app.domain.models import DayConfig, NewReservation, Reservation
from backend.app.domain.names import DEFAULT_MAX_NAME_LENGTH, clean_player_names, normalize_player_names
from backend.app.domain.pins import is_booking_pin, normalize_pin, pins_match
from backend.app.domain.time_grid import assert_reservation_validity

logger = logging.getLogger(__name__)

COMMIT_ATTEMPTS = 2
IDEMPOTENCY_PREFIX = "idem:booking:"


class BookingState(str, Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    CAPACITY_CHECKED = "capacity_checked"
    GUARD_CHECKED = "guard_checked"
    COMMITTED = "committed"


@dataclass(frozen=True)
class BookingRequest:
    court_id: int | None
    date: date | None
    start_min: int
    end_min: int
    party_size: int
    player_names: Sequence[object] | None
    owner_id: str
    pin: str | None = None
    idempotency_key: str | None = None


@dataclass(frozen=True)
class BookingPolicy:
    max_name_length: int = DEFAULT_MAX_NAME_LENGTH
    idempotency_ttl_seconds: int = 300
    retry_delay_ms: int = 150

    @classmethod
    def from_settings(cls, settings: Settings) -> "BookingPolicy":
        return cls(
            max_name_length=settings.MAX_NAME_LENGTH,
            idempotency_ttl_seconds=settings.IDEMPOTENCY_TTL_SECONDS,
            retry_delay_ms=settings.COMMIT_RETRY_DELAY_MS,
        )


@dataclass
class BookingOutcome:
    reservation: Reservation
    replayed: bool = False
    states: list[BookingState] = field(default_factory=list)


def reservation_to_json(reservation: Reservation) -> str:
    data = asdict(reservation)
    data["date"] = reservation.date.isoformat()
    data["player_names"] = list(reservation.player_names)
    data["created_at"] = reservation.created_at.isoformat() if reservation.created_at else None
    return json.dumps(data, ensure_ascii=False)


def reservation_from_json(raw: str) -> Reservation:
    data = json.loads(raw)
    return Reservation(
        id=data["id"],
        court_id=data["court_id"],
        date=date.fromisoformat(data["date"]),
        start_min=data["start_min"],
        end_min=data["end_min"],
        party_size=data["party_size"],
        player_names=tuple(data["player_names"]),
        owner_id=data["owner_id"],
        pin=data.get("pin"),
        idempotency_key=data.get("idempotency_key"),
        created_at=datetime.fromisoformat(data["created_at"]) if data.get("created_at") else None,
    )


@dataclass(frozen=True)
class _ValidatedBooking:
    court_id: int
    date: date
    start_min: int
    end_min: int
    party_size: int
    player_names: tuple[str, ...]
    pin: str | None


def validate_booking(request: BookingRequest, max_name_length: int = DEFAULT_MAX_NAME_LENGTH) -> _ValidatedBooking:
    """Structural, name and time checks. Touches no storage."""
    if not request.court_id or request.date is None:
        raise MissingFields()
    if not isinstance(request.player_names, (list, tuple)):
        raise MissingFields("Player names are required")

    cleaned = clean_player_names(request.player_names)
    if len(cleaned) != request.party_size:
        raise PlayerCountMismatch(expected=request.party_size, received=len(cleaned))
    names = normalize_player_names(cleaned, max_name_length)

    assert_reservation_validity(request.start_min, request.end_min, request.party_size)

    pin = None
    if request.pin is not None and request.pin.strip():
        pin = normalize_pin(request.pin)
        if not is_booking_pin(pin):
            raise InvalidPin()

    return _ValidatedBooking(
        court_id=request.court_id,
        date=request.date,
        start_min=request.start_min,
        end_min=request.end_min,
        party_size=request.party_size,
        player_names=names,
        pin=pin,
    )


def check_day(config: DayConfig | None, booking: _ValidatedBooking) -> DayConfig:
    if config is None or config.date != booking.date:
        raise DayNotConfigured()
    if booking.court_id < 1 or booking.court_id > config.court_count:
        raise InvalidCourt(court_id=booking.court_id, court_count=config.court_count)
    if booking.start_min < config.start_min or booking.end_min > config.end_min:
        raise InvalidTimeRange(
            "Time must be within operating hours",
            day_start_min=config.start_min,
            day_end_min=config.end_min,
        )
    return config


class ReservationWriter:
    def __init__(
        self,
        store: CourtStore,
        ttl_store: TtlStore,
        policy: BookingPolicy | None = None,
        clock: Clock = local_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._ttl_store = ttl_store
        self._policy = policy or BookingPolicy()
        self._clock = clock
        self._sleep = sleep

    async def create(self, request: BookingRequest) -> BookingOutcome:
        outcome_states = [BookingState.RECEIVED]
        key = request.idempotency_key

        if key:
            cached = await self._cached(key)
            if cached is not None:
                logger.info("Idempotent replay served from cache for key %s", key)
                return BookingOutcome(reservation_from_json(cached), replayed=True, states=outcome_states)

        try:
            booking = validate_booking(request, self._policy.max_name_length)
        except CourtError as exc:
            logger.info("Booking rejected at validation: %s", exc.code)
            raise
        outcome_states.append(BookingState.VALIDATED)

        for attempt in range(1, COMMIT_ATTEMPTS + 1):
            try:
                outcome = await self._attempt(request, booking, list(outcome_states))
                await self._store.commit()
            except IdempotencyKeyTaken:
                await self._store.rollback()
                existing = await self._replay_from_store(key)
                if existing is None:
                    raise IdempotencyKeyReused(idempotency_key=key)
                return BookingOutcome(existing, replayed=True, states=outcome_states)
            except (StoreConflict, StoreUnavailable) as exc:
                await self._store.rollback()
                if attempt < COMMIT_ATTEMPTS:
                    logger.warning(
                        "Commit attempt %d for court %s %s failed (%s); retrying",
                        attempt,
                        booking.court_id,
                        booking.date,
                        type(exc).__name__,
                    )
                    await self._sleep(self._policy.retry_delay_ms / 1000)
                    continue
                logger.error("Commit failed after %d attempts: %s", attempt, exc)
                if isinstance(exc, StoreConflict):
                    raise SlotConflict() from exc
                raise TransientStoreError() from exc
            except CourtError as exc:
                await self._store.rollback()
                logger.info("Booking rejected for court %s: %s", booking.court_id, exc.code)
                raise
            except Exception:
                await self._store.rollback()
                logger.exception("Unexpected failure while booking court %s", booking.court_id)
                raise

            if not outcome.replayed:
                outcome.states.append(BookingState.COMMITTED)
                logger.info(
                    "Reservation %s committed: court %s %s %d-%d party %d",
                    outcome.reservation.id,
                    booking.court_id,
                    booking.date,
                    booking.start_min,
                    booking.end_min,
                    booking.party_size,
                )
            await self._remember(key, outcome.reservation)
            return outcome

        raise AssertionError("unreachable")  # pragma: no cover

    async def _attempt(
        self,
        request: BookingRequest,
        booking: _ValidatedBooking,
        states: list[BookingState],
    ) -> BookingOutcome:
        key = request.idempotency_key
        await self._store.lock_day(booking.date)
        if key:
            existing = await self._store.find_by_idempotency_key(key, self._retention_start())
            if existing is not None:
                logger.info("Idempotent replay served from store for key %s", key)
                return BookingOutcome(existing, replayed=True, states=states)
            released = await self._store.release_idempotency_key(key, self._retention_start())
            if released:
                logger.info("Expired idempotency key %s released for reuse", key)

        config = check_day(await self._store.get_day_config(), booking)
        check_gate(config, booking.court_id, booking.start_min, booking.end_min)

        snapshot = await self._store.list_reservations(day=booking.date)

        check_guard(
            booking.player_names,
            day=booking.date,
            start=booking.start_min,
            end=booking.end_min,
            existing=snapshot,
            now=self._clock(),
        )
        states.append(BookingState.GUARD_CHECKED)

        check_capacity(
            snapshot,
            court_id=booking.court_id,
            start=booking.start_min,
            end=booking.end_min,
            party_size=booking.party_size,
        )
        states.append(BookingState.CAPACITY_CHECKED)

        created = await self._store.insert_reservation(
            NewReservation(
                court_id=booking.court_id,
                date=booking.date,
                start_min=booking.start_min,
                end_min=booking.end_min,
                party_size=booking.party_size,
                player_names=booking.player_names,
                owner_id=request.owner_id,
                pin=booking.pin,
                idempotency_key=key,
            )
        )
        return BookingOutcome(created, states=states)

    def _retention_start(self) -> datetime:
        now = self._clock().astimezone(timezone.utc)
        return now - timedelta(seconds=self._policy.idempotency_ttl_seconds)

    async def _replay_from_store(self, key: str | None) -> Reservation | None:
        if not key:
            return None
        existing = await self._store.find_by_idempotency_key(key, self._retention_start())
        if existing is not None:
            logger.info("Concurrent duplicate for key %s resolved to %s", key, existing.id)
        return existing

    async def _cached(self, key: str) -> str | None:
        try:
            return await self._ttl_store.get(IDEMPOTENCY_PREFIX + key)
        except TtlStoreUnavailable:
            # The lookup under the day lock still finds committed duplicates.
            logger.warning("Idempotency cache unavailable; checking the store for key %s", key)
            return None

    async def _remember(self, key: str | None, reservation: Reservation) -> None:
        if not key:
            return
        try:
            await self._ttl_store.set(
                IDEMPOTENCY_PREFIX + key,
                reservation_to_json(reservation),
                self._policy.idempotency_ttl_seconds * 1000,
            )
        except TtlStoreUnavailable:
            # The booking is committed; the unique key index still deduplicates.
            logger.warning("Could not cache idempotency key %s", key)


async def cancel_with_pin(store: CourtStore, reservation_id: str, pin: str | None) -> None:
    reservation = await store.get_reservation(reservation_id)
    if reservation is None:
        raise ReservationNotFound()

    stored = normalize_pin(reservation.pin)
    if not stored:
        raise Forbidden("This reservation cannot be cancelled with a PIN")

    provided = normalize_pin(pin)
    if not is_booking_pin(provided):
        raise InvalidPin("Enter the 4-digit PIN")
    if not pins_match(provided, stored):
        raise Forbidden("PIN does not match")

    deleted = await store.delete_reservation(reservation_id)
    await store.commit()
    if deleted == 0:
        raise ReservationNotFound()
    logger.info("Reservation %s cancelled by PIN", reservation_id)
