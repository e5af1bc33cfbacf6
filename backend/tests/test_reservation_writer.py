import asyncio
from dataclasses import replace

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from backend.app.core.errors import (
    CapacityExceeded,
    DayNotConfigured,
    DayPreparing,
    DuplicatePersonConflict,
    IdempotencyKeyReused,
    InvalidCourt,
    InvalidName,
    InvalidPartySize,
    InvalidPin,
    InvalidTimeRange,
    MissingFields,
    PlayerCountMismatch,
    SlotBlocked,
    SlotConflict,
    TransientStoreError,
)
from backend.app.core.ttl_store import RedisTtlStore
from backend.app.db.store import IdempotencyKeyTaken, StoreConflict, StoreUnavailable
from backend.app.domain.capacity import COURT_CAPACITY, used_capacity
from backend.app.services.reservations import (
    BookingPolicy,
    BookingRequest,
    BookingState,
    ReservationWriter,
    reservation_from_json,
    reservation_to_json,
)

from conftest import TODAY, FakeCourtStore


pytestmark = pytest.mark.asyncio


def booking(**overrides) -> BookingRequest:
    values = dict(
        court_id=1,
        date=TODAY,
        start_min=540,
        end_min=570,
        party_size=2,
        player_names=["山田太郎", "鈴木一郎"],
        owner_id="guest",
        pin="1234",
    )
    values.update(overrides)
    return BookingRequest(**values)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def writer(store, ttl_store, clock, sleeps):
    async def fake_sleep(seconds):
        sleeps.append(seconds)

    return ReservationWriter(store, ttl_store, BookingPolicy(retry_delay_ms=150), clock=clock, sleep=fake_sleep)


def snapshot(db):
    return list(db.reservations.values())


async def test_scenario_capacity_fills_then_rejects(writer, db):
    first = await writer.create(booking())
    assert first.reservation.player_names == ("山田太郎", "鈴木一郎")
    assert first.reservation.pin == "1234"
    assert used_capacity(snapshot(db), 540, 570, 1) == 2

    with pytest.raises(CapacityExceeded):
        await writer.create(booking(party_size=3, player_names=["佐藤", "田中", "高橋"]))
    assert len(db.reservations) == 1

    await writer.create(booking(player_names=["伊藤", "渡辺"], pin=None))
    assert used_capacity(snapshot(db), 540, 570, 1) == 4

    with pytest.raises(CapacityExceeded):
        await writer.create(booking(party_size=1, player_names=["中村"]))
    assert len(db.reservations) == 2


async def test_scenario_blackout_block_rejects(writer, db, blocked_day):
    db.day_config = blocked_day
    with pytest.raises(SlotBlocked):
        await writer.create(booking())
    assert db.reservations == {}


async def test_scenario_preparing_rejects_regardless_of_state(writer, db):
    db.day_config = replace(db.day_config, preparing=True)
    with pytest.raises(DayPreparing):
        await writer.create(booking(court_id=2, start_min=900, end_min=930))
    assert db.reservations == {}


async def test_states_record_the_happy_path(writer):
    outcome = await writer.create(booking())
    assert outcome.states == [
        BookingState.RECEIVED,
        BookingState.VALIDATED,
        BookingState.GUARD_CHECKED,
        BookingState.CAPACITY_CHECKED,
        BookingState.COMMITTED,
    ]
    assert not outcome.replayed


@pytest.mark.parametrize(
    "overrides, error",
    [
        ({"court_id": None}, MissingFields),
        ({"date": None}, MissingFields),
        ({"player_names": None}, MissingFields),
        ({"player_names": ["山田太郎", "  "]}, PlayerCountMismatch),
        ({"player_names": ["山田太郎", "X-1"]}, InvalidName),
        ({"player_names": ["山田太郎", "こーち"]}, InvalidName),
        ({"start_min": 541}, InvalidTimeRange),
        ({"start_min": 570, "end_min": 540}, InvalidTimeRange),
        ({"party_size": 5, "player_names": ["一", "二", "三", "四", "五"]}, InvalidPartySize),
        ({"pin": "12a"}, InvalidPin),
    ],
)
async def test_input_errors_never_touch_storage(writer, db, overrides, error):
    db.day_config = None  # any storage access would surface as DayNotConfigured
    with pytest.raises(error):
        await writer.create(booking(**overrides))
    assert db.insert_calls == 0


async def test_full_width_pin_is_normalized(writer):
    outcome = await writer.create(booking(pin="１２３４"))
    assert outcome.reservation.pin == "1234"


async def test_blank_pin_means_not_cancellable(writer):
    outcome = await writer.create(booking(pin="  "))
    assert outcome.reservation.pin is None


async def test_day_must_be_active_and_within_hours(writer, db):
    with pytest.raises(DayNotConfigured):
        await writer.create(booking(date=TODAY.replace(day=2)))
    with pytest.raises(InvalidCourt):
        await writer.create(booking(court_id=5))
    with pytest.raises(InvalidTimeRange):
        await writer.create(booking(start_min=510, end_min=540))
    db.day_config = None
    with pytest.raises(DayNotConfigured):
        await writer.create(booking())


async def test_duplicate_person_blocked_until_reservation_ends(writer, clock, db):
    await writer.create(booking(start_min=540, end_min=600, player_names=["山田太郎", "鈴木一郎"]))

    clock.set(9, 0)
    with pytest.raises(DuplicatePersonConflict):
        await writer.create(booking(court_id=2, start_min=660, end_min=690, party_size=1, player_names=["山田太郎"]))

    clock.set(10, 5)
    with pytest.raises(DuplicatePersonConflict):
        await writer.create(booking(court_id=2, start_min=540, end_min=600, party_size=1, player_names=["山田太郎"]))

    outcome = await writer.create(booking(court_id=2, start_min=600, end_min=630, party_size=1, player_names=["山田太郎"]))
    assert outcome.reservation.court_id == 2
    assert len(db.reservations) == 2


async def test_looking_placeholder_may_repeat(writer, db):
    await writer.create(booking(party_size=2, player_names=["山田", "looking"]))
    await writer.create(booking(court_id=2, party_size=2, player_names=["鈴木", "LOOKING"]))
    assert len(db.reservations) == 2


async def test_idempotent_replay_returns_same_record(writer, db, ttl_store):
    first = await writer.create(booking(idempotency_key="tok-1"))
    second = await writer.create(booking(idempotency_key="tok-1"))

    assert second.replayed
    assert second.reservation == first.reservation
    assert len(db.reservations) == 1
    assert db.insert_calls == 1


async def test_idempotent_replay_from_store_when_cache_lost(writer, db, ttl_store):
    first = await writer.create(booking(idempotency_key="tok-2"))
    await ttl_store.delete("idem:booking:tok-2")

    second = await writer.create(booking(idempotency_key="tok-2"))
    assert second.replayed
    assert second.reservation.id == first.reservation.id
    assert len(db.reservations) == 1


async def test_same_token_racing_resolves_to_one_record(db, ttl_store, clock):
    writers = [ReservationWriter(FakeCourtStore(db), ttl_store, clock=clock) for _ in range(3)]
    results = await asyncio.gather(*(w.create(booking(idempotency_key="tok-3")) for w in writers))

    assert len(db.reservations) == 1
    assert len({r.reservation.id for r in results}) == 1


async def test_different_tokens_are_separate_bookings(writer, db):
    await writer.create(booking(idempotency_key="a", player_names=["山田", "鈴木"]))
    await writer.create(booking(idempotency_key="b", player_names=["佐藤", "田中"]))
    assert len(db.reservations) == 2


async def test_conflict_retried_once_then_succeeds(writer, db, sleeps):
    db.insert_failures.append(StoreConflict("serialization failure"))
    outcome = await writer.create(booking())
    assert outcome.reservation.id in db.reservations
    assert sleeps == [0.15]
    assert db.insert_calls == 2


async def test_conflict_twice_surfaces_slot_conflict(writer, db, sleeps):
    db.insert_failures.extend([StoreConflict("one"), StoreConflict("two")])
    with pytest.raises(SlotConflict):
        await writer.create(booking())
    assert db.reservations == {}
    assert sleeps == [0.15]


async def test_transient_fault_twice_surfaces_transient_error(writer, db):
    db.insert_failures.extend([StoreUnavailable("reset"), StoreUnavailable("reset")])
    with pytest.raises(TransientStoreError):
        await writer.create(booking())
    assert db.insert_calls == 2
    assert db.reservations == {}


async def test_guard_read_failure_fails_closed(writer, store, db, monkeypatch):
    async def broken(**kwargs):
        raise RuntimeError("replica down")

    monkeypatch.setattr(store, "list_reservations", broken)
    with pytest.raises(RuntimeError):
        await writer.create(booking())
    assert db.reservations == {}


async def test_concurrent_bookings_never_exceed_capacity(db, ttl_store, clock):
    names = [["一郎", "二郎"], ["三郎", "四郎"], ["五郎", "六郎"], ["七郎", "八郎"], ["九郎", "十郎"]]
    writers = [ReservationWriter(FakeCourtStore(db), ttl_store, clock=clock) for _ in names]

    results = await asyncio.gather(
        *(w.create(booking(player_names=n, pin=None)) for w, n in zip(writers, names)),
        return_exceptions=True,
    )

    accepted = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, Exception)]
    assert len(accepted) == 2
    assert all(isinstance(r, CapacityExceeded) for r in rejected)
    assert used_capacity(snapshot(db), 540, 570, 1) == COURT_CAPACITY


async def test_concurrent_bookings_across_overlapping_windows(db, ttl_store, clock):
    windows = [(540, 600), (570, 630), (555, 585), (600, 660), (540, 570)]
    writers = [ReservationWriter(FakeCourtStore(db), ttl_store, clock=clock) for _ in windows]
    await asyncio.gather(
        *(
            w.create(booking(start_min=s, end_min=e, party_size=2, player_names=[f"{k}あ", f"{k}い"], pin=None))
            for k, w, (s, e) in zip("一二三四五", writers, windows)
        ),
        return_exceptions=True,
    )

    reservations = snapshot(db)
    for instant in range(540, 660, 5):
        assert used_capacity(reservations, instant, instant + 5, 1) <= COURT_CAPACITY


async def test_reservation_json_round_trip_keeps_fields():
    from backend.app.domain.models import Reservation

    stored = Reservation(
        id="r1",
        court_id=2,
        date=TODAY,
        start_min=540,
        end_min=570,
        party_size=1,
        player_names=("山田",),
        owner_id="guest",
        pin="0000",
        idempotency_key="k",
    )
    assert reservation_from_json(reservation_to_json(stored)) == stored


async def test_token_reused_after_retention_window_books_again(writer, db, ttl_store, clock):
    first = await writer.create(booking(idempotency_key="k"))
    await ttl_store.delete("idem:booking:k")

    clock.set(12, 0)
    second = await writer.create(
        booking(court_id=2, start_min=900, end_min=930, player_names=["佐藤", "田中"], idempotency_key="k")
    )

    assert not second.replayed
    assert second.reservation.id != first.reservation.id
    assert db.reservations[first.reservation.id].idempotency_key is None
    assert db.reservations[second.reservation.id].idempotency_key == "k"


async def test_taken_token_without_visible_owner_is_reported_as_reused(writer, db):
    db.insert_failures.append(IdempotencyKeyTaken("k"))
    with pytest.raises(IdempotencyKeyReused) as excinfo:
        await writer.create(booking(idempotency_key="k"))
    assert excinfo.value.category.value == "input"
    assert db.reservations == {}


class UnreachableRedis:
    async def get(self, key):
        raise RedisConnectionError("connection refused")

    async def set(self, key, value, **kwargs):
        raise RedisConnectionError("connection refused")


async def test_unreachable_cache_falls_back_to_store(store, db, clock):
    writer = ReservationWriter(store, RedisTtlStore(UnreachableRedis()), clock=clock)
    first = await writer.create(booking(idempotency_key="tok-r"))
    second = await writer.create(booking(idempotency_key="tok-r"))

    assert second.replayed
    assert second.reservation.id == first.reservation.id
    assert len(db.reservations) == 1
