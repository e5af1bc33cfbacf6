import asyncio
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from uuid import uuid4

import pytest

from backend.app.core.clock import get_clock
from backend.app.core.config import settings
from backend.app.core.errors import CapacityExceeded
from backend.app.core.ttl_store import MemoryTtlStore, get_ttl_store
from backend.app.db.session import get_store
from backend.app.db.store import IdempotencyKeyTaken
from backend.app.domain.capacity import COURT_CAPACITY, used_capacity
from backend.app.domain.models import BlackoutBlock, DayConfig, NewReservation, Reservation
from backend.app.main import app


JST = timezone(timedelta(hours=9))
TODAY = date(2030, 5, 1)
ADMIN_PIN = "9999"


class FakeDatabase:
    """Shared state standing in for Postgres; one FakeCourtStore per session."""

    def __init__(self, clock=None) -> None:
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.reservations: dict[str, Reservation] = {}
        self.day_config: DayConfig | None = None
        self.admin_pin: str | None = None
        self.audit: list[tuple[str, str, dict]] = []
        self.day_locks: dict[date, asyncio.Lock] = {}
        # Exceptions raised by the next insert_reservation calls, in order.
        self.insert_failures: list[Exception] = []
        self.insert_calls = 0
        self.commits = 0

    def lock_for(self, day: date) -> asyncio.Lock:
        return self.day_locks.setdefault(day, asyncio.Lock())


class FakeCourtStore:
    def __init__(self, db: FakeDatabase) -> None:
        self.db = db
        self._undo: list = []
        self._held: list[asyncio.Lock] = []

    async def lock_day(self, day):
        lock = self.db.lock_for(day)
        if lock not in self._held:
            await lock.acquire()
            self._held.append(lock)

    async def list_reservations(self, *, day=None, court_id=None, owner_id=None):
        await asyncio.sleep(0)
        rows = [
            r
            for r in self.db.reservations.values()
            if (day is None or r.date == day)
            and (court_id is None or r.court_id == court_id)
            and (owner_id is None or r.owner_id == owner_id)
        ]
        return sorted(rows, key=lambda r: (r.date, r.court_id, r.start_min, r.created_at))

    async def get_reservation(self, reservation_id):
        return self.db.reservations.get(reservation_id)

    async def find_by_idempotency_key(self, key, since):
        for r in self.db.reservations.values():
            if r.idempotency_key == key and r.created_at >= since:
                return r
        return None

    async def release_idempotency_key(self, key, before):
        stale = {
            k: r for k, r in self.db.reservations.items() if r.idempotency_key == key and r.created_at < before
        }
        for k, r in stale.items():
            self.db.reservations[k] = replace(r, idempotency_key=None)
        self._undo.append(lambda: self.db.reservations.update(stale))
        return len(stale)

    async def insert_reservation(self, new: NewReservation) -> Reservation:
        self.db.insert_calls += 1
        await self.lock_day(new.date)
        if self.db.insert_failures:
            raise self.db.insert_failures.pop(0)
        if new.idempotency_key and any(
            r.idempotency_key == new.idempotency_key for r in self.db.reservations.values()
        ):
            raise IdempotencyKeyTaken(new.idempotency_key)
        same_day = [r for r in self.db.reservations.values() if r.date == new.date]
        if used_capacity(same_day, new.start_min, new.end_min, new.court_id) + new.party_size > COURT_CAPACITY:
            raise CapacityExceeded()

        created = Reservation(
            id=str(uuid4()),
            court_id=new.court_id,
            date=new.date,
            start_min=new.start_min,
            end_min=new.end_min,
            party_size=new.party_size,
            player_names=tuple(new.player_names),
            owner_id=new.owner_id,
            pin=new.pin,
            idempotency_key=new.idempotency_key,
            created_at=self.db.clock().astimezone(timezone.utc),
        )
        self.db.reservations[created.id] = created
        self._undo.append(lambda: self.db.reservations.pop(created.id, None))
        return created

    async def update_player_names(self, reservation_id, names):
        current = self.db.reservations.get(reservation_id)
        if current is None:
            return None
        updated = replace(current, player_names=tuple(names))
        self.db.reservations[reservation_id] = updated
        self._undo.append(lambda: self.db.reservations.__setitem__(reservation_id, current))
        return updated

    def _delete_where(self, predicate) -> int:
        doomed = {k: v for k, v in self.db.reservations.items() if predicate(v)}
        for key in doomed:
            del self.db.reservations[key]
        self._undo.append(lambda: self.db.reservations.update(doomed))
        return len(doomed)

    async def delete_reservation(self, reservation_id):
        return self._delete_where(lambda r: r.id == reservation_id)

    async def delete_reservations_for_day(self, day):
        return self._delete_where(lambda r: r.date == day)

    async def delete_all_reservations(self):
        return self._delete_where(lambda r: True)

    async def delete_reservations_before(self, day):
        return self._delete_where(lambda r: r.date < day)

    async def get_day_config(self):
        return self.db.day_config

    async def save_day_config(self, config):
        previous = self.db.day_config
        self.db.day_config = replace(config, updated_at=datetime.now(timezone.utc))
        self._undo.append(lambda: setattr(self.db, "day_config", previous))
        return self.db.day_config

    async def touch_day_config(self):
        if self.db.day_config is not None:
            self.db.day_config = replace(self.db.day_config, updated_at=datetime.now(timezone.utc))

    async def get_admin_pin(self):
        return self.db.admin_pin

    async def set_admin_pin(self, pin):
        previous = self.db.admin_pin
        self.db.admin_pin = pin
        self._undo.append(lambda: setattr(self.db, "admin_pin", previous))

    async def record_audit(self, action, actor, meta):
        self.db.audit.append((action, actor, meta))
        self._undo.append(self.db.audit.pop)

    async def ping(self):
        return None

    def _release(self) -> None:
        for lock in self._held:
            lock.release()
        self._held.clear()

    async def commit(self):
        self.db.commits += 1
        self._undo.clear()
        self._release()

    async def rollback(self):
        for undo in reversed(self._undo):
            undo()
        self._undo.clear()
        self._release()


def make_day(**overrides) -> DayConfig:
    values = dict(
        date=TODAY,
        court_count=4,
        court_names=("A", "B", "C", "D"),
        start_min=540,
        end_min=1260,
        slot_minutes=30,
    )
    values.update(overrides)
    return DayConfig(**values)


class FixedClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, hour: int, minute: int = 0) -> None:
        self.now = self.now.replace(hour=hour, minute=minute)


@pytest.fixture
def db(clock) -> FakeDatabase:
    database = FakeDatabase(clock)
    database.day_config = make_day()
    return database


@pytest.fixture
def store(db) -> FakeCourtStore:
    return FakeCourtStore(db)


@pytest.fixture
def ttl_store() -> MemoryTtlStore:
    return MemoryTtlStore()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2030, 5, 1, 8, 0, tzinfo=JST))


@pytest.fixture
def api(db, ttl_store, clock, monkeypatch):
    """The FastAPI app wired to the in-memory store, with throttling off."""
    monkeypatch.setattr(settings, "ADMIN_PIN", ADMIN_PIN)
    monkeypatch.setattr(settings, "BOOKING_THROTTLE_MS", 0)
    monkeypatch.setattr(settings, "COMMIT_RETRY_DELAY_MS", 0)

    async def override_store():
        yield FakeCourtStore(db)

    app.dependency_overrides[get_store] = override_store
    app.dependency_overrides[get_ttl_store] = lambda: ttl_store
    app.dependency_overrides[get_clock] = lambda: clock
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def blocked_day():
    return make_day(blocks=(BlackoutBlock(court_id=1, start_min=540, end_min=600, reason="lesson"),))
