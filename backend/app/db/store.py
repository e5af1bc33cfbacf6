"""Unit-of-work persistence for reservations, the active day and admin state.

``CourtStore`` is the seam the engine depends on; ``SqlCourtStore`` is the
PostgreSQL implementation. Writes stay pending until ``commit()``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Sequence
from datetime import date, datetime
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.errors import CapacityExceeded
from backend.app.domain.models import BlackoutBlock, DayConfig, NewReservation, Reservation

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"
SERIALIZATION_FAILURE = "40001"
DEADLOCK_DETECTED = "40P01"
IDEMPOTENCY_INDEX = "reservation_idempotency_key_uq"


class StoreError(Exception):
    pass


class StoreConflict(StoreError):
    """Write lost against a concurrent writer (unique violation, serialization failure)."""


class IdempotencyKeyTaken(StoreConflict):
    """Another request already committed with the same idempotency key."""


class StoreUnavailable(StoreError):
    """Connection-level fault; the same statement may succeed on retry."""


class CourtStore(Protocol):
    async def lock_day(self, day: date) -> None: ...

    async def list_reservations(
        self,
        *,
        day: date | None = None,
        court_id: int | None = None,
        owner_id: str | None = None,
    ) -> list[Reservation]: ...

    async def get_reservation(self, reservation_id: str) -> Reservation | None: ...

    async def find_by_idempotency_key(self, key: str, since: datetime) -> Reservation | None: ...

    async def release_idempotency_key(self, key: str, before: datetime) -> int: ...

    async def insert_reservation(self, new: NewReservation) -> Reservation: ...

    async def update_player_names(self, reservation_id: str, names: Sequence[str]) -> Reservation | None: ...

    async def delete_reservation(self, reservation_id: str) -> int: ...

    async def delete_reservations_for_day(self, day: date) -> int: ...

    async def delete_all_reservations(self) -> int: ...

    async def delete_reservations_before(self, day: date) -> int: ...

    async def get_day_config(self) -> DayConfig | None: ...

    async def save_day_config(self, config: DayConfig) -> DayConfig: ...

    async def touch_day_config(self) -> None: ...

    async def get_admin_pin(self) -> str | None: ...

    async def set_admin_pin(self, pin: str) -> None: ...

    async def record_audit(self, action: str, actor: str, meta: dict[str, Any]) -> None: ...

    async def ping(self) -> None: ...

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...


def _sqlstate(exc: DBAPIError) -> str | None:
    orig = getattr(exc, "orig", None)
    for candidate in (orig, getattr(orig, "__cause__", None)):
        code = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if code:
            return code
    return None


def _constraint_name(exc: DBAPIError) -> str | None:
    orig = getattr(exc, "orig", None)
    for candidate in (orig, getattr(orig, "__cause__", None)):
        name = getattr(candidate, "constraint_name", None)
        if name:
            return name
    return None


def translate_db_error(exc: Exception) -> Exception:
    """Map driver exceptions onto store/engine errors."""
    if isinstance(exc, DBAPIError):
        message = str(getattr(exc, "orig", exc))
        if "Capacity exceeded" in message:
            return CapacityExceeded()
        code = _sqlstate(exc)
        if code == UNIQUE_VIOLATION:
            if _constraint_name(exc) == IDEMPOTENCY_INDEX or IDEMPOTENCY_INDEX in message:
                return IdempotencyKeyTaken(message)
            return StoreConflict(message)
        if code in (SERIALIZATION_FAILURE, DEADLOCK_DETECTED):
            return StoreConflict(message)
        if exc.connection_invalidated or code is None or code.startswith("08"):
            return StoreUnavailable(message)
        return exc
    if isinstance(exc, (OSError, asyncio.TimeoutError)):
        return StoreUnavailable(str(exc))
    return exc


def _parse_uuid(value: str) -> UUID | None:
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _row_to_reservation(row: Any) -> Reservation:
    return Reservation(
        id=str(row["id"]),
        court_id=row["court_id"],
        date=row["day"],
        start_min=row["start_min"],
        end_min=row["end_min"],
        party_size=row["party_size"],
        player_names=tuple(row["player_names"]),
        owner_id=row["owner_id"],
        pin=row["pin"],
        idempotency_key=row["idempotency_key"],
        created_at=row["created_at"],
    )


RESERVATION_COLUMNS = """
    id, owner_id, court_id, day, start_min, end_min, party_size,
    player_names, pin, idempotency_key, created_at
"""


class SqlCourtStore:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _execute(self, query: str, params: dict[str, Any] | None = None):
        try:
            return await self._session.execute(text(query), params or {})
        except (DBAPIError, OSError, asyncio.TimeoutError) as exc:
            translated = translate_db_error(exc)
            if translated is exc:
                raise
            raise translated from exc

    async def lock_day(self, day: date) -> None:
        await self._execute(
            "SELECT pg_advisory_xact_lock(hashtext(:lock_key))",
            {"lock_key": f"reservation:{day.isoformat()}"},
        )

    async def list_reservations(
        self,
        *,
        day: date | None = None,
        court_id: int | None = None,
        owner_id: str | None = None,
    ) -> list[Reservation]:
        clauses = []
        params: dict[str, Any] = {}
        if day is not None:
            clauses.append("day = :day")
            params["day"] = day
        if court_id is not None:
            clauses.append("court_id = :court_id")
            params["court_id"] = court_id
        if owner_id is not None:
            clauses.append("owner_id = :owner_id")
            params["owner_id"] = owner_id
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        result = await self._execute(
            f"""
            SELECT {RESERVATION_COLUMNS}
            FROM reservation
            {where}
            ORDER BY day, court_id, start_min, created_at
            """,
            params,
        )
        return [_row_to_reservation(row) for row in result.mappings().all()]

    async def get_reservation(self, reservation_id: str) -> Reservation | None:
        parsed = _parse_uuid(reservation_id)
        if parsed is None:
            return None
        result = await self._execute(
            f"SELECT {RESERVATION_COLUMNS} FROM reservation WHERE id = :id",
            {"id": parsed},
        )
        row = result.mappings().one_or_none()
        return _row_to_reservation(row) if row is not None else None

    async def find_by_idempotency_key(self, key: str, since: datetime) -> Reservation | None:
        result = await self._execute(
            f"""
            SELECT {RESERVATION_COLUMNS}
            FROM reservation
            WHERE idempotency_key = :key
              AND created_at >= :since
            """,
            {"key": key, "since": since},
        )
        row = result.mappings().one_or_none()
        return _row_to_reservation(row) if row is not None else None

    async def release_idempotency_key(self, key: str, before: datetime) -> int:
        """Free a token whose retention window has passed so it can be used again."""
        result = await self._execute(
            """
            UPDATE reservation
               SET idempotency_key = NULL
             WHERE idempotency_key = :key
               AND created_at < :before
            """,
            {"key": key, "before": before},
        )
        return result.rowcount

    async def insert_reservation(self, new: NewReservation) -> Reservation:
        """Invoke the commit_reservation() SQL function and load the new row."""
        result = await self._execute(
            """
            SELECT commit_reservation(
              :owner_id, :court_id, :day, :start_min, :end_min,
              :party_size, :player_names, :pin, :idempotency_key
            ) AS reservation_id
            """,
            {
                "owner_id": new.owner_id,
                "court_id": new.court_id,
                "day": new.date,
                "start_min": new.start_min,
                "end_min": new.end_min,
                "party_size": new.party_size,
                "player_names": list(new.player_names),
                "pin": new.pin,
                "idempotency_key": new.idempotency_key,
            },
        )
        reservation_id = str(result.one().reservation_id)
        created = await self.get_reservation(reservation_id)
        if created is None:  # pragma: no cover - row inserted in this transaction
            raise StoreConflict("Inserted reservation not visible")
        return created

    async def update_player_names(self, reservation_id: str, names: Sequence[str]) -> Reservation | None:
        parsed = _parse_uuid(reservation_id)
        if parsed is None:
            return None
        result = await self._execute(
            f"""
            UPDATE reservation
               SET player_names = :names
             WHERE id = :id
            RETURNING {RESERVATION_COLUMNS}
            """,
            {"id": parsed, "names": list(names)},
        )
        row = result.mappings().one_or_none()
        return _row_to_reservation(row) if row is not None else None

    async def delete_reservation(self, reservation_id: str) -> int:
        parsed = _parse_uuid(reservation_id)
        if parsed is None:
            return 0
        result = await self._execute("DELETE FROM reservation WHERE id = :id", {"id": parsed})
        return result.rowcount

    async def delete_reservations_for_day(self, day: date) -> int:
        result = await self._execute("DELETE FROM reservation WHERE day = :day", {"day": day})
        return result.rowcount

    async def delete_all_reservations(self) -> int:
        result = await self._execute("DELETE FROM reservation")
        return result.rowcount

    async def delete_reservations_before(self, day: date) -> int:
        result = await self._execute("DELETE FROM reservation WHERE day < :day", {"day": day})
        return result.rowcount

    async def get_day_config(self) -> DayConfig | None:
        result = await self._execute(
            """
            SELECT day, court_count, court_names, start_min, end_min,
                   slot_minutes, preparing, notice, updated_at
            FROM day_config
            WHERE id = 'active'
            """
        )
        row = result.mappings().one_or_none()
        if row is None:
            return None

        blocks = await self._execute(
            """
            SELECT court_id, start_min, end_min, reason
            FROM blackout_block
            WHERE day = :day
            ORDER BY court_id, start_min
            """,
            {"day": row["day"]},
        )
        return DayConfig(
            date=row["day"],
            court_count=row["court_count"],
            court_names=tuple(row["court_names"]),
            start_min=row["start_min"],
            end_min=row["end_min"],
            slot_minutes=row["slot_minutes"],
            preparing=row["preparing"],
            notice=row["notice"],
            blocks=tuple(
                BlackoutBlock(
                    court_id=b["court_id"],
                    start_min=b["start_min"],
                    end_min=b["end_min"],
                    reason=b["reason"],
                )
                for b in blocks.mappings().all()
            ),
            updated_at=row["updated_at"],
        )

    async def save_day_config(self, config: DayConfig) -> DayConfig:
        await self._execute(
            """
            INSERT INTO day_config (
              id, day, court_count, court_names, start_min, end_min,
              slot_minutes, preparing, notice, updated_at
            ) VALUES (
              'active', :day, :court_count, :court_names, :start_min, :end_min,
              :slot_minutes, :preparing, :notice, now()
            )
            ON CONFLICT (id) DO UPDATE SET
              day = EXCLUDED.day,
              court_count = EXCLUDED.court_count,
              court_names = EXCLUDED.court_names,
              start_min = EXCLUDED.start_min,
              end_min = EXCLUDED.end_min,
              slot_minutes = EXCLUDED.slot_minutes,
              preparing = EXCLUDED.preparing,
              notice = EXCLUDED.notice,
              updated_at = now()
            """,
            {
                "day": config.date,
                "court_count": config.court_count,
                "court_names": list(config.court_names),
                "start_min": config.start_min,
                "end_min": config.end_min,
                "slot_minutes": config.slot_minutes,
                "preparing": config.preparing,
                "notice": config.notice,
            },
        )
        # Blocks of any previously active day go too: there is one day at a time.
        await self._execute("DELETE FROM blackout_block")
        for block in config.blocks:
            await self._execute(
                """
                INSERT INTO blackout_block (day, court_id, start_min, end_min, reason)
                VALUES (:day, :court_id, :start_min, :end_min, :reason)
                """,
                {
                    "day": config.date,
                    "court_id": block.court_id,
                    "start_min": block.start_min,
                    "end_min": block.end_min,
                    "reason": block.reason,
                },
            )
        saved = await self.get_day_config()
        if saved is None:
            raise StoreConflict("Day config not visible after save")
        return saved

    async def touch_day_config(self) -> None:
        await self._execute("UPDATE day_config SET updated_at = now() WHERE id = 'active'")

    async def get_admin_pin(self) -> str | None:
        result = await self._execute("SELECT admin_pin FROM admin_config WHERE id = 'singleton'")
        return result.scalar_one_or_none()

    async def set_admin_pin(self, pin: str) -> None:
        await self._execute(
            """
            INSERT INTO admin_config (id, admin_pin, updated_at)
            VALUES ('singleton', :pin, now())
            ON CONFLICT (id) DO UPDATE SET admin_pin = EXCLUDED.admin_pin, updated_at = now()
            """,
            {"pin": pin},
        )

    async def record_audit(self, action: str, actor: str, meta: dict[str, Any]) -> None:
        await self._execute(
            "INSERT INTO audit_log (action, actor, meta) VALUES (:action, :actor, CAST(:meta AS jsonb))",
            {"action": action, "actor": actor, "meta": json.dumps(meta)},
        )

    async def ping(self) -> None:
        await self._execute("SELECT 1")

    async def commit(self) -> None:
        try:
            await self._session.commit()
        except (DBAPIError, OSError, asyncio.TimeoutError) as exc:
            translated = translate_db_error(exc)
            if translated is exc:
                raise
            raise translated from exc

    async def rollback(self) -> None:
        await self._session.rollback()
