"""Administrative overrides. Every mutation here is audited."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import date

from backend.app.core.config import settings
from backend.app.core.errors import InvalidPin, PlayerCountMismatch, ReservationNotFound, Unauthorized
from backend.app.db.store import CourtStore
from backend.app.domain.models import Reservation
from backend.app.domain.names import DEFAULT_MAX_NAME_LENGTH, clean_player_names, normalize_player_names
from backend.app.domain.pins import is_admin_pin, pins_match

logger = logging.getLogger(__name__)

ADMIN_ACTOR = "admin"


async def expected_admin_pin(store: CourtStore) -> str | None:
    """The persisted PIN, or the bootstrap ``ADMIN_PIN`` until one is persisted."""
    persisted = await store.get_admin_pin()
    if persisted:
        return persisted
    return settings.ADMIN_PIN or None


async def verify_admin_pin(store: CourtStore, provided: str | None) -> None:
    expected = await expected_admin_pin(store)
    if not expected or not provided or not pins_match(provided, expected):
        raise Unauthorized()


async def force_delete(store: CourtStore, reservation_id: str) -> int:
    """Delete unconditionally; an already-absent id is a zero-effect success."""
    deleted = await store.delete_reservation(reservation_id)
    if deleted:
        await store.record_audit("force_delete", ADMIN_ACTOR, {"reservation_id": reservation_id})
    await store.commit()
    if deleted:
        logger.warning("Reservation %s force-deleted", reservation_id)
    return deleted


async def reset_reservations(store: CourtStore, *, everything: bool = False) -> int:
    if everything:
        deleted = await store.delete_all_reservations()
        scope = "all"
    else:
        config = await store.get_day_config()
        if config is None:
            return 0
        deleted = await store.delete_reservations_for_day(config.date)
        scope = config.date.isoformat()
        # Bump updated_at so cached day payloads (ETag) change.
        await store.touch_day_config()
    await store.record_audit("bulk_reset", ADMIN_ACTOR, {"scope": scope, "deleted": deleted})
    await store.commit()
    logger.warning("Bulk reset (%s) deleted %d reservations", scope, deleted)
    return deleted


async def delete_past(store: CourtStore, before: date) -> int:
    deleted = await store.delete_reservations_before(before)
    await store.record_audit("delete_past", ADMIN_ACTOR, {"before": before.isoformat(), "deleted": deleted})
    await store.commit()
    logger.warning("Deleted %d reservations dated before %s", deleted, before)
    return deleted


async def update_player_names(
    store: CourtStore,
    reservation_id: str,
    player_names: Sequence[object],
    max_name_length: int = DEFAULT_MAX_NAME_LENGTH,
) -> Reservation:
    """Replace names only. Name policy applies; the duplicate-person guard does not."""
    reservation = await store.get_reservation(reservation_id)
    if reservation is None:
        raise ReservationNotFound()

    cleaned = clean_player_names(player_names)
    if len(cleaned) != reservation.party_size:
        raise PlayerCountMismatch(expected=reservation.party_size, received=len(cleaned))
    names = normalize_player_names(cleaned, max_name_length)

    updated = await store.update_player_names(reservation_id, names)
    if updated is None:
        raise ReservationNotFound()
    await store.record_audit("admin_update_names", ADMIN_ACTOR, {"reservation_id": reservation_id})
    await store.commit()
    logger.info("Player names updated on reservation %s", reservation_id)
    return updated


async def rotate_admin_pin(store: CourtStore, new_pin: str | None) -> None:
    candidate = (new_pin or "").strip()
    if not candidate:
        raise InvalidPin("new_pin is required")
    if not is_admin_pin(candidate):
        raise InvalidPin("new_pin must be at least 4 non-space characters")
    await store.set_admin_pin(candidate)
    await store.record_audit("change_pin", ADMIN_ACTOR, {})
    await store.commit()
    logger.warning("Admin PIN rotated")
