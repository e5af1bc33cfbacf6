from fastapi import APIRouter, Body, Depends, Response

from backend.app.core.auth import require_admin
from backend.app.core.clock import Clock, get_clock
from backend.app.core.config import settings
from backend.app.db.session import get_store
from backend.app.db.store import CourtStore
from backend.app.routers.schemas import (
    ChangePinIn,
    DeletedOut,
    DeletePastIn,
    DeletePastOut,
    OkOut,
    ReservationOut,
    UpdateNamesIn,
)
from backend.app.services.admin import delete_past, force_delete, rotate_admin_pin, update_player_names


router = APIRouter(prefix="/admin", dependencies=[Depends(require_admin)])


@router.delete("/reservations/{reservation_id}", response_model=DeletedOut)
async def force_delete_reservation(reservation_id: str, store: CourtStore = Depends(get_store)) -> DeletedOut:
    deleted = await force_delete(store, reservation_id)
    return DeletedOut(deleted=deleted)


@router.put("/reservations/{reservation_id}/names", response_model=ReservationOut)
async def update_names(
    reservation_id: str,
    payload: UpdateNamesIn,
    response: Response,
    store: CourtStore = Depends(get_store),
) -> ReservationOut:
    updated = await update_player_names(store, reservation_id, payload.player_names, settings.MAX_NAME_LENGTH)
    response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate"
    return ReservationOut.from_domain(updated)


@router.post("/reservations/delete-past", response_model=DeletePastOut)
async def delete_past_reservations(
    payload: DeletePastIn | None = Body(default=None),
    store: CourtStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
) -> DeletePastOut:
    before = payload.before if payload and payload.before else clock().date()
    deleted = await delete_past(store, before)
    return DeletePastOut(deleted=deleted, before=before)


@router.post("/pin", response_model=OkOut)
async def change_pin(payload: ChangePinIn, store: CourtStore = Depends(get_store)) -> OkOut:
    await rotate_admin_pin(store, payload.new_pin)
    return OkOut()
