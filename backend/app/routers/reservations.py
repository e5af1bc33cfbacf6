from datetime import date

from fastapi import APIRouter, Depends, Header, Request, Response, status

from backend.app.core.auth import get_owner_id
from backend.app.core.clock import Clock, get_clock
from backend.app.core.config import settings
from backend.app.core.errors import TooManyRequests, TransientStoreError
from backend.app.core.throttle import rate_limit_once, throttle_key
from backend.app.core.ttl_store import TtlStore, TtlStoreUnavailable, get_ttl_store
from backend.app.db.session import get_store
from backend.app.db.store import CourtStore
from backend.app.routers.schemas import CancelReservationIn, CreateReservationIn, DeletedOut, ReservationOut
from backend.app.services.admin import force_delete, verify_admin_pin
from backend.app.services.reservations import (
    BookingPolicy,
    BookingRequest,
    ReservationWriter,
    cancel_with_pin,
)


router = APIRouter()


def get_reservation_writer(
    store: CourtStore = Depends(get_store),
    ttl_store: TtlStore = Depends(get_ttl_store),
    clock: Clock = Depends(get_clock),
) -> ReservationWriter:
    return ReservationWriter(store, ttl_store, BookingPolicy.from_settings(settings), clock=clock)


@router.get("/reservations", response_model=list[ReservationOut])
async def list_reservations(
    date: date | None = None,
    court_id: int | None = None,
    store: CourtStore = Depends(get_store),
) -> list[ReservationOut]:
    reservations = await store.list_reservations(day=date, court_id=court_id)
    return [ReservationOut.from_domain(r) for r in reservations]


@router.get("/reservations/mine", response_model=list[ReservationOut])
async def my_reservations(
    owner_id: str = Depends(get_owner_id),
    store: CourtStore = Depends(get_store),
) -> list[ReservationOut]:
    reservations = await store.list_reservations(owner_id=owner_id)
    return [ReservationOut.from_domain(r) for r in reservations]


@router.post("/reservations", response_model=ReservationOut, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    payload: CreateReservationIn,
    request: Request,
    response: Response,
    idempotency_header: str | None = Header(default=None, alias="Idempotency-Key"),
    owner_id: str = Depends(get_owner_id),
    writer: ReservationWriter = Depends(get_reservation_writer),
    ttl_store: TtlStore = Depends(get_ttl_store),
) -> ReservationOut:
    idempotency_key = payload.idempotency_key or idempotency_header

    if not idempotency_key:
        client = request.client.host if request.client else "unknown"
        key = throttle_key("booking", f"{client}:{owner_id}", payload.model_dump(mode="json"))
        try:
            throttled = await rate_limit_once(ttl_store, key, settings.BOOKING_THROTTLE_MS)
        except TtlStoreUnavailable as exc:
            raise TransientStoreError("Booking service busy, please retry shortly") from exc
        if throttled:
            raise TooManyRequests()

    outcome = await writer.create(
        BookingRequest(
            court_id=payload.court_id,
            date=payload.date,
            start_min=payload.start_min,
            end_min=payload.end_min,
            party_size=payload.party_size,
            player_names=payload.player_names,
            owner_id=owner_id,
            pin=payload.pin,
            idempotency_key=idempotency_key,
        )
    )
    if outcome.replayed:
        response.headers["Idempotent-Replayed"] = "true"
    return ReservationOut.from_domain(outcome.reservation)


@router.delete("/reservations/{reservation_id}", response_model=DeletedOut)
async def cancel_reservation(
    reservation_id: str,
    payload: CancelReservationIn | None = None,
    x_admin_pin: str | None = Header(default=None),
    store: CourtStore = Depends(get_store),
) -> DeletedOut:
    if x_admin_pin:
        await verify_admin_pin(store, x_admin_pin)
        deleted = await force_delete(store, reservation_id)
        return DeletedOut(deleted=deleted)

    await cancel_with_pin(store, reservation_id, payload.pin if payload else None)
    return DeletedOut(deleted=1)
