import hashlib

from fastapi import APIRouter, Body, Depends, Request, Response

from backend.app.core.auth import require_admin
from backend.app.core.errors import DayNotConfigured
from backend.app.db.session import get_store
from backend.app.db.store import CourtStore
from backend.app.domain.models import BlackoutBlock
from backend.app.routers.schemas import DayConfigIn, DayConfigOut, DeletedOut, GridCourtOut, GridOut, ResetIn
from backend.app.services.admin import reset_reservations
from backend.app.services.day_config import activate, build_day_config, build_grid


CACHE_CONTROL = "no-cache"

router = APIRouter()


@router.get("/day")
async def get_day(request: Request, store: CourtStore = Depends(get_store)) -> Response:
    """Active day config with a weak ETag so clients can poll cheaply."""
    config = await store.get_day_config()
    payload = DayConfigOut.from_domain(config).model_dump_json() if config is not None else "null"
    etag = 'W/"' + hashlib.sha1(payload.encode("utf-8")).hexdigest() + '"'
    headers = {"ETag": etag, "Cache-Control": CACHE_CONTROL}

    if request.headers.get("if-none-match") == etag:
        return Response(status_code=304, headers=headers)
    return Response(content=payload, media_type="application/json", headers=headers)


@router.get("/day/grid", response_model=GridOut)
async def get_grid(store: CourtStore = Depends(get_store)) -> GridOut:
    config = await store.get_day_config()
    if config is None:
        raise DayNotConfigured()
    reservations = await store.list_reservations(day=config.date)
    return GridOut(
        date=config.date,
        preparing=config.preparing,
        slot_minutes=config.slot_minutes,
        courts=[GridCourtOut.from_domain(court) for court in build_grid(config, reservations)],
    )


@router.put("/day", response_model=DayConfigOut, dependencies=[Depends(require_admin)])
async def put_day(payload: DayConfigIn, store: CourtStore = Depends(get_store)) -> DayConfigOut:
    config = build_day_config(
        day=payload.date,
        court_count=payload.court_count,
        court_names=payload.court_names,
        start_min=payload.start_min,
        end_min=payload.end_min,
        slot_minutes=payload.slot_minutes,
        preparing=payload.preparing,
        notice=payload.notice,
        blocks=[
            BlackoutBlock(court_id=b.court_id, start_min=b.start_min, end_min=b.end_min, reason=b.reason)
            for b in payload.blocks
        ],
    )
    saved = await activate(store, config)
    return DayConfigOut.from_domain(saved)


@router.post("/day/reset", response_model=DeletedOut, dependencies=[Depends(require_admin)])
async def reset_day(
    payload: ResetIn | None = Body(default=None),
    store: CourtStore = Depends(get_store),
) -> DeletedOut:
    deleted = await reset_reservations(store, everything=bool(payload and payload.all))
    return DeletedOut(deleted=deleted)
