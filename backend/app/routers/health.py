import logging

from fastapi import APIRouter, Depends
from redis.exceptions import RedisError

from backend.app.core import redis_client as redis_module
from backend.app.core.errors import TransientStoreError
from backend.app.db.session import get_store
from backend.app.db.store import CourtStore, StoreUnavailable


logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/healthz")
async def healthz() -> dict[str, bool]:
    return {"ok": True}


@router.get("/readiness")
async def readiness(store: CourtStore = Depends(get_store)) -> dict[str, bool]:
    """Postgres must answer; Redis too when one is configured."""
    try:
        await store.ping()
    except StoreUnavailable as exc:
        logger.error("Readiness: database unreachable: %s", exc)
        raise TransientStoreError("Database unavailable") from exc

    if redis_module.redis_client is not None:
        try:
            await redis_module.redis_client.ping()
        except RedisError as exc:
            logger.error("Readiness: Redis unreachable: %s", exc)
            raise TransientStoreError("Redis unavailable") from exc

    return {"ready": True}
