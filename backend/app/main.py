from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from backend.app.core.config import settings
from backend.app.core.errors import CourtError, ErrorCategory, GUIDANCE, MissingFields
from backend.app.core.logging import configure_logging
from backend.app.core.redis_client import close_redis, init_redis
import backend.app.routers.admin as admin
import backend.app.routers.day as day
import backend.app.routers.health as health
import backend.app.routers.reservations as reservations


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.LOG_LEVEL)
    await init_redis()
    try:
        yield
    finally:
        await close_redis()


app = FastAPI(
    title="Court Reservation API",
    lifespan=lifespan,
)


@app.exception_handler(CourtError)
async def court_error_handler(request: Request, exc: CourtError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    missing = missing_body_fields(exc)
    if missing is not None:
        error = MissingFields(fields=missing)
        return JSONResponse(status_code=error.status_code, content={"error": error.to_dict()})
    return JSONResponse(
        status_code=422,
        content={
            "error": {
                "code": "invalid_payload",
                "category": ErrorCategory.INPUT.value,
                "message": "Malformed fields",
                "guidance": GUIDANCE[ErrorCategory.INPUT],
                "details": {"errors": jsonable_errors(exc)},
            }
        },
    )


def missing_body_fields(exc: RequestValidationError) -> list[str] | None:
    """Names of absent body fields, or None when nothing required is missing."""
    missing = [
        err["loc"]
        for err in exc.errors()
        if err.get("type") == "missing" and err.get("loc") and err["loc"][0] == "body"
    ]
    if not missing:
        return None
    return [str(loc[-1]) for loc in missing if len(loc) > 1]


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]


app.include_router(health.router, prefix=settings.API_PREFIX)
app.include_router(day.router, prefix=settings.API_PREFIX)
app.include_router(reservations.router, prefix=settings.API_PREFIX)
app.include_router(admin.router, prefix=settings.API_PREFIX)
