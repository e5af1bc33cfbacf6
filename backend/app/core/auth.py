from fastapi import Depends, Header

from backend.app.core.config import settings
from backend.app.db.session import get_store
from backend.app.db.store import CourtStore
from backend.app.services.admin import verify_admin_pin


async def get_owner_id(x_user_id: str | None = Header(default=None)) -> str:
    """Opaque user identifier supplied upstream, or the shared guest id."""
    if x_user_id and x_user_id.strip():
        return x_user_id.strip()
    return settings.GUEST_USER_ID


async def require_admin(
    x_admin_pin: str | None = Header(default=None),
    store: CourtStore = Depends(get_store),
) -> None:
    await verify_admin_pin(store, x_admin_pin)
