import hashlib
import json
from typing import Any

from backend.app.core.ttl_store import TtlStore


def throttle_key(scope: str, client: str, payload: dict[str, Any]) -> str:
    digest = hashlib.sha1(json.dumps(payload, sort_keys=True, default=str).encode("utf-8")).hexdigest()
    return f"throttle:{scope}:{client}:{digest}"


async def rate_limit_once(store: TtlStore, key: str, window_ms: int) -> bool:
    """Allow one hit per ``window_ms`` for ``key``. Returns True when throttled."""
    if window_ms <= 0:
        return False
    acquired = await store.set_if_absent(key, "1", window_ms)
    return not acquired
