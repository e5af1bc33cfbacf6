from collections.abc import Callable
from datetime import datetime
from zoneinfo import ZoneInfo

from backend.app.core.config import settings


Clock = Callable[[], datetime]


def local_now() -> datetime:
    """Current wall-clock time in the venue's timezone."""
    return datetime.now(ZoneInfo(settings.TIMEZONE))


def get_clock() -> Clock:
    return local_now
