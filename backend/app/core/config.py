from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings sourced from environment variables."""

    DATABASE_URL: str = "postgresql+asyncpg://court_app@localhost:5432/courtbook"
    REDIS_URL: str | None = "redis://localhost:6379/0"  # unset -> in-process TTL store

    API_PREFIX: str = "/api/v1"
    LOG_LEVEL: str = "INFO"

    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10

    # Bootstrap credential, only consulted until a PIN has been persisted.
    ADMIN_PIN: str | None = None
    GUEST_USER_ID: str = "guest"

    TIMEZONE: str = "Asia/Tokyo"
    MAX_NAME_LENGTH: int = 20

    IDEMPOTENCY_TTL_SECONDS: int = 300
    COMMIT_RETRY_DELAY_MS: int = 150
    BOOKING_THROTTLE_MS: int = 1500

    model_config = ConfigDict(env_file=".env", extra="ignore")


settings = Settings()
