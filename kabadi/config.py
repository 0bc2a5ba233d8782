"""Service configuration from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATA_API_URL: str = "http://data:3000"
    DATA_API_KEY: str | None = None
    DATA_API_TIMEOUT_SEC: float = 10.0
    REDIS_URL: str = "redis://redis:6379/0"
    ORDER_CHANNEL_PREFIX: str = "orders"
    WEBHOOK_SECRET: str | None = None
    REJECT_STAGE_REGRESSIONS: bool = False
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        extra = "allow"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
