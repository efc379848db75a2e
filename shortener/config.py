from typing import Optional

from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Storage
    STORAGE_BACKEND: str = "sql"  # sql, memory
    DATABASE_URL: str = "sqlite+aiosqlite:///./shortener.db"
    STORAGE_TIMEOUT_SECONDS: float = 5.0

    # Shortening
    BASE_URL: str = "http://localhost:8000"
    SHORTCODE_LENGTH: int = 8
    DEFAULT_VALIDITY_MINUTES: int = 30

    # Rate limiting (disabled without Redis)
    REDIS_URL: Optional[str] = None
    RATE_LIMIT_REQUESTS: int = 100
    RATE_LIMIT_WINDOW_SECONDS: int = 900
    # Proxies in front of the app whose X-Forwarded-For entries are trusted
    TRUSTED_PROXY_HOPS: int = 0

    # Remote log sink
    LOG_SINK_URL: Optional[str] = None
    LOG_SINK_TOKEN: Optional[str] = None
    LOG_SINK_TIMEOUT_SECONDS: float = 5.0

    class Config:
        env_file = ".env"
        extra = "ignore"

settings = Settings()
