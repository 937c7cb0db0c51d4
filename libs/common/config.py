from functools import lru_cache
from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global application settings."""

    # Application
    ENVIRONMENT: Literal["local", "development", "production", "test"] = "local"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800

    # Redis (arq worker)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Auth
    # Default placeholder keeps local/test runs from failing when no secret
    # is configured. Real deployments must override via env.
    JWT_SECRET: str = "test-jwt-secret"

    # Payment gateway microservice
    PAYMENT_GATEWAY_URL: str = "http://payment-gateway:3001"
    PAYMENT_WEBHOOK_SECRET: Optional[str] = None

    # Price source (CoinGecko-compatible)
    PRICE_SOURCE_URL: str = "https://api.coingecko.com/api/v3"

    # Outbound HTTP
    HTTP_TIMEOUT_SECONDS: float = 10.0

    # Conversion rates
    RATE_CACHE_TTL_SECONDS: int = 60
    RATE_STALENESS_SECONDS: int = 300

    # Settlement
    TOPUP_EXPIRY_MINUTES: int = 60
    WITHDRAW_DEBIT_ON_COMPLETION: bool = True

    # Notifications
    COMMUNICATIONS_SERVICE_URL: str = "http://communications-service:8004"
    NOTIFICATIONS_ENABLED: bool = True

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("DATABASE_URL")
    @classmethod
    def assemble_db_connection(cls, v: Optional[str]) -> str:
        if isinstance(v, str):
            if v.startswith("postgresql://"):
                return v.replace("postgresql://", "postgresql+psycopg://", 1)
        return v


@lru_cache
def get_settings() -> Settings:
    """
    Return the global settings instance, cached.
    """
    return Settings()
