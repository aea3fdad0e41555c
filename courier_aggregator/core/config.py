"""
Application configuration

Courier credentials can come from the shipping_providers table or from the
environment (PATHAO_*, REDX_*). Rate limit, retry and cache defaults apply to
every adapter unless the adapter overrides its own policy.
"""
import logging
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    APP_NAME: str = "Courier Aggregator"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # Provider registry database (optional - env registry works without it)
    DATABASE_URL: str = ""

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def convert_database_url(cls, v):
        """Convert postgres:// URLs to the asyncpg dialect."""
        if not v:
            return v
        if v.startswith("postgres://"):
            v = v.replace("postgres://", "postgresql+asyncpg://", 1)
        elif v.startswith("postgresql://") and "+asyncpg" not in v:
            v = v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_RECYCLE: int = 3600  # 1 hour

    # Redis (response + token cache). Empty = caching disabled.
    REDIS_URL: str = ""
    COURIER_CACHE_NAMESPACE: str = "courier"
    REDIS_SOCKET_TIMEOUT_SECONDS: float = 2.0
    REDIS_RECONNECT_SECONDS: float = 30.0

    # Outbound request policy
    COURIER_REQUEST_TIMEOUT_SECONDS: float = 30.0
    COURIER_AUTH_TIMEOUT_SECONDS: float = 10.0
    COURIER_MAX_REQUESTS: int = 30
    COURIER_TIME_WINDOW_SECONDS: float = 60.0
    COURIER_RETRY_ATTEMPTS: int = 3
    COURIER_RETRY_DELAY_SECONDS: float = 1.0

    # Batch tracking
    COURIER_BATCH_SIZE: int = 5
    COURIER_BATCH_DELAY_SECONDS: float = 1.0

    # Pathao (token-issuing carrier)
    PATHAO_BASE_URL: str = ""
    PATHAO_CLIENT_ID: str = ""
    PATHAO_CLIENT_SECRET: str = ""
    PATHAO_USERNAME: str = ""
    PATHAO_PASSWORD: str = ""
    PATHAO_STORE_ID: str = ""

    # RedX (static-token carrier)
    REDX_BASE_URL: str = ""
    REDX_TOKEN: str = ""

    @model_validator(mode="after")
    def validate_production_config(self):
        """Runtime validation to catch unsafe production configurations."""
        if self.ENVIRONMENT == "production":
            errors = []

            if self.DEBUG:
                errors.append(
                    "DEBUG=True is forbidden in production. "
                    "Set DEBUG=false or ENVIRONMENT=development"
                )

            if self.COURIER_RETRY_ATTEMPTS < 1:
                errors.append("COURIER_RETRY_ATTEMPTS must be at least 1")

            if errors:
                raise ValueError(
                    "PRODUCTION CONFIG VIOLATIONS:\n" + "\n".join(f"  - {e}" for e in errors)
                )

        if not self.REDIS_URL:
            logger.info("REDIS_URL not set - courier responses will not be cached")

        return self


settings = Settings()
