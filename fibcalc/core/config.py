"""
Fibcalc Engine - Core Config

SETTINGS LOADER
===============

This module provides the Settings class read from the process environment.
Auto-loading of .env files is DISABLED. Entry points that want dotenv
support call fibcalc.core.loader.load_environment() before get_settings().

    from fibcalc.core.loader import load_environment
    load_environment()

    from fibcalc.core.config import get_settings
    settings = get_settings()

CONNECTION RESOLUTION:
    DATABASE_URL wins over the PG* parts (PGUSER, PGHOST, ...).
    REDIS_URL wins over REDIS_HOST / REDIS_PORT.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal
from urllib.parse import quote

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_CORS_ORIGINS = "http://localhost:3000,http://localhost:3050"


class Settings(BaseSettings):
    """
    Application settings for the gateway and the compute worker.

    Both processes read the same variables so that the results key,
    channel name and index policy always agree.
    """

    model_config = SettingsConfigDict(
        env_file=None,  # loader.py handles dotenv files
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # =========================================================================
    # ENVIRONMENT CONTROL
    # =========================================================================

    ENVIRONMENT: Literal["dev", "staging", "prod"] = Field(
        default="dev",
        description="Deployment environment",
    )
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )
    LOG_JSON: bool = Field(
        default=True,
        description="Emit JSON logs (False = colored console)",
    )
    STORE_BACKEND: Literal["redis-postgres", "memory"] = Field(
        default="redis-postgres",
        description="Store implementation wired into the gateway",
    )

    # =========================================================================
    # POSTGRES (Durable Ledger)
    # =========================================================================

    DATABASE_URL: str = Field(default="")
    PGUSER: str = Field(default="postgres")
    PGHOST: str = Field(default="localhost")
    PGDATABASE: str = Field(default="postgres")
    PGPASSWORD: str = Field(default="")
    PGPORT: int = Field(default=5432)

    PG_POOL_MIN_SIZE: int = Field(default=1, ge=0)
    PG_POOL_MAX_SIZE: int = Field(default=20, ge=1)
    PG_POOL_MAX_IDLE_SECONDS: float = Field(default=30.0, gt=0)
    PG_CONNECT_TIMEOUT_SECONDS: float = Field(default=2.0, gt=0)

    # =========================================================================
    # REDIS (Result Cache + Event Channel)
    # =========================================================================

    REDIS_URL: str = Field(default="")
    REDIS_HOST: str = Field(default="localhost")
    REDIS_PORT: int = Field(default=6379)
    REDIS_MAX_RECONNECT_ATTEMPTS: int = Field(default=10, ge=0)

    # =========================================================================
    # FIBONACCI POLICY
    # =========================================================================

    FIB_MAX_INDEX: int = Field(default=40, ge=0)
    FIB_PLACEHOLDER: str = Field(default="Calculating...", min_length=1)
    FIB_CHANNEL: str = Field(default="insert", min_length=1)
    FIB_RESULTS_KEY: str = Field(default="values", min_length=1)

    # =========================================================================
    # SERVER
    # =========================================================================

    CORS_ALLOWED_ORIGINS: str = Field(default=DEFAULT_CORS_ORIGINS)
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=5000)
    SHUTDOWN_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0)

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def _upper_log_level(cls, value: object) -> object:
        return value.strip().upper() if isinstance(value, str) else value

    @field_validator("ENVIRONMENT", "STORE_BACKEND", mode="before")
    @classmethod
    def _lower_choice(cls, value: object) -> object:
        return value.strip().lower() if isinstance(value, str) else value

    @model_validator(mode="after")
    def _check_pool_bounds(self) -> "Settings":
        if self.PG_POOL_MIN_SIZE > self.PG_POOL_MAX_SIZE:
            raise ValueError(
                f"PG_POOL_MIN_SIZE ({self.PG_POOL_MIN_SIZE}) exceeds "
                f"PG_POOL_MAX_SIZE ({self.PG_POOL_MAX_SIZE})"
            )
        return self

    # =========================================================================
    # DERIVED VALUES
    # =========================================================================

    @property
    def database_url(self) -> str:
        """Effective Postgres DSN (DATABASE_URL, else built from PG* parts)."""
        if self.DATABASE_URL.strip():
            return self.DATABASE_URL.strip()
        auth = quote(self.PGUSER, safe="")
        if self.PGPASSWORD:
            auth = f"{auth}:{quote(self.PGPASSWORD, safe='')}"
        return f"postgresql://{auth}@{self.PGHOST}:{self.PGPORT}/{self.PGDATABASE}"

    @property
    def redis_url(self) -> str:
        """Effective Redis URL (REDIS_URL, else redis://REDIS_HOST:REDIS_PORT)."""
        if self.REDIS_URL.strip():
            return self.REDIS_URL.strip()
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/0"

    @property
    def cors_allowed_origins(self) -> list[str]:
        """
        Parse CORS_ALLOWED_ORIGINS into a list.

        Accepts comma and/or whitespace separators; trailing slashes dropped.
        An empty value denies every browser origin.
        """
        raw = self.CORS_ALLOWED_ORIGINS.replace(",", " ")
        return [o.strip().rstrip("/") for o in raw.split() if o.strip()]

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "dev"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the cached settings instance."""
    return Settings()


def reset_settings() -> None:
    """Clear the cached settings (for testing or environment switch)."""
    get_settings.cache_clear()


def log_startup_diagnostics(service_name: str = "fibcalc") -> None:
    """Log the effective configuration (never credentials)."""
    settings = get_settings()

    logger.info(f"{service_name} startup diagnostics")
    logger.info(f"  ENVIRONMENT:    {settings.ENVIRONMENT}")
    logger.info(f"  STORE_BACKEND:  {settings.STORE_BACKEND}")
    logger.info(f"  PG host:        {settings.PGHOST if not settings.DATABASE_URL else 'DATABASE_URL'}")
    logger.info(f"  Redis:          {settings.REDIS_HOST if not settings.REDIS_URL else 'REDIS_URL'}")
    logger.info(f"  Max index:      {settings.FIB_MAX_INDEX}")
    logger.info(f"  Channel:        {settings.FIB_CHANNEL}")
    logger.info(f"  LOG_LEVEL:      {settings.LOG_LEVEL}")


__all__ = [
    "Settings",
    "get_settings",
    "reset_settings",
    "log_startup_diagnostics",
]
