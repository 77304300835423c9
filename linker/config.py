"""Configuration management for the short-link engine.

This module provides centralized configuration management using Pydantic BaseSettings
with environment variable support and caching for performance.

Flow Diagram — get_settings()
=============================
::
    ┌─────────────┐
    │  Call get_  │
    │  settings() │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Check cache  │
    │ (lru_cache)  │
    └──────┬──────┘
    HIT?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Create  │  │ Return  │
│ Settings│  │ cached  │
│ instance│  │ value   │
└─────────┘  └─────────┘

How to Use
===========
**Step 1 — Import**::
    from linker.config import get_settings

**Step 2 — Read values**::
    settings = get_settings()
    ttl_window = (settings.CACHE_TTL_MIN_SECONDS, settings.CACHE_TTL_MAX_SECONDS)

**Step 3 — Override through the environment**::
    export RESERVED_ALIASES='["api", "admin", "status"]'
    export ACCESS_COUNTER_FLUSH_THRESHOLD=50

Key Behaviours
===============
- Settings are cached after first access.
- Environment variables (and a local .env file) override defaults.
- List values are read from JSON in the environment.
- Cache entry TTLs are drawn from [CACHE_TTL_MIN_SECONDS, CACHE_TTL_MAX_SECONDS]
  so entries primed together do not expire together.

Classes:
    Settings:  Pydantic model for all configuration values.
"""

__all__ = ["DEFAULT_RESERVED_ALIASES", "Settings", "get_settings"]

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_RESERVED_ALIASES = [
    "api",
    "admin",
    "health",
    "metrics",
    "docs",
    "redoc",
    "swagger",
    "actuator",
    "management",
    "error",
    "login",
    "logout",
    "index",
    "home",
    "about",
    "help",
    "contact",
    "privacy",
    "terms",
    "www",
    "ftp",
    "mail",
    "email",
]


class Settings(BaseSettings):
    APP_NAME: str = "linker"
    APP_ENV: str = "development"
    BASE_URL: str = "http://localhost:8080"
    LOG_LEVEL: str = "INFO"

    # PostgreSQL
    DATABASE_URL: str = "postgresql+asyncpg://linker:linker@db:5432/linker"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    # Redis
    REDIS_URL: str = "redis://redis:6379/0"
    REDIS_REPLICA_URL: str = "redis://redis-replica:6379/0"

    # Record limits
    MAX_TARGET_LENGTH: int = 2048
    MAX_ALIAS_LENGTH: int = 20
    MAX_DESCRIPTION_LENGTH: int = 500
    ALLOWED_SCHEMES: list[str] = ["http", "https"]
    RESERVED_ALIASES: list[str] = DEFAULT_RESERVED_ALIASES

    # Backfill attempts when a derived code is already held by a custom alias
    CODE_ALLOCATION_ATTEMPTS: int = 3

    # Cache-aside entries (25-35 minutes)
    CACHE_TTL_MIN_SECONDS: int = 1500
    CACHE_TTL_MAX_SECONDS: int = 2100
    STATS_CACHE_TTL_SECONDS: int = 1800

    # Best-effort access counter
    ACCESS_COUNTER_TTL_SECONDS: int = 3600
    ACCESS_COUNTER_FLUSH_THRESHOLD: int = 10
    ACCESS_FLUSH_INTERVAL_SECONDS: float = 5.0
    ACCESS_FLUSH_QUEUE_SIZE: int = 10000
    ACCESS_FLUSH_STOP_TIMEOUT_SECONDS: float = 30.0

    # Cache stampede protection
    CACHE_LOCK_TTL_SECONDS: int = 3
    CACHE_LOCK_RETRY_COUNT: int = 3
    CACHE_LOCK_RETRY_DELAY_SECONDS: float = 0.05

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
