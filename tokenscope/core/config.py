"""
core/config.py
--------------
Centralised settings management using pydantic-settings.
All configuration is loaded from environment variables / .env file.
This is the single source of truth for application configuration.
"""

from functools import lru_cache
from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── App ──────────────────────────────────────────────────────────────
    APP_NAME: str = "Tokenscope"
    APP_ENV: str = "development"
    DEBUG: bool = False

    # ── Database ─────────────────────────────────────────────────────────
    DATABASE_URL: str = "sqlite+aiosqlite:///./tokenscope.db"

    # ── Administration ───────────────────────────────────────────────────
    # Principals listed here are site administrators: they may issue admin
    # tokens and are never part of a tenant's user allow-set.
    SITE_ADMIN_IDS: List[int] = []

    # ── Token defaults ───────────────────────────────────────────────────
    DEFAULT_RESTRICT_TO_TENANT: bool = True
    DEFAULT_RESTRICT_TO_ENROLLMENT: bool = True
    DEFAULT_VALIDITY_DAYS: int = 0  # 0 → tokens never expire unless asked
    REQUIRE_TENANT_MEMBERSHIP: bool = True
    CLEANUP_EXPIRED_TOKENS: bool = True

    # ── Scoping ──────────────────────────────────────────────────────────
    ALLOWSET_CACHE_TTL_SECONDS: int = 60
    ALLOWSET_CACHE_MAX_ENTRIES: int = 1024
    BATCH_HISTORY_LIMIT: int = 50

    # ── CORS ─────────────────────────────────────────────────────────────
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000"]

    @field_validator("ALLOWED_ORIGINS", "SITE_ADMIN_IDS", mode="before")
    @classmethod
    def parse_json_list(cls, v):
        if isinstance(v, str):
            import json
            return json.loads(v)
        return v


@lru_cache()
def get_settings() -> Settings:
    """
    Cached settings factory.
    Use this everywhere to avoid re-reading .env on every call.
    """
    return Settings()


settings = get_settings()
