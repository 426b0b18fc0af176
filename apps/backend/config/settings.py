# apps/backend/config/settings.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv

load_dotenv()


def enabled(name: str, default: str = "false") -> bool:
    return (os.getenv(name, default) or "").lower() == "true"


def _int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _csv(name: str) -> List[str]:
    return [x.strip() for x in (os.getenv(name) or "").split(",") if x.strip()]


@dataclass
class Settings:
    APP_VERSION: str = field(default_factory=lambda: os.getenv("APP_VERSION", "0.1.0"))
    ENVIRONMENT: str = field(default_factory=lambda: os.getenv("ENVIRONMENT", "production"))

    # Supabase: service role for the ledger store, anon key for auth sessions
    SUPABASE_URL: str = field(default_factory=lambda: (os.getenv("SUPABASE_URL") or "").rstrip("/"))
    SUPABASE_ANON_KEY: str = field(default_factory=lambda: os.getenv("SUPABASE_ANON_KEY", ""))
    SUPABASE_SERVICE_ROLE_KEY: str = field(default_factory=lambda: os.getenv("SUPABASE_SERVICE_ROLE_KEY", ""))

    OAUTH_PROVIDER: str = field(default_factory=lambda: os.getenv("OAUTH_PROVIDER", "github"))
    SITE_URL: str = field(default_factory=lambda: (os.getenv("SITE_URL") or "http://localhost:8000").rstrip("/"))
    DEFAULT_NEXT_PATH: str = "/leaderboard"
    SESSION_COOKIE_SECURE: bool = field(default_factory=lambda: enabled("SESSION_COOKIE_SECURE", "true"))

    CACHE_ENABLED: bool = field(default_factory=lambda: enabled("CACHE_ENABLED", "true"))
    CACHE_TTL_SECONDS: int = field(default_factory=lambda: _int("CACHE_TTL_SECONDS", 30))

    CALENDAR_TIMEZONE: str = field(default_factory=lambda: os.getenv("CALENDAR_TIMEZONE", "UTC"))
    ROOKIE_USERNAME_ATTEMPTS: int = field(default_factory=lambda: _int("ROOKIE_USERNAME_ATTEMPTS", 5))

    CORS_MODE: str = field(default_factory=lambda: os.getenv("CORS_MODE", "off"))
    CORS_ALLOW_ORIGINS: List[str] = field(default_factory=lambda: _csv("CORS_ALLOW_ORIGINS"))

    @property
    def store_configured(self) -> bool:
        return bool(self.SUPABASE_URL and self.SUPABASE_SERVICE_ROLE_KEY)

    @property
    def auth_configured(self) -> bool:
        return bool(self.SUPABASE_URL and self.SUPABASE_ANON_KEY)


settings = Settings()
