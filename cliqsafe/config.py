"""
cliqsafe configuration: all environment variables in one place.

Read from environment at runtime. Never hardcode secrets.
"""

from __future__ import annotations

import os


class Settings:
    """Application settings from environment variables."""

    # Database
    DATABASE_URL: str = os.environ.get("DATABASE_URL", "")

    # Email (Resend)
    RESEND_API_KEY: str = os.environ.get("RESEND_API_KEY", "")
    EMAIL_FROM: str = os.environ.get("EMAIL_FROM", "Cliqstr <no-reply@cliqstr.com>")

    # Auth
    JWT_SECRET: str = os.environ.get("JWT_SECRET", "")
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRY_HOURS: int = int(os.environ.get("JWT_EXPIRY_HOURS", "3"))

    # Tokens
    MAGIC_LINK_EXPIRY_MINUTES: int = 15
    APPROVAL_TOKEN_EXPIRY_DAYS: int = 7
    INVITE_CODE_EXPIRY_DAYS: int = 7
    TOKEN_SWEEP_INTERVAL_SECONDS: int = int(os.environ.get("TOKEN_SWEEP_INTERVAL_SECONDS", "60"))

    # Rate limits
    MAGIC_LINK_RATE_LIMIT_PER_EMAIL: int = 5  # per hour
    MAGIC_LINK_RATE_LIMIT_PER_IP: int = 20  # per hour
    TOKEN_VERIFY_RATE_LIMIT_PER_IP: int = 10  # per minute
    APPROVAL_RESEND_RATE_LIMIT_PER_EMAIL: int = 3  # per hour

    # Plans
    DEFAULT_GROUP_PLAN_MAX_MEMBERS: int = 8

    # Application
    ENVIRONMENT: str = os.environ.get("ENVIRONMENT", "development")

    @property
    def PUBLIC_URL(self) -> str:
        url = os.environ.get("PUBLIC_URL")
        if url:
            return url
        return "http://localhost:3000" if self.ENVIRONMENT == "development" else "https://cliqstr.com"


# Singleton instance
settings = Settings()

# Validate required settings (skip email in test mode)
_testing = os.environ.get("TESTING", "").lower() == "true"

if not settings.DATABASE_URL:
    raise RuntimeError("DATABASE_URL environment variable is required")
if not settings.JWT_SECRET:
    raise RuntimeError("JWT_SECRET environment variable is required")

if not _testing:
    if not settings.RESEND_API_KEY:
        raise RuntimeError("RESEND_API_KEY environment variable is required")
