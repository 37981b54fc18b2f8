"""
Application configuration.

All configuration is loaded from environment variables.
Never hardcode secrets or connection strings in code.
Per-tenant accounting policy (base currency, FX accounts,
auto-post) lives in the GLConfiguration table; the values
here are the defaults used when a tenant has no row.
"""

import os
from decimal import Decimal
from functools import lru_cache

from dotenv import load_dotenv

# Load .env file into environment variables
load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


class Settings:
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = os.getenv("APP_NAME", "General Ledger Engine")
    APP_VERSION: str = os.getenv("APP_VERSION", "0.1.0")
    DEBUG: bool = _env_bool("DEBUG", "false")

    # Server
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8000"))

    # Database
    DATABASE_URL: str = os.getenv(
        "DATABASE_URL",
        "sqlite:///./general_ledger.db"
    )

    # Environment
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Accounting policy defaults
    BASE_CURRENCY: str = os.getenv("BASE_CURRENCY", "USD")
    BALANCE_TOLERANCE: Decimal = Decimal(os.getenv("BALANCE_TOLERANCE", "0.01"))
    AMOUNT_DECIMAL_PLACES: int = int(os.getenv("AMOUNT_DECIMAL_PLACES", "2"))
    MAX_LINES_PER_ENTRY: int = int(os.getenv("MAX_LINES_PER_ENTRY", "100"))
    AUTO_POST_ON_APPROVAL: bool = _env_bool("AUTO_POST_ON_APPROVAL", "true")

    # Approval workflow
    DEFAULT_APPROVAL_EXPIRY_HOURS: int = int(
        os.getenv("DEFAULT_APPROVAL_EXPIRY_HOURS", "168")
    )

    # Optional JSON file with roles and managers for the
    # default identity resolver
    IDENTITY_DIRECTORY_PATH: str | None = os.getenv("IDENTITY_DIRECTORY_PATH")


@lru_cache()
def get_settings() -> Settings:
    """
    Return cached settings instance.

    Using lru_cache means the Settings object is created once
    and reused for all subsequent calls. This avoids reading
    environment variables repeatedly.
    """
    return Settings()
