"""
Application configuration.

All configuration is loaded from environment variables.
Never hardcode secrets or connection strings in code.
"""

import os
from decimal import Decimal
from functools import lru_cache

from dotenv import load_dotenv

# Load .env file into environment variables
load_dotenv()


class Settings:
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Banca Ledger"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # Server
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8000"))

    # Database
    DATABASE_URL: str = os.getenv(
        "DATABASE_URL",
        "postgresql://localhost:5432/banca_ledger"
    )

    # Environment
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")

    # Money and business calendar
    DEFAULT_CURRENCY: str = os.getenv("DEFAULT_CURRENCY", "CRC")
    BUSINESS_UTC_OFFSET_HOURS: int = int(
        os.getenv("BUSINESS_UTC_OFFSET_HOURS", "-6")
    )
    SETTLEMENT_EPSILON: Decimal = Decimal(
        os.getenv("SETTLEMENT_EPSILON", "0.01")
    )

    # Commission waterfall: last tier when no policy matches
    DEFAULT_COMMISSION_PERCENT: Decimal = Decimal(
        os.getenv("DEFAULT_COMMISSION_PERCENT", "0")
    )

    # Payment reversal guard: "strict", "no_movement" or "would_settle"
    PAYMENT_REVERSAL_GUARD: str = os.getenv(
        "PAYMENT_REVERSAL_GUARD", "strict"
    ).lower()
    MIN_REVERSAL_REASON_LENGTH: int = int(
        os.getenv("MIN_REVERSAL_REASON_LENGTH", "5")
    )

    # Connection-level retries (applied around a whole unit of work)
    DB_RETRY_ATTEMPTS: int = int(os.getenv("DB_RETRY_ATTEMPTS", "3"))
    DB_RETRY_BACKOFF_MIN_MS: int = int(
        os.getenv("DB_RETRY_BACKOFF_MIN_MS", "150")
    )
    DB_RETRY_BACKOFF_MAX_MS: int = int(
        os.getenv("DB_RETRY_BACKOFF_MAX_MS", "2000")
    )

    # Transaction timeouts (PostgreSQL statement_timeout)
    TX_TIMEOUT_MS: int = int(os.getenv("TX_TIMEOUT_MS", "20000"))
    LONG_TX_TIMEOUT_MS: int = int(os.getenv("LONG_TX_TIMEOUT_MS", "120000"))


@lru_cache()
def get_settings() -> Settings:
    """
    Return cached settings instance.

    Using lru_cache means the Settings object is created once
    and reused for all subsequent calls. This avoids reading
    environment variables repeatedly.
    """
    return Settings()
