"""Application configuration."""
from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = "sqlite+aiosqlite:///./calls.db"

    # Billing
    rate_per_second: Decimal = Decimal("0.0033")
    billing_interval_seconds: float = 1.0
    minimum_start_balance: Decimal = Decimal("0.50")
    billing_policy: str = "single_payer"  # single_payer, symmetric
    low_balance_warning_intervals: int = 30

    # Call lifecycle
    ring_timeout_seconds: float = 30.0
    max_consecutive_ledger_failures: int = 3
    ledger_timeout_seconds: float = 5.0  # Per ledger read or write
    ended_session_cache_size: int = 1000

    # Wallet
    wallet_signup_bonus: Decimal = Decimal("5.00")

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
