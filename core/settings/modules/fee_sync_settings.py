from __future__ import annotations

from decimal import Decimal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FeeSyncSettings(BaseSettings):
    """
    Tuning knobs of the fee sync engine.

    FEE_SYNC_<FIELD> env vars, e.g. FEE_SYNC_MAX_ATTEMPTS=5.
    """

    model_config = SettingsConfigDict(
        env_prefix="FEE_SYNC_",
        env_file=".env",
        extra="ignore",
    )

    # === Pacing / retries ===
    min_request_interval_seconds: float = Field(default=0.5, ge=0)
    max_attempts: int = Field(default=5, ge=1)
    backoff_base_seconds: float = Field(default=1.0, ge=0)
    backoff_max_seconds: float = Field(default=60.0, ge=0)

    # === Ledger ===
    ledger_page_cap: int = Field(default=200, ge=1)
    ledger_window_days: int = Field(default=31, ge=1)
    # PostedBefore must trail now by this margin
    posted_before_safety_minutes: int = Field(default=3, ge=2)

    # === Writes ===
    write_batch_size: int = Field(default=100, ge=1)
    write_batch_delay_seconds: float = Field(default=0.2, ge=0)

    # === Backfill bounds ===
    default_months_back: int = Field(default=24, ge=1)
    max_months_back_sync: int = Field(default=3, ge=1)

    # === Estimator ===
    estimate_fallback_rate: Decimal = Decimal("0.15")
    average_window_days: int = Field(default=14, ge=1)
