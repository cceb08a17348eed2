"""
Configuration settings for the block cache.

Uses Pydantic Settings to load environment variables for the database
connection, the upstream RPC endpoint, logging, sampling defaults and the
outage-analysis thresholds.
"""
from __future__ import annotations

from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

JUPITER_PROGRAM_ID = "JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4"


class Settings(BaseSettings):
    # Database
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres", alias="DB_PASSWORD")
    db_name: str = Field("block_cache", alias="DB_NAME")
    db_pool_min_size: int = Field(1, alias="DB_POOL_MIN_SIZE", ge=1)
    db_pool_max_size: int = Field(10, alias="DB_POOL_MAX_SIZE", ge=1)

    # Upstream RPC
    rpc_url: str = Field("https://api.mainnet-beta.solana.com", alias="SOLANA_RPC_URL")
    rpc_timeout_seconds: float = Field(30.0, alias="RPC_TIMEOUT_SECONDS", gt=0)

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")
    results_dir: str = Field("results", alias="RESULTS_DIR")

    # Sampling and batching
    resolve_batch_size: int = Field(10, alias="RESOLVE_BATCH_SIZE", ge=1)
    program_batch_size: int = Field(5, alias="PROGRAM_BATCH_SIZE", ge=1)
    default_sample_size: int = Field(100, alias="DEFAULT_SAMPLE_SIZE", ge=1)
    program_sample_size: int = Field(50, alias="PROGRAM_SAMPLE_SIZE", ge=1)
    stats_window_seconds: int = Field(3600, alias="STATS_WINDOW_SECONDS", gt=0)
    recent_blocks_limit: int = Field(10, alias="RECENT_BLOCKS_LIMIT", ge=1, le=100)

    # Event under analysis (2025-10-20 06:30-09:30 UTC, epoch 867)
    event_start_slot: int = Field(374_563_500, alias="EVENT_START_SLOT", ge=0)
    event_end_slot: int = Field(374_591_000, alias="EVENT_END_SLOT", ge=0)
    event_label: str = Field("2025-10-20 outage", alias="EVENT_LABEL")
    default_program_id: str = Field(JUPITER_PROGRAM_ID, alias="DEFAULT_PROGRAM_ID")

    # Disruption thresholds, in percent of the pre-event baseline
    disruption_threshold_pct: float = Field(10.0, alias="DISRUPTION_THRESHOLD_PCT", ge=0)
    severity_critical_pct: float = Field(50.0, alias="SEVERITY_CRITICAL_PCT", ge=0)
    severity_high_pct: float = Field(30.0, alias="SEVERITY_HIGH_PCT", ge=0)
    severity_medium_pct: float = Field(10.0, alias="SEVERITY_MEDIUM_PCT", ge=0)
    recovery_tolerance_pct: float = Field(5.0, alias="RECOVERY_TOLERANCE_PCT", ge=0)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["JUPITER_PROGRAM_ID", "Settings", "get_settings"]
