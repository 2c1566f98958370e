"""
Configuration management for Subsidy Pricing Hub.

This module provides environment-based configuration using Pydantic BaseSettings,
so the gateway limits, cache lifetimes and pricing defaults can be tuned per
deployment without code changes.

Environment variables are loaded with the SUBSIDY_ prefix (for example
SUBSIDY_GATEWAY_MAX_CONCURRENT=4). LOG_LEVEL is read without a prefix.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

import structlog
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger(__name__)

# Determine project root for resolving .env by default
PROJECT_ROOT = Path(__file__).resolve().parents[3]
DEFAULT_ENV_FILE = PROJECT_ROOT / ".env"
ENV_FILE_OVERRIDE = os.getenv("SUBSIDY_ENV_FILE")
if ENV_FILE_OVERRIDE:
    env_file_candidate = Path(ENV_FILE_OVERRIDE).expanduser()
    if not env_file_candidate.is_absolute():
        env_file_candidate = PROJECT_ROOT / env_file_candidate
    SETTINGS_ENV_FILE = env_file_candidate
else:
    SETTINGS_ENV_FILE = DEFAULT_ENV_FILE


class Settings(BaseSettings):
    """
    Application settings with environment variable support.

    Gateway defaults mirror the upstream spreadsheet quota: one raw call every
    500ms, exponential backoff starting at 3 seconds and capped at 60 seconds.
    """

    ENVIRONMENT: Literal["dev", "staging", "prod"] = Field(
        default="dev",
        validation_alias="ENVIRONMENT",
        description="Deployment environment",
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Logging level (uppercase)",
    )

    app_name: str = Field(default="SubsidyPricingHub", description="Application name")

    # Carrier layout (range references, plan groups, policy tables)
    pricing_config_path: str = Field(
        default="./config/carriers.yml",
        description="Path to the carrier pricing layout YAML file",
    )

    # Gateway admission and retry
    gateway_max_concurrent: int = Field(
        default=2, ge=1, description="Maximum raw upstream calls in flight at once"
    )
    gateway_min_interval_seconds: float = Field(
        default=0.5, ge=0, description="Minimum spacing between two raw upstream calls"
    )
    gateway_call_timeout_seconds: float = Field(
        default=30.0, gt=0, description="Deadline for a single raw upstream call"
    )
    gateway_max_retries: int = Field(
        default=4, ge=0, description="Retries after a quota-exceeded failure"
    )
    gateway_backoff_base_seconds: float = Field(
        default=3.0, ge=0, description="Base delay for quota backoff (doubles per attempt)"
    )
    gateway_backoff_jitter_seconds: float = Field(
        default=2.0, ge=0, description="Upper bound of the random jitter added to backoff"
    )
    gateway_backoff_cap_seconds: float = Field(
        default=60.0, ge=0, description="Maximum delay between two quota retries"
    )

    # Stale-while-revalidate cache
    cache_fresh_ttl_seconds: float = Field(
        default=300.0, ge=0, description="Age under which a cached range is served as fresh"
    )
    cache_stale_ttl_seconds: float = Field(
        default=1800.0,
        ge=0,
        description="Age under which a cached range is served stale while refreshing",
    )
    cache_max_entries: int = Field(
        default=200, ge=1, description="Maximum cached ranges (oldest evicted first)"
    )
    refresh_workers: int = Field(
        default=2, ge=1, description="Worker threads for background cache refreshes"
    )
    refresh_failure_log_interval_seconds: float = Field(
        default=60.0, ge=0, description="Per-key window for background refresh failure logs"
    )

    # Matching and pricing
    matching_miss_log_cooldown_seconds: float = Field(
        default=300.0, ge=0, description="Per-key window for matching miss logs"
    )
    rebate_scale: int = Field(
        default=10000, ge=1, description="Multiplier applied to raw rebate cells"
    )
    default_base_margin: float = Field(
        default=50000.0, description="Margin used when a carrier has no margin row"
    )
    transient_retry_attempts: int = Field(
        default=3, ge=1, description="Immediate attempts for transient sink failures"
    )

    @model_validator(mode="after")
    def validate_cache_windows(self) -> "Settings":
        """Stale window must cover the fresh window."""
        if self.cache_stale_ttl_seconds < self.cache_fresh_ttl_seconds:
            raise ValueError(
                "cache_stale_ttl_seconds must be greater than or equal to "
                "cache_fresh_ttl_seconds"
            )
        return self

    model_config = SettingsConfigDict(
        env_prefix="SUBSIDY_",
        env_file=str(SETTINGS_ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance with loaded configuration
    """
    return Settings()
