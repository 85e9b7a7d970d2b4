"""Configuration models and YAML loader for the load scanner."""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

from loadscout.core.errors import ConfigurationError

ENCRYPTION_KEY_ENV = "LOADSCOUT_ENCRYPTION_KEY"
CRON_SECRET_ENV = "LOADSCOUT_CRON_SECRET"


class DatabaseConfig(BaseModel):
    """Database configuration."""

    path: str = "data/loadscout.db"


class ProviderConfig(BaseModel):
    """Load-board endpoint and request settings."""

    base_url: str = "https://app.cloudtrucks.com"
    user_agent: str = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/143.0.0.0 Safari/537.36"
    )
    pusher_app_key: str = "de4428b1e46e9db8fda0"
    pusher_cluster: str = "us3"
    request_timeout_ms: int = Field(default=30000, ge=1000)
    connection_check_timeout_ms: int = Field(default=10000, ge=1000)

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class ScanConfig(BaseModel):
    """Criterion scans."""

    fetch_timeout_ms: int = Field(default=20000, ge=1000)
    max_concurrent_users: int = Field(default=3, ge=1, le=20)


class AvailabilityConfig(BaseModel):
    """Saved-load availability checks."""

    search_radius_mi: int = Field(default=100, ge=1)
    fetch_timeout_ms: int = Field(default=15000, ge=1000)


class BackhaulConfig(BaseModel):
    """Backhaul suggestion generation."""

    suggestion_ttl_hours: int = Field(default=24, ge=1)
    lookback_days: int = Field(default=7, ge=1)
    max_saved_loads: int = Field(default=20, ge=1)
    max_suggested_loads: int = Field(default=50, ge=1)
    fetch_timeout_ms: int = Field(default=20000, ge=1000)


class RetentionConfig(BaseModel):
    """Cleanup windows."""

    failed_suggestion_days: int = Field(default=7, ge=1)
    guest_data_days: int = Field(default=4, ge=1)


class GuestConfig(BaseModel):
    """Anonymous sandbox limits."""

    max_criteria: int = Field(default=10, ge=1)
    max_loads_per_criteria: int = Field(default=200, ge=1)
    rate_limit_seconds: int = Field(default=60, ge=0)


class InsightsCacheConfig(BaseModel):
    """Bounded cache for market insight lookups."""

    max_entries: int = Field(default=256, ge=1)
    ttl_seconds: int = Field(default=900, ge=1)


class Settings(BaseModel):
    """Top-level settings loaded from YAML, with secrets from the environment."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    scan: ScanConfig = Field(default_factory=ScanConfig)
    availability: AvailabilityConfig = Field(default_factory=AvailabilityConfig)
    backhaul: BackhaulConfig = Field(default_factory=BackhaulConfig)
    retention: RetentionConfig = Field(default_factory=RetentionConfig)
    guest: GuestConfig = Field(default_factory=GuestConfig)
    insights_cache: InsightsCacheConfig = Field(default_factory=InsightsCacheConfig)
    encryption_key: str | None = None
    cron_secret: str | None = None

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file, then apply environment secrets."""
        path = Path(path)
        if not path.exists():
            msg = f"Config file not found: {path}"
            raise FileNotFoundError(msg)
        raw: dict[str, Any] = yaml.safe_load(path.read_text()) or {}
        return cls.model_validate(raw).with_env()

    def with_env(self) -> "Settings":
        """Return a copy with secrets from the environment taking precedence."""
        updates: dict[str, Any] = {}
        key = os.environ.get(ENCRYPTION_KEY_ENV)
        if key:
            updates["encryption_key"] = key
        secret = os.environ.get(CRON_SECRET_ENV)
        if secret:
            updates["cron_secret"] = secret
        return self.model_copy(update=updates) if updates else self

    def require_encryption_key(self) -> str:
        """Return the encryption key or raise ConfigurationError."""
        if not self.encryption_key:
            msg = f"{ENCRYPTION_KEY_ENV} is not set"
            raise ConfigurationError(msg)
        return self.encryption_key
