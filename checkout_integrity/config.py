"""Application settings using Pydantic for environment-based configuration."""
from functools import lru_cache
from typing import Dict

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .fraud.models import (
    DEFAULT_SIGNAL_WEIGHTS,
    RiskThresholds,
    SignalWeights,
    TimingThresholds,
    VelocityLimits,
)


class Settings(BaseSettings):
    """
    Settings loaded from CHECKOUT_INTEGRITY_* environment variables or .env.

    signal_weights is read as JSON, e.g.
    CHECKOUT_INTEGRITY_SIGNAL_WEIGHTS='{"geo_mismatch": 2.0}'. Names left out
    keep their default weight.
    """

    # Storage
    storage_backend: str = Field(default="memory", description="memory or redis")
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis connection URL")

    # Velocity
    velocity_window_ms: int = Field(default=15 * 60 * 1000, gt=0, description="Sliding window (ms)")
    velocity_max_sessions_per_email: int = Field(default=5, ge=0)
    velocity_max_sessions_per_ip: int = Field(default=10, ge=0)
    velocity_max_sessions_per_device: int = Field(default=8, ge=0)

    # Timing
    checkout_too_fast_ms: int = Field(default=3000, gt=0, description="Faster checkouts look automated")
    checkout_too_slow_ms: int = Field(default=30 * 60 * 1000, gt=0, description="Slower checkouts look hijacked")

    # Scoring
    allow_threshold: int = Field(default=30, ge=0, le=100)
    block_threshold: int = Field(default=70, ge=0, le=100)
    signal_weights: Dict[str, float] = Field(default_factory=dict)

    # Tracker
    auto_snapshot: bool = Field(default=True, description="Snapshot the checksum after each tracked event")

    # Application
    app_name: str = Field(default="checkout-integrity", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")

    model_config = SettingsConfigDict(
        env_prefix="CHECKOUT_INTEGRITY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("storage_backend")
    @classmethod
    def validate_storage_backend(cls, v: str) -> str:
        if v.lower() not in ("memory", "redis"):
            raise ValueError("Invalid storage backend. Must be one of: ['memory', 'redis']")
        return v.lower()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @model_validator(mode="after")
    def validate_scoring(self) -> "Settings":
        # Fail at startup rather than on the first assessment
        self.risk_thresholds()
        self.weights()
        return self

    def risk_thresholds(self) -> RiskThresholds:
        return RiskThresholds(
            allow_threshold=self.allow_threshold,
            block_threshold=self.block_threshold,
        )

    def weights(self) -> SignalWeights:
        return SignalWeights(**{**DEFAULT_SIGNAL_WEIGHTS.model_dump(), **self.signal_weights})

    def velocity_limits(self) -> VelocityLimits:
        return VelocityLimits(
            window_ms=self.velocity_window_ms,
            max_sessions_per_email=self.velocity_max_sessions_per_email,
            max_sessions_per_ip=self.velocity_max_sessions_per_ip,
            max_sessions_per_device=self.velocity_max_sessions_per_device,
        )

    def timing_thresholds(self) -> TimingThresholds:
        return TimingThresholds(
            too_fast_ms=self.checkout_too_fast_ms,
            too_slow_ms=self.checkout_too_slow_ms,
        )

    @property
    def uses_redis(self) -> bool:
        return self.storage_backend == "redis"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
