from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RelayRuntimeSettings(BaseSettings):
    """Runtime tuning for a relay pipeline, read from ``RELAY_*`` env vars or ``.env``."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # queue / backpressure
    relay_capacity: int = Field(10_000, gt=0)
    relay_high_watermark: int | None = None
    relay_low_watermark: int | None = None
    relay_overflow_strategy: Literal["block", "drop_oldest", "error"] = "block"

    # pacing: the remote accepts one message per second
    relay_interval_sec: float = Field(1.0, ge=0)

    # http
    relay_request_timeout_sec: float = Field(10.0, gt=0)
    relay_keepalive_expiry_sec: float = Field(1.0, ge=0)
    relay_max_connections: int = Field(1000, gt=0)

    # retry (max_attempts=0 retries forever)
    relay_max_attempts: int = Field(10, ge=0)
    relay_initial_backoff_ms: int = Field(500, ge=0)
    relay_max_backoff_ms: int = Field(30_000, ge=0)
    relay_backoff_multiplier: float = Field(2.0, ge=1.0)
    relay_backoff_jitter: bool = True

    # metrics
    relay_metrics_poll_sec: float = Field(0.5, gt=0)

    @model_validator(mode="after")
    def _check_watermarks(self):
        high, low = self.relay_high_watermark, self.relay_low_watermark
        if high is not None and high > self.relay_capacity:
            raise ValueError("relay_high_watermark must not exceed relay_capacity")
        if high is not None and low is not None and low > high:
            raise ValueError("relay_low_watermark must not exceed relay_high_watermark")
        if self.relay_max_backoff_ms < self.relay_initial_backoff_ms:
            raise ValueError("relay_max_backoff_ms must be >= relay_initial_backoff_ms")
        return self


@lru_cache()
def get_settings() -> RelayRuntimeSettings:
    return RelayRuntimeSettings()
