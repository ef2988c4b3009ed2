"""Configuration models for rate-limited database handles."""

import math

from pydantic import BaseModel, field_validator


class LimiterConfig(BaseModel):
    rate: float = 10.0  # tokens per second; math.inf disables limiting
    burst: int = 5

    @field_validator("rate")
    @classmethod
    def _positive_rate(cls, v: float) -> float:
        if math.isnan(v) or v <= 0:
            raise ValueError("rate must be positive (or inf for unlimited)")
        return v

    @field_validator("burst")
    @classmethod
    def _positive_burst(cls, v: int) -> int:
        if v < 1:
            raise ValueError("burst must be >= 1")
        return v


class DatabaseConfig(BaseModel):
    url: str = "sqlite+aiosqlite:///:memory:"
    echo: bool = False


class ThrottleConfig(BaseModel):
    database: DatabaseConfig = DatabaseConfig()
    limiter: LimiterConfig = LimiterConfig()
    gate_ping: bool = False  # throttle health checks with the same budget
