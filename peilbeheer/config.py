from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import (
    DEFAULT_PID_KD,
    DEFAULT_PID_KI,
    DEFAULT_PID_KP,
    DEFAULT_STORAGE_FRACTION,
    DP_DUTY_LEVELS,
    DP_LEVEL_STEP_M,
    DP_PENALTY_WEIGHT,
    MIN_FLOW_MAX_M3_S,
    MIN_FLOW_STEP_M3_S,
)


class Settings(BaseSettings):
    """Kernel defaults loaded from ``PEILBEHEER_*`` environment variables."""

    log_level: str = "INFO"

    # PID gains used when a strategy does not name its own
    pid_kp: float = DEFAULT_PID_KP
    pid_ki: float = DEFAULT_PID_KI
    pid_kd: float = DEFAULT_PID_KD

    # Dynamic-programming grid
    dp_level_step_m: float = Field(DP_LEVEL_STEP_M, gt=0)
    dp_duty_levels: int = Field(DP_DUTY_LEVELS, ge=2)
    dp_penalty: float = Field(DP_PENALTY_WEIGHT, ge=0)

    default_storage_fraction: float = Field(DEFAULT_STORAGE_FRACTION, gt=0, le=1)
    export_decimals: int = Field(3, ge=0)

    # Minimum-flow search grid
    min_flow_step: float = Field(MIN_FLOW_STEP_M3_S, gt=0)
    min_flow_max: float = Field(MIN_FLOW_MAX_M3_S, gt=0)

    model_config = SettingsConfigDict(
        env_prefix="PEILBEHEER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
