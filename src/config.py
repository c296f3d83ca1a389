from __future__ import annotations

from functools import cache

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from domain.base_types import BPS_DENOMINATOR


class AppSettings(BaseSettings):
    """Runtime settings for pool derivation, default fees and persistence.

    Environment variable names map directly to field names in uppercase.
    Example: `fee_rate_bps` reads from `FEE_RATE_BPS`.
    """

    pool_seed: str = Field(default="flash_loan", min_length=1)
    program_id: str = Field(default="flash-pool", min_length=1)
    fee_rate_bps: int = Field(default=30, ge=0, le=BPS_DENOMINATOR)
    admin_fee_bps: int = Field(default=0, ge=0, le=BPS_DENOMINATOR)
    database_url: str = Field(default="sqlite:///flash_pool.db")

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @field_validator("admin_fee_bps")
    @classmethod
    def _validate_admin_fee_bounds(cls, value: int, info: ValidationInfo) -> int:
        fee_rate_bps = info.data.get("fee_rate_bps")
        if fee_rate_bps is not None and value > fee_rate_bps:
            raise ValueError("admin_fee_bps must be less than or equal to fee_rate_bps")
        return value


@cache
def config() -> AppSettings:
    return AppSettings()
