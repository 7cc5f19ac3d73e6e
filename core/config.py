"""
Engine configuration using Pydantic Settings.

This module provides typed and validated settings for the tax engine,
with support for environment variables and .env files.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

RoundingModeName = Literal["half_up", "half_down", "half_even", "up", "down"]


class LoggingSettings(BaseSettings):
    """Logging output settings."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: str = Field(default="INFO", description="Minimum log level")
    json_format: bool = Field(default=False, description="Render logs as JSON lines")

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        """Upper-case the level name so 'debug' and 'DEBUG' are equivalent."""
        return str(v).strip().upper()


class TaxSettings(BaseSettings):
    """
    Tax calculation settings.

    These are the knobs a calculator reads on every call: how monetary
    outputs are rounded, whether shipping and discounts move the taxable
    subtotal, and whether prices already include tax.
    """

    model_config = SettingsConfigDict(env_prefix="TAX_")

    default_currency: str = Field(default="USD", description="Currency used when input has none")
    rounding_mode: RoundingModeName = Field(
        default="half_up", description="Rounding mode for monetary outputs"
    )
    rounding_precision: int = Field(
        default=2, description="Decimal places kept on monetary outputs", ge=0, le=8
    )
    tax_inclusive_pricing: bool = Field(
        default=False, description="Item amounts already include tax"
    )
    compound_taxes: bool = Field(
        default=False, description="Compound rules tax previously applied taxes"
    )
    tax_on_shipping: bool = Field(default=True, description="Add shipping to the subtotal")
    tax_on_discounts: bool = Field(default=True, description="Subtract discounts from the subtotal")
    high_rate_warning_threshold: float = Field(
        default=50.0, description="Effective rate (percent) above which a warning is raised", ge=0
    )

    @field_validator("default_currency", mode="before")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        """Normalize currency codes to upper case ISO form."""
        code = str(v).strip().upper()
        if len(code) != 3:
            msg = "default_currency must be a 3-letter ISO 4217 code"
            raise ValueError(msg)
        return code


class Settings(BaseSettings):
    """
    Main settings.

    Aggregates all configuration sections and provides environment-specific
    settings loading.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: Literal["development", "production", "test"] = Field(
        default="development", description="Runtime environment"
    )
    debug: bool = Field(default=False, description="Debug mode")

    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    tax: TaxSettings = Field(default_factory=TaxSettings)

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def is_test(self) -> bool:
        """Check if running in test environment."""
        return self.environment == "test"


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings.

    Uses LRU cache to ensure settings are only loaded once.

    Returns:
        Configured Settings instance.
    """
    return Settings()
