"""Configuration management."""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .core.topology import WorldShape


class Settings(BaseSettings):
    """Application settings pulled from COSMO_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="COSMO_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Log level")
    log_format: str = Field(default="plain", description="Logging format (plain or json)")

    # World
    world_shape: WorldShape = Field(
        default=WorldShape.CYLINDER, description="Default world topology"
    )
    tiles_desired: int = Field(default=10000, gt=0, description="Default tile count target")
    random_seed: Optional[str] = Field(default=None, description="Default random seed")

    # Spreading
    expansion_factor: float = Field(
        default=1.0, gt=0, description="Multiplier on how far territories may spread"
    )
    size_variance: float = Field(
        default=1.0, ge=0, description="How much territory expansionism may vary"
    )
    river_threshold: float = Field(
        default=10.0, ge=0, description="Water flow above which a tile holds a river"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process."""
    return Settings()
