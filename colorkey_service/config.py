"""
Configuration loader for the color-key background-removal service.

Environment variables are centralized here to keep the rest of the code
focused on business logic and to make operational tuning clear. Variable
names match the field names (case-insensitive), e.g. `REMOVAL_STRATEGY`.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

STRATEGIES = {"color", "model"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Removal strategy + color-key defaults
    removal_strategy: str = Field("color")
    default_tolerance: float = Field(32.0)
    default_edge_feathering: int = Field(2, ge=0)
    edge_sample_interval: int = Field(15, gt=0)
    max_image_pixels: int = Field(40_000_000, gt=0)

    # Model-based alternative (rembg)
    rembg_model_name: str = Field("isnet-general-use")

    # API
    request_timeout_seconds: int = Field(30)
    log_level: str = Field("INFO")

    # Debugging
    debug: bool = Field(False)
    debug_output_dir: Path = Field(Path("/tmp/colorkey_debug"))

    @field_validator("removal_strategy")
    @classmethod
    def validate_strategy(cls, v: str) -> str:
        v = v.lower()
        if v not in STRATEGIES:
            raise ValueError("REMOVAL_STRATEGY must be one of color|model")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings to avoid reparsing env on every call."""
    return Settings()


def resolve_strategy(strategy: Optional[str], settings: Optional[Settings] = None) -> str:
    """
    Pick the removal strategy for a call.

    An explicit per-call value wins over the configured default.
    """
    settings = settings or get_settings()
    chosen = (strategy or settings.removal_strategy).lower()
    if chosen not in STRATEGIES:
        raise ValueError("strategy must be one of color | model")
    return chosen
