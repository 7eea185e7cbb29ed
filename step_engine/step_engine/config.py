"""Step engine configuration loaded from environment variables."""

from __future__ import annotations

import logging
from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Granularity(str, Enum):
    """Unit used when diffing text values."""

    LINE = "line"
    WORD = "word"
    CHARACTER = "character"


class ColorMode(str, Enum):
    ALWAYS = "always"
    AUTO = "auto"
    NEVER = "never"


class Settings(BaseSettings):
    """Application settings loaded from environment variables with STEPDIFF_ prefix."""

    model_config = SettingsConfigDict(
        env_prefix="STEPDIFF_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    debug: bool = False
    structured_logging: bool = False

    # Rendering
    granularity: Granularity = Granularity.LINE
    context_lines: int = Field(default=3, ge=0)
    color_mode: ColorMode = ColorMode.AUTO

    # Graph differ
    read_sources: bool = True

    # Resolver
    nix_bin: str = "nix"
    nix_store_bin: str = "nix-store"
    nix_instantiate_bin: str = "nix-instantiate"
    resolver_timeout_seconds: float = 300.0


def load_settings(**overrides: object) -> Settings:
    """Load settings from environment, with optional overrides for testing."""
    settings = Settings(**overrides)  # type: ignore[arg-type]

    if settings.debug:
        logger.info(
            "Loaded settings: granularity=%s context_lines=%d color_mode=%s",
            settings.granularity.value,
            settings.context_lines,
            settings.color_mode.value,
        )

    return settings
