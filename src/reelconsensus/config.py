"""Configuration and logging setup for reelconsensus."""

from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Default config file location
CONFIG_FILE_PATH = Path.home() / ".config" / "reelconsensus" / "config.toml"

_SECRET_FIELDS = ("tmdb_api_key",)


def _load_config_file(config_path: Path | None = None) -> dict[str, Any]:
    """Load configuration from TOML file if it exists.

    Args:
        config_path: Path to config file. Defaults to ~/.config/reelconsensus/config.toml

    Returns:
        Dictionary of configuration values, empty dict if file doesn't exist
    """
    path = config_path or CONFIG_FILE_PATH
    if not path.exists():
        return {}

    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        # Config file is optional
        logging.getLogger(__name__).warning(
            "Failed to load config file %s: %s", path, type(e).__name__
        )
        return {}


class ConsensusThresholds(BaseModel):
    """Decision thresholds and boost shape for the consensus engine.

    Frozen so a single instance can be shared by every concurrent resolution.
    """

    model_config = ConfigDict(frozen=True)

    auto_apply_threshold: float = Field(default=0.90, ge=0.0, le=1.0)
    audit_threshold: float = Field(default=0.70, ge=0.0, le=1.0)
    corroboration_boost: float = Field(default=0.03, ge=0.0, le=1.0)
    confidence_cap: float = Field(default=0.98, ge=0.0, le=1.0)
    single_source_cap: float = Field(default=0.75, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def check_ordering(self) -> "ConsensusThresholds":
        """Audit band must sit below the auto-apply threshold."""
        if self.audit_threshold > self.auto_apply_threshold:
            msg = "audit_threshold must not exceed auto_apply_threshold"
            raise ValueError(msg)
        return self


class AutomationThresholds(BaseModel):
    """Per-action thresholds deciding auto-fix versus review.

    Attributes:
        auto_fix: Minimum confidence to apply a recommendation automatically.
        flag_for_review: Minimum confidence to queue a recommendation for review.
        manual_floor: Below this, a human must decide from scratch.
    """

    model_config = ConfigDict(frozen=True)

    auto_fix: dict[str, float] = Field(
        default_factory=lambda: {
            "reattribute": 0.85,
            "add_missing": 0.85,
            "fix_tmdb_id": 0.80,
            "fill_tech_credits": 0.75,
            "fix_duplicates": 0.90,
        }
    )
    flag_for_review: dict[str, float] = Field(
        default_factory=lambda: {
            "reattribute": 0.60,
            "add_missing": 0.70,
            "fix_tmdb_id": 0.60,
            "fill_tech_credits": 0.50,
            "fix_duplicates": 0.70,
        }
    )
    manual_floor: float = 0.50


class Settings(BaseSettings):
    """reelconsensus settings loaded from environment variables.

    Settings are loaded in priority order:
    1. Environment variables (highest priority)
    2. .env file
    3. ~/.config/reelconsensus/config.toml (lowest priority)

    Nested threshold groups can be set from the environment with a double
    underscore, e.g. ``REELCONSENSUS_CONSENSUS__AUTO_APPLY_THRESHOLD=0.92``.
    """

    model_config = SettingsConfigDict(
        env_prefix="REELCONSENSUS_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    # API keys - NEVER log these
    tmdb_api_key: SecretStr | None = None

    # Orchestration
    source_timeout_seconds: float = 10.0
    query_deadline_seconds: float = 30.0
    batch_size: int = Field(default=10, ge=1)
    batch_delay_seconds: float = Field(default=1.0, ge=0.0)

    # Consensus and automation
    consensus: ConsensusThresholds = Field(default_factory=ConsensusThresholds)
    automation: AutomationThresholds = Field(default_factory=AutomationThresholds)

    # Title and name matching
    duplicate_similarity_threshold: float = 0.90
    discovery_similarity_threshold: float = 0.70
    duplicate_year_tolerance: int = 0
    discovery_year_tolerance: int = 1
    name_match_threshold: float = 0.85
    fuzzy_bucket_limit: int = 2000

    # Adapter layer
    ttl_tmdb: int = 86400  # 24 hours
    cache_path: Path = Path("~/.cache/reelconsensus/cache.db")
    discovery_language: str = "te"

    # Logging
    log_level: str = "INFO"

    @model_validator(mode="before")
    @classmethod
    def load_from_config_file(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Load values from config file for any fields not set via env vars."""
        config_data = _load_config_file()

        if not config_data:
            return values

        # Config file uses the same keys as settings fields
        for key in cls.model_fields:
            if key not in values or values[key] is None:
                if key in config_data:
                    values[key] = config_data[key]

        return values

    def has_tmdb_credentials(self) -> bool:
        """Check if a TMDB API key is configured."""
        return bool(self.tmdb_api_key)

    def __repr__(self) -> str:
        """Safe repr that masks credential values."""
        fields = []
        for name in type(self).model_fields:
            value = getattr(self, name)
            if name in _SECRET_FIELDS:
                if value is not None:
                    fields.append(f"{name}=SecretStr('**********')")
                else:
                    fields.append(f"{name}=None")
            else:
                fields.append(f"{name}={value!r}")
        return f"Settings({', '.join(fields)})"

    def __str__(self) -> str:
        """Safe str representation that masks credential values."""
        return self.__repr__()


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the singleton Settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset the singleton Settings instance.

    Primarily used for testing to ensure fresh settings are loaded.
    """
    global _settings
    _settings = None


def configure_logging(level: str | None = None) -> None:
    """Configure stdlib logging for reelconsensus.

    Args:
        level: Log level name. Defaults to ``Settings.log_level``.
    """
    level = level or get_settings().log_level
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


__all__ = [
    "AutomationThresholds",
    "ConsensusThresholds",
    "Settings",
    "get_settings",
    "reset_settings",
    "configure_logging",
    "CONFIG_FILE_PATH",
]
