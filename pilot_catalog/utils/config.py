"""
Environment configuration loader with validation for the catalog API.
"""

import os
import re
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field, field_validator
from dotenv import load_dotenv

from ..models.enums import InvalidationMode

DEFAULT_LOCALES = ("en", "es", "fr", "pt")

_LOCALE_RE = re.compile(r"^[a-z]{2}$")


class AppConfig(BaseModel):
    """Configuration model for the catalog API with validation."""

    # Database Configuration
    database_url: Optional[str] = Field(
        default=None, description="Database connection URL (None = built from DB_* variables)"
    )

    # Cache invalidation
    supported_locales: List[str] = Field(
        default_factory=lambda: list(DEFAULT_LOCALES),
        description="Ordered locale codes every cached endpoint is rendered in",
    )
    invalidation_mode: InvalidationMode = Field(
        default=InvalidationMode.DIRECT, description="direct (watermark) or staged (queue)"
    )
    listing_depth: int = Field(
        default=2, ge=1, description="Category tree depth at which listing views are cached"
    )
    supersession_max_hops: int = Field(
        default=50, ge=1, description="Longest supersession chain walked per diagram page"
    )
    watermark_limit: int = Field(
        default=500, ge=1, description="Row limit per tracked table for one direct cycle"
    )
    claim_limit: Optional[int] = Field(
        default=None, ge=1, description="Queue rows claimed per staged batch (None = all)"
    )
    stale_batch_minutes: int = Field(
        default=30, ge=1, description="Age after which a claimed batch counts as stuck"
    )

    # API
    api_host: str = Field(default="0.0.0.0", description="Bind address")
    api_port: int = Field(default=3001, ge=1, le=65535, description="Bind port")

    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("supported_locales")
    @classmethod
    def validate_locales(cls, v: List[str]) -> List[str]:
        """Locales must be non-empty, unique, lowercase two-letter codes."""
        locales = [code.strip() for code in v if code and code.strip()]
        if not locales:
            raise ValueError("At least one supported locale is required")
        for code in locales:
            if not _LOCALE_RE.match(code):
                raise ValueError(f"Invalid locale code: {code!r}")
        if len(set(locales)) != len(locales):
            raise ValueError(f"Duplicate locale codes in {locales}")
        return locales

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the standard levels."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()


def _optional_int(value: Optional[str]) -> Optional[int]:
    return int(value) if value else None


def load_config(env_file: Optional[str] = None) -> AppConfig:
    """
    Load configuration from environment variables and .env file.

    Args:
        env_file: Optional path to .env file. If None, looks for .env in current directory.

    Returns:
        AppConfig: Validated configuration object

    Raises:
        ValueError: If configuration is invalid
    """
    if env_file is None:
        env_file = ".env"

    if os.path.exists(env_file):
        load_dotenv(env_file)

    locales = os.getenv("SUPPORTED_LOCALES")

    config_data: Dict[str, Any] = {
        "database_url": os.getenv("DATABASE_URL") or None,
        "supported_locales": locales.split(",") if locales is not None else list(DEFAULT_LOCALES),
        "invalidation_mode": os.getenv("INVALIDATION_MODE", "direct").lower(),
        "listing_depth": int(os.getenv("LISTING_DEPTH", "2")),
        "supersession_max_hops": int(os.getenv("SUPERSESSION_MAX_HOPS", "50")),
        "watermark_limit": int(os.getenv("WATERMARK_LIMIT", "500")),
        "claim_limit": _optional_int(os.getenv("CLAIM_LIMIT")),
        "stale_batch_minutes": int(os.getenv("STALE_BATCH_MINUTES", "30")),
        "api_host": os.getenv("API_HOST", "0.0.0.0"),
        "api_port": int(os.getenv("API_PORT", "3001")),
        "log_level": os.getenv("LOG_LEVEL", "INFO"),
    }

    try:
        return AppConfig(**config_data)
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {e}") from e
