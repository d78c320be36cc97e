"""
Serving Configuration

Settings are read from ``NOCAPTCHA_*`` environment variables or a ``.env``
file, and can be overridden from the command line.

Example:
    $ NOCAPTCHA_MODELS_DIR=/srv/models NOCAPTCHA_PORT=8080 python -m nocaptcha.serving
"""

import logging
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class ServingSettings(BaseSettings):
    """Startup configuration for the recognition server."""

    model_config = SettingsConfigDict(
        env_prefix="NOCAPTCHA_",
        env_file=".env",
        extra="ignore",
    )

    # ========================================================================
    # Models
    # ========================================================================

    models_dir: Path = Field(
        default=Path("models"),
        description="Root directory holding one model directory per challenge"
    )

    load_workers: Optional[int] = Field(
        default=None,
        ge=1,
        description="Threads used to load models (default: one per CPU)"
    )

    poison_on_fault: bool = Field(
        default=True,
        description="Stop serving a challenge after an unexpected engine fault"
    )

    quiet_runtime: bool = Field(
        default=True,
        description="Silence TensorFlow C++ logging before loading models"
    )

    # ========================================================================
    # HTTP
    # ========================================================================

    host: str = Field(default="127.0.0.1", description="Bind address")

    port: int = Field(default=5000, ge=1, le=65535, description="Bind port")

    log_level: str = Field(default="INFO", description="Python logging level")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        value = value.upper()
        if value not in VALID_LOG_LEVELS:
            raise ValueError(
                f"Invalid log_level: {value}. Must be one of {VALID_LOG_LEVELS}"
            )
        return value
