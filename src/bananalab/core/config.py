"""Configuration management for BananaLab.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the BANANALAB_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (BANANALAB_* prefix)
2. .env file in the project root
3. Default values defined in BananaLabConfig

The Gemini API key is the one exception to the prefix rule: it is also read
from the plain ``GEMINI_API_KEY`` variable most Google tooling already uses.

Example .env file:
    GEMINI_API_KEY=your-key
    BANANALAB_MAX_RETRIES=3
    BANANALAB_INITIAL_CREDITS=25
    BANANALAB_DATA_DIR=data

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
The API application factory uses it unless an explicit instance is passed
(tests build their own with temporary directories).

Usage Example
-------------
    from bananalab.core.config import config

    print(config.image_model)
    print(config.db_path)

Directory Management
--------------------
The configuration automatically creates required directories on initialization:
- data_dir: SQLite database and the editable preset catalog
- outputs_dir: Generated images (served at ``/static/results``)
"""

from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BananaLabConfig(BaseSettings):
    """Main configuration for BananaLab.

    Attributes
    ----------
    Model API Settings:
        gemini_api_key : str | None
            API key for the hosted Gemini image model
        image_model : str
            Model name passed to ``generate_content``
        request_timeout_ms : int
            HTTP timeout for a single model call

    Retry / Fallback:
        max_retries : int
            Retries for quota and transient server errors
        retry_base_delay : float
            Base delay in seconds, doubled on every retry
        placeholder_fallback : bool
            Return a placeholder image instead of failing on exhausted
            quota, server errors and token-limit errors
        placeholder_size : int
            Edge length of the placeholder image

    Credits:
        initial_credits : int
            Balance granted to a user on first sight
        credits_per_image : int
            Credits debited per successfully generated image
        max_variants : int
            Maximum number of images per generate request

    Paths:
        data_dir : Path
            Holds ``bananalab.db`` and ``presets.json``
        outputs_dir : Path
            Directory to save generated images

    Notes
    -----
    - All directories are created automatically if they don't exist
    - To modify config, set environment variables and restart the application
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="BANANALAB_",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # Model API settings
    gemini_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "gemini_api_key", "BANANALAB_GEMINI_API_KEY", "GEMINI_API_KEY"
        ),
        description="API key for the Gemini image model",
    )
    image_model: str = Field(
        default="gemini-2.5-flash-image-preview",
        description="Gemini model used for image generation",
    )
    request_timeout_ms: int = Field(
        default=120_000,
        description="HTTP timeout for one model call, in milliseconds",
        ge=1_000,
    )

    # Retry / fallback
    max_retries: int = Field(default=3, ge=0, le=10)
    retry_base_delay: float = Field(
        default=1.0,
        description="Base backoff delay in seconds (doubled per retry)",
        ge=0.0,
    )
    placeholder_fallback: bool = Field(
        default=True,
        description="Return a placeholder image when the model is unavailable",
    )
    placeholder_size: int = Field(default=1024, ge=64, le=4096)

    # Credits and limits
    initial_credits: int = Field(default=25, ge=0)
    credits_per_image: int = Field(default=1, ge=0)
    max_variants: int = Field(default=4, ge=1, le=16)
    default_user_id: str = Field(
        default="local-user",
        description="User id assumed when no X-User-Id header is sent",
    )
    job_retention: int = Field(
        default=500,
        description="Maximum number of jobs kept in memory",
        ge=1,
    )

    # Paths
    data_dir: Path = Field(
        default=Path("data"),
        description="Directory for the database and preset catalog",
    )
    outputs_dir: Path = Field(
        default=Path("outputs"),
        description="Directory to save generated images",
    )

    # Server settings
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address (0.0.0.0 for local network)",
    )
    server_port: int = Field(default=7860, ge=1024, le=65535)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")

    def __init__(self, **kwargs):
        """Initialize configuration and create required directories.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)

        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.outputs_dir.mkdir(parents=True, exist_ok=True)

    @property
    def db_path(self) -> Path:
        """SQLite database holding credits and generation history."""
        return self.data_dir / "bananalab.db"

    @property
    def presets_file(self) -> Path:
        """Editable preset catalog (seeded from the bundled presets on first use)."""
        return self.data_dir / "presets.json"


# Global configuration instance
# Loads values from environment variables (BANANALAB_* prefix) and .env file.
config = BananaLabConfig()
