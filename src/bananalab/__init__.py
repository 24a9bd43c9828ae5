"""BananaLab - preset-driven AI image generation service."""

__version__ = "0.3.0"

from bananalab.core.config import BananaLabConfig, config

__all__ = [
    "BananaLabConfig",
    "config",
]
