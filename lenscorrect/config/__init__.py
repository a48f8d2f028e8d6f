"""Configuration loading and validation."""

from lenscorrect.config.config_manager import ConfigManager

__all__ = ["ConfigManager"]
