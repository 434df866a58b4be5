"""Configuration: pydantic-settings model plus the YAML loader."""

from vecsearch.config.loader import load_settings
from vecsearch.config.settings import Settings

__all__ = ["Settings", "load_settings"]
