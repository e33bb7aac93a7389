"""
Configuration management module.

Centralized settings for the store knowledge pipeline, backed by Pydantic
Settings with environment variable and ``.env`` support.
"""

from .settings import Settings, settings, get_settings

__all__ = ["Settings", "settings", "get_settings"]
