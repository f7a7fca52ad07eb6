"""Configuration package for engine settings."""

from app.config.settings import settings, Settings, get_settings

__all__ = [
    "settings",
    "Settings",
    "get_settings",
]
