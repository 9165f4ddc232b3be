"""Configuration management."""

from .settings import Settings, get_settings, DEFAULT_COMPLETION_QUERY, COUNT_MODES

__all__ = [
    "Settings",
    "get_settings",
    "DEFAULT_COMPLETION_QUERY",
    "COUNT_MODES",
]
