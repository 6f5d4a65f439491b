"""
chartflow configuration.

Pydantic-based settings loaded from environment variables (CHARTFLOW_ prefix)
and an optional .env file.
"""

from chartflow.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
