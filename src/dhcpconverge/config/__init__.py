"""
dhcpconverge configuration.

Provides:
- Pydantic-based settings (environment variables, .env files)
- Desired-configuration document discovery and loading
"""

from dhcpconverge.config.loader import get_desired_config_path, load_document
from dhcpconverge.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
    "get_desired_config_path",
    "load_document",
]
