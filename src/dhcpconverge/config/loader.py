"""
Desired-configuration document loading.

Search order:
1. Explicit path (command line argument)
2. DHCPCONVERGE_DESIRED_CONFIG setting
3. .dhcpconverge/desired.yaml (project root)
4. ~/.dhcpconverge/desired.yaml (user home)
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog
import yaml

from dhcpconverge.config.settings import get_settings
from dhcpconverge.core.errors import ConfigurationError

logger = structlog.get_logger()

DEFAULT_FILENAME = "desired.yaml"


def get_desired_config_path(explicit_path: str | Path | None = None) -> Path | None:
    """
    Find the desired-configuration document to use.

    Returns:
        Path to the document or None if not found
    """
    if explicit_path:
        path = Path(explicit_path)
        if path.exists():
            return path
        return None

    configured = get_settings().desired_config
    if configured:
        path = Path(configured)
        return path if path.exists() else None

    cwd_config = Path.cwd() / ".dhcpconverge" / DEFAULT_FILENAME
    if cwd_config.exists():
        return cwd_config

    home_config = Path.home() / ".dhcpconverge" / DEFAULT_FILENAME
    if home_config.exists():
        return home_config

    return None


def load_document(explicit_path: str | Path | None = None) -> dict[str, Any]:
    """Load the desired-configuration document as a plain mapping."""
    path = get_desired_config_path(explicit_path)
    if path is None:
        raise ConfigurationError(
            "Desired configuration not found",
            {"path": str(explicit_path) if explicit_path else DEFAULT_FILENAME},
        )

    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Cannot read {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Desired configuration must be a mapping, got {type(data).__name__}",
            {"path": str(path)},
        )

    logger.debug("loaded_desired_config", path=str(path))
    return data
