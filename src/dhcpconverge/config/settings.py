"""
Runtime settings using Pydantic.

Provides environment-based configuration loading with DHCPCONVERGE_ prefix.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # PowerShell backend
    powershell_path: str = "powershell.exe"
    command_timeout: float = 300.0

    # Convergence
    max_workers: int = 1

    # Where helper scripts are deployed on the DHCP host
    script_dir: str = "C:/Windows/Temp"

    # Logging
    log_level: str = "INFO"

    # Desired-config document used when no path is given
    desired_config: str | None = None

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "DHCPCONVERGE_"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
