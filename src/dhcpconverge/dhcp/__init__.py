"""Windows DHCP server resources: desired-config models, parsing and the action catalog."""

from dhcpconverge.dhcp.catalog import CatalogResult, ResourceCatalog
from dhcpconverge.dhcp.models import (
    DesiredConfig,
    FailoverConfig,
    FailoverMode,
    HostFacts,
    HotStandby,
    LoadBalance,
    ScopeConfig,
    ServerConfig,
    ServerRole,
)
from dhcpconverge.dhcp.parser import parse_desired_config

__all__ = [
    "CatalogResult",
    "DesiredConfig",
    "FailoverConfig",
    "FailoverMode",
    "HostFacts",
    "HotStandby",
    "LoadBalance",
    "ResourceCatalog",
    "ScopeConfig",
    "ServerConfig",
    "ServerRole",
    "parse_desired_config",
]
