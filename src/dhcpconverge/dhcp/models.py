"""
Desired-configuration models for a Windows DHCP server.

All models are frozen: a DesiredConfig is built once per run from user input
and never mutated while the run executes.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional, Tuple, Union


class FailoverMode(Enum):
    """Failover relationship mode."""

    LOADBALANCE = "loadbalance"
    HOTSTANDBY = "hotstandby"


class ServerRole(Enum):
    """Role of the local server in a hot-standby relationship."""

    ACTIVE = "active"
    STANDBY = "standby"


SCOPE_STATES = ("active", "inactive")
SCOPE_TYPES = ("dhcp", "bootp", "both")


@dataclass(frozen=True)
class HostFacts:
    """Facts about the machine being converged."""

    fqdn: str
    osfamily: str = "windows"

    @property
    def hostname(self) -> str:
        return self.fqdn.split(".", 1)[0]

    @property
    def domain(self) -> str:
        return self.fqdn.split(".", 1)[1] if "." in self.fqdn else ""


@dataclass(frozen=True)
class ServerConfig:
    """Server role: security groups, AD authorisation and server settings."""

    domain_user: str
    domain_pass: str = field(repr=False)
    conflict_detection_attempts: int = 0
    populate_security_group: bool = True
    administrators: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ScopeConfig:
    """An IPv4 scope keyed by its subnet id."""

    scope_id: str
    start_range: str
    end_range: str
    subnet_mask: str
    scope_name: str
    description: str = ""
    dns_domain: Optional[str] = None
    dns_server: Optional[Tuple[str, ...]] = None
    router: Optional[str] = None
    activate_policies: bool = True
    delay: int = 0
    lease_duration: str = "8.00:00:00"
    max_bootp_clients: int = 4294967295
    state: str = "active"
    type: str = "dhcp"

    @property
    def resource_id(self) -> str:
        return f"scope[{self.scope_id}]"


@dataclass(frozen=True)
class LoadBalance:
    """Load-balance mode settings."""

    percent: int = 50

    mode = FailoverMode.LOADBALANCE


@dataclass(frozen=True)
class HotStandby:
    """Hot-standby mode settings."""

    reserve_percent: int = 5
    server_role: ServerRole = ServerRole.ACTIVE

    mode = FailoverMode.HOTSTANDBY


ModeSettings = Union[LoadBalance, HotStandby]


@dataclass(frozen=True)
class FailoverConfig:
    """A failover relationship between this server and one partner."""

    name: str
    local_server: str
    partner_server: str
    scope_ids: Tuple[str, ...]
    mode_settings: ModeSettings = field(default_factory=LoadBalance)
    max_client_lead_time: str = "1:00:00"
    state_switch_interval: str = "1:00:00"
    shared_secret: str = field(default="", repr=False)

    @property
    def mode(self) -> FailoverMode:
        return self.mode_settings.mode

    @property
    def resource_id(self) -> str:
        return f"failover[{self.name}]"


@dataclass(frozen=True)
class DesiredConfig:
    """Complete desired state for one DHCP server."""

    host: HostFacts
    server: ServerConfig
    scopes: Tuple[ScopeConfig, ...] = ()
    failovers: Tuple[FailoverConfig, ...] = ()
    warnings: Tuple[str, ...] = ()

    def scope(self, scope_id: str) -> Optional[ScopeConfig]:
        for scope in self.scopes:
            if scope.scope_id == scope_id:
                return scope
        return None

    def resources(self) -> Mapping[str, Mapping[str, Any]]:
        """Read-only view: resource id -> attribute name -> desired value."""
        server = asdict(self.server)
        server["domain_pass"] = "********"
        view: dict = {"server": MappingProxyType(server)}
        for scope in self.scopes:
            view[scope.resource_id] = MappingProxyType(asdict(scope))
        for failover in self.failovers:
            attrs = asdict(failover)
            attrs.pop("mode_settings")
            attrs["shared_secret"] = "********" if failover.shared_secret else ""
            attrs["mode"] = failover.mode.value
            if isinstance(failover.mode_settings, LoadBalance):
                attrs["loadbalance_percent"] = failover.mode_settings.percent
            else:
                attrs["reserve_percent"] = failover.mode_settings.reserve_percent
                attrs["server_role"] = failover.mode_settings.server_role.value
            view[failover.resource_id] = MappingProxyType(attrs)
        return MappingProxyType(view)
