"""
Desired-configuration document parsing and validation.

Turns a plain mapping (usually loaded from YAML) into a DesiredConfig.
Every problem found here is a ValidationError: nothing executes when the
input is wrong.

Only the snake_case schema is accepted. Documents written for the older
flattened schema (startrange, conflictdetectionattempts, ...) are rejected
with a pointer to the canonical key rather than merged.
"""

from __future__ import annotations

import ipaddress
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from dhcpconverge.core.errors import ValidationError
from dhcpconverge.dhcp.models import (
    SCOPE_STATES,
    SCOPE_TYPES,
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
from dhcpconverge.engine.comparator import format_duration, parse_boolean, parse_duration

TOP_LEVEL_KEYS = ("host", "server", "scopes", "failovers")
HOST_KEYS = ("fqdn", "osfamily")
SERVER_KEYS = (
    "domain_user",
    "domain_pass",
    "conflict_detection_attempts",
    "populate_security_group",
    "administrators",
)
SCOPE_KEYS = (
    "scope_id",
    "start_range",
    "end_range",
    "subnet_mask",
    "scope_name",
    "description",
    "dns_domain",
    "dns_server",
    "router",
    "activate_policies",
    "delay",
    "lease_duration",
    "max_bootp_clients",
    "state",
    "type",
)
FAILOVER_KEYS = (
    "name",
    "partner_server",
    "scope_id",
    "mode",
    "loadbalance_percent",
    "reserve_percent",
    "server_role",
    "max_client_lead_time",
    "state_switch_interval",
    "shared_secret",
)
LOADBALANCE_ONLY = ("loadbalance_percent",)
HOTSTANDBY_ONLY = ("reserve_percent", "server_role")

MAX_CONFLICT_DETECTION_ATTEMPTS = 5
MAX_DELAY_MS = 65535
MAX_BOOTP_CLIENTS = 4294967295


def parse_desired_config(document: Mapping[str, Any]) -> DesiredConfig:
    """Validate a desired-configuration document and build a DesiredConfig."""
    if not isinstance(document, Mapping):
        raise ValidationError("Desired configuration must be a mapping")
    _check_keys(document, TOP_LEVEL_KEYS, "document")

    host = _parse_host(document.get("host"))
    server = _parse_server(_mapping(document.get("server"), "server"))
    scopes = _parse_scopes(document.get("scopes") or {}, host)

    warnings: List[str] = []
    failovers = _parse_failovers(document.get("failovers") or [], host, scopes, warnings)

    return DesiredConfig(
        host=host,
        server=server,
        scopes=scopes,
        failovers=failovers,
        warnings=tuple(warnings),
    )


def _parse_host(raw: Any) -> HostFacts:
    data = _mapping(raw, "host")
    _check_keys(data, HOST_KEYS, "host")
    fqdn = _string(data, "fqdn", "host", required=True)
    osfamily = _string(data, "osfamily", "host") or "windows"
    if osfamily.lower() != "windows":
        raise ValidationError(
            f"DHCP server management is not supported on {osfamily}",
            {"osfamily": osfamily},
        )
    return HostFacts(fqdn=fqdn, osfamily=osfamily.lower())


def _parse_server(data: Mapping[str, Any]) -> ServerConfig:
    _check_keys(data, SERVER_KEYS, "server")
    administrators = data.get("administrators") or []
    if isinstance(administrators, str):
        administrators = [administrators]
    if not isinstance(administrators, list) or not all(isinstance(a, str) and a.strip() for a in administrators):
        raise ValidationError("server.administrators must be a list of account names")

    return ServerConfig(
        domain_user=_string(data, "domain_user", "server", required=True),
        domain_pass=_string(data, "domain_pass", "server", required=True, strip=False),
        conflict_detection_attempts=_integer(
            data, "conflict_detection_attempts", "server", 0, 0, MAX_CONFLICT_DETECTION_ATTEMPTS
        ),
        populate_security_group=_boolean(data, "populate_security_group", "server", True),
        administrators=tuple(a.strip() for a in administrators),
    )


def _parse_scopes(raw: Any, host: HostFacts) -> Tuple[ScopeConfig, ...]:
    if isinstance(raw, Mapping):
        entries = [(str(key), _mapping(value, f"scopes.{key}")) for key, value in raw.items()]
    elif isinstance(raw, list):
        entries = []
        for i, value in enumerate(raw):
            item = _mapping(value, f"scopes[{i}]")
            entries.append((_string(item, "scope_id", f"scopes[{i}]", required=True), item))
    else:
        raise ValidationError("scopes must be a mapping of scope id to settings or a list")

    scopes: List[ScopeConfig] = []
    seen: set = set()
    for scope_id, data in entries:
        if scope_id in seen:
            raise ValidationError(f"Duplicate scope: {scope_id}")
        seen.add(scope_id)
        scopes.append(_parse_scope(scope_id, data, host))
    return tuple(scopes)


def _parse_scope(scope_id: str, data: Mapping[str, Any], host: HostFacts) -> ScopeConfig:
    where = f"scopes.{scope_id}"
    _check_keys(data, SCOPE_KEYS, where)
    if "scope_id" in data and str(data["scope_id"]) != scope_id:
        raise ValidationError(f"{where}.scope_id does not match the scope key")

    _ipv4(scope_id, f"{where} id")
    subnet_mask = _ipv4(_string(data, "subnet_mask", where, required=True), f"{where}.subnet_mask")
    try:
        network = ipaddress.IPv4Network(f"{scope_id}/{subnet_mask}", strict=True)
    except ValueError as e:
        raise ValidationError(f"{where}: {scope_id}/{subnet_mask} is not a network: {e}") from e

    start = _ipv4(_string(data, "start_range", where, required=True), f"{where}.start_range")
    end = _ipv4(_string(data, "end_range", where, required=True), f"{where}.end_range")
    for key, address in (("start_range", start), ("end_range", end)):
        if ipaddress.IPv4Address(address) not in network:
            raise ValidationError(f"{where}.{key} {address} is outside {network}")
    if ipaddress.IPv4Address(start) > ipaddress.IPv4Address(end):
        raise ValidationError(f"{where}: start_range {start} is after end_range {end}")

    dns_server = None
    if data.get("dns_server") is not None:
        dns_server = tuple(
            _ipv4(v, f"{where}.dns_server") for v in _string_list(data["dns_server"], f"{where}.dns_server")
        )
    router = None
    if data.get("router") is not None:
        router = _ipv4(str(data["router"]), f"{where}.router")

    dns_domain = _string(data, "dns_domain", where) or host.domain or None
    lease_duration = _duration(data, "lease_duration", where, "8.00:00:00")
    if parse_duration(lease_duration) <= timedelta(0):
        raise ValidationError(f"{where}.lease_duration must be positive")

    return ScopeConfig(
        scope_id=scope_id,
        start_range=start,
        end_range=end,
        subnet_mask=subnet_mask,
        scope_name=_string(data, "scope_name", where, required=True),
        description=_string(data, "description", where, strip=False) or "",
        dns_domain=dns_domain,
        dns_server=dns_server,
        router=router,
        activate_policies=_boolean(data, "activate_policies", where, True),
        delay=_integer(data, "delay", where, 0, 0, MAX_DELAY_MS),
        lease_duration=lease_duration,
        max_bootp_clients=_integer(data, "max_bootp_clients", where, MAX_BOOTP_CLIENTS, 0, MAX_BOOTP_CLIENTS),
        state=_choice(data, "state", where, "active", SCOPE_STATES),
        type=_choice(data, "type", where, "dhcp", SCOPE_TYPES),
    )


def _parse_failovers(
    raw: Any,
    host: HostFacts,
    scopes: Tuple[ScopeConfig, ...],
    warnings: List[str],
) -> Tuple[FailoverConfig, ...]:
    if isinstance(raw, Mapping):
        items = [dict(_mapping(value, f"failovers.{key}"), name=str(key)) for key, value in raw.items()]
    elif isinstance(raw, list):
        items = [_mapping(value, f"failovers[{i}]") for i, value in enumerate(raw)]
    else:
        raise ValidationError("failovers must be a list or a mapping of name to settings")

    failovers: List[FailoverConfig] = []
    names: set = set()
    owners: Dict[str, str] = {}
    for i, data in enumerate(items):
        failover = _parse_failover(data, f"failovers[{i}]", host, warnings)
        if failover.name in names:
            raise ValidationError(f"Duplicate failover relationship: {failover.name}")
        for scope_id in failover.scope_ids:
            if scope_id in owners:
                raise ValidationError(
                    f"Scope {scope_id} is in both {owners[scope_id]} and {failover.name}"
                )
            owners[scope_id] = failover.name
        names.add(failover.name)
        failovers.append(failover)
    return tuple(failovers)


def _parse_failover(
    data: Mapping[str, Any],
    where: str,
    host: HostFacts,
    warnings: List[str],
) -> FailoverConfig:
    _check_keys(data, FAILOVER_KEYS, where)
    partner = _string(data, "partner_server", where, required=True)
    if partner.casefold() in (host.fqdn.casefold(), host.hostname.casefold()):
        raise ValidationError(f"{where}.partner_server must differ from the local server")

    if data.get("scope_id") is None:
        raise ValidationError(f"{where}.scope_id is required")
    scope_ids = tuple(_ipv4(v, f"{where}.scope_id") for v in _string_list(data["scope_id"], f"{where}.scope_id"))
    if len(set(scope_ids)) != len(scope_ids):
        raise ValidationError(f"{where}.scope_id lists a scope twice")

    name = _string(data, "name", where) or f"{host.hostname} <-> {partner.split('.', 1)[0]}"
    mode = FailoverMode(_choice(data, "mode", where, "loadbalance", [m.value for m in FailoverMode]))

    if mode is FailoverMode.LOADBALANCE:
        mode_settings: Any = LoadBalance(percent=_integer(data, "loadbalance_percent", where, 50, 0, 100))
        ignored = [key for key in HOTSTANDBY_ONLY if key in data]
    else:
        mode_settings = HotStandby(
            reserve_percent=_integer(data, "reserve_percent", where, 5, 0, 100),
            server_role=ServerRole(
                _choice(data, "server_role", where, "active", [r.value for r in ServerRole])
            ),
        )
        ignored = [key for key in LOADBALANCE_ONLY if key in data]
    for key in ignored:
        warnings.append(f"failover {name}: {key} ignored in {mode.value} mode")

    return FailoverConfig(
        name=name,
        local_server=host.fqdn,
        partner_server=partner,
        scope_ids=scope_ids,
        mode_settings=mode_settings,
        max_client_lead_time=_duration(data, "max_client_lead_time", where, "1:00:00"),
        state_switch_interval=_duration(data, "state_switch_interval", where, "1:00:00"),
        shared_secret=_string(data, "shared_secret", where, strip=False) or "",
    )


# --- field helpers -----------------------------------------------------------


def _check_keys(data: Mapping[str, Any], allowed: Iterable[str], where: str) -> None:
    allowed = tuple(allowed)
    flattened = {key.replace("_", ""): key for key in allowed}
    for key in data:
        if key in allowed:
            continue
        canonical = flattened.get(str(key).replace("_", "").lower())
        if canonical is not None:
            raise ValidationError(
                f"{where}.{key} uses the legacy schema and is not supported; use {canonical}",
                {"key": key, "canonical": canonical},
            )
        raise ValidationError(f"Unknown field {where}.{key}", {"allowed": ", ".join(allowed)})


def _mapping(raw: Any, where: str) -> Mapping[str, Any]:
    if raw is None:
        raise ValidationError(f"{where} is required")
    if not isinstance(raw, Mapping):
        raise ValidationError(f"{where} must be a mapping")
    return raw


def _string(
    data: Mapping[str, Any],
    key: str,
    where: str,
    required: bool = False,
    strip: bool = True,
) -> Optional[str]:
    value = data.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{where}.{key} is required")
        if value is None:
            return None
        return "" if strip else value
    if isinstance(value, (bool, list, dict)):
        raise ValidationError(f"{where}.{key} must be a string")
    text = str(value)
    return text.strip() if strip else text


def _string_list(value: Any, where: str) -> List[str]:
    if isinstance(value, (list, tuple)):
        if not value:
            raise ValidationError(f"{where} must not be empty")
        return [str(v).strip() for v in value]
    return [str(value).strip()]


def _value(data: Mapping[str, Any], key: str, default: Any) -> Any:
    # An empty YAML value (`delay:`) means the default.
    value = data.get(key)
    return default if value is None else value


def _integer(data: Mapping[str, Any], key: str, where: str, default: int, low: int, high: int) -> int:
    value = _value(data, key, default)
    if isinstance(value, bool):
        raise ValidationError(f"{where}.{key} must be an integer")
    try:
        number = int(str(value).strip())
    except ValueError as e:
        raise ValidationError(f"{where}.{key} must be an integer, got {value!r}") from e
    if not low <= number <= high:
        raise ValidationError(
            f"{where}.{key} must be between {low} and {high}, got {number}",
            {"key": key, "value": number},
        )
    return number


def _boolean(data: Mapping[str, Any], key: str, where: str, default: bool) -> bool:
    value = _value(data, key, default)
    try:
        return parse_boolean(value)
    except ValueError as e:
        raise ValidationError(f"{where}.{key} must be true or false, got {value!r}") from e


def _choice(data: Mapping[str, Any], key: str, where: str, default: str, choices: Iterable[str]) -> str:
    choices = tuple(choices)
    value = str(_value(data, key, default)).strip().lower()
    if value not in choices:
        raise ValidationError(f"{where}.{key} must be one of {', '.join(choices)}, got {value!r}")
    return value


def _duration(data: Mapping[str, Any], key: str, where: str, default: str) -> str:
    # Unquoted 1:00:00 reaches us as the YAML 1.1 sexagesimal integer 3600.
    value = _value(data, key, default)
    try:
        span = parse_duration(value)
    except ValueError as e:
        raise ValidationError(f"{where}.{key} is not a time span: {value!r}") from e
    if span < timedelta(0):
        raise ValidationError(f"{where}.{key} must not be negative")
    return format_duration(span)


def _ipv4(value: Any, where: str) -> str:
    try:
        return str(ipaddress.IPv4Address(str(value).strip()))
    except ValueError as e:
        raise ValidationError(f"{where}: {value!r} is not an IPv4 address") from e
