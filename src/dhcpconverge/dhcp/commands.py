"""
PowerShell rendering for DHCP server commands and state queries.

Queries print one JSON object, {"present": false} when the object they look
up does not exist and {"present": true, "value": ...} otherwise, so that a
missing scope is never confused with an empty attribute.
"""

from __future__ import annotations

import base64
from typing import Any, Iterable

from dhcpconverge.dhcp.models import FailoverConfig, LoadBalance, ScopeConfig

ADMIN_GROUP = "DHCP Administrators"
SERVICE_NAME = "dhcpserver"
FEATURE_NAME = "DHCP"

OPTION_ROUTER = 3
OPTION_DNS_SERVER = 6
OPTION_DNS_DOMAIN = 15


def ps_quote(value: Any) -> str:
    """Single-quoted PowerShell string literal."""
    return "'" + str(value).replace("'", "''") + "'"


def ps_array(values: Iterable[Any]) -> str:
    return "@(" + ",".join(ps_quote(v) for v in values) + ")"


def ps_value(value: Any) -> str:
    """Render a Python value as a PowerShell argument."""
    if isinstance(value, bool):
        return "$true" if value else "$false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, (list, tuple)):
        return ps_array(value)
    return ps_quote(value)


def render_params(params: dict) -> str:
    return " ".join(f"-{name} {ps_value(value)}" for name, value in params.items())


def presence_query(getter: str, value: str | None = None) -> str:
    """Wrap a getter in the presence/value JSON protocol. `$o` names the result."""
    value_part = f"; value = ({value})" if value else ""
    return (
        f"$o = {getter} -ErrorAction SilentlyContinue; "
        "if ($null -eq $o) { ConvertTo-Json -Compress -InputObject @{ present = $false } } "
        f"else {{ ConvertTo-Json -Compress -Depth 3 -InputObject @{{ present = $true{value_part} }} }}"
    )


# --- server role ---------------------------------------------------------------


def feature_installed_query() -> str:
    return presence_query(f"Get-WindowsFeature -Name {FEATURE_NAME}", "$o.Installed")


def install_feature_command() -> str:
    return f"Install-WindowsFeature -Name {FEATURE_NAME} -IncludeManagementTools"


def security_group_query() -> str:
    return presence_query(f"Get-LocalGroup -Name {ps_quote(ADMIN_GROUP)}")


def add_security_groups_command() -> str:
    return "Add-DhcpServerSecurityGroup"


def group_members_query() -> str:
    return presence_query(
        f"Get-LocalGroupMember -Group {ps_quote(ADMIN_GROUP)}",
        "@($o | ForEach-Object { $_.Name })",
    )


def add_group_member_command(member: str) -> str:
    return f"Add-LocalGroupMember -Group {ps_quote(ADMIN_GROUP)} -Member {ps_quote(member)}"


def authorised_servers_query() -> str:
    return presence_query("Get-DhcpServerInDC", "@($o | ForEach-Object { $_.DnsName })")


def authorise_server_command(domain_user: str, domain_pass: str) -> str:
    """Add-DhcpServerInDC needs domain rights, so it runs under the domain credential."""
    return (
        f"$pass = ConvertTo-SecureString -String {ps_quote(domain_pass)} -AsPlainText -Force; "
        "$cred = New-Object -TypeName System.Management.Automation.PSCredential "
        f"-ArgumentList {ps_quote(domain_user)},$pass; "
        "$p = Start-Process powershell.exe -Credential $cred -NoNewWindow -Wait -PassThru "
        "-ArgumentList '-NoProfile','-Command','Add-DhcpServerInDC'; "
        "exit $p.ExitCode"
    )


def server_setting_query(prop: str) -> str:
    return presence_query("Get-DhcpServerSetting", f"$o.{prop}")


def set_server_setting_command(**params: Any) -> str:
    return f"Set-DhcpServerSetting {render_params(params)}"


def service_status_query() -> str:
    return presence_query(f"Get-Service -Name {SERVICE_NAME}", "$o.Status.ToString()")


def start_service_command() -> str:
    return f"Set-Service -Name {SERVICE_NAME} -StartupType Automatic; Start-Service -Name {SERVICE_NAME}"


def restart_service_command() -> str:
    return f"Restart-Service -Name {SERVICE_NAME} -Force"


# --- files ---------------------------------------------------------------------


def file_hash_query(path: str) -> str:
    return (
        f"if (Test-Path -LiteralPath {ps_quote(path)}) {{ "
        "ConvertTo-Json -Compress -InputObject @{ present = $true; "
        f"value = (Get-FileHash -LiteralPath {ps_quote(path)} -Algorithm SHA256).Hash }} }} "
        "else { ConvertTo-Json -Compress -InputObject @{ present = $false } }"
    )


def write_file_command(path: str, content: bytes) -> str:
    encoded = base64.b64encode(content).decode("ascii")
    return (
        f"[IO.File]::WriteAllBytes({ps_quote(path)}, "
        f"[Convert]::FromBase64String({ps_quote(encoded)}))"
    )


# --- scopes --------------------------------------------------------------------


def _scope_getter(scope_id: str) -> str:
    return f"Get-DhcpServerv4Scope -ScopeId {scope_id}"


def scope_query(scope_id: str, value: str | None = None) -> str:
    return presence_query(_scope_getter(scope_id), value)


def add_scope_command(scope: ScopeConfig) -> str:
    params = {
        "StartRange": scope.start_range,
        "EndRange": scope.end_range,
        "SubnetMask": scope.subnet_mask,
        "Name": scope.scope_name,
        "Description": scope.description,
        "ActivatePolicies": scope.activate_policies,
        "Delay": scope.delay,
        "LeaseDuration": scope.lease_duration,
        "MaxBootpClients": scope.max_bootp_clients,
        "State": scope.state,
        "Type": scope.type,
    }
    return f"Add-DhcpServerv4Scope {render_params(params)}"


def set_scope_command(scope_id: str, **params: Any) -> str:
    return f"Set-DhcpServerv4Scope -ScopeId {scope_id} {render_params(params)}"


def option_query(scope_id: str, option_id: int, as_list: bool = False) -> str:
    value = "@($o.Value)" if as_list else "($o.Value -join ',')"
    return presence_query(f"Get-DhcpServerv4OptionValue -ScopeId {scope_id} -OptionId {option_id}", value)


def set_option_command(scope_id: str, **params: Any) -> str:
    return f"Set-DhcpServerv4OptionValue -ScopeId {scope_id} {render_params(params)}"


# --- failover ------------------------------------------------------------------


def failover_query(name: str, value: str | None = None) -> str:
    return presence_query(f"Get-DhcpServerv4Failover -Name {ps_quote(name)}", value)


def mode_params(failover: FailoverConfig) -> dict:
    settings = failover.mode_settings
    if isinstance(settings, LoadBalance):
        return {"LoadBalancePercent": settings.percent}
    return {"ReservePercent": settings.reserve_percent, "ServerRole": settings.server_role.value}


def add_failover_command(failover: FailoverConfig, auto_state_transition: bool) -> str:
    params: dict = {
        "Name": failover.name,
        "ScopeId": list(failover.scope_ids),
        "PartnerServer": failover.partner_server,
        "AutoStateTransition": auto_state_transition,
        "MaxClientLeadTime": failover.max_client_lead_time,
        "SharedSecret": failover.shared_secret,
    }
    if auto_state_transition:
        params["StateSwitchInterval"] = failover.state_switch_interval
    params.update(mode_params(failover))
    return f"Add-DhcpServerv4Failover {render_params(params)} -Force"


def set_failover_command(name: str, **params: Any) -> str:
    return f"Set-DhcpServerv4Failover -Name {ps_quote(name)} {render_params(params)} -Force"


def update_failover_scopes_command(script_path: str, name: str, scope_ids: Iterable[str]) -> str:
    return f"& {ps_quote(script_path)} -Name {ps_quote(name)} -ScopeId {ps_array(scope_ids)}"
