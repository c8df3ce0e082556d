"""Helper scripts deployed to the DHCP host."""

from __future__ import annotations

import hashlib

FAILOVER_SCOPE_SCRIPT_NAME = "Update-DhcpServerv4FailoverScope.ps1"

# Brings the scope list of a failover relationship to exactly -ScopeId:
# missing scopes are added, extra scopes are removed.
FAILOVER_SCOPE_SCRIPT = """\
[CmdletBinding()]
param(
    [Parameter(Mandatory = $true)][string]$Name,
    [Parameter(Mandatory = $true)][string[]]$ScopeId
)

$ErrorActionPreference = 'Stop'

$failover = Get-DhcpServerv4Failover -Name $Name
$current = @($failover.ScopeId | ForEach-Object { $_.IPAddressToString })

$missing = @($ScopeId | Where-Object { $current -notcontains $_ })
$extra = @($current | Where-Object { $ScopeId -notcontains $_ })

if ($missing.Count -gt 0) {
    Add-DhcpServerv4FailoverScope -Name $Name -ScopeId $missing
}
if ($extra.Count -gt 0) {
    Remove-DhcpServerv4FailoverScope -Name $Name -ScopeId $extra -Force
}
"""


def script_bytes() -> bytes:
    return FAILOVER_SCOPE_SCRIPT.encode("utf-8")


def script_sha256() -> str:
    """Upper-case hex digest, as Get-FileHash reports it."""
    return hashlib.sha256(script_bytes()).hexdigest().upper()


def script_path(script_dir: str) -> str:
    return f"{script_dir.rstrip('/')}/{FAILOVER_SCOPE_SCRIPT_NAME}"
