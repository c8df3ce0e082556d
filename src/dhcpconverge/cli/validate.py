"""
CLI command for validating a desired-configuration document.

Validation parses the document, expands it into actions and orders them, so
both schema errors and dependency cycles surface without touching the host.
"""

import json
from typing import Optional

from rich.markup import escape

from dhcpconverge.cli.ux import console, header, success, warning
from dhcpconverge.config import get_settings, load_document
from dhcpconverge.core.errors import ExitCode
from dhcpconverge.dhcp import ResourceCatalog, parse_desired_config
from dhcpconverge.engine import DependencyGraph
from dhcpconverge.executors import PowerShellExecutor


def validate_command(
    desired_yaml: Optional[str] = None,
    output_format: str = "text",
    strict: bool = False,
    verbose: bool = False,
) -> int:
    """
    Validate a desired configuration.

    Args:
        desired_yaml: Path to the desired-config YAML (discovered when omitted)
        output_format: Output format (text, json)
        strict: Treat warnings as errors
        verbose: List inapplicable actions

    Returns:
        Exit code (0 valid, 12 when strict and warnings were raised)
    """
    settings = get_settings()
    config = parse_desired_config(load_document(desired_yaml))
    catalog = ResourceCatalog(PowerShellExecutor(settings=settings), settings=settings)
    expanded = catalog.build(config)
    plan = DependencyGraph(expanded.actions).build(warnings=expanded.warnings)

    if output_format == "json":
        print(
            json.dumps(
                {
                    "host": config.host.fqdn,
                    "scopes": [scope.scope_id for scope in config.scopes],
                    "failovers": [failover.name for failover in config.failovers],
                    "actions": len(plan),
                    "inapplicable": list(expanded.inapplicable),
                    "warnings": list(plan.warnings),
                    "valid": not (strict and plan.warnings),
                },
                indent=2,
            )
        )
    else:
        header(f"Validate: {config.host.fqdn}")
        console.print(f"  [bold]Scopes:[/bold]     {len(config.scopes)}")
        console.print(f"  [bold]Failovers:[/bold]  {len(config.failovers)}")
        console.print(f"  [bold]Actions:[/bold]    {len(plan)}")
        if verbose and expanded.inapplicable:
            console.print()
            console.print("[muted]Not applicable for this configuration:[/muted]")
            for action_id in expanded.inapplicable:
                console.print(f"  [muted]└ {escape(action_id)}[/muted]")
        console.print()
        for message in plan.warnings:
            warning(escape(message))
        if not plan.warnings:
            success("Desired configuration is valid")

    if strict and plan.warnings:
        return ExitCode.VALIDATION_ERROR
    return ExitCode.SUCCESS
