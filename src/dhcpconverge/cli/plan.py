"""
CLI command for previewing the ordered action plan.

Planning never contacts the DHCP host: it shows what would be checked, in
which order, and with which desired values.
"""

import json
from typing import Optional

from rich.markup import escape

from dhcpconverge.cli.ux import console, header, print_table, warning
from dhcpconverge.config import Settings, get_settings, load_document
from dhcpconverge.core.errors import ExitCode
from dhcpconverge.dhcp import ResourceCatalog
from dhcpconverge.engine import ConvergenceEngine, ExecutionPlan
from dhcpconverge.executors import PowerShellExecutor


def build_engine(workers: Optional[int] = None, settings: Optional[Settings] = None) -> ConvergenceEngine:
    """Engine wired to the PowerShell backend."""
    settings = settings or get_settings()
    executor = PowerShellExecutor(settings=settings)
    catalog = ResourceCatalog(executor, settings=settings)
    return ConvergenceEngine(catalog, max_workers=workers or settings.max_workers)


def _format_desired(value) -> str:
    if isinstance(value, list):
        return ", ".join(str(v) for v in value)
    return "" if value is None else str(value)


def print_plan_summary(plan: ExecutionPlan, desired_yaml: Optional[str] = None, verbose: bool = False) -> None:
    """Print the ordered plan as a table."""
    header(f"Plan: {len(plan)} actions")

    for message in plan.warnings:
        warning(escape(message))

    columns = ["#", "Action", "Resource", "Desired"]
    if verbose:
        columns.append("Requires")
    rows = []
    for entry in plan.describe():
        row = [str(entry["position"]), entry["action_id"], entry["resource_id"], _format_desired(entry["desired"])]
        if verbose:
            row.append(", ".join(plan.predecessors(entry["action_id"])))
        rows.append(row)
    print_table("Actions in execution order", columns, rows)

    console.print()
    console.print("[muted]To converge the host, run:[/muted]")
    command = f"dhcpconverge apply {desired_yaml}" if desired_yaml else "dhcpconverge apply"
    console.print(f"  [info]{command}[/info]")
    console.print()


def print_plan_json(plan: ExecutionPlan) -> None:
    """Print plan in JSON format."""
    output = {
        "total_actions": len(plan),
        "actions": plan.describe(),
        "warnings": list(plan.warnings),
    }
    print(json.dumps(output, indent=2))


def plan_command(
    desired_yaml: Optional[str] = None,
    output_format: str = "text",
    verbose: bool = False,
) -> int:
    """
    Preview the actions a convergence run would evaluate (dry-run).

    Args:
        desired_yaml: Path to the desired-config YAML (discovered when omitted)
        output_format: Output format (text, json)
        verbose: Show the direct prerequisites of each action

    Returns:
        Exit code (0 for success)
    """
    engine = build_engine()
    plan = engine.plan(load_document(desired_yaml))

    if output_format == "json":
        print_plan_json(plan)
    else:
        print_plan_summary(plan, desired_yaml, verbose=verbose)

    return ExitCode.SUCCESS
