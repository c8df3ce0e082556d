"""
CLI command for converging the DHCP host to its desired configuration.
"""

import json
import signal
from contextlib import contextmanager
from typing import Iterator, Optional

from rich.markup import escape

from dhcpconverge.cli.plan import build_engine
from dhcpconverge.cli.ux import STATUS_STYLES, confirm, console, info, is_interactive, warning
from dhcpconverge.config import get_settings, load_document
from dhcpconverge.core.errors import ExitCode
from dhcpconverge.engine import CancellationToken, OutcomeStatus, RunReport
from dhcpconverge.executors import PowerShellExecutor
from dhcpconverge.logging import bind_context


def print_apply_summary(report: RunReport, verbose: bool = False) -> None:
    """Print one line per action, then totals."""
    console.print()

    for entry in report.entries:
        status = entry.status.value
        if entry.status is OutcomeStatus.UNCHANGED and not verbose:
            continue
        style = STATUS_STYLES[status]
        detail = f" [muted]({escape(entry.outcome.detail)})[/muted]" if entry.outcome.detail else ""
        console.print(f"  [{style}]{status:<10}[/{style}] {escape(entry.action_id)}{detail}")

    if verbose and report.excluded:
        console.print()
        console.print("[muted]Excluded at run time:[/muted]")
        for action_id in report.excluded:
            console.print(f"  [muted]└ {escape(action_id)}[/muted]")

    console.print()
    counts = report.counts
    totals = ", ".join(f"{counts[status.value]} {status.value}" for status in OutcomeStatus)
    duration = f" in {report.duration_seconds:.1f}s" if report.duration_seconds > 0 else ""
    if report.state == "cancelled":
        console.print(f"[bold yellow]Run cancelled{duration}:[/bold yellow] {totals}")
    elif report.success:
        console.print(f"[bold green]Converged{duration}:[/bold green] {totals}")
    else:
        console.print(f"[bold red]Converged with failures{duration}:[/bold red] {totals}")

    if report.warnings:
        console.print()
        console.print("[yellow]Warnings:[/yellow]")
        for message in report.warnings:
            console.print(f"  [dim]•[/dim] {escape(message)}")
    console.print()


def print_apply_json(report: RunReport) -> None:
    """Print run report in JSON format."""
    print(json.dumps(report.to_dict(), indent=2))


def exit_code_for(report: RunReport) -> ExitCode:
    """Failed entries outrank skipped ones; a cancelled run is a warning."""
    if not report.success:
        return ExitCode.FAILED
    if report.has_skipped or report.state == "cancelled":
        return ExitCode.WARNING
    return ExitCode.SUCCESS


@contextmanager
def cancel_on_interrupt(token: CancellationToken) -> Iterator[None]:
    """Turn Ctrl-C into a cooperative cancel for the duration of a run."""

    def handler(signum, frame):
        warning("Interrupted: finishing the current action, skipping the rest")
        token.cancel()

    previous = signal.signal(signal.SIGINT, handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def apply_command(
    desired_yaml: Optional[str] = None,
    output_format: str = "text",
    workers: Optional[int] = None,
    assume_yes: bool = False,
    verbose: bool = False,
) -> int:
    """
    Converge the host.

    Args:
        desired_yaml: Path to the desired-config YAML (discovered when omitted)
        output_format: Output format (text, json)
        workers: Concurrent actions (defaults to the max_workers setting)
        assume_yes: Skip the confirmation prompt
        verbose: Also list unchanged and excluded actions

    Returns:
        Exit code (0 converged, 1 skipped actions, 2 failed actions)
    """
    settings = get_settings()
    PowerShellExecutor(settings=settings).ensure_available()

    engine = build_engine(workers, settings)
    plan = engine.plan(load_document(desired_yaml))
    log = bind_context(command="apply", actions=len(plan))

    if not assume_yes and output_format == "text" and is_interactive():
        if not confirm(f"Converge {len(plan)} actions on this host?", default=False):
            info("Apply cancelled")
            log.info("apply_declined")
            return ExitCode.SUCCESS

    token = CancellationToken()
    with cancel_on_interrupt(token):
        report = engine.execute(plan, cancel_token=token)

    if output_format == "json":
        print_apply_json(report)
    else:
        print_apply_summary(report, verbose=verbose)

    code = exit_code_for(report)
    log.info("apply_finished", run_id=report.run_id, exit_code=int(code))
    return code
