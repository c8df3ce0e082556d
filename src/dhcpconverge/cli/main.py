"""
dhcpconverge command line.

Usage:
    dhcpconverge validate [desired.yaml]
    dhcpconverge plan [desired.yaml]
    dhcpconverge apply [desired.yaml] [--yes] [--workers N]
"""

from __future__ import annotations

import argparse
import sys
from typing import Sequence

from rich.markup import escape

from dhcpconverge.cli.ux import error
from dhcpconverge.config import get_settings
from dhcpconverge.core.errors import ConvergeError, format_error_message, main_with_error_handling
from dhcpconverge.logging import configure_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dhcpconverge",
        description="Converge a Windows DHCP server to a declared configuration",
    )
    subparsers = parser.add_subparsers(dest="command")

    def add_common(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("desired_yaml", nargs="?", help="Path to desired-config YAML (discovered when omitted)")
        sub.add_argument("--output", choices=["text", "json"], default="text", help="Output format")
        sub.add_argument("-v", "--verbose", action="store_true", help="Show detailed output and debug logs")

    validate_parser = subparsers.add_parser("validate", help="Validate a desired configuration")
    add_common(validate_parser)
    validate_parser.add_argument("--strict", action="store_true", help="Treat warnings as errors")

    plan_parser = subparsers.add_parser("plan", help="Preview ordered actions (dry-run)")
    add_common(plan_parser)

    apply_parser = subparsers.add_parser("apply", help="Converge the host")
    add_common(apply_parser)
    apply_parser.add_argument("--workers", type=int, help="Actions to run concurrently (default: 1)")
    apply_parser.add_argument("-y", "--yes", action="store_true", help="Skip confirmation prompt")

    return parser


@main_with_error_handling()
def run(args: argparse.Namespace) -> int:
    try:
        if args.command == "validate":
            from dhcpconverge.cli.validate import validate_command

            return validate_command(
                args.desired_yaml,
                output_format=args.output,
                strict=args.strict,
                verbose=args.verbose,
            )

        if args.command == "plan":
            from dhcpconverge.cli.plan import plan_command

            return plan_command(args.desired_yaml, output_format=args.output, verbose=args.verbose)

        from dhcpconverge.cli.apply import apply_command

        return apply_command(
            args.desired_yaml,
            output_format=args.output,
            workers=args.workers,
            assume_yes=args.yes,
            verbose=args.verbose,
        )
    except ConvergeError as e:
        error(escape(format_error_message(e)))
        raise


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    configure_logging("DEBUG" if args.verbose else get_settings().log_level)
    sys.exit(run(args))


if __name__ == "__main__":
    main()
