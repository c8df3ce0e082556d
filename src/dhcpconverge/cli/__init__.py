"""
CLI commands for dhcpconverge.
"""

from dhcpconverge.cli.apply import apply_command
from dhcpconverge.cli.plan import plan_command
from dhcpconverge.cli.validate import validate_command

__all__ = [
    "apply_command",
    "plan_command",
    "validate_command",
]
