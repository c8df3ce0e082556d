"""Command backends and state queries used by resource actions."""

from dhcpconverge.executors.base import (
    CommandResult,
    Executor,
    ExecutorStateQuery,
    StateQuery,
    parse_query_output,
)
from dhcpconverge.executors.powershell import PowerShellExecutor

__all__ = [
    "CommandResult",
    "Executor",
    "ExecutorStateQuery",
    "PowerShellExecutor",
    "StateQuery",
    "parse_query_output",
]
