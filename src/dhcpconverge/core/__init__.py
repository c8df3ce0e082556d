"""Core modules for dhcpconverge - error taxonomy and exit codes."""

from dhcpconverge.core.errors import (
    ActionError,
    ConfigurationError,
    ConvergeError,
    CycleError,
    ExecutorError,
    ExitCode,
    ValidationError,
    format_error_message,
    main_with_error_handling,
)

__all__ = [
    "ExitCode",
    "ConvergeError",
    "ConfigurationError",
    "ExecutorError",
    "ValidationError",
    "CycleError",
    "ActionError",
    "main_with_error_handling",
    "format_error_message",
]
