"""
Unified error handling for dhcpconverge.

Plan-time errors (ValidationError, CycleError) abort the whole run before
anything executes. ActionError is raised by a single action's observe or
apply step and is contained by the convergence engine.

Exit Codes:
- 0: Success
- 1: Warning (run converged, some actions were skipped)
- 2: Failed (at least one action failed)
- 10: Configuration error
- 11: Executor error (command backend unavailable)
- 12: Validation error
- 13: Dependency cycle
- 127: Unknown/internal error
"""

from __future__ import annotations

import functools
import sys
import traceback
from enum import IntEnum
from typing import Any, Callable, TypeVar

import structlog

logger = structlog.get_logger()


class ExitCode(IntEnum):
    """Standardized exit codes for CLI commands."""

    SUCCESS = 0
    WARNING = 1
    FAILED = 2
    CONFIG_ERROR = 10
    EXECUTOR_ERROR = 11
    VALIDATION_ERROR = 12
    CYCLE_ERROR = 13
    UNKNOWN_ERROR = 127


class ConvergeError(Exception):
    """Base exception for dhcpconverge errors with exit code support."""

    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR
    show_traceback: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(ConvergeError):
    """Raised when settings or the desired-config file cannot be loaded."""

    exit_code = ExitCode.CONFIG_ERROR


class ExecutorError(ConvergeError):
    """Raised when the command backend itself is unusable."""

    exit_code = ExitCode.EXECUTOR_ERROR


class ValidationError(ConvergeError):
    """Raised for invalid desired-config input at plan time."""

    exit_code = ExitCode.VALIDATION_ERROR


class CycleError(ConvergeError):
    """Raised when dependency declarations contradict each other."""

    exit_code = ExitCode.CYCLE_ERROR

    def __init__(self, message: str, cycle: list[str] | None = None):
        super().__init__(message, {"cycle": " -> ".join(cycle)} if cycle else None)
        self.cycle = list(cycle or [])


class ActionError(ConvergeError):
    """Raised when an action's observation or apply step fails at runtime."""

    exit_code = ExitCode.FAILED

    def __init__(
        self,
        message: str,
        action_id: str | None = None,
        cause: BaseException | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.action_id = action_id
        self.cause = cause


# Type variable for decorated functions
F = TypeVar("F", bound=Callable[..., int])


def main_with_error_handling(
    *,
    show_traceback: bool = False,
    log_errors: bool = True,
) -> Callable[[F], F]:
    """
    Decorator for CLI main functions that provides unified error handling.

    Catches exceptions and converts them to appropriate exit codes with
    consistent error reporting.

    Args:
        show_traceback: If True, show full traceback for unexpected errors
        log_errors: If True, log errors to structlog

    Usage:
        @main_with_error_handling()
        def my_command() -> int:
            # command implementation
            return 0

    Exit codes:
        - ConvergeError subclasses: Uses the error's exit_code
        - KeyboardInterrupt: Returns 130 (standard for SIGINT)
        - Other exceptions: Returns 127 (unknown error)
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> int:
            try:
                return func(*args, **kwargs)
            except ConvergeError as e:
                if log_errors:
                    logger.error(
                        "command_error",
                        error_type=type(e).__name__,
                        message=e.message,
                        exit_code=e.exit_code,
                        **e.details,
                    )
                if e.show_traceback or show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return e.exit_code
            except KeyboardInterrupt:
                if log_errors:
                    logger.info("command_interrupted")
                return 130  # Standard exit code for SIGINT
            except Exception as e:
                if log_errors:
                    logger.error(
                        "unexpected_error",
                        error_type=type(e).__name__,
                        message=str(e),
                        exit_code=ExitCode.UNKNOWN_ERROR,
                    )
                if show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return ExitCode.UNKNOWN_ERROR

        return wrapper  # type: ignore[return-value]

    return decorator


def format_error_message(error: ConvergeError) -> str:
    """Format an error message for display to users."""
    msg = error.message
    if error.details:
        detail_str = ", ".join(f"{k}={v}" for k, v in error.details.items())
        msg = f"{msg} ({detail_str})"
    return msg
