"""
PowerShell command backend.

Runs each command in a fresh, non-interactive PowerShell process. Commands
that outlive the configured timeout are killed and surfaced as ActionError.
"""

from __future__ import annotations

import shutil
import subprocess
from typing import Sequence

import structlog

from dhcpconverge.config.settings import Settings, get_settings
from dhcpconverge.core.errors import ActionError, ExecutorError
from dhcpconverge.engine.actions import redact
from dhcpconverge.executors.base import CommandResult

logger = structlog.get_logger()


class PowerShellExecutor:
    """
    Executor that shells out to powershell.exe (or pwsh).

    Example:
        executor = PowerShellExecutor()
        result = executor.run("Get-DhcpServerSetting | ConvertTo-Json")
        if result.ok:
            print(result.output)
    """

    def __init__(
        self,
        powershell_path: str | None = None,
        timeout: float | None = None,
        settings: Settings | None = None,
    ):
        settings = settings or get_settings()
        self.powershell_path = powershell_path or settings.powershell_path
        self.timeout = timeout if timeout is not None else settings.command_timeout

    @property
    def is_available(self) -> bool:
        """Check if the PowerShell binary is on PATH."""
        return shutil.which(self.powershell_path) is not None

    def ensure_available(self) -> None:
        if not self.is_available:
            raise ExecutorError(
                f"PowerShell not found: {self.powershell_path}",
                {"hint": "set DHCPCONVERGE_POWERSHELL_PATH"},
            )

    def run(self, command: str, *, sensitive: Sequence[str] = ()) -> CommandResult:
        argv = [
            self.powershell_path,
            "-NoProfile",
            "-NonInteractive",
            "-ExecutionPolicy",
            "Bypass",
            "-Command",
            command,
        ]
        logger.debug("powershell_run", command=redact(command, sensitive), timeout=self.timeout)
        try:
            proc = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise ActionError(
                f"command timed out after {self.timeout:g}s",
                cause=e,
                details={"timeout": self.timeout},
            ) from e
        except OSError as e:
            raise ActionError(f"cannot start {self.powershell_path}: {e}", cause=e) from e

        if proc.returncode != 0:
            logger.debug(
                "powershell_nonzero_exit",
                exit_status=proc.returncode,
                stderr=redact(proc.stderr.strip(), sensitive)[:500],
            )
        return CommandResult(exit_status=proc.returncode, output=proc.stdout, error=proc.stderr)
