"""
Executor and StateQuery contracts.

The engine only needs exit-success/exit-failure semantics from an Executor,
plus captured output for queries. A StateQuery turns a query script into an
observed value, keeping absence distinct from empty or zero values.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Protocol, Sequence, runtime_checkable

from dhcpconverge.core.errors import ActionError
from dhcpconverge.engine.actions import ABSENT


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one command invocation."""

    exit_status: int
    output: str = ""
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_status == 0


@runtime_checkable
class Executor(Protocol):
    """Carries out corrective and observational commands."""

    def run(self, command: str, *, sensitive: Sequence[str] = ()) -> CommandResult:
        """Run a command. Timeouts and backend failures raise ActionError."""
        ...


@runtime_checkable
class StateQuery(Protocol):
    """Returns the current value named by a query, or ABSENT."""

    def query(self, script: str) -> Any:
        ...


class ExecutorStateQuery:
    """
    StateQuery backed by an Executor.

    Query scripts print a single JSON object: {"present": false} when the
    resource does not exist, {"present": true, "value": ...} otherwise.
    """

    def __init__(self, executor: Executor) -> None:
        self._executor = executor

    def query(self, script: str) -> Any:
        result = self._executor.run(script)
        if not result.ok:
            raise ActionError(
                f"query exited with status {result.exit_status}: {result.error.strip()}",
                details={"exit_status": result.exit_status},
            )
        return parse_query_output(result.output)


def parse_query_output(output: str) -> Any:
    """Decode query output. Raises ActionError when it is not a presence object."""
    text = output.strip()
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise ActionError(f"unparsable query output: {text[:200]!r}", cause=e) from e

    if not isinstance(payload, dict) or "present" not in payload:
        raise ActionError(f"unexpected query output: {text[:200]!r}")
    if not payload["present"]:
        return ABSENT
    return payload.get("value")
