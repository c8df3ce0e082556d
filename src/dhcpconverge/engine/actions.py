"""
Resource actions: the unit of convergence.

Each action knows how to observe one attribute of one resource, whether the
observation already satisfies the desired value, and how to correct it.
Command-backed variants delegate to an injected Executor and StateQuery.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping, Sequence

import structlog

from dhcpconverge.core.errors import ActionError
from dhcpconverge.engine.comparator import ValueComparator, ValueKind, default_comparator

if TYPE_CHECKING:
    from dhcpconverge.engine.results import Outcome
    from dhcpconverge.executors.base import Executor, StateQuery

logger = structlog.get_logger()


class _Absent:
    """Marker for a resource or attribute that does not exist on the host."""

    _instance: _Absent | None = None

    def __new__(cls) -> _Absent:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False


ABSENT = _Absent()

RuntimeGuard = Callable[[Mapping[str, "Outcome"]], bool]


@dataclass(frozen=True)
class Probe:
    """A query script whose output describes the observed value."""

    script: str
    kind: ValueKind = ValueKind.SCALAR


class ResourceAction(ABC):
    """
    A named unit of work with a desired-state predicate and an apply step.

    Attributes:
        action_id: Unique name, e.g. "set 192.168.10.0 dns server"
        resource_id: Owning resource, e.g. "scope[192.168.10.0]"
        attribute: Target attribute name
        desired: Desired value (ignored when ensure_absent is set)
        kind: How desired and observed values are compared
        requires: Actions that must run before this one
        before: Actions this one must precede
        notify: Actions that run after this one and refresh when it applies
        applicability: Plan-time predicate; inapplicable actions never reach a plan
        runtime_guard: Run-time predicate over outcomes recorded so far
    """

    def __init__(
        self,
        action_id: str,
        resource_id: str,
        attribute: str,
        desired: Any = None,
        *,
        kind: ValueKind = ValueKind.SCALAR,
        requires: Iterable[str] = (),
        before: Iterable[str] = (),
        notify: Iterable[str] = (),
        applicability: Callable[[], bool] | None = None,
        runtime_guard: RuntimeGuard | None = None,
        ensure_absent: bool = False,
        comparator: ValueComparator | None = None,
    ) -> None:
        self.action_id = action_id
        self.resource_id = resource_id
        self.attribute = attribute
        self.desired = desired
        self.kind = kind
        self.requires = frozenset(requires)
        self.before = frozenset(before)
        self.notify = frozenset(notify)
        self.applicability = applicability
        self.runtime_guard = runtime_guard
        self.ensure_absent = ensure_absent
        self.comparator = comparator or default_comparator

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.action_id!r})"

    @abstractmethod
    def observe(self) -> Any:
        """Return the current value, or ABSENT."""

    @abstractmethod
    def apply(self) -> None:
        """Correct the live state. Raises ActionError on failure."""

    def refresh(self) -> None:
        """React to a notifying action that applied a change."""

    def is_applicable(self) -> bool:
        return self.applicability() if self.applicability is not None else True

    def is_satisfied(self) -> bool:
        observed = self.observe()
        if observed is ABSENT:
            return self.ensure_absent
        if self.ensure_absent:
            return False
        return self.comparator.equal(self.desired, observed, self.kind)

    def describe(self) -> dict[str, Any]:
        """Plan-time summary used by the CLI."""
        return {
            "action_id": self.action_id,
            "resource_id": self.resource_id,
            "attribute": self.attribute,
            "desired": "absent" if self.ensure_absent else _render(self.desired),
            "kind": self.kind.value,
            "requires": sorted(self.requires),
            "before": sorted(self.before),
            "notify": sorted(self.notify),
        }


def _render(value: Any) -> Any:
    if isinstance(value, (list, tuple, set, frozenset)):
        return [str(v) for v in value]
    if isinstance(value, (bool, int, float)) or value is None:
        return value
    return str(value)


def redact(text: str, secrets: Sequence[str]) -> str:
    """Replace secret material in command text or output."""
    for secret in secrets:
        if secret:
            text = text.replace(secret, "********")
    return text


class CommandAction(ResourceAction):
    """Action observed through a StateQuery probe and applied through an Executor."""

    def __init__(
        self,
        action_id: str,
        resource_id: str,
        attribute: str,
        desired: Any = None,
        *,
        probe: Probe,
        command: str | None,
        executor: Executor,
        state_query: StateQuery,
        refresh_command: str | None = None,
        secrets: Sequence[str] = (),
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("kind", probe.kind)
        super().__init__(action_id, resource_id, attribute, desired, **kwargs)
        self.probe = probe
        self.command = command
        self.refresh_command = refresh_command
        self.executor = executor
        self.state_query = state_query
        self.secrets = tuple(secrets)

    def observe(self) -> Any:
        observed = self.state_query.query(self.probe.script)
        # A present-but-null scalar reads as empty text, never as absence.
        if observed is None and self.kind is ValueKind.SCALAR:
            return ""
        return observed

    def apply(self) -> None:
        if self.command is None:
            raise ActionError(f"{self.action_id}: no corrective command", self.action_id)
        self._run(self.command)

    def refresh(self) -> None:
        if self.refresh_command is not None:
            self._run(self.refresh_command)

    def _run(self, command: str) -> None:
        logger.debug("action_command", action=self.action_id, command=redact(command, self.secrets))
        result = self.executor.run(command, sensitive=self.secrets)
        if not result.ok:
            output = redact((result.error or result.output or "").strip(), self.secrets)
            raise ActionError(
                f"{self.action_id}: command exited with status {result.exit_status}"
                + (f": {output}" if output else ""),
                self.action_id,
                details={"exit_status": result.exit_status},
            )


class AttributeAction(CommandAction):
    """Keeps one attribute of an existing resource at its desired value."""


class PresenceAction(CommandAction):
    """
    Creation action: satisfied iff the resource exists at all.

    Attribute drift on an existing resource is the concern of the
    AttributeActions that require this one.
    """

    def __init__(self, action_id: str, resource_id: str, **kwargs: Any) -> None:
        super().__init__(action_id, resource_id, "ensure", "present", **kwargs)

    def is_satisfied(self) -> bool:
        present = self.observe() is not ABSENT
        return not present if self.ensure_absent else present


class MembershipAction(CommandAction):
    """Satisfied iff the desired member appears in the observed collection."""

    def __init__(self, *args: Any, case_sensitive: bool = False, **kwargs: Any) -> None:
        kwargs.setdefault("kind", ValueKind.UNORDERED_SET)
        super().__init__(*args, **kwargs)
        self.case_sensitive = case_sensitive

    def observe(self) -> Any:
        observed = self.state_query.query(self.probe.script)
        if observed is ABSENT or observed is None:
            return ABSENT
        if isinstance(observed, (list, tuple)):
            return [str(item).strip() for item in observed]
        return [str(observed).strip()]

    def is_satisfied(self) -> bool:
        observed = self.observe()
        if observed is ABSENT:
            return self.ensure_absent
        members = {self._fold(item) for item in observed}
        contained = self._fold(str(self.desired)) in members
        return not contained if self.ensure_absent else contained

    def _fold(self, value: str) -> str:
        return value if self.case_sensitive else value.casefold()


class ImmutableAttributeAction(CommandAction):
    """An attribute that can be checked but not changed in place."""

    def __init__(self, *args: Any, reason: str, **kwargs: Any) -> None:
        super().__init__(*args, command=None, **kwargs)
        self.reason = reason

    def apply(self) -> None:
        raise ActionError(f"{self.action_id}: {self.reason}", self.action_id)


class ServiceAction(AttributeAction):
    """Keeps a service running; restarted when a notifying action applied."""

    def __init__(
        self,
        action_id: str,
        resource_id: str,
        *,
        start_command: str,
        restart_command: str,
        status: str = "Running",
        **kwargs: Any,
    ) -> None:
        super().__init__(
            action_id,
            resource_id,
            "service_status",
            status,
            command=start_command,
            refresh_command=restart_command,
            **kwargs,
        )
