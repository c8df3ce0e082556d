"""Outcome and report types for a convergence run."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence


class OutcomeStatus(Enum):
    """Result of one action in one run."""

    UNCHANGED = "unchanged"
    APPLIED = "applied"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class Outcome:
    """Immutable per-action result."""

    status: OutcomeStatus
    reason: Optional[str] = None
    blocked_by: Optional[str] = None

    @classmethod
    def unchanged(cls) -> "Outcome":
        return cls(OutcomeStatus.UNCHANGED)

    @classmethod
    def applied(cls, reason: Optional[str] = None) -> "Outcome":
        return cls(OutcomeStatus.APPLIED, reason=reason)

    @classmethod
    def failed(cls, reason: str) -> "Outcome":
        return cls(OutcomeStatus.FAILED, reason=reason)

    @classmethod
    def skipped(cls, blocked_by: Optional[str] = None, cause: Optional[str] = None) -> "Outcome":
        if cause is None and blocked_by is not None:
            cause = f"blocked by {blocked_by}"
        return cls(OutcomeStatus.SKIPPED, reason=cause, blocked_by=blocked_by)

    @property
    def detail(self) -> str:
        return self.reason or ""


@dataclass(frozen=True)
class ActionReport:
    """One row of a run report."""

    action_id: str
    resource_id: str
    outcome: Outcome

    @property
    def status(self) -> OutcomeStatus:
        return self.outcome.status

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action_id": self.action_id,
            "resource_id": self.resource_id,
            "outcome": self.outcome.status.value,
            "detail": self.outcome.detail,
            "blocked_by": self.outcome.blocked_by,
        }


@dataclass
class RunReport:
    """Result of executing a plan. Entries are always in plan order."""

    run_id: str
    entries: List[ActionReport] = field(default_factory=list)
    excluded: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    state: str = "completed"
    duration_seconds: float = 0.0

    @property
    def counts(self) -> Dict[str, int]:
        """Number of entries per outcome status."""
        counts = {status.value: 0 for status in OutcomeStatus}
        for entry in self.entries:
            counts[entry.status.value] += 1
        return counts

    @property
    def success(self) -> bool:
        """A run succeeds iff nothing failed; skipped entries are surfaced only."""
        return self.counts[OutcomeStatus.FAILED.value] == 0

    @property
    def has_skipped(self) -> bool:
        return self.counts[OutcomeStatus.SKIPPED.value] > 0

    def outcome_for(self, action_id: str) -> Optional[Outcome]:
        for entry in self.entries:
            if entry.action_id == action_id:
                return entry.outcome
        return None

    def by_status(self, status: OutcomeStatus) -> List[ActionReport]:
        return [entry for entry in self.entries if entry.status is status]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "state": self.state,
            "success": self.success,
            "summary": self.counts,
            "duration_seconds": round(self.duration_seconds, 3),
            "actions": [entry.to_dict() for entry in self.entries],
            "excluded": list(self.excluded),
            "warnings": list(self.warnings),
        }


class ResultCollector:
    """Records outcomes during execution; each action is written exactly once."""

    def __init__(self, run_id: str, warnings: Sequence[str] = ()) -> None:
        self._run_id = run_id
        self._warnings = list(warnings)
        self._outcomes: Dict[str, Outcome] = {}
        self._resources: Dict[str, str] = {}
        self._excluded: List[str] = []
        self._lock = threading.Lock()

    def record(self, action_id: str, resource_id: str, outcome: Outcome) -> None:
        """Record an outcome. Raises RuntimeError on a second write."""
        with self._lock:
            if action_id in self._outcomes or action_id in self._excluded:
                raise RuntimeError(f"Outcome for {action_id!r} already recorded")
            self._outcomes[action_id] = outcome
            self._resources[action_id] = resource_id

    def exclude(self, action_id: str) -> None:
        """Mark an action dropped by its runtime guard."""
        with self._lock:
            if action_id in self._outcomes or action_id in self._excluded:
                raise RuntimeError(f"Outcome for {action_id!r} already recorded")
            self._excluded.append(action_id)

    def get(self, action_id: str) -> Optional[Outcome]:
        with self._lock:
            return self._outcomes.get(action_id)

    def is_excluded(self, action_id: str) -> bool:
        with self._lock:
            return action_id in self._excluded

    def is_done(self, action_id: str) -> bool:
        with self._lock:
            return action_id in self._outcomes or action_id in self._excluded

    def snapshot(self) -> Mapping[str, Outcome]:
        """Copy of the outcomes recorded so far."""
        with self._lock:
            return dict(self._outcomes)

    def finalize(self, order: Sequence[str], state: str, duration: float) -> RunReport:
        """Build the report in plan order."""
        with self._lock:
            entries = [
                ActionReport(action_id, self._resources[action_id], self._outcomes[action_id])
                for action_id in order
                if action_id in self._outcomes
            ]
            excluded = [action_id for action_id in order if action_id in self._excluded]
        return RunReport(
            run_id=self._run_id,
            entries=entries,
            excluded=excluded,
            warnings=list(self._warnings),
            state=state,
            duration_seconds=duration,
        )
