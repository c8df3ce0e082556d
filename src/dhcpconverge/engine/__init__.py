"""Convergence engine: compare desired with observed state and act only on drift, in dependency order."""

from dhcpconverge.engine.actions import (
    ABSENT,
    AttributeAction,
    CommandAction,
    ImmutableAttributeAction,
    MembershipAction,
    PresenceAction,
    Probe,
    ResourceAction,
    ServiceAction,
)
from dhcpconverge.engine.comparator import ValueComparator, ValueKind, equal
from dhcpconverge.engine.convergence import (
    CancellationToken,
    ConvergenceEngine,
    RunState,
    converge,
)
from dhcpconverge.engine.graph import DependencyGraph, ExecutionPlan
from dhcpconverge.engine.results import (
    ActionReport,
    Outcome,
    OutcomeStatus,
    ResultCollector,
    RunReport,
)

__all__ = [
    "ABSENT",
    "ActionReport",
    "AttributeAction",
    "CancellationToken",
    "CommandAction",
    "ConvergenceEngine",
    "DependencyGraph",
    "ExecutionPlan",
    "ImmutableAttributeAction",
    "MembershipAction",
    "Outcome",
    "OutcomeStatus",
    "PresenceAction",
    "Probe",
    "ResourceAction",
    "ServiceAction",
    "ResultCollector",
    "RunReport",
    "RunState",
    "ValueComparator",
    "ValueKind",
    "converge",
    "equal",
]
