"""
Dependency graph over resource actions.

requires, before and notify declarations are normalised into a single set of
directed edges (edge u -> v means u runs before v) and ordered with Kahn's
algorithm. Ties among ready actions are broken by declaration order, so
identical input always yields the identical plan.
"""

from __future__ import annotations

import heapq
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, Iterator, List, Mapping, Sequence, Set, Tuple

from dhcpconverge.core.errors import CycleError, ValidationError
from dhcpconverge.engine.actions import ResourceAction


@dataclass(frozen=True)
class ExecutionPlan:
    """Topologically ordered actions. If A requires B, B precedes A."""

    order: Tuple[str, ...]
    actions: Mapping[str, ResourceAction]
    successor_map: Mapping[str, FrozenSet[str]]
    predecessor_map: Mapping[str, FrozenSet[str]]
    notifications: FrozenSet[Tuple[str, str]] = frozenset()
    warnings: Tuple[str, ...] = ()
    _positions: Dict[str, int] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self._positions.update({action_id: i for i, action_id in enumerate(self.order)})

    def __iter__(self) -> Iterator[ResourceAction]:
        return (self.actions[action_id] for action_id in self.order)

    def __len__(self) -> int:
        return len(self.order)

    def __contains__(self, action_id: object) -> bool:
        return action_id in self._positions

    def index(self, action_id: str) -> int:
        return self._positions[action_id]

    def predecessors(self, action_id: str) -> List[str]:
        """Direct predecessors in plan order."""
        return sorted(self.predecessor_map[action_id], key=self.index)

    def successors(self, action_id: str) -> List[str]:
        """Direct successors in plan order."""
        return sorted(self.successor_map[action_id], key=self.index)

    def dependents(self, action_id: str) -> List[str]:
        """All transitive successors in plan order."""
        seen: Set[str] = set()
        queue = deque(self.successor_map[action_id])
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen.add(current)
            queue.extend(self.successor_map[current])
        return sorted(seen, key=self.index)

    def notifiers(self, action_id: str) -> List[str]:
        """Actions whose change triggers a refresh of action_id."""
        return sorted(
            (source for source, target in self.notifications if target == action_id),
            key=self.index,
        )

    def describe(self) -> List[dict]:
        return [dict(self.actions[action_id].describe(), position=i + 1) for i, action_id in enumerate(self.order)]


class DependencyGraph:
    """Builds an ExecutionPlan from declared action dependencies."""

    def __init__(self, actions: Iterable[ResourceAction]) -> None:
        self._actions: List[ResourceAction] = list(actions)

    def build(self, warnings: Sequence[str] = ()) -> ExecutionPlan:
        """
        Order the actions.

        Raises:
            ValidationError: duplicate action ids or a reference to an unknown action
            CycleError: self, mutual or indirect circular dependencies
        """
        declared: Dict[str, int] = {}
        actions: Dict[str, ResourceAction] = {}
        for position, action in enumerate(self._actions):
            if action.action_id in declared:
                raise ValidationError(
                    f"Duplicate action: {action.action_id}",
                    {"resource": action.resource_id},
                )
            declared[action.action_id] = position
            actions[action.action_id] = action

        successors: Dict[str, Set[str]] = {action_id: set() for action_id in declared}
        predecessors: Dict[str, Set[str]] = {action_id: set() for action_id in declared}
        notifications: Set[Tuple[str, str]] = set()

        def add_edge(source: str, target: str, declared_by: str) -> None:
            for ref in (source, target):
                if ref not in declared:
                    raise ValidationError(
                        f"Unknown dependency {ref!r} declared by {declared_by!r}",
                        {"action": declared_by},
                    )
            if source == target:
                raise CycleError(f"{source} depends on itself", [source, source])
            successors[source].add(target)
            predecessors[target].add(source)

        for action in self._actions:
            for dep in sorted(action.requires):
                add_edge(dep, action.action_id, action.action_id)
            for succ in sorted(action.before):
                add_edge(action.action_id, succ, action.action_id)
            for succ in sorted(action.notify):
                add_edge(action.action_id, succ, action.action_id)
                notifications.add((action.action_id, succ))

        order = self._topological_order(declared, successors, predecessors)

        return ExecutionPlan(
            order=tuple(order),
            actions=actions,
            successor_map={k: frozenset(v) for k, v in successors.items()},
            predecessor_map={k: frozenset(v) for k, v in predecessors.items()},
            notifications=frozenset(notifications),
            warnings=tuple(warnings),
        )

    @staticmethod
    def _topological_order(
        declared: Dict[str, int],
        successors: Dict[str, Set[str]],
        predecessors: Dict[str, Set[str]],
    ) -> List[str]:
        indegree = {action_id: len(preds) for action_id, preds in predecessors.items()}
        ready = [(declared[a], a) for a, degree in indegree.items() if degree == 0]
        heapq.heapify(ready)

        ordered: List[str] = []
        while ready:
            _, current = heapq.heappop(ready)
            ordered.append(current)
            for nxt in successors[current]:
                indegree[nxt] -= 1
                if indegree[nxt] == 0:
                    heapq.heappush(ready, (declared[nxt], nxt))

        if len(ordered) != len(declared):
            remaining = {a for a, degree in indegree.items() if degree > 0}
            cycle = _find_cycle(remaining, predecessors, declared)
            raise CycleError(f"Dependency cycle: {' -> '.join(cycle)}", cycle)
        return ordered


def _find_cycle(
    remaining: Set[str],
    predecessors: Dict[str, Set[str]],
    declared: Dict[str, int],
) -> List[str]:
    # Every remaining node has a remaining predecessor, so walking backwards
    # from any of them must revisit a node.
    current = min(remaining, key=declared.__getitem__)
    path: List[str] = []
    seen: Dict[str, int] = {}
    while current not in seen:
        seen[current] = len(path)
        path.append(current)
        current = min(
            (p for p in predecessors[current] if p in remaining),
            key=declared.__getitem__,
        )
    cycle = path[seen[current]:]
    cycle.reverse()
    return cycle + [cycle[0]]
