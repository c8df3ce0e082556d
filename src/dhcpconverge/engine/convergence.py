"""
Convergence engine.

Runs an ExecutionPlan in dependency order. An action whose live state already
satisfies the desired value is never applied. A failed action blocks its
transitive dependents; unrelated branches of the graph still run.
"""

from __future__ import annotations

import heapq
import threading
import time
import uuid
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from enum import Enum
from typing import Any, Dict, Optional, Protocol

import structlog

from dhcpconverge.engine.actions import ResourceAction
from dhcpconverge.engine.graph import DependencyGraph, ExecutionPlan
from dhcpconverge.engine.results import Outcome, OutcomeStatus, ResultCollector, RunReport

logger = structlog.get_logger()


class RunState(Enum):
    """Lifecycle of a single convergence run."""

    IDLE = "idle"
    PLANNING = "planning"
    EXECUTING = "executing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class CancellationToken:
    """Cooperative cancellation, honoured between actions only."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class ActionSource(Protocol):
    """Anything that expands a desired configuration into actions."""

    def build(self, desired_config: Any) -> Any:
        """Return an object with `actions` and `warnings` attributes."""
        ...


class ConvergenceEngine:
    """Plans and executes convergence runs."""

    def __init__(self, catalog: Optional[ActionSource] = None, max_workers: int = 1) -> None:
        self._catalog = catalog
        self._max_workers = max(1, max_workers)
        self._state = RunState.IDLE

    @property
    def state(self) -> RunState:
        return self._state

    def plan(self, desired_config: Any) -> ExecutionPlan:
        """
        Expand and order a desired configuration.

        Raises:
            ValidationError: invalid desired configuration
            CycleError: contradictory dependency declarations
        """
        if self._catalog is None:
            raise RuntimeError("ConvergenceEngine.plan needs a catalog")
        self._state = RunState.PLANNING
        expanded = self._catalog.build(desired_config)
        plan = DependencyGraph(expanded.actions).build(warnings=expanded.warnings)
        logger.info("plan_built", actions=len(plan), warnings=len(plan.warnings))
        return plan

    def execute(
        self,
        plan: ExecutionPlan,
        cancel_token: Optional[CancellationToken] = None,
        run_id: Optional[str] = None,
    ) -> RunReport:
        """Execute a plan. Never raises for action failures; see the report."""
        run_id = run_id or uuid.uuid4().hex[:12]
        log = logger.bind(run_id=run_id)
        collector = ResultCollector(run_id, warnings=plan.warnings)
        token = cancel_token or CancellationToken()

        self._state = RunState.EXECUTING
        log.info("run_started", actions=len(plan), workers=self._max_workers)
        started = time.monotonic()

        if self._max_workers == 1:
            self._execute_sequential(plan, collector, token, log)
        else:
            self._execute_concurrent(plan, collector, token, log)

        if token.cancelled:
            for action in plan:
                if not collector.is_done(action.action_id):
                    collector.record(
                        action.action_id, action.resource_id, Outcome.skipped(cause="cancelled")
                    )
            self._state = RunState.CANCELLED
        else:
            self._state = RunState.COMPLETED

        report = collector.finalize(plan.order, self._state.value, time.monotonic() - started)
        log.info("run_completed", state=report.state, success=report.success, **report.counts)
        return report

    def _execute_sequential(
        self,
        plan: ExecutionPlan,
        collector: ResultCollector,
        token: CancellationToken,
        log: Any,
    ) -> None:
        for action in plan:
            if token.cancelled:
                log.warning("run_cancelled", next_action=action.action_id)
                return
            self._run_action(action, plan, collector, log)

    def _execute_concurrent(
        self,
        plan: ExecutionPlan,
        collector: ResultCollector,
        token: CancellationToken,
        log: Any,
    ) -> None:
        waiting = {action_id: len(plan.predecessor_map[action_id]) for action_id in plan.order}
        ready = [plan.index(a) for a, count in waiting.items() if count == 0]
        heapq.heapify(ready)
        running: Dict[Future, str] = {}

        with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
            while ready or running:
                while ready and not token.cancelled:
                    action = plan.actions[plan.order[heapq.heappop(ready)]]
                    future = pool.submit(self._run_action, action, plan, collector, log)
                    running[future] = action.action_id
                if not running:
                    log.warning("run_cancelled", pending=len(ready))
                    return

                done, _ = wait(list(running), return_when=FIRST_COMPLETED)
                for future in done:
                    finished = running.pop(future)
                    future.result()
                    for successor in plan.successor_map[finished]:
                        waiting[successor] -= 1
                        if waiting[successor] == 0:
                            heapq.heappush(ready, plan.index(successor))

    def _run_action(
        self,
        action: ResourceAction,
        plan: ExecutionPlan,
        collector: ResultCollector,
        log: Any,
    ) -> None:
        action_id = action.action_id
        blocker = self._blocker(action_id, plan, collector)
        if blocker is not None:
            collector.record(action_id, action.resource_id, Outcome.skipped(blocked_by=blocker))
            log.warning("action_skipped", action=action_id, blocked_by=blocker)
            return

        if action.runtime_guard is not None:
            try:
                allowed = action.runtime_guard(collector.snapshot())
            except Exception as e:
                log.error("action_failed", action=action_id, phase="guard", error=str(e))
                collector.record(action_id, action.resource_id, Outcome.failed(f"guard failed: {e}"))
                return
            if not allowed:
                collector.exclude(action_id)
                log.debug("action_excluded", action=action_id)
                return

        outcome = self._converge(action, log)
        if outcome.status is not OutcomeStatus.FAILED and self._notified(action_id, plan, collector):
            outcome = self._refresh(action, outcome, log)
        collector.record(action_id, action.resource_id, outcome)

    @staticmethod
    def _converge(action: ResourceAction, log: Any) -> Outcome:
        try:
            satisfied = action.is_satisfied()
        except Exception as e:
            log.error("action_failed", action=action.action_id, phase="observe", error=str(e))
            return Outcome.failed(f"observe failed: {e}")

        if satisfied:
            log.debug("action_unchanged", action=action.action_id)
            return Outcome.unchanged()

        try:
            action.apply()
        except Exception as e:
            log.error("action_failed", action=action.action_id, phase="apply", error=str(e))
            return Outcome.failed(str(e))

        log.info("action_applied", action=action.action_id)
        return Outcome.applied()

    @staticmethod
    def _refresh(action: ResourceAction, outcome: Outcome, log: Any) -> Outcome:
        try:
            action.refresh()
        except Exception as e:
            log.error("action_failed", action=action.action_id, phase="refresh", error=str(e))
            return Outcome.failed(f"refresh failed: {e}")
        log.info("action_refreshed", action=action.action_id)
        if outcome.status is OutcomeStatus.APPLIED:
            return Outcome.applied("applied and refreshed")
        return Outcome.applied("refreshed")

    @staticmethod
    def _blocker(action_id: str, plan: ExecutionPlan, collector: ResultCollector) -> Optional[str]:
        """Root failed action that blocks action_id, if any."""
        for predecessor in plan.predecessors(action_id):
            outcome = collector.get(predecessor)
            if outcome is None:
                continue
            if outcome.status is OutcomeStatus.FAILED:
                return predecessor
            if outcome.status is OutcomeStatus.SKIPPED:
                return outcome.blocked_by or predecessor
        return None

    @staticmethod
    def _notified(action_id: str, plan: ExecutionPlan, collector: ResultCollector) -> bool:
        for source in plan.notifiers(action_id):
            outcome = collector.get(source)
            if outcome is not None and outcome.status is OutcomeStatus.APPLIED:
                return True
        return False


def converge(
    desired_config: Any,
    catalog: ActionSource,
    max_workers: int = 1,
    cancel_token: Optional[CancellationToken] = None,
) -> RunReport:
    """Plan and execute in one call."""
    engine = ConvergenceEngine(catalog, max_workers=max_workers)
    return engine.execute(engine.plan(desired_config), cancel_token=cancel_token)
