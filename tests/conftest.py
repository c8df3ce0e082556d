"""Root test configuration."""

import logging
from typing import Any, Dict, Iterable, List, Sequence

import pytest
import structlog
from dhcpconverge.config import Settings
from dhcpconverge.core.errors import ActionError
from dhcpconverge.dhcp import ResourceCatalog
from dhcpconverge.engine import ABSENT, MembershipAction, PresenceAction, ResourceAction
from dhcpconverge.executors import CommandResult


def pytest_configure(config):
    """Configure structlog for tests to suppress debug/info output."""
    logging.basicConfig(level=logging.WARNING, force=True)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


class FakeDhcpHost:
    """
    In-memory DHCP host implementing both the Executor and StateQuery contracts.

    Observed state is keyed by probe script. The host learns what each command
    does from the actions that issue it: running a creation command makes the
    resource and all of its attributes match, running a membership command adds
    the member, and any other command sets its attribute to the desired value.
    """

    def __init__(self) -> None:
        self.state: Dict[str, Any] = {}
        self.commands: List[str] = []
        self.queries: List[str] = []
        self.failing: set = set()
        self._effects: Dict[str, List[ResourceAction]] = {}
        self._by_resource: Dict[str, List[ResourceAction]] = {}

    def learn(self, actions: Iterable[ResourceAction]) -> "FakeDhcpHost":
        for action in actions:
            self._by_resource.setdefault(action.resource_id, []).append(action)
            if action.command is not None:
                self._effects.setdefault(action.command, []).append(action)
        return self

    def satisfy(self, action: ResourceAction) -> None:
        script = action.probe.script
        if isinstance(action, PresenceAction):
            self.state[script] = None
        elif isinstance(action, MembershipAction):
            members = self.state.get(script) or []
            if action.desired not in members:
                self.state[script] = [*members, action.desired]
        else:
            self.state[script] = action.desired

    def satisfy_resource(self, resource_id: str) -> None:
        for action in self._by_resource.get(resource_id, []):
            self.satisfy(action)

    def create(self, creation: PresenceAction) -> None:
        """A creation command also sets every attribute it was given."""
        self.satisfy(creation)
        for action in self._by_resource.get(creation.resource_id, []):
            if creation.action_id in action.requires and not isinstance(
                action, (PresenceAction, MembershipAction)
            ):
                self.satisfy(action)

    def fail(self, action: ResourceAction) -> None:
        """Make the corrective command of an action exit non-zero."""
        self.failing.add(action.command)

    # Executor
    def run(self, command: str, *, sensitive: Sequence[str] = ()) -> CommandResult:
        self.commands.append(command)
        if command in self.failing:
            return CommandResult(1, error="simulated failure")
        for action in self._effects.get(command, []):
            if isinstance(action, PresenceAction):
                self.create(action)
            else:
                self.satisfy(action)
        return CommandResult(0)

    # StateQuery
    def query(self, script: str) -> Any:
        self.queries.append(script)
        return self.state.get(script, ABSENT)


class StubAction(ResourceAction):
    """Action over a plain in-memory value; records every apply and refresh."""

    def __init__(self, action_id, observed=ABSENT, desired="on", resource_id="res", fail=False, **kwargs):
        super().__init__(action_id, resource_id, "value", desired, **kwargs)
        self.observed = observed
        self.fail = fail
        self.applied = 0
        self.refreshed = 0
        self.command = None

    def observe(self):
        return self.observed

    def apply(self):
        self.applied += 1
        if self.fail:
            raise ActionError(f"{self.action_id}: simulated failure", self.action_id)
        self.observed = self.desired

    def refresh(self):
        self.refreshed += 1


@pytest.fixture
def make_action():
    """Factory for StubAction instances."""
    return StubAction


@pytest.fixture
def settings():
    """Settings that never read the environment of the test machine."""
    return Settings(_env_file=None, script_dir="C:/Windows/Temp", max_workers=1)


@pytest.fixture
def fake_host():
    return FakeDhcpHost()


@pytest.fixture
def catalog(fake_host, settings):
    return ResourceCatalog(fake_host, state_query=fake_host, settings=settings)


@pytest.fixture
def minimal_document():
    """Server role plus one scope, as loaded from YAML."""
    return {
        "host": {"fqdn": "dhcp01.example.com", "osfamily": "windows"},
        "server": {"domain_user": "EXAMPLE\\svc-dhcp", "domain_pass": "s3cret"},
        "scopes": {
            "192.168.10.0": {
                "start_range": "192.168.10.10",
                "end_range": "192.168.10.99",
                "subnet_mask": "255.255.255.0",
                "scope_name": "LAN",
            }
        },
    }


@pytest.fixture
def failover_document(minimal_document):
    document = dict(minimal_document)
    document["failovers"] = [
        {
            "partner_server": "dhcp02.example.com",
            "scope_id": "192.168.10.0",
            "mode": "loadbalance",
            "loadbalance_percent": 70,
            "shared_secret": "failover-secret",
        }
    ]
    return document
