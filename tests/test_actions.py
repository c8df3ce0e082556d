"""Tests for engine/actions.py.

Tests for command-backed actions: observation, satisfaction predicates,
corrective commands and secret redaction.
"""

from unittest.mock import MagicMock

import pytest
from dhcpconverge.core.errors import ActionError
from dhcpconverge.engine import (
    ABSENT,
    AttributeAction,
    ImmutableAttributeAction,
    MembershipAction,
    PresenceAction,
    Probe,
    ServiceAction,
    ValueKind,
)
from dhcpconverge.engine.actions import redact
from dhcpconverge.executors import CommandResult


@pytest.fixture
def executor():
    mock = MagicMock()
    mock.run.return_value = CommandResult(0)
    return mock


def state(value):
    query = MagicMock()
    query.query.return_value = value
    return query


class TestAbsent:
    """Tests for the ABSENT marker."""

    def test_singleton_and_falsy(self):
        assert type(ABSENT)() is ABSENT
        assert not ABSENT
        assert repr(ABSENT) == "ABSENT"


class TestAttributeAction:
    """Tests for AttributeAction."""

    def make(self, executor, observed, desired="LAN", kind=ValueKind.SCALAR, **kwargs):
        return AttributeAction(
            "set 192.168.10.0 name",
            "scope[192.168.10.0]",
            "scope_name",
            desired,
            probe=Probe("probe", kind),
            command="Set-DhcpServerv4Scope -Name 'LAN'",
            executor=executor,
            state_query=state(observed),
            **kwargs,
        )

    def test_kind_comes_from_probe(self, executor):
        action = self.make(executor, "x", kind=ValueKind.UNORDERED_SET)
        assert action.kind is ValueKind.UNORDERED_SET

    def test_satisfied(self, executor):
        assert self.make(executor, "LAN").is_satisfied()

    def test_drift(self, executor):
        assert not self.make(executor, "WAN").is_satisfied()

    def test_absent_is_not_satisfied(self, executor):
        assert not self.make(executor, ABSENT).is_satisfied()

    def test_null_scalar_reads_as_empty(self, executor):
        """Test a present attribute with a null value is empty text, not absence."""
        action = self.make(executor, None, desired="")
        assert action.observe() == ""
        assert action.is_satisfied()

    def test_apply_runs_command(self, executor):
        action = self.make(executor, "WAN")
        action.apply()
        executor.run.assert_called_once_with("Set-DhcpServerv4Scope -Name 'LAN'", sensitive=())

    def test_apply_failure_raises_action_error(self, executor):
        """Test a non-zero exit status raises ActionError naming the action."""
        executor.run.return_value = CommandResult(1, error="Access is denied.")
        action = self.make(executor, "WAN")
        with pytest.raises(ActionError) as exc_info:
            action.apply()
        assert exc_info.value.action_id == "set 192.168.10.0 name"
        assert "Access is denied." in exc_info.value.message

    def test_refresh_without_command_is_noop(self, executor):
        self.make(executor, "LAN").refresh()
        executor.run.assert_not_called()

    def test_refresh_runs_refresh_command(self, executor):
        action = self.make(executor, "LAN", refresh_command="Restart-Service dhcpserver")
        action.refresh()
        executor.run.assert_called_once_with("Restart-Service dhcpserver", sensitive=())

    def test_secrets_redacted_from_error(self, executor):
        executor.run.return_value = CommandResult(1, error="bad password s3cret")
        action = self.make(executor, "WAN", secrets=("s3cret",))
        with pytest.raises(ActionError) as exc_info:
            action.apply()
        assert "s3cret" not in exc_info.value.message

    def test_applicability(self, executor):
        assert self.make(executor, "x").is_applicable()
        assert not self.make(executor, "x", applicability=lambda: False).is_applicable()

    def test_describe(self, executor):
        described = self.make(executor, "x", requires=["add 192.168.10.0"]).describe()
        assert described["desired"] == "LAN"
        assert described["requires"] == ["add 192.168.10.0"]
        assert described["kind"] == "scalar"


class TestPresenceAction:
    """Tests for creation actions."""

    def make(self, executor, observed):
        return PresenceAction(
            "add 192.168.10.0",
            "scope[192.168.10.0]",
            probe=Probe("probe"),
            command="Add-DhcpServerv4Scope",
            executor=executor,
            state_query=state(observed),
        )

    def test_absent(self, executor):
        assert not self.make(executor, ABSENT).is_satisfied()

    def test_present_regardless_of_attributes(self, executor):
        """Test existence alone satisfies a creation action."""
        assert self.make(executor, None).is_satisfied()
        assert self.make(executor, {"Name": "other"}).is_satisfied()


class TestMembershipAction:
    """Tests for membership actions."""

    def make(self, executor, observed, **kwargs):
        return MembershipAction(
            'add EXAMPLE\\svc-dhcp to "DHCP Administrators"',
            "server",
            "group_member",
            "EXAMPLE\\svc-dhcp",
            probe=Probe("probe"),
            command="Add-LocalGroupMember",
            executor=executor,
            state_query=state(observed),
            **kwargs,
        )

    def test_member_present(self, executor):
        assert self.make(executor, ["EXAMPLE\\Administrator", "EXAMPLE\\svc-dhcp"]).is_satisfied()

    def test_case_insensitive_by_default(self, executor):
        assert self.make(executor, ["example\\SVC-DHCP"]).is_satisfied()

    def test_case_sensitive(self, executor):
        assert not self.make(executor, ["example\\SVC-DHCP"], case_sensitive=True).is_satisfied()

    def test_single_member_output(self, executor):
        """Test a lone member rendered as a scalar is promoted to a list."""
        assert self.make(executor, "EXAMPLE\\svc-dhcp").is_satisfied()

    def test_missing_group(self, executor):
        assert not self.make(executor, ABSENT).is_satisfied()

    def test_member_missing(self, executor):
        assert not self.make(executor, ["EXAMPLE\\Administrator"]).is_satisfied()


class TestImmutableAttributeAction:
    """Tests for attributes that cannot be changed in place."""

    def test_apply_always_fails(self, executor):
        action = ImmutableAttributeAction(
            "set 192.168.10.0 subnet mask",
            "scope[192.168.10.0]",
            "subnet_mask",
            "255.255.255.0",
            probe=Probe("probe"),
            reason="subnet mask cannot be changed in place",
            executor=executor,
            state_query=state("255.255.0.0"),
        )
        assert not action.is_satisfied()
        with pytest.raises(ActionError, match="cannot be changed in place"):
            action.apply()
        executor.run.assert_not_called()


class TestServiceAction:
    """Tests for ServiceAction."""

    def make(self, executor, observed):
        return ServiceAction(
            "run dhcpserver service",
            "server",
            probe=Probe("probe"),
            start_command="Start-Service dhcpserver",
            restart_command="Restart-Service dhcpserver",
            executor=executor,
            state_query=state(observed),
        )

    def test_running_is_satisfied(self, executor):
        assert self.make(executor, "Running").is_satisfied()

    def test_stopped_is_started(self, executor):
        action = self.make(executor, "Stopped")
        assert not action.is_satisfied()
        action.apply()
        executor.run.assert_called_once_with("Start-Service dhcpserver", sensitive=())

    def test_refresh_restarts(self, executor):
        self.make(executor, "Running").refresh()
        executor.run.assert_called_once_with("Restart-Service dhcpserver", sensitive=())


class TestRedact:
    """Tests for redact()."""

    def test_replaces_every_secret(self):
        assert redact("user:s3cret pass:s3cret other", ["s3cret"]) == "user:******** pass:******** other"

    def test_empty_secret_ignored(self):
        assert redact("text", [""]) == "text"
