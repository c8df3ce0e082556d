"""Tests for dhcp/catalog.py.

Tests for action expansion, dependency edges, mode gating, the derived
auto-state-transition flag and end-to-end convergence against a fake host.
"""

import copy
from datetime import timedelta

import pytest
from dhcpconverge.dhcp import ResourceCatalog, parse_desired_config
from dhcpconverge.dhcp.catalog import (
    AUTHORISE,
    CONFLICT_DETECTION,
    DEPLOY_FAILOVER_SCRIPT,
    INSTALL,
    SECURITY_GROUPS,
    SERVICE,
    auto_state_transition,
    membership_action_id,
)
from dhcpconverge.dhcp.scripts import script_sha256
from dhcpconverge.engine import (
    ConvergenceEngine,
    DependencyGraph,
    ImmutableAttributeAction,
    MembershipAction,
    OutcomeStatus,
    PresenceAction,
    ValueKind,
)

SCOPE = "192.168.10.0"
FAILOVER = "dhcp01 <-> dhcp02"


def actions_by_id(result):
    return {action.action_id: action for action in result.actions}


def plan_for(result):
    return DependencyGraph(result.actions).build(warnings=result.warnings)


class TestServerActions:
    """Tests for server role actions."""

    def test_action_ids(self, catalog, minimal_document):
        ids = list(actions_by_id(catalog.build(minimal_document)))
        assert ids[:6] == [
            INSTALL,
            SECURITY_GROUPS,
            membership_action_id("EXAMPLE\\svc-dhcp"),
            AUTHORISE,
            CONFLICT_DETECTION,
            SERVICE,
        ]
        assert membership_action_id("EXAMPLE\\svc-dhcp") == 'add EXAMPLE\\svc-dhcp to "DHCP Administrators"'

    def test_server_order(self, catalog, minimal_document):
        """Test install precedes configuration, which precedes the service."""
        plan = plan_for(catalog.build(minimal_document))
        member = membership_action_id("EXAMPLE\\svc-dhcp")
        assert plan.order[0] == INSTALL
        assert plan.index(SECURITY_GROUPS) < plan.index(member) < plan.index(AUTHORISE)
        for action_id in (SECURITY_GROUPS, member, AUTHORISE, CONFLICT_DETECTION):
            assert plan.index(action_id) < plan.index(SERVICE)
        assert plan.index(SERVICE) < plan.index(f"add {SCOPE}")

    def test_service_notified(self, catalog, minimal_document):
        """Test configuration changes restart the service."""
        plan = plan_for(catalog.build(minimal_document))
        assert plan.notifiers(SERVICE) == [
            SECURITY_GROUPS,
            membership_action_id("EXAMPLE\\svc-dhcp"),
            AUTHORISE,
            CONFLICT_DETECTION,
        ]
        assert "Restart-Service" in plan.actions[SERVICE].refresh_command

    def test_authorise_carries_secret(self, catalog, minimal_document):
        action = actions_by_id(catalog.build(minimal_document))[AUTHORISE]
        assert isinstance(action, MembershipAction)
        assert action.desired == "dhcp01.example.com"
        assert action.secrets == ("s3cret",)

    def test_populate_security_group_disabled(self, catalog, minimal_document):
        """Test the domain user is not added when population is disabled."""
        document = copy.deepcopy(minimal_document)
        document["server"]["populate_security_group"] = False
        document["server"]["administrators"] = ["EXAMPLE\\ops"]
        result = catalog.build(document)
        ids = actions_by_id(result)
        assert membership_action_id("EXAMPLE\\svc-dhcp") not in ids
        assert membership_action_id("EXAMPLE\\ops") in ids
        assert membership_action_id("EXAMPLE\\svc-dhcp") in result.inapplicable

    def test_listed_domain_user_kept(self, catalog, minimal_document):
        """Test listing the domain user as an administrator overrides population."""
        document = copy.deepcopy(minimal_document)
        document["server"]["populate_security_group"] = False
        document["server"]["administrators"] = ["example\\SVC-DHCP"]
        assert membership_action_id("EXAMPLE\\svc-dhcp") in actions_by_id(catalog.build(document))

    def test_administrators_deduplicated(self, catalog, minimal_document):
        document = copy.deepcopy(minimal_document)
        document["server"]["administrators"] = ["example\\SVC-DHCP", "EXAMPLE\\ops", "EXAMPLE\\OPS"]
        ids = list(actions_by_id(catalog.build(document)))
        members = [i for i in ids if i.endswith('"DHCP Administrators"')]
        assert members == [membership_action_id("EXAMPLE\\svc-dhcp"), membership_action_id("EXAMPLE\\ops")]


class TestScopeActions:
    """Tests for scope actions."""

    def test_attribute_actions_require_creation(self, catalog, minimal_document):
        """Test every scope attribute action requires the scope creation action."""
        actions = actions_by_id(catalog.build(minimal_document))
        creation = actions[f"add {SCOPE}"]
        assert isinstance(creation, PresenceAction)
        assert creation.requires == {SERVICE}
        attributes = [a for a in actions.values() if a.resource_id == f"scope[{SCOPE}]" and a is not creation]
        assert len(attributes) == 12
        for action in attributes:
            assert creation.action_id in action.requires

    def test_optional_options_absent(self, catalog, minimal_document):
        """Test dns server and router actions exist only when supplied."""
        result = catalog.build(minimal_document)
        ids = actions_by_id(result)
        assert f"set {SCOPE} dns server" not in ids
        assert f"set {SCOPE} router" not in ids
        assert f"set {SCOPE} dns server" in result.inapplicable

    def test_dns_server_is_unordered(self, catalog, minimal_document):
        document = copy.deepcopy(minimal_document)
        document["scopes"][SCOPE]["dns_server"] = ["192.168.10.100", "192.168.10.200"]
        document["scopes"][SCOPE]["router"] = "192.168.10.1"
        actions = actions_by_id(catalog.build(document))
        dns = actions[f"set {SCOPE} dns server"]
        assert dns.kind is ValueKind.UNORDERED_SET
        assert dns.desired == ["192.168.10.100", "192.168.10.200"]
        assert "-DnsServer @('192.168.10.100','192.168.10.200')" in dns.command
        assert actions[f"set {SCOPE} router"].desired == "192.168.10.1"

    def test_subnet_mask_is_immutable(self, catalog, minimal_document):
        action = actions_by_id(catalog.build(minimal_document))[f"set {SCOPE} subnet mask"]
        assert isinstance(action, ImmutableAttributeAction)
        assert action.command is None
        assert action.runtime_guard is not None

    def test_range_commands_set_both_ends(self, catalog, minimal_document):
        actions = actions_by_id(catalog.build(minimal_document))
        command = actions[f"set {SCOPE} start range"].command
        assert "-StartRange '192.168.10.10'" in command
        assert "-EndRange '192.168.10.99'" in command

    def test_lease_duration_kind(self, catalog, minimal_document):
        action = actions_by_id(catalog.build(minimal_document))[f"set {SCOPE} lease_duration"]
        assert action.kind is ValueKind.DURATION

    def test_integer_settings_compare_as_numbers(self, catalog, minimal_document):
        """Test integer settings compare numerically and names compare as text."""
        actions = actions_by_id(catalog.build(minimal_document))
        assert actions[f"set {SCOPE} delay"].kind is ValueKind.NUMBER
        assert actions[f"set {SCOPE} max_bootp_clients"].kind is ValueKind.NUMBER
        assert actions[CONFLICT_DETECTION].kind is ValueKind.NUMBER
        assert actions[f"set {SCOPE} name"].kind is ValueKind.SCALAR

    def test_accepts_parsed_config(self, catalog, minimal_document):
        """Test build accepts an already parsed DesiredConfig."""
        config = parse_desired_config(minimal_document)
        assert [a.action_id for a in catalog.build(config).actions] == [
            a.action_id for a in catalog.build(minimal_document).actions
        ]


class TestFailoverActions:
    """Tests for failover actions."""

    def test_creation_requires_declared_scopes(self, catalog, failover_document):
        actions = actions_by_id(catalog.build(failover_document))
        creation = actions[f"add {FAILOVER}"]
        assert creation.requires == {SERVICE, f"add {SCOPE}"}
        assert creation.secrets == ("failover-secret",)

    def test_undeclared_scope_not_required(self, catalog, failover_document):
        """Test scopes managed outside this document add no edge."""
        document = copy.deepcopy(failover_document)
        document["failovers"][0]["scope_id"] = [SCOPE, "192.168.20.0"]
        creation = actions_by_id(catalog.build(document))[f"add {FAILOVER}"]
        assert creation.requires == {SERVICE, f"add {SCOPE}"}

    def test_subnets_requires_deploy(self, catalog, failover_document):
        actions = actions_by_id(catalog.build(failover_document))
        subnets = actions[f"set {FAILOVER} subnets"]
        assert subnets.requires == {f"add {FAILOVER}", DEPLOY_FAILOVER_SCRIPT}
        assert subnets.kind is ValueKind.UNORDERED_SET
        assert "Update-DhcpServerv4FailoverScope.ps1" in subnets.command

    def test_deploy_compares_digest(self, catalog, failover_document):
        deploy = actions_by_id(catalog.build(failover_document))[DEPLOY_FAILOVER_SCRIPT]
        assert deploy.desired == script_sha256()
        assert "C:/Windows/Temp/Update-DhcpServerv4FailoverScope.ps1" in deploy.command

    def test_no_deploy_without_failovers(self, catalog, minimal_document):
        assert DEPLOY_FAILOVER_SCRIPT not in actions_by_id(catalog.build(minimal_document))

    def test_loadbalance_gating(self, catalog, failover_document):
        """Test hot-standby attributes never reach a loadbalance plan."""
        result = catalog.build(failover_document)
        ids = actions_by_id(result)
        assert ids[f"set {FAILOVER} loadbalance_percent"].desired == 70
        assert f"set {FAILOVER} reserve_percent" not in ids
        assert f"set {FAILOVER} server_role" not in ids
        assert f"set {FAILOVER} reserve_percent" in result.inapplicable

    def test_hotstandby_gating(self, catalog, failover_document):
        """Test the loadbalance percent never reaches a hot-standby plan."""
        document = copy.deepcopy(failover_document)
        failover = document["failovers"][0]
        failover.update(mode="hotstandby", reserve_percent=10, server_role="standby")
        del failover["loadbalance_percent"]
        ids = actions_by_id(catalog.build(document))
        assert f"set {FAILOVER} loadbalance_percent" not in ids
        assert ids[f"set {FAILOVER} reserve_percent"].desired == 10
        assert ids[f"set {FAILOVER} server_role"].desired == "standby"
        assert ids[f"set {FAILOVER} mode"].desired == "hotstandby"

    def test_mode_mismatch_warning_reaches_result(self, catalog, failover_document):
        document = copy.deepcopy(failover_document)
        document["failovers"][0]["server_role"] = "active"
        result = catalog.build(document)
        assert result.warnings == (f"failover {FAILOVER}: server_role ignored in loadbalance mode",)

    @pytest.mark.parametrize("interval", ["0", 0, "0:00:00"])
    def test_zero_interval_disables_auto_state_transition(self, catalog, failover_document, interval):
        """Test a zero switch interval derives a false flag once for every consumer."""
        document = copy.deepcopy(failover_document)
        document["failovers"][0]["state_switch_interval"] = interval
        actions = actions_by_id(catalog.build(document))
        flag = actions[f"set {FAILOVER} autostatetransition"]
        assert flag.desired is False
        assert flag.kind is ValueKind.BOOLEAN
        assert "-AutoStateTransition $false" in actions[f"add {FAILOVER}"].command
        assert "StateSwitchInterval" not in actions[f"add {FAILOVER}"].command
        assert "-AutoStateTransition $false" in actions[f"set {FAILOVER} state_switch_interval"].command

    @pytest.mark.parametrize("interval", ["1:00:00", "00:30:00", 90])
    def test_nonzero_interval_enables_auto_state_transition(self, catalog, failover_document, interval):
        document = copy.deepcopy(failover_document)
        document["failovers"][0]["state_switch_interval"] = interval
        actions = actions_by_id(catalog.build(document))
        assert actions[f"set {FAILOVER} autostatetransition"].desired is True
        assert "-StateSwitchInterval" in actions[f"add {FAILOVER}"].command

    def test_interval_requires_flag(self, catalog, failover_document):
        actions = actions_by_id(catalog.build(failover_document))
        assert f"set {FAILOVER} autostatetransition" in actions[f"set {FAILOVER} state_switch_interval"].requires

    def test_auto_state_transition_helper(self):
        assert auto_state_transition("0:00:00") is False
        assert auto_state_transition("1:00:00") is True
        assert auto_state_transition(timedelta(seconds=1)) is True


class TestEndToEnd:
    """Convergence runs against the in-memory host."""

    def test_scope_created_then_unchanged(self, catalog, fake_host, minimal_document):
        """Test one creation on the first run and nothing applied on the second."""
        fake_host.learn(catalog.build(minimal_document).actions)
        fake_host.satisfy_resource("server")
        engine = ConvergenceEngine(catalog)

        first = engine.execute(engine.plan(minimal_document))
        assert [e.action_id for e in first.by_status(OutcomeStatus.APPLIED)] == [f"add {SCOPE}"]
        assert first.counts["failed"] == 0
        assert first.excluded == [f"set {SCOPE} subnet mask"]

        second = engine.execute(engine.plan(minimal_document))
        assert second.counts["applied"] == 0
        assert second.counts["failed"] == 0
        assert all(e.status is OutcomeStatus.UNCHANGED for e in second.entries)
        assert second.excluded == []

    def test_satisfied_host_issues_no_commands(self, catalog, fake_host, minimal_document):
        """Test a fully converged host is only queried, never changed."""
        fake_host.learn(catalog.build(minimal_document).actions)
        fake_host.satisfy_resource("server")
        fake_host.satisfy_resource(f"scope[{SCOPE}]")
        engine = ConvergenceEngine(catalog)
        report = engine.execute(engine.plan(minimal_document))
        assert fake_host.commands == []
        assert report.success

    def test_fresh_host_with_failover(self, catalog, fake_host, failover_document):
        """Test a bare host converges in one run and stays converged."""
        fake_host.learn(catalog.build(failover_document).actions)
        engine = ConvergenceEngine(catalog)

        first = engine.execute(engine.plan(failover_document))
        assert first.success
        assert first.outcome_for(SERVICE).detail == "applied and refreshed"
        assert first.outcome_for(f"add {FAILOVER}").status is OutcomeStatus.APPLIED
        assert f"set {FAILOVER} mode" in first.excluded

        second = engine.execute(engine.plan(failover_document))
        assert second.counts["applied"] == 0
        assert second.counts["failed"] == 0

    def test_partial_failure(self, catalog, fake_host, minimal_document):
        """Test a failed scope creation blocks only that scope."""
        document = copy.deepcopy(minimal_document)
        document["scopes"]["192.168.20.0"] = {
            "start_range": "192.168.20.10",
            "end_range": "192.168.20.99",
            "subnet_mask": "255.255.255.0",
            "scope_name": "Guests",
        }
        actions = catalog.build(document).actions
        fake_host.learn(actions)
        fake_host.satisfy_resource("server")
        fake_host.fail(actions_by_id(catalog.build(document))[f"add {SCOPE}"])

        engine = ConvergenceEngine(catalog)
        report = engine.execute(engine.plan(document))

        assert report.outcome_for(f"add {SCOPE}").status is OutcomeStatus.FAILED
        for entry in report.entries:
            if entry.resource_id == f"scope[{SCOPE}]" and entry.action_id != f"add {SCOPE}":
                assert entry.status is OutcomeStatus.SKIPPED
                assert entry.outcome.blocked_by == f"add {SCOPE}"
        assert report.outcome_for("add 192.168.20.0").status is OutcomeStatus.APPLIED
        assert report.outcome_for("set 192.168.20.0 name").status is OutcomeStatus.UNCHANGED
        assert not report.success

    def test_concurrent_matches_sequential(self, fake_host, settings, failover_document):
        """Test a concurrent run reports the same outcomes in the same order."""
        catalog = ResourceCatalog(fake_host, state_query=fake_host, settings=settings)
        fake_host.learn(catalog.build(failover_document).actions)
        engine = ConvergenceEngine(catalog, max_workers=4)
        report = engine.execute(engine.plan(failover_document))
        plan = engine.plan(failover_document)
        assert [e.action_id for e in report.entries] == [a for a in plan.order if a not in report.excluded]
        assert report.success
