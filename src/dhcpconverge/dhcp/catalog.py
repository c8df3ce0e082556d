"""
Resource catalog: expands a DesiredConfig into resource actions.

Server role actions are ordered install -> configuration -> service. Each
scope and failover relationship gets one creation action plus one action per
settable attribute, and every attribute action requires its creation action.
Mode-specific failover attributes are gated by applicability and never reach
the plan for the wrong mode.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from functools import partial
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple, Union

import structlog

from dhcpconverge.config.settings import Settings, get_settings
from dhcpconverge.dhcp import commands, scripts
from dhcpconverge.dhcp.models import (
    DesiredConfig,
    FailoverConfig,
    HotStandby,
    LoadBalance,
    ScopeConfig,
)
from dhcpconverge.dhcp.parser import parse_desired_config
from dhcpconverge.engine.actions import (
    AttributeAction,
    ImmutableAttributeAction,
    MembershipAction,
    PresenceAction,
    Probe,
    ResourceAction,
    RuntimeGuard,
    ServiceAction,
)
from dhcpconverge.engine.comparator import ValueKind, parse_duration
from dhcpconverge.engine.results import Outcome, OutcomeStatus
from dhcpconverge.executors.base import Executor, ExecutorStateQuery, StateQuery

logger = structlog.get_logger()

SERVER = "server"
INSTALL = "install dhcp feature"
SECURITY_GROUPS = "add DHCP security groups"
AUTHORISE = "authorise server"
CONFLICT_DETECTION = "set conflict detection attempts"
SERVICE = "run dhcpserver service"
DEPLOY_FAILOVER_SCRIPT = f"deploy {scripts.FAILOVER_SCOPE_SCRIPT_NAME}"


def membership_action_id(member: str) -> str:
    return f'add {member} to "{commands.ADMIN_GROUP}"'


def scope_action_id(scope_id: str, attribute: Optional[str] = None) -> str:
    return f"add {scope_id}" if attribute is None else f"set {scope_id} {attribute}"


def failover_action_id(name: str, attribute: Optional[str] = None) -> str:
    return f"add {name}" if attribute is None else f"set {name} {attribute}"


def auto_state_transition(state_switch_interval: str) -> bool:
    """Automatic state transition is on iff the switch interval is non-zero."""
    return parse_duration(state_switch_interval) != timedelta(0)


def existed_before_run(create_id: str) -> RuntimeGuard:
    """Guard for checks that only matter on a resource that existed before this run."""

    def guard(outcomes: Mapping[str, Outcome]) -> bool:
        outcome = outcomes.get(create_id)
        return outcome is not None and outcome.status is OutcomeStatus.UNCHANGED

    return guard


@dataclass(frozen=True)
class CatalogResult:
    """Actions for one run, in declaration order."""

    actions: Tuple[ResourceAction, ...]
    warnings: Tuple[str, ...] = ()
    inapplicable: Tuple[str, ...] = ()


class ResourceCatalog:
    """Builds the action set for a desired DHCP configuration."""

    def __init__(
        self,
        executor: Executor,
        state_query: Optional[StateQuery] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._executor = executor
        self._state_query = state_query or ExecutorStateQuery(executor)
        self._settings = settings or get_settings()

    def build(self, desired: Union[DesiredConfig, Mapping[str, Any]]) -> CatalogResult:
        """
        Expand a desired configuration.

        Raises:
            ValidationError: when a raw document fails validation
        """
        config = desired if isinstance(desired, DesiredConfig) else parse_desired_config(desired)

        candidates: List[ResourceAction] = list(self._server_actions(config))
        for scope in config.scopes:
            candidates.extend(self._scope_actions(scope))
        if config.failovers:
            candidates.append(self._deploy_script_action())
            for failover in config.failovers:
                candidates.extend(self._failover_actions(failover, config))

        actions = tuple(action for action in candidates if action.is_applicable())
        inapplicable = tuple(action.action_id for action in candidates if not action.is_applicable())

        for warning in config.warnings:
            logger.warning("catalog_warning", message=warning)
        logger.debug(
            "catalog_built",
            actions=len(actions),
            inapplicable=len(inapplicable),
            scopes=len(config.scopes),
            failovers=len(config.failovers),
        )
        return CatalogResult(actions=actions, warnings=config.warnings, inapplicable=inapplicable)

    @property
    def _io(self) -> dict:
        return {"executor": self._executor, "state_query": self._state_query}

    def _attribute(
        self,
        action_id: str,
        resource_id: str,
        attribute: str,
        desired: Any,
        query: str,
        command: Optional[str],
        kind: ValueKind = ValueKind.SCALAR,
        **kwargs: Any,
    ) -> AttributeAction:
        return AttributeAction(
            action_id,
            resource_id,
            attribute,
            desired,
            probe=Probe(query, kind),
            command=command,
            **self._io,
            **kwargs,
        )

    # --- server role -----------------------------------------------------------

    def _server_actions(self, config: DesiredConfig) -> Iterator[ResourceAction]:
        server = config.server
        notify_service = (SERVICE,)

        yield self._attribute(
            INSTALL,
            SERVER,
            "feature_installed",
            True,
            commands.feature_installed_query(),
            commands.install_feature_command(),
            kind=ValueKind.BOOLEAN,
        )
        yield PresenceAction(
            SECURITY_GROUPS,
            SERVER,
            probe=Probe(commands.security_group_query()),
            command=commands.add_security_groups_command(),
            requires=(INSTALL,),
            notify=notify_service,
            **self._io,
        )

        # casefolded name -> (name, wanted); an explicit administrator entry
        # keeps the domain user even when population is disabled
        members: Dict[str, Tuple[str, bool]] = {
            server.domain_user.casefold(): (server.domain_user, server.populate_security_group)
        }
        for member in server.administrators:
            name, _ = members.get(member.casefold(), (member, True))
            members[member.casefold()] = (name, True)
        for member, wanted in members.values():
            yield MembershipAction(
                membership_action_id(member),
                SERVER,
                "group_member",
                member,
                probe=Probe(commands.group_members_query(), ValueKind.UNORDERED_SET),
                command=commands.add_group_member_command(member),
                requires=(SECURITY_GROUPS,),
                before=(AUTHORISE,),
                notify=notify_service,
                applicability=lambda wanted=wanted: wanted,
                **self._io,
            )

        yield MembershipAction(
            AUTHORISE,
            SERVER,
            "authorised_in_dc",
            config.host.fqdn,
            probe=Probe(commands.authorised_servers_query(), ValueKind.UNORDERED_SET),
            command=commands.authorise_server_command(server.domain_user, server.domain_pass),
            requires=(SECURITY_GROUPS,),
            notify=notify_service,
            secrets=(server.domain_pass,),
            **self._io,
        )
        yield self._attribute(
            CONFLICT_DETECTION,
            SERVER,
            "conflict_detection_attempts",
            server.conflict_detection_attempts,
            commands.server_setting_query("ConflictDetectionAttempts"),
            commands.set_server_setting_command(ConflictDetectionAttempts=server.conflict_detection_attempts),
            kind=ValueKind.NUMBER,
            requires=(INSTALL,),
            notify=notify_service,
        )
        yield ServiceAction(
            SERVICE,
            SERVER,
            probe=Probe(commands.service_status_query()),
            start_command=commands.start_service_command(),
            restart_command=commands.restart_service_command(),
            requires=(INSTALL,),
            **self._io,
        )

    # --- scopes ----------------------------------------------------------------

    def _scope_actions(self, scope: ScopeConfig) -> Iterator[ResourceAction]:
        scope_id = scope.scope_id
        rid = scope.resource_id
        create = scope_action_id(scope_id)
        query = partial(commands.scope_query, scope_id)
        set_scope = partial(commands.set_scope_command, scope_id)
        set_option = partial(commands.set_option_command, scope_id)
        ranges = {"StartRange": scope.start_range, "EndRange": scope.end_range}

        yield PresenceAction(
            create,
            rid,
            probe=Probe(query()),
            command=commands.add_scope_command(scope),
            requires=(SERVICE,),
            **self._io,
        )

        def attribute(suffix: str, name: str, desired: Any, value: str, command: Optional[str], **kwargs: Any) -> AttributeAction:
            return self._attribute(
                scope_action_id(scope_id, suffix), rid, name, desired, value, command, requires=(create,), **kwargs
            )

        yield attribute("start range", "start_range", scope.start_range, query("$o.StartRange.IPAddressToString"), set_scope(**ranges))
        yield attribute("end range", "end_range", scope.end_range, query("$o.EndRange.IPAddressToString"), set_scope(**ranges))
        yield ImmutableAttributeAction(
            scope_action_id(scope_id, "subnet mask"),
            rid,
            "subnet_mask",
            scope.subnet_mask,
            probe=Probe(query("$o.SubnetMask.IPAddressToString")),
            reason="subnet mask cannot be changed in place; remove and recreate the scope",
            requires=(create,),
            runtime_guard=existed_before_run(create),
            **self._io,
        )
        yield attribute("name", "scope_name", scope.scope_name, query("$o.Name"), set_scope(Name=scope.scope_name))
        yield attribute(
            "description", "description", scope.description, query("$o.Description"), set_scope(Description=scope.description)
        )
        yield attribute(
            "dns domain",
            "dns_domain",
            scope.dns_domain,
            commands.option_query(scope_id, commands.OPTION_DNS_DOMAIN),
            set_option(DnsDomain=scope.dns_domain) if scope.dns_domain else None,
            applicability=lambda: scope.dns_domain is not None,
        )
        yield attribute(
            "dns server",
            "dns_server",
            list(scope.dns_server or ()),
            commands.option_query(scope_id, commands.OPTION_DNS_SERVER, as_list=True),
            set_option(DnsServer=list(scope.dns_server)) if scope.dns_server else None,
            kind=ValueKind.UNORDERED_SET,
            applicability=lambda: scope.dns_server is not None,
        )
        yield attribute(
            "router",
            "router",
            scope.router,
            commands.option_query(scope_id, commands.OPTION_ROUTER),
            set_option(Router=scope.router) if scope.router else None,
            applicability=lambda: scope.router is not None,
        )
        yield attribute(
            "activate_policies",
            "activate_policies",
            scope.activate_policies,
            query("$o.ActivatePolicies"),
            set_scope(ActivatePolicies=scope.activate_policies),
            kind=ValueKind.BOOLEAN,
        )
        yield attribute(
            "delay", "delay", scope.delay, query("$o.Delay"), set_scope(Delay=scope.delay), kind=ValueKind.NUMBER
        )
        yield attribute(
            "lease_duration",
            "lease_duration",
            scope.lease_duration,
            query("$o.LeaseDuration.ToString()"),
            set_scope(LeaseDuration=scope.lease_duration),
            kind=ValueKind.DURATION,
        )
        yield attribute(
            "max_bootp_clients",
            "max_bootp_clients",
            scope.max_bootp_clients,
            query("$o.MaxBootpClients"),
            set_scope(MaxBootpClients=scope.max_bootp_clients),
            kind=ValueKind.NUMBER,
        )
        yield attribute(
            "state", "state", scope.state, query("$o.State.ToString().ToLowerInvariant()"), set_scope(State=scope.state)
        )
        yield attribute(
            "type", "type", scope.type, query("$o.Type.ToString().ToLowerInvariant()"), set_scope(Type=scope.type)
        )

    # --- failover --------------------------------------------------------------

    def _script_path(self) -> str:
        return scripts.script_path(self._settings.script_dir)

    def _deploy_script_action(self) -> ResourceAction:
        path = self._script_path()
        return self._attribute(
            DEPLOY_FAILOVER_SCRIPT,
            f"file[{scripts.FAILOVER_SCOPE_SCRIPT_NAME}]",
            "sha256",
            scripts.script_sha256(),
            commands.file_hash_query(path),
            commands.write_file_command(path, scripts.script_bytes()),
        )

    def _failover_actions(self, failover: FailoverConfig, config: DesiredConfig) -> Iterator[ResourceAction]:
        name = failover.name
        rid = failover.resource_id
        create = failover_action_id(name)
        query = partial(commands.failover_query, name)
        set_failover = partial(commands.set_failover_command, name)

        # Derived once here; the creation command and the flag action share it.
        auto = auto_state_transition(failover.state_switch_interval)
        load_balance = failover.mode_settings if isinstance(failover.mode_settings, LoadBalance) else None
        hot_standby = failover.mode_settings if isinstance(failover.mode_settings, HotStandby) else None

        declared_scopes = tuple(scope_action_id(s) for s in failover.scope_ids if config.scope(s) is not None)
        yield PresenceAction(
            create,
            rid,
            probe=Probe(query()),
            command=commands.add_failover_command(failover, auto),
            requires=(SERVICE, *declared_scopes),
            secrets=(failover.shared_secret,),
            **self._io,
        )

        def attribute(suffix: str, name_: str, desired: Any, value: str, command: Optional[str], **kwargs: Any) -> AttributeAction:
            kwargs["requires"] = (create, *kwargs.get("requires", ()))
            return self._attribute(failover_action_id(name, suffix), rid, name_, desired, value, command, **kwargs)

        yield attribute(
            "mode",
            "mode",
            failover.mode.value,
            query("$o.Mode.ToString().ToLowerInvariant()"),
            set_failover(Mode=failover.mode.value),
            runtime_guard=existed_before_run(create),
        )
        yield attribute(
            "subnets",
            "scope_id",
            list(failover.scope_ids),
            query("@($o.ScopeId | ForEach-Object { $_.IPAddressToString })"),
            commands.update_failover_scopes_command(self._script_path(), name, failover.scope_ids),
            kind=ValueKind.UNORDERED_SET,
            requires=(DEPLOY_FAILOVER_SCRIPT,),
        )
        yield attribute(
            "loadbalance_percent",
            "loadbalance_percent",
            load_balance.percent if load_balance else None,
            query("$o.LoadBalancePercent"),
            set_failover(LoadBalancePercent=load_balance.percent) if load_balance else None,
            kind=ValueKind.NUMBER,
            applicability=lambda: load_balance is not None,
        )
        yield attribute(
            "max_client_lead_time",
            "max_client_lead_time",
            failover.max_client_lead_time,
            query("$o.MaxClientLeadTime.ToString()"),
            set_failover(MaxClientLeadTime=failover.max_client_lead_time),
            kind=ValueKind.DURATION,
        )
        yield attribute(
            "reserve_percent",
            "reserve_percent",
            hot_standby.reserve_percent if hot_standby else None,
            query("$o.ReservePercent"),
            set_failover(ReservePercent=hot_standby.reserve_percent) if hot_standby else None,
            kind=ValueKind.NUMBER,
            applicability=lambda: hot_standby is not None,
        )
        yield attribute(
            "server_role",
            "server_role",
            hot_standby.server_role.value if hot_standby else None,
            query("$o.ServerRole.ToString().ToLowerInvariant()"),
            set_failover(ServerRole=hot_standby.server_role.value) if hot_standby else None,
            applicability=lambda: hot_standby is not None,
        )
        yield attribute(
            "autostatetransition",
            "auto_state_transition",
            auto,
            query("$o.AutoStateTransition"),
            set_failover(AutoStateTransition=auto),
            kind=ValueKind.BOOLEAN,
        )
        interval_command = (
            set_failover(AutoStateTransition=True, StateSwitchInterval=failover.state_switch_interval)
            if auto
            else set_failover(AutoStateTransition=False)
        )
        yield attribute(
            "state_switch_interval",
            "state_switch_interval",
            failover.state_switch_interval,
            query("if ($o.StateSwitchInterval) { $o.StateSwitchInterval.ToString() } else { '0' }"),
            interval_command,
            kind=ValueKind.DURATION,
            requires=(failover_action_id(name, "autostatetransition"),),
        )
