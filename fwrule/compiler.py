"""
Rule compiler for fwrule.

Turns one RuleRequest into a RulePlan:
- trusted networks are normalized and grouped by address family
- each family is split into a host ipset and a net ipset
- a custom service is created when ports are given
- one rich rule is emitted per family and ipset, ordered after the
  objects it references

Compilation is a pure function of the request and the CompilerConfig.
"""

import logging
from typing import List, Optional

from . import naming
from . import netlist
from .config import CompilerConfig
from .models import RuleRequest
from .plan import KIND_HOST, KIND_NET, AddressSet, PortSpec, RulePlan, RuleSpec, ServiceSpec

logger = logging.getLogger(__name__)

PORT_PROTOCOLS = ("tcp", "udp", "all")
PROTOCOL_LESS = ("icmp", "ah", "esp")


def _warn(plan: RulePlan, message: str):
    logger.warning(message)
    plan.warnings.append(message)


def resolve_families(apply_to: str, classified: netlist.ClassifiedNets) -> List[str]:
    """
    Resolve apply_to into the address families to emit rules for. This
    happens once per compilation; 'auto' follows the classified input.
    """
    if apply_to == "auto":
        if classified.is_open:
            families = [family for family in netlist.FAMILIES if family in classified.allow_all]
        else:
            families = classified.families_present()
    elif apply_to == "all":
        families = list(netlist.FAMILIES)
    else:
        families = [apply_to]

    if classified.is_open:
        families = [family for family in families if family in classified.allow_all]
    return families


def _port_specs(ports: List[str], protocol: str) -> List[PortSpec]:
    protocols = ["tcp", "udp"] if protocol == "all" else [protocol]
    return [PortSpec(port, proto) for port in ports for proto in protocols]


def _address_sets(
    prefix: str, family: str, specs: List[netlist.NetworkSpec], trusted_nets: List[str]
) -> List[AddressSet]:
    hosts, nets = netlist.split_hosts_and_nets(specs)
    sets = []
    for kind, members in ((KIND_HOST, hosts), (KIND_NET, nets)):
        if not members:
            continue
        entries = []
        for spec in members:
            if spec.entry not in entries:
                entries.append(spec.entry)
        sets.append(AddressSet(
            name=naming.ipset_name(prefix, family, kind, trusted_nets),
            family=family,
            kind=kind,
            members=tuple(entries),
        ))
    return sets


def compile_rule(rule: RuleRequest, config: Optional[CompilerConfig] = None) -> RulePlan:
    """
    Compile a rule into the firewalld objects that implement it.

    Raises:
        InvalidRuleError: If the ports cannot be normalized
    """
    config = config or CompilerConfig()
    plan = RulePlan(rule=rule.name)

    if not config.enable:
        _warn(plan, f"firewalld rule management is disabled; rule '{rule.name}' was not compiled")
        return plan

    prefix = rule.prefix or config.rule_prefix
    zone = rule.zone or config.default_zone
    order = config.default_order if rule.order is None else rule.order

    trusted_nets = netlist.normalize_trusted_nets(rule.trusted_nets)
    classified = netlist.classify(trusted_nets)
    if classified.unknown:
        hostnames = ", ".join(spec.original for spec in classified.unknown)
        _warn(plan, f"Rule '{rule.name}': hostnames are not supported in trusted_nets and were ignored: {hostnames}")

    families = resolve_families(rule.apply_to, classified)
    if classified.is_open and not families:
        _warn(plan, f"Rule '{rule.name}': trusted_nets allow all sources only for families excluded by apply_to={rule.apply_to}")
        return plan

    ports = netlist.normalize_dports(rule.dports, rule.name)
    icmp_blocks = tuple(netlist.normalize_icmp_blocks(rule.icmp_blocks)) if rule.protocol == "icmp" else ()
    if ports and rule.protocol in PROTOCOL_LESS:
        _warn(plan, f"Rule '{rule.name}': dports are ignored for protocol {rule.protocol}")
        ports = []
    if rule.icmp_blocks and rule.protocol != "icmp":
        _warn(plan, f"Rule '{rule.name}': icmp_blocks are ignored for protocol {rule.protocol}")

    service = None
    if ports:
        service = ServiceSpec(
            name=naming.service_name(prefix, rule.name),
            ports=tuple(_port_specs(ports, rule.protocol)),
            zone=zone if classified.is_open else None,
            description=f"Ports of rule {rule.name}",
        )
        if classified.is_open:
            plan.services.append(service)
            logger.info(f"Rule '{rule.name}' allows all sources; binding service {service.name} to zone {zone}")
            return plan

    for family in families:
        if classified.is_open:
            sources = [None]
        else:
            sources = _address_sets(prefix, family, classified.for_family(family), trusted_nets)
            if not sources:
                logger.debug(f"Rule '{rule.name}': no {family} entries, nothing to emit")
                continue

        for address_set in sources:
            if address_set is not None:
                plan.address_sets.append(address_set)
            rich_rule = RuleSpec(
                name=naming.rule_name(
                    prefix, order, rule.name, address_set.name if address_set else family
                ),
                zone=zone,
                family=family,
                protocol=rule.protocol,
                source=address_set.name if address_set else None,
                service=service.name if service else None,
                icmp_blocks=icmp_blocks,
            )
            plan.rich_rules.append(rich_rule)
            if service is not None:
                plan.require(service, rich_rule)
            if address_set is not None:
                plan.require(address_set, rich_rule)

    # Services only exist for rules that reference them
    if service is not None and plan.rich_rules:
        plan.services.append(service)
    elif service is not None:
        _warn(plan, f"Rule '{rule.name}': no rich rule uses service {service.name}, so it was not created")

    if plan.is_empty():
        logger.info(f"Rule '{rule.name}' compiled to no firewalld objects")
    return plan


def compile_rules(rules: List[RuleRequest], config: Optional[CompilerConfig] = None) -> List[RulePlan]:
    return [compile_rule(rule, config) for rule in rules]
