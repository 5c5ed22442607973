"""
Declarative objects produced by the rule compiler.

A RulePlan is a flat list of firewalld objects (services, ipsets and rich
rules) plus explicit ordering edges between them. Nothing here talks to
firewalld; see fwrule.firewalld for that.
"""

from dataclasses import dataclass, field
from graphlib import TopologicalSorter
from typing import List, Optional, Tuple, Union

KIND_HOST = "host"
KIND_NET = "net"

IPSET_TYPES = {KIND_HOST: "hash:ip", KIND_NET: "hash:net"}
IPSET_FAMILIES = {"ipv4": "inet", "ipv6": "inet6"}


@dataclass(frozen=True)
class AddressSet:
    """A named ipset holding either single hosts or subnets of one family."""
    name: str
    family: str
    kind: str
    members: Tuple[str, ...]

    @property
    def ref(self) -> str:
        return f"ipset:{self.name}"

    @property
    def ipset_type(self) -> str:
        return IPSET_TYPES[self.kind]

    @property
    def ipset_family(self) -> str:
        return IPSET_FAMILIES[self.family]


@dataclass(frozen=True)
class PortSpec:
    port: str
    protocol: str

    def __str__(self):
        return f"{self.port}/{self.protocol}"


@dataclass(frozen=True)
class ServiceSpec:
    """
    A custom firewalld service. When `zone` is set the service is also
    added to that zone directly, which opens its ports to every source.
    """
    name: str
    ports: Tuple[PortSpec, ...]
    zone: Optional[str] = None
    description: str = ""

    @property
    def ref(self) -> str:
        return f"service:{self.name}"


@dataclass(frozen=True)
class RuleSpec:
    """
    A rich rule. `source` names an AddressSet; None means any source of the
    rule's family.
    """
    name: str
    zone: str
    family: str
    protocol: str
    source: Optional[str] = None
    service: Optional[str] = None
    icmp_blocks: Tuple[str, ...] = ()
    action: str = "accept"

    @property
    def ref(self) -> str:
        return f"rich_rule:{self.name}"


PlanObject = Union[ServiceSpec, AddressSet, RuleSpec]


@dataclass
class RulePlan:
    rule: str
    services: List[ServiceSpec] = field(default_factory=list)
    address_sets: List[AddressSet] = field(default_factory=list)
    rich_rules: List[RuleSpec] = field(default_factory=list)
    edges: List[Tuple[str, str]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def objects(self) -> List[PlanObject]:
        return [*self.services, *self.address_sets, *self.rich_rules]

    def is_empty(self) -> bool:
        return not self.objects()

    def require(self, before: PlanObject, after: PlanObject):
        """Record that `before` must exist before `after` is created."""
        edge = (before.ref, after.ref)
        if edge not in self.edges:
            self.edges.append(edge)

    def ordered(self) -> List[PlanObject]:
        """
        Objects in an order that honors every edge. Ties keep insertion
        order, so the result is stable across runs.
        """
        by_ref = {obj.ref: obj for obj in self.objects()}
        sorter = TopologicalSorter()
        for ref in by_ref:
            sorter.add(ref)
        for before, after in self.edges:
            sorter.add(after, before)

        position = {ref: idx for idx, ref in enumerate(by_ref)}
        ordered = []
        sorter.prepare()
        while sorter.is_active():
            ready = sorted(sorter.get_ready(), key=lambda ref: position.get(ref, len(position)))
            for ref in ready:
                if ref in by_ref:
                    ordered.append(by_ref[ref])
                sorter.done(ref)
        return ordered
