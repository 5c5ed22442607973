"""
Input normalization and address family classification for trusted networks
and destination ports.
"""

import ipaddress
import logging
import re
from dataclasses import dataclass, field
from typing import Any, FrozenSet, Iterable, List, Optional, Tuple

from .errors import InvalidRuleError

logger = logging.getLogger(__name__)

FAMILY_IPV4 = "ipv4"
FAMILY_IPV6 = "ipv6"
FAMILY_UNKNOWN = "unknown"
FAMILIES = (FAMILY_IPV4, FAMILY_IPV6)

HOST_PREFIXLEN = {FAMILY_IPV4: 32, FAMILY_IPV6: 128}

# Entries that open a rule to every source of the given families
ANY_SENTINELS = {
    "0.0.0.0/0": frozenset([FAMILY_IPV4]),
    "::/0": frozenset([FAMILY_IPV6]),
    "all": frozenset(FAMILIES),
    "any": frozenset(FAMILIES),
}

_SPLIT_RE = re.compile(r"[\s,]+")
_PORT_RE = re.compile(r"[0-9]+")


@dataclass(frozen=True)
class NetworkSpec:
    """One parsed trusted network entry."""
    original: str
    family: str
    address: str
    cidr: Optional[int] = None

    @property
    def is_host(self) -> bool:
        return self.cidr is not None and self.cidr == HOST_PREFIXLEN.get(self.family)

    @property
    def entry(self) -> str:
        """The form used as an ipset member or rich rule source."""
        if self.cidr is None or self.is_host:
            return self.address
        return f"{self.address}/{self.cidr}"

    def __str__(self):
        return self.entry


@dataclass
class ClassifiedNets:
    """Trusted networks grouped by address family."""
    ipv4: List[NetworkSpec] = field(default_factory=list)
    ipv6: List[NetworkSpec] = field(default_factory=list)
    unknown: List[NetworkSpec] = field(default_factory=list)
    allow_all: FrozenSet[str] = frozenset()

    @property
    def is_open(self) -> bool:
        return bool(self.allow_all)

    def for_family(self, family: str) -> List[NetworkSpec]:
        if family == FAMILY_IPV4:
            return self.ipv4
        if family == FAMILY_IPV6:
            return self.ipv6
        return self.unknown

    def families_present(self) -> List[str]:
        return [family for family in FAMILIES if self.for_family(family)]


# --- Trusted networks ---


def _flatten(value: Any) -> Iterable[str]:
    if value is None:
        return
    if isinstance(value, (list, tuple, set, frozenset)):
        for item in value:
            yield from _flatten(item)
        return
    for token in _SPLIT_RE.split(str(value)):
        if token:
            yield token


def normalize_trusted_nets(value: Any) -> List[str]:
    """
    Coerce a single address, a comma or whitespace separated string, or a
    (possibly nested) list into an ordered list of unique entries.
    """
    seen = set()
    entries = []
    for token in _flatten(value):
        if token not in seen:
            seen.add(token)
            entries.append(token)
    return entries


def allow_all_families(entry: str) -> FrozenSet[str]:
    """
    Return the families an any-address entry opens, or an empty set. Besides
    the sentinels, any network with a zero prefix length counts, whatever its
    spelling ('::0/0', '0.0.0.0/0.0.0.0', '10.1.2.3/0').
    """
    families = ANY_SENTINELS.get(entry.lower())
    if families is not None:
        return families
    try:
        network = ipaddress.ip_network(entry, strict=False)
    except ValueError:
        return frozenset()
    if network.prefixlen != 0:
        return frozenset()
    return frozenset([FAMILY_IPV4 if network.version == 4 else FAMILY_IPV6])


def parse_network(entry: str) -> NetworkSpec:
    """
    Parse one entry into a NetworkSpec. Anything that is not an IP address
    or CIDR network (usually a hostname) yields an 'unknown' spec.
    """
    try:
        network = ipaddress.ip_network(entry, strict=False)
    except ValueError:
        return NetworkSpec(original=entry, family=FAMILY_UNKNOWN, address=entry)

    family = FAMILY_IPV4 if network.version == 4 else FAMILY_IPV6
    return NetworkSpec(
        original=entry,
        family=family,
        address=str(network.network_address),
        cidr=network.prefixlen,
    )


def classify(entries: Iterable[str]) -> ClassifiedNets:
    """
    Bucket normalized entries by address family. A single any-address
    sentinel makes the whole list open; the remaining entries are then not
    classified at all.
    """
    entries = list(entries)
    opened = frozenset()
    for entry in entries:
        opened = opened | allow_all_families(entry)
    if opened:
        logger.debug("Trusted networks %s allow all sources for %s", entries, sorted(opened))
        return ClassifiedNets(allow_all=opened)

    classified = ClassifiedNets()
    for entry in entries:
        spec = parse_network(entry)
        classified.for_family(spec.family).append(spec)
    return classified


def split_hosts_and_nets(specs: Iterable[NetworkSpec]) -> Tuple[List[NetworkSpec], List[NetworkSpec]]:
    """Split one family's entries into single hosts and subnets."""
    hosts, nets = [], []
    for spec in specs:
        (hosts if spec.is_host else nets).append(spec)
    return hosts, nets


# --- Ports ---


def _check_port(rule_name: str, value: str) -> int:
    if not _PORT_RE.fullmatch(value):
        raise InvalidRuleError(rule_name, "Invalid port", value)
    port = int(value)
    if port < 1 or port > 65535:
        raise InvalidRuleError(rule_name, "Port out of range", value)
    return port


def normalize_port(value: Any, rule_name: str = "rule") -> str:
    """
    Normalize a single port or port range to firewalld's notation:
    '1024:2048' and '1024-2048' both become '1024-2048'.
    """
    text = str(value).strip().replace(":", "-")
    if "-" not in text:
        return str(_check_port(rule_name, text))

    low_text, _, high_text = text.partition("-")
    low = _check_port(rule_name, low_text.strip())
    high = _check_port(rule_name, high_text.strip())
    if low > high:
        raise InvalidRuleError(rule_name, "Invalid port range", str(value))
    if low == high:
        return str(low)
    return f"{low}-{high}"


def normalize_dports(value: Any, rule_name: str = "rule") -> List[str]:
    """Normalize a scalar, comma separated string or list of ports."""
    ports = []
    for token in _flatten(value):
        port = normalize_port(token, rule_name)
        if port not in ports:
            ports.append(port)
    return ports


def normalize_icmp_blocks(value: Any) -> List[str]:
    return normalize_trusted_nets(value)
