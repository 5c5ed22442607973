"""
Deterministic names for generated firewalld objects.

Names only depend on the rule input, so compiling the same rule twice (on
the same host or on another one) requests the very same ipsets, services
and rich rules from firewalld.
"""

import hashlib
import re
import string
from typing import Iterable

# firewalld's IPSET_MAXNAMELEN is 32 including the terminating NUL
IPSET_NAME_MAX_LEN = 31
SERVICE_SUFFIX_LEN = 6

_ALPHABET = string.ascii_letters + string.digits
_UNSAFE_CHARS = re.compile(r"[^\w-]", re.ASCII)
_REPEATED_SEPARATORS = re.compile(r"_+")


def seeded_string(seed: str, length: int) -> str:
    """Return a pseudo-random alphanumeric string fully determined by seed."""
    chars = []
    block = hashlib.sha256(seed.encode("utf-8")).digest()
    while len(chars) < length:
        chars.extend(_ALPHABET[byte % len(_ALPHABET)] for byte in block)
        block = hashlib.sha256(block + seed.encode("utf-8")).digest()
    return "".join(chars[:length])


def ipset_seed(family: str, kind: str, trusted_nets: Iterable[str]) -> str:
    return "_".join([family, kind, ",".join(sorted(set(trusted_nets)))])


def ipset_name(prefix: str, family: str, kind: str, trusted_nets: Iterable[str]) -> str:
    """
    Name of the ipset holding the `kind` ('host' or 'net') entries of one
    address family. The seed covers every original trusted network of the
    rule, not only the members of this set.
    """
    seed = ipset_seed(family, kind, trusted_nets)
    return (prefix + seeded_string(seed, IPSET_NAME_MAX_LEN))[:IPSET_NAME_MAX_LEN]


def sanitize_identifier(identifier: str) -> str:
    return _UNSAFE_CHARS.sub("_", identifier)


def _join(*parts) -> str:
    return _REPEATED_SEPARATORS.sub("_", "_".join(str(part) for part in parts if part != ""))


def rule_name(prefix: str, order: int, identifier: str, set_name: str) -> str:
    """
    e.g. rule_name('fwr_', 11, 'allow ssh', 'fwr_Xy12') -> 'fwr_11_allow_ssh_fwr_Xy12'
    """
    return _join(prefix, order, sanitize_identifier(identifier), set_name)


def service_name(prefix: str, identifier: str) -> str:
    """
    The seeded suffix keeps identifiers that sanitize alike apart:
    'allow ssh' and 'allow/ssh' both read 'allow_ssh' once sanitized.
    """
    return _join(prefix, sanitize_identifier(identifier), seeded_string(identifier, SERVICE_SUFFIX_LEN))
