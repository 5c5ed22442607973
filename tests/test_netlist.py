import pytest
from fwrule import netlist
from fwrule.errors import InvalidRuleError

# --- Trusted network normalization ---

@pytest.mark.parametrize("value, expected", [
    ("10.0.0.1", ["10.0.0.1"]),
    ("10.0.0.1,10.0.0.2", ["10.0.0.1", "10.0.0.2"]),
    ("10.0.0.1, 10.0.0.2  2001:db8::/32", ["10.0.0.1", "10.0.0.2", "2001:db8::/32"]),
    (["10.0.0.1", ["10.0.0.2", "10.0.0.1"]], ["10.0.0.1", "10.0.0.2"]),
    (None, []),
    ([], []),
])
def test_normalize_trusted_nets(value, expected):
    """Scalars, separated strings and nested lists become one ordered unique list."""
    assert netlist.normalize_trusted_nets(value) == expected


@pytest.mark.parametrize("entry, families", [
    ("0.0.0.0/0", {"ipv4"}),
    ("::/0", {"ipv6"}),
    ("ALL", {"ipv4", "ipv6"}),
    ("any", {"ipv4", "ipv6"}),
    ("::0/0", {"ipv6"}),
    ("0.0.0.0/0.0.0.0", {"ipv4"}),
    ("10.1.2.3/0", {"ipv4"}),
    ("2001:db8::/0", {"ipv6"}),
    ("10.0.0.0/8", set()),
    ("bastion.example.com", set()),
])
def test_allow_all_families(entry, families):
    assert netlist.allow_all_families(entry) == families


def test_parse_network_host_and_net():
    host = netlist.parse_network("10.0.0.1")
    assert host.family == "ipv4"
    assert host.cidr == 32
    assert host.is_host
    assert host.entry == "10.0.0.1"

    net = netlist.parse_network("10.0.0.5/24")
    assert net.family == "ipv4"
    assert not net.is_host
    assert net.entry == "10.0.0.0/24"

    v6 = netlist.parse_network("2001:db8::1/128")
    assert v6.family == "ipv6"
    assert v6.is_host
    assert v6.entry == "2001:db8::1"


def test_parse_network_hostname_is_unknown():
    """Hostnames never raise; they land in the unknown bucket."""
    spec = netlist.parse_network("bastion.example.com")
    assert spec.family == "unknown"
    assert spec.cidr is None
    assert not spec.is_host


def test_classify_groups_by_family():
    classified = netlist.classify(["10.0.0.1", "2001:db8::/32", "gateway.local", "192.168.0.0/16"])
    assert [s.entry for s in classified.ipv4] == ["10.0.0.1", "192.168.0.0/16"]
    assert [s.entry for s in classified.ipv6] == ["2001:db8::/32"]
    assert [s.original for s in classified.unknown] == ["gateway.local"]
    assert not classified.is_open
    assert classified.families_present() == ["ipv4", "ipv6"]


def test_classify_sentinel_skips_classification():
    classified = netlist.classify(["10.0.0.1", "0.0.0.0/0", "gateway.local"])
    assert classified.is_open
    assert classified.allow_all == {"ipv4"}
    assert classified.ipv4 == []
    assert classified.unknown == []


def test_split_hosts_and_nets_never_mixes_kinds():
    specs = [netlist.parse_network(e) for e in ["10.0.0.1", "10.0.0.0/24", "10.0.1.1/32", "10.1.0.0/16"]]
    hosts, nets = netlist.split_hosts_and_nets(specs)
    assert [s.entry for s in hosts] == ["10.0.0.1", "10.0.1.1"]
    assert [s.entry for s in nets] == ["10.0.0.0/24", "10.1.0.0/16"]


# --- Ports ---

@pytest.mark.parametrize("value, expected", [
    (22, ["22"]),
    ("80", ["80"]),
    ("1024:2048", ["1024-2048"]),
    ("1024-2048", ["1024-2048"]),
    ("443:443", ["443"]),
    ([80, "443", "8000:8080", 80], ["80", "443", "8000-8080"]),
    ("80,443", ["80", "443"]),
    (None, []),
])
def test_normalize_dports(value, expected):
    assert netlist.normalize_dports(value) == expected


@pytest.mark.parametrize("value", ["0", "65536", "http", "2048:1024", "10-x", "\u00b2", "1\u00b2-30"])
def test_normalize_dports_rejects_invalid(value):
    with pytest.raises(InvalidRuleError):
        netlist.normalize_dports(value, "bad_rule")


def test_invalid_port_error_names_rule():
    with pytest.raises(InvalidRuleError, match="bad_rule"):
        netlist.normalize_port("70000", "bad_rule")


@pytest.mark.parametrize("entries", [["::0/0"], ["0.0.0.0/0.0.0.0", "10.0.0.1"], ["10.1.2.3/0"]])
def test_classify_zero_prefix_opens_family(entries):
    classified = netlist.classify(entries)
    assert classified.is_open
    assert classified.ipv4 == [] and classified.ipv6 == []
