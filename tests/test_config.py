import logging
import pytest
from fwrule import config


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    """Writes a YAML config and points FWRULE_CONFIG_PATH at it."""
    def write(content: str):
        path = tmp_path / "fwrule.yaml"
        path.write_text(content)
        monkeypatch.setenv("FWRULE_CONFIG_PATH", str(path))
        return path
    return write


VALID_CONFIG = """
logging:
  level: DEBUG
api_keys:
  - name: ops
    key: OPS_KEY
    allow_apply: true
firewalld:
  enable: true
  rule_prefix: site_
  default_zone: internal
rules:
  - name: allow_ssh
    trusted_nets: [10.0.0.0/8]
    protocol: tcp
    dports: [22]
"""


def test_load_valid_config(config_file):
    config_file(VALID_CONFIG)
    settings = config.load_config()
    assert settings["firewalld"]["rule_prefix"] == "site_"
    assert settings["rules"][0]["name"] == "allow_ssh"


def test_missing_env_var_exits(monkeypatch):
    monkeypatch.delenv("FWRULE_CONFIG_PATH", raising=False)
    with pytest.raises(SystemExit):
        config.load_config()


def test_missing_file_exits(tmp_path, monkeypatch):
    monkeypatch.setenv("FWRULE_CONFIG_PATH", str(tmp_path / "missing.yaml"))
    with pytest.raises(SystemExit):
        config.load_config()


@pytest.mark.parametrize("content", [
    "just a string",
    "api_keys: []",
    "api_keys:\n  - name: no-key",
    "api_keys:\n  - key: A\n  - key: A",
    "api_keys:\n  - key: A\nfirewalld:\n  rule_prefix: '1bad'",
    "api_keys:\n  - key: A\nfirewalld:\n  default_zone: 'this-zone-name-is-too-long'",
    "api_keys:\n  - key: A\nfirewalld:\n  enable: 'false'",
    "api_keys:\n  - key: A\nfirewalld:\n  enable: 0",
    "api_keys:\n  - key: A\nrules: {name: x}",
    "api_keys: [unclosed",
])
def test_invalid_config_exits(config_file, content):
    config_file(content)
    with pytest.raises(SystemExit):
        config.load_config()


def test_compiler_config_from_settings():
    compiler_config = config.CompilerConfig.from_settings({
        "firewalld": {"enable": False, "rule_prefix": "site_", "default_zone": "internal", "default_order": 30}
    })
    assert compiler_config == config.CompilerConfig(
        enable=False, rule_prefix="site_", default_zone="internal", default_order=30
    )


def test_compiler_config_defaults():
    compiler_config = config.CompilerConfig.from_settings({})
    assert compiler_config.enable is True
    assert compiler_config.rule_prefix == config.DEFAULT_RULE_PREFIX
    assert compiler_config.default_zone == config.DEFAULT_ZONE
    assert compiler_config.default_order == config.DEFAULT_ORDER


@pytest.mark.parametrize("kwargs", [
    {"rule_prefix": ""},
    {"rule_prefix": "has space"},
    {"default_zone": "bad/zone"},
    {"default_order": -1},
    {"enable": "false"},
    {"enable": None},
])
def test_compiler_config_rejects_invalid(kwargs):
    with pytest.raises(ValueError):
        config.CompilerConfig(**kwargs)


def test_setup_logging_sets_level():
    config.setup_logging({"logging": {"level": "debug"}})
    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("uvicorn.error").level == logging.DEBUG
    config.setup_logging({})
    assert logging.getLogger().level == logging.INFO


def test_quoted_enable_is_not_truthy(config_file, caplog):
    config_file("api_keys:\n  - key: A\nfirewalld:\n  enable: 'false'\n")
    with caplog.at_level(logging.CRITICAL), pytest.raises(SystemExit):
        config.load_config()
    assert "enable" in caplog.text
