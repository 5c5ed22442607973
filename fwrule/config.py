import yaml
import sys
import os
import re
import logging
from dataclasses import dataclass
from typing import Dict, Any

DEFAULT_RULE_PREFIX = "fwr_"
DEFAULT_ZONE = "99_fwrule"
DEFAULT_ORDER = 11

# Prefixes end up at the start of ipset names, which must start with a letter
# and leave room for the generated part within the 31 character limit.
_PREFIX_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_-]{0,15}$")
_ZONE_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,17}$")


def is_valid_prefix(prefix: str) -> bool:
    return bool(_PREFIX_PATTERN.match(prefix or ""))


def is_valid_zone(zone: str) -> bool:
    return bool(_ZONE_PATTERN.match(zone or ""))


@dataclass(frozen=True)
class CompilerConfig:
    """Process-wide defaults handed to the rule compiler."""
    enable: bool = True
    rule_prefix: str = DEFAULT_RULE_PREFIX
    default_zone: str = DEFAULT_ZONE
    default_order: int = DEFAULT_ORDER

    def __post_init__(self):
        if not isinstance(self.enable, bool):
            raise ValueError(f"Invalid enable '{self.enable}'. Must be true or false")
        if not is_valid_prefix(self.rule_prefix):
            raise ValueError(f"Invalid rule_prefix '{self.rule_prefix}'")
        if not is_valid_zone(self.default_zone):
            raise ValueError(f"Invalid default_zone '{self.default_zone}'")
        if not isinstance(self.default_order, int) or self.default_order < 0:
            raise ValueError(f"Invalid default_order '{self.default_order}'. Must be a non-negative integer")

    @classmethod
    def from_settings(cls, settings: Dict[str, Any]) -> "CompilerConfig":
        firewalld_config = settings.get("firewalld") or {}
        return cls(
            enable=firewalld_config.get("enable", True),
            rule_prefix=firewalld_config.get("rule_prefix", DEFAULT_RULE_PREFIX),
            default_zone=firewalld_config.get("default_zone", DEFAULT_ZONE),
            default_order=firewalld_config.get("default_order", DEFAULT_ORDER),
        )


def setup_logging(settings: Dict[str, Any]):
    """
    Configures logging for the application.
    Ensures existing handlers (e.g., uvicorn's) are updated so DEBUG-level
    logs from modules like fwrule.firewalld are emitted when requested.
    """
    log_level = settings.get("logging", {}).get("level", "INFO").upper()

    # force=True replaces handlers installed before us (uvicorn, pytest)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
        force=True
    )

    logging.getLogger().setLevel(log_level)
    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(logger_name).setLevel(log_level)


def load_config() -> Dict[str, Any]:
    """
    Loads the YAML configuration file from the path specified
    by the FWRULE_CONFIG_PATH environment variable.
    """
    path = os.getenv("FWRULE_CONFIG_PATH")
    if not path:
        logging.critical("FWRULE_CONFIG_PATH environment variable not set.")
        sys.exit(1)

    try:
        resolved_path = os.path.realpath(path)
        if '..' in path or not os.path.isabs(resolved_path):
            logging.critical(f"Invalid configuration path: {path}")
            sys.exit(1)
    except (OSError, ValueError) as e:
        logging.critical(f"Error validating configuration path {path}: {e}")
        sys.exit(1)

    try:
        with open(resolved_path, 'r') as f:
            config = yaml.safe_load(f)

        if not isinstance(config, dict):
            logging.critical("Configuration file must contain a valid YAML dictionary")
            sys.exit(1)

        if not isinstance(config.get('api_keys'), list) or len(config['api_keys']) == 0:
            logging.critical("'api_keys' must be a non-empty list")
            sys.exit(1)

        seen_keys = set()
        for idx, key_info in enumerate(config['api_keys']):
            if not isinstance(key_info, dict):
                logging.critical(f"API key at index {idx} must be a dictionary")
                sys.exit(1)
            key = key_info.get('key')
            if not key:
                logging.critical(f"API key at index {idx} is missing 'key' field")
                sys.exit(1)
            if key in seen_keys:
                logging.critical(f"Duplicate API key detected: {key[:8]}... (showing first 8 chars)")
                sys.exit(1)
            seen_keys.add(key)

        firewalld_config = config.get('firewalld')
        if firewalld_config is not None and not isinstance(firewalld_config, dict):
            logging.critical("'firewalld' section must be a dictionary")
            sys.exit(1)
        try:
            CompilerConfig.from_settings(config)
        except ValueError as e:
            logging.critical(f"Invalid firewalld configuration: {e}")
            sys.exit(1)

        rules = config.get('rules', [])
        if not isinstance(rules, list):
            logging.critical("'rules' must be a list of rule definitions")
            sys.exit(1)

        return config
    except FileNotFoundError:
        logging.critical(f"Configuration file not found at {resolved_path}")
        sys.exit(1)
    except yaml.YAMLError as e:
        logging.critical(f"Error parsing YAML file: {e}")
        sys.exit(1)
