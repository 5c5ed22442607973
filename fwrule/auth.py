import hmac
import logging
from typing import Dict, Any


def can_apply_rules(api_key: str, settings: Dict[str, Any]) -> bool:
    """Checks if the given API key may write rules to firewalld."""
    if not api_key:
        return False
    for key_info in settings.get("api_keys", []):
        stored_key = key_info.get("key")
        if stored_key and hmac.compare_digest(stored_key, api_key):
            return bool(key_info.get("allow_apply", False))
    return False


def is_valid_api_key(api_key: str, settings: Dict[str, Any]) -> bool:
    """
    Checks if an API key exists in the configuration.
    Uses constant-time comparison to prevent timing attacks.

    Iterates through ALL keys regardless of match so the running time does
    not reveal which key matched.
    """
    if not api_key:
        return False

    api_keys_list = settings.get("api_keys", [])
    if not api_keys_list:
        logging.warning("No API keys configured in settings")
        return False

    found = False
    for key_info in api_keys_list:
        stored_key = key_info.get("key", "")
        # Never compare against an empty key
        if not stored_key:
            stored_key = " " * len(api_key)
        # Bitwise OR keeps every comparison from short-circuiting
        found = found | hmac.compare_digest(stored_key, api_key)
    return found


def get_api_key_name(api_key: str, settings: Dict[str, Any]) -> str:
    """
    Returns the configured name for an API key, falling back to the first
    characters of the key so full keys never reach the logs.
    """
    if not api_key:
        return ""
    for key_info in settings.get("api_keys", []):
        if key_info.get("key") == api_key:
            return key_info.get("name") or f"{api_key[:8]}..."
    return f"{api_key[:8]}..."
