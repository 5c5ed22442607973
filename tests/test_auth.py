import pytest
from fwrule import auth


@pytest.fixture
def settings():
    return {
        "api_keys": [
            {"name": "admin", "key": "ADMIN_KEY", "allow_apply": True},
            {"key": "VIEW_KEY_123456"},
            {"name": "empty", "key": ""},
        ]
    }


@pytest.mark.parametrize("key, expected", [
    ("ADMIN_KEY", True),
    ("VIEW_KEY_123456", True),
    ("WRONG", False),
    ("", False),
    (None, False),
])
def test_is_valid_api_key(settings, key, expected):
    assert auth.is_valid_api_key(key, settings) is expected


def test_no_keys_configured():
    assert auth.is_valid_api_key("ADMIN_KEY", {}) is False


def test_can_apply_rules(settings):
    assert auth.can_apply_rules("ADMIN_KEY", settings) is True
    assert auth.can_apply_rules("VIEW_KEY_123456", settings) is False
    assert auth.can_apply_rules("UNKNOWN", settings) is False


def test_get_api_key_name_never_leaks_full_key(settings):
    assert auth.get_api_key_name("ADMIN_KEY", settings) == "admin"
    assert auth.get_api_key_name("VIEW_KEY_123456", settings) == "VIEW_KEY..."
    assert auth.get_api_key_name("", settings) == ""
