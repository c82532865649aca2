"""Tests for environment settings: required values, defaults, numeric validation."""
import pytest

from charge_gateway.config import DEFAULT_AUTH_TIMEOUT, REQUIRED_VARS, load_settings
from charge_gateway.errors import ConfigError

BASE_ENV = {
    "CHARGER_ACCOUNT_EMAIL": "driver@example.com",
    "CHARGER_ACCOUNT_PASSWORD": "pw",
    "CHARGER_OAUTH_CLIENT_ID": "idp-client",
    "CHARGER_VENDOR_CLIENT_ID": "vendor-client",
    "CHARGER_VENDOR_CLIENT_SECRET": "vendor-secret",
    "CHARGER_API_BASE_URL": "https://api.vendor.test/v1/",
    "CHARGER_ID": "CH-1",
}


def test_defaults_derived_from_base_url():
    s = load_settings(BASE_ENV)
    assert s.api_base_url == "https://api.vendor.test/v1"
    assert s.authorize_url == "https://api.vendor.test/v1/oauth/authorize"
    assert s.token_url == "https://api.vendor.test/v1/oauth/token"
    assert s.evse_id == "CH-1"
    assert s.auth_timeout == DEFAULT_AUTH_TIMEOUT
    assert s.credentials.oauth_client_id == "idp-client"
    assert s.log_level == "INFO"


def test_optional_overrides():
    env = dict(
        BASE_ENV,
        CHARGER_EVSE_ID="EVSE-2",
        CHARGER_AUTHORIZE_URL="https://login.vendor.test/authorize/",
        CHARGER_AUTH_TIMEOUT="30",
        CHARGER_DEFAULT_TOKEN_LIFETIME="120",
        CHARGER_LOG_LEVEL="debug",
    )
    s = load_settings(env)
    assert s.evse_id == "EVSE-2"
    assert s.authorize_url == "https://login.vendor.test/authorize"
    assert s.auth_timeout == 30.0
    assert s.default_token_lifetime == 120
    assert s.log_level == "DEBUG"


def test_all_missing_refuses_to_start():
    with pytest.raises(ConfigError) as exc:
        load_settings({})
    for name in REQUIRED_VARS:
        assert name in str(exc.value)


@pytest.mark.parametrize("name", REQUIRED_VARS)
def test_each_required_value(name):
    env = dict(BASE_ENV)
    env[name] = "   "
    with pytest.raises(ConfigError, match=name):
        load_settings(env)


@pytest.mark.parametrize("value", ["abc", "0", "-5"])
def test_invalid_timeout(value):
    with pytest.raises(ConfigError, match="CHARGER_AUTH_TIMEOUT"):
        load_settings(dict(BASE_ENV, CHARGER_AUTH_TIMEOUT=value))


@pytest.mark.parametrize("value", ["verbose", "trace", "10"])
def test_unknown_log_level_refused(value):
    with pytest.raises(ConfigError, match="CHARGER_LOG_LEVEL"):
        load_settings(dict(BASE_ENV, CHARGER_LOG_LEVEL=value))


def test_warn_alias_accepted():
    assert load_settings(dict(BASE_ENV, CHARGER_LOG_LEVEL="warn")).log_level == "WARN"
