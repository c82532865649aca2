"""
Gateway configuration from environment variables.
No secrets in this file; account and client credentials come from env only.
"""
import logging
import os
from dataclasses import dataclass
from typing import Mapping

from charge_gateway.errors import ConfigError

# Required settings: the gateway refuses to start if any is missing or blank
REQUIRED_VARS = (
    "CHARGER_ACCOUNT_EMAIL",
    "CHARGER_ACCOUNT_PASSWORD",
    "CHARGER_OAUTH_CLIENT_ID",
    "CHARGER_VENDOR_CLIENT_ID",
    "CHARGER_VENDOR_CLIENT_SECRET",
    "CHARGER_API_BASE_URL",
    "CHARGER_ID",
)

# Callback the identity provider redirects to after login. Never actually served;
# the scripted login stops at the redirect and reads code/token from the URL.
DEFAULT_REDIRECT_URI = "http://127.0.0.1:8000/callback"

DEFAULT_SCOPE = "openid offline_access"

# Single cached credential record
DEFAULT_TOKEN_PATH = ".charge_gateway_token.json"

# Upper bound for one complete login (form wait + submit + code exchange)
DEFAULT_AUTH_TIMEOUT = 45.0

# Used when the provider declares no expiry and the token is not a JWT
DEFAULT_TOKEN_LIFETIME = 3600

# Per-request timeout for vendor API calls
DEFAULT_HTTP_TIMEOUT = 10.0

DEFAULT_LOG_LEVEL = "INFO"


@dataclass(frozen=True)
class Credentials:
    """Everything the login flow needs to obtain a token."""

    email: str
    password: str
    oauth_client_id: str
    vendor_client_id: str
    vendor_client_secret: str


@dataclass(frozen=True)
class Settings:
    credentials: Credentials
    api_base_url: str
    charger_id: str
    evse_id: str
    authorize_url: str
    token_url: str
    redirect_uri: str
    scope: str
    token_path: str
    auth_timeout: float
    default_token_lifetime: int
    http_timeout: float
    log_level: str


def _positive_number(env: Mapping[str, str], name: str, default: float, cast=float):
    raw = env.get(name, "").strip()
    if not raw:
        return cast(default)
    try:
        value = cast(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ConfigError(f"{name} must be greater than zero")
    return value


def _log_level(env: Mapping[str, str]) -> str:
    level = (env.get("CHARGER_LOG_LEVEL", "").strip() or DEFAULT_LOG_LEVEL).upper()
    # getLevelName maps registered names to their number, anything else to a "Level %s" string
    if not isinstance(logging.getLevelName(level), int):
        raise ConfigError(f"CHARGER_LOG_LEVEL must be a logging level name such as DEBUG or INFO, got {level!r}")
    return level


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """
    Build Settings from the environment (os.environ by default).
    Raises ConfigError naming every missing required variable.
    """
    env = os.environ if environ is None else environ
    missing = [name for name in REQUIRED_VARS if not env.get(name, "").strip()]
    if missing:
        raise ConfigError(f"Missing required settings: {', '.join(missing)}")

    api_base_url = env["CHARGER_API_BASE_URL"].strip().rstrip("/")
    charger_id = env["CHARGER_ID"].strip()
    return Settings(
        credentials=Credentials(
            email=env["CHARGER_ACCOUNT_EMAIL"].strip(),
            password=env["CHARGER_ACCOUNT_PASSWORD"],
            oauth_client_id=env["CHARGER_OAUTH_CLIENT_ID"].strip(),
            vendor_client_id=env["CHARGER_VENDOR_CLIENT_ID"].strip(),
            vendor_client_secret=env["CHARGER_VENDOR_CLIENT_SECRET"],
        ),
        api_base_url=api_base_url,
        charger_id=charger_id,
        evse_id=env.get("CHARGER_EVSE_ID", "").strip() or charger_id,
        authorize_url=(env.get("CHARGER_AUTHORIZE_URL", "").strip() or f"{api_base_url}/oauth/authorize").rstrip("/"),
        token_url=(env.get("CHARGER_TOKEN_URL", "").strip() or f"{api_base_url}/oauth/token").rstrip("/"),
        redirect_uri=env.get("CHARGER_REDIRECT_URI", "").strip() or DEFAULT_REDIRECT_URI,
        scope=env.get("CHARGER_OAUTH_SCOPE", "").strip() or DEFAULT_SCOPE,
        token_path=env.get("CHARGER_TOKEN_PATH", "").strip() or DEFAULT_TOKEN_PATH,
        auth_timeout=_positive_number(env, "CHARGER_AUTH_TIMEOUT", DEFAULT_AUTH_TIMEOUT),
        default_token_lifetime=_positive_number(
            env, "CHARGER_DEFAULT_TOKEN_LIFETIME", DEFAULT_TOKEN_LIFETIME, cast=int
        ),
        http_timeout=_positive_number(env, "CHARGER_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT),
        log_level=_log_level(env),
    )
