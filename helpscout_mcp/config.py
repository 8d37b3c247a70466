"""Centralized configuration for the Help Scout MCP server.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/helpscout-mcp/<VARIABLE_NAME>``.

Credentials are deliberately *not* required at import time: the server can
run with either a static token or an OAuth2 client-credentials pair, and the
authenticator reports a missing pair when it first needs one.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# ── Feature flag: running on AWS? ────────────────────────────────────
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))

_STATIC_TOKEN_PREFIX = "Bearer "


# ── Secret resolution ────────────────────────────────────────────────

def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store.

    Returns ``None`` if the parameter does not exist or boto3 is
    unavailable.  Errors are logged but never raised so that local-dev
    fallback still works.
    """
    try:
        import boto3  # noqa: PLC0415  lazy: boto3 is an optional extra

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"/helpscout-mcp/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _get_secret(name: str) -> str | None:
    """Return a secret from env-var or SSM, or ``None`` when unset."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value

    if _ON_AWS:
        return _get_ssm_parameter(name)
    return None


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# ── Help Scout ──────────────────────────────────────────────────────
HELPSCOUT_BASE_URL: str = os.getenv("HELPSCOUT_BASE_URL", "https://api.helpscout.net/v2")

# HELPSCOUT_API_KEY doubles as a Personal Access Token when it carries the
# "Bearer " prefix; a bare value is the legacy name for the OAuth2 client id.
_API_KEY = _get_secret("HELPSCOUT_API_KEY") or ""

HELPSCOUT_ACCESS_TOKEN: str | None = (
    _API_KEY[len(_STATIC_TOKEN_PREFIX):] if _API_KEY.startswith(_STATIC_TOKEN_PREFIX) else None
)
HELPSCOUT_CLIENT_ID: str | None = _get_secret("HELPSCOUT_CLIENT_ID") or (
    _API_KEY if _API_KEY and HELPSCOUT_ACCESS_TOKEN is None else None
)
HELPSCOUT_CLIENT_SECRET: str | None = (
    _get_secret("HELPSCOUT_CLIENT_SECRET") or _get_secret("HELPSCOUT_APP_SECRET")
)
USING_LEGACY_CREDENTIAL_NAMES: bool = HELPSCOUT_CLIENT_ID is not None and not os.getenv(
    "HELPSCOUT_CLIENT_ID"
)

# ── HTTP / connection pool ──────────────────────────────────────────
REQUEST_TIMEOUT_SECONDS: float = float(os.getenv("HELPSCOUT_REQUEST_TIMEOUT", "30"))
POOL_MAX_CONNECTIONS: int = int(os.getenv("HELPSCOUT_POOL_MAX_CONNECTIONS", "50"))
POOL_MAX_IDLE_CONNECTIONS: int = int(os.getenv("HELPSCOUT_POOL_MAX_IDLE", "10"))
POOL_IDLE_TIMEOUT_SECONDS: float = float(os.getenv("HELPSCOUT_POOL_IDLE_TIMEOUT", "30"))
POOL_KEEP_ALIVE: bool = _get_bool("HELPSCOUT_POOL_KEEP_ALIVE", True)
POOL_KEEP_ALIVE_INTERVAL_SECONDS: float = float(
    os.getenv("HELPSCOUT_POOL_KEEP_ALIVE_INTERVAL", "1")
)

# ── Response cache ──────────────────────────────────────────────────
CACHE_MAX_BYTES: int = int(os.getenv("HELPSCOUT_CACHE_MAX_BYTES", str(20 * 1024 * 1024)))

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8000"))
