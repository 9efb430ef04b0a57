"""
Forward-auth sidecar configuration. All values come from the environment.
Issuer URL and listen address are public identifiers, not secrets.
Raw strings are read at import; the parse_* helpers validate them during startup.
"""
import os
from dataclasses import dataclass
from urllib.parse import urlsplit

from forwardauth.errors import ConfigError

LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")

# Address the HTTP endpoint binds to, e.g. 127.0.0.1:9000 or [::1]:9000
LISTEN_ADDR = os.environ.get("LISTEN_ADDR", "").strip()

# Cloudflare Access team domain; also the expected `iss` claim
CF_AUTH_DOMAIN = os.environ.get("CF_AUTH_DOMAIN", "").strip()

# Optional YAML file mapping service token client IDs to fixed headers
SERVICE_TOKEN_MAP_PATH = os.environ.get("SERVICE_TOKEN_MAP_PATH", "").strip() or None

# JWKS refresh cadence (seconds). Failed fetches retry on the short delay instead.
JWKS_REFRESH_INTERVAL_SECONDS = os.environ.get("JWKS_REFRESH_INTERVAL_SECONDS", "3600").strip()
JWKS_RETRY_DELAY_SECONDS = os.environ.get("JWKS_RETRY_DELAY_SECONDS", "5").strip()
JWKS_FETCH_TIMEOUT_SECONDS = os.environ.get("JWKS_FETCH_TIMEOUT_SECONDS", "10").strip()

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").strip()


@dataclass(frozen=True)
class RefreshSettings:
    refresh_interval: float
    retry_delay: float
    fetch_timeout: float


def parse_seconds(name: str, value: str | None) -> float:
    """Parse a positive number of seconds; `name` is the variable it came from."""
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"`{name}` must be a number of seconds, got '{value}'") from None
    if not 0 < seconds < float("inf"):
        raise ConfigError(f"`{name}` must be a positive number of seconds, got '{value}'")
    return seconds


def load_refresh_settings() -> RefreshSettings:
    return RefreshSettings(
        refresh_interval=parse_seconds("JWKS_REFRESH_INTERVAL_SECONDS", JWKS_REFRESH_INTERVAL_SECONDS),
        retry_delay=parse_seconds("JWKS_RETRY_DELAY_SECONDS", JWKS_RETRY_DELAY_SECONDS),
        fetch_timeout=parse_seconds("JWKS_FETCH_TIMEOUT_SECONDS", JWKS_FETCH_TIMEOUT_SECONDS),
    )


def parse_log_level(value: str | None) -> str:
    """Normalize a log level name (WARN is accepted as WARNING)."""
    level = (value or "").strip().upper()
    if level == "WARN":
        level = "WARNING"
    if level not in LOG_LEVELS:
        raise ConfigError(
            f"`LOG_LEVEL` was invalid: '{value}' (expected one of {', '.join(LOG_LEVELS)})"
        )
    return level


def parse_listen_address(value: str | None) -> tuple[str, int]:
    """Split `host:port` (IPv6 hosts in brackets) into (host, port)."""
    if not value:
        raise ConfigError(
            "Listen address must be specified via `LISTEN_ADDR` (example: 127.0.0.1:9000)"
        )
    host, sep, port = value.rpartition(":")
    if not sep or not host:
        raise ConfigError(f"Listen address was invalid: missing port in '{value}'")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    elif ":" in host:
        raise ConfigError(f"Listen address was invalid: IPv6 hosts must be bracketed in '{value}'")
    try:
        port_number = int(port)
    except ValueError:
        raise ConfigError(f"Listen address was invalid: bad port '{port}'") from None
    if not 0 < port_number < 65536:
        raise ConfigError(f"Listen address was invalid: port {port_number} out of range")
    return host, port_number


def parse_issuer_url(value: str | None) -> str:
    """Validate the Access team domain and normalize it (no trailing slash)."""
    if not value:
        raise ConfigError(
            "Cloudflare Access team domain must be specified via `CF_AUTH_DOMAIN` "
            "(example: https://your-team-name.cloudflareaccess.com)"
        )
    parts = urlsplit(value)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ConfigError(f"Authentication domain was invalid: '{value}' is not an absolute http(s) URL")
    if parts.query or parts.fragment:
        raise ConfigError(f"Authentication domain was invalid: '{value}' must not carry a query or fragment")
    return value.rstrip("/")
