"""Runtime configuration helpers for the MCP server process."""

from __future__ import annotations

import ipaddress
import os
from collections.abc import Mapping
from dataclasses import dataclass

from .constants import DEFAULT_CONFIG_LOCATION

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}
TRANSPORTS = {"stdio", "streamable-http"}


@dataclass(frozen=True)
class RuntimeDefaults:
    """Server settings sourced from ``STUDIO_GIT_*`` environment variables."""

    transport: str
    host: str
    port: int
    allow_public_http: bool
    config_location: str
    user: str


def get_runtime_defaults(env: Mapping[str, str] | None = None) -> RuntimeDefaults:
    """Validate and return runtime defaults from environment variables."""
    source = os.environ if env is None else env

    transport = source.get("STUDIO_GIT_TRANSPORT", "stdio").strip()
    if transport not in TRANSPORTS:
        raise ValueError("STUDIO_GIT_TRANSPORT must be 'stdio' or 'streamable-http'.")

    host = source.get("STUDIO_GIT_HOST", "127.0.0.1").strip()

    port_env = source.get("STUDIO_GIT_PORT", "8000")
    try:
        port = int(port_env)
    except ValueError as exc:
        raise ValueError("STUDIO_GIT_PORT must be an integer.") from exc
    if not (1 <= port <= 65535):
        raise ValueError("STUDIO_GIT_PORT must be between 1 and 65535.")

    allow_public_http = _parse_bool_env(source, "STUDIO_GIT_ALLOW_PUBLIC_HTTP", default=False)
    validate_streamable_http_binding(transport=transport, host=host, allow_public_http=allow_public_http)

    return RuntimeDefaults(
        transport=transport,
        host=host,
        port=port,
        allow_public_http=allow_public_http,
        config_location=source.get("STUDIO_GIT_CONFIG", DEFAULT_CONFIG_LOCATION).strip()
        or DEFAULT_CONFIG_LOCATION,
        user=source.get("STUDIO_GIT_USER", "").strip(),
    )


def validate_streamable_http_binding(transport: str, host: str, allow_public_http: bool) -> None:
    """Validate host exposure policy for streamable HTTP transport."""
    if transport != "streamable-http":
        return
    if not host.strip():
        raise ValueError("Host must not be empty when using streamable-http transport.")
    if not is_loopback_host(host) and not allow_public_http:
        raise ValueError(
            "Refusing non-loopback streamable-http binding without explicit opt-in. "
            "Set --allow-public-http or STUDIO_GIT_ALLOW_PUBLIC_HTTP=true."
        )


def is_loopback_host(host: str) -> bool:
    """Return whether a host value maps to a loopback interface."""
    normalized = host.strip().lower().strip("[]")
    if normalized in {"localhost", "127.0.0.1", "::1"}:
        return True
    try:
        return ipaddress.ip_address(normalized).is_loopback
    except ValueError:
        return False


def parse_csv_values(value: str | None) -> tuple[str, ...]:
    """Parse comma-separated values into a normalized tuple."""
    if not value:
        return ()
    return tuple(part.strip() for part in value.split(",") if part.strip())


def _parse_bool_env(source: Mapping[str, str], key: str, default: bool) -> bool:
    raw = source.get(key)
    if raw is None or not str(raw).strip():
        return default
    normalized = str(raw).strip().lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False
    raise ValueError(f"{key} must be a boolean value (true/false).")
