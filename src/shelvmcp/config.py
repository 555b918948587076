"""Configuration: API endpoint, transport, budgets. Loaded from the environment."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass

API_BASE_URL = "https://api.shelv.dev"
API_KEY_PREFIX = "sk_"
TRANSPORTS = ("stdio", "http")


@dataclass(frozen=True)
class McpConfig:
    api_base_url: str = API_BASE_URL
    api_key: str | None = None
    transport: str = "stdio"
    http_host: str = "127.0.0.1"
    http_port: int = 3334
    enable_write_tools: bool = False
    search_max_files: int = 500
    search_max_bytes: int = 5_000_000
    search_max_matches: int = 200
    read_max_bytes: int = 250_000
    http_timeout_seconds: int = 30
    log_level: str = "INFO"


def _parse_bool(value: str | None, fallback: bool, label: str) -> bool:
    if value is None or value.strip() == "":
        return fallback
    normalized = value.strip().lower()
    if normalized in ("true", "1", "yes"):
        return True
    if normalized in ("false", "0", "no"):
        return False
    raise RuntimeError(f"{label} must be a boolean (true/false/1/0/yes/no), got: {value}")


def _parse_positive_int(value: str | None, fallback: int, label: str) -> int:
    if value is None or value.strip() == "":
        return fallback
    try:
        parsed = int(value.strip(), 10)
    except ValueError:
        raise RuntimeError(f"{label} must be a positive integer") from None
    if parsed <= 0:
        raise RuntimeError(f"{label} must be a positive integer")
    return parsed


def _parse_transport(value: str | None) -> str:
    if value is None or value.strip() == "":
        return "stdio"
    if value in TRANSPORTS:
        return value
    raise RuntimeError("SHELV_MCP_TRANSPORT must be either 'stdio' or 'http'")


def _parse_log_level(value: str | None) -> str:
    if value is None or value.strip() == "":
        return "INFO"
    numeric = logging.getLevelName(value.strip().upper())
    if not isinstance(numeric, int):
        raise RuntimeError(f"SHELV_MCP_LOG_LEVEL is not a logging level: {value}")
    return logging.getLevelName(numeric)


def load_config(env: Mapping[str, str] | None = None) -> McpConfig:
    """Build the server configuration from environment variables.

    Fail closed: any malformed value raises RuntimeError instead of
    silently falling back to a default.
    """
    if env is None:
        env = os.environ

    api_key = (env.get("SHELV_API_KEY") or "").strip() or None
    base_url = (env.get("SHELV_API_BASE_URL") or "").strip() or API_BASE_URL

    return McpConfig(
        api_base_url=base_url.rstrip("/"),
        api_key=api_key,
        transport=_parse_transport(env.get("SHELV_MCP_TRANSPORT")),
        http_host=(env.get("SHELV_MCP_HTTP_HOST") or "").strip() or "127.0.0.1",
        http_port=_parse_positive_int(env.get("SHELV_MCP_HTTP_PORT"), 3334, "SHELV_MCP_HTTP_PORT"),
        enable_write_tools=_parse_bool(
            env.get("SHELV_MCP_ENABLE_WRITE_TOOLS"), False, "SHELV_MCP_ENABLE_WRITE_TOOLS"
        ),
        search_max_files=_parse_positive_int(
            env.get("SHELV_MCP_SEARCH_MAX_FILES"), 500, "SHELV_MCP_SEARCH_MAX_FILES"
        ),
        search_max_bytes=_parse_positive_int(
            env.get("SHELV_MCP_SEARCH_MAX_BYTES"), 5_000_000, "SHELV_MCP_SEARCH_MAX_BYTES"
        ),
        search_max_matches=_parse_positive_int(
            env.get("SHELV_MCP_SEARCH_MAX_MATCHES"), 200, "SHELV_MCP_SEARCH_MAX_MATCHES"
        ),
        read_max_bytes=_parse_positive_int(
            env.get("SHELV_MCP_READ_MAX_BYTES"), 250_000, "SHELV_MCP_READ_MAX_BYTES"
        ),
        http_timeout_seconds=_parse_positive_int(
            env.get("SHELV_MCP_HTTP_TIMEOUT"), 30, "SHELV_MCP_HTTP_TIMEOUT"
        ),
        log_level=_parse_log_level(env.get("SHELV_MCP_LOG_LEVEL")),
    )
