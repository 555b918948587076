"""Transport gate: admit or reject one inbound HTTP request.

Checks run in a fixed order and the first failure wins:

    route (404/405) -> Host (403) -> Origin (403) -> credential (401) -> dispatch

A request that passes every check leaves with an AuthContext for the
operation layer. The gate holds no state between requests.
"""

from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from urllib.parse import urlsplit

from shelvmcp.config import API_KEY_PREFIX, McpConfig

MCP_PATH = "/mcp"
ALLOWED_METHODS = ("GET", "POST", "DELETE")
BEARER_PREFIX = "Bearer "

CLIENT_REQUEST_BEARER = "request-bearer"
CLIENT_ENV_FALLBACK = "env-fallback"


class Stage(enum.Enum):
    """Last gate stage a request completed."""

    RECEIVED = "received"
    HOST_CHECKED = "host_checked"
    ORIGIN_CHECKED = "origin_checked"
    AUTHENTICATED = "authenticated"
    DISPATCHED = "dispatched"


@dataclass(frozen=True)
class AuthContext:
    token: str = field(repr=False)
    client_id: str = ""
    scopes: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        if not self.token:
            raise ValueError("AuthContext.token must be non-empty")


@dataclass(frozen=True)
class TransportDecision:
    allowed: bool
    stage: Stage
    status: int = 200
    reason: str = ""
    auth: AuthContext | None = None


def _reject(stage: Stage, status: int, reason: str) -> TransportDecision:
    return TransportDecision(allowed=False, stage=stage, status=status, reason=reason)


def strip_port(value: str) -> str:
    """Host part of a Host-style value, lowercased, without port or brackets.

    "[::1]:3334" -> "::1", "LocalHost:80" -> "localhost", "::1" -> "::1"
    """
    trimmed = value.strip()
    if trimmed.startswith("["):
        end = trimmed.find("]")
        if end >= 0:
            return trimmed[1:end].lower()
    if trimmed.count(":") > 1:
        return trimmed.lower()
    return trimmed.split(":", 1)[0].lower()


def allowed_hosts(config: McpConfig) -> frozenset[str]:
    return frozenset({"localhost", "127.0.0.1", "::1", strip_port(config.http_host)})


def _origin_host(origin: str) -> str | None:
    try:
        parts = urlsplit(origin.strip())
        host = parts.hostname
    except ValueError:
        return None
    if not parts.scheme or not host:
        return None
    return host.lower()


def _authenticate(headers: Mapping[str, str], config: McpConfig) -> AuthContext | str:
    header = headers.get("authorization")
    if header is None or header.strip() == "":
        if config.api_key:
            return AuthContext(token=config.api_key, client_id=CLIENT_ENV_FALLBACK)
        return "Missing Authorization header"

    if not header.startswith(BEARER_PREFIX):
        return "Authorization must use Bearer token"

    token = header[len(BEARER_PREFIX):].strip()
    if not token.startswith(API_KEY_PREFIX):
        return f"Shelv API key must use {API_KEY_PREFIX} prefix"

    return AuthContext(token=token, client_id=CLIENT_REQUEST_BEARER)


def evaluate_request(
    method: str,
    path: str,
    headers: Mapping[str, str],
    config: McpConfig,
) -> TransportDecision:
    """Run one request through the gate and return the decision."""
    if path != MCP_PATH:
        return _reject(Stage.RECEIVED, 404, "Not found")
    if method.upper() not in ALLOWED_METHODS:
        return _reject(Stage.RECEIVED, 405, "Method not allowed")

    lowered = {k.lower(): v for k, v in headers.items()}
    hosts = allowed_hosts(config)

    host_header = lowered.get("host")
    if host_header and strip_port(host_header) not in hosts:
        return _reject(Stage.RECEIVED, 403, "Host header is not allowed")

    origin = lowered.get("origin")
    if origin:
        origin_host = _origin_host(origin)
        if origin_host is None:
            return _reject(Stage.HOST_CHECKED, 403, "Invalid Origin header")
        if origin_host not in hosts:
            return _reject(Stage.HOST_CHECKED, 403, "Origin is not allowed")

    auth = _authenticate(lowered, config)
    if isinstance(auth, str):
        return _reject(Stage.ORIGIN_CHECKED, 401, auth)

    return TransportDecision(allowed=True, stage=Stage.AUTHENTICATED, auth=auth)


def dispatch(decision: TransportDecision) -> TransportDecision:
    """Mark an authenticated request as handed to the operation layer."""
    if not decision.allowed or decision.stage is not Stage.AUTHENTICATED:
        raise ValueError(f"cannot dispatch a request at stage {decision.stage.value}")
    return replace(decision, stage=Stage.DISPATCHED)
