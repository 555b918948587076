"""Shelv MCP server: tool registry, JSON-RPC 2.0 routing, stdio loop."""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from shelvmcp import __version__
from shelvmcp.client import ShelvClient
from shelvmcp.config import McpConfig, load_config
from shelvmcp.errors import INTERNAL_ERROR, ToolError, err
from shelvmcp.gate import AuthContext
from shelvmcp.schemas import (
    CreateShelfInput,
    HydrateShelfInput,
    ListShelvesInput,
    ReadShelfFileInput,
    SearchShelfInput,
    ShelfInput,
    ToolInput,
    input_schema,
    parse_input,
)
from shelvmcp.tools import (
    ClientFactory,
    handle_create_shelf,
    handle_get_shelf_tree,
    handle_hydrate_shelf,
    handle_list_shelves,
    handle_read_shelf_file,
    handle_search_shelf,
)

logger = logging.getLogger(__name__)

SERVER_NAME = "shelv-mcp"
PROTOCOL_VERSION = "2025-06-18"
INSTRUCTIONS = (
    "Shelv MCP server for creating, listing, reading, searching, "
    "and hydrating document shelves."
)

Handler = Callable[[Any, McpConfig, AuthContext | None, ClientFactory], dict[str, Any]]


@dataclass(frozen=True)
class ToolSpec:
    name: str
    title: str
    description: str
    input_model: type[ToolInput]
    read_only: bool
    handler: Handler

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "title": self.title,
            "description": self.description,
            "inputSchema": input_schema(self.input_model),
            "annotations": {"readOnlyHint": self.read_only},
        }


READ_TOOLS: tuple[ToolSpec, ...] = (
    ToolSpec(
        "list_shelves", "List Shelves",
        "List shelves available to the authenticated user",
        ListShelvesInput, True, handle_list_shelves,
    ),
    ToolSpec(
        "get_shelf_tree", "Get Shelf Tree",
        "Get the full file tree and file contents for a shelf",
        ShelfInput, True, handle_get_shelf_tree,
    ),
    ToolSpec(
        "read_shelf_file", "Read Shelf File",
        "Read a single file from a shelf",
        ReadShelfFileInput, True, handle_read_shelf_file,
    ),
    ToolSpec(
        "search_shelf", "Search Shelf",
        "Search for text across files in a shelf",
        SearchShelfInput, True, handle_search_shelf,
    ),
)

WRITE_TOOLS: tuple[ToolSpec, ...] = (
    ToolSpec(
        "create_shelf", "Create Shelf",
        "Upload a local PDF and create a shelf",
        CreateShelfInput, False, handle_create_shelf,
    ),
    ToolSpec(
        "hydrate_shelf", "Hydrate Shelf",
        "Download and write shelf files into a local directory",
        HydrateShelfInput, False, handle_hydrate_shelf,
    ),
)


def build_registry(config: McpConfig) -> Mapping[str, ToolSpec]:
    """Name -> ToolSpec, fixed for the life of the server."""
    specs = READ_TOOLS + (WRITE_TOOLS if config.enable_write_tools else ())
    return MappingProxyType({spec.name: spec for spec in specs})


def default_client_factory(config: McpConfig) -> ClientFactory:
    def factory(api_key: str) -> ShelvClient:
        return ShelvClient(
            api_key,
            config.api_base_url,
            timeout_seconds=config.http_timeout_seconds,
        )

    return factory


def call_tool_result(envelope: dict[str, Any]) -> dict[str, Any]:
    """Wrap an ok/err envelope as an MCP CallToolResult."""
    if envelope.get("ok"):
        text = envelope.get("summary") or "ok"
        return {
            "content": [{"type": "text", "text": text}],
            "structuredContent": envelope["result"],
            "isError": False,
        }
    error = envelope["error"]
    return {
        "content": [{"type": "text", "text": error["message"]}],
        "structuredContent": {"error": error},
        "isError": True,
    }


def _requested_version(params: Any) -> str:
    if isinstance(params, dict) and isinstance(params.get("protocolVersion"), str):
        return params["protocolVersion"]
    return PROTOCOL_VERSION


class ShelvServer:
    """MCP server with tool routing over JSON-RPC."""

    def __init__(self, config: McpConfig, client_factory: ClientFactory | None = None) -> None:
        self.config = config
        self.tools = build_registry(config)
        self.client_factory = client_factory or default_client_factory(config)

    def handle_rpc(self, req: Any, auth: AuthContext | None = None) -> dict[str, Any] | None:
        """Route a single JSON-RPC message. Notifications return None."""
        if not isinstance(req, dict):
            return self._rpc_error(None, -32600, "Invalid Request")

        rpc_id = req.get("id")
        method = req.get("method", "")
        params = req.get("params") or {}

        if "id" not in req:
            logger.debug("notification %s", method)
            return None

        if method == "initialize":
            return self._rpc_ok(rpc_id, {
                "protocolVersion": _requested_version(params),
                "capabilities": {"tools": {"listChanged": False}},
                "serverInfo": {"name": SERVER_NAME, "version": __version__},
                "instructions": INSTRUCTIONS,
            })
        if method == "ping":
            return self._rpc_ok(rpc_id, {})
        if method == "tools/list":
            return self._rpc_ok(rpc_id, {"tools": [t.describe() for t in self.tools.values()]})
        if method == "tools/call":
            return self._call_tool(rpc_id, params, auth)

        return self._rpc_error(rpc_id, -32601, f"Method not found: {method}")

    def _call_tool(self, rpc_id: Any, params: Any, auth: AuthContext | None) -> dict[str, Any]:
        if not isinstance(params, dict) or not isinstance(params.get("name"), str):
            return self._rpc_error(rpc_id, -32602, "tools/call requires a tool name")

        name = params["name"]
        spec = self.tools.get(name)
        if spec is None:
            return self._rpc_error(rpc_id, -32602, f"Unknown tool: {name}")

        args = parse_input(spec.input_model, params.get("arguments"))
        if isinstance(args, ToolError):
            envelope = args.envelope()
        else:
            try:
                envelope = spec.handler(args, self.config, auth, self.client_factory)
            except Exception as e:
                logger.error("tool %s failed unexpectedly", name, exc_info=True)
                envelope = err(INTERNAL_ERROR, "Unhandled server error.", {"exception": str(e)})

        if not envelope.get("ok"):
            logger.info("tool %s returned %s", name, envelope["error"]["code"])
        return self._rpc_ok(rpc_id, call_tool_result(envelope))

    def _rpc_ok(self, rpc_id: Any, result: Any) -> dict[str, Any]:
        return {"jsonrpc": "2.0", "id": rpc_id, "result": result}

    def _rpc_error(self, rpc_id: Any, code: int, message: str) -> dict[str, Any]:
        return {"jsonrpc": "2.0", "id": rpc_id, "error": {"code": code, "message": message}}


def run_stdio(server: ShelvServer, stdin: Any = None, stdout: Any = None) -> None:
    """Line-delimited JSON-RPC over stdin/stdout."""
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout

    for line in stdin:
        line = line.strip()
        if not line:
            continue
        try:
            req = json.loads(line)
        except json.JSONDecodeError:
            resp: dict[str, Any] | None = {
                "jsonrpc": "2.0",
                "id": None,
                "error": {"code": -32700, "message": "Parse error"},
            }
        else:
            resp = server.handle_rpc(req)

        if resp is None:
            continue
        stdout.write(json.dumps(resp) + "\n")
        stdout.flush()


def main() -> None:
    """Entry point: load config, then serve over stdio or HTTP."""
    try:
        config = load_config()
    except RuntimeError as e:
        print(f"shelv-mcp: {e}", file=sys.stderr)
        sys.exit(1)

    # stdout carries protocol traffic in stdio mode
    logging.basicConfig(
        level=config.log_level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    server = ShelvServer(config)
    logger.info(
        "write tools %s",
        "enabled" if config.enable_write_tools
        else "disabled (set SHELV_MCP_ENABLE_WRITE_TOOLS=true to enable)",
    )

    if config.transport == "stdio":
        if not config.api_key:
            logger.error("SHELV_API_KEY is required in stdio mode")
            sys.exit(1)
        run_stdio(server)
        return

    from shelvmcp.http_app import run_http

    run_http(server)


if __name__ == "__main__":
    main()
