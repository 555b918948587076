"""HTTP transport: FastAPI app on /mcp behind the transport gate, run by uvicorn."""

from __future__ import annotations

import json
import logging

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from shelvmcp import __version__
from shelvmcp.gate import MCP_PATH, dispatch, evaluate_request
from shelvmcp.server import SERVER_NAME, ShelvServer

logger = logging.getLogger(__name__)

# Common methods are routed to the catch-all. Anything else reaches the
# framework 404/405 handler, which defers to the gate as well.
_ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def _error(status: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status)


def create_app(server: ShelvServer) -> FastAPI:
    """Build the ASGI app for one server instance."""
    app = FastAPI(
        title=SERVER_NAME,
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    @app.exception_handler(StarletteHTTPException)
    async def framework_error(request: Request, exc: StarletteHTTPException) -> Response:
        decision = evaluate_request(
            request.method, request.url.path, request.headers, server.config
        )
        if not decision.allowed:
            logger.warning(
                "rejected %s %s: %d %s",
                request.method, request.url.path, decision.status, decision.reason,
            )
            return _error(decision.status, decision.reason)
        return _error(exc.status_code, str(exc.detail))

    @app.api_route("/{full_path:path}", methods=_ALL_METHODS)
    async def mcp_endpoint(request: Request, full_path: str) -> Response:
        try:
            decision = evaluate_request(
                request.method, request.url.path, request.headers, server.config
            )
            if not decision.allowed:
                logger.warning(
                    "rejected %s %s: %d %s",
                    request.method, request.url.path, decision.status, decision.reason,
                )
                return _error(decision.status, decision.reason)

            # Stateless server: no standalone SSE stream and no sessions to end.
            if request.method == "GET":
                return _error(405, "Server-initiated streams are not supported")
            if request.method == "DELETE":
                return _error(405, "Session termination is not supported")

            body = await request.body()
            try:
                payload = json.loads(body) if body else None
            except ValueError as e:
                raise ValueError("Invalid JSON request body") from e

            decision = dispatch(decision)
            resp = await run_in_threadpool(server.handle_rpc, payload, decision.auth)
            if resp is None:
                return Response(status_code=202)
            return JSONResponse(resp)
        except Exception as e:
            logger.error("unhandled error on %s", request.url.path, exc_info=True)
            return _error(500, str(e) or "Internal server error")

    return app


def listen_url(host: str, port: int) -> str:
    shown = f"[{host}]" if ":" in host else host
    return f"http://{shown}:{port}{MCP_PATH}"


def run_http(server: ShelvServer) -> None:
    config = server.config
    logger.info("shelv-mcp listening at %s", listen_url(config.http_host, config.http_port))
    uvicorn.run(
        create_app(server),
        host=config.http_host,
        port=config.http_port,
        log_level=config.log_level.lower(),
    )
