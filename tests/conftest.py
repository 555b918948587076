"""Shared test fixtures for shelv-mcp tests."""

from __future__ import annotations

import io
import json
import tarfile
from collections.abc import Callable
from dataclasses import replace
from typing import Any

import httpx
import pytest

from shelvmcp.client import ShelvClient
from shelvmcp.config import McpConfig

API_BASE = "https://api.shelv.test"
VALID_KEY = "sk_test_key"


def make_archive(files: dict[str, str], prefix: str = "./") -> bytes:
    """Build an in-memory .tar.gz holding ``files`` in insertion order."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for name, content in files.items():
            data = content.encode("utf-8")
            info = tarfile.TarInfo(prefix + name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


class FakeShelvApi:
    """Route table behind an httpx.MockTransport; records every request."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path: str, status: int = 200, **kwargs: Any) -> None:
        self.routes[(method, path)] = lambda request: httpx.Response(status, request=request, **kwargs)

    def add_tree(self, shelf_id: str, files: dict[str, str], name: str = "Shelf") -> None:
        self.add("GET", f"/v1/shelves/{shelf_id}/tree", json={
            "shelfPublicId": shelf_id,
            "name": name,
            "fileCount": len(files),
            "files": files,
        })

    def add_archive(self, shelf_id: str, files: dict[str, str], version: str = "v1") -> None:
        self.add("GET", f"/v1/shelves/{shelf_id}/archive-url", json={
            "url": f"https://storage.shelv.test/{shelf_id}.tar.gz",
            "version": version,
        })
        self.routes[("GET", f"/{shelf_id}.tar.gz")] = lambda request: httpx.Response(
            200, content=make_archive(files), request=request
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(
                404,
                content=json.dumps({"message": "Not found"}),
                headers={"content-type": "application/json"},
                request=request,
            )
        return route(request)

    def client_factory(self, api_key: str) -> ShelvClient:
        return ShelvClient(api_key, API_BASE, transport=httpx.MockTransport(self.handler))


@pytest.fixture
def fake_api() -> FakeShelvApi:
    return FakeShelvApi()


@pytest.fixture
def config() -> McpConfig:
    return McpConfig(api_base_url=API_BASE, api_key=VALID_KEY)


@pytest.fixture
def write_config(config: McpConfig) -> McpConfig:
    return replace(config, enable_write_tools=True)
