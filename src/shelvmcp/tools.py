"""MCP tool handlers: list, tree, read, search, create, hydrate."""

from __future__ import annotations

import os
from collections.abc import Callable
from typing import Any, TypeVar

from shelvmcp.client import ShelvClient, resolve_shelf_source
from shelvmcp.config import API_KEY_PREFIX, McpConfig
from shelvmcp.errors import (
    ApiRequestError,
    ToolError,
    UpstreamError,
    auth_error,
    input_error,
    ok,
    to_tool_error,
)
from shelvmcp.gate import AuthContext
from shelvmcp.paths import validate_relative_path
from shelvmcp.schemas import (
    CreateShelfInput,
    HydrateShelfInput,
    ListShelvesInput,
    ReadShelfFileInput,
    SearchShelfInput,
    ShelfInput,
)
from shelvmcp.search import ScanBudget, effective_max_matches, scan
from shelvmcp.text import infer_content_type, truncate_utf8
from shelvmcp.writer import write_files

MAX_PDF_BYTES = 300 * 1024 * 1024
PDF_MAGIC = b"%PDF-"

ClientFactory = Callable[[str], ShelvClient]
T = TypeVar("T")


def get_api_key(config: McpConfig, auth: AuthContext | None) -> str | ToolError:
    """Per-call credential: request token first, configured key second."""
    if auth is not None and auth.token.strip():
        candidate = auth.token.strip()
    elif config.api_key:
        candidate = config.api_key.strip()
    else:
        return auth_error(
            "Missing Shelv API key. Set SHELV_API_KEY or provide Authorization bearer token."
        )

    if not candidate.startswith(API_KEY_PREFIX):
        return auth_error(f"Shelv API key must use {API_KEY_PREFIX} prefix")
    return candidate


def _call_api(
    config: McpConfig,
    auth: AuthContext | None,
    client_factory: ClientFactory,
    call: Callable[[ShelvClient], T],
) -> T | ToolError:
    api_key = get_api_key(config, auth)
    if isinstance(api_key, ToolError):
        return api_key
    try:
        with client_factory(api_key) as client:
            return call(client)
    except (ApiRequestError, UpstreamError) as e:
        return to_tool_error(e)


def handle_list_shelves(
    args: ListShelvesInput,
    config: McpConfig,
    auth: AuthContext | None,
    client_factory: ClientFactory,
) -> dict[str, Any]:
    """List shelves visible to the caller's API key."""
    result = _call_api(
        config, auth, client_factory,
        lambda c: c.list_shelves(page=args.page, limit=args.limit),
    )
    if isinstance(result, ToolError):
        return result.envelope()

    shelves = result.get("data") or []
    pagination = result.get("pagination") or {}
    return ok(
        {"shelves": shelves, "pagination": pagination},
        f"Loaded {len(shelves)} shelves "
        f"(page {pagination.get('page', '?')}/{pagination.get('totalPages', '?')})",
    )


def handle_get_shelf_tree(
    args: ShelfInput,
    config: McpConfig,
    auth: AuthContext | None,
    client_factory: ClientFactory,
) -> dict[str, Any]:
    """Return every file path and its content for one shelf."""
    tree = _call_api(config, auth, client_factory, lambda c: c.get_tree(args.shelf_id))
    if isinstance(tree, ToolError):
        return tree.envelope()

    return ok(
        {
            "shelf_id": tree.shelf_id,
            "name": tree.name,
            "file_count": tree.file_count,
            "files": tree.files,
        },
        f"Loaded {tree.file_count} files for shelf {tree.shelf_id}",
    )


def handle_read_shelf_file(
    args: ReadShelfFileInput,
    config: McpConfig,
    auth: AuthContext | None,
    client_factory: ClientFactory,
) -> dict[str, Any]:
    """Read one file, truncated to the configured byte budget."""
    path = validate_relative_path(args.path)
    if isinstance(path, ToolError):
        return path.envelope()

    raw = _call_api(config, auth, client_factory, lambda c: c.get_file(args.shelf_id, path))
    if isinstance(raw, ToolError):
        return raw.envelope()

    cut = truncate_utf8(raw, config.read_max_bytes)
    summary = f"Read {path} (truncated to {cut.bytes} bytes)" if cut.truncated else f"Read {path}"
    return ok(
        {
            "shelf_id": args.shelf_id,
            "path": path,
            "content_type": infer_content_type(path),
            "content": cut.value,
            "bytes": cut.bytes,
            "truncated": cut.truncated,
        },
        summary,
    )


def handle_search_shelf(
    args: SearchShelfInput,
    config: McpConfig,
    auth: AuthContext | None,
    client_factory: ClientFactory,
) -> dict[str, Any]:
    """Line search across a shelf, bounded by file, byte and match budgets."""
    budget = ScanBudget(
        max_files=config.search_max_files,
        max_bytes=config.search_max_bytes,
        max_matches=effective_max_matches(args.max_matches, config.search_max_matches),
    )

    source = _call_api(
        config, auth, client_factory,
        lambda c: resolve_shelf_source(c, args.shelf_id),
    )
    if isinstance(source, ToolError):
        return source.envelope()

    result = scan(source.files, args.query, args.mode, args.case_sensitive, budget)
    if isinstance(result, ToolError):
        return result.envelope()

    return ok(
        {
            "shelf_id": args.shelf_id,
            "query": args.query,
            "mode": args.mode,
            "case_sensitive": args.case_sensitive,
            "matches": [m.to_dict() for m in result.matches],
            "scanned_files": result.scanned_files,
            "scanned_bytes": result.scanned_bytes,
            "truncated": result.truncated,
        },
        f"Found {len(result.matches)} matches across {result.scanned_files} files",
    )


def check_pdf_file(path: str) -> ToolError | None:
    """Refuse anything that is not an existing, size-bounded .pdf file."""
    try:
        st = os.stat(path)
    except OSError:
        st = None
    if st is None or not os.path.isfile(path):
        return input_error("pdf_path must point to an existing file", {"path": path})

    if st.st_size > MAX_PDF_BYTES:
        return input_error("PDF exceeds 300 MB limit", {"path": path, "sizeBytes": st.st_size})

    if os.path.splitext(path)[1].lower() != ".pdf":
        return input_error("Only .pdf files are supported", {"path": path})

    with open(path, "rb") as f:
        header = f.read(len(PDF_MAGIC))
    if header != PDF_MAGIC:
        return input_error("File does not appear to be a valid PDF", {"path": path})
    return None


def handle_create_shelf(
    args: CreateShelfInput,
    config: McpConfig,
    auth: AuthContext | None,
    client_factory: ClientFactory,
) -> dict[str, Any]:
    """Upload a local PDF and create a shelf from it."""
    pdf_path = os.path.abspath(args.pdf_path)
    try:
        problem = check_pdf_file(pdf_path)
        if problem is not None:
            return problem.envelope()
        with open(pdf_path, "rb") as f:
            pdf_bytes = f.read()
    except OSError as e:
        return to_tool_error(e).envelope()

    shelf = _call_api(
        config, auth, client_factory,
        lambda c: c.create_shelf(
            pdf_bytes,
            os.path.basename(pdf_path),
            name=args.name,
            template=args.template,
            review=args.review,
        ),
    )
    if isinstance(shelf, ToolError):
        return shelf.envelope()

    return ok({"shelf": shelf}, f"Created shelf {shelf.get('publicId', '')}")


def handle_hydrate_shelf(
    args: HydrateShelfInput,
    config: McpConfig,
    auth: AuthContext | None,
    client_factory: ClientFactory,
) -> dict[str, Any]:
    """Download a shelf and write its files into a local directory."""
    source = _call_api(
        config, auth, client_factory,
        lambda c: resolve_shelf_source(c, args.shelf_id),
    )
    if isinstance(source, ToolError):
        return source.envelope()

    try:
        report = write_files(source.files, args.target_dir, overwrite=args.overwrite)
    except OSError as e:
        return to_tool_error(e).envelope()
    if isinstance(report, ToolError):
        return report.envelope()

    return ok(
        {
            "shelf_id": args.shelf_id,
            "source_kind": source.kind,
            "target_dir": report.target_dir,
            "files_written": report.files_written,
            "bytes_written": report.bytes_written,
            "archive_version": source.archive_version if source.kind == "archive" else None,
        },
        f"Hydrated {report.files_written} files to {report.target_dir}",
    )
