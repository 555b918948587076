"""Shelv API client over httpx, plus archive-first source resolution."""

from __future__ import annotations

import io
import logging
import tarfile
from typing import Any
from urllib.parse import quote

import httpx

from shelvmcp.config import API_BASE_URL
from shelvmcp.errors import ApiRequestError, ArchiveError, UpstreamError
from shelvmcp.models import SOURCE_ARCHIVE, SOURCE_TREE, ArchiveRef, ShelfSource, ShelfTree

logger = logging.getLogger(__name__)

# Ceiling on both the downloaded archive and the sum of its member sizes.
MAX_ARCHIVE_BYTES = 200 * 1024 * 1024

# Archive endpoint answers that mean "no archive yet, use the tree".
ARCHIVE_FALLBACK_STATUSES = (404, 409)


def _error_body(response: httpx.Response) -> Any:
    """Decode an error body without raising secondary errors."""
    content_type = response.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            return response.json()
        except ValueError:
            return {"message": "Failed to parse API error body"}
    try:
        return response.text
    except Exception:
        return None


class ShelvClient:
    """Thin synchronous Shelv API wrapper over ``httpx.Client``."""

    def __init__(
        self,
        api_key: str,
        api_base_url: str = API_BASE_URL,
        *,
        timeout_seconds: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base_url = api_base_url.rstrip("/")
        self._client = httpx.Client(
            base_url=self._base_url,
            timeout=timeout_seconds,
            headers={"Authorization": f"Bearer {api_key}"},
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> ShelvClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def _send(
        self,
        method: str,
        path: str,
        request: httpx.Request,
        stream: bool = False,
    ) -> httpx.Response:
        try:
            response = self._client.send(request, stream=stream)
        except httpx.RequestError as exc:
            raise ApiRequestError(method, path, 0) from exc
        if response.is_error:
            if stream:
                try:
                    response.read()
                except httpx.RequestError as exc:
                    raise ApiRequestError(method, path, response.status_code) from exc
                finally:
                    response.close()
            raise ApiRequestError(method, path, response.status_code, _error_body(response))
        return response

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        request = self._client.build_request(method, path, **kwargs)
        return self._send(method, path, request)

    def _request_json(self, method: str, path: str, **kwargs: Any) -> Any:
        response = self._request(method, path, **kwargs)
        try:
            return response.json()
        except ValueError as exc:
            raise ApiRequestError(
                method,
                path,
                response.status_code,
                {"message": f"Invalid JSON response for {method} {path}"},
            ) from exc

    def _request_object(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        payload = self._request_json(method, path, **kwargs)
        if not isinstance(payload, dict):
            raise UpstreamError(f"Expected a JSON object from {method} {path}")
        return payload

    # --- Shelf operations ---

    def list_shelves(self, page: int | None = None, limit: int | None = None) -> dict[str, Any]:
        params: dict[str, int] = {}
        if page:
            params["page"] = page
        if limit:
            params["limit"] = limit
        return self._request_object("GET", "/v1/shelves", params=params or None)

    def create_shelf(
        self,
        pdf_bytes: bytes,
        file_name: str,
        name: str | None = None,
        template: str | None = None,
        review: bool | None = None,
    ) -> dict[str, Any]:
        data: dict[str, str] = {}
        if name:
            data["name"] = name
        if template:
            data["template"] = template
        if review is not None:
            data["review"] = "true" if review else "false"
        files = {"file": (file_name, pdf_bytes, "application/pdf")}
        return self._request_object("POST", "/v1/shelves", data=data, files=files)

    def get_tree(self, shelf_id: str) -> ShelfTree:
        path = f"/v1/shelves/{quote(shelf_id, safe='')}/tree"
        payload = self._request_object("GET", path)
        try:
            return ShelfTree.from_api(payload)
        except (TypeError, ValueError) as exc:
            raise UpstreamError(f"Malformed tree response from GET {path}") from exc

    def get_file(self, shelf_id: str, path: str) -> str:
        """Fetch one file as text. ``path`` must already be validated."""
        url = f"/v1/shelves/{quote(shelf_id, safe='')}/files/{quote(path, safe='/')}"
        return self._request("GET", url).text

    def get_archive_ref(self, shelf_id: str) -> ArchiveRef:
        payload = self._request_object("GET", f"/v1/shelves/{quote(shelf_id, safe='')}/archive-url")
        if not payload.get("url"):
            raise ArchiveError(f"Archive reference for shelf {shelf_id} has no url")
        return ArchiveRef(url=str(payload["url"]), version=str(payload.get("version", "")))

    def download_archive(self, ref: ArchiveRef) -> dict[str, str]:
        """Download an archive and return its text files in member order.

        The body is streamed so the size ceiling holds before it is buffered.
        """
        try:
            request = self._client.build_request("GET", ref.url)
        except httpx.InvalidURL as exc:
            raise ArchiveError(f"Invalid archive url: {ref.url!r}") from exc
        if request.url.host != httpx.URL(self._base_url).host:
            # pre-signed storage URL: the API key stays with the API host
            del request.headers["Authorization"]

        response = self._send("GET", ref.url, request, stream=True)
        try:
            declared = response.headers.get("content-length", "")
            if declared.isdigit() and int(declared) > MAX_ARCHIVE_BYTES:
                raise ArchiveError(f"Archive exceeds {MAX_ARCHIVE_BYTES} bytes")
            data = bytearray()
            for chunk in response.iter_bytes():
                data.extend(chunk)
                if len(data) > MAX_ARCHIVE_BYTES:
                    raise ArchiveError(f"Archive exceeds {MAX_ARCHIVE_BYTES} bytes")
        except httpx.RequestError as exc:
            raise ApiRequestError("GET", ref.url, 0) from exc
        finally:
            response.close()
        return read_archive(bytes(data))


def read_archive(data: bytes) -> dict[str, str]:
    """Decode a (optionally gzipped) tar archive into path -> UTF-8 text."""
    files: dict[str, str] = {}
    total = 0
    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:*") as tar:
            for member in tar:
                if not member.isfile():
                    continue
                total += member.size
                if total > MAX_ARCHIVE_BYTES:
                    raise ArchiveError(f"Archive contents exceed {MAX_ARCHIVE_BYTES} bytes")
                extracted = tar.extractfile(member)
                if extracted is None:
                    continue
                name = member.name[2:] if member.name.startswith("./") else member.name
                try:
                    files[name] = extracted.read().decode("utf-8")
                except UnicodeDecodeError as exc:
                    raise ArchiveError(f"Archive member is not UTF-8 text: {name}") from exc
    except (tarfile.TarError, EOFError, OSError) as exc:
        raise ArchiveError(f"Failed to read shelf archive: {exc}") from exc
    return files


def resolve_shelf_source(client: ShelvClient, shelf_id: str) -> ShelfSource:
    """Archive-first: use the packaged archive, else fall back to the file tree."""
    try:
        ref = client.get_archive_ref(shelf_id)
    except ApiRequestError as exc:
        if exc.status not in ARCHIVE_FALLBACK_STATUSES:
            raise
        logger.info("archive unavailable for shelf %s (%d); using tree", shelf_id, exc.status)
        tree = client.get_tree(shelf_id)
        return ShelfSource(kind=SOURCE_TREE, files=tree.files)

    files = client.download_archive(ref)
    logger.debug("resolved shelf %s from archive %s (%d files)", shelf_id, ref.version, len(files))
    return ShelfSource(kind=SOURCE_ARCHIVE, files=files, archive_version=ref.version)
