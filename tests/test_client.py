"""Tests for the Shelv API client and archive-first source resolution."""

from __future__ import annotations

import io
import tarfile

import httpx
import pytest

from shelvmcp.client import ShelvClient, read_archive, resolve_shelf_source
from shelvmcp.errors import ApiRequestError, ArchiveError, UpstreamError, to_tool_error
from shelvmcp.models import ArchiveRef

from conftest import API_BASE, VALID_KEY, make_archive


def test_list_shelves_sends_bearer_and_params(fake_api):
    fake_api.add("GET", "/v1/shelves", json={"data": [], "pagination": {"page": 2}})
    with fake_api.client_factory(VALID_KEY) as client:
        result = client.list_shelves(page=2, limit=10)

    assert result["pagination"]["page"] == 2
    request = fake_api.requests[0]
    assert request.headers["authorization"] == f"Bearer {VALID_KEY}"
    assert request.url.params["page"] == "2"
    assert request.url.params["limit"] == "10"


def test_list_shelves_omits_unset_params(fake_api):
    fake_api.add("GET", "/v1/shelves", json={"data": [], "pagination": {}})
    with fake_api.client_factory(VALID_KEY) as client:
        client.list_shelves()
    assert str(fake_api.requests[0].url) == f"{API_BASE}/v1/shelves"


def test_error_body_message_is_used(fake_api):
    fake_api.add("GET", "/v1/shelves", status=402, json={"message": "Upgrade your plan"})
    with fake_api.client_factory(VALID_KEY) as client:
        with pytest.raises(ApiRequestError) as exc_info:
            client.list_shelves()

    error = exc_info.value
    assert error.status == 402
    assert str(error) == "Upgrade your plan"
    assert to_tool_error(error).code == "BILLING_REQUIRED"


def test_plain_text_error_body(fake_api):
    fake_api.add("GET", "/v1/shelves", status=503, text="down")
    with fake_api.client_factory(VALID_KEY) as client:
        with pytest.raises(ApiRequestError) as exc_info:
            client.list_shelves()

    assert str(exc_info.value) == "Shelv API request failed (503)"
    mapped = to_tool_error(exc_info.value)
    assert mapped.code == "UPSTREAM_ERROR"
    assert mapped.retryable is True


def test_transport_failure_maps_to_retryable_upstream_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("boom", request=request)

    client = ShelvClient(VALID_KEY, API_BASE, transport=httpx.MockTransport(handler))
    try:
        with pytest.raises(ApiRequestError) as exc_info:
            client.get_tree("shf_1")
    finally:
        client.close()

    assert exc_info.value.status == 0
    mapped = to_tool_error(exc_info.value)
    assert mapped.code == "UPSTREAM_ERROR"
    assert mapped.retryable is True


def test_get_file_quotes_path(fake_api):
    fake_api.add("GET", "/v1/shelves/shf_1/files/docs/a b.md", text="body")
    with fake_api.client_factory(VALID_KEY) as client:
        assert client.get_file("shf_1", "docs/a b.md") == "body"
    assert fake_api.requests[0].url.raw_path == b"/v1/shelves/shf_1/files/docs/a%20b.md"


def test_create_shelf_uploads_multipart(fake_api):
    fake_api.add("POST", "/v1/shelves", status=201, json={"publicId": "shf_new"})
    with fake_api.client_factory(VALID_KEY) as client:
        shelf = client.create_shelf(b"%PDF-1.7", "book.pdf", name="Book", review=False)

    assert shelf == {"publicId": "shf_new"}
    body = fake_api.requests[0].read()
    assert b'filename="book.pdf"' in body
    assert b"application/pdf" in body
    assert b'name="review"' in body
    assert b"false" in body


def test_archive_first_resolution(fake_api):
    fake_api.add_archive("shf_1", {"b.md": "second", "a.md": "first"}, version="7")
    with fake_api.client_factory(VALID_KEY) as client:
        source = resolve_shelf_source(client, "shf_1")

    assert source.kind == "archive"
    assert source.archive_version == "7"
    assert list(source.files) == ["b.md", "a.md"]
    download = fake_api.requests[-1]
    assert download.url.host == "storage.shelv.test"
    assert "authorization" not in download.headers


@pytest.mark.parametrize("status", [404, 409])
def test_falls_back_to_tree(fake_api, status):
    fake_api.add("GET", "/v1/shelves/shf_1/archive-url", status=status, json={"message": "nope"})
    fake_api.add_tree("shf_1", {"a.md": "from tree"})
    with fake_api.client_factory(VALID_KEY) as client:
        source = resolve_shelf_source(client, "shf_1")

    assert source.kind == "tree"
    assert source.archive_version is None
    assert source.files == {"a.md": "from tree"}


def test_other_archive_failures_propagate(fake_api):
    fake_api.add("GET", "/v1/shelves/shf_1/archive-url", status=401, json={"message": "bad key"})
    with fake_api.client_factory(VALID_KEY) as client:
        with pytest.raises(ApiRequestError) as exc_info:
            resolve_shelf_source(client, "shf_1")
    assert to_tool_error(exc_info.value).code == "AUTH_ERROR"


def test_read_archive_skips_directories_and_strips_prefix():
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tar:
        directory = tarfile.TarInfo("./docs")
        directory.type = tarfile.DIRTYPE
        tar.addfile(directory)
        data = "hi".encode("utf-8")
        info = tarfile.TarInfo("./docs/a.md")
        info.size = len(data)
        tar.addfile(info, io.BytesIO(data))

    assert read_archive(buf.getvalue()) == {"docs/a.md": "hi"}


def test_read_archive_rejects_garbage():
    with pytest.raises(ArchiveError):
        read_archive(b"definitely not a tarball")


def test_read_archive_rejects_binary_member():
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        info = tarfile.TarInfo("image.png")
        info.size = 3
        tar.addfile(info, io.BytesIO(b"\xff\xfe\xfd"))
    with pytest.raises(ArchiveError):
        read_archive(buf.getvalue())


def test_archive_over_declared_length_is_rejected(fake_api, monkeypatch):
    monkeypatch.setattr("shelvmcp.client.MAX_ARCHIVE_BYTES", 16)
    fake_api.add_archive("shf_1", {"a.md": "x" * 1000})
    with fake_api.client_factory(VALID_KEY) as client:
        with pytest.raises(ArchiveError, match="exceeds 16 bytes"):
            resolve_shelf_source(client, "shf_1")


def test_chunked_archive_is_cut_off_at_limit(fake_api, monkeypatch):
    monkeypatch.setattr("shelvmcp.client.MAX_ARCHIVE_BYTES", 100)
    chunks_sent = []

    def chunks():
        for _ in range(10):
            chunks_sent.append(1)
            yield b"x" * 40

    fake_api.add("GET", "/v1/shelves/shf_1/archive-url", json={
        "url": "https://storage.shelv.test/shf_1.tar.gz", "version": "1",
    })
    fake_api.routes[("GET", "/shf_1.tar.gz")] = lambda request: httpx.Response(
        200, content=chunks(), request=request
    )
    with fake_api.client_factory(VALID_KEY) as client:
        with pytest.raises(ArchiveError):
            resolve_shelf_source(client, "shf_1")
    assert len(chunks_sent) < 10


def test_archive_member_total_is_bounded(monkeypatch):
    monkeypatch.setattr("shelvmcp.client.MAX_ARCHIVE_BYTES", 50)
    data = make_archive({"a.md": "x" * 30, "b.md": "y" * 30})
    with pytest.raises(ArchiveError, match="contents exceed"):
        read_archive(data)


def test_archive_download_error_status(fake_api):
    fake_api.add("GET", "/v1/shelves/shf_1/archive-url", json={
        "url": "https://storage.shelv.test/missing.tar.gz", "version": "1",
    })
    with fake_api.client_factory(VALID_KEY) as client:
        with pytest.raises(ApiRequestError) as exc_info:
            resolve_shelf_source(client, "shf_1")
    assert exc_info.value.status == 404


def test_invalid_archive_url_is_upstream_error(fake_api):
    with fake_api.client_factory(VALID_KEY) as client:
        with pytest.raises(UpstreamError):
            client.download_archive(ArchiveRef(url="https://storage.shelv.test/a\x00.tar.gz", version="1"))
    assert fake_api.requests == []


@pytest.mark.parametrize("payload", [
    ["a.md"],
    {"shelfPublicId": "shf_1", "fileCount": "many", "files": {}},
    {"shelfPublicId": "shf_1", "fileCount": 1, "files": ["a.md"]},
])
def test_malformed_tree_is_upstream_error(fake_api, payload):
    fake_api.add("GET", "/v1/shelves/shf_1/tree", json=payload)
    with fake_api.client_factory(VALID_KEY) as client:
        with pytest.raises(UpstreamError) as exc_info:
            client.get_tree("shf_1")
    assert to_tool_error(exc_info.value).code == "UPSTREAM_ERROR"


def test_non_object_list_response_is_upstream_error(fake_api):
    fake_api.add("GET", "/v1/shelves", json=[1, 2])
    with fake_api.client_factory(VALID_KEY) as client:
        with pytest.raises(UpstreamError):
            client.list_shelves()
