"""Tests for safe local writes: overwrite refusal, counters, confinement."""

from __future__ import annotations

import os

from shelvmcp.errors import ToolError
from shelvmcp.writer import WriteReport, write_files


def test_writes_nested_files(tmp_path):
    target = tmp_path / "out"
    files = {"README.md": "hello", "docs/chapter-1.md": "é"}

    report = write_files(files, str(target))

    assert isinstance(report, WriteReport)
    assert report.files_written == 2
    assert report.bytes_written == 5 + 2
    assert report.target_dir == os.path.abspath(str(target))
    assert (target / "docs" / "chapter-1.md").read_text(encoding="utf-8") == "é"


def test_second_write_refused_without_overwrite(tmp_path):
    target = str(tmp_path)
    assert isinstance(write_files({"a.md": "x"}, target), WriteReport)

    result = write_files({"a.md": "x"}, target, overwrite=False)

    assert isinstance(result, ToolError)
    assert result.code == "LOCAL_IO_ERROR"
    assert "a.md" in result.message


def test_overwrite_allows_repeat(tmp_path):
    target = str(tmp_path)
    first = write_files({"a.md": "x"}, target, overwrite=True)
    second = write_files({"a.md": "yy"}, target, overwrite=True)
    assert isinstance(first, WriteReport) and isinstance(second, WriteReport)
    assert second.bytes_written == 2
    assert (tmp_path / "a.md").read_text(encoding="utf-8") == "yy"


def test_conflict_aborts_without_rollback(tmp_path):
    (tmp_path / "b.md").write_text("existing", encoding="utf-8")
    files = {"a.md": "new", "b.md": "clobber", "c.md": "never"}

    result = write_files(files, str(tmp_path))

    assert isinstance(result, ToolError)
    assert (tmp_path / "a.md").exists()
    assert (tmp_path / "b.md").read_text(encoding="utf-8") == "existing"
    assert not (tmp_path / "c.md").exists()


def test_traversal_entry_is_rejected(tmp_path):
    target = tmp_path / "ws"
    result = write_files({"../escape.md": "x"}, str(target))
    assert isinstance(result, ToolError)
    assert result.code == "INPUT_ERROR"
    assert not (tmp_path / "escape.md").exists()


def test_creates_missing_target(tmp_path):
    target = tmp_path / "deep" / "er"
    report = write_files({}, str(target))
    assert isinstance(report, WriteReport)
    assert report.files_written == 0
    assert target.is_dir()
