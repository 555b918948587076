"""Write shelf files into a local directory without escaping it."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass

from shelvmcp.errors import ToolError, local_io_error
from shelvmcp.paths import safe_join, validate_relative_path

logger = logging.getLogger(__name__)


@dataclass
class WriteReport:
    target_dir: str
    files_written: int = 0
    bytes_written: int = 0


def write_files(
    files: Mapping[str, str],
    target_dir: str,
    overwrite: bool = False,
) -> WriteReport | ToolError:
    """Write every entry of ``files`` under ``target_dir``, in order.

    Stops at the first refused or invalid entry. Files written before the
    failure are left in place.

    Raises OSError for filesystem failures (permissions, disk full).
    """
    resolved = os.path.abspath(target_dir)
    os.makedirs(resolved, exist_ok=True)
    report = WriteReport(target_dir=resolved)

    for raw_path, content in files.items():
        rel = validate_relative_path(raw_path)
        if isinstance(rel, ToolError):
            return rel
        full = safe_join(resolved, rel)
        if isinstance(full, ToolError):
            return full

        # TODO: the exists/write pair races with concurrent writers to the same target;
        # open with "xb" when overwrite is False to close the window.
        if not overwrite and os.path.lexists(full):
            return local_io_error(
                f"Refusing to overwrite existing file: {rel}",
                {"path": rel},
            )

        data = content.encode("utf-8", "replace")
        os.makedirs(os.path.dirname(full), exist_ok=True)
        with open(full, "wb") as f:
            f.write(data)

        report.files_written += 1
        report.bytes_written += len(data)

    logger.info(
        "wrote %d files (%d bytes) to %s",
        report.files_written,
        report.bytes_written,
        resolved,
    )
    return report
