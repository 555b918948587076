"""Path guard: relative path validation and sandbox-confined joins.

Traversal is checked twice. ``validate_relative_path`` rejects it
syntactically on the caller-supplied string; ``safe_join`` rejects it
structurally on the resolved absolute path.
"""

from __future__ import annotations

import os
import posixpath

from shelvmcp.errors import ToolError, input_error, local_io_error


def validate_relative_path(raw: str) -> str | ToolError:
    """Return the POSIX-normalized form of ``raw`` or an INPUT_ERROR.

    "docs/./a/../README.md" -> "docs/README.md"
    "../secret.txt"         -> INPUT_ERROR
    """
    trimmed = raw.strip()
    if not trimmed:
        return input_error("Path is required")

    if "\\" in trimmed or "\0" in trimmed:
        return input_error("Path contains unsupported characters", {"path": raw})

    normalized = posixpath.normpath(trimmed)
    if normalized in (".", ""):
        return input_error("Path must reference a file under the shelf root", {"path": raw})

    if normalized == ".." or normalized.startswith("../") or normalized.startswith("/"):
        return input_error("Path traversal is not allowed", {"path": raw})

    return normalized


def is_under_root(target_abs: str, root_abs: str) -> bool:
    """True if target equals root or is nested below it on a separator boundary."""
    if target_abs == root_abs:
        return True
    prefix = root_abs if root_abs.endswith(os.sep) else root_abs + os.sep
    return target_abs.startswith(prefix)


def safe_join(base_dir: str, relative_path: str) -> str | ToolError:
    """Resolve ``relative_path`` under ``base_dir``; LOCAL_IO_ERROR if it escapes.

    Resolution is lexical (no symlink following).
    """
    if "\0" in relative_path:
        return local_io_error(f"Unsafe output path: {relative_path!r}")

    resolved_base = os.path.abspath(base_dir)
    candidate = os.path.abspath(os.path.join(resolved_base, relative_path))

    if not is_under_root(candidate, resolved_base):
        return local_io_error(
            f"Unsafe output path: {relative_path}",
            {"base": resolved_base, "candidate": candidate},
        )
    return candidate
