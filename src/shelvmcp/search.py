"""Bounded line search across an in-memory shelf.

A scan stops at whichever budget is hit first: file count, total bytes,
or number of matches. A file that would exceed the file or byte budget is
skipped whole; the match budget can stop a scan mid-file.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import asdict, dataclass, field
from typing import Any

from shelvmcp.errors import ToolError, input_error
from shelvmcp.paths import validate_relative_path
from shelvmcp.text import utf8_len

logger = logging.getLogger(__name__)

MODES = ("substring", "regex")
MAX_SNIPPET_CHARS = 300

_LINE_BREAK = re.compile(r"\r?\n")

Matcher = Callable[[str], bool]


@dataclass(frozen=True)
class ScanBudget:
    max_files: int
    max_bytes: int
    max_matches: int

    def __post_init__(self) -> None:
        for name in ("max_files", "max_bytes", "max_matches"):
            if getattr(self, name) <= 0:
                raise ValueError(f"ScanBudget.{name} must be positive")


@dataclass(frozen=True)
class MatchRecord:
    path: str
    line_number: int  # 1-based
    line: str
    snippet: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ScanResult:
    matches: list[MatchRecord] = field(default_factory=list)
    scanned_files: int = 0
    scanned_bytes: int = 0
    truncated: bool = False


def effective_max_matches(hint: int | None, ceiling: int) -> int:
    """Caller hint clamped to the server ceiling."""
    if hint is None:
        return ceiling
    return min(hint, ceiling)


def build_matcher(query: str, mode: str, case_sensitive: bool) -> Matcher | ToolError:
    """Compile ``query`` once into a per-line predicate."""
    if mode == "regex":
        flags = 0 if case_sensitive else re.IGNORECASE
        try:
            pattern = re.compile(query, flags)
        except re.error as e:
            return input_error("Invalid regular expression", {"query": query, "reason": str(e)})
        return lambda line: pattern.search(line) is not None

    if mode == "substring":
        if case_sensitive:
            return lambda line: query in line
        needle = query.lower()
        return lambda line: needle in line.lower()

    return input_error(f"Unsupported search mode: {mode}", {"allowed": list(MODES)})


def scan(
    files: Mapping[str, str],
    query: str,
    mode: str,
    case_sensitive: bool,
    budget: ScanBudget,
) -> ScanResult | ToolError:
    """Search ``files`` in iteration order, honoring every limit in ``budget``."""
    matcher = build_matcher(query, mode, case_sensitive)
    if isinstance(matcher, ToolError):
        return matcher

    result = ScanResult()

    for raw_path, content in files.items():
        if result.scanned_files >= budget.max_files:
            result.truncated = True
            break

        size = utf8_len(content)
        if result.scanned_bytes + size > budget.max_bytes:
            result.truncated = True
            break

        path = validate_relative_path(raw_path)
        if isinstance(path, ToolError):
            return path

        result.scanned_files += 1
        result.scanned_bytes += size

        for index, line in enumerate(_LINE_BREAK.split(content)):
            if not matcher(line):
                continue
            result.matches.append(
                MatchRecord(
                    path=path,
                    line_number=index + 1,
                    line=line,
                    snippet=line[:MAX_SNIPPET_CHARS],
                )
            )
            if len(result.matches) >= budget.max_matches:
                result.truncated = True
                break

        if result.truncated:
            break

    logger.debug(
        "scan finished: files=%d bytes=%d matches=%d truncated=%s",
        result.scanned_files,
        result.scanned_bytes,
        len(result.matches),
        result.truncated,
    )
    return result
