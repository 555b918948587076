"""UTF-8 byte budgets and content-type inference for shelf files."""

from __future__ import annotations

import posixpath
from dataclasses import dataclass

_CONTENT_TYPES: dict[str, str] = {
    ".md": "text/markdown",
    ".json": "application/json",
    ".txt": "text/plain",
}


@dataclass(frozen=True)
class Truncation:
    value: str
    truncated: bool
    bytes: int


def utf8_len(text: str) -> int:
    # surrogatepass: lone surrogates from decoded JSON still count 3 bytes instead of raising
    return len(text.encode("utf-8", "surrogatepass"))


def truncate_utf8(content: str, max_bytes: int) -> Truncation:
    """Cut ``content`` to the longest code-point prefix that fits ``max_bytes``.

    Byte length only grows with prefix length, so the cut point is found
    by binary search over character counts. Slicing whole code points
    means a multi-byte character is never split.
    """
    max_bytes = max(max_bytes, 0)
    total = utf8_len(content)
    if total <= max_bytes:
        return Truncation(value=content, truncated=False, bytes=total)

    low, high = 0, len(content)
    while low < high:
        mid = (low + high + 1) // 2
        if utf8_len(content[:mid]) <= max_bytes:
            low = mid
        else:
            high = mid - 1

    value = content[:low]
    return Truncation(value=value, truncated=True, bytes=utf8_len(value))


def infer_content_type(path: str) -> str:
    ext = posixpath.splitext(path)[1].lower()
    return _CONTENT_TYPES.get(ext, "text/plain")
