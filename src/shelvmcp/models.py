"""Data models: shelf trees, resolved shelf sources, archive references."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

SOURCE_ARCHIVE = "archive"
SOURCE_TREE = "tree"


@dataclass
class ShelfTree:
    shelf_id: str
    name: str
    file_count: int
    files: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> ShelfTree:
        files = payload.get("files") or {}
        return cls(
            shelf_id=str(payload.get("shelfPublicId", "")),
            name=str(payload.get("name", "")),
            file_count=int(payload.get("fileCount", len(files))),
            files=dict(files),
        )


@dataclass(frozen=True)
class ArchiveRef:
    url: str
    version: str


@dataclass
class ShelfSource:
    """Files of one shelf, from an archive or a tree fetch. Insertion order is preserved."""

    kind: str  # "archive" | "tree"
    files: dict[str, str]
    archive_version: str | None = None
