"""Pydantic input models for each tool. Also the source of ``inputSchema``."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from shelvmcp.errors import ToolError, input_error


class ToolInput(BaseModel):
    """Base for tool inputs: unknown fields are rejected."""

    model_config = ConfigDict(extra="forbid")


class ListShelvesInput(ToolInput):
    page: int | None = Field(default=None, ge=1)
    limit: int | None = Field(default=None, ge=1, le=100)


class ShelfInput(ToolInput):
    shelf_id: str = Field(..., min_length=1)


class ReadShelfFileInput(ShelfInput):
    path: str = Field(..., min_length=1)


class SearchShelfInput(ShelfInput):
    query: str = Field(..., min_length=1)
    mode: Literal["substring", "regex"] = "substring"
    case_sensitive: bool = False
    max_matches: int | None = Field(default=None, ge=1)


class CreateShelfInput(ToolInput):
    pdf_path: str = Field(..., min_length=1)
    name: str | None = Field(default=None, min_length=1, max_length=100)
    template: Literal["book", "legal-contract", "academic-paper"] | None = None
    review: bool | None = None


class HydrateShelfInput(ShelfInput):
    target_dir: str = Field(..., min_length=1)
    overwrite: bool = False


def input_schema(model: type[ToolInput]) -> dict[str, Any]:
    schema = model.model_json_schema()
    schema.pop("title", None)
    return schema


def parse_input(model: type[ToolInput], arguments: Any) -> ToolInput | ToolError:
    """Validate raw tool arguments against ``model``."""
    try:
        return model.model_validate(arguments if arguments is not None else {})
    except ValidationError as e:
        problems = [
            {"field": ".".join(str(p) for p in item["loc"]), "message": item["msg"]}
            for item in e.errors()
        ]
        return input_error("Invalid tool arguments", {"errors": problems})
