"""Error taxonomy helpers: typed tool errors and structured envelopes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

INPUT_ERROR = "INPUT_ERROR"
AUTH_ERROR = "AUTH_ERROR"
BILLING_REQUIRED = "BILLING_REQUIRED"
NOT_FOUND = "NOT_FOUND"
NOT_READY = "NOT_READY"
RATE_LIMITED = "RATE_LIMITED"
UPSTREAM_ERROR = "UPSTREAM_ERROR"
LOCAL_IO_ERROR = "LOCAL_IO_ERROR"
INTERNAL_ERROR = "INTERNAL_ERROR"


@dataclass(frozen=True)
class ToolError:
    """A typed failure returned (not raised) by validating functions."""

    code: str
    message: str
    status: int | None = None
    retryable: bool = False
    details: Any = None

    def envelope(self) -> dict[str, Any]:
        return err(self.code, self.message, self.details, status=self.status, retryable=self.retryable)


def input_error(message: str, details: Any = None) -> ToolError:
    return ToolError(INPUT_ERROR, message, status=400, details=details)


def auth_error(message: str) -> ToolError:
    return ToolError(AUTH_ERROR, message, status=401)


def local_io_error(message: str, details: Any = None) -> ToolError:
    return ToolError(LOCAL_IO_ERROR, message, details=details)


class ApiRequestError(Exception):
    """Non-success answer (or transport failure, status 0) from the Shelv API."""

    def __init__(self, method: str, path: str, status: int, body: Any = None) -> None:
        if isinstance(body, dict) and isinstance(body.get("message"), str):
            message = body["message"]
        elif status == 0:
            message = f"Shelv API request failed: {method} {path}"
        else:
            message = f"Shelv API request failed ({status})"
        super().__init__(message)
        self.method = method
        self.path = path
        self.status = status
        self.body = body


class UpstreamError(Exception):
    """The Shelv API answered, but with something unusable."""


class ArchiveError(UpstreamError):
    """A downloaded shelf archive could not be read."""


def status_to_code(status: int) -> str:
    if status == 400:
        return INPUT_ERROR
    if status in (401, 403):
        return AUTH_ERROR
    if status == 402:
        return BILLING_REQUIRED
    if status == 404:
        return NOT_FOUND
    if status == 409:
        return NOT_READY
    if status == 429:
        return RATE_LIMITED
    return UPSTREAM_ERROR


def to_tool_error(exc: BaseException, fallback_message: str = "Request failed") -> ToolError:
    """Map an exception raised by an outbound call into a ToolError."""
    if isinstance(exc, ApiRequestError):
        if exc.status == 0:
            return ToolError(UPSTREAM_ERROR, str(exc), retryable=True)
        return ToolError(
            status_to_code(exc.status),
            str(exc),
            status=exc.status,
            retryable=exc.status >= 500 or exc.status == 429,
            details=exc.body,
        )
    if isinstance(exc, UpstreamError):
        return ToolError(UPSTREAM_ERROR, str(exc) or fallback_message)
    if isinstance(exc, OSError):
        return ToolError(LOCAL_IO_ERROR, str(exc) or fallback_message)
    return ToolError(UPSTREAM_ERROR, str(exc) or fallback_message)


def err(
    code: str,
    message: str,
    details: Any = None,
    *,
    status: int | None = None,
    retryable: bool = False,
) -> dict[str, Any]:
    """Build a structured error envelope."""
    error: dict[str, Any] = {
        "code": code,
        "message": message,
        "retryable": retryable,
        "details": details if details is not None else {},
    }
    if status is not None:
        error["status"] = status
    return {"ok": False, "error": error}


def ok(result: dict[str, Any], summary: str = "") -> dict[str, Any]:
    """Build a structured success envelope."""
    return {"ok": True, "summary": summary, "result": result}
