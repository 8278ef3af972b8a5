"""Structured error payloads returned by the bridge HTTP surface."""

from __future__ import annotations

from typing import Any

from runtimebridge.contracts import ERROR_SCHEMA_V1
from runtimebridge.errors import RuntimeBridgeError


def build_error(
    *,
    error_class: str,
    error_code: str,
    message: str,
    **extra: Any,
) -> dict[str, Any]:
    """Build a stable error payload for HTTP and websocket responses."""
    payload: dict[str, Any] = {
        "error_schema_version": ERROR_SCHEMA_V1,
        "error_class": error_class,
        "error_code": error_code,
        "error": message,
    }
    payload.update(extra)
    return payload


def error_message(error: BaseException | str | None, fallback: str) -> str:
    """Return a non-empty human message for an exception or raw value."""
    if isinstance(error, BaseException):
        text = str(error).strip()
        return text or fallback
    if isinstance(error, str) and error.strip():
        return error
    return fallback


def classify_runtime_failure(error: Exception, *, fallback: str) -> dict[str, Any]:
    """Map a failed runtime call into the versioned error taxonomy.

    Upstream error text is passed through verbatim when the exception
    carries one.
    """
    message = error_message(error, fallback)
    if isinstance(error, RuntimeBridgeError):
        return build_error(
            error_class=error.error_class,
            error_code=error.error_code,
            message=message,
        )
    return build_error(
        error_class="runtime",
        error_code="RUNTIME_CALL_FAILED",
        message=message,
    )
