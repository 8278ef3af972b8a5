"""Newline framing and message decoding for the runtime stdout protocol."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Union


@dataclass(frozen=True)
class ResponseMessage:
    """Reply to a previously issued call, matched by ``id``."""

    id: str
    success: bool
    data: Any = None
    error: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class EventMessage:
    """Unsolicited message emitted by the runtime."""

    event_type: str
    data: Any = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class MalformedLine:
    """Line that could not be parsed as JSON."""

    line: str
    reason: str


DecodedMessage = Union[ResponseMessage, EventMessage, MalformedLine]


class LineFramer:
    """Accumulate raw stdout bytes and split them into complete lines."""

    def __init__(self) -> None:
        self._buffer = bytearray()

    @property
    def pending_bytes(self) -> int:
        return len(self._buffer)

    def feed(self, chunk: bytes) -> list[str]:
        """Append ``chunk`` and return every complete, non-empty, trimmed line."""
        self._buffer.extend(chunk)
        lines: list[str] = []
        while True:
            line_end = self._buffer.find(b"\n")
            if line_end == -1:
                break
            raw_line = bytes(self._buffer[:line_end])
            del self._buffer[: line_end + 1]
            line = raw_line.decode("utf-8", errors="replace").strip()
            if line:
                lines.append(line)
        return lines

    def reset(self) -> None:
        self._buffer.clear()


def decode_message(line: str) -> DecodedMessage | None:
    """Decode one protocol line.

    Returns ``None`` for valid JSON that is not an object; such lines carry
    no routable information and are dropped.
    """
    try:
        parsed = json.loads(line)
    except ValueError as exc:
        return MalformedLine(line=line, reason=str(exc))

    if not isinstance(parsed, dict):
        return None

    message_type = parsed.get("type") if isinstance(parsed.get("type"), str) else ""
    message_id = parsed.get("id") if isinstance(parsed.get("id"), str) else ""

    if message_type == "response" and message_id:
        error = parsed.get("error")
        return ResponseMessage(
            id=message_id,
            success=parsed.get("success") is not False,
            data=parsed.get("data"),
            error=error if isinstance(error, str) and error.strip() else None,
            raw=parsed,
        )

    return EventMessage(
        event_type=message_type or "unknown",
        data=parsed.get("data"),
        raw=parsed,
    )


def encode_request(request_id: str, command: str, params: dict[str, Any] | None = None) -> bytes:
    """Serialize one outbound request as a newline-terminated JSON line."""
    envelope: dict[str, Any] = dict(params or {})
    envelope["id"] = request_id
    envelope["type"] = command
    return (json.dumps(envelope, separators=(",", ":")) + "\n").encode("utf-8")
