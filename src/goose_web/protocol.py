"""Goose Web wire format and inbound message classification.

Outbound, the bridge sends exactly one :class:`GooseWebMessage` per
connection.  Inbound, every websocket frame is a JSON object tagged by
``type``; :func:`classify` maps it onto one :class:`TransportEvent`.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ValidationError

from goose_web.errors import ParseError

InboundType = Literal[
    "response",
    "tool_request",
    "tool_response",
    "thinking",
    "complete",
    "error",
    "cancelled",
]


class GooseWebMessage(BaseModel):
    """Message sent to the Goose server."""

    type: Literal["message", "cancel"] = "message"
    content: str | None = None
    session_id: str
    timestamp: int | None = None

    @classmethod
    def for_prompt(cls, content: str, session_id: str) -> "GooseWebMessage":
        return cls(
            content=content,
            session_id=session_id,
            timestamp=int(time.time() * 1000),
        )

    def to_wire(self) -> str:
        return self.model_dump_json(exclude_none=True)


class GooseWebResponse(BaseModel):
    """Message received from the Goose server."""

    type: InboundType
    id: str | None = None
    content: str | None = None
    # Informational only; never validated.
    role: Any = None
    timestamp: Any = None
    message: str | None = None
    tool_name: str | None = None
    arguments: Any = None
    result: Any = None
    is_error: bool | None = None

    model_config = {"extra": "ignore"}


# ---------------------------------------------------------------------------
# Transport events
# ---------------------------------------------------------------------------

@dataclass
class TransportEvent:
    """Base for all classified inbound messages."""


@dataclass
class TextChunk(TransportEvent):
    content: str = ""


@dataclass
class ToolInvocation(TransportEvent):
    id: str | None = None
    name: str = "unknown"
    arguments: Any = None


@dataclass
class ToolOutcome(TransportEvent):
    id: str | None = None
    name: str = "unknown"
    result: str = ""
    is_error: bool = False


@dataclass
class Completed(TransportEvent):
    pass


@dataclass
class Failed(TransportEvent):
    message: str | None = None


@dataclass
class Thinking(TransportEvent):
    """Reasoning progress.  Accepted but carries no observable effect."""

    content: str = ""


@dataclass
class Cancelled(TransportEvent):
    """Remote-side cancellation notice.  Accepted but carries no
    observable effect."""


def render_tool_result(result: Any) -> str:
    """Render a tool result as text; list fragments are joined by newlines."""
    if result is None:
        return ""
    if isinstance(result, str):
        return result
    if isinstance(result, list):
        return "\n".join(
            item["text"]
            if isinstance(item, dict) and item.get("text")
            else json.dumps(item)
            for item in result
        )
    return json.dumps(result)


def classify(raw: str | bytes) -> TransportEvent:
    """Decode one websocket frame.

    Raises:
        ParseError: The frame is not JSON, is not an object, or carries
            an unknown ``type``.
    """
    try:
        data = GooseWebResponse.model_validate_json(raw)
    except ValidationError as e:
        raise ParseError(f"Unrecognised Goose message: {e}", raw=raw) from e

    if data.type == "response":
        return TextChunk(content=data.content or "")
    if data.type == "tool_request":
        return ToolInvocation(
            id=data.id,
            name=data.tool_name or "unknown",
            arguments=data.arguments,
        )
    if data.type == "tool_response":
        return ToolOutcome(
            id=data.id,
            name=data.tool_name or "unknown",
            result=render_tool_result(data.result),
            is_error=bool(data.is_error),
        )
    if data.type == "complete":
        return Completed()
    if data.type == "error":
        return Failed(message=data.message)
    if data.type == "thinking":
        return Thinking(content=data.content or "")
    return Cancelled()
