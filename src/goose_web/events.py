"""Caller-facing events emitted by a streaming request."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class StreamEvent:
    """Base for all streaming events."""


@dataclass
class TextStartEvent(StreamEvent):
    """Opens a text segment.  Every delta and end for ``id`` follows it."""

    id: str = ""


@dataclass
class TextDeltaEvent(StreamEvent):
    id: str = ""
    delta: str = ""


@dataclass
class TextEndEvent(StreamEvent):
    id: str = ""


@dataclass
class ToolCallEvent(StreamEvent):
    """The agent invoked a tool.  ``input`` is the JSON-encoded arguments."""

    tool_call_id: str = ""
    tool_name: str = ""
    input: str = "{}"


@dataclass
class ToolResultEvent(StreamEvent):
    tool_call_id: str = ""
    tool_name: str = ""
    result: str = ""
    is_error: bool = False


@dataclass
class FinishEvent(StreamEvent):
    """Successful end of the stream."""

    finish_reason: str = "stop"
    usage: Any = None
    provider_metadata: dict = field(default_factory=dict)


@dataclass
class ErrorEvent(StreamEvent):
    """Failed end of the stream.  Always the last event yielded."""

    error: BaseException | None = None
