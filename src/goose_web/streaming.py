"""Text-segment lifecycle for streaming responses.

Goose interleaves free text and tool activity on one channel.  The
:class:`SegmentTracker` turns that flat sequence into
:class:`~goose_web.events.StreamEvent` objects where every text delta
belongs to an explicitly opened segment, and no segment ever spans a
tool call.

The tracker is synchronous and does no I/O: each call to
:meth:`SegmentTracker.feed` returns the batch of events the message
produced, in emission order.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Callable

from goose_web.errors import GooseWebErrorMetadata, RemoteError
from goose_web.events import (
    ErrorEvent,
    FinishEvent,
    StreamEvent,
    TextDeltaEvent,
    TextEndEvent,
    TextStartEvent,
    ToolCallEvent,
    ToolResultEvent,
)
from goose_web.protocol import (
    Completed,
    Failed,
    TextChunk,
    ToolInvocation,
    ToolOutcome,
    TransportEvent,
)


def generate_id() -> str:
    return uuid.uuid4().hex[:16]


class SegmentTracker:
    """Tracks the open text segment of one streaming request.

    Args:
        id_factory: Produces segment ids and ids for tool calls the
            remote left unnamed.
        usage: Attached to the final :class:`FinishEvent`.
        provider_metadata: Attached to the final :class:`FinishEvent`.
        error_metadata: Attached to errors built from ``error`` messages.
    """

    def __init__(
        self,
        id_factory: Callable[[], str] = generate_id,
        usage=None,
        provider_metadata: dict | None = None,
        error_metadata: GooseWebErrorMetadata | None = None,
    ) -> None:
        self._new_id = id_factory
        self._usage = usage
        self._provider_metadata = provider_metadata or {}
        self._error_metadata = error_metadata
        self._open_id: str | None = None
        self.finished = False

    @property
    def open_segment_id(self) -> str | None:
        return self._open_id

    def feed(self, event: TransportEvent) -> list[StreamEvent]:
        """Advance the lifecycle by one transport event."""
        if self.finished:
            return []

        if isinstance(event, TextChunk):
            return self._on_text(event.content)

        if isinstance(event, ToolInvocation):
            out = self._close_segment()
            out.append(ToolCallEvent(
                tool_call_id=event.id or self._new_id(),
                tool_name=event.name,
                input=json.dumps(event.arguments or {}),
            ))
            return out

        if isinstance(event, ToolOutcome):
            # A tool result always ends the current segment, even when no
            # tool call closed it.
            self._open_id = None
            return [ToolResultEvent(
                tool_call_id=event.id or self._new_id(),
                tool_name=event.name,
                result=event.result,
                is_error=event.is_error,
            )]

        if isinstance(event, Completed):
            out = self._close_segment()
            out.append(FinishEvent(
                finish_reason="stop",
                usage=self._usage,
                provider_metadata=self._provider_metadata,
            ))
            self.finished = True
            return out

        if isinstance(event, Failed):
            return self.fail(RemoteError(event.message, self._error_metadata))

        return []

    def fail(self, error: BaseException) -> list[StreamEvent]:
        """Terminate with *error*, closing any open segment first."""
        if self.finished:
            return []
        out = self._close_segment()
        out.append(ErrorEvent(error=error))
        self.finished = True
        return out

    def _on_text(self, content: str) -> list[StreamEvent]:
        if not content:
            return []
        if self._open_id is None:
            self._open_id = self._new_id()
            return [
                TextStartEvent(id=self._open_id),
                TextDeltaEvent(id=self._open_id, delta=content),
            ]
        return [TextDeltaEvent(id=self._open_id, delta=content)]

    def _close_segment(self) -> list[StreamEvent]:
        if self._open_id is None:
            return []
        segment_id, self._open_id = self._open_id, None
        return [TextEndEvent(id=segment_id)]
