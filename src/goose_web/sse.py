"""Server-Sent Events adapter for streaming events."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from dataclasses import asdict

from goose_web.errors import GooseWebError
from goose_web.events import ErrorEvent, FinishEvent, StreamEvent


def _payload(event: StreamEvent) -> dict:
    if isinstance(event, ErrorEvent):
        error = event.error
        return {
            "message": str(error) if error is not None else "",
            "retryable": isinstance(error, GooseWebError) and error.is_retryable,
        }
    if isinstance(event, FinishEvent):
        usage = event.usage
        return {
            "finish_reason": event.finish_reason,
            "usage": usage.model_dump() if usage is not None else None,
            "provider_metadata": event.provider_metadata,
        }
    return asdict(event)


async def sse_generator(
    event_stream: AsyncIterator[StreamEvent],
) -> AsyncIterator[str]:
    """Convert a StreamEvent async iterator into SSE-formatted strings."""
    async for event in event_stream:
        event_type = type(event).__name__
        data = json.dumps(_payload(event))
        yield f"event: {event_type}\ndata: {data}\n\n"
    yield "event: done\ndata: {}\n\n"
