"""Best-effort structured output.

Goose has no native JSON mode, so JSON is requested in the prompt and
dug out of the reply afterwards.  Nothing here validates against the
caller's schema, and nothing here raises: text without a usable JSON
value passes through unchanged.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable, Iterator

from goose_web.events import (
    FinishEvent,
    StreamEvent,
    TextDeltaEvent,
    TextEndEvent,
    TextStartEvent,
)
from goose_web.streaming import generate_id

_CLOSERS = {"{": "}", "[": "]"}


def json_instruction(schema: dict | None = None) -> str:
    """Prompt suffix asking the agent for JSON output."""
    instruction = "\n\nPlease respond with valid JSON only."
    if schema:
        instruction += f" Follow this JSON schema: {json.dumps(schema)}"
    return instruction


def _span_end(text: str, start: int) -> int | None:
    """Index of the bracket closing the one at *start*, or ``None``."""
    stack: list[str] = []
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        c = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif c == "\\":
                escaped = True
            elif c == '"':
                in_string = False
            continue
        if c == '"':
            in_string = True
        elif c in _CLOSERS:
            stack.append(_CLOSERS[c])
        elif c in "}]":
            if not stack or stack.pop() != c:
                return None
            if not stack:
                return i
    return None


def _balanced_spans(text: str) -> Iterator[str]:
    for start, c in enumerate(text):
        if c not in _CLOSERS:
            continue
        end = _span_end(text, start)
        if end is not None:
            yield text[start:end + 1]


def extract_json(text: str) -> str:
    """Return the first valid JSON object or array in *text*, re-serialised.

    Falls back to *text* unchanged.
    """
    for span in _balanced_spans(text):
        try:
            value = json.loads(span)
        except ValueError:
            continue
        return json.dumps(value, ensure_ascii=False)
    return text


class JsonStreamFilter:
    """Replaces streamed text with one clean JSON segment.

    Text segment events are withheld while streaming.  When the stream
    finishes, a single segment holding :func:`extract_json` of everything
    withheld is emitted just before the :class:`FinishEvent`.
    """

    def __init__(self, id_factory: Callable[[], str] = generate_id) -> None:
        self._new_id = id_factory
        self._text: list[str] = []

    def apply(self, events: Iterable[StreamEvent]) -> list[StreamEvent]:
        out: list[StreamEvent] = []
        for event in events:
            if isinstance(event, TextDeltaEvent):
                self._text.append(event.delta)
                continue
            if isinstance(event, (TextStartEvent, TextEndEvent)):
                continue
            if isinstance(event, FinishEvent) and self._text:
                segment_id = self._new_id()
                out.extend([
                    TextStartEvent(id=segment_id),
                    TextDeltaEvent(
                        id=segment_id,
                        delta=extract_json("".join(self._text)),
                    ),
                    TextEndEvent(id=segment_id),
                ])
            out.append(event)
        return out
