"""Unit tests for the text-segment lifecycle."""

import json

import pytest

from goose_web.errors import RemoteError, ResponseTimeoutError
from goose_web.events import (
    ErrorEvent,
    FinishEvent,
    TextDeltaEvent,
    TextEndEvent,
    TextStartEvent,
    ToolCallEvent,
    ToolResultEvent,
)
from goose_web.protocol import (
    Cancelled,
    Completed,
    Failed,
    TextChunk,
    Thinking,
    ToolInvocation,
    ToolOutcome,
)
from goose_web.streaming import SegmentTracker


def run(tracker, events):
    out = []
    for event in events:
        out.extend(tracker.feed(event))
    return out


@pytest.fixture
def tracker(id_factory):
    return SegmentTracker(id_factory=id_factory)


class TestTextSegments:
    def test_first_chunk_opens_segment(self, tracker):
        assert tracker.feed(TextChunk("Hello")) == [
            TextStartEvent(id="id-1"),
            TextDeltaEvent(id="id-1", delta="Hello"),
        ]
        assert tracker.open_segment_id == "id-1"

    def test_hello_world_scenario(self, tracker):
        out = run(tracker, [TextChunk("Hello"), TextChunk(" world"), Completed()])
        assert out == [
            TextStartEvent(id="id-1"),
            TextDeltaEvent(id="id-1", delta="Hello"),
            TextDeltaEvent(id="id-1", delta=" world"),
            TextEndEvent(id="id-1"),
            FinishEvent(finish_reason="stop"),
        ]
        assert tracker.finished

    def test_empty_chunk_opens_nothing(self, tracker):
        assert tracker.feed(TextChunk("")) == []
        assert tracker.open_segment_id is None

    def test_placeholders_have_no_effect(self, tracker):
        tracker.feed(TextChunk("a"))
        assert tracker.feed(Thinking("...")) == []
        assert tracker.feed(Cancelled()) == []
        assert tracker.feed(TextChunk("b")) == [TextDeltaEvent(id="id-1", delta="b")]


class TestToolBoundaries:
    def test_tool_call_closes_segment(self, tracker):
        tracker.feed(TextChunk("A"))
        assert tracker.feed(ToolInvocation(id="t1", name="fetch", arguments={"q": 1})) == [
            TextEndEvent(id="id-1"),
            ToolCallEvent(tool_call_id="t1", tool_name="fetch", input='{"q": 1}'),
        ]
        assert tracker.open_segment_id is None

    def test_tool_call_while_idle(self, tracker):
        out = tracker.feed(ToolInvocation(id="t1", name="fetch"))
        assert out == [ToolCallEvent(tool_call_id="t1", tool_name="fetch", input="{}")]

    def test_text_around_tool_uses_distinct_segments(self, tracker):
        out = run(tracker, [
            TextChunk("A"),
            ToolInvocation(id="t1", name="fetch"),
            ToolOutcome(id="t1", name="fetch", result="B"),
            TextChunk("C"),
            Completed(),
        ])
        starts = [e.id for e in out if isinstance(e, TextStartEvent)]
        assert starts == ["id-1", "id-2"]
        call = next(e for e in out if isinstance(e, ToolCallEvent))
        result = next(e for e in out if isinstance(e, ToolResultEvent))
        assert call.tool_call_id == result.tool_call_id == "t1"
        assert result.result == "B"
        assert [type(e) for e in out] == [
            TextStartEvent, TextDeltaEvent, TextEndEvent,
            ToolCallEvent, ToolResultEvent,
            TextStartEvent, TextDeltaEvent, TextEndEvent,
            FinishEvent,
        ]

    def test_tool_outcome_resets_segment_without_close(self, tracker):
        # A result with no preceding call still ends the segment.
        tracker.feed(TextChunk("A"))
        out = tracker.feed(ToolOutcome(id="t9", name="x", result="r"))
        assert out == [ToolResultEvent(tool_call_id="t9", tool_name="x", result="r")]
        assert tracker.feed(TextChunk("B"))[0] == TextStartEvent(id="id-2")

    def test_missing_tool_ids_are_generated_independently(self, tracker):
        out = run(tracker, [
            ToolInvocation(name="fetch"),
            ToolOutcome(name="fetch", result="ok"),
        ])
        assert out[0].tool_call_id == "id-1"
        # No correlation is possible without an id from the remote.
        assert out[1].tool_call_id == "id-2"

    def test_tool_arguments_serialised(self, tracker):
        out = tracker.feed(ToolInvocation(id="t", name="n", arguments={"a": [1, 2]}))
        assert json.loads(out[0].input) == {"a": [1, 2]}


class TestTerminalTransitions:
    def test_error_closes_open_segment_first(self, tracker):
        tracker.feed(TextChunk("partial"))
        out = tracker.feed(Failed(message="boom"))
        assert out[0] == TextEndEvent(id="id-1")
        assert isinstance(out[1], ErrorEvent)
        assert isinstance(out[1].error, RemoteError)
        assert out[1].error.message == "boom"
        assert tracker.finished

    def test_error_without_message(self, tracker):
        out = tracker.feed(Failed())
        assert out[0].error.message == "Unknown error from Goose server"

    def test_fail_with_timeout(self, tracker):
        tracker.feed(TextChunk("partial"))
        error = ResponseTimeoutError(1.0)
        assert tracker.fail(error) == [
            TextEndEvent(id="id-1"),
            ErrorEvent(error=error),
        ]

    def test_nothing_after_terminal(self, tracker):
        tracker.feed(Completed())
        assert tracker.feed(TextChunk("late")) == []
        assert tracker.feed(Failed("late")) == []
        assert tracker.fail(RuntimeError("late")) == []

    def test_finish_carries_usage_and_metadata(self, id_factory):
        tracker = SegmentTracker(
            id_factory=id_factory,
            usage="usage",
            provider_metadata={"goose-web": {"session_id": "s1"}},
        )
        (finish,) = tracker.feed(Completed())
        assert finish.usage == "usage"
        assert finish.provider_metadata == {"goose-web": {"session_id": "s1"}}


def test_no_segment_spans_a_tool_call(tracker):
    """Any segment id seen in deltas appears on one side of each tool call."""
    sequence = [
        TextChunk("a"), TextChunk("b"),
        ToolInvocation(id="t1", name="x"),
        TextChunk("c"),
        ToolOutcome(id="t1", name="x", result="r"),
        TextChunk("d"),
        ToolInvocation(name="y"),
        ToolInvocation(name="z"),
        TextChunk("e"),
        Completed(),
    ]
    out = run(tracker, sequence)

    seen, open_ids = set(), set()
    for event in out:
        if isinstance(event, TextStartEvent):
            assert event.id not in seen
            seen.add(event.id)
            open_ids.add(event.id)
        elif isinstance(event, (TextDeltaEvent, TextEndEvent)):
            assert event.id in open_ids
        if isinstance(event, TextEndEvent):
            open_ids.discard(event.id)

    call_positions = [i for i, e in enumerate(out) if isinstance(e, ToolCallEvent)]
    for pos in call_positions:
        before = {e.id for e in out[:pos] if isinstance(e, TextDeltaEvent)}
        after = {e.id for e in out[pos:] if isinstance(e, TextDeltaEvent)}
        assert not before & after
