import asyncio
import logging
from collections.abc import Callable
from contextlib import aclosing
from dataclasses import dataclass, field
from datetime import datetime, timezone

import httpx
from openai.types import CompletionUsage
from pydantic import BaseModel

from goose_web.aggregator import ResponseAggregator
from goose_web.delivery import DeliveryQueue
from goose_web.errors import (
    ConnectError,
    GooseWebError,
    GooseWebErrorMetadata,
    ParseError,
    ResponseTimeoutError,
    UnsupportedModelError,
)
from goose_web.events import ErrorEvent, FinishEvent, StreamEvent
from goose_web.instrumentation import record_error, record_usage, request_span
from goose_web.message import JsonResponseFormat, coerce_response_format
from goose_web.prompt import Prompt, flatten_prompt
from goose_web.protocol import GooseWebMessage, classify
from goose_web.session import SessionHandle, ensure_session
from goose_web.settings import GooseWebSettings
from goose_web.streaming import SegmentTracker, generate_id
from goose_web.structured import JsonStreamFilter, extract_json, json_instruction
from goose_web.transport import Connection, open_connection

logger = logging.getLogger(__name__)

PROVIDER_NAME = "goose-web"


@dataclass
class GenerateResult:
    """The result of a single non-streaming request."""

    text: str
    finish_reason: str
    usage: CompletionUsage
    session_id: str
    request_body: str
    response_id: str = field(default_factory=generate_id)
    timestamp: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    provider_metadata: dict = field(default_factory=dict)


def _empty_usage() -> CompletionUsage:
    # Goose does not report token usage.
    return CompletionUsage(prompt_tokens=0, completion_tokens=0, total_tokens=0)


class EventStream:
    """Single-pass async iterator over the events of one streaming request.

    Iteration ends after the terminal :class:`FinishEvent` or
    :class:`ErrorEvent`.  Iterating again yields nothing.  ``aclose()``
    (or leaving an ``async with`` block) drops the connection early.
    """

    def __init__(
        self,
        connection: Connection,
        queue: DeliveryQueue,
        reader: asyncio.Task,
        request_body: str,
    ):
        self._connection = connection
        self._queue = queue
        self._reader = reader
        self._released = False
        self.request_body = request_body

    @property
    def closed(self) -> bool:
        return self._connection.closed

    def __aiter__(self):
        return self

    async def __anext__(self) -> StreamEvent:
        if self._released:
            raise StopAsyncIteration
        event = await self._queue.pull()
        if event is None:
            if self._reader.cancelled():
                raise StopAsyncIteration
            # Surfaces any unexpected failure of the reader task.
            await self._reader
            raise StopAsyncIteration
        return event

    async def aclose(self) -> None:
        """Drop the connection.  Buffered events are discarded."""
        self._released = True
        if not self._reader.done():
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
        # A reader cancelled before its first step never closes the queue.
        if not self._queue.closed:
            self._queue.close()
        await self._connection.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()


class ModelProvider:
    """Interface every language model provider implements."""

    def __init__(self):
        pass

    async def complete(self, prompt: Prompt, response_format=None):
        raise NotImplementedError

    async def stream(self, prompt: Prompt, response_format=None):
        raise NotImplementedError

    async def structured_completion(
            self,
            prompt: Prompt,
            response_model: type[BaseModel],
    ):
        raise NotImplementedError


class GooseWebProvider(ModelProvider):
    """Language model backed by a Goose agent behind a websocket.

    Each request opens its own connection, sends one prompt and reads
    until the agent completes, fails, or the response deadline passes.

    Args:
        model_id: Reported model name; Goose itself picks the model.
        settings: Connection settings.  Defaults to ``GOOSE_*`` env vars.
        id_factory: Generates text-segment and fallback tool-call ids.
        http_transport: Optional ``httpx`` transport for the session API.
    """

    def __init__(
        self,
        model_id: str = "goose",
        settings: GooseWebSettings | None = None,
        id_factory: Callable[[], str] = generate_id,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.model_id = model_id
        self.settings = settings or GooseWebSettings.from_env()
        self._id_factory = id_factory
        self._http_transport = http_transport
        self._logger = self.settings.logger or logger
        self._session_id = self.settings.session_id or ""
        self._session_ready = bool(
            self.settings.assume_session_valid and self.settings.session_id
        )

    @property
    def session_id(self) -> str:
        return self._session_id

    async def ensure_session(self) -> SessionHandle:
        """Make sure a session the server accepts is in place.

        Validation happens once per provider; later calls return the
        cached session.
        """
        if self._session_ready and self._session_id:
            self._logger.debug("Session already exists, skipping creation")
            return SessionHandle(session_id=self._session_id)

        handle = await ensure_session(
            self.settings, self.settings.session_id, self._http_transport,
        )
        self._session_id = handle.session_id
        self._session_ready = True
        return handle

    # ------------------------------------------------------------------
    # Aggregated path
    # ------------------------------------------------------------------

    async def generate(self, prompt: Prompt, response_format=None) -> GenerateResult:
        """Send *prompt* and wait for the complete answer.

        Raises:
            ConnectError: The server could not be reached, or the
                connection dropped before the answer completed.
            ResponseTimeoutError: No terminal message within the
                response deadline.
            RemoteError: The agent reported a failure.
        """
        await self.ensure_session()
        response_format = coerce_response_format(response_format)
        body = self._build_prompt(prompt, response_format)
        metadata = self._error_metadata(body)
        connection = await self._connect(metadata)

        async with request_span(
            "generate", self.model_id, self._session_id, self.settings.ws_url,
        ) as span:
            try:
                text = await self._collect(connection, body, metadata)
            except GooseWebError as e:
                record_error(span, e)
                raise
            finally:
                await connection.close()
            usage = _empty_usage()
            record_usage(span, usage)

        if isinstance(response_format, JsonResponseFormat):
            text = extract_json(text)
        return GenerateResult(
            text=text,
            finish_reason="stop",
            usage=usage,
            session_id=self._session_id,
            request_body=body,
            provider_metadata=self._provider_metadata(),
        )

    complete = generate

    async def structured_completion(
            self,
            prompt: Prompt,
            response_model: type[BaseModel],
    ):
        result = await self.generate(
            prompt,
            JsonResponseFormat(schema=response_model.model_json_schema()),
        )
        return response_model.model_validate_json(result.text)

    async def _collect(
        self,
        connection: Connection,
        body: str,
        metadata: GooseWebErrorMetadata,
    ) -> str:
        await connection.send(GooseWebMessage.for_prompt(body, self._session_id))
        aggregator = ResponseAggregator(metadata)
        try:
            await asyncio.wait_for(
                self._aggregate(connection, aggregator, metadata),
                timeout=self.settings.response_timeout,
            )
        except asyncio.TimeoutError as e:
            raise ResponseTimeoutError(
                self.settings.response_timeout, metadata,
            ) from e
        return aggregator.text

    async def _aggregate(
        self,
        connection: Connection,
        aggregator: ResponseAggregator,
        metadata: GooseWebErrorMetadata,
    ) -> None:
        async with aclosing(connection.frames()) as frames:
            async for raw in frames:
                event = self._classify(raw)
                if event is None:
                    continue
                aggregator.feed(event)
                if aggregator.done:
                    return
        raise self._closed_early(metadata)

    # ------------------------------------------------------------------
    # Streaming path
    # ------------------------------------------------------------------

    async def stream(self, prompt: Prompt, response_format=None) -> EventStream:
        """Send *prompt* and return the incremental event stream.

        Connection failures raise here, before any event is produced.
        Later failures arrive as a final :class:`ErrorEvent`.
        """
        await self.ensure_session()
        response_format = coerce_response_format(response_format)
        body = self._build_prompt(prompt, response_format)
        metadata = self._error_metadata(body)
        connection = await self._connect(metadata)
        try:
            await connection.send(
                GooseWebMessage.for_prompt(body, self._session_id)
            )
        except GooseWebError:
            await connection.close()
            raise

        tracker = SegmentTracker(
            id_factory=self._id_factory,
            usage=_empty_usage(),
            provider_metadata=self._provider_metadata(),
            error_metadata=metadata,
        )
        json_filter = None
        if isinstance(response_format, JsonResponseFormat):
            json_filter = JsonStreamFilter(self._id_factory)
        queue = DeliveryQueue()
        reader = asyncio.create_task(
            self._pump(connection, tracker, queue, json_filter, metadata)
        )
        return EventStream(connection, queue, reader, body)

    async def _pump(
        self,
        connection: Connection,
        tracker: SegmentTracker,
        queue: DeliveryQueue,
        json_filter: JsonStreamFilter | None,
        metadata: GooseWebErrorMetadata,
    ) -> None:
        """Move classified messages into *queue* until the stream ends."""

        def dispatch(events: list[StreamEvent]) -> None:
            if json_filter is not None:
                events = json_filter.apply(events)
            queue.push_batch(events)
            for event in events:
                if isinstance(event, ErrorEvent):
                    record_error(span, event.error)
                elif isinstance(event, FinishEvent):
                    record_usage(span, event.usage)
            if tracker.finished:
                queue.close()

        async with request_span(
            "stream", self.model_id, self._session_id, self.settings.ws_url,
        ) as span:
            try:
                await asyncio.wait_for(
                    self._read_stream(connection, tracker, dispatch, metadata),
                    timeout=self.settings.response_timeout,
                )
            except asyncio.TimeoutError:
                self._logger.warning(
                    f"No terminal message within "
                    f"{self.settings.response_timeout}s, closing connection"
                )
                dispatch(tracker.fail(ResponseTimeoutError(
                    self.settings.response_timeout, metadata,
                )))
            except ConnectError as e:
                self._logger.error(f"WebSocket error during streaming: {e}")
                dispatch(tracker.fail(e))
            finally:
                if not queue.closed:
                    queue.close()
                await connection.close()

    async def _read_stream(
        self,
        connection: Connection,
        tracker: SegmentTracker,
        dispatch: Callable[[list[StreamEvent]], None],
        metadata: GooseWebErrorMetadata,
    ) -> None:
        async with aclosing(connection.frames()) as frames:
            async for raw in frames:
                event = self._classify(raw)
                if event is None:
                    continue
                dispatch(tracker.feed(event))
                if tracker.finished:
                    return
        dispatch(tracker.fail(self._closed_early(metadata)))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _build_prompt(self, prompt: Prompt, response_format) -> str:
        text = flatten_prompt(prompt)
        if isinstance(response_format, JsonResponseFormat):
            text += json_instruction(response_format.json_schema)
        return text

    def _error_metadata(self, body: str) -> GooseWebErrorMetadata:
        return GooseWebErrorMetadata(
            ws_url=self.settings.ws_url,
            session_id=self._session_id,
            last_message=body,
        )

    def _provider_metadata(self) -> dict:
        return {PROVIDER_NAME: {"session_id": self._session_id}}

    async def _connect(self, metadata: GooseWebErrorMetadata) -> Connection:
        return await open_connection(
            self.settings.ws_url,
            self.settings.auth_headers(),
            self.settings.connection_timeout,
            metadata,
        )

    def _classify(self, raw):
        self._logger.debug(f"Received WebSocket message: {raw!r}")
        try:
            return classify(raw)
        except ParseError as e:
            self._logger.warning(f"Dropping malformed Goose message: {e.message}")
            return None

    def _closed_early(self, metadata: GooseWebErrorMetadata) -> ConnectError:
        metadata.connection_state = "disconnected"
        return ConnectError(
            "WebSocket closed before the response completed", metadata,
        )


class GooseWeb:
    """Factory for Goose Web language models.

    Provider-level settings are merged with per-model settings, the latter
    winning.  Build one at your composition root::

        goose = create_goose_web(GooseWebSettings(ws_url="ws://host:8080/ws"))
        model = goose("goose")
        result = await model.generate("Hello")
    """

    def __init__(
        self,
        settings: GooseWebSettings | None = None,
        id_factory: Callable[[], str] = generate_id,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings or GooseWebSettings.from_env()
        self._id_factory = id_factory
        self._http_transport = http_transport

    def __call__(
        self,
        model_id: str = "goose",
        settings: GooseWebSettings | None = None,
    ) -> GooseWebProvider:
        return self.language_model(model_id, settings)

    def language_model(
        self,
        model_id: str = "goose",
        settings: GooseWebSettings | None = None,
    ) -> GooseWebProvider:
        if not isinstance(model_id, str):
            raise UnsupportedModelError(str(model_id), "languageModel")
        return GooseWebProvider(
            model_id=model_id,
            settings=self.settings.merge(settings),
            id_factory=self._id_factory,
            http_transport=self._http_transport,
        )

    chat = language_model

    def text_embedding_model(self, model_id: str):
        raise UnsupportedModelError(model_id, "textEmbeddingModel")

    def image_model(self, model_id: str):
        raise UnsupportedModelError(model_id, "imageModel")


def create_goose_web(
    settings: GooseWebSettings | None = None,
    id_factory: Callable[[], str] = generate_id,
    http_transport: httpx.AsyncBaseTransport | None = None,
) -> GooseWeb:
    return GooseWeb(settings, id_factory, http_transport)
