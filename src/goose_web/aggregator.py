import logging

from goose_web.errors import GooseWebErrorMetadata, RemoteError
from goose_web.protocol import (
    Completed,
    Failed,
    TextChunk,
    ToolInvocation,
    ToolOutcome,
    TransportEvent,
)

logger = logging.getLogger(__name__)


class ResponseAggregator:
    """Collects the text of a non-streaming request.

    Tool activity is observed (logged) but never surfaced; the
    non-streaming contract only exposes the final text.
    """

    def __init__(self, error_metadata: GooseWebErrorMetadata | None = None):
        self._parts: list[str] = []
        self._error_metadata = error_metadata
        self.done = False

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def feed(self, event: TransportEvent) -> None:
        """Fold one transport event in.

        Raises:
            RemoteError: The remote reported a failure.
        """
        if self.done:
            return
        if isinstance(event, TextChunk):
            self._parts.append(event.content)
        elif isinstance(event, ToolInvocation):
            logger.debug(f"Tool call {event.name} ({event.id})")
        elif isinstance(event, ToolOutcome):
            logger.debug(f"Tool result for {event.name} ({event.id})")
        elif isinstance(event, Completed):
            self.done = True
        elif isinstance(event, Failed):
            self.done = True
            raise RemoteError(event.message, self._error_metadata)
