"""One websocket connection per request.

:func:`open_connection` makes exactly one connection attempt, bounded by
the connect deadline, and never retries.  The returned
:class:`Connection` belongs to a single request and is closed when that
request ends.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import (
    ConnectionClosed,
    ConnectionClosedError,
    WebSocketException,
)

from goose_web.errors import ConnectError, GooseWebErrorMetadata
from goose_web.protocol import GooseWebMessage

logger = logging.getLogger(__name__)


class Connection:
    """A live websocket to the Goose server."""

    def __init__(self, ws: ClientConnection, ws_url: str):
        self._ws = ws
        self.ws_url = ws_url

    @property
    def closed(self) -> bool:
        return self._ws.close_code is not None

    async def send(self, message: GooseWebMessage) -> None:
        payload = message.to_wire()
        try:
            await self._ws.send(payload)
        except ConnectionClosed as e:
            raise ConnectError(
                f"WebSocket closed before the message was sent: {e}",
                GooseWebErrorMetadata(
                    ws_url=self.ws_url,
                    last_message=message.content,
                    connection_state="disconnected",
                ),
            ) from e
        logger.debug(f"Sent message to Goose server: {payload}")

    async def frames(self) -> AsyncIterator[str | bytes]:
        """Yield inbound frames until the connection closes.

        A normal close simply ends iteration.

        Raises:
            ConnectError: The connection dropped abnormally.
        """
        try:
            async for raw in self._ws:
                yield raw
        except ConnectionClosedError as e:
            raise ConnectError(
                f"WebSocket closed unexpectedly: {e}",
                GooseWebErrorMetadata(
                    ws_url=self.ws_url, connection_state="error",
                ),
            ) from e

    async def close(self) -> None:
        await self._ws.close()


async def _dial(
    ws_url: str,
    auth_headers: dict[str, str] | None,
    metadata: GooseWebErrorMetadata,
) -> ClientConnection:
    # An OS-level TimeoutError here is a transport failure, not the deadline.
    try:
        return await connect(
            ws_url,
            additional_headers=auth_headers or None,
            open_timeout=None,
        )
    except (OSError, WebSocketException) as e:
        metadata.connection_state = "error"
        logger.error(f"WebSocket connection error: {e}")
        raise ConnectError(
            "Failed to connect to Goose server", metadata,
        ) from e


async def open_connection(
    ws_url: str,
    auth_headers: dict[str, str] | None = None,
    connect_timeout: float = 30.0,
    metadata: GooseWebErrorMetadata | None = None,
) -> Connection:
    """Connect to *ws_url* within *connect_timeout* seconds.

    Raises:
        ConnectError: ``reason="timeout"`` if the deadline elapsed,
            ``reason="transport_failure"`` for any other failure.
    """
    metadata = metadata or GooseWebErrorMetadata(ws_url=ws_url)
    metadata.connection_state = "connecting"
    try:
        ws = await asyncio.wait_for(
            _dial(ws_url, auth_headers, metadata),
            timeout=connect_timeout,
        )
    except asyncio.TimeoutError as e:
        metadata.connection_state = "error"
        logger.error(f"Connection to {ws_url} timed out")
        raise ConnectError(
            f"Connection timeout after {round(connect_timeout * 1000)}ms",
            metadata,
            reason="timeout",
        ) from e

    metadata.connection_state = "connected"
    logger.debug(f"WebSocket connected to {ws_url}")
    return Connection(ws, ws_url)
