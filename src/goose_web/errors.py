"""Error taxonomy for Goose Web operations.

Every error raised to callers is a :class:`GooseWebError` carrying
:class:`GooseWebErrorMetadata` (websocket address, session, last
outbound prompt) for diagnostics.  ``is_retryable`` tells callers
whether trying again can help: connection failures and timeouts can,
errors reported by the remote agent cannot.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

ConnectionState = Literal["connecting", "connected", "disconnected", "error"]


@dataclass
class GooseWebErrorMetadata:
    """Context attached to a :class:`GooseWebError`."""

    ws_url: str | None = None
    session_id: str | None = None
    last_message: str | None = None
    connection_state: ConnectionState | None = None
    response_status: int | None = None


class GooseWebError(Exception):
    """Base class for all Goose Web failures."""

    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        metadata: GooseWebErrorMetadata | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.metadata = metadata or GooseWebErrorMetadata()

    @property
    def url(self) -> str:
        return self.metadata.ws_url or "ws://unknown"

    @property
    def request_body_values(self) -> dict | None:
        if self.metadata.last_message is None:
            return None
        return {"message": self.metadata.last_message}


class ConnectError(GooseWebError):
    """The websocket (or the session REST API) could not be reached.

    ``reason`` is ``"timeout"`` when the connect deadline elapsed and
    ``"transport_failure"`` otherwise.
    """

    is_retryable = True

    def __init__(
        self,
        message: str,
        metadata: GooseWebErrorMetadata | None = None,
        reason: Literal["timeout", "transport_failure"] = "transport_failure",
    ):
        super().__init__(f"Connection error: {message}", metadata)
        self.reason = reason


class ResponseTimeoutError(GooseWebError, TimeoutError):
    """No terminal message arrived within the response deadline."""

    is_retryable = True

    def __init__(
        self,
        timeout: float,
        metadata: GooseWebErrorMetadata | None = None,
    ):
        super().__init__(
            f"Request timed out after {round(timeout * 1000)}ms", metadata,
        )
        self.timeout = timeout


class RemoteError(GooseWebError):
    """The Goose agent reported a failure through an ``error`` message."""

    def __init__(
        self,
        message: str | None = None,
        metadata: GooseWebErrorMetadata | None = None,
    ):
        super().__init__(message or "Unknown error from Goose server", metadata)


class ParseError(GooseWebError):
    """A single inbound message could not be understood.

    Only ever logged; the engine drops the message and carries on.
    """

    def __init__(self, message: str, raw: str | bytes | None = None):
        super().__init__(message)
        self.raw = raw


class UnsupportedModelError(GooseWebError):
    """Goose only serves language models."""

    def __init__(self, model_id: str, model_type: str):
        super().__init__(
            f"No such {model_type}: {model_id}. "
            "Goose Web only provides language models."
        )
        self.model_id = model_id
        self.model_type = model_type


def is_connection_error(error: BaseException) -> bool:
    return isinstance(error, ConnectError)


def is_timeout_error(error: BaseException) -> bool:
    return isinstance(error, ResponseTimeoutError) or (
        isinstance(error, ConnectError) and error.reason == "timeout"
    )


def get_error_metadata(error: BaseException) -> GooseWebErrorMetadata | None:
    if isinstance(error, GooseWebError):
        return error.metadata
    return None
