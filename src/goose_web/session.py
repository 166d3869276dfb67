"""Goose session bootstrap over the server's REST API.

Before the first websocket request the provider makes sure it holds a
session id the server accepts: a supplied id is validated, and a new
session is created when it is missing or rejected.
"""

import logging
import re

import httpx
from pydantic import BaseModel

from goose_web.errors import ConnectError, GooseWebErrorMetadata
from goose_web.settings import GooseWebSettings

logger = logging.getLogger(__name__)

_SESSION_PATH = "/session/"


class SessionHandle(BaseModel):
    session_id: str
    old_session_invalidated: bool = False


def http_base_url(ws_url: str) -> str:
    """Map the websocket endpoint onto the server's HTTP root."""
    url = re.sub(r"^wss://", "https://", ws_url)
    url = re.sub(r"^ws://", "http://", url)
    return re.sub(r"/ws$", "", url)


def _client(
    settings: GooseWebSettings,
    transport: httpx.AsyncBaseTransport | None,
) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        headers=settings.auth_headers(),
        timeout=settings.connection_timeout,
        transport=transport,
    )


async def validate_session(
    settings: GooseWebSettings,
    session_id: str,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bool:
    """Ask the server whether *session_id* exists.  Never raises."""
    url = f"{http_base_url(settings.ws_url)}/api/sessions/{session_id}"
    try:
        async with _client(settings, transport) as client:
            response = await client.get(url)
            if not response.is_success:
                logger.debug(
                    f"Session validation failed for {session_id}: "
                    f"HTTP {response.status_code}"
                )
                return False
            data = response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"Failed to validate session {session_id}: {e}")
        return False

    has_error = isinstance(data, dict) and bool(data.get("error"))
    logger.debug(f"Session {session_id} validation, error={has_error}")
    return not has_error


async def create_session(
    settings: GooseWebSettings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    """Create a session; the server answers with a redirect to it.

    Raises:
        ConnectError: The server was unreachable or did not redirect to
            ``/session/<id>``.
    """
    base_url = http_base_url(settings.ws_url)
    logger.debug(f"Creating session via REST API at {base_url}")
    try:
        async with _client(settings, transport) as client:
            response = await client.get(base_url, follow_redirects=False)
    except httpx.HTTPError as e:
        logger.error(f"Failed to create session via REST API: {e}")
        raise ConnectError(
            f"Failed to create session via REST API: {e}",
            GooseWebErrorMetadata(ws_url=base_url),
        ) from e

    location = response.headers.get("location")
    if not location or not location.startswith(_SESSION_PATH):
        logger.error(
            f"No redirect received from REST API "
            f"(status {response.status_code}, location {location!r})"
        )
        raise ConnectError(
            "Failed to create session: No redirect received from REST API",
            GooseWebErrorMetadata(
                ws_url=base_url, response_status=response.status_code,
            ),
        )

    session_id = location[len(_SESSION_PATH):]
    logger.debug(f"Session created: {session_id}")
    return session_id


async def ensure_session(
    settings: GooseWebSettings,
    session_id: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> SessionHandle:
    """Return a usable session, replacing *session_id* if the server
    rejects it.

    ``old_session_invalidated`` tells callers that a supplied session was
    replaced, so they can resend the full conversation history.
    """
    invalidated = False
    if session_id:
        if await validate_session(settings, session_id, transport):
            logger.debug(f"Using provided session ID {session_id}")
            return SessionHandle(session_id=session_id)
        logger.warning(
            f"Provided session ID {session_id} is invalid, "
            "creating new session"
        )
        invalidated = True

    new_id = await create_session(settings, transport)
    return SessionHandle(session_id=new_id, old_session_invalidated=invalidated)
