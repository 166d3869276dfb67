import asyncio
import json
from itertools import count

import pytest
from websockets.asyncio.server import serve

from goose_web.settings import GooseWebSettings


# ---------------------------------------------------------------------------
# Scripted Goose server
# ---------------------------------------------------------------------------

class ScriptedGoose:
    """Local websocket server standing in for a Goose agent.

    After receiving the prompt it plays *script*: dicts are sent as JSON,
    strings are sent verbatim, and numbers are pauses in seconds.  The
    connection then stays open until the client closes it, unless
    *close_code* is given.
    """

    def __init__(self, script=(), close_code: int | None = None):
        self.script = list(script)
        self.close_code = close_code
        self.received: list[dict] = []
        self.auth_headers: list[str | None] = []

    async def _handler(self, connection):
        self.auth_headers.append(
            connection.request.headers.get("Authorization")
        )
        self.received.append(json.loads(await connection.recv()))
        for step in self.script:
            if isinstance(step, (int, float)):
                await asyncio.sleep(step)
            elif isinstance(step, str):
                await connection.send(step)
            else:
                await connection.send(json.dumps(step))
        if self.close_code is not None:
            await connection.close(code=self.close_code)
        else:
            await connection.wait_closed()

    async def __aenter__(self):
        self._server = await serve(self._handler, "127.0.0.1", 0)
        port = next(iter(self._server.sockets)).getsockname()[1]
        self.ws_url = f"ws://127.0.0.1:{port}/ws"
        return self

    async def __aexit__(self, *exc_info):
        self._server.close()
        await self._server.wait_closed()

    def settings(self, **overrides) -> GooseWebSettings:
        values = dict(
            ws_url=self.ws_url,
            session_id="test-session",
            assume_session_valid=True,
            connection_timeout=2.0,
            response_timeout=2.0,
        )
        values.update(overrides)
        return GooseWebSettings(**values)


# ---------------------------------------------------------------------------
# Inbound message builders
# ---------------------------------------------------------------------------

def response(content: str) -> dict:
    return {"type": "response", "content": content, "role": "assistant"}


def tool_request(name: str, arguments=None, call_id: str | None = None) -> dict:
    msg = {"type": "tool_request", "tool_name": name, "arguments": arguments or {}}
    if call_id is not None:
        msg["id"] = call_id
    return msg


def tool_response(name: str, result, call_id: str | None = None) -> dict:
    msg = {"type": "tool_response", "tool_name": name, "result": result}
    if call_id is not None:
        msg["id"] = call_id
    return msg


def complete() -> dict:
    return {"type": "complete"}


def error(message: str) -> dict:
    return {"type": "error", "message": message}


@pytest.fixture
def goose_server():
    """Factory: ``async with goose_server([...]) as server``."""
    return ScriptedGoose


@pytest.fixture
def id_factory():
    """Deterministic ids: ``id-1``, ``id-2``, ..."""
    counter = count(1)
    return lambda: f"id-{next(counter)}"


@pytest.fixture(autouse=True)
def _clear_goose_env(monkeypatch):
    for var in ("GOOSE_WS_URL", "GOOSE_SESSION_ID", "GOOSE_AUTH_TOKEN"):
        monkeypatch.delenv(var, raising=False)
