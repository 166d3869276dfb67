"""Aggregated (non-streaming) requests against a scripted Goose server."""

import json

import pytest
from pydantic import BaseModel

from goose_web.errors import ConnectError, RemoteError, ResponseTimeoutError
from goose_web.provider import GooseWebProvider, create_goose_web

from tests.conftest import (
    complete,
    error,
    response,
    tool_request,
    tool_response,
)


class Weather(BaseModel):
    city: str
    temperature: int


@pytest.mark.asyncio
async def test_generate_collects_text(goose_server):
    async with goose_server([
        response("Hello"), response(" world"), complete(),
    ]) as server:
        model = GooseWebProvider(settings=server.settings())
        result = await model.generate("Say hello")

    assert result.text == "Hello world"
    assert result.finish_reason == "stop"
    assert result.usage.prompt_tokens == 0
    assert result.usage.completion_tokens == 0
    assert result.session_id == "test-session"
    assert result.request_body == "Say hello"
    assert result.provider_metadata == {"goose-web": {"session_id": "test-session"}}


@pytest.mark.asyncio
async def test_generate_ignores_tool_activity(goose_server):
    async with goose_server([
        response("Checking. "),
        tool_request("weather", {"city": "Oslo"}, call_id="t1"),
        tool_response("weather", [{"type": "text", "text": "4C"}], call_id="t1"),
        response("It is 4C."),
        complete(),
    ]) as server:
        model = GooseWebProvider(settings=server.settings())
        result = await model.generate("Weather?")

    assert result.text == "Checking. It is 4C."


@pytest.mark.asyncio
async def test_generate_raises_remote_error(goose_server):
    async with goose_server([response("partial"), error("out of credits")]) as server:
        model = GooseWebProvider(settings=server.settings())
        with pytest.raises(RemoteError) as info:
            await model.generate("Go")

    assert info.value.message == "out of credits"
    assert not info.value.is_retryable
    assert info.value.metadata.last_message == "Go"


@pytest.mark.asyncio
async def test_generate_times_out(goose_server):
    async with goose_server([response("still thinking")]) as server:
        model = GooseWebProvider(settings=server.settings(response_timeout=0.3))
        with pytest.raises(ResponseTimeoutError) as info:
            await model.generate("Slow")

    assert info.value.message == "Request timed out after 300ms"
    assert isinstance(info.value, TimeoutError)


@pytest.mark.asyncio
async def test_generate_connection_dropped(goose_server):
    async with goose_server([response("partial")], close_code=1011) as server:
        model = GooseWebProvider(settings=server.settings())
        with pytest.raises(ConnectError) as info:
            await model.generate("Go")

    assert info.value.is_retryable


@pytest.mark.asyncio
async def test_generate_closed_without_completion(goose_server):
    async with goose_server([response("partial")], close_code=1000) as server:
        model = GooseWebProvider(settings=server.settings())
        with pytest.raises(ConnectError, match="closed before the response"):
            await model.generate("Go")


@pytest.mark.asyncio
async def test_generate_json_mode_extracts_json(goose_server):
    async with goose_server([
        response('Here you go: {"city": "Oslo", "temperature": 4}. Enjoy!'),
        complete(),
    ]) as server:
        model = GooseWebProvider(settings=server.settings())
        result = await model.generate("Weather as JSON", response_format={"type": "json"})

    assert json.loads(result.text) == {"city": "Oslo", "temperature": 4}
    assert server.received[0]["content"] == (
        "Weather as JSON\n\nPlease respond with valid JSON only."
    )


@pytest.mark.asyncio
async def test_structured_completion(goose_server):
    async with goose_server([
        response('```json\n{"city": "Oslo", "temperature": 4}\n```'),
        complete(),
    ]) as server:
        goose = create_goose_web(server.settings())
        weather = await goose("goose").structured_completion("Weather?", Weather)

    assert weather == Weather(city="Oslo", temperature=4)
    assert "Follow this JSON schema" in server.received[0]["content"]
