"""Tests for the gateway client and response parsing."""

from __future__ import annotations

import json

import httpx
import pytest

from agentrelay.infra.gateway.client import (
    SESSION_KEY_HEADER,
    GatewayClient,
    GatewayError,
    UnknownSessionError,
    parse_response_body,
)
from agentrelay.models.gateway import ToolOutput
from agentrelay.services.session_registry import SessionRegistry

SESSION_KEY = "agent:engineer:acc1"


def _client(handler, token="") -> tuple[GatewayClient, SessionRegistry]:
    registry = SessionRegistry()
    registry.register("a1", SESSION_KEY)
    client = GatewayClient(
        url="http://gateway.local",
        registry=registry,
        token=token,
        transport=httpx.MockTransport(handler),
    )
    return client, registry


class TestParseResponseBody:
    def test_empty(self):
        reply = parse_response_body("")
        assert reply.text == ""
        assert not reply.has_tool_calls

    def test_plain_text_body(self):
        assert parse_response_body("Hello there").text == "Hello there"

    def test_output_message_content(self):
        body = json.dumps({
            "output": [
                {"type": "message", "content": [{"type": "output_text", "text": "Part one"},
                                                {"type": "output_text", "text": "Part two"}]},
            ],
        })
        assert parse_response_body(body).text == "Part one\n\nPart two"

    def test_output_text_fallback(self):
        body = json.dumps({"output": [], "output_text": "Flat text"})
        assert parse_response_body(body).text == "Flat text"

    def test_output_items_win_over_flat_fields(self):
        body = json.dumps({"output": [{"type": "message", "text": "From output"}], "output_text": "Flat"})
        assert parse_response_body(body).text == "From output"

    def test_function_calls(self):
        body = json.dumps({
            "output": [
                {"type": "function_call", "call_id": "c1", "name": "task_status",
                 "arguments": "{\"status\": \"review\"}"},
                {"type": "function_call", "id": "c2", "name": "task_create", "arguments": {"title": "x"}},
            ],
        })
        reply = parse_response_body(body)
        assert [c.call_id for c in reply.tool_calls] == ["c1", "c2"]
        assert json.loads(reply.tool_calls[1].arguments) == {"title": "x"}
        assert reply.text == ""

    def test_json_non_object(self):
        assert parse_response_body("[1, 2]").text == "[1, 2]"


class TestGatewayClient:
    @pytest.mark.asyncio
    async def test_send(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["session"] = request.headers.get(SESSION_KEY_HEADER)
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"output_text": "Done."})

        client, registry = _client(handler, token="gw-secret")
        reply = await client.send(SESSION_KEY, "Hello", tools=[{"type": "function"}])
        await client.close()

        assert reply.text == "Done."
        assert seen["path"] == "/v1/responses"
        assert seen["session"] == SESSION_KEY
        assert seen["auth"] == "Bearer gw-secret"
        assert seen["body"]["input"] == "Hello"
        assert seen["body"]["tool_choice"] == "auto"
        assert registry.get_by_key(SESSION_KEY).last_message_at is not None

    @pytest.mark.asyncio
    async def test_send_without_tools(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"output_text": "ok"})

        client, _ = _client(handler)
        await client.send(SESSION_KEY, "Hello")
        await client.close()
        assert "tools" not in bodies[0]

    @pytest.mark.asyncio
    async def test_unknown_session(self):
        client, _ = _client(lambda request: httpx.Response(200, text="unused"))
        with pytest.raises(UnknownSessionError):
            await client.send("agent:missing:acc1", "Hello")
        await client.close()

    @pytest.mark.asyncio
    async def test_http_error(self):
        client, _ = _client(lambda request: httpx.Response(502))
        with pytest.raises(GatewayError, match="HTTP 502"):
            await client.send(SESSION_KEY, "Hello")
        await client.close()

    @pytest.mark.asyncio
    async def test_send_tool_results(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"output_text": "Final answer"})

        client, _ = _client(handler)
        final = await client.send_tool_results(SESSION_KEY, [ToolOutput(call_id="c1", output="{}")])
        await client.close()
        assert final == "Final answer"
        assert bodies[0]["input"] == [{"type": "function_call_output", "call_id": "c1", "output": "{}"}]

    @pytest.mark.asyncio
    async def test_wait_until_ready(self):
        client, _ = _client(lambda request: httpx.Response(200))
        assert await client.wait_until_ready(timeout=0.1, interval=0.01) is True
        await client.close()

    @pytest.mark.asyncio
    async def test_wait_until_ready_times_out(self):
        client, _ = _client(lambda request: httpx.Response(503))
        assert await client.wait_until_ready(timeout=0.05, interval=0.01) is False
        await client.close()
