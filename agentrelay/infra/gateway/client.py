"""HTTP client for the agent-execution gateway (OpenResponses style)."""

from __future__ import annotations

import asyncio
import json
import logging
import time

import httpx

from agentrelay.models.gateway import GatewayReply, ToolCall, ToolOutput
from agentrelay.services.session_registry import SessionRegistry

logger = logging.getLogger(__name__)

SESSION_KEY_HEADER = "x-openclaw-session-key"
DEFAULT_MODEL = "openclaw"


class GatewayError(RuntimeError):
    """The gateway failed, timed out or answered with something unusable."""


class UnknownSessionError(GatewayError):
    """No registered session for the given session key."""

    def __init__(self, session_key: str) -> None:
        super().__init__(f"Unknown session: {session_key}")
        self.session_key = session_key


def _text_of(item: dict) -> list[str]:
    """Text parts of one ``output`` item (message, text or content shapes)."""
    texts: list[str] = []
    for key in ("text", "content"):
        value = item.get(key)
        if isinstance(value, str):
            if value.strip():
                texts.append(value)
            return texts
        if isinstance(value, list):
            for part in value:
                if isinstance(part, str) and part.strip():
                    texts.append(part)
                elif isinstance(part, dict) and isinstance(part.get("text"), str) and part["text"].strip():
                    texts.append(part["text"])
            return texts
    return texts


def parse_response_body(body: str) -> GatewayReply:
    """Parse a gateway response body into text parts and tool calls.

    Items in ``output`` win over the flat ``output_text``/``text``/``content``
    fields, which are only consulted when ``output`` yields no text. A body
    that is not JSON is taken verbatim as the reply text.
    """
    if not body or not body.strip():
        return GatewayReply()
    try:
        data = json.loads(body)
    except ValueError:
        return GatewayReply(texts=(body,))
    if not isinstance(data, dict):
        return GatewayReply(texts=(body,))

    texts: list[str] = []
    calls: list[ToolCall] = []
    output = data.get("output")
    if isinstance(output, list):
        for item in output:
            if not isinstance(item, dict):
                continue
            if item.get("type") == "function_call":
                arguments = item.get("arguments", "{}")
                if not isinstance(arguments, str):
                    arguments = json.dumps(arguments)
                calls.append(
                    ToolCall(
                        call_id=str(item.get("call_id") or item.get("id") or ""),
                        name=item.get("name", ""),
                        arguments=arguments,
                    )
                )
                continue
            texts.extend(_text_of(item))

    if not texts:
        for key in ("output_text", "text", "content"):
            value = data.get(key)
            if isinstance(value, str) and value.strip():
                texts.append(value)
                break
    return GatewayReply(texts=tuple(texts), tool_calls=tuple(calls))


class GatewayClient:
    """Sends rendered instructions to agent sessions through the gateway.

    Every send is addressed by the agent's stable session key, which must be
    registered in the ``SessionRegistry`` first. The gateway keeps the
    conversation state for that key across notifications.
    """

    def __init__(
        self,
        url: str,
        registry: SessionRegistry,
        token: str = "",
        timeout: float = 300.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._registry = registry
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _post(self, session_key: str, payload: dict) -> GatewayReply:
        if session_key not in self._registry:
            raise UnknownSessionError(session_key)
        try:
            response = await self._client.post(
                "/v1/responses",
                json=payload,
                headers={SESSION_KEY_HEADER: session_key},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise GatewayError(f"Gateway returned HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise GatewayError(f"Gateway request failed: {e!r}") from e
        self._registry.touch(session_key)
        return parse_response_body(response.text)

    async def send(
        self, session_key: str, message: str, tools: list[dict] | None = None
    ) -> GatewayReply:
        """Send one instruction and return the agent's reply."""
        payload: dict = {"model": DEFAULT_MODEL, "input": message, "stream": False}
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"
        logger.debug("Sending to %s: %s", session_key, message[:100])
        return await self._post(session_key, payload)

    async def send_tool_results(self, session_key: str, outputs: list[ToolOutput]) -> str | None:
        """Submit tool outputs to the same session; returns the final reply text."""
        payload = {
            "model": DEFAULT_MODEL,
            "input": [o.to_input_item() for o in outputs],
            "stream": False,
        }
        reply = await self._post(session_key, payload)
        return reply.text or None

    async def wait_until_ready(self, timeout: float = 30.0, interval: float = 1.0) -> bool:
        """Poll the gateway health endpoint until it answers or ``timeout`` passes."""
        deadline = time.monotonic() + timeout
        while True:
            try:
                response = await self._client.get("/health")
                if response.status_code < 500:
                    return True
            except httpx.HTTPError as e:
                logger.debug("Gateway not ready yet: %s", e)
            if time.monotonic() >= deadline:
                return False
            await asyncio.sleep(interval)
