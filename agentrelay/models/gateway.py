"""Gateway exchange models."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ToolCall:
    """A function call requested by the agent.

    ``arguments`` is the raw JSON string exactly as the gateway sent it;
    tool handlers parse and validate it themselves.
    """

    call_id: str
    name: str
    arguments: str = "{}"


@dataclass(frozen=True)
class ToolOutput:
    """Result of one tool call, sent back to the same session."""

    call_id: str
    output: str

    def to_input_item(self) -> dict:
        return {"type": "function_call_output", "call_id": self.call_id, "output": self.output}


@dataclass(frozen=True)
class GatewayReply:
    """Parsed reply from one gateway turn."""

    texts: tuple[str, ...] = ()
    tool_calls: tuple[ToolCall, ...] = ()

    @property
    def text(self) -> str:
        return "\n\n".join(t.strip() for t in self.texts if t.strip())

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0
