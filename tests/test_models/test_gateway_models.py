"""Tests for gateway exchange models."""

from agentrelay.models.gateway import GatewayReply, ToolCall, ToolOutput


class TestGatewayReply:
    def test_text_joins_non_empty_parts(self):
        reply = GatewayReply(texts=(" First ", "", "Second"))
        assert reply.text == "First\n\nSecond"

    def test_empty(self):
        reply = GatewayReply()
        assert reply.text == ""
        assert not reply.has_tool_calls

    def test_tool_calls(self):
        reply = GatewayReply(tool_calls=(ToolCall(call_id="c1", name="task_status"),))
        assert reply.has_tool_calls
        assert reply.tool_calls[0].arguments == "{}"


class TestToolOutput:
    def test_input_item(self):
        item = ToolOutput(call_id="c1", output='{"success": true}').to_input_item()
        assert item == {"type": "function_call_output", "call_id": "c1", "output": '{"success": true}'}
