"""Agent tool handlers and schemas.

Each tool handler is a simple async function with signature:

    async def handle(ctx: ToolContext, arguments: dict) -> ToolResult

Handlers never raise for business failures; they return
``{"success": False, "error": ...}`` so the agent can report itself
blocked. ``execute_agent_tool`` turns anything unexpected into the same
shape.
"""

from __future__ import annotations

from agentrelay.services.agent_tools.registry import execute_agent_tool, get_tool_handlers
from agentrelay.services.agent_tools.schemas import ToolCapabilities, get_tool_capabilities

__all__ = ["ToolCapabilities", "execute_agent_tool", "get_tool_capabilities", "get_tool_handlers"]
