"""Tool handler registry: maps tool names to async handler functions."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from agentrelay.infra.store.client import StoreError
from agentrelay.models.gateway import ToolCall
from agentrelay.services.agent_tools.context import ToolContext

logger = logging.getLogger(__name__)

ToolResult = dict[str, Any]
ToolHandler = Callable[[ToolContext, dict], Coroutine[Any, Any, ToolResult]]

# Lazy-populated on first access to avoid circular imports
_HANDLERS: dict[str, ToolHandler] | None = None


def _build_registry() -> dict[str, ToolHandler]:
    from agentrelay.services.agent_tools import document_tools, request_tools, task_tools

    return {
        "task_status": task_tools.handle_task_status,
        "task_create": task_tools.handle_task_create,
        "document_upsert": document_tools.handle_document_upsert,
        "response_request": request_tools.handle_response_request,
    }


def get_tool_handlers() -> dict[str, ToolHandler]:
    """Get the tool handler registry (lazily initialized)."""
    global _HANDLERS
    if _HANDLERS is None:
        _HANDLERS = _build_registry()
    return _HANDLERS


def failure(error: str) -> ToolResult:
    return {"success": False, "error": error}


def _parse_arguments(raw: str) -> dict | None:
    try:
        parsed = json.loads(raw or "{}")
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


async def execute_agent_tool(ctx: ToolContext, call: ToolCall) -> ToolResult:
    """Execute one tool call requested by an agent. Never raises."""
    handler = get_tool_handlers().get(call.name)
    if handler is None:
        return failure(f"Unknown tool: {call.name}")
    arguments = _parse_arguments(call.arguments)
    if arguments is None:
        return failure("Invalid JSON arguments")
    try:
        return await handler(ctx, arguments)
    except StoreError as e:
        logger.warning("Tool %s rejected by store: %s", call.name, e.message)
        return failure(e.message)
    except (KeyError, ValueError, TypeError) as e:
        logger.warning("Tool %s received invalid argument: %s", call.name, e)
        return failure(f"Invalid argument: {e}")
    except Exception as e:
        logger.exception("Tool %s execution failed unexpectedly", call.name)
        return failure(f"Tool execution failed: {e}")
