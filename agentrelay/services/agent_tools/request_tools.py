"""Orchestrator follow-up requests to other agents."""

from __future__ import annotations

from agentrelay.services.agent_tools.context import ToolContext
from agentrelay.services.agent_tools.registry import ToolResult, failure


async def handle_response_request(ctx: ToolContext, arguments: dict) -> ToolResult:
    if not ctx.is_orchestrator:
        return failure("response_request is only available to the orchestrator")
    task_id = arguments.get("taskId") or ctx.task_id
    slugs = arguments.get("recipientSlugs")
    message = arguments.get("message")
    if not task_id:
        return failure("taskId is required")
    if not isinstance(slugs, list) or not [s for s in slugs if isinstance(s, str) and s.strip()]:
        return failure("recipientSlugs must be a non-empty list")
    if not isinstance(message, str) or not message.strip():
        return failure("message is required")

    notification_ids = await ctx.store.create_response_request_notifications(
        requester_agent_id=ctx.agent_id,
        task_id=str(task_id),
        recipient_slugs=[s.strip() for s in slugs if isinstance(s, str) and s.strip()],
        message=message.strip(),
    )
    return {"success": True, "taskId": str(task_id), "notificationIds": notification_ids}
