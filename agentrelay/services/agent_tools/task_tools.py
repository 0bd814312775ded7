"""Task tool handlers: status changes and task creation."""

from __future__ import annotations

import logging

from agentrelay.models.task import TaskStatus
from agentrelay.services.agent_tools.context import ToolContext
from agentrelay.services.agent_tools.registry import ToolResult, failure

logger = logging.getLogger(__name__)

# inbox/assigned are driven by assignment changes, never by agents directly.
AGENT_SETTABLE_STATUSES = (
    TaskStatus.IN_PROGRESS,
    TaskStatus.REVIEW,
    TaskStatus.DONE,
    TaskStatus.BLOCKED,
)

CREATABLE_STATUSES = (
    TaskStatus.INBOX,
    TaskStatus.ASSIGNED,
    TaskStatus.IN_PROGRESS,
    TaskStatus.REVIEW,
    TaskStatus.DONE,
    TaskStatus.BLOCKED,
)


def _clean(value) -> str:
    return value.strip() if isinstance(value, str) else ""


async def handle_task_status(ctx: ToolContext, arguments: dict) -> ToolResult:
    task_id = _clean(arguments.get("taskId")) or (ctx.task_id or "")
    status = _clean(arguments.get("status"))
    blocked_reason = _clean(arguments.get("blockedReason"))

    if not task_id:
        return failure("taskId is required")
    if status not in [s.value for s in AGENT_SETTABLE_STATUSES]:
        return failure("Invalid status: must be one of in_progress, review, done, blocked")
    if status == TaskStatus.BLOCKED and not blocked_reason:
        return failure("blockedReason is required when status is blocked")
    if status == TaskStatus.DONE and not ctx.can_mark_done:
        return failure("Not allowed to mark this task as done")

    await ctx.store.update_task_status_from_agent(
        agent_id=ctx.agent_id,
        task_id=task_id,
        status=status,
        blocked_reason=blocked_reason or None,
    )
    logger.info("Agent %s moved task %s to %s", ctx.agent_id, task_id, status)
    return {"success": True, "taskId": task_id}


async def handle_task_create(ctx: ToolContext, arguments: dict) -> ToolResult:
    title = _clean(arguments.get("title"))
    if not title:
        return failure("title is required")
    status = _clean(arguments.get("status")) or None
    if status is not None and status not in [s.value for s in CREATABLE_STATUSES]:
        return failure(f"Invalid status: {status}")
    blocked_reason = _clean(arguments.get("blockedReason")) or None
    if status == TaskStatus.BLOCKED and not blocked_reason:
        return failure("blockedReason is required when status is blocked")

    labels = arguments.get("labels")
    task_id = await ctx.store.create_task_from_agent(
        ctx.agent_id,
        title=title,
        description=_clean(arguments.get("description")) or None,
        priority=arguments.get("priority"),
        labels=[str(label) for label in labels] if isinstance(labels, list) else None,
        status=status,
        blockedReason=blocked_reason,
        dueDate=arguments.get("dueDate"),
    )
    logger.info("Agent %s created task %s", ctx.agent_id, task_id)
    return {"success": True, "taskId": task_id}
