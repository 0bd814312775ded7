"""Delivery policy: which agent receives which notification.

Pure functions over a ``DeliveryContext``; no I/O and no state. The
routing rules exist mostly to stop agents from answering each other's
answers forever while still guaranteeing that humans and explicit
mentions always reach the agent.
"""

from __future__ import annotations

from agentrelay.models.delivery import DeliveryContext
from agentrelay.models.notification import REQUIRED_REPLY_TYPES, NotificationType
from agentrelay.models.task import AuthorType, TaskStatus


def agent_can_review(ctx: DeliveryContext) -> bool:
    return ctx.flags.can_review_tasks


def is_orchestrator(ctx: DeliveryContext) -> bool:
    """The recipient is the account's orchestrator agent."""
    return ctx.recipient_is_orchestrator


def is_reviewer(ctx: DeliveryContext) -> bool:
    """The recipient may review and the task is in review."""
    return ctx.task is not None and ctx.task.status == TaskStatus.REVIEW and agent_can_review(ctx)


def can_mark_done(task_status: str | None, can_mark_done_flag: bool) -> bool:
    """Only a task in review can be closed, and only by a permitted agent."""
    return task_status == TaskStatus.REVIEW and can_mark_done_flag is True


def is_recipient_in_multi_assignee_task(ctx: DeliveryContext) -> bool:
    if ctx.task is None or ctx.agent is None:
        return False
    ids = ctx.task.assigned_agent_ids
    return len(ids) >= 2 and ctx.agent.id in ids


def _blocked_by_orchestrator(ctx: DeliveryContext) -> bool:
    """The orchestrator may still post into a blocked task to unblock it."""
    return (
        ctx.task is not None
        and ctx.task.status == TaskStatus.BLOCKED
        and ctx.author_is_orchestrator
    )


def should_deliver(ctx: DeliveryContext) -> bool:
    """Decide whether the notification is sent to the recipient agent.

    Rules are evaluated in order and the first one that applies wins.
    ``False`` means the notification is retired without delivery.
    """
    notification = ctx.notification
    task = ctx.task
    status = task.status if task is not None else None
    quiet = task is not None and task.is_quiet

    # Coordination-only tasks talk to the orchestrator and nobody else.
    if task is not None and task.is_orchestrator_chat and notification.is_to_agent:
        return ctx.recipient_is_orchestrator

    if notification.type == NotificationType.THREAD_UPDATE and quiet:
        if not _blocked_by_orchestrator(ctx):
            return False

    if notification.type == NotificationType.STATUS_CHANGE and notification.is_to_agent and status is not None:
        if quiet:
            return False
        if status == TaskStatus.REVIEW:
            return ctx.recipient_is_orchestrator or agent_can_review(ctx)

    message = ctx.message
    if notification.type == NotificationType.THREAD_UPDATE and message is not None and message.is_from_agent:
        if quiet and not _blocked_by_orchestrator(ctx):
            return False
        if is_orchestrator(ctx) and not ctx.author_is_orchestrator:
            return True
        is_assigned = task is not None and task.is_assigned_to(notification.recipient_id)
        reviewer = is_reviewer(ctx)
        if ctx.source_notification_type == NotificationType.THREAD_UPDATE:
            # Second-order echo: only the orchestrator may keep the chain going.
            return ctx.author_is_orchestrator and (is_assigned or reviewer)
        return reviewer or is_assigned

    return True


def should_retry_on_no_response(ctx: DeliveryContext) -> bool:
    """Whether an empty reply should burn retry budget.

    Required-reply types always do; a thread update only does when a human
    wrote the triggering message.
    """
    notification_type = ctx.notification.type
    if notification_type in REQUIRED_REPLY_TYPES:
        return True
    if notification_type == NotificationType.THREAD_UPDATE:
        return ctx.message is None or not ctx.message.is_from_agent
    return False


def is_stale_thread_update(ctx: DeliveryContext) -> bool:
    """A human thread update is stale once the same human thread moved on.

    The later user message produces its own notification, so answering
    the older one would only duplicate work.
    """
    notification = ctx.notification
    if notification.type != NotificationType.THREAD_UPDATE or not notification.is_to_agent:
        return False
    if not notification.message_id or ctx.message is None or ctx.message.author_type != AuthorType.USER:
        return False
    index = next(
        (i for i, item in enumerate(ctx.thread) if item.message_id == notification.message_id),
        None,
    )
    if index is None:
        return False
    return any(item.author_type == AuthorType.USER for item in ctx.thread[index + 1:])
