"""Delivery loop: polls undelivered notifications and routes them to agents.

Every notification that is processed ends in exactly one of two places:
marked delivered in the store (delivered, skipped, or one fallback then
delivered) or left undelivered for the next poll (gateway failure, or a
no-response outcome with retry budget left).
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import TYPE_CHECKING

from agentrelay.config import RuntimeConfig
from agentrelay.models.delivery import DeliveryContext
from agentrelay.models.gateway import GatewayReply, ToolOutput
from agentrelay.models.notification import Notification, NotificationType
from agentrelay.models.task import TaskStatus
from agentrelay.services.agent_tools import execute_agent_tool, get_tool_capabilities
from agentrelay.services.agent_tools.context import ToolContext
from agentrelay.services.backoff import backoff_delay
from agentrelay.services.delivery_policy import (
    can_mark_done,
    is_stale_thread_update,
    should_deliver,
    should_retry_on_no_response,
)
from agentrelay.services.prompt_builder import apply_auto_mention_fallback, format_notification_message
from agentrelay.services.replies import (
    FALLBACK_NO_REPLY_AFTER_TOOLS,
    ReplyKind,
    build_no_response_fallback,
    parse_delivery_reply,
)
from agentrelay.services.retry_tracker import RetryTracker

if TYPE_CHECKING:
    from agentrelay.infra.gateway.client import GatewayClient
    from agentrelay.infra.store.client import StoreClient

logger = logging.getLogger(__name__)


class DeliveryOutcome(str, Enum):
    DELIVERED = "delivered"
    SKIPPED = "skipped"
    RETRY = "retry"
    FAILED = "failed"


@dataclass
class DeliveryState:
    """Counters describing the delivery loop, exposed for status reporting."""

    is_running: bool = False
    last_delivery_at: float | None = None
    delivered_count: int = 0
    failed_count: int = 0
    consecutive_failures: int = 0
    last_error_at: float | None = None
    last_error_message: str | None = None
    no_response_exhausted_count: int = 0

    def record_error(self, message: str) -> None:
        self.last_error_at = time.time()
        self.last_error_message = message

    def snapshot(self) -> dict:
        return asdict(self)


class DeliveryService:
    """Owns the delivery loop and everything it needs to process a batch."""

    def __init__(
        self,
        store: StoreClient,
        gateway: GatewayClient,
        config: RuntimeConfig,
        retry_tracker: RetryTracker | None = None,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._config = config
        self._retry_tracker = retry_tracker or RetryTracker()
        self._state = DeliveryState()
        self._task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None

    @property
    def state(self) -> DeliveryState:
        return self._state

    @property
    def retry_tracker(self) -> RetryTracker:
        return self._retry_tracker

    async def start(self) -> None:
        """Start polling in the background. No-op if already running."""
        if self._task is not None:
            return
        self._state.is_running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop(self._stop_event))
        logger.info("Delivery loop started (interval %.1fs)", self._config.delivery.interval)

    async def stop(self) -> None:
        """Stop polling and wait for an in-flight cycle to finish.

        No further cycle starts after this returns.
        """
        self._state.is_running = False
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Delivery loop stopped")

    async def _run_loop(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            delay = await self.run_cycle()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

    async def run_cycle(self) -> float:
        """Process one batch and return the delay before the next poll."""
        cfg = self._config.delivery
        try:
            notifications = await self._store.list_undelivered_notifications(limit=cfg.batch_limit)
        except Exception as e:
            self._state.consecutive_failures += 1
            self._state.record_error(str(e))
            delay = backoff_delay(self._state.consecutive_failures, cfg.backoff_base, cfg.backoff_max)
            logger.error(
                "Poll failed (%d consecutive): %s; next poll in %.1fs",
                self._state.consecutive_failures, e, delay,
            )
            return delay

        self._state.consecutive_failures = 0
        if notifications:
            logger.info("Found %d notifications to deliver", len(notifications))
            groups = group_by_recipient(notifications)
            await asyncio.gather(*(self._deliver_group(group) for group in groups))
        self._state.last_delivery_at = time.time()
        return cfg.interval

    async def _deliver_group(self, notifications: list[Notification]) -> None:
        # One agent session handles one notification at a time.
        for notification in notifications:
            await self.deliver_one(notification)

    async def deliver_one(self, notification: Notification) -> DeliveryOutcome:
        """Process one notification; failures never escape."""
        try:
            return await self._process(notification)
        except Exception as e:
            self._state.failed_count += 1
            self._state.record_error(str(e))
            logger.warning("Failed to deliver %s: %s", notification.id, e)
            return DeliveryOutcome.FAILED

    async def _mark_delivered(self, notification_id: str) -> None:
        await self._store.mark_notification_delivered(notification_id)
        self._state.delivered_count += 1

    async def _skip(self, notification_id: str, reason: str) -> DeliveryOutcome:
        await self._mark_delivered(notification_id)
        logger.debug("Skipped %s: %s", notification_id, reason)
        return DeliveryOutcome.SKIPPED

    async def _process(self, notification: Notification) -> DeliveryOutcome:
        try:
            ctx = await self._store.get_notification_for_delivery(notification.id)
        except ValueError as e:
            logger.warning("Malformed delivery context for %s: %s", notification.id, e)
            return await self._skip(notification.id, "malformed delivery context")
        if ctx is None:
            return await self._skip(notification.id, "notification no longer exists")
        if ctx.agent is None:
            return await self._skip(notification.id, "no recipient agent")
        if ctx.references_missing_task:
            logger.info("Skipped delivery for missing task %s", notification.id)
            return await self._skip(notification.id, "task no longer exists")
        if not should_deliver(ctx):
            return await self._skip(notification.id, "suppressed by policy")
        if is_stale_thread_update(ctx):
            return await self._skip(notification.id, "stale thread update")

        try:
            await self._store.mark_notification_read(notification.id)
        except Exception as e:
            logger.warning("Failed to mark notification %s read: %s", notification.id, e)

        return await self._send(ctx)

    async def _send(self, ctx: DeliveryContext) -> DeliveryOutcome:
        notification = ctx.notification
        agent = ctx.agent
        task = ctx.task
        done_allowed = can_mark_done(task.status if task else None, ctx.flags.can_mark_done)
        capabilities = get_tool_capabilities(
            ctx.flags,
            has_task_context=task is not None,
            can_mark_done=done_allowed,
            is_orchestrator=ctx.agent_is_orchestrator,
            client_tools_enabled=self._config.gateway.client_tools_enabled,
        )
        message = format_notification_message(
            ctx, capabilities, self._config.runtime.task_status_base_url
        )
        reply = await self._gateway.send(
            agent.session_key, message, tools=list(capabilities.schemas) or None
        )

        parsed = parse_delivery_reply(reply.text)
        if parsed.kind is ReplyKind.NO_OP and not reply.has_tool_calls:
            self._retry_tracker.clear(notification.id)
            await self._mark_delivered(notification.id)
            logger.info("Agent %s declined to reply to %s", agent.name or agent.id, notification.id)
            return DeliveryOutcome.DELIVERED

        if not reply.has_tool_calls and parsed.kind in (ReplyKind.EMPTY, ReplyKind.PLACEHOLDER):
            return await self._handle_no_response(ctx, parsed.kind, parsed.mention_prefix)
        self._retry_tracker.clear(notification.id)

        text = reply.text
        if reply.has_tool_calls:
            text = await self._run_tools(ctx, reply, done_allowed) or text

        await self._write_back(ctx, text, tools_ran=reply.has_tool_calls)
        await self._mark_delivered(notification.id)
        logger.debug("Delivered notification %s", notification.id)
        return DeliveryOutcome.DELIVERED

    async def _handle_no_response(
        self, ctx: DeliveryContext, kind: ReplyKind, mention_prefix: str | None
    ) -> DeliveryOutcome:
        notification = ctx.notification
        reason = "empty response" if kind is ReplyKind.EMPTY else "placeholder response"
        if not should_retry_on_no_response(ctx):
            self._retry_tracker.clear(notification.id)
            await self._mark_delivered(notification.id)
            logger.info("No response to passive %s %s; not retrying", notification.type, notification.id)
            return DeliveryOutcome.DELIVERED

        decision = self._retry_tracker.get_retry_decision(notification.id)
        limit = self._retry_tracker.limit
        if decision.should_retry:
            self._state.failed_count += 1
            self._state.record_error(f"Gateway returned {reason}")
            logger.warning(
                "No response for %s (%s, attempt %d/%d); will retry",
                notification.id, reason, decision.attempt, limit,
            )
            return DeliveryOutcome.RETRY

        logger.warning(
            "No response for %s (%s, attempt %d/%d); giving up",
            notification.id, reason, decision.attempt, limit,
        )
        self._retry_tracker.clear(notification.id)
        self._state.no_response_exhausted_count += 1
        await self._post_fallback(ctx, build_no_response_fallback(mention_prefix))
        await self._mark_delivered(notification.id)
        return DeliveryOutcome.DELIVERED

    async def _run_tools(self, ctx: DeliveryContext, reply: GatewayReply, done_allowed: bool) -> str | None:
        """Execute requested tool calls and return the agent's final text, if any."""
        tool_ctx = ToolContext(
            store=self._store,
            agent_id=ctx.agent.id,
            task_id=ctx.notification.task_id,
            can_mark_done=done_allowed,
            is_orchestrator=ctx.agent_is_orchestrator,
        )
        outputs = []
        for call in reply.tool_calls:
            result = await execute_agent_tool(tool_ctx, call)
            if not result.get("success"):
                logger.warning(
                    "Tool %s failed for %s: %s",
                    call.name, ctx.notification.id, result.get("error", "unknown"),
                )
            outputs.append(ToolOutput(call_id=call.call_id, output=json.dumps(result)))
        try:
            final = await self._gateway.send_tool_results(ctx.agent.session_key, outputs)
        except Exception as e:
            logger.warning("Failed to send tool results for %s: %s", ctx.notification.id, e)
            return None
        return final.strip() if final else None

    async def _write_back(self, ctx: DeliveryContext, text: str, tools_ran: bool) -> None:
        """Post the agent's reply to the task thread, or a fallback in its place."""
        notification = ctx.notification
        if not notification.task_id:
            return
        parsed = parse_delivery_reply(text)
        if parsed.kind is ReplyKind.PLACEHOLDER:
            logger.warning("Placeholder reply for %s after delivery", notification.id)
            await self._post_fallback(ctx, build_no_response_fallback(parsed.mention_prefix))
            return
        if parsed.kind is ReplyKind.EMPTY:
            if tools_ran:
                logger.warning("No reply after tool execution for %s", notification.id)
                await self._post_fallback(ctx, FALLBACK_NO_REPLY_AFTER_TOOLS)
            return
        if parsed.kind.is_no_op:
            return

        content = apply_auto_mention_fallback(parsed.text, ctx)
        if content != parsed.text:
            logger.debug("Auto-mention fallback applied on task %s", notification.task_id)
        await self._store.create_message_from_agent(
            ctx.agent.id,
            notification.task_id,
            content,
            source_notification_id=notification.id,
        )
        await self._auto_advance(ctx)

    async def _auto_advance(self, ctx: DeliveryContext) -> None:
        """Move an accepted assignment from assigned to in_progress."""
        task = ctx.task
        if (
            task is None
            or not ctx.flags.can_modify_task_status
            or task.status != TaskStatus.ASSIGNED
            or ctx.notification.type != NotificationType.ASSIGNMENT
        ):
            return
        try:
            await self._store.update_task_status_from_agent(
                ctx.agent.id,
                task.id,
                TaskStatus.IN_PROGRESS.value,
                expected_status=TaskStatus.ASSIGNED.value,
            )
        except Exception as e:
            logger.warning("Failed to auto-advance task %s: %s", task.id, e)

    async def _post_fallback(self, ctx: DeliveryContext, content: str) -> None:
        if not self._config.delivery.post_no_response_fallback or not ctx.notification.task_id:
            return
        await self._store.create_message_from_agent(
            ctx.agent.id,
            ctx.notification.task_id,
            content,
            source_notification_id=ctx.notification.id,
            suppress_agent_notifications=True,
        )


def group_by_recipient(notifications: list[Notification]) -> list[list[Notification]]:
    """Split a batch into per-recipient groups, keeping order within each."""
    groups: dict[str, list[Notification]] = {}
    for notification in notifications:
        groups.setdefault(notification.recipient_id, []).append(notification)
    return list(groups.values())
