"""Heartbeat scheduler: periodic check-ins for every known agent.

Each agent owns exactly one asyncio task that sleeps, fires a heartbeat,
then re-arms itself. Rescheduling an agent cancels its task before a new
one is created, so two heartbeats for the same agent never overlap.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from agentrelay.config import RuntimeConfig
from agentrelay.models.agent import AgentRecord
from agentrelay.models.gateway import ToolOutput
from agentrelay.models.task import AuthorType, TaskSnapshot, TaskStatus, ThreadMessage
from agentrelay.services.agent_tools import execute_agent_tool, get_tool_capabilities
from agentrelay.services.agent_tools.context import ToolContext
from agentrelay.services.prompt_builder import (
    HEARTBEAT_THREAD_MESSAGE_LIMIT,
    ORCHESTRATOR_MAX_FOLLOW_UPS,
    build_heartbeat_message,
)
from agentrelay.services.replies import (
    ReplyKind,
    is_heartbeat_ok,
    is_no_response_fallback,
    parse_heartbeat_reply,
)

if TYPE_CHECKING:
    from agentrelay.infra.gateway.client import GatewayClient
    from agentrelay.infra.store.client import StoreClient

logger = logging.getLogger(__name__)

HEARTBEAT_TASK_LIMIT = 12
ORCHESTRATOR_TASK_LIMIT = 200
STATUS_PRIORITY = (TaskStatus.IN_PROGRESS, TaskStatus.ASSIGNED)
ORCHESTRATOR_STATUSES = (
    TaskStatus.IN_PROGRESS,
    TaskStatus.REVIEW,
    TaskStatus.ASSIGNED,
    TaskStatus.BLOCKED,
)

STAGGER_WINDOW_CAP = 120.0
STAGGER_WINDOW_RATIO = 0.4
INITIAL_JITTER = 2.0
REARM_JITTER = 30.0

ASSIGNEE_STALE_AFTER = 3 * 60 * 60.0
ASSIGNEE_BLOCKED_STALE_AFTER = 24 * 60 * 60.0
ASSIGNEE_STARTUP_STALE_AFTER = 15 * 60.0
FOLLOW_UP_THREAD_LIMIT = 50

_TASK_ID_RE = re.compile(r"Task ID:\s*([A-Za-z0-9_-]+)", re.IGNORECASE)
_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


# --- Task selection ---


def sort_heartbeat_tasks(
    tasks: list[TaskSnapshot],
    status_priority: tuple[str, ...] = STATUS_PRIORITY,
    prefer_stale: bool = False,
) -> list[TaskSnapshot]:
    """Order by status rank, then newest first (or stalest first)."""
    rank = {status: index for index, status in enumerate(status_priority)}

    def recency(task: TaskSnapshot) -> float:
        stamp = (task.updated_at or _EPOCH).timestamp()
        return stamp if prefer_stale else -stamp

    return sorted(tasks, key=lambda t: (rank.get(t.status, 999), recency(t)))


def merge_heartbeat_tasks(*lists: list[TaskSnapshot]) -> list[TaskSnapshot]:
    """Concatenate task lists, keeping the last copy of each task id."""
    merged: dict[str, TaskSnapshot] = {}
    for tasks in lists:
        for task in tasks:
            merged[task.id] = task
    return list(merged.values())


def extract_task_id(text: str) -> str | None:
    match = _TASK_ID_RE.search(text)
    return match.group(1) if match else None


def initial_delays(
    agents: list[AgentRecord], rng: Callable[[], float] = random.random
) -> list[float]:
    """Staggered first-fire delays so agents do not all wake at once."""
    total = len(agents)
    if total == 0:
        return []
    if total == 1:
        return [rng() * INITIAL_JITTER]
    shortest = min(a.heartbeat_interval for a in agents)
    window = min(shortest * STAGGER_WINDOW_RATIO, STAGGER_WINDOW_CAP)
    return [(i / total) * window + rng() * INITIAL_JITTER for i in range(total)]


# --- Orchestrator follow-ups ---


@dataclass(frozen=True)
class FollowUpDecision:
    should_request: bool
    reason: str
    reference_at: datetime | None = None
    elapsed: float = 0.0
    stale_after: float = ASSIGNEE_STALE_AFTER


def _is_ignorable_reply(content: str) -> bool:
    text = content.strip()
    return bool(text) and (is_heartbeat_ok(text) or is_no_response_fallback(text))


def get_last_assignee_reply_at(task: TaskSnapshot, thread: list[ThreadMessage]) -> datetime | None:
    """Timestamp of the newest meaningful message an assignee posted."""
    for message in reversed(thread):
        if message.author_type != AuthorType.AGENT:
            continue
        if _is_ignorable_reply(message.content):
            continue
        if message.author_id in task.assigned_agent_ids:
            return message.created_at
    return None


def stale_after_for(task: TaskSnapshot, stale_after: float) -> float:
    if task.status == TaskStatus.BLOCKED:
        return max(stale_after, ASSIGNEE_BLOCKED_STALE_AFTER)
    return stale_after


def get_assignee_follow_up_decision(
    task: TaskSnapshot | None,
    last_reply_at: datetime | None,
    now: datetime,
    stale_after: float = ASSIGNEE_STALE_AFTER,
) -> FollowUpDecision:
    if task is None:
        return FollowUpDecision(False, "missing_task", stale_after=stale_after)
    if task.status not in ORCHESTRATOR_STATUSES:
        return FollowUpDecision(False, "unsupported_status", stale_after=stale_after)
    if not task.assigned_agent_ids:
        return FollowUpDecision(False, "no_assignees", stale_after=stale_after)
    reference = last_reply_at or task.updated_at or task.created_at or _EPOCH
    elapsed = max(0.0, (now - reference).total_seconds())
    if elapsed >= stale_after:
        return FollowUpDecision(True, "stale", reference, elapsed, stale_after)
    return FollowUpDecision(False, "not_stale", reference, elapsed, stale_after)


def select_follow_up_candidates(tasks: list[TaskSnapshot], limit: int) -> list[TaskSnapshot]:
    if limit <= 0:
        return []
    tracked = [t for t in tasks if t.status in ORCHESTRATOR_STATUSES]
    return sort_heartbeat_tasks(tracked, ORCHESTRATOR_STATUSES, prefer_stale=True)[:limit]


def assignee_slugs(task: TaskSnapshot, agents: list[AgentRecord], requester_id: str) -> list[str]:
    by_id = {a.id: a for a in agents}
    slugs: list[str] = []
    for assignee_id in task.assigned_agent_ids:
        if assignee_id == requester_id or assignee_id not in by_id:
            continue
        slug = by_id[assignee_id].slug.strip()
        if slug and slug not in slugs:
            slugs.append(slug)
    return slugs


# --- Scheduler ---


@dataclass
class HeartbeatSchedule:
    agent: AgentRecord
    interval_minutes: int
    task: asyncio.Task
    firing: bool = False


class HeartbeatService:
    """Per-agent heartbeat timers plus the heartbeat run itself."""

    def __init__(
        self,
        store: StoreClient,
        gateway: GatewayClient,
        config: RuntimeConfig,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._config = config
        self._rng = rng
        self._schedules: dict[str, HeartbeatSchedule] = {}
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self, agents: list[AgentRecord]) -> None:
        """Schedule every agent with a staggered first run."""
        self._running = True
        for agent, delay in zip(agents, initial_delays(agents, self._rng)):
            self._arm(agent, delay)
        logger.info("Scheduled heartbeats for %d agents (staggered)", len(agents))

    def ensure_scheduled(self, agent: AgentRecord) -> bool:
        """Schedule ``agent`` unless it already runs on the same interval.

        Returns True when a new timer was armed. Does nothing once the
        scheduler has been stopped.
        """
        if not self._running:
            return False
        existing = self._schedules.get(agent.id)
        if existing is not None and not existing.task.done():
            if existing.interval_minutes == agent.heartbeat_interval_minutes:
                existing.agent = agent
                return False
        self._arm(agent, self._rng() * INITIAL_JITTER)
        logger.debug("Scheduled heartbeat for %s", agent.name or agent.id)
        return True

    def remove(self, agent_id: str) -> bool:
        schedule = self._schedules.pop(agent_id, None)
        if schedule is None:
            return False
        schedule.task.cancel()
        logger.debug("Removed heartbeat for agent %s", agent_id)
        return True

    async def stop(self) -> None:
        """Stop scheduling and wait for heartbeats that are already firing.

        Idle timers are cancelled. A heartbeat in flight runs to completion
        and its timer is not re-armed.
        """
        self._running = False
        schedules = list(self._schedules.values())
        self._schedules.clear()
        for schedule in schedules:
            if not schedule.firing:
                schedule.task.cancel()
        await asyncio.gather(*(s.task for s in schedules), return_exceptions=True)
        logger.info("Stopped all heartbeats")

    def scheduled_agent_ids(self) -> set[str]:
        return set(self._schedules)

    def status(self) -> dict:
        return {"is_running": self._running, "scheduled_count": len(self._schedules)}

    def _arm(self, agent: AgentRecord, delay: float) -> None:
        previous = self._schedules.pop(agent.id, None)
        if previous is not None:
            previous.task.cancel()
        task = asyncio.create_task(self._agent_loop(agent.id, delay))
        self._schedules[agent.id] = HeartbeatSchedule(
            agent=agent, interval_minutes=agent.heartbeat_interval_minutes, task=task
        )

    async def _agent_loop(self, agent_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        initial = True
        while self._running:
            schedule = self._schedules.get(agent_id)
            if schedule is None or schedule.task is not asyncio.current_task():
                return
            schedule.firing = True
            try:
                await self.run_heartbeat(schedule.agent, initial=initial)
            finally:
                schedule.firing = False
            if not self._running:
                return
            initial = False
            await asyncio.sleep(schedule.agent.heartbeat_interval + self._rng() * REARM_JITTER)

    # --- One heartbeat ---

    async def run_heartbeat(self, agent: AgentRecord, initial: bool = False) -> None:
        """Run one check-in for ``agent``. Failures are logged, never raised."""
        try:
            await self._execute(agent, initial)
        except Exception:
            logger.error("Heartbeat failed for %s", agent.name or agent.id, exc_info=True)

    async def _load_tasks(self, agent: AgentRecord) -> tuple[bool, list[TaskSnapshot]]:
        is_orchestrator = False
        try:
            is_orchestrator = await self._store.get_orchestrator_agent_id() == agent.id
        except Exception as e:
            logger.warning("Failed to load orchestrator agent id: %s", e)

        assigned: list[TaskSnapshot] = []
        try:
            assigned = await self._store.list_assigned_tasks_for_agent(
                agent.id, include_done=False, limit=HEARTBEAT_TASK_LIMIT
            )
        except Exception as e:
            logger.warning("Failed to load assigned tasks for heartbeat: %s", e)

        tracked: list[TaskSnapshot] = []
        if is_orchestrator:
            try:
                tracked = await self._store.list_tasks_for_orchestrator_heartbeat(
                    [s.value for s in ORCHESTRATOR_STATUSES], limit=ORCHESTRATOR_TASK_LIMIT
                )
            except Exception as e:
                logger.warning("Failed to load orchestrator tasks for heartbeat: %s", e)

        priority = ORCHESTRATOR_STATUSES if is_orchestrator else STATUS_PRIORITY
        tasks = [t for t in merge_heartbeat_tasks(assigned, tracked) if t.status in priority]
        return is_orchestrator, sort_heartbeat_tasks(tasks, priority, prefer_stale=is_orchestrator)

    async def _execute(self, agent: AgentRecord, initial: bool) -> None:
        logger.debug("Executing heartbeat for %s", agent.name or agent.id)
        is_orchestrator, tasks = await self._load_tasks(agent)
        focus = tasks[0] if tasks else None

        focus_thread: list[ThreadMessage] = []
        if focus is not None:
            try:
                focus_thread = await self._store.load_task_thread(
                    agent.id, focus.id, limit=HEARTBEAT_THREAD_MESSAGE_LIMIT
                )
            except Exception as e:
                logger.warning("Failed to load focus thread %s: %s", focus.id, e)

        message = build_heartbeat_message(focus, tasks, focus_thread, is_orchestrator)
        capabilities = get_tool_capabilities(
            agent.flags,
            has_task_context=focus is not None,
            is_orchestrator=is_orchestrator,
            client_tools_enabled=self._config.gateway.client_tools_enabled,
        )
        reply = await self._gateway.send(
            agent.session_key, message, tools=list(capabilities.schemas) or None
        )

        text = reply.text
        requested = 0
        if reply.has_tool_calls:
            tool_ctx = ToolContext(
                store=self._store,
                agent_id=agent.id,
                task_id=focus.id if focus else None,
                is_orchestrator=is_orchestrator,
            )
            outputs = []
            for call in reply.tool_calls:
                result = await execute_agent_tool(tool_ctx, call)
                if not result.get("success"):
                    logger.warning("Heartbeat tool %s failed: %s", call.name, result.get("error", "unknown"))
                elif call.name == "response_request":
                    requested += 1
                outputs.append(ToolOutput(call_id=call.call_id, output=json.dumps(result)))
            try:
                final = await self._gateway.send_tool_results(agent.session_key, outputs)
                if final and final.strip():
                    text = final.strip()
            except Exception as e:
                logger.warning("Failed to send heartbeat tool results: %s", e)

        parsed = parse_heartbeat_reply(text)
        if parsed.kind is ReplyKind.AMBIGUOUS:
            logger.warning(
                "Ambiguous heartbeat reply from %s treated as no-op (focus %s)",
                agent.name or agent.id, focus.id if focus else "none",
            )

        reply_task_id = None
        if parsed.is_usable:
            reply_task_id = extract_task_id(parsed.text) or (focus.id if focus else None)
            if reply_task_id:
                await self._store.create_message_from_agent(agent.id, reply_task_id, parsed.text)
            else:
                logger.warning("Heartbeat reply from %s has no task id; not posting", agent.name or agent.id)

        if is_orchestrator:
            await self.request_assignee_follow_ups(
                agent,
                tasks,
                max_follow_ups=max(0, ORCHESTRATOR_MAX_FOLLOW_UPS - requested),
                initial=initial,
            )

        await self._store.update_agent_heartbeat(agent.id, status="online", current_task_id=reply_task_id)

    async def request_assignee_follow_ups(
        self,
        agent: AgentRecord,
        tasks: list[TaskSnapshot],
        max_follow_ups: int = ORCHESTRATOR_MAX_FOLLOW_UPS,
        initial: bool = False,
        now: datetime | None = None,
    ) -> int:
        """Nudge assignees of stale tracked tasks; returns how many were queued.

        Active tasks go first. Blocked tasks are only nudged when no active
        follow-up was queued, and never on the first run after startup.
        """
        if not agent.flags.can_mention_agents or max_follow_ups <= 0 or not tasks:
            return 0
        candidates = select_follow_up_candidates(tasks, max_follow_ups)
        batches = [[t for t in candidates if t.status != TaskStatus.BLOCKED]]
        blocked = [t for t in candidates if t.status == TaskStatus.BLOCKED]
        if blocked and not initial:
            batches.append(blocked)

        stale_after = min(ASSIGNEE_STALE_AFTER, ASSIGNEE_STARTUP_STALE_AFTER) if initial else ASSIGNEE_STALE_AFTER
        now = now or datetime.now(timezone.utc)
        mode = "startup" if initial else "steady"
        queued = 0
        agents: list[AgentRecord] | None = None

        for index, batch in enumerate(batches):
            if index > 0 and queued > 0:
                break
            for task in batch:
                if queued >= max_follow_ups:
                    break
                try:
                    thread = await self._store.load_task_thread(agent.id, task.id, limit=FOLLOW_UP_THREAD_LIMIT)
                    decision = get_assignee_follow_up_decision(
                        task,
                        get_last_assignee_reply_at(task, thread),
                        now,
                        stale_after_for(task, stale_after),
                    )
                    if not decision.should_request:
                        logger.debug(
                            "Skipped follow-up for %s (mode=%s reason=%s elapsed=%.0fs)",
                            task.id, mode, decision.reason, decision.elapsed,
                        )
                        continue
                    if agents is None:
                        agents = await self._store.list_agents()
                    slugs = assignee_slugs(task, agents, agent.id)
                    if not slugs:
                        continue
                    minutes = max(1, int(decision.elapsed // 60))
                    notification_ids = await self._store.create_response_request_notifications(
                        agent.id,
                        task.id,
                        slugs,
                        f'Heartbeat follow-up: no assignee update for about {minutes} minutes on '
                        f'"{task.title}". Please post a progress or blocker update in this task thread.',
                    )
                    if notification_ids:
                        queued += 1
                        logger.info(
                            "Queued follow-up request for %s (mode=%s recipients=%s)",
                            task.id, mode, ",".join(slugs),
                        )
                except Exception as e:
                    logger.warning("Failed to queue follow-up for %s: %s", task.id, e)
        return queued
