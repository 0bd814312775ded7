"""Instruction builder: renders the text sent to an agent session.

Only the structure matters to the runtime (which sections appear and in
what order); the wording is free to change.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone

from agentrelay.models.agent import AgentProfile, UserMention
from agentrelay.models.delivery import DeliveryContext, TaskOverview
from agentrelay.models.notification import NotificationType
from agentrelay.models.task import TaskSnapshot, TaskStatus, ThreadMessage
from agentrelay.services.agent_tools.schemas import ToolCapabilities
from agentrelay.services.delivery_policy import is_recipient_in_multi_assignee_task
from agentrelay.services.replies import HEARTBEAT_OK

MENTIONABLE_AGENTS_CAP = 25
THREAD_MAX_MESSAGES = 25
THREAD_MAX_CHARS_PER_MESSAGE = 1500
TASK_DESCRIPTION_MAX_CHARS = 4000
REPOSITORY_CONTEXT_MAX_CHARS = 12000
GLOBAL_CONTEXT_MAX_CHARS = 4000

HEARTBEAT_DESCRIPTION_MAX_CHARS = 240
HEARTBEAT_THREAD_MESSAGE_LIMIT = 8
HEARTBEAT_THREAD_MESSAGE_MAX_CHARS = 220
ORCHESTRATOR_MAX_FOLLOW_UPS = 3

_MENTION_RE = re.compile(r'@(\w+(?:-\w+)*|"[^"]+")')
_EMAIL_LOCAL_PART_RE = re.compile(r"[A-Za-z0-9._%+-]$")
_FENCE_RE = re.compile(r"```.*?```", re.DOTALL)
_INLINE_CODE_RE = re.compile(r"`[^`]*`")
_NEEDS_USER_RES = (
    re.compile(r"\bblocked|blocker|blocking\b"),
    re.compile(r"\b(need|needs|awaiting|waiting for|require|requires|please)\b.*\b(confirm|confirmation|approval|review)\b"),
    re.compile(r"\b(need|needs|awaiting|waiting for|require|requires|please)\b.*\b(input|decision|sign[- ]?off)\b"),
    re.compile(r"\b(can you|could you)\s+confirm\b"),
)


def truncate(value: str, max_chars: int) -> str:
    """Cut ``value`` to ``max_chars``, marking the cut with an ellipsis."""
    if len(value) <= max_chars:
        return value
    return value[: max(0, max_chars - 1)].rstrip() + "…"


def _iso(value: datetime | None) -> str:
    return value.isoformat() if value else "unknown_time"


# --- Notification sections ---


def _format_thread(thread: tuple[ThreadMessage, ...]) -> str:
    if not thread:
        return ""
    shown = thread[-THREAD_MAX_MESSAGES:]
    omitted = len(thread) - len(shown)
    lines = ["Thread history (recent):"]
    if omitted > 0:
        lines += [f"(... {omitted} older message{'' if omitted == 1 else 's'} omitted)", ""]
    for item in shown:
        author = item.author_name or f"{item.author_type}:{item.author_id}"
        content = truncate(item.content.strip() or "(empty)", THREAD_MAX_CHARS_PER_MESSAGE)
        lines.append(f"- [{_iso(item.created_at)}] {author}: {content}")
    return "\n".join(lines)


def _format_mentionable_agents(agents: tuple[AgentProfile, ...]) -> str:
    if not agents:
        return ""
    lines = ["Mentionable agents (use @slug to request follow-up):"]
    for agent in agents[:MENTIONABLE_AGENTS_CAP]:
        mention = agent.mention
        lines.append(f"- {mention} - {agent.name} ({agent.role})" if mention else f"- {agent.name} ({agent.role})")
    if len(agents) > MENTIONABLE_AGENTS_CAP:
        lines.append(f"- ... and {len(agents) - MENTIONABLE_AGENTS_CAP} more")
    lines += ["", "If you want another agent to act, @mention them by slug from the list above."]
    return "\n".join(lines)


def _format_primary_user(user: UserMention | None) -> str:
    if user is None:
        return ""
    line = f"- {user.mention} - {user.name}" if user.mention else f"- {user.name}"
    return "\n".join([
        "User to mention if blocked or confirmation needed:",
        line,
        "",
        "If you are blocked or need confirmation, @mention the user above.",
    ])


def _format_task_overview(overview: TaskOverview | None, agents: tuple[AgentProfile, ...]) -> str:
    if overview is None:
        return ""
    labels = {a.id: (a.slug.strip() or a.name) for a in agents}
    totals = "; ".join(f"{status}={count}" for status, count in overview.totals)
    lines = ["Task overview (compact):", f"Totals (sampled per status): {totals}"]
    for status, tasks in overview.top_tasks:
        if not tasks:
            continue
        lines.append(f"- {status}:")
        for task in tasks:
            assignees = ", ".join(
                f'"{label}"' if " " in label else label
                for label in (labels.get(a, a) for a in task.assigned_agent_ids)
            )
            suffix = f" (assignees: {assignees})" if assignees else ""
            if task.assigned_user_count:
                suffix += f"; users={task.assigned_user_count}"
            lines.append(f"  - P{task.priority} {task.title} [{task.task_id}]{suffix}")
    return "\n".join(lines)


def _status_instructions(ctx: DeliveryContext, caps: ToolCapabilities, base_url: str) -> str:
    if ctx.task is None:
        return ""
    if not ctx.flags.can_modify_task_status:
        return (
            "You are not allowed to change task status. If asked to change or close this task, "
            "report BLOCKED and explain that status updates are not permitted for you."
        )
    transitions = (
        "If you need to change task status, do it BEFORE posting a thread update. Only move to a "
        "valid next status (assigned -> in_progress, in_progress -> review, review -> done or back "
        "to in_progress; use blocked only when blocked)."
    )
    if caps.has_runtime_tools and caps.has_task_status:
        allowed = "in_progress|review|done|blocked" if caps.can_mark_done else "in_progress|review|blocked"
        how = (
            f" Use the **task_status** tool with taskId, status ({allowed}) and blockedReason when "
            "blocked. If a tool returns an error, do not claim you changed status; report BLOCKED "
            "and include the error message."
        )
    else:
        how = (
            f" Use the HTTP fallback: POST {base_url}/agent/task-status with JSON body "
            '`{ "taskId": "<Task ID above>", "status": "<next valid status>", "blockedReason": "..." }`. '
            "If the call fails, report BLOCKED and include the error message."
        )
    done_note = "" if caps.can_mark_done else " You are not allowed to mark tasks as done; ask the orchestrator."
    return transitions + how + done_note


def _assignment_block(ctx: DeliveryContext) -> str:
    if ctx.notification.type != NotificationType.ASSIGNMENT:
        return ""
    orchestrator = next(
        (a for a in ctx.mentionable_agents if a.id == ctx.orchestrator_agent_id), None
    )
    if ctx.flags.can_mention_agents and orchestrator is not None and orchestrator.mention:
        clarify = f"For clarification questions, @mention the orchestrator ({orchestrator.mention})."
    elif ctx.primary_user is not None:
        clarify = "For clarification questions, @mention the primary user (shown above)."
    else:
        clarify = "If you need clarification, ask in the thread."
    return (
        "**Assignment - first reply only:** Reply with a short acknowledgment (1-2 sentences). "
        f"{clarify} Ask any clarifying questions now. Begin substantive work only after this "
        "acknowledgment."
    )


def _multi_assignee_block(ctx: DeliveryContext) -> str:
    """Coordination gate for tasks shared by several agents."""
    if not is_recipient_in_multi_assignee_task(ctx):
        return ""
    others = [a.mention for a in ctx.assigned_agents if ctx.agent and a.id != ctx.agent.id and a.mention]
    peers = f" Co-assignees: {', '.join(others)}." if others else ""
    gate = ""
    if ctx.notification.type == NotificationType.ASSIGNMENT:
        gate = (
            " Before substantive work, post a short scoping reply stating which part you will own "
            "so co-assignees do not duplicate it."
        )
    return (
        f"**Shared task:** this task has multiple assignees.{peers}{gate} Coordinate in the thread "
        "and do not redo work another assignee has already reported."
    )


def format_notification_message(
    ctx: DeliveryContext,
    capabilities: ToolCapabilities,
    runtime_base_url: str = "",
) -> str:
    """Render the instruction for one notification delivery."""
    notification = ctx.notification
    task = ctx.task
    message = ctx.message
    base_url = runtime_base_url.rstrip("/")

    labels = list(capabilities.labels)
    if ctx.flags.can_mention_agents:
        labels.append("mention other agents")
    if labels:
        capabilities_block = (
            f"Runtime capabilities: {'; '.join(labels)}. Use only the capabilities listed here. "
            "If a runtime tool fails, report BLOCKED with the error message."
        )
    else:
        capabilities_block = (
            "Runtime capabilities: none. If asked to create tasks, change status, or create "
            "documents, report BLOCKED."
        )

    agent_name = (ctx.agent.name.strip() if ctx.agent else "") or "Agent"
    agent_role = (ctx.agent.role.strip() if ctx.agent else "") or "Unknown role"
    identity = (
        f"You are replying as: **{agent_name}** ({agent_role}). Reply only as this agent."
    )

    if task is not None:
        anchor = (
            f"**Respond only to this notification.** Task ID: `{task.id}` - {task.title} "
            f"({task.status}). Ignore any other task or thread in the conversation history."
        )
    else:
        anchor = (
            "**Respond only to this notification.** Ignore any other task or thread in the "
            "conversation history."
        )

    sections = [
        identity,
        capabilities_block,
        anchor,
        f"## Notification: {notification.type}",
        f"**{notification.title}**",
        notification.body,
    ]
    if task is not None:
        sections.append(f"Task: {task.title} ({task.status})\nTask ID: {task.id}")
        if task.description.strip():
            sections.append(
                "Task description:\n" + truncate(task.description.strip(), TASK_DESCRIPTION_MAX_CHARS)
            )
    if ctx.repository_doc is not None and ctx.repository_doc.content.strip():
        sections.append(
            "Repository context:\n"
            + truncate(ctx.repository_doc.content.strip(), REPOSITORY_CONTEXT_MAX_CHARS)
        )
    if ctx.global_briefing_doc is not None and ctx.global_briefing_doc.content.strip():
        sections.append(
            "Global Context:\n"
            + truncate(ctx.global_briefing_doc.content.strip(), GLOBAL_CONTEXT_MAX_CHARS)
        )
    sections.append(_format_task_overview(ctx.task_overview, ctx.mentionable_agents))
    if message is not None:
        sections.append("\n".join([
            "Latest message:",
            message.content.strip() or "(empty)",
            "",
            f"Message author: {message.author_type} ({message.author_id})",
            f"Message ID: {message.id}",
        ]))
    sections.append(_format_thread(ctx.thread))
    if ctx.flags.can_mention_agents:
        sections.append(_format_mentionable_agents(ctx.mentionable_agents))
    sections.append(_format_primary_user(ctx.primary_user))

    sections.append(
        "If the latest message is from another agent and does not ask you to do anything, "
        "respond with the single token NO_REPLY and nothing else. Do not use NO_REPLY for "
        "assignment notifications or when the message explicitly asks you to act."
    )
    large_result = (
        "If the result is large, create a document (document_upsert) and summarize it here."
        if ctx.flags.can_create_documents
        else "If the result is large, summarize it here."
    )
    sections.append(
        "Important: This system captures only one reply per notification. Do not send progress "
        f"updates. {large_result}"
    )
    sections.append(_status_instructions(ctx, capabilities, base_url))
    if ctx.flags.can_create_tasks:
        sections.append("If you need to create tasks, use the **task_create** capability.")
    if ctx.flags.can_create_documents:
        sections.append("If you need to create or update documents, use the **document_upsert** capability.")

    if task is not None and task.status == TaskStatus.REVIEW and capabilities.can_mark_done:
        sections.append(
            'If you are accepting this task as done, you MUST update status to "done" before '
            "posting. If you cannot, report BLOCKED."
        )
    if task is not None and task.status == TaskStatus.DONE:
        sections.append(
            "This task is DONE. You were explicitly mentioned; reply once briefly (1-2 sentences) "
            "to the request. Do not reply again to this thread after that."
        )
    if task is not None and task.status == TaskStatus.BLOCKED:
        sections.append(
            "This task is BLOCKED. Reply only to clarify or unblock; do not continue substantive "
            "work until status is updated."
        )
    sections.append(_assignment_block(ctx))
    sections.append(_multi_assignee_block(ctx))
    sections.append(
        "Use the full format (Summary, Work done, Artifacts, Risks, Next step, Sources) for "
        "substantive updates. For acknowledgments or brief follow-ups, reply in 1-2 sentences."
    )
    sections.append(f"---\nNotification ID: {notification.id}")
    return "\n\n".join(s for s in sections if s)


# --- Heartbeat ---


def build_heartbeat_message(
    focus_task: TaskSnapshot | None,
    tasks: list[TaskSnapshot],
    focus_thread: list[ThreadMessage] | None = None,
    is_orchestrator: bool = False,
    now: datetime | None = None,
) -> str:
    """Render the periodic check-in for one agent."""
    now = now or datetime.now(timezone.utc)
    if is_orchestrator:
        action_line = (
            "- Take one concrete action if appropriate (or up to "
            f"{ORCHESTRATOR_MAX_FOLLOW_UPS} orchestrator follow-ups across distinct tracked tasks)."
        )
    else:
        action_line = "- Take one concrete action if appropriate."

    lines = [
        "## Heartbeat Check",
        "",
        "- Load context (assigned/tracked tasks, mentions, activity feed).",
        action_line,
        f"- Reply only with a concrete action update (include Task ID) or with {HEARTBEAT_OK}.",
        f"- If you did not take action, reply with exactly one line: {HEARTBEAT_OK} (no extra text).",
    ]
    if is_orchestrator:
        lines.append(
            "- As the orchestrator, follow up on in_progress/review/assigned/blocked tasks "
            "(even if assigned to other agents)."
        )
        if tasks:
            lines.append(
                "- For assignee follow-up use response_request only. Prioritize stale "
                "in_progress/review tasks, then assigned; nudge blocked tasks only when nothing "
                "else was queued."
            )

    lines += ["", "Tracked tasks:" if is_orchestrator else "Assigned tasks:"]
    if tasks:
        for task in tasks:
            description = task.description.strip()
            suffix = f" - {truncate(description, HEARTBEAT_DESCRIPTION_MAX_CHARS)}" if description else ""
            lines.append(f"- {task.title} ({task.status}) - Task ID: {task.id}{suffix}")
    else:
        lines.append("- None")

    if focus_task is not None:
        preview = sorted(
            focus_thread or [],
            key=lambda m: m.created_at or datetime.min.replace(tzinfo=timezone.utc),
        )[-HEARTBEAT_THREAD_MESSAGE_LIMIT:]
        lines += ["", "Recent focus task thread updates:"]
        if preview:
            for item in preview:
                author = (item.author_name or "").strip() or item.author_id
                content = truncate(item.content.strip() or "(empty)", HEARTBEAT_THREAD_MESSAGE_MAX_CHARS)
                lines.append(f"- {author} [{item.author_type}] ({_iso(item.created_at)}): {content}")
        else:
            lines.append("- None")
        lines += ["", f"Focus Task ID: {focus_task.id} ({focus_task.title})"]
    else:
        lines += ["", "No tracked tasks found." if is_orchestrator else "No assigned tasks found."]

    lines += [
        "If you take action on a task, include a line with: Task ID: <id>. If you work on a task "
        "other than the focus task, include its Task ID explicitly.",
        "",
        f"Current time: {now.isoformat()}",
    ]
    return "\n".join(lines)


# --- Mentions ---


def _strip_quoted(content: str) -> str:
    content = _INLINE_CODE_RE.sub("", _FENCE_RE.sub("", content))
    return "\n".join(line for line in content.split("\n") if not line.strip().startswith(">"))


def extract_mention_tokens(content: str) -> list[str]:
    """Lower-cased @mention tokens, ignoring quotes, code and email addresses."""
    sanitized = _strip_quoted(content)
    tokens = []
    for match in _MENTION_RE.finditer(sanitized):
        if _EMAIL_LOCAL_PART_RE.search(sanitized[:match.start()]):
            continue
        token = match.group(1)
        if token.startswith('"') and token.endswith('"'):
            token = token[1:-1]
        tokens.append(token.lower())
    return tokens


def _needs_user_attention(content: str) -> bool:
    sanitized = _strip_quoted(content).lower()
    return any(pattern.search(sanitized) for pattern in _NEEDS_USER_RES)


def apply_auto_mention_fallback(content: str, ctx: DeliveryContext) -> str:
    """Prefix mentions to an orchestrator reply that would otherwise reach nobody.

    Applies only to the orchestrator's answer to an agent-authored thread
    update. Assignees are mentioned when the reply mentions no one; the
    primary user is mentioned when the reply reports a blocker or asks for
    confirmation.
    """
    if not content.strip():
        return content
    if ctx.notification.type != NotificationType.THREAD_UPDATE:
        return content
    if ctx.message is None or not ctx.message.is_from_agent or not ctx.recipient_is_orchestrator:
        return content

    tokens = extract_mention_tokens(content)
    agent_tokens = set()
    for agent in ctx.mentionable_agents:
        if agent.slug:
            agent_tokens.add(agent.slug.lower())
        if agent.name:
            agent_tokens.add(agent.name.lower())
    has_agent_mention = any(t in agent_tokens for t in tokens)

    user = ctx.primary_user
    has_user_mention = False
    if user is not None:
        email_prefix = user.email.lower().split("@")[0] if user.email else None
        has_user_mention = user.name.lower() in tokens or (email_prefix is not None and email_prefix in tokens)

    user_prefix = ""
    if user is not None and user.mention and not has_user_mention and _needs_user_attention(content):
        user_prefix = f"{user.mention}\n\n"

    agent_prefix = ""
    if ctx.flags.can_mention_agents and not (has_agent_mention or has_user_mention) and "all" not in tokens:
        mentions = [
            a.mention for a in ctx.assigned_agents
            if a.id != ctx.orchestrator_agent_id and a.mention
        ]
        if mentions:
            agent_prefix = " ".join(mentions) + "\n\n"

    if not user_prefix and not agent_prefix:
        return content
    return user_prefix + agent_prefix + content
