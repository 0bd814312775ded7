"""DeliveryContext: the read-only snapshot behind one delivery attempt."""

from __future__ import annotations

from dataclasses import dataclass, field

from agentrelay.models.agent import AgentProfile, AgentRef, BehaviorFlags, UserMention
from agentrelay.models.notification import Notification
from agentrelay.models.task import MessageRef, TaskSnapshot, ThreadMessage


@dataclass(frozen=True)
class ContextDoc:
    """An auxiliary document (repository notes, global briefing)."""

    title: str = ""
    content: str = ""

    @classmethod
    def from_dict(cls, data: dict | None) -> ContextDoc | None:
        if not data:
            return None
        return cls(title=data.get("title") or "", content=data.get("content") or "")


@dataclass(frozen=True)
class OverviewTask:
    task_id: str
    title: str
    priority: int = 3
    assigned_agent_ids: tuple[str, ...] = ()
    assigned_user_count: int = 0


@dataclass(frozen=True)
class TaskOverview:
    """Compact per-status account snapshot shown to the orchestrator."""

    totals: tuple[tuple[str, int], ...] = ()
    top_tasks: tuple[tuple[str, tuple[OverviewTask, ...]], ...] = ()

    @classmethod
    def from_dict(cls, data: dict | None) -> TaskOverview | None:
        if not data:
            return None
        totals = tuple((t["status"], int(t.get("count", 0))) for t in data.get("totals", []))
        groups = []
        for group in data.get("topTasks", []):
            tasks = tuple(
                OverviewTask(
                    task_id=str(t.get("taskId", "")),
                    title=t.get("title", ""),
                    priority=t.get("priority", 3),
                    assigned_agent_ids=tuple(t.get("assignedAgentIds") or ()),
                    assigned_user_count=len(t.get("assignedUserIds") or ()),
                )
                for t in group.get("tasks", [])
            )
            groups.append((group.get("status", ""), tasks))
        return cls(totals=totals, top_tasks=tuple(groups))


@dataclass(frozen=True)
class DeliveryContext:
    """Everything needed to decide on and render one notification delivery.

    Built once per notification per attempt from the store's response and
    threaded through policy, prompt building and execution unchanged. A
    retry always fetches a fresh context, since the task and thread may
    have moved on in between.
    """

    notification: Notification
    agent: AgentRef | None = None
    task: TaskSnapshot | None = None
    message: MessageRef | None = None
    thread: tuple[ThreadMessage, ...] = ()
    source_notification_type: str | None = None
    orchestrator_agent_id: str | None = None
    flags: BehaviorFlags = field(default_factory=BehaviorFlags)
    mentionable_agents: tuple[AgentProfile, ...] = ()
    assigned_agents: tuple[AgentProfile, ...] = ()
    primary_user: UserMention | None = None
    repository_doc: ContextDoc | None = None
    global_briefing_doc: ContextDoc | None = None
    task_overview: TaskOverview | None = None

    @property
    def recipient_is_orchestrator(self) -> bool:
        return (
            self.orchestrator_agent_id is not None
            and self.notification.recipient_id == self.orchestrator_agent_id
        )

    @property
    def agent_is_orchestrator(self) -> bool:
        return (
            self.agent is not None
            and self.orchestrator_agent_id is not None
            and self.agent.id == self.orchestrator_agent_id
        )

    @property
    def author_is_orchestrator(self) -> bool:
        return (
            self.message is not None
            and self.orchestrator_agent_id is not None
            and self.message.is_from_agent
            and self.message.author_id == self.orchestrator_agent_id
        )

    @property
    def references_missing_task(self) -> bool:
        return self.notification.task_id is not None and self.task is None

    @classmethod
    def from_dict(cls, data: dict) -> DeliveryContext:
        """Deserialize the store's ``getNotificationForDelivery`` payload."""
        agent = data.get("agent")
        task = data.get("task")
        message = data.get("message")
        primary_user = data.get("primaryUserMention")
        return cls(
            notification=Notification.from_dict(data["notification"]),
            agent=AgentRef.from_dict(agent) if agent else None,
            task=TaskSnapshot.from_dict(task) if task else None,
            message=MessageRef.from_dict(message) if message else None,
            thread=tuple(ThreadMessage.from_dict(m) for m in data.get("thread") or ()),
            source_notification_type=data.get("sourceNotificationType"),
            orchestrator_agent_id=data.get("orchestratorAgentId"),
            flags=BehaviorFlags.from_dict(data.get("effectiveBehaviorFlags")),
            mentionable_agents=tuple(
                AgentProfile.from_dict(a) for a in data.get("mentionableAgents") or ()
            ),
            assigned_agents=tuple(
                AgentProfile.from_dict(a) for a in data.get("assignedAgents") or ()
            ),
            primary_user=UserMention.from_dict(primary_user) if primary_user else None,
            repository_doc=ContextDoc.from_dict(data.get("repositoryDoc")),
            global_briefing_doc=ContextDoc.from_dict(data.get("globalBriefingDoc")),
            task_overview=TaskOverview.from_dict(data.get("taskOverview")),
        )
