"""Task, message and thread snapshot models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum


class AuthorType(str, Enum):
    USER = "user"
    AGENT = "agent"


class TaskStatus(str, Enum):
    INBOX = "inbox"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    DONE = "done"
    BLOCKED = "blocked"
    ARCHIVED = "archived"


# Statuses that silence passive updates (thread echoes, status-change acks).
QUIET_STATUSES = frozenset({TaskStatus.DONE, TaskStatus.BLOCKED})

# Label that marks a task as the orchestrator's coordination-only thread.
ORCHESTRATOR_CHAT_LABEL = "system:orchestrator-chat"


def from_millis(value) -> datetime | None:
    """Convert an epoch-milliseconds value from the store to a UTC datetime."""
    if value is None:
        return None
    return datetime.fromtimestamp(float(value) / 1000.0, tz=timezone.utc)


@dataclass(frozen=True)
class TaskSnapshot:
    """Read-only view of a task as seen by the delivery engine."""

    id: str
    title: str = ""
    status: str = TaskStatus.INBOX.value
    description: str = ""
    assigned_agent_ids: tuple[str, ...] = ()
    labels: tuple[str, ...] = ()
    priority: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Task id cannot be empty")

    @property
    def is_quiet(self) -> bool:
        """Done or blocked: passive updates are not delivered."""
        return self.status in QUIET_STATUSES

    @property
    def is_orchestrator_chat(self) -> bool:
        return ORCHESTRATOR_CHAT_LABEL in self.labels

    def is_assigned_to(self, agent_id: str | None) -> bool:
        return agent_id is not None and agent_id in self.assigned_agent_ids

    @classmethod
    def from_dict(cls, data: dict) -> TaskSnapshot:
        return cls(
            id=str(data.get("_id") or data.get("id") or ""),
            title=data.get("title", ""),
            status=data.get("status", TaskStatus.INBOX.value),
            description=data.get("description") or "",
            assigned_agent_ids=tuple(str(a) for a in data.get("assignedAgentIds") or ()),
            labels=tuple(data.get("labels") or ()),
            priority=data.get("priority"),
            created_at=from_millis(data.get("createdAt") or data.get("_creationTime")),
            updated_at=from_millis(data.get("updatedAt")),
        )


@dataclass(frozen=True)
class MessageRef:
    """The message that triggered a notification."""

    id: str
    author_type: str
    author_id: str
    content: str = ""

    @property
    def is_from_agent(self) -> bool:
        return self.author_type == AuthorType.AGENT

    @classmethod
    def from_dict(cls, data: dict) -> MessageRef:
        return cls(
            id=str(data.get("_id") or data.get("id") or ""),
            author_type=data.get("authorType", ""),
            author_id=str(data.get("authorId", "")),
            content=data.get("content") or "",
        )


@dataclass(frozen=True)
class ThreadMessage:
    """One entry in a task thread, oldest first."""

    message_id: str
    author_type: str
    author_id: str
    content: str = ""
    author_name: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict) -> ThreadMessage:
        return cls(
            message_id=str(data.get("messageId") or data.get("_id") or ""),
            author_type=data.get("authorType", ""),
            author_id=str(data.get("authorId", "")),
            content=data.get("content") or "",
            author_name=data.get("authorName"),
            created_at=from_millis(data.get("createdAt")),
        )
