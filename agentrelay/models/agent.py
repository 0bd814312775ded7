"""Agent identity, roster and capability models."""

from __future__ import annotations

from dataclasses import dataclass, field

DEFAULT_HEARTBEAT_INTERVAL_MINUTES = 5


@dataclass(frozen=True)
class BehaviorFlags:
    """Effective capability flags for an agent.

    ``can_modify_task_status`` is on unless the store explicitly turns it
    off; every other capability must be granted explicitly.
    """

    can_create_tasks: bool = False
    can_modify_task_status: bool = True
    can_create_documents: bool = False
    can_mention_agents: bool = False
    can_review_tasks: bool = False
    can_mark_done: bool = False

    @classmethod
    def from_dict(cls, data: dict | None) -> BehaviorFlags:
        data = data or {}
        return cls(
            can_create_tasks=data.get("canCreateTasks") is True,
            can_modify_task_status=data.get("canModifyTaskStatus") is not False,
            can_create_documents=data.get("canCreateDocuments") is True,
            can_mention_agents=data.get("canMentionAgents") is True,
            can_review_tasks=data.get("canReviewTasks") is True,
            can_mark_done=data.get("canMarkDone") is True,
        )


@dataclass(frozen=True)
class AgentRef:
    """The agent resolved as the recipient of one delivery."""

    id: str
    session_key: str
    name: str = ""
    role: str = ""

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Agent id cannot be empty")

    @classmethod
    def from_dict(cls, data: dict) -> AgentRef:
        return cls(
            id=str(data.get("_id") or data.get("id") or ""),
            session_key=data.get("sessionKey", ""),
            name=data.get("name", ""),
            role=data.get("role", ""),
        )


@dataclass(frozen=True)
class AgentProfile:
    """An agent that can be @mentioned from a task thread."""

    id: str
    slug: str = ""
    name: str = ""
    role: str = ""

    @property
    def mention(self) -> str:
        """``@slug``, or ``@"Name"`` when the agent has no slug."""
        slug = self.slug.strip()
        if slug:
            return f"@{slug}"
        name = self.name.replace('"', "").strip()
        return f'@"{name}"' if name else ""

    @classmethod
    def from_dict(cls, data: dict) -> AgentProfile:
        return cls(
            id=str(data.get("id") or data.get("_id") or ""),
            slug=data.get("slug") or "",
            name=data.get("name") or "",
            role=data.get("role") or "",
        )


@dataclass(frozen=True)
class UserMention:
    """The account's primary user, mentioned when an agent is blocked."""

    id: str
    name: str
    email: str | None = None

    @property
    def mention(self) -> str:
        name = self.name.replace('"', "").strip()
        return f'@"{name}"' if name else ""

    @classmethod
    def from_dict(cls, data: dict) -> UserMention:
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name", ""),
            email=data.get("email"),
        )


@dataclass(frozen=True)
class AgentRecord:
    """A roster entry from the store, used for session and heartbeat sync."""

    id: str
    session_key: str
    name: str = ""
    slug: str = ""
    heartbeat_interval_minutes: int = DEFAULT_HEARTBEAT_INTERVAL_MINUTES
    flags: BehaviorFlags = field(default_factory=BehaviorFlags)

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Agent id cannot be empty")
        if not self.session_key:
            raise ValueError(f"Agent {self.id} has no session key")
        if self.heartbeat_interval_minutes <= 0:
            raise ValueError("Heartbeat interval must be positive")

    @property
    def heartbeat_interval(self) -> float:
        """Heartbeat interval in seconds."""
        return self.heartbeat_interval_minutes * 60.0

    @classmethod
    def from_dict(
        cls, data: dict, default_interval_minutes: int = DEFAULT_HEARTBEAT_INTERVAL_MINUTES
    ) -> AgentRecord:
        """Build a roster entry; agents without an interval use ``default_interval_minutes``."""
        flags = data.get("effectiveBehaviorFlags")
        if flags is None:
            flags = (data.get("openclawConfig") or {}).get("behaviorFlags")
        return cls(
            id=str(data.get("_id") or data.get("id") or ""),
            session_key=data.get("sessionKey", ""),
            name=data.get("name", ""),
            slug=data.get("slug") or "",
            heartbeat_interval_minutes=data.get("heartbeatInterval") or default_interval_minutes,
            flags=BehaviorFlags.from_dict(flags),
        )
