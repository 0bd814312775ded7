"""Notification domain model."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class NotificationType(str, Enum):
    ASSIGNMENT = "assignment"
    MENTION = "mention"
    RESPONSE_REQUEST = "response_request"
    THREAD_UPDATE = "thread_update"
    STATUS_CHANGE = "status_change"


class RecipientType(str, Enum):
    USER = "user"
    AGENT = "agent"


# Types that always owe the recipient a reply.
REQUIRED_REPLY_TYPES = frozenset({
    NotificationType.ASSIGNMENT,
    NotificationType.MENTION,
    NotificationType.RESPONSE_REQUEST,
})


@dataclass(frozen=True)
class Notification:
    """A routed fact about task or thread activity awaiting delivery.

    ``type`` is the raw string from the store; unknown types are delivered
    as-is. Compare against ``NotificationType`` members directly.
    """

    id: str
    type: str
    recipient_id: str
    recipient_type: str = RecipientType.AGENT.value
    title: str = ""
    body: str = ""
    task_id: str | None = None
    message_id: str | None = None
    account_id: str | None = None

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Notification id cannot be empty")
        if not self.type:
            raise ValueError("Notification type cannot be empty")

    @property
    def is_to_agent(self) -> bool:
        return self.recipient_type == RecipientType.AGENT

    @classmethod
    def from_dict(cls, data: dict) -> Notification:
        """Deserialize from the store's JSON shape."""
        return cls(
            id=str(data.get("_id") or data.get("id") or ""),
            type=data.get("type", ""),
            recipient_id=str(data.get("recipientId", "")),
            recipient_type=data.get("recipientType", RecipientType.AGENT.value),
            title=data.get("title", ""),
            body=data.get("body", ""),
            task_id=data.get("taskId"),
            message_id=data.get("messageId"),
            account_id=data.get("accountId"),
        )
