"""Service-action client for the backend store.

Every call is an HTTP action scoped to one account and authenticated with
the runtime's service token:

    POST {url}/api/action
    {"path": "service/actions:<name>", "args": {...}, "format": "json"}

The store answers ``{"status": "success", "value": ...}`` or
``{"status": "error", "errorMessage": "..."}``.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from agentrelay.models.agent import DEFAULT_HEARTBEAT_INTERVAL_MINUTES, AgentRecord
from agentrelay.models.delivery import DeliveryContext
from agentrelay.models.notification import Notification
from agentrelay.models.task import TaskSnapshot, ThreadMessage

logger = logging.getLogger(__name__)

ACTION_PREFIX = "service/actions:"


class StoreError(RuntimeError):
    """The store rejected an action."""

    def __init__(self, action: str, message: str) -> None:
        super().__init__(f"{action}: {message}")
        self.action = action
        self.message = message


class StoreUnavailableError(StoreError):
    """The store could not be reached or did not answer in time."""


class StoreClient:
    """Typed wrapper over the store's service actions."""

    def __init__(
        self,
        url: str,
        account_id: str,
        service_token: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        default_heartbeat_interval_minutes: int = DEFAULT_HEARTBEAT_INTERVAL_MINUTES,
    ) -> None:
        self._account_id = account_id
        self._default_heartbeat_interval_minutes = default_heartbeat_interval_minutes
        self._service_token = service_token
        self._client = httpx.AsyncClient(
            base_url=url.rstrip("/"),
            headers={"Content-Type": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    @property
    def account_id(self) -> str:
        return self._account_id

    async def close(self) -> None:
        await self._client.aclose()

    async def action(self, name: str, **args: Any) -> Any:
        """Run one service action and return its value."""
        payload = {
            "path": f"{ACTION_PREFIX}{name}",
            "args": {
                **{k: v for k, v in args.items() if v is not None},
                "accountId": self._account_id,
                "serviceToken": self._service_token,
            },
            "format": "json",
        }
        try:
            response = await self._client.post("/api/action", json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            code = e.response.status_code
            if code >= 500:
                raise StoreUnavailableError(name, f"HTTP {code}") from e
            raise StoreError(name, f"HTTP {code}") from e
        except httpx.HTTPError as e:
            raise StoreUnavailableError(name, str(e) or type(e).__name__) from e
        except ValueError as e:
            raise StoreError(name, "invalid JSON response") from e

        if body.get("status") != "success":
            raise StoreError(name, body.get("errorMessage") or "unknown error")
        return body.get("value")

    # --- Notifications ---

    async def list_undelivered_notifications(self, limit: int = 50) -> list[Notification]:
        """Fetch the next page of undelivered notifications.

        Malformed rows are skipped. Those that carry an id are marked
        delivered so they do not come back on the next poll.
        """
        rows = await self.action("listUndeliveredNotifications", limit=limit)
        notifications = []
        for row in rows or []:
            try:
                notifications.append(Notification.from_dict(row))
            except ValueError as e:
                await self._retire_malformed(row, e)
        return notifications

    async def _retire_malformed(self, row: dict, error: ValueError) -> None:
        notification_id = str(row.get("_id") or row.get("id") or "")
        logger.warning("Skipping malformed notification %s: %s", notification_id or "<no id>", error)
        if not notification_id:
            return
        try:
            await self.mark_notification_delivered(notification_id)
        except StoreError as e:
            logger.warning("Failed to retire malformed notification %s: %s", notification_id, e)

    async def get_notification_for_delivery(self, notification_id: str) -> DeliveryContext | None:
        data = await self.action("getNotificationForDelivery", notificationId=notification_id)
        if not data or not data.get("notification"):
            return None
        return DeliveryContext.from_dict(data)

    async def mark_notification_read(self, notification_id: str) -> None:
        await self.action("markNotificationRead", notificationId=notification_id)

    async def mark_notification_delivered(self, notification_id: str) -> None:
        await self.action("markNotificationDelivered", notificationId=notification_id)

    async def create_response_request_notifications(
        self,
        requester_agent_id: str,
        task_id: str,
        recipient_slugs: list[str],
        message: str,
    ) -> list[str]:
        result = await self.action(
            "createResponseRequestNotifications",
            requesterAgentId=requester_agent_id,
            taskId=task_id,
            recipientSlugs=recipient_slugs,
            message=message,
        )
        return list((result or {}).get("notificationIds") or [])

    # --- Messages, tasks and documents ---

    async def create_message_from_agent(
        self,
        agent_id: str,
        task_id: str,
        content: str,
        source_notification_id: str | None = None,
        suppress_agent_notifications: bool = False,
    ) -> None:
        await self.action(
            "createMessageFromAgent",
            agentId=agent_id,
            taskId=task_id,
            content=content,
            sourceNotificationId=source_notification_id,
            suppressAgentNotifications=suppress_agent_notifications or None,
        )

    async def update_task_status_from_agent(
        self,
        agent_id: str,
        task_id: str,
        status: str,
        expected_status: str | None = None,
        blocked_reason: str | None = None,
    ) -> None:
        await self.action(
            "updateTaskStatusFromAgent",
            agentId=agent_id,
            taskId=task_id,
            status=status,
            expectedStatus=expected_status,
            blockedReason=blocked_reason,
        )

    async def create_task_from_agent(self, agent_id: str, **fields: Any) -> str:
        result = await self.action("createTaskFromAgent", agentId=agent_id, **fields)
        return str((result or {}).get("taskId", ""))

    async def create_document_from_agent(self, agent_id: str, **fields: Any) -> str:
        result = await self.action("createDocumentFromAgent", agentId=agent_id, **fields)
        return str((result or {}).get("documentId", ""))

    async def load_task_thread(self, agent_id: str, task_id: str, limit: int = 50) -> list[ThreadMessage]:
        rows = await self.action(
            "listTaskThreadForAgentTool", agentId=agent_id, taskId=task_id, limit=limit
        )
        return [ThreadMessage.from_dict(row) for row in rows or []]

    # --- Agents and heartbeats ---

    async def list_agents(self) -> list[AgentRecord]:
        rows = await self.action("listAgents")
        agents = []
        for row in rows or []:
            try:
                agents.append(AgentRecord.from_dict(row, self._default_heartbeat_interval_minutes))
            except ValueError as e:
                logger.warning("Skipping malformed agent record: %s", e)
        return agents

    async def get_orchestrator_agent_id(self) -> str | None:
        result = await self.action("getOrchestratorAgentId")
        return (result or {}).get("orchestratorAgentId")

    async def list_assigned_tasks_for_agent(
        self, agent_id: str, include_done: bool = False, limit: int = 12
    ) -> list[TaskSnapshot]:
        rows = await self.action(
            "listAssignedTasksForAgent", agentId=agent_id, includeDone=include_done, limit=limit
        )
        return [TaskSnapshot.from_dict(row) for row in rows or []]

    async def list_tasks_for_orchestrator_heartbeat(
        self, statuses: list[str], limit: int = 200
    ) -> list[TaskSnapshot]:
        rows = await self.action("listTasksForOrchestratorHeartbeat", statuses=statuses, limit=limit)
        return [TaskSnapshot.from_dict(row) for row in rows or []]

    async def update_agent_heartbeat(
        self, agent_id: str, status: str = "online", current_task_id: str | None = None
    ) -> None:
        await self.action(
            "updateAgentHeartbeat", agentId=agent_id, status=status, currentTaskId=current_task_id
        )

    async def update_runtime_status(self, status: str) -> None:
        await self.action("updateRuntimeStatus", status=status)
