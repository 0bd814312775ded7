"""Tool schemas offered to agents, gated by capability flags."""

from __future__ import annotations

from dataclasses import dataclass

from agentrelay.models.agent import BehaviorFlags


def task_status_schema(allow_done: bool) -> dict:
    statuses = ["in_progress", "review", "done", "blocked"] if allow_done else ["in_progress", "review", "blocked"]
    return {
        "type": "function",
        "function": {
            "name": "task_status",
            "description": (
                "Update the current task's status. Call this BEFORE posting your thread reply "
                "when you change status. Posting alone does not update the task."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "taskId": {"type": "string", "description": "The task ID (from the notification prompt)"},
                    "status": {"type": "string", "enum": statuses, "description": "New status for the task"},
                    "blockedReason": {
                        "type": "string",
                        "description": "Required when status is 'blocked'; reason for blocking",
                    },
                },
                "required": ["taskId", "status"],
            },
        },
    }


TASK_CREATE_SCHEMA = {
    "type": "function",
    "function": {
        "name": "task_create",
        "description": "Create a new task to capture follow-up work that should be tracked.",
        "parameters": {
            "type": "object",
            "properties": {
                "title": {"type": "string", "description": "Task title"},
                "description": {"type": "string", "description": "Optional description (Markdown)"},
                "priority": {"type": "number", "description": "Priority 1 (highest) to 5 (lowest); default 3"},
                "labels": {"type": "array", "items": {"type": "string"}},
                "status": {
                    "type": "string",
                    "enum": ["inbox", "assigned", "in_progress", "review", "done", "blocked"],
                    "description": "Initial status; default inbox. blocked requires blockedReason.",
                },
                "blockedReason": {"type": "string"},
                "dueDate": {"type": "number", "description": "Optional due date (Unix ms)"},
            },
            "required": ["title"],
        },
    },
}

DOCUMENT_UPSERT_SCHEMA = {
    "type": "function",
    "function": {
        "name": "document_upsert",
        "description": "Create or update a document. Pass documentId to update an existing one.",
        "parameters": {
            "type": "object",
            "properties": {
                "documentId": {"type": "string"},
                "taskId": {"type": "string", "description": "Optional; link the document to a task"},
                "title": {"type": "string"},
                "content": {"type": "string", "description": "Document body (Markdown)"},
                "type": {"type": "string", "enum": ["deliverable", "note", "template", "reference"]},
            },
            "required": ["title", "content", "type"],
        },
    },
}

RESPONSE_REQUEST_SCHEMA = {
    "type": "function",
    "function": {
        "name": "response_request",
        "description": "Ask assignees of a task to post an update. Orchestrator only.",
        "parameters": {
            "type": "object",
            "properties": {
                "taskId": {"type": "string"},
                "recipientSlugs": {"type": "array", "items": {"type": "string"}},
                "message": {"type": "string"},
            },
            "required": ["taskId", "recipientSlugs", "message"],
        },
    },
}


@dataclass(frozen=True)
class ToolCapabilities:
    """What an agent may do this turn, as prompt labels and as tool schemas."""

    labels: tuple[str, ...] = ()
    schemas: tuple[dict, ...] = ()
    can_mark_done: bool = False
    has_task_status: bool = False

    @property
    def has_runtime_tools(self) -> bool:
        return len(self.schemas) > 0


def get_tool_capabilities(
    flags: BehaviorFlags,
    has_task_context: bool,
    can_mark_done: bool = False,
    is_orchestrator: bool = False,
    client_tools_enabled: bool = True,
) -> ToolCapabilities:
    """Build the capability set for one agent turn.

    With client tools disabled no schemas are sent and the labels point at
    the runtime's HTTP fallback endpoints instead.
    """
    labels: list[str] = []
    schemas: list[dict] = []
    has_task_status = has_task_context and flags.can_modify_task_status

    if has_task_status:
        schemas.append(task_status_schema(allow_done=can_mark_done))
        labels.append("change task status (task_status)" if client_tools_enabled
                      else "change task status via HTTP (POST /agent/task-status)")
    if flags.can_create_tasks:
        schemas.append(TASK_CREATE_SCHEMA)
        labels.append("create tasks (task_create)" if client_tools_enabled
                      else "create tasks via HTTP (POST /agent/task-create)")
    if flags.can_create_documents:
        schemas.append(DOCUMENT_UPSERT_SCHEMA)
        labels.append("create/update documents (document_upsert)" if client_tools_enabled
                      else "create/update documents via HTTP (POST /agent/document)")
    if is_orchestrator and flags.can_mention_agents:
        schemas.append(RESPONSE_REQUEST_SCHEMA)
        labels.append("request assignee updates (response_request)" if client_tools_enabled
                      else "request assignee updates via HTTP (POST /agent/response-request)")

    return ToolCapabilities(
        labels=tuple(labels),
        schemas=tuple(schemas) if client_tools_enabled else (),
        can_mark_done=can_mark_done,
        has_task_status=has_task_status,
    )
