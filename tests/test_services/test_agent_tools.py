"""Tests for agent tool execution and capability gating."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest

from agentrelay.infra.store.client import StoreError
from agentrelay.models.agent import BehaviorFlags
from agentrelay.models.gateway import ToolCall
from agentrelay.services.agent_tools import execute_agent_tool, get_tool_capabilities, get_tool_handlers
from agentrelay.services.agent_tools.context import ToolContext


@pytest.fixture
def mock_store():
    return AsyncMock()


def _ctx(store, **kwargs) -> ToolContext:
    return ToolContext(store=store, agent_id="agent-1", task_id="task-1", **kwargs)


def _call(name: str, arguments) -> ToolCall:
    if not isinstance(arguments, str):
        arguments = json.dumps(arguments)
    return ToolCall(call_id="call-1", name=name, arguments=arguments)


class TestRegistry:
    def test_handlers_registered(self):
        assert set(get_tool_handlers()) == {"task_status", "task_create", "document_upsert", "response_request"}

    @pytest.mark.asyncio
    async def test_unknown_tool(self, mock_store):
        result = await execute_agent_tool(_ctx(mock_store), _call("task_delete", {}))
        assert result == {"success": False, "error": "Unknown tool: task_delete"}

    @pytest.mark.asyncio
    async def test_invalid_json(self, mock_store):
        result = await execute_agent_tool(_ctx(mock_store), _call("task_status", "{not json"))
        assert result == {"success": False, "error": "Invalid JSON arguments"}

    @pytest.mark.asyncio
    async def test_non_object_json(self, mock_store):
        result = await execute_agent_tool(_ctx(mock_store), _call("task_status", "[1, 2]"))
        assert result["error"] == "Invalid JSON arguments"

    @pytest.mark.asyncio
    async def test_store_error_becomes_failure(self, mock_store):
        mock_store.update_task_status_from_agent.side_effect = StoreError(
            "updateTaskStatusFromAgent", "Invalid transition"
        )
        result = await execute_agent_tool(_ctx(mock_store), _call("task_status", {"status": "review"}))
        assert result == {"success": False, "error": "Invalid transition"}

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_failure(self, mock_store):
        mock_store.update_task_status_from_agent.side_effect = RuntimeError("boom")
        result = await execute_agent_tool(_ctx(mock_store), _call("task_status", {"status": "review"}))
        assert result["success"] is False
        assert "boom" in result["error"]


class TestTaskStatusTool:
    @pytest.mark.asyncio
    async def test_defaults_to_context_task(self, mock_store):
        result = await execute_agent_tool(_ctx(mock_store), _call("task_status", {"status": "in_progress"}))
        assert result == {"success": True, "taskId": "task-1"}
        mock_store.update_task_status_from_agent.assert_awaited_once_with(
            agent_id="agent-1", task_id="task-1", status="in_progress", blocked_reason=None
        )

    @pytest.mark.asyncio
    async def test_rejects_inbox(self, mock_store):
        result = await execute_agent_tool(_ctx(mock_store), _call("task_status", {"status": "inbox"}))
        assert result["success"] is False
        mock_store.update_task_status_from_agent.assert_not_called()

    @pytest.mark.asyncio
    async def test_blocked_requires_reason(self, mock_store):
        result = await execute_agent_tool(_ctx(mock_store), _call("task_status", {"status": "blocked"}))
        assert result["error"] == "blockedReason is required when status is blocked"

    @pytest.mark.asyncio
    async def test_done_refused_without_permission(self, mock_store):
        result = await execute_agent_tool(_ctx(mock_store), _call("task_status", {"status": "done"}))
        assert result == {"success": False, "error": "Not allowed to mark this task as done"}

    @pytest.mark.asyncio
    async def test_done_allowed_with_permission(self, mock_store):
        ctx = _ctx(mock_store, can_mark_done=True)
        result = await execute_agent_tool(ctx, _call("task_status", {"taskId": "task-9", "status": "done"}))
        assert result == {"success": True, "taskId": "task-9"}


class TestOtherTools:
    @pytest.mark.asyncio
    async def test_task_create(self, mock_store):
        mock_store.create_task_from_agent.return_value = "task-new"
        result = await execute_agent_tool(
            _ctx(mock_store), _call("task_create", {"title": "Write docs", "labels": ["docs"]})
        )
        assert result == {"success": True, "taskId": "task-new"}
        kwargs = mock_store.create_task_from_agent.call_args.kwargs
        assert kwargs["title"] == "Write docs"
        assert kwargs["labels"] == ["docs"]

    @pytest.mark.asyncio
    async def test_task_create_requires_title(self, mock_store):
        result = await execute_agent_tool(_ctx(mock_store), _call("task_create", {"title": "  "}))
        assert result["error"] == "title is required"

    @pytest.mark.asyncio
    async def test_document_upsert(self, mock_store):
        mock_store.create_document_from_agent.return_value = "doc-1"
        result = await execute_agent_tool(
            _ctx(mock_store),
            _call("document_upsert", {"title": "Notes", "content": "# Notes", "type": "note"}),
        )
        assert result == {"success": True, "documentId": "doc-1"}
        assert mock_store.create_document_from_agent.call_args.kwargs["taskId"] == "task-1"

    @pytest.mark.asyncio
    async def test_document_upsert_rejects_bad_type(self, mock_store):
        result = await execute_agent_tool(
            _ctx(mock_store),
            _call("document_upsert", {"title": "Notes", "content": "x", "type": "memo"}),
        )
        assert result["success"] is False

    @pytest.mark.asyncio
    async def test_response_request_orchestrator_only(self, mock_store):
        args = {"taskId": "task-1", "recipientSlugs": ["qa"], "message": "Status?"}
        result = await execute_agent_tool(_ctx(mock_store), _call("response_request", args))
        assert result["success"] is False

        mock_store.create_response_request_notifications.return_value = ["n1"]
        result = await execute_agent_tool(_ctx(mock_store, is_orchestrator=True), _call("response_request", args))
        assert result == {"success": True, "taskId": "task-1", "notificationIds": ["n1"]}

    @pytest.mark.asyncio
    async def test_response_request_requires_recipients(self, mock_store):
        args = {"taskId": "task-1", "recipientSlugs": [], "message": "Status?"}
        result = await execute_agent_tool(_ctx(mock_store, is_orchestrator=True), _call("response_request", args))
        assert result["error"] == "recipientSlugs must be a non-empty list"


class TestCapabilities:
    def _names(self, caps) -> list[str]:
        return [schema["function"]["name"] for schema in caps.schemas]

    def test_default_flags_with_task(self):
        caps = get_tool_capabilities(BehaviorFlags(), has_task_context=True)
        assert self._names(caps) == ["task_status"]
        assert caps.has_task_status

    def test_no_task_context(self):
        caps = get_tool_capabilities(BehaviorFlags(), has_task_context=False)
        assert caps.schemas == ()
        assert not caps.has_runtime_tools

    def test_done_enum_only_when_allowed(self):
        without = get_tool_capabilities(BehaviorFlags(), has_task_context=True)
        with_done = get_tool_capabilities(BehaviorFlags(), has_task_context=True, can_mark_done=True)
        enum = lambda caps: caps.schemas[0]["function"]["parameters"]["properties"]["status"]["enum"]
        assert "done" not in enum(without)
        assert "done" in enum(with_done)

    def test_all_flags_for_orchestrator(self):
        flags = BehaviorFlags(can_create_tasks=True, can_create_documents=True, can_mention_agents=True)
        caps = get_tool_capabilities(flags, has_task_context=True, is_orchestrator=True)
        assert self._names(caps) == ["task_status", "task_create", "document_upsert", "response_request"]

    def test_response_request_needs_orchestrator(self):
        flags = BehaviorFlags(can_mention_agents=True)
        caps = get_tool_capabilities(flags, has_task_context=False)
        assert caps.schemas == ()

    def test_client_tools_disabled_uses_http_labels(self):
        caps = get_tool_capabilities(BehaviorFlags(can_create_tasks=True), has_task_context=True,
                                     client_tools_enabled=False)
        assert caps.schemas == ()
        assert any("POST /agent/task-status" in label for label in caps.labels)
        assert any("POST /agent/task-create" in label for label in caps.labels)
