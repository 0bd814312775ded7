"""Tests for AgentSyncService roster reconciliation."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from agentrelay.models.agent import AgentRecord
from agentrelay.services.agent_sync_service import AgentSyncService
from agentrelay.services.session_registry import SessionRegistry


def _agent(agent_id: str, interval: int = 5) -> AgentRecord:
    return AgentRecord(id=agent_id, session_key=f"agent:{agent_id}:acc", slug=agent_id,
                       heartbeat_interval_minutes=interval)


@pytest.fixture
def mock_store():
    return AsyncMock()


@pytest.fixture
def mock_heartbeats():
    heartbeats = MagicMock()
    heartbeats.scheduled_agent_ids.return_value = set()
    return heartbeats


class TestRunSync:
    @pytest.mark.asyncio
    async def test_registers_new_agents(self, mock_store, mock_heartbeats):
        mock_store.list_agents.return_value = [_agent("a1"), _agent("a2")]
        registry = SessionRegistry()
        service = AgentSyncService(mock_store, registry, heartbeats=mock_heartbeats)

        agents = await service.run_sync()
        assert [a.id for a in agents] == ["a1", "a2"]
        assert "agent:a1:acc" in registry
        assert registry.agent_ids() == {"a1", "a2"}
        assert mock_heartbeats.ensure_scheduled.call_count == 2
        assert service.state.added_count == 2
        assert service.state.removed_count == 0

    @pytest.mark.asyncio
    async def test_removes_deleted_agents(self, mock_store, mock_heartbeats):
        registry = SessionRegistry()
        registry.register("a1", "agent:a1:acc")
        registry.register("gone", "agent:gone:acc")
        mock_heartbeats.scheduled_agent_ids.return_value = {"a1", "gone"}
        mock_store.list_agents.return_value = [_agent("a1")]
        service = AgentSyncService(mock_store, registry, heartbeats=mock_heartbeats)

        await service.run_sync()
        assert registry.agent_ids() == {"a1"}
        assert "agent:gone:acc" not in registry
        mock_heartbeats.remove.assert_called_once_with("gone")
        assert service.state.added_count == 0
        assert service.state.removed_count == 1

    @pytest.mark.asyncio
    async def test_interval_changes_reach_scheduler(self, mock_store, mock_heartbeats):
        registry = SessionRegistry()
        mock_store.list_agents.return_value = [_agent("a1", interval=15)]
        service = AgentSyncService(mock_store, registry, heartbeats=mock_heartbeats)

        await service.run_sync()
        scheduled = mock_heartbeats.ensure_scheduled.call_args.args[0]
        assert scheduled.heartbeat_interval_minutes == 15

    @pytest.mark.asyncio
    async def test_failure_is_recorded(self, mock_store):
        mock_store.list_agents.side_effect = RuntimeError("store down")
        service = AgentSyncService(mock_store, SessionRegistry())

        assert await service.run_sync() is None
        assert service.state.last_error == "store down"
        assert not service.state.in_progress

    @pytest.mark.asyncio
    async def test_overlapping_pass_is_skipped(self, mock_store):
        release = asyncio.Event()

        async def slow_list_agents():
            await release.wait()
            return [_agent("a1")]

        mock_store.list_agents.side_effect = slow_list_agents
        service = AgentSyncService(mock_store, SessionRegistry())

        first = asyncio.create_task(service.run_sync())
        await asyncio.sleep(0)
        assert await service.run_sync() is None
        release.set()
        assert [a.id for a in await first] == ["a1"]
        assert mock_store.list_agents.await_count == 1

    @pytest.mark.asyncio
    async def test_without_heartbeats(self, mock_store):
        registry = SessionRegistry()
        mock_store.list_agents.return_value = [_agent("a1")]
        service = AgentSyncService(mock_store, registry)
        await service.run_sync()
        assert registry.agent_ids() == {"a1"}


class TestLoop:
    @pytest.mark.asyncio
    async def test_start_stop(self, mock_store):
        service = AgentSyncService(mock_store, SessionRegistry(), interval=60)
        await service.start()
        assert service.state.running
        await service.stop()
        assert not service.state.running
        mock_store.list_agents.assert_not_called()
