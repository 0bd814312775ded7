"""Agent roster sync: keeps sessions and heartbeats in line with the store."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING

from agentrelay.models.agent import AgentRecord
from agentrelay.services.session_registry import SessionRegistry

if TYPE_CHECKING:
    from agentrelay.infra.store.client import StoreClient
    from agentrelay.services.heartbeat_service import HeartbeatService

logger = logging.getLogger(__name__)


@dataclass
class SyncState:
    running: bool = False
    in_progress: bool = False
    last_sync_at: float | None = None
    last_error: str | None = None
    added_count: int = 0
    removed_count: int = 0

    def snapshot(self) -> dict:
        return asdict(self)


class AgentSyncService:
    """Periodically diffs the agent roster against local sessions.

    New agents go online without a restart; deleted agents lose their
    session and their heartbeat.
    """

    def __init__(
        self,
        store: StoreClient,
        registry: SessionRegistry,
        heartbeats: HeartbeatService | None = None,
        interval: float = 60.0,
    ) -> None:
        self._store = store
        self._registry = registry
        self._heartbeats = heartbeats
        self._interval = interval
        self._state = SyncState()
        self._task: asyncio.Task | None = None

    @property
    def state(self) -> SyncState:
        return self._state

    async def run_sync(self) -> list[AgentRecord] | None:
        """Run one reconcile pass; returns the fresh roster, or None if skipped or failed."""
        if self._state.in_progress:
            logger.debug("Agent sync already in progress, skipping")
            return None
        self._state.in_progress = True
        self._state.last_error = None
        try:
            agents = await self._store.list_agents()
            known = set(self._registry.agent_ids())
            if self._heartbeats is not None:
                known |= self._heartbeats.scheduled_agent_ids()
            fresh = {a.id for a in agents}

            removed = 0
            for agent_id in known - fresh:
                self._registry.remove(agent_id)
                if self._heartbeats is not None:
                    self._heartbeats.remove(agent_id)
                removed += 1

            added = 0
            for agent in agents:
                self._registry.register(agent.id, agent.session_key)
                if self._heartbeats is not None:
                    self._heartbeats.ensure_scheduled(agent)
                if agent.id not in known:
                    added += 1

            self._state.last_sync_at = time.time()
            self._state.added_count = added
            self._state.removed_count = removed
            if added or removed:
                logger.info("Agent sync complete: added=%d removed=%d total=%d", added, removed, len(agents))
            return agents
        except Exception as e:
            self._state.last_error = str(e)
            logger.error("Agent sync failed: %s", e)
            return None
        finally:
            self._state.in_progress = False

    async def start(self) -> None:
        if self._task is not None:
            logger.debug("Agent sync already running")
            return
        self._state.running = True
        self._task = asyncio.create_task(self._sync_loop())
        logger.info("Agent sync started (interval %.0fs)", self._interval)

    async def stop(self) -> None:
        self._state.running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Agent sync stopped")

    async def _sync_loop(self) -> None:
        while self._state.running:
            await asyncio.sleep(self._interval)
            await self.run_sync()
