"""In-memory registry of agent gateway sessions."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionEntry:
    session_key: str
    agent_id: str
    last_message_at: float | None = None


class SessionRegistry:
    """Dual index of sessions: by session key and by agent id.

    At most one entry exists per agent. Every mutation replaces whole
    entries in both maps.
    """

    def __init__(self) -> None:
        self._by_key: dict[str, SessionEntry] = {}
        self._by_agent: dict[str, SessionEntry] = {}

    def register(self, agent_id: str, session_key: str) -> SessionEntry:
        """Register (or re-register) an agent's session. Idempotent."""
        if not agent_id or not session_key:
            raise ValueError("agent_id and session_key are required")
        previous = self._by_agent.get(agent_id)
        if previous is not None and previous.session_key == session_key:
            return previous
        if previous is not None:
            self._by_key.pop(previous.session_key, None)
        displaced = self._by_key.get(session_key)
        if displaced is not None and displaced.agent_id != agent_id:
            self._by_agent.pop(displaced.agent_id, None)
        entry = SessionEntry(session_key=session_key, agent_id=agent_id)
        self._by_key[session_key] = entry
        self._by_agent[agent_id] = entry
        logger.debug("Registered session %s for agent %s", session_key, agent_id)
        return entry

    def remove(self, agent_id: str) -> SessionEntry | None:
        entry = self._by_agent.pop(agent_id, None)
        if entry is not None:
            self._by_key.pop(entry.session_key, None)
            logger.debug("Removed session %s", entry.session_key)
        return entry

    def get_by_key(self, session_key: str) -> SessionEntry | None:
        return self._by_key.get(session_key)

    def get_by_agent(self, agent_id: str) -> SessionEntry | None:
        return self._by_agent.get(agent_id)

    def touch(self, session_key: str, now: float | None = None) -> None:
        """Record that a message was just sent to this session."""
        entry = self._by_key.get(session_key)
        if entry is None:
            return
        updated = SessionEntry(
            session_key=entry.session_key,
            agent_id=entry.agent_id,
            last_message_at=time.time() if now is None else now,
        )
        self._by_key[session_key] = updated
        self._by_agent[entry.agent_id] = updated

    def agent_ids(self) -> set[str]:
        return set(self._by_agent)

    def clear(self) -> None:
        self._by_key.clear()
        self._by_agent.clear()

    def __len__(self) -> int:
        return len(self._by_agent)

    def __contains__(self, session_key: object) -> bool:
        return session_key in self._by_key
