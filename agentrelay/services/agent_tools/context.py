"""Tool execution context: who is calling, on which task, with which rights."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from agentrelay.infra.store.client import StoreClient


@dataclass(frozen=True)
class ToolContext:
    """Dependency bundle passed to every tool handler."""

    store: StoreClient
    agent_id: str
    task_id: str | None = None
    can_mark_done: bool = False
    is_orchestrator: bool = False
