"""RuntimeContext: wires config, clients and services together."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from agentrelay.config import RuntimeConfig, load_config
from agentrelay.infra.gateway.client import GatewayClient
from agentrelay.infra.store.client import StoreClient
from agentrelay.services.session_registry import SessionRegistry

if TYPE_CHECKING:
    from pathlib import Path

    from agentrelay.services.agent_sync_service import AgentSyncService
    from agentrelay.services.delivery_service import DeliveryService
    from agentrelay.services.heartbeat_service import HeartbeatService

logger = logging.getLogger(__name__)


class RuntimeContext:
    """Central wiring for all runtime dependencies.

    Lazily initializes services on first access. Call `initialize()` to
    validate the configuration and open the store and gateway clients.
    """

    def __init__(self, config: RuntimeConfig | None = None, config_path: Path | None = None) -> None:
        self.config = config or load_config(config_path)
        self.registry = SessionRegistry()
        self._store: StoreClient | None = None
        self._gateway: GatewayClient | None = None
        self._delivery_service: DeliveryService | None = None
        self._heartbeat_service: HeartbeatService | None = None
        self._agent_sync_service: AgentSyncService | None = None

    async def initialize(self) -> None:
        """Validate config and open the HTTP clients."""
        self.config.validate()
        self._store = StoreClient(
            url=self.config.store.url,
            account_id=self.config.runtime.account_id,
            service_token=self.config.runtime.service_token,
            timeout=self.config.store.timeout,
            default_heartbeat_interval_minutes=self.config.heartbeat.default_interval_minutes,
        )
        self._gateway = GatewayClient(
            url=self.config.gateway.url,
            registry=self.registry,
            token=self.config.gateway.token,
            timeout=self.config.gateway.timeout,
        )
        logger.info("RuntimeContext initialized for account %s", self.config.runtime.account_id)

    async def close(self) -> None:
        """Close all connections."""
        if self._gateway:
            await self._gateway.close()
        if self._store:
            await self._store.close()
        logger.info("RuntimeContext closed")

    @property
    def store(self) -> StoreClient:
        if self._store is None:
            raise RuntimeError("RuntimeContext not initialized. Call initialize() first.")
        return self._store

    @property
    def gateway(self) -> GatewayClient:
        if self._gateway is None:
            raise RuntimeError("RuntimeContext not initialized. Call initialize() first.")
        return self._gateway

    @property
    def delivery_service(self) -> DeliveryService:
        if self._delivery_service is None:
            from agentrelay.services.delivery_service import DeliveryService

            self._delivery_service = DeliveryService(
                store=self.store,
                gateway=self.gateway,
                config=self.config,
            )
        return self._delivery_service

    @property
    def heartbeat_service(self) -> HeartbeatService | None:
        if not self.config.heartbeat.enabled:
            return None
        if self._heartbeat_service is None:
            from agentrelay.services.heartbeat_service import HeartbeatService

            self._heartbeat_service = HeartbeatService(
                store=self.store,
                gateway=self.gateway,
                config=self.config,
            )
        return self._heartbeat_service

    @property
    def agent_sync_service(self) -> AgentSyncService:
        if self._agent_sync_service is None:
            from agentrelay.services.agent_sync_service import AgentSyncService

            self._agent_sync_service = AgentSyncService(
                store=self.store,
                registry=self.registry,
                heartbeats=self.heartbeat_service,
                interval=self.config.agent_sync.interval,
            )
        return self._agent_sync_service
