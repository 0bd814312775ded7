"""Configuration loading: TOML file + environment variable overlay."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # type: ignore[no-redef]


DEFAULT_CONFIG_DIR = Path.home() / ".config" / "agentrelay"
DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_DIR / "config.toml"


def _default_pid_path() -> str:
    """Return default PID file path using XDG_RUNTIME_DIR or /tmp fallback."""
    runtime = os.environ.get("XDG_RUNTIME_DIR")
    if runtime:
        return str(Path(runtime) / "agentrelay.pid")
    return f"/tmp/agentrelay-{os.getuid()}.pid"


DEFAULT_CONFIG_TOML = """\
[runtime]
account_id = ""
service_token_env = "SERVICE_TOKEN"
task_status_base_url = "http://127.0.0.1:3000"

[store]
url = ""
timeout = 30

[gateway]
url = "http://127.0.0.1:18789"
token_env = "GATEWAY_TOKEN"
timeout = 300
client_tools_enabled = true
ready_timeout = 30

[delivery]
interval = 5
backoff_base = 5
backoff_max = 300
batch_limit = 50
post_no_response_fallback = false

[heartbeat]
enabled = true
default_interval_minutes = 5

[agent_sync]
interval = 60

[server]
# pid_file defaults to XDG_RUNTIME_DIR or /tmp
"""


@dataclass
class RuntimeSection:
    account_id: str = ""
    service_token_env: str = "SERVICE_TOKEN"
    service_token: str = ""
    task_status_base_url: str = "http://127.0.0.1:3000"


@dataclass
class StoreConfig:
    url: str = ""
    timeout: float = 30.0


@dataclass
class GatewayConfig:
    url: str = "http://127.0.0.1:18789"
    token_env: str = "GATEWAY_TOKEN"
    token: str = ""
    timeout: float = 300.0
    client_tools_enabled: bool = True
    ready_timeout: float = 30.0


@dataclass
class DeliveryConfig:
    interval: float = 5.0
    backoff_base: float = 5.0
    backoff_max: float = 300.0
    batch_limit: int = 50
    post_no_response_fallback: bool = False


@dataclass
class HeartbeatConfig:
    enabled: bool = True
    default_interval_minutes: int = 5


@dataclass
class AgentSyncConfig:
    interval: float = 60.0


@dataclass
class ServerConfig:
    pid_file: str = ""

    @property
    def resolved_pid_file(self) -> str:
        return self.pid_file or _default_pid_path()


@dataclass
class RuntimeConfig:
    runtime: RuntimeSection = field(default_factory=RuntimeSection)
    store: StoreConfig = field(default_factory=StoreConfig)
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    delivery: DeliveryConfig = field(default_factory=DeliveryConfig)
    heartbeat: HeartbeatConfig = field(default_factory=HeartbeatConfig)
    agent_sync: AgentSyncConfig = field(default_factory=AgentSyncConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    config_path: Path = DEFAULT_CONFIG_PATH

    def validate(self) -> None:
        """Raise ValueError naming every required value that is missing."""
        missing = []
        if not self.runtime.account_id:
            missing.append("runtime.account_id (ACCOUNT_ID)")
        if not self.store.url:
            missing.append("store.url (STORE_URL)")
        if not self.runtime.service_token:
            missing.append(f"service token ({self.runtime.service_token_env})")
        if missing:
            raise ValueError(f"Missing required configuration: {', '.join(missing)}")
        if self.delivery.interval <= 0:
            raise ValueError("delivery.interval must be positive")


def _env_overlay(config: RuntimeConfig) -> None:
    """Override config values with environment variables where applicable."""
    if account_id := os.environ.get("ACCOUNT_ID"):
        config.runtime.account_id = account_id
    if url := os.environ.get("STORE_URL") or os.environ.get("CONVEX_URL"):
        config.store.url = url
    if url := os.environ.get("GATEWAY_URL"):
        config.gateway.url = url
    if url := os.environ.get("TASK_STATUS_BASE_URL"):
        config.runtime.task_status_base_url = url
    if interval := os.environ.get("DELIVERY_INTERVAL"):
        config.delivery.interval = float(interval)

    # Secrets are only ever read from the environment
    if config.runtime.service_token_env:
        config.runtime.service_token = os.environ.get(config.runtime.service_token_env, "")
    if config.gateway.token_env:
        config.gateway.token = os.environ.get(config.gateway.token_env, "")


def load_config(config_path: Path | None = None) -> RuntimeConfig:
    """Load configuration from TOML file with env var overlay."""
    path = config_path or DEFAULT_CONFIG_PATH

    if path.exists():
        with open(path, "rb") as f:
            raw = tomllib.load(f)
    else:
        raw = tomllib.loads(DEFAULT_CONFIG_TOML)

    runtime_raw = raw.get("runtime", {})
    store_raw = raw.get("store", {})
    gateway_raw = raw.get("gateway", {})
    delivery_raw = raw.get("delivery", {})
    heartbeat_raw = raw.get("heartbeat", {})
    sync_raw = raw.get("agent_sync", {})
    server_raw = raw.get("server", {})

    config = RuntimeConfig(
        runtime=RuntimeSection(
            account_id=runtime_raw.get("account_id", ""),
            service_token_env=runtime_raw.get("service_token_env", "SERVICE_TOKEN"),
            task_status_base_url=runtime_raw.get("task_status_base_url", "http://127.0.0.1:3000"),
        ),
        store=StoreConfig(
            url=store_raw.get("url", ""),
            timeout=float(store_raw.get("timeout", 30)),
        ),
        gateway=GatewayConfig(
            url=gateway_raw.get("url", "http://127.0.0.1:18789"),
            token_env=gateway_raw.get("token_env", "GATEWAY_TOKEN"),
            timeout=float(gateway_raw.get("timeout", 300)),
            client_tools_enabled=gateway_raw.get("client_tools_enabled", True),
            ready_timeout=float(gateway_raw.get("ready_timeout", 30)),
        ),
        delivery=DeliveryConfig(
            interval=float(delivery_raw.get("interval", 5)),
            backoff_base=float(delivery_raw.get("backoff_base", 5)),
            backoff_max=float(delivery_raw.get("backoff_max", 300)),
            batch_limit=delivery_raw.get("batch_limit", 50),
            post_no_response_fallback=delivery_raw.get("post_no_response_fallback", False),
        ),
        heartbeat=HeartbeatConfig(
            enabled=heartbeat_raw.get("enabled", True),
            default_interval_minutes=heartbeat_raw.get("default_interval_minutes", 5),
        ),
        agent_sync=AgentSyncConfig(
            interval=float(sync_raw.get("interval", 60)),
        ),
        server=ServerConfig(
            pid_file=server_raw.get("pid_file", ""),
        ),
        config_path=path,
    )

    _env_overlay(config)
    return config


def init_config(config_path: Path | None = None) -> Path:
    """Create default config file."""
    path = config_path or DEFAULT_CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(DEFAULT_CONFIG_TOML)
    return path
