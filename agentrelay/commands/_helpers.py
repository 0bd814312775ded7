"""CLI helpers shared by command groups."""

from __future__ import annotations

from agentrelay.config import load_config


def get_pid_path() -> str:
    """Return the PID file path from config or default."""
    config = load_config()
    return config.server.resolved_pid_file


async def get_runtime_context():
    """Create and initialize a RuntimeContext. Exits on invalid configuration."""
    from agentrelay.context import RuntimeContext

    ctx = RuntimeContext()
    try:
        await ctx.initialize()
    except ValueError as e:
        raise SystemExit(f"Invalid configuration: {e}") from e
    return ctx


def read_pid(pid_path: str) -> int | None:
    """Read the PID file; None when missing or unreadable."""
    try:
        with open(pid_path) as f:
            return int(f.read().strip())
    except (FileNotFoundError, ValueError):
        return None
