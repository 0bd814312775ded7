"""CLI handlers for server commands: start, stop, status."""

from __future__ import annotations

import asyncio
import logging
import os
import signal

import click

from agentrelay.commands._helpers import get_pid_path, get_runtime_context, read_pid

logger = logging.getLogger(__name__)


def _run(coro):
    return asyncio.run(coro)


@click.group("server")
def server_group():
    """Manage the delivery runtime."""
    pass


async def _report_status(ctx, status: str) -> None:
    try:
        await ctx.store.update_runtime_status(status)
    except Exception as e:
        logger.warning("Failed to report runtime status %s: %s", status, e)


@server_group.command("start")
@click.option("--foreground", is_flag=True, help="Run in foreground (for systemd)")
def server_start(foreground: bool):
    """Start the notification delivery runtime."""

    async def _start():
        pid_path = get_pid_path()

        # Write PID file
        with open(pid_path, "w") as f:
            f.write(str(os.getpid()))

        ctx = None
        try:
            click.echo(f"Initializing runtime (pid={os.getpid()})...")
            ctx = await get_runtime_context()
            config = ctx.config

            if await ctx.gateway.wait_until_ready(timeout=config.gateway.ready_timeout):
                click.echo(f"Gateway ready at {config.gateway.url}")
            else:
                click.echo(f"Gateway not ready after {config.gateway.ready_timeout:.0f}s; continuing", err=True)

            agents = await ctx.agent_sync_service.run_sync() or []
            click.echo(f"Registered {len(ctx.registry)} agent sessions")

            heartbeats = ctx.heartbeat_service
            if heartbeats is not None:
                heartbeats.start(agents)

            await ctx.delivery_service.start()
            await ctx.agent_sync_service.start()
            await _report_status(ctx, "online")
            click.echo("Runtime ready")

            # Wait for shutdown signal
            stop_event = asyncio.Event()

            def _handle_signal(signum, frame):
                click.echo(f"\nReceived signal {signum}, shutting down...")
                stop_event.set()

            signal.signal(signal.SIGTERM, _handle_signal)
            signal.signal(signal.SIGINT, _handle_signal)

            await stop_event.wait()

            # Graceful shutdown
            click.echo("Stopping loops...")
            await ctx.agent_sync_service.stop()
            await ctx.delivery_service.stop()
            if heartbeats is not None:
                await heartbeats.stop()
            await _report_status(ctx, "offline")

        finally:
            if ctx is not None:
                await ctx.close()
            # Clean up PID file
            try:
                os.unlink(pid_path)
            except FileNotFoundError:
                pass
            click.echo("Runtime stopped")

    if not foreground:
        click.echo("Use --foreground for direct execution, or run via systemd:")
        click.echo("  systemctl --user start agentrelay")
        click.echo("\nStarting in foreground mode...")

    _run(_start())


@server_group.command("stop")
def server_stop():
    """Stop the running runtime."""
    pid_path = get_pid_path()
    pid = read_pid(pid_path)
    if pid is None:
        click.echo("Runtime not running (no valid PID file found)")
        return

    try:
        os.kill(pid, signal.SIGTERM)
        click.echo(f"Sent SIGTERM to runtime (pid={pid})")
    except ProcessLookupError:
        click.echo("Runtime process not found (stale PID file)")
        try:
            os.unlink(pid_path)
        except FileNotFoundError:
            pass


@server_group.command("status")
def server_status():
    """Check if the runtime is running."""
    pid_path = get_pid_path()
    pid = read_pid(pid_path)
    if pid is None:
        click.echo("Runtime: not running")
        return
    try:
        os.kill(pid, 0)
        click.echo(f"Runtime: running (pid={pid})")
    except ProcessLookupError:
        click.echo("Runtime: not running")
        click.echo(f"  Stale PID file found (pid={pid})")
