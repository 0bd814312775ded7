"""CLI handlers for one-off delivery commands."""

from __future__ import annotations

import asyncio

import click

from agentrelay.commands._helpers import get_runtime_context


def _run(coro):
    return asyncio.run(coro)


@click.group("deliver")
def deliver_group():
    """Run delivery by hand."""
    pass


@deliver_group.command("once")
def deliver_once():
    """Sync agents, run a single delivery cycle and print the counters."""

    async def _once():
        ctx = await get_runtime_context()
        try:
            await ctx.agent_sync_service.run_sync()
            delay = await ctx.delivery_service.run_cycle()
            click.echo(f"Next poll would run in {delay:.1f}s")
            for key, value in ctx.delivery_service.state.snapshot().items():
                click.echo(f"  {key}: {value}")
        finally:
            await ctx.close()

    _run(_once())
