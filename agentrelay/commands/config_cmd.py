"""CLI handlers for config commands."""

from __future__ import annotations

import click

from agentrelay.config import DEFAULT_CONFIG_PATH, init_config, load_config


@click.group("config")
def config_group():
    """Manage configuration."""
    pass


@config_group.command("init")
def config_init():
    """Create default configuration file."""
    path = init_config()
    click.echo(f"Configuration created at: {path}")


@config_group.command("show")
def config_show():
    """Show current configuration."""
    config = load_config()
    click.echo(f"Config file: {config.config_path}")
    click.echo(f"  Account: {config.runtime.account_id or 'not set'}")
    click.echo(f"  Service token ({config.runtime.service_token_env}): "
               f"{'configured' if config.runtime.service_token else 'not set'}")
    click.echo(f"  Store: {config.store.url or 'not set'} (timeout={config.store.timeout:.0f}s)")
    click.echo(f"  Gateway: {config.gateway.url} (timeout={config.gateway.timeout:.0f}s, "
               f"client tools {'enabled' if config.gateway.client_tools_enabled else 'disabled'})")
    click.echo(f"  Delivery: every {config.delivery.interval:g}s, batch={config.delivery.batch_limit}, "
               f"backoff={config.delivery.backoff_base:g}-{config.delivery.backoff_max:g}s")
    click.echo(f"  No-response fallback posts: "
               f"{'enabled' if config.delivery.post_no_response_fallback else 'disabled'}")
    click.echo(f"  Heartbeats: {'enabled' if config.heartbeat.enabled else 'disabled'}")
    click.echo(f"  Agent sync: every {config.agent_sync.interval:g}s")
    click.echo(f"  Task status base URL: {config.runtime.task_status_base_url}")
    click.echo(f"  Server PID file: {config.server.resolved_pid_file}")


@config_group.command("set")
@click.argument("key")
@click.argument("value")
def config_set(key: str, value: str):
    """Set a configuration value.

    Modifies the TOML config file. Key uses dot notation, e.g.:
    runtime.account_id, store.url, delivery.post_no_response_fallback
    """
    import tomli_w

    path = DEFAULT_CONFIG_PATH
    if not path.exists():
        click.echo("No config file found. Run 'agentrelay config init' first.", err=True)
        return

    try:
        import tomllib
    except ImportError:
        import tomli as tomllib  # type: ignore[no-redef]

    with open(path, "rb") as f:
        data = tomllib.load(f)

    # Navigate dot-separated key
    parts = key.split(".")
    target = data
    for part in parts[:-1]:
        target = target.setdefault(part, {})

    final_key = parts[-1]
    target[final_key] = coerce_value(value)

    with open(path, "wb") as f:
        tomli_w.dump(data, f)

    click.echo(f"Set {key} = {value}")


def coerce_value(value: str):
    """Interpret a CLI string as a TOML bool, int, float or string."""
    if value.lower() in ("true", "false"):
        return value.lower() == "true"
    if value.isdigit():
        return int(value)
    try:
        return float(value)
    except ValueError:
        return value
