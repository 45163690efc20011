"""Gatehouse CLI - Command line interface."""

from __future__ import annotations

import asyncio
import logging
import sys

import click
import structlog
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from gatehouse import __version__
from gatehouse.core.config import GatewayConfig, load_gateway_config
from gatehouse.core.exceptions import GatehouseError
from gatehouse.security.blocklist import BlocklistStore
from gatehouse.server.gateway import GatewayServer, create_gateway

console = Console()

BANNER = """
 ██████╗  █████╗ ████████╗███████╗██╗  ██╗ ██████╗ ██╗   ██╗███████╗███████╗
██╔════╝ ██╔══██╗╚══██╔══╝██╔════╝██║  ██║██╔═══██╗██║   ██║██╔════╝██╔════╝
██║  ███╗███████║   ██║   █████╗  ███████║██║   ██║██║   ██║███████╗█████╗
██║   ██║██╔══██║   ██║   ██╔══╝  ██╔══██║██║   ██║██║   ██║╚════██║██╔══╝
╚██████╔╝██║  ██║   ██║   ███████╗██║  ██║╚██████╔╝╚██████╔╝███████║███████╗
 ╚═════╝ ╚═╝  ╚═╝   ╚═╝   ╚══════╝╚═╝  ╚═╝ ╚═════╝  ╚═════╝ ╚══════╝╚══════╝
                  Policy gateway for proxied web traffic
"""


def configure_logging(level: str) -> None:
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper())),
    )


def parse_user(value: str) -> tuple[str, str]:
    """Split a ``NAME:PASSWORD`` pair."""
    name, sep, password = value.partition(":")
    if not sep or not name:
        raise click.BadParameter(f"expected NAME:PASSWORD, got {value!r}", param_hint="--user")
    return name, password


def _show_error(error: GatehouseError) -> None:
    console.print(
        Panel(
            f"[red]{error.message}[/red]",
            title=f"Error: {error.code}",
            border_style="red",
        )
    )


def build_config(
    config_file: str | None,
    host: str | None,
    port: int | None,
    blocklist: str | None,
    ban: tuple[str, ...],
    static_dir: str | None,
    engine_url: str | None,
    users: tuple[str, ...],
    session_ttl: float | None,
    metrics: bool | None,
    log_level: str | None,
) -> GatewayConfig:
    """Layer CLI flags over the file and environment configuration.

    ``--ban`` and ``--user`` extend the configured lists instead of replacing them.
    """
    config = load_gateway_config(
        config_file,
        overrides={
            "blocklist_path": blocklist,
            "static_dir": static_dir,
            "engine_url": engine_url,
            "session_ttl": session_ttl,
            "metrics_enabled": metrics,
            "log_level": log_level,
        },
    )

    updates: dict = {}
    if host is not None or port is not None:
        updates["bind"] = f"{host or config.host}:{port or config.port}"
    if ban:
        updates["banned_addresses"] = [*config.banned_addresses, *ban]
    if users:
        updates["users"] = {**config.users, **dict(parse_user(u) for u in users)}

    if not updates:
        return config
    return GatewayConfig.model_validate({**config.model_dump(), **updates})


@click.group(invoke_without_command=True)
@click.option(
    "--config", "-c",
    "config_file",
    type=click.Path(exists=True),
    help="Path to YAML or TOML config file",
)
@click.option("--host", default=None, help="Listen host (default: 0.0.0.0)")
@click.option("--port", "-p", type=int, envvar="PORT", default=None, help="Listen port (default: 8080)")
@click.option("--blocklist", "-b", default=None, help="Path to the JSON blocklist file")
@click.option(
    "--ban",
    multiple=True,
    help="Refuse an IP/CIDR (can repeat). Example: --ban 203.0.113.42",
)
@click.option("--static-dir", default=None, help="Directory with the site pages")
@click.option("--engine-url", default=None, help="Base URL of the tunneling engine")
@click.option(
    "--user",
    "users",
    multiple=True,
    help="Basic auth credentials as NAME:PASSWORD (can repeat)",
)
@click.option(
    "--session-ttl",
    type=float,
    default=None,
    help="Seconds before an idle session binding lapses (default: never)",
)
@click.option("--metrics/--no-metrics", default=None, help="Expose Prometheus metrics")
@click.option(
    "--log-level",
    "-l",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default=None,
    help="Log level (default: info)",
)
@click.version_option(__version__, prog_name="gatehouse")
@click.pass_context
def main(
    ctx: click.Context,
    config_file: str | None,
    host: str | None,
    port: int | None,
    blocklist: str | None,
    ban: tuple[str, ...],
    static_dir: str | None,
    engine_url: str | None,
    users: tuple[str, ...],
    session_ttl: float | None,
    metrics: bool | None,
    log_level: str | None,
):
    """Gatehouse - Policy gateway for proxied web traffic.

    Examples:

        gatehouse --port 8080

        gatehouse --blocklist blocklist.json --ban 203.0.113.0/24

        gatehouse --engine-url http://127.0.0.1:8081 --user alice:secret

    Use 'gatehouse COMMAND --help' for more info on specific commands.
    """
    if ctx.invoked_subcommand is not None:
        return

    try:
        config = build_config(
            config_file, host, port, blocklist, ban, static_dir,
            engine_url, users, session_ttl, metrics, log_level,
        )
    except GatehouseError as e:
        _show_error(e)
        sys.exit(1)

    configure_logging(config.log_level)
    console.print(BANNER, style="cyan")

    try:
        server = create_gateway(config)
    except GatehouseError as e:
        _show_error(e)
        sys.exit(1)

    console.print(f"Listening on {config.host}:{config.port}", style="yellow")
    console.print(f"Blocklist: {config.blocklist_path} ({len(server.blocklist)} entries)", style="dim")
    console.print(f"Banned addresses: {len(server.banned)}", style="dim")
    console.print(f"Asset mirrors: {', '.join(server.assets.mirrors.prefixes) or 'none'}", style="dim")
    if config.engine_url:
        console.print(f"Tunnel engine: {config.engine_url} at {config.engine_mount}", style="dim")
    else:
        console.print("Tunnel engine: disabled (set --engine-url to enable)", style="dim")
    if server.authenticator is not None:
        console.print(f"Basic auth users: {', '.join(server.authenticator.usernames)}", style="green")
    if config.session_ttl:
        console.print(f"Session bindings lapse after {config.session_ttl}s idle", style="dim")
    if config.metrics_enabled:
        console.print("Metrics: enabled at /_gatehouse/metrics", style="green")

    asyncio.run(run_server(server))


async def run_server(server: GatewayServer) -> None:
    """Run the gateway until interrupted."""
    try:
        await server.start()
        console.print("Gateway started, press Ctrl+C to stop", style="green")

        await asyncio.Event().wait()
    except (KeyboardInterrupt, asyncio.CancelledError):
        console.print("\nShutting down...", style="yellow")
    finally:
        await server.stop()


@main.command("check-blocklist")
@click.argument("path", type=click.Path())
@click.option("--url", "-u", "urls", multiple=True, help="Test a URL against the blocklist (can repeat)")
@click.option("--show", is_flag=True, help="List every entry")
def check_blocklist(path: str, urls: tuple[str, ...], show: bool):
    """Validate a blocklist file and optionally test URLs against it.

    Exits 1 if the file is missing or malformed.

    Examples:

        gatehouse check-blocklist blocklist.json

        gatehouse check-blocklist blocklist.json -u https://example.com/page
    """
    store = BlocklistStore(path)
    try:
        count = store.load(missing_ok=False)
    except GatehouseError as e:
        _show_error(e)
        sys.exit(1)

    console.print(f"[green]{path}: {count} entries OK[/green]")

    if show and count:
        table = Table(title="Blocklist")
        table.add_column("#", justify="right", style="dim")
        table.add_column("Entry", style="cyan")
        for index, entry in enumerate(store.entries, 1):
            table.add_row(str(index), entry)
        console.print(table)

    for url in urls:
        entry = store.match(url)
        if entry is None:
            console.print(f"[green]allowed[/green] {url}")
        else:
            console.print(f"[red]blocked[/red] {url} (matches {entry!r})")


if __name__ == "__main__":
    main()
