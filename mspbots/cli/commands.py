"""CLI commands for mspbots.

Top-level commands: sync (one config reconciliation), gateway (sync, then
keep the inbound connections running), identity, accounts.
"""

import asyncio
import signal
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from mspbots import __logo__, __version__
from mspbots.cli.shared.logging_utils import ensure_rotating_log_file

app = typer.Typer(
    name="mspbots",
    help=f"{__logo__} mspbots - MSPBots channel adapter",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} mspbots v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """mspbots - MSPBots channel adapter."""
    pass


@app.command()
def sync(
    api_url: str = typer.Option("", "--api-url", help="Distribution API URL; the identity is appended"),
    config_path: Path | None = typer.Option(None, "--config", "-c", help="Host config file"),
    target: Path | None = typer.Option(None, "--target", help="File to reconcile (default: host config)"),
    poll_interval_ms: int | None = typer.Option(None, "--poll-interval-ms", min=0, help="Wait between attempts"),
    max_retries: int | None = typer.Option(None, "--max-retries", min=1, help="Attempt budget (default: unbounded)"),
    no_restart: bool = typer.Option(False, "--no-restart", help="Do not restart the gateway after an update"),
):
    """Reconcile the local config with the distribution platform once."""
    from mspbots.config.loader import get_config_path, load_config
    from mspbots.config_sync.reconcile import ConfigReconciler, SyncOutcome
    from mspbots.utils.exceptions import ConfigWriteError

    ensure_rotating_log_file("sync")
    path = config_path or get_config_path()
    try:
        config = load_config(path)
    except ValueError as e:
        console.print(f"[yellow]{escape(str(e))}[/yellow]")
        from mspbots.config.schema import Config

        config = Config()

    sync_cfg = config.config_sync
    if api_url:
        sync_cfg.api_url = api_url
    if target is not None:
        sync_cfg.local_config_path = str(target)
    if poll_interval_ms is not None:
        sync_cfg.poll_interval_ms = poll_interval_ms
    if max_retries is not None:
        sync_cfg.max_retries = max_retries
    if no_restart:
        sync_cfg.restart_after_sync = False
    if not sync_cfg.api_url:
        console.print("[red]No API URL.[/red] Pass --api-url or set MSPBOTS_CONFIG_SYNC__API_URL.")
        raise typer.Exit(1)

    reconciler = ConfigReconciler.from_config(config, fallback_path=path)
    try:
        outcome = reconciler.run()
    except ConfigWriteError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        reconciler.cancel()
        raise typer.Exit(130)

    color = {SyncOutcome.UP_TO_DATE: "green", SyncOutcome.UPDATED: "cyan"}.get(outcome, "yellow")
    console.print(f"[{color}]{outcome.value}[/{color}] after {reconciler.attempts} attempt(s)")
    if outcome == SyncOutcome.EXHAUSTED_RETRIES:
        raise typer.Exit(2)


@app.command()
def gateway(
    config_path: Path | None = typer.Option(None, "--config", "-c", help="Host config file"),
    skip_sync: bool = typer.Option(False, "--skip-sync", help="Do not reconcile config before connecting"),
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging to the log file"),
):
    """Sync config, then keep one inbound connection per enabled account."""
    from mspbots.gateway import Gateway

    log_path = ensure_rotating_log_file("gateway", level="DEBUG" if verbose else "INFO")
    console.print(f"{__logo__} Starting mspbots gateway...")
    console.print(f"[dim]Logs: {log_path}[/dim]")

    gw = Gateway(config_path, skip_sync=skip_sync)

    async def _run() -> None:
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:
                pass
        await gw.run(stop_event)

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        pass
    console.print("Gateway stopped.")


@app.command()
def identity():
    """Show the machine identity used for config lookup."""
    from mspbots.infra.system_info import collect_machine_identity

    info = collect_machine_identity()
    table = Table(title="Machine identity")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for key, value in info.to_dict().items():
        table.add_row(key, str(value))
    console.print(table)
    console.print(f"Lookup key: [bold]{info.lookup_key()}[/bold]")


@app.command()
def accounts(
    config_path: Path | None = typer.Option(None, "--config", "-c", help="Host config file"),
):
    """List MSPBots accounts and whether they would connect."""
    from mspbots.channels.monitor import build_ws_url, resolve_account
    from mspbots.config.loader import load_config

    try:
        config = load_config(config_path)
    except ValueError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(1)

    table = Table(title="MSPBots accounts")
    table.add_column("Account", style="cyan")
    table.add_column("Enabled")
    table.add_column("Configured")
    table.add_column("Endpoint")
    for account_id in config.account_ids():
        account = resolve_account(config, account_id)
        table.add_row(
            account_id,
            "✓" if account.enabled else "✗",
            "✓" if account.configured else "✗",
            build_ws_url(account.rooturl, config.monitor.ws_path) if account.rooturl else "-",
        )
    console.print(table)


if __name__ == "__main__":
    app()
