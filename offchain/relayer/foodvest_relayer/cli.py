"""
CLI entry point for the FoodVest deposit relayer.
"""

from pathlib import Path
from typing import Optional

import typer
import structlog

from .config import DepositConfig
from .errors import UpstreamError
from .service import DepositService, build_adapters, fetch_network_balances

# Configure structlog
structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ]
)

app = typer.Typer(
    name="foodvest-relayer",
    help="FoodVest USDT Deposit Relayer",
    add_completion=False,
)

ConfigOption = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to .env configuration file",
)


@app.command()
def run(
    config_path: Optional[Path] = ConfigOption,
    once: bool = typer.Option(
        False,
        "--once",
        help="Run one cycle and exit (useful for testing)",
    ),
) -> None:
    """
    Start the relayer: reconcile deposits, settle confirmed payments, expire stale intents.
    """
    config = DepositConfig.from_env(config_path)

    if not config.networks:
        typer.echo("Warning: No networks configured. Set *_WALLET_ADDRESS for at least one network.")

    service = DepositService.from_config(config)
    relayer = service.relayer

    if once:
        typer.echo("Running in single-shot mode...")
        report = relayer.run_once()
        for result in report.networks:
            if result.error:
                typer.echo(f"✗ {result.network.value}: {result.error}")
            elif result.skipped:
                typer.echo(f"- {result.network.value}: no new blocks")
            else:
                typer.echo(
                    f"✓ {result.network.value}: blocks {result.from_height}..{result.to_height}, "
                    f"{result.candidates} candidates, {len(result.confirmed)} confirmed"
                )
        typer.echo(
            f"Completed {report.completed}, failed {report.failed}, expired {report.expired}"
        )
        service.close()
    else:
        typer.echo("Running in continuous mode. Press Ctrl+C to stop.")
        try:
            relayer.run()
        except KeyboardInterrupt:
            typer.echo("\nStopping relayer...")
        finally:
            service.close()


@app.command()
def check(
    network: str = typer.Argument(..., help="Network to check (TRC20, BEP20, ERC20)"),
    address: Optional[str] = typer.Option(
        None,
        "--address",
        "-a",
        help="Address to check (defaults to the configured wallet)",
    ),
    limit: int = typer.Option(
        20,
        "--limit",
        "-n",
        help="Number of recent transfers to list",
    ),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """
    List recent incoming USDT transfers (without changing any intent).
    """
    config = DepositConfig.from_env(config_path)

    if not config.is_supported(network):
        typer.echo(f"Network not configured: {network}")
        raise typer.Exit(code=1)

    adapters = build_adapters(config)
    adapter = adapters[config.network(network).network]
    target = address or adapter.config.wallet_address

    typer.echo(f"Checking {adapter.config.name} transfers to: {target}")
    typer.echo(f"Minimum confirmations: {adapter.config.min_confirmations}")
    typer.echo("")

    try:
        transfers = adapter.list_incoming_transfers(target, limit=limit)
    except UpstreamError as e:
        typer.echo(f"Error: {e}")
        raise typer.Exit(code=1)
    finally:
        for a in adapters.values():
            a.close()

    if not transfers:
        typer.echo("No transfers found.")
        return

    typer.echo(f"Found {len(transfers)} transfers:\n")

    for transfer in transfers:
        typer.echo(f"  Hash: {transfer.hash}")
        typer.echo(f"  From: {transfer.from_address}")
        typer.echo(f"  Amount: {adapter.to_amount(transfer.raw_value)} USDT")
        typer.echo(f"  Block: {transfer.block_number}")
        typer.echo(f"  Status: {transfer.status.value}")
        typer.echo(f"  Confirmations: {transfer.confirmations}")
        typer.echo("")


@app.command()
def balances(config_path: Optional[Path] = ConfigOption) -> None:
    """Show the USDT balance of each configured wallet."""
    config = DepositConfig.from_env(config_path)
    adapters = build_adapters(config)

    try:
        for network, info in fetch_network_balances(adapters).items():
            if info["error"]:
                typer.echo(f"  {network.value}: error: {info['error']}")
            else:
                typer.echo(f"  {network.value}: {info['balance']} USDT ({info['address']})")
    finally:
        for adapter in adapters.values():
            adapter.close()


@app.command()
def version() -> None:
    """Show the relayer version."""
    from foodvest_relayer import __version__
    typer.echo(f"foodvest-relayer v{__version__}")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
