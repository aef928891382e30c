"""
CLI entry point for the PeerSwap relayer.
"""

import asyncio
from pathlib import Path
from typing import Optional

import structlog
import typer

from .config import RelayerConfig
from .db import CursorDatabase
from .relayer import PeerSwapRelayer

# Configure structlog
structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ]
)

app = typer.Typer(
    name="peerswap-relayer",
    help="PeerSwap cross-chain HTLC relayer",
    add_completion=False,
)


def _build_relayer(config_path: Optional[Path]) -> PeerSwapRelayer:
    config = RelayerConfig.from_env(config_path)
    if not config.settings.relayer_private_key:
        typer.echo("Warning: RELAYER_PRIVATE_KEY not set. Running read-only; no transactions will be sent.")
    return PeerSwapRelayer(config, cursor_db=CursorDatabase(config.settings.database_url))


@app.command()
def run(
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to .env configuration file",
    ),
    no_api: bool = typer.Option(
        False,
        "--no-api",
        help="Run the pollers only, without the HTTP API",
    ),
) -> None:
    """
    Start the relayer: chain pollers, deployment sweep and HTTP API.
    """
    relayer = _build_relayer(config_path)
    settings = relayer.config.settings

    for chain in relayer.config.chains:
        typer.echo(f"Watching {chain.key} ({chain.chain_id}) factory {chain.factory_address}")

    if no_api:
        typer.echo("Running pollers only. Press Ctrl+C to stop.")
        try:
            asyncio.run(relayer.run())
        except KeyboardInterrupt:
            typer.echo("\nStopping relayer...")
            relayer.stop()
        finally:
            relayer.close()
        return

    import uvicorn

    from peerswap_api.main import create_app

    typer.echo(f"Serving API on http://{settings.host}:{settings.port}")
    try:
        uvicorn.run(
            create_app(relayer=relayer, run_relayer=True, settings=settings),
            host=settings.host,
            port=settings.port,
        )
    finally:
        relayer.close()


@app.command("check-relayer")
def check_relayer(
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to .env configuration file",
    ),
) -> None:
    """
    Compare each factory's relayer() with the configured signing address.
    """
    config = RelayerConfig.from_env(config_path)
    relayer = PeerSwapRelayer(config)
    results = asyncio.run(relayer.check_relayer_addresses())

    failed = False
    for result in results:
        if result.get("error"):
            failed = True
            typer.echo(f"✗ {result['chainKey']}: {result['error']}")
        elif result["ok"]:
            typer.echo(f"✓ {result['chainKey']}: {result['relayerAddress']}")
        else:
            failed = True
            typer.echo(
                f"✗ {result['chainKey']}: factory relayer {result['factoryRelayer']} "
                f"!= signing address {result['relayerAddress']}"
            )

    if failed:
        raise typer.Exit(code=1)


@app.command()
def version() -> None:
    """Show the relayer version."""
    from peerswap_relayer import __version__
    typer.echo(f"peerswap-relayer v{__version__}")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
