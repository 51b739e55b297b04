#!/usr/bin/env python3
"""
Marketplace CLI Tool

Commands for checking credentials, browsing the catalog and running syncs.

Usage:
    market auth test --bearer
    market products list --page 1 --min-qty 1 --in-stock
    market products get 10000004215007
    market products fetch-all --max-pages 5
    market sync delta --since 2d
    market prices simulate 10000004215007 19.99
    market webhook serve --port 8000
"""

import asyncio
import os
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Optional

import typer
from dateutil import parser as date_parser
from rich.console import Console
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn
from rich.table import Table

from marketplace_connector import (
    CheckpointStore,
    ConnectorConfig,
    MarketplaceClient,
    MarketplaceError,
    ProductQuery,
    __version__,
)
from marketplace_connector.catalog_types import EndpointClass
from marketplace_connector.delta_sync import format_api_timestamp
from marketplace_connector.log import configure_logging

CLI_ROOT = Path(__file__).parent
SYNC_STREAM = "products"

console = Console()

app = typer.Typer(
    name="market",
    help="Marketplace CLI - Catalog sync and order tooling",
    no_args_is_help=True,
)


def version_callback(value: bool):
    """Show version and exit."""
    if value:
        console.print(f"[bold cyan]Marketplace CLI[/bold cyan] version [green]{__version__}[/green]")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    )
):
    """Marketplace CLI - Catalog sync and order tooling."""
    pass


# ============================================================================
# Helper Functions
# ============================================================================

def _load_config() -> ConnectorConfig:
    """Load .env (if present) and build configuration from the environment."""
    from dotenv import load_dotenv

    env_path = CLI_ROOT / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    try:
        config = ConnectorConfig.from_env()
    except MarketplaceError as e:
        console.print(f"[red]❌ Configuration error: {e.message}[/red]")
        console.print("   Set [cyan]MARKETPLACE_CLIENT_ID[/cyan] and [cyan]MARKETPLACE_CLIENT_SECRET[/cyan] (or use a .env file)")
        raise typer.Exit(1)

    configure_logging(config.logging.level, mask_secrets=config.logging.mask_secrets)
    return config


def _build_client(config: ConnectorConfig) -> MarketplaceClient:
    return MarketplaceClient(config)


def _run(coro):
    """Run a coroutine, turning connector errors into a clean exit."""
    try:
        return asyncio.run(coro)
    except MarketplaceError as e:
        console.print(f"[red]❌ {e.kind.value}: {e.message}[/red]")
        if e.retry_after:
            console.print(f"   [dim]Retry after {e.retry_after:.0f}s[/dim]")
        raise typer.Exit(1)


def _parse_since(value: str) -> datetime:
    """Parse '2d', '12h', '1w' or a date/datetime into an aware UTC datetime."""
    text = value.strip().lower()
    units = {"h": "hours", "d": "days", "w": "weeks"}
    if text[-1:] in units and text[:-1].isdigit():
        return datetime.now(UTC) - timedelta(**{units[text[-1]]: int(text[:-1])})

    try:
        parsed = date_parser.parse(value)
    except (ValueError, OverflowError) as e:
        raise typer.BadParameter(f"Cannot parse --since value: {value}") from e
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _products_table(title: str, products) -> Table:
    table = Table(title=title)
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Price", justify="right")
    table.add_column("Qty", justify="right")
    table.add_column("Updated", style="dim")
    for product in products:
        table.add_row(
            product.id,
            product.name,
            f"{product.price:.2f} {product.currency}",
            str(product.qty),
            product.updated_at or "-",
        )
    return table


# ============================================================================
# Auth Commands
# ============================================================================

auth_app = typer.Typer(help="Credential checks")
app.add_typer(auth_app, name="auth")


@auth_app.command("test")
def auth_test(
    bearer: bool = typer.Option(False, "--bearer", help="Also fetch a bearer token from /token"),
):
    """
    Test authentication.

    Example:
        market auth test
        market auth test --bearer
    """
    config = _load_config()
    endpoint_class = EndpointClass.BEARER if bearer else EndpointClass.SIGNED

    table = Table(title="Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for key, value in config.summary().items():
        table.add_row(key, value)
    console.print(table)
    console.print()

    async def _test() -> bool:
        async with _build_client(config) as client:
            return await client.test_connection(endpoint_class)

    console.print(f"🔐 Testing {endpoint_class.value} authentication...")
    if _run(_test()):
        console.print("[green]✓ Authentication OK[/green]")
    else:
        console.print("[red]❌ Authentication failed[/red]")
        raise typer.Exit(1)


# ============================================================================
# Product Commands
# ============================================================================

products_app = typer.Typer(help="Catalog browsing")
app.add_typer(products_app, name="products")


@products_app.command("list")
def products_list(
    page: int = typer.Option(1, "--page", "-p", help="Page number"),
    min_qty: Optional[int] = typer.Option(None, "--min-qty", help="Minimum stock"),
    in_stock: bool = typer.Option(False, "--in-stock", help="Only products in stock"),
):
    """
    List one page of products.

    Example:
        market products list --page 2 --min-qty 5
    """
    config = _load_config()
    query = ProductQuery(
        page=page,
        min_qty=min_qty,
        include_out_of_stock=False if in_stock else None,
    )

    async def _list():
        async with _build_client(config) as client:
            return await client.products.list(query)

    result = _run(_list())
    console.print(_products_table(f"Products (page {result.page}, {result.total} total)", result.docs))


@products_app.command("get")
def products_get(
    product_id: str = typer.Argument(..., help="Product ID"),
):
    """Show a single product."""
    config = _load_config()

    async def _get():
        async with _build_client(config) as client:
            return await client.products.get(product_id)

    product = _run(_get())
    console.print(_products_table(f"Product {product.id}", [product]))


@products_app.command("fetch-all")
def products_fetch_all(
    max_pages: int = typer.Option(0, "--max-pages", "-n", help="Page limit (0 = unlimited)"),
):
    """
    Fetch the complete catalog with progress.

    Example:
        market products fetch-all --max-pages 10
    """
    config = _load_config()

    async def _fetch():
        async with _build_client(config) as client:
            with Progress(
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TaskProgressColumn(),
                console=console,
            ) as progress:
                task = progress.add_task("📥 Fetching products", total=None)

                def on_progress(page: int, total: int, accumulated: int) -> None:
                    progress.update(task, total=total, completed=accumulated,
                                    description=f"📥 Page {page}")

                return await client.product_fetcher.fetch_with_filters(
                    None, max_pages=max_pages, on_progress=on_progress
                )

    result = _run(_fetch())
    console.print()
    console.print(f"[green]✓ Fetched {result.success_count} products[/green] in {result.duration:.1f}s")
    if result.failure_count:
        console.print(f"[yellow]⚠️  {result.failure_count} pages failed: {result.failed_indices}[/yellow]")


# ============================================================================
# Sync Commands
# ============================================================================

sync_app = typer.Typer(help="Incremental catalog sync")
app.add_typer(sync_app, name="sync")


@sync_app.command("delta")
def sync_delta(
    since: Optional[str] = typer.Option(None, "--since", "-s", help="Override checkpoint (e.g., 2d, 12h, 2024-01-01)"),
    local: bool = typer.Option(False, "--local", help="Keep checkpoints in memory instead of DynamoDB"),
):
    """
    Fetch products changed since the last checkpoint and advance it.

    Example:
        market sync delta
        market sync delta --since 2d
    """
    config = _load_config()
    store = CheckpointStore(
        table_name=os.getenv("DYNAMODB_TABLE"),
        local_mode=True if local else None,
    )

    try:
        checkpoint = _parse_since(since) if since else store.get(SYNC_STREAM)
    except MarketplaceError as e:
        console.print(f"[red]❌ {e.message}[/red]")
        raise typer.Exit(1)

    async def _sync():
        async with _build_client(config) as client:
            return await client.delta_sync.sync(checkpoint)

    result = _run(_sync())

    console.print(f"🔄 Changes since [cyan]{format_api_timestamp(result.since)}[/cyan]")
    console.print(f"   New:       [green]{len(result.new)}[/green]")
    console.print(f"   Updated:   [yellow]{len(result.updated)}[/yellow]")
    console.print(f"   Unchanged: [dim]{len(result.unchanged)}[/dim]")
    if result.failures:
        console.print(f"[yellow]⚠️  {len(result.failures)} pages failed; checkpoint not advanced[/yellow]")
    elif result.truncated:
        console.print("[yellow]⚠️  Page limit reached before the end of the listing; checkpoint not advanced[/yellow]")

    try:
        saved = store.advance(SYNC_STREAM, result.checkpoint, records_synced=result.total_fetched)
    except MarketplaceError as e:
        console.print(f"[red]❌ Could not save checkpoint: {e.message}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✓ Checkpoint:[/green] {saved.last_sync_ts}")


# ============================================================================
# Price Commands
# ============================================================================

prices_app = typer.Typer(help="Price simulations")
app.add_typer(prices_app, name="prices")


@prices_app.command("simulate")
def prices_simulate(
    product_id: str = typer.Argument(..., help="Product ID"),
    price: float = typer.Argument(..., help="Proposed price"),
    country: Optional[str] = typer.Option(None, "--country", "-c", help="Buyer country code"),
):
    """Simulate income for a proposed price."""
    config = _load_config()

    async def _simulate():
        async with _build_client(config) as client:
            return await client.prices.simulate(product_id, price, country)

    simulation = _run(_simulate())
    table = Table(title=f"Price simulation for {product_id}")
    table.add_column("Price", justify="right")
    table.add_column("Final price", justify="right")
    table.add_column("Income", justify="right")
    table.add_row(
        f"{price:.2f}",
        "-" if simulation.final_price is None else f"{simulation.final_price:.2f}",
        "-" if simulation.income is None else f"{simulation.income:.2f}",
    )
    console.print(table)


# ============================================================================
# Webhook Commands
# ============================================================================

webhook_app = typer.Typer(help="Webhook receiver")
app.add_typer(webhook_app, name="webhook")


@webhook_app.command("serve")
def webhook_serve(
    port: int = typer.Option(8000, "--port", "-p", help="Port to listen on"),
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind"),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on code changes"),
):
    """
    Run the webhook receiver.

    Example:
        market webhook serve --port 8000
    """
    import uvicorn

    from dotenv import load_dotenv

    env_path = CLI_ROOT / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    if not os.getenv("MARKETPLACE_WEBHOOK_SECRET"):
        console.print("[red]❌ MARKETPLACE_WEBHOOK_SECRET is not set[/red]")
        raise typer.Exit(1)

    console.print(f"🚀 Webhook receiver on [cyan]http://{host}:{port}/v1/webhooks/orders[/cyan]")
    console.print("[dim]Press Ctrl+C to stop[/dim]")
    uvicorn.run("server.webhook_api:app", host=host, port=port, reload=reload)


@app.command()
def version():
    """Show version information."""
    console.print("[bold]Marketplace CLI[/bold]")
    console.print(f"Version: [cyan]{__version__}[/cyan]")


# ============================================================================
# Main Entry Point
# ============================================================================

if __name__ == "__main__":
    app()
