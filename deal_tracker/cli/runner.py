# deal_tracker/cli/runner.py

"""Headless command runners for the price check and user actions."""

import json
import logging
import sys

from rich.console import Console
from rich.table import Table

from deal_tracker.config.settings import Settings
from deal_tracker.fetchers.page_fetcher import PageFetcher
from deal_tracker.models.product import TrackedProduct
from deal_tracker.notifications.notifier import EmailNotifier
from deal_tracker.services.price_checker import (
    BatchRunReport,
    PriceCheckRunner,
)
from deal_tracker.services.product_actions import (
    ActionResult,
    Principal,
    ProductActions,
)
from deal_tracker.storage.tracker_db import TrackerDB

logger = logging.getLogger("deal_tracker.cli")

# Stderr console for status messages so stdout stays clean for JSON
_err = Console(stderr=True)


def _print_report(report: BatchRunReport) -> None:
    """Render the batch counters as a Rich table."""
    table = Table(
        title="Price Check",
        show_lines=True,
        title_style="bold cyan",
    )
    table.add_column("Metric", style="bold")
    table.add_column("Count", justify="right")
    for key, value in report.to_dict().items():
        table.add_row(key, str(value))
    Console().print(table)

    for error in report.errors:
        _err.print(f"[red]Failed: {error}[/red]")


def _print_products(products: list[TrackedProduct]) -> None:
    """Render a Rich table of tracked products to stdout."""
    table = Table(
        title="Tracked Products",
        show_lines=True,
        title_style="bold cyan",
    )
    table.add_column("ID", style="dim", width=6)
    table.add_column("Name", max_width=50)
    table.add_column("Price", justify="right", style="green")
    table.add_column("Updated", style="magenta")
    table.add_column("URL", overflow="fold", style="dim")

    for p in products:
        table.add_row(
            str(p.id),
            p.name[:50],
            f"{p.currency} {p.current_price:,.2f}",
            p.updated_at.strftime("%Y-%m-%d %H:%M") if p.updated_at else "-",
            p.url,
        )
    Console().print(table)


def _report_result(result: ActionResult) -> int:
    if result.success:
        _err.print(f"[green]✓ {result.message}[/green]")
        return 0
    _err.print(f"[red]{result.error}[/red]")
    return 1


async def run_price_check(
    output_format: str = "table",
    db: TrackerDB | None = None,
) -> int:
    """Run one batch price check; exit 1 only if the job could not start."""
    db = db or TrackerDB()
    try:
        runner = PriceCheckRunner(
            store=db.admin(Settings.SERVICE_ROLE_KEY),
            fetcher=PageFetcher(),
            notifier=EmailNotifier(),
        )
        report = await runner.run_batch()
    except Exception as exc:
        logger.critical("Price check job failed: %s", exc, exc_info=True)
        _err.print(f"[red]Error checking prices: {exc}[/red]")
        return 1
    finally:
        db.close()

    _err.print(f"[green]✓ {report.summary_message()}[/green]")
    if output_format == "json":
        json.dump(
            {
                "success": True,
                "message": report.summary_message(),
                "results": report.to_dict(),
            },
            sys.stdout,
            indent=2,
        )
        sys.stdout.write("\n")
    else:
        _print_report(report)
    return 0


def run_serve(host: str, port: int) -> int:
    """Serve the HTTP trigger with uvicorn."""
    import uvicorn

    from deal_tracker.api.app import create_app

    uvicorn.run(create_app(), host=host, port=port)
    return 0


def run_add(user_id: str, url: str, email: str | None = None) -> int:
    """Track *url* for *user_id*."""
    db = TrackerDB()
    try:
        actions = ProductActions(db, PageFetcher())
        _err.print(f"[bold]Fetching:[/bold] {url}")
        result = actions.add_tracked_product(
            Principal(user_id=user_id, email=email), url,
        )
        if result.product is not None:
            _print_products([result.product])
        return _report_result(result)
    finally:
        db.close()


def run_delete(user_id: str, product_id: int) -> int:
    """Stop tracking one of *user_id*'s products."""
    db = TrackerDB()
    try:
        actions = ProductActions(db, PageFetcher())
        return _report_result(
            actions.delete_tracked_product(
                Principal(user_id=user_id), product_id,
            )
        )
    finally:
        db.close()


def run_list(
    user_id: str,
    output_format: str = "table",
    db: TrackerDB | None = None,
) -> int:
    """Print the products tracked by *user_id*."""
    db = db or TrackerDB()
    try:
        actions = ProductActions(db, PageFetcher())
        products = actions.get_products(Principal(user_id=user_id))
    finally:
        db.close()
    if output_format == "json":
        json.dump([p.to_dict() for p in products], sys.stdout, indent=2)
        sys.stdout.write("\n")
        return 0
    if not products:
        _err.print("[yellow]No tracked products.[/yellow]")
        return 0
    _print_products(products)
    return 0


def run_history(user_id: str, product_id: int) -> int:
    """Print the price history of one product."""
    db = TrackerDB()
    try:
        actions = ProductActions(db, PageFetcher())
        history = actions.get_price_history(
            Principal(user_id=user_id), product_id,
        )
    finally:
        db.close()
    if not history:
        _err.print("[yellow]No price history found.[/yellow]")
        return 1

    table = Table(
        title=f"Price History: product {product_id}",
        show_lines=True,
        title_style="bold cyan",
    )
    table.add_column("Checked", style="magenta")
    table.add_column("Price", justify="right", style="green")
    for entry in history:
        table.add_row(
            entry.checked_at.strftime("%Y-%m-%d %H:%M"),
            f"{entry.currency} {entry.price:,.2f}",
        )
    Console().print(table)
    return 0
