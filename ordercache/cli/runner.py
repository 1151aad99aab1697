# ordercache/cli/runner.py

"""Headless CLI runner reusing the async session and orchestrator."""

import json
import logging
import sys

from rich.console import Console
from rich.table import Table

from ordercache.models.order import OrderRecord
from ordercache.models.search import SearchResult, StatusType
from ordercache.services.session import OrderSession, build_session

logger = logging.getLogger("ordercache.cli")

# Stderr console for status messages so stdout stays clean for JSON
_err = Console(stderr=True)


def parse_status_arg(text: str) -> tuple[StatusType, str]:
    """Split ``TYPE:VALUE`` (e.g. ``payment:paid``).

    Raises ``SystemExit`` on malformed input or an unknown type.
    """
    kind, sep, value = text.partition(":")
    value = value.strip().lower()
    if not sep or not value:
        _err.print(
            f"[red]Expected TYPE:VALUE, got '{text}'[/red]"
        )
        raise SystemExit(1)
    try:
        return StatusType(kind.strip().lower()), value
    except ValueError:
        valid = ", ".join(t.value for t in StatusType)
        _err.print(f"[red]Unknown status type '{kind}'[/red]")
        _err.print(f"[dim]Available: {valid}[/dim]")
        raise SystemExit(1) from None


def _orders_to_dicts(orders: list[OrderRecord]) -> list[dict[str, object]]:
    """Serialise orders to plain dicts for JSON output."""
    return [
        {
            "id": o.id,
            "number": o.number,
            "created_at": o.created_at.isoformat(),
            "status": o.status.value,
            "payment_status": o.payment_status.value,
            "total": o.total.amount,
            "currency": o.total.currency,
            "customer": o.customer.full_name,
            "email": o.customer.email,
        }
        for o in orders
    ]


def _print_table(orders: list[OrderRecord], title: str) -> None:
    """Render a Rich table of orders to stdout, newest first."""
    table = Table(
        title=title,
        show_lines=True,
        title_style="bold cyan",
    )
    table.add_column("#", style="dim", width=8)
    table.add_column("Created", style="dim")
    table.add_column("Customer", max_width=30)
    table.add_column("Email", max_width=36)
    table.add_column("Status", style="magenta")
    table.add_column("Payment")
    table.add_column("Total", justify="right", style="green")

    for o in orders:
        table.add_row(
            o.number or o.id,
            o.created_at.strftime("%Y-%m-%d %H:%M"),
            o.customer.full_name or "—",
            o.customer.email or "—",
            o.status.value,
            o.payment_status.value,
            f"{o.total.currency} {o.total.amount:,.2f}".strip(),
        )

    Console().print(table)


def _emit(result: SearchResult, output_format: str, title: str) -> int:
    """Report a search result and return an exit code."""
    for error_msg in result.errors:
        _err.print(f"[red]Error: {error_msg}[/red]")

    if not result.orders:
        _err.print("[yellow]No orders found.[/yellow]")
        return 1

    more = " (more available)" if result.has_more else ""
    _err.print(
        f"[green]✓ {result.total_found} orders"
        f" ({len(result.from_local)} local,"
        f" {len(result.from_remote)} remote)"
        f" in {result.search_time:.2f}s{more}[/green]"
    )

    if output_format == "table":
        _print_table(result.orders, title)
    else:
        json.dump(
            _orders_to_dicts(result.orders),
            sys.stdout,
            ensure_ascii=False,
            indent=2,
        )
        sys.stdout.write("\n")
    return 0


async def cli_search(
    query: str,
    output_format: str,
    session: OrderSession | None = None,
) -> int:
    """Run a headless free-text search (0=found, 1=nothing)."""
    session = session or build_session()
    try:
        _err.print(f"[bold]Searching:[/bold] {query}")
        loaded = await session.refresh()
        _err.print(f"[dim]{loaded} recent orders loaded[/dim]")
        result = await session.search.search(query)
        return _emit(result, output_format, "Search Results")
    finally:
        await session.close()


async def cli_status_search(
    status_arg: str,
    output_format: str,
    session: OrderSession | None = None,
) -> int:
    """Run a headless status-only search from ``TYPE:VALUE``."""
    status_type, value = parse_status_arg(status_arg)
    session = session or build_session()
    try:
        _err.print(
            f"[bold]Status search:[/bold] {status_type.value}={value}"
        )
        await session.refresh()
        result = await session.search.search_by_status(status_type, value)
        return _emit(
            result, output_format, f"Orders: {status_type.value} {value}"
        )
    finally:
        await session.close()


async def cli_counts(
    emails_csv: str,
    output_format: str,
    session: OrderSession | None = None,
) -> int:
    """Resolve order counts for comma-separated customer e-mails."""
    emails = [e.strip() for e in emails_csv.split(",") if e.strip()]
    if not emails:
        _err.print("[red]No e-mail addresses given.[/red]")
        return 1

    session = session or build_session()
    try:
        _err.print(
            f"[bold]Counting orders for {len(emails)} customer(s)...[/bold]"
        )
        counts = await session.counts.pre_calculate(emails)
    finally:
        await session.close()

    if output_format == "table":
        table = Table(
            title="Customer Order Counts",
            show_lines=True,
            title_style="bold cyan",
        )
        table.add_column("Email", style="bold")
        table.add_column("Orders", justify="right", style="green")
        for email, count in counts.items():
            table.add_row(email, str(count))
        Console().print(table)
    else:
        json.dump(counts, sys.stdout, indent=2)
        sys.stdout.write("\n")
    return 0


async def run_health_check(session: OrderSession | None = None) -> int:
    """Run a connectivity health check against the order service."""
    from ordercache.services.health_checker import HealthChecker

    _err.print("[bold]Running order service health check...[/bold]")
    session = session or build_session()
    try:
        r = await HealthChecker(session.gateway).check()
    finally:
        await session.close()

    table = Table(
        title="Order Service Health Check",
        show_lines=True,
        title_style="bold cyan",
    )
    table.add_column("Source", style="bold")
    table.add_column("Status", justify="center")
    table.add_column("Latency", justify="right")
    table.add_column("Notes", style="dim")

    if r.status == "ok":
        status = "[green]✅ OK[/green]"
    elif r.status == "slow":
        status = "[yellow]⚠️  SLOW[/yellow]"
    else:
        status = "[red]❌ DOWN[/red]"

    latency = f"{r.latency_ms:.0f}ms" if r.latency_ms > 0 else "—"
    table.add_row(r.source_id, status, latency, r.message)

    Console().print(table)
    return 1 if r.status == "down" else 0
