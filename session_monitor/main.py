"""Entry point for the Claude session monitor."""

from __future__ import annotations

import argparse
import logging
import sys

import uvicorn
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from session_monitor.config import settings
from session_monitor.usage.monitor import UsageMonitor

console = Console()
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)


def run_server() -> None:
    """Start the FastAPI server."""
    console.print(Panel("Starting Claude Session Monitor", style="bold green"))
    uvicorn.run(
        "session_monitor.api.server:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )


def show_stats() -> None:
    """Build the cost cache once and print totals plus recent days."""
    monitor = UsageMonitor()
    with console.status("[bold green]Reading session logs..."):
        monitor.cost_store.refresh()
    stats = monitor.get_stats()
    tokens = stats["tokens"]

    console.print(Panel(f"Sessions in {monitor.claude_dir}", title="Usage", style="bold blue"))
    totals = Table(show_header=True)
    totals.add_column("Period")
    totals.add_column("Tokens", justify="right")
    totals.add_column("Cost", justify="right")
    for period in ("today", "week", "month", "last_month"):
        totals.add_row(
            period.replace("_", " "),
            f"{tokens[f'{period}_tokens']:,}",
            f"${tokens[f'{period}_cost']:.2f}",
        )
    console.print(totals)

    history = Table(title="Recent days", show_header=True)
    history.add_column("Date")
    history.add_column("Messages", justify="right")
    history.add_column("Output", justify="right")
    history.add_column("Cost", justify="right")
    for day in stats["daily_history"][-14:]:
        history.add_row(
            day["date"],
            str(day["messages"]),
            f"{day['output_tokens']:,}",
            f"${day['cost']:.2f}",
        )
    console.print(history)


def show_limits() -> None:
    """Print the local rate-limit estimate for the current window."""
    monitor = UsageMonitor()
    with console.status("[bold green]Reading session logs..."):
        monitor.rate_store.refresh()
    status = monitor.get_rate_limit_status()
    estimate = status["estimate"]

    console.print(Panel("Rate limit (estimated)", style="bold blue"))
    console.print(
        f"{estimate['output_tokens']:,} / {estimate['limit']:,} output tokens "
        f"([bold]{status['usage_percent']:.1f}%[/bold])"
    )
    console.print(f"[dim]{status['reset_label']}[/dim]")


def main() -> None:
    parser = argparse.ArgumentParser(description="Claude Session Monitor")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("serve", help="Start the API server")
    sub.add_parser("stats", help="Print cost totals and daily history")
    sub.add_parser("limits", help="Print the current rate-limit estimate")

    args = parser.parse_args()

    if args.command == "serve":
        run_server()
    elif args.command == "stats":
        show_stats()
    elif args.command == "limits":
        show_limits()
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
