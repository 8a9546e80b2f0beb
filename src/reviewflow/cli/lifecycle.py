"""Lifecycle automation CLI commands.

This module provides CLI commands for running the lifecycle rules once
(from cron or another external scheduler) or continuously.

Exit codes for ``run``:
    0: every rule match was handled (conflicts included)
    1: at least one entity failed, or the run itself could not start
"""

from __future__ import annotations

import asyncio
import signal
from datetime import datetime
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.table import Table
from rich.text import Text

from reviewflow.database.models.base import ensure_utc
from reviewflow.lifecycle.scheduler import LifecycleReport, RuleAction

app = typer.Typer(help="Lifecycle automation commands")
console = Console()

ACTION_STYLES = {
    RuleAction.planned: "cyan",
    RuleAction.applied: "green",
    RuleAction.observed: "yellow",
    RuleAction.conflict: "magenta",
    RuleAction.failed: "red",
}


def _parse_now(value: str | None) -> datetime | None:
    if value is None:
        return None
    try:
        return ensure_utc(datetime.fromisoformat(value))
    except ValueError:
        console.print(f"[red]Invalid --now timestamp:[/red] {value}")
        raise typer.Exit(code=1)


def _print_report(report: LifecycleReport) -> None:
    for outcome in report.outcomes:
        console.print(Text(outcome.describe(), style=ACTION_STYLES[outcome.action]))

    table = Table(title="Lifecycle Run" + (" (dry run)" if report.dry_run else ""))
    table.add_column("Outcome", style="cyan")
    table.add_column("Count", justify="right")
    for action, count in report.summary().items():
        table.add_row(action, str(count))
    console.print(table)

    if not report.outcomes:
        console.print("[dim]No entities matched any lifecycle rule[/dim]")


@app.command()
def run(
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Report matches without changing anything"),
    ] = False,
    now: Annotated[
        Optional[str],
        typer.Option("--now", help="Reference time (ISO 8601); defaults to the current time"),
    ] = None,
) -> None:
    """Evaluate the lifecycle rules once.

    Expired challenges are moved to review or cancelled, fully reviewed
    challenges move to judging, stale challenges are audited and old
    drafts are cancelled.
    """
    from reviewflow.main import get_app_context

    ctx = get_app_context()
    with ctx.closing_on_exit():
        reference_time = _parse_now(now)

    async def _run() -> LifecycleReport:
        try:
            return await ctx.services.scheduler.run(now=reference_time, dry_run=dry_run)
        finally:
            await ctx.aclose()

    try:
        report = asyncio.run(_run())
    except Exception as e:
        console.print(f"[red]Lifecycle run failed:[/red] {e}")
        raise typer.Exit(code=1)

    _print_report(report)

    if report.has_failures:
        console.print(f"[red]{len(report.failures)} entities failed[/red]")
        raise typer.Exit(code=1)


@app.command()
def watch(
    interval: Annotated[
        Optional[float],
        typer.Option("--interval", "-i", help="Seconds between runs (default from config)"),
    ] = None,
) -> None:
    """Run the lifecycle rules repeatedly until interrupted with Ctrl+C."""
    from reviewflow.main import get_app_context

    ctx = get_app_context()
    seconds = interval if interval is not None else ctx.config.lifecycle.interval_seconds
    console.print(f"[bold cyan]Running lifecycle rules every {seconds}s[/bold cyan]")

    async def _watch() -> None:
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)
        try:
            await ctx.services.scheduler.run_periodically(seconds, stop_event)
        finally:
            await ctx.aclose()

    asyncio.run(_watch())
    console.print("[dim]Lifecycle watch stopped[/dim]")
