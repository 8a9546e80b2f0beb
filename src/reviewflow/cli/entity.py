"""Entity inspection and manual transition CLI commands.

This module provides CLI commands for viewing an entity's workflow state
and for applying author or staff actions to it.
"""

from __future__ import annotations

import asyncio
import json
from typing import Annotated, Optional
from uuid import UUID

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from reviewflow.database.models.entity import EntityType, coerce_stage
from reviewflow.database.queries.entity import list_entities, snapshots_for
from reviewflow.workflow.errors import (
    EntityNotFoundError,
    WorkflowConflictError,
    WorkflowValidationError,
)
from reviewflow.workflow.ports import EntityRef
from reviewflow.workflow.triggers import UserAction, UserActionType

app = typer.Typer(help="Entity workflow commands")
console = Console()


def _parse_ref(entity_type: str, entity_id: str) -> EntityRef:
    try:
        kind = EntityType(entity_type)
    except ValueError:
        choices = ", ".join(t.value for t in EntityType)
        console.print(f"[red]Invalid entity type:[/red] {entity_type} (choose from {choices})")
        raise typer.Exit(code=1)
    try:
        return EntityRef(entity_type=kind, entity_id=UUID(entity_id))
    except ValueError:
        console.print(f"[red]Invalid entity UUID:[/red] {entity_id}")
        raise typer.Exit(code=1)


@app.command()
def show(
    entity_type: Annotated[str, typer.Argument(help="idea, challenge or challenge_submission")],
    entity_id: Annotated[str, typer.Argument(help="Entity UUID")],
    format: Annotated[
        str,
        typer.Option("--format", "-f", help="Output format (table or json)"),
    ] = "table",
) -> None:
    """Show an entity's stage, legal actions and review history."""
    from reviewflow.main import get_app_context

    ctx = get_app_context()
    with ctx.closing_on_exit():
        ref = _parse_ref(entity_type, entity_id)
    services = ctx.services

    async def _show():
        try:
            snapshot = await services.engine.get_snapshot(ref)
            triggers = await services.engine.available_triggers(ref)
            reviews = await services.store.list_reviews(ref)
            summary = await services.aggregator.summarize(snapshot)
            return snapshot, triggers, reviews, summary
        finally:
            await ctx.aclose()

    try:
        snapshot, triggers, reviews, summary = asyncio.run(_show())
    except EntityNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)

    if format == "json":
        data = {
            "entity": snapshot.model_dump(mode="json"),
            "available_triggers": [t.describe() for t in triggers],
            "reviews": [r.model_dump(mode="json") for r in reviews],
            "round": summary.model_dump(mode="json") if summary else None,
        }
        console.print_json(json.dumps(data))
        return

    lines = [
        f"[bold]ID:[/bold] {snapshot.id}",
        f"[bold]Type:[/bold] {snapshot.entity_type.value}",
        f"[bold]Title:[/bold] {snapshot.title}",
        f"[bold]Stage:[/bold] {snapshot.current_stage.value}",
        f"[bold]Stage Version:[/bold] {snapshot.stage_version}",
        f"[bold]Author:[/bold] {snapshot.author_id}",
    ]
    if snapshot.deadline:
        lines.append(f"[bold]Deadline:[/bold] {snapshot.deadline.isoformat()}")
    if summary is not None:
        score = f"{summary.aggregate_score:.2f}" if summary.aggregate_score is not None else "-"
        lines.append(
            f"[bold]Round:[/bold] {summary.review_count}/{summary.quorum} reviews, "
            f"consensus {summary.consensus.value}, score {score}"
        )
    actions = ", ".join(t.describe() for t in triggers) or "none"
    lines.append(f"[bold]Available:[/bold] {actions}")
    console.print(Panel("\n".join(lines), title="Entity", border_style="cyan"))

    if reviews:
        table = Table(title="Reviews")
        table.add_column("Reviewer", style="dim")
        table.add_column("Stage")
        table.add_column("Round", justify="right")
        table.add_column("Decision")
        table.add_column("Score", justify="right")
        table.add_column("Counted")
        for review in reviews:
            table.add_row(
                str(review.reviewer_id)[:8],
                review.stage,
                str(review.stage_version) if review.stage_version is not None else "-",
                review.decision.value,
                f"{review.score:.1f}" if review.score is not None else "-",
                "yes" if review.counted else "no",
            )
        console.print(table)


@app.command("list")
def list_command(
    entity_type: Annotated[str, typer.Argument(help="idea, challenge or challenge_submission")],
    stage: Annotated[
        Optional[str],
        typer.Option("--stage", "-s", help="Filter by stage"),
    ] = None,
    limit: Annotated[int, typer.Option("--limit", "-n", help="Maximum rows")] = 50,
) -> None:
    """List entities of one type, newest first."""
    from reviewflow.main import get_app_context

    ctx = get_app_context()
    with ctx.closing_on_exit():
        try:
            kind = EntityType(entity_type)
            stage_filter = coerce_stage(kind, stage) if stage else None
        except ValueError as e:
            console.print(f"[red]Invalid filter:[/red] {e}")
            raise typer.Exit(code=1)

    async def _list():
        try:
            async with ctx.session_factory() as session:
                rows = await list_entities(session, kind, stage=stage_filter, limit=limit)
                return await snapshots_for(session, kind, rows)
        finally:
            await ctx.aclose()

    snapshots = asyncio.run(_list())
    if not snapshots:
        console.print("[yellow]No entities found[/yellow]")
        return

    table = Table(title=f"{kind.value} ({len(snapshots)})")
    table.add_column("ID", style="dim")
    table.add_column("Title", style="cyan")
    table.add_column("Stage")
    table.add_column("Version", justify="right")
    for snapshot in snapshots:
        table.add_row(
            str(snapshot.id),
            snapshot.title,
            snapshot.current_stage.value,
            str(snapshot.stage_version),
        )
    console.print(table)


@app.command()
def advance(
    entity_type: Annotated[str, typer.Argument(help="idea, challenge or challenge_submission")],
    entity_id: Annotated[str, typer.Argument(help="Entity UUID")],
    action: Annotated[str, typer.Argument(help="Action, e.g. submit, publish, force_close")],
    actor: Annotated[
        Optional[str],
        typer.Option("--actor", "-a", help="UUID of the acting user"),
    ] = None,
    expected_version: Annotated[
        Optional[int],
        typer.Option("--expected-version", help="Fail if the stage version differs"),
    ] = None,
) -> None:
    """Apply a user action to an entity."""
    from reviewflow.main import get_app_context

    ctx = get_app_context()
    with ctx.closing_on_exit():
        ref = _parse_ref(entity_type, entity_id)

        try:
            trigger = UserAction(action=UserActionType(action))
        except ValueError:
            choices = ", ".join(a.value for a in UserActionType)
            console.print(f"[red]Invalid action:[/red] {action} (choose from {choices})")
            raise typer.Exit(code=1)

        actor_id = None
        if actor:
            try:
                actor_id = UUID(actor)
            except ValueError:
                console.print(f"[red]Invalid actor UUID:[/red] {actor}")
                raise typer.Exit(code=1)

    async def _advance():
        try:
            return await ctx.services.workflow.advance(
                ref,
                trigger,
                actor_id=actor_id,
                expected_version=expected_version,
                metadata={"source": "cli"},
            )
        finally:
            await ctx.aclose()

    try:
        result = asyncio.run(_advance())
    except EntityNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)
    except WorkflowValidationError as e:
        console.print(f"[red]Transition rejected:[/red] {e}")
        raise typer.Exit(code=1)
    except WorkflowConflictError as e:
        console.print(f"[yellow]Conflict:[/yellow] {e}")
        raise typer.Exit(code=1)

    panel = Panel(
        f"[green]Stage changed[/green]\n\n"
        f"[bold]Entity:[/bold] {result.ref}\n"
        f"[bold]From:[/bold] {result.from_stage.value}\n"
        f"[bold]To:[/bold] {result.to_stage.value}\n"
        f"[bold]Stage Version:[/bold] {result.stage_version}\n"
        f"[bold]Notified:[/bold] {'yes' if result.notified else 'no'}",
        title="Transition",
        border_style="green",
    )
    console.print(panel)
