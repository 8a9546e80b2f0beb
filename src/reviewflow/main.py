"""Main CLI entry point for Reviewflow.

This module provides the main Typer application with sub-commands for the
lifecycle scheduler, entity inspection and manual transitions, and the web
server.

Usage:
    reviewflow lifecycle run --dry-run
    reviewflow entity show idea <idea-id>
    reviewflow entity advance challenge <challenge-id> publish
    reviewflow serve --port 8000
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console

from reviewflow.cli import entity as entity_cli
from reviewflow.cli import lifecycle as lifecycle_cli
from reviewflow.config import ReviewflowConfig, load_config
from reviewflow.container import WorkflowServices, build_services
from reviewflow.database.connection import get_engine, get_session_factory
from reviewflow.logging import setup_logging

app = typer.Typer(
    name="reviewflow",
    help="Reviewflow: review and lifecycle workflow engine",
    no_args_is_help=True,
)

# Add sub-apps
app.add_typer(lifecycle_cli.app, name="lifecycle", help="Run lifecycle automation")
app.add_typer(entity_cli.app, name="entity", help="Inspect and move entities")

console = Console()


class AppContext:
    """Application context shared across CLI commands.

    Attributes:
        config: Loaded Reviewflow configuration
        engine: Async SQLAlchemy engine
        session_factory: Factory for creating database sessions
        services: Workflow engine, aggregator, scheduler and ports
    """

    def __init__(self, config: ReviewflowConfig):
        """Initialize application context.

        Args:
            config: Reviewflow configuration
        """
        self.config = config
        self.engine = get_engine(config.database)
        self.session_factory = get_session_factory(self.engine)
        self.services: WorkflowServices = build_services(config, self.session_factory)

    async def aclose(self) -> None:
        """Dispose of the engine and adapter clients."""
        await self.services.close()
        await self.engine.dispose()

    @contextmanager
    def closing_on_exit(self) -> Iterator[None]:
        """Dispose of the context when argument handling aborts a command."""
        try:
            yield
        except typer.Exit:
            asyncio.run(self.aclose())
            raise


# Global context holder
_app_context: AppContext | None = None


def get_app_context() -> AppContext:
    """Get the shared application context.

    Returns:
        AppContext instance with config, database and workflow services

    Raises:
        RuntimeError: If context has not been initialized
    """
    if _app_context is None:
        raise RuntimeError("Application context not initialized. Call initialize_context first.")
    return _app_context


def initialize_context(config: ReviewflowConfig) -> AppContext:
    """Initialize the global application context.

    Args:
        config: Reviewflow configuration

    Returns:
        Initialized AppContext instance
    """
    global _app_context
    _app_context = AppContext(config)
    return _app_context


@app.command()
def serve(
    host: Annotated[
        Optional[str],
        typer.Option("--host", "-h", help="Host to bind to (default from config)"),
    ] = None,
    port: Annotated[
        Optional[int],
        typer.Option("--port", "-p", help="Port to bind to (default from config)"),
    ] = None,
) -> None:
    """Start the Reviewflow web server.

    Runs the FastAPI application with uvicorn for the review and
    transition endpoints.
    """
    import uvicorn

    from reviewflow.web.app import create_app

    config = get_app_context().config
    bind_host = host or config.web.host
    bind_port = port or config.web.port

    console.print("[bold cyan]Starting Reviewflow Web Server[/bold cyan]")
    console.print(f"[dim]Host:[/dim] {bind_host}")
    console.print(f"[dim]Port:[/dim] {bind_port}")
    console.print()

    uvicorn.run(
        create_app(config),
        host=bind_host,
        port=bind_port,
        log_level="info",
    )


@app.callback()
def main_callback(
    config_path: Annotated[
        Optional[Path],
        typer.Option(
            "--config",
            "-c",
            help="Path to configuration file (TOML format)",
            exists=True,
            dir_okay=False,
            readable=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Configure global options and initialize application context.

    Args:
        config_path: Optional path to TOML configuration file
        verbose: Enable debug-level logging
    """
    # Load configuration
    try:
        config = load_config(config_path)
    except Exception as e:
        console.print(f"[red]Error loading configuration:[/red] {e}")
        raise typer.Exit(code=1)

    if verbose:
        config.logging.level = "DEBUG"
    setup_logging(config.logging)

    # Initialize application context
    try:
        initialize_context(config)
    except Exception as e:
        console.print(f"[red]Error initializing application:[/red] {e}")
        raise typer.Exit(code=1)

    if verbose:
        console.print("[dim]Debug logging enabled[/dim]")


if __name__ == "__main__":
    app()
