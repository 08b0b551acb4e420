"""
threadsync CLI - server management and development helpers.
"""

from datetime import timedelta
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from threadsync.logging_config import setup_logging

app = typer.Typer(
    name="threadsync",
    help="threadsync - conversation state synchronization server",
    no_args_is_help=True,
)

console = Console()


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Host to bind to"),
    port: Optional[int] = typer.Option(None, help="Port to bind to"),
    reload: Optional[bool] = typer.Option(None, help="Enable auto-reload"),
) -> None:
    """
    Start the FastAPI server.

    Defaults come from the API_HOST, API_PORT and API_RELOAD settings.
    """
    import uvicorn

    from threadsync.config import settings

    host = host or settings.api_host
    port = port or settings.api_port
    reload = settings.api_reload if reload is None else reload

    console.print("[bold green]Starting threadsync API server...[/bold green]")
    console.print(f"  Host: {host}")
    console.print(f"  Port: {port}")
    console.print(f"  Reload: {reload}")
    console.print(f"\n  API docs: http://{host}:{port}/docs")

    uvicorn.run(
        "threadsync.api.app:app",
        host=host,
        port=port,
        reload=reload,
    )


@app.command("init-db")
def init_db_command() -> None:
    """Create all tables (use `alembic upgrade head` in production)."""
    from threadsync.db.connection import init_db

    setup_logging(context="cli")
    init_db()
    console.print("[green]✓ Database tables created[/green]")


@app.command()
def check() -> None:
    """Check database connectivity."""
    from threadsync.config import settings
    from threadsync.db.connection import check_connection

    setup_logging(context="cli")
    location = settings.sqlalchemy_database_url.split("@")[-1]
    console.print(f"[blue]Database:[/blue] {location}")
    if not check_connection():
        console.print("[bold red]✗ Database is unreachable[/bold red]")
        raise typer.Exit(1)
    console.print("[green]✓ Database connection OK[/green]")


@app.command()
def token(
    user_id: str = typer.Argument(..., help="User id to put in the token subject"),
    hours: Optional[int] = typer.Option(
        None, help="Lifetime in hours (default: JWT_EXPIRATION_HOURS)"
    ),
) -> None:
    """Mint a development JWT for USER_ID."""
    from threadsync.api.auth import create_access_token

    expires = timedelta(hours=hours) if hours else None
    console.print(create_access_token(user_id, expires_delta=expires), soft_wrap=True)


@app.command()
def threads(
    user_id: str = typer.Argument(..., help="Owner of the threads"),
    limit: int = typer.Option(50, help="Maximum number of threads"),
) -> None:
    """List a user's threads, most recently active first."""
    from threadsync.db.connection import db_session
    from threadsync.services.conversation import ConversationEngine, display_title

    setup_logging(context="cli")

    with db_session() as session:
        rows = ConversationEngine(session).list_threads(user_id, limit=limit)
        table = Table(title=f"Threads for {user_id}")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Title")
        table.add_column("Visibility")
        table.add_column("Branched From", style="dim")
        table.add_column("Updated", style="green")
        for thread in rows:
            table.add_row(
                thread.id,
                display_title(thread),
                thread.visibility.value,
                thread.origin_thread_id or "",
                thread.updated_at.strftime("%Y-%m-%d %H:%M"),
            )

    if not rows:
        console.print(f"[yellow]No threads found for {user_id}[/yellow]")
        return
    console.print(table)


if __name__ == "__main__":
    app()
