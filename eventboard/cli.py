"""Typer CLI for EventBoard."""

from __future__ import annotations

import json

import typer
import uvicorn
from sqlalchemy.exc import OperationalError

from .auth import hash_password
from .config import settings, settings_as_dict
from .errors import Conflict
from .events import refresh_statuses, write_back_statuses
from .seed import seed_fake_data
from .storage import init_db, reset_database, upgrade_database
from .store import SqlStore, build_store
from .utils import localnow

app = typer.Typer(help="EventBoard command-line interface")


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Show help when no subcommand is provided."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def _read_only_exit(action: str, exc: OperationalError) -> None:
    message = str(getattr(exc, "orig", exc)).lower()
    if "readonly" in message or "read-only" in message:
        typer.secho(
            f"Unable to {action} because the database is read-only. "
            f"Ensure write access to {settings.database_path}.",
            err=True,
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1)


def _open_store():
    store = build_store(settings)
    if isinstance(store, SqlStore):
        init_db()
    return store


@app.command("runserver")
def runserver(
    host: str = typer.Option(settings.app_host, "--host", help="Host to bind"),
    port: int = typer.Option(settings.app_port, "--port", help="Port to bind"),
):
    """Start the FastAPI server."""
    config = uvicorn.Config(
        "eventboard.api:app",
        host=host,
        port=port,
        reload=False,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )
    server = uvicorn.Server(config)
    typer.echo(f"Starting EventBoard on {host}:{port}")
    server.run()


@app.command("upgrade-db")
def upgrade_db(
    no_backup: bool = typer.Option(
        False,
        "--no-backup",
        help="Skip creating a .bak copy of the database before upgrading",
    ),
) -> None:
    """Upgrade the SQLite database schema if needed."""
    try:
        actions = upgrade_database(make_backup=not no_backup)
    except OperationalError as exc:
        _read_only_exit("upgrade", exc)
        raise

    typer.echo("Database upgrade complete:")
    for action in actions:
        typer.echo(f"- {action}")


@app.command("reset-db")
def reset_db(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
) -> None:
    """Drop every table and recreate an empty schema."""
    if not yes:
        typer.confirm(
            f"This deletes all data in {settings.database_path}. Continue?", abort=True
        )
    reset_database()
    typer.echo("Database reset complete.")


@app.command("create-user")
def create_user(
    username: str = typer.Argument(..., help="Login name for the new account"),
    password: str = typer.Option(
        ...,
        "--password",
        prompt=True,
        hide_input=True,
        confirmation_prompt=True,
        help="Password for local login",
    ),
    admin: bool = typer.Option(False, "--admin", help="Grant the admin role"),
    email: str | None = typer.Option(None, "--email", help="Contact email"),
) -> None:
    """Create a local account, optionally with the admin role."""
    username = username.strip()
    if not username:
        typer.secho("Username cannot be blank.", err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    if len(password) < 6:
        typer.secho("Password must be at least 6 characters.", err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    store = _open_store()
    try:
        user = store.create_user(
            username=username,
            password=hash_password(password),
            email=email,
            display_name=username,
            role="admin" if admin else "user",
        )
    except Conflict as exc:
        typer.secho(exc.message, err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"Created {user.role} account {user.username} (id {user.id}).")


@app.command("list-users")
def list_users() -> None:
    """Print every account as JSON lines."""
    store = _open_store()
    for user in store.list_users():
        typer.echo(
            json.dumps(
                {"id": user.id, "username": user.username, "role": user.role}
            )
        )


@app.command("seed-data")
def seed_data(
    events: int = typer.Option(12, "--events", min=0, help="Number of events to create"),
    max_registrations: int = typer.Option(
        4,
        "--max-registrations",
        min=0,
        help="Maximum registrations to attach to each event",
    ),
    seed: int | None = typer.Option(None, "--seed", help="Random seed for repeatable data"),
):
    """Populate the database with demo accounts and fake events."""
    stats = seed_fake_data(
        _open_store(),
        event_count=events,
        max_registrations_per_event=max_registrations,
        seed=seed,
    )
    typer.echo(
        f"Seed complete: {stats['users']} users, {stats['events']} events, "
        f"{stats['registrations']} registrations created."
    )


@app.command("check-events")
def check_events() -> None:
    """Print cached and resolved statuses, then persist the resolved ones."""
    store = _open_store()
    events = store.list_events()
    cached = {event.id: event.status for event in events}
    fresh, stale = refresh_statuses(
        events, now=localnow(), duration=settings.default_event_duration
    )
    for event in fresh:
        marker = "*" if event.id in stale else " "
        typer.echo(
            f"{marker} {event.id:>4}  {event.date.isoformat()}  {event.time:<15}  "
            f"{cached[event.id]:>8} -> {event.status:<8}  {event.title}"
        )
    changed = write_back_statuses(store, stale)
    typer.echo(f"Status refresh complete: {changed} events updated.")


@app.command("show-config")
def show_config() -> None:
    """Print the effective configuration with secrets masked."""
    typer.echo(json.dumps(settings_as_dict(settings), indent=2))


if __name__ == "__main__":
    app()
