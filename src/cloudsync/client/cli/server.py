"""Server administration commands for cloudsync CLI.

Commands:
- server create-user: Create a user and print its first token
- server issue-token: Issue another bearer token for a user
- server delete-user: Delete a user, its tokens and its cloud record
- server run: Run the sync server with uvicorn
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click

if TYPE_CHECKING:
    from cloudsync.server.database import Database

DB_PATH_OPTION_HELP = "Path to database file (default: CLOUDSYNC_DB_PATH or ./cloudsync.db)."


def _resolve_db_path(db_path: str | None) -> Path:
    return Path(db_path or os.environ.get("CLOUDSYNC_DB_PATH", "cloudsync.db"))


def _open_database(db_path: str | None, must_exist: bool = True) -> Database:
    from cloudsync.server.database import Database

    db_file = _resolve_db_path(db_path)
    if must_exist and not db_file.exists():
        click.echo(f"Error: Database not found: {db_file}", err=True)
        click.echo("Create a user first with 'cloudsync server create-user'.", err=True)
        sys.exit(1)
    return Database(db_file)


@click.group()
def server() -> None:
    """Server management commands.

    These commands are for server administrators to manage the cloudsync server.
    """


@server.command("create-user")
@click.argument("name")
@click.option("--expires-days", type=int, default=None, help="Token lifetime in days (default: never).")
@click.option("--db-path", type=click.Path(), default=None, help=DB_PATH_OPTION_HELP)
def create_user_cmd(name: str, expires_days: int | None, db_path: str | None) -> None:
    """Create a user and print its first bearer token.

    The token is only shown once. Give it to the user, who stores it with
    'cloudsync configure --token'.
    """
    db = _open_database(db_path, must_exist=False)
    try:
        if db.get_user_by_name(name) is not None:
            click.echo(f"Error: User already exists: {name}", err=True)
            sys.exit(1)
        user = db.create_user(name)
        raw_token, _token = db.create_token(user.id, expires_in_days=expires_days)
    finally:
        db.close()

    click.echo(f"Created user {name} ({user.id})")
    click.echo(f"Token: {raw_token}")


@server.command("issue-token")
@click.argument("name")
@click.option("--expires-days", type=int, default=None, help="Token lifetime in days (default: never).")
@click.option("--db-path", type=click.Path(), default=None, help=DB_PATH_OPTION_HELP)
def issue_token_cmd(name: str, expires_days: int | None, db_path: str | None) -> None:
    """Issue another bearer token for an existing user."""
    db = _open_database(db_path)
    try:
        user = db.get_user_by_name(name)
        if user is None:
            click.echo(f"Error: Unknown user: {name}", err=True)
            sys.exit(1)
        raw_token, token = db.create_token(user.id, expires_in_days=expires_days)
    finally:
        db.close()

    if token.expires_at is not None:
        click.echo(f"Token (expires {token.expires_at.isoformat()}): {raw_token}")
    else:
        click.echo(f"Token: {raw_token}")


@server.command("delete-user")
@click.argument("name")
@click.option("--db-path", type=click.Path(), default=None, help=DB_PATH_OPTION_HELP)
@click.confirmation_option(prompt="Delete the user and its cloud data?")
def delete_user_cmd(name: str, db_path: str | None) -> None:
    """Delete a user, its tokens and its cloud record.

    The record is removed from the storage backend configured through the
    CLOUDSYNC_STORAGE_* environment variables.
    """
    from cloudsync.server.app import build_storage_config
    from cloudsync.server.repository import SyncRecordRepository
    from cloudsync.server.storage import create_storage

    db = _open_database(db_path)
    try:
        user = db.get_user_by_name(name)
        if user is None:
            click.echo(f"Error: Unknown user: {name}", err=True)
            sys.exit(1)

        storage = create_storage(build_storage_config())
        if storage is not None:
            SyncRecordRepository(db, storage).delete(user.id)
        db.delete_user(user.id)
    finally:
        db.close()

    click.echo(f"Deleted user {name}")


@server.command("run")
@click.option("--host", default="127.0.0.1", show_default=True, help="Bind address.")
@click.option("--port", type=int, default=8000, show_default=True, help="Bind port.")
@click.option("--db-path", type=click.Path(), default=None, help=DB_PATH_OPTION_HELP)
def run_cmd(host: str, port: int, db_path: str | None) -> None:
    """Run the sync server."""
    import uvicorn

    if db_path is not None:
        # Read by cloudsync.server.app at import time
        os.environ["CLOUDSYNC_DB_PATH"] = db_path

    uvicorn.run("cloudsync.server.app:app_factory", factory=True, host=host, port=port)
