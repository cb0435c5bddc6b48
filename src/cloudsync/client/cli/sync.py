"""Sync commands for cloudsync CLI.

Commands:
- configure: Store server URL and credential
- pull: Download the cloud copy
- push: Upload a local JSON document (conflict-checked)
- force-push: Overwrite the cloud copy with a local JSON document
- status: Show local and server sync status
- flush: Upload the payload queued while offline
"""

from __future__ import annotations

import json
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import click

from cloudsync.client.api import APIError, HTTPClient
from cloudsync.client.cli.config import (
    get_server_config,
    get_state_db,
    load_config,
    save_config,
)
from cloudsync.client.connectivity import wait_for_network
from cloudsync.client.state import LocalSyncState
from cloudsync.client.sync import RESOLVE_CLOUD, RESOLVE_LOCAL, SyncClient
from cloudsync.client.types import (
    Accepted,
    Conflict,
    Failed,
    Queued,
    Skipped,
    UploadResult,
)


@contextmanager
def open_sync_client(probe: bool = True) -> Iterator[tuple[SyncClient, HTTPClient]]:
    """Build a SyncClient from the stored configuration.

    Args:
        probe: Check server reachability to set the initial connectivity.
    """
    server_config = get_server_config()
    if server_config is None:
        click.echo("Error: No server configured. Run 'cloudsync configure' first.", err=True)
        sys.exit(1)

    http = HTTPClient(server_config)
    state = LocalSyncState(get_state_db())
    try:
        online = http.health_check() if probe else True
        client = SyncClient(http, state, online=online)
        try:
            yield client, http
        finally:
            client.close()
    finally:
        state.close()
        http.close()


def _read_payload(path: Path) -> tuple[Any, datetime]:
    """Load a JSON document and its modification time."""
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        click.echo(f"Error: {path} is not valid JSON: {e}", err=True)
        sys.exit(1)
    modified_at = datetime.fromtimestamp(path.stat().st_mtime, UTC)
    return payload, modified_at


def _write_payload(path: Path, payload: Any) -> None:
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def _report(result: UploadResult) -> None:
    """Print an upload outcome; exit non-zero on failure."""
    if isinstance(result, Accepted):
        click.echo(f"Synced (lastSync {result.last_sync.isoformat()})")
    elif isinstance(result, Queued):
        click.echo("Offline: payload queued, run 'cloudsync flush' once back online.")
    elif isinstance(result, Skipped):
        click.echo(f"Error: {result.reason}. Run 'cloudsync configure --token ...'.", err=True)
        sys.exit(1)
    elif isinstance(result, Failed):
        suffix = " (queued for retry)" if result.queued else ""
        click.echo(f"Error: sync failed: {result.message}{suffix}", err=True)
        sys.exit(1)


def _resolve_interactively(client: SyncClient, result: Conflict, target: Path) -> None:
    """Ask which copy to keep and apply the choice."""
    snapshot = result.snapshot
    cloud_time = snapshot.cloud_timestamp.isoformat() if snapshot.cloud_timestamp else "unknown"
    click.echo(f"Sync conflict: the cloud copy ({cloud_time}) is newer than {target}.")
    choice = click.prompt(
        "Which version do you want to keep?",
        type=click.Choice([RESOLVE_CLOUD, RESOLVE_LOCAL]),
    )
    resolution = client.resolve_conflict(choice)
    if resolution.failure is not None:
        _report(resolution.failure)
        return
    if choice == RESOLVE_CLOUD:
        _write_payload(target, resolution.adopted_payload)
        click.echo(f"Cloud copy written to {target}")
    else:
        click.echo("Local data synced to cloud")


@click.command()
@click.option("--server", "server_url", default=None, help="Server URL (e.g., http://localhost:8000).")
@click.option("--token", default=None, help="Bearer credential issued by the server admin.")
@click.option("--timeout", type=float, default=None, help="Request timeout in seconds.")
def configure(server_url: str | None, token: str | None, timeout: float | None) -> None:
    """Store the server URL and credential used by other commands."""
    config = load_config()
    if server_url is not None:
        config["server_url"] = server_url.rstrip("/")
    if token is not None:
        config["token"] = token
    if timeout is not None:
        config["timeout"] = str(timeout)
    if not config.get("server_url"):
        click.echo("Error: --server is required on first configuration.", err=True)
        sys.exit(1)
    save_config(config)
    click.echo(f"Configured server: {config['server_url']}")


@click.command()
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write the cloud copy to this file instead of stdout.",
)
def pull(output: Path | None) -> None:
    """Download the cloud copy."""
    with open_sync_client(probe=False) as (client, _http):
        result = client.download()
        if result is None:
            click.echo("Error: download failed.", err=True)
            sys.exit(1)
        if result.data is None:
            click.echo("No cloud data found")
            return
        if output is None:
            click.echo(json.dumps(result.data, indent=2))
        else:
            _write_payload(output, result.data)
            click.echo(f"Cloud copy written to {output}")


@click.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def push(path: Path) -> None:
    """Upload a JSON document unless the cloud copy is newer."""
    payload, modified_at = _read_payload(path)
    with open_sync_client() as (client, _http):
        result = client.upload(payload, modified_at=modified_at)
        if isinstance(result, Conflict):
            _resolve_interactively(client, result, path)
            return
        _report(result)


@click.command("force-push")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.confirmation_option(prompt="Overwrite the cloud copy?")
def force_push(path: Path) -> None:
    """Overwrite the cloud copy with a JSON document."""
    payload, _modified_at = _read_payload(path)
    with open_sync_client(probe=False) as (client, http):
        try:
            last_sync = http.force_push(payload)
        except APIError as e:
            click.echo(f"Error: force push failed: {e}", err=True)
            sys.exit(1)
        client.state.set_last_sync(last_sync)
        click.echo(f"Data force synced to cloud (lastSync {last_sync.isoformat()})")


@click.command()
def status() -> None:
    """Show local and server sync status."""
    with open_sync_client() as (client, http):
        last_sync = client.last_sync.isoformat() if client.last_sync else "never"
        pending = client.state.get_pending()
        click.echo(f"Connectivity: {'online' if client.is_online else 'offline'}")
        click.echo(f"Last sync:    {last_sync}")
        if pending is not None:
            click.echo(f"Pending:      queued at {pending.queued_at.isoformat()}")
        if not client.is_online:
            return
        try:
            server_status = http.status()
        except APIError as e:
            click.echo(f"Error: status probe failed: {e}", err=True)
            sys.exit(1)
        cloud_last = server_status.last_sync.isoformat() if server_status.last_sync else "never"
        click.echo(f"Server:       {'configured' if server_status.configured else 'not configured'}")
        click.echo(f"Cloud sync:   {cloud_last}")
        click.echo(f"User:         {server_status.user}")


@click.command()
@click.option("--wait", is_flag=True, help="Wait for the server to become reachable first.")
@click.option("--timeout", type=float, default=None, help="Give up waiting after N seconds.")
def flush(wait: bool, timeout: float | None) -> None:
    """Upload the payload queued while offline."""
    with open_sync_client(probe=not wait) as (client, http):
        if wait:
            if not wait_for_network(http, timeout=timeout):
                click.echo("Error: server still unreachable.", err=True)
                sys.exit(1)
            client.set_online(True)
        result = client.process_pending_sync()
        if result is None:
            click.echo("Nothing queued")
            return
        if isinstance(result, Conflict):
            click.echo(
                "Sync conflict: the cloud copy is newer than the queued data. "
                "Pull it or use 'cloudsync force-push'."
            )
            return
        _report(result)
