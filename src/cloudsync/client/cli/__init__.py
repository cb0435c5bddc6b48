"""Command-line interface for cloudsync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- configure: Store server URL and credential
- pull: Download the cloud copy
- push: Upload a local JSON document
- force-push: Overwrite the cloud copy
- status: Show local and server sync status
- flush: Upload the payload queued while offline
- server: Server administration commands
"""

from __future__ import annotations

import click

from cloudsync.client.cli.config import (
    get_config_dir,
    get_config_file,
    get_server_config,
    get_state_db,
    load_config,
    save_config,
)
from cloudsync.client.cli.server import server
from cloudsync.client.cli.sync import configure, flush, force_push, pull, push, status


@click.group()
@click.version_option(package_name="cloudsync")
def cli() -> None:
    """cloudsync - Keep application state in step across devices."""


# Client commands
cli.add_command(configure)
cli.add_command(pull)
cli.add_command(push)
cli.add_command(force_push)
cli.add_command(status)
cli.add_command(flush)

# Server admin commands
cli.add_command(server)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    "cli",
    "main",
    "get_config_dir",
    "get_config_file",
    "get_server_config",
    "get_state_db",
    "load_config",
    "save_config",
]
