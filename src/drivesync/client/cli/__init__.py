"""Command-line interface for drivesync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- push: Upload a local folder into a remote folder
- pull: Download a remote folder into a local folder
- sync: Two-way reconcile, then watch for local changes
- status: Show the persisted sync status
- select-folder: Choose the default local folder
- folders: Browse remote folders to find a REMOTE_ID
"""

from __future__ import annotations

import logging

import click

from drivesync.client.cli.config import (
    get_access_token,
    get_config_dir,
    get_config_file,
    get_status_file,
    get_sync_folder,
    load_config,
    save_config,
)
from drivesync.client.cli.sync import folders, pull, push, select_folder, status, sync


class EchoHandler(logging.Handler):
    """Logging handler that writes through click.echo to stderr."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            click.echo(self.format(record), err=True)
        except Exception:
            self.handleError(record)


def configure_logging(verbose: bool) -> None:
    """Route drivesync logs to stderr (warnings only unless verbose)."""
    drivesync_logger = logging.getLogger("drivesync")
    for handler in list(drivesync_logger.handlers):
        if isinstance(handler, EchoHandler):
            drivesync_logger.removeHandler(handler)

    handler = EchoHandler()
    handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    drivesync_logger.addHandler(handler)
    drivesync_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)


@click.group()
@click.version_option(package_name="drivesync")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging.")
@click.option(
    "--token",
    envvar="DRIVESYNC_TOKEN",
    default=None,
    help="Bearer token for the remote API (or set DRIVESYNC_TOKEN).",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, token: str | None) -> None:
    """drivesync - Keep a local folder and a remote drive folder in sync."""
    configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["token"] = token


# Sync commands
cli.add_command(push)
cli.add_command(pull)
cli.add_command(sync)

# Status commands
cli.add_command(status)
cli.add_command(select_folder)
cli.add_command(folders)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    # Main entry points
    "cli",
    "main",
    "configure_logging",
    # Config utilities
    "get_access_token",
    "get_config_dir",
    "get_config_file",
    "get_status_file",
    "get_sync_folder",
    "load_config",
    "save_config",
]
