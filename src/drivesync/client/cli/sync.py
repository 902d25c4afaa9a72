"""Sync commands for the drivesync CLI.

Commands:
- push: Reconcile a local folder into a remote folder once
- pull: Reconcile a remote folder into a local folder once
- sync: Reconcile both ways, then watch for local changes until Ctrl+C
- status: Show the persisted sync status
- select-folder: Choose the default local folder
- folders: Browse remote folders to find a REMOTE_ID
"""

from __future__ import annotations

import json
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click

from drivesync.client.cli.config import (
    get_access_token,
    get_remote_config,
    get_status_store,
    get_sync_config,
    get_sync_folder,
    load_config,
)
from drivesync.client.status import FolderSelectionError

if TYPE_CHECKING:
    from drivesync.client.api import DriveClient
    from drivesync.client.sync import SyncOrchestrator, SyncSummary


def _resolve_local_root(local_root: Path | None) -> Path:
    if local_root is not None:
        return local_root
    selected = get_sync_folder()
    if selected is None:
        click.echo(
            "Error: No local folder given and none selected. "
            "Pass LOCAL_ROOT or run 'drivesync select-folder' first.",
            err=True,
        )
        sys.exit(1)
    return selected


@contextmanager
def _client(ctx: click.Context, config: dict[str, Any]) -> Iterator[DriveClient]:
    """Open a DriveClient for the configured remote and close it afterwards."""
    from drivesync.client.api import DriveClient

    token = get_access_token(ctx.obj.get("token") if ctx.obj else None)
    client = DriveClient(get_remote_config(config), lambda: token)
    try:
        yield client
    finally:
        client.close()


@contextmanager
def _orchestrator(ctx: click.Context) -> Iterator[SyncOrchestrator]:
    """Build an orchestrator over a DriveClient."""
    from drivesync.client.sync import SyncOrchestrator

    config = load_config()
    with _client(ctx, config) as client:
        yield SyncOrchestrator(client, get_sync_config(config), get_status_store())


def _print_summary(summary: SyncSummary) -> None:
    counts = summary.as_dict()
    parts = [
        f"{counts[key]} {key}"
        for key in ("uploaded", "updated", "downloaded", "trashed", "skipped")
        if counts[key]
    ]
    if parts:
        click.echo(f"  ✓ {', '.join(parts)}")
    else:
        click.echo("Everything is up to date.")

    if summary.failed:
        click.echo(click.style("\nFailed:", fg="red"))
        for path, reason in sorted(summary.failed.items()):
            click.echo(f"  ✗ {path}: {reason}")


def _run_once(ctx: click.Context, local_root: Path | None, remote_id: str, pull: bool) -> None:
    from drivesync.client.sync import SyncError

    root = _resolve_local_root(local_root)
    arrow = "↓" if pull else "↑"
    click.echo(f"{arrow} {root} {'<-' if pull else '->'} {remote_id}")

    with _orchestrator(ctx) as orchestrator:
        try:
            if pull:
                summary = orchestrator.start_pull(remote_id, root)
            else:
                summary = orchestrator.start_push(root, remote_id)
        except SyncError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

    _print_summary(summary)
    if not summary.success:
        sys.exit(1)


@click.command()
@click.argument("remote_id")
@click.argument("local_root", required=False, type=click.Path(file_okay=False, path_type=Path))
@click.pass_context
def push(ctx: click.Context, remote_id: str, local_root: Path | None) -> None:
    """Upload LOCAL_ROOT into the remote folder REMOTE_ID.

    Local is the source of truth; unchanged files are skipped.
    LOCAL_ROOT defaults to the selected folder.
    """
    _run_once(ctx, local_root, remote_id, pull=False)


@click.command()
@click.argument("remote_id")
@click.argument("local_root", required=False, type=click.Path(file_okay=False, path_type=Path))
@click.pass_context
def pull(ctx: click.Context, remote_id: str, local_root: Path | None) -> None:
    """Download the remote folder REMOTE_ID into LOCAL_ROOT.

    Remote is the source of truth; subfolders are created as needed.
    LOCAL_ROOT defaults to the selected folder.
    """
    _run_once(ctx, local_root, remote_id, pull=True)


@click.command()
@click.argument("remote_id")
@click.argument("local_root", required=False, type=click.Path(file_okay=False, path_type=Path))
@click.pass_context
def sync(ctx: click.Context, remote_id: str, local_root: Path | None) -> None:
    """Reconcile LOCAL_ROOT with REMOTE_ID, then watch for changes.

    Runs until interrupted with Ctrl+C.
    """
    from drivesync.client.sync import SyncError

    root = _resolve_local_root(local_root)
    click.echo(f"Syncing {root} <-> {remote_id}...")

    with _orchestrator(ctx) as orchestrator:
        try:
            summary = orchestrator.start_sync(root, remote_id)
        except SyncError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

        _print_summary(summary)
        click.echo("\nWatching for changes... (Ctrl+C to stop)\n")
        try:
            while not orchestrator.wait(timeout=1.0):
                pass
        except KeyboardInterrupt:
            click.echo("\nStopping...")
        finally:
            orchestrator.stop_sync()

    _print_summary(summary)


@click.command()
@click.option("--json", "as_json", is_flag=True, help="Print the raw status JSON.")
def status(as_json: bool) -> None:
    """Show the sync status."""
    current = get_status_store().load()
    if as_json:
        click.echo(json.dumps(current.to_dict(), indent=2))
        return

    click.echo(f"Syncing:         {'yes' if current.is_syncing else 'no'}")
    click.echo(f"Last synced:     {current.last_synced or 'never'}")
    click.echo(f"Selected folder: {current.selected_folder or '(none)'}")


@click.command("select-folder")
@click.argument("folder", type=click.Path(path_type=Path))
def select_folder(folder: Path) -> None:
    """Select FOLDER as the default local sync folder."""
    try:
        selected = get_status_store().select_folder(folder)
    except FolderSelectionError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(f"Selected folder: {selected}")


@click.command()
@click.argument("remote_id", default="root")
@click.option("--depth", type=click.IntRange(min=1), default=None, help="Maximum depth to show.")
@click.pass_context
def folders(ctx: click.Context, remote_id: str, depth: int | None) -> None:
    """List the folders under REMOTE_ID as a tree with their IDs.

    REMOTE_ID defaults to the drive root. Use the printed IDs as the
    REMOTE_ID of push, pull and sync.
    """
    from drivesync.client.api import APIError
    from drivesync.client.sync import RemoteTreeWalker, RetryPolicy, SyncError

    config = load_config()
    with _client(ctx, config) as client:
        walker = RemoteTreeWalker(client, RetryPolicy.from_config(get_sync_config(config)))
        try:
            items = walker.walk(remote_id, folders_only=True)
        except (APIError, SyncError) as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

    shown = 0
    for item in items:
        level = item.relative_path.count("/")
        if depth is not None and level >= depth:
            continue
        click.echo(f"{'  ' * level}{item.entry.name}  ({item.entry.id})")
        shown += 1

    if not shown:
        click.echo("No folders found.")
