"""Sync commands for davsync CLI.

Commands:
- sync: Synchronize local chunks with the server
- status: Show configuration and local sync state
"""

from __future__ import annotations

import logging
import sys
import time
from datetime import datetime

import click
import httpx

from davsync.client.chunk_store import ChunkStoreError
from davsync.client.cli.config import build_sync_config, get_device_id, load_config
from davsync.client.cli.session import Session, open_session, open_state, require_configured
from davsync.client.sync import SyncError, SyncEvent, SyncEventType, SyncResult
from davsync.client.webdav import WebDAVError

logger = logging.getLogger(__name__)

DEFAULT_WATCH_INTERVAL = 60  # seconds


def _on_event(event: SyncEvent) -> None:
    """Print events worth the user's attention."""
    if event.type is SyncEventType.CONFLICT:
        data = event.data
        click.echo(
            f"  Conflict: {data['chunkId']} "
            f"(local v{data['localVersion']}, remote v{data['remoteVersion']})"
        )
    elif event.type is SyncEventType.PROGRESS:
        current = event.data.get("currentChunk")
        if current:
            logger.debug(f"{event.data['phase']}: {current} ({event.data['totalProgress']:.0f}%)")


def _echo_result(result: SyncResult) -> None:
    click.echo(
        f"Sync {result.status.value}: "
        f"{result.uploaded_chunks} uploaded, {result.downloaded_chunks} downloaded, "
        f"{result.deleted_chunks} deleted, {len(result.resolved)} resolved"
    )
    for error in result.errors:
        click.echo(f"  Error: {error}", err=True)
    if result.has_conflicts:
        click.echo(f"  {len(result.conflicts)} conflict(s) need manual resolution:")
        for chunk_id in result.conflicts:
            click.echo(f"    {chunk_id}")


def _run_once(session: Session) -> SyncResult | None:
    try:
        result = session.run_sync()
    except (SyncError, ChunkStoreError, WebDAVError, httpx.HTTPError) as e:
        click.echo(f"Sync failed: {e}", err=True)
        return None
    _echo_result(result)
    return result


def _echo_completed(event: SyncEvent) -> None:
    if event.type is SyncEventType.COMPLETED:
        data = event.data
        click.echo(
            f"[{datetime.now():%H:%M:%S}] Synced: {data['uploadedChunks']} up, "
            f"{data['downloadedChunks']} down, {data['conflicts']} conflict(s)"
        )
    elif event.type is SyncEventType.ERROR:
        click.echo(f"[{datetime.now():%H:%M:%S}] Sync failed: {event.data['error']}", err=True)


@click.command()
@click.option("--watch", "-w", is_flag=True, help="Keep running and sync periodically.")
@click.option(
    "--interval",
    type=click.IntRange(min=1),
    default=None,
    help="Seconds between syncs in watch mode (default: configured interval or 60).",
)
def sync(watch: bool, interval: int | None) -> None:
    """Synchronize local chunks with the server.

    Uploads local changes, downloads remote changes and resolves version
    conflicts with the configured strategy. Use --watch to keep syncing.
    """
    if not watch:
        with open_session() as session:
            session.engine.add_event_listener(_on_event)
            result = _run_once(session)
        if result is None or result.has_conflicts:
            sys.exit(1)
        return

    if interval is None:
        require_configured()
        configured = build_sync_config().auto_sync_interval
        interval_ms = configured if configured else DEFAULT_WATCH_INTERVAL * 1000
    else:
        interval_ms = interval * 1000

    with open_session(auto_sync_interval=interval_ms) as session:
        session.engine.add_event_listener(_on_event)
        _run_once(session)
        session.engine.add_event_listener(_echo_completed)
        click.echo(f"Watching, syncing every {interval_ms // 1000}s. Press Ctrl+C to stop.")
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            click.echo("\nStopping...")


@click.command()
def status() -> None:
    """Show configuration and local sync state."""
    require_configured()
    config = build_sync_config()
    stored = load_config()

    click.echo(f"Server:      {config.webdav.url}")
    click.echo(f"Sync path:   /{config.webdav.sync_path}")
    click.echo(f"User:        {config.webdav.username}")
    click.echo(f"Device ID:   {stored.get('deviceId') or get_device_id()}")
    click.echo(f"Direction:   {config.direction.value}")
    click.echo(f"Conflicts:   {config.conflict_resolution.value}")
    if config.auto_sync and config.auto_sync_interval:
        click.echo(f"Auto-sync:   every {config.auto_sync_interval // 1000}s")
    else:
        click.echo("Auto-sync:   disabled")

    with open_state() as state:
        chunks = state.local_chunks()
        last_sync = state.get_last_sync_time()

    click.echo(f"Local chunks: {len(chunks)}")
    if last_sync:
        click.echo(f"Last sync:   {datetime.fromtimestamp(last_sync / 1000):%Y-%m-%d %H:%M:%S}")
    else:
        click.echo("Last sync:   never")
