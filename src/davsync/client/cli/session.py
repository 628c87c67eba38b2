"""Engine and local state setup shared by CLI commands."""

from __future__ import annotations

import sys
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace

import click
import httpx

from davsync.client.cli.config import (
    build_sync_config,
    get_device_id,
    get_state_db,
    is_configured,
)
from davsync.client.chunk_store import ChunkStoreError
from davsync.client.state import LocalChunkState
from davsync.client.sync import SyncEngine, SyncError, SyncResult
from davsync.client.webdav import WebDAVError


@dataclass
class Session:
    """An initialized engine paired with the local chunk database."""

    engine: SyncEngine
    state: LocalChunkState

    def run_sync(self) -> SyncResult:
        """Run one sync and record remote versions of transferred chunks."""
        engine, state = self.engine, self.state

        def save_local_data(chunk_id: str, data: object) -> None:
            state.save_data(chunk_id, data, engine.get_chunk_metadata(chunk_id))

        result = engine.sync(state.local_chunks, state.get_data, save_local_data, state.delete)

        remote = {meta.id: meta for meta in engine.list_chunks()}
        for chunk_id in (*result.uploaded, *result.downloaded, *result.resolved):
            if chunk_id in remote:
                state.adopt_remote(remote[chunk_id])
        state.set_last_sync_time(result.end_time)
        return result


def require_configured() -> None:
    """Exit with an error if no server has been configured."""
    if not is_configured():
        click.echo("Error: No WebDAV server configured. Run 'davsync configure' first.", err=True)
        sys.exit(1)


@contextmanager
def open_state() -> Iterator[LocalChunkState]:
    """Open the local chunk database."""
    state = LocalChunkState(get_state_db())
    try:
        yield state
    finally:
        state.close()


@contextmanager
def open_session(auto_sync_interval: int | None = None) -> Iterator[Session]:
    """Connect to the configured server and open the local database.

    Args:
        auto_sync_interval: If given, arm the recurring trigger with this
            interval in milliseconds.
    """
    require_configured()
    config = build_sync_config()
    if auto_sync_interval is not None:
        config = replace(config, auto_sync=True, auto_sync_interval=auto_sync_interval)
    with open_state() as state:
        session: Session | None = None

        def auto_sync_job() -> None:
            if session is not None:
                session.run_sync()

        engine = SyncEngine(
            config,
            get_device_id(),
            auto_sync_callback=auto_sync_job if auto_sync_interval is not None else None,
        )
        try:
            engine.initialize()
        except (SyncError, ChunkStoreError, WebDAVError, httpx.HTTPError) as e:
            click.echo(f"Error: {e}", err=True)
            engine.destroy()
            sys.exit(1)

        session = Session(engine=engine, state=state)
        try:
            yield session
        finally:
            engine.destroy()
