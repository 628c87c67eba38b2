"""Chunk management commands for davsync CLI.

Commands:
- put: Store a JSON payload as a local chunk
- get: Print a chunk's payload
- list: List local or remote chunks
- rm: Delete a chunk locally and on the server
- cleanup: Remove orphaned chunk files from the server
"""

from __future__ import annotations

import json
import sys
from datetime import datetime
from pathlib import Path

import click

from davsync.client.chunk_store import ChunkStoreError, InvalidChunkIdError, validate_chunk_id
from davsync.client.cli.config import get_device_id
from davsync.client.cli.session import open_session, open_state
from davsync.core.chunking import ChunkMetadata


def _format_time(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


def _echo_chunks(chunks: list[ChunkMetadata]) -> None:
    if not chunks:
        click.echo("No chunks.")
        return
    for meta in sorted(chunks, key=lambda m: m.id):
        click.echo(
            f"{meta.id:<30} v{meta.version:<4} {meta.size:>8} B  "
            f"{meta.data_type:<12} {_format_time(meta.updated_at)}"
        )


@click.command()
@click.argument("chunk_id")
@click.argument("payload", required=False)
@click.option(
    "--file",
    "-f",
    "source",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Read the JSON payload from a file.",
)
@click.option("--type", "-t", "data_type", default="json", show_default=True)
def put(chunk_id: str, payload: str | None, source: Path | None, data_type: str) -> None:
    """Store a JSON PAYLOAD locally as CHUNK_ID.

    The chunk is uploaded on the next sync.
    """
    try:
        validate_chunk_id(chunk_id)
    except InvalidChunkIdError as e:
        raise click.BadParameter(str(e), param_hint="CHUNK_ID") from e

    if source is not None:
        payload = source.read_text()
    if payload is None:
        raise click.UsageError("Provide a PAYLOAD argument or --file.")

    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"Invalid JSON: {e}", param_hint="PAYLOAD") from e

    with open_state() as state:
        meta = state.put(chunk_id, data, data_type, get_device_id())
    click.echo(f"Stored {chunk_id} (local version {meta.version}, {meta.size} bytes)")


@click.command()
@click.argument("chunk_id")
@click.option("--remote", is_flag=True, help="Read from the server instead of locally.")
def get(chunk_id: str, remote: bool) -> None:
    """Print the payload of CHUNK_ID as JSON."""
    if remote:
        with open_session() as session:
            data = session.engine.load_chunk(chunk_id)
            if data is None and session.engine.get_chunk_metadata(chunk_id) is None:
                click.echo(f"Error: Chunk not found on server: {chunk_id}", err=True)
                sys.exit(1)
            if data is None:
                click.echo(f"Error: Chunk unavailable on server: {chunk_id}", err=True)
                sys.exit(1)
    else:
        with open_state() as state:
            try:
                data = state.get_data(chunk_id)
            except KeyError:
                click.echo(f"Error: Chunk not found: {chunk_id}", err=True)
                sys.exit(1)

    click.echo(json.dumps(data, indent=2, ensure_ascii=False))


@click.command("list")
@click.option("--remote", is_flag=True, help="List chunks on the server.")
def list_chunks(remote: bool) -> None:
    """List chunks."""
    if remote:
        with open_session() as session:
            _echo_chunks(session.engine.list_chunks())
    else:
        with open_state() as state:
            _echo_chunks(list(state.local_chunks().values()))


@click.command()
@click.argument("chunk_id")
@click.option("--local-only", is_flag=True, help="Do not delete the chunk on the server.")
def rm(chunk_id: str, local_only: bool) -> None:
    """Delete CHUNK_ID locally and on the server."""
    if local_only:
        with open_state() as state:
            state.delete(chunk_id)
        click.echo(f"Deleted {chunk_id} locally")
        return

    with open_session() as session:
        try:
            session.engine.delete_chunk(chunk_id)
        except ChunkStoreError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
        session.state.delete(chunk_id)
    click.echo(f"Deleted {chunk_id}")


@click.command()
@click.option(
    "--prune-missing",
    is_flag=True,
    help="Also drop index entries whose chunk file is missing.",
)
def cleanup(prune_missing: bool) -> None:
    """Remove chunk files that are not listed in the server index."""
    with open_session() as session:
        report = session.engine.cleanup(prune_missing=prune_missing)

    click.echo(f"Removed {len(report.removed_bodies)} orphaned chunk file(s)")
    for chunk_id in report.missing_bodies:
        click.echo(f"  Missing chunk file: {chunk_id}")
    if report.pruned_entries:
        click.echo(f"Pruned {len(report.pruned_entries)} index entries")
