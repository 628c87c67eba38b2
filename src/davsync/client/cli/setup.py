"""Server setup commands for davsync CLI.

Commands:
- configure: Store WebDAV server settings and sync options
- test-connection: Probe the configured server
"""

from __future__ import annotations

import sys

import click

from davsync.client.cli.config import (
    build_sync_config,
    get_config_file,
    get_device_id,
    load_config,
    save_config,
)
from davsync.client.cli.session import require_configured
from davsync.client.webdav import WebDAVClient
from davsync.core.types import ConflictResolution, SyncDirection


@click.command()
@click.option("--url", prompt="WebDAV URL", help="Base URL of the WebDAV root.")
@click.option("--username", prompt="User name", help="WebDAV user name.")
@click.option(
    "--password",
    prompt="Password",
    hide_input=True,
    help="WebDAV password (use DAVSYNC_PASSWORD to avoid storing it).",
)
@click.option("--sync-path", default="davsync", show_default=True, help="Folder for sync data.")
@click.option(
    "--direction",
    type=click.Choice([d.value for d in SyncDirection]),
    default=SyncDirection.BIDIRECTIONAL.value,
    show_default=True,
)
@click.option(
    "--conflict-resolution",
    type=click.Choice([c.value for c in ConflictResolution]),
    default=ConflictResolution.TIMESTAMP.value,
    show_default=True,
)
@click.option(
    "--auto-sync-interval",
    type=click.IntRange(min=1),
    default=None,
    help="Enable auto-sync in watch mode, every N seconds.",
)
@click.option("--insecure", is_flag=True, help="Do not verify TLS certificates.")
def configure(
    url: str,
    username: str,
    password: str,
    sync_path: str,
    direction: str,
    conflict_resolution: str,
    auto_sync_interval: int | None,
    insecure: bool,
) -> None:
    """Configure the WebDAV server and sync options."""
    config = load_config()
    config["webdav"] = {
        "url": url.rstrip("/"),
        "username": username,
        "password": password,
        "syncPath": sync_path.strip("/"),
        "rejectUnauthorized": not insecure,
    }
    config["direction"] = direction
    config["conflictResolution"] = conflict_resolution
    config["autoSync"] = auto_sync_interval is not None
    config["autoSyncInterval"] = auto_sync_interval * 1000 if auto_sync_interval else None
    save_config(config)

    device_id = get_device_id()
    click.echo(f"Configuration saved to {get_config_file()}")
    click.echo(f"Device ID: {device_id}")


@click.command("test-connection")
def test_connection() -> None:
    """Check that the configured server is reachable."""
    require_configured()
    config = build_sync_config()

    with WebDAVClient(config.webdav) as client:
        result = client.test_connection()

    if not result.success:
        click.echo(f"Connection failed: {result.error}", err=True)
        sys.exit(1)

    click.echo(f"Connected to {config.webdav.url}")
    if result.path_exists:
        click.echo(f"Sync path: /{config.webdav.sync_path}")
    else:
        click.echo(result.error or "Sync path does not exist yet.")
