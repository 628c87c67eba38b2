"""Command-line interface for davsync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- configure: Store WebDAV server settings and sync options
- test-connection: Probe the configured server
- put: Store a JSON payload as a local chunk
- get: Print a chunk's payload
- list: List local or remote chunks
- rm: Delete a chunk
- sync: Synchronize local chunks with the server
- status: Show configuration and local sync state
- cleanup: Remove orphaned chunk files from the server
"""

from __future__ import annotations

import logging
import sys

import click

from davsync.client.cli.chunks import cleanup, get, list_chunks, put, rm
from davsync.client.cli.config import (
    get_config_dir,
    get_config_file,
    get_device_id,
    load_config,
    save_config,
)
from davsync.client.cli.setup import configure, test_connection
from davsync.client.cli.sync import status, sync


def setup_logging(verbose: bool) -> None:
    """Configure the davsync logger to write to stderr.

    Args:
        verbose: Log DEBUG and above instead of WARNING and above.
    """
    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    davsync_logger = logging.getLogger("davsync")
    # Remove handlers left by a previous invocation
    for handler in davsync_logger.handlers[:]:
        davsync_logger.removeHandler(handler)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(formatter)
    davsync_logger.addHandler(stderr_handler)
    davsync_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    davsync_logger.propagate = False


@click.group()
@click.version_option(package_name="davsync")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """davsync - Sync application data chunks through a WebDAV server."""
    setup_logging(verbose)


# Setup commands
cli.add_command(configure)
cli.add_command(test_connection)

# Chunk commands
cli.add_command(put)
cli.add_command(get)
cli.add_command(list_chunks)
cli.add_command(rm)
cli.add_command(cleanup)

# Sync commands
cli.add_command(sync)
cli.add_command(status)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    # Main entry points
    "cli",
    "main",
    "setup_logging",
    # Config utilities
    "get_config_dir",
    "get_config_file",
    "get_device_id",
    "load_config",
    "save_config",
]
