"""Tests for CLI commands, against an in-memory WebDAV server."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from davsync.client.chunk_store import ChunkStore, chunk_path
from davsync.client.cli import cli
from davsync.client.sync import SyncEngine
from davsync.client.webdav import WebDAVClient

CONFIGURE_ARGS = [
    "configure",
    "--url",
    "http://dav.test/dav",
    "--username",
    "alice",
    "--password",
    "secret",
    "--sync-path",
    "app/sync",
]


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def reset_logging():  # type: ignore[no-untyped-def]
    """Drop handlers bound to the runner's streams after each test."""
    yield
    davsync_logger = logging.getLogger("davsync")
    for handler in davsync_logger.handlers[:]:
        davsync_logger.removeHandler(handler)
    davsync_logger.propagate = True
    davsync_logger.setLevel(logging.NOTSET)


@pytest.fixture
def config_dir(tmp_path: Path, monkeypatch, dav_server):  # type: ignore[no-untyped-def]
    """Point the CLI at a temporary config dir and the in-memory server."""
    directory = tmp_path / ".davsync"
    monkeypatch.setenv("DAVSYNC_CONFIG_DIR", str(directory))
    monkeypatch.delenv("DAVSYNC_PASSWORD", raising=False)

    def make_engine(config: Any, device_id: str, **kwargs: Any) -> SyncEngine:
        return SyncEngine(config, device_id, transport=dav_server.transport, **kwargs)

    def make_client(config: Any) -> WebDAVClient:
        return WebDAVClient(config, transport=dav_server.transport)

    with patch("davsync.client.cli.session.SyncEngine", side_effect=make_engine), patch(
        "davsync.client.cli.setup.WebDAVClient", side_effect=make_client
    ):
        yield directory


@pytest.fixture
def remote(dav_server, webdav_config) -> ChunkStore:  # type: ignore[no-untyped-def]
    """Another device writing to the same server."""
    store = ChunkStore(WebDAVClient(webdav_config, transport=dav_server.transport), "dev-remote")
    store.initialize()
    return store


def configure(runner: CliRunner) -> None:
    result = runner.invoke(cli, CONFIGURE_ARGS)
    assert result.exit_code == 0, result.output


class TestConfigureCommand:
    """Tests for 'davsync configure'."""

    def test_configure_writes_config(self, runner: CliRunner, config_dir: Path) -> None:
        """configure should persist server settings and a device id."""
        result = runner.invoke(cli, [*CONFIGURE_ARGS, "--direction", "upload_only"])

        assert result.exit_code == 0
        config = json.loads((config_dir / "config.json").read_text())
        assert config["webdav"]["url"] == "http://dav.test/dav"
        assert config["webdav"]["syncPath"] == "app/sync"
        assert config["direction"] == "upload_only"
        assert config["autoSync"] is False
        assert config["deviceId"] in result.output

    def test_configure_prompts(self, runner: CliRunner, config_dir: Path) -> None:
        """Missing options should be prompted for."""
        result = runner.invoke(
            cli, ["configure", "--sync-path", "app/sync"], input="http://dav.test/dav\nalice\nsecret\n"
        )

        assert result.exit_code == 0
        config = json.loads((config_dir / "config.json").read_text())
        assert config["webdav"]["username"] == "alice"

    def test_configure_keeps_device_id(self, runner: CliRunner, config_dir: Path) -> None:
        """Reconfiguring must not change the device id."""
        configure(runner)
        first = json.loads((config_dir / "config.json").read_text())["deviceId"]
        configure(runner)
        second = json.loads((config_dir / "config.json").read_text())["deviceId"]
        assert first == second


class TestTestConnectionCommand:
    """Tests for 'davsync test-connection'."""

    def test_success(self, runner: CliRunner, config_dir: Path) -> None:
        """Should report a reachable server with a not-yet-created sync path."""
        configure(runner)
        result = runner.invoke(cli, ["test-connection"])

        assert result.exit_code == 0
        assert "Connected to http://dav.test/dav" in result.output

    def test_wrong_password(self, runner: CliRunner, config_dir: Path, monkeypatch) -> None:  # type: ignore[no-untyped-def]
        """DAVSYNC_PASSWORD overrides the stored password."""
        configure(runner)
        monkeypatch.setenv("DAVSYNC_PASSWORD", "wrong")
        result = runner.invoke(cli, ["test-connection"])

        assert result.exit_code != 0
        assert "Authentication failed" in result.output

    def test_not_configured(self, runner: CliRunner, config_dir: Path) -> None:
        """Should fail before configure."""
        result = runner.invoke(cli, ["test-connection"])

        assert result.exit_code != 0
        assert "davsync configure" in result.output


class TestChunkCommands:
    """Tests for put, get, list, rm and cleanup."""

    def test_put_and_get_local(self, runner: CliRunner, config_dir: Path) -> None:
        """put stores JSON locally, get prints it."""
        result = runner.invoke(cli, ["put", "notes", '{"text": "hi"}'])
        assert result.exit_code == 0
        assert "local version 1" in result.output

        result = runner.invoke(cli, ["get", "notes"])
        assert result.exit_code == 0
        assert json.loads(result.output) == {"text": "hi"}

    def test_put_from_file(self, runner: CliRunner, config_dir: Path, tmp_path: Path) -> None:
        """put --file reads the payload from disk."""
        source = tmp_path / "payload.json"
        source.write_text("[1, 2, 3]")

        result = runner.invoke(cli, ["put", "numbers", "--file", str(source), "--type", "list"])

        assert result.exit_code == 0
        result = runner.invoke(cli, ["list"])
        assert "numbers" in result.output
        assert "list" in result.output

    def test_put_invalid_json(self, runner: CliRunner, config_dir: Path) -> None:
        """Invalid JSON is a usage error."""
        result = runner.invoke(cli, ["put", "notes", "{not json"])
        assert result.exit_code == 2
        assert "Invalid JSON" in result.output

    def test_put_invalid_id(self, runner: CliRunner, config_dir: Path) -> None:
        """Ids with path separators are rejected."""
        result = runner.invoke(cli, ["put", "a/b", "1"])
        assert result.exit_code == 2

    def test_get_missing(self, runner: CliRunner, config_dir: Path) -> None:
        """Unknown chunks fail."""
        result = runner.invoke(cli, ["get", "missing"])
        assert result.exit_code != 0

    def test_list_empty(self, runner: CliRunner, config_dir: Path) -> None:
        """An empty store lists nothing."""
        result = runner.invoke(cli, ["list"])
        assert result.exit_code == 0
        assert "No chunks." in result.output

    def test_remote_get_and_list(self, runner: CliRunner, config_dir: Path, remote: ChunkStore) -> None:
        """--remote reads from the server."""
        configure(runner)
        remote.save_chunk("shared", {"v": 1}, "settings")

        result = runner.invoke(cli, ["list", "--remote"])
        assert result.exit_code == 0
        assert "shared" in result.output

        result = runner.invoke(cli, ["get", "shared", "--remote"])
        assert result.exit_code == 0
        assert json.loads(result.output) == {"v": 1}

    def test_rm(self, runner: CliRunner, config_dir: Path, dav_server) -> None:  # type: ignore[no-untyped-def]
        """rm deletes locally and remotely."""
        configure(runner)
        runner.invoke(cli, ["put", "notes", "1"])
        runner.invoke(cli, ["sync"])
        assert dav_server.path(chunk_path("notes")) in dav_server.files

        result = runner.invoke(cli, ["rm", "notes"])

        assert result.exit_code == 0
        assert dav_server.path(chunk_path("notes")) not in dav_server.files
        assert "No chunks." in runner.invoke(cli, ["list"]).output

    def test_cleanup_prune_missing(
        self, runner: CliRunner, config_dir: Path, dav_server, remote: ChunkStore  # type: ignore[no-untyped-def]
    ) -> None:
        """cleanup --prune-missing drops index entries without a body."""
        configure(runner)
        remote.save_chunk("ghost", 1, "n")
        dav_server.remove(chunk_path("ghost"))

        result = runner.invoke(cli, ["cleanup", "--prune-missing"])

        assert result.exit_code == 0
        assert "Missing chunk file: ghost" in result.output
        assert "Pruned 1 index entries" in result.output
        remote.refresh()
        assert remote.get_chunk_metadata("ghost") is None


class TestSyncCommand:
    """Tests for 'davsync sync' and 'davsync status'."""

    def test_sync_uploads_and_adopts_versions(
        self, runner: CliRunner, config_dir: Path, remote: ChunkStore
    ) -> None:
        """Local chunks are uploaded and a second sync has nothing to do."""
        configure(runner)
        runner.invoke(cli, ["put", "notes", '{"text": "hi"}'])

        result = runner.invoke(cli, ["sync"])
        assert result.exit_code == 0, result.output
        assert "1 uploaded" in result.output

        remote.refresh()
        assert remote.get_chunk_metadata("notes").version == 1  # type: ignore[union-attr]

        result = runner.invoke(cli, ["sync"])
        assert result.exit_code == 0
        assert "0 uploaded, 0 downloaded" in result.output

    def test_sync_downloads(self, runner: CliRunner, config_dir: Path, remote: ChunkStore) -> None:
        """Chunks from another device are downloaded."""
        configure(runner)
        remote.save_chunk("shared", ["a"], "list")

        result = runner.invoke(cli, ["sync"])

        assert result.exit_code == 0
        assert "1 downloaded" in result.output
        assert json.loads(runner.invoke(cli, ["get", "shared"]).output) == ["a"]

    def test_local_edit_wins_after_sync(
        self, runner: CliRunner, config_dir: Path, remote: ChunkStore
    ) -> None:
        """Editing a synced chunk uploads it as the next remote version."""
        runner.invoke(cli, [*CONFIGURE_ARGS, "--conflict-resolution", "local"])
        runner.invoke(cli, ["put", "notes", "1"])
        runner.invoke(cli, ["sync"])
        runner.invoke(cli, ["put", "notes", "2"])

        result = runner.invoke(cli, ["sync"])

        assert result.exit_code == 0, result.output
        remote.refresh()
        loaded = remote.load_chunk("notes")
        assert loaded is not None and loaded.data == 2
        assert loaded.meta.version == 2

    def test_manual_conflict_exit_code(
        self, runner: CliRunner, config_dir: Path, remote: ChunkStore
    ) -> None:
        """Unresolved conflicts are listed and make the command fail."""
        runner.invoke(cli, [*CONFIGURE_ARGS, "--conflict-resolution", "manual"])
        remote.save_chunk("notes", "remote", "n")
        runner.invoke(cli, ["put", "notes", '"a"'])
        runner.invoke(cli, ["put", "notes", '"b"'])

        result = runner.invoke(cli, ["sync"])

        assert result.exit_code == 1
        assert "Conflict: notes" in result.output
        assert "need manual resolution" in result.output

    def test_sync_not_configured(self, runner: CliRunner, config_dir: Path) -> None:
        """sync requires configuration."""
        result = runner.invoke(cli, ["sync"])
        assert result.exit_code != 0

    def test_status(self, runner: CliRunner, config_dir: Path) -> None:
        """status shows configuration and last sync."""
        configure(runner)
        result = runner.invoke(cli, ["status"])
        assert result.exit_code == 0
        assert "Last sync:   never" in result.output

        runner.invoke(cli, ["sync"])
        result = runner.invoke(cli, ["status"])
        assert "Server:      http://dav.test/dav" in result.output
        assert "Direction:   bidirectional" in result.output
        assert "Last sync:   never" not in result.output
