"""Tests for core configuration classes."""

from __future__ import annotations

import pytest

from davsync.core.config import (
    DEFAULT_MAX_CHUNK_SIZE,
    DEFAULT_TIMEOUT,
    SyncConfig,
    WebDAVConfig,
)
from davsync.core.types import ConflictResolution, SyncDirection


def make_webdav(**overrides: object) -> WebDAVConfig:
    values: dict[str, object] = {
        "url": "https://dav.example.com/remote.php/dav",
        "username": "alice",
        "password": "secret",
    }
    values.update(overrides)
    return WebDAVConfig(**values)  # type: ignore[arg-type]


class TestWebDAVConfig:
    """Tests for WebDAVConfig class."""

    def test_init_basic(self) -> None:
        """Should initialize with defaults."""
        config = make_webdav()
        assert config.sync_path == ""
        assert config.timeout == DEFAULT_TIMEOUT
        assert config.verify_ssl is True
        assert config.max_retries == 2

    def test_url_trailing_slash_removed(self) -> None:
        """Should strip trailing slash from the URL."""
        config = make_webdav(url="https://dav.example.com/dav/")
        assert config.url == "https://dav.example.com/dav"

    def test_sync_path_slashes_stripped(self) -> None:
        """Should strip leading and trailing slashes from the sync path."""
        config = make_webdav(sync_path="/apps/notes/")
        assert config.sync_path == "apps/notes"

    def test_is_secure(self) -> None:
        """Should detect HTTPS URLs."""
        assert make_webdav().is_secure is True
        assert make_webdav(url="http://localhost:8080").is_secure is False

    def test_from_dict_converts_timeout_ms(self) -> None:
        """Timeout is persisted in milliseconds."""
        config = WebDAVConfig.from_dict(
            {
                "url": "https://dav.example.com",
                "username": "bob",
                "password": "pw",
                "syncPath": "data",
                "timeout": 5000,
                "rejectUnauthorized": False,
            }
        )
        assert config.timeout == 5.0
        assert config.sync_path == "data"
        assert config.verify_ssl is False

    def test_to_dict_roundtrip(self) -> None:
        """to_dict output should be accepted by from_dict."""
        config = make_webdav(sync_path="data", timeout=12.5)
        assert WebDAVConfig.from_dict(config.to_dict()) == config


class TestSyncConfig:
    """Tests for SyncConfig class."""

    def test_defaults(self) -> None:
        """Should use bidirectional timestamp sync by default."""
        config = SyncConfig(webdav=make_webdav())
        assert config.direction is SyncDirection.BIDIRECTIONAL
        assert config.conflict_resolution is ConflictResolution.TIMESTAMP
        assert config.auto_sync is False
        assert config.auto_sync_interval is None
        assert config.max_chunk_size == DEFAULT_MAX_CHUNK_SIZE

    def test_coerces_string_enums(self) -> None:
        """Plain strings should be converted to enums."""
        config = SyncConfig(
            webdav=make_webdav(),
            direction="upload_only",  # type: ignore[arg-type]
            conflict_resolution="manual",  # type: ignore[arg-type]
        )
        assert config.direction is SyncDirection.UPLOAD_ONLY
        assert config.conflict_resolution is ConflictResolution.MANUAL

    def test_rejects_unknown_direction(self) -> None:
        """Unknown directions should raise ValueError."""
        with pytest.raises(ValueError):
            SyncConfig(webdav=make_webdav(), direction="sideways")  # type: ignore[arg-type]

    def test_rejects_non_positive_limits(self) -> None:
        """Chunk size and auto-sync interval must be positive."""
        with pytest.raises(ValueError):
            SyncConfig(webdav=make_webdav(), max_chunk_size=0)
        with pytest.raises(ValueError):
            SyncConfig(webdav=make_webdav(), auto_sync_interval=0)

    def test_from_dict_nested(self) -> None:
        """Should read the persisted layout with a nested webdav section."""
        config = SyncConfig.from_dict(
            {
                "webdav": {"url": "https://dav.example.com", "username": "u", "password": "p"},
                "direction": "download_only",
                "conflictResolution": "remote",
                "autoSync": True,
                "autoSyncInterval": 30000,
                "maxChunkSize": 2048,
            }
        )
        assert config.webdav.url == "https://dav.example.com"
        assert config.direction is SyncDirection.DOWNLOAD_ONLY
        assert config.conflict_resolution is ConflictResolution.REMOTE
        assert config.auto_sync is True
        assert config.auto_sync_interval == 30000
        assert config.max_chunk_size == 2048

    def test_frozen(self) -> None:
        """SyncConfig should be immutable."""
        config = SyncConfig(webdav=make_webdav())
        with pytest.raises(AttributeError):
            config.auto_sync = True  # type: ignore[misc]

    def test_merged_with_field_names(self) -> None:
        """merged() should accept dataclass field names."""
        config = SyncConfig(webdav=make_webdav())
        updated = config.merged({"direction": SyncDirection.UPLOAD_ONLY})
        assert updated.direction is SyncDirection.UPLOAD_ONLY
        assert config.direction is SyncDirection.BIDIRECTIONAL

    def test_merged_with_persisted_names(self) -> None:
        """merged() should accept persisted names and partial webdav changes."""
        config = SyncConfig(webdav=make_webdav(sync_path="old"))
        updated = config.merged({"conflictResolution": "local", "webdav": {"syncPath": "new"}})
        assert updated.conflict_resolution is ConflictResolution.LOCAL
        assert updated.webdav.sync_path == "new"
        assert updated.webdav.username == "alice"

    def test_merged_with_only_webdav_mapping(self) -> None:
        """A webdav mapping alone should update the connection settings."""
        config = SyncConfig(webdav=make_webdav(sync_path="old"), direction=SyncDirection.UPLOAD_ONLY)
        updated = config.merged({"webdav": {"syncPath": "new", "password": "changed"}})
        assert isinstance(updated.webdav, WebDAVConfig)
        assert updated.webdav.sync_path == "new"
        assert updated.webdav.password == "changed"
        assert updated.webdav.username == "alice"
        assert updated.direction is SyncDirection.UPLOAD_ONLY

    def test_merged_with_webdav_and_field_names(self) -> None:
        """Field names and a webdav mapping can be combined."""
        config = SyncConfig(webdav=make_webdav(sync_path="old"))
        updated = config.merged({"webdav": {"syncPath": "new"}, "auto_sync_interval": 1000})
        assert updated.webdav.sync_path == "new"
        assert updated.auto_sync_interval == 1000
