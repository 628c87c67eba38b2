"""Configuration classes for davsync.

This module defines the connection settings for the remote WebDAV server
and the per-run sync configuration. Both convert to and from the
camelCase option names used in the persisted configuration file.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from davsync.core.types import ConflictResolution, SyncDirection

DEFAULT_TIMEOUT = 30.0  # seconds
DEFAULT_MAX_RETRIES = 2
DEFAULT_MAX_CHUNK_SIZE = 1024 * 1024  # 1 MiB


@dataclass
class WebDAVConfig:
    """Configuration for connecting to a WebDAV server.

    Attributes:
        url: Base URL of the WebDAV root (e.g., "https://dav.example.com/dav").
        username: Basic auth user name.
        password: Basic auth password.
        sync_path: Folder below the WebDAV root that holds the sync data.
        timeout: Request timeout in seconds.
        verify_ssl: Whether to verify TLS certificates.
        max_retries: Retries for idempotent requests on transport errors.
    """

    url: str
    username: str
    password: str
    sync_path: str = ""
    timeout: float = DEFAULT_TIMEOUT
    verify_ssl: bool = True
    max_retries: int = DEFAULT_MAX_RETRIES

    def __post_init__(self) -> None:
        """Normalize URL and sync path."""
        self.url = self.url.rstrip("/")
        self.sync_path = self.sync_path.strip("/")

    @property
    def is_secure(self) -> bool:
        """Check if the server is reached over HTTPS."""
        return self.url.startswith("https://")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> WebDAVConfig:
        """Create from the persisted option names.

        ``timeout`` is given in milliseconds, as in the configuration file.
        """
        timeout_ms = data.get("timeout")
        return cls(
            url=data["url"],
            username=data.get("username", ""),
            password=data.get("password", ""),
            sync_path=data.get("syncPath", ""),
            timeout=timeout_ms / 1000 if timeout_ms else DEFAULT_TIMEOUT,
            verify_ssl=data.get("rejectUnauthorized", True),
            max_retries=data.get("maxRetries", DEFAULT_MAX_RETRIES),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the persisted option names."""
        return {
            "url": self.url,
            "username": self.username,
            "password": self.password,
            "syncPath": self.sync_path,
            "timeout": int(self.timeout * 1000),
            "rejectUnauthorized": self.verify_ssl,
            "maxRetries": self.max_retries,
        }


@dataclass(frozen=True)
class SyncConfig:
    """Configuration for a sync engine.

    Immutable for the duration of a run; use merged() to derive an updated
    copy.

    Attributes:
        webdav: Remote connection settings.
        direction: Which transfers are allowed.
        conflict_resolution: Strategy for version mismatches.
        auto_sync: Whether the recurring trigger should be armed.
        auto_sync_interval: Interval of the recurring trigger in milliseconds.
        max_chunk_size: Maximum serialized payload size in bytes.
    """

    webdav: WebDAVConfig
    direction: SyncDirection = SyncDirection.BIDIRECTIONAL
    conflict_resolution: ConflictResolution = ConflictResolution.TIMESTAMP
    auto_sync: bool = False
    auto_sync_interval: int | None = None
    max_chunk_size: int = field(default=DEFAULT_MAX_CHUNK_SIZE)

    def __post_init__(self) -> None:
        """Coerce enum values given as plain strings and validate limits."""
        object.__setattr__(self, "direction", SyncDirection(self.direction))
        object.__setattr__(
            self, "conflict_resolution", ConflictResolution(self.conflict_resolution)
        )
        if self.max_chunk_size <= 0:
            raise ValueError("max_chunk_size must be positive")
        if self.auto_sync_interval is not None and self.auto_sync_interval <= 0:
            raise ValueError("auto_sync_interval must be positive")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SyncConfig:
        """Create from the persisted option names.

        Accepts either a nested ``webdav`` mapping or the connection keys
        at the top level.

        Raises:
            ValueError: If direction or conflictResolution is unknown.
            KeyError: If no URL is given.
        """
        webdav_data = data.get("webdav", data)
        return cls(
            webdav=WebDAVConfig.from_dict(webdav_data),
            direction=SyncDirection(data.get("direction", SyncDirection.BIDIRECTIONAL)),
            conflict_resolution=ConflictResolution(
                data.get("conflictResolution", ConflictResolution.TIMESTAMP)
            ),
            auto_sync=bool(data.get("autoSync", False)),
            auto_sync_interval=data.get("autoSyncInterval"),
            max_chunk_size=data.get("maxChunkSize") or DEFAULT_MAX_CHUNK_SIZE,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the persisted option names."""
        return {
            "webdav": self.webdav.to_dict(),
            "direction": self.direction.value,
            "conflictResolution": self.conflict_resolution.value,
            "autoSync": self.auto_sync,
            "autoSyncInterval": self.auto_sync_interval,
            "maxChunkSize": self.max_chunk_size,
        }

    def merged(self, changes: Mapping[str, Any]) -> SyncConfig:
        """Return a copy with a partial update applied.

        Args:
            changes: Either persisted option names (as accepted by
                from_dict) or SyncConfig field names. A ``webdav`` value may
                be a WebDAVConfig or a partial mapping of persisted
                connection keys.

        Returns:
            New SyncConfig.
        """
        changes = dict(changes)
        webdav = changes.pop("webdav", self.webdav)
        if isinstance(webdav, Mapping):
            webdav = WebDAVConfig.from_dict({**self.webdav.to_dict(), **webdav})

        field_names = set(self.__dataclass_fields__)
        if set(changes) <= field_names:
            return replace(self, webdav=webdav, **changes)

        data = self.to_dict()
        data.update(changes)
        data["webdav"] = webdav.to_dict()
        return SyncConfig.from_dict(data)
