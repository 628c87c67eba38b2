"""Shared types and dataclasses for sync operations.

This module provides:
- SyncError, NotInitializedError, SyncInProgressError,
  ConnectionFailedError: Exception classes
- SyncState: Snapshot of engine state
- SyncPhase, SyncProgress: Progress reporting
- SyncResult: Overall sync operation result
- SyncEventType, SyncEvent: Events delivered to listeners
- Type aliases for host callbacks
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from davsync.core.chunking import ChunkMetadata, now_ms
from davsync.core.types import SyncStatus


class SyncError(Exception):
    """Base exception for sync errors."""


class NotInitializedError(SyncError):
    """Engine used before initialize()."""

    def __init__(self) -> None:
        super().__init__("Sync engine not initialized")


class SyncInProgressError(SyncError):
    """Another sync run holds the engine."""

    def __init__(self) -> None:
        super().__init__("A sync is already in progress")


class ConnectionFailedError(SyncError):
    """Connectivity probe failed during initialize()."""


@dataclass(frozen=True)
class SyncState:
    """Snapshot of the engine state.

    Replaced as a whole on every transition so observers never see a
    half-updated state.
    """

    status: SyncStatus = SyncStatus.IDLE
    last_sync_time: int | None = None
    last_error: str | None = None
    pending_uploads: int = 0
    pending_downloads: int = 0
    conflicts: int = 0


class SyncPhase(str, Enum):
    """Ordered phases of a sync run."""

    CONNECTING = "connecting"
    LISTING = "listing"
    UPLOADING = "uploading"
    DOWNLOADING = "downloading"
    MERGING = "merging"
    COMPLETED = "completed"


@dataclass
class SyncProgress:
    """Progress information for a sync run."""

    phase: SyncPhase
    total_progress: float  # 0-100, never decreases within a run
    processed_chunks: int
    total_chunks: int
    current_chunk: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to an event payload."""
        return {
            "phase": self.phase.value,
            "totalProgress": self.total_progress,
            "processedChunks": self.processed_chunks,
            "totalChunks": self.total_chunks,
            "currentChunk": self.current_chunk,
        }


@dataclass
class SyncResult:
    """Result of a sync operation."""

    status: SyncStatus
    start_time: int
    end_time: int = 0
    uploaded: list[str] = field(default_factory=list)
    downloaded: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    resolved: list[str] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """True when no conflict was left unresolved."""
        return self.status is SyncStatus.SUCCESS

    @property
    def has_conflicts(self) -> bool:
        """Check if there are any conflicts."""
        return len(self.conflicts) > 0

    @property
    def uploaded_chunks(self) -> int:
        return len(self.uploaded)

    @property
    def downloaded_chunks(self) -> int:
        return len(self.downloaded)

    @property
    def deleted_chunks(self) -> int:
        return len(self.deleted)

    @property
    def skipped_chunks(self) -> int:
        return len(self.skipped)

    def summary(self) -> dict[str, int]:
        """Counts carried by the completed event."""
        return {
            "uploadedChunks": self.uploaded_chunks,
            "downloadedChunks": self.downloaded_chunks,
            "deletedChunks": self.deleted_chunks,
            "skippedChunks": self.skipped_chunks,
            "conflicts": len(self.conflicts),
        }


class SyncEventType(str, Enum):
    """Types of events emitted by the engine."""

    STATUS_CHANGED = "status_changed"
    PROGRESS = "progress"
    ERROR = "error"
    CONFLICT = "conflict"
    COMPLETED = "completed"


@dataclass
class SyncEvent:
    """An event delivered to registered listeners."""

    type: SyncEventType
    data: dict[str, Any]
    timestamp: int = field(default_factory=now_ms)


# Host callbacks
GetLocalChunks = Callable[[], Mapping[str, ChunkMetadata]]
GetLocalData = Callable[[str], Any]
SaveLocalData = Callable[[str, Any], None]
DeleteLocalData = Callable[[str], None]
EventListener = Callable[[SyncEvent], None]
AutoSyncCallback = Callable[[], object]
