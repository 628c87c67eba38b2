"""Core module - Shared chunk model, configuration and enums."""

from davsync.core.chunking import (
    ChunkData,
    ChunkDiff,
    ChunkIndex,
    ChunkMetadata,
    VersionMismatch,
    compute_checksum,
    generate_device_id,
    now_ms,
    payload_size,
    serialize_payload,
)
from davsync.core.config import (
    DEFAULT_MAX_CHUNK_SIZE,
    SyncConfig,
    WebDAVConfig,
)
from davsync.core.types import (
    ConflictOutcome,
    ConflictResolution,
    SyncDirection,
    SyncStatus,
)

__all__ = [
    # Chunk model
    "ChunkData",
    "ChunkDiff",
    "ChunkIndex",
    "ChunkMetadata",
    "VersionMismatch",
    "compute_checksum",
    "generate_device_id",
    "now_ms",
    "payload_size",
    "serialize_payload",
    # Config
    "DEFAULT_MAX_CHUNK_SIZE",
    "SyncConfig",
    "WebDAVConfig",
    # Types
    "ConflictOutcome",
    "ConflictResolution",
    "SyncDirection",
    "SyncStatus",
]
