"""Sync orchestration for chunked application data.

Architecture:
    SyncEngine → ChunkStore → WebDAVClient

Components:
- **SyncEngine**: Diffs local and remote chunks, transfers and resolves
  conflicts, reports state, progress and events
- **AutoSyncScheduler**: Recurring trigger running a host-supplied sync job

All public symbols are re-exported here.
"""

from davsync.client.sync.engine import SyncEngine
from davsync.client.sync.scheduler import AutoSyncScheduler
from davsync.client.sync.types import (
    AutoSyncCallback,
    ConnectionFailedError,
    DeleteLocalData,
    EventListener,
    GetLocalChunks,
    GetLocalData,
    NotInitializedError,
    SaveLocalData,
    SyncError,
    SyncEvent,
    SyncEventType,
    SyncInProgressError,
    SyncPhase,
    SyncProgress,
    SyncResult,
    SyncState,
)

__all__ = [
    # Engine
    "SyncEngine",
    "AutoSyncScheduler",
    # Errors
    "ConnectionFailedError",
    "NotInitializedError",
    "SyncError",
    "SyncInProgressError",
    # Types and dataclasses
    "SyncEvent",
    "SyncEventType",
    "SyncPhase",
    "SyncProgress",
    "SyncResult",
    "SyncState",
    # Host callbacks
    "AutoSyncCallback",
    "DeleteLocalData",
    "EventListener",
    "GetLocalChunks",
    "GetLocalData",
    "SaveLocalData",
]
