"""Shared enums for davsync.

This module defines the string-valued enums that appear both in the
persisted configuration and in events handed to the host application.
"""

from __future__ import annotations

from enum import Enum


class SyncStatus(str, Enum):
    """Status of the sync engine.

    ``idle -> syncing -> {success | conflict | error}``. A new run goes back
    through ``syncing``.
    """

    IDLE = "idle"
    SYNCING = "syncing"
    SUCCESS = "success"
    CONFLICT = "conflict"
    ERROR = "error"


class SyncDirection(str, Enum):
    """Which transfers a run is allowed to perform."""

    BIDIRECTIONAL = "bidirectional"
    UPLOAD_ONLY = "upload_only"
    DOWNLOAD_ONLY = "download_only"


class ConflictResolution(str, Enum):
    """Strategy applied to chunks whose versions differ on both sides."""

    LOCAL = "local"  # Local wins, remote version is bumped
    REMOTE = "remote"  # Remote wins, downloaded into local storage
    TIMESTAMP = "timestamp"  # Newer updatedAt wins
    MANUAL = "manual"  # Left for a human


class ConflictOutcome(str, Enum):
    """Which side a resolved version mismatch ended up taking."""

    UPLOADED = "uploaded"
    DOWNLOADED = "downloaded"
