"""Local chunk storage for the command-line client.

This module provides:
- LocalChunkState: SQLite-backed store of local chunk payloads and their
  metadata, exposing the callbacks a SyncEngine run needs

Architecture:
    Every local write bumps the chunk's local version so the next sync sees
    a version mismatch against the remote index. After a transfer the row
    adopts the remote metadata, bringing both sides back to the same
    version.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any

from davsync.core.chunking import (
    ChunkMetadata,
    compute_checksum,
    now_ms,
    payload_size,
    serialize_payload,
)

logger = logging.getLogger(__name__)


class LocalChunkState:
    """SQLite-based local chunk storage.

    Usage:
        state = LocalChunkState(config_dir / "state.db")
        state.put("settings", {"theme": "dark"}, "settings", device_id)
        engine.sync(state.local_chunks, state.get_data,
                    state.save_data, state.delete)
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize local state database.

        Args:
            db_path: Path to SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        # Lock for thread-safe database access
        self._lock = threading.RLock()

        self._conn = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            isolation_level=None,  # Autocommit mode
        )
        self._conn.row_factory = sqlite3.Row

        # Enable WAL mode for better concurrency
        self._conn.execute("PRAGMA journal_mode=WAL")

        self._create_tables()

    def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS chunks (
                id TEXT PRIMARY KEY,
                data TEXT NOT NULL,
                data_type TEXT NOT NULL,
                version INTEGER NOT NULL,
                checksum TEXT NOT NULL,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL,
                size INTEGER NOT NULL,
                device_id TEXT NOT NULL
            );

            -- Key-value sync state
            CREATE TABLE IF NOT EXISTS sync_state (
                key TEXT PRIMARY KEY,
                value TEXT
            );
        """)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    @staticmethod
    def _metadata_from_row(row: sqlite3.Row) -> ChunkMetadata:
        return ChunkMetadata(
            id=row["id"],
            version=row["version"],
            checksum=row["checksum"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            size=row["size"],
            data_type=row["data_type"],
            device_id=row["device_id"],
        )

    def _write(self, metadata: ChunkMetadata, serialized: str) -> None:
        self._conn.execute(
            """
            INSERT OR REPLACE INTO chunks
            (id, data, data_type, version, checksum, created_at, updated_at, size, device_id)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                metadata.id,
                serialized,
                metadata.data_type,
                metadata.version,
                metadata.checksum,
                metadata.created_at,
                metadata.updated_at,
                metadata.size,
                metadata.device_id,
            ),
        )

    # === Chunk operations ===

    def get(self, chunk_id: str) -> ChunkMetadata | None:
        """Get local metadata of a chunk.

        Returns:
            ChunkMetadata if found, None otherwise.
        """
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM chunks WHERE id = ?",
                (chunk_id,),
            ).fetchone()
        return self._metadata_from_row(row) if row else None

    def local_chunks(self) -> dict[str, ChunkMetadata]:
        """Get local metadata of every chunk, keyed by id."""
        with self._lock:
            rows = self._conn.execute("SELECT * FROM chunks ORDER BY id").fetchall()
        return {row["id"]: self._metadata_from_row(row) for row in rows}

    def get_data(self, chunk_id: str) -> Any:
        """Get the payload of a local chunk.

        Raises:
            KeyError: If the chunk does not exist locally.
        """
        with self._lock:
            row = self._conn.execute(
                "SELECT data FROM chunks WHERE id = ?",
                (chunk_id,),
            ).fetchone()
        if row is None:
            raise KeyError(chunk_id)
        return json.loads(row["data"])

    def put(self, chunk_id: str, data: Any, data_type: str, device_id: str) -> ChunkMetadata:
        """Write a payload as a local modification.

        Creates the chunk at version 1 or bumps the existing version.

        Returns:
            The new local metadata.
        """
        serialized = serialize_payload(data)
        now = now_ms()
        with self._lock:
            existing = self.get(chunk_id)
            metadata = ChunkMetadata(
                id=chunk_id,
                version=existing.version + 1 if existing else 1,
                checksum=compute_checksum(serialized),
                created_at=existing.created_at if existing else now,
                updated_at=now,
                size=payload_size(serialized),
                data_type=data_type,
                device_id=device_id,
            )
            self._write(metadata, serialized)
        logger.debug(f"Stored local chunk {chunk_id} (version {metadata.version})")
        return metadata

    def save_data(
        self,
        chunk_id: str,
        data: Any,
        metadata: ChunkMetadata | None = None,
    ) -> None:
        """Store a payload received from the remote.

        Args:
            chunk_id: Chunk to write.
            data: Payload.
            metadata: Remote metadata to adopt. Without it the existing
                local metadata is kept (or placeholder metadata at version 0
                is created) until adopt_remote() is called.
        """
        serialized = serialize_payload(data)
        with self._lock:
            if metadata is None:
                existing = self.get(chunk_id)
                now = now_ms()
                metadata = ChunkMetadata(
                    id=chunk_id,
                    version=existing.version if existing else 0,
                    checksum=compute_checksum(serialized),
                    created_at=existing.created_at if existing else now,
                    updated_at=existing.updated_at if existing else now,
                    size=payload_size(serialized),
                    data_type=existing.data_type if existing else "unknown",
                    device_id=existing.device_id if existing else "",
                )
            self._write(metadata, serialized)
        logger.debug(f"Saved remote payload for chunk {chunk_id}")

    def adopt_remote(self, metadata: ChunkMetadata) -> bool:
        """Record remote metadata for a chunk that was just transferred.

        Returns:
            True if the chunk exists locally and was updated.
        """
        with self._lock:
            cursor = self._conn.execute(
                """
                UPDATE chunks
                SET version = ?, checksum = ?, updated_at = ?, data_type = ?, device_id = ?
                WHERE id = ?
                """,
                (
                    metadata.version,
                    metadata.checksum,
                    metadata.updated_at,
                    metadata.data_type,
                    metadata.device_id,
                    metadata.id,
                ),
            )
        return cursor.rowcount > 0

    def delete(self, chunk_id: str) -> None:
        """Remove a chunk from local storage. Unknown ids are ignored."""
        with self._lock:
            self._conn.execute("DELETE FROM chunks WHERE id = ?", (chunk_id,))
        logger.debug(f"Deleted local chunk {chunk_id}")

    # === Sync state ===

    def get_state(self, key: str) -> str | None:
        """Get a sync state value."""
        with self._lock:
            row = self._conn.execute(
                "SELECT value FROM sync_state WHERE key = ?",
                (key,),
            ).fetchone()
        return row["value"] if row else None

    def set_state(self, key: str, value: str) -> None:
        """Set a sync state value."""
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO sync_state (key, value) VALUES (?, ?)",
                (key, value),
            )

    def get_last_sync_time(self) -> int | None:
        """Get timestamp (ms) of the last completed sync."""
        value = self.get_state("last_sync_time")
        return int(value) if value else None

    def set_last_sync_time(self, timestamp: int) -> None:
        """Set timestamp (ms) of the last completed sync."""
        self.set_state("last_sync_time", str(timestamp))
