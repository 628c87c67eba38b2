"""Versioned, checksummed chunk storage on a WebDAV server.

This module provides:
- ChunkStore: chunk CRUD, diffing and conflict resolution on top of
  WebDAVClient
- CleanupReport, MergeSummary: results of maintenance and merge operations
- ChunkStoreError and subclasses

Remote layout, relative to the sync root:
    .chunk-index.json    {"chunks": {id: metadata}, "lastUpdated": ms}
    chunks/<id>.json     {"meta": metadata, "data": payload}

The index is the authoritative list of what exists. Every metadata change
re-reads it, mutates it and writes it back; the index write is the commit
point of the operation.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from davsync.client.webdav import NotFoundError, WebDAVClient
from davsync.core.chunking import (
    ChunkData,
    ChunkDiff,
    ChunkIndex,
    ChunkMetadata,
    VersionMismatch,
    compute_checksum,
    now_ms,
    payload_size,
    serialize_payload,
)
from davsync.core.config import DEFAULT_MAX_CHUNK_SIZE
from davsync.core.types import ConflictOutcome, ConflictResolution, SyncDirection

logger = logging.getLogger(__name__)

INDEX_PATH = ".chunk-index.json"
CHUNKS_DIR = "chunks"
UNKNOWN_DATA_TYPE = "unknown"

# Stage names passed to merge_diff() step callbacks
STAGE_UPLOADING = "uploading"
STAGE_DOWNLOADING = "downloading"
STAGE_MERGING = "merging"

GetLocalData = Callable[[str], Any]
SaveLocalData = Callable[[str, Any], None]
MergeStepCallback = Callable[[str, str], None]
ConflictCallback = Callable[[VersionMismatch, Exception], None]


class ChunkStoreError(Exception):
    """Base exception for chunk store errors."""


class ChunkTooLargeError(ChunkStoreError):
    """Serialized payload exceeds the configured maximum size."""


class ChunkNotFoundError(ChunkStoreError):
    """No metadata exists for the chunk id."""


class ChunkExistsError(ChunkStoreError):
    """A chunk with this id is already indexed."""


class InvalidChunkIdError(ChunkStoreError):
    """Chunk id cannot be used as a remote file name."""


class ChunkUnavailableError(ChunkStoreError):
    """Remote chunk body is missing or failed verification."""


class IndexCorruptedError(ChunkStoreError):
    """Remote index file exists but cannot be decoded."""


class ManualConflictError(ChunkStoreError):
    """Version conflict left for manual resolution.

    Attributes:
        chunk_id: Id of the conflicting chunk.
        local_version: Version on the local side.
        remote_version: Version in the remote index.
    """

    def __init__(self, chunk_id: str, local_version: int, remote_version: int) -> None:
        self.chunk_id = chunk_id
        self.local_version = local_version
        self.remote_version = remote_version
        super().__init__(
            f"Conflict detected for chunk {chunk_id} (local v{local_version}, "
            f"remote v{remote_version}), manual resolution required"
        )


@dataclass
class CleanupReport:
    """Result of ChunkStore.cleanup()."""

    removed_bodies: list[str] = field(default_factory=list)
    missing_bodies: list[str] = field(default_factory=list)
    pruned_entries: list[str] = field(default_factory=list)


@dataclass
class MergeSummary:
    """Result of ChunkStore.merge_diff().

    ``uploaded`` and ``downloaded`` hold local-only and remote-only ids;
    version mismatches end up in ``resolved`` or ``conflicts``.
    """

    uploaded: list[str] = field(default_factory=list)
    downloaded: list[str] = field(default_factory=list)
    unavailable: list[str] = field(default_factory=list)
    resolved: list[str] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)


def validate_chunk_id(chunk_id: str) -> None:
    """Check that a chunk id maps to exactly one file in the chunks folder.

    Raises:
        InvalidChunkIdError: For empty ids, path separators or dot names.
    """
    if not chunk_id or chunk_id in (".", "..") or "/" in chunk_id or "\\" in chunk_id:
        raise InvalidChunkIdError(f"Invalid chunk id: {chunk_id!r}")


def chunk_path(chunk_id: str) -> str:
    """Remote path of a chunk body, relative to the sync root."""
    return f"{CHUNKS_DIR}/{chunk_id}.json"


class ChunkStore:
    """Chunk CRUD with integrity verification and version discipline."""

    def __init__(
        self,
        client: WebDAVClient,
        device_id: str,
        max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE,
    ) -> None:
        """Initialize the chunk store.

        Args:
            client: WebDAV client bound to the sync root.
            device_id: Identifier written into metadata of every write.
            max_chunk_size: Maximum serialized payload size in bytes.
        """
        self._client = client
        self._device_id = device_id
        self._max_chunk_size = max_chunk_size
        self._index: ChunkIndex | None = None
        self._chunks_dir_ready = False
        # Serializes index read-modify-write cycles
        self._lock = threading.RLock()

    @property
    def device_id(self) -> str:
        """Get the device id stamped on writes."""
        return self._device_id

    def initialize(self) -> None:
        """Ensure the sync root exists, then load or create the index."""
        try:
            self._client.create_directory("", parents=True)
        except Exception:
            logger.error("Failed to create sync directory")
            raise
        self.refresh()

    # === Index ===

    def refresh(self) -> ChunkIndex:
        """Reload the index from the remote, creating it if absent.

        Raises:
            IndexCorruptedError: If the index file cannot be decoded.
        """
        with self._lock:
            try:
                raw = self._client.get_file(INDEX_PATH)
            except NotFoundError:
                logger.info("Chunk index not found, creating new index")
                self._index = ChunkIndex()
                self._save_index()
                return self._index

            try:
                self._index = ChunkIndex.from_dict(json.loads(raw))
            except (ValueError, KeyError, TypeError) as e:
                # Rewriting an unreadable index would orphan every chunk
                raise IndexCorruptedError(f"Cannot decode chunk index: {e}") from e
            logger.debug(f"Loaded chunk index with {len(self._index.chunks)} chunks")
            return self._index

    def _cached_index(self) -> ChunkIndex:
        if self._index is None:
            return self.refresh()
        return self._index

    def _save_index(self) -> None:
        assert self._index is not None
        self._index.last_updated = now_ms()
        self._client.put_file(INDEX_PATH, json.dumps(self._index.to_dict(), indent=2))
        logger.debug("Saved chunk index")

    def _commit(self, metadata: ChunkMetadata) -> None:
        """Record new metadata in a freshly read index and persist it."""
        index = self.refresh()
        index.chunks[metadata.id] = metadata
        self._save_index()

    # === Chunk operations ===

    def _encode(self, data: Any) -> tuple[str, str, int]:
        """Serialize a payload and enforce the size limit.

        Returns:
            Tuple of (serialized, checksum, size).
        """
        serialized = serialize_payload(data)
        size = payload_size(serialized)
        if size > self._max_chunk_size:
            raise ChunkTooLargeError(
                f"Chunk data exceeds maximum size of {self._max_chunk_size} bytes ({size} bytes)"
            )
        return serialized, compute_checksum(serialized), size

    def _ensure_chunks_dir(self) -> None:
        if not self._chunks_dir_ready:
            self._client.create_directory(CHUNKS_DIR)
            self._chunks_dir_ready = True

    def _write_body(self, metadata: ChunkMetadata, data: Any) -> None:
        self._ensure_chunks_dir()
        body = ChunkData(meta=metadata, data=data)
        self._client.put_file(chunk_path(metadata.id), json.dumps(body.to_dict()))

    def save_chunk(self, chunk_id: str, data: Any, data_type: str) -> ChunkMetadata:
        """Store a new chunk at version 1.

        Raises:
            ChunkTooLargeError: If the payload exceeds the maximum size.
            ChunkExistsError: If the id is already indexed.
        """
        validate_chunk_id(chunk_id)
        _, checksum, size = self._encode(data)

        with self._lock:
            if chunk_id in self.refresh().chunks:
                raise ChunkExistsError(f"Chunk already exists: {chunk_id}")

            now = now_ms()
            metadata = ChunkMetadata(
                id=chunk_id,
                version=1,
                checksum=checksum,
                created_at=now,
                updated_at=now,
                size=size,
                data_type=data_type,
                device_id=self._device_id,
            )
            self._write_body(metadata, data)
            self._commit(metadata)

        logger.info(f"Saved chunk: {chunk_id} ({size} bytes)")
        return metadata

    def load_chunk(self, chunk_id: str) -> ChunkData[Any] | None:
        """Read a chunk and verify its checksum.

        Returns:
            The chunk, or None if the body is missing, undecodable or fails
            checksum verification. None means "unusable", not "absent".
        """
        validate_chunk_id(chunk_id)
        try:
            raw = self._client.get_file(chunk_path(chunk_id))
        except NotFoundError:
            logger.warning(f"Chunk body missing: {chunk_id}")
            return None

        try:
            chunk = ChunkData.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Chunk body undecodable: {chunk_id} ({e})")
            return None

        if compute_checksum(serialize_payload(chunk.data)) != chunk.meta.checksum:
            logger.warning(f"Chunk checksum mismatch: {chunk_id}")
            return None
        return chunk

    def download_chunk(self, chunk_id: str) -> ChunkData[Any] | None:
        """Fetch a chunk for transfer into local storage."""
        return self.load_chunk(chunk_id)

    def update_chunk(self, chunk_id: str, data: Any) -> ChunkMetadata:
        """Replace a chunk's payload and bump its version by one.

        Raises:
            ChunkNotFoundError: If the id is not indexed.
            ChunkTooLargeError: If the payload exceeds the maximum size.
        """
        validate_chunk_id(chunk_id)
        _, checksum, size = self._encode(data)

        with self._lock:
            existing = self.refresh().chunks.get(chunk_id)
            if existing is None:
                raise ChunkNotFoundError(f"Chunk not found: {chunk_id}")

            metadata = replace(
                existing,
                version=existing.version + 1,
                checksum=checksum,
                updated_at=now_ms(),
                size=size,
                device_id=self._device_id,
            )
            self._write_body(metadata, data)
            self._commit(metadata)

        logger.info(f"Updated chunk: {chunk_id} (version {metadata.version})")
        return metadata

    def upload_chunk(self, chunk_id: str, data: Any, data_type: str) -> ChunkMetadata:
        """Create or update a chunk, whichever applies."""
        with self._lock:
            if chunk_id in self.refresh().chunks:
                return self.update_chunk(chunk_id, data)
            return self.save_chunk(chunk_id, data, data_type)

    def delete_chunk(self, chunk_id: str) -> None:
        """Delete a chunk body and its index entry.

        Deleting an unknown or already deleted chunk is a no-op.
        """
        validate_chunk_id(chunk_id)
        with self._lock:
            self._client.delete_file(chunk_path(chunk_id))
            index = self.refresh()
            if chunk_id in index.chunks:
                del index.chunks[chunk_id]
                self._save_index()
        logger.info(f"Deleted chunk: {chunk_id}")

    def get_chunk_metadata(self, chunk_id: str) -> ChunkMetadata | None:
        """Get metadata from the cached index."""
        return self._cached_index().chunks.get(chunk_id)

    def list_chunks(self) -> list[ChunkMetadata]:
        """List metadata of every indexed chunk."""
        return list(self._cached_index().chunks.values())

    # === Diff and merge ===

    def compare_chunks(self, local_chunks: Mapping[str, ChunkMetadata]) -> ChunkDiff:
        """Partition local and remote ids.

        Every id in either map lands in exactly one bucket, or in none when
        both versions agree.
        """
        remote_chunks = self._cached_index().chunks
        diff = ChunkDiff()

        for chunk_id, local in local_chunks.items():
            remote = remote_chunks.get(chunk_id)
            if remote is None:
                diff.local_only.append(chunk_id)
            elif local.version != remote.version:
                diff.version_mismatch.append(
                    VersionMismatch(
                        id=chunk_id,
                        local_version=local.version,
                        remote_version=remote.version,
                        local_updated_at=local.updated_at,
                        remote_updated_at=remote.updated_at,
                    )
                )

        diff.remote_only.extend(
            chunk_id for chunk_id in remote_chunks if chunk_id not in local_chunks
        )
        return diff

    def _download_into(self, chunk_id: str, save_local_data: SaveLocalData) -> None:
        chunk = self.download_chunk(chunk_id)
        if chunk is None:
            raise ChunkUnavailableError(f"Remote chunk unavailable: {chunk_id}")
        save_local_data(chunk_id, chunk.data)

    def resolve_conflict(
        self,
        chunk_id: str,
        local_version: int,
        remote_version: int,
        strategy: ConflictResolution,
        get_local_data: GetLocalData,
        save_local_data: SaveLocalData,
        local_updated_at: int | None = None,
        data_type: str = UNKNOWN_DATA_TYPE,
    ) -> ConflictOutcome:
        """Resolve one version mismatch with the given strategy.

        Args:
            chunk_id: Conflicting chunk.
            local_version: Version on the local side.
            remote_version: Version in the remote index.
            strategy: How to pick a winner.
            get_local_data: Reads the local payload.
            save_local_data: Writes a payload into local storage.
            local_updated_at: Local modification time, used by TIMESTAMP.
            data_type: Tag used if the chunk has to be recreated remotely.

        Returns:
            Which transfer was performed.

        Raises:
            ManualConflictError: For MANUAL; neither side is touched.
            ChunkUnavailableError: If the remote side wins but its body
                cannot be read.
        """
        strategy = ConflictResolution(strategy)

        if strategy is ConflictResolution.TIMESTAMP:
            if local_updated_at is None:
                logger.warning(
                    f"Timestamp resolution for {chunk_id} without a local timestamp, "
                    "remote wins"
                )
            remote = self.get_chunk_metadata(chunk_id)
            remote_updated_at = remote.updated_at if remote else None
            if (
                local_updated_at is not None
                and remote_updated_at is not None
                and local_updated_at > remote_updated_at
            ):
                strategy = ConflictResolution.LOCAL
            else:
                strategy = ConflictResolution.REMOTE
            logger.info(
                f"Timestamp resolution for {chunk_id}: local={local_updated_at} "
                f"remote={remote_updated_at} -> {strategy.value} wins"
            )

        if strategy is ConflictResolution.LOCAL:
            self.upload_chunk(chunk_id, get_local_data(chunk_id), data_type)
            logger.info(f"Resolved conflict (local wins): {chunk_id}")
            return ConflictOutcome.UPLOADED

        if strategy is ConflictResolution.REMOTE:
            self._download_into(chunk_id, save_local_data)
            logger.info(f"Resolved conflict (remote wins): {chunk_id}")
            return ConflictOutcome.DOWNLOADED

        logger.warning(f"Conflict detected (manual resolution required): {chunk_id}")
        raise ManualConflictError(chunk_id, local_version, remote_version)

    def resolve_mismatch(
        self,
        mismatch: VersionMismatch,
        direction: SyncDirection,
        strategy: ConflictResolution,
        get_local_data: GetLocalData,
        save_local_data: SaveLocalData,
        data_type: str = UNKNOWN_DATA_TYPE,
    ) -> ConflictOutcome:
        """Resolve a mismatch, letting a one-way direction override the strategy."""
        direction = SyncDirection(direction)
        if direction is SyncDirection.UPLOAD_ONLY:
            strategy = ConflictResolution.LOCAL
        elif direction is SyncDirection.DOWNLOAD_ONLY:
            strategy = ConflictResolution.REMOTE

        return self.resolve_conflict(
            mismatch.id,
            mismatch.local_version,
            mismatch.remote_version,
            strategy,
            get_local_data,
            save_local_data,
            local_updated_at=mismatch.local_updated_at,
            data_type=data_type,
        )

    def merge_diff(
        self,
        diff: ChunkDiff,
        direction: SyncDirection,
        conflict_resolution: ConflictResolution,
        get_local_data: GetLocalData,
        save_local_data: SaveLocalData,
        local_chunks: Mapping[str, ChunkMetadata] | None = None,
        on_step: MergeStepCallback | None = None,
        on_conflict: ConflictCallback | None = None,
    ) -> MergeSummary:
        """Apply a diff according to direction and conflict strategy.

        Local-only chunks are uploaded first, then remote-only chunks are
        downloaded, then version mismatches are resolved.

        Args:
            diff: Result of compare_chunks().
            direction: Gates uploads of local-only and downloads of
                remote-only chunks.
            conflict_resolution: Strategy for version mismatches in
                bidirectional mode.
            get_local_data: Reads a local payload.
            save_local_data: Writes a payload into local storage.
            local_chunks: Local metadata, used for data types of new chunks.
            on_step: Called with the stage name and chunk id before each
                transfer or resolution.
            on_conflict: If given, a failed resolution is recorded in
                ``summary.conflicts`` and passed to this callback instead
                of being raised, so the remaining mismatches still run.

        Raises:
            ManualConflictError: On the first mismatch under MANUAL, when
                no on_conflict callback is given.
        """
        direction = SyncDirection(direction)
        local_chunks = local_chunks or {}
        summary = MergeSummary()

        def data_type_of(chunk_id: str) -> str:
            local = local_chunks.get(chunk_id)
            return local.data_type if local else UNKNOWN_DATA_TYPE

        def step(stage: str, chunk_id: str) -> None:
            if on_step is not None:
                on_step(stage, chunk_id)

        if direction is not SyncDirection.DOWNLOAD_ONLY:
            for chunk_id in diff.local_only:
                step(STAGE_UPLOADING, chunk_id)
                self.upload_chunk(chunk_id, get_local_data(chunk_id), data_type_of(chunk_id))
                summary.uploaded.append(chunk_id)
                logger.info(f"Uploaded local-only chunk: {chunk_id}")

        if direction is not SyncDirection.UPLOAD_ONLY:
            for chunk_id in diff.remote_only:
                step(STAGE_DOWNLOADING, chunk_id)
                chunk = self.download_chunk(chunk_id)
                if chunk is None:
                    summary.unavailable.append(chunk_id)
                    continue
                save_local_data(chunk_id, chunk.data)
                summary.downloaded.append(chunk_id)
                logger.info(f"Downloaded remote-only chunk: {chunk_id}")

        for mismatch in diff.version_mismatch:
            step(STAGE_MERGING, mismatch.id)
            try:
                self.resolve_mismatch(
                    mismatch,
                    direction,
                    conflict_resolution,
                    get_local_data,
                    save_local_data,
                    data_type=data_type_of(mismatch.id),
                )
            except Exception as e:
                if on_conflict is None:
                    raise
                summary.conflicts.append(mismatch.id)
                logger.warning(f"Failed to resolve conflict for chunk {mismatch.id}: {e}")
                on_conflict(mismatch, e)
            else:
                summary.resolved.append(mismatch.id)

        return summary

    # === Maintenance ===

    def cleanup(self, prune_missing: bool = False) -> CleanupReport:
        """Delete chunk bodies that have no index entry.

        Args:
            prune_missing: Also drop index entries whose body is missing.
                Without it such entries are only reported, and load_chunk()
                returns None for them.

        Returns:
            What was removed or found missing.
        """
        report = CleanupReport()
        with self._lock:
            index = self.refresh()
            listed: set[str] = set()

            for entry in self._client.list_directory(CHUNKS_DIR):
                if entry.endswith("/"):
                    continue  # Skip directories
                name = entry[len(CHUNKS_DIR) + 1:] if entry.startswith(CHUNKS_DIR + "/") else ""
                if not name.endswith(".json"):
                    continue
                chunk_id = name[: -len(".json")]
                listed.add(chunk_id)
                if chunk_id not in index.chunks:
                    self._client.delete_file(entry)
                    report.removed_bodies.append(chunk_id)
                    logger.info(f"Cleaned up orphaned chunk file: {chunk_id}")

            report.missing_bodies = [cid for cid in index.chunks if cid not in listed]
            for chunk_id in report.missing_bodies:
                logger.warning(f"Index entry without chunk body: {chunk_id}")

            if prune_missing and report.missing_bodies:
                for chunk_id in report.missing_bodies:
                    del index.chunks[chunk_id]
                self._save_index()
                report.pruned_entries = list(report.missing_bodies)
                logger.info(f"Pruned {len(report.pruned_entries)} index entries without body")

        return report
