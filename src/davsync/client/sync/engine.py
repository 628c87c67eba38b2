"""Sync engine coordinating chunk synchronization.

This module provides:
- SyncEngine: Connects to the WebDAV server, diffs local and remote
  chunk sets, transfers chunks per direction, resolves version conflicts
  and reports status, progress and results to registered listeners

The engine never talks to the network itself; all remote work goes
through ChunkStore.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from dataclasses import replace
from typing import TYPE_CHECKING, Any

import httpx

from davsync.client.chunk_store import (
    ChunkStore,
    CleanupReport,
    ManualConflictError,
)
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
    SyncEvent,
    SyncEventType,
    SyncInProgressError,
    SyncPhase,
    SyncProgress,
    SyncResult,
    SyncState,
)
from davsync.client.webdav import WebDAVClient
from davsync.core.chunking import ChunkMetadata, VersionMismatch, now_ms
from davsync.core.types import SyncDirection, SyncStatus

if TYPE_CHECKING:
    from davsync.core.config import SyncConfig

logger = logging.getLogger(__name__)

LISTING_PROGRESS = 10.0
TRANSFER_PROGRESS_SPAN = 85.0


class SyncEngine:
    """Coordinates chunk synchronization between local storage and WebDAV.

    Owned by the host application, which supplies the local-data callbacks
    on every sync() call.

    Usage:
        engine = SyncEngine(config, device_id)
        engine.add_event_listener(on_event)
        engine.initialize()

        result = engine.sync(get_local_chunks, get_local_data,
                             save_local_data, delete_local_data)

        engine.destroy()
    """

    def __init__(
        self,
        config: SyncConfig,
        device_id: str,
        auto_sync_callback: AutoSyncCallback | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the sync engine.

        Args:
            config: Sync configuration.
            device_id: Identifier stamped on every chunk this engine writes.
            auto_sync_callback: Zero-argument closure run by the recurring
                trigger; it should call sync() with the host's callbacks.
            transport: Optional httpx transport for the WebDAV client.
        """
        self._config = config
        self._device_id = device_id
        self._auto_sync_callback = auto_sync_callback
        self._transport = transport

        self._client: WebDAVClient | None = None
        self._store: ChunkStore | None = None
        self._scheduler: AutoSyncScheduler | None = None

        self._state = SyncState()
        self._listeners: list[EventListener] = []
        self._listeners_lock = threading.Lock()
        # Held for the duration of a sync run
        self._sync_lock = threading.Lock()

    @property
    def is_initialized(self) -> bool:
        """Check if initialize() has completed."""
        return self._store is not None

    @property
    def device_id(self) -> str:
        return self._device_id

    @property
    def auto_sync_running(self) -> bool:
        """Check if the recurring trigger is armed."""
        return self._scheduler is not None and self._scheduler.running

    def get_state(self) -> SyncState:
        """Get the current state snapshot."""
        return self._state

    def get_config(self) -> SyncConfig:
        """Get the current configuration."""
        return self._config

    # === Lifecycle ===

    def initialize(self) -> None:
        """Connect, prepare the remote store and arm auto-sync if enabled.

        Raises:
            ConnectionFailedError: If the server cannot be reached.
            Exception: Any store or transport error; status becomes ERROR.
        """
        self._teardown()
        client: WebDAVClient | None = None
        try:
            client = WebDAVClient(self._config.webdav, transport=self._transport)

            connection = client.test_connection()
            if not connection.success:
                raise ConnectionFailedError(
                    connection.error or "Failed to connect to WebDAV server"
                )

            store = ChunkStore(client, self._device_id, self._config.max_chunk_size)
            store.initialize()
            store.cleanup()

            self._client = client
            self._store = store

            if self._config.auto_sync:
                self._start_auto_sync()

            self._set_state(status=SyncStatus.IDLE, last_error=None)
            logger.info("Sync engine initialized successfully")
        except Exception as e:
            if client is not None and self._client is None:
                client.close()
            self._set_state(status=SyncStatus.ERROR, last_error=str(e))
            logger.error(f"Failed to initialize sync engine: {e}")
            raise

    def update_config(self, changes: Mapping[str, Any]) -> None:
        """Apply a partial configuration update.

        Re-initializes the engine if it was initialized.

        Raises:
            SyncInProgressError: If a sync is running.
        """
        if not self._sync_lock.acquire(blocking=False):
            raise SyncInProgressError()
        try:
            self._config = self._config.merged(changes)
            logger.info("Sync configuration updated")
            if self.is_initialized:
                self.initialize()
        finally:
            self._sync_lock.release()

    def _teardown(self) -> None:
        self.stop_auto_sync()
        if self._client is not None:
            self._client.close()
        self._store = None
        self._client = None

    def destroy(self) -> None:
        """Disarm auto-sync and release the store and client.

        Safe to call multiple times.
        """
        was_initialized = self.is_initialized
        self._teardown()
        with self._listeners_lock:
            self._listeners.clear()
        if was_initialized:
            logger.info("Sync engine destroyed")

    # === Auto-sync ===

    def _start_auto_sync(self) -> None:
        interval = self._config.auto_sync_interval
        if not interval:
            logger.warning("Auto-sync enabled without an interval, not starting")
            return
        if self._auto_sync_callback is None:
            logger.warning("Auto-sync enabled without a sync callback, not starting")
            return

        self.stop_auto_sync()
        self._scheduler = AutoSyncScheduler(interval, self._auto_sync_callback)
        self._scheduler.start()

    def stop_auto_sync(self) -> None:
        """Disarm the recurring trigger."""
        if self._scheduler is not None:
            self._scheduler.stop()
            self._scheduler = None

    # === Events ===

    def add_event_listener(self, listener: EventListener) -> None:
        """Register a listener for sync events."""
        with self._listeners_lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def remove_event_listener(self, listener: EventListener) -> None:
        """Unregister a listener. Unknown listeners are ignored."""
        with self._listeners_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _emit(self, event_type: SyncEventType, data: dict[str, Any]) -> None:
        event = SyncEvent(type=event_type, data=data)
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception(f"Error in event listener for {event_type.value}")

    def _set_state(self, **changes: Any) -> None:
        self._state = replace(self._state, **changes)
        if "status" in changes:
            self._emit(SyncEventType.STATUS_CHANGED, {"status": self._state.status.value})

    def _emit_progress(self, progress: SyncProgress) -> None:
        self._emit(SyncEventType.PROGRESS, progress.to_dict())

    # === Sync ===

    def _require_store(self) -> ChunkStore:
        if self._store is None:
            raise NotInitializedError()
        return self._store

    def sync(
        self,
        get_local_chunks: GetLocalChunks,
        get_local_data: GetLocalData,
        save_local_data: SaveLocalData,
        delete_local_data: DeleteLocalData,
    ) -> SyncResult:
        """Perform a full sync run.

        Args:
            get_local_chunks: Returns local metadata keyed by chunk id.
            get_local_data: Returns the local payload of a chunk.
            save_local_data: Stores a downloaded payload locally.
            delete_local_data: Removes a chunk from local storage.

        Returns:
            SyncResult with status SUCCESS or CONFLICT.

        Raises:
            NotInitializedError: If initialize() has not succeeded.
            SyncInProgressError: If another run is in progress.
            Exception: Any transport or logical failure; status becomes
                ERROR and an error event is emitted first.
        """
        store = self._require_store()
        if not self._sync_lock.acquire(blocking=False):
            raise SyncInProgressError()
        try:
            return self._run_sync(
                store, get_local_chunks, get_local_data, save_local_data, delete_local_data
            )
        finally:
            self._sync_lock.release()

    def _run_sync(
        self,
        store: ChunkStore,
        get_local_chunks: GetLocalChunks,
        get_local_data: GetLocalData,
        save_local_data: SaveLocalData,
        delete_local_data: DeleteLocalData,
    ) -> SyncResult:
        result = SyncResult(status=SyncStatus.SYNCING, start_time=now_ms())
        direction = self._config.direction
        strategy = self._config.conflict_resolution

        try:
            self._set_state(status=SyncStatus.SYNCING)

            # Phase 1: connect (pick up writes from other devices)
            self._emit_progress(SyncProgress(SyncPhase.CONNECTING, 0.0, 0, 0))
            store.refresh()

            # Phase 2: list and diff
            self._emit_progress(SyncProgress(SyncPhase.LISTING, LISTING_PROGRESS, 0, 0))
            local_chunks: dict[str, ChunkMetadata] = dict(get_local_chunks())
            diff = store.compare_chunks(local_chunks)

            uploads = diff.local_only if direction is not SyncDirection.DOWNLOAD_ONLY else []
            downloads = diff.remote_only if direction is not SyncDirection.UPLOAD_ONLY else []
            removals = diff.local_only if direction is SyncDirection.DOWNLOAD_ONLY else []
            mismatches = diff.version_mismatch
            total = len(uploads) + len(downloads) + len(mismatches) + len(removals)

            self._set_state(
                pending_uploads=len(uploads) + len(mismatches),
                pending_downloads=len(downloads) + len(mismatches),
                conflicts=len(mismatches),
            )
            logger.info(
                f"Chunk diff: {len(diff.local_only)} local-only, "
                f"{len(diff.remote_only)} remote-only, {len(mismatches)} version mismatches"
            )

            processed = 0
            conflict_errors: list[str] = []

            def report(phase: SyncPhase, chunk_id: str) -> None:
                percent = LISTING_PROGRESS + TRANSFER_PROGRESS_SPAN * processed / total
                self._emit_progress(SyncProgress(phase, percent, processed, total, chunk_id))

            def on_step(stage: str, chunk_id: str) -> None:
                nonlocal processed
                phase = SyncPhase(stage)
                report(phase, chunk_id)
                processed += 1
                # Counters track transfers that have not started yet
                pending_uploads = self._state.pending_uploads
                pending_downloads = self._state.pending_downloads
                if phase is not SyncPhase.DOWNLOADING:
                    pending_uploads -= 1
                if phase is not SyncPhase.UPLOADING:
                    pending_downloads -= 1
                self._set_state(
                    pending_uploads=pending_uploads, pending_downloads=pending_downloads
                )

            def on_conflict(mismatch: VersionMismatch, error: Exception) -> None:
                if not isinstance(error, ManualConflictError):
                    conflict_errors.append(f"{mismatch.id}: {error}")
                self._emit(
                    SyncEventType.CONFLICT,
                    {
                        "chunkId": mismatch.id,
                        "localVersion": mismatch.local_version,
                        "remoteVersion": mismatch.remote_version,
                        "error": str(error),
                    },
                )

            # Phases 3-5: uploads, downloads, then version mismatches; a
            # failed resolution is collected and the run continues
            summary = store.merge_diff(
                diff,
                direction,
                strategy,
                get_local_data,
                save_local_data,
                local_chunks=local_chunks,
                on_step=on_step,
                on_conflict=on_conflict,
            )
            result.uploaded.extend(summary.uploaded)
            result.downloaded.extend(summary.downloaded)
            result.resolved.extend(summary.resolved)
            result.conflicts.extend(summary.conflicts)
            result.errors.extend(
                f"{chunk_id}: remote chunk unavailable" for chunk_id in summary.unavailable
            )
            result.errors.extend(conflict_errors)

            # Phase 6: chunks gone from the remote index are only removed
            # locally in download-only mode
            for chunk_id in diff.local_only:
                if direction is SyncDirection.DOWNLOAD_ONLY:
                    report(SyncPhase.MERGING, chunk_id)
                    delete_local_data(chunk_id)
                    result.deleted.append(chunk_id)
                    processed += 1
                else:
                    result.skipped.append(chunk_id)

            result.status = SyncStatus.CONFLICT if result.conflicts else SyncStatus.SUCCESS
            result.end_time = now_ms()
            self._set_state(
                status=result.status,
                last_sync_time=result.end_time,
                last_error=None,
                pending_uploads=0,
                pending_downloads=0,
                conflicts=len(result.conflicts),
            )
            self._emit_progress(SyncProgress(SyncPhase.COMPLETED, 100.0, total, total))
            self._emit(SyncEventType.COMPLETED, result.summary())
            logger.info(f"Sync completed: {result.summary()}")
            return result

        except Exception as e:
            self._set_state(status=SyncStatus.ERROR, last_error=str(e))
            self._emit(SyncEventType.ERROR, {"error": str(e)})
            logger.exception("Sync failed")
            raise

    # === Ad-hoc chunk access ===

    def save_chunk(self, chunk_id: str, data: Any, data_type: str) -> ChunkMetadata:
        """Store a new chunk on the remote."""
        return self._require_store().save_chunk(chunk_id, data, data_type)

    def load_chunk(self, chunk_id: str) -> Any | None:
        """Load a chunk's payload, or None if unavailable."""
        chunk = self._require_store().load_chunk(chunk_id)
        return chunk.data if chunk is not None else None

    def delete_chunk(self, chunk_id: str) -> None:
        """Delete a chunk from the remote."""
        self._require_store().delete_chunk(chunk_id)

    def list_chunks(self) -> list[ChunkMetadata]:
        """List remote chunk metadata."""
        return self._require_store().list_chunks()

    def get_chunk_metadata(self, chunk_id: str) -> ChunkMetadata | None:
        """Get remote metadata of one chunk."""
        return self._require_store().get_chunk_metadata(chunk_id)

    def cleanup(self, prune_missing: bool = False) -> CleanupReport:
        """Run orphan cleanup on the remote store."""
        return self._require_store().cleanup(prune_missing=prune_missing)
