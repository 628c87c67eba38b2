"""Recurring trigger for automatic sync runs.

This module provides:
- AutoSyncScheduler: runs a host-supplied zero-argument job on a fixed
  interval in a background thread
"""

from __future__ import annotations

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from davsync.client.sync.types import AutoSyncCallback, SyncInProgressError

logger = logging.getLogger(__name__)

JOB_ID = "auto_sync"


class AutoSyncScheduler:
    """Interval scheduler for automatic sync.

    The job is a closure owned by the host application that performs one
    complete sync with its own local-data callbacks. Ticks never overlap:
    a tick that fires while the previous one is running is dropped.
    """

    def __init__(self, interval_ms: int, job: AutoSyncCallback) -> None:
        """Initialize the scheduler.

        Args:
            interval_ms: Interval between runs in milliseconds.
            job: Zero-argument callable performing one sync.
        """
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        self._interval_ms = interval_ms
        self._job = job
        self._scheduler: BackgroundScheduler | None = None

    @property
    def running(self) -> bool:
        """Check if the scheduler is armed."""
        return self._scheduler is not None

    @property
    def interval_ms(self) -> int:
        return self._interval_ms

    def _run_job(self) -> None:
        """Job function for scheduled sync."""
        logger.info("Auto-sync triggered")
        try:
            self._job()
        except SyncInProgressError:
            logger.info("Auto-sync skipped: a sync is already in progress")
        except Exception:
            logger.exception("Error during scheduled sync")

    def start(self) -> None:
        """Start the scheduler."""
        if self._scheduler is not None:
            return  # Already running

        self._scheduler = BackgroundScheduler()
        self._scheduler.add_job(
            self._run_job,
            trigger=IntervalTrigger(seconds=self._interval_ms / 1000),
            id=JOB_ID,
            name="Automatic sync",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info(f"Auto-sync started with interval {self._interval_ms}ms")

    def stop(self) -> None:
        """Stop the scheduler. Safe to call when not running."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Auto-sync stopped")

    def run_now(self) -> None:
        """Run the job immediately (manual trigger)."""
        self._run_job()
