"""Retry logic with exponential backoff.

This module provides:
- retry_with_backoff: Retry a callable on transient transport errors
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

import httpx

logger = logging.getLogger(__name__)

# Default retry configuration
DEFAULT_MAX_RETRIES = 2
DEFAULT_INITIAL_BACKOFF = 0.5  # seconds
DEFAULT_MAX_BACKOFF = 8.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0

# Errors raised before any HTTP status is known (timeouts, DNS, TLS, resets)
TRANSIENT_EXCEPTIONS: tuple[type[Exception], ...] = (httpx.TransportError,)

R = TypeVar("R")


def retry_with_backoff(
    func: Callable[[], R],
    max_retries: int = DEFAULT_MAX_RETRIES,
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
    max_backoff: float = DEFAULT_MAX_BACKOFF,
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
    retryable_exceptions: tuple[type[Exception], ...] = TRANSIENT_EXCEPTIONS,
    description: str = "request",
) -> R:
    """Execute a function with exponential backoff retry.

    Only use this for idempotent operations: a retried call may repeat
    work whose first attempt actually reached the server.

    Args:
        func: Function to execute.
        max_retries: Maximum number of retry attempts (0 disables retry).
        initial_backoff: Initial backoff time in seconds.
        max_backoff: Maximum backoff time in seconds.
        backoff_multiplier: Multiplier for each retry.
        retryable_exceptions: Tuple of exception types to retry on.
        description: Label used in log messages.

    Returns:
        Result of the function.

    Raises:
        The last exception if all retries fail.
    """
    backoff = initial_backoff

    for attempt in range(max_retries + 1):
        try:
            return func()
        except retryable_exceptions as e:
            if attempt == max_retries:
                if max_retries:
                    logger.error(f"{description}: all {max_retries} retries failed: {e}")
                raise

            logger.warning(
                f"{description}: attempt {attempt + 1}/{max_retries + 1} failed: {e}. "
                f"Retrying in {backoff:.1f}s..."
            )
            time.sleep(backoff)
            backoff = min(backoff * backoff_multiplier, max_backoff)

    raise RuntimeError("Unexpected retry loop exit")
