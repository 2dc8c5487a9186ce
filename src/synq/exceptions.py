"""Exception hierarchy for synq.

Fetch and mutation failures are stored on their entry as state. These
classes are what ends up in ``entry.error`` / ``mutation.error`` and what the
``on_error`` boundary receives. Only configuration mistakes are raised.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class SynqError(Exception):
    """Base class for all synq errors."""


ErrorHandler = Callable[[SynqError], None]


def report_error(handler: ErrorHandler | None, error: SynqError) -> None:
    """Deliver an error to the ``on_error`` boundary, if one is installed."""
    if handler is None:
        return
    try:
        handler(error)
    except Exception:
        logger.exception("on_error handler failed while reporting %r", error)


class FetchError(SynqError):
    """A query fetch failed after exhausting its retries."""

    def __init__(self, key: str, attempts: int, cause: BaseException) -> None:
        super().__init__(f"Fetch for {key} failed after {attempts} attempt(s): {cause}")
        self.key = key
        self.attempts = attempts
        self.cause = cause


class MutationError(SynqError):
    """A mutation's remote call failed and it was not queued for replay."""

    def __init__(self, cause: BaseException, mutation_key: str | None = None) -> None:
        label = mutation_key or "anonymous mutation"
        super().__init__(f"{label} failed: {cause}")
        self.mutation_key = mutation_key
        self.cause = cause


class ReplayError(SynqError):
    """A queued mutation failed when replayed and was dropped from the queue."""

    def __init__(self, job_id: int, mutation_key: str, cause: BaseException) -> None:
        super().__init__(f"Replay of {mutation_key} (id {job_id}) failed: {cause}")
        self.job_id = job_id
        self.mutation_key = mutation_key
        self.cause = cause


class StorageError(SynqError):
    """Reading or writing durable storage failed."""

    def __init__(self, operation: str, key: str, cause: BaseException) -> None:
        super().__init__(f"Storage {operation} failed for {key}: {cause}")
        self.operation = operation
        self.key = key
        self.cause = cause


class FetchCancelled(SynqError):
    """Raised by ``CancelToken.raise_if_cancelled`` inside a fetcher."""

    def __init__(self, reason: str | None = None) -> None:
        super().__init__(reason or "Fetch cancelled")
        self.reason = reason


class ConfigurationError(SynqError):
    """Programmer error: the engine was wired or called incorrectly."""


class MissingHandlerError(ConfigurationError):
    """No replay handler is registered for a queued mutation key."""

    def __init__(self, mutation_key: str, job: Any = None) -> None:
        super().__init__(f"No handler registered for mutation key {mutation_key!r}")
        self.mutation_key = mutation_key
        self.job = job


__all__ = [
    "ConfigurationError",
    "ErrorHandler",
    "FetchCancelled",
    "FetchError",
    "MissingHandlerError",
    "MutationError",
    "ReplayError",
    "StorageError",
    "SynqError",
    "report_error",
]
