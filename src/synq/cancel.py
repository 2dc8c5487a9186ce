"""Advisory cancellation token handed to fetchers."""

from __future__ import annotations

import logging
from collections.abc import Callable

from synq.exceptions import FetchCancelled

logger = logging.getLogger(__name__)


class CancelToken:
    """Signals that the caller no longer wants a result.

    Cancellation is advisory: the engine discards the result of a cancelled
    fetch but does not assume the remote call stopped. Transports can hook
    ``on_cancel`` to abort early, e.g. closing an ``httpx`` stream.
    """

    __slots__ = ("_cancelled", "_callbacks", "_reason", "label")

    def __init__(self, label: str | None = None) -> None:
        self.label = label
        self._cancelled = False
        self._reason: str | None = None
        self._callbacks: list[Callable[[], None]] = []

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> None:
        """Request cancellation and run registered callbacks once."""
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        logger.debug("Cancelled %s: %s", self.label or "token", reason)

        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Error in cancel callback for %s", self.label)

    def on_cancel(self, callback: Callable[[], None]) -> None:
        """Register a callback; runs immediately if already cancelled."""
        if self._cancelled:
            callback()
        else:
            self._callbacks.append(callback)

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise FetchCancelled(self._reason)


__all__ = ["CancelToken"]
