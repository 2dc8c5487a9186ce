"""Network mode gating and the connectivity signal."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable, Callable
from enum import Enum

from synq.types import NetworkMode

logger = logging.getLogger(__name__)

NetworkListener = Callable[[bool], None]


class Gate(str, Enum):
    """Decision returned by :func:`resolve`."""

    PROCEED = "proceed"
    WAIT = "wait"
    SERVE_CACHED = "serve_cached"


def resolve(mode: NetworkMode, is_online: bool, has_data: bool) -> Gate:
    """Decide whether a network operation may run now.

    ============== ======= =====================================
    mode           online  offline
    ============== ======= =====================================
    online         PROCEED WAIT
    offline_first  PROCEED SERVE_CACHED with data, WAIT without
    always         PROCEED PROCEED
    ============== ======= =====================================
    """
    if is_online or mode is NetworkMode.ALWAYS:
        return Gate.PROCEED
    if mode is NetworkMode.OFFLINE_FIRST and has_data:
        return Gate.SERVE_CACHED
    return Gate.WAIT


class NetworkSignal:
    """Current connectivity plus edge-triggered listeners.

    Listeners are called only when the value actually changes, with the new
    value. ``wait_until_online`` parks coroutines until the next online edge.
    """

    def __init__(self, online: bool = True) -> None:
        self._online = online
        self._listeners: list[NetworkListener] = []
        self._online_event = asyncio.Event()
        if online:
            self._online_event.set()

    @property
    def is_online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> None:
        """Update connectivity; notifies listeners on transitions only."""
        if online == self._online:
            return
        self._online = online
        if online:
            self._online_event.set()
        else:
            self._online_event.clear()
        logger.debug("Network is now %s", "online" if online else "offline")

        for listener in list(self._listeners):
            try:
                listener(online)
            except Exception:
                logger.exception("Network listener failed")

    def add_listener(self, listener: NetworkListener) -> Callable[[], None]:
        """Register an edge listener. Returns a function that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def wait_until_online(self) -> None:
        # Loop: the event can be cleared again before this waiter resumes
        while not self._online:
            await self._online_event.wait()

    async def follow(self, stream: AsyncIterable[bool]) -> None:
        """Mirror a stream of connectivity values until it ends."""
        async for online in stream:
            self.set_online(bool(online))


__all__ = ["Gate", "NetworkListener", "NetworkSignal", "resolve"]
