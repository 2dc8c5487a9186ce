"""Durable offline mutation queue and its replay loop.

Mutations that cannot run while offline are appended here and replayed in
strict FIFO order once the network signal goes online again. Handlers are
looked up by ``mutation_key`` at replay time, since functions cannot be
persisted.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import replace
from typing import Any

from synq.exceptions import ErrorHandler, MissingHandlerError, ReplayError, report_error
from synq.network import NetworkSignal
from synq.persistence import PersistenceBridge
from synq.types import MutationHandler, QueuedMutation

logger = logging.getLogger(__name__)

ReplayErrorHandler = Callable[[ReplayError], None]


def _now_ms() -> int:
    return int(time.time() * 1000)


class MutationQueue:
    """FIFO of pending mutations with single-flight replay.

    Replay rules:
    - jobs run one at a time, oldest first
    - a job leaves storage only after its handler finished
    - a handler failure while still online drops the job and reports a
      ReplayError; a failure after the network dropped keeps it and pauses
    - a missing handler stops replay with MissingHandlerError and keeps the
      job until a handler is registered
    """

    def __init__(
        self,
        *,
        network: NetworkSignal | None = None,
        bridge: PersistenceBridge | None = None,
        handlers: Mapping[str, MutationHandler] | None = None,
        on_replay_error: ReplayErrorHandler | None = None,
        on_error: ErrorHandler | None = None,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._jobs: deque[QueuedMutation] = deque()
        self._handlers: dict[str, MutationHandler] = dict(handlers or {})
        self._network = network if network is not None else NetworkSignal()
        self._bridge = bridge if bridge is not None else PersistenceBridge(clock=clock, on_error=on_error)
        self._on_replay_error = on_replay_error
        self._on_error = on_error
        self._clock = clock
        self._next_id = 1
        self._draining = False
        self._closing = False
        self._drain_task: asyncio.Task[None] | None = None
        self._persist_lock = asyncio.Lock()
        self._restore_lock = asyncio.Lock()
        self._restored = False
        self._remove_listener = self._network.add_listener(self._on_network_change)

    @property
    def pending_count(self) -> int:
        return len(self._jobs)

    @property
    def pending(self) -> list[QueuedMutation]:
        """Snapshot of queued jobs, oldest first."""
        return list(self._jobs)

    @property
    def is_draining(self) -> bool:
        return self._draining

    @property
    def handlers(self) -> Mapping[str, MutationHandler]:
        return dict(self._handlers)

    def has_pending(self, mutation_key: str) -> bool:
        return any(job.mutation_key == mutation_key for job in self._jobs)

    def register_handlers(self, handlers: Mapping[str, MutationHandler]) -> None:
        """Add replay handlers. Resumes a replay blocked on a missing handler."""
        self._handlers.update(handlers)
        if self._jobs and self._network.is_online:
            self.trigger()

    async def restore(self) -> int:
        """Load persisted jobs ahead of anything queued in this session.

        Runs once per queue and later calls return 0. The first write
        restores implicitly, so storage is never overwritten unread. Jobs
        already queued in memory move behind the persisted ones with fresh ids.
        """
        async with self._restore_lock:
            if self._restored:
                return 0
            self._restored = True
            restored = await self._bridge.load_queue()
            if not restored:
                return 0

            next_id = max(job.id for job in restored) + 1
            current = []
            for job in self._jobs:
                current.append(replace(job, id=next_id))
                next_id += 1
            self._jobs = deque(restored + current)
            self._next_id = next_id
            logger.debug("Restored %d mutations from storage", len(restored))
            if current:
                await self._persist()
            return len(restored)

    async def enqueue(self, mutation_key: str, payload: Any) -> QueuedMutation:
        """Append a mutation and persist the queue."""
        await self.restore()
        job = QueuedMutation(
            id=self._next_id,
            mutation_key=mutation_key,
            payload=payload,
            enqueued_at=self._clock(),
        )
        self._next_id += 1
        self._jobs.append(job)
        logger.debug("Mutation queued offline: %s (id %d)", mutation_key, job.id)
        await self._persist()
        return job

    def trigger(self) -> asyncio.Task[None] | None:
        """Start a background replay unless one is running or nothing can run."""
        if self._drain_task is not None and not self._drain_task.done():
            return self._drain_task
        if not self._jobs or not self._network.is_online or self._closing:
            return None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return None  # start() triggers once a loop is running
        self._drain_task = loop.create_task(self._drain_in_background())
        return self._drain_task

    async def wait_idle(self) -> None:
        """Wait for a running background replay to finish."""
        if self._drain_task is not None:
            await asyncio.gather(self._drain_task, return_exceptions=True)

    async def _drain_in_background(self) -> None:
        try:
            await self.drain()
        except MissingHandlerError as e:
            logger.error("%s; replay paused until it is registered", e)
            report_error(self._on_error, e)

    async def drain(self) -> int:
        """Replay queued mutations in order. Returns how many succeeded.

        A call while another drain is running returns 0 immediately.

        Raises:
            MissingHandlerError: The head job has no registered handler.
        """
        if self._draining:
            return 0

        self._draining = True
        replayed = 0
        try:
            if self._jobs:
                logger.debug("Processing offline mutation queue (%d jobs)", len(self._jobs))

            while self._jobs and self._network.is_online and not self._closing:
                job = self._jobs[0]
                handler = self._handlers.get(job.mutation_key)
                if handler is None:
                    raise MissingHandlerError(job.mutation_key, job)

                logger.debug("Replaying mutation %s (id %d)", job.mutation_key, job.id)
                try:
                    # A started handler runs to completion even if we are cancelled
                    await asyncio.shield(asyncio.ensure_future(handler(job.payload)))
                except Exception as e:
                    if not self._network.is_online:
                        logger.info(
                            "Replay of %s (id %d) interrupted by network loss; pausing",
                            job.mutation_key,
                            job.id,
                        )
                        break
                    await self._remove(job)
                    error = ReplayError(job.id, job.mutation_key, e)
                    error.__cause__ = e
                    logger.warning("%s; dropping it from the queue", error)
                    self._report(error)
                    continue

                await self._remove(job)
                replayed += 1
        finally:
            self._draining = False
        return replayed

    async def clear(self) -> None:
        """Drop every queued job, including ones persisted by earlier sessions."""
        async with self._restore_lock:
            self._restored = True
        self._jobs.clear()
        await self._persist()

    async def close(self) -> None:
        """Stop replaying after the current job and detach from the network."""
        self._closing = True
        self._remove_listener()
        if self._drain_task is not None:
            await asyncio.gather(self._drain_task, return_exceptions=True)

    def _report(self, error: ReplayError) -> None:
        if self._on_replay_error is not None:
            try:
                self._on_replay_error(error)
            except Exception:
                logger.exception("on_replay_error handler failed")
        report_error(self._on_error, error)

    async def _remove(self, job: QueuedMutation) -> None:
        if self._jobs and self._jobs[0] is job:
            self._jobs.popleft()
        else:
            self._jobs = deque(j for j in self._jobs if j.id != job.id)
        await self._persist()

    async def _persist(self) -> None:
        if not self._restored:
            await self.restore()
        # Snapshot under the lock so the last write always holds the latest queue
        async with self._persist_lock:
            await self._bridge.save_queue(list(self._jobs))

    def _on_network_change(self, online: bool) -> None:
        if online:
            self.trigger()


__all__ = ["MutationQueue", "ReplayErrorHandler"]
