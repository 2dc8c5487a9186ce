"""Mutation runner: one write operation with optimistic-update hooks."""

from __future__ import annotations

import dataclasses
import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Generic, TypeVar

from synq.exceptions import ConfigurationError, MutationError, SynqError
from synq.mutation_queue import MutationQueue
from synq.network import Gate, NetworkSignal, resolve
from synq.types import MutationStatus, NetworkMode, QueuedMutation

logger = logging.getLogger(__name__)

TData = TypeVar("TData")
TVars = TypeVar("TVars")

OnMutate = Callable[[Any], Any]  # may return an awaitable
OnSuccess = Callable[[Any, Any, Any], Any]
OnError = Callable[[SynqError, Any, Any], Any]
OnSettled = Callable[[Any, SynqError | None, Any, Any], Any]


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class Mutation(Generic[TData, TVars]):
    """A remote write with lifecycle hooks.

    Usage:
        add_todo = client.mutation(
            api.add_todo,
            mutation_key="add_todo",
            on_mutate=lambda todo: ...,    # optimistic write, returns context
            on_error=lambda err, todo, ctx: ...,  # roll back using ctx
            on_settled=lambda *_: client.invalidate("todos"),
        )
        await add_todo.mutate({"title": "milk"})

    Hooks may be plain functions or coroutines. While offline a keyed
    mutation is queued for replay and ``mutate()`` returns None with
    ``status == IDLE``. An unkeyed mutation has nothing to replay it, so it
    always calls ``fn`` and a connection failure surfaces as MutationError.
    """

    def __init__(
        self,
        fn: Callable[[TVars], Awaitable[TData]],
        *,
        mutation_key: str | None = None,
        on_mutate: OnMutate | None = None,
        on_success: OnSuccess | None = None,
        on_error: OnError | None = None,
        on_settled: OnSettled | None = None,
        to_json: Callable[[TVars], Any] | None = None,
        network_mode: NetworkMode = NetworkMode.ONLINE,
        network: NetworkSignal | None = None,
        queue: MutationQueue | None = None,
    ) -> None:
        if mutation_key is not None and queue is None:
            raise ConfigurationError(f"Mutation {mutation_key!r} has a key but no queue to defer to")
        self._fn = fn
        self.mutation_key = mutation_key
        self._on_mutate = on_mutate
        self._on_success = on_success
        self._on_error = on_error
        self._on_settled = on_settled
        self._to_json = to_json
        self._network_mode = network_mode
        self._network = network if network is not None else NetworkSignal()
        self._queue = queue

        self.status = MutationStatus.IDLE
        self.data: TData | None = None
        self.error: SynqError | None = None
        self.context: Any = None
        self.queued: QueuedMutation | None = None

    @property
    def is_loading(self) -> bool:
        return self.status is MutationStatus.LOADING

    @property
    def is_success(self) -> bool:
        return self.status is MutationStatus.SUCCESS

    @property
    def is_error(self) -> bool:
        return self.status is MutationStatus.ERROR

    @property
    def is_queued(self) -> bool:
        return self.queued is not None

    async def __call__(self, variables: TVars) -> TData | None:
        return await self.mutate(variables)

    async def mutate(
        self,
        variables: TVars,
        *,
        on_success: Callable[[TData, TVars], Any] | None = None,
        on_error: Callable[[SynqError, TVars], Any] | None = None,
        on_settled: Callable[[TData | None, SynqError | None, TVars], Any] | None = None,
    ) -> TData | None:
        """Run the mutation.

        Call-site hooks run after the ones given to the constructor.

        Returns:
            The result on success, None on failure or when queued offline
        """
        self.status = MutationStatus.LOADING
        self.data = None
        self.error = None
        self.context = None
        self.queued = None

        try:
            if self._on_mutate is not None:
                self.context = await _maybe_await(self._on_mutate(variables))
        except Exception as e:
            return await self._fail(e, variables, on_error, on_settled)

        if self.mutation_key is not None and self._queue is not None:
            await self._queue.restore()
            gate = resolve(self._network_mode, self._network.is_online, False)
            # Earlier queued writes for this key must land first
            if gate is not Gate.PROCEED or self._queue.has_pending(self.mutation_key):
                return await self._defer(variables)

        try:
            result = await self._fn(variables)
        except Exception as e:
            if self.mutation_key is not None and not self._network.is_online:
                logger.debug("Mutation %s lost the network mid-call, queueing", self.mutation_key)
                return await self._defer(variables)
            return await self._fail(e, variables, on_error, on_settled)

        self.data = result
        self.status = MutationStatus.SUCCESS

        await self._hook(self._on_success, result, variables, self.context)
        await self._hook(on_success, result, variables)
        await self._hook(self._on_settled, result, None, variables, self.context)
        await self._hook(on_settled, result, None, variables)
        return result

    async def _fail(
        self,
        exc: Exception,
        variables: TVars,
        on_error: Callable[[SynqError, TVars], Any] | None,
        on_settled: Callable[[TData | None, SynqError | None, TVars], Any] | None,
    ) -> None:
        if isinstance(exc, SynqError):
            error: SynqError = exc
        else:
            error = MutationError(exc, self.mutation_key)
            error.__cause__ = exc
        logger.warning("%s", error)
        self.error = error
        self.status = MutationStatus.ERROR

        await self._hook(self._on_error, error, variables, self.context)
        await self._hook(on_error, error, variables)
        await self._hook(self._on_settled, None, error, variables, self.context)
        await self._hook(on_settled, None, error, variables)
        return None

    async def _defer(self, variables: TVars) -> None:
        if self._queue is None or self.mutation_key is None:
            self.status = MutationStatus.IDLE
            raise ConfigurationError("Only a keyed Mutation with a queue can be deferred")
        try:
            payload = self._serialize(variables)
        except ConfigurationError:
            self.status = MutationStatus.IDLE
            raise
        self.queued = await self._queue.enqueue(self.mutation_key, payload)
        self.status = MutationStatus.IDLE
        return None

    def _serialize(self, variables: TVars) -> Any:
        if self._to_json is not None:
            return self._to_json(variables)
        if variables is None or isinstance(variables, (str, int, float, bool, list)):
            return variables
        if isinstance(variables, Mapping):
            return dict(variables)
        for attr in ("to_json", "model_dump"):
            method = getattr(variables, attr, None)
            if callable(method):
                return method()
        if dataclasses.is_dataclass(variables) and not isinstance(variables, type):
            return dataclasses.asdict(variables)
        raise ConfigurationError(
            f"Cannot queue mutation {self.mutation_key!r}: variables of type "
            f"{type(variables).__name__} need to_json, a mapping, or a to_json()/model_dump() method"
        )

    async def _hook(self, hook: Callable[..., Any] | None, *args: Any) -> None:
        if hook is None:
            return
        try:
            await _maybe_await(hook(*args))
        except Exception:
            logger.exception("Mutation hook %s failed", getattr(hook, "__name__", hook))

    def reset(self) -> None:
        """Return to idle, clearing data, error and context."""
        self.status = MutationStatus.IDLE
        self.data = None
        self.error = None
        self.context = None
        self.queued = None

    def __repr__(self) -> str:
        return f"Mutation(key={self.mutation_key!r}, status={self.status.value})"


__all__ = ["Mutation"]
