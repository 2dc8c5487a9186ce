"""Tests for the mutation runner."""

import asyncio
from dataclasses import dataclass

import pytest

from synq import (
    ConfigurationError,
    Mutation,
    MutationError,
    MutationQueue,
    MutationStatus,
    NetworkMode,
    NetworkSignal,
    SyncClient,
)


@dataclass
class NewTodo:
    title: str


class Model:
    """Object exposing a pydantic-style model_dump."""

    def __init__(self, title: str) -> None:
        self.title = title

    def model_dump(self) -> dict:
        return {"title": self.title}


async def echo(variables):
    return {"saved": variables}


class TestOnlineMutations:
    """Tests for mutations that run immediately."""

    async def test_success_runs_hooks_in_order(self, client: SyncClient) -> None:
        """Test status, result and hook order on success."""
        calls = []
        mutation = client.mutation(
            echo,
            on_mutate=lambda v: calls.append(("mutate", v)) or "ctx",
            on_success=lambda d, v, ctx: calls.append(("success", ctx)),
            on_settled=lambda d, e, v, ctx: calls.append(("settled", e, ctx)),
        )

        result = await mutation.mutate(
            1,
            on_success=lambda d, v: calls.append(("call_success", d)),
            on_settled=lambda d, e, v: calls.append(("call_settled", e)),
        )

        assert result == {"saved": 1}
        assert mutation.status is MutationStatus.SUCCESS
        assert mutation.data == {"saved": 1}
        assert mutation.context == "ctx"
        assert calls == [
            ("mutate", 1),
            ("success", "ctx"),
            ("call_success", {"saved": 1}),
            ("settled", None, "ctx"),
            ("call_settled", None),
        ]

    async def test_failure_wraps_error(self, client: SyncClient) -> None:
        """Test that a failing call stores a MutationError and runs error hooks."""
        seen = []

        async def failing(variables):
            raise ValueError("rejected")

        mutation = client.mutation(
            failing,
            on_mutate=lambda v: "snapshot",
            on_error=lambda err, v, ctx: seen.append((type(err), ctx)),
        )

        assert await mutation.mutate({"x": 1}, on_error=lambda err, v: seen.append("call")) is None
        assert mutation.status is MutationStatus.ERROR
        assert isinstance(mutation.error, MutationError)
        assert isinstance(mutation.error.__cause__, ValueError)
        assert seen == [(MutationError, "snapshot"), "call"]

    async def test_failure_is_not_retried(self, client: SyncClient) -> None:
        """Test that mutations are never auto-retried."""
        calls = 0

        async def failing(variables):
            nonlocal calls
            calls += 1
            raise RuntimeError("boom")

        await client.mutation(failing).mutate(None)
        assert calls == 1

    async def test_on_mutate_failure_skips_call(self, client: SyncClient) -> None:
        """Test that a failing on_mutate is a mutation failure."""
        called = False

        async def fn(variables):
            nonlocal called
            called = True

        def on_mutate(variables):
            raise RuntimeError("bad optimistic write")

        mutation = client.mutation(fn, on_mutate=on_mutate)
        await mutation.mutate(1)
        assert not called
        assert mutation.is_error

    async def test_async_hooks(self, client: SyncClient) -> None:
        """Test that coroutine hooks are awaited."""
        seen = []

        async def on_mutate(variables):
            await asyncio.sleep(0)
            return "async-ctx"

        async def on_success(data, variables, context):
            seen.append(context)

        await client.mutation(echo, on_mutate=on_mutate, on_success=on_success).mutate(1)
        assert seen == ["async-ctx"]

    async def test_hook_exception_does_not_change_status(self, client: SyncClient) -> None:
        """Test that a crashing hook is logged and ignored."""

        def broken(*args):
            raise RuntimeError("hook bug")

        mutation = client.mutation(echo, on_success=broken, on_settled=broken)
        assert await mutation.mutate(1) == {"saved": 1}
        assert mutation.is_success

    async def test_reset(self, client: SyncClient) -> None:
        """Test reset back to idle."""
        mutation = client.mutation(echo)
        await mutation(1)
        mutation.reset()
        assert mutation.status is MutationStatus.IDLE
        assert mutation.data is None
        assert mutation.error is None

    async def test_decorator_form(self, client: SyncClient) -> None:
        """Test @client.mutation(...) as a decorator."""

        @client.mutation(mutation_key="rename")
        async def rename(variables):
            return variables["name"]

        assert isinstance(rename, Mutation)
        assert await rename.mutate({"name": "new"}) == "new"
        assert "rename" in client.queue.handlers


class TestOfflineMutations:
    """Tests for offline queueing."""

    async def test_offline_keyed_mutation_is_queued(
        self, client: SyncClient, network: NetworkSignal
    ) -> None:
        """Test that an offline keyed mutation resolves promptly as idle."""
        replayed = []

        async def add_todo(variables):
            replayed.append(variables)
            return variables

        settled = []
        mutation = client.mutation(
            add_todo, mutation_key="add_todo", on_settled=lambda *a: settled.append(a)
        )

        network.set_online(False)
        result = await asyncio.wait_for(mutation.mutate({"title": "milk"}), timeout=1)

        assert result is None
        assert mutation.status is MutationStatus.IDLE
        assert mutation.is_queued
        assert mutation.queued.payload == {"title": "milk"}
        assert client.queue.pending_count == 1
        assert replayed == []
        assert settled == []

        network.set_online(True)
        await client.wait_idle()
        assert replayed == [{"title": "milk"}]
        assert client.queue.pending_count == 0

    async def test_offline_unkeyed_mutation_calls_through(
        self, client: SyncClient, network: NetworkSignal
    ) -> None:
        """Test that an offline unkeyed mutation still attempts the call."""
        network.set_online(False)
        mutation = client.mutation(echo)
        assert await asyncio.wait_for(mutation.mutate(1), timeout=1) == {"saved": 1}
        assert mutation.is_success
        assert client.queue.pending_count == 0

    async def test_offline_unkeyed_failure_is_mutation_error(
        self, client: SyncClient, network: NetworkSignal
    ) -> None:
        """Test that an unkeyed call failing offline errors and is not queued."""
        seen = []

        async def unreachable(variables):
            raise ConnectionError("no route to host")

        network.set_online(False)
        mutation = client.mutation(unreachable, on_error=lambda err, v, ctx: seen.append(err))
        assert await asyncio.wait_for(mutation.mutate(1), timeout=1) is None
        assert mutation.status is MutationStatus.ERROR
        assert isinstance(mutation.error, MutationError)
        assert isinstance(mutation.error.__cause__, ConnectionError)
        assert seen == [mutation.error]
        assert client.queue.pending_count == 0

    async def test_always_mode_runs_offline(self, client: SyncClient, network: NetworkSignal) -> None:
        """Test that network_mode=always calls through while offline."""
        network.set_online(False)
        mutation = client.mutation(echo, network_mode=NetworkMode.ALWAYS)
        assert await mutation.mutate(1) == {"saved": 1}

    async def test_network_lost_mid_call_queues(self, client: SyncClient, network: NetworkSignal) -> None:
        """Test that a keyed mutation failing after going offline is queued."""

        async def flaky(variables):
            network.set_online(False)
            raise ConnectionError("socket closed")

        mutation = client.mutation(flaky, mutation_key="flaky")
        assert await mutation.mutate({"n": 1}) is None
        assert mutation.status is MutationStatus.IDLE
        assert mutation.error is None
        assert client.queue.pending_count == 1

    async def test_same_key_waits_behind_queue(self, bridge, network: NetworkSignal) -> None:
        """Test that a keyed mutation queues behind pending jobs with its key."""
        queue = MutationQueue(network=network, bridge=bridge)
        await queue.enqueue("edit", {"n": 1})
        called = False

        async def edit(variables):
            nonlocal called
            called = True

        mutation = Mutation(edit, mutation_key="edit", network=network, queue=queue)
        await mutation.mutate({"n": 2})

        assert not called
        assert [job.payload for job in queue.pending] == [{"n": 1}, {"n": 2}]

    async def test_payload_serialization(self, client: SyncClient, network: NetworkSignal) -> None:
        """Test dataclass, model_dump and to_json serialization."""
        network.set_online(False)
        await client.mutation(echo, mutation_key="a").mutate(NewTodo("x"))
        await client.mutation(echo, mutation_key="b").mutate(Model("y"))
        await client.mutation(echo, mutation_key="c", to_json=lambda v: [v]).mutate(3)

        assert [job.payload for job in client.queue.pending] == [
            {"title": "x"},
            {"title": "y"},
            [3],
        ]

    async def test_unserializable_variables_raise(self, client: SyncClient, network: NetworkSignal) -> None:
        """Test that variables that cannot be persisted are a ConfigurationError."""
        network.set_online(False)
        mutation = client.mutation(echo, mutation_key="opaque")

        with pytest.raises(ConfigurationError):
            await mutation.mutate(object())
        assert mutation.status is MutationStatus.IDLE
        assert client.queue.pending_count == 0

    def test_key_without_queue_rejected(self) -> None:
        """Test that a keyed Mutation needs a queue."""
        with pytest.raises(ConfigurationError):
            Mutation(echo, mutation_key="k")

    async def test_defer_without_queue_raises(self, network: NetworkSignal) -> None:
        """Test that deferring an unkeyed mutation is a ConfigurationError."""
        mutation = Mutation(echo, network=network)

        with pytest.raises(ConfigurationError):
            await mutation._defer({"n": 1})
        assert mutation.status is MutationStatus.IDLE
