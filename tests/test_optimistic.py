"""Tests for optimistic list and single-value mutations."""

import pytest

from synq import (
    CancelToken,
    NetworkSignal,
    SyncClient,
    list_add,
    list_remove,
    list_update,
    value_remove,
    value_set,
    value_update,
)


def same_id(a: dict, b: dict) -> bool:
    return a["id"] == b["id"]


class FakeServer:
    """In-memory backend for a todo list."""

    def __init__(self, *todos: dict) -> None:
        self.todos = list(todos)
        self.fetches = 0
        self.reject = False

    async def fetch_todos(self, token: CancelToken) -> list[dict]:
        self.fetches += 1
        return [dict(t) for t in self.todos]

    async def add(self, todo: dict) -> dict:
        if self.reject:
            raise RuntimeError("server rejected")
        self.todos.append(todo)
        return todo

    async def update(self, todo: dict) -> dict:
        if self.reject:
            raise RuntimeError("server rejected")
        self.todos = [todo if t["id"] == todo["id"] else t for t in self.todos]
        return todo

    async def remove(self, todo: dict) -> None:
        if self.reject:
            raise RuntimeError("server rejected")
        self.todos = [t for t in self.todos if t["id"] != todo["id"]]


@pytest.fixture
async def server(client: SyncClient) -> FakeServer:
    """Create a server and load its list into a subscribed query."""
    backend = FakeServer({"id": 1, "title": "milk"})
    client.subscribe("todos")
    await client.fetch("todos", backend.fetch_todos)
    return backend


class TestListAdd:
    """Tests for list_add."""

    async def test_failure_rolls_back_then_refetches(self, client: SyncClient, server: FakeServer) -> None:
        """Test optimistic add, rollback on failure and refetch of the truth."""
        snapshots = []
        client.subscribe("todos", lambda entry: snapshots.append(entry.data))
        server.reject = True

        add_todo = list_add(client, "todos", server.add, mutation_key="add_todo")
        await add_todo.mutate({"id": 2, "title": "eggs"})
        await client.wait_idle()

        assert [{"id": 2, "title": "eggs"}, {"id": 1, "title": "milk"}] in snapshots
        assert add_todo.is_error
        assert client.get_data("todos") == [{"id": 1, "title": "milk"}]
        assert server.fetches == 2

    async def test_success_keeps_item_and_refetches(self, client: SyncClient, server: FakeServer) -> None:
        """Test that a successful add ends with the server's list."""
        add_todo = list_add(client, "todos", server.add, mutation_key="add_todo", add_to_start=False)
        await add_todo.mutate({"id": 2, "title": "eggs"})
        await client.wait_idle()

        assert client.get_data("todos") == [{"id": 1, "title": "milk"}, {"id": 2, "title": "eggs"}]
        assert server.fetches == 2

    async def test_add_to_empty_cache(self, client: SyncClient) -> None:
        """Test adding when no list is cached yet."""
        backend = FakeServer()
        add_todo = list_add(client, ["todos", "new"], backend.add, mutation_key="add_todo")
        await add_todo.mutate({"id": 1})
        assert client.get_data(["todos", "new"]) == [{"id": 1}]


class TestListUpdate:
    """Tests for list_update."""

    async def test_update_replaces_matching_item(self, client: SyncClient, server: FakeServer) -> None:
        """Test that matching items are replaced optimistically."""
        seen = []
        client.subscribe("todos", lambda entry: seen.append(entry.data))

        rename = list_update(client, "todos", server.update, mutation_key="rename", where=same_id)
        await rename.mutate({"id": 1, "title": "oat milk"})
        await client.wait_idle()

        assert seen[0] == [{"id": 1, "title": "oat milk"}]
        assert client.get_data("todos") == [{"id": 1, "title": "oat milk"}]

    async def test_update_failure_restores(self, client: SyncClient, server: FakeServer) -> None:
        """Test rollback of a failed update."""
        server.reject = True
        rename = list_update(client, "todos", server.update, mutation_key="rename", where=same_id)
        await rename.mutate({"id": 1, "title": "oat milk"})
        await client.wait_idle()
        assert client.get_data("todos") == [{"id": 1, "title": "milk"}]


class TestListRemove:
    """Tests for list_remove."""

    async def test_remove_offline_keeps_optimistic_state(
        self, client: SyncClient, server: FakeServer, network: NetworkSignal
    ) -> None:
        """Test that an offline removal stays applied and is queued."""
        remove = list_remove(client, "todos", server.remove, mutation_key="remove_todo", where=same_id)

        network.set_online(False)
        await remove.mutate({"id": 1})
        assert client.get_data("todos") == []
        assert client.queue.pending_count == 1

        network.set_online(True)
        await client.wait_idle()
        assert server.todos == []
        assert client.queue.pending_count == 0


class Profile:
    """In-memory backend for a single profile record."""

    def __init__(self) -> None:
        self.profile: dict | None = {"name": "Ada", "city": "London"}
        self.reject = False

    async def fetch(self, token: CancelToken) -> dict | None:
        return None if self.profile is None else dict(self.profile)

    async def save(self, profile: dict) -> dict:
        if self.reject:
            raise RuntimeError("server rejected")
        self.profile = dict(profile)
        return profile

    async def patch(self, changes: dict) -> dict:
        if self.reject:
            raise RuntimeError("server rejected")
        self.profile = {**(self.profile or {}), **changes}
        return self.profile

    async def delete(self, _: object) -> None:
        if self.reject:
            raise RuntimeError("server rejected")
        self.profile = None


@pytest.fixture
async def profile(client: SyncClient) -> Profile:
    """Create a profile backend and cache its record."""
    backend = Profile()
    await client.fetch("profile", backend.fetch)
    return backend


class TestValueSet:
    """Tests for value_set."""

    async def test_set_replaces_cached_value(self, client: SyncClient, profile: Profile) -> None:
        """Test that the new value is cached before the call returns."""
        seen = []
        client.subscribe("profile", lambda entry: seen.append(entry.data))

        save = value_set(client, "profile", profile.save)
        await save.mutate({"name": "Grace", "city": "New York"})

        assert seen[0] == {"name": "Grace", "city": "New York"}
        assert save.mutation_key == "profile_set"
        assert client.get_data("profile") == {"name": "Grace", "city": "New York"}

    async def test_set_failure_restores(self, client: SyncClient, profile: Profile) -> None:
        """Test rollback of a rejected write."""
        profile.reject = True
        save = value_set(client, "profile", profile.save, mutation_key="save_profile")
        await save.mutate({"name": "Grace"})

        assert save.is_error
        assert client.get_data("profile") == {"name": "Ada", "city": "London"}

    async def test_set_offline_is_queued(
        self, client: SyncClient, profile: Profile, network: NetworkSignal
    ) -> None:
        """Test that an offline write stays applied and replays later."""
        save = value_set(client, "profile", profile.save)
        network.set_online(False)
        await save.mutate({"name": "Grace"})

        assert client.get_data("profile") == {"name": "Grace"}
        assert client.queue.pending[0].mutation_key == "profile_set"

        network.set_online(True)
        await client.wait_idle()
        assert profile.profile == {"name": "Grace"}


class TestValueUpdate:
    """Tests for value_update."""

    async def test_update_merges_into_previous(self, client: SyncClient, profile: Profile) -> None:
        """Test a partial edit computed from the cached value."""
        move = value_update(
            client, "profile", profile.patch, update=lambda current, changes: {**(current or {}), **changes}
        )
        await move.mutate({"city": "Paris"})
        await client.wait_idle()

        assert client.get_data("profile") == {"name": "Ada", "city": "Paris"}
        assert move.mutation_key == "profile_update"

    async def test_update_failure_restores(self, client: SyncClient, profile: Profile) -> None:
        """Test rollback of a rejected partial edit."""
        profile.reject = True
        move = value_update(client, "profile", profile.patch, update=lambda current, changes: changes)
        await move.mutate({"city": "Paris"})
        assert client.get_data("profile") == {"name": "Ada", "city": "London"}


class TestValueRemove:
    """Tests for value_remove."""

    async def test_remove_drops_query(self, client: SyncClient, profile: Profile) -> None:
        """Test that the query leaves the cache immediately."""
        delete = value_remove(client, "profile", profile.delete)
        await delete.mutate(None)

        assert delete.is_success
        assert client.get_entry("profile") is None
        assert profile.profile is None

    async def test_remove_failure_restores(self, client: SyncClient, profile: Profile) -> None:
        """Test that a failed delete puts the value back."""
        profile.reject = True
        delete = value_remove(client, "profile", profile.delete, mutation_key="logout")
        await delete.mutate(None)

        assert delete.is_error
        assert client.get_data("profile") == {"name": "Ada", "city": "London"}
