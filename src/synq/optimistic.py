"""Ready-made optimistic mutations for list and single-value queries.

Each helper returns a keyed ``Mutation`` that edits the cached value before
the remote call, restores the previous value if the call fails, and marks the
query stale once the mutation settles so the server's version wins.

    add_todo = list_add(client, "todos", api.add_todo, mutation_key="add_todo")
    await add_todo.mutate({"id": 3, "title": "milk"})

    save_profile = value_set(client, "profile", api.save_profile)
    await save_profile.mutate({"name": "Ada"})
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, TypeVar

from synq.keys import KeyLike, normalize_key
from synq.mutation import Mutation

if TYPE_CHECKING:
    from synq.client import SyncClient

T = TypeVar("T")
V = TypeVar("V")

Match = Callable[[T, T], bool]


def _optimistic(
    client: SyncClient,
    query_key: KeyLike,
    fn: Callable[[V], Awaitable[Any]],
    apply: Callable[[Any, V], None],
    *,
    mutation_key: str,
    **options: Any,
) -> Mutation[Any, V]:
    def on_mutate(variables: V) -> Any:
        previous = client.get_data(query_key)
        apply(previous, variables)
        return previous

    def on_error(error: Any, variables: V, previous: Any) -> None:
        if previous is not None:
            client.set_data(query_key, previous)

    def on_settled(data: Any, error: Any, variables: V, previous: Any) -> None:
        client.invalidate(query_key)

    return client.mutation(
        fn,
        mutation_key=mutation_key,
        on_mutate=on_mutate,
        on_error=on_error,
        on_settled=on_settled,
        **options,
    )


def _list_edit(
    client: SyncClient, query_key: KeyLike, edit: Callable[[list[T], T], list[T]]
) -> Callable[[Any, T], None]:
    def apply(previous: list[T] | None, item: T) -> None:
        client.set_data(query_key, edit(list(previous or []), item))

    return apply


def _default_key(query_key: KeyLike, action: str) -> str:
    return f"{normalize_key(query_key).normalized}_{action}"


def list_add(
    client: SyncClient,
    query_key: KeyLike,
    fn: Callable[[T], Awaitable[Any]],
    *,
    mutation_key: str,
    add_to_start: bool = True,
    **options: Any,
) -> Mutation[Any, T]:
    """Insert the item into the cached list (at the front by default)."""

    def edit(items: list[T], item: T) -> list[T]:
        return [item, *items] if add_to_start else [*items, item]

    return _optimistic(
        client, query_key, fn, _list_edit(client, query_key, edit), mutation_key=mutation_key, **options
    )


def list_update(
    client: SyncClient,
    query_key: KeyLike,
    fn: Callable[[T], Awaitable[Any]],
    *,
    mutation_key: str,
    where: Match[T],
    **options: Any,
) -> Mutation[Any, T]:
    """Replace every cached item for which ``where(item, updated)`` holds."""

    def edit(items: list[T], updated: T) -> list[T]:
        return [updated if where(item, updated) else item for item in items]

    return _optimistic(
        client, query_key, fn, _list_edit(client, query_key, edit), mutation_key=mutation_key, **options
    )


def list_remove(
    client: SyncClient,
    query_key: KeyLike,
    fn: Callable[[T], Awaitable[Any]],
    *,
    mutation_key: str,
    where: Match[T],
    **options: Any,
) -> Mutation[Any, T]:
    """Drop every cached item for which ``where(item, removed)`` holds."""

    def edit(items: list[T], removed: T) -> list[T]:
        return [item for item in items if not where(item, removed)]

    return _optimistic(
        client, query_key, fn, _list_edit(client, query_key, edit), mutation_key=mutation_key, **options
    )


def value_set(
    client: SyncClient,
    query_key: KeyLike,
    fn: Callable[[T], Awaitable[Any]],
    *,
    mutation_key: str | None = None,
    **options: Any,
) -> Mutation[Any, T]:
    """Cache the mutation's variables as the query's new value.

    ``mutation_key`` defaults to ``"<query key>_set"``.
    """

    def apply(previous: T | None, value: T) -> None:
        client.set_data(query_key, value)

    return _optimistic(
        client, query_key, fn, apply, mutation_key=mutation_key or _default_key(query_key, "set"), **options
    )


def value_update(
    client: SyncClient,
    query_key: KeyLike,
    fn: Callable[[V], Awaitable[Any]],
    *,
    update: Callable[[T | None, V], T],
    mutation_key: str | None = None,
    **options: Any,
) -> Mutation[Any, V]:
    """Cache ``update(previous, variables)`` as the query's new value.

    For partial edits, e.g. ``update=lambda user, patch: {**user, **patch}``.
    """

    def apply(previous: T | None, variables: V) -> None:
        client.set_data(query_key, update(previous, variables))

    return _optimistic(
        client, query_key, fn, apply, mutation_key=mutation_key or _default_key(query_key, "update"), **options
    )


def value_remove(
    client: SyncClient,
    query_key: KeyLike,
    fn: Callable[[V], Awaitable[Any]],
    *,
    mutation_key: str | None = None,
    **options: Any,
) -> Mutation[Any, V]:
    """Remove the query from the cache; a failed call puts the old value back."""

    def apply(previous: Any, variables: V) -> None:
        client.remove(query_key)

    return _optimistic(
        client, query_key, fn, apply, mutation_key=mutation_key or _default_key(query_key, "remove"), **options
    )


__all__ = ["list_add", "list_remove", "list_update", "value_remove", "value_set", "value_update"]
