"""Query key normalization and matching."""

from __future__ import annotations

import math
from collections.abc import Sequence
from typing import Any, Union

# What callers may pass as a key
KeyLike = Union[str, Sequence[Any], "QueryKey"]

_ESCAPE_MAP = {"\\": "\\\\", "'": "\\'"}


def _escape(part: str) -> str:
    result = part
    for char, escaped in _ESCAPE_MAP.items():
        result = result.replace(char, escaped)
    return result


def _freeze(value: Any) -> Any:
    """Turn a key part into a hashable, canonical value."""
    if isinstance(value, QueryKey):
        return value.parts
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        if math.isnan(value):
            raise TypeError("NaN cannot be used in a query key")
        return value
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    raise TypeError(f"Unsupported query key part: {value!r} ({type(value).__name__})")


def _render(part: Any) -> str:
    if isinstance(part, str):
        return f"'{_escape(part)}'"
    if isinstance(part, tuple):
        return "[" + ", ".join(_render(p) for p in part) + "]"
    if part is None:
        return "null"
    if isinstance(part, bool):
        return "true" if part else "false"
    return repr(part)


class QueryKey:
    """Canonical, immutable identity of a cache entry.

    A plain string is its own canonical form. A sequence is rendered as a
    bracketed list with quoted strings, so ``"todos"`` and ``["todos"]`` are
    different keys but share the prefix ``("todos",)``.
    """

    __slots__ = ("_normalized", "_parts", "_is_string")

    def __init__(self, key: KeyLike) -> None:
        if isinstance(key, QueryKey):
            self._parts: tuple[Any, ...] = key._parts
            self._is_string: bool = key._is_string
            self._normalized: str = key._normalized
            return

        if isinstance(key, str):
            self._parts = (key,)
            self._is_string = True
            self._normalized = key
            return

        if isinstance(key, (bytes, bytearray)) or not isinstance(key, Sequence):
            raise TypeError(f"Query key must be a string or a sequence, got {type(key).__name__}")

        self._parts = tuple(_freeze(part) for part in key)
        self._is_string = False
        self._normalized = "[" + ", ".join(_render(p) for p in self._parts) + "]"

    @property
    def parts(self) -> tuple[Any, ...]:
        return self._parts

    @property
    def normalized(self) -> str:
        return self._normalized

    def is_prefix_of(self, other: QueryKey) -> bool:
        """Check if this key's parts are a leading slice of ``other``'s parts."""
        if len(self._parts) > len(other._parts):
            return False
        return other._parts[: len(self._parts)] == self._parts

    def __eq__(self, other: object) -> bool:
        if isinstance(other, QueryKey):
            return self._normalized == other._normalized
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._normalized)

    def __str__(self) -> str:
        return self._normalized

    def __repr__(self) -> str:
        return f"QueryKey({self._normalized!r})"


def normalize_key(key: KeyLike) -> QueryKey:
    """Normalize a string, sequence or existing key into a ``QueryKey``."""
    if isinstance(key, QueryKey):
        return key
    return QueryKey(key)


__all__ = ["KeyLike", "QueryKey", "normalize_key"]
