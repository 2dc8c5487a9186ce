"""Structural sharing: keep the old reference when new data is deep-equal."""

from collections.abc import Mapping
from typing import Any, TypeVar

T = TypeVar("T")


def structural_equals(a: Any, b: Any) -> bool:
    """Deep equality over lists, tuples, dicts and sets; ``==`` otherwise."""
    if a is b:
        return True

    if isinstance(a, (list, tuple)) and isinstance(b, (list, tuple)):
        if type(a) is not type(b) or len(a) != len(b):
            return False
        return all(structural_equals(x, y) for x, y in zip(a, b))

    if isinstance(a, Mapping) and isinstance(b, Mapping):
        if len(a) != len(b):
            return False
        for key, value in a.items():
            if key not in b or not structural_equals(value, b[key]):
                return False
        return True

    if isinstance(a, (set, frozenset)) and isinstance(b, (set, frozenset)):
        return a == b

    if type(a) is not type(b):
        return False

    try:
        return bool(a == b)
    except Exception:
        # Objects with exotic __eq__ (numpy arrays etc.) are treated as changed
        return False


def share_structure(old: T, new: T) -> T:
    """Return ``old`` if it is structurally equal to ``new``, else ``new``."""
    if structural_equals(old, new):
        return old
    return new


__all__ = ["share_structure", "structural_equals"]
