"""Deep-freeze utilities for immutable model objects.

Converts mutable containers to immutable, hashable equivalents recursively:
  list -> tuple
  dict -> FrozenDict (dict subclass that blocks mutation)
  set  -> frozenset

Terms, facts and rules are used as dictionary keys and set members all
over the search, so frozen containers must also be hashable. Callers can
still pass plain lists and dicts to Pydantic constructors; the
model_validator coerces them.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, model_validator


class FrozenDict(dict):
    """A dict subclass that raises TypeError on mutation.

    Pydantic sees it as a dict (no serialization warnings), but
    all mutating operations are blocked. Copy-producing operations
    (__or__, copy) return FrozenDict to prevent leaks.
    """

    def __setitem__(self, key: Any, value: Any) -> None:
        raise TypeError("FrozenDict does not support item assignment")

    def __delitem__(self, key: Any) -> None:
        raise TypeError("FrozenDict does not support item deletion")

    def clear(self) -> None:
        raise TypeError("FrozenDict does not support clear()")

    def pop(self, *args: Any) -> Any:
        raise TypeError("FrozenDict does not support pop()")

    def popitem(self) -> tuple:
        raise TypeError("FrozenDict does not support popitem()")

    def setdefault(self, key: Any, default: Any = None) -> Any:
        raise TypeError("FrozenDict does not support setdefault()")

    def update(self, *args: Any, **kwargs: Any) -> None:
        raise TypeError("FrozenDict does not support update()")

    def __ior__(self, other: Any) -> Any:
        raise TypeError("FrozenDict does not support |= assignment")

    def __or__(self, other: Any) -> "FrozenDict":
        merged = dict(self)
        merged.update(other)
        return FrozenDict(merged)

    def __ror__(self, other: Any) -> "FrozenDict":
        merged = dict(other)
        merged.update(self)
        return FrozenDict(merged)

    def copy(self) -> "FrozenDict":
        return FrozenDict(dict.copy(self))

    @classmethod
    def fromkeys(cls, iterable: Any, value: Any = None) -> "FrozenDict":
        return cls(dict.fromkeys(iterable, value))

    def __hash__(self) -> int:  # type: ignore[override]
        # Keys are not always orderable (terms), so hash the item set.
        return hash(frozenset(self.items()))

    def __repr__(self) -> str:
        return f"FrozenDict({super().__repr__()})"


class DeepFreezeModel(BaseModel):
    """Mixin that deep-freezes all mutable containers after construction.

    Subclasses get automatic conversion of list -> tuple and
    dict -> FrozenDict on all fields after Pydantic validation.
    """

    @model_validator(mode="after")
    def _deep_freeze_containers(self) -> "DeepFreezeModel":
        for field_name in self.__class__.model_fields:
            val = getattr(self, field_name)
            frozen = deep_freeze(val)
            if frozen is not val:
                object.__setattr__(self, field_name, frozen)
        return self


def _is_already_frozen(obj: Any) -> bool:
    """Check if an object and all its children are already frozen."""
    if isinstance(obj, FrozenDict):
        return all(_is_already_frozen(v) for v in obj.values())
    if isinstance(obj, tuple):
        return all(_is_already_frozen(item) for item in obj)
    if isinstance(obj, (dict, list, set)):
        return False
    return True  # scalars, frozensets, enums, models


def deep_freeze(obj: Any) -> Any:
    """Recursively convert mutable containers to frozen equivalents.

    Fast-paths already-frozen subtrees to avoid redundant work.
    """
    if isinstance(obj, (FrozenDict, tuple)) and _is_already_frozen(obj):
        return obj
    if isinstance(obj, dict):
        return FrozenDict({k: deep_freeze(v) for k, v in obj.items()})
    if isinstance(obj, (list, tuple)):
        return tuple(deep_freeze(item) for item in obj)
    if isinstance(obj, set):
        return frozenset(deep_freeze(item) for item in obj)
    return obj
