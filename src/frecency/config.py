"""
Configuration objects for the frecency engine.

Defaults:
    StorageLimits: 10 timestamps per record, 100 recently selected IDs
    MatchWeights: exact query 1.0 > sub-query 0.7 > recent selection 0.5
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from operator import attrgetter
from typing import Any


# =============================================================================
# Defaults
# =============================================================================

# Results scored per task by the chunked sort
DEFAULT_CHUNK_SIZE = 10

# Threads in each engine's scoring pool
DEFAULT_NUM_WORKERS = 4


@dataclass(frozen=True)
class StorageLimits:
    """
    Bounds on the size of the persisted history.

    Attributes:
        timestamps: Max timestamps kept per selection record (oldest dropped first)
        recent_selections: Max IDs kept in history; the least recently
            selected ID is evicted along with all of its records
    """

    timestamps: int = 10
    recent_selections: int = 100

    def __post_init__(self) -> None:
        if self.timestamps <= 0:
            raise ValueError(f"timestamps must be positive, got {self.timestamps}")
        if self.recent_selections <= 0:
            raise ValueError(
                f"recent_selections must be positive, got {self.recent_selections}"
            )


@dataclass(frozen=True)
class MatchWeights:
    """
    Multipliers applied to the decay score for each kind of match.

    The scoring cascade expects exact_query > sub_query > recent_selection;
    this is reported by ``is_ordered`` but not enforced.
    """

    exact_query: float = 1.0
    sub_query: float = 0.7
    recent_selection: float = 0.5

    def __post_init__(self) -> None:
        for name in ("exact_query", "sub_query", "recent_selection"):
            value = getattr(self, name)
            if value <= 0:
                raise ValueError(f"{name} weight must be positive, got {value}")

    @property
    def is_ordered(self) -> bool:
        return self.exact_query > self.sub_query > self.recent_selection


# =============================================================================
# Result identifiers
# =============================================================================

Identifier = Callable[[Any], str]


def resolve_identifier(identifier: Identifier | str) -> Identifier:
    """
    Turn an identifier argument into a function from result to string ID.

    A callable is used as is. A string is a field path: a dotted attribute
    path ("emoji", "user.id"), or a key when the result is a mapping that
    contains it.
    """
    if callable(identifier):
        return identifier
    if not isinstance(identifier, str) or not identifier:
        raise TypeError(
            f"identifier must be a callable or a non-empty field path, got {identifier!r}"
        )

    getter = attrgetter(identifier)

    def field_path(result: Any) -> str:
        if isinstance(result, Mapping) and identifier in result:
            return result[identifier]
        return getter(result)

    return field_path


__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "DEFAULT_NUM_WORKERS",
    "Identifier",
    "MatchWeights",
    "StorageLimits",
    "resolve_identifier",
]
