"""
Selection history: the bounded state the frecency scorer reads.

The history keeps three structures that are persisted together:

1. queries - per query string, which result IDs were selected and when
2. selections - per result ID, selections regardless of query
3. recent_selections - result IDs ordered from most to least recently
   selected; the oldest ID is evicted once the list exceeds its limit

The global `selections` index lets a result that is picked often rank high
for a query it was never picked for. E.g. after "brad vogel" is selected
many times for "brad", it still ranks high when searching "vogel".
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from frecency.config import StorageLimits

logger = logging.getLogger(__name__)


@dataclass
class Selection:
    """
    How often and when a result was selected.

    Attributes:
        times_selected: Lifetime selection count
        selected_at: Most recent selection timestamps, oldest first. Capped,
            so it can be shorter than times_selected.
    """

    times_selected: int
    selected_at: list[float] = field(default_factory=list)

    def record(self, time: float, timestamps_limit: int) -> None:
        self.times_selected += 1
        self.selected_at.append(time)
        if len(self.selected_at) > timestamps_limit:
            del self.selected_at[0]

    def copy(self) -> Selection:
        return Selection(self.times_selected, list(self.selected_at))

    def to_dict(self) -> dict[str, Any]:
        return {"times_selected": self.times_selected, "selected_at": self.selected_at}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Selection:
        times_selected = data["times_selected"]
        selected_at = data["selected_at"]
        if not isinstance(times_selected, int) or times_selected < 1:
            raise ValueError(f"Invalid times_selected: {times_selected!r}")
        if not isinstance(selected_at, list):
            raise ValueError(f"Invalid selected_at: {selected_at!r}")
        timestamps = [float(t) for t in selected_at]
        if not all(math.isfinite(t) for t in timestamps):
            raise ValueError(f"Non-finite timestamp in selected_at: {selected_at!r}")
        return cls(times_selected, timestamps)


Selections = dict[str, Selection]


def _select(selections: Selections, result_id: str, time: float, timestamps_limit: int) -> None:
    previous = selections.get(result_id)
    if previous is None:
        selections[result_id] = Selection(1, [time])
    else:
        previous.record(time, timestamps_limit)


@dataclass
class History:
    """
    Query index, global index and recency list of selected results.

    Only `select` and `reset` mutate a history. The engine never mutates a
    published history in place; it works on a `copy()` and swaps it in.
    """

    queries: dict[str, Selections] = field(default_factory=dict)
    selections: Selections = field(default_factory=dict)
    recent_selections: list[str] = field(default_factory=list)

    def select(
        self,
        result_id: str,
        query: str | None,
        time: float,
        limits: StorageLimits,
    ) -> str | None:
        """
        Record that the user selected a result.

        Args:
            result_id: ID of the selected result
            query: Query the result was selected for (None for no query)
            time: POSIX time of the selection
            limits: Storage limits to enforce

        Returns:
            The ID evicted from history to respect the limits, if any
        """
        if query is not None:
            _select(self.queries.setdefault(query, {}), result_id, time, limits.timestamps)

        _select(self.selections, result_id, time, limits.timestamps)

        evicted = self._touch(result_id, limits.recent_selections)
        if evicted is not None:
            self._forget(evicted)
        return evicted

    def _touch(self, result_id: str, limit: int) -> str | None:
        """Move or insert the ID at the front of the recency list."""
        if result_id in self.recent_selections:
            self.recent_selections.remove(result_id)
            self.recent_selections.insert(0, result_id)
            return None

        self.recent_selections.insert(0, result_id)
        if len(self.recent_selections) <= limit:
            return None
        return self.recent_selections.pop()

    def _forget(self, result_id: str) -> None:
        logger.debug("Evicting %r from selection history", result_id)
        for query in list(self.queries):
            selections = self.queries[query]
            selections.pop(result_id, None)
            if not selections:
                del self.queries[query]
        self.selections.pop(result_id, None)

    def reset(self) -> None:
        self.queries.clear()
        self.selections.clear()
        self.recent_selections.clear()

    def is_empty(self) -> bool:
        return not (self.queries or self.selections or self.recent_selections)

    def copy(self) -> History:
        return History(
            queries={
                query: {rid: s.copy() for rid, s in selections.items()}
                for query, selections in self.queries.items()
            },
            selections={rid: s.copy() for rid, s in self.selections.items()},
            recent_selections=list(self.recent_selections),
        )

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "queries": {
                query: {rid: s.to_dict() for rid, s in selections.items()}
                for query, selections in self.queries.items()
            },
            "selections": {rid: s.to_dict() for rid, s in self.selections.items()},
            "recent_selections": list(self.recent_selections),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> History:
        queries = {
            str(query): {str(rid): Selection.from_dict(s) for rid, s in selections.items()}
            for query, selections in data["queries"].items()
        }
        selections = {str(rid): Selection.from_dict(s) for rid, s in data["selections"].items()}
        recent_selections = [str(rid) for rid in data["recent_selections"]]
        return cls(
            # Empty query maps are never persisted by select(); drop any that were.
            queries={query: s for query, s in queries.items() if s},
            selections=selections,
            recent_selections=recent_selections,
        )

    def to_json(self) -> bytes:
        """
        Encode the history as UTF-8 JSON.

        Raises:
            ValueError: If a timestamp is not a finite number
        """
        return json.dumps(self.to_dict(), allow_nan=False, ensure_ascii=False).encode("utf-8")

    @classmethod
    def from_json(cls, data: bytes | None) -> History:
        """Decode a persisted history; missing or invalid data yields an empty one."""
        if data is None:
            return cls()
        try:
            return cls.from_dict(json.loads(data))
        except (ValueError, TypeError, KeyError, AttributeError, RecursionError) as e:
            # json.JSONDecodeError and UnicodeDecodeError are ValueErrors; RecursionError
            # comes from documents nested too deeply to decode.
            logger.debug("Discarding undecodable selection history: %s", e)
            return cls()


__all__ = ["History", "Selection", "Selections"]
