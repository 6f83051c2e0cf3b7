"""
Frecency ranking engine.

Re-orders already retrieved search results by how recently and how often
the user selected them, optionally conditioned on the current query.

Each result is scored by the first match that yields a positive score:

1. EXACT_QUERY - the result was selected for this exact query
2. SUB_QUERY - the result was selected for a query this one is a
   sub-query of (e.g. "sm" for "smile")
3. RECENT_SELECTION - the result was selected for any query, or none
4. NONE - score 0, original order preserved

Concurrency:
    Mutations (select, reset, the initial load) run in submission order on
    a single-worker executor owned by the engine. A mutation builds a new
    History from a copy of the current one and publishes it with a single
    assignment, so readers always see a whole state. Reads first wait for
    the last mutation submitted before them.

Usage:
    from frecency import Frecency

    frecency = Frecency("emoji", identifier="emoji")
    frecency.select("smile", query="sm")
    ranked = frecency.sort(results, query="sm")
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, wait
from enum import Enum
from typing import Any, NamedTuple, TypeVar

from frecency.config import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_NUM_WORKERS,
    Identifier,
    MatchWeights,
    StorageLimits,
    resolve_identifier,
)
from frecency.history import History
from frecency.query import is_sub_query
from frecency.scoring import decay_score
from frecency.storage import InMemoryStore, KeyValueStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

ErrorHandler = Callable[[Exception], None]


# =============================================================================
# Scoring cascade
# =============================================================================


class Match(Enum):
    """Kinds of history match, in priority order."""

    EXACT_QUERY = "exact_query"
    SUB_QUERY = "sub_query"
    RECENT_SELECTION = "recent_selection"
    NONE = "none"


class ScoredResult(NamedTuple):
    result: Any
    score: float
    match: Match = Match.NONE


def match_result(
    result_id: str,
    query: str | None,
    history: History,
    weights: MatchWeights,
    now: float,
    full_queries: list[str] | None = None,
) -> tuple[Match, float]:
    """
    Score one result ID against the history.

    Args:
        result_id: ID of the result to score
        query: Current search query (None for no query)
        history: Selection history to read
        weights: Multiplier for each kind of match
        now: Current POSIX time
        full_queries: Keys of history.queries that ``query`` is a sub-query
            of, in iteration order. Computed when not given.

    Returns:
        (match, score); the first match with a positive score wins
    """
    if query is not None:
        selection = history.queries.get(query, {}).get(result_id)
        if selection is not None:
            score = weights.exact_query * decay_score(selection, now)
            if score > 0:
                return Match.EXACT_QUERY, score

        if full_queries is None:
            full_queries = sub_query_keys(query, history)

        # First full query with a positive score wins, not the best one.
        for full_query in full_queries:
            selection = history.queries[full_query].get(result_id)
            if selection is not None:
                score = weights.sub_query * decay_score(selection, now)
                if score > 0:
                    return Match.SUB_QUERY, score

    selection = history.selections.get(result_id)
    if selection is not None:
        score = weights.recent_selection * decay_score(selection, now)
        if score > 0:
            return Match.RECENT_SELECTION, score

    return Match.NONE, 0.0


def sub_query_keys(query: str, history: History) -> list[str]:
    """Stored queries that ``query`` is a sub-query of, in insertion order."""
    return [full_query for full_query in history.queries if is_sub_query(query, full_query)]


def sort_scored(scored: Sequence[ScoredResult], limit_to_recents: bool = False) -> list:
    """
    Order scored results: positive scores first, highest first.

    Results with equal scores, and all zero-score results, keep their input
    order (e.g. the order set by the search backend).
    """
    recents = [item for item in scored if item.score > 0]
    others = [item for item in scored if item.score <= 0]

    # list.sort is stable with reverse=True too
    recents.sort(key=lambda item: item.score, reverse=True)
    ordered = recents if limit_to_recents else recents + others
    return [item.result for item in ordered]


def chunked(items: Sequence[T], chunk_size: int) -> list[list[T]]:
    """Split into contiguous chunks; chunk_size <= 0 means a single chunk."""
    items = list(items)
    if not items:
        return []
    if chunk_size <= 0:
        return [items]
    return [items[offset : offset + chunk_size] for offset in range(0, len(items), chunk_size)]


# =============================================================================
# Engine
# =============================================================================


class Frecency:
    """
    Ranks search results by frecency and records user selections.

    Args:
        key: Namespace of this engine's persisted history
        identifier: Function from result to string ID, or a field path
            ("emoji", "user.id") to read it from
        storage_limits: Bounds on persisted history size
        weights: Multipliers per match kind (expects exact > sub > recent)
        store: Key-value store for the history blob (in-memory if None)
        clock: Returns the current POSIX time
        num_workers: Threads used by the chunked sort
    """

    def __init__(
        self,
        key: str,
        identifier: Identifier | str,
        storage_limits: StorageLimits | None = None,
        weights: MatchWeights | None = None,
        store: KeyValueStore | None = None,
        clock: Callable[[], float] = time.time,
        num_workers: int = DEFAULT_NUM_WORKERS,
    ):
        if not key:
            raise ValueError("key must be a non-empty string")

        self.key = key
        self.storage_key = f"frecency.{key}"
        self.identifier = resolve_identifier(identifier)
        self.storage_limits = storage_limits or StorageLimits()
        self.weights = weights or MatchWeights()
        self.store: KeyValueStore = store if store is not None else InMemoryStore()
        self.clock = clock

        if not self.weights.is_ordered:
            logger.warning(
                "Match weights for %r are not ordered exact_query > sub_query > "
                "recent_selection: %s",
                key,
                self.weights,
            )

        self._history = History()
        self._lock = threading.Lock()
        self._pending: Future | None = None
        self._writer_thread: int | None = None
        self._writer = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"frecency-{key}")
        self._dispatcher = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"frecency-{key}-sort"
        )
        self._scoring_pool = ThreadPoolExecutor(
            max_workers=max(1, num_workers), thread_name_prefix=f"frecency-{key}-score"
        )

        self._submit(self._load)

    # -------------------------------------------------------------------------
    # Owner queue
    # -------------------------------------------------------------------------

    def _submit(self, mutation: Callable[..., None], *args: Any) -> Future:
        def run() -> None:
            self._writer_thread = threading.get_ident()
            mutation(*args)

        with self._lock:
            future = self._writer.submit(run)
            self._pending = future
        return future

    def _snapshot(self) -> History:
        with self._lock:
            pending = self._pending
        # Mutations run on the writer thread; waiting there would deadlock.
        if pending is not None and threading.get_ident() != self._writer_thread:
            wait([pending])
        return self._history

    def _load(self) -> None:
        try:
            data = self.store.load(self.storage_key)
        except Exception as e:
            logger.warning("Failed to load selection history for %r: %s", self.key, e)
            data = None
        self._history = History.from_json(data)
        logger.debug(
            "Loaded selection history for %r (%d IDs)",
            self.key,
            len(self._history.recent_selections),
        )

    def _persist(self, history: History, error_handler: ErrorHandler | None) -> None:
        try:
            self.store.save(self.storage_key, history.to_json())
        except Exception as e:
            logger.warning("Failed to persist selection history for %r: %s", self.key, e)
            self._report(e, error_handler)

    def _report(self, error: Exception, error_handler: ErrorHandler | None) -> None:
        if error_handler is None:
            return
        try:
            error_handler(error)
        except Exception:
            logger.exception("Error handler for %r raised", self.key)

    def _apply_select(
        self,
        result_id: str,
        query: str | None,
        time: float,
        error_handler: ErrorHandler | None,
    ) -> None:
        history = self._history.copy()
        history.select(result_id, query, time, self.storage_limits)
        self._history = history
        self._persist(history, error_handler)

    def _apply_reset(self, error_handler: ErrorHandler | None) -> None:
        self._history = History()
        try:
            self.store.delete(self.storage_key)
        except Exception as e:
            logger.warning("Failed to delete selection history for %r: %s", self.key, e)
            self._report(e, error_handler)
        logger.debug("Reset selection history for %r", self.key)

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def select(
        self,
        result_id: str,
        query: str | None = None,
        time: float | None = None,
        error_handler: ErrorHandler | None = None,
    ) -> Future:
        """
        Record that the user selected a result, then persist the history.

        Runs asynchronously. A persistence failure is passed to
        ``error_handler`` (if given) and never raised; the in-memory
        history keeps the selection either way.

        Args:
            result_id: ID of the selected result
            query: Query the result was selected for
            time: POSIX time of the selection (defaults to now)
            error_handler: Called with the exception if persisting fails

        Returns:
            Future resolved once the selection is applied and persisted
        """
        if time is None:
            time = self.clock()
        return self._submit(self._apply_select, result_id, query, time, error_handler)

    def reset(self, error_handler: ErrorHandler | None = None) -> Future:
        """Discard all selection history, in memory and in the store."""
        return self._submit(self._apply_reset, error_handler)

    def synchronize(self, on_complete: Callable[[], Any] | None = None) -> Future | None:
        """
        Wait for every previously submitted select/reset to be applied and persisted.

        Without a callback this blocks. With one it returns immediately and
        ``on_complete`` runs once those mutations are done. Do not call the
        blocking form from an error handler: handlers run on the queue.
        """
        if on_complete is None:
            self._writer.submit(_noop).result()
            return None
        return self._writer.submit(on_complete)

    @property
    def history(self) -> History:
        """The current selection history, after pending mutations."""
        return self._snapshot()

    # -------------------------------------------------------------------------
    # Ranking
    # -------------------------------------------------------------------------

    def _score(
        self,
        results: Sequence[T],
        query: str | None,
        history: History,
        now: float,
    ) -> list[ScoredResult]:
        full_queries = sub_query_keys(query, history) if query is not None else None
        scored = []
        for result in results:
            match, score = match_result(
                self.identifier(result), query, history, self.weights, now, full_queries
            )
            scored.append(ScoredResult(result, score, match))
        return scored

    def scores(self, results: Sequence[T], query: str | None = None) -> list[ScoredResult]:
        """Score each result; see the module docstring for the cascade."""
        return self._score(results, query, self._snapshot(), self.clock())

    def sort(
        self,
        results: Sequence[T],
        query: str | None = None,
        limit_to_recents: bool = False,
    ) -> list[T]:
        """
        Sort results by frecency.

        Previously selected results come first, highest score first. The
        rest keep their original order, or are dropped when
        ``limit_to_recents`` is set.
        """
        return sort_scored(self.scores(results, query), limit_to_recents)

    def sort_chunked(
        self,
        results: Sequence[T],
        query: str | None = None,
        limit_to_recents: bool = False,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> list[T]:
        """
        Same ordering as `sort`, scoring chunks of results in parallel.

        Chunks are scored against one snapshot of the history and
        collected in chunk order, not completion order.
        """
        history = self._snapshot()
        now = self.clock()
        chunks = chunked(results, chunk_size)

        def score_chunk(chunk: list[T]) -> list[ScoredResult]:
            return self._score(chunk, query, history, now)

        if len(chunks) <= 1:
            scored_chunks = [score_chunk(chunk) for chunk in chunks]
        else:
            scored_chunks = list(self._scoring_pool.map(score_chunk, chunks))

        scored = [item for chunk in scored_chunks for item in chunk]
        return sort_scored(scored, limit_to_recents)

    def sort_async(
        self,
        results: Sequence[T],
        query: str | None = None,
        limit_to_recents: bool = False,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        completion: Callable[[list[T]], Any] | None = None,
    ) -> Future:
        """
        Non-blocking `sort_chunked`.

        Returns:
            Future of the sorted results. ``completion`` (if given) is
            called with them from a background thread.
        """
        results = list(results)
        future = self._dispatcher.submit(
            self.sort_chunked, results, query, limit_to_recents, chunk_size
        )
        if completion is not None:

            def notify(done: Future) -> None:
                error = done.exception()
                if error is None:
                    completion(done.result())
                else:
                    logger.exception(
                        "Chunked sort for %r failed", self.key, exc_info=error
                    )

            future.add_done_callback(notify)
        return future

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Finish pending mutations and stop the worker threads."""
        self._writer.shutdown(wait=True)
        self._dispatcher.shutdown(wait=True)
        self._scoring_pool.shutdown(wait=True)

    def __enter__(self) -> Frecency:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def _noop() -> None:
    pass


__all__ = [
    "ErrorHandler",
    "Frecency",
    "Match",
    "ScoredResult",
    "chunked",
    "match_result",
    "sort_scored",
    "sub_query_keys",
]
