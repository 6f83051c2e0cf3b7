"""Frecency: rank search results by recency and frequency of past selections."""

from frecency.config import MatchWeights, StorageLimits
from frecency.frecency import Frecency, Match, ScoredResult
from frecency.history import History, Selection
from frecency.query import is_sub_query
from frecency.scoring import decay_score
from frecency.storage import FileStore, InMemoryStore, KeyValueStore

__all__ = [
    "FileStore",
    "Frecency",
    "History",
    "InMemoryStore",
    "KeyValueStore",
    "Match",
    "MatchWeights",
    "ScoredResult",
    "Selection",
    "StorageLimits",
    "decay_score",
    "is_sub_query",
]
