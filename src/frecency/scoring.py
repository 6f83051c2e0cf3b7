"""
Decay scoring for selection records.

Each timestamp of a selection falls into an age bucket worth a fixed number
of points. The bucket points are averaged over the surviving timestamps and
multiplied by the lifetime selection count:

    score = times_selected * mean(points(now - t) for t in selected_at)

Usage:
    from frecency.scoring import decay_score

    decay_score(selection, now=time.time())
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from frecency.history import Selection


# =============================================================================
# Buckets
# =============================================================================

HOUR = 60.0 * 60.0
DAY = 24.0 * HOUR

# Upper (exclusive) age edge of each bucket, in seconds
BUCKET_EDGES = np.array([3 * HOUR, DAY, 3 * DAY, 7 * DAY, 14 * DAY], dtype=np.float64)

# Points per bucket; the last entry covers everything >= 14 days
BUCKET_POINTS = np.array([100, 80, 60, 30, 10, 0], dtype=np.float64)


def bucket_points(ages: np.ndarray) -> np.ndarray:
    """
    Map ages (seconds) to bucket points.

    side="right" makes each edge exclusive: an age of exactly 3 hours
    scores 80, not 100. Negative ages land in the freshest bucket.
    """
    indices = np.searchsorted(BUCKET_EDGES, ages, side="right")
    return BUCKET_POINTS[indices]


def decay_score(selection: Selection, now: float) -> float:
    """
    Frecency score of a single selection record at time ``now``.

    Args:
        selection: Record with ``times_selected`` and ``selected_at``
        now: Current POSIX time in seconds

    Returns:
        Non-negative score (0.0 if the record has no timestamps)
    """
    if not selection.selected_at:
        return 0.0

    ages = now - np.asarray(selection.selected_at, dtype=np.float64)
    mean_points = float(np.mean(bucket_points(ages)))
    return selection.times_selected * mean_points


__all__ = [
    "BUCKET_EDGES",
    "BUCKET_POINTS",
    "DAY",
    "HOUR",
    "bucket_points",
    "decay_score",
]
