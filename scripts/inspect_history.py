#!/usr/bin/env python3
"""
Print a persisted selection history and its decay scores.

Reads the blob a `FileStore` wrote for an engine key and shows the recently
selected IDs with their global scores, then every stored query. With
--query, also shows how each recent ID would score for that query.

Usage:
    python scripts/inspect_history.py --directory ~/.cache/frecency --key emoji
    python scripts/inspect_history.py --directory ~/.cache/frecency --key emoji --query sm
"""
from __future__ import annotations

import argparse
import sys
import time
from datetime import datetime

from frecency import FileStore, History, MatchWeights, decay_score
from frecency.frecency import match_result

ROW_W = 32
NUM_W = 10


def _format_time(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M")


def print_recent(history: History, now: float) -> None:
    print(f"{'ID':<{ROW_W}}{'selected':>{NUM_W}}{'score':>{NUM_W}}  last selected")
    print("-" * (ROW_W + 2 * NUM_W + 18))
    for result_id in history.recent_selections:
        selection = history.selections.get(result_id)
        if selection is None:
            print(f"{result_id:<{ROW_W}}{'-':>{NUM_W}}{'-':>{NUM_W}}")
            continue
        last = _format_time(selection.selected_at[-1]) if selection.selected_at else "-"
        print(
            f"{result_id:<{ROW_W}}{selection.times_selected:>{NUM_W}}"
            f"{decay_score(selection, now):>{NUM_W}.1f}  {last}"
        )


def print_queries(history: History, now: float) -> None:
    for query, selections in history.queries.items():
        print(f"\n[{query}]")
        for result_id, selection in selections.items():
            print(
                f"  {result_id:<{ROW_W - 2}}{selection.times_selected:>{NUM_W}}"
                f"{decay_score(selection, now):>{NUM_W}.1f}"
            )


def print_ranking(history: History, query: str, now: float) -> None:
    weights = MatchWeights()
    rows = []
    for result_id in history.recent_selections:
        match, score = match_result(result_id, query, history, weights, now)
        rows.append((score, result_id, match.value))
    # Same ordering as Frecency.sort: stable, highest score first
    rows.sort(key=lambda row: row[0], reverse=True)

    print(f"\nRanking for {query!r}:")
    for score, result_id, match in rows:
        print(f"  {result_id:<{ROW_W - 2}}{score:>{NUM_W}.1f}  {match}")


def main() -> int:
    parser = argparse.ArgumentParser(description="Inspect a persisted frecency history")
    parser.add_argument("--directory", required=True, help="FileStore directory")
    parser.add_argument("--key", required=True, help="Engine key (namespace)")
    parser.add_argument("--query", default=None, help="Score recent IDs for this query")
    args = parser.parse_args()

    store = FileStore(args.directory)
    data = store.load(f"frecency.{args.key}")
    if data is None:
        print(f"No history stored for {args.key!r} in {args.directory}", file=sys.stderr)
        return 1

    history = History.from_json(data)
    now = time.time()

    print(f"{len(history.recent_selections)} recent IDs, {len(history.queries)} queries\n")
    print_recent(history, now)
    print_queries(history, now)
    if args.query is not None:
        print_ranking(history, args.query, now)
    return 0


if __name__ == "__main__":
    sys.exit(main())
