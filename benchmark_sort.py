"""
Benchmark frecency sorting.

Compares:
- sort: scores every result on the calling thread
- sort_chunked: scores chunks of results on the engine's thread pool

and checks that both produce the same ordering.

Usage:
    uv run python benchmark_sort.py
    uv run python benchmark_sort.py --num-results 5000 --chunk-size 250
"""

import argparse
import time

import numpy as np
from tqdm import tqdm

from frecency import Frecency, StorageLimits
from frecency.scoring import DAY

QUERY_WORDS = ["smile", "grin", "face", "heart", "party", "cat", "dog", "sun", "moon", "star"]


def populate(frecency: Frecency, num_results: int, num_selections: int, rng: np.random.Generator):
    """Record random selections spread over the last three weeks."""
    now = time.time()
    for _ in tqdm(range(num_selections), desc="Selecting", unit="sel"):
        result_id = f"result-{rng.integers(num_results)}"
        word = QUERY_WORDS[rng.integers(len(QUERY_WORDS))]
        query = word[: rng.integers(1, len(word) + 1)] if rng.random() < 0.8 else None
        frecency.select(result_id, query=query, time=now - rng.random() * 21 * DAY)
    frecency.synchronize()


def benchmark_method(
    frecency: Frecency,
    results: list[str],
    query: str | None,
    method: str,
    chunk_size: int,
    num_runs: int = 3,
) -> tuple[float, float, list[str]]:
    """
    Benchmark a sort method.

    Returns:
        (mean_time, std_time, sorted_results)
    """
    times = []
    ordered = []

    for _ in range(num_runs):
        start = time.perf_counter()
        if method == "sort":
            ordered = frecency.sort(results, query=query)
        else:
            ordered = frecency.sort_chunked(results, query=query, chunk_size=chunk_size)
        times.append(time.perf_counter() - start)

    return float(np.mean(times)), float(np.std(times)), ordered


def main():
    parser = argparse.ArgumentParser(description="Benchmark frecency sort methods")
    parser.add_argument("--num-results", type=int, default=2000, help="Results per sort (default: 2000)")
    parser.add_argument(
        "--num-selections", type=int, default=5000, help="Selections recorded (default: 5000)"
    )
    parser.add_argument("--chunk-size", type=int, default=100, help="Chunk size (default: 100)")
    parser.add_argument("--num-workers", type=int, default=4, help="Scoring threads (default: 4)")
    parser.add_argument("--num-runs", type=int, default=3, help="Runs for averaging (default: 3)")
    parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")
    args = parser.parse_args()

    rng = np.random.default_rng(args.seed)
    limits = StorageLimits(recent_selections=max(100, args.num_results))

    with Frecency("benchmark", identifier=str, storage_limits=limits, num_workers=args.num_workers) as frecency:
        populate(frecency, args.num_results, args.num_selections, rng)

        results = [f"result-{i}" for i in range(args.num_results)]
        history = frecency.history

        print(f"\n{'='*60}")
        print("Benchmark Configuration:")
        print(f"  Results: {args.num_results:,}")
        print(f"  Selections: {args.num_selections:,}")
        print(f"  Stored IDs: {len(history.recent_selections):,}")
        print(f"  Stored queries: {len(history.queries):,}")
        print(f"  Chunk size: {args.chunk_size}")
        print(f"  Workers: {args.num_workers}")
        print(f"  Runs: {args.num_runs}")
        print(f"{'='*60}\n")

        all_match = True
        for query in [None, "s", "smi", "party", "cat dog"]:
            mean1, std1, ordered1 = benchmark_method(
                frecency, results, query, "sort", args.chunk_size, args.num_runs
            )
            mean2, std2, ordered2 = benchmark_method(
                frecency, results, query, "chunked", args.chunk_size, args.num_runs
            )
            same = ordered1 == ordered2
            all_match &= same
            speedup = mean1 / mean2 if mean2 > 0 else float("inf")
            print(
                f"query={query!r:<10} sort {mean1 * 1000:8.2f}±{std1 * 1000:.2f} ms  "
                f"chunked {mean2 * 1000:8.2f}±{std2 * 1000:.2f} ms  "
                f"speedup {speedup:5.2f}x  {'OK' if same else 'MISMATCH'}"
            )

        print(f"\n{'All orderings match' if all_match else 'Orderings differ!'}")


if __name__ == "__main__":
    main()
