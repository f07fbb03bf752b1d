#!/usr/bin/env python3
"""
Test different ef values on a single HNSW build.
Builds once on synthetic clustered data, then varies ef to find the
recall/latency tradeoff.
"""
import argparse
import sys
import time
from pathlib import Path

import numpy as np

sys.path.insert(0, str(Path(__file__).parent.parent))
from hnswsearch import HNSWIndex

K = 10
N_QUERIES = 200
SEED = 42


def make_data(n_vectors, dim, n_clusters=50):
    print(f"Generating {n_vectors:,} vectors (dim={dim})...")
    rng = np.random.default_rng(SEED)
    centers = rng.standard_normal((n_clusters, dim)).astype(np.float32) * 3
    assignment = rng.integers(0, n_clusters, n_vectors)
    train = centers[assignment] + rng.standard_normal((n_vectors, dim)).astype(np.float32)
    queries = centers[rng.integers(0, n_clusters, N_QUERIES)]
    queries = queries + rng.standard_normal((N_QUERIES, dim)).astype(np.float32)

    # Ground truth
    print(f"  Computing brute-force top-{K}...", end=" ", flush=True)
    t0 = time.time()
    ground_truth = []
    for query in queries:
        dists = ((train - query) ** 2).sum(axis=1)
        top = np.argpartition(dists, K)[:K]
        ground_truth.append(set(int(x) for x in top))
    print(f"{time.time()-t0:.1f}s")

    return train, queries, ground_truth


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--n-vectors", type=int, default=20000)
    parser.add_argument("--dim", type=int, default=64)
    parser.add_argument("--ef-construction", type=int, default=100)
    parser.add_argument("--m", type=int, default=16)
    parser.add_argument("--ef", type=int, nargs="+", default=[10, 20, 50, 100, 200])
    args = parser.parse_args()

    train, queries, ground_truth = make_data(args.n_vectors, args.dim)

    # Build once
    print(f"\nBuilding HNSW (m={args.m}, ef_c={args.ef_construction})...")
    t0 = time.time()
    index = HNSWIndex("l2", args.dim, args.n_vectors, m=args.m,
                      ef_construction=args.ef_construction, random_seed=SEED)
    index.add_items(train)
    print(f"  Built in {time.time()-t0:.1f}s  max_level={index.get_stats().max_level}")

    print(f"\n{'ef':>6} {'R@10':>6}  {'avg(ms)':>8} {'p99(ms)':>8} {'QPS':>7}")
    print("-" * 42)

    for ef in args.ef:
        index.set_ef(ef)

        # Warmup
        index.knn_query(queries[:3], k=K, num_threads=1)

        latencies = []
        recalls = []
        for i in range(N_QUERIES):
            t0 = time.time()
            hits = index.knn_query(queries[i], k=K, num_threads=1)[0]
            latencies.append(time.time() - t0)
            recalls.append(len({h.id for h in hits} & ground_truth[i]) / K)

        avg_ms = float(np.mean(latencies)) * 1000
        p99_ms = float(np.percentile(latencies, 99)) * 1000
        qps = 1.0 / float(np.mean(latencies))
        print(f"{ef:>6} {float(np.mean(recalls)):>6.4f}  "
              f"{avg_ms:>8.2f} {p99_ms:>8.2f} {qps:>7.1f}")

    index.close()


if __name__ == "__main__":
    main()
