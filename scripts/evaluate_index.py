#!/usr/bin/env python3
"""CLI for checking approximate-index recall against exact cosine search."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import List, Optional

import numpy as np
from sklearn.neighbors import NearestNeighbors

from feedercam.io_utils import dump_json, setup_logging
from feedercam.recognition.gallery import load_gallery
from feedercam.recognition.index import IndexParams, NearestNeighborIndex


LOGGER = logging.getLogger("scripts.evaluate_index")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Measure recall@k of the gallery index")
    parser.add_argument(
        "--gallery-parquet",
        type=Path,
        default=None,
        help="Gallery parquet to evaluate (random unit vectors when omitted)",
    )
    parser.add_argument("--num-vectors", type=int, default=2000, help="Random vectors when no gallery is given")
    parser.add_argument("--dim", type=int, default=128, help="Random vector dimension")
    parser.add_argument("--num-queries", type=int, default=200)
    parser.add_argument("--k", type=int, default=10)
    parser.add_argument("--m", type=int, default=16)
    parser.add_argument("--ef-construction", type=int, default=100)
    parser.add_argument("--ef-search", type=int, default=64)
    parser.add_argument("--seed", type=int, default=13, help="Seed for random vectors and query noise")
    parser.add_argument("--output", type=Path, default=None, help="Optional JSON report path")
    return parser.parse_args(argv)


def measure_recall(
    vectors: np.ndarray,
    queries: np.ndarray,
    k: int,
    params: IndexParams,
) -> float:
    """Mean fraction of exact top-k neighbours the approximate index returns."""
    vectors = vectors / np.linalg.norm(vectors, axis=1, keepdims=True)
    index = NearestNeighborIndex(vectors.shape[1], params)
    index.add_many(vectors)

    k = min(k, len(vectors))
    exact = NearestNeighbors(n_neighbors=k, metric="cosine", algorithm="brute").fit(vectors)
    _, truth = exact.kneighbors(queries)

    hits = 0
    for query, expected in zip(queries, truth):
        found = {node for node, _ in index.query(query, k)}
        hits += len(found.intersection(int(i) for i in expected))
    return hits / float(len(queries) * k)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    setup_logging()

    rng = np.random.default_rng(args.seed)
    if args.gallery_parquet is not None:
        gallery = load_gallery(args.gallery_parquet)
        vectors = np.stack([entry.embedding for entry in gallery.entries()])
    else:
        vectors = rng.normal(size=(args.num_vectors, args.dim)).astype(np.float32)

    picks = rng.choice(len(vectors), size=min(args.num_queries, len(vectors)), replace=False)
    queries = vectors[picks] + rng.normal(scale=0.05, size=(len(picks), vectors.shape[1])).astype(np.float32)

    params = IndexParams(
        m=args.m,
        ef_construction=args.ef_construction,
        ef_search=args.ef_search,
    )
    recall = measure_recall(vectors, queries, args.k, params)
    LOGGER.info("recall@%d=%.4f over %d vectors (%s)", args.k, recall, len(vectors), params)
    if args.output is not None:
        dump_json(
            args.output,
            {"recall": recall, "k": args.k, "num_vectors": int(len(vectors)), "params": params},
        )


if __name__ == "__main__":
    main()
