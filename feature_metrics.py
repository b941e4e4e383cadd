#!/usr/bin/env python
# coding: utf-8
"""
============================================================
EGO-NETWORK PAIRS — PROFILE FEATURE METRICS
============================================================
For each feature name in features.txt report how often it
occurs, how many distinct values it takes, how many users
have it, and the estimated entropy of its per-user value.

Users with several values for a feature (two schools, say)
are given the comma-joined sorted values as a single value;
users without the feature fall into a NULL bucket.
============================================================
"""

import argparse
import sys
from collections import Counter, defaultdict
from typing import Dict, Iterable, List, Optional, Set

import numpy as np
import pandas as pd
from pydantic import BaseModel

from egonet_parse import ParseError, numbered_lines, parse_profile_line


METRIC_COLUMNS = ["feature", "occurrences", "unique_values", "unique_users", "entropy"]

NULL_VALUE = "NULL"


class FeatureMetric(BaseModel):
    feature: str
    occurrences: int
    unique_values: int
    unique_users: int
    entropy: float


def entropy_bits(frequencies: Iterable[int]) -> float:
    counts = np.fromiter(frequencies, dtype=float)
    if counts.size == 0:
        return 0.0
    p = counts / counts.sum()
    return float((p * np.log2(1.0 / p)).sum())


def compute_feature_metrics(lines: Iterable[str], source: Optional[str] = None) -> List[FeatureMetric]:
    occurrences: Counter = Counter()
    values: Dict[str, Set[str]] = defaultdict(set)
    by_user: Dict[str, Dict[int, Set[str]]] = defaultdict(lambda: defaultdict(set))
    users: Set[int] = set()

    for line_no, tokens in numbered_lines(lines, source):
        user, pairs = parse_profile_line(tokens, source, line_no)
        users.add(user)
        for name, value in pairs:
            occurrences[name] += 1
            values[name].add(value)
            by_user[name][user].add(value)

    total_users = len(users)
    metrics = []
    for name in sorted(occurrences):
        holders = by_user[name]
        frequency = Counter(",".join(sorted(v)) for v in holders.values())
        if len(holders) < total_users:
            frequency[NULL_VALUE] += total_users - len(holders)

        metrics.append(FeatureMetric(
            feature=name,
            occurrences=occurrences[name],
            unique_values=len(values[name]),
            unique_users=len(holders),
            entropy=entropy_bits(frequency.values()),
        ))
    return metrics


def metrics_frame(metrics: List[FeatureMetric]) -> pd.DataFrame:
    return pd.DataFrame([m.model_dump() for m in metrics], columns=METRIC_COLUMNS)


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(
        prog="feature-metrics",
        description="Occurrence, coverage and entropy statistics for every profile feature.",
    )
    ap.add_argument("profile_file", help="features.txt (USER_ID TOKEN TOKEN ...)")
    args = ap.parse_args(argv)

    try:
        with open(args.profile_file, "r", encoding="utf-8") as f:
            metrics = compute_feature_metrics(f, source=args.profile_file)
    except (OSError, ParseError) as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        return 1

    metrics_frame(metrics).to_csv(sys.stdout, index=False, lineterminator="\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
