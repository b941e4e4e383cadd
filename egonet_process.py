#!/usr/bin/env python
# coding: utf-8
"""
============================================================
EGO-NETWORK PAIRS — PAIRWISE FEATURE TABLE
============================================================
For one ego-network, enumerate every unordered pair of the
ego's friends and compute:

  edge               are the two friends connected? (label)
  common_friends     how many of the ego's friends know both
  <feature>          how many profile values they share, one
                     column per feature name, sorted

The table is written to <output_dir>/<ego_id>.csv with the
header  pair,edge,common_friends,<feature_1>,...,<feature_k>
which is the contract the downstream regression step reads.
============================================================
"""

import os
from typing import FrozenSet, List, Union

import numpy as np
import pandas as pd
from pydantic import BaseModel, Field

from egonet_parse import (
    ConnectivityIndex,
    ParseError,
    ProfileIndex,
    ProfileStore,
    read_egonet,
)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

KEY_COLUMNS = ["pair", "edge", "common_friends"]

EDGE_TRUE  = "TRUE"
EDGE_FALSE = "FALSE"

PAIR_SEP = ";"


class EgonetSummary(BaseModel):
    ego_id: int = Field(description="Numeric id of the ego whose friends were paired.")
    friends: int = Field(description="Size of the Friend Set (ego excluded).")
    edges: int = Field(description="Distinct undirected edges in the egonet file.")
    pairs: int = Field(description="Rows written, n*(n-1)/2.")
    features: int = Field(description="Feature columns in this file's Registry.")
    output_file: str = Field(description="Path of the CSV that was written.")


# ---------------------------------------------------------------------------
# Pair features
# ---------------------------------------------------------------------------

def build_pair_table(
    friends: FrozenSet[int],
    connectivity: ConnectivityIndex,
    profiles: ProfileStore,
) -> pd.DataFrame:
    """
    One row per unordered friend pair, in ascending (i, j) order over the
    numerically sorted Friend Set.

    Common friends are counted by intersecting neighbor sets restricted to
    the Friend Set, which gives the same count as checking every friend w
    against both members of the pair.
    """
    registry = profiles.registry
    ordered = sorted(friends)
    n       = len(ordered)
    n_pairs = n * (n - 1) // 2
    col_of  = {name: k for k, name in enumerate(registry)}

    neighbors = connectivity.neighbor_sets(friends)
    fmap      = profiles.feature_map

    pair_ids = []
    edge     = np.zeros(n_pairs, dtype=bool)
    common   = np.zeros(n_pairs, dtype=np.int64)
    counts   = np.zeros((n_pairs, len(registry)), dtype=np.int64)

    row = 0
    for i, a in enumerate(ordered):
        nb_a    = neighbors[a]
        feats_a = fmap.get(a)
        for b in ordered[i + 1:]:
            pair_ids.append(f"{a}{PAIR_SEP}{b}")
            edge[row]   = connectivity.connected(a, b)
            common[row] = len(nb_a & neighbors[b])

            feats_b = fmap.get(b)
            if feats_a and feats_b:
                # most counts are zero; only touch the features both users have
                for name, values in feats_a.items():
                    other = feats_b.get(name)
                    if other:
                        counts[row, col_of[name]] = len(values & other)
            row += 1

    table = pd.DataFrame(counts, columns=registry)
    table.insert(0, "pair", pair_ids, allow_duplicates=True)
    table.insert(1, "edge", np.where(edge, EDGE_TRUE, EDGE_FALSE), allow_duplicates=True)
    table.insert(2, "common_friends", common, allow_duplicates=True)
    return table


# ---------------------------------------------------------------------------
# CSV contract
# ---------------------------------------------------------------------------

def write_pair_table(table: pd.DataFrame, path: str):
    """Write via a temp file so an aborted run never leaves a truncated table."""
    temp_file = f"{path}.tmp"
    try:
        table.to_csv(temp_file, index=False, lineterminator="\n")
        os.replace(temp_file, path)
    finally:
        if os.path.exists(temp_file):
            os.remove(temp_file)


def read_registry(path: str) -> List[str]:
    """Feature columns of an emitted table, in header order."""
    # header=None keeps duplicate names as written instead of mangling them to "edge.1"
    header = pd.read_csv(path, header=None, nrows=1, dtype=str).iloc[0].tolist()
    if header[:len(KEY_COLUMNS)] != KEY_COLUMNS:
        raise ParseError(f"header does not start with {','.join(KEY_COLUMNS)}", path)
    return header[len(KEY_COLUMNS):]


def output_path(output_dir: str, ego_id: int) -> str:
    return os.path.join(output_dir, f"{ego_id}.csv")


# ---------------------------------------------------------------------------
# Per-ego pipeline
# ---------------------------------------------------------------------------

class EgonetPairAnalyzer:
    """
    One ego-network, end to end:
      1. load_egonet        Friend Set + Connectivity Index
      2. load_profiles      Feature Map + Registry for those friends
      3. build_pairs        label / common friends / overlaps per pair
      4. export_results     <output_dir>/<ego_id>.csv

    `profiles` is either a preloaded ProfileIndex (shared, read-only) or
    the path of the profile file, which is then re-scanned for this ego.
    """

    def __init__(
        self,
        ego_id: int,
        egonet_file: str,
        output_dir: str,
        profiles: Union[ProfileIndex, str],
        verbose: bool = False,
    ):
        self.ego_id      = ego_id
        self.egonet_file = egonet_file
        self.output_dir  = output_dir
        self.profiles    = profiles
        self.verbose     = verbose

        self.egonet = None
        self.store  = None
        self.table  = None

    def _log(self, msg: str):
        if self.verbose:
            print(msg)

    def load_egonet(self):
        self._log(f"⚙️  Egonet {self.ego_id} …")
        self.egonet = read_egonet(self.egonet_file)
        self._log(f"   {len(self.egonet.friends):,} friends, {len(self.egonet.connectivity):,} edges")

    def load_profiles(self):
        self._log("👤 Profiles …")
        friends = self.egonet.friends
        if isinstance(self.profiles, ProfileIndex):
            self.store = ProfileStore.from_index(self.profiles, friends)
        else:
            with open(self.profiles, "r", encoding="utf-8") as f:
                self.store = ProfileStore.scan(f, friends, source=self.profiles)
        self._log(f"   {len(self.store.names)} features")

    def build_pairs(self):
        self._log("🔗 Pairs …")
        self.table = build_pair_table(
            self.egonet.friends, self.egonet.connectivity, self.store
        )
        self._log(f"   {len(self.table):,} pairs")

    def export_results(self) -> str:
        path = output_path(self.output_dir, self.ego_id)
        self._log(f"💾 Writing {path}")
        write_pair_table(self.table, path)
        return path

    def run(self) -> EgonetSummary:
        self.load_egonet()
        self.load_profiles()
        self.build_pairs()
        path = self.export_results()
        return EgonetSummary(
            ego_id=self.ego_id,
            friends=len(self.egonet.friends),
            edges=len(self.egonet.connectivity),
            pairs=len(self.table),
            features=len(self.table.columns) - len(KEY_COLUMNS),
            output_file=path,
        )
