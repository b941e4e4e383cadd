#!/usr/bin/env python
# coding: utf-8
"""
============================================================
EGO-NETWORK PAIRS — INPUT PARSING
============================================================
Readers for the two input formats:

  <ego>.egonet    FRIEND_ID: MUTUAL_ID MUTUAL_ID ...
  features.txt    USER_ID TOKEN TOKEN ...   (TOKEN = a;b;...;value)

Everything here is file-scoped: a Friend Set, Connectivity Index
and ProfileStore are built fresh for every ego-network. The only
structure meant to outlive a single file is ProfileIndex, which
is read-only once loaded.
============================================================
"""

import re
from collections import defaultdict
from typing import Dict, FrozenSet, Iterable, Iterator, List, NamedTuple, Optional, Set, Tuple

import networkx as nx


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

USER_ID_RE = re.compile(r"^[0-9]+$")

FEATURE_SEP = ";"

# Profile feature names that never become output columns
DROPPED_FEATURE = "id"
DROPPED_COMPONENT = "name"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class ParseError(ValueError):
    """A line violates the egonet or profile grammar."""

    def __init__(self, reason: str, source: Optional[str] = None, line_no: Optional[int] = None):
        self.reason  = reason
        self.source  = source
        self.line_no = line_no
        where = ""
        if source is not None:
            where = f"{source}:{line_no}: " if line_no is not None else f"{source}: "
        super().__init__(f"{where}{reason}")

    def __reduce__(self):
        # keep source/line_no when shipped back from a worker process
        return (self.__class__, (self.reason, self.source, self.line_no))


def parse_user_id(token: str, source: Optional[str] = None, line_no: Optional[int] = None) -> int:
    if not USER_ID_RE.match(token):
        raise ParseError(f"invalid user id {token!r}", source, line_no)
    return int(token)


def numbered_lines(lines: Iterable[str], source: Optional[str] = None) -> Iterator[Tuple[int, List[str]]]:
    """Yield (line_no, tokens) for every non-blank line."""
    it = iter(lines)
    line_no = 0
    while True:
        line_no += 1
        try:
            line = next(it)
        except StopIteration:
            return
        except UnicodeDecodeError as e:
            # decoding runs ahead of the line reader, so no line number
            raise ParseError(f"not valid UTF-8 text ({e.reason} at byte {e.start})", source) from e
        tokens = line.split()
        if tokens:
            yield line_no, tokens


# ---------------------------------------------------------------------------
# Connectivity
# ---------------------------------------------------------------------------

class UnorderedPair(NamedTuple):
    """Undirected edge key. Always build with UnorderedPair.of()."""
    low: int
    high: int

    @classmethod
    def of(cls, u: int, v: int) -> "UnorderedPair":
        return cls(u, v) if u < v else cls(v, u)


class ConnectivityIndex:
    """
    Undirected friendship edges, each stored once under its canonical key.
    Lookups canonicalise the same way, so connected(u, v) == connected(v, u).
    """

    def __init__(self):
        self._edges: Set[UnorderedPair] = set()

    def add(self, u: int, v: int) -> bool:
        """Insert the edge; self-edges are ignored. Returns True if it was new."""
        if u == v:
            return False
        key = UnorderedPair.of(u, v)
        if key in self._edges:
            return False
        self._edges.add(key)
        return True

    def connected(self, u: int, v: int) -> bool:
        return UnorderedPair.of(u, v) in self._edges

    def __len__(self) -> int:
        return len(self._edges)

    def __iter__(self) -> Iterator[UnorderedPair]:
        return iter(self._edges)

    def to_graph(self, nodes: Iterable[int] = ()) -> nx.Graph:
        """networkx view; `nodes` adds isolated friends so every friend is present."""
        G = nx.Graph()
        G.add_nodes_from(nodes)
        G.add_edges_from(self._edges)
        return G

    def neighbor_sets(self, within: FrozenSet[int]) -> Dict[int, FrozenSet[int]]:
        """Neighbors of every member of `within`, restricted to `within`."""
        G = self.to_graph(within)
        return {
            node: frozenset(nb for nb in G.neighbors(node) if nb in within)
            for node in within
        }


class Egonet(NamedTuple):
    friends: FrozenSet[int]
    connectivity: ConnectivityIndex


def parse_egonet(lines: Iterable[str], source: Optional[str] = None) -> Egonet:
    """
    Build the Friend Set and Connectivity Index from adjacency-list lines.

    Each line's first token must be FRIEND_ID followed immediately by a
    colon; every remaining token is a mutual friend id. Mutuals that never
    get a line of their own are still recorded as edges.
    """
    friends: Set[int] = set()
    connectivity = ConnectivityIndex()

    for line_no, tokens in numbered_lines(lines, source):
        head, mutuals = tokens[0], tokens[1:]
        if not head.endswith(":"):
            raise ParseError(f"expected 'FRIEND_ID:' but got {head!r}", source, line_no)

        friend = parse_user_id(head[:-1], source, line_no)
        friends.add(friend)

        for token in mutuals:
            connectivity.add(friend, parse_user_id(token, source, line_no))

    return Egonet(frozenset(friends), connectivity)


def read_egonet(path: str) -> Egonet:
    with open(path, "r", encoding="utf-8") as f:
        return parse_egonet(f, source=path)


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------

def split_feature_token(token: str, source: Optional[str] = None, line_no: Optional[int] = None) -> Tuple[str, str]:
    """
    Split a profile token on its last semicolon:
      "birthday;123"              -> ("birthday", "123")
      "education;school;id;456"   -> ("education;school;id", "456")
    """
    name, sep, value = token.rpartition(FEATURE_SEP)
    if not sep:
        raise ParseError(f"feature token {token!r} has no ';' separator", source, line_no)
    if not name or not value:
        raise ParseError(f"feature token {token!r} is missing a name or value", source, line_no)
    return name, value


def is_dropped_feature(name: str) -> bool:
    """`id` and anything whose last component is `name` never become columns."""
    # a bare `name` counts too, not only `...;name`
    return name == DROPPED_FEATURE or name.rpartition(FEATURE_SEP)[2] == DROPPED_COMPONENT


def parse_profile_line(tokens: List[str], source: Optional[str] = None, line_no: Optional[int] = None) -> Tuple[int, List[Tuple[str, str]]]:
    user = parse_user_id(tokens[0], source, line_no)
    return user, [split_feature_token(t, source, line_no) for t in tokens[1:]]


class ProfileIndex:
    """
    Whole profile file parsed once, keyed by user. Shared read-only by
    every ego-network so the (large) profile file is scanned a single time.
    """

    def __init__(self, entries: Dict[int, Tuple[Tuple[str, str], ...]]):
        self._entries = entries

    @classmethod
    def parse(cls, lines: Iterable[str], source: Optional[str] = None) -> "ProfileIndex":
        entries: Dict[int, List[Tuple[str, str]]] = defaultdict(list)
        for line_no, tokens in numbered_lines(lines, source):
            user, pairs = parse_profile_line(tokens, source, line_no)
            entries[user].extend(pairs)
        return cls({user: tuple(pairs) for user, pairs in entries.items()})

    @classmethod
    def load(cls, path: str) -> "ProfileIndex":
        with open(path, "r", encoding="utf-8") as f:
            return cls.parse(f, source=path)

    def __len__(self) -> int:
        return len(self._entries)

    def features_of(self, user: int) -> Tuple[Tuple[str, str], ...]:
        return self._entries.get(user, ())


class ProfileStore:
    """
    Feature Map and Feature Name Registry for one Friend Set.

    feature_map[user][name] is the set of values seen for that user;
    an absent user or name means the empty set.
    """

    def __init__(self):
        self.feature_map: Dict[int, Dict[str, Set[str]]] = defaultdict(lambda: defaultdict(set))
        self.names: Set[str] = set()

    def add(self, user: int, name: str, value: str):
        if is_dropped_feature(name):
            return
        self.names.add(name)
        self.feature_map[user][name].add(value)

    @property
    def registry(self) -> List[str]:
        """Column order for this ego-network's output."""
        return sorted(self.names)

    def values(self, user: int, name: str) -> Set[str]:
        user_map = self.feature_map.get(user)
        if not user_map:
            return set()
        return user_map.get(name, set())

    @classmethod
    def scan(cls, lines: Iterable[str], friends: FrozenSet[int], source: Optional[str] = None) -> "ProfileStore":
        """Re-scan the full profile file, keeping only members of `friends`."""
        store = cls()
        for line_no, tokens in numbered_lines(lines, source):
            user = parse_user_id(tokens[0], source, line_no)
            # the ego's own line is skipped here too
            if user not in friends:
                continue
            for token in tokens[1:]:
                store.add(user, *split_feature_token(token, source, line_no))
        return store

    @classmethod
    def from_index(cls, index: ProfileIndex, friends: FrozenSet[int]) -> "ProfileStore":
        store = cls()
        for user in friends:
            for name, value in index.features_of(user):
                store.add(user, name, value)
        return store
