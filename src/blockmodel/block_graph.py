"""
Block-level multigraph: one node per block slot and one edge per occupied
block pair, carrying the pair's edge count ``mrs`` and covariate sums.

The pair -> edge-id lookup is pluggable: a hash map for large, sparse block
counts or a dense id matrix when the number of blocks is small.
"""
from typing import List, Optional, Set, Tuple

import numpy as np

from blockmodel.graph_data import GraphView


class HashPairIndex:
    def __init__(self, num_blocks: int):
        self._ids = {}

    def get(self, r: int, s: int) -> int:
        return self._ids.get((r, s), -1)

    def put(self, r: int, s: int, me: int) -> None:
        self._ids[(r, s)] = me

    def remove(self, r: int, s: int) -> None:
        del self._ids[(r, s)]


class DensePairIndex:
    def __init__(self, num_blocks: int):
        self._ids = np.full((num_blocks, num_blocks), -1, dtype=np.int64)

    def get(self, r: int, s: int) -> int:
        return int(self._ids[r, s])

    def put(self, r: int, s: int, me: int) -> None:
        self._ids[r, s] = me

    def remove(self, r: int, s: int) -> None:
        self._ids[r, s] = -1


class BlockGraph(GraphView):
    """
    Live view of the block-pair aggregates of a partition.

    Pair edges are created when a pair first receives edges and removed when
    its count drops to zero; freed ids are reused. For undirected graphs the
    key of a pair is ``(min(r, s), max(r, s))``.
    """
    is_weighted = True

    def __init__(self, num_blocks: int, directed: bool, n_recs: int = 0, use_hash: bool = True):
        self.num_nodes = int(num_blocks)
        self.directed = directed
        self.n_recs = n_recs
        self._index = HashPairIndex(num_blocks) if use_hash else DensePairIndex(num_blocks)

        cap = 16
        self._source = np.zeros(cap, dtype=np.int64)
        self._target = np.zeros(cap, dtype=np.int64)
        self._mrs = np.zeros(cap, dtype=np.int64)
        self._brec = np.zeros((cap, n_recs))
        self._bdrec = np.zeros((cap, n_recs))
        self._alive = np.zeros(cap, dtype=bool)
        self._n_slots = 0
        self._free: List[int] = []

        self._out: List[Set[int]] = [set() for _ in range(self.num_nodes)]
        self._in: List[Set[int]] = [set() for _ in range(self.num_nodes)] if directed else []

    # ------------------------------------------------------------------
    @property
    def eweight(self) -> np.ndarray:
        return self._mrs

    @property
    def mrs(self) -> np.ndarray:
        return self._mrs

    @property
    def rec(self) -> np.ndarray:
        return self._brec

    @property
    def drec(self) -> np.ndarray:
        return self._bdrec

    @property
    def num_edges(self) -> int:
        return int(self._alive.sum())

    def edges(self) -> np.ndarray:
        return np.flatnonzero(self._alive)

    def edge_arrays(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        ids = self.edges()
        return self._source[ids], self._target[ids], self._mrs[ids]

    def key(self, r: int, s: int) -> Tuple[int, int]:
        if not self.directed and r > s:
            return s, r
        return r, s

    # ------------------------------------------------------------------
    def get_me(self, r: int, s: int) -> Optional[int]:
        r, s = self.key(r, s)
        me = self._index.get(r, s)
        return None if me < 0 else me

    def get_mrs(self, r: int, s: int) -> int:
        me = self.get_me(r, s)
        return 0 if me is None else int(self._mrs[me])

    def pair_values(self, r: int, s: int) -> Tuple[int, np.ndarray, np.ndarray]:
        """(mrs, covariate sums, squared sums) of a pair; zeros when absent."""
        me = self.get_me(r, s)
        if me is None:
            return 0, np.zeros(self.n_recs), np.zeros(self.n_recs)
        return int(self._mrs[me]), self._brec[me], self._bdrec[me]

    def add_me(self, r: int, s: int) -> int:
        r, s = self.key(r, s)
        if self._free:
            me = self._free.pop()
        else:
            if self._n_slots == len(self._source):
                self._grow()
            me = self._n_slots
            self._n_slots += 1
        self._source[me] = r
        self._target[me] = s
        self._mrs[me] = 0
        self._brec[me] = 0
        self._bdrec[me] = 0
        self._alive[me] = True
        self._index.put(r, s, me)
        self._out[r].add(me)
        if self.directed:
            self._in[s].add(me)
        else:
            self._out[s].add(me)
        return me

    def remove_me(self, me: int) -> None:
        r, s = int(self._source[me]), int(self._target[me])
        self._index.remove(r, s)
        self._out[r].discard(me)
        if self.directed:
            self._in[s].discard(me)
        else:
            self._out[s].discard(me)
        self._alive[me] = False
        self._mrs[me] = 0
        self._free.append(me)

    def _grow(self) -> None:
        cap = 2 * len(self._source)
        def _extend(a):
            out = np.zeros((cap,) + a.shape[1:], dtype=a.dtype)
            out[:len(a)] = a
            return out
        self._source = _extend(self._source)
        self._target = _extend(self._target)
        self._mrs = _extend(self._mrs)
        self._brec = _extend(self._brec)
        self._bdrec = _extend(self._bdrec)
        self._alive = _extend(self._alive)

    def to_dense(self) -> np.ndarray:
        """B x B matrix of pair counts; symmetric for undirected graphs."""
        M = np.zeros((self.num_nodes, self.num_nodes), dtype=np.int64)
        src, tgt, mrs = self.edge_arrays()
        M[src, tgt] = mrs
        if not self.directed:
            M[tgt, src] = mrs
        return M
