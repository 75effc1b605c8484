"""
Classes to build and hold changes in edge counts between blocks caused by
moving a single vertex.
"""

from typing import Dict, Iterator, List, Tuple

import numpy as np

Pair = Tuple[int, int]
Delta = Tuple[int, np.ndarray, np.ndarray]


class EdgeDelta: # edge-count changes between blocks
    """
    Deduplicated list of ``(r, s) -> (d, dx, dx2)`` entries: the change in
    edge count of a block pair and in the sums (and squared sums) of each
    covariate channel. Undirected pairs are stored with ``r <= s``.
    """
    def __init__(self, directed: bool, n_recs: int = 0):
        self.directed = directed
        self.n_recs = n_recs
        self._deltas: Dict[Pair, List] = {}

    def _key(self, r: int, s: int) -> Pair:
        if not self.directed and r > s:
            return s, r
        return r, s

    def add(self, r: int, s: int, d: int,
            dx: np.ndarray = None, dx2: np.ndarray = None) -> None:
        """
        Accumulate a change for the pair (r, s).

        :param r: Source block.
        :param s: Target block.
        :param d: Change in edge count.
        :param dx: Change in covariate sums (one value per channel).
        :param dx2: Change in covariate squared sums.
        """
        key = self._key(r, s)
        entry = self._deltas.get(key)
        if entry is None:
            entry = [0, np.zeros(self.n_recs), np.zeros(self.n_recs)]
            self._deltas[key] = entry
        entry[0] += d
        if self.n_recs > 0:
            entry[1] += dx
            entry[2] += dx2

    def __getitem__(self, pair: Pair) -> int:
        entry = self._deltas.get(self._key(*pair))
        return 0 if entry is None else entry[0]

    def get_delta(self, r: int, s: int) -> Delta:
        entry = self._deltas.get(self._key(r, s))
        if entry is None:
            return 0, np.zeros(self.n_recs), np.zeros(self.n_recs)
        return entry[0], entry[1], entry[2]

    def __contains__(self, pair: Pair) -> bool:
        return self._key(*pair) in self._deltas

    def __len__(self) -> int:
        """
        Return the number of non-zero edge count deltas.
        """
        return len([v for v in self._deltas.values() if v[0] != 0])

    def keys(self):
        return self._deltas.keys()

    def items(self) -> Iterator[Tuple[Pair, Delta]]:
        """
        Yield ((r, s), (d, dx, dx2)) for all stored pairs.
        """
        for (r, s), (d, dx, dx2) in self._deltas.items():
            yield (r, s), (d, dx, dx2)
